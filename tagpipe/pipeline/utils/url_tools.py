"""URL helpers for page context: query extraction, page location, same-site checks.

Hostname comparison uses an eTLD+1 heuristic so that ``www.example.com`` and
``shop.example.com`` count as the same site while ``example.com`` and
``example.org`` do not.
"""

from typing import Optional
from urllib.parse import parse_qs, urlparse, urlunparse


PAGE_LOCATION_MAX_LENGTH = 100

# Common multi-part TLDs that need special handling
MULTI_PART_TLDS = {
    'co.uk', 'co.jp', 'co.kr', 'co.za', 'co.nz', 'co.in', 'co.il',
    'com.au', 'com.br', 'com.cn', 'com.mx', 'com.tr', 'com.tw',
    'net.au', 'net.br', 'net.in', 'net.mx', 'net.nz', 'net.za',
    'org.au', 'org.br', 'org.in', 'org.mx', 'org.nz', 'org.za',
    'edu.au', 'edu.br', 'edu.in', 'edu.mx', 'gov.au', 'gov.br',
    'ac.uk', 'org.uk', 'me.uk', 'ltd.uk', 'plc.uk', 'net.uk'
}


def extract_etld_plus_one(hostname: str) -> str:
    """Extract the registrable domain from a hostname.

    Examples:
        >>> extract_etld_plus_one("blog.example.com")
        "example.com"
        >>> extract_etld_plus_one("shop.example.co.uk")
        "example.co.uk"
    """
    hostname = hostname.lower().strip('.')
    parts = hostname.split('.')
    if len(parts) < 2:
        return hostname

    if len(parts) >= 3 and '.'.join(parts[-2:]) in MULTI_PART_TLDS:
        return '.'.join(parts[-3:])

    return '.'.join(parts[-2:])


def get_hostname(url: str) -> str:
    """Return the lowercased hostname of a URL, or an empty string."""
    if not url:
        return ""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_same_site(hostname_a: str, hostname_b: str) -> bool:
    """Check whether two hostnames share the same eTLD+1."""
    if not hostname_a or not hostname_b:
        return False
    host_a = hostname_a.lower()
    host_b = hostname_b.lower()
    if host_a.startswith('www.'):
        host_a = host_a[4:]
    if host_b.startswith('www.'):
        host_b = host_b[4:]
    if host_a == host_b:
        return True
    return extract_etld_plus_one(host_a) == extract_etld_plus_one(host_b)


def is_same_site_referrer(referrer: str, page_hostname: str) -> bool:
    """True when the referrer URL points back at the current site."""
    return is_same_site(get_hostname(referrer), page_hostname)


def get_query_param(url: str, name: str) -> str:
    """Return the first value of a query parameter, or an empty string."""
    if not url:
        return ""
    try:
        values = parse_qs(urlparse(url).query).get(name)
    except ValueError:
        return ""
    return values[0] if values else ""


def extract_click_id(url: str) -> str:
    return get_query_param(url, "gclid")


def page_location_without_params(url: str, max_length: int = PAGE_LOCATION_MAX_LENGTH) -> str:
    """Strip query string and fragment, then cap the length.

    Example:
        >>> page_location_without_params("https://example.com/a?utm_source=x#top")
        "https://example.com/a"
    """
    if not url:
        return ""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url[:max_length]
    stripped = urlunparse((parsed.scheme, parsed.netloc, parsed.path, '', '', ''))
    return stripped[:max_length]


def is_https(url: str) -> bool:
    try:
        return urlparse(url).scheme.lower() == "https"
    except ValueError:
        return False


def join_path(base_url: str, suffix: str) -> str:
    """Append a path segment to a base URL without doubling slashes."""
    return base_url.rstrip('/') + '/' + suffix.lstrip('/')


def referrer_domain(referrer: Optional[str]) -> str:
    host = get_hostname(referrer or "")
    if host.startswith('www.'):
        host = host[4:]
    return host
