"""Referrer domain classification tables."""

from enum import Enum
from typing import Optional


class ReferrerType(str, Enum):
    SEARCH = "search"
    SOCIAL = "social"
    REFERRAL = "referral"


# Domain keyword -> reported source name
SEARCH_ENGINES = {
    "google": "google",
    "bing": "bing",
    "yahoo": "yahoo",
    "duckduckgo": "duckduckgo",
    "yandex": "yandex",
    "baidu": "baidu",
    "ecosia": "ecosia",
}

SOCIAL_NETWORKS = {
    "facebook": "facebook",
    "fb.com": "facebook",
    "instagram": "instagram",
    "twitter": "twitter",
    "t.co": "twitter",
    "x.com": "twitter",
    "linkedin": "linkedin",
    "lnkd.in": "linkedin",
    "pinterest": "pinterest",
    "youtube": "youtube",
    "tiktok": "tiktok",
    "reddit": "reddit",
}


def _match_label(domain: str, keyword: str) -> bool:
    """Match a keyword against the domain's labels.

    Keywords containing a dot must match the registrable domain exactly
    (``x.com`` must not match ``dropbox.com``); bare keywords match any label.
    """
    domain = domain.lower()
    if '.' in keyword:
        return domain == keyword or domain.endswith('.' + keyword)
    return keyword in domain.split('.')


def match_search_engine(domain: str) -> Optional[str]:
    for keyword, source in SEARCH_ENGINES.items():
        if _match_label(domain, keyword):
            return source
    return None


def match_social_network(domain: str) -> Optional[str]:
    for keyword, source in SOCIAL_NETWORKS.items():
        if _match_label(domain, keyword):
            return source
    return None


def classify_referrer(domain: str) -> ReferrerType:
    if match_search_engine(domain):
        return ReferrerType.SEARCH
    if match_social_network(domain):
        return ReferrerType.SOCIAL
    return ReferrerType.REFERRAL
