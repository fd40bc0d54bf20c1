"""Marketing attribution resolution.

``resolve_attribution`` is a pure function: the same inputs always produce the
same record. Persisting the result as last-known attribution is left to the
tracker.

Resolution order:

1. UTM parameters verbatim.
2. Cross-site referrer classification (search, social, referral) when no UTM
   source or medium is present.
3. A click id overwrites everything with the paid-search triple.
4. Empty results fall back to internal (continuing session) or direct
   (new session).
"""

import logging
from typing import Optional

from ..models.attribution import (
    AttributionRecord,
    UTMParameters,
    DIRECT_CAMPAIGN,
    DIRECT_MEDIUM,
    DIRECT_SOURCE,
    INTERNAL_MEDIUM,
    INTERNAL_SOURCE,
    NOT_SET,
    ORGANIC_CAMPAIGN,
    ORGANIC_MEDIUM,
    PAID_SEARCH_CAMPAIGN,
    PAID_SEARCH_MEDIUM,
    PAID_SEARCH_SOURCE,
    REFERRAL_CAMPAIGN,
    REFERRAL_MEDIUM,
    SOCIAL_CAMPAIGN,
    SOCIAL_MEDIUM,
)
from ..models.events import PageContext, SessionContext
from ..utils.url_tools import (
    extract_click_id,
    get_hostname,
    get_query_param,
    is_same_site_referrer,
    referrer_domain as parse_referrer_domain,
)
from .referrers import match_search_engine, match_social_network

logger = logging.getLogger(__name__)

CLICK_ID_MARKER = "gclid="


def resolve_attribution(
    utm: Optional[UTMParameters],
    click_id: str,
    referrer_domain: str,
    referrer: str,
    ignore_same_site_referrer: bool,
    is_new_session: bool,
    stored_attribution: Optional[AttributionRecord] = None,
    conversion: bool = False,
) -> AttributionRecord:
    """Resolve source/medium/campaign for one hit.

    Args:
        utm: UTM parameters from the landing URL
        click_id: Paid-search click identifier from the landing URL
        referrer_domain: Hostname of the referrer without ``www.``
        referrer: Full referrer URL
        ignore_same_site_referrer: True when the referrer is the current site
        is_new_session: Whether this hit starts a session
        stored_attribution: Persisted last-known attribution
        conversion: Conversion-class events take the stored attribution outright

    Returns:
        The resolved attribution record
    """
    if conversion and stored_attribution is not None:
        return stored_attribution

    utm = utm or UTMParameters()
    source = utm.source
    medium = utm.medium
    campaign = utm.campaign
    content = utm.content
    term = utm.term

    if not utm.has_source_or_medium and referrer_domain and not ignore_same_site_referrer:
        search_engine = match_search_engine(referrer_domain)
        social_network = match_social_network(referrer_domain) if not search_engine else None

        if search_engine and CLICK_ID_MARKER in (referrer or ""):
            source = PAID_SEARCH_SOURCE
            medium = PAID_SEARCH_MEDIUM
            campaign = PAID_SEARCH_CAMPAIGN
        elif search_engine:
            source = search_engine
            medium = ORGANIC_MEDIUM
            campaign = ORGANIC_CAMPAIGN
        elif social_network:
            source = social_network
            medium = SOCIAL_MEDIUM
            campaign = SOCIAL_CAMPAIGN
        else:
            source = referrer_domain
            medium = REFERRAL_MEDIUM
            campaign = REFERRAL_CAMPAIGN

    # Click id always wins, even over UTM values
    if click_id:
        source = PAID_SEARCH_SOURCE
        medium = PAID_SEARCH_MEDIUM
        campaign = PAID_SEARCH_CAMPAIGN

    if not source and not medium:
        if is_new_session:
            source = DIRECT_SOURCE
            medium = DIRECT_MEDIUM
            campaign = DIRECT_CAMPAIGN
        else:
            source = INTERNAL_SOURCE
            medium = INTERNAL_MEDIUM

    return AttributionRecord(
        source=source,
        medium=medium,
        campaign=campaign or NOT_SET,
        content=content,
        term=term,
        click_id=click_id or "",
    )


def should_persist_attribution(
    attribution: AttributionRecord,
    utm: Optional[UTMParameters],
    click_id: str,
    is_new_session: bool,
) -> bool:
    """Decide whether a resolved record becomes the last-known attribution.

    Internal navigation must never overwrite the last real external touch.
    """
    if is_new_session:
        return True
    if click_id or (utm is not None and not utm.is_empty):
        return True
    return not attribution.is_direct and not attribution.is_internal


def extract_utm_parameters(url: str) -> UTMParameters:
    return UTMParameters(
        source=get_query_param(url, "utm_source"),
        medium=get_query_param(url, "utm_medium"),
        campaign=get_query_param(url, "utm_campaign"),
        content=get_query_param(url, "utm_content"),
        term=get_query_param(url, "utm_term"),
    )


class AttributionResolver:
    """Resolves attribution from page context and session state."""

    def resolve_for_page(
        self,
        page: PageContext,
        session: SessionContext,
        stored_attribution: Optional[AttributionRecord] = None,
        conversion: bool = False,
    ) -> AttributionRecord:
        utm = extract_utm_parameters(page.page_url)
        click_id = extract_click_id(page.page_url)
        hostname = page.hostname or get_hostname(page.page_url)
        same_site = bool(page.referrer) and is_same_site_referrer(page.referrer, hostname)

        attribution = resolve_attribution(
            utm=utm,
            click_id=click_id,
            referrer_domain=parse_referrer_domain(page.referrer),
            referrer=page.referrer,
            ignore_same_site_referrer=same_site,
            is_new_session=session.is_new_session,
            stored_attribution=stored_attribution,
            conversion=conversion,
        )
        logger.debug(f"Resolved attribution {attribution.source}/{attribution.medium} for {page.page_url}")
        return attribution

    def should_persist(self, page: PageContext, session: SessionContext, attribution: AttributionRecord) -> bool:
        return should_persist_attribution(
            attribution,
            extract_utm_parameters(page.page_url),
            extract_click_id(page.page_url),
            session.is_new_session,
        )
