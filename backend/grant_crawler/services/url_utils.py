"""
URL Utilities for Grant Crawler.

Provides:
- normalize_url / dedupe_urls: URL deduplication
- extract_domain: hostname without www prefix
- is_document_url: document filter used by document harvesting
- classify_link / link_priority: link triage for link discovery
"""

import re
from datetime import UTC, datetime
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

import structlog

from grant_crawler.core.models import LinkType

logger = structlog.get_logger()


# =============================================================================
# Constants
# =============================================================================

# Extensions accepted by document harvesting
HARVEST_DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".txt")

# Extensions that mark a discovered link as a document
LINK_DOCUMENT_PATTERN = re.compile(r"\.(pdf|docx?|txt|rtf)$", re.IGNORECASE)

# Crawl include patterns for document harvesting
DOCUMENT_INCLUDE_PATTERNS = ["*.pdf", "*.docx", "*.doc"]

GRANT_LINK_KEYWORDS = ("grant", "funding", "scheme", "application", "call", "tender")

# Query parameters to strip (tracking, session, etc.)
STRIP_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "session_id", "sessionid", "sid", "ref", "referrer",
    "_ga", "_gl", "mc_cid", "mc_eid",
}


# =============================================================================
# URL Normalization
# =============================================================================


def normalize_url(url: str) -> str:
    """Normalize URL for deduplication.

    - Strip tracking params (?utm_*, ?session_id, etc)
    - Remove anchors (#section)
    - Collapse duplicate slashes and drop a trailing slash
    - Lowercase hostname
    - Sort remaining query parameters
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url

    hostname = parsed.hostname.lower() if parsed.hostname else ""
    if parsed.port and parsed.port not in (80, 443):
        netloc = f"{hostname}:{parsed.port}"
    else:
        netloc = hostname

    path = re.sub(r"/+", "/", parsed.path)
    if len(path) > 1:
        path = path.rstrip("/")
    if not path:
        path = "/"

    query = ""
    if parsed.query:
        params = parse_qs(parsed.query, keep_blank_values=True)
        filtered = {
            k: v for k, v in params.items()
            if k.lower() not in STRIP_PARAMS and not k.lower().startswith("utm_")
        }
        query = urlencode(sorted(filtered.items()), doseq=True)

    return urlunparse((parsed.scheme.lower(), netloc, path, "", query, ""))


def dedupe_urls(urls: list[str]) -> list[str]:
    """Drop URLs whose normalized form was already seen, keeping order."""
    seen: set[str] = set()
    unique = []
    for url in urls:
        key = normalize_url(url)
        if key not in seen:
            seen.add(key)
            unique.append(url)
    return unique


def extract_domain(url: str) -> str | None:
    """Extract domain from URL without www prefix."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    domain = hostname.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def is_document_url(url: str) -> bool:
    """True for URLs ending in .pdf, .doc, .docx or .txt (query ignored)."""
    path = urlparse(url).path.lower()
    return path.endswith(HARVEST_DOCUMENT_EXTENSIONS)


# =============================================================================
# Link triage
# =============================================================================


def classify_link(url: str, base_url: str | None = None) -> LinkType:
    """Classify a discovered link relative to the page it was found on."""
    lowered = url.lower()
    if lowered.startswith("mailto:") or ("@" in url and "://" not in url):
        return LinkType.EMAIL
    if lowered.startswith("tel:"):
        return LinkType.PHONE

    absolute = urljoin(base_url, url) if base_url else url
    if LINK_DOCUMENT_PATTERN.search(urlparse(absolute).path):
        return LinkType.DOCUMENT

    if base_url and absolute.startswith(("http://", "https://")):
        if extract_domain(absolute) != extract_domain(base_url):
            return LinkType.EXTERNAL
    return LinkType.INTERNAL


def link_priority(url: str, link_type: LinkType, year: int | None = None) -> int:
    """
    Score a link for follow-up.

    Documents +50, grant keywords +30, current year in the URL +20,
    capped at 100.
    """
    score = 0
    if link_type == LinkType.DOCUMENT:
        score += 50

    lowered = url.lower()
    if any(keyword in lowered for keyword in GRANT_LINK_KEYWORDS):
        score += 30

    year = year or datetime.now(UTC).year
    if str(year) in url:
        score += 20

    return min(score, 100)
