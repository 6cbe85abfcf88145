"""
HTML Extractor service for pulling structured data and links out of pages.
"""

import json
from typing import Any

import structlog
from bs4 import BeautifulSoup

logger = structlog.get_logger()


def extract_json_ld(html: str) -> list[dict[str, Any]]:
    """
    Extract every application/ld+json block from a page.

    Args:
        html: Raw HTML string

    Returns:
        List of {"type": "json-ld", "data": ...} entries; blocks that do
        not parse as JSON are skipped with a warning.
    """
    soup = BeautifulSoup(html, "html.parser")
    structured = []

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            structured.append({"type": "json-ld", "data": json.loads(raw)})
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse JSON-LD", error=str(e))

    return structured


def extract_links(html: str) -> list[str]:
    """
    Extract unique href targets in document order.

    Fragment-only and javascript: links are ignored.
    """
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    seen: set[str] = set()

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        if href not in seen:
            seen.add(href)
            links.append(href)

    return links


def html_to_text(html: str) -> str:
    """Visible text of a page, whitespace-collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())
