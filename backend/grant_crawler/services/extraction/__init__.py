"""
Extraction subpackage for pulling structure out of fetched markup.

Modules:
- html_extractor: JSON-LD blocks, anchor links and visible text
"""

from grant_crawler.services.extraction.html_extractor import (
    extract_json_ld,
    extract_links,
    html_to_text,
)

__all__ = [
    "extract_json_ld",
    "extract_links",
    "html_to_text",
]
