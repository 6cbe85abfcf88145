"""
Extraction prompts.
"""

GRANT_EXTRACTION_PROMPT = """You are analysing a web page or document for funding opportunities
(grants, subsidies, calls for proposals, scholarships, awards).

Extract every distinct opportunity and return ONLY a JSON object of the form:

{
  "grants": [
    {
      "title": "string",
      "description": "string or null",
      "amount": {"min": number or null, "max": number or null, "currency": "ISO 4217 code or null"},
      "deadline": "YYYY-MM-DD or null",
      "eligibility": ["string"],
      "categories": ["string"],
      "contactInfo": {"email": "string", "phone": "string", "url": "string"},
      "confidence": number between 0 and 1
    }
  ],
  "overallConfidence": number between 0 and 1
}

Return {"grants": [], "overallConfidence": 0} if the content describes no funding opportunity.
Do not invent values that are not supported by the content."""

DEFAULT_DIRECT_EXTRACTION_PROMPT = """Extract grant funding information including:
- Grant title and description
- Funding amount (min/max)
- Application deadline
- Eligibility criteria
- Contact information
- Categories or focus areas"""


def build_prompt(extraction_prompt: str | None = None) -> str:
    """Base prompt, with caller instructions appended when given."""
    if not extraction_prompt:
        return GRANT_EXTRACTION_PROMPT
    return f"{GRANT_EXTRACTION_PROMPT}\n\nAdditional instructions:\n{extraction_prompt.strip()}"
