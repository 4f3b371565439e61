from typing import Sequence

from services.scanner.models import EXTRACTION_VERSION

SYSTEM_PROMPT = f"""You extract structured data from scanned CFMEU construction mapping sheets.

A mapping sheet is a printed form, usually filled in by hand. Page 1 holds the
project details and site contacts. Following pages hold a subcontractor table
grouped into build stages (early works, structure, finishing).

Respond with a single JSON object and nothing else, using exactly this shape:

{{
  "extraction_version": "{EXTRACTION_VERSION}",
  "pages_processed": <number of pages you read>,
  "project": {{
    "organiser": string | null,
    "project_name": string | null,
    "project_value": number | null,
    "address": string | null,
    "builder": string | null,
    "proposed_start_date": "YYYY-MM-DD" | null,
    "proposed_finish_date": "YYYY-MM-DD" | null,
    "roe_email": string | null,
    "project_type": string | null,
    "state_funding": number | null,
    "federal_funding": number | null,
    "eba_with_cfmeu": true | false | null
  }},
  "site_contacts": [
    {{"role": "project_manager" | "site_manager" | "site_delegate" | "site_hsr",
      "name": string | null, "email": string | null, "phone": string | null}}
  ],
  "subcontractors": [
    {{"stage": "early_works" | "structure" | "finishing" | "other",
      "trade": string, "company": string | null, "eba": true | false | null}}
  ],
  "confidence": {{
    "overall": number,
    "project": {{"<project field name>": number}},
    "site_contacts": [number],
    "subcontractors": [number]
  }},
  "warnings": [string]
}}

Rules:
- Dates: convert any written date (e.g. 3/4/25, March 2025, Q2 2025) to ISO-8601
  YYYY-MM-DD. Use the first day of the month or quarter when only that is known.
  Australian day/month order applies.
- Money: convert "$1.5M", "1,500,000", "1.5 mil" to a plain number (1500000).
- Checkboxes: a tick, cross or filled box means true, an explicitly empty "No"
  box means false, anything unclear is null.
- Stages: use the table section a row sits in. When the layout is ambiguous,
  infer the stage from the trade: demolition, piling, excavation, civil and
  earthworks are early_works; concrete, formwork, steel fixing, scaffolding,
  cranes and structural steel are structure; plastering, painting, tiling,
  carpentry, joinery, flooring, glazing and landscaping are finishing.
- Only include subcontractor rows that name a company or have a ticked box.
- Never invent values. Use null for anything blank or illegible.
- Confidence scores are between 0 and 1. site_contacts and subcontractors
  scores are parallel to their arrays.
- Put anything you could not map cleanly in warnings.
"""


def build_user_prompt(page_numbers: Sequence[int], page_count: int) -> str:
    pages = ", ".join(str(p) for p in page_numbers)
    if len(page_numbers) == 1:
        scope = f"This is page {pages} of a {page_count}-page mapping sheet."
    else:
        scope = f"These are pages {pages} of a {page_count}-page mapping sheet, in order."
    return f"{scope} Extract every field you can read and return only the JSON object."


def page_label(index: int, total: int) -> str:
    return f"Page {index} of {total}:"
