from __future__ import annotations

import json

from catalogforge.domain.models.chunk import Chunk
from catalogforge.domain.models.page import Page

CHUNK_SYSTEM_PROMPT = """You convert price-list pages into structured catalog JSON. Reply with one JSON object only:
{
  "groups": [
    {
      "title": "string",
      "category": "string",
      "specs_headers": ["string"],
      "variants": [
        {
          "code": "string|null",
          "cas": "string|null",
          "name": "string",
          "pack": "string|null",
          "price_value": "number|null",
          "currency": "string|null",
          "notes": "string|null",
          "confidence": "number between 0 and 1",
          "fields_present": ["code", "name", "pack", "price_value"]
        }
      ]
    }
  ],
  "warnings": ["string"],
  "notes": ["string"]
}

Only emit rows that can be read from the supplied text; never invent products.
Keep units and currency as printed; price_value holds digits only.
When a row is doubtful add a warning that says low_confidence and why."""

CRITIQUE_SYSTEM_PROMPT = """You review catalog extraction output for one window of pages.
Compare the sampled groups against the raw segments and diagnostics. Reply with JSON only:
{"pass": true|false, "repairs": ["directive"], "explanations": ["reason"]}

Repair directives are short imperative sentences. Recognised intents:
- "re-segment pages from raw text" when lines were split into the wrong segments
- "stitch wrapped rows" when table rows continue on the next line
- "map column N -> role" (roles: code, cas, name, pack, price, currency, notes, hsn, gst)
- "force price anchored recovery" when prices sit at the end of each line
- "use pattern <id>" to prefer a registered column pattern
Return pass=true when the groups are a faithful reading of the pages."""

FIRST_CHUNK_CONTEXT = "No previous context. You are processing the first chunk of this document."


def render_pages(pages: tuple[Page, ...] | list[Page]) -> str:
    lines: list[str] = []
    for page in pages:
        lines.append(f"--- Page {page.page_number} ---")
        if page.raw_text.strip():
            lines.append(page.raw_text.strip())
            continue
        for segment in page.segments:
            text = segment.content().strip()
            if text:
                lines.append(text)
    return "\n".join(lines)


def build_chunk_prompt(*, doc_id: str | None, chunk: Chunk, context: str) -> tuple[str, str]:
    """System and user messages for one chunk."""
    body = [
        f"Document: {doc_id or 'unknown'}",
        f"Chunk: {chunk.chunk_id} covering pages {chunk.page_start} to {chunk.page_end}",
        "",
        "Document context:",
        context.strip() or FIRST_CHUNK_CONTEXT,
        "",
        "Raw text for this chunk (only include rows visible in these pages):",
        render_pages(chunk.pages),
        "",
        "Instructions:",
        "1. Identify product sections and produce groups with titles and categories.",
        "2. For each variant give code, name, pack, price_value, currency and notes where printed.",
        "3. Set confidence between 0 and 1 and list the populated fields in fields_present.",
        "4. Record gaps or doubtful rows as warnings.",
    ]
    return CHUNK_SYSTEM_PROMPT, "\n".join(body)


def build_critique_prompt(payload: dict[str, object]) -> tuple[str, str]:
    user = "Window extraction to review:\n" + json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    return CRITIQUE_SYSTEM_PROMPT, user
