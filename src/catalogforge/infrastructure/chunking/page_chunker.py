from __future__ import annotations

from catalogforge.core.errors import ValidationError
from catalogforge.core.hashing import compute_text_digest
from catalogforge.core.ids import chunk_id_for
from catalogforge.domain.models.chunk import Chunk
from catalogforge.domain.models.page import Page

DEFAULT_PAGES_PER_CHUNK = 10


def page_number_of(page: Page, position: int) -> int:
    return page.page_number if page.page_number > 0 else position + 1


def chunk_content_hash(pages: list[Page] | tuple[Page, ...]) -> str:
    """sha256 over each page's raw text plus a NUL-separated entry per segment."""
    parts: list[str] = []
    for page in pages:
        parts.append(page.raw_text or "")
        for segment in page.segments:
            parts.append("\0")
            parts.append(segment.content())
    return compute_text_digest(parts)


class PageChunker:
    def __init__(self, *, pages_per_chunk: int = DEFAULT_PAGES_PER_CHUNK) -> None:
        if pages_per_chunk < 1:
            raise ValidationError("pages_per_chunk must be at least 1")
        self.pages_per_chunk = pages_per_chunk

    def chunk_pages(self, pages: list[Page], *, doc_id: str | None = None) -> list[Chunk]:
        chunks: list[Chunk] = []
        for ordinal, offset in enumerate(range(0, len(pages), self.pages_per_chunk)):
            slice_ = tuple(pages[offset : offset + self.pages_per_chunk])
            chunks.append(
                Chunk(
                    chunk_id=chunk_id_for(doc_id, ordinal),
                    ordinal=ordinal,
                    page_start=page_number_of(slice_[0], offset),
                    page_end=page_number_of(slice_[-1], offset + len(slice_) - 1),
                    content_hash=chunk_content_hash(slice_),
                    pages=slice_,
                )
            )
        return chunks

    def rechunk_stable(
        self,
        previous: list[Chunk],
        pages: list[Page],
        *,
        doc_id: str | None = None,
    ) -> list[Chunk]:
        """Re-chunk, keeping prior identifiers wherever a page range is unchanged."""
        prior_ids = {(chunk.page_start, chunk.page_end): chunk.chunk_id for chunk in previous}
        taken = set()
        out: list[Chunk] = []
        for chunk in self.chunk_pages(pages, doc_id=doc_id):
            prior = prior_ids.get(chunk.page_range)
            if prior is not None and prior not in taken:
                taken.add(prior)
                out.append(
                    Chunk(
                        chunk_id=prior,
                        ordinal=chunk.ordinal,
                        page_start=chunk.page_start,
                        page_end=chunk.page_end,
                        content_hash=chunk.content_hash,
                        pages=chunk.pages,
                    )
                )
            else:
                out.append(chunk)
        return out
