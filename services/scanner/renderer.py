"""Turn an uploaded PDF into what an extraction provider consumes."""

from io import BytesIO
from typing import List, Sequence

import pymupdf
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from common.errors import DocumentError


def _reader(pdf_bytes: bytes) -> PdfReader:
    try:
        return PdfReader(BytesIO(pdf_bytes))
    except (PdfReadError, ValueError) as e:
        raise DocumentError(f"Unreadable PDF: {e}") from e


def count_pages(pdf_bytes: bytes) -> int:
    return len(_reader(pdf_bytes).pages)


def resolve_pages(page_count: int, selected: Sequence[int]) -> List[int]:
    """1-based page numbers to use; an empty selection means every page."""
    if not selected:
        return list(range(1, page_count + 1))
    out_of_range = [p for p in selected if p < 1 or p > page_count]
    if out_of_range:
        raise DocumentError(f"Pages {out_of_range} outside document with {page_count} pages")
    # keep the caller's order, drop repeats
    return list(dict.fromkeys(selected))


def select_pages(pdf_bytes: bytes, selected: Sequence[int]) -> bytes:
    reader = _reader(pdf_bytes)
    pages = resolve_pages(len(reader.pages), selected)
    if len(pages) == len(reader.pages) and pages == sorted(pages):
        return pdf_bytes

    writer = PdfWriter()
    for number in pages:
        writer.add_page(reader.pages[number - 1])
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def render_pages(pdf_bytes: bytes, selected: Sequence[int], dpi: int = 150) -> List[bytes]:
    """PNG bytes for each selected page, in selection order."""
    try:
        doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise DocumentError(f"Unreadable PDF: {e}") from e

    with doc:
        pages = resolve_pages(doc.page_count, selected)
        return [doc[number - 1].get_pixmap(dpi=dpi).tobytes("png") for number in pages]
