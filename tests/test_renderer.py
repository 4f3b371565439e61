from io import BytesIO

import pytest
from pypdf import PdfReader

from common.errors import DocumentError
from fakes import make_pdf
from services.scanner import renderer


def test_counts_pages():
    assert renderer.count_pages(make_pdf(3)) == 3


def test_empty_selection_means_every_page():
    assert renderer.resolve_pages(3, []) == [1, 2, 3]


def test_selection_keeps_order_and_drops_repeats():
    assert renderer.resolve_pages(5, [4, 2, 4]) == [4, 2]


def test_out_of_range_pages_are_rejected():
    with pytest.raises(DocumentError, match=r"\[4\]"):
        renderer.resolve_pages(3, [1, 4])


def test_select_pages_builds_a_smaller_pdf():
    subset = renderer.select_pages(make_pdf(3), [3, 1])

    assert len(PdfReader(BytesIO(subset)).pages) == 2


def test_select_all_pages_returns_document_untouched():
    pdf = make_pdf(2)

    assert renderer.select_pages(pdf, []) is pdf


def test_render_pages_produces_png_per_page():
    images = renderer.render_pages(make_pdf(3), [2, 3], dpi=36)

    assert len(images) == 2
    assert all(image.startswith(b"\x89PNG") for image in images)


def test_garbage_bytes_are_a_document_error():
    with pytest.raises(DocumentError):
        renderer.count_pages(b"this is not a pdf")

    with pytest.raises(DocumentError):
        renderer.render_pages(b"this is not a pdf", [1])
