import pytest

from formstamp import extractor
from formstamp.analysis import analyze_document
from formstamp.cancellation import CancellationToken
from formstamp.errors import DocumentLoadError, DocumentParseError, RenderCancelledError
from formstamp.extractor import (
    extract_document,
    extract_page,
    list_fonts,
    open_document,
    render_page_image,
    run_from_transform,
)


def test_run_from_transform_uses_translation_and_vertical_scale():
    run = run_from_transform("Total", (12, 0, 0, -12, 100, 200), 30, 14, "Helvetica")
    assert (run.x, run.y) == (100, 200)
    assert run.font_size == 12
    assert (run.width, run.height) == (30, 14)


def test_extract_page_reports_source_space_runs(make_pdf):
    pdf = make_pdf([[("Full Name:", 72, 700, "Helvetica", 12), ("Email", 72, 650, "Courier", 10)]])
    doc = open_document(pdf)
    try:
        page = extract_page(doc, 0)
    finally:
        doc.close()

    assert (page.dimensions.width, page.dimensions.height) == (612, 792)
    assert [run.text for run in page.runs] == ["Full Name:", "Email"]
    name = page.runs[0]
    assert name.x == pytest.approx(72, abs=0.5)
    assert name.y == pytest.approx(700, abs=0.5)
    assert name.font_size == pytest.approx(12, abs=0.1)
    assert name.font_name == "Helvetica"
    assert name.width > 0 and name.height > 0


def test_blank_runs_are_skipped(make_pdf):
    pdf = make_pdf([[("   ", 72, 700, "Helvetica", 12), ("Date", 72, 650, "Helvetica", 12)]])
    extraction = extract_document(pdf)
    assert [run.text for run in extraction.runs] == ["Date"]


def test_extract_document_walks_every_page(make_pdf):
    pdf = make_pdf([[("Page one", 72, 700, "Helvetica", 12)], [("Page two", 72, 700, "Helvetica", 12)]])
    extraction = extract_document(pdf)
    assert [page.page_index for page in extraction.pages] == [0, 1]
    assert [run.text for run in extraction.runs] == ["Page one", "Page two"]
    assert extraction.errors == []


def test_failing_page_keeps_runs_from_earlier_pages(make_pdf, monkeypatch):
    real_iter_spans = extractor.iter_spans

    def broken_second_page(page):
        if page.number == 1:
            raise RuntimeError("corrupt content stream")
        return real_iter_spans(page)

    monkeypatch.setattr(extractor, "iter_spans", broken_second_page)
    pdf = make_pdf([[("Page one", 72, 700, "Helvetica", 12)], [("Page two", 72, 700, "Helvetica", 12)]])
    extraction = extract_document(pdf)

    assert [page.page_index for page in extraction.pages] == [0]
    assert [run.text for run in extraction.runs] == ["Page one"]
    assert len(extraction.errors) == 1
    error = extraction.errors[0]
    assert isinstance(error, DocumentParseError)
    assert error.page_index == 1
    assert "corrupt content stream" in error.reason


def test_extract_page_out_of_range(make_pdf):
    doc = open_document(make_pdf([[]]))
    try:
        with pytest.raises(IndexError):
            extract_page(doc, 3)
    finally:
        doc.close()


@pytest.mark.parametrize("data", [b"", b"definitely not a pdf", b"%PDF-1.4 truncated"])
def test_unreadable_documents_raise_load_error(data):
    with pytest.raises(DocumentLoadError):
        extract_document(data)


def test_missing_file_raises_load_error(tmp_path):
    with pytest.raises(DocumentLoadError):
        extract_document(tmp_path / "missing.pdf")


def test_cancellation_is_checked_before_loading(make_pdf):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(RenderCancelledError):
        extract_document(make_pdf([[("x", 10, 10, "Helvetica", 12)]]), cancel_token=token)


def test_list_fonts_and_page_image(make_pdf):
    pdf = make_pdf([[("A", 72, 700, "Helvetica", 12), ("B", 72, 650, "Times-Bold", 12)]])
    doc = open_document(pdf)
    try:
        assert list_fonts(doc) == ["Helvetica", "Times-Bold"]
        png = render_page_image(doc, 0, scale=0.5)
    finally:
        doc.close()
    assert png.startswith(b"\x89PNG")


def test_analyze_document(make_pdf):
    pdf = make_pdf([[("Full Name", 72, 700, "Helvetica", 12), ("Welcome aboard", 72, 600, "Helvetica", 12)]])
    analysis = analyze_document(pdf)
    assert [candidate.text for candidate in analysis.candidates] == ["Full Name"]
    assert analysis.background_image.startswith("data:image/png;base64,")
    data = analysis.to_dict()
    assert data["dimensions"] == {"width": 612.0, "height": 792.0}
    assert data["suggestedFields"][0]["isLabel"] is True


def test_analyze_document_can_return_all_lines(make_pdf):
    pdf = make_pdf([[("Full Name", 72, 700, "Helvetica", 12), ("Welcome aboard", 72, 600, "Helvetica", 12)]])
    analysis = analyze_document(pdf, labels_only=False, include_background=False)
    assert [candidate.is_label for candidate in analysis.candidates] == [True, False]
    assert analysis.background_image == ""
