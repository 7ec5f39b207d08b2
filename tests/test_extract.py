import pytest
from PIL import Image
from PyPDF2.errors import PdfReadError

from sci_librarian.extract import (
    ExtractionError,
    OcrFallbackExtractor,
    PdfTextExtractor,
    build_extractor,
)


def _mock_pages(mocker, texts):
    pages = []
    for text in texts:
        page = mocker.MagicMock()
        if isinstance(text, Exception):
            page.extract_text.side_effect = text
        else:
            page.extract_text.return_value = text
        pages.append(page)
    return pages


def test_pdf_text_extractor_reads_only_leading_pages(mocker):
    reader = mocker.patch("sci_librarian.extract.PdfReader")
    pages = _mock_pages(mocker, [f"page {n}" for n in range(1, 9)])
    reader.return_value.pages = pages

    text = PdfTextExtractor(max_pages=5).extract(b"%PDF-1.7")

    assert text == "page 1\npage 2\npage 3\npage 4\npage 5"
    for page in pages[5:]:
        page.extract_text.assert_not_called()


def test_pdf_text_extractor_skips_broken_pages(mocker):
    reader = mocker.patch("sci_librarian.extract.PdfReader")
    reader.return_value.pages = _mock_pages(
        mocker, ["Title", PdfReadError("bad stream"), "Abstract"]
    )

    assert PdfTextExtractor().extract(b"%PDF-1.7") == "Title\nAbstract"


def test_pdf_text_extractor_returns_empty_for_scans(mocker):
    reader = mocker.patch("sci_librarian.extract.PdfReader")
    reader.return_value.pages = _mock_pages(mocker, ["", None, "  "])

    assert PdfTextExtractor().extract(b"%PDF-1.7") == ""


def test_pdf_text_extractor_rejects_unreadable_pdf():
    with pytest.raises(ExtractionError, match="Unreadable PDF"):
        PdfTextExtractor().extract(b"this is not a pdf at all")


def test_ocr_fallback_not_used_when_text_layer_present(mocker):
    primary = mocker.MagicMock()
    primary.extract.return_value = "Real text"
    ocr_provider = mocker.MagicMock()
    convert = mocker.patch("sci_librarian.extract.convert_from_bytes")

    text = OcrFallbackExtractor(primary, ocr_provider).extract(b"pdf")

    assert text == "Real text"
    convert.assert_not_called()
    ocr_provider.transcribe_image.assert_not_called()


def test_ocr_fallback_transcribes_leading_pages(mocker):
    primary = mocker.MagicMock()
    primary.extract.return_value = ""
    ocr_provider = mocker.MagicMock()
    ocr_provider.transcribe_image.side_effect = ["Scanned title", "", "More text"]
    images = [Image.new("RGB", (10, 10), "white") for _ in range(3)]
    convert = mocker.patch(
        "sci_librarian.extract.convert_from_bytes", return_value=images
    )

    text = OcrFallbackExtractor(primary, ocr_provider, max_pages=3, dpi=150).extract(
        b"pdf"
    )

    assert text == "Scanned title\nMore text"
    convert.assert_called_once_with(b"pdf", dpi=150, first_page=1, last_page=3)
    page_nums = [c.kwargs["page_num"] for c in ocr_provider.transcribe_image.call_args_list]
    assert page_nums == [1, 2, 3]


def test_ocr_fallback_rasterise_failure(mocker):
    primary = mocker.MagicMock()
    primary.extract.return_value = ""
    mocker.patch(
        "sci_librarian.extract.convert_from_bytes", side_effect=RuntimeError("no poppler")
    )

    with pytest.raises(ExtractionError, match="Failed to rasterise PDF: no poppler"):
        OcrFallbackExtractor(primary, mocker.MagicMock()).extract(b"pdf")


def test_build_extractor_respects_ocr_fallback(settings, mocker):
    assert isinstance(build_extractor(settings), PdfTextExtractor)

    settings.OCR_FALLBACK = True
    settings.MAX_PAGES = 2
    extractor = build_extractor(settings, ocr_provider=mocker.MagicMock())

    assert isinstance(extractor, OcrFallbackExtractor)
    assert extractor.max_pages == 2
    assert extractor.primary.max_pages == 2
