"""Tests for the three extraction strategies and format dispatch."""

import base64
import io

import fitz
import pytest
from docx import Document

from retrans.documents import (
    DOCX_MIME_TYPE,
    LINE_Y_THRESHOLD,
    DocumentFormat,
    FixedLayoutExtractor,
    LineTextExtractor,
    RichDocumentExtractor,
    TextFragment,
    chunks_from_text,
    detect_format,
    document_from_text,
    extract_document,
    group_fragments_into_lines,
)
from retrans.errors import EngineNotReadyError, ExtractionError, UnsupportedFormatError


def summary(chunks):
    return [(chunk.kind, chunk.original_text) for chunk in chunks]


def build_pdf(lines):
    document = fitz.open()
    page = document.new_page()
    for y, text in lines:
        page.insert_text((72, y), text)
    data = document.tobytes()
    document.close()
    return data


def build_docx():
    document = Document()
    document.add_heading("Quarterly Report", level=1)
    document.add_paragraph("Intro text")
    document.add_paragraph("")
    paragraph = document.add_paragraph()
    paragraph.add_run("Important").bold = True
    document.add_paragraph("☑ Reviewed")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Name"
    table.cell(0, 1).text = "Value"
    table.cell(1, 0).text = "Revenue"
    table.cell(1, 1).text = "10"
    document.add_paragraph("Closing")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


class TestLineTextExtractor:
    def test_title_blank_body(self):
        chunks = LineTextExtractor().extract(b"Title\n\nBody line")
        assert summary(chunks) == [
            ("heading", "Title"),
            ("empty-line", ""),
            ("paragraph", "Body line"),
        ]
        assert chunks[0].style.level == 1
        assert chunks[0].style.bold is True

    def test_crlf(self):
        chunks = LineTextExtractor().extract(b"Title\r\n\r\nBody\r\n")
        assert [chunk.kind for chunk in chunks] == ["heading", "empty-line", "paragraph"]

    def test_whitespace_lines_are_empty_lines(self):
        chunks = LineTextExtractor().extract(b"Title\n   \t\nBody")
        assert chunks[1].kind == "empty-line"

    def test_only_first_line_is_heading(self):
        chunks = LineTextExtractor().extract(b"\nTitle\nSecond\nThird")
        assert [chunk.kind for chunk in chunks] == [
            "empty-line",
            "heading",
            "paragraph",
            "paragraph",
        ]

    def test_checkbox_lines(self):
        chunks = LineTextExtractor().extract("Form\n[x] Yes\n☐ No".encode("utf-8"))
        assert [chunk.kind for chunk in chunks] == ["heading", "checkbox", "checkbox"]
        assert chunks[1].style.checked is True
        assert chunks[2].style.checked is False

    def test_bom_is_tolerated(self):
        chunks = LineTextExtractor().extract("\ufeffTitle".encode("utf-8"))
        assert chunks[0].original_text == "Title"

    def test_undecodable_bytes(self):
        with pytest.raises(ExtractionError):
            LineTextExtractor().extract(b"\xff\xfe\xfa broken")

    def test_idempotent(self):
        data = b"Title\n\n[ ] Item\nBody"
        assert LineTextExtractor().extract(data) == LineTextExtractor().extract(data)


class TestRichDocumentHtmlWalk:
    def extract(self, html):
        return RichDocumentExtractor().extract_html(html)

    def test_headings(self):
        chunks = self.extract("<h1>Main</h1><h3><u>Sub</u></h3>")
        assert summary(chunks) == [("heading", "Main"), ("heading", "Sub")]
        assert chunks[0].style.level == 1
        assert chunks[0].style.underline is False
        assert chunks[1].style.level == 3
        assert chunks[1].style.underline is True
        assert chunks[1].style.bold is True

    def test_paragraph_emphasis(self):
        chunks = self.extract(
            "<p><strong>Bold</strong> and <em>italic</em></p>"
            '<p style="text-align: center">Centered</p>'
        )
        assert chunks[0].style.bold is True
        assert chunks[0].style.italic is True
        assert chunks[0].original_text == "Bold and italic"
        assert chunks[1].style.alignment == "center"
        assert chunks[1].style.bold is False

    def test_empty_paragraph_and_line_break(self):
        chunks = self.extract("<p>One</p><p></p><br/><p>Two</p>")
        assert [chunk.kind for chunk in chunks] == [
            "paragraph",
            "empty-line",
            "empty-line",
            "paragraph",
        ]

    def test_checkbox_paragraphs(self):
        chunks = self.extract("<p>[X] Approved</p><p>☐ Pending</p><p>Plain</p>")
        assert [chunk.kind for chunk in chunks] == ["checkbox", "checkbox", "paragraph"]
        assert [chunk.style.checked for chunk in chunks] == [True, False, None]

    def test_table_cells(self):
        chunks = self.extract(
            "<table><thead><tr><th>Name</th><th>Value</th></tr></thead>"
            "<tbody><tr><td><p>Revenue</p></td>"
            '<td style="text-align: right" colspan="2"><p>10</p></td></tr></tbody></table>'
        )
        assert summary(chunks) == [
            ("table-cell", "Name"),
            ("table-cell", "Value"),
            ("table-cell", "Revenue"),
            ("table-cell", "10"),
        ]
        assert chunks[0].style.bold is True
        assert chunks[2].style.bold is False
        assert [(chunk.style.row, chunk.style.col) for chunk in chunks] == [
            (0, 0),
            (0, 1),
            (1, 0),
            (1, 1),
        ]
        assert chunks[3].style.alignment == "right"
        assert chunks[3].style.col_span == 2
        assert chunks[2].style.alignment == "left"

    def test_empty_table_cell_is_kept(self):
        chunks = self.extract("<table><tr><td>A</td><td></td></tr></table>")
        assert summary(chunks) == [("table-cell", "A"), ("table-cell", "")]

    def test_list_items_and_nested_lists(self):
        chunks = self.extract(
            "<ul><li>First<ul><li>Nested</li></ul></li><li>Second</li></ul>"
        )
        assert summary(chunks) == [
            ("paragraph", "First"),
            ("paragraph", "Nested"),
            ("paragraph", "Second"),
        ]

    def test_line_break_inside_paragraph_keeps_words_apart(self):
        chunks = self.extract("<p>Line one<br />Line two</p><p><strong>A<br/>B</strong></p>")
        assert summary(chunks) == [
            ("paragraph", "Line one\nLine two"),
            ("paragraph", "A\nB"),
        ]

    def test_vertically_merged_cell_shifts_later_columns(self):
        chunks = self.extract(
            '<table><tr><td rowspan="2">A</td><td>B</td></tr>'
            "<tr><td>C</td></tr></table>"
        )
        assert [
            (chunk.original_text, chunk.style.row, chunk.style.col) for chunk in chunks
        ] == [("A", 0, 0), ("B", 0, 1), ("C", 1, 1)]
        assert chunks[0].style.row_span == 2

    def test_list_inside_cell_is_kept(self):
        chunks = self.extract(
            "<table><tr><td><p>Intro</p><ul><li>Item</li><li>Other</li></ul></td></tr></table>"
        )
        assert summary(chunks) == [("table-cell", "Intro Item Other")]

    def test_depth_first_order_through_containers(self):
        chunks = self.extract(
            "<div><p>A</p><section><h2>B</h2><p>C</p></section></div><p>D</p>"
        )
        assert [chunk.original_text for chunk in chunks] == ["A", "B", "C", "D"]
        assert [chunk.chunk_id for chunk in chunks] == [
            "docx-0",
            "docx-1",
            "docx-2",
            "docx-3",
        ]


class TestRichDocumentExtractor:
    def test_engine_not_ready(self):
        with pytest.raises(EngineNotReadyError):
            RichDocumentExtractor().extract(b"PK")

    def test_converter_failure_is_extraction_error(self):
        def broken(data):
            raise RuntimeError("zip is corrupt")

        with pytest.raises(ExtractionError, match="corrupted"):
            RichDocumentExtractor(converter=broken).extract(b"PK")

    def test_injected_converter(self):
        extractor = RichDocumentExtractor(converter=lambda data: "<h2>Injected</h2>")
        assert summary(extractor.extract(b"")) == [("heading", "Injected")]

    def test_real_docx(self):
        chunks = RichDocumentExtractor.with_default_engine().extract(build_docx())
        texts = [(chunk.kind, chunk.original_text) for chunk in chunks if chunk.kind != "empty-line"]
        assert texts == [
            ("heading", "Quarterly Report"),
            ("paragraph", "Intro text"),
            ("paragraph", "Important"),
            ("checkbox", "☑ Reviewed"),
            ("table-cell", "Name"),
            ("table-cell", "Value"),
            ("table-cell", "Revenue"),
            ("table-cell", "10"),
            ("paragraph", "Closing"),
        ]
        assert "empty-line" in [chunk.kind for chunk in chunks]
        important = next(chunk for chunk in chunks if chunk.original_text == "Important")
        assert important.style.bold is True

    def test_soft_line_break_in_real_docx(self):
        document = Document()
        paragraph = document.add_paragraph()
        paragraph.add_run("Line one").add_break()
        paragraph.add_run("Line two")
        buffer = io.BytesIO()
        document.save(buffer)

        chunks = RichDocumentExtractor.with_default_engine().extract(buffer.getvalue())
        texts = [(chunk.kind, chunk.original_text) for chunk in chunks if chunk.kind != "empty-line"]
        assert texts == [("paragraph", "Line one\nLine two")]

    def test_vertical_merge_in_real_docx(self):
        document = Document()
        table = document.add_table(rows=2, cols=2)
        table.cell(0, 0).merge(table.cell(1, 0)).text = "A"
        table.cell(0, 1).text = "B"
        table.cell(1, 1).text = "C"
        buffer = io.BytesIO()
        document.save(buffer)

        chunks = RichDocumentExtractor.with_default_engine().extract(buffer.getvalue())
        cells = [chunk for chunk in chunks if chunk.kind == "table-cell"]
        assert [(chunk.original_text, chunk.style.row, chunk.style.col) for chunk in cells] == [
            ("A", 0, 0),
            ("B", 0, 1),
            ("C", 1, 1),
        ]

    def test_corrupted_docx(self):
        with pytest.raises(ExtractionError):
            RichDocumentExtractor.with_default_engine().extract(b"not a zip archive")


class TestGroupFragments:
    def test_same_line_then_new_line(self):
        fragments = [
            TextFragment("Hello", 100.0),
            TextFragment("world", 100.0),
            TextFragment("Next", 100.0 + LINE_Y_THRESHOLD + 10),
        ]
        assert group_fragments_into_lines(fragments) == ["Hello world", "Next"]

    def test_small_jitter_stays_on_line(self):
        fragments = [TextFragment("a", 50.0), TextFragment("b", 52.5)]
        assert group_fragments_into_lines(fragments) == ["a b"]

    def test_page_boundary_closes_line(self):
        fragments = [TextFragment("end", 700.0, page=0), TextFragment("start", 700.0, page=1)]
        assert group_fragments_into_lines(fragments) == ["end", "start"]

    def test_blank_fragments_give_blank_line(self):
        fragments = [TextFragment("Top", 10.0), TextFragment("  ", 40.0), TextFragment("Bottom", 70.0)]
        assert group_fragments_into_lines(fragments) == ["Top", "", "Bottom"]

    def test_no_fragments(self):
        assert group_fragments_into_lines([]) == []


class TestFixedLayoutExtractor:
    def test_lines_from_real_pdf(self):
        data = build_pdf([(72, "First line"), (120, "Second line")])
        chunks = FixedLayoutExtractor().extract(data)
        assert summary(chunks) == [
            ("paragraph", "First line"),
            ("paragraph", "Second line"),
        ]

    def test_image_only_pdf_returns_no_chunks(self):
        document = fitz.open()
        document.new_page()
        data = document.tobytes()
        document.close()
        assert FixedLayoutExtractor().extract(data) == []

    def test_corrupted_pdf(self):
        with pytest.raises(ExtractionError):
            FixedLayoutExtractor().extract(b"this is not a pdf")

    def test_idempotent(self):
        data = build_pdf([(72, "Alpha"), (140, "Beta")])
        assert FixedLayoutExtractor().extract(data) == FixedLayoutExtractor().extract(data)


class TestDispatch:
    @pytest.mark.parametrize(
        "filename,mime,expected",
        [
            ("notes.txt", None, DocumentFormat.LINE_TEXT),
            ("Report.DOCX", None, DocumentFormat.RICH_DOCUMENT),
            ("scan.pdf", "application/octet-stream", DocumentFormat.FIXED_LAYOUT),
            (None, "application/pdf", DocumentFormat.FIXED_LAYOUT),
            ("upload", DOCX_MIME_TYPE, DocumentFormat.RICH_DOCUMENT),
            (None, "text/plain; charset=utf-8", DocumentFormat.LINE_TEXT),
        ],
    )
    def test_detect_format(self, filename, mime, expected):
        assert detect_format(filename, mime) is expected

    @pytest.mark.parametrize("filename,mime", [("slides.pptx", None), (None, None), ("a.png", "image/png")])
    def test_unsupported(self, filename, mime):
        with pytest.raises(UnsupportedFormatError):
            detect_format(filename, mime)

    def test_extract_document_payload(self):
        document = extract_document(b"Title\nBody", "notes.txt")
        assert document.mime_type == "text/plain"
        assert document.document_format == "line-text"
        assert base64.b64decode(document.file_bytes_base64) == b"Title\nBody"
        assert [chunk.kind for chunk in document.chunks] == ["heading", "paragraph"]

    def test_scanned_pdf_signals_vision(self):
        pdf = fitz.open()
        pdf.new_page()
        data = pdf.tobytes()
        pdf.close()
        document = extract_document(data, "scan.pdf")
        assert document.chunks == []
        assert document.file_bytes_base64
        assert document.needs_vision is True


class TestPastedText:
    def test_no_heading_promotion(self):
        chunks = chunks_from_text("First\n\nSecond")
        assert [chunk.kind for chunk in chunks] == ["paragraph", "empty-line", "paragraph"]

    def test_document_from_text_never_needs_vision(self):
        document = document_from_text("")
        assert document.chunks == []
        assert document.needs_vision is False
