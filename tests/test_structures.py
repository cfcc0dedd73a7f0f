"""Tests for the chunk model and session state."""

import pytest

from retrans.structures import (
    CHUNK_KINDS,
    EMPTY_LINE,
    HEADING,
    TABLE_CELL,
    TONE_INSTRUCTIONS,
    Chunk,
    ChunkStyle,
    ExtractedDocument,
    GlossaryItem,
    Tone,
    TranslationJob,
)


class TestTone:
    def test_taxonomy_is_closed(self):
        assert {tone.value for tone in Tone} == {
            "professional",
            "legal",
            "technical",
            "medical",
            "creative",
        }

    def test_every_tone_has_a_distinct_instruction(self):
        assert set(TONE_INSTRUCTIONS) == set(Tone)
        instructions = [tone.instruction for tone in Tone]
        assert len(set(instructions)) == len(instructions)


class TestChunk:
    def test_kinds(self):
        assert CHUNK_KINDS == (
            "heading",
            "paragraph",
            "table-cell",
            "checkbox",
            "empty-line",
        )

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            Chunk(chunk_id="x", kind="list-item", original_text="a")

    def test_empty_text_only_for_empty_line_and_cells(self):
        Chunk(chunk_id="a", kind=EMPTY_LINE, original_text="")
        Chunk(chunk_id="b", kind=TABLE_CELL, original_text="")
        with pytest.raises(ValueError):
            Chunk(chunk_id="c", kind=HEADING, original_text="")

    def test_with_translation_returns_new_chunk(self):
        chunk = Chunk(chunk_id="a", kind=HEADING, original_text="Title")
        translated = chunk.with_translation("Titre")
        assert translated.translated_text == "Titre"
        assert chunk.translated_text is None

    def test_empty_line_translation_is_always_empty(self):
        chunk = Chunk(chunk_id="a", kind=EMPTY_LINE, original_text="")
        assert chunk.with_translation("something").translated_text == ""

    def test_to_dict_omits_unset_style(self):
        chunk = Chunk(
            chunk_id="a",
            kind=HEADING,
            original_text="Title",
            style=ChunkStyle(level=2, bold=True),
        )
        assert chunk.to_dict() == {
            "id": "a",
            "kind": "heading",
            "originalText": "Title",
            "style": {"level": 2, "bold": True},
        }


class TestGlossaryItem:
    def test_parse(self):
        item = GlossaryItem.parse(" invoice = facture ")
        assert item == GlossaryItem(original_term="invoice", target_term="facture")

    @pytest.mark.parametrize("value", ["invoice", "=facture", "invoice="])
    def test_parse_rejects_incomplete_pairs(self, value):
        with pytest.raises(ValueError):
            GlossaryItem.parse(value)


class TestExtractedDocument:
    def test_needs_vision_when_no_chunks(self):
        document = ExtractedDocument(chunks=[], file_bytes_base64="AAAA", mime_type="application/pdf")
        assert document.needs_vision is True

    def test_needs_vision_when_only_blank_chunks(self):
        document = ExtractedDocument(
            chunks=[Chunk(chunk_id="a", kind=EMPTY_LINE, original_text="")],
            file_bytes_base64="AAAA",
            mime_type="application/pdf",
        )
        assert document.needs_vision is True

    def test_no_vision_without_bytes(self):
        document = ExtractedDocument(chunks=[], file_bytes_base64="", mime_type="text/plain")
        assert document.needs_vision is False


class TestTranslationJob:
    def test_job_starts_from_document_chunks(self):
        chunk = Chunk(chunk_id="a", kind=HEADING, original_text="Title")
        document = ExtractedDocument(chunks=[chunk], file_bytes_base64="", mime_type="text/plain")
        job = TranslationJob(document=document, target_language="fr")
        assert job.chunks == [chunk]
        assert job.source_language == "auto"
        assert job.status == "pending"

    def test_cancel(self):
        document = ExtractedDocument(chunks=[], file_bytes_base64="", mime_type="text/plain")
        job = TranslationJob(document=document, target_language="fr")
        job.cancel()
        assert job.cancelled is True
