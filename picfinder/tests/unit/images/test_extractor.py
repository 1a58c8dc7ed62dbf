"""
Tests for the text extractor.

The OCR engine is replaced by in-process recognizers; Tesseract itself is
only exercised through a mocked pytesseract call.
"""

from unittest.mock import patch

import pytest
from PIL import Image

from picfinder.core.images.config import TreeGrant
from picfinder.core.images.extractor import (
    TesseractRecognizer,
    TextExtractor,
    TextRecognizer,
    clean_text,
    create_extractor,
)
from picfinder.core.images.storage import GrantedTreeStorage, build_document_uri


class RecordingRecognizer(TextRecognizer):
    """Returns fixed text and remembers the images it saw."""

    def __init__(self, text: str = "hello world"):
        self.text = text
        self.seen = []

    def recognize(self, image):
        self.seen.append((image.mode, image.size))
        return self.text


class FailingRecognizer(TextRecognizer):
    def recognize(self, image):
        raise RuntimeError("engine crashed")


@pytest.fixture
def png_file(tmp_path):
    path = tmp_path / "note.png"
    Image.new("RGB", (40, 20), color="white").save(path)
    return path


class TestCleanText:
    """Tests for clean_text."""

    def test_strips_whitespace_and_nul(self):
        assert clean_text("  cat\x00 on mat \n\x0c") == "cat on mat"

    def test_none_and_empty(self):
        assert clean_text(None) == ""
        assert clean_text("") == ""


class TestTextExtractor:
    """Tests for TextExtractor."""

    def test_extracts_text(self, png_file):
        recognizer = RecordingRecognizer("  Invoice 42 \n")
        extractor = TextExtractor(recognizer)

        assert extractor.extract_text_sync(str(png_file)) == "Invoice 42"
        assert recognizer.seen == [("RGB", (40, 20))]

    def test_converts_palette_and_alpha_images(self, tmp_path):
        """Images that are not RGB/L should be converted to RGB."""
        path = tmp_path / "alpha.png"
        Image.new("RGBA", (10, 10), color=(255, 0, 0, 128)).save(path)
        recognizer = RecordingRecognizer()

        TextExtractor(recognizer).extract_text_sync(str(path))

        assert recognizer.seen[0][0] == "RGB"

    def test_grayscale_kept(self, tmp_path):
        path = tmp_path / "gray.bmp"
        Image.new("L", (10, 10)).save(path)
        recognizer = RecordingRecognizer()

        TextExtractor(recognizer).extract_text_sync(str(path))

        assert recognizer.seen[0][0] == "L"

    def test_missing_file_returns_empty(self, tmp_path):
        extractor = TextExtractor(RecordingRecognizer())
        assert extractor.extract_text_sync(str(tmp_path / "gone.png")) == ""

    def test_undecodable_file_returns_empty(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"definitely not a jpeg")
        recognizer = RecordingRecognizer()

        assert TextExtractor(recognizer).extract_text_sync(str(path)) == ""
        assert recognizer.seen == []

    def test_recognizer_failure_returns_empty(self, png_file):
        assert TextExtractor(FailingRecognizer()).extract_text_sync(str(png_file)) == ""

    def test_empty_address_returns_empty(self):
        assert TextExtractor(RecordingRecognizer()).extract_text_sync("") == ""

    def test_tree_document(self, tmp_path, png_file):
        """Tree documents should be read through storage access."""
        storage = GrantedTreeStorage({"notes": TreeGrant(id="notes", path=str(tmp_path))})
        extractor = TextExtractor(RecordingRecognizer("from tree"), storage=storage)

        assert extractor.extract_text_sync(build_document_uri("notes", "note.png")) == "from tree"

    def test_tree_document_without_storage(self):
        extractor = TextExtractor(RecordingRecognizer())
        assert extractor.extract_text_sync(build_document_uri("notes", "note.png")) == ""

    @pytest.mark.asyncio
    async def test_async_extract(self, png_file):
        """extract_text should run the blocking work off the event loop."""
        extractor = TextExtractor(RecordingRecognizer("async text"))
        assert await extractor.extract_text(str(png_file)) == "async text"


class TestTesseractRecognizer:
    """Tests for the pytesseract-backed recognizer."""

    def test_passes_language_and_timeout(self):
        recognizer = TesseractRecognizer(language="eng+deu", timeout=5, config="--psm 6")
        image = Image.new("RGB", (5, 5))

        with patch("picfinder.core.images.extractor.pytesseract.image_to_string",
                   return_value="text") as mock_ocr:
            assert recognizer.recognize(image) == "text"

        mock_ocr.assert_called_once_with(image, lang="eng+deu", config="--psm 6", timeout=5)

    def test_timeout_yields_empty_text(self, png_file):
        """A Tesseract timeout should be absorbed by the extractor."""
        extractor = create_extractor(timeout=1)
        with patch("picfinder.core.images.extractor.pytesseract.image_to_string",
                   side_effect=RuntimeError("Tesseract process timeout")):
            assert extractor.extract_text_sync(str(png_file)) == ""
