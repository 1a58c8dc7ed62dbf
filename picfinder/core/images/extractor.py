"""
Text Extractor

Turns an image address into searchable text using an OCR recognizer.

``extract_text`` never raises: unreadable files, undecodable images,
recognizer failures and timeouts all produce ``""``, which callers treat as
"no text found".  Recognition is CPU-bound and runs in the default thread
pool so the event loop (and live search) stay responsive.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

import pytesseract
from PIL import Image, UnidentifiedImageError

from picfinder.core.images.addressing import Address, TreeAddress, parse_address
from picfinder.core.images.storage import StorageAccess

logger = logging.getLogger(__name__)


def clean_text(text: Optional[str]) -> str:
    """Strip surrounding whitespace and NUL characters from OCR output."""
    if not text:
        return ""
    return text.replace('\x00', '').strip()


class TextRecognizer(ABC):
    """
    OCR capability used by the extractor.

    Implementations may raise on failure; the extractor absorbs it.
    """

    @abstractmethod
    def recognize(self, image: Image.Image) -> str:
        """Return the text found in a decoded image."""


class TesseractRecognizer(TextRecognizer):
    """Recognizer backed by the Tesseract engine (via pytesseract)."""

    def __init__(
        self,
        language: str = "eng",
        timeout: float = 0,
        tesseract_cmd: Optional[str] = None,
        config: str = "",
    ):
        """
        Args:
            language: Tesseract language code(s), e.g. "eng+deu"
            timeout: Seconds before a single recognition is aborted (0 = none)
            tesseract_cmd: Path to the tesseract binary if not on PATH
            config: Extra tesseract command-line options
        """
        self.language = language
        self.timeout = timeout
        self.config = config
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def recognize(self, image: Image.Image) -> str:
        return pytesseract.image_to_string(
            image,
            lang=self.language,
            config=self.config,
            timeout=self.timeout,
        )


class TextExtractor:
    """
    Extraction pipeline: load image -> decode -> recognize -> clean.

    Handles both address kinds: paths are opened from disk, tree documents
    are read through the storage collaborator.
    """

    def __init__(self, recognizer: TextRecognizer, storage: Optional[StorageAccess] = None):
        self.recognizer = recognizer
        self.storage = storage

    def _load_image(self, address: Address) -> Image.Image:
        if isinstance(address, TreeAddress):
            if self.storage is None:
                raise RuntimeError(f"No storage access configured for {address.value}")
            source = io.BytesIO(self.storage.read_bytes(address.value))
        else:
            source = address.value

        with Image.open(source) as image:
            image.load()
            if image.mode not in ("RGB", "L"):
                return image.convert("RGB")
            return image.copy()

    def extract_text_sync(self, image_address: Union[str, Address]) -> str:
        """
        Extract text from an image (blocking).

        Args:
            image_address: Absolute path or document URI

        Returns:
            Extracted text, or "" on any failure
        """
        try:
            address = parse_address(image_address)
            image = self._load_image(address)
            try:
                text = clean_text(self.recognizer.recognize(image))
            finally:
                image.close()
            logger.debug(f"Extracted {len(text)} chars from {address.value}")
            return text
        except FileNotFoundError:
            logger.warning(f"Image file does not exist: {image_address}")
        except UnidentifiedImageError:
            logger.warning(f"Could not decode image: {image_address}")
        except Exception as e:
            logger.error(f"Error extracting text from image {image_address}: {e}")
        return ""

    async def extract_text(self, image_address: Union[str, Address]) -> str:
        """Extract text without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract_text_sync, image_address)


def create_extractor(
    storage: Optional[StorageAccess] = None,
    language: str = "eng",
    timeout: float = 0,
    tesseract_cmd: Optional[str] = None,
) -> TextExtractor:
    """Create a Tesseract-backed extractor."""
    recognizer = TesseractRecognizer(language=language, timeout=timeout, tesseract_cmd=tesseract_cmd)
    return TextExtractor(recognizer, storage=storage)
