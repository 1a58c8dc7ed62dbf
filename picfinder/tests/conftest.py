"""
Shared fixtures for the image index tests.

Provides an in-memory index database, a repository bound to it, a fake
extractor (no OCR engine needed) and helpers to create image files with
controlled modification times.
"""
import os
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from picfinder.core.database import init_db
from picfinder.core.images.enumerator import ImageEnumerator
from picfinder.core.images.repository import ImageRepository


class FakeExtractor:
    """Stands in for TextExtractor: text comes from a name -> text mapping."""

    def __init__(self, texts: Optional[Dict[str, str]] = None, fail_on: Optional[Set[str]] = None):
        self.texts = dict(texts or {})
        self.fail_on = set(fail_on or ())
        self.calls: List[str] = []

    async def extract_text(self, image_address) -> str:
        address = str(image_address)
        self.calls.append(address)
        name = Path(address).name
        if name in self.fail_on:
            raise RuntimeError(f"cannot decode {name}")
        return self.texts.get(name, "")

    @property
    def extracted_names(self) -> List[str]:
        return [Path(call).name for call in self.calls]


@pytest.fixture
def database():
    """In-memory index database (tables created)."""
    db = init_db("sqlite:///:memory:", max_retries=1, retry_delay=0)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def repository(database):
    """ImageRepository bound to the in-memory database."""
    return ImageRepository(database.session_factory)


@pytest.fixture
def enumerator():
    """Path-only enumerator with default extensions and depth."""
    return ImageEnumerator()


@pytest.fixture
def make_extractor():
    """Factory for FakeExtractor(texts=..., fail_on=...)."""
    return FakeExtractor


@pytest.fixture
def make_image():
    """
    Factory writing an image file with a given mtime (epoch millis).

    Content is placeholder bytes; tests that need decodable images build
    them with Pillow instead.
    """

    def _make(path: Path, mtime_millis: int = 1_000, content: bytes = b"not really an image") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        set_mtime(path, mtime_millis)
        return path

    return _make


def set_mtime(path: Path, mtime_millis: int) -> None:
    ns = mtime_millis * 1_000_000
    os.utime(path, ns=(ns, ns))


@pytest.fixture
def touch():
    """Change an existing file's mtime (epoch millis)."""
    return set_mtime
