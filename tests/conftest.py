"""Shared fixtures: in-memory collaborators and synthetic images."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from io import BytesIO
from typing import Mapping, Sequence

import pytest
from PIL import Image

from faceblur.config.settings import Settings, get_settings
from faceblur.errors import ErrorKind, StorageError
from faceblur.face.anonymize import FaceRedactor
from faceblur.face.regions import FaceRegion
from faceblur.services.pipeline import RedactionPipeline
from faceblur.storage.backend import BlobRef

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeDetector:
    """Returns canned faces or raises a canned error."""

    def __init__(self, faces: Sequence[FaceRegion] = (), error: Exception | None = None) -> None:
        self.faces = list(faces)
        self.error = error
        self.calls: list[BlobRef] = []
        self.received: list[bytes | None] = []

    async def detect(self, ref: BlobRef, data: bytes | None = None) -> list[FaceRegion]:
        self.calls.append(ref)
        self.received.append(data)
        if self.error is not None:
            raise self.error
        return list(self.faces)

    async def close(self) -> None:
        return None


class InMemoryStorage:
    """
    Dictionary-backed storage recording every call.

    With ``publishes_urls`` off it behaves like local storage, which has no URL
    a remote detector could fetch.
    """

    def __init__(self, publishes_urls: bool = True) -> None:
        self.publishes_urls = publishes_urls
        self.blobs: dict[BlobRef, bytes] = {}
        self.uploads: list[tuple[BlobRef, bytes, str, dict[str, str]]] = []
        self.containers: set[str] = set()
        self.downloads: list[BlobRef] = []

    def put(self, ref: BlobRef, data: bytes) -> None:
        self.containers.add(ref.container)
        self.blobs[ref] = data

    async def download(self, ref: BlobRef) -> bytes:
        self.downloads.append(ref)
        if ref not in self.blobs:
            raise StorageError(f"Source blob not found: {ref}", ErrorKind.NOT_FOUND, resource=str(ref))
        return self.blobs[ref]

    async def upload(
        self,
        ref: BlobRef,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        self.blobs[ref] = data
        self.uploads.append((ref, data, content_type, dict(metadata)))

    async def ensure_container(self, container: str) -> None:
        self.containers.add(container)

    def blob_url(self, ref: BlobRef) -> str | None:
        return f"memory://{ref}" if self.publishes_urls else None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def noise_image(width: int, height: int, seed: int = 7) -> Image.Image:
    """Return an RGB image of uniform random noise."""

    rng = random.Random(seed)
    return Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))


def jpeg_bytes(image: Image.Image, quality: int = 95) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def make_pipeline(storage: InMemoryStorage):
    def _factory(detector: FakeDetector) -> RedactionPipeline:
        return RedactionPipeline(
            detector,
            storage,
            destination_container="processed-images",
            redactor=FaceRedactor(20.0),
            jpeg_quality=90,
            clock=lambda: FIXED_NOW,
        )

    return _factory


@pytest.fixture
def local_settings(tmp_path) -> Settings:
    return Settings(
        storage_backend="local",
        local_storage_root=str(tmp_path / "blobs"),
        computer_vision_endpoint="https://vision.test",
        computer_vision_key="test-key",
        function_key="secret",
    )
