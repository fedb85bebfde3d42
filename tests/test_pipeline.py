"""Tests for the redaction pipeline orchestration."""

from __future__ import annotations

import math
from io import BytesIO

import pytest
import pytest_mock
from PIL import Image, ImageStat

from conftest import FIXED_NOW, FakeDetector, InMemoryStorage, jpeg_bytes, noise_image
from faceblur.errors import (
    DetectionError,
    ErrorKind,
    ImageDecodeError,
    ImageEncodeError,
    InvariantViolation,
    StorageError,
)
from faceblur.face.anonymize import FaceRedactor
from faceblur.face.regions import AbsolutePixels, Rectangle, RelativeFraction
from faceblur.services.pipeline import RedactionPipeline, is_supported_image, redact_faces
from faceblur.services.stages import PipelineState
from faceblur.storage.backend import BlobRef

SOURCE = BlobRef("uploads", "people/photo.jpg")


def _region_variance(image: Image.Image, box: tuple[int, int, int, int]) -> float:
    return sum(ImageStat.Stat(image.crop(box).convert("RGB")).var) / 3


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("photo.jpg", True),
        ("PHOTO.JPEG", True),
        ("dir/a.JpG", True),
        ("photo.png", False),
        ("photo.jpg.txt", False),
        ("jpg", False),
    ],
)
def test_is_supported_image(name: str, expected: bool) -> None:
    assert is_supported_image(name) is expected


@pytest.mark.asyncio
async def test_single_face_end_to_end(storage: InMemoryStorage, make_pipeline) -> None:
    source_image = noise_image(800, 600)
    storage.put(SOURCE, jpeg_bytes(source_image))
    detector = FakeDetector([AbsolutePixels(left=100, top=50, width=120, height=140)])

    outcome = await make_pipeline(detector).process(SOURCE)

    assert outcome.state is PipelineState.DONE
    assert outcome.faces_found == 1
    assert outcome.faces_blurred == 1
    assert outcome.destination == BlobRef("processed-images", "people/photo.jpg")

    [(ref, data, content_type, metadata)] = storage.uploads
    assert ref == outcome.destination
    assert content_type == "image/jpeg"
    assert metadata == {
        "processed": "true",
        "facesBlurred": "1",
        "processedAt": FIXED_NOW.isoformat(),
    }

    with Image.open(BytesIO(data)) as output:
        assert output.format == "JPEG"
        assert output.size == (800, 600)
        face_box = (100, 50, 220, 190)
        assert _region_variance(output, face_box) < _region_variance(source_image, face_box) / 10


@pytest.mark.asyncio
async def test_no_faces_skips_download_and_write(storage: InMemoryStorage, make_pipeline) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(50, 50)))

    outcome = await make_pipeline(FakeDetector([])).process(SOURCE)

    assert outcome.state is PipelineState.DONE
    assert outcome.skip_reason == "no_faces"
    assert outcome.faces_blurred == 0
    assert storage.uploads == []
    assert storage.downloads == []


@pytest.mark.asyncio
async def test_unsupported_extension_makes_no_provider_calls(storage: InMemoryStorage, make_pipeline) -> None:
    detector = FakeDetector([AbsolutePixels(0, 0, 10, 10)])

    outcome = await make_pipeline(detector).process(BlobRef("uploads", "photo.png"))

    assert outcome.state is PipelineState.DONE
    assert outcome.skip_reason == "unsupported_extension"
    assert detector.calls == []
    assert storage.downloads == []
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_destination_container_events_are_ignored(storage: InMemoryStorage, make_pipeline) -> None:
    detector = FakeDetector([AbsolutePixels(0, 0, 10, 10)])

    outcome = await make_pipeline(detector).process(BlobRef("processed-images", "photo.jpg"))

    assert outcome.skip_reason == "destination_container"
    assert detector.calls == []


@pytest.mark.asyncio
async def test_detection_access_denied_is_fatal(storage: InMemoryStorage, make_pipeline) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(50, 50)))
    error = DetectionError(
        "Computer Vision service access denied. Check the subscription key.",
        ErrorKind.UNAUTHORIZED,
    )

    with pytest.raises(DetectionError, match="access denied"):
        await make_pipeline(FakeDetector(error=error)).process(SOURCE)

    assert storage.uploads == []


@pytest.mark.asyncio
async def test_transient_detection_error_degrades_to_no_faces(storage: InMemoryStorage, make_pipeline) -> None:
    error = DetectionError("Computer Vision error 503", ErrorKind.TRANSIENT)

    outcome = await make_pipeline(FakeDetector(error=error)).process(SOURCE)

    assert outcome.skip_reason == "no_faces"
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_missing_source_blob_is_fatal(storage: InMemoryStorage, make_pipeline) -> None:
    detector = FakeDetector([AbsolutePixels(0, 0, 10, 10)])

    with pytest.raises(StorageError) as exc_info:
        await make_pipeline(detector).process(SOURCE)

    assert exc_info.value.kind is ErrorKind.NOT_FOUND
    assert "uploads/people/photo.jpg" in str(exc_info.value)
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_undecodable_source_is_fatal(storage: InMemoryStorage, make_pipeline) -> None:
    storage.put(SOURCE, b"definitely not a jpeg")
    detector = FakeDetector([AbsolutePixels(0, 0, 10, 10)])

    with pytest.raises(ImageDecodeError):
        await make_pipeline(detector).process(SOURCE)

    assert storage.uploads == []


@pytest.mark.asyncio
async def test_bad_face_is_skipped_and_rest_processed(storage: InMemoryStorage, make_pipeline) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(200, 200)))
    detector = FakeDetector(
        [
            AbsolutePixels(left=math.nan, top=0, width=10, height=10),
            RelativeFraction(left=0.25, top=0.25, width=0.5, height=0.5),
            AbsolutePixels(left=500, top=500, width=20, height=20),
        ],
    )

    outcome = await make_pipeline(detector).process(SOURCE)

    assert outcome.faces_found == 3
    assert outcome.faces_blurred == 1
    assert storage.uploads[0][3]["facesBlurred"] == "1"


def test_overlapping_faces_are_deterministic_for_same_order() -> None:
    faces = [AbsolutePixels(10, 10, 60, 60), AbsolutePixels(40, 40, 60, 60)]
    redactor = FaceRedactor(6.0)

    first, _ = redact_faces(noise_image(120, 120), faces, redactor)
    second, _ = redact_faces(noise_image(120, 120), faces, redactor)
    reversed_order, _ = redact_faces(noise_image(120, 120), list(reversed(faces)), redactor)

    assert first.tobytes() == second.tobytes()
    assert first.tobytes() != reversed_order.tobytes()


def test_redact_faces_counts_only_blurred_regions() -> None:
    image = noise_image(40, 40)
    before = image.tobytes()

    result, blurred = redact_faces(image, [AbsolutePixels(45, 0, 10, 10)], FaceRedactor())

    assert blurred == 0
    assert result.tobytes() == before


class ShrinkingRedactor(FaceRedactor):
    def redact(self, image: Image.Image, rect: Rectangle) -> Image.Image:
        raise InvariantViolation("Working image changed size from 50x50 to 49x50.")


@pytest.mark.asyncio
async def test_invariant_violation_while_redacting_is_fatal(storage: InMemoryStorage) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(50, 50)))
    pipeline = RedactionPipeline(
        FakeDetector([AbsolutePixels(5, 5, 10, 10)]),
        storage,
        destination_container="processed-images",
        redactor=ShrinkingRedactor(),
    )

    with pytest.raises(InvariantViolation, match="changed size"):
        await pipeline.process(SOURCE)

    assert storage.uploads == []
    assert "processed-images" not in storage.containers


@pytest.mark.asyncio
async def test_encode_failure_is_fatal(
    storage: InMemoryStorage,
    make_pipeline,
    mocker: pytest_mock.MockerFixture,
) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(50, 50)))
    mocker.patch(
        "faceblur.services.pipeline.encode_jpeg",
        side_effect=ImageEncodeError("Failed to encode output image: disk full"),
    )

    with pytest.raises(ImageEncodeError, match="disk full"):
        await make_pipeline(FakeDetector([AbsolutePixels(5, 5, 10, 10)])).process(SOURCE)

    assert storage.uploads == []


@pytest.mark.asyncio
async def test_storage_without_url_downloads_source_once() -> None:
    storage = InMemoryStorage(publishes_urls=False)
    data = jpeg_bytes(noise_image(64, 64))
    storage.put(SOURCE, data)
    detector = FakeDetector([AbsolutePixels(4, 4, 20, 20)])
    pipeline = RedactionPipeline(detector, storage, destination_container="processed-images")

    outcome = await pipeline.process(SOURCE)

    assert outcome.faces_blurred == 1
    assert storage.downloads == [SOURCE]
    assert detector.received == [data]


@pytest.mark.asyncio
async def test_storage_with_url_lets_detector_fetch_the_image(storage: InMemoryStorage, make_pipeline) -> None:
    storage.put(SOURCE, jpeg_bytes(noise_image(64, 64)))
    detector = FakeDetector([AbsolutePixels(4, 4, 20, 20)])

    await make_pipeline(detector).process(SOURCE)

    assert detector.received == [None]
    assert storage.downloads == [SOURCE]
