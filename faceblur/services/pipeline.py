"""Detect, redact and persist faces for a single stored image."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence

from PIL import Image

from faceblur.errors import DetectionError, ErrorKind, InvariantViolation
from faceblur.face.anonymize import FaceRedactor
from faceblur.face.geometry import clamp, normalize
from faceblur.face.regions import FaceRegion
from faceblur.imgproc.codec import DEFAULT_JPEG_QUALITY, JPEG_CONTENT_TYPE, decode_image, encode_jpeg
from faceblur.metrics.prometheus_exporter import faces_blurred_total, faces_skipped_total, images_total
from faceblur.services.stages import PipelineState
from faceblur.storage.backend import BlobRef, BlobStorage

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = (".jpg", ".jpeg")

# Detection failures of these kinds are treated as "no faces found".
DEGRADED_DETECTION_KINDS = frozenset({ErrorKind.TRANSIENT})


class FaceDetector(Protocol):
    """Anything able to locate faces in a stored blob."""

    async def detect(self, ref: BlobRef, data: bytes | None = None) -> Sequence[FaceRegion]: ...


@dataclass(slots=True)
class RedactionResult:
    """Encoded output image and the number of regions blurred into it."""

    image_bytes: bytes
    faces_blurred: int


@dataclass(slots=True)
class PipelineOutcome:
    """Report of one pipeline run."""

    source: BlobRef
    state: PipelineState = PipelineState.RECEIVED
    faces_found: int = 0
    faces_blurred: int = 0
    destination: BlobRef | None = None
    skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": str(self.source),
            "state": self.state.value,
            "facesFound": self.faces_found,
            "facesBlurred": self.faces_blurred,
            "destination": str(self.destination) if self.destination else None,
            "skipReason": self.skip_reason,
        }


def is_supported_image(name: str) -> bool:
    """Return ``True`` for ``.jpg``/``.jpeg`` names, ignoring case."""

    return name.lower().endswith(ACCEPTED_EXTENSIONS)


def redact_faces(
    image: Image.Image,
    faces: Sequence[FaceRegion],
    redactor: FaceRedactor,
) -> tuple[Image.Image, int]:
    """
    Blur every face into ``image`` in the given order.

    Each step hands the working image to the next, so overlapping regions are
    blurred again by later faces. A face whose coordinates cannot be converted
    or blurred is logged and skipped. Returns the final image and the number of
    regions actually blurred.
    """

    width, height = image.size
    working = image
    blurred = 0

    for index, face in enumerate(faces, start=1):
        try:
            rect = clamp(normalize(face, width, height), width, height)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("Skipping face %d: %s", index, exc)
            faces_skipped_total.inc()
            continue

        if rect.is_empty:
            logger.info("Face %d falls outside the %dx%d image; nothing to blur", index, width, height)
            continue

        logger.info(
            "Blurring face %d: region %d,%d %dx%d",
            index,
            rect.left,
            rect.top,
            rect.width,
            rect.height,
        )
        try:
            working = redactor.redact(working, rect)
        except (ValueError, OSError) as exc:
            logger.warning("Failed to blur face %d: %s", index, exc)
            faces_skipped_total.inc()
            continue

        if working.size != (width, height):
            raise InvariantViolation(
                f"Working image changed size from {width}x{height} to {working.width}x{working.height}.",
            )
        blurred += 1

    return working, blurred


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedactionPipeline:
    """Orchestrates detection, redaction and upload of one image per call."""

    def __init__(
        self,
        detector: FaceDetector,
        storage: BlobStorage,
        *,
        destination_container: str,
        redactor: FaceRedactor | None = None,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._detector = detector
        self._storage = storage
        self._destination_container = destination_container
        self._redactor = redactor or FaceRedactor()
        self._jpeg_quality = jpeg_quality
        self._clock = clock

    async def process(self, source: BlobRef) -> PipelineOutcome:
        """Run the pipeline for ``source``; fatal errors are re-raised."""

        outcome = PipelineOutcome(source=source)
        logger.info("Processing blob %s", source)

        if not is_supported_image(source.name):
            logger.info("Skipping non-JPG file: %s", source.name)
            return self._finish(outcome, "skipped", skip_reason="unsupported_extension")
        if source.container == self._destination_container:
            logger.info("Skipping %s: already in the destination container", source)
            return self._finish(outcome, "skipped", skip_reason="destination_container")

        try:
            self._advance(outcome, PipelineState.DECODING)
            # Storage without a public URL has to send the bytes to the detector,
            # so fetch them once up front and reuse them for decoding.
            data: bytes | None = None
            if self._storage.blob_url(source) is None:
                data = await self._download(source)
            faces = await self._detect(source, data)
            outcome.faces_found = len(faces)
            logger.info("Detected %d faces in %s", len(faces), source)
            if not faces:
                self._advance(outcome, PipelineState.NO_FACES_SKIP)
                return self._finish(outcome, "no_faces", skip_reason="no_faces")

            if data is None:
                data = await self._download(source)
            image = await asyncio.to_thread(decode_image, data)
            logger.info("Image dimensions: %dx%d", image.width, image.height)

            self._advance(outcome, PipelineState.REDACTING)
            working, blurred = await asyncio.to_thread(redact_faces, image, faces, self._redactor)
            outcome.faces_blurred = blurred

            self._advance(outcome, PipelineState.ENCODING)
            encoded = await asyncio.to_thread(encode_jpeg, working, self._jpeg_quality)
            logger.info("Processed image size: %d bytes", len(encoded))

            outcome.destination = await self._persist(source, RedactionResult(encoded, blurred))
        except Exception:
            logger.exception("Face blur failed for %s in state %s", source, outcome.state.value)
            outcome.state = PipelineState.FAILED
            images_total.labels(outcome="failed").inc()
            raise

        faces_blurred_total.inc(outcome.faces_blurred)
        return self._finish(outcome, "blurred")

    async def _download(self, source: BlobRef) -> bytes:
        data = await self._storage.download(source)
        logger.info("Downloaded image size: %d bytes", len(data))
        return data

    async def _detect(self, source: BlobRef, data: bytes | None) -> list[FaceRegion]:
        try:
            return list(await self._detector.detect(source, data))
        except DetectionError as exc:
            if exc.kind not in DEGRADED_DETECTION_KINDS:
                raise
            logger.warning("Returning no faces for %s due to detection error: %s", source, exc)
            return []

    async def _persist(self, source: BlobRef, result: RedactionResult) -> BlobRef:
        destination = BlobRef(self._destination_container, source.name)
        await self._storage.ensure_container(destination.container)

        metadata = {
            "processed": "true",
            "facesBlurred": str(result.faces_blurred),
            "processedAt": self._clock().isoformat(),
        }
        logger.info("Uploading processed image to: %s", destination)
        await self._storage.upload(
            destination,
            result.image_bytes,
            content_type=JPEG_CONTENT_TYPE,
            metadata=metadata,
        )
        return destination

    @staticmethod
    def _advance(outcome: PipelineOutcome, state: PipelineState) -> None:
        logger.debug("%s: %s -> %s", outcome.source, outcome.state.value, state.value)
        outcome.state = state

    def _finish(self, outcome: PipelineOutcome, label: str, *, skip_reason: str | None = None) -> PipelineOutcome:
        outcome.skip_reason = skip_reason
        self._advance(outcome, PipelineState.DONE)
        images_total.labels(outcome=label).inc()
        return outcome
