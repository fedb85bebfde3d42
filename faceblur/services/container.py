"""Construction of the collaborators shared by the API and the worker."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from pathlib import Path

from faceblur.config.settings import Settings
from faceblur.detection.computer_vision import ComputerVisionDetector
from faceblur.face.anonymize import FaceRedactor
from faceblur.services.pipeline import RedactionPipeline
from faceblur.storage.backend import AzureBlobStorage, BlobStorage, LocalStorage


@dataclass(slots=True)
class FaceBlurServices:
    """Explicitly owned storage, detector and pipeline for one process."""

    settings: Settings
    storage: BlobStorage
    detector: ComputerVisionDetector
    pipeline: RedactionPipeline

    async def close(self) -> None:
        """Release HTTP resources held by the collaborators."""

        with contextlib.suppress(Exception):
            await asyncio.gather(self.detector.close(), self.storage.close())


def build_storage(settings: Settings) -> BlobStorage:
    """Return the storage backend selected by ``STORAGE_BACKEND``."""

    if settings.storage_backend == "local":
        return LocalStorage(Path(settings.local_storage_root))
    if settings.storage_backend == "azure":
        return AzureBlobStorage(settings)
    raise RuntimeError(f"Unknown storage backend: {settings.storage_backend}")


def build_services(settings: Settings) -> FaceBlurServices:
    """Wire storage, detector and pipeline from settings."""

    storage = build_storage(settings)
    detector = ComputerVisionDetector(settings, storage)
    pipeline = RedactionPipeline(
        detector,
        storage,
        destination_container=settings.destination_container_name,
        redactor=FaceRedactor(settings.blur_radius),
        jpeg_quality=settings.jpeg_quality,
    )
    return FaceBlurServices(settings=settings, storage=storage, detector=detector, pipeline=pipeline)
