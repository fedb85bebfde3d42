"""Face detection through the Azure Computer Vision analyze endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from faceblur.config.settings import Settings
from faceblur.errors import DetectionError, ErrorKind
from faceblur.face.regions import AbsolutePixels, FaceRegion
from faceblur.storage.backend import BlobRef, BlobStorage

logger = logging.getLogger(__name__)


class FaceRectangle(BaseModel):
    left: float
    top: float
    width: float
    height: float


class DetectedFace(BaseModel):
    """Single face entry of an analyze response."""

    faceRectangle: FaceRectangle
    age: int | None = None
    gender: str | None = None


class AnalyzeResponse(BaseModel):
    """Subset of the analyze response this service consumes."""

    faces: list[DetectedFace] = []


_INVALID_INPUT_MESSAGES = {
    "InvalidImageUrl": "Invalid image URL or image not accessible",
    "InvalidAspectRatio": "Image aspect ratio not supported",
    "InvalidImageSize": "Image size not supported",
    "InvalidImageFormat": "Image format not supported",
    "InvalidImageDimension": "Image dimensions not supported",
}


class ComputerVisionDetector:
    """Detects faces in stored blobs using Azure Computer Vision."""

    def __init__(
        self,
        settings: Settings,
        storage: BlobStorage,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.computer_vision_endpoint:
            raise RuntimeError("COMPUTER_VISION_ENDPOINT environment variable is required.")

        self._storage = storage
        self._analyze_path = f"/vision/{settings.computer_vision_api_version}/analyze"
        self._models_path = f"/vision/{settings.computer_vision_api_version}/models"
        self._client = httpx.AsyncClient(
            base_url=settings.computer_vision_endpoint.rstrip("/"),
            timeout=settings.request_timeout,
            headers={"Ocp-Apim-Subscription-Key": settings.computer_vision_key},
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    async def detect(self, ref: BlobRef, data: bytes | None = None) -> list[FaceRegion]:
        """
        Return the faces found in the blob, in provider order.

        When the storage publishes a URL the service fetches the image itself.
        Otherwise the image is uploaded, reusing ``data`` when the caller has
        already downloaded it.
        """

        params = {"visualFeatures": "Faces", "language": "en"}
        image_url = self._storage.blob_url(ref)
        try:
            if image_url is not None:
                logger.debug("Analyzing %s by URL", ref)
                response = await self._client.post(self._analyze_path, params=params, json={"url": image_url})
            else:
                body = data if data is not None else await self._storage.download(ref)
                logger.debug("Analyzing %s from %d uploaded bytes", ref, len(body))
                response = await self._client.post(
                    self._analyze_path,
                    params=params,
                    content=body,
                    headers={"Content-Type": "application/octet-stream"},
                )
        except httpx.TransportError as exc:
            raise DetectionError(
                f"Computer Vision request failed for {ref}: {exc}",
                ErrorKind.TRANSIENT,
                resource=str(ref),
            ) from exc

        if not response.is_success:
            raise self._to_error(response, ref)

        try:
            analysis = AnalyzeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise DetectionError(
                f"Computer Vision returned an unreadable response for {ref}",
                ErrorKind.TRANSIENT,
                resource=str(ref),
            ) from exc

        faces: list[FaceRegion] = [
            AbsolutePixels(
                left=face.faceRectangle.left,
                top=face.faceRectangle.top,
                width=face.faceRectangle.width,
                height=face.faceRectangle.height,
            )
            for face in analysis.faces
        ]
        logger.info("Computer Vision detected %d faces in %s", len(faces), ref)
        return faces

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str]:
        try:
            payload: Any = response.json()
        except ValueError:
            return "", response.text
        error = payload.get("error", {}) if isinstance(payload, dict) else {}
        if not isinstance(error, dict):
            return "", str(error)
        inner = error.get("innererror")
        if not isinstance(inner, dict):
            inner = {}
        code = inner.get("code") or error.get("code") or ""
        message = inner.get("message") or error.get("message") or ""
        return str(code), str(message)

    def _to_error(self, response: httpx.Response, ref: BlobRef) -> DetectionError:
        code, message = self._error_details(response)
        status_code = response.status_code

        if code in _INVALID_INPUT_MESSAGES:
            return DetectionError(
                f"{_INVALID_INPUT_MESSAGES[code]}: {message}",
                ErrorKind.INVALID_INPUT,
                resource=str(ref),
                status_code=status_code,
            )
        if code == "Unauthorized" or status_code in (401, 403):
            return DetectionError(
                "Computer Vision service access denied. Check the subscription key.",
                ErrorKind.UNAUTHORIZED,
                resource=str(ref),
                status_code=status_code,
            )
        if status_code == 404:
            return DetectionError(
                f"Computer Vision endpoint not found: {self._analyze_path}",
                ErrorKind.NOT_FOUND,
                resource=self._analyze_path,
                status_code=status_code,
            )
        if status_code == 400:
            return DetectionError(
                f"Computer Vision rejected {ref}: {code} {message}".rstrip(),
                ErrorKind.INVALID_INPUT,
                resource=str(ref),
                status_code=status_code,
            )
        return DetectionError(
            f"Computer Vision error {status_code} for {ref}: {code} {message}".rstrip(),
            ErrorKind.TRANSIENT,
            resource=str(ref),
            status_code=status_code,
        )

    async def ping(self) -> bool:
        """Return ``True`` when the endpoint answers a model listing call."""

        response = await self._client.get(self._models_path)
        return response.is_success
