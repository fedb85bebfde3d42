"""Error taxonomy shared by the pipeline and its collaborators."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failure reported by an external provider."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_INPUT = "invalid_input"
    TRANSIENT = "transient"


class FaceBlurError(RuntimeError):
    """Base class for all service errors."""

    category = "internal"


class ProviderError(FaceBlurError):
    """Raised when the detection or storage provider rejects a request."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        resource: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.resource = resource
        self.status_code = status_code
        super().__init__(message)

    @property
    def category(self) -> str:  # type: ignore[override]
        return self.kind.value


class DetectionError(ProviderError):
    """Raised by the face detection provider."""


class StorageError(ProviderError):
    """Raised by the blob storage provider."""


class InvalidMessageError(FaceBlurError):
    """Raised when a trigger payload cannot be parsed."""

    category = "invalid_message"


class ImageDecodeError(FaceBlurError):
    """Raised when source bytes are not a readable image."""

    category = "decode"


class ImageEncodeError(FaceBlurError):
    """Raised when the redacted image cannot be serialised."""

    category = "encode"


class InvariantViolation(FaceBlurError):
    """Raised when the working image or a clamped region is inconsistent."""

    category = "invariant"
