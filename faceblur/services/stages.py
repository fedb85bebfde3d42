"""Enumerations describing redaction pipeline states."""

from enum import Enum


class PipelineState(str, Enum):
    """Finite states of a single redaction run."""

    RECEIVED = "received"
    DECODING = "decoding"
    NO_FACES_SKIP = "no_faces_skip"
    REDACTING = "redacting"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"
