"""Parsing of storage notifications delivered through the processing queue."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping
from urllib.parse import unquote, urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from faceblur.errors import InvalidMessageError
from faceblur.services.pipeline import PipelineOutcome, RedactionPipeline
from faceblur.storage.backend import BlobRef

logger = logging.getLogger(__name__)

BLOB_CREATED_EVENT = "Microsoft.Storage.BlobCreated"


class StorageEvent(BaseModel):
    """Event Grid (or CloudEvents) envelope for a storage notification."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    event_type: str | None = Field(default=None, validation_alias=AliasChoices("eventType", "type"))
    subject: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


def parse_event(message: str | bytes | Mapping[str, Any]) -> StorageEvent:
    """Decode a queue message into a :class:`StorageEvent`."""

    try:
        payload = json.loads(message) if isinstance(message, (str, bytes)) else message
        return StorageEvent.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise InvalidMessageError("Invalid message format") from exc


def blob_ref_from_url(url: str) -> BlobRef:
    """Split a blob URL into container (first path segment) and blob name."""

    segments = urlparse(url).path.split("/")
    if len(segments) < 3 or not segments[1] or not "/".join(segments[2:]):
        raise InvalidMessageError(f"Blob URL does not identify a blob: {url}")
    return BlobRef(container=unquote(segments[1]), name=unquote("/".join(segments[2:])))


def blob_ref_from_event(event: StorageEvent) -> BlobRef | None:
    """Return the created blob, or ``None`` for events this service ignores."""

    if event.event_type != BLOB_CREATED_EVENT:
        logger.warning("Unhandled event type: %s", event.event_type)
        return None

    url = event.data.get("url")
    if not isinstance(url, str) or not url:
        raise InvalidMessageError("BlobCreated event does not carry a blob URL.")
    return blob_ref_from_url(url)


async def handle_event(
    message: str | bytes | Mapping[str, Any],
    pipeline: RedactionPipeline,
) -> PipelineOutcome | None:
    """Parse the message and run the pipeline for the blob it announces."""

    event = parse_event(message)
    ref = blob_ref_from_event(event)
    if ref is None:
        return None

    logger.info("Processing blob: %s from container: %s", ref.name, ref.container)
    return await pipeline.process(ref)
