"""Celery worker that consumes blob-created notifications."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from celery import Celery

from faceblur.config.settings import get_settings
from faceblur.errors import ProviderError
from faceblur.monitoring.logging import configure_logging
from faceblur.services.container import build_services
from faceblur.services.events import handle_event

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "faceblur_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)
celery_app.conf.task_default_queue = settings.queue_name
celery_app.conf.worker_hijack_root_logger = False

configure_logging(settings)


async def process_message(message: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    """Build collaborators, run the pipeline for one message and release them."""

    services = build_services(get_settings())
    try:
        outcome = await handle_event(message, services.pipeline)
    finally:
        await services.close()

    if outcome is None:
        return {"status": "ignored"}
    logger.info("Finished %s with %d faces blurred", outcome.source, outcome.faces_blurred)
    return outcome.as_dict()


@celery_app.task(
    name="faceblur.process_blob_event",
    autoretry_for=(ProviderError,),
    retry_backoff=True,
    max_retries=settings.max_delivery_attempts,
    acks_late=True,
)
def process_blob_event(message: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    """Entry point for one queue delivery; fatal errors propagate for redelivery."""

    return asyncio.run(process_message(message))
