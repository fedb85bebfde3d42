"""Connectivity checks for the detection and storage providers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from faceblur.config.settings import get_settings
from faceblur.services.container import build_services


@dataclass(slots=True)
class IntegrationCheckResult:
    """Structured result describing the integration check outcome."""

    name: str
    success: bool
    message: str


async def _run_check(
    name: str,
    factory: Callable[[], Awaitable[bool]],
    success_message: str,
) -> IntegrationCheckResult:
    try:
        result = await factory()
    except Exception as exc:  # pragma: no cover - defensive branch
        return IntegrationCheckResult(name=name, success=False, message=str(exc))

    if result:
        return IntegrationCheckResult(name=name, success=True, message=success_message)
    return IntegrationCheckResult(
        name=name,
        success=False,
        message="Service responded with non-success status.",
    )


async def run_all_checks() -> list[IntegrationCheckResult]:
    """Ping Computer Vision and blob storage concurrently."""

    services = build_services(get_settings())
    try:
        return list(
            await asyncio.gather(
                _run_check(
                    name="Computer Vision",
                    factory=services.detector.ping,
                    success_message="Computer Vision endpoint is reachable.",
                ),
                _run_check(
                    name="Blob Storage",
                    factory=services.storage.ping,
                    success_message="Storage account is reachable.",
                ),
            ),
        )
    finally:
        await services.close()
