"""Verify that the configured Computer Vision and storage accounts answer.

Exits non-zero when any provider is unreachable so the script can gate a
deployment.
"""

from __future__ import annotations

import asyncio
import sys

from faceblur.config.settings import Settings, get_settings
from faceblur.integrations import IntegrationCheckResult, run_all_checks
from faceblur.monitoring.logging import configure_logging


def describe_targets(settings: Settings) -> list[str]:
    storage = settings.local_storage_root if settings.storage_backend == "local" else settings.blob_account_url
    return [
        f"Computer Vision: {settings.computer_vision_endpoint or '(not configured)'}",
        f"Storage ({settings.storage_backend}): {storage or '(not configured)'}",
    ]


def summarize(results: list[IntegrationCheckResult]) -> tuple[list[str], int]:
    """Return report lines and the process exit code."""

    width = max((len(result.name) for result in results), default=0)
    lines = [
        f"{result.name.ljust(width)}  {'ok' if result.success else 'FAILED'}  {result.message}"
        for result in results
    ]
    failed = sum(not result.success for result in results)
    lines.append(f"{len(results) - failed}/{len(results)} providers reachable")
    return lines, 1 if failed else 0


def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    for line in describe_targets(settings):
        print(line)

    lines, exit_code = summarize(asyncio.run(run_all_checks()))
    print("\n".join(lines))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
