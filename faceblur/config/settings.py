"""Service configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised service settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    storage_backend: str = "azure"
    storage_account_name: str = ""
    storage_account_url: str = ""
    storage_sas_token: str = ""
    local_storage_root: str = "data/blobs"
    destination_container_name: str = "processed-images"

    computer_vision_endpoint: str = ""
    computer_vision_key: str = ""
    computer_vision_api_version: str = "v3.2"

    function_key: str = ""

    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "image-processing-queue"
    max_delivery_attempts: int = 5

    blur_radius: float = 20.0
    jpeg_quality: int = 90
    request_timeout: float = 30.0

    @property
    def blob_account_url(self) -> str:
        """Return the blob endpoint, preferring an explicit override."""

        if self.storage_account_url:
            return self.storage_account_url.rstrip("/")
        if not self.storage_account_name:
            return ""
        return f"https://{self.storage_account_name}.blob.core.windows.net"


def _build_settings() -> Settings:
    _load_env_file()

    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        storage_backend=os.getenv("STORAGE_BACKEND", "azure").lower(),
        storage_account_name=os.getenv("STORAGE_ACCOUNT_NAME", ""),
        storage_account_url=os.getenv("STORAGE_ACCOUNT_URL", ""),
        storage_sas_token=os.getenv("STORAGE_SAS_TOKEN", ""),
        local_storage_root=os.getenv("LOCAL_STORAGE_ROOT", "data/blobs"),
        destination_container_name=os.getenv("DESTINATION_CONTAINER_NAME", "processed-images"),
        computer_vision_endpoint=os.getenv("COMPUTER_VISION_ENDPOINT", ""),
        computer_vision_key=os.getenv("COMPUTER_VISION_KEY", ""),
        computer_vision_api_version=os.getenv("COMPUTER_VISION_API_VERSION", "v3.2"),
        function_key=os.getenv("FUNCTION_KEY", ""),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        queue_name=os.getenv("QUEUE_NAME", "image-processing-queue"),
        max_delivery_attempts=int(os.getenv("MAX_DELIVERY_ATTEMPTS", "5")),
        blur_radius=float(os.getenv("BLUR_RADIUS", "20")),
        jpeg_quality=int(os.getenv("JPEG_QUALITY", "90")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
