"""Blob storage backends used for reading sources and writing results."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol
from urllib.parse import quote

import httpx

from faceblur.config.settings import Settings
from faceblur.errors import ErrorKind, StorageError

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"


@dataclass(frozen=True, slots=True)
class BlobRef:
    """Location of a blob inside a storage account."""

    container: str
    name: str

    def __str__(self) -> str:
        return f"{self.container}/{self.name}"


class BlobStorage(Protocol):
    """Narrow interface the pipeline needs from object storage."""

    async def download(self, ref: BlobRef) -> bytes: ...

    async def upload(
        self,
        ref: BlobRef,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None: ...

    async def ensure_container(self, container: str) -> None: ...

    def blob_url(self, ref: BlobRef) -> str | None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class LocalStorage:
    """Filesystem storage where containers are directories under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _container_path(self, container: str) -> Path:
        if not container or container in (".", "..") or "/" in container or "\\" in container:
            raise StorageError(
                f"Invalid container name: {container!r}",
                ErrorKind.INVALID_INPUT,
                resource=container,
            )
        return self._root / container

    def _blob_path(self, ref: BlobRef) -> Path:
        container_path = self._container_path(ref.container)
        segments = ref.name.replace("\\", "/").split("/")
        if not ref.name or ref.name.startswith(("/", "\\")) or ".." in segments or Path(ref.name).is_absolute():
            raise StorageError(f"Invalid blob name: {ref.name!r}", ErrorKind.INVALID_INPUT, resource=str(ref))

        path = container_path / ref.name
        if not path.resolve().is_relative_to(self._root.resolve()):
            raise StorageError(
                f"Blob {ref} resolves outside the storage root.",
                ErrorKind.INVALID_INPUT,
                resource=str(ref),
            )
        return path

    async def download(self, ref: BlobRef) -> bytes:
        """Return the blob contents."""

        if not self._container_path(ref.container).is_dir():
            raise StorageError(
                f"Source container not found: {ref.container}",
                ErrorKind.NOT_FOUND,
                resource=ref.container,
            )
        path = self._blob_path(ref)
        if not path.is_file():
            raise StorageError(
                f"Source blob not found: {ref}",
                ErrorKind.NOT_FOUND,
                resource=str(ref),
            )
        return await asyncio.to_thread(path.read_bytes)

    async def upload(
        self,
        ref: BlobRef,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        """Write the blob and a JSON sidecar holding its properties."""

        path = self._blob_path(ref)
        sidecar = {"contentType": content_type, "metadata": dict(metadata)}
        await asyncio.to_thread(self._write_blob, path, data, sidecar)

    @staticmethod
    def _write_blob(path: Path, data: bytes, sidecar: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        meta_path = path.with_name(path.name + METADATA_SUFFIX)
        meta_path.write_text(json.dumps(sidecar, indent=2), encoding="utf-8")

    def read_metadata(self, ref: BlobRef) -> dict:
        """Return the properties stored alongside a blob."""

        path = self._blob_path(ref)
        meta_path = path.with_name(path.name + METADATA_SUFFIX)
        return json.loads(meta_path.read_text(encoding="utf-8"))

    async def ensure_container(self, container: str) -> None:
        self._container_path(container).mkdir(parents=True, exist_ok=True)

    def blob_url(self, ref: BlobRef) -> str | None:
        # Local files are not reachable by a remote detector.
        return None

    async def ping(self) -> bool:
        return self._root.is_dir()

    async def close(self) -> None:
        return None


_STORAGE_ERROR_KINDS = {
    "BlobNotFound": ErrorKind.NOT_FOUND,
    "ContainerNotFound": ErrorKind.NOT_FOUND,
    "ResourceNotFound": ErrorKind.NOT_FOUND,
    "AuthorizationFailure": ErrorKind.UNAUTHORIZED,
    "AuthenticationFailed": ErrorKind.UNAUTHORIZED,
    "AuthorizationPermissionMismatch": ErrorKind.UNAUTHORIZED,
    "InsufficientAccountPermissions": ErrorKind.UNAUTHORIZED,
    "InvalidBlobOrBlock": ErrorKind.INVALID_INPUT,
    "InvalidResourceName": ErrorKind.INVALID_INPUT,
    "RequestBodyTooLarge": ErrorKind.INVALID_INPUT,
}


class AzureBlobStorage:
    """Azure Blob Storage REST client authenticated with a SAS token."""

    API_VERSION = "2021-08-06"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        account_url = settings.blob_account_url
        if not account_url:
            raise RuntimeError("STORAGE_ACCOUNT_NAME or STORAGE_ACCOUNT_URL must be configured.")

        self._account_url = account_url
        self._sas_token = settings.storage_sas_token.lstrip("?")
        self._client = httpx.AsyncClient(
            base_url=account_url,
            timeout=settings.request_timeout,
            headers={"x-ms-version": self.API_VERSION},
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    def _params(self, **extra: str) -> httpx.QueryParams:
        return httpx.QueryParams(self._sas_token).merge(extra)

    @staticmethod
    def _blob_path(ref: BlobRef) -> str:
        return f"/{ref.container}/{quote(ref.name, safe='/')}"

    def blob_url(self, ref: BlobRef) -> str | None:
        url = f"{self._account_url}{self._blob_path(ref)}"
        if self._sas_token:
            url = f"{url}?{self._sas_token}"
        return url

    async def _request(
        self,
        method: str,
        path: str,
        ref: BlobRef | None,
        *,
        params: httpx.QueryParams,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
        allowed_codes: frozenset[str] = frozenset(),
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                headers=headers,
                content=content,
            )
        except httpx.TransportError as exc:
            raise StorageError(
                f"Storage request failed for {ref or path}: {exc}",
                ErrorKind.TRANSIENT,
                resource=str(ref or path),
            ) from exc

        if response.is_success:
            return response
        error_code = response.headers.get("x-ms-error-code", "")
        if error_code in allowed_codes:
            return response
        raise self._to_error(response.status_code, error_code, ref, path)

    @staticmethod
    def _to_error(status_code: int, error_code: str, ref: BlobRef | None, path: str) -> StorageError:
        kind = _STORAGE_ERROR_KINDS.get(error_code)
        if kind is None:
            if status_code == 404:
                kind = ErrorKind.NOT_FOUND
            elif status_code in (401, 403):
                kind = ErrorKind.UNAUTHORIZED
            elif status_code == 400:
                kind = ErrorKind.INVALID_INPUT
            else:
                kind = ErrorKind.TRANSIENT

        resource = str(ref) if ref else path.lstrip("/")
        if error_code == "ContainerNotFound" and ref is not None:
            message = f"Source container not found: {ref.container}"
            resource = ref.container
        elif kind is ErrorKind.NOT_FOUND:
            message = f"Source blob not found: {resource}"
        elif kind is ErrorKind.UNAUTHORIZED:
            message = "Storage access denied. Check the SAS token permissions."
        else:
            message = f"Storage request for {resource} failed with {status_code} {error_code}".rstrip()
        return StorageError(message, kind, resource=resource, status_code=status_code)

    async def download(self, ref: BlobRef) -> bytes:
        """Download the full blob body."""

        response = await self._request("GET", self._blob_path(ref), ref, params=self._params())
        logger.debug("Downloaded %s (%d bytes)", ref, len(response.content))
        return response.content

    async def ensure_container(self, container: str) -> None:
        """Create the container with blob-level public read access if it is missing."""

        response = await self._request(
            "PUT",
            f"/{container}",
            None,
            params=self._params(restype="container"),
            headers={"x-ms-blob-public-access": "blob"},
            allowed_codes=frozenset({"ContainerAlreadyExists"}),
        )
        if response.status_code == 201:
            logger.info("Created container %s", container)

    async def upload(
        self,
        ref: BlobRef,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        """Upload ``data`` as a block blob, replacing any existing blob."""

        headers = {
            "x-ms-blob-type": "BlockBlob",
            "x-ms-blob-content-type": content_type,
            "Content-Type": content_type,
        }
        headers.update({f"x-ms-meta-{key}": value for key, value in metadata.items()})
        await self._request(
            "PUT",
            self._blob_path(ref),
            ref,
            params=self._params(),
            headers=headers,
            content=data,
        )

    async def ping(self) -> bool:
        """Return ``True`` when the account answers a service properties call."""

        response = await self._client.get(
            "/",
            params=self._params(restype="service", comp="properties"),
        )
        return response.is_success
