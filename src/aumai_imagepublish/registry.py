"""Registry access: the port the assembler depends on and its HTTP implementation."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import BinaryIO
from urllib.parse import urljoin

import httpx
import structlog
from pydantic import ValidationError

from .archive import digest_of_bytes
from .errors import DigestMismatchError, RegistryNotFoundError, RegistryTransportError
from .models import (
    MEDIA_TYPE_CONFIG,
    MEDIA_TYPE_MANIFEST,
    ContainerConfig,
    ManifestV2,
    RegistryCredentials,
)

__all__ = [
    "HttpRegistryClient",
    "RegistryPort",
]

logger = structlog.get_logger(__name__)


class RegistryPort(ABC):
    """
    Operations the image pipeline needs from a registry.

    Implementations raise ``RegistryTransportError`` (or its subclass
    ``RegistryNotFoundError``) on failure and never retry internally.
    """

    @abstractmethod
    def get_manifest(self, repository: str, reference: str) -> ManifestV2:
        """Fetch the V2 manifest for a tag or digest."""

    @abstractmethod
    def get_container_config(self, repository: str, digest: str) -> ContainerConfig:
        """Fetch the container configuration blob addressed by *digest*."""

    @abstractmethod
    def layer_exists(self, repository: str, digest: str) -> bool:
        """Return whether a blob with *digest* is present in *repository*."""

    @abstractmethod
    def mount_layer(self, src_repository: str, dst_repository: str, digest: str) -> None:
        """Reference an existing blob from *src_repository* in *dst_repository*."""

    @abstractmethod
    def push_layer(self, blob: BinaryIO | bytes, repository: str, digest: str) -> None:
        """Upload a blob under *digest*."""

    @abstractmethod
    def push_manifest(self, manifest: bytes, repository: str, tag: str) -> None:
        """Store *manifest* under *tag*, replacing whatever the tag pointed at."""

    @abstractmethod
    def get_tags(self, repository: str) -> list[str]:
        """List the tags of *repository*."""


class HttpRegistryClient(RegistryPort):
    """
    Registry HTTP API V2 client.

    Reads go to *pull_registry*, writes and existence checks to
    *push_registry*. Both are base URLs such as ``https://registry:5000``.
    Credentials, when given, are sent as basic auth on write requests.
    """

    def __init__(
        self,
        pull_registry: str,
        push_registry: str | None = None,
        credentials: RegistryCredentials | None = None,
        *,
        verify: bool = True,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._pull_registry = pull_registry.rstrip("/")
        self._push_registry = (push_registry or pull_registry).rstrip("/")
        self._credentials = credentials
        self._client = httpx.Client(verify=verify, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpRegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_manifest(self, repository: str, reference: str) -> ManifestV2:
        url = f"{self._pull_registry}/v2/{repository}/manifests/{reference}"
        logger.info("manifest_fetch", repository=repository, reference=reference)
        response = self._request(
            "get_manifest", "GET", url, headers={"Accept": MEDIA_TYPE_MANIFEST}
        )
        self._expect(response, "get_manifest", f"{repository}:{reference}", 200)
        try:
            return ManifestV2.model_validate_json(response.content)
        except ValidationError as exc:
            raise RegistryTransportError(
                "get_manifest", f"{repository}:{reference}", f"invalid manifest: {exc}"
            ) from exc

    def get_container_config(self, repository: str, digest: str) -> ContainerConfig:
        url = f"{self._pull_registry}/v2/{repository}/blobs/{digest}"
        logger.debug("config_fetch", repository=repository, digest=digest)
        response = self._request(
            "get_container_config", "GET", url, headers={"Accept": MEDIA_TYPE_CONFIG}
        )
        self._expect(response, "get_container_config", f"{repository}@{digest}", 200)
        actual = digest_of_bytes(response.content)
        if actual != digest:
            raise DigestMismatchError(digest, actual, f"config blob in {repository}")
        try:
            return ContainerConfig.model_validate_json(response.content)
        except ValidationError as exc:
            raise RegistryTransportError(
                "get_container_config", f"{repository}@{digest}", f"invalid config: {exc}"
            ) from exc

    def get_tags(self, repository: str) -> list[str]:
        url = f"{self._pull_registry}/v2/{repository}/tags/list"
        response = self._request("get_tags", "GET", url)
        if response.status_code == 404:
            # repository not created yet
            logger.debug("tags_repository_unknown", repository=repository)
            return []
        self._expect(response, "get_tags", repository, 200)
        try:
            body = json.loads(response.content)
        except json.JSONDecodeError as exc:
            raise RegistryTransportError("get_tags", repository, f"invalid tag list: {exc}") from exc
        return list(body.get("tags") or [])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def layer_exists(self, repository: str, digest: str) -> bool:
        url = f"{self._push_registry}/v2/{repository}/blobs/{digest}"
        response = self._request("layer_exists", "HEAD", url, auth=True)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            logger.debug("layer_missing", repository=repository, digest=digest)
            return False
        raise RegistryTransportError(
            "layer_exists", f"{repository}@{digest}", "unexpected response",
            status_code=response.status_code,
        )

    def mount_layer(self, src_repository: str, dst_repository: str, digest: str) -> None:
        url = f"{self._push_registry}/v2/{dst_repository}/blobs/uploads/"
        logger.info("layer_mount", src=src_repository, dst=dst_repository, digest=digest)
        response = self._request(
            "mount_layer", "POST", url,
            params={"mount": digest, "from": src_repository}, auth=True,
        )
        self._expect(response, "mount_layer", f"{dst_repository}@{digest}", 201, 202)

    def push_layer(self, blob: BinaryIO | bytes, repository: str, digest: str) -> None:
        target = f"{repository}@{digest}"
        start = self._request(
            "push_layer", "POST", f"{self._push_registry}/v2/{repository}/blobs/uploads/",
            auth=True,
        )
        self._expect(start, "push_layer", target, 202)

        # a reader is streamed in chunks
        upload = self._request(
            "push_layer", "PATCH", self._location(start, target), content=blob,
            headers={"Content-Type": "application/octet-stream"}, auth=True,
        )
        self._expect(upload, "push_layer", target, 202)

        commit = self._request(
            "push_layer", "PUT", self._location(upload, target), params={"digest": digest},
            headers={"Content-Type": "application/octet-stream"}, auth=True,
        )
        self._expect(commit, "push_layer", target, 201)
        echoed = commit.headers.get("Docker-Content-Digest")
        if echoed and echoed != digest:
            raise DigestMismatchError(digest, echoed, f"blob pushed to {repository}")
        logger.info("layer_pushed", repository=repository, digest=digest)

    def push_manifest(self, manifest: bytes, repository: str, tag: str) -> None:
        url = f"{self._push_registry}/v2/{repository}/manifests/{tag}"
        response = self._request(
            "push_manifest", "PUT", url, content=manifest,
            headers={"Content-Type": MEDIA_TYPE_MANIFEST}, auth=True,
        )
        self._expect(response, "push_manifest", f"{repository}:{tag}", 201)
        echoed = response.headers.get("Docker-Content-Digest")
        expected = digest_of_bytes(manifest)
        if echoed and echoed != expected:
            raise DigestMismatchError(expected, echoed, f"manifest {repository}:{tag}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        auth: bool = False,
        **kwargs: object,
    ) -> httpx.Response:
        if auth and self._credentials is not None:
            kwargs["auth"] = (self._credentials.username, self._credentials.password)
        try:
            return self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            raise RegistryTransportError(operation, url, str(exc)) from exc

    @staticmethod
    def _expect(
        response: httpx.Response, operation: str, target: str, *statuses: int
    ) -> None:
        if response.status_code in statuses:
            return
        error_cls = (
            RegistryNotFoundError if response.status_code == 404 else RegistryTransportError
        )
        raise error_cls(
            operation, target, f"from server: {response.text[:500]}",
            status_code=response.status_code,
        )

    def _location(self, response: httpx.Response, target: str) -> str:
        """Resolve the upload ``Location`` header; registries may return it relative."""
        location = response.headers.get("Location")
        if not location:
            raise RegistryTransportError("push_layer", target, "upload location missing")
        return urljoin(self._push_registry + "/", location)
