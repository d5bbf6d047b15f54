"""Shared test fixtures for aumai-imagepublish."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

import pytest

from aumai_imagepublish.archive import digest_of_bytes
from aumai_imagepublish.config import BuildContext, PublishSettings
from aumai_imagepublish.errors import (
    DigestMismatchError,
    RegistryNotFoundError,
    RegistryTransportError,
)
from aumai_imagepublish.models import (
    BuildConfig,
    ContainerConfig,
    Descriptor,
    HistoryEntry,
    ImageReference,
    ManifestV2,
    RootFS,
    RuntimeConfig,
)
from aumai_imagepublish.registry import RegistryPort

BASE_REPOSITORY = "aurora/oracle8"
BASE_TAG = "1.0.2"
OUTPUT_REPOSITORY = "aurora/app"
FIXED_TIME = datetime(2020, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory registry
# ---------------------------------------------------------------------------


class FakeRegistry(RegistryPort):
    """Content-addressed in-memory registry that records every call."""

    def __init__(self) -> None:
        self.blobs: dict[str, dict[str, bytes]] = {}
        self.manifests: dict[str, dict[str, bytes]] = {}
        self.calls: list[tuple[str, ...]] = []
        self.fail_manifest_push = False
        self.fail_blob_push = False
        self.fail_tags = False

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def add_blob(self, repository: str, data: bytes) -> str:
        digest = digest_of_bytes(data)
        self.blobs.setdefault(repository, {})[digest] = data
        return digest

    def add_tags(self, repository: str, *tags: str) -> None:
        for tag in tags:
            self.manifests.setdefault(repository, {})[tag] = b"{}"

    # RegistryPort

    def get_manifest(self, repository: str, reference: str) -> ManifestV2:
        self.calls.append(("get_manifest", repository, reference))
        try:
            data = self.manifests[repository][reference]
        except KeyError:
            raise RegistryNotFoundError(
                "get_manifest", f"{repository}:{reference}", "manifest unknown", 404
            ) from None
        return ManifestV2.model_validate_json(data)

    def get_container_config(self, repository: str, digest: str) -> ContainerConfig:
        self.calls.append(("get_container_config", repository, digest))
        try:
            data = self.blobs[repository][digest]
        except KeyError:
            raise RegistryNotFoundError(
                "get_container_config", f"{repository}@{digest}", "blob unknown", 404
            ) from None
        actual = digest_of_bytes(data)
        if actual != digest:
            raise DigestMismatchError(digest, actual)
        return ContainerConfig.model_validate_json(data)

    def layer_exists(self, repository: str, digest: str) -> bool:
        self.calls.append(("layer_exists", repository, digest))
        return digest in self.blobs.get(repository, {})

    def mount_layer(self, src_repository: str, dst_repository: str, digest: str) -> None:
        self.calls.append(("mount_layer", src_repository, dst_repository, digest))
        try:
            data = self.blobs[src_repository][digest]
        except KeyError:
            raise RegistryNotFoundError(
                "mount_layer", f"{src_repository}@{digest}", "blob unknown", 404
            ) from None
        self.blobs.setdefault(dst_repository, {})[digest] = data

    def push_layer(self, blob: BinaryIO | bytes, repository: str, digest: str) -> None:
        self.calls.append(("push_layer", repository, digest))
        if self.fail_blob_push:
            raise RegistryTransportError("push_layer", repository, "injected failure", 500)
        data = blob if isinstance(blob, bytes) else blob.read()
        actual = digest_of_bytes(data)
        if actual != digest:
            raise DigestMismatchError(digest, actual)
        self.blobs.setdefault(repository, {})[digest] = data

    def push_manifest(self, manifest: bytes, repository: str, tag: str) -> None:
        self.calls.append(("push_manifest", repository, tag))
        if self.fail_manifest_push:
            raise RegistryTransportError("push_manifest", repository, "injected failure", 500)
        self.manifests.setdefault(repository, {})[tag] = manifest

    def get_tags(self, repository: str) -> list[str]:
        self.calls.append(("get_tags", repository))
        if self.fail_tags:
            raise RegistryTransportError("get_tags", repository, "connection refused")
        return sorted(self.manifests.get(repository, {}))


def seed_image(
    registry: FakeRegistry,
    repository: str,
    tag: str,
    layer_contents: list[bytes],
    runtime: RuntimeConfig | None = None,
) -> ManifestV2:
    """Store an image with opaque layer blobs and return its manifest."""
    manifest = ManifestV2(config=Descriptor(digest="sha256:" + "0" * 64, size=0))
    diff_ids = []
    for content in layer_contents:
        digest = registry.add_blob(repository, content)
        manifest.add_layer(digest, len(content))
        diff_ids.append(digest_of_bytes(b"diff:" + content))

    config = ContainerConfig(
        created="2019-06-01T00:00:00Z",
        config=runtime or RuntimeConfig(),
        container_config={"Hostname": "builder"},
        history=[HistoryEntry(created_by="/bin/sh -c #(nop) ADD file:abc in /")],
        rootfs=RootFS(diff_ids=diff_ids),
    )
    config_bytes = config.to_json_bytes()
    manifest.config = Descriptor(
        digest=registry.add_blob(repository, config_bytes), size=len(config_bytes)
    )
    registry.manifests.setdefault(repository, {})[tag] = manifest.to_json_bytes()
    return manifest


# ---------------------------------------------------------------------------
# Registry fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def base_image(fake_registry: FakeRegistry) -> ImageReference:
    """A two-layer base image in the fake registry."""
    seed_image(
        fake_registry,
        BASE_REPOSITORY,
        BASE_TAG,
        [b"base layer one", b"base layer two"],
        RuntimeConfig(
            env=["PATH=/usr/bin:/bin", "JAVA_HOME=/usr/lib/jvm", "APP_VERSION=0.0.1"],
            cmd=["/bin/sh"],
            labels={"maintainer": "base-team"},
        ),
    )
    return ImageReference(repository=BASE_REPOSITORY, tag=BASE_TAG)


@pytest.fixture()
def base_manifest(fake_registry: FakeRegistry, base_image: ImageReference) -> ManifestV2:
    return ManifestV2.model_validate_json(
        fake_registry.manifests[base_image.repository][base_image.tag]
    )


# ---------------------------------------------------------------------------
# Build context with layer folders
# ---------------------------------------------------------------------------


@pytest.fixture()
def build_folder(tmp_path: Path) -> Path:
    """A build folder with two layer directories, ``app`` and ``config``."""
    folder = tmp_path / "build"
    app = folder / "layer" / "app" / "u01" / "application"
    app.mkdir(parents=True)
    (app / "app.jar").write_bytes(b"\xCA\xFE\xBA\xBE" * 128)
    (app / "start.sh").write_text("#!/bin/sh\nexec java -jar app.jar\n", encoding="utf-8")
    conf = folder / "layer" / "config" / "u01" / "config"
    conf.mkdir(parents=True)
    (conf / "app.properties").write_text("port=8080\n", encoding="utf-8")
    return folder


@pytest.fixture()
def build_config(build_folder: Path, base_image: ImageReference) -> BuildConfig:
    return BuildConfig(
        build_folder=build_folder,
        base_image=base_image,
        output_repository=OUTPUT_REPOSITORY,
        env={"APP_VERSION": "2.4.5", "HOME": "/u01"},
        labels={"version": "2.4.5"},
        cmd=["/u01/application/start.sh"],
    )


@pytest.fixture()
def fixed_clock():
    return lambda: FIXED_TIME


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: object) -> PublishSettings:
    values: dict[str, object] = {
        "pull_registry": "https://registry.test",
        "output_registry": "registry.test",
        "push_extra_tags": "latest major minor patch",
        "builder_version": "1.11.0",
    }
    values.update(overrides)
    return PublishSettings(_env_file=None, **values)


@pytest.fixture()
def settings() -> PublishSettings:
    return make_settings()


@pytest.fixture()
def context(settings: PublishSettings) -> BuildContext:
    return BuildContext.from_settings(settings)
