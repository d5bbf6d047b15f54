"""Pydantic models for aumai-imagepublish."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "MEDIA_TYPE_CONFIG",
    "MEDIA_TYPE_LAYER",
    "MEDIA_TYPE_MANIFEST",
    "BuildConfig",
    "BuildOutput",
    "ContainerConfig",
    "Descriptor",
    "HistoryEntry",
    "ImageReference",
    "Layer",
    "LayerBlob",
    "ManifestV2",
    "RegistryCredentials",
    "RootFS",
    "RuntimeConfig",
]

MEDIA_TYPE_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_CONFIG = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"


class _WireModel(BaseModel):
    """Base for registry JSON documents.

    Unknown fields are kept so a base image's document survives a
    load/mutate/save cycle without losing data.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_json_bytes(self) -> bytes:
        """Serialize with wire field names, omitting unset (``None``) fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class Descriptor(_WireModel):
    """A content descriptor: media type, byte size and digest of a blob."""

    media_type: str = Field(default=MEDIA_TYPE_CONFIG, alias="mediaType")
    size: int
    digest: str            # sha256:<hex>


class Layer(Descriptor):
    """A layer entry in a manifest; size and digest refer to the compressed blob."""

    media_type: str = Field(default=MEDIA_TYPE_LAYER, alias="mediaType")


class ManifestV2(_WireModel):
    """
    Image manifest, schema version 2.

    ``layers`` is in filesystem overlay order (base layers first) and must
    never be reordered.
    """

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=MEDIA_TYPE_MANIFEST, alias="mediaType")
    config: Descriptor
    layers: list[Layer] = Field(default_factory=list)

    def clean_copy(self) -> ManifestV2:
        """Return a deep copy that can be mutated without touching this manifest."""
        return self.model_copy(deep=True)

    def add_layer(self, digest: str, size: int) -> ManifestV2:
        self.layers.append(Layer(digest=digest, size=size))
        return self


class RuntimeConfig(_WireModel):
    """The ``config`` block of a container configuration (Docker field names)."""

    user: str | None = Field(default=None, alias="User")
    env: list[str] | None = Field(default=None, alias="Env")
    cmd: list[str] | None = Field(default=None, alias="Cmd")
    entrypoint: list[str] | None = Field(default=None, alias="Entrypoint")
    working_dir: str | None = Field(default=None, alias="WorkingDir")
    labels: dict[str, str] | None = Field(default=None, alias="Labels")
    exposed_ports: dict[str, Any] | None = Field(default=None, alias="ExposedPorts")

    def env_map(self) -> dict[str, str]:
        """Return env entries as a mapping; malformed entries are skipped."""
        result: dict[str, str] = {}
        for entry in self.env or []:
            key, sep, value = entry.partition("=")
            if not sep:
                continue
            result[key.strip()] = value.strip()
        return result


class RootFS(_WireModel):
    type: str = "layers"
    diff_ids: list[str] = Field(default_factory=list)


class HistoryEntry(_WireModel):
    created: str | None = None
    created_by: str | None = None
    comment: str | None = None
    empty_layer: bool | None = None


class ContainerConfig(_WireModel):
    """
    Container image configuration.

    ``rootfs.diff_ids`` holds one uncompressed-content digest per layer in the
    same order as ``ManifestV2.layers``.
    """

    architecture: str = "amd64"
    os: str = "linux"
    created: str | None = None
    config: RuntimeConfig = Field(default_factory=RuntimeConfig)
    container_config: dict[str, Any] | None = None
    history: list[HistoryEntry] | None = None
    rootfs: RootFS = Field(default_factory=RootFS)

    def clean_copy(self) -> ContainerConfig:
        """
        Return a deep copy stripped of build-time provenance.

        ``history`` and ``container_config`` describe how the base image was
        built and are dropped before new layers are merged in.
        """
        copy = self.model_copy(deep=True)
        copy.history = None
        copy.container_config = None
        return copy

    def add_layer(self, diff_id: str) -> ContainerConfig:
        self.rootfs.diff_ids.append(diff_id)
        return self

    def merge_env(self, env: dict[str, str]) -> None:
        """Merge *env* into ``config.env``; overriding keys replace inherited entries."""
        if not env:
            return
        kept = [
            entry
            for entry in self.config.env or []
            if entry.partition("=")[0].strip() not in env
        ]
        kept.extend(f"{key}={env[key]}" for key in sorted(env))
        self.config.env = kept

    def merge_labels(self, labels: dict[str, str]) -> None:
        if not labels:
            return
        merged = dict(self.config.labels or {})
        merged.update(labels)
        self.config.labels = merged


class ImageReference(BaseModel):
    """A ``[registry/]repository:tag`` image name."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str = "latest"
    registry: str = ""

    @classmethod
    def parse(cls, name: str) -> ImageReference:
        """
        Parse ``host:5000/group/app:1.2.3`` style names.

        The first path component is treated as a registry when it contains a
        ``.`` or ``:`` or equals ``localhost``.
        """
        name = name.replace("http://", "").replace("https://", "")
        if "@" in name:
            raise ValueError(f"Digest references are not supported: {name!r}")
        registry = ""
        first, sep, rest = name.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, name = first, rest
        repository, sep, tag = name.rpartition(":")
        if not sep or "/" in tag:
            repository, tag = name, "latest"
        if not repository:
            raise ValueError(f"Invalid image reference: {name!r}")
        return cls(registry=registry, repository=repository, tag=tag)

    def full_name(self) -> str:
        if not self.registry:
            return f"{self.repository}:{self.tag}"
        return f"{self.registry}/{self.repository}:{self.tag}"

    def with_tag(self, tag: str) -> ImageReference:
        return self.model_copy(update={"tag": tag})

    def version_component(self) -> str:
        """Return ``<last repository segment>-<tag>``, e.g. ``oracle8-1.0.2``."""
        return f"{self.repository.rsplit('/', 1)[-1]}-{self.tag}"

    def __str__(self) -> str:
        return self.full_name()


class RegistryCredentials(BaseModel):
    """Static credentials for a registry server."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)
    server: str


class BuildConfig(BaseModel):
    """Input to the layer assembler, prepared by the application-specific preparer."""

    build_folder: Path
    base_image: ImageReference
    output_repository: str
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    cmd: list[str] | None = None
    entrypoint: list[str] | None = None


class LayerBlob(BaseModel):
    """A newly built layer blob on local disk."""

    name: str
    path: Path
    digest: str            # digest of the compressed blob
    size: int              # size of the compressed blob
    diff_id: str           # digest of the uncompressed tar stream


class BuildOutput(BaseModel):
    """Result of the build step: new blobs plus the mutated image documents."""

    build_folder: Path
    repository: str
    layers: list[LayerBlob] = Field(default_factory=list)
    config_digest: str
    config_size: int
    manifest: ManifestV2
