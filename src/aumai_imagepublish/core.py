"""Core logic for aumai-imagepublish: assembling and pushing image layers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from .archive import (
    digest_of_bytes,
    digest_of_decompressed_tar,
    digest_of_file,
    pack_directory_as_layer,
)
from .errors import (
    BaseImageUnavailableError,
    DigestMismatchError,
    ImagePublishError,
    PartialPublishError,
    RegistryTransportError,
)
from .models import BuildConfig, BuildOutput, ContainerConfig, LayerBlob, ManifestV2
from .registry import RegistryPort
from .tagger import short_tag

__all__ = [
    "BASE_CONFIG_FILENAME",
    "BASE_MANIFEST_FILENAME",
    "CONFIG_FILENAME",
    "LAYER_FOLDER",
    "MANIFEST_FILENAME",
    "LayerAssembler",
]

MANIFEST_FILENAME = "manifest.json"
CONFIG_FILENAME = "config.json"
BASE_MANIFEST_FILENAME = "base-manifest.json"
BASE_CONFIG_FILENAME = "base-config.json"
LAYER_FOLDER = "layer"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LayerAssembler:
    """
    Builds an image on top of a base image directly against a registry.

    The three steps share state only through files in the build folder::

        base-manifest.json      # base manifest as pulled, never rewritten
        base-config.json        # base container config as pulled, never rewritten
        manifest.json           # working manifest (base, then mutated)
        config.json             # working container config (base, then mutated)
        layer/<name>/...        # one directory per new layer
        <name>-layer.tar.gz     # packed layer blobs

    Each step can be repeated: mounts and blob pushes are skipped for blobs
    the target repository already has, and manifest pushes overwrite tags.
    """

    def __init__(
        self,
        push_registry: RegistryPort,
        pull_registry: RegistryPort | None = None,
        logger: Any = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.push_registry = push_registry
        self.pull_registry = pull_registry or push_registry
        self._log = logger or structlog.get_logger(__name__)
        self._clock = clock

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(self, build_config: BuildConfig) -> ManifestV2:
        """
        Fetch the base image documents and make its layers available in the
        output repository.

        Missing base layers are mounted from the base repository; nothing is
        downloaded. The base manifest and config are written to the build
        folder, both as the working documents and as the base copies
        that :meth:`build` starts from. Returns the base manifest.
        """
        base = build_config.base_image
        target = build_config.output_repository
        log = self._log.bind(base_image=base.full_name(), repository=target)

        try:
            manifest = self.pull_registry.get_manifest(base.repository, base.tag)
        except RegistryTransportError as exc:
            raise BaseImageUnavailableError(base.repository, base.tag, str(exc)) from exc
        log.info("base_manifest_fetched", layers=len(manifest.layers))

        mounted = 0
        for layer in manifest.layers:
            if self.push_registry.layer_exists(target, layer.digest):
                continue
            self.push_registry.mount_layer(base.repository, target, layer.digest)
            mounted += 1
        log.info("base_layers_mounted", mounted=mounted, total=len(manifest.layers))

        try:
            container_config = self.pull_registry.get_container_config(
                base.repository, manifest.config.digest
            )
        except (RegistryTransportError, DigestMismatchError) as exc:
            raise BaseImageUnavailableError(base.repository, base.tag, str(exc)) from exc

        folder = Path(build_config.build_folder)
        folder.mkdir(parents=True, exist_ok=True)
        (folder / BASE_MANIFEST_FILENAME).write_bytes(manifest.to_json_bytes())
        (folder / BASE_CONFIG_FILENAME).write_bytes(container_config.to_json_bytes())
        (folder / MANIFEST_FILENAME).write_bytes(manifest.to_json_bytes())
        (folder / CONFIG_FILENAME).write_bytes(container_config.to_json_bytes())
        return manifest

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, build_config: BuildConfig) -> BuildOutput:
        """
        Pack every ``layer/<name>`` directory into a new layer on top of the
        base image written by :meth:`pull`.

        Layers are processed in lexical order. Each one appends its blob
        digest to the manifest and its diff-id to ``rootfs.diff_ids`` at the
        same index. Build always starts from the base copies written by
        :meth:`pull`, so repeating it yields the same documents. The mutated
        config is stored as ``config.json`` with exactly the bytes its digest
        was computed over.
        """
        folder = Path(build_config.build_folder)
        layer_folder = folder / LAYER_FOLDER
        if not layer_folder.is_dir():
            raise NotADirectoryError(f"{str(layer_folder)!r} is not a directory.")

        base_manifest = ManifestV2.model_validate_json(
            (folder / BASE_MANIFEST_FILENAME).read_bytes()
        )
        base_config = ContainerConfig.model_validate_json(
            (folder / BASE_CONFIG_FILENAME).read_bytes()
        )
        manifest = base_manifest.clean_copy()
        container_config = base_config.clean_copy()

        layers: list[LayerBlob] = []
        for entry in sorted(p for p in layer_folder.iterdir() if p.is_dir()):
            layer = self._create_layer_blob(layer_folder, entry.name, folder)
            manifest.add_layer(layer.digest, layer.size)
            container_config.add_layer(layer.diff_id)
            layers.append(layer)

        container_config.merge_env(build_config.env)
        container_config.merge_labels(build_config.labels)
        # an empty override never clears an inherited value
        if build_config.cmd:
            container_config.config.cmd = list(build_config.cmd)
        if build_config.entrypoint:
            container_config.config.entrypoint = list(build_config.entrypoint)
        container_config.created = self._clock().strftime("%Y-%m-%dT%H:%M:%S.%fZ")

        config_bytes = container_config.to_json_bytes()
        manifest.config.digest = digest_of_bytes(config_bytes)
        manifest.config.size = len(config_bytes)

        (folder / CONFIG_FILENAME).write_bytes(config_bytes)
        (folder / MANIFEST_FILENAME).write_bytes(manifest.to_json_bytes())

        self._log.info(
            "image_built",
            repository=build_config.output_repository,
            new_layers=len(layers),
            total_layers=len(manifest.layers),
            config_digest=manifest.config.digest,
        )
        return BuildOutput(
            build_folder=folder,
            repository=build_config.output_repository,
            layers=layers,
            config_digest=manifest.config.digest,
            config_size=manifest.config.size,
            manifest=manifest,
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, output: BuildOutput, tags: list[str]) -> None:
        """
        Upload new layer blobs and the config blob, then push the manifest
        once per tag.

        Tags may be bare (``1.2``) or full image names. Blobs already in the
        repository are not uploaded again. A failure after at least one
        upload raises ``PartialPublishError``; uploaded blobs stay in place.
        """
        repository = output.repository
        folder = Path(output.build_folder)
        pushed: list[str] = []
        try:
            for layer in sorted(output.layers, key=lambda item: item.digest):
                if self._upload_blob(Path(layer.path), repository, layer.digest):
                    pushed.append(layer.digest)

            if self._upload_blob(folder / CONFIG_FILENAME, repository, output.config_digest):
                pushed.append(output.config_digest)

            manifest_bytes = output.manifest.to_json_bytes()
            for tag in tags:
                tag = short_tag(tag)
                self.push_registry.push_manifest(manifest_bytes, repository, tag)
                pushed.append(f"{repository}:{tag}")
                self._log.info("manifest_pushed", repository=repository, tag=tag)
        except ImagePublishError as exc:
            if not pushed:
                raise
            raise PartialPublishError(repository, pushed, str(exc)) from exc

    def _upload_blob(self, path: Path, repository: str, digest: str) -> bool:
        """Push the blob at *path* unless present; returns whether it was uploaded."""
        if self.push_registry.layer_exists(repository, digest):
            self._log.debug("blob_present", repository=repository, digest=digest)
            return False
        actual = digest_of_file(path)
        if actual != digest:
            raise DigestMismatchError(digest, actual, f"local blob {path}")
        with open(path, "rb") as fh:
            self.push_registry.push_layer(fh, repository, digest)
        self._log.info("blob_pushed", repository=repository, digest=digest)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _create_layer_blob(
        self, layer_folder: Path, name: str, destination: Path
    ) -> LayerBlob:
        """Pack ``layer_folder/name`` and compute its blob digest, size and diff-id."""
        blob_path = pack_directory_as_layer(layer_folder, name, destination)
        layer = LayerBlob(
            name=name,
            path=blob_path,
            digest=digest_of_file(blob_path),
            size=blob_path.stat().st_size,
            diff_id=digest_of_decompressed_tar(blob_path),
        )
        self._log.debug(
            "layer_created", layer=name, digest=layer.digest, diff_id=layer.diff_id
        )
        return layer
