"""
aumai-imagepublish quickstart: pack a layer, build image documents, resolve tags.

Run directly:

    python examples/quickstart.py

Demos 1-3 run offline in a temporary directory. Demo 4 publishes to a real
registry and only runs when QUICKSTART_REGISTRY is set, e.g.
``QUICKSTART_REGISTRY=http://localhost:5000`` with a base image
``QUICKSTART_BASE_IMAGE=library/alpine:3.19`` already pushed there.
"""

from __future__ import annotations

import os
import pathlib
import tempfile


# ---------------------------------------------------------------------------
# Demo 1: Pack a layer folder into a gzip blob
# ---------------------------------------------------------------------------

def demo_pack_layer() -> None:
    """Pack a toy application folder and show its blob digest and diff-id."""
    print("\n=== Demo 1: Pack a layer ===")

    from aumai_imagepublish.archive import (
        digest_of_decompressed_tar,
        digest_of_file,
        pack_directory_as_layer,
    )

    with tempfile.TemporaryDirectory() as tmp:
        layer_root = pathlib.Path(tmp) / "layer"
        app = layer_root / "app" / "opt" / "app"
        app.mkdir(parents=True)
        (app / "run.sh").write_text("#!/bin/sh\necho hello\n", encoding="utf-8")

        blob = pack_directory_as_layer(layer_root, "app", tmp)
        print(f"  Blob      : {blob.name} ({blob.stat().st_size:,} bytes)")
        print(f"  Digest    : {digest_of_file(blob)}")
        print(f"  Diff-id   : {digest_of_decompressed_tar(blob)}")


# ---------------------------------------------------------------------------
# Demo 2: Extend a base image's documents by hand
# ---------------------------------------------------------------------------

def demo_extend_documents() -> None:
    """Append a layer to a manifest and its config, keeping them index-aligned."""
    print("\n=== Demo 2: Extend manifest and config ===")

    from aumai_imagepublish.archive import digest_of_bytes
    from aumai_imagepublish.models import (
        ContainerConfig,
        Descriptor,
        ManifestV2,
        RuntimeConfig,
    )

    base_config = ContainerConfig(config=RuntimeConfig(env=["PATH=/bin", "LANG=C"]))
    base_manifest = ManifestV2(config=Descriptor(digest=digest_of_bytes(b"{}"), size=2))

    manifest = base_manifest.clean_copy()
    config = base_config.clean_copy()
    manifest.add_layer(digest_of_bytes(b"compressed"), 10)
    config.add_layer(digest_of_bytes(b"uncompressed"))
    config.merge_env({"LANG": "en_US.UTF-8", "APP_HOME": "/opt/app"})

    config_bytes = config.to_json_bytes()
    manifest.config.digest = digest_of_bytes(config_bytes)
    manifest.config.size = len(config_bytes)

    print(f"  Layers    : {len(manifest.layers)}  diff_ids: {len(config.rootfs.diff_ids)}")
    print(f"  Env       : {config.config.env}")
    print(f"  Config    : {manifest.config.digest[:23]}... ({manifest.config.size} bytes)")
    print(f"  Base left untouched: {base_manifest.layers == []}")


# ---------------------------------------------------------------------------
# Demo 3: Decide which tags a release may move
# ---------------------------------------------------------------------------

def demo_tag_exclusion() -> None:
    """Show which floating tags survive against existing repository tags."""
    print("\n=== Demo 3: Tag exclusion ===")

    from aumai_imagepublish.tagger import PushExtraTags, candidate_tags, excluded_tag_kinds
    from aumai_imagepublish.versioning import ImageVersion

    existing = ["1.2.2", "1.3.0", "2.0.0"]
    extra = PushExtraTags.parse("latest major minor patch")
    for app_version in ("1.2.1", "1.2.3", "1.3.1", "2.0.1"):
        version = ImageVersion(
            app_version=app_version,
            given_version=app_version,
            complete_version=f"{app_version}-b1.0.0-base-1",
        )
        excluded = excluded_tag_kinds(version, existing)
        tags = [tag for kind, tag in candidate_tags(version, extra) if kind not in excluded]
        print(f"  {app_version:<6} -> {', '.join(tags)}")


# ---------------------------------------------------------------------------
# Demo 4: Publish against a live registry
# ---------------------------------------------------------------------------

def demo_publish(registry_url: str, base_image: str) -> None:
    """Pull, build, tag and push a one-layer image."""
    print("\n=== Demo 4: Publish ===")

    from aumai_imagepublish.config import BuildContext, PublishSettings
    from aumai_imagepublish.models import BuildConfig, ImageReference
    from aumai_imagepublish.pipeline import ImagePublisher
    from aumai_imagepublish.registry import HttpRegistryClient
    from aumai_imagepublish.versioning import ImageVersion

    settings = PublishSettings(pull_registry=registry_url, tag_overwrite=True)
    base = ImageReference.parse(base_image)

    with tempfile.TemporaryDirectory() as tmp:
        folder = pathlib.Path(tmp)
        (folder / "layer" / "app" / "opt").mkdir(parents=True)
        (folder / "layer" / "app" / "opt" / "hello.txt").write_text("hi\n", encoding="utf-8")

        build_config = BuildConfig(
            build_folder=folder,
            base_image=base,
            output_repository="quickstart/hello",
            env={"GREETING": "hello"},
        )
        version = ImageVersion.from_builder_and_base(
            "1.0.0", False, "1.0.0", settings.builder_version, base
        )
        with HttpRegistryClient(registry_url, verify=False) as client:
            names = ImagePublisher(BuildContext.from_settings(settings), client).publish(
                build_config, version
            )
    for name in names:
        print(f"  Pushed    : {name}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    print("aumai-imagepublish quickstart demo")
    print("=" * 40)

    demo_pack_layer()
    demo_extend_documents()
    demo_tag_exclusion()

    registry_url = os.environ.get("QUICKSTART_REGISTRY")
    if registry_url:
        demo_publish(registry_url, os.environ.get("QUICKSTART_BASE_IMAGE", "library/alpine:3.19"))
    else:
        print("\n  (set QUICKSTART_REGISTRY to run the publish demo)")

    print("\n" + "=" * 40)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
