"""CLI entry point for aumai-imagepublish."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .archive import digest_of_decompressed_tar, digest_of_file, pack_directory_as_layer
from .config import BuildContext, PublishSettings, read_registry_credentials
from .errors import ImagePublishError
from .log import configure_logging
from .models import BuildConfig, ImageReference
from .pipeline import ImagePublisher
from .registry import HttpRegistryClient
from .tagger import PushExtraTags, TagResolver
from .versioning import ImageVersion, is_snapshot_version


def _parse_pairs(values: tuple[str, ...], option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=option)
        pairs[key] = val
    return pairs


def _registry_client(settings: PublishSettings) -> HttpRegistryClient:
    credentials = None
    if settings.output_registry:
        credentials = read_registry_credentials(
            settings.output_registry, settings.docker_config_path
        )
    return HttpRegistryClient(
        settings.pull_registry,
        settings.push_registry_url(),
        credentials,
        verify=settings.registry_tls_verify,
        timeout=settings.registry_timeout,
    )


def _run(action: Callable[[], Any]) -> Any:
    try:
        return action()
    except ImagePublishError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(exc.exit_code)


@click.group()
@click.version_option()
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
@click.option("--log-json/--no-log-json", default=None, help="Override LOG_JSON.")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, log_json: bool | None) -> None:
    """AumAI ImagePublish: build and publish container images without a daemon."""
    settings = PublishSettings()
    if log_level is not None:
        settings.log_level = log_level
    if log_json is not None:
        settings.log_json = log_json
    configure_logging(settings.log_level, settings.log_json)
    ctx.obj = BuildContext.from_settings(settings)


@main.command("publish")
@click.option(
    "--context",
    "build_folder",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Build context directory containing layer/<name> folders.",
)
@click.option("--base-image", required=True, help="Base image, e.g. group/base:1.0.2.")
@click.option("--output-repository", required=True, help="Repository to publish to.")
@click.option("--app-version", required=True, help="Version of the application artifact.")
@click.option("--given-version", default=None, help="Declared version (snapshots).")
@click.option("--snapshot/--release", default=None, help="Override snapshot detection.")
@click.option("--env", "env_pairs", multiple=True, help="KEY=VALUE environment entry.")
@click.option("--label", "label_pairs", multiple=True, help="KEY=VALUE label.")
@click.option("--cmd", "cmd", multiple=True, help="Command argument (repeatable).")
@click.option("--entrypoint", "entrypoint", multiple=True, help="Entrypoint argument.")
@click.pass_obj
def publish_command(
    context: BuildContext,
    build_folder: str,
    base_image: str,
    output_repository: str,
    app_version: str,
    given_version: str | None,
    snapshot: bool | None,
    env_pairs: tuple[str, ...],
    label_pairs: tuple[str, ...],
    cmd: tuple[str, ...],
    entrypoint: tuple[str, ...],
) -> None:
    """Build layers on top of a base image and publish the result."""
    given = given_version or app_version
    if snapshot is None:
        snapshot = is_snapshot_version(given)
    try:
        base = ImageReference.parse(base_image)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--base-image") from exc

    build_config = BuildConfig(
        build_folder=Path(build_folder),
        base_image=base,
        output_repository=output_repository,
        env=_parse_pairs(env_pairs, "--env"),
        labels=_parse_pairs(label_pairs, "--label"),
        cmd=list(cmd) or None,
        entrypoint=list(entrypoint) or None,
    )
    version = ImageVersion.from_builder_and_base(
        app_version, snapshot, given, context.settings.builder_version, base
    )

    def action() -> list[str]:
        with _registry_client(context.settings) as client:
            return ImagePublisher(context, client).publish(build_config, version)

    names = _run(action)
    click.echo(f"Published {version.complete_version}")
    for name in names:
        click.echo(f"  {name}")


@main.command("resolve-tags")
@click.option("--repository", required=True, help="Repository to resolve tags in.")
@click.option("--app-version", required=True, help="Version of the application artifact.")
@click.option("--complete-version", required=True, help="Fully-qualified build version.")
@click.option("--given-version", default=None, help="Declared version (snapshots).")
@click.option("--snapshot", is_flag=True, default=False, help="Treat as a snapshot build.")
@click.option("--extra-tags", default=None, help="Override PUSH_EXTRA_TAGS.")
@click.option("--overwrite", is_flag=True, default=False, help="Skip overwrite protection.")
@click.pass_obj
def resolve_tags_command(
    context: BuildContext,
    repository: str,
    app_version: str,
    complete_version: str,
    given_version: str | None,
    snapshot: bool,
    extra_tags: str | None,
    overwrite: bool,
) -> None:
    """Print the tags a build with this version would be published under."""
    settings = context.settings
    version = ImageVersion(
        app_version=app_version,
        snapshot=snapshot,
        given_version=given_version or app_version,
        complete_version=complete_version,
    )
    push_extra_tags = (
        PushExtraTags.parse(extra_tags) if extra_tags is not None else settings.extra_tags()
    )

    def action() -> list[str]:
        with _registry_client(settings) as client:
            resolver = TagResolver(
                registry=settings.output_registry,
                repository=repository,
                registry_client=client,
                overwrite=overwrite or settings.tag_overwrite,
                logger=context.logger,
            )
            return resolver.resolve_tags(version, push_extra_tags)

    for name in _run(action):
        click.echo(name)


@main.command("retag")
@click.option("--repository", required=True, help="Repository holding the image.")
@click.option("--tag", "source_tag", required=True, help="Existing (temporary) tag.")
@click.pass_obj
def retag_command(context: BuildContext, repository: str, source_tag: str) -> None:
    """Publish an existing image under the tags its version resolves to."""

    def action() -> list[str]:
        with _registry_client(context.settings) as client:
            return ImagePublisher(context, client).retag(repository, source_tag)

    for name in _run(action):
        click.echo(f"Tagged {name}")


@main.command("pack-layer")
@click.option(
    "--source",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Directory holding the layer folder.",
)
@click.option("--name", required=True, help="Name of the layer folder inside --source.")
@click.option(
    "--output",
    "output_dir",
    required=True,
    type=click.Path(file_okay=False),
    help="Directory to write <name>-layer.tar.gz into.",
)
def pack_layer_command(source: str, name: str, output_dir: str) -> None:
    """Pack one layer folder and print its digests."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    try:
        blob_path = pack_directory_as_layer(source, name, output_dir)
    except NotADirectoryError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Packed layer: {blob_path}")
    click.echo(f"  Digest  : {digest_of_file(blob_path)}")
    click.echo(f"  Size    : {blob_path.stat().st_size}")
    click.echo(f"  Diff-id : {_run(lambda: digest_of_decompressed_tar(blob_path))}")


if __name__ == "__main__":
    main()
