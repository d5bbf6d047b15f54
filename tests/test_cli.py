"""Tests for aumai_imagepublish CLI."""

from __future__ import annotations

import contextlib
from pathlib import Path

import pytest
from click.testing import CliRunner
from conftest import OUTPUT_REPOSITORY, FakeRegistry

from aumai_imagepublish import cli
from aumai_imagepublish.archive import digest_of_file
from aumai_imagepublish.cli import main
from aumai_imagepublish.models import ImageReference

COMPLETE = "2.4.5-b1.11.0-oracle8-1.0.2"


@pytest.fixture(autouse=True)
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OUTPUT_REGISTRY", "registry.test")
    monkeypatch.setenv("PULL_REGISTRY", "https://registry.test")
    monkeypatch.setenv("BUILDER_VERSION", "1.11.0")
    monkeypatch.setenv("PUSH_EXTRA_TAGS", "latest major minor patch")
    monkeypatch.setenv("DOCKER_CONFIG_PATH", str(tmp_path / "no-docker-config.json"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    for name in ("TAG_WITH", "TAG_OVERWRITE", "PUSH_REGISTRY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def use_fake_registry(
    monkeypatch: pytest.MonkeyPatch, fake_registry: FakeRegistry
) -> FakeRegistry:
    monkeypatch.setattr(
        cli, "_registry_client", lambda settings: contextlib.nullcontext(fake_registry)
    )
    return fake_registry


def _publish_args(build_folder: Path, base_image: ImageReference, *extra: str) -> list[str]:
    return [
        "publish",
        "--context", str(build_folder),
        "--base-image", base_image.full_name(),
        "--output-repository", OUTPUT_REPOSITORY,
        "--app-version", "2.4.5",
        *extra,
    ]


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


class TestVersionFlag:
    def test_version_exits_zero(self) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestHelp:
    def test_lists_commands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("publish", "resolve-tags", "retag", "pack-layer"):
            assert command in result.output


# ---------------------------------------------------------------------------
# pack-layer command
# ---------------------------------------------------------------------------


class TestPackLayerCommand:
    def test_packs_layer(self, build_folder: Path, tmp_path: Path) -> None:
        out = tmp_path / "out"
        result = CliRunner().invoke(
            main,
            [
                "pack-layer",
                "--source", str(build_folder / "layer"),
                "--name", "app",
                "--output", str(out),
            ],
        )
        assert result.exit_code == 0, result.output
        blob = out / "app-layer.tar.gz"
        assert blob.exists()
        assert digest_of_file(blob) in result.output
        assert "Diff-id" in result.output

    def test_missing_layer_folder(self, build_folder: Path, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main,
            [
                "pack-layer",
                "--source", str(build_folder / "layer"),
                "--name", "missing",
                "--output", str(tmp_path / "out"),
            ],
        )
        assert result.exit_code == 1
        assert "Error" in result.output


# ---------------------------------------------------------------------------
# publish command
# ---------------------------------------------------------------------------


class TestPublishCommand:
    def test_publishes(
        self,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        result = CliRunner().invoke(
            main,
            _publish_args(
                build_folder, base_image,
                "--env", "HOME=/u01",
                "--label", "team=aurora",
                "--cmd", "/u01/start.sh",
            ),
        )
        assert result.exit_code == 0, result.output
        assert f"Published {COMPLETE}" in result.output
        assert "registry.test/aurora/app:latest" in result.output
        assert "2.4.5" in use_fake_registry.manifests[OUTPUT_REPOSITORY]

    def test_rejects_malformed_env(
        self,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        result = CliRunner().invoke(
            main, _publish_args(build_folder, base_image, "--env", "NOVALUE")
        )
        assert result.exit_code == 2
        assert use_fake_registry.count("mount_layer") == 0

    def test_tag_conflict_exit_code(
        self,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        use_fake_registry.add_tags(OUTPUT_REPOSITORY, COMPLETE)
        result = CliRunner().invoke(main, _publish_args(build_folder, base_image))
        assert result.exit_code == 7
        assert "Error:" in result.output
        assert "TAG_OVERWRITE" in result.output

    def test_missing_base_image_exit_code(
        self,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        result = CliRunner().invoke(
            main, _publish_args(build_folder, base_image.with_tag("0.0.0"))
        )
        assert result.exit_code == 3

    def test_snapshot_detected_from_given_version(
        self,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        result = CliRunner().invoke(
            main,
            [
                "publish",
                "--context", str(build_folder),
                "--base-image", base_image.full_name(),
                "--output-repository", OUTPUT_REPOSITORY,
                "--app-version", "feature-20200101.1",
                "--given-version", "feature-SNAPSHOT",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "registry.test/aurora/app:feature-SNAPSHOT" in result.output
        assert "latest" not in use_fake_registry.manifests[OUTPUT_REPOSITORY]


# ---------------------------------------------------------------------------
# resolve-tags command
# ---------------------------------------------------------------------------


class TestResolveTagsCommand:
    def test_prints_resolved_tags(self, use_fake_registry: FakeRegistry) -> None:
        use_fake_registry.add_tags(OUTPUT_REPOSITORY, "1.2.2")
        result = CliRunner().invoke(
            main,
            [
                "resolve-tags",
                "--repository", OUTPUT_REPOSITORY,
                "--app-version", "1.2.1",
                "--complete-version", "1.2.1-b1",
            ],
        )
        assert result.exit_code == 0, result.output
        assert result.output.split() == [
            "registry.test/aurora/app:1.2.1",
            "registry.test/aurora/app:1.2.1-b1",
        ]

    def test_overwrite_flag(self, use_fake_registry: FakeRegistry) -> None:
        use_fake_registry.add_tags(OUTPUT_REPOSITORY, "1.2.2")
        result = CliRunner().invoke(
            main,
            [
                "resolve-tags",
                "--repository", OUTPUT_REPOSITORY,
                "--app-version", "1.2.1",
                "--complete-version", "1.2.1-b1",
                "--extra-tags", "latest",
                "--overwrite",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "registry.test/aurora/app:latest" in result.output
        assert use_fake_registry.count("get_tags") == 0


# ---------------------------------------------------------------------------
# retag command
# ---------------------------------------------------------------------------


class TestRetagCommand:
    def test_retags(
        self,
        monkeypatch: pytest.MonkeyPatch,
        use_fake_registry: FakeRegistry,
        build_folder: Path,
        base_image: ImageReference,
    ) -> None:
        monkeypatch.setenv("TAG_WITH", "temp-7")
        published = CliRunner().invoke(
            main,
            _publish_args(
                build_folder, base_image,
                "--env", "APP_VERSION=2.4.5",
                "--env", f"AURORA_VERSION={COMPLETE}",
                "--env", "PUSH_EXTRA_TAGS=major",
            ),
        )
        assert published.exit_code == 0, published.output

        monkeypatch.delenv("TAG_WITH")
        result = CliRunner().invoke(
            main, ["retag", "--repository", OUTPUT_REPOSITORY, "--tag", "temp-7"]
        )
        assert result.exit_code == 0, result.output
        assert "Tagged registry.test/aurora/app:2" in result.output
        assert "latest" not in use_fake_registry.manifests[OUTPUT_REPOSITORY]

    def test_unknown_tag_exit_code(self, use_fake_registry: FakeRegistry) -> None:
        result = CliRunner().invoke(
            main, ["retag", "--repository", OUTPUT_REPOSITORY, "--tag", "nope"]
        )
        assert result.exit_code == 5
