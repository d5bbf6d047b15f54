"""Resolution of the tags a freshly built image is published under.

A release build (``MAJOR.MINOR.PATCH``, not a snapshot) may move the floating
tags ``latest``, ``MAJOR`` and ``MAJOR.MINOR``, but only when no newer release
already covered by that tag exists in the repository:

    minor  excluded if  app < V < MAJOR.(MINOR+1)
    major  excluded if  app < V < (MAJOR+1)
    latest excluded if  app < V

The patch tag and the complete version are exact and always published.
Non-release builds get the complete version, plus the given version for
snapshots.
"""

from __future__ import annotations

from typing import Any

import structlog
from packaging.version import Version
from pydantic import BaseModel

from .models import ImageReference
from .registry import RegistryPort
from .versioning import (
    ImageVersion,
    is_semantic_version,
    parse_version,
    version_metadata,
)

__all__ = [
    "PushExtraTags",
    "SingleTagResolver",
    "TagResolver",
    "format_image_names",
    "short_tag",
]

_LATEST = "latest"
_MAJOR = "major"
_MINOR = "minor"
_EXACT = "exact"


class PushExtraTags(BaseModel):
    """Which floating tags a release build should try to publish."""

    latest: bool = False
    major: bool = False
    minor: bool = False
    patch: bool = False

    @classmethod
    def parse(cls, value: str) -> PushExtraTags:
        """Parse a string such as ``"latest major minor patch"`` by word presence."""
        value = value.lower()
        return cls(
            latest="latest" in value,
            major="major" in value,
            minor="minor" in value,
            patch="patch" in value,
        )

    def to_string(self) -> str:
        words = [
            name
            for name, enabled in (
                ("major", self.major),
                ("minor", self.minor),
                ("patch", self.patch),
                ("latest", self.latest),
            )
            if enabled
        ]
        return " ".join(words)


def format_image_names(tags: list[str], registry: str, repository: str) -> list[str]:
    """Return ``registry/repository:tag`` for each tag, deduplicated in order."""
    names: list[str] = []
    for tag in tags:
        name = ImageReference(registry=registry, repository=repository, tag=tag).full_name()
        if name not in names:
            names.append(name)
    return names


def short_tag(name: str) -> str:
    """Return the tag part of a full image name; a bare tag is returned as is."""
    if "/" not in name and ":" not in name:
        return name
    return ImageReference.parse(name).tag


class SingleTagResolver:
    """Publishes exactly one configured tag, regardless of version."""

    def __init__(self, registry: str, repository: str, tag: str) -> None:
        self.registry = registry
        self.repository = repository
        self.tag = tag

    def resolve_short_tags(
        self, version: ImageVersion, extra_tags: PushExtraTags
    ) -> list[str]:
        return [self.tag]

    def resolve_tags(self, version: ImageVersion, extra_tags: PushExtraTags) -> list[str]:
        return format_image_names([self.tag], self.registry, self.repository)


class TagResolver:
    """
    Resolves tags with overwrite protection against the repository's tag list.

    With ``overwrite`` set, the tag list is not fetched and no floating tag is
    excluded.
    """

    def __init__(
        self,
        registry: str,
        repository: str,
        registry_client: RegistryPort,
        overwrite: bool = False,
        logger: Any = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.registry_client = registry_client
        self.overwrite = overwrite
        self._log = logger or structlog.get_logger(__name__)

    def resolve_tags(self, version: ImageVersion, extra_tags: PushExtraTags) -> list[str]:
        """Return full image names (``registry/repository:tag``) to publish."""
        tags = self.resolve_short_tags(version, extra_tags)
        return format_image_names(tags, self.registry, self.repository)

    def resolve_short_tags(
        self, version: ImageVersion, extra_tags: PushExtraTags
    ) -> list[str]:
        """Return bare tags to publish, deduplicated."""
        if not version.is_semantic_release_version():
            self._log.debug(
                "tags_non_release",
                app_version=version.app_version,
                snapshot=version.snapshot,
            )
            tags = [version.complete_version]
            if version.snapshot:
                tags.append(version.given_version)
            return _dedupe(tags)

        repository_tags: list[str] = []
        if not self.overwrite:
            repository_tags = self.registry_client.get_tags(self.repository)
            self._log.debug(
                "tags_in_repository", repository=self.repository, count=len(repository_tags)
            )

        candidates = candidate_tags(version, extra_tags)
        excluded = excluded_tag_kinds(version, repository_tags)
        self._log.debug(
            "tags_filtered",
            app_version=version.app_version,
            excluded=sorted(excluded),
        )
        return _dedupe([tag for kind, tag in candidates if kind not in excluded])


def candidate_tags(
    version: ImageVersion, extra_tags: PushExtraTags
) -> list[tuple[str, str]]:
    """Return ``(kind, tag)`` pairs for a release version, sorted by tag."""
    parsed = parse_version(version.app_version)
    major, minor = parsed.release[0], parsed.release[1]

    candidates: list[tuple[str, str]] = []
    if extra_tags.latest:
        candidates.append((_LATEST, "latest"))
    if extra_tags.major:
        candidates.append((_MAJOR, f"{major}"))
    if extra_tags.minor:
        candidates.append((_MINOR, f"{major}.{minor}"))
    if extra_tags.patch:
        candidates.append((_EXACT, version.app_version))
    candidates.append((_EXACT, version.complete_version))
    return sorted(candidates, key=lambda pair: pair[1])


def excluded_tag_kinds(version: ImageVersion, repository_tags: list[str]) -> set[str]:
    """Return the floating tag kinds that would shadow a newer release."""
    current = parse_version(version.app_version)
    major, minor = current.release[0], current.release[1]
    meta = version_metadata(version.app_version)

    existing = _comparable_versions(repository_tags, meta)
    excluded: set[str] = set()
    if _newer_exists(existing, current, Version(f"{major}.{minor + 1}")):
        excluded.add(_MINOR)
    if _newer_exists(existing, current, Version(f"{major + 1}")):
        excluded.add(_MAJOR)
    if _newer_exists(existing, current, None):
        excluded.add(_LATEST)
    return excluded


def _comparable_versions(tags: list[str], meta: str) -> list[Version]:
    # Only tags carrying the same +metadata as the app version are compared.
    versions: list[Version] = []
    for tag in tags:
        if not is_semantic_version(tag) or version_metadata(tag) != meta:
            continue
        versions.append(parse_version(tag))
    return versions


def _newer_exists(
    existing: list[Version], lower: Version, upper: Version | None
) -> bool:
    return any(lower < v and (upper is None or v < upper) for v in existing)


def _dedupe(tags: list[str]) -> list[str]:
    result: list[str] = []
    for tag in tags:
        if tag not in result:
            result.append(tag)
    return result
