"""Version identity of a build and semantic-version helpers."""

from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict

from .errors import InvalidVersionError
from .models import ImageReference

__all__ = [
    "ImageVersion",
    "is_full_semantic_version",
    "is_semantic_version",
    "is_snapshot_version",
    "parse_version",
    "version_metadata",
    "version_without_metadata",
]

# Major is limited to three digits; numeric git commit ids are not versions.
_SEMANTIC_VERSION = re.compile(r"^[0-9]{1,3}(\.[0-9]+(\.[0-9]+)?)?(\+[0-9A-Za-z]+)?$")
_FULL_SEMANTIC_VERSION = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+(\+[0-9A-Za-z]+)?$")
_RELEASE_VERSION = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+$")


def is_semantic_version(version: str) -> bool:
    """``1``, ``1.2``, ``1.2.3`` with optional ``+metadata``."""
    return bool(_SEMANTIC_VERSION.match(version))


def is_full_semantic_version(version: str) -> bool:
    """``MAJOR.MINOR.PATCH`` with optional ``+metadata``."""
    return bool(_FULL_SEMANTIC_VERSION.match(version))


def is_snapshot_version(given_version: str) -> bool:
    return "SNAPSHOT" in given_version


def version_metadata(version: str) -> str:
    """Return the part after ``+``, or an empty string."""
    _, _, meta = version.partition("+")
    return meta


def version_without_metadata(version: str) -> str:
    return version.partition("+")[0]


def parse_version(version: str) -> Version:
    """Parse a numeric version, ignoring ``+metadata``; raises ``InvalidVersionError``."""
    core = version_without_metadata(version)
    if not core or not all(part.isdigit() for part in core.split(".")):
        raise InvalidVersionError(version, "expected dot-separated numeric components")
    try:
        return Version(core)
    except InvalidVersion as exc:
        raise InvalidVersionError(version, str(exc)) from exc


class ImageVersion(BaseModel):
    """
    The version identity of one build.

    ``app_version`` is the artifact's own version; for snapshots it is the
    generated snapshot string and differs from ``given_version``, the version
    the caller declared. ``complete_version`` is
    ``<app_version>-b<builder_version>-<base repository>-<base tag>``.
    """

    model_config = ConfigDict(frozen=True)

    app_version: str
    snapshot: bool = False
    given_version: str
    complete_version: str

    @classmethod
    def from_builder_and_base(
        cls,
        app_version: str,
        snapshot: bool,
        given_version: str,
        builder_version: str,
        base_image: ImageReference,
    ) -> ImageVersion:
        complete = f"{app_version}-b{builder_version}-{base_image.version_component()}"
        return cls(
            app_version=app_version,
            snapshot=snapshot,
            given_version=given_version,
            complete_version=complete,
        )

    def is_semantic_release_version(self) -> bool:
        """True for non-snapshot versions of the strict form ``MAJOR.MINOR.PATCH``."""
        if self.snapshot:
            return False
        return bool(_RELEASE_VERSION.match(self.app_version))
