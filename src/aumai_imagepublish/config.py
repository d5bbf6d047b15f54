"""Configuration, build context and registry credentials.

Settings are read from environment variables (and ``.env``), never from
module-level state; the resolved settings travel inside a ``BuildContext``.

Example:
    >>> context = BuildContext.from_settings(PublishSettings())
    >>> context.settings.extra_tags().latest
    True
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import CredentialsError
from .models import RegistryCredentials
from .tagger import PushExtraTags

__all__ = [
    "CLUSTER_DOCKER_CONFIG_PATH",
    "BuildContext",
    "PublishSettings",
    "read_registry_credentials",
]

CLUSTER_DOCKER_CONFIG_PATH = Path("/var/run/secrets/openshift.io/push/.dockercfg")


class PublishSettings(BaseSettings):
    """
    Publishing configuration.

    Environment Variables:
        PULL_REGISTRY: Base URL registry reads go to.
        PUSH_REGISTRY: Base URL registry writes go to. Default: PULL_REGISTRY
        OUTPUT_REGISTRY: Registry host used in published image names.
        PUSH_EXTRA_TAGS: Any of "latest major minor patch". Default: all four
        TAG_OVERWRITE: Skip overwrite protection. Default: false
        TAG_WITH: Publish exactly this tag instead of resolving tags.
        BUILDER_VERSION: Version of this builder, part of the complete version.
        DOCKER_CONFIG_PATH: Docker-style config file holding registry auths.
        REGISTRY_TLS_VERIFY: Verify registry TLS certificates. Default: true
        REGISTRY_TIMEOUT: Registry request timeout in seconds. Default: 60
        LOG_LEVEL: Logging level. Default: INFO
        LOG_JSON: Emit JSON log lines. Default: false
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    pull_registry: str = Field(default="https://localhost:5000")
    push_registry: str | None = None
    output_registry: str = ""
    push_extra_tags: str = "latest major minor patch"
    tag_overwrite: bool = False
    tag_with: str | None = None
    builder_version: str = "0.1.0"
    docker_config_path: Path = Field(
        default_factory=lambda: Path.home() / ".docker" / "config.json"
    )
    registry_tls_verify: bool = True
    registry_timeout: float = Field(default=60.0, gt=0)
    log_level: str = "INFO"
    log_json: bool = False

    def extra_tags(self) -> PushExtraTags:
        return PushExtraTags.parse(self.push_extra_tags)

    def push_registry_url(self) -> str:
        return self.push_registry or self.pull_registry


@dataclass(frozen=True)
class BuildContext:
    """Resolved settings and the logger handed to every pipeline component."""

    settings: PublishSettings
    logger: Any = field(default_factory=lambda: structlog.get_logger("aumai_imagepublish"))

    @classmethod
    def from_settings(cls, settings: PublishSettings, **bindings: Any) -> BuildContext:
        logger = structlog.get_logger("aumai_imagepublish").bind(**bindings)
        return cls(settings=settings, logger=logger)

    def bind(self, **bindings: Any) -> BuildContext:
        return BuildContext(settings=self.settings, logger=self.logger.bind(**bindings))


def read_registry_credentials(
    server: str, docker_config_path: str | Path
) -> RegistryCredentials | None:
    """
    Read credentials for *server* from a Docker-style config file.

    Returns ``None`` when the file does not exist (anonymous access). Raises
    ``CredentialsError`` when the file has no usable entry for *server*.
    """
    path = Path(docker_config_path)
    log = structlog.get_logger(__name__)
    if not path.exists():
        log.info("registry_credentials_absent", path=str(path))
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CredentialsError(server, f"{path} is not valid JSON: {exc}") from exc

    entry = (data.get("auths") or {}).get(server) or {}
    auth = entry.get("auth")
    if not auth:
        raise CredentialsError(server, f"no entry in {path}")

    try:
        decoded = base64.b64decode(auth, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise CredentialsError(server, f"auth entry is not base64: {exc}") from exc

    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise CredentialsError(server, "auth entry is not 'user:password'")
    return RegistryCredentials(
        username=username.strip(), password=password.strip(), server=server
    )
