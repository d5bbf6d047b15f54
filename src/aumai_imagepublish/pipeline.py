"""End-to-end publishing: pull, build, push and tag, plus retagging."""

from __future__ import annotations

from .config import BuildContext
from .core import LayerAssembler
from .errors import ImagePublishError, TagConflictError
from .models import BuildConfig
from .registry import RegistryPort
from .tagger import PushExtraTags, SingleTagResolver, TagResolver, format_image_names
from .versioning import ImageVersion

__all__ = [
    "ENV_APP_VERSION",
    "ENV_COMPLETE_VERSION",
    "ENV_PUSH_EXTRA_TAGS",
    "ENV_SNAPSHOT_VERSION",
    "ImagePublisher",
]

ENV_APP_VERSION = "APP_VERSION"
ENV_COMPLETE_VERSION = "AURORA_VERSION"
ENV_SNAPSHOT_VERSION = "SNAPSHOT_TAG"
ENV_PUSH_EXTRA_TAGS = "PUSH_EXTRA_TAGS"


class ImagePublisher:
    """
    Runs the sequential publish pipeline for one build.

    Every step blocks and a failure aborts the remaining steps. The whole
    sequence is safe to repeat after a failure.
    """

    def __init__(
        self,
        context: BuildContext,
        push_registry: RegistryPort,
        pull_registry: RegistryPort | None = None,
    ) -> None:
        self.context = context
        self.push_registry = push_registry
        self.pull_registry = pull_registry or push_registry

    def tag_resolver(self, repository: str) -> TagResolver | SingleTagResolver:
        settings = self.context.settings
        if settings.tag_with:
            return SingleTagResolver(settings.output_registry, repository, settings.tag_with)
        return TagResolver(
            registry=settings.output_registry,
            repository=repository,
            registry_client=self.pull_registry,
            overwrite=settings.tag_overwrite,
            logger=self.context.logger,
        )

    def publish(self, build_config: BuildConfig, version: ImageVersion) -> list[str]:
        """
        Build *build_config* on its base image and publish it.

        Returns the full image names that were pushed.
        """
        settings = self.context.settings
        repository = build_config.output_repository
        log = self.context.logger.bind(
            repository=repository, complete_version=version.complete_version
        )

        if not settings.tag_overwrite and not version.snapshot:
            self._check_complete_version_free(repository, version)

        assembler = LayerAssembler(
            push_registry=self.push_registry,
            pull_registry=self.pull_registry,
            logger=log,
        )
        assembler.pull(build_config)
        output = assembler.build(build_config)

        extra_tags = settings.extra_tags()
        resolver = self.tag_resolver(repository)
        names = resolver.resolve_tags(version, extra_tags)
        log.info("tags_resolved", tags=names)

        assembler.push(output, names)
        log.info("image_published", tags=len(names))
        return names

    def retag(self, repository: str, source_tag: str) -> list[str]:
        """
        Publish an already pushed image under the tags its version resolves to.

        The version is read from the image's environment: ``APP_VERSION``,
        ``AURORA_VERSION`` (complete version), ``SNAPSHOT_TAG`` (given
        version, present only for snapshots) and ``PUSH_EXTRA_TAGS``.
        """
        log = self.context.logger.bind(repository=repository, source_tag=source_tag)
        manifest = self.pull_registry.get_manifest(repository, source_tag)
        container_config = self.pull_registry.get_container_config(
            repository, manifest.config.digest
        )
        env = container_config.config.env_map()

        version = self._version_from_env(env, source_tag)
        extra_tags = PushExtraTags.parse(
            self._require_env(env, ENV_PUSH_EXTRA_TAGS, source_tag)
        )
        log.debug(
            "retag_version",
            complete_version=version.complete_version,
            extra_tags=extra_tags.to_string(),
        )

        settings = self.context.settings
        resolver = TagResolver(
            registry=settings.output_registry,
            repository=repository,
            registry_client=self.pull_registry,
            overwrite=settings.tag_overwrite,
            logger=self.context.logger,
        )
        tags = resolver.resolve_short_tags(version, extra_tags)

        manifest_bytes = manifest.to_json_bytes()
        for short in tags:
            self.push_registry.push_manifest(manifest_bytes, repository, short)
            log.info("image_retagged", tag=short)
        return format_image_names(tags, settings.output_registry, repository)

    def _check_complete_version_free(self, repository: str, version: ImageVersion) -> None:
        if version.complete_version in self.pull_registry.get_tags(repository):
            raise TagConflictError(version.complete_version, repository)

    @classmethod
    def _version_from_env(cls, env: dict[str, str], source_tag: str) -> ImageVersion:
        complete = cls._require_env(env, ENV_COMPLETE_VERSION, source_tag)
        app_version = cls._require_env(env, ENV_APP_VERSION, source_tag)
        given = env.get(ENV_SNAPSHOT_VERSION)
        return ImageVersion(
            app_version=app_version,
            snapshot=given is not None,
            given_version=given if given is not None else app_version,
            complete_version=complete,
        )

    @staticmethod
    def _require_env(env: dict[str, str], key: str, source_tag: str) -> str:
        if key not in env:
            raise ImagePublishError(
                f"Environment variable {key} missing from image tagged {source_tag}"
            )
        return env[key]
