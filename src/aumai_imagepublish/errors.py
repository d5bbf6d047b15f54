"""Exception hierarchy for aumai-imagepublish.

Exception Hierarchy:
    ImagePublishError (base)
    ├── BaseImageUnavailableError  # Pull could not fetch the base image
    ├── CorruptArchiveError        # gzip/tar stream could not be decoded
    ├── DigestMismatchError        # content does not hash to the expected digest
    ├── InvalidVersionError        # version string is not a usable version
    ├── RegistryTransportError     # network failure or unexpected HTTP status
    │   └── RegistryNotFoundError  # registry answered 404
    ├── PartialPublishError        # push failed after some blobs were uploaded
    ├── TagConflictError           # complete version is already published
    └── CredentialsError           # registry credentials could not be read

Every error carries an ``exit_code`` used by the CLI.
"""

from __future__ import annotations

__all__ = [
    "BaseImageUnavailableError",
    "CorruptArchiveError",
    "CredentialsError",
    "DigestMismatchError",
    "ImagePublishError",
    "InvalidVersionError",
    "PartialPublishError",
    "RegistryNotFoundError",
    "RegistryTransportError",
    "TagConflictError",
]


class ImagePublishError(Exception):
    """Base exception for all image build and publish errors."""

    exit_code: int = 1


class BaseImageUnavailableError(ImagePublishError):
    """Raised when the base image manifest or configuration cannot be fetched.

    Attributes:
        repository: Repository of the base image.
        reference: Tag or digest that was requested.
        reason: Description of the underlying failure.
    """

    exit_code: int = 3

    def __init__(self, repository: str, reference: str, reason: str) -> None:
        self.repository = repository
        self.reference = reference
        self.reason = reason
        super().__init__(f"Base image {repository}:{reference} unavailable: {reason}")


class CorruptArchiveError(ImagePublishError):
    """Raised when a layer blob is not a valid gzip/tar stream."""

    exit_code: int = 4

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Corrupt archive {source}: {reason}")


class DigestMismatchError(ImagePublishError):
    """Raised when content does not hash to the digest it was addressed by."""

    exit_code: int = 4

    def __init__(self, expected: str, actual: str, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        self.context = context
        msg = f"Digest mismatch: expected {expected}, got {actual}"
        if context:
            msg += f" ({context})"
        super().__init__(msg)


class InvalidVersionError(ImagePublishError):
    """Raised when a version string cannot be parsed where one is required."""

    exit_code: int = 2

    def __init__(self, version: str, reason: str = "") -> None:
        self.version = version
        self.reason = reason
        msg = f"Invalid version {version!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RegistryTransportError(ImagePublishError):
    """Raised on network failures and unexpected registry responses.

    Attributes:
        operation: Registry operation that failed (e.g. ``push_layer``).
        target: Repository, digest or URL the operation addressed.
        status_code: HTTP status code, when a response was received.
    """

    exit_code: int = 5

    def __init__(
        self,
        operation: str,
        target: str,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.target = target
        self.reason = reason
        self.status_code = status_code
        msg = f"{operation} failed for {target}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        super().__init__(f"{msg}: {reason}")


class RegistryNotFoundError(RegistryTransportError):
    """Raised when the registry answers 404 for a manifest, blob or repository."""


class PartialPublishError(ImagePublishError):
    """Raised when a push fails after some blobs were already uploaded.

    Uploaded blobs are content-addressed and left in place; repeating the
    push skips them.
    """

    exit_code: int = 6

    def __init__(self, repository: str, pushed: list[str], reason: str) -> None:
        self.repository = repository
        self.pushed = list(pushed)
        self.reason = reason
        super().__init__(
            f"Publish to {repository} incomplete after {len(self.pushed)} "
            f"uploaded blob(s): {reason}"
        )


class TagConflictError(ImagePublishError):
    """Raised when the complete version tag already exists in the repository."""

    exit_code: int = 7

    def __init__(self, tag: str, repository: str) -> None:
        self.tag = tag
        self.repository = repository
        super().__init__(
            f"There is already a build with tag {tag} in {repository}. "
            "Set TAG_OVERWRITE to replace it."
        )


class CredentialsError(ImagePublishError):
    """Raised when registry credentials cannot be read for a server."""

    exit_code: int = 2

    def __init__(self, server: str, reason: str) -> None:
        self.server = server
        self.reason = reason
        super().__init__(f"No usable credentials for {server}: {reason}")
