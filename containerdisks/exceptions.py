"""Custom exceptions for containerdisks."""

from __future__ import annotations

import enum


class PipelineError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class InspectionError(PipelineError):
    """The upstream release source could not be reached or parsed."""


class RegistryErrorKind(enum.Enum):
    REPOSITORY_UNKNOWN = "repository-unknown"
    MANIFEST_UNKNOWN = "manifest-unknown"
    TAG_EXPIRED = "tag-expired"
    REMOTE = "remote"


class RegistryError(PipelineError):
    """A registry operation failed; ``kind`` tells absent images from real faults."""

    def __init__(self, message: str, kind: RegistryErrorKind = RegistryErrorKind.REMOTE) -> None:
        super().__init__(message)
        self.kind = kind

    def is_absent(self) -> bool:
        return self.kind is not RegistryErrorKind.REMOTE


class ChecksumMismatchError(PipelineError):
    """Downloaded content does not match the checksum the upstream declared."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"expected checksum '{expected}' but got '{actual}'")
        self.expected = expected
        self.actual = actual


class BuildError(PipelineError):
    """Streaming the disk into an image layer failed."""


class VerificationError(PipelineError):
    """Booting or testing a containerdisk failed."""


class BootTimeoutError(VerificationError):
    """The VMI did not reach the Running phase in time."""


class ConsoleTimeoutError(VerificationError):
    """The guest console did not produce an expected prompt in time."""


class LoginIncorrectError(VerificationError):
    """The guest rejected the supplied credentials."""
