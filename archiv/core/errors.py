from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes that drive retry and HTTP mapping decisions."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ArchivError(Exception):
    """Base error for Archiv."""

    kind: ErrorKind = ErrorKind.PERMANENT


class NotFoundError(ArchivError):
    """Asset, tag or folder is missing or belongs to another tenant."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(ArchivError):
    """Malformed input such as a missing required id."""

    kind = ErrorKind.VALIDATION


class InvalidTransitionError(ValidationError):
    """Requested embedding status transition is not allowed."""


class ProviderConfigError(ArchivError):
    """Missing or invalid provider configuration."""


class TransientDependencyError(ArchivError):
    """External dependency timed out or is unavailable."""

    kind = ErrorKind.TRANSIENT


class EmbeddingProviderError(TransientDependencyError):
    """Embedding model request failure."""


class CaptionProviderError(TransientDependencyError):
    """Captioning model request failure."""


class VectorIndexError(TransientDependencyError):
    """Vector index request failure."""


class ObjectStorageError(TransientDependencyError):
    """Object storage request failure."""


class QueueUnavailableError(TransientDependencyError):
    """Embedding queue could not accept a message."""


def error_kind(exc: BaseException) -> ErrorKind:
    # Unclassified exceptions are treated as transient so the queue retries them.
    if isinstance(exc, ArchivError):
        return exc.kind
    return ErrorKind.TRANSIENT
