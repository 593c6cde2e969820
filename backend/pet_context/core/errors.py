"""Exception hierarchy for Pet Context."""

from __future__ import annotations


class PetContextError(Exception):
    """Base exception for all Pet Context errors."""


class TransientError(PetContextError):
    """Marker base for failures that may succeed when retried."""


class ConfigError(PetContextError):
    """Raised when configuration is invalid or a startup dependency is unusable."""


class SyncError(PetContextError):
    """Raised when a change event cannot be applied to the vector index."""


class MalformedEventError(SyncError):
    """Raised for change events that fail validation; they are dropped, not retried."""


class EmbeddingError(PetContextError):
    """Raised when the embedding provider returns an unusable reply."""


class EmbeddingUnavailableError(EmbeddingError, TransientError):
    """Raised when the embedding provider cannot be reached or times out."""


class VectorIndexError(PetContextError):
    """Raised when a vector index operation fails."""


class IndexUnavailableError(VectorIndexError, TransientError):
    """Raised when the vector index store cannot be reached."""


class DimensionMismatchError(VectorIndexError):
    """Raised when a vector does not match the index dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SourceError(PetContextError):
    """Raised when an external retrieval source fails."""


__all__ = [
    "PetContextError",
    "TransientError",
    "ConfigError",
    "SyncError",
    "MalformedEventError",
    "EmbeddingError",
    "EmbeddingUnavailableError",
    "VectorIndexError",
    "IndexUnavailableError",
    "DimensionMismatchError",
    "SourceError",
]
