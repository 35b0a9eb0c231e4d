"""semfind package initialization."""

from __future__ import annotations

from .api import SemfindClient
from .cache import CacheStats, ContentCache
from .embeddings import EmbeddingOrchestrator, EmbeddingRequest, EmbeddingResult
from .errors import (
    BackendUnavailableError,
    DimensionMismatchError,
    InputError,
    InvalidLineRangeError,
    InvalidPatternError,
    PipelineError,
    SemfindError,
    ZeroVectorError,
)
from .files import DirectoryStats, FileInfo, FileSearchConfig, FileSearchEngine, SearchMatch
from .vectors import BackendInfo, SimilarityResult, VectorSimilarityEngine

__all__ = [
    "__version__",
    "BackendInfo",
    "BackendUnavailableError",
    "CacheStats",
    "ContentCache",
    "DimensionMismatchError",
    "DirectoryStats",
    "EmbeddingOrchestrator",
    "EmbeddingRequest",
    "EmbeddingResult",
    "FileInfo",
    "FileSearchConfig",
    "FileSearchEngine",
    "InputError",
    "InvalidLineRangeError",
    "InvalidPatternError",
    "PipelineError",
    "SearchMatch",
    "SemfindClient",
    "SemfindError",
    "SimilarityResult",
    "VectorSimilarityEngine",
    "ZeroVectorError",
    "get_version",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
