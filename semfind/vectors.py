"""Cosine similarity engine with an accelerated numpy backend and a portable fallback."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as sk_cosine_similarity

from .config import DEFAULT_BACKEND, DEFAULT_SIMILARITY_THRESHOLD, normalize_backend
from .errors import BackendUnavailableError, DimensionMismatchError, InputError, ZeroVectorError
from .text import Messages

logger = logging.getLogger(__name__)

VectorLike = Sequence[float]


@dataclass(slots=True)
class SimilarityResult:
    """A single ranked similarity hit."""

    path: str | Path
    similarity: float
    rank: int = 0


@dataclass(frozen=True, slots=True)
class BackendInfo:
    type: str
    accelerated: bool
    requested: str
    fallback_reason: str | None = None

    @property
    def performance(self) -> str:
        return "high" if self.accelerated else "standard"


class VectorBackend(Protocol):
    """Operations every vector backend provides with identical semantics."""

    name: str
    accelerated: bool

    def cosine_similarity(self, a: VectorLike, b: VectorLike) -> float:
        raise NotImplementedError  # pragma: no cover

    def batch_cosine_similarity(
        self, query: VectorLike, vectors: Sequence[VectorLike]
    ) -> list[float]:
        raise NotImplementedError  # pragma: no cover

    def top_k(
        self,
        query: VectorLike,
        vectors: Sequence[VectorLike],
        paths: Sequence[str | Path],
        k: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        raise NotImplementedError  # pragma: no cover

    def normalize(self, vector: VectorLike) -> list[float]:
        raise NotImplementedError  # pragma: no cover

    def vector_norm(self, vector: VectorLike) -> float:
        raise NotImplementedError  # pragma: no cover

    def pairwise_distances(self, vectors: Sequence[VectorLike]) -> list[list[float]]:
        raise NotImplementedError  # pragma: no cover


def _dimension_error(left: int, right: int) -> DimensionMismatchError:
    return DimensionMismatchError(Messages.ERROR_DIMENSION_MISMATCH.format(left=left, right=right))


def _check_paths(vectors: Sequence[object], paths: Sequence[object]) -> None:
    if len(vectors) != len(paths):
        raise InputError(
            Messages.ERROR_PATHS_MISMATCH.format(vectors=len(vectors), paths=len(paths))
        )


def rank_similarities(
    similarities: Sequence[float],
    paths: Sequence[str | Path],
    k: int,
    threshold: float,
) -> list[SimilarityResult]:
    """Filter by *threshold*, sort descending (first seen wins ties), keep *k*."""

    if k <= 0:
        return []
    kept = [
        (index, float(score))
        for index, score in enumerate(similarities)
        if score >= threshold
    ]
    kept.sort(key=lambda item: -item[1])
    return [
        SimilarityResult(path=paths[index], similarity=score, rank=position)
        for position, (index, score) in enumerate(kept[:k], start=1)
    ]


class PortableVectorBackend:
    """Pure Python implementation using scalar loops."""

    name = "portable"
    accelerated = False

    def cosine_similarity(self, a: VectorLike, b: VectorLike) -> float:
        if len(a) != len(b):
            raise _dimension_error(len(a), len(b))
        dot = 0.0
        norm_a = 0.0
        norm_b = 0.0
        for x, y in zip(a, b):
            x = float(x)
            y = float(y)
            dot += x * y
            norm_a += x * x
            norm_b += y * y
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))

    def batch_cosine_similarity(
        self, query: VectorLike, vectors: Sequence[VectorLike]
    ) -> list[float]:
        return [self.cosine_similarity(query, vector) for vector in vectors]

    def top_k(
        self,
        query: VectorLike,
        vectors: Sequence[VectorLike],
        paths: Sequence[str | Path],
        k: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        _check_paths(vectors, paths)
        if k <= 0:
            return []
        return rank_similarities(self.batch_cosine_similarity(query, vectors), paths, k, threshold)

    def vector_norm(self, vector: VectorLike) -> float:
        return math.sqrt(sum(float(value) * float(value) for value in vector))

    def normalize(self, vector: VectorLike) -> list[float]:
        norm = self.vector_norm(vector)
        if norm == 0.0:
            raise ZeroVectorError(Messages.ERROR_ZERO_VECTOR)
        return [float(value) / norm for value in vector]

    def pairwise_distances(self, vectors: Sequence[VectorLike]) -> list[list[float]]:
        count = len(vectors)
        distances = [[0.0] * count for _ in range(count)]
        for i in range(count):
            for j in range(count):
                if i != j:
                    distances[i][j] = 1.0 - self.cosine_similarity(vectors[i], vectors[j])
        return distances


class NativeVectorBackend:
    """Vectorised implementation on numpy/BLAS and scikit-learn.

    Construction runs a small probe computation and raises
    ``BackendUnavailableError`` if the numeric stack misbehaves.
    """

    name = "native"
    accelerated = True

    def __init__(self) -> None:
        try:
            probe = sk_cosine_similarity(
                np.array([[1.0, 0.0, 0.0]]), np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
            )[0]
        except Exception as exc:
            raise BackendUnavailableError(
                Messages.ERROR_BACKEND_UNAVAILABLE.format(kind="Vector", reason=str(exc))
            ) from exc
        if not np.allclose(probe, [1.0, 0.0]):
            raise BackendUnavailableError(
                Messages.ERROR_BACKEND_UNAVAILABLE.format(
                    kind="Vector", reason="probe similarity mismatch"
                )
            )

    @staticmethod
    def _vector(values: VectorLike) -> np.ndarray:
        return np.asarray(values, dtype=np.float64).reshape(-1)

    @staticmethod
    def _matrix(vectors: Sequence[VectorLike], dimension: int | None = None) -> np.ndarray:
        if isinstance(vectors, np.ndarray) and vectors.ndim == 2:
            matrix = vectors.astype(np.float64, copy=False)
            if dimension is not None and matrix.shape[1] != dimension:
                raise _dimension_error(dimension, matrix.shape[1])
            return matrix
        if dimension is None and len(vectors):
            dimension = len(vectors[0])
        for vector in vectors:
            if len(vector) != dimension:
                raise _dimension_error(dimension or 0, len(vector))
        return np.asarray(vectors, dtype=np.float64).reshape(len(vectors), dimension or 0)

    def cosine_similarity(self, a: VectorLike, b: VectorLike) -> float:
        vec_a = self._vector(a)
        vec_b = self._vector(b)
        if vec_a.shape != vec_b.shape:
            raise _dimension_error(vec_a.size, vec_b.size)
        norm_a = float(np.linalg.norm(vec_a))
        norm_b = float(np.linalg.norm(vec_b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))

    def _similarities(self, query: VectorLike, vectors: Sequence[VectorLike]) -> np.ndarray:
        query_vec = self._vector(query)
        if len(vectors) == 0:
            return np.empty(0, dtype=np.float64)
        matrix = self._matrix(vectors, query_vec.size)
        if query_vec.size == 0:
            return np.zeros(len(matrix), dtype=np.float64)
        return sk_cosine_similarity(query_vec.reshape(1, -1), matrix)[0]

    def batch_cosine_similarity(
        self, query: VectorLike, vectors: Sequence[VectorLike]
    ) -> list[float]:
        return self._similarities(query, vectors).tolist()

    def top_k(
        self,
        query: VectorLike,
        vectors: Sequence[VectorLike],
        paths: Sequence[str | Path],
        k: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        _check_paths(vectors, paths)
        if k <= 0:
            return []
        scores = self._similarities(query, vectors)
        candidates = np.flatnonzero(scores >= threshold)
        order = candidates[np.argsort(-scores[candidates], kind="stable")][:k]
        return [
            SimilarityResult(path=paths[int(index)], similarity=float(scores[index]), rank=position)
            for position, index in enumerate(order, start=1)
        ]

    def vector_norm(self, vector: VectorLike) -> float:
        return float(np.linalg.norm(self._vector(vector)))

    def normalize(self, vector: VectorLike) -> list[float]:
        values = self._vector(vector)
        norm = float(np.linalg.norm(values))
        if norm == 0.0:
            raise ZeroVectorError(Messages.ERROR_ZERO_VECTOR)
        return (values / norm).tolist()

    def pairwise_distances(self, vectors: Sequence[VectorLike]) -> list[list[float]]:
        if len(vectors) == 0:
            return []
        matrix = self._matrix(vectors)
        if matrix.shape[1] == 0:
            distances = np.ones((len(matrix), len(matrix)), dtype=np.float64)
        else:
            distances = 1.0 - sk_cosine_similarity(matrix)
        np.fill_diagonal(distances, 0.0)
        return distances.tolist()


_BACKENDS = {
    "native": NativeVectorBackend,
    "portable": PortableVectorBackend,
}


class VectorSimilarityEngine:
    """Single entry point for vector math; the backend is chosen once here."""

    def __init__(
        self,
        backend: str = DEFAULT_BACKEND,
        *,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.requested_backend = normalize_backend(backend, "vector_backend")
        self.similarity_threshold = similarity_threshold
        self._fallback_reason: str | None = None
        self._backend = self._create_backend()

    def _create_backend(self) -> VectorBackend:
        if self.requested_backend == "portable":
            return PortableVectorBackend()
        try:
            return _BACKENDS["native"]()
        except Exception as exc:
            self._fallback_reason = str(exc)
            logger.warning(
                Messages.WARNING_BACKEND_FALLBACK.format(kind="Vector", reason=exc)
            )
            return PortableVectorBackend()

    @property
    def backend(self) -> VectorBackend:
        return self._backend

    def get_backend_info(self) -> BackendInfo:
        return BackendInfo(
            type=self._backend.name,
            accelerated=self._backend.accelerated,
            requested=self.requested_backend,
            fallback_reason=self._fallback_reason,
        )

    def cosine_similarity(self, a: VectorLike, b: VectorLike) -> float:
        return self._backend.cosine_similarity(a, b)

    def batch_cosine_similarity(
        self, query: VectorLike, vectors: Sequence[VectorLike]
    ) -> list[float]:
        return self._backend.batch_cosine_similarity(query, vectors)

    def top_k(
        self,
        query: VectorLike,
        vectors: Sequence[VectorLike],
        paths: Sequence[str | Path],
        k: int,
        threshold: float | None = None,
    ) -> list[SimilarityResult]:
        limit = self.similarity_threshold if threshold is None else threshold
        return self._backend.top_k(query, vectors, paths, k, limit)

    def normalize(self, vector: VectorLike) -> list[float]:
        return self._backend.normalize(vector)

    def vector_norm(self, vector: VectorLike) -> float:
        return self._backend.vector_norm(vector)

    def pairwise_distances(self, vectors: Sequence[VectorLike]) -> list[list[float]]:
        return self._backend.pairwise_distances(vectors)


def benchmark(vector_size: int = 384, num_vectors: int = 1_000, *, seed: int = 0) -> dict[str, float]:
    """Time batch similarity on both backends and report the speedup."""

    rng = np.random.default_rng(seed)
    query = rng.standard_normal(vector_size)
    matrix = rng.standard_normal((num_vectors, vector_size))
    results: dict[str, float] = {}

    portable = PortableVectorBackend()
    rows = matrix.tolist()
    start = time.perf_counter()
    portable.batch_cosine_similarity(query.tolist(), rows)
    results["portable_ms"] = (time.perf_counter() - start) * 1000.0

    try:
        native = NativeVectorBackend()
    except BackendUnavailableError as exc:
        logger.warning(Messages.WARNING_BACKEND_FALLBACK.format(kind="Vector", reason=exc))
        return results
    start = time.perf_counter()
    native.batch_cosine_similarity(query, matrix)
    results["native_ms"] = (time.perf_counter() - start) * 1000.0
    if results["native_ms"] > 0:
        results["speedup"] = results["portable_ms"] / results["native_ms"]
    return results
