"""Embedding orchestration: cache lookups, pipeline calls and similarity ranking."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, Protocol, Sequence, Union

import numpy as np

from .cache import CacheStats, ContentCache, cache_key
from .config import DEFAULT_DIMENSION, DEFAULT_SIMILARITY_THRESHOLD, DEFAULT_TOP_K
from .errors import InputError, PipelineError
from .text import Messages
from .utils import content_fingerprint
from .vectors import (
    PortableVectorBackend,
    SimilarityResult,
    VectorSimilarityEngine,
    rank_similarities,
)

logger = logging.getLogger(__name__)


class EmbeddingPipeline(Protocol):
    """Anything that turns texts into a flat ``count * dimension`` float buffer."""

    dimension: int

    def extract(self, texts: Sequence[str]) -> np.ndarray:
        raise NotImplementedError  # pragma: no cover


PipelineFactory = Callable[[], EmbeddingPipeline]


@dataclass(slots=True)
class EmbeddingRequest:
    content: str
    path: str | Path | None = None


@dataclass(slots=True)
class EmbeddingResult:
    path: str | Path | None
    vector: np.ndarray
    cached: bool
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Candidate = Union[EmbeddingResult, tuple]


def _path_key(path: str | Path | os.PathLike[str] | None) -> str | None:
    if path is None:
        return None
    return os.fspath(path)


def _coerce_request(item: EmbeddingRequest | tuple) -> EmbeddingRequest:
    if isinstance(item, EmbeddingRequest):
        return item
    content, path = item
    return EmbeddingRequest(content=content, path=path)


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class EmbeddingOrchestrator:
    """Front door for embeddings.

    Vectors are looked up in the :class:`ContentCache` by content fingerprint
    and path; only misses reach the pipeline. The pipeline may be passed as an
    instance or as a zero-argument factory, in which case it is created on first
    use. A factory that raises is retried on the next call.

    Pipeline failures never raise: the affected items come back as zero vectors
    with ``error`` set, and nothing is written to the cache for them.
    """

    def __init__(
        self,
        pipeline: EmbeddingPipeline | PipelineFactory,
        cache: ContentCache,
        engine: VectorSimilarityEngine,
        *,
        dimension: int | None = None,
        extract_timeout: float | None = None,
    ) -> None:
        if hasattr(pipeline, "extract"):
            self._pipeline: EmbeddingPipeline | None = pipeline  # type: ignore[assignment]
            self._factory: PipelineFactory | None = None
        else:
            self._pipeline = None
            self._factory = pipeline  # type: ignore[assignment]
        self.cache = cache
        self.engine = engine
        self._dimension = dimension
        self.extract_timeout = extract_timeout if extract_timeout and extract_timeout > 0 else None
        self._init_lock = Lock()
        self._executor_lock = Lock()
        self._timeout_executor: ThreadPoolExecutor | None = None

    @property
    def dimension(self) -> int:
        if self._pipeline is not None:
            return int(self._pipeline.dimension)
        if self._dimension is not None:
            return int(self._dimension)
        return DEFAULT_DIMENSION

    def _ensure_pipeline(self) -> EmbeddingPipeline:
        pipeline = self._pipeline
        if pipeline is not None:
            return pipeline
        with self._init_lock:
            if self._pipeline is None:
                logger.debug("Initialising embedding pipeline")
                self._pipeline = self._factory()  # type: ignore[misc]
            return self._pipeline

    def _call_pipeline(self, pipeline: EmbeddingPipeline, texts: list[str]) -> np.ndarray:
        if self.extract_timeout is None:
            return pipeline.extract(texts)
        executor = self._extract_executor()
        future = executor.submit(pipeline.extract, texts)
        try:
            return future.result(timeout=self.extract_timeout)
        except FuturesTimeoutError as exc:
            future.cancel()
            self._discard_executor(executor)
            raise PipelineError(
                Messages.ERROR_PIPELINE_TIMEOUT.format(seconds=self.extract_timeout)
            ) from exc

    def _extract_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._timeout_executor is None:
                self._timeout_executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="semfind-extract"
                )
            return self._timeout_executor

    def _discard_executor(self, executor: ThreadPoolExecutor) -> None:
        # The stuck call keeps its thread; later calls get a fresh worker.
        with self._executor_lock:
            if self._timeout_executor is executor:
                self._timeout_executor = None
        executor.shutdown(wait=False)

    def _extract(self, texts: list[str]) -> np.ndarray:
        """Run the pipeline and return a ``(len(texts), dimension)`` matrix."""

        pipeline = self._ensure_pipeline()
        output = self._call_pipeline(pipeline, texts)
        flat = np.asarray(output, dtype=np.float32).reshape(-1)
        dimension = int(pipeline.dimension)
        if dimension <= 0 or flat.size != len(texts) * dimension:
            raise PipelineError(
                Messages.ERROR_PIPELINE_SHAPE.format(
                    size=flat.size, count=len(texts), dimension=dimension
                )
            )
        return flat.reshape(len(texts), dimension)

    def _failed(self, path: str | Path | None, message: str) -> EmbeddingResult:
        return EmbeddingResult(
            path=path,
            vector=np.zeros(self.dimension, dtype=np.float32),
            cached=False,
            error=message,
        )

    def generate(self, text: str, path: str | Path | None = None) -> EmbeddingResult:
        fingerprint = content_fingerprint(text)
        path_key = _path_key(path)
        cached = self.cache.get(fingerprint, path_key)
        if cached is not None:
            return EmbeddingResult(path=path, vector=cached, cached=True)
        try:
            matrix = self._extract([text])
        except Exception as exc:
            logger.debug("Embedding failed for %s: %s", path, exc)
            return self._failed(path, _error_message(exc))
        vector = matrix[0].copy()
        self.cache.set(fingerprint, path_key, vector)
        return EmbeddingResult(path=path, vector=vector, cached=False)

    def generate_batch(
        self, items: Iterable[EmbeddingRequest | tuple]
    ) -> list[EmbeddingResult]:
        """Embed many items with one pipeline call for everything not cached.

        Results come back in input order. Items sharing content and path are
        sent to the pipeline once; every item that was not already cached
        reports ``cached=False``.
        """

        requests = [_coerce_request(item) for item in items]
        if not requests:
            return []
        keyed = [(content_fingerprint(req.content), _path_key(req.path)) for req in requests]
        found = self.cache.get_batch(keyed)

        pending: dict[str, tuple[int, str, str | None]] = {}
        texts: list[str] = []
        for req, (fingerprint, path_key) in zip(requests, keyed):
            key = cache_key(fingerprint, path_key)
            if key in found or key in pending:
                continue
            pending[key] = (len(texts), fingerprint, path_key)
            texts.append(req.content)

        fresh: dict[str, np.ndarray] = {}
        error: str | None = None
        if texts:
            try:
                matrix = self._extract(texts)
            except Exception as exc:
                logger.debug("Batch embedding of %d texts failed: %s", len(texts), exc)
                error = _error_message(exc)
            else:
                for key, (index, fingerprint, path_key) in pending.items():
                    vector = matrix[index].copy()
                    self.cache.set(fingerprint, path_key, vector)
                    fresh[key] = vector

        results: list[EmbeddingResult] = []
        for req, (fingerprint, path_key) in zip(requests, keyed):
            key = cache_key(fingerprint, path_key)
            if key in found:
                results.append(EmbeddingResult(path=req.path, vector=found[key], cached=True))
            elif error is not None:
                results.append(self._failed(req.path, error))
            else:
                results.append(EmbeddingResult(path=req.path, vector=fresh[key], cached=False))
        return results

    def find_similar(
        self,
        query: Sequence[float] | np.ndarray,
        candidates: Sequence[Candidate],
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> list[SimilarityResult]:
        """Rank *candidates* (``EmbeddingResult`` or ``(path, vector)`` pairs) against *query*."""

        paths: list[str | Path] = []
        vectors: list[object] = []
        for candidate in candidates:
            if isinstance(candidate, EmbeddingResult):
                paths.append(candidate.path if candidate.path is not None else "")
                vectors.append(candidate.vector)
            else:
                path, vector = candidate
                paths.append(path)
                vectors.append(vector)
        try:
            return self.engine.top_k(query, vectors, paths, top_k, threshold)
        except InputError:
            raise
        except Exception as exc:
            logger.debug(Messages.WARNING_SIMILARITY_FALLBACK.format(reason=exc))
            return self._scalar_top_k(query, vectors, paths, top_k, threshold)

    @staticmethod
    def _scalar_top_k(
        query: Sequence[float] | np.ndarray,
        vectors: Sequence[object],
        paths: Sequence[str | Path],
        top_k: int,
        threshold: float,
    ) -> list[SimilarityResult]:
        scalar = PortableVectorBackend()
        scores: list[float] = []
        kept: list[str | Path] = []
        for path, vector in zip(paths, vectors):
            try:
                scores.append(scalar.cosine_similarity(query, vector))
            except (InputError, TypeError, ValueError) as exc:
                logger.debug("Skipping candidate %s: %s", path, exc)
                continue
            kept.append(path)
        return rank_similarities(scores, kept, top_k, threshold)

    def clear_cache(self, purge_persistent: bool = True) -> None:
        self.cache.clear(purge_persistent=purge_persistent)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def close(self) -> None:
        with self._executor_lock:
            executor, self._timeout_executor = self._timeout_executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
