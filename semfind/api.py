"""Public Python API for semfind."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from .cache import CacheStats, ContentCache
from .config import (
    DEFAULT_MAX_MATCHES_PER_FILE,
    Config,
    config_dir_context,
    config_from_json,
    load_config,
)
from .embeddings import (
    Candidate,
    EmbeddingOrchestrator,
    EmbeddingPipeline,
    EmbeddingRequest,
    EmbeddingResult,
    PipelineFactory,
)
from .errors import InputError
from .files import (
    BINARY_EXTENSIONS,
    DirectoryStats,
    FileInfo,
    FileSearchConfig,
    FileSearchEngine,
    SearchMatch,
)
from .text import Messages
from .utils import read_text_file
from .vectors import BackendInfo, SimilarityResult, VectorSimilarityEngine


def file_search_config(config: Config) -> FileSearchConfig:
    """Project the file search settings out of a :class:`Config`."""

    return FileSearchConfig(
        max_depth=config.max_depth,
        max_results=config.max_results,
        include_hidden=config.include_hidden,
        follow_symlinks=config.follow_symlinks,
        case_sensitive=config.case_sensitive,
        context_lines=config.context_lines,
        max_file_size=config.max_file_size,
        workers=config.workers,
        exclude_patterns=tuple(config.exclude_patterns),
    )


class SemfindClient:
    """Session-style wrapper that owns one cache, one of each engine and the orchestrator.

    Everything is built once from the resolved :class:`Config`; pass ready-made
    components to share them between clients or to substitute test doubles.
    """

    def __init__(
        self,
        config: Config | Mapping[str, object] | str | None = None,
        *,
        data_dir: Path | str | None = None,
        use_config: bool = True,
        pipeline: EmbeddingPipeline | PipelineFactory | None = None,
        cache: ContentCache | None = None,
        vector_engine: VectorSimilarityEngine | None = None,
        file_engine: FileSearchEngine | None = None,
    ) -> None:
        self.data_dir = data_dir
        self.config = self._resolve_config(config, use_config)
        self.cache = cache or ContentCache(
            cache_dir=data_dir,
            ttl_seconds=self.config.cache_ttl_seconds,
            max_memory_entries=self.config.max_memory_entries,
            max_disk_entries=self.config.max_disk_entries,
        )
        self.vector_engine = vector_engine or VectorSimilarityEngine(
            self.config.vector_backend,
            similarity_threshold=self.config.similarity_threshold,
        )
        self.file_engine = file_engine or FileSearchEngine(
            file_search_config(self.config), backend=self.config.file_backend
        )
        self.orchestrator = EmbeddingOrchestrator(
            pipeline if pipeline is not None else self._local_pipeline,
            self.cache,
            self.vector_engine,
            dimension=self.config.dimension,
            extract_timeout=self.config.extract_timeout,
        )

    def _resolve_config(
        self, config: Config | Mapping[str, object] | str | None, use_config: bool
    ) -> Config:
        if isinstance(config, Config):
            return config
        with self._config_scope():
            base = load_config() if use_config else Config()
            if config is None:
                return base
            try:
                return config_from_json(config, base=base)
            except ValueError as exc:
                raise InputError(str(exc)) from exc

    @contextmanager
    def _config_scope(self):
        with config_dir_context(self.data_dir):
            yield

    def _local_pipeline(self) -> EmbeddingPipeline:
        from .providers.local import LocalEmbeddingPipeline

        with self._config_scope():
            return LocalEmbeddingPipeline(
                model_name=self.config.model,
                dimension=self.config.dimension,
                batch_size=self.config.batch_size,
                cuda=self.config.local_cuda,
            )

    # -- embeddings ----------------------------------------------------------

    def generate_embedding(self, content: str, path: Path | str | None = None) -> EmbeddingResult:
        return self.orchestrator.generate(content, path)

    def generate_batch_embeddings(
        self, items: Iterable[EmbeddingRequest | tuple]
    ) -> list[EmbeddingResult]:
        return self.orchestrator.generate_batch(items)

    def find_similar(
        self,
        query: Sequence[float] | np.ndarray,
        candidates: Sequence[Candidate],
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarityResult]:
        return self.orchestrator.find_similar(
            query,
            candidates,
            self.config.top_k if top_k is None else top_k,
            self.config.similarity_threshold if threshold is None else threshold,
        )

    def find_similar_files(
        self,
        reference_path: Path | str,
        search_path: Path | str = ".",
        *,
        pattern: str = "*",
        exclude_patterns: Sequence[str] | None = None,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarityResult]:
        """Rank files under *search_path* by semantic similarity to *reference_path*.

        Candidates are the files matching *pattern*; binary files, unreadable
        files and the reference itself are left out. Result paths are absolute.
        """

        reference = Path(reference_path).expanduser().resolve()
        try:
            content = read_text_file(reference, self.config.max_file_size)
        except OSError as exc:
            raise InputError(
                Messages.ERROR_FILE_READ.format(path=reference, reason=exc.strerror or exc)
            ) from exc
        if content is None:
            raise InputError(
                Messages.ERROR_FILE_READ.format(path=reference, reason="not a text file")
            )
        query = self.orchestrator.generate(content, str(reference))
        if not query.ok:
            return []

        requests: list[EmbeddingRequest] = []
        for info in self.file_engine.find_files_by_pattern(
            search_path, pattern, exclude_patterns
        ):
            if info.path == reference or info.path.suffix.lower() in BINARY_EXTENSIONS:
                continue
            try:
                text = read_text_file(info.path, self.config.max_file_size)
            except OSError:
                continue
            if text:
                requests.append(EmbeddingRequest(content=text, path=str(info.path)))

        candidates = [
            (Path(result.path), result.vector)
            for result in self.orchestrator.generate_batch(requests)
            if result.ok
        ]
        return self.find_similar(query.vector, candidates, top_k, threshold)

    # -- files ---------------------------------------------------------------

    def find_files_by_pattern(
        self,
        root: Path | str,
        pattern: str,
        exclude_patterns: Sequence[str] | None = None,
    ) -> list[FileInfo]:
        return self.file_engine.find_files_by_pattern(root, pattern, exclude_patterns)

    def search_text_in_files(
        self,
        root: Path | str,
        text: str,
        file_patterns: Sequence[str] | None = None,
        max_matches_per_file: int | None = None,
        *,
        regex: bool = False,
    ) -> list[SearchMatch]:
        return self.file_engine.search_text_in_files(
            root,
            text,
            file_patterns,
            DEFAULT_MAX_MATCHES_PER_FILE if max_matches_per_file is None else max_matches_per_file,
            regex=regex,
        )

    def get_directory_stats(self, root: Path | str) -> DirectoryStats:
        return self.file_engine.get_directory_stats(root)

    def get_extension_stats(self, root: Path | str) -> dict[str, int]:
        return self.file_engine.get_extension_stats(root)

    def find_duplicate_files(self, root: Path | str) -> dict[str, list[Path]]:
        return self.file_engine.find_duplicate_files(root)

    def read_file_lines(self, path: Path | str, start_line: int, end_line: int) -> list[str]:
        return self.file_engine.read_file_lines(path, start_line, end_line)

    # -- housekeeping --------------------------------------------------------

    def cache_stats(self) -> CacheStats:
        return self.orchestrator.cache_stats()

    def clear_cache(self, purge_persistent: bool = True) -> None:
        self.orchestrator.clear_cache(purge_persistent=purge_persistent)

    def get_backend_info(self) -> dict[str, BackendInfo]:
        return {
            "vector": self.vector_engine.get_backend_info(),
            "files": self.file_engine.get_backend_info(),
        }

    def close(self) -> None:
        self.orchestrator.close()
        self.file_engine.close()

    def __enter__(self) -> "SemfindClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
