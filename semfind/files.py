"""File enumeration and text search with a parallel backend and a sequential fallback."""

from __future__ import annotations

import logging
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol, Sequence, TypeVar

from .config import (
    DEFAULT_BACKEND,
    DEFAULT_CONTEXT_LINES,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_MATCHES_PER_FILE,
    DEFAULT_MAX_RESULTS,
    DEFAULT_WORKERS,
    normalize_backend,
)
from .errors import BackendUnavailableError, InvalidLineRangeError, InvalidPatternError
from .text import Messages
from .utils import (
    PatternSet,
    compile_include_pattern,
    compile_patterns,
    hash_file,
    is_hidden_name,
    normalize_patterns,
    read_text_file,
    resolve_directory,
)
from .vectors import BackendInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

BINARY_EXTENSIONS = frozenset(
    {
        ".exe", ".dll", ".so", ".dylib", ".bin", ".o", ".a", ".lib", ".class",
        ".pyc", ".pyo", ".jar", ".war", ".wasm",
        ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp", ".tiff",
        ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".tar",
        ".mp3", ".mp4", ".wav", ".avi", ".mov", ".mkv", ".flac",
        ".ttf", ".otf", ".woff", ".woff2", ".db", ".sqlite",
    }
)
NO_EXTENSION = "<no_extension>"


@dataclass(slots=True)
class FileInfo:
    path: Path
    rel_path: str
    name: str
    size: int
    mtime: float
    extension: str | None


@dataclass(slots=True)
class SearchMatch:
    """One occurrence of the search text inside a file."""

    file_path: str
    line_number: int
    line_content: str
    match_offset: int
    match_length: int
    context_before: list[str] = field(default_factory=list)
    context_after: list[str] = field(default_factory=list)
    matches_in_line: int = 1


@dataclass(slots=True)
class DirectoryStats:
    file_count: int = 0
    directory_count: int = 0
    total_size_bytes: int = 0
    largest_file_size_bytes: int = 0

    @property
    def average_file_size_bytes(self) -> float:
        if not self.file_count:
            return 0.0
        return self.total_size_bytes / self.file_count


@dataclass(frozen=True, slots=True)
class FileSearchConfig:
    max_depth: int = DEFAULT_MAX_DEPTH
    max_results: int = DEFAULT_MAX_RESULTS
    include_hidden: bool = False
    follow_symlinks: bool = False
    case_sensitive: bool = False
    context_lines: int = DEFAULT_CONTEXT_LINES
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    workers: int = DEFAULT_WORKERS
    exclude_patterns: tuple[str, ...] = ()


@dataclass(slots=True)
class _Node:
    path: Path
    rel_path: str
    name: str
    is_dir: bool
    entry: os.DirEntry | None = None


class FileSearchBackend(Protocol):
    name: str
    accelerated: bool

    def find_files_by_pattern(
        self, root: Path | str, pattern: str, exclude_patterns: Sequence[str] | None = None
    ) -> list[FileInfo]:
        raise NotImplementedError  # pragma: no cover

    def search_text_in_files(
        self,
        root: Path | str,
        text: str,
        file_patterns: Sequence[str] | None = None,
        max_matches_per_file: int = DEFAULT_MAX_MATCHES_PER_FILE,
        *,
        regex: bool = False,
    ) -> list[SearchMatch]:
        raise NotImplementedError  # pragma: no cover

    def get_directory_stats(self, root: Path | str) -> DirectoryStats:
        raise NotImplementedError  # pragma: no cover

    def get_extension_stats(self, root: Path | str) -> dict[str, int]:
        raise NotImplementedError  # pragma: no cover

    def find_duplicate_files(self, root: Path | str) -> dict[str, list[Path]]:
        raise NotImplementedError  # pragma: no cover

    def close(self) -> None:
        raise NotImplementedError  # pragma: no cover


class _TreeSearch:
    """Traversal, matching and per-file logic shared by both backends.

    Subclasses decide how a directory is listed, how a file is stat'ed and
    how per-file work is scheduled; everything observable is defined here.
    """

    name = "base"
    accelerated = False

    def __init__(self, config: FileSearchConfig | None = None) -> None:
        self.config = config or FileSearchConfig()

    # -- hooks ---------------------------------------------------------------

    def _list_dir(self, directory: Path) -> list[tuple[str, bool, bool, os.DirEntry | None]]:
        raise NotImplementedError  # pragma: no cover

    def _stat(self, node: _Node) -> os.stat_result:
        return node.path.stat()

    def _map(self, func: Callable[[T], R], items: Iterable[T]) -> Iterator[R]:
        for item in items:
            yield func(item)

    def close(self) -> None:
        return None

    # -- traversal -----------------------------------------------------------

    def _excludes(self, exclude_patterns: Sequence[str] | str | None) -> PatternSet:
        combined = normalize_patterns(self.config.exclude_patterns) + normalize_patterns(
            exclude_patterns
        )
        return PatternSet(combined, case_sensitive=self.config.case_sensitive)

    def _walk(self, root: Path, excludes: PatternSet) -> Iterator[_Node]:
        yield from self._walk_dir(root, "", 0, excludes)

    def _walk_dir(
        self, directory: Path, rel_dir: str, depth: int, excludes: PatternSet
    ) -> Iterator[_Node]:
        if depth > self.config.max_depth:
            return
        for name, is_dir, is_file, entry in self._list_dir(directory):
            if not self.config.include_hidden and is_hidden_name(name):
                continue
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if excludes.matches(rel_path, is_dir=is_dir):
                continue
            path = directory / name
            if is_dir:
                yield _Node(path, rel_path, name, True, entry)
                yield from self._walk_dir(path, rel_path, depth + 1, excludes)
            elif is_file:
                yield _Node(path, rel_path, name, False, entry)

    def _walk_files(self, root: Path, excludes: PatternSet) -> Iterator[_Node]:
        return (node for node in self._walk(root, excludes) if not node.is_dir)

    def _size_or_none(self, node: _Node) -> int | None:
        try:
            return int(self._stat(node).st_size)
        except OSError as exc:
            logger.debug("Skipping %s: %s", node.path, exc)
            return None

    # -- operations ----------------------------------------------------------

    def find_files_by_pattern(
        self, root: Path | str, pattern: str, exclude_patterns: Sequence[str] | None = None
    ) -> list[FileInfo]:
        """Return files under *root* whose name (or relative path) matches *pattern*."""

        directory = resolve_directory(root)
        include = compile_include_pattern(pattern, case_sensitive=self.config.case_sensitive)
        excludes = self._excludes(exclude_patterns)
        results: list[FileInfo] = []
        if self.config.max_results <= 0:
            return results
        for node in self._walk_files(directory, excludes):
            if not include.matches(node.rel_path):
                continue
            try:
                stat = self._stat(node)
            except OSError as exc:
                logger.debug("Skipping %s: %s", node.path, exc)
                continue
            results.append(
                FileInfo(
                    path=node.path,
                    rel_path=node.rel_path,
                    name=node.name,
                    size=int(stat.st_size),
                    mtime=float(stat.st_mtime),
                    extension=Path(node.name).suffix or None,
                )
            )
            if len(results) >= self.config.max_results:
                break
        return results

    def _compile_search(self, text: str, regex: bool) -> re.Pattern[str]:
        if not text:
            raise InvalidPatternError(Messages.ERROR_EMPTY_SEARCH_TEXT)
        flags = 0 if self.config.case_sensitive else re.IGNORECASE
        source = text if regex else re.escape(text)
        try:
            return re.compile(source, flags)
        except re.error as exc:
            raise InvalidPatternError(
                Messages.ERROR_INVALID_PATTERN.format(pattern=text, reason=str(exc))
            ) from exc

    def _scan_file(
        self, node: _Node, matcher: re.Pattern[str], max_matches: int
    ) -> list[SearchMatch]:
        try:
            content = read_text_file(node.path, self.config.max_file_size)
        except OSError as exc:
            logger.debug("Skipping unreadable file %s: %s", node.path, exc)
            return []
        if not content:
            return []
        lines = content.splitlines()
        context = max(self.config.context_lines, 0)
        matches: list[SearchMatch] = []
        for index, line in enumerate(lines):
            if len(matches) >= max_matches:
                break
            line_matches: list[SearchMatch] = []
            for found in matcher.finditer(line):
                if found.end() == found.start():
                    continue
                if len(matches) + len(line_matches) >= max_matches:
                    break
                line_matches.append(
                    SearchMatch(
                        file_path=node.rel_path,
                        line_number=index + 1,
                        line_content=line,
                        match_offset=found.start(),
                        match_length=found.end() - found.start(),
                        context_before=lines[max(0, index - context) : index] if context else [],
                        context_after=lines[index + 1 : index + 1 + context] if context else [],
                    )
                )
            for match in line_matches:
                match.matches_in_line = len(line_matches)
            matches.extend(line_matches)
        return matches

    def search_text_in_files(
        self,
        root: Path | str,
        text: str,
        file_patterns: Sequence[str] | None = None,
        max_matches_per_file: int = DEFAULT_MAX_MATCHES_PER_FILE,
        *,
        regex: bool = False,
    ) -> list[SearchMatch]:
        """Search file contents under *root* line by line.

        At most *max_matches_per_file* matches are kept per file; the search
        then moves on to the next file. Binary and unreadable files are skipped.
        """

        directory = resolve_directory(root)
        matcher = self._compile_search(text, regex)
        file_filter = compile_patterns(file_patterns, case_sensitive=self.config.case_sensitive)
        excludes = self._excludes(None)
        results: list[SearchMatch] = []
        if max_matches_per_file <= 0 or self.config.max_results <= 0:
            return results

        candidates = (
            node
            for node in self._walk_files(directory, excludes)
            if Path(node.name).suffix.lower() not in BINARY_EXTENSIONS
            and (not file_filter or file_filter.matches(node.rel_path))
        )
        for file_matches in self._map(
            lambda node: self._scan_file(node, matcher, max_matches_per_file), candidates
        ):
            results.extend(file_matches)
            if len(results) >= self.config.max_results:
                del results[self.config.max_results :]
                break
        return results

    def get_directory_stats(self, root: Path | str) -> DirectoryStats:
        directory = resolve_directory(root)
        stats = DirectoryStats()
        files: list[_Node] = []
        for node in self._walk(directory, self._excludes(None)):
            if node.is_dir:
                stats.directory_count += 1
            else:
                files.append(node)
        for size in self._map(self._size_or_none, files):
            if size is None:
                continue
            stats.file_count += 1
            stats.total_size_bytes += size
            if size > stats.largest_file_size_bytes:
                stats.largest_file_size_bytes = size
        return stats

    def get_extension_stats(self, root: Path | str) -> dict[str, int]:
        directory = resolve_directory(root)
        counts: dict[str, int] = {}
        for node in self._walk_files(directory, self._excludes(None)):
            suffix = Path(node.name).suffix.lower().lstrip(".") or NO_EXTENSION
            counts[suffix] = counts.get(suffix, 0) + 1
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))

    def _hash_or_none(self, node: _Node) -> str | None:
        try:
            return hash_file(node.path)
        except OSError as exc:
            logger.debug("Skipping unhashable file %s: %s", node.path, exc)
            return None

    def find_duplicate_files(self, root: Path | str) -> dict[str, list[Path]]:
        """Group byte-identical files by SHA-256, hashing only same-sized files."""

        directory = resolve_directory(root)
        files = list(self._walk_files(directory, self._excludes(None)))
        by_size: dict[int, list[_Node]] = {}
        for node, size in zip(files, self._map(self._size_or_none, files)):
            if not size:
                continue
            by_size.setdefault(size, []).append(node)

        candidates = [node for group in by_size.values() if len(group) > 1 for node in group]
        by_hash: dict[str, list[Path]] = {}
        for node, digest in zip(candidates, self._map(self._hash_or_none, candidates)):
            if digest is None:
                continue
            by_hash.setdefault(digest, []).append(node.path)

        duplicates = {
            digest: sorted(paths) for digest, paths in by_hash.items() if len(paths) > 1
        }
        return dict(sorted(duplicates.items(), key=lambda item: item[1][0]))

    def read_file_lines(self, path: Path | str, start_line: int, end_line: int) -> list[str]:
        """Return lines *start_line*..*end_line* (1-based, inclusive) of *path*."""

        if start_line < 1 or end_line < start_line:
            raise InvalidLineRangeError(
                Messages.ERROR_INVALID_LINE_RANGE.format(start=start_line, end=end_line)
            )
        content = read_text_file(path)
        lines = (content or "").splitlines()
        if start_line > len(lines):
            raise InvalidLineRangeError(
                Messages.ERROR_INVALID_LINE_RANGE.format(start=start_line, end=end_line)
            )
        return lines[start_line - 1 : end_line]


class PortableFileSearchBackend(_TreeSearch):
    """Sequential backend built on ``os.listdir`` and per-path ``os.stat``."""

    name = "portable"
    accelerated = False

    def _list_dir(self, directory: Path) -> list[tuple[str, bool, bool, os.DirEntry | None]]:
        try:
            names = sorted(os.listdir(directory))
        except OSError as exc:
            logger.debug("Cannot list %s: %s", directory, exc)
            return []
        listing: list[tuple[str, bool, bool, os.DirEntry | None]] = []
        for name in names:
            full = os.path.join(directory, name)
            if os.path.islink(full) and not self.config.follow_symlinks:
                continue
            is_dir = os.path.isdir(full)
            listing.append((name, is_dir, not is_dir and os.path.isfile(full), None))
        return listing


class NativeFileSearchBackend(_TreeSearch):
    """Parallel backend: ``os.scandir`` listings and a thread pool for file reads and hashing."""

    name = "native"
    accelerated = True

    def __init__(self, config: FileSearchConfig | None = None) -> None:
        super().__init__(config)
        workers = int(self.config.workers)
        if workers < 2:
            raise BackendUnavailableError(
                Messages.ERROR_BACKEND_UNAVAILABLE.format(
                    kind="File search", reason="parallel search needs at least two workers"
                )
            )
        try:
            self._executor = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="semfind-files"
            )
            self._executor.submit(int).result(timeout=5)
        except Exception as exc:
            raise BackendUnavailableError(
                Messages.ERROR_BACKEND_UNAVAILABLE.format(kind="File search", reason=str(exc))
            ) from exc
        self._chunk_size = workers * 4

    def _list_dir(self, directory: Path) -> list[tuple[str, bool, bool, os.DirEntry | None]]:
        listing: list[tuple[str, bool, bool, os.DirEntry | None]] = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    try:
                        follow = self.config.follow_symlinks
                        if not follow and entry.is_symlink():
                            continue
                        is_dir = entry.is_dir(follow_symlinks=follow)
                        is_file = not is_dir and entry.is_file(follow_symlinks=follow)
                    except OSError:
                        continue
                    listing.append((entry.name, is_dir, is_file, entry))
        except OSError as exc:
            logger.debug("Cannot list %s: %s", directory, exc)
            return []
        listing.sort(key=lambda item: item[0])
        return listing

    def _stat(self, node: _Node) -> os.stat_result:
        if node.entry is not None:
            return node.entry.stat()
        return node.path.stat()

    def _map(self, func: Callable[[T], R], items: Iterable[T]) -> Iterator[R]:
        iterator = iter(items)
        while True:
            chunk = list(islice(iterator, self._chunk_size))
            if not chunk:
                return
            yield from self._executor.map(func, chunk)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


class FileSearchEngine:
    """Single entry point for tree walking and text search; the backend is chosen once."""

    def __init__(
        self,
        config: FileSearchConfig | None = None,
        *,
        backend: str = DEFAULT_BACKEND,
    ) -> None:
        self.config = config or FileSearchConfig()
        self.requested_backend = normalize_backend(backend, "file_backend")
        self._fallback_reason: str | None = None
        self._backend = self._create_backend()

    def _create_backend(self) -> _TreeSearch:
        if self.requested_backend == "portable":
            return PortableFileSearchBackend(self.config)
        try:
            return NativeFileSearchBackend(self.config)
        except Exception as exc:
            self._fallback_reason = str(exc)
            logger.warning(
                Messages.WARNING_BACKEND_FALLBACK.format(kind="File search", reason=exc)
            )
            return PortableFileSearchBackend(self.config)

    @property
    def backend(self) -> FileSearchBackend:
        return self._backend

    def get_backend_info(self) -> BackendInfo:
        return BackendInfo(
            type=self._backend.name,
            accelerated=self._backend.accelerated,
            requested=self.requested_backend,
            fallback_reason=self._fallback_reason,
        )

    def find_files_by_pattern(
        self, root: Path | str, pattern: str, exclude_patterns: Sequence[str] | None = None
    ) -> list[FileInfo]:
        return self._backend.find_files_by_pattern(root, pattern, exclude_patterns)

    def search_text_in_files(
        self,
        root: Path | str,
        text: str,
        file_patterns: Sequence[str] | None = None,
        max_matches_per_file: int = DEFAULT_MAX_MATCHES_PER_FILE,
        *,
        regex: bool = False,
    ) -> list[SearchMatch]:
        return self._backend.search_text_in_files(
            root, text, file_patterns, max_matches_per_file, regex=regex
        )

    def get_directory_stats(self, root: Path | str) -> DirectoryStats:
        return self._backend.get_directory_stats(root)

    def get_extension_stats(self, root: Path | str) -> dict[str, int]:
        return self._backend.get_extension_stats(root)

    def find_duplicate_files(self, root: Path | str) -> dict[str, list[Path]]:
        return self._backend.find_duplicate_files(root)

    def read_file_lines(self, path: Path | str, start_line: int, end_line: int) -> list[str]:
        return self._backend.read_file_lines(path, start_line, end_line)

    def close(self) -> None:
        self._backend.close()


def benchmark_file_search(
    root: Path | str,
    pattern: str = "*",
    iterations: int = 3,
    config: FileSearchConfig | None = None,
) -> dict[str, float]:
    """Average ``find_files_by_pattern`` time per run on both backends."""

    runs = max(int(iterations), 1)
    results: dict[str, float] = {}
    portable = PortableFileSearchBackend(config)
    start = time.perf_counter()
    for _ in range(runs):
        portable.find_files_by_pattern(root, pattern)
    results["portable_ms"] = (time.perf_counter() - start) * 1000.0 / runs

    try:
        native = NativeFileSearchBackend(config)
    except BackendUnavailableError as exc:
        logger.warning(Messages.WARNING_BACKEND_FALLBACK.format(kind="File search", reason=exc))
        return results
    try:
        start = time.perf_counter()
        for _ in range(runs):
            native.find_files_by_pattern(root, pattern)
        results["native_ms"] = (time.perf_counter() - start) * 1000.0 / runs
    finally:
        native.close()
    if results["native_ms"] > 0:
        results["speedup"] = results["portable_ms"] / results["native_ms"]
    return results
