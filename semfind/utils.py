"""Utility helpers for filesystem access, hashing and pattern handling."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Sequence

from charset_normalizer import from_bytes
from pathspec.gitignore import GitIgnoreSpec

from .errors import InvalidPatternError
from .text import Messages

HASH_BLOCK_SIZE = 64 * 1024
BINARY_SNIFF_BYTES = 8 * 1024


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def content_fingerprint(text: str) -> str:
    """Return the SHA-256 hex digest used as the cache fingerprint for *text*."""

    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def hash_file(path: Path | str, block_size: int = HASH_BLOCK_SIZE) -> str:
    """Return the SHA-256 hex digest of the file at *path*, streamed in blocks."""

    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        while True:
            block = handle.read(block_size)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


def is_hidden_name(name: str) -> bool:
    return name.startswith(".") and name not in {".", ".."}


def normalize_patterns(values: Iterable[str] | str | None) -> tuple[str, ...]:
    """Return a deduplicated tuple of non-empty glob patterns."""

    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    normalized: list[str] = []
    seen: set[str] = set()
    for raw in values:
        if raw is None:
            continue
        token = raw.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        normalized.append(token)
    return tuple(normalized)


class PatternSet:
    """Git-wildmatch patterns matched against paths relative to a search root.

    A pattern without a slash matches an entry name at any depth; a pattern
    with a slash is anchored to the root. Directories are tested with a
    trailing slash so ``build/`` style patterns prune whole subtrees.
    """

    def __init__(self, patterns: Sequence[str], *, case_sensitive: bool = False) -> None:
        self.patterns = tuple(patterns)
        self.case_sensitive = case_sensitive
        lines = [p if case_sensitive else p.lower() for p in self.patterns]
        try:
            self._spec = GitIgnoreSpec.from_lines(lines)
        except ValueError as exc:
            raise InvalidPatternError(
                Messages.ERROR_INVALID_PATTERN.format(
                    pattern=", ".join(self.patterns), reason=str(exc)
                )
            ) from exc

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def matches(self, rel_path: str, *, is_dir: bool = False) -> bool:
        if not self.patterns or not rel_path:
            return False
        candidate = rel_path if self.case_sensitive else rel_path.lower()
        if is_dir and not candidate.endswith("/"):
            candidate = f"{candidate}/"
        return self._spec.match_file(candidate)


def compile_include_pattern(pattern: str, *, case_sensitive: bool = False) -> PatternSet:
    """Compile a single include pattern, rejecting empty input."""

    clean = (pattern or "").strip()
    if not clean:
        raise InvalidPatternError(Messages.ERROR_EMPTY_PATTERN)
    return PatternSet([clean], case_sensitive=case_sensitive)


def compile_patterns(
    patterns: Iterable[str] | str | None, *, case_sensitive: bool = False
) -> PatternSet:
    return PatternSet(normalize_patterns(patterns), case_sensitive=case_sensitive)


def looks_binary(data: bytes) -> bool:
    return b"\x00" in data[:BINARY_SNIFF_BYTES]


def decode_text(data: bytes) -> str | None:
    """Decode *data* as UTF-8, falling back to charset detection."""

    if not data:
        return ""
    if looks_binary(data):
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    result = from_bytes(data)
    if result is None or not len(result):
        return None
    best = result.best()
    if best is None:
        return None
    return str(best)


def read_text_file(path: Path | str, max_size: int = 0) -> str | None:
    """Return the decoded content of *path*, or None for binary or oversized files.

    ``OSError`` propagates so callers can decide whether to skip the file.
    """

    file_path = Path(path)
    if max_size > 0 and file_path.stat().st_size > max_size:
        return None
    return decode_text(file_path.read_bytes())
