"""Global configuration management for semfind."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict

from .text import Messages
from .utils import normalize_patterns

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".semfind"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "semfind_config_dir_override",
    default=None,
)
ENV_MODEL = "SEMFIND_MODEL"

DEFAULT_MODEL = "intfloat/multilingual-e5-small"
DEFAULT_DIMENSION = 384
DEFAULT_BATCH_SIZE = 64
DEFAULT_CACHE_TTL_HOURS = 7 * 24
DEFAULT_MAX_MEMORY_ENTRIES = 1_000
DEFAULT_MAX_DISK_ENTRIES = 50_000
DEFAULT_BACKEND = "auto"
SUPPORTED_BACKENDS: tuple[str, ...] = ("auto", "native", "portable")
DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_TOP_K = 10
DEFAULT_MAX_DEPTH = 20
DEFAULT_MAX_RESULTS = 10_000
DEFAULT_CONTEXT_LINES = 2
DEFAULT_MAX_MATCHES_PER_FILE = 100
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_WORKERS = max(1, min(8, os.cpu_count() or 1))


@dataclass
class Config:
    model: str = DEFAULT_MODEL
    dimension: int | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    cache_ttl_hours: float = DEFAULT_CACHE_TTL_HOURS
    max_memory_entries: int = DEFAULT_MAX_MEMORY_ENTRIES
    max_disk_entries: int = DEFAULT_MAX_DISK_ENTRIES
    vector_backend: str = DEFAULT_BACKEND
    file_backend: str = DEFAULT_BACKEND
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    top_k: int = DEFAULT_TOP_K
    max_depth: int = DEFAULT_MAX_DEPTH
    max_results: int = DEFAULT_MAX_RESULTS
    include_hidden: bool = False
    follow_symlinks: bool = False
    case_sensitive: bool = False
    context_lines: int = DEFAULT_CONTEXT_LINES
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    workers: int = DEFAULT_WORKERS
    exclude_patterns: tuple[str, ...] = ()
    extract_timeout: float | None = None
    local_cuda: bool = False

    @property
    def cache_ttl_seconds(self) -> float:
        return float(self.cache_ttl_hours) * 3600.0


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def local_model_dir() -> Path:
    return _resolve_config_dir() / "models"


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def load_config() -> Config:
    config_file = _resolve_config_file()
    config = Config()
    if config_file.exists():
        raw = json.loads(config_file.read_text(encoding="utf-8"))
        _apply_config_payload(config, _coerce_config_payload(raw))
    env_model = (os.getenv(ENV_MODEL) or "").strip()
    if env_model:
        config.model = env_model
    return config


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {
        "model": config.model,
        "dimension": config.dimension,
        "batch_size": config.batch_size,
        "cache_ttl_hours": config.cache_ttl_hours,
        "max_memory_entries": config.max_memory_entries,
        "max_disk_entries": config.max_disk_entries,
        "vector_backend": config.vector_backend,
        "file_backend": config.file_backend,
        "similarity_threshold": config.similarity_threshold,
        "top_k": config.top_k,
        "max_depth": config.max_depth,
        "max_results": config.max_results,
        "include_hidden": bool(config.include_hidden),
        "follow_symlinks": bool(config.follow_symlinks),
        "case_sensitive": bool(config.case_sensitive),
        "context_lines": config.context_lines,
        "max_file_size": config.max_file_size,
        "workers": config.workers,
        "exclude_patterns": list(config.exclude_patterns),
        "local_cuda": bool(config.local_cuda),
    }
    if config.extract_timeout is not None:
        data["extract_timeout"] = config.extract_timeout
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else replace(base)
    _apply_config_payload(config, data)
    return config


def update_config_from_json(
    payload: str | Mapping[str, object], *, replace_all: bool = False
) -> Config:
    """Update config from a JSON string or mapping and persist it."""
    base = None if replace_all else load_config()
    config = config_from_json(payload, base=base)
    save_config(config)
    return config


def set_model(value: str, dimension: int | None = None) -> None:
    config = load_config()
    model = _coerce_required_str(value, "model", DEFAULT_MODEL)
    if dimension is not None:
        config.dimension = _coerce_positive_int(dimension, "dimension")
    elif model != config.model:
        config.dimension = None
    config.model = model
    save_config(config)


def set_vector_backend(value: str) -> None:
    config = load_config()
    config.vector_backend = normalize_backend(value, "vector_backend")
    save_config(config)


def set_file_backend(value: str) -> None:
    config = load_config()
    config.file_backend = normalize_backend(value, "file_backend")
    save_config(config)


def set_similarity_threshold(value: float) -> None:
    config = load_config()
    config.similarity_threshold = _coerce_threshold(value, "similarity_threshold")
    save_config(config)


def set_cache_ttl_hours(value: float) -> None:
    config = load_config()
    config.cache_ttl_hours = _coerce_float(value, "cache_ttl_hours")
    save_config(config)


def normalize_backend(value: object, field: str = "backend") -> str:
    if value is None:
        return DEFAULT_BACKEND
    if isinstance(value, str):
        normalized = value.strip().lower() or DEFAULT_BACKEND
        if normalized in SUPPORTED_BACKENDS:
            return normalized
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "model" in payload:
        config.model = _coerce_required_str(payload["model"], "model", DEFAULT_MODEL)
    if "dimension" in payload:
        value = payload["dimension"]
        config.dimension = None if value is None else _coerce_positive_int(value, "dimension")
    if "batch_size" in payload:
        config.batch_size = _coerce_int(payload["batch_size"], "batch_size", DEFAULT_BATCH_SIZE)
    if "cache_ttl_hours" in payload:
        config.cache_ttl_hours = _coerce_float(payload["cache_ttl_hours"], "cache_ttl_hours")
    if "max_memory_entries" in payload:
        config.max_memory_entries = _coerce_int(
            payload["max_memory_entries"],
            "max_memory_entries",
            DEFAULT_MAX_MEMORY_ENTRIES,
        )
    if "max_disk_entries" in payload:
        config.max_disk_entries = _coerce_int(
            payload["max_disk_entries"],
            "max_disk_entries",
            DEFAULT_MAX_DISK_ENTRIES,
        )
    if "vector_backend" in payload:
        config.vector_backend = normalize_backend(payload["vector_backend"], "vector_backend")
    if "file_backend" in payload:
        config.file_backend = normalize_backend(payload["file_backend"], "file_backend")
    if "similarity_threshold" in payload:
        config.similarity_threshold = _coerce_threshold(
            payload["similarity_threshold"], "similarity_threshold"
        )
    if "top_k" in payload:
        config.top_k = _coerce_positive_int(payload["top_k"], "top_k")
    if "max_depth" in payload:
        config.max_depth = _coerce_int(payload["max_depth"], "max_depth", DEFAULT_MAX_DEPTH)
    if "max_results" in payload:
        config.max_results = _coerce_positive_int(payload["max_results"], "max_results")
    if "include_hidden" in payload:
        config.include_hidden = _coerce_bool(payload["include_hidden"], "include_hidden")
    if "follow_symlinks" in payload:
        config.follow_symlinks = _coerce_bool(payload["follow_symlinks"], "follow_symlinks")
    if "case_sensitive" in payload:
        config.case_sensitive = _coerce_bool(payload["case_sensitive"], "case_sensitive")
    if "context_lines" in payload:
        config.context_lines = _coerce_int(
            payload["context_lines"], "context_lines", DEFAULT_CONTEXT_LINES
        )
    if "max_file_size" in payload:
        config.max_file_size = _coerce_int(
            payload["max_file_size"], "max_file_size", DEFAULT_MAX_FILE_SIZE
        )
    if "workers" in payload:
        config.workers = _coerce_positive_int(payload["workers"], "workers")
    if "exclude_patterns" in payload:
        config.exclude_patterns = _coerce_patterns(payload["exclude_patterns"], "exclude_patterns")
    if "extract_timeout" in payload:
        value = payload["extract_timeout"]
        config.extract_timeout = None if value is None else _coerce_float(value, "extract_timeout")
    if "local_cuda" in payload:
        config.local_cuda = _coerce_bool(payload["local_cuda"], "local_cuda")


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_positive_int(value: object, field: str) -> int:
    number = _coerce_int(value, field, 0)
    if number <= 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return number


def _coerce_float(value: object, field: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    else:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if number < 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return number


def _coerce_threshold(value: object, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    try:
        number = float(value)
    except ValueError as exc:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    if not -1.0 <= number <= 1.0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return number


def _coerce_patterns(value: object, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return normalize_patterns(value.split(","))
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return normalize_patterns(value)
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
