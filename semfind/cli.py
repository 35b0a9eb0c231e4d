"""Command line interface for semfind."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .api import SemfindClient, file_search_config
from .cache import current_cache_dir
from .config import (
    DEFAULT_MAX_MATCHES_PER_FILE,
    Config,
    load_config,
    set_cache_ttl_hours,
    set_file_backend,
    set_model,
    set_similarity_threshold,
    set_vector_backend,
)
from .errors import SemfindError
from .files import benchmark_file_search
from .text import Messages, Styles
from .utils import normalize_patterns, read_text_file
from .vectors import benchmark

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

USER_ERRORS = (SemfindError, ValueError, FileNotFoundError, NotADirectoryError)


def _create_client(config: Config) -> SemfindClient:
    return SemfindClient(config)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"semfind v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _fail(exc: BaseException) -> typer.Exit:
    console.print(_styled(str(exc), Styles.ERROR))
    return typer.Exit(code=1)


def _print_plain(text: str, style: str | None = None) -> None:
    console.print(text, style=style, markup=False, highlight=False)


def _format_size(size: float) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


def _format_path(path: Path, base: Path) -> str:
    try:
        return f"./{path.relative_to(base).as_posix()}"
    except ValueError:
        return str(path)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help=Messages.HELP_VERSION,
    ),
    verbose: bool = typer.Option(False, "--verbose", help=Messages.HELP_VERBOSE),
) -> None:
    """Global Typer callback for shared options."""
    _configure_logging(verbose)


@app.command()
def similar(
    reference: Path = typer.Argument(..., help=Messages.HELP_REFERENCE),
    path: Path = typer.Option(Path("."), "--path", "-p", help=Messages.HELP_ROOT),
    pattern: str = typer.Option("*", "--pattern", help=Messages.HELP_SIMILAR_PATTERN),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help=Messages.HELP_EXCLUDE),
    top: int | None = typer.Option(None, "--top", "-k", help=Messages.HELP_TOP),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help=Messages.HELP_THRESHOLD),
) -> None:
    """Rank files by semantic similarity to a reference file."""
    client = _create_client(load_config())
    try:
        results = client.find_similar_files(
            reference,
            path,
            pattern=pattern,
            exclude_patterns=normalize_patterns(exclude),
            top_k=top,
            threshold=threshold,
        )
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    finally:
        client.close()
    if not results:
        console.print(_styled(Messages.INFO_NO_RESULTS, Styles.WARNING))
        return
    base = path.expanduser().resolve()
    console.print(_styled(Messages.TABLE_TITLE_SIMILAR, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_SIMILARITY, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    for result in results:
        table.add_row(
            str(result.rank),
            f"{result.similarity:.3f}",
            _format_path(Path(result.path), base),
        )
    console.print(table)


@app.command()
def find(
    pattern: str = typer.Argument(..., help=Messages.HELP_PATTERN),
    path: Path = typer.Option(Path("."), "--path", "-p", help=Messages.HELP_ROOT),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-x", help=Messages.HELP_EXCLUDE),
    include_hidden: bool = typer.Option(
        False, "--include-hidden", "-i", help=Messages.HELP_INCLUDE_HIDDEN
    ),
    max_depth: int | None = typer.Option(None, "--max-depth", help=Messages.HELP_MAX_DEPTH),
    case_sensitive: bool = typer.Option(
        False, "--case-sensitive", help=Messages.HELP_CASE_SENSITIVE
    ),
    follow_symlinks: bool | None = typer.Option(
        None, "--follow-symlinks/--no-follow-symlinks", help=Messages.HELP_FOLLOW_SYMLINKS
    ),
) -> None:
    """List files whose name matches a glob pattern."""
    config = replace(
        load_config(),
        include_hidden=include_hidden,
        case_sensitive=case_sensitive,
    )
    if follow_symlinks is not None:
        config.follow_symlinks = follow_symlinks
    if max_depth is not None:
        config.max_depth = max_depth
    client = _create_client(config)
    try:
        files = client.find_files_by_pattern(path, pattern, normalize_patterns(exclude))
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    finally:
        client.close()
    if not files:
        console.print(_styled(Messages.INFO_NO_FILES, Styles.WARNING))
        return
    console.print(_styled(Messages.TABLE_TITLE_FILES, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_SIZE, justify="right")
    for idx, info in enumerate(files, start=1):
        table.add_row(str(idx), f"./{info.rel_path}", _format_size(info.size))
    console.print(table)


@app.command()
def grep(
    text: str = typer.Argument(..., help=Messages.HELP_TEXT),
    path: Path = typer.Option(Path("."), "--path", "-p", help=Messages.HELP_ROOT),
    file_pattern: list[str] | None = typer.Option(
        None, "--file-pattern", "-f", help=Messages.HELP_FILE_PATTERN
    ),
    max_matches: int = typer.Option(
        DEFAULT_MAX_MATCHES_PER_FILE, "--max-matches", "-m", help=Messages.HELP_MAX_MATCHES
    ),
    regex: bool = typer.Option(False, "--regex", "-E", help=Messages.HELP_REGEX),
    case_sensitive: bool = typer.Option(
        False, "--case-sensitive", "-s", help=Messages.HELP_CASE_SENSITIVE
    ),
    context: int | None = typer.Option(None, "--context", "-C", help=Messages.HELP_CONTEXT),
    include_hidden: bool = typer.Option(
        False, "--include-hidden", "-i", help=Messages.HELP_INCLUDE_HIDDEN
    ),
) -> None:
    """Search file contents for text or a regular expression."""
    config = replace(
        load_config(),
        include_hidden=include_hidden,
        case_sensitive=case_sensitive,
    )
    if context is not None:
        config.context_lines = max(context, 0)
    client = _create_client(config)
    try:
        matches = client.search_text_in_files(
            path,
            text,
            normalize_patterns(file_pattern) or None,
            max_matches,
            regex=regex,
        )
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    finally:
        client.close()
    if not matches:
        console.print(_styled(Messages.INFO_NO_MATCHES, Styles.WARNING))
        return
    for match in matches:
        for offset, line in enumerate(match.context_before):
            number = match.line_number - len(match.context_before) + offset
            _print_plain(f"{match.file_path}-{number}-{line}", Styles.INFO)
        _print_plain(f"{match.file_path}:{match.line_number}:{match.line_content}")
        for offset, line in enumerate(match.context_after, start=1):
            number = match.line_number + offset
            _print_plain(f"{match.file_path}-{number}-{line}", Styles.INFO)
    files = len({match.file_path for match in matches})
    console.print(
        _styled(Messages.INFO_MATCH_SUMMARY.format(count=len(matches), files=files), Styles.SUCCESS)
    )


@app.command()
def stats(
    path: Path = typer.Option(Path("."), "--path", "-p", help=Messages.HELP_ROOT),
    include_hidden: bool = typer.Option(
        False, "--include-hidden", "-i", help=Messages.HELP_INCLUDE_HIDDEN
    ),
) -> None:
    """Show file counts and sizes for a directory tree."""
    client = _create_client(replace(load_config(), include_hidden=include_hidden))
    try:
        summary = client.get_directory_stats(path)
        extensions = client.get_extension_stats(path)
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    finally:
        client.close()

    console.print(_styled(Messages.TABLE_TITLE_STATS, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_METRIC)
    table.add_column(Messages.TABLE_HEADER_VALUE, justify="right")
    table.add_row("Files", str(summary.file_count))
    table.add_row("Directories", str(summary.directory_count))
    table.add_row("Total size", _format_size(summary.total_size_bytes))
    table.add_row("Largest file", _format_size(summary.largest_file_size_bytes))
    table.add_row("Average file", _format_size(summary.average_file_size_bytes))
    console.print(table)

    if extensions:
        console.print(_styled(Messages.TABLE_TITLE_EXTENSIONS, Styles.TITLE))
        ext_table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
        ext_table.add_column(Messages.TABLE_HEADER_EXTENSION)
        ext_table.add_column(Messages.TABLE_HEADER_COUNT, justify="right")
        for extension, count in extensions.items():
            ext_table.add_row(extension, str(count))
        console.print(ext_table)


@app.command()
def dupes(
    path: Path = typer.Option(Path("."), "--path", "-p", help=Messages.HELP_ROOT),
    include_hidden: bool = typer.Option(
        False, "--include-hidden", "-i", help=Messages.HELP_INCLUDE_HIDDEN
    ),
    follow_symlinks: bool | None = typer.Option(
        None, "--follow-symlinks/--no-follow-symlinks", help=Messages.HELP_FOLLOW_SYMLINKS
    ),
) -> None:
    """Report groups of byte-identical files."""
    config = replace(load_config(), include_hidden=include_hidden)
    if follow_symlinks is not None:
        config.follow_symlinks = follow_symlinks
    client = _create_client(config)
    try:
        groups = client.find_duplicate_files(path)
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    finally:
        client.close()
    if not groups:
        console.print(_styled(Messages.INFO_NO_DUPLICATES, Styles.WARNING))
        return
    base = path.expanduser().resolve()
    console.print(_styled(Messages.TABLE_TITLE_DUPLICATES, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_HASH)
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    for digest, paths in groups.items():
        table.add_row(digest[:12], "\n".join(_format_path(item, base) for item in paths))
    console.print(table)


@app.command()
def embed(
    file: Path = typer.Argument(..., help=Messages.HELP_EMBED_PATH),
) -> None:
    """Embed a single file and report whether the cache was used."""
    target = file.expanduser().resolve()
    try:
        content = read_text_file(target)
    except OSError as exc:
        raise _fail(exc) from exc
    if content is None:
        console.print(
            _styled(
                Messages.ERROR_FILE_READ.format(path=target, reason=Messages.REASON_NOT_TEXT),
                Styles.ERROR,
            )
        )
        raise typer.Exit(code=1)
    client = _create_client(load_config())
    try:
        result = client.generate_embedding(content, str(target))
    finally:
        client.close()
    if result.error:
        console.print(_styled(result.error, Styles.ERROR))
        raise typer.Exit(code=1)
    console.print(
        _styled(
            Messages.INFO_EMBEDDING.format(
                path=target, dimension=len(result.vector), cached=result.cached
            ),
            Styles.SUCCESS,
        )
    )


@app.command()
def cache(
    show_stats: bool = typer.Option(False, "--stats", help=Messages.HELP_CACHE_STATS),
    clear: bool = typer.Option(False, "--clear", help=Messages.HELP_CACHE_CLEAR),
    purge: bool = typer.Option(False, "--purge", help=Messages.HELP_CACHE_PURGE),
) -> None:
    """Inspect, prune or purge the persistent embedding cache."""
    config = load_config()
    client = _create_client(config)
    try:
        if purge:
            client.clear_cache(purge_persistent=True)
            console.print(_styled(Messages.INFO_CACHE_PURGED, Styles.SUCCESS))
        elif clear:
            client.cache.prune()
            console.print(_styled(Messages.INFO_CACHE_CLEARED, Styles.SUCCESS))
        if (clear or purge) and not show_stats:
            return
        usage = client.cache.disk_usage()
        cache_dir = client.cache.cache_dir
    finally:
        client.close()
    console.print(_styled(Messages.TABLE_TITLE_CACHE, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_METRIC, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_VALUE, justify="right", overflow="fold")
    table.add_row("Persisted entries", str(usage.entries))
    table.add_row("Database size", _format_size(usage.size_bytes))
    table.add_row("TTL (hours)", f"{config.cache_ttl_hours:g}")
    table.add_row("Max disk entries", str(config.max_disk_entries))
    table.add_row("Directory", str(cache_dir))
    console.print(table)


@app.command()
def backend() -> None:
    """Show which vector and file search backends are active."""
    client = _create_client(load_config())
    try:
        info = client.get_backend_info()
    finally:
        client.close()
    console.print(_styled(Messages.TABLE_TITLE_BACKENDS, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_COMPONENT)
    table.add_column(Messages.TABLE_HEADER_BACKEND)
    table.add_column(Messages.TABLE_HEADER_ACCELERATED)
    table.add_column(Messages.TABLE_HEADER_NOTE, overflow="fold")
    for component, details in info.items():
        table.add_row(
            component,
            details.type,
            "yes" if details.accelerated else "no",
            details.fallback_reason or details.performance,
        )
    console.print(table)


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help=Messages.HELP_SHOW_CONFIG),
    set_model_option: str | None = typer.Option(None, "--set-model", help=Messages.HELP_SET_MODEL),
    set_dimension_option: int | None = typer.Option(
        None, "--set-dimension", help=Messages.HELP_SET_DIMENSION
    ),
    set_vector_backend_option: str | None = typer.Option(
        None, "--set-vector-backend", help=Messages.HELP_SET_VECTOR_BACKEND
    ),
    set_file_backend_option: str | None = typer.Option(
        None, "--set-file-backend", help=Messages.HELP_SET_FILE_BACKEND
    ),
    set_threshold_option: float | None = typer.Option(
        None, "--set-threshold", help=Messages.HELP_SET_THRESHOLD
    ),
    set_ttl_option: float | None = typer.Option(None, "--set-ttl", help=Messages.HELP_SET_TTL),
) -> None:
    """Manage semfind configuration."""
    changed = False
    try:
        if set_model_option is not None:
            set_model(set_model_option, set_dimension_option)
            changed = True
        elif set_dimension_option is not None:
            set_model(load_config().model, set_dimension_option)
            changed = True
        if set_vector_backend_option is not None:
            set_vector_backend(set_vector_backend_option)
            changed = True
        if set_file_backend_option is not None:
            set_file_backend(set_file_backend_option)
            changed = True
        if set_threshold_option is not None:
            set_similarity_threshold(set_threshold_option)
            changed = True
        if set_ttl_option is not None:
            set_cache_ttl_hours(set_ttl_option)
            changed = True
    except ValueError as exc:
        raise _fail(exc) from exc

    if changed:
        console.print(_styled(Messages.INFO_CONFIG_SAVED, Styles.SUCCESS))
    if show:
        cfg = load_config()
        console.print(
            Messages.INFO_CONFIG_SUMMARY.format(
                model=cfg.model,
                dimension=cfg.dimension or "auto",
                vector_backend=cfg.vector_backend,
                file_backend=cfg.file_backend,
                threshold=cfg.similarity_threshold,
                ttl=cfg.cache_ttl_hours,
                cache_dir=current_cache_dir(),
            ),
            markup=False,
        )
    elif not changed:
        console.print(_styled(Messages.INFO_CONFIG_UNCHANGED, Styles.INFO))


def _timings_table(title: str, timings: dict[str, float]) -> None:
    console.print(_styled(title, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_METRIC)
    table.add_column(Messages.TABLE_HEADER_VALUE, justify="right")
    for label, key, suffix in (
        ("Portable", "portable_ms", " ms"),
        ("Native", "native_ms", " ms"),
        ("Speedup", "speedup", "x"),
    ):
        if key in timings:
            table.add_row(label, f"{timings[key]:.2f}{suffix}")
    console.print(table)


@app.command()
def bench(
    size: int = typer.Option(384, "--size", help=Messages.HELP_BENCH_SIZE),
    count: int = typer.Option(1000, "--count", help=Messages.HELP_BENCH_COUNT),
    path: Path | None = typer.Option(None, "--path", "-p", help=Messages.HELP_BENCH_PATH),
    pattern: str = typer.Option("*", "--pattern", help=Messages.HELP_BENCH_PATTERN),
    iterations: int = typer.Option(3, "--iterations", help=Messages.HELP_BENCH_ITERATIONS),
) -> None:
    """Time batch cosine similarity, and optionally file search, on both backends."""
    _timings_table(Messages.TABLE_TITLE_BENCH, benchmark(size, count))
    if path is None:
        return
    config = load_config()
    try:
        timings = benchmark_file_search(path, pattern, iterations, file_search_config(config))
    except USER_ERRORS as exc:
        raise _fail(exc) from exc
    _timings_table(Messages.TABLE_TITLE_BENCH_FILES, timings)


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    if argv is None:
        app()
    else:
        app(args=list(argv))
