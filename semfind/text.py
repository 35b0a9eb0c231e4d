"""Centralized user-facing text for semfind."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "semfind – local semantic similarity and text search over source trees."
    HELP_VERSION = "Show the semfind version and exit."
    HELP_VERBOSE = "Enable debug logging."
    HELP_ROOT = "Root directory to search."
    HELP_PATTERN = "Glob pattern matched against file names (or relative paths when it contains '/')."
    HELP_EXCLUDE = "Glob pattern to exclude (repeatable)."
    HELP_INCLUDE_HIDDEN = "Include hidden files and directories."
    HELP_FOLLOW_SYMLINKS = "Follow symbolic links (default from config: follow_symlinks)."
    HELP_MAX_DEPTH = "Maximum directory depth to descend into."
    HELP_TEXT = "Text to search for inside files."
    HELP_FILE_PATTERN = "Only search files whose name matches this glob (repeatable)."
    HELP_MAX_MATCHES = "Maximum matches reported per file."
    HELP_REGEX = "Treat the search text as a regular expression."
    HELP_CASE_SENSITIVE = "Match case exactly."
    HELP_CONTEXT = "Lines of context to show around each match."
    HELP_REFERENCE = "Reference file whose content is compared against the candidates."
    HELP_TOP = "Number of results to display."
    HELP_THRESHOLD = "Minimum cosine similarity for a result to be reported."
    HELP_EMBED_PATH = "File to embed."
    HELP_CACHE_STATS = "Show persistent embedding cache usage."
    HELP_CACHE_CLEAR = "Drop expired and overflowing entries from the persistent cache."
    HELP_CACHE_PURGE = "Remove every persisted embedding from disk."
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SET_MODEL = "Set the default embedding model."
    HELP_SET_DIMENSION = "Set the embedding dimension produced by the model."
    HELP_SET_VECTOR_BACKEND = "Set the vector backend (auto, native, portable)."
    HELP_SET_FILE_BACKEND = "Set the file search backend (auto, native, portable)."
    HELP_SET_THRESHOLD = "Set the default similarity threshold."
    HELP_SET_TTL = "Set the embedding cache time-to-live in hours."
    HELP_BENCH_SIZE = "Vector dimensionality used by the benchmark."
    HELP_BENCH_COUNT = "Number of candidate vectors used by the benchmark."
    HELP_BENCH_PATH = "Also time file search on both backends under this directory."
    HELP_BENCH_PATTERN = "Glob pattern used by the file search benchmark."
    HELP_BENCH_ITERATIONS = "Runs averaged per file search backend."
    HELP_SIMILAR_PATTERN = "Glob pattern selecting the candidate files."

    ERROR_DIMENSION_MISMATCH = "dimension mismatch: {left} != {right}"
    ERROR_ZERO_VECTOR = "cannot normalize zero vector"
    ERROR_PATHS_MISMATCH = "vectors and paths must have the same length ({vectors} != {paths})"
    ERROR_EMPTY_PATTERN = "invalid pattern: pattern must not be empty"
    ERROR_INVALID_PATTERN = "invalid pattern {pattern!r}: {reason}"
    ERROR_EMPTY_SEARCH_TEXT = "invalid pattern: search text must not be empty"
    ERROR_INVALID_LINE_RANGE = "invalid line range {start}-{end}"
    ERROR_BACKEND_UNAVAILABLE = "{kind} backend unavailable: {reason}"
    ERROR_LOCAL_DEP_MISSING = (
        "Local embeddings require fastembed. Install it with `pip install fastembed`."
    )
    ERROR_LOCAL_MODEL_LOAD = "Failed to load local model {model}: {reason}"
    ERROR_LOCAL_MODEL_EMBED = "Local model embedding failed: {reason}"
    ERROR_NO_EMBEDDINGS = "Embedding pipeline returned no embeddings."
    ERROR_PIPELINE_SHAPE = (
        "Embedding pipeline returned {size} values; expected {count} x {dimension}."
    )
    ERROR_PIPELINE_TIMEOUT = "Embedding pipeline timed out after {seconds}s."
    ERROR_CONFIG_JSON_INVALID = "Config JSON must be an object."
    ERROR_CONFIG_VALUE_INVALID = "Config value for {field} is invalid."
    ERROR_FILE_READ = "Unable to read {path}: {reason}"
    REASON_NOT_TEXT = "not a text file"

    WARNING_BACKEND_FALLBACK = "{kind} backend unavailable ({reason}); using portable backend."
    WARNING_SIMILARITY_FALLBACK = "Vector backend failed ({reason}); using scalar fallback."

    INFO_NO_FILES = "No files matched."
    INFO_NO_MATCHES = "No text matches found."
    INFO_NO_RESULTS = "No similar files found."
    INFO_NO_DUPLICATES = "No duplicate files found."
    INFO_CACHE_CLEARED = "Expired embeddings pruned from the cache."
    INFO_CACHE_PURGED = "Embedding cache purged."
    INFO_CONFIG_SAVED = "Configuration saved."
    INFO_CONFIG_SUMMARY = (
        "Model: {model}\n"
        "Dimension: {dimension}\n"
        "Vector backend: {vector_backend}\n"
        "File backend: {file_backend}\n"
        "Similarity threshold: {threshold}\n"
        "Cache TTL (hours): {ttl}\n"
        "Cache directory: {cache_dir}"
    )
    INFO_EMBEDDING = "Embedded {path} ({dimension} dimensions, cached={cached})."

    TABLE_TITLE_FILES = "Matching files"
    TABLE_TITLE_SIMILAR = "Similar files"
    TABLE_TITLE_DUPLICATES = "Duplicate files"
    TABLE_TITLE_STATS = "Directory statistics"
    TABLE_TITLE_CACHE = "Embedding cache"
    TABLE_TITLE_BACKENDS = "Backends"
    TABLE_TITLE_BENCH = "Vector benchmark"
    TABLE_TITLE_BENCH_FILES = "File search benchmark"
    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_PATH = "File path"
    TABLE_HEADER_SIZE = "Size"
    TABLE_HEADER_SIMILARITY = "Similarity"
    TABLE_HEADER_HASH = "Hash"
    TABLE_HEADER_METRIC = "Metric"
    TABLE_HEADER_VALUE = "Value"
    TABLE_HEADER_COMPONENT = "Component"
    TABLE_HEADER_BACKEND = "Backend"
    TABLE_HEADER_ACCELERATED = "Accelerated"
    TABLE_HEADER_NOTE = "Note"
    TABLE_TITLE_EXTENSIONS = "Files by extension"
    TABLE_HEADER_EXTENSION = "Extension"
    TABLE_HEADER_COUNT = "Files"
    INFO_MATCH_SUMMARY = "{count} match(es) in {files} file(s)."
    INFO_CONFIG_UNCHANGED = "No configuration changes requested; use --show to inspect settings."
