import logging
import os
from pathlib import Path

import pytest

import semfind.files as files
from semfind.errors import InvalidLineRangeError, InvalidPatternError

BACKENDS = {
    "portable": files.PortableFileSearchBackend,
    "native": files.NativeFileSearchBackend,
}


@pytest.fixture(params=sorted(BACKENDS))
def make_backend(request):
    created = []

    def _factory(**overrides):
        overrides.setdefault("workers", 3)
        backend = BACKENDS[request.param](files.FileSearchConfig(**overrides))
        created.append(backend)
        return backend

    _factory.kind = request.param
    yield _factory
    for backend in created:
        backend.close()


def _write(root: Path, rel: str, content: str | bytes) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "project"
    _write(root, "README", "no extension hello\n")
    _write(root, "a.py", "import os\nprint('hello')\n")
    _write(root, "b.txt", "Hello world\nhello again hello\n")
    _write(root, "build/out.py", "hello build\n")
    _write(root, "image.png", "hello in png")
    _write(root, "src/main.py", "def main():\n    return 'HELLO'\n")
    _write(root, "src/sub/deep.py", "x = 1\n")
    _write(root, ".hidden/secret.py", "hello secret\n")
    _write(root, ".env.py", "hello env\n")
    return root


def _rel(infos):
    return [info.rel_path for info in infos]


def test_find_files_by_pattern_matches_names_at_any_depth(make_backend, tree):
    backend = make_backend()

    found = backend.find_files_by_pattern(tree, "*.py")

    assert _rel(found) == ["a.py", "build/out.py", "src/main.py", "src/sub/deep.py"]
    first = found[0]
    assert first.name == "a.py"
    assert first.extension == ".py"
    assert first.size == (tree / "a.py").stat().st_size
    assert first.path == (tree / "a.py").resolve()


def test_find_files_includes_hidden_entries_when_enabled(make_backend, tree):
    backend = make_backend(include_hidden=True)

    found = _rel(backend.find_files_by_pattern(tree, "*.py"))

    assert ".env.py" in found
    assert ".hidden/secret.py" in found


def test_find_files_pattern_with_slash_is_anchored(make_backend, tree):
    backend = make_backend()

    assert _rel(backend.find_files_by_pattern(tree, "src/*.py")) == ["src/main.py"]


def test_exclude_patterns_prune_directories(make_backend, tree):
    backend = make_backend()

    found = _rel(backend.find_files_by_pattern(tree, "*.py", ["build/", "sub"]))

    assert found == ["a.py", "src/main.py"]


def test_exclude_is_tested_before_include(make_backend, tree):
    backend = make_backend(exclude_patterns=("*.py",))

    assert backend.find_files_by_pattern(tree, "*.py") == []


def test_find_files_is_case_insensitive_by_default(make_backend, tree):
    assert _rel(make_backend().find_files_by_pattern(tree, "A.PY")) == ["a.py"]
    assert make_backend(case_sensitive=True).find_files_by_pattern(tree, "A.PY") == []


def test_find_files_stops_at_max_results(make_backend, tree):
    backend = make_backend(max_results=2)

    assert _rel(backend.find_files_by_pattern(tree, "*")) == ["README", "a.py"]


def test_find_files_honours_depth_bound(make_backend, tree):
    assert _rel(make_backend(max_depth=0).find_files_by_pattern(tree, "*.py")) == ["a.py"]
    assert _rel(make_backend(max_depth=1).find_files_by_pattern(tree, "*.py")) == [
        "a.py",
        "build/out.py",
        "src/main.py",
    ]


def test_find_files_rejects_blank_pattern(make_backend, tree):
    with pytest.raises(InvalidPatternError):
        make_backend().find_files_by_pattern(tree, "   ")


def test_missing_or_non_directory_root(make_backend, tree):
    backend = make_backend()

    with pytest.raises(FileNotFoundError):
        backend.find_files_by_pattern(tree / "missing", "*")
    with pytest.raises(NotADirectoryError):
        backend.get_directory_stats(tree / "a.py")


def test_unreadable_directory_is_skipped(make_backend, tree, monkeypatch, caplog):
    backend = make_backend()
    name = "scandir" if make_backend.kind == "native" else "listdir"
    original = getattr(os, name)

    def guarded(path="."):
        if Path(path).name == "src":
            raise PermissionError(13, "Permission denied", str(path))
        return original(path)

    monkeypatch.setattr(files.os, name, guarded)
    with caplog.at_level(logging.DEBUG, logger="semfind.files"):
        found = _rel(backend.find_files_by_pattern(tree, "*.py"))

    assert found == ["a.py", "build/out.py"]
    assert any("Cannot list" in record.getMessage() for record in caplog.records)


def test_search_text_reports_every_occurrence(make_backend, tree):
    backend = make_backend()

    matches = backend.search_text_in_files(tree, "hello")

    assert [(m.file_path, m.line_number, m.match_offset) for m in matches] == [
        ("README", 1, 13),
        ("a.py", 2, 7),
        ("b.txt", 1, 0),
        ("b.txt", 2, 0),
        ("b.txt", 2, 12),
        ("build/out.py", 1, 0),
        ("src/main.py", 2, 12),
    ]
    assert all(m.match_length == 5 for m in matches)
    again = [m for m in matches if m.file_path == "b.txt" and m.line_number == 2]
    assert [m.matches_in_line for m in again] == [2, 2]
    assert again[0].line_content == "hello again hello"


def test_search_text_case_sensitive(make_backend, tree):
    backend = make_backend(case_sensitive=True)

    matches = backend.search_text_in_files(tree, "HELLO")

    assert [(m.file_path, m.line_number) for m in matches] == [("src/main.py", 2)]


def test_search_text_captures_context_lines(make_backend, tmp_path):
    _write(tmp_path, "ctx.txt", "l1\nl2\ntarget\nl4\nl5\nl6\n")
    backend = make_backend(context_lines=2)

    (match,) = backend.search_text_in_files(tmp_path, "target")

    assert match.context_before == ["l1", "l2"]
    assert match.context_after == ["l4", "l5"]

    (edge,) = make_backend(context_lines=3).search_text_in_files(tmp_path, "l1")
    assert edge.context_before == []
    assert edge.context_after == ["l2", "target", "l4"]


def test_search_text_per_file_cap_moves_to_next_file(make_backend, tmp_path):
    _write(tmp_path, "first.txt", "needle\n" * 5)
    _write(tmp_path, "second.txt", "needle needle needle\n")
    _write(tmp_path, "third.txt", "one needle\n")
    backend = make_backend()

    matches = backend.search_text_in_files(tmp_path, "needle", max_matches_per_file=2)

    assert [(m.file_path, m.line_number) for m in matches] == [
        ("first.txt", 1),
        ("first.txt", 2),
        ("second.txt", 1),
        ("second.txt", 1),
        ("third.txt", 1),
    ]


def test_search_text_global_cap(make_backend, tmp_path):
    _write(tmp_path, "a.txt", "needle\n" * 3)
    _write(tmp_path, "b.txt", "needle\n" * 3)

    matches = make_backend(max_results=4).search_text_in_files(tmp_path, "needle")

    assert len(matches) == 4
    assert [m.file_path for m in matches] == ["a.txt", "a.txt", "a.txt", "b.txt"]


def test_search_text_skips_binary_and_oversized_files(make_backend, tmp_path):
    _write(tmp_path, "photo.PNG", "needle")
    _write(tmp_path, "blob.dat", b"needle\x00\x01\x02")
    _write(tmp_path, "large.txt", "needle " * 50)
    _write(tmp_path, "small.txt", "needle")

    matches = make_backend(max_file_size=100).search_text_in_files(tmp_path, "needle")

    assert {m.file_path for m in matches} == {"small.txt"}


def test_search_text_filters_by_file_pattern(make_backend, tree):
    matches = make_backend().search_text_in_files(tree, "hello", ["*.py"])

    assert {m.file_path for m in matches} == {"a.py", "build/out.py", "src/main.py"}


def test_search_text_regex(make_backend, tmp_path):
    _write(tmp_path, "code.py", "def alpha():\n    pass\ndef beta():\n")
    backend = make_backend()

    matches = backend.search_text_in_files(tmp_path, r"def \w+", regex=True)

    assert [(m.line_number, m.match_length) for m in matches] == [(1, 9), (3, 8)]
    assert backend.search_text_in_files(tmp_path, "def \\w+") == []


def test_search_text_rejects_bad_input(make_backend, tmp_path):
    backend = make_backend()

    with pytest.raises(InvalidPatternError):
        backend.search_text_in_files(tmp_path, "")
    with pytest.raises(InvalidPatternError):
        backend.search_text_in_files(tmp_path, "(unclosed", regex=True)


def test_search_text_skips_unreadable_files(make_backend, tmp_path, monkeypatch):
    _write(tmp_path, "ok.txt", "needle")
    _write(tmp_path, "locked.txt", "needle")
    original = files.read_text_file

    def guarded(path, max_size=0):
        if Path(path).name == "locked.txt":
            raise PermissionError(13, "Permission denied")
        return original(path, max_size)

    monkeypatch.setattr(files, "read_text_file", guarded)

    matches = make_backend().search_text_in_files(tmp_path, "needle")

    assert [m.file_path for m in matches] == ["ok.txt"]


def test_search_text_decodes_legacy_encodings(make_backend, tmp_path):
    text = "Le café était très agréable.\nUne aiguille: needle dans le résumé.\nÀ bientôt, garçon!\n"
    _write(tmp_path, "latin.txt", text.encode("latin-1"))

    matches = make_backend().search_text_in_files(tmp_path, "needle")

    assert len(matches) == 1
    assert matches[0].line_number == 2
    assert matches[0].line_content.startswith("Une aiguille")


def test_directory_stats(make_backend, tree):
    expected_files = [
        "README",
        "a.py",
        "b.txt",
        "build/out.py",
        "image.png",
        "src/main.py",
        "src/sub/deep.py",
    ]
    sizes = [(tree / rel).stat().st_size for rel in expected_files]

    stats = make_backend().get_directory_stats(tree)

    assert stats.file_count == 7
    assert stats.directory_count == 3
    assert stats.total_size_bytes == sum(sizes)
    assert stats.largest_file_size_bytes == max(sizes)
    assert stats.average_file_size_bytes == pytest.approx(sum(sizes) / 7)


def test_directory_stats_respects_depth(make_backend, tree):
    stats = make_backend(max_depth=0).get_directory_stats(tree)

    assert stats.file_count == 4
    assert stats.directory_count == 2


def test_empty_directory_stats(make_backend, tmp_path):
    stats = make_backend().get_directory_stats(tmp_path)

    assert stats.file_count == 0
    assert stats.average_file_size_bytes == 0.0


def test_extension_stats(make_backend, tree):
    _write(tree, "upper.PY", "x")

    counts = make_backend().get_extension_stats(tree)

    assert counts == {"py": 5, "<no_extension>": 1, "png": 1, "txt": 1}


def test_find_duplicate_files_groups_identical_content(make_backend, tmp_path, monkeypatch):
    _write(tmp_path, "dup1.txt", "same")
    _write(tmp_path, "sub/dup2.txt", "same")
    _write(tmp_path, "lookalike.txt", "SAME")
    _write(tmp_path, "unique.txt", "something longer")
    _write(tmp_path, "empty1.txt", "")
    _write(tmp_path, "empty2.txt", "")
    hashed = []
    original = files.hash_file

    def recording(path, *args, **kwargs):
        hashed.append(Path(path).name)
        return original(path, *args, **kwargs)

    monkeypatch.setattr(files, "hash_file", recording)

    groups = make_backend().find_duplicate_files(tmp_path)

    assert list(groups.values()) == [
        [(tmp_path / "dup1.txt").resolve(), (tmp_path / "sub" / "dup2.txt").resolve()]
    ]
    (digest,) = groups
    assert len(digest) == 64
    assert sorted(hashed) == ["dup1.txt", "dup2.txt", "lookalike.txt"]


def test_symlinked_files_are_not_duplicates_unless_followed(make_backend, tmp_path):
    root = tmp_path.resolve()
    _write(root, "real.txt", "shared text")
    _write(root, "other.txt", "different")
    os.symlink(root / "real.txt", root / "link.txt")

    assert make_backend().find_duplicate_files(root) == {}
    assert "link.txt" not in _rel(make_backend().find_files_by_pattern(root, "*.txt"))

    followed = make_backend(follow_symlinks=True).find_duplicate_files(root)
    assert list(followed.values()) == [[root / "link.txt", root / "real.txt"]]


def test_symlinked_directories_are_not_entered_unless_followed(make_backend, tmp_path):
    root = tmp_path / "tree"
    _write(tmp_path, "outside/target.py", "x = 1\n")
    root.mkdir()
    os.symlink(tmp_path / "outside", root / "linked")

    assert make_backend().find_files_by_pattern(root, "*.py") == []
    followed = make_backend(follow_symlinks=True).find_files_by_pattern(root, "*.py")
    assert _rel(followed) == ["linked/target.py"]


def test_read_file_lines(make_backend, tmp_path):
    target = _write(tmp_path, "lines.txt", "one\ntwo\nthree\n")
    backend = make_backend()

    assert backend.read_file_lines(target, 2, 3) == ["two", "three"]
    assert backend.read_file_lines(target, 3, 10) == ["three"]
    for start, end in ((0, 1), (3, 2), (4, 5)):
        with pytest.raises(InvalidLineRangeError):
            backend.read_file_lines(target, start, end)


def test_engine_selects_native_backend(tmp_path):
    engine = files.FileSearchEngine(files.FileSearchConfig(workers=2))
    try:
        info = engine.get_backend_info()
        assert info.type == "native"
        assert info.accelerated is True
        assert engine.find_files_by_pattern(tmp_path, "*") == []
    finally:
        engine.close()


def test_engine_falls_back_to_portable(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="semfind.files"):
        engine = files.FileSearchEngine(files.FileSearchConfig(workers=1), backend="native")

    info = engine.get_backend_info()
    assert info.type == "portable"
    assert info.requested == "native"
    assert "two workers" in (info.fallback_reason or "")
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1
    _write(tmp_path, "x.txt", "needle")
    assert [m.file_path for m in engine.search_text_in_files(tmp_path, "needle")] == ["x.txt"]


def test_engine_respects_explicit_portable_choice():
    engine = files.FileSearchEngine(backend="portable")

    info = engine.get_backend_info()

    assert info.type == "portable"
    assert info.fallback_reason is None


def test_benchmark_file_search_times_both_backends(tmp_path):
    for name in ("a.py", "b.py", "c.txt"):
        (tmp_path / name).write_text("x")

    timings = files.benchmark_file_search(tmp_path, "*.py", iterations=2)

    assert {"portable_ms", "native_ms"} <= set(timings)
    assert timings["portable_ms"] >= 0
    assert timings["native_ms"] >= 0


def test_benchmark_file_search_without_native_backend(tmp_path, caplog):
    (tmp_path / "a.py").write_text("x")
    config = files.FileSearchConfig(workers=1)

    with caplog.at_level(logging.WARNING, logger="semfind.files"):
        timings = files.benchmark_file_search(tmp_path, iterations=1, config=config)

    assert set(timings) == {"portable_ms"}
    assert "File search backend unavailable" in caplog.text
