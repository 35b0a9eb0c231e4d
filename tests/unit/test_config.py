import json

import pytest

from semfind import config as config_module


def _prepare_config(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_file = config_dir / "config.json"
    monkeypatch.setattr(config_module, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)
    monkeypatch.delenv(config_module.ENV_MODEL, raising=False)
    return config_file


def test_load_config_defaults(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    cfg = config_module.load_config()

    assert cfg.model == config_module.DEFAULT_MODEL
    assert cfg.dimension is None
    assert cfg.cache_ttl_hours == 168
    assert cfg.cache_ttl_seconds == 168 * 3600
    assert cfg.max_memory_entries == 1000
    assert cfg.vector_backend == "auto"
    assert cfg.file_backend == "auto"
    assert cfg.similarity_threshold == pytest.approx(0.7)
    assert cfg.top_k == 10
    assert cfg.max_depth == 20
    assert cfg.max_results == 10_000
    assert cfg.include_hidden is False
    assert cfg.case_sensitive is False
    assert cfg.extract_timeout is None
    assert cfg.local_cuda is False


def test_setters_persist_values(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)

    config_module.set_model("my/model", 512)
    config_module.set_vector_backend("Portable")
    config_module.set_file_backend("native")
    config_module.set_similarity_threshold(0.5)
    config_module.set_cache_ttl_hours(2)

    data = json.loads(config_file.read_text())
    assert data["model"] == "my/model"
    assert data["dimension"] == 512
    assert data["vector_backend"] == "portable"
    assert data["file_backend"] == "native"
    assert data["similarity_threshold"] == 0.5
    assert data["cache_ttl_hours"] == 2
    assert "extract_timeout" not in data

    cfg = config_module.load_config()
    assert cfg.model == "my/model"
    assert cfg.cache_ttl_seconds == 7200


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    with pytest.raises(ValueError):
        config_module.set_vector_backend("gpu")
    with pytest.raises(ValueError):
        config_module.set_similarity_threshold(1.5)
    with pytest.raises(ValueError):
        config_module.set_cache_ttl_hours(-1)
    with pytest.raises(ValueError):
        config_module.config_from_json({"top_k": 0})
    with pytest.raises(ValueError):
        config_module.config_from_json({"include_hidden": "maybe"})
    with pytest.raises(ValueError):
        config_module.config_from_json("[1, 2]")
    with pytest.raises(ValueError):
        config_module.config_from_json("{not json")


def test_config_from_json_overlays_base():
    base = config_module.Config(model="base-model", top_k=3)

    cfg = config_module.config_from_json(
        '{"top_k": 7, "include_hidden": "yes", "extract_timeout": 2.5, "workers": 2}',
        base=base,
    )

    assert cfg.model == "base-model"
    assert cfg.top_k == 7
    assert cfg.include_hidden is True
    assert cfg.extract_timeout == 2.5
    assert cfg.workers == 2
    assert base.top_k == 3


def test_update_config_from_json_replace_all(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.set_model("kept/model")

    merged = config_module.update_config_from_json({"top_k": 4})
    assert merged.model == "kept/model"
    assert merged.top_k == 4

    replaced = config_module.update_config_from_json({"top_k": 5}, replace_all=True)
    assert replaced.model == config_module.DEFAULT_MODEL
    assert config_module.load_config().top_k == 5


def test_environment_overrides_model(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.set_model("from/file")

    monkeypatch.setenv(config_module.ENV_MODEL, "from/env")

    assert config_module.load_config().model == "from/env"


def test_config_dir_context_scopes_files(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    scoped = tmp_path / "scoped"

    with config_module.config_dir_context(scoped):
        config_module.set_model("scoped/model")
        assert config_module.local_model_dir() == scoped.resolve() / "models"

    assert (scoped / "config.json").exists()
    assert config_module.load_config().model == config_module.DEFAULT_MODEL


def test_normalize_backend():
    assert config_module.normalize_backend(None) == "auto"
    assert config_module.normalize_backend("  NATIVE ") == "native"
    assert config_module.normalize_backend("") == "auto"
    with pytest.raises(ValueError):
        config_module.normalize_backend(3)


def test_changing_model_drops_stale_dimension(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.set_model("wide/model", 1024)

    config_module.set_model("wide/model")
    assert config_module.load_config().dimension == 1024

    config_module.set_model("narrow/model")
    assert config_module.load_config().dimension is None


def test_file_search_keys_round_trip(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)

    cfg = config_module.update_config_from_json(
        {"follow_symlinks": "yes", "exclude_patterns": "node_modules/, *.min.js"}
    )

    assert cfg.follow_symlinks is True
    assert cfg.exclude_patterns == ("node_modules/", "*.min.js")
    data = json.loads(config_file.read_text())
    assert data["follow_symlinks"] is True
    assert data["exclude_patterns"] == ["node_modules/", "*.min.js"]
    assert config_module.load_config().exclude_patterns == ("node_modules/", "*.min.js")
    with pytest.raises(ValueError):
        config_module.config_from_json({"exclude_patterns": [1, 2]})
