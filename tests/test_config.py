import json
from pathlib import Path

from mindloop.core.config import Config


def test_from_file_and_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "mindloop.json"
    path.write_text(json.dumps({"model": "llama3", "safety": {"allowed_dirs": ["/tmp/a"]}}))
    monkeypatch.setenv("MINDLOOP_DRY_RUN", "yes")
    monkeypatch.setenv("MINDLOOP_ALLOWED_HOSTS", "example.com, python.org")
    cfg = Config.from_file(path)
    assert cfg.model == "llama3"
    assert cfg.dry_run is True
    assert cfg.safety.allowed_dirs == [str(Path("/tmp/a").resolve())]
    assert cfg.safety.allowed_hosts == ["example.com", "python.org"]


def test_reload_returns_a_new_object(tmp_path):
    path = tmp_path / "mindloop.json"
    path.write_text(json.dumps({"model": "one"}))
    cfg = Config.from_file(path)
    path.write_text(json.dumps({"model": "two"}))
    fresh = cfg.reload()
    assert fresh is not cfg
    assert (cfg.model, fresh.model) == ("one", "two")


def test_interval_bounds_follow_mode():
    cfg = Config()
    assert cfg.interval_bounds() == (1500, 30000)
    cfg.continuous_mode = True
    assert cfg.interval_bounds() == (800, 5000)


def test_data_paths(tmp_path):
    cfg = Config(data_dir=str(tmp_path))
    assert cfg.memory_path == tmp_path / "memory.json"
    assert cfg.archive_path.name == "archive.json.gz"
    assert cfg.audit_path.name == "audit_log.jsonl"
