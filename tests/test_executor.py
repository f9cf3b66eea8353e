import pytest

from mindloop.agents.executor import Executor, resolve_edit_path
from mindloop.agents.oracle import DecisionOracleClient
from mindloop.core.actions import parse_action
from mindloop.core.tools import Toolbelt

from conftest import FakeLLM


@pytest.fixture
async def executor(cfg, memory):
    oracle = DecisionOracleClient(FakeLLM(other="CONCLUSION: tidy the workspace"), memory, cfg)
    tools = Toolbelt(cfg, open_browser=False)
    ex = Executor(tools, memory, oracle, cfg)
    yield ex
    await ex.supervisor.drain(5)
    await tools.aclose()


async def test_read_file_records_exploration(executor, memory, workspace):
    f = workspace / "notes.txt"
    f.write_text("remember the milk")
    out = await executor.execute(parse_action({"type": "read_file", "path": str(f)}))
    assert out.ok
    assert str(f) in memory.explored_paths()
    assert "remember the milk" in out.summary
    assert memory.state.counters["files_read"] == 1


async def test_list_dir_sets_last_dir(executor, memory, workspace):
    (workspace / "sub").mkdir()
    out = await executor.execute(parse_action({"type": "list_dir", "path": str(workspace)}))
    assert out.ok
    assert memory.state.last_dir == str(workspace)
    assert "sub/" in out.summary


async def test_edit_code_applies_and_audits(executor, memory, workspace, cfg):
    src = workspace / "mod.py"
    src.write_text("x = 1\n")
    out = await executor.execute(parse_action(
        {"type": "edit_code", "path": str(src), "oldText": "x = 1", "newText": "x = 2"}
    ))
    assert out.ok
    assert src.read_text() == "x = 2\n"
    assert list(cfg.backup_dir.glob("mod.py.*.bak"))
    assert memory.audit_log.tail(1)[0].outcome == "ok"


async def test_edit_code_reverts_broken_python(executor, memory, workspace):
    src = workspace / "mod.py"
    src.write_text("def f():\n    return 1\n")
    out = await executor.execute(parse_action(
        {"type": "edit_code", "path": str(src), "oldText": "return 1", "newText": "return (1"}
    ))
    assert not out.ok
    assert src.read_text() == "def f():\n    return 1\n"
    assert "reverted" in out.result.error
    assert memory.audit_log.tail(1)[0].outcome.startswith("error")


async def test_edit_code_reverts_broken_json(executor, workspace):
    doc = workspace / "data.json"
    doc.write_text('{"a": 1}')
    out = await executor.execute(parse_action(
        {"type": "edit_code", "path": str(doc), "oldText": "1}", "newText": "1"}
    ))
    assert not out.ok
    assert doc.read_text() == '{"a": 1}'


async def test_edit_code_requires_exact_match(executor, workspace):
    src = workspace / "mod.py"
    src.write_text("x = 1\n")
    out = await executor.execute(parse_action(
        {"type": "edit_code", "path": str(src), "oldText": "y = 1", "newText": "y = 2"}
    ))
    assert not out.ok
    assert out.result.error == "oldText not found in file"


async def test_run_terminal_is_audited(executor, memory, workspace):
    out = await executor.execute(parse_action({"type": "run_terminal", "command": "ls"}))
    assert out.ok
    entry = memory.audit_log.tail(1)[0]
    assert entry.type == "run_terminal"
    assert entry.args["cwd"] == str(workspace)


async def test_dry_run_skips_side_effects(executor, cfg, workspace):
    cfg.dry_run = True
    target = workspace / "new.txt"
    out = await executor.execute(parse_action({"type": "write_file", "path": str(target), "content": "hi"}))
    assert out.ok
    assert out.thought.startswith("[Dry run] Would write")
    assert not target.exists()


async def test_write_journal_appends(executor, cfg):
    await executor.execute(parse_action({"type": "write_journal", "content": "first"}))
    await executor.execute(parse_action({"type": "write_journal", "reason": "second"}))
    lines = executor.journal_path.read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("first") and lines[1].endswith("second")


async def test_read_self_includes_config_without_keys(executor, cfg):
    cfg.openai_api_key = "sk-secret"
    out = await executor.execute(parse_action({"type": "read_self", "target": "config"}))
    assert out.ok
    assert "allowed_dirs" in out.result.data["content"]
    assert "sk-secret" not in out.result.data["content"]


async def test_self_dialogue_sets_task(executor, memory):
    out = await executor.execute(parse_action({"type": "self_dialogue"}))
    assert out.ok
    assert memory.current_task == "tidy the workspace"


def test_resolve_edit_path_is_relative_to_app(tmp_path):
    assert resolve_edit_path("ws/a.py", str(tmp_path)) == (tmp_path / "ws" / "a.py").resolve()
