import asyncio

import pytest

from mindloop.agents.executor import Executor
from mindloop.agents.oracle import DecisionOracleClient
from mindloop.agents.scheduler import RUNAWAY_REASON, Scheduler, validate_action
from mindloop.core.actions import parse_action
from mindloop.core.errors import ActionValidationError
from mindloop.core.memory import SELF_ID, concept_id
from mindloop.core.tools import Toolbelt

from conftest import FakeLLM


@pytest.fixture
async def make_scheduler(cfg, memory):
    made = []

    def make(llm: FakeLLM, notify=None) -> Scheduler:
        oracle = DecisionOracleClient(llm, memory, cfg)
        tools = Toolbelt(cfg, open_browser=False)
        executor = Executor(tools, memory, oracle, cfg)
        sched = Scheduler(cfg, memory, oracle, executor, notify=notify)
        made.append(sched)
        return sched

    yield make
    for sched in made:
        await sched.stop()
        await sched.executor.tools.aclose()


def _read(path) -> str:
    return f'I will read it.\n{{"type":"read_file","path":"{path}","nextIntervalMs":4000}}'


async def test_read_file_cycle_end_to_end(make_scheduler, memory, cfg, workspace):
    f = workspace / "notes.txt"
    f.write_text("the garden needs water")
    sched = make_scheduler(FakeLLM(decide=_read(f)))

    report = await sched.run_cycle()
    await sched.supervisor.drain(5)

    assert report.action.type == "read_file" and report.ok
    assert str(f) in memory.explored_paths()
    resource = concept_id("resource", str(f)[-80:])
    assert memory.edge(SELF_ID, resource).weight > 0
    assert len(memory.recent_thoughts(10)) == 1
    assert len(memory.recent_episodes(10)) == 1
    assert memory.recent_episodes(1)[0].location == str(f)
    lo, hi = cfg.interval_bounds()
    assert lo <= report.interval_ms <= hi
    assert memory.working_memory().last_actions[-1].outcome == "success"
    assert memory.state.capability_register["read_file"] == 1


async def test_success_reinforces_previous_concepts(make_scheduler, memory, workspace):
    f = workspace / "notes.txt"
    f.write_text("hello")
    sched = make_scheduler(FakeLLM(decide=_read(f), other="Garden notes look useful."))
    await sched.run_cycle()
    word = concept_id("keyword", "garden")
    before = memory.edge(SELF_ID, word).weight
    await sched.run_cycle()
    assert memory.edge(SELF_ID, word).weight > before


async def test_repeated_action_forces_rest(make_scheduler, cfg, workspace):
    f = workspace / "notes.txt"
    f.write_text("hello")
    sched = make_scheduler(FakeLLM(decide=_read(f)))
    n = max(5, cfg.runaway.same_action_threshold)

    reports = [await sched.run_cycle() for _ in range(n + 1)]

    assert [r.action.type for r in reports[:n]] == ["read_file"] * n
    assert reports[n].action.type == "rest"
    assert reports[n].action.reason == RUNAWAY_REASON
    assert sched._recent_types == ["rest"]


async def test_disallowed_path_is_downgraded(make_scheduler, memory):
    sched = make_scheduler(FakeLLM(decide='{"type":"read_file","path":"/etc/passwd"}'))
    report = await sched.run_cycle()
    assert report.action.type == "think"
    assert report.downgraded == "Path not allowed."
    assert "/etc/passwd" not in memory.explored_paths()


def test_validation_rules(cfg, workspace):
    with pytest.raises(ActionValidationError, match="command not in allowed list"):
        validate_action(parse_action({"type": "run_terminal", "command": "rm -rf /"}), cfg)
    with pytest.raises(ActionValidationError, match="URL not allowed"):
        validate_action(parse_action({"type": "fetch_url", "url": "file:///etc/passwd"}), cfg)
    with pytest.raises(ActionValidationError, match="requires path"):
        validate_action(parse_action({"type": "edit_code", "path": "a.py", "oldText": ""}), cfg)
    ok = parse_action({"type": "fetch_url", "url": "https://example.com/x"})
    assert validate_action(ok, cfg) is ok
    edit = parse_action({"type": "edit_code", "path": str(workspace / "a.py"), "oldText": "a", "newText": "b"})
    assert validate_action(edit, cfg) is edit


async def test_oracle_outage_falls_back_and_notifies(make_scheduler, memory):
    notes = []
    sched = make_scheduler(FakeLLM(decide=None, other=None), notify=notes.append)

    first = await sched.run_cycle()
    assert first.action.type == "think"
    assert memory.state.last_error == "model down"
    assert notes == []

    await sched.run_cycle()
    assert len(notes) == 1


async def test_loop_errors_are_contained(make_scheduler, memory, monkeypatch, workspace):
    f = workspace / "notes.txt"
    f.write_text("hello")
    sched = make_scheduler(FakeLLM(decide=_read(f)))
    stress = memory.state.drives.stress

    async def boom(action):
        raise RuntimeError("boom")

    monkeypatch.setattr(sched.executor, "execute", boom)
    report = await sched.run_cycle()
    assert not report.ok
    assert report.thought == "Something went wrong: boom. I'll try again."
    assert memory.state.last_error == "boom"
    assert memory.state.drives.stress > stress
    assert memory.recent_thoughts(1)[0].error

    monkeypatch.undo()
    assert (await sched.run_cycle()).ok


async def test_pause_and_resume(make_scheduler, cfg):
    cfg.intervals.min_ms = 10
    cfg.runaway.same_action_threshold = 1000
    sched = make_scheduler(FakeLLM(decide='{"type":"think","nextIntervalMs":10}'))
    sched.start()
    await asyncio.sleep(0.2)
    assert sched.tick > 0

    sched.pause()
    await asyncio.sleep(0.1)
    ticks = sched.tick
    await asyncio.sleep(0.2)
    assert sched.tick == ticks

    sched.resume()
    await asyncio.sleep(0.2)
    assert sched.tick > ticks
    await sched.stop()
    assert not sched.running


async def test_debounced_save_writes_memory(make_scheduler, cfg):
    sched = make_scheduler(FakeLLM(decide='{"type":"think"}'))
    await sched.run_cycle()
    await asyncio.sleep(cfg.save_debounce_ms / 1000 + 0.1)
    assert cfg.memory_path.exists()
    assert cfg.brain_path.exists()


async def test_high_load_doubles_interval(make_scheduler, cfg):
    sched = make_scheduler(FakeLLM())
    assert sched.next_interval(4000) == 4000
    assert sched.next_interval(10) == cfg.intervals.min_ms
    cfg.high_load_memory_mb = 0.001
    assert sched.next_interval(4000) == 8000
    assert sched.next_interval(40000) == 60000


async def test_reload_config_reaches_collaborators(make_scheduler, cfg):
    sched = make_scheduler(FakeLLM())
    fresh = cfg.model_copy(update={"dry_run": True})
    sched.reload_config(fresh)
    assert sched.executor.cfg is fresh
    assert sched.executor.tools.cfg is fresh
    assert sched.oracle.cfg is fresh
