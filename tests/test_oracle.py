import pytest

from mindloop.agents.oracle import FALLBACK_REASON, CallState, DecisionOracleClient
from mindloop.core.actions import ReadFile, Think, parse_action
from mindloop.core.curiosity import Suggestions

from conftest import FakeLLM


@pytest.fixture
def make_oracle(cfg, memory):
    def make(**kw):
        llm = FakeLLM(**kw)
        return DecisionOracleClient(llm, memory, cfg), llm
    return make


async def test_decide_parses_one_action(make_oracle, workspace):
    oracle, llm = make_oracle(decide=f'Let me look.\n{{"type":"read_file","path":"{workspace}/a.txt"}}')
    decision = await oracle.decide(Suggestions(read_file=str(workspace / "a.txt")), idle_s=120)
    assert isinstance(decision.action, ReadFile)
    assert decision.states == [CallState.PENDING, CallState.PARSED]
    prompt = llm.prompts[0]
    assert "Suggested explorations" in prompt
    assert "minute(s) passed" in prompt
    assert "Safety (read-only, never violate)" in prompt


async def test_decide_retries_once_then_falls_back(make_oracle):
    oracle, llm = make_oracle(decide=None)
    decision = await oracle.decide()
    assert llm.decide_calls == 2
    assert decision.states == [CallState.PENDING, CallState.RETRY, CallState.FALLBACK]
    assert isinstance(decision.action, Think)
    assert decision.action.reason == FALLBACK_REASON
    assert oracle.consecutive_failures == 1


async def test_retry_can_succeed(make_oracle):
    replies = iter([None, '{"type":"think","reason":"ok"}'])
    oracle, llm = make_oracle(decide=lambda: next(replies))
    decision = await oracle.decide()
    assert decision.states == [CallState.PENDING, CallState.RETRY, CallState.PARSED]
    assert oracle.consecutive_failures == 0


async def test_judge_downgrades_rejected_action(make_oracle, cfg):
    cfg.use_judge = True
    oracle, _ = make_oracle(
        decide='{"type":"read_file","path":"x","nextIntervalMs":20000}',
        other='{"approved": false, "suggestion": "Finish the current task first."}',
    )
    decision = await oracle.decide()
    assert isinstance(decision.action, Think)
    assert decision.action.reason == "Evaluator suggested: Finish the current task first."
    assert decision.action.next_interval_ms == 10000


async def test_reflect_falls_back(make_oracle):
    oracle, _ = make_oracle(other=None)
    action = parse_action({"type": "list_dir", "path": "."})
    assert await oracle.reflect(action, "Listed .") == "I completed list_dir."
    assert await oracle.learn_from_action(action, True, "nice") == "I did list_dir."
    assert await oracle.inner_reflect(action, "nice") is None


async def test_self_conversation_extracts_conclusion(make_oracle, memory):
    oracle, _ = make_oracle(other="I should look at my notes.\nCONCLUSION: read notes.txt next")
    turns, conclusion = await oracle.self_conversation(3)
    assert len(turns) == 3
    assert conclusion == "read notes.txt next"
    assert memory.state.last_self_conclusion == "read notes.txt next"


async def test_deep_reflect_updates_self_model(make_oracle, memory):
    oracle, _ = make_oracle(other=(
        '{"selfSummary": "I explore files.", "goals": ["a","b","c","d","e","f"],'
        ' "facts": ["f1"], "selfInstructions": ["r1","r2","r3","r4"]}'
    ))
    assert await oracle.deep_reflect()
    assert memory.self_summary == "I explore files."
    assert [g.text for g in memory.goals()] == ["a", "b", "c", "d", "e"]
    assert memory.recent_facts(1)[0].source == "deep_reflect"
    assert memory.self_instructions() == ["r1", "r2", "r3"]


async def test_replan_sets_plan_and_task(make_oracle, memory):
    oracle, _ = make_oracle(other='{"steps": ["list dir ws", "read notes", "write summary"]}')
    plan = await oracle.replan("read failed")
    assert plan.steps == ["list dir ws", "read notes", "write summary"]
    assert memory.current_task == "list dir ws"

    oracle.llm.other = "no json here"
    assert await oracle.replan("again") is None


async def test_meta_review_adds_rule(make_oracle, memory):
    oracle, _ = make_oracle(other='{"strategyNote": "vary actions", "selfInstruction": "Check the plan first."}')
    out = await oracle.meta_review()
    assert out["strategy_note"] == "vary actions"
    assert memory.self_instructions()[-1] == "Check the plan first."


async def test_update_self_summary_skips_short_content(make_oracle, memory):
    oracle, llm = make_oracle(other="I am a loop that reads files.")
    assert await oracle.update_self_summary("too short") is None
    assert llm.prompts == []
    assert await oracle.update_self_summary("x" * 80) == "I am a loop that reads files."
    assert memory.self_summary == "I am a loop that reads files."


async def test_chat_records_history(make_oracle, memory):
    oracle, _ = make_oracle(other="Hello! I'm reading notes right now.")
    reply = await oracle.chat("hi, what are you doing?")
    assert reply.from_model
    assert reply.reply == "Hello! I'm reading notes right now."
    assert [c.role for c in memory.chat_history()] == ["user", "assistant"]
    assert memory.state.last_user_message == "hi, what are you doing?"
    assert memory.recent_inner_thoughts(1)


async def test_judge_reads_string_verdicts(make_oracle):
    action = parse_action({"type": "list_dir", "path": "."})
    oracle, llm = make_oracle(other='{"approved": "false", "suggestion": "Rest first."}')
    assert await oracle.judge(action) == (False, "Rest first.")
    llm.other = '{"approved": "true"}'
    assert await oracle.judge(action) == (True, None)
