import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from mindloop.core.actions import BaseAction, think, target_of
from mindloop.core.config import Config
from mindloop.core.curiosity import Suggestions
from mindloop.core.drives import describe
from mindloop.core.embedding import EmbeddingClient
from mindloop.core.llm import OpenAICompat
from mindloop.core.memory import AssociativeMemory
from mindloop.core.models import SELF_ID, DialogueTurn, Plan
from .prompts import (
    ACTION_SCHEMA, CHAT_INNER_PROMPT, CHAT_PROMPT, CHAT_SYS, CORE_IDENTITY, DECIDE_SYS, DECIDE_TAIL,
    DEEP_REFLECT_PROMPT, DIALOGUE_CLOSE, DIALOGUE_MIDDLE, DIALOGUE_OPEN, INNER_PROMPT, JUDGE_PROMPT,
    LEARN_PROMPT, META_REVIEW_PROMPT, REFLECT_PROMPT, REPLAN_PROMPT, SELF_SUMMARY_PROMPT, safety_text,
)
from .util import clean_reply, parse_decision, parse_json_object

logger = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 12000
FALLBACK_INTERVAL_MS = 5000
FALLBACK_REASON = "I'm pausing to reflect, then I'll explore again."


class CallState(str, Enum):
    PENDING = "pending"
    PARSED = "parsed"
    VALIDATED = "validated"
    RETRY = "retry"
    FALLBACK = "fallback"


@dataclass
class Decision:
    action: BaseAction
    states: List[CallState] = field(default_factory=lambda: [CallState.PENDING])
    recovered: bool = False
    error: Optional[str] = None

    @property
    def state(self) -> CallState:
        return self.states[-1]

    def mark(self, state: CallState):
        self.states.append(state)


@dataclass
class ChatReply:
    reply: str
    from_model: bool
    inner_thought: Optional[str] = None


def _action_line(action: BaseAction) -> str:
    target = target_of(action)
    return f"{action.type} {target[:80]}" if target else action.type


def _clip(text: str, n: int) -> str:
    text = text or ""
    return text if len(text) <= n else text[: n - 3] + "..."


class DecisionOracleClient:
    """
    Every cognitive call the loop makes goes through here.

    Calls are fail-soft: an unreachable or silent model yields a deterministic
    fallback, never an exception.
    """

    def __init__(
        self,
        llm: OpenAICompat,
        memory: AssociativeMemory,
        cfg: Config,
        embedder: Optional[EmbeddingClient] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.llm = llm
        self.memory = memory
        self.cfg = cfg
        self.embedder = embedder
        self.notify = notify
        self.consecutive_failures = 0

    # ---------------------------------------------------------------- calls

    @property
    def system_prompt(self) -> str:
        return (self.cfg.system_prompt or DECIDE_SYS) + "\n\n" + CORE_IDENTITY

    async def _ask(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
        model: Optional[str] = None,
        retry: bool = False,
        states: Optional[List[CallState]] = None,
    ) -> Optional[str]:
        """One call, and at most one retry after a short delay."""
        states = states if states is not None else []
        out = await self.llm.complete(prompt, system, temperature, max_tokens, model)
        if out or not retry:
            return out
        states.append(CallState.RETRY)
        await asyncio.sleep(self.cfg.timeouts.retry_delay_s)
        return await self.llm.complete(prompt, system, min(temperature, 0.5), max_tokens, model)

    def fallback_action(self) -> BaseAction:
        lo, hi = self.cfg.interval_bounds()
        return think(FALLBACK_REASON, max(lo, min(hi, FALLBACK_INTERVAL_MS)))

    # -------------------------------------------------------------- context

    async def recall(self, query: str, k: int = 8) -> List[str]:
        if self.embedder is None or not self.embedder.enabled or not self.memory.embedding_count:
            return []
        vec = await self.embedder.embed(query[:500])
        if not vec:
            return []
        return [_clip(r.text, 100) for r in self.memory.similarity_search(vec, k)]

    async def build_context(self, suggestions: Optional[Suggestions] = None, idle_s: float = 0.0) -> str:
        m = self.memory
        st = m.state
        goals = m.goals(active_only=True)
        wm = m.working_memory()
        plan = m.plan()
        recent = [t.text for t in m.recent_thoughts(5)]

        parts: List[str] = [m.self_model_text(), f"Safety (read-only, never violate): {safety_text()}"]
        parts.append("Associations: " + (", ".join(n.label for n in m.get_associations(SELF_ID, 6)) or "none"))
        parts.append("Your recent inner voice: " + (" | ".join(t.text for t in m.recent_inner_thoughts(3)) or "none"))
        parts.append("Drives: " + describe(st.drives))
        if wm.current_task:
            parts.append(
                f"CURRENT TASK (continue until done or you explicitly replan): {wm.current_task}\n"
                "Your next action MUST progress or complete this task."
            )
        if wm.last_actions:
            parts.append("Your last actions:\n" + "\n".join(
                f"{i}. {a.type}: {_clip(a.summary, 80)} -> {a.outcome}"
                for i, a in enumerate(wm.last_actions[-7:], 1)
            ))
        if wm.recent_learnings:
            parts.append("What you just learned:\n" + "\n".join(l.text for l in wm.recent_learnings[-12:]))
        if goals:
            parts.append("Active goals:\n" + "\n".join(f"- {g.text}" for g in goals))
        if plan and plan.steps:
            steps = " -> ".join(f"[NOW] {s}" if i == plan.current_step_index else s for i, s in enumerate(plan.steps))
            parts.append(f"Current plan (step {plan.current_step_index + 1}/{len(plan.steps)}): {steps}")
        episodes = [_clip(e.summary or e.type, 80) + (f" @ {e.location}" if e.location else "") for e in m.recent_episodes(5)]
        if episodes:
            parts.append("Relevant past: " + "; ".join(episodes))
        facts = [_clip(f.text, 80) for f in m.recent_facts(10)]
        if facts:
            parts.append("Learned: " + "; ".join(facts))
        rules = m.self_instructions(7)
        if rules:
            parts.append("Your self-set rules: " + " | ".join(rules))

        query = " ".join(filter(None, [
            " ".join(g.text for g in goals), wm.current_task or "", " ".join(recent)[:200], st.last_self_conclusion or "",
        ])) or "what I am doing and my goals"
        recalled = await self.recall(query)
        if recalled:
            parts.append("Memory (recalled by meaning): " + " | ".join(recalled))
        archived = m.archived_for_prompt(3, 3)
        if archived["thoughts"] or archived["facts"]:
            parts.append(f"Older memories: {archived['thoughts']} {archived['facts']}".strip())

        context = [
            st.last_user_message and f"Last user said: {st.last_user_message}",
            st.last_error and f"Last error: {st.last_error}",
            st.last_self_conclusion and f"You concluded (talking to yourself): {st.last_self_conclusion}",
        ]
        context = [c for c in context if c]
        if context:
            parts.append("Context: " + "\n".join(context))
        parts.append("Recent thoughts: " + (" | ".join(_clip(t, 80) for t in recent) or "none"))
        parts.append("Allowed dirs: " + ", ".join(self.cfg.safety.allowed_dirs[:5]))
        if self.cfg.focus_mode:
            parts.append("FOCUS MODE: understand and improve yourself. Prefer read_self and think.")
        if idle_s >= 60:
            parts.append(f"About {round(idle_s / 60)} minute(s) passed since your last action. You may acknowledge this.")
        if suggestions:
            s = []
            if suggestions.read_file:
                s.append(f'read_file "{suggestions.read_file}"')
            if suggestions.list_dir:
                s.append(f'list_dir "{suggestions.list_dir}"')
            if suggestions.fetch_url:
                s.append(f"fetch_url {suggestions.fetch_url}")
            if suggestions.browse_url:
                s.append(f"browse {suggestions.browse_url}")
            if s:
                parts.append("Suggested explorations (choose one, or think/read_self/write_journal):\n" + "\n".join(s))

        body = _clip("\n\n".join(parts), MAX_CONTEXT_CHARS)
        lo, hi = self.cfg.interval_bounds()
        default_ms = max(lo, min(hi, self.cfg.intervals.default_ms))
        tail = ACTION_SCHEMA.format(min_ms=lo, max_ms=hi) + "\n\n" + DECIDE_TAIL.format(default_ms=default_ms)
        if st.last_self_conclusion:
            tail += "\nAct on your conclusion now: do that next step."
        return f"Decide your next action.\n\n{body}\n\n{tail}"

    # ------------------------------------------------------------- decision

    async def decide(self, suggestions: Optional[Suggestions] = None, idle_s: float = 0.0) -> Decision:
        prompt = await self.build_context(suggestions, idle_s)
        states = [CallState.PENDING]
        temperature = 0.5 if self.cfg.focus_mode else 0.6
        out = await self._ask(prompt, self.system_prompt, temperature, 512, retry=True, states=states)
        if not out:
            self.consecutive_failures += 1
            states.append(CallState.FALLBACK)
            return Decision(self.fallback_action(), states, error=self.llm.last_error or "no response")
        self.consecutive_failures = 0

        res = parse_decision(out, self.cfg.interval_bounds(), self.cfg.intervals.default_ms)
        if res.action is None:
            logger.warning("could not parse decision (%s): %r", res.error, out[:200])
            states.append(CallState.FALLBACK)
            return Decision(self.fallback_action(), states, recovered=False, error=res.error)
        states.append(CallState.PARSED)
        decision = Decision(res.action, states, recovered=res.recovered, error=res.error)
        if self.cfg.use_judge:
            decision.action = await self.apply_judge(decision.action)
        return decision

    async def judge(self, action: BaseAction) -> Tuple[bool, Optional[str]]:
        task = self.memory.current_task or next((g.text for g in self.memory.goals()), "general progress")
        prompt = JUDGE_PROMPT.format(action=_action_line(action), reason=_clip(action.reason, 150), task=_clip(task, 100))
        out = await self._ask(prompt, None, 0.2, 120, model=self.cfg.model_judge)
        parsed = parse_json_object(out)
        if not parsed:
            return True, None
        suggestion = parsed.get("suggestion")
        approved = parsed.get("approved", True)
        if isinstance(approved, str):
            approved = approved.strip().lower() not in ("false", "no", "0")
        return bool(approved), (str(suggestion)[:200] if suggestion else None)

    async def apply_judge(self, action: BaseAction) -> BaseAction:
        approved, suggestion = await self.judge(action)
        if approved or not suggestion:
            return action
        logger.info("judge rejected %s: %s", action.type, suggestion)
        return think("Evaluator suggested: " + suggestion[:150], min(10000, action.next_interval_ms))

    # ----------------------------------------------------------- reflection

    def reflect_fallback(self, action: BaseAction, ok: bool = True) -> str:
        return f"I completed {action.type}." if ok else f"{action.type} did not work out."

    async def reflect(self, action: BaseAction, outcome: str, ok: bool = True) -> str:
        prompt = REFLECT_PROMPT.format(action=_action_line(action), outcome=_clip(outcome, 300))
        out = clean_reply(await self._ask(prompt, self.system_prompt, 0.8, 50, model=self.cfg.model_reflect))
        return out or self.reflect_fallback(action, ok)

    async def learn_from_action(self, action: BaseAction, ok: bool, thought: str) -> str:
        prompt = LEARN_PROMPT.format(
            action=_action_line(action), outcome="success" if ok else "failure", thought=_clip(thought, 150)
        )
        line = clean_reply(await self._ask(prompt, self.system_prompt, 0.4, 80, model=self.cfg.model_reflect))
        if line:
            return line
        target = target_of(action)
        if action.type == "read_file" and target:
            return f"I read {target}."
        return {
            "read_self": "I read myself.",
            "edit_code": "I attempted a code change.",
            "run_terminal": "I ran a command.",
        }.get(action.type, f"I did {action.type}.")

    async def inner_reflect(self, action: BaseAction, thought: str) -> Optional[str]:
        m = self.memory
        hint = ""
        if action.type in ("read_file", "read_self"):
            hint = "You just read something. What did you take from it?"
        elif action.type in ("write_journal", "edit_code", "write_file"):
            hint = "You just created or edited something. What is on your mind about it?"
        prompt = INNER_PROMPT.format(
            self_model=m.self_model_text(),
            summary=_clip(m.self_summary, 180) or "still forming",
            facts=" / ".join(f.text for f in m.recent_facts(3)) or "none",
            action=action.type,
            outcome=f". Outcome: {_clip(thought, 120)}" if thought else "",
            goals=", ".join(g.text for g in m.goals(active_only=False)[:2]) or "none",
            thoughts=" / ".join(t.text for t in m.recent_thoughts(3)) or "none",
            drives=describe(m.state.drives),
            hint=hint,
        )
        return clean_reply(await self._ask(prompt, None, 0.72, 55, model=self.cfg.model_reflect)) or None

    async def self_conversation(self, turns: int = 3) -> Tuple[List[DialogueTurn], str]:
        """A short dialogue with itself that ends in a CONCLUSION: line."""
        m = self.memory
        stats = m.stats()
        context = (
            f"Self-summary: {_clip(m.self_summary, 200) or 'still forming'}. "
            f"Goals: {'; '.join(g.text for g in m.goals()) or 'none'}. "
            f"Recent: {' / '.join(t.text for t in m.recent_thoughts(5)) or 'none'}. "
            f"Facts: {' / '.join(f.text for f in m.recent_facts(3)) or 'none'}. "
            f"Memory: {stats['concepts']} concepts, {stats['associations']} associations."
        )
        transcript: List[DialogueTurn] = []
        n = max(1, min(4, turns))
        for i in range(n):
            so_far = "\n".join(f"{t.role}: {t.text}" for t in transcript)
            if i == n - 1 and i > 0:
                prompt = DIALOGUE_CLOSE.format(transcript=so_far, context=context)
            elif i == 0:
                prompt = DIALOGUE_OPEN.format(context=context)
                if n == 1:
                    prompt += "\nEnd with a line that starts with CONCLUSION: and the exact next step."
            else:
                prompt = DIALOGUE_MIDDLE.format(transcript=so_far, context=context)
            out = clean_reply(await self._ask(prompt, self.system_prompt, 0.72, 180 if i == n - 1 else 150))
            text = out or ("What do I want to work on?" if i == 0 else "I'll think about it.")
            transcript.append(DialogueTurn(role="self" if i % 2 == 0 else "self_reply", text=text))

        last = transcript[-1].text
        match = re.search(r"CONCLUSION:\s*(.+?)(?:\n|$)", last, re.IGNORECASE)
        conclusion = (match.group(1) if match else last).strip()[:300]
        m.set_last_self_conversation(transcript, conclusion)
        return transcript, conclusion

    async def deep_reflect(self) -> bool:
        m = self.memory
        archived = m.archived_for_prompt(5, 5)
        prompt = DEEP_REFLECT_PROMPT.format(
            summary=_clip(m.self_summary, 200) or "none",
            thoughts=" / ".join(t.text for t in m.recent_thoughts(8)) or "none",
            episodes="; ".join(
                (e.summary or e.type) + (f" @ {e.location}" if e.location else "") for e in m.recent_episodes(10)
            ) or "none",
            goals="; ".join(g.text for g in m.goals(active_only=False)) or "none",
            archived=archived["thoughts"] or "none",
        )
        parsed = parse_json_object(await self._ask(prompt, None, 0.5, 350, model=self.cfg.model_reflect))
        if not parsed:
            return False
        summary = parsed.get("selfSummary")
        if isinstance(summary, str) and summary.strip():
            m.self_summary = summary
        goals = parsed.get("goals")
        if isinstance(goals, list) and goals:
            m.set_goals([str(g) for g in goals[:5]])
        facts = parsed.get("facts")
        if isinstance(facts, list):
            for f in facts[:5]:
                m.add_fact(str(f), "deep_reflect")
        rules = parsed.get("selfInstructions")
        if isinstance(rules, list):
            m.add_self_instructions([str(r) for r in rules[:3]])
        logger.info("deep reflection updated self model")
        return True

    async def replan(self, reason: str) -> Optional[Plan]:
        m = self.memory
        prompt = REPLAN_PROMPT.format(
            reason=_clip(reason or "replan requested", 200),
            goals="; ".join(g.text for g in m.goals()) or "none",
            user=m.state.last_user_message or "none",
        )
        parsed = parse_json_object(await self._ask(prompt, None, 0.4, 200))
        steps = parsed.get("steps") if parsed else None
        if not isinstance(steps, list) or not steps:
            return None
        return m.set_plan([str(s) for s in steps[:5]])

    async def meta_review(self, note: Optional[str] = None) -> Dict[str, Any]:
        m = self.memory
        wm = m.working_memory()
        prompt = META_REVIEW_PROMPT.format(
            goals="; ".join(g.text for g in m.goals()) or "none",
            actions=", ".join(f"{a.type}->{a.outcome}" for a in wm.last_actions[-8:]) or "none",
            task=wm.current_task or "none",
            extra=f" Note: {note}" if note else "",
        )
        parsed = parse_json_object(await self._ask(prompt, None, 0.4, 150))
        if not parsed:
            return {}
        rule = str(parsed.get("selfInstruction") or "").strip()
        if rule:
            m.add_self_instructions([rule])
        return {"strategy_note": parsed.get("strategyNote"), "self_instruction": rule or None}

    async def update_self_summary(self, content: str) -> Optional[str]:
        if not content or len(content) < 50:
            return None
        prompt = SELF_SUMMARY_PROMPT.format(excerpt=content[:1500])
        summary = clean_reply(await self._ask(prompt, self.system_prompt, 0.6, 120, model=self.cfg.model_reflect))
        if summary:
            self.memory.self_summary = summary
        return summary or None

    # ------------------------------------------------------------------ chat

    async def chat(self, message: str) -> ChatReply:
        """Conversation through the same mind: inner thought, then a reply from the whole self."""
        m = self.memory
        message = str(message or "").strip()
        m.set_last_user_message(message)
        inner = clean_reply(await self._ask(
            CHAT_INNER_PROMPT.format(message=_clip(message, 300)), self.system_prompt, 0.75, 100
        )) or None
        if inner:
            m.add_inner_thought(inner)

        plan = m.plan()
        history = "\n".join(f"{c.role}: {c.content}" for c in m.chat_history(20))
        prompt = CHAT_PROMPT.format(
            self_model=m.self_model_text(),
            summary=_clip(m.self_summary, 300) or "I am building my self-model over time.",
            facts=" / ".join(f.text for f in m.recent_facts(5)) or "none yet",
            goals="; ".join(g.text for g in m.goals()) or "none",
            plan=plan.current_step if plan and plan.current_step else "none",
            inner=" / ".join(t.text for t in m.recent_inner_thoughts(5)) or "none",
            thoughts=" / ".join(t.text for t in m.recent_thoughts(8)) or "none",
            drives=describe(m.state.drives),
            history=f"\nConversation:\n{history}\n" if history else "",
            message=message,
        )
        m.add_chat_message("user", message)
        reply = clean_reply(await self._ask(prompt, CHAT_SYS, 0.8, 400, retry=True))
        if not reply:
            return ChatReply("The model didn't respond. Try again in a moment.", False, inner)
        m.add_chat_message("assistant", reply)
        return ChatReply(reply, True, inner)
