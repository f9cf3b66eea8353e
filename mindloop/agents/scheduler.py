import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from mindloop.core import drives
from mindloop.core.actions import BaseAction, rest, target_of, think
from mindloop.core.config import Config
from mindloop.core.curiosity import CuriosityEngine, Suggestions
from mindloop.core.embedding import EmbeddingClient
from mindloop.core.errors import ActionValidationError
from mindloop.core.memory import AssociativeMemory
from mindloop.core.metrics import MetricsRecorder
from mindloop.core.permissions import (
    is_allowed_command, is_allowed_edit_path, is_allowed_host, is_allowed_path, is_allowed_protocol,
)
from mindloop.core.supervisor import TaskSupervisor
from .executor import Executor, Outcome, resolve_edit_path
from .oracle import CallState, ChatReply, Decision, DecisionOracleClient

logger = logging.getLogger(__name__)

RUNAWAY_REST_MS = 6000
RUNAWAY_REASON = "Pausing to rebalance after repeated same action."

# (arousal, stress, calm) applied after a successful action
DRIVE_NUDGES: Dict[str, Tuple[float, float, float]] = {
    "read_file": (0.15, -0.05, 0.0),
    "list_dir": (0.08, 0.0, 0.05),
    "fetch_url": (0.12, 0.0, 0.0),
    "browse": (0.1, 0.0, 0.0),
    "write_file": (0.1, 0.0, 0.0),
    "delete_file": (0.05, 0.0, 0.0),
    "edit_code": (0.1, 0.0, 0.0),
    "run_terminal": (0.08, 0.0, 0.0),
    "read_self": (0.1, 0.0, 0.08),
    "rest": (0.0, -0.05, 0.1),
    "write_journal": (0.0, 0.0, 0.1),
    "self_dialogue": (0.05, 0.0, 0.05),
}

FALLBACK_INNER = {
    "read_file": "Just read something.",
    "list_dir": "Looked around a folder.",
    "fetch_url": "Pulled something from the web.",
    "read_self": "Looked at myself for a moment.",
    "rest": "Taking a moment.",
    "think": "Turning it over.",
    "write_journal": "Wrote that down.",
    "self_dialogue": "Talked it through.",
}


@dataclass
class CycleReport:
    tick: int
    action: BaseAction
    ok: bool
    thought: str
    interval_ms: int
    downgraded: Optional[str] = None


def validate_action(action: BaseAction, cfg: Config) -> BaseAction:
    """Raise ActionValidationError if the action would leave the sandbox."""
    safety = cfg.safety
    t = action.type
    if t in ("read_file", "list_dir", "write_file", "delete_file"):
        if not is_allowed_path(action.path, safety.allowed_dirs):
            raise ActionValidationError("Path not allowed.")
    elif t in ("fetch_url", "browse"):
        if not is_allowed_protocol(action.url) or not is_allowed_host(action.url, safety.allowed_hosts):
            raise ActionValidationError("URL not allowed.")
    elif t == "edit_code":
        if not action.path or not action.old_text:
            raise ActionValidationError("edit_code requires path, oldText, and newText.")
        path = resolve_edit_path(action.path, cfg.app_path)
        if not is_allowed_edit_path(path, safety.allowed_dirs, safety.protected_paths, cfg.app_path):
            raise ActionValidationError("edit_code: path not allowed or protected.")
    elif t == "run_terminal":
        if not is_allowed_command(action.command, safety.allowed_command_prefixes):
            raise ActionValidationError("run_terminal: command not in allowed list")
    return action


class Scheduler:
    """
    The decide -> act -> reflect loop.

    One cycle runs at a time; everything slow and optional (learning, inner
    monologue, embedding, meta review) is handed to the TaskSupervisor so a
    cycle never waits on it.
    """

    def __init__(
        self,
        cfg: Config,
        memory: AssociativeMemory,
        oracle: DecisionOracleClient,
        executor: Executor,
        curiosity: Optional[CuriosityEngine] = None,
        metrics: Optional[MetricsRecorder] = None,
        supervisor: Optional[TaskSupervisor] = None,
        embedder: Optional[EmbeddingClient] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.cfg = cfg
        self.memory = memory
        self.oracle = oracle
        self.executor = executor
        self.curiosity = curiosity or CuriosityEngine(memory, cfg)
        self.metrics = metrics or MetricsRecorder()
        self.supervisor = supervisor or executor.supervisor
        self.embedder = embedder
        self.notify = notify or oracle.notify

        self.tick = 0
        self._last_concept_ids: List[str] = []
        self._recent_types: List[str] = []
        self._failure_streak = 0
        self._last_cycle_at: Optional[float] = None

        self._paused = False
        self._stopped = True
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._save_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------- control

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return self._paused

    def start(self) -> asyncio.Task:
        if not self.running:
            self._stopped = False
            self._task = asyncio.ensure_future(self.run())
        return self._task

    async def run(self):
        self._stopped = False
        logger.info("loop started (model=%s)", self.cfg.model)
        while not self._stopped:
            if self._paused:
                self._wake.clear()
                await self._wake.wait()
                continue
            report = await self.run_cycle()
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), report.interval_ms / 1000)
            except asyncio.TimeoutError:
                pass
        logger.info("loop stopped after %d ticks", self.tick)

    def pause(self):
        self._paused = True
        self.metrics.set_activity("paused")

    def resume(self):
        self._paused = False
        self._wake.set()

    async def stop(self, timeout: float = 5.0):
        self._stopped = True
        self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None
        await self.supervisor.drain(timeout)
        await self.supervisor.cancel_all()
        self.flush()

    def reload_config(self, cfg: Config):
        """Swap in a freshly loaded config everywhere it is held."""
        self.cfg = cfg
        self.oracle.cfg = cfg
        self.executor.cfg = cfg
        self.executor.tools.cfg = cfg
        self.curiosity.cfg = cfg
        self.memory.cfg = cfg
        self.memory.learning = cfg.learning
        logger.info("config reloaded")

    # ---------------------------------------------------------------- saves

    def request_save(self):
        """Debounced: the save runs once things have been quiet for save_debounce_ms."""
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = asyncio.ensure_future(self._save_later())

    async def _save_later(self):
        await asyncio.sleep(self.cfg.save_debounce_ms / 1000)
        if not self.memory.save():
            logger.warning("save failed, will retry on the next cycle")

    def flush(self) -> bool:
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = None
        return self.memory.save()

    # ---------------------------------------------------------------- cycle

    async def run_cycle(self) -> CycleReport:
        t0 = time.monotonic()
        self.tick += 1
        state = self.memory.state
        state.drives = drives.decay(state.drives, self.cfg.drives)
        now = time.time()
        idle_s = now - self._last_cycle_at if self._last_cycle_at else 0.0
        self._last_cycle_at = now

        try:
            report = await self._cycle(idle_s)
        except Exception as e:
            logger.exception("cycle %d failed", self.tick)
            report = self._contain(e)

        self.request_save()
        self.metrics.record_timing("tick_ms", (time.monotonic() - t0) * 1000)
        self.metrics.set_activity("waiting", f"{report.interval_ms} ms")
        return report

    async def _cycle(self, idle_s: float) -> CycleReport:
        suggestions = await self._suggest()

        decision = await self._decide(suggestions, idle_s)
        action = self._guard_runaway(decision.action)

        downgraded = None
        try:
            action = validate_action(action, self.cfg)
        except ActionValidationError as e:
            downgraded = str(e)
            logger.info("downgraded %s: %s", action.type, e)
            action = think(downgraded, action.next_interval_ms)
        decision.action = action
        decision.mark(CallState.VALIDATED)

        self.metrics.set_activity("acting", action.type)
        ta = time.monotonic()
        outcome = await self.executor.execute(action)
        self.metrics.record_timing("action_ms", (time.monotonic() - ta) * 1000)

        thought = await self._reflect(outcome)
        self._remember(outcome, thought)
        self._periodic()
        await self._maybe_deep_reflect()

        return CycleReport(
            self.tick, action, outcome.ok, thought, self.next_interval(action.next_interval_ms), downgraded
        )

    async def _suggest(self) -> Optional[Suggestions]:
        self.metrics.set_activity("exploring")
        try:
            return await self.curiosity.suggestions()
        except OSError as e:
            logger.debug("no curiosity suggestions: %s", e)
            return None

    async def _decide(self, suggestions: Optional[Suggestions], idle_s: float) -> Decision:
        self.metrics.set_activity("deciding")
        td = time.monotonic()
        try:
            decision = await asyncio.wait_for(self.oracle.decide(suggestions, idle_s), self.cfg.timeouts.decide_s)
        except asyncio.TimeoutError:
            self.oracle.consecutive_failures += 1
            decision = Decision(
                self.oracle.fallback_action(), [CallState.PENDING, CallState.FALLBACK], error="decision timed out"
            )
        self.metrics.record_timing("decide_ms", (time.monotonic() - td) * 1000)

        state = self.memory.state
        if decision.state is CallState.FALLBACK:
            self.memory.set_last_error(decision.error or "oracle unavailable")
            if self.oracle.consecutive_failures >= 2:
                self._notify("The model is not responding. Is the oracle endpoint running?")
            self.supervisor.spawn(self.oracle.replan("the model did not answer"), "replan")
        else:
            # the error and the conclusion were shown to the oracle once
            self.memory.set_last_error(None)
            state.last_self_conclusion = None
        return decision

    def _guard_runaway(self, action: BaseAction) -> BaseAction:
        same_n = max(5, self.cfg.runaway.same_action_threshold)
        window = self._recent_types[-same_n:]
        if len(window) >= same_n and len(set(window)) == 1 and action.type != "rest":
            logger.info("%d x %s in a row, forcing rest", same_n, window[0])
            self._recent_types.clear()
            self.supervisor.spawn(self.oracle.replan(f"stuck repeating {window[0]}"), "replan")
            return rest(RUNAWAY_REASON, RUNAWAY_REST_MS)

        fail_n = max(2, self.cfg.runaway.consecutive_errors)
        if self._failure_streak >= fail_n:
            logger.info("%d failures in a row, replanning", self._failure_streak)
            self._failure_streak = 0
            self.supervisor.spawn(self.oracle.replan("several actions failed in a row"), "replan")
        return action

    async def _reflect(self, outcome: Outcome) -> str:
        if outcome.thought:
            return outcome.thought
        self.metrics.set_activity("reflecting", outcome.action.type)
        try:
            return await asyncio.wait_for(
                self.oracle.reflect(outcome.action, outcome.summary, outcome.ok), self.cfg.timeouts.reflect_s
            )
        except asyncio.TimeoutError:
            return self.oracle.reflect_fallback(outcome.action, outcome.ok)

    def _remember(self, outcome: Outcome, thought: str):
        m = self.memory
        action, ok = outcome.action, outcome.ok
        state = m.state

        self._recent_types.append(action.type)
        del self._recent_types[: -max(5, self.cfg.runaway.same_action_threshold)]
        if ok:
            self._failure_streak = 0
        else:
            self._failure_streak += 1
            m.set_last_error(outcome.result.error or f"{action.type} failed")

        m.add_last_action(action.type, "success" if ok else "error", thought[:120])
        m.reinforce_outcome(self._last_concept_ids, ok)
        self._last_concept_ids = m.append_thought(thought, action.type, error=not ok)
        m.add_episode(action.type, target_of(action), outcome.summary, outcome.location)
        m.record_capability(action.type)
        m.add_log("thought", text=thought[:200], action=action.type, ok=ok)

        state.drives = drives.on_outcome(state.drives, ok)
        if ok and action.type in DRIVE_NUDGES:
            state.drives = drives.nudge(state.drives, *DRIVE_NUDGES[action.type])

        if ok and action.type not in ("think", "rest", "self_dialogue") and m.plan() is not None:
            m.advance_plan()
        elif not ok and action.type == "read_file":
            self.supervisor.spawn(self.oracle.replan(f"could not read {target_of(action)}"), "replan")

        self.metrics.record_count("action")
        self.metrics.record_count("thought")

        self.supervisor.spawn(self._learn(action, ok, thought), "learn")
        if self.cfg.continuous_mode and self.tick % 2:
            m.add_inner_thought(FALLBACK_INNER.get(action.type, "Moving on."))
        else:
            self.supervisor.spawn(self._inner(action, thought), "inner")
        self.supervisor.spawn(self._index(thought), "index")
        if self.cfg.speak_thoughts:
            self.supervisor.spawn(self.executor.tools.speak(thought), "speak")

    def _periodic(self):
        if self.tick % max(50, self.cfg.archive_every_ticks) == 0:
            self.memory.archive()
        if self.tick % max(10, self.cfg.meta_review_every_ticks) == 0:
            self.supervisor.spawn(self.oracle.meta_review(), "meta_review")

    async def _maybe_deep_reflect(self):
        every = max(1, self.cfg.deep_reflect_every_ticks)
        if self.tick % every:
            return
        if self.cfg.continuous_mode:
            self.supervisor.spawn(self.oracle.deep_reflect(), "deep_reflect")
            return
        self.metrics.set_activity("deep_reflect")
        try:
            await asyncio.wait_for(self.oracle.deep_reflect(), self.cfg.timeouts.decide_s)
        except asyncio.TimeoutError:
            logger.info("deep reflection timed out")

    def _contain(self, e: Exception) -> CycleReport:
        m = self.memory
        m.set_last_error(str(e))
        m.state.drives = drives.on_loop_error(m.state.drives)
        text = f"Something went wrong: {e}. I'll try again."
        self._last_concept_ids = m.append_thought(text, error=True)
        self._failure_streak += 1
        self.supervisor.spawn(self.oracle.replan(f"loop error: {e}"), "replan")
        action = self.oracle.fallback_action()
        return CycleReport(self.tick, action, False, text, self.next_interval(action.next_interval_ms))

    def next_interval(self, proposed: int) -> int:
        lo, hi = self.cfg.interval_bounds()
        ms = max(lo, min(hi, int(proposed)))
        limit = self.cfg.high_load_memory_mb
        if limit and self.metrics.resource_usage()["rss_mb"] > limit:
            ms = min(self.cfg.intervals.high_load_cap_ms, ms * 2)
        return ms

    # ----------------------------------------------------- background pieces

    async def _learn(self, action: BaseAction, ok: bool, thought: str):
        try:
            line = await asyncio.wait_for(
                self.oracle.learn_from_action(action, ok, thought), self.cfg.timeouts.reflect_s
            )
        except asyncio.TimeoutError:
            return
        self.memory.add_recent_learning(line)
        self.memory.add_fact(line, "action")
        await self._index(line)

    async def _inner(self, action: BaseAction, thought: str):
        try:
            text = await asyncio.wait_for(self.oracle.inner_reflect(action, thought), self.cfg.timeouts.inner_s)
        except asyncio.TimeoutError:
            text = None
        self.memory.add_inner_thought(text or FALLBACK_INNER.get(action.type, "Moving on."))

    async def _index(self, text: str):
        if self.embedder is None or not self.embedder.enabled or not text:
            return
        vec = await self.embedder.embed(text)
        if vec:
            self.memory.add_embedding(text, vec)

    def _notify(self, message: str):
        logger.warning(message)
        if self.notify is not None:
            self.notify(message)

    # ------------------------------------------------------------- outside

    async def chat(self, message: str) -> ChatReply:
        reply = await self.oracle.chat(message)
        self.request_save()
        return reply

    def feedback(self, rating=None, comment: str = ""):
        self.memory.add_human_feedback(rating, comment)
        self.request_save()

    def status(self) -> dict:
        return {
            "tick": self.tick,
            "running": self.running,
            "paused": self._paused,
            "failure_streak": self._failure_streak,
            "background": {"started": self.supervisor.started, "failed": self.supervisor.failed},
            "memory": self.memory.stats(),
            "metrics": self.metrics.snapshot(),
        }
