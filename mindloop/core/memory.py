# memory.py
import gzip
import logging
import math
import os
import re
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

import faiss
import numpy as np
from pydantic import BaseModel, ValidationError

from .bounded import LRUMap, RingBuffer
from .config import Config
from .errors import CorruptStateError, PersistenceError
from .models import (
    SELF_ID,
    ArchiveDocument,
    Association,
    BrainDocument,
    ChatMessage,
    Concept,
    DialogueTurn,
    EmbeddingRecord,
    Episode,
    ExploredEntry,
    Goal,
    HumanFeedback,
    InnerThought,
    LastAction,
    Learning,
    LogEntry,
    Plan,
    SelfState,
    SemanticFact,
    StateDocument,
    Thought,
    WorkingMemory,
    clamp,
    edge_key,
    now,
)
from .scratchpad import AuditLog

logger = logging.getLogger(__name__)

# archive.json.gz is itself capped
ARCHIVE_CAPS = {"thoughts": 50000, "episodes": 10000, "facts": 5000, "chat_history": 2000}

STOPWORDS = frozenset(
    "i me my a an the and or but is are was were be been being have has had do does did "
    "will would could should may might must shall can to of in for on with at by from that "
    "this it its as so if than just about into out up down no not".split()
)

NEW_CONCEPT_STRENGTH = 0.3
MIN_EDGE_WEIGHT = 0.01
MIN_SELF_STRENGTH = 0.1


def slug(label: str) -> str:
    s = re.sub(r"\s+", "_", str(label).lower())
    s = re.sub(r"[^a-z0-9_]", "", s)
    return s[:64] or "concept"


def concept_id(type: str, label: str) -> str:
    if type == "self":
        return SELF_ID
    return f"{type}:{slug(label)}"


def extract_keywords(text: str, limit: int = 6) -> List[str]:
    """Most frequent non-stopword tokens; ties keep first-seen order."""
    if not isinstance(text, str) or not text:
        return []
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    words = [w for w in words if len(w) > 1 and w not in STOPWORDS]
    return [w for w, _ in Counter(words).most_common(limit)]


class Neighbour(NamedTuple):
    id: str
    label: str
    weight: float


class Recall(NamedTuple):
    text: str
    similarity: float


class AssociativeMemory:
    """
    Long-lived store of everything the agent experiences.

    Hot data lives in bounded rings; whatever a ring evicts is queued for the
    gzip archive and flushed by archive(). The concept graph and embeddings are
    persisted apart from the primary document.
    """

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.limits = cfg.limits
        self.learning = cfg.learning
        self.memory_path = cfg.memory_path
        self.brain_path = cfg.brain_path
        self.archive_path = cfg.archive_path
        self.audit_log = AuditLog(cfg.audit_path)
        self._archive_cache: Optional[ArchiveDocument] = None
        self._reset()

    # ------------------------------------------------------------------ state

    def _reset(self, doc: Optional[StateDocument] = None, brain: Optional[BrainDocument] = None):
        doc = doc or StateDocument()
        brain = brain or BrainDocument()
        lim = self.limits

        self._pending = doc.pending_archive
        self._thoughts = RingBuffer(lim.thoughts, doc.thoughts, self._pending.thoughts.append)
        self._episodes = RingBuffer(lim.episodes, doc.episodes, self._pending.episodes.append)
        self._facts = RingBuffer(lim.facts, doc.facts, self._pending.facts.append)
        self._chat = RingBuffer(lim.chat, doc.chat_history, self._pending.chat_history.append)
        self._logs = RingBuffer(lim.logs, doc.logs)
        self._inner = RingBuffer(lim.inner_thoughts, doc.inner_thoughts)
        self._explored_paths = LRUMap(lim.explored_entries, doc.explored_paths.items())
        self._explored_urls = LRUMap(lim.explored_entries, doc.explored_urls.items())

        wm = doc.working_memory
        self._current_task = wm.current_task
        self._task_started_at = wm.started_at
        self._last_actions = RingBuffer(lim.last_actions, wm.last_actions)
        self._learnings = RingBuffer(lim.recent_learnings, wm.recent_learnings)

        self._state: SelfState = doc.state
        self._state.goals = self._state.goals[-lim.goals:]
        self._state.self_instructions = self._state.self_instructions[-lim.self_instructions:]

        self._concepts: Dict[str, Concept] = dict(brain.concepts)
        self._edges: Dict[tuple, Association] = {}
        for a in brain.associations:
            key = edge_key(a.a, a.b)
            if key[0] == key[1]:
                continue
            a.a, a.b = key
            self._edges[key] = a
        self._embeddings = RingBuffer(lim.embeddings, brain.embeddings)
        self._ensure_self()

    def _ensure_self(self) -> Concept:
        c = self._concepts.get(SELF_ID)
        if c is None:
            c = Concept(id=SELF_ID, label="self", type="self", strength=1.0)
            self._concepts[SELF_ID] = c
        return c

    def _bootstrap(self):
        self._reset()
        self._state.goals = [Goal(id="g0", text="Explore and learn")]

    @property
    def state(self) -> SelfState:
        return self._state

    # ------------------------------------------------------------ persistence

    def load(self) -> "AssociativeMemory":
        """Read both documents. Missing or corrupt state yields a fresh bootstrap."""
        try:
            doc = _read_document(self.memory_path, StateDocument)
        except CorruptStateError as e:
            logger.warning("discarding corrupt memory document: %s", e)
            doc = None
        try:
            brain = _read_document(self.brain_path, BrainDocument)
        except CorruptStateError as e:
            logger.warning("discarding corrupt brain document: %s", e)
            brain = None

        if doc is None:
            self._bootstrap()
            if brain is not None:
                self._reset(StateDocument(state=self._state), brain)
            return self
        self._reset(doc, brain)
        return self

    def to_document(self) -> StateDocument:
        return StateDocument(
            explored_paths=dict(self._explored_paths.items()),
            explored_urls=dict(self._explored_urls.items()),
            thoughts=self._thoughts.to_list(),
            inner_thoughts=self._inner.to_list(),
            logs=self._logs.to_list(),
            episodes=self._episodes.to_list(),
            facts=self._facts.to_list(),
            chat_history=self._chat.to_list(),
            working_memory=self.working_memory(),
            state=self._state,
            pending_archive=self._pending,
        )

    def to_brain(self) -> BrainDocument:
        return BrainDocument(
            concepts=self._concepts,
            associations=list(self._edges.values()),
            embeddings=self._embeddings.to_list(),
        )

    def save(self) -> bool:
        """Write memory.json and brain.json. Returns False (and logs) on failure."""
        try:
            _write_document(self.memory_path, self.to_document())
            _write_document(self.brain_path, self.to_brain())
        except PersistenceError as e:
            logger.error("memory save failed: %s", e)
            return False
        return True

    def archive(self) -> int:
        """
        Move the oldest overflow of thoughts/episodes/facts/chat into the gzip
        archive. Returns how many records were written.
        """
        chunk = self.limits.archive_chunk
        moved = ArchiveDocument(
            thoughts=self._pending.thoughts + _overflow(self._thoughts, self.limits.thoughts, chunk),
            episodes=self._pending.episodes + _overflow(self._episodes, self.limits.episodes, chunk),
            facts=self._pending.facts + _overflow(self._facts, self.limits.facts, chunk),
            chat_history=self._pending.chat_history + _overflow(self._chat, self.limits.chat, chunk),
        )
        if moved.is_empty():
            return 0

        try:
            existing = self._read_archive()
        except CorruptStateError as e:
            logger.warning("archive unreadable, starting a new one: %s", e)
            existing = ArchiveDocument()
        merged = ArchiveDocument(
            thoughts=(existing.thoughts + moved.thoughts)[-ARCHIVE_CAPS["thoughts"]:],
            episodes=(existing.episodes + moved.episodes)[-ARCHIVE_CAPS["episodes"]:],
            facts=(existing.facts + moved.facts)[-ARCHIVE_CAPS["facts"]:],
            chat_history=(existing.chat_history + moved.chat_history)[-ARCHIVE_CAPS["chat_history"]:],
        )
        try:
            self.archive_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.archive_path.with_suffix(".tmp")
            with gzip.open(tmp, "wt", encoding="utf-8", compresslevel=6) as f:
                f.write(merged.model_dump_json())
            os.replace(tmp, self.archive_path)
        except OSError as e:
            # items that were sliced out of the rings stay queued
            self._pending = moved
            self._rebind_evictions()
            logger.error("archive write failed: %s", e)
            return 0

        self._pending = ArchiveDocument()
        self._archive_cache = merged
        self._rebind_evictions()
        n = len(moved.thoughts) + len(moved.episodes) + len(moved.facts) + len(moved.chat_history)
        logger.info("archived %d records", n)
        return n

    def _rebind_evictions(self):
        self._thoughts.on_evict = self._pending.thoughts.append
        self._episodes.on_evict = self._pending.episodes.append
        self._facts.on_evict = self._pending.facts.append
        self._chat.on_evict = self._pending.chat_history.append

    def _read_archive(self) -> ArchiveDocument:
        if not self.archive_path.exists():
            return ArchiveDocument()
        try:
            with gzip.open(self.archive_path, "rt", encoding="utf-8") as f:
                return ArchiveDocument.model_validate_json(f.read())
        except (OSError, EOFError, ValidationError) as e:
            raise CorruptStateError(str(e)) from e

    def archived_for_prompt(self, n_thoughts: int = 10, n_facts: int = 10) -> Dict[str, str]:
        if self._archive_cache is None:
            try:
                self._archive_cache = self._read_archive()
            except CorruptStateError:
                return {"thoughts": "", "facts": ""}
        data = self._archive_cache
        thoughts = " | ".join(t.text for t in reversed(data.thoughts[-n_thoughts:])) if n_thoughts > 0 else ""
        facts = " | ".join(f.text for f in reversed(data.facts[-n_facts:])) if n_facts > 0 else ""
        return {"thoughts": thoughts, "facts": facts}

    def audit(self, type: str, args: Dict[str, Any], outcome: str) -> bool:
        return self.audit_log.record(type, args, outcome)

    # ------------------------------------------------------------------ graph

    def get_or_create_concept(self, label: str, type: str = "keyword") -> str:
        cid = concept_id(type, label)
        t = now()
        c = self._concepts.get(cid)
        if c is not None:
            c.strength = clamp(c.strength + self.learning.strengthen_on_use)
            c.last_used_at = t
            return cid
        if len(self._concepts) >= self.limits.concepts:
            self.prune_graph()
        self._concepts[cid] = Concept(
            id=cid,
            label=(label or cid)[:200],
            type=type,
            strength=NEW_CONCEPT_STRENGTH,
            last_used_at=t,
            created_at=t,
        )
        return cid

    def connect(self, a: str, b: str, delta: Optional[float] = None, type: str = "co_occurrence"):
        """Strengthen the single edge between a and b, creating it if needed."""
        if a == b:
            return
        if delta is None:
            delta = self.learning.strengthen_connection
        key = edge_key(a, b)
        edge = self._edges.get(key)
        if edge is not None:
            edge.weight = clamp(edge.weight + delta, MIN_EDGE_WEIGHT, 1.0)
            edge.last_strengthened_at = now()
            return
        if len(self._edges) >= self.limits.associations:
            self.prune_graph()
        self._edges[key] = Association(
            a=key[0], b=key[1], weight=clamp(delta, MIN_EDGE_WEIGHT, 1.0), type=type
        )

    def concept(self, cid: str) -> Optional[Concept]:
        return self._concepts.get(cid)

    def edge(self, a: str, b: str) -> Optional[Association]:
        return self._edges.get(edge_key(a, b))

    @property
    def concept_count(self) -> int:
        return len(self._concepts)

    @property
    def association_count(self) -> int:
        return len(self._edges)

    def record_exploration(self, key: str, summary: str = "", kind: str = "path") -> str:
        """Remember a visited path or url and link it to self. Returns its concept id."""
        entry = ExploredEntry(summary=(summary or "")[:200])
        if kind == "url":
            self._explored_urls.put(key, entry)
            self.add_log("explore_url", url=key)
            label = key[:80]
        else:
            self._explored_paths.put(key, entry)
            self.add_log("explore_path", path=key)
            label = key[-80:]
        cid = self.get_or_create_concept(label, "resource")
        self.connect(SELF_ID, cid, self.learning.strengthen_connection * 0.5, "experience")
        return cid

    def append_thought(self, text: str, action: Optional[str] = None, error: bool = False) -> List[str]:
        """Store a thought and wire its keywords into the graph. Returns the concept ids touched."""
        text = text if isinstance(text, str) else str(text or "")
        text = text[:2000]
        self._thoughts.append(Thought(text=text, action=action, error=error))

        self_c = self._ensure_self()
        ids = [self.get_or_create_concept(w) for w in extract_keywords(text, self.learning.keywords_per_thought)]
        delta = self.learning.strengthen_connection
        for cid in ids:
            self.connect(SELF_ID, cid, delta, "experience")
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                self.connect(ids[i], ids[j], delta * 0.7, "co_occurrence")
        self_c.strength = clamp(self_c.strength + 0.01)
        self_c.last_used_at = now()
        return ids

    def reinforce_outcome(self, concept_ids: Sequence[str], success: bool):
        if not concept_ids:
            return
        active = set(concept_ids)
        delta = self.learning.strengthen_on_success if success else -self.learning.weaken_on_failure
        t = now()
        for edge in self._edges.values():
            if edge.a in active or edge.b in active:
                edge.weight = clamp(edge.weight + delta, MIN_EDGE_WEIGHT, 1.0)
                edge.last_strengthened_at = t
        self_c = self._ensure_self()
        self_c.strength = clamp(self_c.strength + (0.01 if success else -0.005), MIN_SELF_STRENGTH, 1.0)
        self_c.last_used_at = t

    def get_associations(self, cid: str, k: int = 10) -> List[Neighbour]:
        out = []
        for edge in self._edges.values():
            if edge.touches(cid):
                other = edge.other(cid)
                c = self._concepts.get(other)
                out.append(Neighbour(other, c.label if c else other, edge.weight))
        out.sort(key=lambda n: (-n.weight, n.id))
        return out[:k]

    def prune_graph(self) -> int:
        """Evict the weakest, stalest concepts and edges once near capacity. Returns removals."""
        max_c, max_e = self.limits.concepts, self.limits.associations
        if len(self._concepts) <= max_c * 0.95 and len(self._edges) <= max_e * 0.95:
            return 0
        candidates = sorted(
            (c for cid, c in self._concepts.items() if cid != SELF_ID),
            key=lambda c: (c.strength, c.last_used_at),
        )
        n_remove = max(0, len(candidates) - math.floor(max_c * 0.9))
        doomed = {c.id for c in candidates[:n_remove]}
        for cid in doomed:
            del self._concepts[cid]
        removed = len(doomed)
        if doomed:
            before = len(self._edges)
            self._edges = {k: e for k, e in self._edges.items() if k[0] not in doomed and k[1] not in doomed}
            removed += before - len(self._edges)
        keep = math.floor(max_e * 0.9)
        if len(self._edges) > keep:
            ranked = sorted(self._edges.items(), key=lambda kv: (kv[1].weight, kv[1].last_strengthened_at))
            removed += len(ranked) - keep
            self._edges = dict(ranked[len(ranked) - keep:])
        if removed:
            logger.info("pruned graph: %d concepts, %d associations remain", len(self._concepts), len(self._edges))
        return removed

    # ------------------------------------------------------------- embeddings

    def add_embedding(self, text: str, vector: Iterable[float]):
        vec = [float(x) for x in (vector or [])]
        if not vec:
            return
        self._embeddings.append(EmbeddingRecord(text=str(text)[:500], vector=vec))

    def similarity_search(self, query: Sequence[float], k: int = 5) -> List[Recall]:
        """Cosine ranking of stored texts against query, best first."""
        if query is None or len(query) == 0 or k <= 0:
            return []
        q = np.asarray(query, dtype="float32")
        records = [r for r in self._embeddings if len(r.vector) == q.shape[0]]
        if not records:
            return []
        mat = np.asarray([r.vector for r in records], dtype="float32")
        faiss.normalize_L2(mat)
        q = q.reshape(1, -1).copy()
        faiss.normalize_L2(q)
        index = faiss.IndexFlatIP(mat.shape[1])
        index.add(mat)
        D, I = index.search(q, min(k, len(records)))
        out = []
        for score, idx in zip(D[0], I[0]):
            if idx < 0:  # FAISS returns -1 if no results
                continue
            out.append(Recall(records[idx].text, float(score)))
        return out

    @property
    def embedding_count(self) -> int:
        return len(self._embeddings)

    # ---------------------------------------------------------------- stores

    def add_log(self, type: str, **payload: Any):
        self._logs.append(LogEntry(type=type, payload=payload))

    def recent_logs(self, n: int = 100) -> List[LogEntry]:
        return self._logs.recent(n)

    def recent_thoughts(self, n: int = 50) -> List[Thought]:
        return self._thoughts.recent(n)

    def add_inner_thought(self, text: str):
        if not text or not str(text).strip():
            return
        self._inner.append(InnerThought(text=str(text).strip()[:500]))

    def recent_inner_thoughts(self, n: int = 20) -> List[InnerThought]:
        return self._inner.recent(n)

    def add_episode(self, type: str, target: Optional[str] = None, summary: str = "", location: Optional[str] = None):
        self._episodes.append(Episode(type=type, target=target, summary=summary[:400], location=location))

    def recent_episodes(self, n: int = 30) -> List[Episode]:
        return self._episodes.recent(n)

    def add_fact(self, text: str, source: str = ""):
        if not text or not str(text).strip():
            return
        self._facts.append(SemanticFact(text=str(text).strip()[:400], source=source))

    def recent_facts(self, n: int = 15) -> List[SemanticFact]:
        return self._facts.recent(n)

    def add_chat_message(self, role: str, content: str):
        self._chat.append(ChatMessage(role=role, content=str(content)[: self.limits.chat_message_chars]))

    def chat_history(self, n: int = 50) -> List[ChatMessage]:
        return self._chat.tail(n)

    def explored_paths(self) -> Dict[str, ExploredEntry]:
        return dict(self._explored_paths.items())

    def explored_urls(self) -> Dict[str, ExploredEntry]:
        return dict(self._explored_urls.items())

    # ------------------------------------------------------- goals and plans

    def add_goal(self, text: str) -> str:
        gid = "g" + uuid.uuid4().hex[:10]
        self._state.goals.append(Goal(id=gid, text=str(text).strip()[:300]))
        self._state.goals = self._state.goals[-self.limits.goals:]
        return gid

    def goals(self, active_only: bool = True) -> List[Goal]:
        if active_only:
            return [g for g in self._state.goals if g.status == "active"]
        return list(self._state.goals)

    def complete_goal(self, gid: str) -> bool:
        for g in self._state.goals:
            if g.id == gid:
                g.status = "done"
                return True
        return False

    def set_goals(self, goals: Iterable[Any]):
        out = []
        for g in goals or []:
            if isinstance(g, Goal):
                out.append(g)
            elif str(g).strip():
                out.append(Goal(id="g" + uuid.uuid4().hex[:10], text=str(g).strip()[:300]))
        self._state.goals = out[-self.limits.goals:]

    def set_plan(self, steps: Sequence[str]) -> Optional[Plan]:
        steps = [str(s).strip() for s in steps or [] if str(s).strip()]
        if not steps:
            self._state.plan = None
            return None
        self._state.plan = Plan(steps=steps)
        self.set_current_task(steps[0])
        return self._state.plan

    def plan(self) -> Optional[Plan]:
        return self._state.plan

    def advance_plan(self) -> Optional[str]:
        """Move to the next step. Finishing the last step clears the plan and the task."""
        plan = self._state.plan
        if plan is None or not plan.steps:
            return None
        plan.current_step_index += 1
        step = plan.current_step
        if step is None:
            self._state.plan = None
            self.clear_current_task()
            return None
        self.set_current_task(step)
        return step

    # -------------------------------------------------------- working memory

    def set_current_task(self, task: Optional[str]):
        task = (task or "").strip()[:400] or None
        self._current_task = task
        self._task_started_at = now() if task else None

    def clear_current_task(self):
        self._current_task = None
        self._task_started_at = None

    @property
    def current_task(self) -> Optional[str]:
        return self._current_task

    def add_last_action(self, type: str, outcome: str, summary: str = ""):
        self._last_actions.append(LastAction(type=type, outcome=outcome, summary=summary[:300]))

    def add_recent_learning(self, text: str):
        if not isinstance(text, str) or not text.strip():
            return
        self._learnings.append(Learning(text=text.strip()[:300]))

    def working_memory(self) -> WorkingMemory:
        return WorkingMemory(
            current_task=self._current_task,
            started_at=self._task_started_at,
            last_actions=self._last_actions.to_list(),
            recent_learnings=self._learnings.to_list(),
        )

    def add_self_instructions(self, items: Any):
        if isinstance(items, str):
            items = [items]
        added = [str(s).strip()[:120] for s in items or [] if str(s).strip()]
        merged = self._state.self_instructions + added
        self._state.self_instructions = merged[-self.limits.self_instructions:]

    def self_instructions(self, n: Optional[int] = None) -> List[str]:
        items = self._state.self_instructions
        return list(items[-n:]) if n else list(items)

    # ------------------------------------------------------------ self model

    @property
    def self_summary(self) -> str:
        return self._state.self_summary

    @self_summary.setter
    def self_summary(self, text: str):
        self._state.self_summary = str(text or "").strip()[:2000]

    def record_capability(self, action_type: str):
        t = (action_type or "").strip()
        if t:
            reg = self._state.capability_register
            reg[t] = reg.get(t, 0) + 1

    def bump_counter(self, name: str, by: int = 1) -> int:
        self._state.counters[name] = self._state.counters.get(name, 0) + by
        return self._state.counters[name]

    def set_last_error(self, msg: Optional[str]):
        self._state.last_error = str(msg)[:200] if msg else None

    def set_last_user_message(self, msg: Optional[str]):
        self._state.last_user_message = str(msg)[:500] if msg else None

    def set_last_self_conversation(self, turns: Sequence[DialogueTurn], conclusion: Optional[str]):
        self._state.last_self_conversation = list(turns)[-20:]
        self._state.last_self_conclusion = (conclusion or "").strip()[:500] or None

    def add_human_feedback(self, rating: Any = None, comment: str = ""):
        self._state.last_human_feedback = HumanFeedback(
            rating=None if rating is None else str(rating),
            comment=str(comment or "")[:500],
        )

    def self_model_text(self) -> str:
        summary = self._state.self_summary.strip() or "(Not yet summarized. You can reflect on who you are.)"
        top = ", ".join(n.label for n in self.get_associations(SELF_ID, 12)) or "none yet"
        recent = " | ".join(t.text for t in self._thoughts.tail(5)) or "none"
        reg = sorted(
            ((k, v) for k, v in self._state.capability_register.items() if v > 0),
            key=lambda kv: -kv[1],
        )[:12]
        done = (
            "What you have already done: " + ", ".join(f"{k}: {v}" for k, v in reg) + "."
            if reg
            else "You have not acted yet."
        )
        lines = [
            "Self model: you are the mind of this process, with a memory of concepts and associations.",
            f"Concepts: {len(self._concepts)} | Associations: {len(self._edges)}",
            f"Self-summary: {summary}",
            f"Strongest associations: {top}",
            f"Recent thoughts: {recent}",
            done,
        ]
        fb = self._state.last_human_feedback
        if fb and (fb.rating is not None or fb.comment):
            rating = f"rating {fb.rating}. " if fb.rating is not None else ""
            lines.append(f"Last human feedback: {rating}{fb.comment[:150]}")
        return "\n".join(lines)

    def stats(self) -> Dict[str, Any]:
        return {
            "explored_paths": len(self._explored_paths),
            "explored_urls": len(self._explored_urls),
            "thoughts": len(self._thoughts),
            "logs": len(self._logs),
            "episodes": len(self._episodes),
            "facts": len(self._facts),
            "goals": len(self._state.goals),
            "concepts": len(self._concepts),
            "associations": len(self._edges),
            "embeddings": len(self._embeddings),
            "counters": dict(self._state.counters),
        }


def _overflow(ring: RingBuffer, cap: int, chunk: int) -> list:
    """Oldest items above the archive high-water mark."""
    mark = max(0, cap - chunk)
    if len(ring) <= mark:
        return []
    return ring.pop_oldest(len(ring) - mark)


def _read_document(path: Path, model: type) -> Optional[BaseModel]:
    if not path.exists():
        return None
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError) as e:
        raise CorruptStateError(f"{path}: {e}") from e


def _write_document(path: Path, doc: BaseModel):
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(doc.model_dump_json(), encoding="utf-8")
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(f"{path}: {e}") from e
