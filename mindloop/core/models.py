from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

SELF_ID = "self"

ConceptType = Literal["keyword", "resource", "self"]


def now() -> float:
    return time.time()


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


class Concept(BaseModel):
    id: str
    label: str
    type: ConceptType = "keyword"
    strength: float = 0.3
    last_used_at: float = Field(default_factory=now)
    created_at: float = Field(default_factory=now)

    @field_validator("strength")
    @classmethod
    def _clamp_strength(cls, v: float) -> float:
        return clamp(v)


class Association(BaseModel):
    """Undirected weighted edge; (a, b) is always stored sorted."""

    a: str
    b: str
    weight: float = 0.06
    type: str = "co_occurrence"
    last_strengthened_at: float = Field(default_factory=now)

    @property
    def key(self) -> tuple[str, str]:
        return (self.a, self.b)

    def other(self, concept_id: str) -> str:
        return self.b if self.a == concept_id else self.a

    def touches(self, concept_id: str) -> bool:
        return self.a == concept_id or self.b == concept_id


def edge_key(x: str, y: str) -> tuple[str, str]:
    return (x, y) if x < y else (y, x)


class Thought(BaseModel):
    t: float = Field(default_factory=now)
    text: str
    action: Optional[str] = None
    error: bool = False


class InnerThought(BaseModel):
    t: float = Field(default_factory=now)
    text: str


class Episode(BaseModel):
    t: float = Field(default_factory=now)
    type: str
    target: Optional[str] = None
    summary: str = ""
    location: Optional[str] = None


class Goal(BaseModel):
    id: str
    text: str
    status: Literal["active", "done"] = "active"
    created_at: float = Field(default_factory=now)


class Plan(BaseModel):
    steps: List[str]
    current_step_index: int = 0
    created_at: float = Field(default_factory=now)

    @property
    def current_step(self) -> Optional[str]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None


class LastAction(BaseModel):
    t: float = Field(default_factory=now)
    type: str
    outcome: str
    summary: str = ""


class Learning(BaseModel):
    t: float = Field(default_factory=now)
    text: str


class WorkingMemory(BaseModel):
    current_task: Optional[str] = None
    started_at: Optional[float] = None
    last_actions: List[LastAction] = Field(default_factory=list)
    recent_learnings: List[Learning] = Field(default_factory=list)


class SemanticFact(BaseModel):
    t: float = Field(default_factory=now)
    text: str
    source: str = ""


class ChatMessage(BaseModel):
    t: float = Field(default_factory=now)
    role: str
    content: str


class EmbeddingRecord(BaseModel):
    t: float = Field(default_factory=now)
    text: str
    vector: List[float]


class ExploredEntry(BaseModel):
    last_visited_at: float = Field(default_factory=now)
    summary: str = ""


class DriveState(BaseModel):
    """Reward-like arousal, stress and calm, each in [0, 1]."""

    arousal: float = 0.5
    stress: float = 0.2
    calm: float = 0.5

    @field_validator("arousal", "stress", "calm")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp(v)


class AuditEntry(BaseModel):
    t: float = Field(default_factory=now)
    type: str
    args: Dict[str, Any] = Field(default_factory=dict)
    outcome: str


class LogEntry(BaseModel):
    t: float = Field(default_factory=now)
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class HumanFeedback(BaseModel):
    t: float = Field(default_factory=now)
    rating: Optional[str] = None
    comment: str = ""


class DialogueTurn(BaseModel):
    role: str
    text: str


class SelfState(BaseModel):
    self_summary: str = ""
    goals: List[Goal] = Field(default_factory=list)
    plan: Optional[Plan] = None
    self_instructions: List[str] = Field(default_factory=list)
    capability_register: Dict[str, int] = Field(default_factory=dict)
    counters: Dict[str, int] = Field(default_factory=dict)
    last_dir: Optional[str] = None
    last_url: Optional[str] = None
    last_error: Optional[str] = None
    last_user_message: Optional[str] = None
    last_self_conversation: List[DialogueTurn] = Field(default_factory=list)
    last_self_conclusion: Optional[str] = None
    last_human_feedback: Optional[HumanFeedback] = None
    drives: DriveState = Field(default_factory=DriveState)


class ArchiveDocument(BaseModel):
    thoughts: List[Thought] = Field(default_factory=list)
    episodes: List[Episode] = Field(default_factory=list)
    facts: List[SemanticFact] = Field(default_factory=list)
    chat_history: List[ChatMessage] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.thoughts or self.episodes or self.facts or self.chat_history)


class StateDocument(BaseModel):
    """Primary persisted document."""

    explored_paths: Dict[str, ExploredEntry] = Field(default_factory=dict)
    explored_urls: Dict[str, ExploredEntry] = Field(default_factory=dict)
    thoughts: List[Thought] = Field(default_factory=list)
    inner_thoughts: List[InnerThought] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)
    episodes: List[Episode] = Field(default_factory=list)
    facts: List[SemanticFact] = Field(default_factory=list)
    chat_history: List[ChatMessage] = Field(default_factory=list)
    working_memory: WorkingMemory = Field(default_factory=WorkingMemory)
    state: SelfState = Field(default_factory=SelfState)
    pending_archive: ArchiveDocument = Field(default_factory=ArchiveDocument)


class BrainDocument(BaseModel):
    """Graph and embeddings, kept apart so they can be backed up on their own."""

    concepts: Dict[str, Concept] = Field(default_factory=dict)
    associations: List[Association] = Field(default_factory=list)
    embeddings: List[EmbeddingRecord] = Field(default_factory=list)


class ActionResult(BaseModel):
    """Uniform outcome of every collaborator call."""

    ok: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def success(cls, **data: Any) -> "ActionResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, **data: Any) -> "ActionResult":
        return cls(ok=False, error=error, data=data)
