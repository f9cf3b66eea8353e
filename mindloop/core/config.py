from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, PrivateAttr, field_validator

DEFAULT_COMMAND_PREFIXES = ["npm ", "npx ", "node ", "git ", "ls ", "dir ", "python ", "pytest "]

DEFAULT_SEED_URLS = [
    "https://en.wikipedia.org/wiki/Special:Random",
    "https://news.ycombinator.com/",
    "https://api.github.com/",
    "https://httpbin.org/get",
    "https://jsonplaceholder.typicode.com/posts/1",
]


class SafetyConfig(BaseModel):
    # resolved against the working directory at load
    allowed_dirs: List[str] = Field(default_factory=lambda: ["./workspace"], validate_default=True)
    allowed_hosts: List[str] = Field(default_factory=lambda: ["*"])
    allowed_command_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_COMMAND_PREFIXES))
    # files the agent may read but never edit, relative to app_path
    protected_paths: List[str] = Field(
        default_factory=lambda: ["mindloop/core", "mindloop/agents", "mindloop/run.py"]
    )
    max_file_bytes: int = 1024 * 1024
    max_http_bytes: int = 1024 * 1024
    max_write_bytes: int = 5 * 1024 * 1024
    allow_clipboard: bool = False

    @field_validator("allowed_dirs")
    @classmethod
    def _resolve_dirs(cls, dirs: List[str]) -> List[str]:
        return [str(Path(d).expanduser().resolve()) for d in dirs]


class IntervalConfig(BaseModel):
    min_ms: int = 1500
    max_ms: int = 30000
    default_ms: int = 6000
    continuous_min_ms: int = 800
    continuous_max_ms: int = 5000
    high_load_cap_ms: int = 60000


class RunawayConfig(BaseModel):
    same_action_threshold: int = 6
    consecutive_errors: int = 3


class LearningConfig(BaseModel):
    strengthen_on_use: float = 0.04
    strengthen_connection: float = 0.06
    strengthen_on_success: float = 0.05
    weaken_on_failure: float = 0.03
    keywords_per_thought: int = 6


class CuriosityConfig(BaseModel):
    reexplore_window_s: float = 24 * 3600
    random_explore_chance: float = 0.2
    depth: int = 3
    pool_size: int = 50
    seed_urls: List[str] = Field(default_factory=lambda: list(DEFAULT_SEED_URLS))


class DriveConfig(BaseModel):
    decay: float = 0.98
    baseline_arousal: float = 0.5
    baseline_stress: float = 0.2
    baseline_calm: float = 0.5


class MemoryLimits(BaseModel):
    thoughts: int = 20000
    logs: int = 50000
    embeddings: int = 2000
    chat: int = 300
    chat_message_chars: int = 1000
    inner_thoughts: int = 200
    episodes: int = 2000
    facts: int = 500
    goals: int = 20
    last_actions: int = 12
    recent_learnings: int = 20
    self_instructions: int = 10
    explored_entries: int = 10000
    concepts: int = 100000
    associations: int = 500000
    archive_chunk: int = 500
    audit_entries: int = 5000


class TimeoutConfig(BaseModel):
    decide_s: float = 90.0
    reflect_s: float = 7.0
    inner_s: float = 10.0
    llm_http_s: float = 120.0
    embed_s: float = 15.0
    command_s: float = 30.0
    http_s: float = 30.0
    retry_delay_s: float = 2.5


class Config(BaseModel):
    # default endpoint (local)
    model: str = "qwen3:8b"
    base_url: str = "http://127.0.0.1:11434"
    api_key: str = "not-needed"
    local_api: Literal["ollama", "openai"] = "ollama"

    # secondary endpoint (e.g. OpenAI)
    openai_base_url: Optional[str] = None
    openai_api_key: Optional[str] = None

    # optional per-role overrides
    model_judge: Optional[str] = None
    model_reflect: Optional[str] = None

    embedding_backend: Literal["ollama", "openai", "local", "none"] = "ollama"
    embedding_model: str = "nomic-embed-text"
    openai_embedding_model: str = "text-embedding-3-small"
    local_embedding_model: str = "all-MiniLM-L6-v2"

    data_dir: str = "./data"
    app_path: str = "."
    system_prompt: Optional[str] = None

    focus_mode: bool = False
    continuous_mode: bool = False
    dry_run: bool = False
    use_judge: bool = False
    speak_thoughts: bool = False

    archive_every_ticks: int = 100
    meta_review_every_ticks: int = 20
    deep_reflect_every_ticks: int = 12
    save_debounce_ms: int = 2000
    high_load_memory_mb: Optional[float] = None

    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    intervals: IntervalConfig = Field(default_factory=IntervalConfig)
    runaway: RunawayConfig = Field(default_factory=RunawayConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    curiosity: CuriosityConfig = Field(default_factory=CuriosityConfig)
    drives: DriveConfig = Field(default_factory=DriveConfig)
    limits: MemoryLimits = Field(default_factory=MemoryLimits)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    _source: Optional[str] = PrivateAttr(default=None)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load a JSON config document, then apply environment overrides."""
        p = Path(path)
        data = json.loads(p.read_text(encoding="utf-8")) if p.exists() else {}
        cfg = cls.model_validate(_apply_env(data))
        cfg._source = str(p)
        return cfg

    @classmethod
    def from_env(cls) -> "Config":
        path = os.getenv("MINDLOOP_CONFIG")
        if path:
            return cls.from_file(path)
        return cls.model_validate(_apply_env({}))

    def reload(self) -> "Config":
        """Re-read the document this config came from. Returns a new object."""
        if self._source:
            return Config.from_file(self._source)
        return Config.from_env()

    @property
    def memory_path(self) -> Path:
        return Path(self.data_dir) / "memory.json"

    @property
    def brain_path(self) -> Path:
        return Path(self.data_dir) / "brain.json"

    @property
    def archive_path(self) -> Path:
        return Path(self.data_dir) / "archive.json.gz"

    @property
    def audit_path(self) -> Path:
        return Path(self.data_dir) / "audit_log.jsonl"

    @property
    def backup_dir(self) -> Path:
        return Path(self.data_dir) / "backups"

    def interval_bounds(self) -> tuple[int, int]:
        if self.continuous_mode:
            return (
                self.intervals.continuous_min_ms,
                min(self.intervals.continuous_max_ms, self.intervals.max_ms),
            )
        return self.intervals.min_ms, self.intervals.max_ms


_ENV_FIELDS = {
    "MINDLOOP_MODEL": "model",
    "MINDLOOP_BASE_URL": "base_url",
    "MINDLOOP_API_KEY": "api_key",
    "MINDLOOP_LOCAL_API": "local_api",
    "OPENAI_BASE_URL": "openai_base_url",
    "OPENAI_API_KEY": "openai_api_key",
    "MINDLOOP_MODEL_JUDGE": "model_judge",
    "MINDLOOP_MODEL_REFLECT": "model_reflect",
    "MINDLOOP_EMBEDDING_BACKEND": "embedding_backend",
    "MINDLOOP_EMBEDDING_MODEL": "embedding_model",
    "MINDLOOP_DATA_DIR": "data_dir",
    "MINDLOOP_APP_PATH": "app_path",
}

_ENV_FLAGS = {
    "MINDLOOP_FOCUS_MODE": "focus_mode",
    "MINDLOOP_CONTINUOUS_MODE": "continuous_mode",
    "MINDLOOP_DRY_RUN": "dry_run",
    "MINDLOOP_USE_JUDGE": "use_judge",
    "MINDLOOP_SPEAK_THOUGHTS": "speak_thoughts",
}


def _apply_env(data: dict) -> dict:
    out = dict(data)
    for env, field in _ENV_FIELDS.items():
        value = os.getenv(env)
        if value:
            out[field] = value
    for env, field in _ENV_FLAGS.items():
        value = os.getenv(env)
        if value is not None and value != "":
            out[field] = value.strip().lower() in {"1", "true", "yes", "on"}
    dirs = os.getenv("MINDLOOP_ALLOWED_DIRS")
    hosts = os.getenv("MINDLOOP_ALLOWED_HOSTS")
    if dirs or hosts:
        safety = dict(out.get("safety") or {})
        if dirs:
            safety["allowed_dirs"] = [d for d in dirs.split(os.pathsep) if d]
        if hosts:
            safety["allowed_hosts"] = [h.strip() for h in hosts.split(",") if h.strip()]
        out["safety"] = safety
    return out


def select_backend(model: str, cfg: Config) -> tuple[str, str, str]:
    """
    Decide which backend to use based on model name.
    Routes GPT/o1/o4 models to OpenAI when a key is configured, everything else
    (Llama, Mistral, Qwen, etc.) to the local endpoint.
    Returns (api_kind, base_url, api_key) where api_kind is "ollama" or "openai".
    """
    m = model.lower()

    # OpenAI models
    if m.startswith(("gpt", "o1", "o4")) and cfg.openai_api_key:
        return "openai", (cfg.openai_base_url or "https://api.openai.com/v1"), cfg.openai_api_key

    # explicit OpenAI-compatible endpoint configured for everything
    if cfg.openai_base_url and cfg.openai_api_key and cfg.local_api == "openai":
        return "openai", cfg.openai_base_url, cfg.openai_api_key

    # Default fallback → local
    return cfg.local_api, cfg.base_url, cfg.api_key
