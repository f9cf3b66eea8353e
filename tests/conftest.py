from pathlib import Path
from typing import Callable, List, Optional, Union

import pytest

from mindloop.core.config import Config, SafetyConfig, TimeoutConfig
from mindloop.core.memory import AssociativeMemory

DECIDE_MARK = "Decide your next action."


class FakeLLM:
    """Stands in for OpenAICompat. Routes decision prompts to `decide`, everything else to `other`."""

    def __init__(
        self,
        decide: Union[str, None, Callable[[], Optional[str]]] = None,
        other: Optional[str] = "That went fine.",
    ):
        self.decide = decide
        self.other = other
        self.prompts: List[str] = []
        self.last_error: Optional[str] = None

    async def complete(self, prompt, system=None, temperature=0.7, max_tokens=500, model=None):
        self.prompts.append(prompt)
        if prompt.startswith(DECIDE_MARK):
            out = self.decide() if callable(self.decide) else self.decide
        else:
            out = self.other
        self.last_error = None if out else "model down"
        return out

    async def aclose(self):
        pass

    @property
    def decide_calls(self) -> int:
        return sum(1 for p in self.prompts if p.startswith(DECIDE_MARK))


@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path.resolve() / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def cfg(tmp_path, workspace) -> Config:
    root = tmp_path.resolve()
    return Config(
        data_dir=str(root / "data"),
        app_path=str(root),
        embedding_backend="none",
        save_debounce_ms=10,
        safety=SafetyConfig(allowed_dirs=[str(workspace)], allowed_hosts=["example.com"]),
        timeouts=TimeoutConfig(retry_delay_s=0, decide_s=5, reflect_s=2, inner_s=2),
    )


@pytest.fixture
def memory(cfg) -> AssociativeMemory:
    return AssociativeMemory(cfg).load()
