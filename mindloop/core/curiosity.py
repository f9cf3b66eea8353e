"""Curiosity heuristic: prefer what was never seen, or seen longest ago.

Scores are recency x goal relevance. The engine only suggests; the oracle
decides.
"""
from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Config
from .models import ExploredEntry, Goal

logger = logging.getLogger(__name__)


@dataclass
class Suggestions:
    read_file: Optional[str] = None
    list_dir: Optional[str] = None
    fetch_url: Optional[str] = None
    browse_url: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "read_file": self.read_file,
            "list_dir": self.list_dir,
            "fetch_url": self.fetch_url,
            "browse_url": self.browse_url,
        }


def goal_relevance(goals: Sequence[Goal], text: str) -> float:
    words = [w for g in goals for w in g.text.lower().split() if len(w) > 2]
    if not words:
        return 1.0
    lowered = (text or "").lower()
    matches = sum(1 for w in words if w in lowered)
    return 1.0 + min(0.5, 0.15 * matches)


def recency_score(entry: Optional[ExploredEntry], window_s: float, at: Optional[float] = None) -> float:
    if entry is None:
        return 1.0
    age = (at if at is not None else time.time()) - entry.last_visited_at
    if window_s <= 0:
        return 1.0
    return max(0.0, min(1.0, age / window_s))


def list_files(root: str, max_depth: int) -> List[str]:
    """Depth-bounded walk, dot entries skipped. Raises OSError if root is unreadable."""
    out: List[str] = []

    def walk(d: str, depth: int):
        with os.scandir(d) as it:
            entries = sorted(it, key=lambda e: e.name)
        for e in entries:
            if e.name.startswith("."):
                continue
            if e.is_file():
                out.append(e.path)
            elif e.is_dir() and depth < max_depth:
                try:
                    walk(e.path, depth + 1)
                except OSError:
                    continue

    walk(root, 0)
    return out


def _top_level_files(root: str) -> List[str]:
    try:
        return sorted(str(p) for p in Path(root).iterdir() if p.is_file() and not p.name.startswith("."))
    except OSError:
        return []


class CuriosityEngine:
    def __init__(self, memory, cfg: Config, rng: Optional[random.Random] = None):
        self.memory = memory
        self.cfg = cfg
        self.rng = rng or random.Random()

    @property
    def depth(self) -> int:
        return max(1, min(5, self.cfg.curiosity.depth))

    def score(self, key: str, explored: Dict[str, ExploredEntry], goals: Sequence[Goal]) -> float:
        return recency_score(explored.get(key), self.cfg.curiosity.reexplore_window_s) * goal_relevance(goals, key)

    def _choose(self, scored: List[Tuple[str, float]]) -> Optional[str]:
        if not scored:
            return None
        # stable sort keeps discovery order among equal scores
        scored = sorted(scored, key=lambda kv: -kv[1])
        pool = scored[: max(1, self.cfg.curiosity.pool_size)]
        if self.rng.random() < self.cfg.curiosity.random_explore_chance:
            return self.rng.choice(pool)[0]
        return pool[0][0]

    def candidate_files(self) -> List[str]:
        files: List[str] = []
        for d in self.cfg.safety.allowed_dirs:
            files.extend(self._walk_one(d))
        return files

    def pick_file(self, files: Optional[List[str]] = None) -> Optional[str]:
        explored = self.memory.explored_paths()
        goals = self.memory.goals(active_only=True)
        if files is None:
            files = self.candidate_files()
        return self._choose([(f, self.score(f, explored, goals)) for f in files])

    def pick_dir(self) -> Optional[str]:
        explored = self.memory.explored_paths()
        goals = self.memory.goals(active_only=True)
        dirs = list(self.cfg.safety.allowed_dirs)
        return self._choose([(d, self.score(d, explored, goals)) for d in dirs])

    def candidate_urls(self) -> List[str]:
        seen = list(self.cfg.curiosity.seed_urls)
        for url in self.memory.explored_urls():
            if url not in seen:
                seen.append(url)
        return seen

    def pick_url(self) -> Optional[str]:
        explored = self.memory.explored_urls()
        goals = self.memory.goals(active_only=True)
        return self._choose([(u, self.score(u, explored, goals)) for u in self.candidate_urls()])

    async def suggestions(self) -> Suggestions:
        """One batched call: the directory walks run in worker threads, memory is read on the loop."""
        walks = await asyncio.gather(
            *(asyncio.to_thread(self._walk_one, d) for d in self.cfg.safety.allowed_dirs)
        )
        files = [f for chunk in walks for f in chunk]
        fetch_url = self.pick_url()
        browse_url = self.pick_url()
        return Suggestions(self.pick_file(files), self.pick_dir(), fetch_url, browse_url or fetch_url)

    def _walk_one(self, d: str) -> List[str]:
        try:
            return list_files(d, self.depth)
        except OSError as e:
            logger.debug("walk of %s failed, falling back to top level: %s", d, e)
            return _top_level_files(d)
