import asyncio
import logging
from typing import List, Optional, Sequence

import httpx

from .config import Config
from .llm import ErrorThrottle, normalize_local_url, openai_root

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000


class EmbeddingClient:
    """
    Vector representations for recall by meaning.

    Failures never propagate: embed() answers None, embed_many() an empty list,
    so callers simply skip indexing or retrieval.
    """

    def __init__(self, cfg: Config, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.backend = cfg.embedding_backend
        self.client = client or httpx.AsyncClient(timeout=cfg.timeouts.embed_s)
        self.throttle = ErrorThrottle()
        self._local_model = None

    @property
    def enabled(self) -> bool:
        return self.backend != "none"

    async def aclose(self):
        await self.client.aclose()

    async def embed(self, text: str) -> Optional[List[float]]:
        vectors = await self.embed_many([text])
        return vectors[0] if vectors else None

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        inputs = [str(t or "").strip()[:MAX_INPUT_CHARS] for t in texts]
        inputs = [t for t in inputs if t]
        if not inputs or not self.enabled:
            return []
        try:
            return await asyncio.wait_for(self._dispatch(inputs), timeout=self.cfg.timeouts.embed_s)
        except asyncio.TimeoutError:
            self._log_error("timed out")
        except httpx.HTTPError as e:
            self._log_error(f"{type(e).__name__}: {e}")
        except (ValueError, KeyError, TypeError, OSError) as e:
            self._log_error(str(e))
        return []

    def _log_error(self, msg: str):
        if self.throttle.ready():
            logger.error("embedding (%s) failed: %s", self.backend, msg)

    async def _dispatch(self, inputs: List[str]) -> List[List[float]]:
        if self.backend == "openai":
            return await self._openai(inputs)
        if self.backend == "local":
            return await asyncio.to_thread(self._local, inputs)
        return await self._ollama(inputs)

    async def _ollama(self, inputs: List[str]) -> List[List[float]]:
        r = await self.client.post(
            f"{normalize_local_url(self.cfg.base_url)}/api/embed",
            json={"model": self.cfg.embedding_model, "input": inputs[0] if len(inputs) == 1 else inputs},
        )
        r.raise_for_status()
        emb = r.json().get("embeddings")
        if not isinstance(emb, list):
            return []
        return [list(map(float, v)) for v in emb[: len(inputs)]]

    async def _openai(self, inputs: List[str]) -> List[List[float]]:
        r = await self.client.post(
            f"{openai_root(self.cfg.openai_base_url)}/embeddings",
            headers={"Authorization": f"Bearer {self.cfg.openai_api_key or ''}"},
            json={"model": self.cfg.openai_embedding_model, "input": inputs[0] if len(inputs) == 1 else inputs},
        )
        r.raise_for_status()
        data = r.json().get("data")
        if not isinstance(data, list):
            return []
        return [list(map(float, d["embedding"])) for d in data if d.get("embedding")]

    def _local(self, inputs: List[str]) -> List[List[float]]:
        if self._local_model is None:
            # heavy import, only paid when the local backend is selected
            from sentence_transformers import SentenceTransformer

            self._local_model = SentenceTransformer(self.cfg.local_embedding_model)
        vecs = self._local_model.encode(inputs, convert_to_numpy=True)
        if vecs.ndim == 1:
            vecs = vecs.reshape(1, -1)
        return vecs.astype(float).tolist()
