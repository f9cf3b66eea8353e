import httpx, logging, time
from typing import Dict, Any, Optional
from .config import Config, select_backend
from .errors import OracleError

logger = logging.getLogger(__name__)

ERROR_THROTTLE_S = 60.0


class ErrorThrottle:
    """Lets one error log line through per interval."""

    def __init__(self, interval_s: float = ERROR_THROTTLE_S):
        self.interval_s = interval_s
        self._last = 0.0

    def ready(self) -> bool:
        now = time.monotonic()
        if now - self._last >= self.interval_s:
            self._last = now
            return True
        return False


def normalize_local_url(url: str) -> str:
    """Prefer 127.0.0.1 over localhost; local servers often listen on IPv4 only."""
    url = (url or "").rstrip("/")
    return url.replace("://localhost", "://127.0.0.1", 1)


def openai_root(url: str) -> str:
    url = (url or "https://api.openai.com/v1").rstrip("/")
    return url if url.endswith("/v1") else url + "/v1"


class OpenAICompat:
    """
    Text-in/text-out client for the language model.

    Talks to Ollama (/api/generate) or any OpenAI-compatible
    /chat/completions endpoint; the backend is chosen per call from the model
    name. complete() never raises: any failure comes back as None.
    """

    def __init__(self, cfg: Config, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        # do not fix base_url here; we select it per call
        self.client = client or httpx.AsyncClient(timeout=cfg.timeouts.llm_http_s)
        self.throttle = ErrorThrottle()
        self.last_error: Optional[str] = None

    async def aclose(self):
        await self.client.aclose()

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
        model: Optional[str] = None,
    ) -> Optional[str]:
        model_name = model or self.cfg.model
        try:
            text = await self._call(model_name, prompt, system, temperature, max_tokens)
        except OracleError as e:
            self.last_error = str(e)
            if self.throttle.ready():
                logger.error("llm call to %s failed: %s", model_name, e)
            return None
        self.last_error = None
        return text

    async def _call(self, model_name, prompt, system, temperature, max_tokens) -> str:
        api_kind, base_url, api_key = select_backend(model_name, self.cfg)
        try:
            if api_kind == "openai":
                return await self._openai(model_name, base_url, api_key, prompt, system, temperature, max_tokens)
            return await self._ollama(model_name, base_url, prompt, system, temperature, max_tokens)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise OracleError(f'model "{model_name}" not found (404); check the configured model name') from e
            raise OracleError(f"HTTP {e.response.status_code}") from e
        except httpx.ConnectError as e:
            raise OracleError(f"cannot reach {base_url}; is the model server running?") from e
        except httpx.HTTPError as e:
            raise OracleError(f"{type(e).__name__}: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise OracleError(f"malformed response: {e}") from e

    async def _ollama(self, model_name, base_url, prompt, system, temperature, max_tokens) -> str:
        body: Dict[str, Any] = {
            "model": model_name,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if system:
            body["system"] = system
        r = await self.client.post(f"{normalize_local_url(base_url)}/api/generate", json=body)
        r.raise_for_status()
        data = r.json()
        text = (data.get("response") or "").strip()
        if not text and data.get("message"):
            text = str(data["message"]).strip()
        if not text:
            raise OracleError(f"empty response from {model_name}: {data.get('error') or 'no text'}")
        return text

    async def _openai(self, model_name, base_url, api_key, prompt, system, temperature, max_tokens) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        body = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        r = await self.client.post(
            f"{openai_root(base_url)}/chat/completions",
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        )
        r.raise_for_status()
        data = r.json()
        text = (data["choices"][0]["message"]["content"] or "").strip()
        if not text:
            raise OracleError(f"empty response from {model_name}")
        logger.debug("[%s response]: %s", model_name, text)
        return text
