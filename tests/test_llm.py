import json

import httpx

from mindloop.core.config import select_backend
from mindloop.core.llm import ErrorThrottle, OpenAICompat, normalize_local_url, openai_root


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_ollama_generate(cfg):
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "  hello there  "})

    llm = OpenAICompat(cfg, client=_client(handler))
    out = await llm.complete("hi", system="be brief", temperature=0.2, max_tokens=12)
    assert out == "hello there"
    assert seen["url"] == "http://127.0.0.1:11434/api/generate"
    assert seen["body"]["system"] == "be brief"
    assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 12}
    assert llm.last_error is None


async def test_openai_chat_completions(cfg):
    cfg.openai_api_key = "sk-test"
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    llm = OpenAICompat(cfg, client=_client(handler))
    assert await llm.complete("hi", model="gpt-4o-mini") == "ok"
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"


async def test_failures_come_back_as_none(cfg):
    def handler(request: httpx.Request):
        return httpx.Response(404, json={"error": "model not found"})

    llm = OpenAICompat(cfg, client=_client(handler))
    assert await llm.complete("hi") is None
    assert "not found" in llm.last_error


async def test_empty_and_unreachable(cfg):
    def empty(request):
        return httpx.Response(200, json={"response": ""})

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    assert await OpenAICompat(cfg, client=_client(empty)).complete("hi") is None
    llm = OpenAICompat(cfg, client=_client(refused))
    assert await llm.complete("hi") is None
    assert "cannot reach" in llm.last_error


def test_backend_selection(cfg):
    assert select_backend("qwen3:8b", cfg)[0] == "ollama"
    assert select_backend("gpt-4o", cfg)[0] == "ollama"  # no key configured
    cfg.openai_api_key = "k"
    assert select_backend("gpt-4o", cfg) == ("openai", "https://api.openai.com/v1", "k")


def test_url_helpers():
    assert normalize_local_url("http://localhost:11434/") == "http://127.0.0.1:11434"
    assert openai_root("https://host/api") == "https://host/api/v1"
    assert openai_root("https://host/v1/") == "https://host/v1"


def test_error_throttle():
    t = ErrorThrottle(interval_s=3600)
    assert t.ready()
    assert not t.ready()
