from __future__ import annotations
from pathlib import Path
import asyncio, logging, subprocess, webbrowser
from typing import Any, Dict, Optional, Protocol
import httpx
from .config import Config
from .models import ActionResult
from .permissions import is_allowed_command, is_allowed_host, is_allowed_path, is_allowed_protocol

logger = logging.getLogger(__name__)

USER_AGENT = "mindloop/0.1 (curious)"


class Perception(Protocol):
    async def read_file(self, path: str) -> ActionResult: ...
    async def list_dir(self, path: str) -> ActionResult: ...
    async def fetch_url(self, url: str, opts: Optional[Dict[str, Any]] = None) -> ActionResult: ...


class Actuator(Protocol):
    async def write_file(self, path: str, content: str) -> ActionResult: ...
    async def delete_file(self, path: str) -> ActionResult: ...
    async def open_url(self, url: str) -> ActionResult: ...
    async def speak(self, text: str) -> ActionResult: ...
    async def http_request(self, url: str, method: str = "GET", body: Any = None,
                           headers: Optional[Dict[str, str]] = None) -> ActionResult: ...
    async def run_command(self, cmd: str, cwd: str, timeout: float) -> ActionResult: ...


class Toolbelt:
    """
    Default sandboxed implementation of Perception and Actuator.

    Every call re-checks the permission gate, so a caller that skipped
    validation still cannot step outside the allowed dirs and hosts.
    """

    def __init__(self, cfg: Config, client: Optional[httpx.AsyncClient] = None, open_browser: bool = True):
        self.cfg = cfg
        self.client = client or httpx.AsyncClient(
            timeout=cfg.timeouts.http_s, follow_redirects=True, headers={"User-Agent": USER_AGENT}
        )
        self.open_browser = open_browser

    async def aclose(self):
        await self.client.aclose()

    def _path_ok(self, path: str) -> bool:
        return is_allowed_path(path, self.cfg.safety.allowed_dirs)

    def _url_ok(self, url: str) -> Optional[str]:
        if not is_allowed_protocol(url):
            return "Only http and https URLs are allowed"
        if not is_allowed_host(url, self.cfg.safety.allowed_hosts):
            return "Host not allowed"
        return None

    # -- perception

    async def read_file(self, path: str) -> ActionResult:
        if not self._path_ok(path):
            return ActionResult.failure("Path not allowed")
        p = Path(path).resolve()
        try:
            if not p.is_file():
                return ActionResult.failure("Not a file")
            size = p.stat().st_size
            if size > self.cfg.safety.max_file_bytes:
                return ActionResult.failure("File too large")
            content = await asyncio.to_thread(p.read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            return ActionResult.failure(str(e))
        return ActionResult.success(path=str(p), content=content, size=size)

    async def list_dir(self, path: str) -> ActionResult:
        if not self._path_ok(path or "."):
            return ActionResult.failure("Path not allowed")
        p = Path(path or ".").resolve()
        try:
            entries = sorted(p.iterdir(), key=lambda e: e.name)
            items = [{"name": e.name, "is_dir": e.is_dir(), "path": str(e)} for e in entries]
        except OSError as e:
            return ActionResult.failure(str(e))
        return ActionResult.success(path=str(p), items=items)

    async def fetch_url(self, url: str, opts: Optional[Dict[str, Any]] = None) -> ActionResult:
        opts = opts or {}
        return await self.http_request(url, opts.get("method", "GET"), opts.get("body"), opts.get("headers"))

    # -- action

    async def write_file(self, path: str, content: str) -> ActionResult:
        if not self._path_ok(path):
            return ActionResult.failure("Path not allowed")
        text = content if isinstance(content, str) else str(content)
        size = len(text.encode("utf-8"))
        if size > self.cfg.safety.max_write_bytes:
            return ActionResult.failure("Content too large")
        p = Path(path).resolve()
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(p.write_text, text, encoding="utf-8")
        except OSError as e:
            return ActionResult.failure(str(e))
        return ActionResult.success(path=str(p), bytes=size)

    async def delete_file(self, path: str) -> ActionResult:
        if not self._path_ok(path):
            return ActionResult.failure("Path not allowed")
        p = Path(path).resolve()
        try:
            if not p.is_file():
                return ActionResult.failure("Not a file")
            p.unlink()
        except OSError as e:
            return ActionResult.failure(str(e))
        return ActionResult.success(path=str(p))

    async def open_url(self, url: str) -> ActionResult:
        err = self._url_ok(url)
        if err:
            return ActionResult.failure(err)
        if self.open_browser:
            try:
                opened = await asyncio.to_thread(webbrowser.open, url)
            except webbrowser.Error as e:
                return ActionResult.failure(str(e))
            if not opened:
                logger.info("no browser available for %s", url)
        return ActionResult.success(url=url)

    async def speak(self, text: str) -> ActionResult:
        # no audio device here; spoken text goes to the log
        logger.info("speak: %s", str(text)[:2000])
        return ActionResult.success(text=str(text)[:2000])

    async def http_request(self, url: str, method: str = "GET", body: Any = None,
                           headers: Optional[Dict[str, str]] = None) -> ActionResult:
        err = self._url_ok(url)
        if err:
            return ActionResult.failure(err)
        method = (method or "GET").upper()
        kwargs: Dict[str, Any] = {"headers": headers or {}}
        if body is not None and method in {"POST", "PUT", "PATCH"}:
            if isinstance(body, str):
                kwargs["content"] = body
            else:
                kwargs["json"] = body
        limit = self.cfg.safety.max_http_bytes
        try:
            async with self.client.stream(method, url, **kwargs) as r:
                chunks, total = [], 0
                async for chunk in r.aiter_bytes():
                    total += len(chunk)
                    if total > limit:
                        chunks.append(chunk[: max(0, limit - (total - len(chunk)))])
                        break
                    chunks.append(chunk)
                text = b"".join(chunks).decode(r.encoding or "utf-8", errors="replace")
                if total > limit:
                    text += "\n...[truncated]"
                status = r.status_code
        except httpx.HTTPError as e:
            return ActionResult.failure(f"{type(e).__name__}: {e}")
        res = ActionResult(ok=200 <= status < 300, data={"url": url, "status": status, "body": text})
        if not res.ok:
            res.error = f"HTTP {status}"
        return res

    async def run_command(self, cmd: str, cwd: str, timeout: float) -> ActionResult:
        if not is_allowed_command(cmd, self.cfg.safety.allowed_command_prefixes):
            return ActionResult.failure("Command not allowed")
        if not self._path_ok(cwd):
            return ActionResult.failure("Path not allowed")
        def _run():
            return subprocess.run(cmd, shell=True, cwd=cwd, capture_output=True, text=True, timeout=timeout)

        try:
            res = await asyncio.to_thread(_run)
        except subprocess.TimeoutExpired:
            return ActionResult.failure("Timeout", stdout="", stderr="", returncode=-1)
        except OSError as e:
            return ActionResult.failure(str(e))
        data = {"stdout": res.stdout[-8000:], "stderr": res.stderr[-4000:], "returncode": res.returncode}
        if res.returncode != 0:
            return ActionResult(ok=False, data=data, error=f"exit code {res.returncode}")
        return ActionResult(ok=True, data=data)
