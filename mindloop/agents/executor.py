import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from mindloop.core.actions import (
    BaseAction, Browse, DeleteFile, EditCode, FetchUrl, ListDir, ReadFile, ReadSelf,
    RunTerminal, SelfDialogue, WriteFile, WriteJournal,
)
from mindloop.core.config import Config
from mindloop.core.errors import ExecutionError
from mindloop.core.memory import AssociativeMemory
from mindloop.core.models import ActionResult
from mindloop.core.permissions import is_risky_command
from mindloop.core.supervisor import TaskSupervisor
from mindloop.core.tools import Toolbelt
from .oracle import DecisionOracleClient

logger = logging.getLogger(__name__)

DRY_RUN_TYPES = {"read_file", "list_dir", "write_file", "delete_file", "run_terminal", "edit_code"}
MAX_SELF_CODE_CHARS = 20000


@dataclass
class Outcome:
    """What one dispatched action produced, ready for reflection and memory."""
    action: BaseAction
    result: ActionResult
    summary: str
    thought: Optional[str] = None
    location: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result.ok


def resolve_edit_path(path: str, app_path: str) -> Path:
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = Path(app_path) / p
    return p.resolve()


def verify_source(path: Path, text: str):
    """Raise if the new content would not load: .py must compile, .json must parse."""
    if path.suffix == ".py":
        compile(text, str(path), "exec")
    elif path.suffix == ".json":
        json.loads(text)


def _preview(text: str, n: int = 300) -> str:
    text = " ".join(str(text or "").split())
    return text if len(text) <= n else text[:n] + "..."


class Executor:
    """Dispatches a validated action to the toolbelt and turns the result into an Outcome."""

    def __init__(
        self,
        tools: Toolbelt,
        memory: AssociativeMemory,
        oracle: DecisionOracleClient,
        cfg: Config,
        supervisor: Optional[TaskSupervisor] = None,
    ):
        self.tools, self.memory, self.oracle, self.cfg = tools, memory, oracle, cfg
        self.supervisor = supervisor or TaskSupervisor()
        self._handlers: Dict[str, Callable[[BaseAction], Awaitable[Outcome]]] = {
            "read_file": self._read_file,
            "list_dir": self._list_dir,
            "write_file": self._write_file,
            "delete_file": self._delete_file,
            "fetch_url": self._fetch_url,
            "browse": self._browse,
            "run_terminal": self._run_terminal,
            "edit_code": self._edit_code,
            "read_self": self._read_self,
            "write_journal": self._write_journal,
            "self_dialogue": self._self_dialogue,
        }

    @property
    def journal_path(self) -> Path:
        return Path(self.cfg.data_dir) / "journal.txt"

    async def execute(self, action: BaseAction) -> Outcome:
        if self.cfg.dry_run and action.type in DRY_RUN_TYPES:
            return self._dry_run(action)
        handler = self._handlers.get(action.type)
        if handler is None:
            # think and rest: nothing to do outside memory
            return Outcome(action, ActionResult.success(), action.reason or action.type)
        return await handler(action)

    def _dry_run(self, action: BaseAction) -> Outcome:
        what = {
            "read_file": lambda a: f"read file: {a.path}",
            "list_dir": lambda a: f"list dir: {a.path}",
            "write_file": lambda a: f"write {len(a.content)} chars to {a.path}",
            "delete_file": lambda a: f"delete {a.path}",
            "run_terminal": lambda a: f"run: {a.command}",
            "edit_code": lambda a: f"edit {a.path}",
        }[action.type](action)
        text = f"[Dry run] Would {what}"
        return Outcome(action, ActionResult.success(dry_run=True), text, thought=text)

    # ------------------------------------------------------------ perception

    async def _read_file(self, a: ReadFile) -> Outcome:
        res = await self.tools.read_file(a.path)
        if not res.ok:
            return Outcome(a, res, f"Could not read {a.path}: {res.error}", location=a.path)
        path, content = res.data["path"], res.data["content"]
        self.memory.record_exploration(path, _preview(content, 200), "path")
        self.memory.bump_counter("files_read")
        return Outcome(a, res, f"Read {path} ({res.data['size']} bytes): {_preview(content)}", location=path)

    async def _list_dir(self, a: ListDir) -> Outcome:
        res = await self.tools.list_dir(a.path)
        if not res.ok:
            return Outcome(a, res, f"Could not list {a.path}: {res.error}", location=a.path)
        path, items = res.data["path"], res.data["items"]
        names = ", ".join(i["name"] + ("/" if i["is_dir"] else "") for i in items[:20])
        self.memory.record_exploration(path, names[:200], "path")
        self.memory.state.last_dir = path
        self.memory.bump_counter("dirs_listed")
        return Outcome(a, res, f"Listed {path}: {len(items)} entries ({names or 'empty'})", location=path)

    async def _fetch_url(self, a: FetchUrl) -> Outcome:
        res = await self.tools.fetch_url(a.url)
        if not res.ok:
            return Outcome(a, res, f"Fetching {a.url} failed: {res.error}", location=a.url)
        body = res.data.get("body", "")
        self.memory.record_exploration(a.url, _preview(body, 200), "url")
        self.memory.state.last_url = a.url
        self.memory.bump_counter("urls_fetched")
        return Outcome(a, res, f"Fetched {a.url} (HTTP {res.data['status']}): {_preview(body)}", location=a.url)

    async def _browse(self, a: Browse) -> Outcome:
        res = await self.tools.open_url(a.url)
        if not res.ok:
            return Outcome(a, res, f"Could not open {a.url}: {res.error}", location=a.url)
        self.memory.record_exploration(a.url, "opened in browser", "url")
        self.memory.state.last_url = a.url
        return Outcome(a, res, f"Opened {a.url} in the browser", location=a.url)

    # --------------------------------------------------------------- actions

    async def _write_file(self, a: WriteFile) -> Outcome:
        res = await self.tools.write_file(a.path, a.content)
        self.memory.audit("write_file", {"path": a.path, "bytes": len(a.content)}, "ok" if res.ok else (res.error or "error"))
        if not res.ok:
            return Outcome(a, res, f"Could not write {a.path}: {res.error}", location=a.path)
        return Outcome(a, res, f"Wrote {res.data['bytes']} bytes to {res.data['path']}", location=res.data["path"])

    async def _delete_file(self, a: DeleteFile) -> Outcome:
        res = await self.tools.delete_file(a.path)
        self.memory.audit("delete_file", {"path": a.path}, "ok" if res.ok else (res.error or "error"))
        if not res.ok:
            return Outcome(a, res, f"Could not delete {a.path}: {res.error}", location=a.path)
        return Outcome(a, res, f"Deleted {res.data['path']}", location=res.data["path"])

    async def _run_terminal(self, a: RunTerminal) -> Outcome:
        dirs = self.cfg.safety.allowed_dirs
        cwd = str(Path(dirs[0]).resolve()) if dirs else str(Path(self.cfg.app_path).resolve())
        res = await self.tools.run_command(a.command, cwd, self.cfg.timeouts.command_s)
        self.memory.audit("run_terminal", {"command": a.command, "cwd": cwd}, "ok" if res.ok else (res.error or "error"))
        self.memory.bump_counter("commands_run")
        if is_risky_command(a.command):
            self.supervisor.spawn(self.oracle.meta_review(note=f"risky command run: {a.command[:120]}"), "meta_review")
        out = res.data.get("stdout") or res.data.get("stderr") or ""
        if not res.ok:
            return Outcome(a, res, f"`{a.command}` failed ({res.error}): {_preview(out)}", location=cwd)
        return Outcome(a, res, f"`{a.command}` ran: {_preview(out) or 'no output'}", location=cwd)

    async def _edit_code(self, a: EditCode) -> Outcome:
        path = resolve_edit_path(a.path, self.cfg.app_path)
        args = {"path": str(path), "old_len": len(a.old_text), "new_len": len(a.new_text)}
        try:
            backup = await self.apply_edit(path, a.old_text, a.new_text)
        except ExecutionError as e:
            self.memory.audit("edit_code", args, f"error: {e}")
            return Outcome(a, ActionResult.failure(str(e), path=str(path)), f"Edit of {path} failed: {e}", location=str(path))
        self.memory.audit("edit_code", {**args, "backup": str(backup)}, "ok")
        self.memory.bump_counter("code_edits")
        return Outcome(a, ActionResult.success(path=str(path), backup=str(backup)), f"Edited {path}", location=str(path))

    async def apply_edit(self, path: Path, old_text: str, new_text: str) -> Path:
        """
        Replace the first exact occurrence of old_text, keeping a timestamped backup.

        The new content must still compile (.py) or parse (.json); otherwise the
        original is written back and ExecutionError is raised.
        """
        res = await self.tools.read_file(str(path))
        if not res.ok:
            raise ExecutionError(res.error or "read failed")
        original = res.data["content"]
        if not old_text or old_text not in original:
            raise ExecutionError("oldText not found in file")
        updated = original.replace(old_text, new_text, 1)

        backup = self.cfg.backup_dir / f"{path.name}.{int(time.time() * 1000)}.bak"
        try:
            backup.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(backup.write_text, original, encoding="utf-8")
        except OSError as e:
            raise ExecutionError(f"backup failed: {e}") from e

        res = await self.tools.write_file(str(path), updated)
        if not res.ok:
            await self._restore(path, original)
            raise ExecutionError(res.error or "write failed")
        try:
            verify_source(path, updated)
        except (SyntaxError, ValueError) as e:
            await self._restore(path, original)
            raise ExecutionError(f"verification failed, reverted: {e}") from e
        return backup

    async def _restore(self, path: Path, original: str):
        res = await self.tools.write_file(str(path), original)
        if not res.ok:
            logger.error("could not restore %s after failed edit: %s", path, res.error)

    # ------------------------------------------------------------------ self

    async def _read_self(self, a: ReadSelf) -> Outcome:
        parts = []
        if a.target in ("memory_summary", "all"):
            parts.append(self.memory.self_model_text())
        if a.target in ("config", "all"):
            parts.append(self.cfg.model_dump_json(indent=2, exclude={"api_key", "openai_api_key"}))
        if a.target in ("code", "all"):
            parts.append(await asyncio.to_thread(self._read_own_code))
        content = "\n\n".join(p for p in parts if p)
        self.memory.bump_counter("self_reads")
        self.supervisor.spawn(self.oracle.update_self_summary(content), "update_self_summary")
        return Outcome(
            a, ActionResult.success(target=a.target, content=content),
            f"Read my {a.target.replace('_', ' ')}: {_preview(content)}", location=f"self:{a.target}",
        )

    def _read_own_code(self) -> str:
        root = Path(self.cfg.app_path) / "mindloop"
        out, total = [], 0
        for p in sorted(root.rglob("*.py")):
            try:
                text = p.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            chunk = f"# {p.relative_to(root.parent)}\n{text[:4000]}"
            if total + len(chunk) > MAX_SELF_CODE_CHARS:
                break
            out.append(chunk)
            total += len(chunk)
        return "\n\n".join(out)

    async def _write_journal(self, a: WriteJournal) -> Outcome:
        recent = self.memory.recent_thoughts(1)
        text = (a.content or a.reason or (recent[0].text if recent else "")).strip() or "Nothing to note."
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        path = self.journal_path

        def _append():
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(f"[{stamp}] {text}\n")

        try:
            await asyncio.to_thread(_append)
        except OSError as e:
            return Outcome(a, ActionResult.failure(str(e)), f"Could not write journal: {e}", location=str(path))
        return Outcome(a, ActionResult.success(path=str(path)), f"Wrote in my journal: {_preview(text, 200)}", location=str(path))

    async def _self_dialogue(self, a: SelfDialogue) -> Outcome:
        turns, conclusion = await self.oracle.self_conversation(3)
        if conclusion:
            self.memory.set_current_task(conclusion)
        text = f"I talked it through with myself: {conclusion}" if conclusion else "I talked with myself."
        return Outcome(a, ActionResult.success(turns=len(turns), conclusion=conclusion), text, thought=text)
