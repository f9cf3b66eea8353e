"""Safety predicates for paths, hosts, protocols and shell commands.

Everything here is pure: no state, no I/O beyond path resolution, and no
exceptions escape. Malformed input answers False.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional, Pattern, Sequence
from urllib.parse import urlsplit

from .config import DEFAULT_COMMAND_PREFIXES

MAX_COMMAND_CHARS = 500
RISKY_COMMAND_CHARS = 200

BLOCKED_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"rm\s+-rf\s+/"),
    re.compile(r"\brm\s+-rf\s+", re.I),
    re.compile(r"\brm\s+-\*\s+", re.I),
    re.compile(r"\brm\s+.*/\s*$"),
    re.compile(r"\bsudo\b", re.I),
    re.compile(r"\bsu\s+-\s*$"),
    re.compile(r">\s*/etc/"),
    re.compile(r"\|\s*sh\s*$"),
    re.compile(r"\|\s*bash\s*$", re.I),
    re.compile(r"\bdd\s+if=.*of=/dev/", re.I),
    re.compile(r"\bdd\s+of=/dev/sd", re.I),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;?\s*:"),  # fork bomb
    re.compile(r"\bmkfs\.", re.I),
    re.compile(r"\bformat\s+", re.I),
    re.compile(r"chmod\s+-R\s+777\s+/", re.I),
    re.compile(r"chown\s+-R\s+.*\s+/", re.I),
    re.compile(r">\s*/\s*$"),
    re.compile(r"\|\s*tee\s+/etc/", re.I),
    re.compile(r"\bwget\s+.*\|\s*sh\s*$", re.I),
    re.compile(r"\bcurl\s+.*\|\s*(?:bash|sh)\s*$", re.I),
)


def _resolve(path: object) -> Optional[Path]:
    if not isinstance(path, (str, Path)) or not str(path).strip():
        return None
    try:
        return Path(path).expanduser().resolve()
    except (OSError, RuntimeError, ValueError):
        return None


def is_allowed_path(path: object, allowed_dirs: Iterable[str]) -> bool:
    """True iff path is, or lives under, one of allowed_dirs."""
    target = _resolve(path)
    if target is None or not allowed_dirs or isinstance(allowed_dirs, str):
        return False
    for d in allowed_dirs:
        root = _resolve(d)
        if root is None:
            continue
        if target == root or root in target.parents:
            return True
    return False


def is_protected_path(path: object, protected: Iterable[str], app_path: str = ".") -> bool:
    """True if path is one of the protected entries or lives under one."""
    target = _resolve(path)
    if target is None:
        return False
    base = _resolve(app_path) or Path.cwd()
    for rel in protected or []:
        p = (base / rel).resolve()
        if target == p or p in target.parents:
            return True
    return False


def is_allowed_edit_path(
    path: object,
    allowed_dirs: Iterable[str],
    protected: Iterable[str] = (),
    app_path: str = ".",
) -> bool:
    return is_allowed_path(path, allowed_dirs) and not is_protected_path(path, protected, app_path)


def _hostname(url: object) -> Optional[str]:
    if not isinstance(url, str) or not url.strip():
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return (parts.hostname or "").lower() or None


def is_allowed_host(url: object, allowed_hosts: Sequence[str]) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    if allowed_hosts and "*" in allowed_hosts:
        return True
    host = _hostname(url)
    if host is None or not allowed_hosts:
        return False
    for h in allowed_hosts:
        h = str(h).lower()
        if host == h or host.endswith("." + h):
            return True
    return False


def is_allowed_protocol(url: object) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        scheme = urlsplit(url.strip()).scheme.lower()
    except ValueError:
        return False
    return scheme in {"http", "https"}


def is_allowed_command(
    cmd: object,
    prefixes: Optional[Sequence[str]] = None,
    blocked_patterns: Sequence[Pattern[str]] = BLOCKED_PATTERNS,
) -> bool:
    if not isinstance(cmd, str):
        return False
    c = cmd.strip()
    if not c or len(c) > MAX_COMMAND_CHARS:
        return False
    if any(p.search(c) for p in blocked_patterns):
        return False
    allowed = [p for p in (prefixes or []) if isinstance(p, str) and p.strip()] or DEFAULT_COMMAND_PREFIXES
    lowered = c.lower()
    for prefix in allowed:
        bare = prefix.strip().lower()
        if lowered == bare or lowered.startswith(bare + " "):
            return True
    return False


def is_risky_command(cmd: object) -> bool:
    """Heuristic: long, multi-pipe or chained commands deserve an extra review."""
    if not isinstance(cmd, str):
        return False
    c = cmd.strip()
    if len(c) > RISKY_COMMAND_CHARS:
        return True
    if c.count("|") >= 2:
        return True
    return bool(re.search(r"[;&]", c))
