from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple
import re, json
from pydantic import ValidationError
from mindloop.core.actions import ACTION_TYPES, DEFAULT_INTERVAL_MS, BaseAction, parse_action, think

_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)
_THINK_BLOCK = re.compile(r"<(think|reasoning)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_THINK_OPEN = re.compile(r"<think[^>]*>[\s\S]*", re.IGNORECASE)
_THINK_CLOSE = re.compile(r"^[\s\S]*?</(?:think|reasoning)>", re.IGNORECASE)

_STR_FIELDS = ("path", "url", "command", "content", "oldText", "newText", "old_text", "new_text", "topic")


@dataclass
class ParseResult:
    action: Optional[BaseAction]
    recovered: bool = False
    error: Optional[str] = None


def strip_thought_tags(text: str) -> str:
    """Drop leaked chain-of-thought markup; keep only the answer."""
    if not isinstance(text, str):
        return ""
    s = _THINK_BLOCK.sub("", text.strip())
    s = _THINK_CLOSE.sub("", s)  # stray closing tag: everything before it was reasoning
    s = _THINK_OPEN.sub("", s)
    return s.strip()


def clean_reply(text: Optional[str]) -> str:
    return strip_thought_tags(_FENCE.sub("", text or "")).strip()


def extract_json_block(text: str) -> Any:
    candidates = re.findall(r"\{[\s\S]*\}", text)
    for c in reversed(candidates):
        try:
            return json.loads(c)
        except ValueError:
            continue
    return None


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort dict from a model reply; None if there is none."""
    raw = clean_reply(text)
    if not raw:
        return None
    try:
        obj = json.loads(raw)
    except ValueError:
        obj = extract_json_block(raw)
    return obj if isinstance(obj, dict) else None


def clamp_interval(value: Any, bounds: Tuple[int, int], default: int = DEFAULT_INTERVAL_MS) -> int:
    lo, hi = bounds
    try:
        ms = int(float(value))
    except (TypeError, ValueError):
        ms = default
    return max(lo, min(hi, ms))


def _unescape(s: str) -> str:
    try:
        return json.loads(f'"{s}"')
    except ValueError:
        return s.replace('\\"', '"')


def recover_fields(raw: str) -> Optional[Dict[str, Any]]:
    """Field-level recovery for truncated or malformed action JSON."""
    if not isinstance(raw, str) or '"type"' not in raw:
        return None
    out: Dict[str, Any] = {}
    m = re.search(r'"type"\s*:\s*"([^"]+)"', raw)
    out["type"] = m.group(1) if m else "think"
    m = re.search(r'"(?:nextIntervalMs|next_interval_ms)"\s*:\s*(\d+)', raw)
    if m:
        out["nextIntervalMs"] = int(m.group(1))
    for field in ("reason",) + _STR_FIELDS:
        m = re.search(r'"%s"\s*:\s*"((?:[^"\\]|\\.)*)"' % field, raw)
        if m:
            out[field] = _unescape(m.group(1))
    m = re.search(r'"target"\s*:\s*"([^"]+)"', raw)
    if m:
        out["target"] = m.group(1).lower()
    if "command" in out:
        out["command"] = out["command"].strip()
    return out


def _split_rationale(text: str) -> Tuple[str, str]:
    """First line is the rationale, the rest is the JSON payload."""
    brace = text.find("{")
    if brace < 0:
        return text.splitlines()[0].strip() if text else "", ""
    head = text[:brace].strip()
    rationale = head.splitlines()[0].strip() if head else ""
    rationale = rationale.strip("\"'").strip()[:300]
    return rationale, text[brace:].strip()


def parse_decision(
    text: Optional[str],
    bounds: Tuple[int, int],
    default_ms: int = DEFAULT_INTERVAL_MS,
) -> ParseResult:
    """
    Turn a raw oracle reply into exactly one action. Never raises.

    Unknown or missing types become think; a reply with no recoverable
    action at all gives ParseResult(None, ..., error).
    """
    raw = clean_reply(text)
    if not raw:
        return ParseResult(None, False, "empty response")
    rationale, payload = _split_rationale(raw)
    if not payload:
        return ParseResult(None, False, "no JSON object in response")

    recovered = False
    data: Any = None
    try:
        data = json.loads(payload)
    except ValueError:
        data = extract_json_block(payload)
    if not isinstance(data, dict):
        data = recover_fields(payload)
        recovered = True
    if not isinstance(data, dict):
        return ParseResult(None, True, "unparsable action JSON")

    data = dict(data)
    if data.get("type") not in ACTION_TYPES:
        recovered = recovered or "type" in data
        data["type"] = "think"
    interval = data.pop("nextIntervalMs", data.pop("next_interval_ms", None))
    data["next_interval_ms"] = clamp_interval(interval if interval is not None else default_ms, bounds, default_ms)
    data["reason"] = rationale or str(data.get("reason") or "").strip()

    try:
        return ParseResult(parse_action(data), recovered, None)
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][-1]) for err in e.errors()) or "fields"
        msg = f"{data['type']} is missing or has invalid {missing}"
        return ParseResult(think(data["reason"] or msg, data["next_interval_ms"]), True, msg)
