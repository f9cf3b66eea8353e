from pathlib import Path
import json
import logging
from typing import Any, Dict, List

from .models import AuditEntry

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only JSONL record of side-effecting operations."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, entry: AuditEntry) -> bool:
        line = entry.model_dump_json()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("audit append failed: %s", e)
            return False
        return True

    def record(self, type: str, args: Dict[str, Any], outcome: str) -> bool:
        return self.append(AuditEntry(type=type, args=_jsonable(args), outcome=outcome))

    def read_all(self) -> List[AuditEntry]:
        if not self.path.exists():
            return []
        out = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(AuditEntry.model_validate_json(line))
                except ValueError:
                    # torn write at the end of the file
                    continue
        return out

    def tail(self, limit: int = 8) -> List[AuditEntry]:
        return self.read_all()[-limit:]


def _jsonable(args: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in (args or {}).items():
        if isinstance(v, str) and len(v) > 500:
            v = v[:500] + "...[truncated]"
        try:
            json.dumps(v)
        except TypeError:
            v = str(v)
        out[k] = v
    return out
