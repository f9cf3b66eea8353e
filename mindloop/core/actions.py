from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

DEFAULT_INTERVAL_MS = 8000

ReadSelfTarget = Literal["memory_summary", "config", "code", "all"]


class BaseAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    next_interval_ms: int = Field(
        DEFAULT_INTERVAL_MS, validation_alias=AliasChoices("next_interval_ms", "nextIntervalMs")
    )
    reason: str = ""

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_text(cls, v):
        return "" if v is None else str(v).strip()[:500]


class ReadFile(BaseAction):
    type: Literal["read_file"] = "read_file"
    path: str


class ListDir(BaseAction):
    type: Literal["list_dir"] = "list_dir"
    path: str


class WriteFile(BaseAction):
    type: Literal["write_file"] = "write_file"
    path: str
    content: str = ""


class DeleteFile(BaseAction):
    type: Literal["delete_file"] = "delete_file"
    path: str


class FetchUrl(BaseAction):
    type: Literal["fetch_url"] = "fetch_url"
    url: str


class Browse(BaseAction):
    type: Literal["browse"] = "browse"
    url: str


class RunTerminal(BaseAction):
    type: Literal["run_terminal"] = "run_terminal"
    command: str


class EditCode(BaseAction):
    type: Literal["edit_code"] = "edit_code"
    path: str
    old_text: str = Field(validation_alias=AliasChoices("old_text", "oldText"))
    new_text: str = Field("", validation_alias=AliasChoices("new_text", "newText"))


class ReadSelf(BaseAction):
    type: Literal["read_self"] = "read_self"
    target: ReadSelfTarget = "memory_summary"

    @field_validator("target", mode="before")
    @classmethod
    def _known_target(cls, v):
        v = str(v or "").strip().lower()
        return v if v in {"memory_summary", "config", "code", "all"} else "memory_summary"


class WriteJournal(BaseAction):
    type: Literal["write_journal"] = "write_journal"
    content: Optional[str] = None


class Rest(BaseAction):
    type: Literal["rest"] = "rest"


class Think(BaseAction):
    type: Literal["think"] = "think"


class SelfDialogue(BaseAction):
    type: Literal["self_dialogue"] = "self_dialogue"
    topic: Optional[str] = None


Action = Annotated[
    Union[
        ReadFile, ListDir, WriteFile, DeleteFile, FetchUrl, Browse, RunTerminal,
        EditCode, ReadSelf, WriteJournal, Rest, Think, SelfDialogue,
    ],
    Field(discriminator="type"),
]

ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)

ACTION_TYPES = (
    "read_file", "list_dir", "write_file", "delete_file", "fetch_url", "browse", "run_terminal",
    "edit_code", "read_self", "write_journal", "rest", "think", "self_dialogue",
)

# actions with side effects outside memory
SIDE_EFFECTS = {"write_file", "delete_file", "edit_code", "run_terminal", "browse"}


def parse_action(data: dict) -> BaseAction:
    """Strict decode; raises pydantic.ValidationError."""
    return ACTION_ADAPTER.validate_python(data)


def think(reason: str, next_interval_ms: int = DEFAULT_INTERVAL_MS) -> Think:
    return Think(reason=reason, next_interval_ms=next_interval_ms)


def rest(reason: str, next_interval_ms: int = DEFAULT_INTERVAL_MS) -> Rest:
    return Rest(reason=reason, next_interval_ms=next_interval_ms)


def target_of(action: BaseAction) -> Optional[str]:
    """The thing an action points at, for episodes and audit entries."""
    for field in ("path", "url", "command", "target"):
        value = getattr(action, field, None)
        if value:
            return str(value)
    return None
