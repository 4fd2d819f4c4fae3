"""Data models for the Claudio bridge."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from claudio.core.events import AgentEventName

# ==================== JSON values ====================


class JsonValue:
    """Tagged union over decoded JSON (null, bool, number, string, array, object).

    Tool input from the agent is arbitrary JSON. Accessors return None when
    the value has a different shape instead of raising.
    """

    @staticmethod
    def parse(obj: object) -> "JsonValue":
        """Build a JsonValue tree from a decoded JSON object."""
        if obj is None:
            return JsonNull()
        # bool is a subclass of int; check it first.
        if isinstance(obj, bool):
            return JsonBool(obj)
        if isinstance(obj, (int, float)):
            return JsonNumber(obj)
        if isinstance(obj, str):
            return JsonString(obj)
        if isinstance(obj, Mapping):
            return JsonObject({str(k): JsonValue.parse(v) for k, v in obj.items()})
        if isinstance(obj, Sequence):
            return JsonArray(tuple(JsonValue.parse(item) for item in obj))
        raise ValueError(f"Unsupported JSON value: {type(obj).__name__}")

    def get(self, key: str) -> Optional["JsonValue"]:
        return None

    def as_str(self) -> Optional[str]:
        return None

    def as_number(self) -> Optional[int | float]:
        return None

    def as_bool(self) -> Optional[bool]:
        return None

    def to_python(self) -> object:
        raise NotImplementedError


@dataclass(frozen=True)
class JsonNull(JsonValue):
    def to_python(self) -> object:
        return None


@dataclass(frozen=True)
class JsonBool(JsonValue):
    value: bool

    def as_bool(self) -> Optional[bool]:
        return self.value

    def to_python(self) -> object:
        return self.value


@dataclass(frozen=True)
class JsonNumber(JsonValue):
    value: int | float

    def as_number(self) -> Optional[int | float]:
        return self.value

    def to_python(self) -> object:
        return self.value


@dataclass(frozen=True)
class JsonString(JsonValue):
    value: str

    def as_str(self) -> Optional[str]:
        return self.value

    def to_python(self) -> object:
        return self.value


@dataclass(frozen=True)
class JsonArray(JsonValue):
    items: tuple[JsonValue, ...]

    def to_python(self) -> object:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True)
class JsonObject(JsonValue):
    fields: dict[str, JsonValue]

    def get(self, key: str) -> Optional[JsonValue]:
        return self.fields.get(key)

    def to_python(self) -> object:
        return {key: value.to_python() for key, value in self.fields.items()}


# ==================== Agent events ====================


def _opt_str(payload: Mapping[str, object], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class AgentEvent:
    """One lifecycle/permission event posted by the agent's hook dispatcher."""

    event_name: AgentEventName
    session_id: Optional[str] = None
    transcript_path: Optional[str] = None
    working_dir: Optional[str] = None
    permission_mode: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Optional[JsonValue] = None
    message: Optional[str] = None
    title: Optional[str] = None
    notification_kind: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: object, default_name: Optional[AgentEventName] = None) -> "AgentEvent":
        """Decode a hook JSON body.

        Raises:
            ValueError: If the payload is not an object or names an unknown event.
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Hook payload must be a JSON object")

        raw_name = payload.get("hook_event_name")
        if isinstance(raw_name, str) and raw_name:
            event_name = AgentEventName(raw_name)
        elif default_name is not None:
            event_name = default_name
        else:
            raise ValueError("Hook payload has no hook_event_name")

        raw_input = payload.get("tool_input")
        tool_input = JsonValue.parse(raw_input) if raw_input is not None else None

        return cls(
            event_name=event_name,
            session_id=_opt_str(payload, "session_id"),
            transcript_path=_opt_str(payload, "transcript_path"),
            working_dir=_opt_str(payload, "cwd"),
            permission_mode=_opt_str(payload, "permission_mode"),
            tool_name=_opt_str(payload, "tool_name"),
            tool_input=tool_input,
            message=_opt_str(payload, "message"),
            title=_opt_str(payload, "title"),
            notification_kind=_opt_str(payload, "notification_type"),
        )


@dataclass(frozen=True)
class PermissionDecision:
    """Answer to a PermissionRequest hook."""

    behavior: str  # "allow" | "deny"
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "PermissionDecision":
        return cls(behavior="allow")

    @classmethod
    def deny(cls, message: str) -> "PermissionDecision":
        return cls(behavior="deny", message=message)

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"

    def to_hook_response(self) -> dict[str, object]:
        """Serialize in the agent's PermissionRequest hook output schema."""
        decision: dict[str, object] = {"behavior": self.behavior}
        if self.message is not None:
            decision["message"] = self.message
        return {
            "hookSpecificOutput": {
                "hookEventName": AgentEventName.PERMISSION_REQUEST.value,
                "decision": decision,
            }
        }


# ==================== Sessions ====================


@dataclass(frozen=True)
class ActiveSession:
    """One running interactive agent, as reported by the active-session source."""

    working_dir: str
    pid: int
    log_path: str = ""
    elapsed_seconds: int = 0
    cpu_percent: float = 0.0
    subagents: int = 0
    last_activity: Optional[float] = None  # epoch seconds of the last transcript write

    @property
    def display_name(self) -> str:
        return Path(self.working_dir).name or self.working_dir


@dataclass
class SlotMetrics:
    cpu_percent: float = 0.0
    elapsed_seconds: int = 0
    subagents: int = 0
    last_activity: Optional[float] = None


@dataclass
class SessionSlot:
    """A 1..9 number bound to one active working directory."""

    number: int
    display_name: str
    pid: int
    log_path: str
    working_dir: str
    metrics: SlotMetrics = field(default_factory=SlotMetrics)


# ==================== Tailing / injection ====================


@dataclass(frozen=True)
class WatchedLine:
    """One complete line appended to a watched file (line feed excluded)."""

    path: str
    data: bytes


@dataclass(frozen=True)
class InjectionResult:
    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> "InjectionResult":
        return cls(ok=True)

    @classmethod
    def failed(cls, reason: str) -> "InjectionResult":
        return cls(ok=False, reason=reason)
