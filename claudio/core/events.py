"""Agent hook events and the HTTP routes they arrive on.

Provides type-safe event definitions shared by the hook server, the hook
installer and the coordinator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from claudio.constants import HOOK_PERMISSION_TIMEOUT_S


class AgentEventName(str, Enum):
    """Hook events the agent posts to the bridge."""

    PERMISSION_REQUEST = "PermissionRequest"
    NOTIFICATION = "Notification"
    STOP = "Stop"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"


class NotificationKind:
    """Known `notification_type` values carried by Notification events."""

    IDLE_PROMPT = "idle_prompt"
    ELICITATION_DIALOG = "elicitation_dialog"
    PERMISSION_PROMPT = "permission_prompt"


@dataclass(frozen=True)
class HookRoute:
    """One hook event, the path it is posted to, and its agent-side timeout."""

    event: AgentEventName
    path: str
    timeout: Optional[int] = None

    @property
    def blocking(self) -> bool:
        return self.event is AgentEventName.PERMISSION_REQUEST


PERMISSION_PATH = "/hook/permission"

HOOK_ROUTES: tuple[HookRoute, ...] = (
    HookRoute(AgentEventName.PERMISSION_REQUEST, PERMISSION_PATH, HOOK_PERMISSION_TIMEOUT_S),
    HookRoute(AgentEventName.NOTIFICATION, "/hook/notification"),
    HookRoute(AgentEventName.STOP, "/hook/stop"),
    HookRoute(AgentEventName.SESSION_START, "/hook/session-start"),
    HookRoute(AgentEventName.SESSION_END, "/hook/session-end"),
)

ROUTES_BY_PATH: dict[str, HookRoute] = {route.path: route for route in HOOK_ROUTES}
