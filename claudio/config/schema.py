from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from claudio.constants import (
    DEFAULT_AGENT_PROJECTS_DIR,
    DEFAULT_AGENT_SETTINGS_PATH,
    HEADLESS_STOP_GRACE_S,
    HOOK_SERVER_HOST,
    HOOK_SERVER_PORT,
    PERMISSION_WAIT_TIMEOUT_S,
    SESSION_REFRESH_INTERVAL_S,
    TELEGRAM_MESSAGE_MAX_CHARS,
    TELEGRAM_POLL_BACKOFF_S,
    TELEGRAM_POLL_TIMEOUT_S,
)

DEFAULT_BINARY_CANDIDATES = [
    "~/.local/bin/claude",
    "/usr/local/bin/claude",
    "~/.claude/local/claude",
    "/opt/homebrew/bin/claude",
]


class TelegramConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    bot_token: str = ""
    chat_id: Optional[int] = None  # Learned from the first inbound message when unset
    poll_timeout: int = Field(default=TELEGRAM_POLL_TIMEOUT_S, ge=1, le=50)
    poll_backoff: float = Field(default=TELEGRAM_POLL_BACKOFF_S, gt=0)
    message_max_chars: int = Field(default=TELEGRAM_MESSAGE_MAX_CHARS, ge=100, le=4096)


class HookServerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    host: str = HOOK_SERVER_HOST
    port: int = Field(default=HOOK_SERVER_PORT, ge=1, le=65535)
    permission_timeout: float = Field(default=PERMISSION_WAIT_TIMEOUT_S, gt=0)
    install_hooks: bool = True
    agent_settings_path: str = DEFAULT_AGENT_SETTINGS_PATH


class NotificationPreferences(BaseModel):
    """Per-category toggles for what gets forwarded to the chat."""

    model_config = ConfigDict(extra="allow")
    permission_requests: bool = True
    idle_prompt: bool = True
    elicitation_dialog: bool = True
    permission_prompt: bool = True
    other_notifications: bool = True
    stop: bool = True
    session_start: bool = True
    session_end: bool = True
    transcript: bool = True

    def notification_enabled(self, kind: Optional[str]) -> bool:
        """Return whether a Notification of the given kind should be forwarded."""
        if kind == "idle_prompt":
            return self.idle_prompt
        if kind == "elicitation_dialog":
            return self.elicitation_dialog
        if kind == "permission_prompt":
            return self.permission_prompt
        return self.other_notifications

    def any_notification_enabled(self) -> bool:
        return any(
            (self.idle_prompt, self.elicitation_dialog, self.permission_prompt, self.other_notifications)
        )


class HeadlessConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    binary_candidates: List[str] = Field(default_factory=lambda: list(DEFAULT_BINARY_CANDIDATES))
    extra_args: List[str] = Field(default_factory=lambda: ["--verbose"])
    project_dirs: List[str] = []
    stop_grace: float = Field(default=HEADLESS_STOP_GRACE_S, gt=0)


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    refresh_interval: float = Field(default=SESSION_REFRESH_INTERVAL_S, gt=0)
    projects_dir: str = DEFAULT_AGENT_PROJECTS_DIR
    process_name: str = "claude"


class BridgeConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    enabled: bool = True
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    hooks: HookServerConfig = Field(default_factory=HookServerConfig)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    headless: HeadlessConfig = Field(default_factory=HeadlessConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
