"""Bridge Coordinator - owns the services and routes events both ways.

Agent -> human: hook events, transcript lines and headless output are
formatted and sent to the bound chat. Human -> agent: chat commands and
button presses resolve permission requests, type into running sessions, or
drive the headless run.

Slot assignment, the pending routed message and hook-file writes are the
only shared mutable state; each is changed under its own asyncio lock.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from telegram.error import Forbidden, InvalidToken

from claudio.adapters.telegram_client import RemoteChatClient
from claudio.config.runtime_settings import RuntimeSettings, SettingsPatch
from claudio.config.schema import BridgeConfig, NotificationPreferences
from claudio.constants import IDLE_THRESHOLD_S, MAX_SLOTS
from claudio.core import formatting
from claudio.core.active_sessions import ActiveSessionSource, PsutilSessionSource, is_idle
from claudio.core.errors import AgentBinaryNotFoundError, BridgeNotConfiguredError
from claudio.core.events import AgentEventName, NotificationKind
from claudio.core.file_tailer import FileTailer
from claudio.core.formatting import escape_html, friendly_elapsed, slot_emoji
from claudio.core.input_injector import NO_TERMINAL, TTY_UNRESOLVED, InputInjector
from claudio.core.models import ActiveSession, AgentEvent, SessionSlot, SlotMetrics, WatchedLine
from claudio.core.subprocess_session import HeadlessExit, SubprocessSession
from claudio.core.subscriptions import Subscription
from claudio.hooks.event_server import EventServer, HookDelivery
from claudio.install import install_hooks

if TYPE_CHECKING:
    from telegram import CallbackQuery, Update

logger = logging.getLogger(__name__)

PERM_ALLOW_PREFIX = "perm_allow_"
PERM_DENY_PREFIX = "perm_deny_"
ROUTE_PREFIX = "route_"

ANSWER_APPROVED = "Approved"
ANSWER_DENIED = "Denied"
ANSWER_EXPIRED = "Expired"

HEADLESS_TAG = "\U0001f916 headless"
PICKER_PREVIEW_CHARS = 200
PICKER_BUTTONS_PER_ROW = 3

BOT_COMMANDS: list[tuple[str, str]] = [
    ("status", "Active sessions and headless run"),
    ("run", "Start a headless run: /run <project> <prompt>"),
    ("stop", "Stop the headless run"),
    ("notify", "Show or toggle notifications"),
    ("bridge", "Turn the bridge off: /bridge off"),
    ("help", "Show help"),
]

HELP_TEXT = (
    "Claudio bridge ready.\n\n"
    "/status - active sessions\n"
    "/1 msg, /2 msg ... - send to session\n"
    "/run &lt;project&gt; &lt;prompt&gt; - start a headless run\n"
    "/stop - stop the headless run\n"
    "/notify [category on|off] - notification toggles\n"
    "/bridge off - remove hooks and shut the bridge down\n"
    "Plain text goes to the headless run, the only session, or a session you pick."
)

_SLOT_COMMAND = re.compile(r"^/([1-9])(?:@\S+)?(?:\s+(.*))?$", re.DOTALL)

NOTIFICATION_PREFIXES = {
    NotificationKind.IDLE_PROMPT: "\U0001f928 {tag} — Waiting for input",
    NotificationKind.ELICITATION_DIALOG: "❓ {tag} — Question",
    NotificationKind.PERMISSION_PROMPT: "\U0001f512 {tag} — Permission needed",
}
DEFAULT_NOTIFICATION_PREFIX = "\U0001f514 {tag} — Notification"

LIFECYCLE_LINES = {
    AgentEventName.STOP: "⏸️ {tag} — Agent finished",
    AgentEventName.SESSION_START: "▶️ {tag} — Session started",
    AgentEventName.SESSION_END: "⏹️ {tag} — Session ended",
}


def parse_slot_command(text: str) -> Optional[tuple[int, str]]:
    """Parse "/3 hello" into (3, "hello"); a bare "/3" yields (3, "")."""
    match = _SLOT_COMMAND.match(text)
    if not match:
        return None
    return int(match.group(1)), (match.group(2) or "").strip()


def _command_name(text: str) -> str:
    """First word of a slash command without the leading slash or an @botname suffix."""
    first = text.split(maxsplit=1)[0]
    return first[1:].split("@", 1)[0].lower()


class Coordinator:  # pylint: disable=too-many-instance-attributes  # Owns every bridge service
    """Wires the five bridge services together and owns the slot table."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        settings: Optional[RuntimeSettings] = None,
        event_server: Optional[EventServer] = None,
        tailer: Optional[FileTailer] = None,
        headless: Optional[SubprocessSession] = None,
        injector: Optional[InputInjector] = None,
        chat: Optional[RemoteChatClient] = None,
        session_source: Optional[ActiveSessionSource] = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.event_server = event_server or EventServer(
            host=config.hooks.host,
            port=config.hooks.port,
            permission_timeout=config.hooks.permission_timeout,
        )
        self.tailer = tailer or FileTailer()
        self.headless = headless or SubprocessSession(
            binary_candidates=config.headless.binary_candidates,
            extra_args=config.headless.extra_args,
            stop_grace=config.headless.stop_grace,
        )
        self.injector = injector or InputInjector()
        self.chat = chat or RemoteChatClient(
            config.telegram.bot_token,
            config.telegram.chat_id,
            poll_timeout=config.telegram.poll_timeout,
            poll_backoff=config.telegram.poll_backoff,
            message_max_chars=config.telegram.message_max_chars,
        )
        self.session_source: ActiveSessionSource = session_source or PsutilSessionSource(
            process_name=config.sessions.process_name,
            projects_dir=config.sessions.projects_dir,
        )

        self.slots: list[SessionSlot] = []
        self._next_slot = 1
        self._pending_message: Optional[str] = None
        # Slot number -> working_dir as offered by the last picker.
        self._pending_targets: dict[int, str] = {}
        self._slot_lock = asyncio.Lock()
        self._hooks_lock = asyncio.Lock()

        self._subscriptions: list[Subscription] = []
        self._refresh_task: Optional[asyncio.Task[None]] = None
        self.running = False
        self.last_error: Optional[str] = None
        # Set once the bridge is switched off from the chat; the daemon exits on it.
        self.disabled = asyncio.Event()

    @property
    def preferences(self) -> NotificationPreferences:
        return self.config.notifications

    @property
    def pending_message(self) -> Optional[str]:
        return self._pending_message

    # ==================== Lifecycle ====================

    async def start(self) -> bool:
        """Validate the bot token and start every service.

        Returns:
            False if the token was rejected (see `last_error`).

        Raises:
            BridgeNotConfiguredError: If the bridge is disabled or has no token.
            TelegramError: If Telegram could not be reached; the caller decides whether to retry.
        """
        if self.running:
            return True
        if not self.config.enabled:
            if self.config.hooks.install_hooks and await self.uninstall_hooks():
                logger.info("Bridge disabled; removed its hooks from %s", self._agent_settings_path())
            raise BridgeNotConfiguredError("Bridge is disabled in claudio.yml")
        if not self.chat.is_configured:
            raise BridgeNotConfiguredError("Telegram bot token not configured")

        try:
            me = await self.chat.get_me()
        except (InvalidToken, Forbidden) as e:
            self.last_error = f"Telegram rejected the bot token: {e}"
            logger.error("%s", self.last_error)
            return False
        await self.chat.set_commands(BOT_COMMANDS)

        # Subscribe before starting so nothing emitted at startup is lost.
        self._subscriptions = [
            self.event_server.subscribe(self._on_hook_event),
            self.tailer.subscribe(self._on_watched_line),
            self.headless.subscribe_output(self._on_headless_output),
            self.headless.subscribe_exit(self._on_headless_exit),
        ]
        await self.event_server.start()
        await self.tailer.start()
        self.running = True
        await self.chat.start_polling(self._on_update)
        self._refresh_task = asyncio.create_task(self._refresh_loop())

        if self.config.hooks.install_hooks:
            await self.sync_hooks()

        self.last_error = None
        logger.info("Bridge started as @%s (chat=%s)", me.username, self.chat.chat_id)
        return True

    async def stop(self) -> None:
        """Stop every service; safe to call after a partial start."""
        self.running = False
        await self.chat.stop_polling()
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self.headless.stop()
        await self.event_server.stop()
        await self.tailer.stop()
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        if self.settings:
            await self.settings.flush_pending()
        await self.chat.close()
        logger.info("Bridge stopped")

    # ==================== Sessions / slots ====================

    async def _refresh_loop(self) -> None:
        while self.running:
            await self.refresh_sessions()
            await asyncio.sleep(self.config.sessions.refresh_interval)

    async def refresh_sessions(self) -> None:
        try:
            snapshot = await self.session_source.snapshot()
        except Exception as e:
            logger.error("Active session scan failed: %s", e, exc_info=True)
            return
        await self.update_active_sessions(snapshot)

    async def update_active_sessions(self, snapshot: Iterable[ActiveSession]) -> list[SessionSlot]:
        """Reconcile slots with a fresh snapshot of active sessions.

        Working directories that stay active keep their number; new ones take
        the next free number round-robin; directories that dropped out free
        their number. With more than nine directories the extras wait
        unslotted until a number frees up.
        """
        by_dir: dict[str, ActiveSession] = {}
        for session in snapshot:
            by_dir.setdefault(session.working_dir, session)

        async with self._slot_lock:
            kept: list[SessionSlot] = []
            for slot in self.slots:
                session = by_dir.get(slot.working_dir)
                if session is not None:
                    kept.append(_slot_for(slot.number, session))
                else:
                    logger.info("Slot %d (%s) released", slot.number, slot.display_name)

            taken = {slot.number for slot in kept}
            kept_dirs = {slot.working_dir for slot in kept}
            for working_dir, session in by_dir.items():
                if working_dir in kept_dirs:
                    continue
                number = self._claim_number(taken)
                if number is None:
                    logger.warning("All %d slots in use; %s stays unslotted", MAX_SLOTS, working_dir)
                    continue
                taken.add(number)
                kept.append(_slot_for(number, session))
                logger.info("Slot %d assigned to %s", number, working_dir)

            self.slots = sorted(kept, key=lambda slot: slot.number)
            slots = list(self.slots)

        if self.running:
            self._sync_watches(session.log_path for session in by_dir.values())
        return slots

    def _claim_number(self, taken: set[int]) -> Optional[int]:
        for offset in range(MAX_SLOTS):
            number = ((self._next_slot - 1 + offset) % MAX_SLOTS) + 1
            if number not in taken:
                self._next_slot = (number % MAX_SLOTS) + 1
                return number
        return None

    def _sync_watches(self, log_paths: Iterable[str]) -> None:
        active = {path for path in log_paths if path}
        watched = self.tailer.watched_paths
        for path in active - watched:
            self.tailer.watch(path)
        for path in watched - active:
            self.tailer.unwatch(path)

    def find_slot(self, number: int) -> Optional[SessionSlot]:
        return next((slot for slot in self.slots if slot.number == number), None)

    def _tag_for_dir(self, working_dir: Optional[str]) -> str:
        if not working_dir:
            return "<b>Unknown</b>"
        name = Path(working_dir).name or working_dir
        slot = next((s for s in self.slots if s.working_dir == working_dir), None) or next(
            (s for s in self.slots if s.display_name == name), None
        )
        if slot:
            return f"<b>{slot_emoji(slot.number)} {escape_html(slot.display_name)}</b>"
        return f"<b>{escape_html(name)}</b>"

    def _tag_for_log(self, log_path: str) -> str:
        slot = next((s for s in self.slots if s.log_path == log_path), None)
        if slot:
            return f"{slot_emoji(slot.number)} {escape_html(slot.display_name)}"
        return escape_html(Path(log_path).parent.name)

    # ==================== Agent -> human ====================

    async def _on_hook_event(self, delivery: HookDelivery) -> None:
        event = delivery.event
        tag = self._tag_for_dir(event.working_dir)

        if event.event_name is AgentEventName.PERMISSION_REQUEST:
            if delivery.approval_id is not None:
                await self._send_permission_request(event, delivery.approval_id, tag)
            return

        if event.event_name is AgentEventName.NOTIFICATION:
            if not self.preferences.notification_enabled(event.notification_kind):
                return
            prefix = NOTIFICATION_PREFIXES.get(event.notification_kind or "", DEFAULT_NOTIFICATION_PREFIX)
            body = "\n".join(part for part in (event.title, event.message) if part)
            await self.chat.send(f"{prefix.format(tag=tag)}\n{escape_html(body)}")
            return

        if not self._lifecycle_enabled(event.event_name):
            return
        line = LIFECYCLE_LINES.get(event.event_name)
        if line:
            await self.chat.send(line.format(tag=tag))

    def _lifecycle_enabled(self, event_name: AgentEventName) -> bool:
        prefs = self.preferences
        if event_name is AgentEventName.STOP:
            return prefs.stop
        if event_name is AgentEventName.SESSION_START:
            return prefs.session_start
        if event_name is AgentEventName.SESSION_END:
            return prefs.session_end
        return False

    async def _send_permission_request(self, event: AgentEvent, approval_id: str, tag: str) -> None:
        tool = escape_html(event.tool_name or "Unknown")
        summary = formatting.format_tool_input(event.tool_input)
        text = f"\U0001f6a8 {tag} — Permission Request\nTool: <code>{tool}</code>"
        if summary:
            text += f"\n{summary}"
        buttons = [[("Approve", f"{PERM_ALLOW_PREFIX}{approval_id}"), ("Deny", f"{PERM_DENY_PREFIX}{approval_id}")]]
        if not await self.chat.send(text, buttons):
            logger.warning("Permission request %s not delivered; it will time out", approval_id)

    async def _on_watched_line(self, line: WatchedLine) -> None:
        if not self.preferences.transcript:
            return
        record = formatting.decode_record(line.data)
        if record is None:
            return
        preview = formatting.transcript_preview(record)
        if preview is None:
            return
        await self.chat.send(f"<b>{self._tag_for_log(line.path)}</b>\n{escape_html(preview)}")

    async def _on_headless_output(self, text: str) -> None:
        record = formatting.decode_record(text)
        if record is None:
            logger.debug("Non-JSON headless output: %s", text[:80])
            return
        if record.get("type") == "result":
            failed = bool(record.get("is_error"))
            outcome = "Run failed" if failed else "Run complete"
            detail = record.get("subtype") if failed else None
            suffix = f" ({escape_html(str(detail))})" if detail else ""
            await self.chat.send(f"<b>{HEADLESS_TAG}</b> — {outcome}{suffix}")
            return
        preview = formatting.transcript_preview(record)
        if preview is not None:
            await self.chat.send(f"<b>{HEADLESS_TAG}</b>\n{escape_html(preview)}")

    async def _on_headless_exit(self, exit_info: HeadlessExit) -> None:
        name = escape_html(Path(exit_info.working_dir).name)
        await self.chat.send(f"Headless run finished in <b>{name}</b> (exit code {exit_info.returncode})")

    # ==================== Human -> agent ====================

    async def _on_update(self, update: "Update") -> None:
        message = update.message
        if message is not None:
            chat_id = message.chat.id
            if self.chat.chat_id is None:
                await self._bind_chat(chat_id)
                return
            if chat_id != self.chat.chat_id:
                logger.warning("Ignoring message from unbound chat %s", chat_id)
                return
            if message.text:
                await self.handle_text(message.text)
            return

        callback = update.callback_query
        if callback is not None:
            origin = callback.message.chat.id if callback.message is not None else None
            if origin is not None and origin != self.chat.chat_id:
                logger.warning("Ignoring callback from unbound chat %s", origin)
                return
            await self.handle_callback(callback)

    async def _bind_chat(self, chat_id: int) -> None:
        self.chat.set_chat_id(chat_id)
        self.config.telegram.chat_id = chat_id
        if self.settings:
            self.settings.patch(SettingsPatch(chat_id=chat_id))
        logger.info("Bound to chat %s", chat_id)
        await self.chat.send(f"Connected. Chat ID: <code>{chat_id}</code>")

    async def handle_text(self, text: str) -> None:
        text = text.strip()
        if not text:
            return

        slot_command = parse_slot_command(text)
        if slot_command is not None:
            number, message = slot_command
            if not message:
                await self.chat.send(f"Usage: /{number} &lt;message&gt;")
                return
            await self._send_to_slot_number(number, message)
            return

        if not text.startswith("/"):
            await self._route_bare_text(text)
            return

        command = _command_name(text)
        if command in ("start", "help"):
            await self.chat.send(HELP_TEXT)
        elif command == "status":
            await self.chat.send(self.render_status())
        elif command == "run":
            await self._handle_run(text)
        elif command == "stop":
            await self._handle_stop()
        elif command == "notify":
            await self._handle_notify(text)
        elif command == "bridge":
            await self._handle_bridge(text)
        else:
            await self.chat.send("Unknown command. Send /help for usage.")

    async def _send_to_slot_number(self, number: int, message: str) -> None:
        slot = self.find_slot(number)
        if slot is None:
            await self.chat.send(f"Session {number} not found")
            return
        await self._deliver_to_slot(slot, message)

    async def _deliver_to_slot(self, slot: SessionSlot, message: str) -> None:
        if not slot.pid:
            await self.chat.send(f"Session {slot.number} has no active process")
            return
        result = await self.injector.inject(message, slot.pid)
        name = escape_html(slot.display_name)
        if result.ok:
            await self.chat.send(f"Sent to {slot_emoji(slot.number)} {name}")
            return
        reply = f"Failed: {escape_html(result.reason)}"
        if result.reason.startswith((TTY_UNRESOLVED, NO_TERMINAL)):
            reply += f"\nUse /run {name} &lt;prompt&gt; to start a headless run instead."
        await self.chat.send(reply)

    async def _route_bare_text(self, text: str) -> None:
        """Deliver plain text: headless run first, then the only slot, else ask."""
        if self.headless.has_active_session:
            if not await self.headless.send_input(text):
                await self.chat.send("Failed: headless run is not accepting input")
            return

        slots = list(self.slots)
        if not slots:
            await self.chat.send("No active sessions")
            return
        if len(slots) == 1:
            await self._deliver_to_slot(slots[0], text)
            return

        async with self._slot_lock:
            self._pending_message = text
            self._pending_targets = {slot.number: slot.working_dir for slot in slots}
        buttons = [
            [(f"{slot_emoji(slot.number)} {slot.display_name}", f"{ROUTE_PREFIX}{slot.number}") for slot in row]
            for row in _chunks(slots, PICKER_BUTTONS_PER_ROW)
        ]
        preview = escape_html(formatting.truncate(text, PICKER_PREVIEW_CHARS))
        await self.chat.send(f"Send to which session?\n<i>{preview}</i>", buttons)

    async def handle_callback(self, callback: "CallbackQuery") -> None:
        data = callback.data or ""

        if data.startswith(PERM_ALLOW_PREFIX) or data.startswith(PERM_DENY_PREFIX):
            allow = data.startswith(PERM_ALLOW_PREFIX)
            approval_id = data[len(PERM_ALLOW_PREFIX if allow else PERM_DENY_PREFIX) :]
            settled = self.event_server.resolve(approval_id, allow)
            answer = (ANSWER_APPROVED if allow else ANSWER_DENIED) if settled else ANSWER_EXPIRED
            await self.chat.answer_callback(callback.id, answer)
            await self._clear_buttons(callback)
            return

        if data.startswith(ROUTE_PREFIX):
            slot: Optional[SessionSlot] = None
            message: Optional[str] = None
            number_text = data[len(ROUTE_PREFIX) :]
            async with self._slot_lock:
                if number_text.isdigit():
                    slot = self.find_slot(int(number_text))
                if slot is not None and self._pending_targets.get(slot.number) != slot.working_dir:
                    slot = None
                if slot is not None and self._pending_message is not None:
                    message = self._pending_message
                    self._pending_message = None
                    self._pending_targets = {}
            if slot is None or message is None:
                await self.chat.answer_callback(callback.id, ANSWER_EXPIRED)
                return
            await self.chat.answer_callback(callback.id)
            await self._clear_buttons(callback)
            await self._deliver_to_slot(slot, message)
            return

        await self.chat.answer_callback(callback.id, ANSWER_EXPIRED)

    async def _clear_buttons(self, callback: "CallbackQuery") -> None:
        message = callback.message
        if message is not None:
            await self.chat.edit_buttons(message.chat.id, message.message_id)

    # ==================== Commands ====================

    def render_status(self) -> str:
        lines = ["<b>Claudio Bridge</b>\n"]
        if not self.slots:
            lines.append("No active sessions")
        for slot in self.slots:
            metrics = slot.metrics
            state = "idle" if is_idle(metrics.last_activity, IDLE_THRESHOLD_S) else "active"
            parts = [
                f"{slot_emoji(slot.number)} {escape_html(slot.display_name)}",
                friendly_elapsed(metrics.elapsed_seconds),
                state,
                f"cpu {metrics.cpu_percent:.0f}%",
            ]
            if metrics.subagents:
                parts.append(f"{metrics.subagents} subagents")
            lines.append(" · ".join(parts))

        working_dir = self.headless.active_working_dir
        if working_dir:
            lines.append(f"\n{HEADLESS_TAG}: running in <code>{escape_html(working_dir)}</code>")
        else:
            lines.append(f"\n{HEADLESS_TAG}: idle")
        if self.config.hooks.install_hooks:
            lines.append(f"Hooks: {'installed' if self.hooks_installed() else 'missing'}")
        return "\n".join(lines)

    def resolve_project(self, name: str) -> Optional[str]:
        """Working directory for a slot name, an absolute path, or a name under `headless.project_dirs`."""
        for slot in self.slots:
            if slot.display_name == name:
                return slot.working_dir
        lowered = name.lower()
        for slot in self.slots:
            if slot.display_name.lower() == lowered:
                return slot.working_dir

        expanded = os.path.expanduser(name)
        if os.path.isabs(expanded):
            return expanded if os.path.isdir(expanded) else None

        for base in self.config.headless.project_dirs:
            candidate = os.path.join(os.path.expanduser(base), name)
            if os.path.isdir(candidate):
                return candidate
        return None

    async def _handle_run(self, text: str) -> None:
        parts = text.split(maxsplit=2)
        if len(parts) < 3:
            await self.chat.send("Usage: /run &lt;project&gt; &lt;prompt&gt;")
            return
        project, prompt = parts[1], parts[2]
        working_dir = self.resolve_project(project)
        if working_dir is None:
            await self.chat.send(f"Project <b>{escape_html(project)}</b> not found")
            return

        try:
            await self.headless.start(working_dir, prompt)
        except AgentBinaryNotFoundError as e:
            await self.chat.send(
                f"Failed: {escape_html(str(e))}\n"
                "Install the Claude Code CLI or add its path to headless.binary_candidates in claudio.yml."
            )
            return
        except OSError as e:
            logger.error("Headless run failed to start in %s: %s", working_dir, e)
            await self.chat.send(f"Failed to start headless run: {escape_html(str(e))}")
            return
        name = escape_html(Path(working_dir).name)
        await self.chat.send(f"<b>{HEADLESS_TAG}</b> started in <b>{name}</b>")

    async def _handle_stop(self) -> None:
        if not self.headless.has_active_session:
            await self.chat.send("No headless run active")
            return
        await self.headless.stop()
        await self.chat.send("Headless run stopped")

    async def _handle_notify(self, text: str) -> None:
        parts = text.split()
        if len(parts) == 1:
            await self.chat.send(self.render_notifications())
            return
        if len(parts) != 3 or parts[2].lower() not in ("on", "off"):
            await self.chat.send("Usage: /notify &lt;category&gt; on|off")
            return
        category, enabled = parts[1], parts[2].lower() == "on"
        try:
            await self.update_notifications({category: enabled})
        except ValueError as e:
            await self.chat.send(escape_html(str(e)))
            return
        await self.chat.send(f"{escape_html(category)}: {'on' if enabled else 'off'}")

    def render_notifications(self) -> str:
        lines = ["<b>Notifications</b>"]
        for key in NotificationPreferences.model_fields:
            lines.append(f"{key}: {'on' if getattr(self.preferences, key) else 'off'}")
        return "\n".join(lines)

    async def update_notifications(self, toggles: dict[str, bool]) -> None:
        """Apply notification toggles, persist them, and re-sync hooks.

        Raises:
            ValueError: If a category is unknown.
        """
        known = set(NotificationPreferences.model_fields)
        for key in toggles:
            if key not in known:
                raise ValueError(f"Unknown notification category: {key}")
        if self.settings:
            self.settings.patch(SettingsPatch(notifications=dict(toggles)))
        else:
            for key, value in toggles.items():
                setattr(self.config.notifications, key, value)
        if self.running and self.config.hooks.install_hooks:
            await self.sync_hooks()

    async def _handle_bridge(self, text: str) -> None:
        parts = text.split()
        if len(parts) != 2 or parts[1].lower() != "off":
            await self.chat.send("Usage: /bridge off")
            return
        removed = await self.disable()
        reply = "Bridge disabled"
        if removed:
            reply += "; hooks removed"
        await self.chat.send(f"{reply}. Set enabled: true in claudio.yml and restart to turn it back on.")
        self.disabled.set()

    async def disable(self) -> bool:
        """Persist `enabled: false` and strip this bridge's hooks.

        Returns:
            True if hook entries were removed from the agent settings.
        """
        if self.settings:
            self.settings.patch(SettingsPatch(enabled=False))
        else:
            self.config.enabled = False
        removed = await self.uninstall_hooks()
        logger.info("Bridge disabled (hooks removed: %s)", removed)
        return removed

    # ==================== Hook registration ====================

    def _agent_settings_path(self) -> Path:
        return Path(self.config.hooks.agent_settings_path).expanduser()

    async def sync_hooks(self) -> bool:
        async with self._hooks_lock:
            return await asyncio.to_thread(
                install_hooks.sync_hooks, self._agent_settings_path(), self.config.hooks.port, self.preferences
            )

    async def uninstall_hooks(self) -> bool:
        async with self._hooks_lock:
            return await asyncio.to_thread(
                install_hooks.uninstall_hooks, self._agent_settings_path(), self.config.hooks.port
            )

    def hooks_installed(self) -> bool:
        return install_hooks.hooks_installed(self._agent_settings_path(), self.config.hooks.port, self.preferences)


def _slot_for(number: int, session: ActiveSession) -> SessionSlot:
    return SessionSlot(
        number=number,
        display_name=session.display_name,
        pid=session.pid,
        log_path=session.log_path,
        working_dir=session.working_dir,
        metrics=SlotMetrics(
            cpu_percent=session.cpu_percent,
            elapsed_seconds=session.elapsed_seconds,
            subagents=session.subagents,
            last_activity=session.last_activity,
        ),
    )


def _chunks(items: Sequence[SessionSlot], size: int) -> list[Sequence[SessionSlot]]:
    return [items[i : i + size] for i in range(0, len(items), size)]
