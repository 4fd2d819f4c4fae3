"""Mutable runtime settings with debounced YAML persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ruamel.yaml import YAML

from claudio.config.schema import BridgeConfig, NotificationPreferences

logger = logging.getLogger(__name__)

FLUSH_DELAY_S = 0.5


@dataclass
class SettingsPatch:
    """Typed patch payload for settings updates. All fields optional."""

    enabled: bool | None = None
    chat_id: int | None = None
    notifications: dict[str, bool] = field(default_factory=dict)


class RuntimeSettings:
    """In-memory mutable settings layer with debounced persistence to claudio.yml.

    The coordinator never writes the config file itself; toggles flipped from
    the chat or the UI go through `patch()` and land on disk here.
    """

    def __init__(self, config_path: Path, config: BridgeConfig) -> None:
        self._config_path = config_path
        self._config = config
        self._flush_task: asyncio.Task[None] | None = None
        self._yaml = YAML()
        self._yaml.preserve_quotes = True

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def chat_id(self) -> int | None:
        return self._config.telegram.chat_id

    @property
    def notifications(self) -> NotificationPreferences:
        return self._config.notifications

    def patch(self, updates: SettingsPatch) -> BridgeConfig:
        """Apply validated updates and schedule persistence.

        Raises:
            ValueError: If the patch contains no recognized fields.
        """
        applied = False

        if updates.enabled is not None:
            self._config.enabled = updates.enabled
            logger.info("Runtime enabled → %s", updates.enabled)
            applied = True

        if updates.chat_id is not None:
            self._config.telegram.chat_id = updates.chat_id
            logger.info("Runtime telegram.chat_id → %s", updates.chat_id)
            applied = True

        known = set(NotificationPreferences.model_fields)
        for key, value in updates.notifications.items():
            if key not in known:
                raise ValueError(f"Unknown notification category: {key}")
            setattr(self._config.notifications, key, value)
            logger.info("Runtime notifications.%s → %s", key, value)
            applied = True

        if not applied:
            raise ValueError("No mutable settings in patch")

        self._schedule_flush()
        return self._config

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running event loop (sync context); write immediately.
            self._write()
            return
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = loop.create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(FLUSH_DELAY_S)
        await self.flush()

    async def flush(self) -> None:
        """Write pending settings now."""
        await asyncio.to_thread(self._write)

    async def flush_pending(self) -> None:
        """Write immediately if a debounced flush is still waiting (used on shutdown)."""
        task = self._flush_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._flush_task = None
        await self.flush()

    def _write(self) -> None:
        """Round-trip claudio.yml preserving comments and formatting."""
        try:
            doc = self._yaml.load(self._config_path) if self._config_path.exists() else None
            if doc is None:
                doc = {}

            doc["enabled"] = self._config.enabled

            telegram_section = doc.get("telegram")
            if not isinstance(telegram_section, dict):
                telegram_section = {}
                doc["telegram"] = telegram_section
            if self._config.telegram.chat_id is not None:
                telegram_section["chat_id"] = self._config.telegram.chat_id

            notifications_section = doc.get("notifications")
            if not isinstance(notifications_section, dict):
                notifications_section = {}
                doc["notifications"] = notifications_section
            for key in NotificationPreferences.model_fields:
                notifications_section[key] = getattr(self._config.notifications, key)

            self._config_path.parent.mkdir(parents=True, exist_ok=True)
            self._yaml.dump(doc, self._config_path)
            logger.info("Settings flushed to %s", self._config_path)
        except Exception:
            logger.exception("Failed to flush settings to disk")
