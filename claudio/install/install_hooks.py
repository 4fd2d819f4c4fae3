#!/usr/bin/env python3
"""Install/Update the bridge's HTTP hooks in the agent's settings file.

Bridge-owned entries are recognized by the hook server address embedded in
their `url` (or, for older command-style hooks, their `command`). Sync strips
every bridge entry and re-adds one entry per enabled event, so running it
twice with the same inputs leaves the file byte-identical. Everything else in
the settings file is preserved.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from claudio.config.schema import NotificationPreferences
from claudio.constants import DEFAULT_AGENT_SETTINGS_PATH, HOOK_SERVER_HOST, HOOK_SERVER_PORT, MAIN_MODULE
from claudio.core.events import HOOK_ROUTES, AgentEventName, HookRoute

logger = logging.getLogger(__name__)

HOOKS_KEY = "hooks"
MATCHER_KEY = "matcher"
MATCHER_ALL = "*"
MARKER_HOSTS = ("localhost", "127.0.0.1")


def _load_json_settings(path: Path) -> Optional[Dict[str, Any]]:
    """Read the settings file; a missing file is empty, invalid JSON is None."""
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return {}
    try:
        settings = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Not touching %s: invalid JSON (%s)", path, exc)
        return None
    if not isinstance(settings, dict):
        logger.warning("Not touching %s: top level is not an object", path)
        return None
    return settings


def _render(settings: Dict[str, Any]) -> str:
    return json.dumps(settings, indent=2, ensure_ascii=False) + "\n"


def _write_if_changed(path: Path, settings: Dict[str, Any]) -> bool:
    content = _render(settings)
    if path.exists() and path.read_text(encoding="utf-8") == content:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return True


def is_bridge_hook(hook: object, port: int) -> bool:
    """True if a hook definition points at the bridge listening on `port`."""
    if not isinstance(hook, dict):
        return False
    markers = [f"{host}:{port}" for host in MARKER_HOSTS]
    for key in ("url", "command"):
        value = hook.get(key)
        if isinstance(value, str) and any(marker in value for marker in markers):
            return True
    return False


def _is_bridge_entry(entry: object, port: int) -> bool:
    if not isinstance(entry, dict):
        return False
    hooks_list = entry.get(HOOKS_KEY)
    if not isinstance(hooks_list, list):
        return False
    return any(is_bridge_hook(hook, port) for hook in hooks_list)


def strip_bridge_hooks(hooks: Dict[str, Any], port: int) -> Dict[str, Any]:
    """Return `hooks` without bridge entries; event lists left empty are dropped."""
    stripped: Dict[str, Any] = {}
    for event, entries in hooks.items():
        if not isinstance(entries, list):
            stripped[event] = entries
            continue
        kept = [entry for entry in entries if not _is_bridge_entry(entry, port)]
        if kept or not entries:
            stripped[event] = kept
    return stripped


def hook_url(route: HookRoute, port: int, host: str = HOOK_SERVER_HOST) -> str:
    return f"http://{host}:{port}{route.path}"


def _bridge_entry(route: HookRoute, port: int) -> Dict[str, Any]:
    hook: Dict[str, Any] = {"type": "http", "url": hook_url(route, port)}
    if route.timeout is not None:
        hook["timeout"] = route.timeout
    return {MATCHER_KEY: MATCHER_ALL, HOOKS_KEY: [hook]}


def event_enabled(event: AgentEventName, preferences: NotificationPreferences) -> bool:
    """Whether any category routed through `event` is enabled."""
    if event is AgentEventName.PERMISSION_REQUEST:
        return preferences.permission_requests
    if event is AgentEventName.NOTIFICATION:
        return preferences.any_notification_enabled()
    if event is AgentEventName.STOP:
        return preferences.stop
    if event is AgentEventName.SESSION_START:
        return preferences.session_start
    return preferences.session_end


def enabled_routes(preferences: NotificationPreferences) -> list[HookRoute]:
    return [route for route in HOOK_ROUTES if event_enabled(route.event, preferences)]


def sync_hooks(settings_path: Path, port: int, preferences: NotificationPreferences) -> bool:
    """Make the bridge's hook entries match the enabled events.

    Returns:
        True if the settings file was rewritten.
    """
    settings = _load_json_settings(settings_path)
    if settings is None:
        return False

    existing = settings.get(HOOKS_KEY)
    hooks = strip_bridge_hooks(existing if isinstance(existing, dict) else {}, port)
    for route in enabled_routes(preferences):
        entries = hooks.get(route.event.value)
        if not isinstance(entries, list):
            entries = []
        entries.append(_bridge_entry(route, port))
        hooks[route.event.value] = entries

    if hooks:
        settings[HOOKS_KEY] = hooks
    else:
        settings.pop(HOOKS_KEY, None)

    changed = _write_if_changed(settings_path, settings)
    if changed:
        logger.info("Bridge hooks synced in %s (%d events)", settings_path, len(enabled_routes(preferences)))
    return changed


def uninstall_hooks(settings_path: Path, port: int) -> bool:
    """Remove every bridge entry; an emptied `hooks` map is removed too."""
    settings = _load_json_settings(settings_path)
    if settings is None or not settings_path.exists():
        return False

    existing = settings.get(HOOKS_KEY)
    if not isinstance(existing, dict):
        return False
    hooks = strip_bridge_hooks(existing, port)
    if hooks == existing:
        return False
    if hooks:
        settings[HOOKS_KEY] = hooks
    else:
        settings.pop(HOOKS_KEY, None)

    changed = _write_if_changed(settings_path, settings)
    if changed:
        logger.info("Bridge hooks removed from %s", settings_path)
    return changed


def hooks_installed(settings_path: Path, port: int, preferences: NotificationPreferences) -> bool:
    """True if every enabled event carries a bridge entry."""
    settings = _load_json_settings(settings_path)
    if not settings:
        return False
    hooks = settings.get(HOOKS_KEY)
    if not isinstance(hooks, dict):
        return False
    for route in enabled_routes(preferences):
        entries = hooks.get(route.event.value)
        if not isinstance(entries, list) or not any(_is_bridge_entry(entry, port) for entry in entries):
            return False
    return True


def main() -> None:
    from claudio.config import load_bridge_config

    parser = argparse.ArgumentParser(description="Install or remove the bridge's agent hooks.")
    parser.add_argument("--uninstall", action="store_true", help="remove bridge hooks instead of installing")
    parser.add_argument("--settings", help="agent settings file (default from claudio.yml)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    config = load_bridge_config()
    settings_path = Path(args.settings or config.hooks.agent_settings_path or DEFAULT_AGENT_SETTINGS_PATH)
    settings_path = settings_path.expanduser()
    port = config.hooks.port or HOOK_SERVER_PORT

    if args.uninstall:
        changed = uninstall_hooks(settings_path, port)
        print(f"Hooks {'removed from' if changed else 'already absent in'} {settings_path}")
    else:
        changed = sync_hooks(settings_path, port, config.notifications)
        print(f"Hooks {'configured in' if changed else 'already up to date in'} {settings_path}")


if __name__ == MAIN_MODULE:
    main()
