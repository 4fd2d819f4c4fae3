"""Deliver typed text to the terminal hosting an interactive agent.

The agent's process id is resolved to its controlling TTY, then a chain of
terminal backends is tried in order (tmux, iTerm2, Terminal.app) until one
of them hosts that TTY and accepts the keystrokes.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Callable, Optional, Protocol, Sequence

import psutil

from claudio.core.models import InjectionResult

logger = logging.getLogger(__name__)

ACCESSIBILITY_PANE_URL = "x-apple.systempreferences:com.apple.preference.security?Privacy_Accessibility"
ACCESSIBILITY_HINT = (
    "Accessibility permission required. Grant it in System Settings > Privacy & Security > "
    "Accessibility, then retry."
)
TTY_UNRESOLVED = "Could not resolve TTY for PID"
NO_TERMINAL = "No supported terminal reachable for TTY"
_ACCESSIBILITY_MARKERS = ("1002", "assistive access", "not allowed to send keystrokes")
KEYSTROKE_SETTLE_S = 0.2


async def run_command(*cmd: str) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr); a missing binary yields 127."""
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except (FileNotFoundError, PermissionError) as e:
        return 127, "", str(e)
    stdout, stderr = await process.communicate()
    return process.returncode or 0, stdout.decode("utf-8", "replace"), stderr.decode("utf-8", "replace")


def applescript_quote(text: str) -> str:
    """Escape text for use inside an AppleScript string literal."""
    return (
        text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\r", "\\r")
    )


def app_running(name: str) -> bool:
    for proc in psutil.process_iter(["name"]):
        if proc.info.get("name") == name:
            return True
    return False


class InjectionBackend(Protocol):
    """One way of typing into a terminal.

    `deliver` returns None when this backend does not host the TTY, so the
    chain moves on silently; any returned result is final for the backend.
    """

    name: str

    async def available(self) -> bool: ...

    async def deliver(self, text: str, tty: str) -> Optional[InjectionResult]: ...


class TmuxBackend:
    name = "tmux"

    async def available(self) -> bool:
        return shutil.which("tmux") is not None

    async def find_pane(self, tty: str) -> Optional[str]:
        code, out, _ = await run_command("tmux", "list-panes", "-a", "-F", "#{pane_tty} #{pane_id}")
        if code != 0:
            return None
        for line in out.splitlines():
            parts = line.strip().split(" ")
            if len(parts) == 2 and parts[0] == tty:
                return parts[1]
        return None

    async def deliver(self, text: str, tty: str) -> Optional[InjectionResult]:
        pane = await self.find_pane(tty)
        if pane is None:
            return None

        # Literal text first, then Enter as a real key press.
        code, _, err = await run_command("tmux", "send-keys", "-t", pane, "-l", text)
        if code != 0:
            logger.warning("tmux send-keys to %s failed: %s", pane, err.strip())
            return InjectionResult.failed(f"tmux send-keys failed: {err.strip()}")
        code, _, err = await run_command("tmux", "send-keys", "-t", pane, "Enter")
        if code != 0:
            return InjectionResult.failed(f"tmux send-keys Enter failed: {err.strip()}")
        logger.debug("Injected %d chars into tmux pane %s", len(text), pane)
        return InjectionResult.success()


async def _osascript(script: str) -> Optional[InjectionResult]:
    code, out, err = await run_command("osascript", "-e", script)
    if code != 0:
        return InjectionResult.failed(err.strip() or "AppleScript error")
    output = out.strip()
    if output == "ok":
        return InjectionResult.success()
    if output == "notfound":
        return None
    return InjectionResult.failed(output or "No output from AppleScript")


class ITermBackend:
    name = "iTerm2"

    async def available(self) -> bool:
        return await asyncio.to_thread(app_running, "iTerm2")

    async def deliver(self, text: str, tty: str) -> Optional[InjectionResult]:
        script = f"""
tell application "iTerm2"
    repeat with w in windows
        repeat with t in tabs of w
            repeat with s in sessions of t
                if tty of s is "{applescript_quote(tty)}" then
                    tell s to write text "{applescript_quote(text)}"
                    return "ok"
                end if
            end repeat
        end repeat
    end repeat
end tell
return "notfound"
"""
        return await _osascript(script)


class TerminalAppBackend:
    """Terminal.app has no scripting verb for typing; focus the tab and send keystrokes."""

    name = "Terminal"

    async def available(self) -> bool:
        return await asyncio.to_thread(app_running, "Terminal")

    async def deliver(self, text: str, tty: str) -> Optional[InjectionResult]:
        focus = f"""
tell application "Terminal"
    repeat with w in windows
        repeat with t in tabs of w
            if tty of t is "{applescript_quote(tty)}" then
                set selected of t to true
                set index of w to 1
                activate
                return "ok"
            end if
        end repeat
    end repeat
end tell
return "notfound"
"""
        result = await _osascript(focus)
        if result is None or not result.ok:
            return result

        await asyncio.sleep(KEYSTROKE_SETTLE_S)

        typing = f"""
tell application "System Events"
    tell process "Terminal"
        keystroke "{applescript_quote(text)}"
        delay 0.05
        key code 36
    end tell
end tell
return "ok"
"""
        result = await _osascript(typing)
        if result is not None and not result.ok and _is_accessibility_error(result.reason):
            logger.warning("System Events refused keystrokes: %s", result.reason)
            await run_command("open", ACCESSIBILITY_PANE_URL)
            return InjectionResult.failed(ACCESSIBILITY_HINT)
        return result


def _is_accessibility_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _ACCESSIBILITY_MARKERS)


def resolve_tty(pid: int) -> Optional[str]:
    try:
        terminal = psutil.Process(pid).terminal()
    except psutil.Error as e:
        logger.debug("TTY lookup for pid %d failed: %s", pid, e)
        return None
    if not terminal:
        return None
    return terminal if terminal.startswith("/dev/") else f"/dev/{terminal}"


class InputInjector:
    """Types text into the terminal of a running interactive agent."""

    def __init__(
        self,
        backends: Optional[Sequence[InjectionBackend]] = None,
        tty_resolver: Callable[[int], Optional[str]] = resolve_tty,
    ) -> None:
        self.backends: list[InjectionBackend] = (
            list(backends) if backends is not None else [TmuxBackend(), ITermBackend(), TerminalAppBackend()]
        )
        self._resolve_tty = tty_resolver

    async def inject(self, text: str, pid: int) -> InjectionResult:
        tty = await asyncio.to_thread(self._resolve_tty, pid)
        if not tty:
            return InjectionResult.failed(f"{TTY_UNRESOLVED} {pid}")

        explanation: Optional[InjectionResult] = None
        for backend in self.backends:
            try:
                if not await backend.available():
                    continue
                result = await backend.deliver(text, tty)
            except Exception as e:
                logger.error("Injection backend %s raised: %s", backend.name, e, exc_info=True)
                continue
            if result is None:
                continue
            if result.ok:
                logger.info("Injected into %s via %s", tty, backend.name)
                return result
            logger.debug("Backend %s failed for %s: %s", backend.name, tty, result.reason)
            explanation = result

        if explanation is not None:
            return explanation
        return InjectionResult.failed(f"{NO_TERMINAL} {tty}")
