"""Claudio daemon entry point.

Loads configuration, takes the single-instance lock, starts the Coordinator
and runs until SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, TextIO

from claudio import __version__
from claudio.config import RuntimeSettings, load_bridge_config, resolve_config_path
from claudio.constants import DEFAULT_STATE_DIR, MAIN_MODULE
from claudio.coordinator import Coordinator
from claudio.core.errors import BridgeNotConfiguredError
from claudio.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Startup retry configuration
STARTUP_MAX_RETRIES = 3
STARTUP_RETRY_DELAYS = [10, 20, 40]  # Exponential backoff in seconds


def _is_retryable_startup_error(error: Exception) -> bool:
    """Check if a startup error is transient (network hiccup) and worth retrying."""
    retryable_types = ("NetworkError", "TimedOut", "ConnectError", "TimeoutError")
    retryable_messages = ("name resolution", "connection refused", "timed out", "temporary failure")

    error_type = type(error).__name__
    error_msg = str(error).lower()

    if error_type in retryable_types:
        return True
    return any(msg in error_msg for msg in retryable_messages)


class DaemonLockError(Exception):
    """Raised when another daemon instance is already running."""


class DaemonLock:
    """PID file with an fcntl advisory lock."""

    def __init__(self, pid_file: Path) -> None:
        self.pid_file = pid_file
        self._handle: Optional[TextIO] = None

    def acquire(self) -> None:
        """Raises DaemonLockError if another instance holds the lock."""
        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            # "a+" keeps the inode so the lock stays effective if the file is replaced.
            handle = open(self.pid_file, "a+", encoding="utf-8")  # noqa: SIM115 - held for process lifetime
        except OSError as e:
            raise DaemonLockError(f"Failed to open lock file: {e}") from e

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            handle.close()
            existing_pid = self.pid_file.read_text(encoding="utf-8").strip() or "unknown"
            raise DaemonLockError(
                f"Another daemon instance is already running (PID: {existing_pid}). "
                f"Stop it first or remove {self.pid_file} if it's stale."
            ) from exc

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        atexit.register(self.release)

    def release(self) -> None:
        try:
            if self._handle:
                self._handle.close()
                self._handle = None
                if self.pid_file.exists():
                    self.pid_file.unlink()
                logger.debug("Released daemon lock")
        except OSError as e:
            logger.error("Failed to release lock: %s", e)


async def _start_with_retries(coordinator: Coordinator) -> bool:
    for attempt in range(STARTUP_MAX_RETRIES):
        try:
            if await coordinator.start():
                return True
            error: Exception = RuntimeError(coordinator.last_error or "startup failed")
        except BridgeNotConfiguredError:
            raise
        except Exception as e:
            error = e

        if not _is_retryable_startup_error(error) or attempt == STARTUP_MAX_RETRIES - 1:
            logger.error("Bridge startup failed: %s", error)
            return False

        delay = STARTUP_RETRY_DELAYS[attempt]
        logger.warning(
            "Startup failed (attempt %d/%d): %s. Retrying in %ds...",
            attempt + 1,
            STARTUP_MAX_RETRIES,
            error,
            delay,
        )
        await coordinator.stop()
        await asyncio.sleep(delay)
    return False


async def _wait_for_shutdown(*events: asyncio.Event) -> None:
    """Return as soon as any of `events` is set."""
    waiters = [asyncio.create_task(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


async def main() -> int:
    """Main entry point. Returns the process exit code."""
    setup_logging()
    logger.info("Claudio %s starting (pid=%d)", __version__, os.getpid())
    config = load_bridge_config()
    settings = RuntimeSettings(resolve_config_path(), config)
    coordinator = Coordinator(config, settings=settings)
    lock = DaemonLock(Path(DEFAULT_STATE_DIR).expanduser() / "claudio.pid")

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int) -> None:
        logger.info("Received %s signal...", signal.Signals(signum).name)
        shutdown_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        lock.acquire()
        if not await _start_with_retries(coordinator):
            return 1
        await _wait_for_shutdown(shutdown_event, coordinator.disabled)
        return 0
    except (DaemonLockError, BridgeNotConfiguredError) as e:
        logger.error("%s", e)
        return 1
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        return 1
    finally:
        try:
            await coordinator.stop()
        except Exception as e:
            logger.error("Error during daemon stop: %s", e)
        finally:
            lock.release()


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == MAIN_MODULE:
    run()
