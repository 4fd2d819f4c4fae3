"""Headless agent run driven from the chat.

At most one run is managed at a time. Each `start()` bumps a generation
counter; exit notifications carry the generation they were started under and
are dropped if a newer run has taken over since.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Optional, Sequence

from claudio.constants import AGENT_BINARY_NAME, HEADLESS_STOP_GRACE_S
from claudio.core.errors import AgentBinaryNotFoundError
from claudio.core.line_buffer import LineBuffer
from claudio.core.subscriptions import Handler, Subscribers, Subscription

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class HeadlessExit:
    """Natural exit of the current run."""

    generation: int
    working_dir: str
    returncode: Optional[int]


@dataclass
class RemoteSession:
    process: asyncio.subprocess.Process
    working_dir: str
    generation: int
    buffer: LineBuffer = field(default_factory=LineBuffer)
    pump: Optional[asyncio.Task[None]] = None
    stderr_task: Optional[asyncio.Task[None]] = None


def find_agent_binary(candidates: Sequence[str]) -> str:
    """Return the first executable candidate, falling back to PATH.

    Raises:
        AgentBinaryNotFoundError: If no executable agent binary exists.
    """
    for candidate in candidates:
        path = os.path.expanduser(candidate)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    resolved = shutil.which(AGENT_BINARY_NAME)
    if resolved:
        return resolved
    raise AgentBinaryNotFoundError(f"{AGENT_BINARY_NAME} executable not found")


class SubprocessSession:
    """Owns one headless agent process and streams its stdout line by line."""

    def __init__(
        self,
        binary_candidates: Sequence[str] = (),
        extra_args: Sequence[str] = ("--verbose",),
        stop_grace: float = HEADLESS_STOP_GRACE_S,
    ) -> None:
        self.binary_candidates = list(binary_candidates)
        self.extra_args = list(extra_args)
        self.stop_grace = stop_grace
        self._session: Optional[RemoteSession] = None
        self._generation = 0
        self._output: Subscribers[str] = Subscribers("headless output")
        self._exit: Subscribers[HeadlessExit] = Subscribers("headless exit")

    def subscribe_output(self, handler: Handler[str]) -> Subscription:
        return self._output.subscribe(handler)

    def subscribe_exit(self, handler: Handler[HeadlessExit]) -> Subscription:
        return self._exit.subscribe(handler)

    @property
    def has_active_session(self) -> bool:
        return self._session is not None

    @property
    def active_working_dir(self) -> Optional[str]:
        return self._session.working_dir if self._session else None

    @property
    def generation(self) -> int:
        return self._generation

    async def start(self, working_dir: str, prompt: str) -> int:
        """Replace any current run with a new one and return its generation.

        Raises:
            AgentBinaryNotFoundError: If no agent binary could be located.
        """
        await self.stop()

        binary = find_agent_binary(self.binary_candidates)
        self._generation += 1
        generation = self._generation

        env = dict(os.environ)
        env["TERM"] = "dumb"
        # A nested agent refuses to start when it believes it runs inside another one.
        env.pop("CLAUDECODE", None)

        process = await asyncio.create_subprocess_exec(
            binary,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            *self.extra_args,
            cwd=working_dir,
            env=env,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        session = RemoteSession(process=process, working_dir=working_dir, generation=generation)
        self._session = session
        session.pump = asyncio.create_task(self._pump(session))
        session.stderr_task = asyncio.create_task(self._drain_stderr(session))

        logger.info("Headless run %d started in %s (pid=%s)", generation, working_dir, process.pid)
        return generation

    async def send_input(self, text: str) -> bool:
        """Write one line to the run's stdin; returns False without an active run."""
        session = self._session
        if session is None or session.process.stdin is None:
            return False
        try:
            session.process.stdin.write(f"{text}\n".encode("utf-8"))
            await session.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Headless run %d stdin closed: %s", session.generation, e)
            return False
        return True

    async def stop(self) -> None:
        """Terminate the current run and wait for it to exit.

        Once this returns, no output or exit notification fires for the
        stopped generation.
        """
        session = self._session
        if session is None:
            return
        self._session = None

        process = session.process
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                logger.warning("Headless run %d ignored SIGTERM; killing", session.generation)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        for task in (session.pump, session.stderr_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        session.buffer.clear()
        logger.info("Headless run %d stopped", session.generation)

    # ==================== Internals ====================

    async def _pump(self, session: RemoteSession) -> None:
        stdout = session.process.stdout
        if stdout is not None:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for line in session.buffer.feed(chunk):
                    await self._emit_line(session, line)
            rest = session.buffer.flush()
            if rest:
                await self._emit_line(session, rest)

        returncode = await session.process.wait()
        await self._handle_exit(session.generation, returncode)

    async def _emit_line(self, session: RemoteSession, line: bytes) -> None:
        if line and self._session is session:
            await self._output.emit(line.decode("utf-8", errors="replace"))

    async def _drain_stderr(self, session: RemoteSession) -> None:
        stderr = session.process.stderr
        if stderr is None:
            return
        while True:
            line = await stderr.readline()
            if not line:
                return
            logger.debug("headless[%d] stderr: %s", session.generation, line.decode("utf-8", "replace").rstrip())

    async def _handle_exit(self, generation: int, returncode: Optional[int]) -> None:
        """Clear the session and notify, but only for the current generation."""
        session = self._session
        if session is None or session.generation != generation:
            logger.debug("Ignoring exit of superseded headless run %d", generation)
            return
        self._session = None
        logger.info("Headless run %d exited with code %s", generation, returncode)
        await self._exit.emit(HeadlessExit(generation, session.working_dir, returncode))
