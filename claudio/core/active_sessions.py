"""Discovery of running interactive agents.

`PsutilSessionSource` finds agent processes by name, reads their working
directory, age and CPU use, and pairs each one with the newest transcript
under the agent's per-project directory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import Optional, Protocol

import psutil

from claudio.constants import AGENT_BINARY_NAME, DEFAULT_AGENT_PROJECTS_DIR
from claudio.core.models import ActiveSession

logger = logging.getLogger(__name__)

SUBAGENT_TOOL_NAME = "Task"


class ActiveSessionSource(Protocol):
    async def snapshot(self) -> list[ActiveSession]: ...


def project_dir_name(working_dir: str) -> str:
    """Directory name the agent uses for a project's transcripts (`/a/b.c` -> `-a-b-c`)."""
    return re.sub(r"[^A-Za-z0-9-]", "-", working_dir)


def _parent_dir_names(dir_name: str) -> list[str]:
    parts = [part for part in dir_name.split("-") if part]
    results: list[str] = []
    while len(parts) > 1:
        parts.pop()
        results.append("-" + "-".join(parts))
    return results


def find_transcript(projects_dir: Path, working_dir: str) -> Optional[Path]:
    """Newest `*.jsonl` for `working_dir`, falling back to ancestor project directories."""
    dir_name = project_dir_name(working_dir)
    for candidate in [dir_name, *_parent_dir_names(dir_name)]:
        directory = projects_dir / candidate
        try:
            files = [entry for entry in directory.iterdir() if entry.suffix == ".jsonl" and entry.is_file()]
        except OSError:
            continue
        if files:
            return max(files, key=lambda entry: entry.stat().st_mtime)
    return None


class PsutilSessionSource:
    """Active-session source backed by the process table."""

    def __init__(self, process_name: str = AGENT_BINARY_NAME, projects_dir: str = DEFAULT_AGENT_PROJECTS_DIR) -> None:
        self.process_name = process_name
        self.projects_dir = Path(projects_dir).expanduser()
        # path -> (mtime, subagent count)
        self._subagent_cache: dict[str, tuple[float, int]] = {}

    async def snapshot(self) -> list[ActiveSession]:
        return await asyncio.to_thread(self._scan)

    def _scan(self) -> list[ActiveSession]:
        now = time.time()
        sessions: dict[str, ActiveSession] = {}
        for proc in psutil.process_iter(["pid", "name", "create_time"]):
            if proc.info.get("name") != self.process_name:
                continue
            try:
                working_dir = proc.cwd()
                cpu = proc.cpu_percent(interval=None)
            except psutil.Error as e:
                logger.debug("Skipping pid %s: %s", proc.info.get("pid"), e)
                continue
            if working_dir in sessions:
                continue  # One slot per working directory; first process wins

            transcript = find_transcript(self.projects_dir, working_dir)
            log_path = str(transcript) if transcript else ""
            last_activity: Optional[float] = None
            subagents = 0
            if transcript:
                try:
                    last_activity = transcript.stat().st_mtime
                except OSError:
                    pass
                subagents = self._count_subagents(transcript, last_activity)

            create_time = proc.info.get("create_time") or now
            sessions[working_dir] = ActiveSession(
                working_dir=working_dir,
                pid=proc.info["pid"],
                log_path=log_path,
                elapsed_seconds=max(int(now - create_time), 0),
                cpu_percent=cpu,
                subagents=subagents,
                last_activity=last_activity,
            )

        live_paths = {session.log_path for session in sessions.values()}
        for path in list(self._subagent_cache):
            if path not in live_paths:
                del self._subagent_cache[path]
        return list(sessions.values())

    def _count_subagents(self, transcript: Path, mtime: Optional[float]) -> int:
        key = str(transcript)
        cached = self._subagent_cache.get(key)
        if cached and mtime is not None and cached[0] == mtime:
            return cached[1]

        count = 0
        try:
            with open(transcript, "rb") as f:
                for raw in f:
                    count += _subagent_calls(raw)
        except OSError as e:
            logger.debug("Cannot read transcript %s: %s", transcript, e)
            return 0
        if mtime is not None:
            self._subagent_cache[key] = (mtime, count)
        return count


def _subagent_calls(raw: bytes) -> int:
    try:
        record = json.loads(raw)
    except ValueError:
        return 0
    if not isinstance(record, dict) or record.get("type") != "assistant":
        return 0
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return 0
    return sum(
        1
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name") == SUBAGENT_TOOL_NAME
    )


def is_idle(last_activity: Optional[float], threshold: float, now: Optional[float] = None) -> bool:
    if last_activity is None:
        return True
    return ((now if now is not None else time.time()) - last_activity) >= threshold
