"""Unit tests for SubprocessSession (headless runs)."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from claudio.core.errors import AgentBinaryNotFoundError
from claudio.core.subprocess_session import HeadlessExit, SubprocessSession, find_agent_binary

pytestmark = pytest.mark.timeout(5)

ONE_SHOT = """#!/bin/sh
printf '{"type":"system","args":"%s"}\\n' "$*"
printf '{"type":"result","subtype":"success"}'
exit 3
"""

ECHO = """#!/bin/sh
echo '{"type":"system"}'
while read line; do
  echo "echo:$line"
done
"""


def _script(tmp_path: Path, body: str, name: str = "claude") -> str:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755)
    return str(path)


class _Collector:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.exits: list[HeadlessExit] = []
        self.exited = asyncio.Event()
        self.line_arrived = asyncio.Event()

    async def on_line(self, line: str) -> None:
        self.lines.append(line)
        self.line_arrived.set()

    async def on_exit(self, event: HeadlessExit) -> None:
        self.exits.append(event)
        self.exited.set()


def _session(binary: str) -> tuple[SubprocessSession, _Collector]:
    session = SubprocessSession(binary_candidates=[binary], extra_args=["--verbose"], stop_grace=1)
    collector = _Collector()
    session.subscribe_output(collector.on_line)
    session.subscribe_exit(collector.on_exit)
    return session, collector


def test_find_agent_binary_prefers_first_executable_candidate(tmp_path: Path) -> None:
    not_executable = tmp_path / "plain"
    not_executable.write_text("", encoding="utf-8")
    executable = _script(tmp_path, "#!/bin/sh\n")

    assert find_agent_binary([str(tmp_path / "missing"), str(not_executable), executable]) == executable


def test_find_agent_binary_falls_back_to_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("claudio.core.subprocess_session.shutil.which", lambda name: f"/usr/bin/{name}")

    assert find_agent_binary([]) == "/usr/bin/claude"


def test_find_agent_binary_raises_when_nothing_found(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("claudio.core.subprocess_session.shutil.which", lambda name: None)

    with pytest.raises(AgentBinaryNotFoundError):
        find_agent_binary(["/nonexistent/claude"])


@pytest.mark.asyncio
async def test_start_streams_lines_and_reports_exit(tmp_path: Path) -> None:
    session, collector = _session(_script(tmp_path, ONE_SHOT))

    generation = await session.start(str(tmp_path), "fix the tests")
    assert session.has_active_session
    assert session.active_working_dir == str(tmp_path)

    await asyncio.wait_for(collector.exited.wait(), timeout=3)

    assert generation == 1
    assert "-p fix the tests --output-format stream-json --verbose" in collector.lines[0]
    # Trailing record without a line feed is flushed at end of stream.
    assert collector.lines[-1] == '{"type":"result","subtype":"success"}'
    assert collector.exits == [HeadlessExit(1, str(tmp_path), 3)]
    assert not session.has_active_session


@pytest.mark.asyncio
async def test_send_input_reaches_process_stdin(tmp_path: Path) -> None:
    session, collector = _session(_script(tmp_path, ECHO))
    await session.start(str(tmp_path), "prompt")
    try:
        await asyncio.wait_for(collector.line_arrived.wait(), timeout=3)
        collector.line_arrived.clear()

        assert await session.send_input("hello there") is True
        await asyncio.wait_for(collector.line_arrived.wait(), timeout=3)

        assert collector.lines[-1] == "echo:hello there"
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_send_input_without_session_returns_false() -> None:
    assert await SubprocessSession().send_input("anything") is False


@pytest.mark.asyncio
async def test_stop_does_not_report_exit(tmp_path: Path) -> None:
    session, collector = _session(_script(tmp_path, ECHO))
    await session.start(str(tmp_path), "prompt")

    await session.stop()
    await asyncio.sleep(0.1)

    assert not session.has_active_session
    assert collector.exits == []


@pytest.mark.asyncio
async def test_restart_supersedes_previous_generation(tmp_path: Path) -> None:
    session, collector = _session(_script(tmp_path, ECHO))
    first = await session.start(str(tmp_path), "one")
    second = await session.start(str(tmp_path), "two")
    try:
        assert (first, second) == (1, 2)
        assert session.generation == 2

        # A late exit notification for the old run must not clear the new one.
        await session._handle_exit(first, 0)

        assert session.has_active_session
        assert collector.exits == []
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_start_without_binary_raises(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("claudio.core.subprocess_session.shutil.which", lambda name: None)
    session = SubprocessSession(binary_candidates=[str(tmp_path / "missing")])

    with pytest.raises(AgentBinaryNotFoundError):
        await session.start(str(tmp_path), "prompt")
    assert session.generation == 0


@pytest.mark.asyncio
async def test_nested_agent_marker_is_removed_from_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    script = _script(tmp_path, '#!/bin/sh\necho "marker=${CLAUDECODE:-unset} term=$TERM"\n')
    monkeypatch.setenv("CLAUDECODE", "1")
    session, collector = _session(script)

    await session.start(str(tmp_path), "prompt")
    await asyncio.wait_for(collector.exited.wait(), timeout=3)

    assert collector.lines == ["marker=unset term=dumb"]
    assert os.environ["CLAUDECODE"] == "1"
