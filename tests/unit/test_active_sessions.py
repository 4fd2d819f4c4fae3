"""Unit tests for active-session discovery helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from claudio.core.active_sessions import PsutilSessionSource, find_transcript, is_idle, project_dir_name


def _touch(path: Path, mtime: float, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


def _task_call() -> str:
    return json.dumps(
        {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Task", "input": {}}]}}
    )


def _proc(pid: int, name: str, cwd: str, create_time: float = 1000.0) -> MagicMock:
    proc = MagicMock()
    proc.info = {"pid": pid, "name": name, "create_time": create_time}
    proc.cwd.return_value = cwd
    proc.cpu_percent.return_value = 12.5
    return proc


def test_project_dir_name_replaces_non_alphanumerics() -> None:
    assert project_dir_name("/Users/me/code/my_app.v2") == "-Users-me-code-my-app-v2"


def test_find_transcript_picks_newest_jsonl(tmp_path: Path) -> None:
    project = tmp_path / project_dir_name("/work/proj")
    _touch(project / "old.jsonl", 100)
    newest = _touch(project / "new.jsonl", 200)
    _touch(project / "notes.txt", 300)

    assert find_transcript(tmp_path, "/work/proj") == newest


def test_find_transcript_falls_back_to_parent_project(tmp_path: Path) -> None:
    parent = _touch(tmp_path / project_dir_name("/work/proj") / "s.jsonl", 100)

    assert find_transcript(tmp_path, "/work/proj/packages/api") == parent
    assert find_transcript(tmp_path, "/elsewhere") is None


@pytest.mark.parametrize(
    "last_activity,now,expected",
    [(None, 100.0, True), (90.0, 100.0, False), (40.0, 100.0, True)],
)
def test_is_idle(last_activity: float | None, now: float, expected: bool) -> None:
    assert is_idle(last_activity, 60, now=now) is expected


@pytest.mark.asyncio
async def test_snapshot_reports_one_session_per_working_dir(tmp_path: Path) -> None:
    transcript = _touch(
        tmp_path / project_dir_name("/work/proj") / "s.jsonl", 500, "\n".join([_task_call(), _task_call(), "{}"])
    )
    processes = [
        _proc(11, "claude", "/work/proj"),
        _proc(12, "claude", "/work/proj"),
        _proc(13, "zsh", "/work/proj"),
        _proc(14, "claude", "/work/other"),
    ]
    source = PsutilSessionSource(process_name="claude", projects_dir=str(tmp_path))

    with (
        patch("claudio.core.active_sessions.psutil.process_iter", return_value=processes),
        patch("claudio.core.active_sessions.time.time", return_value=1600.0),
    ):
        sessions = await source.snapshot()

    by_dir = {session.working_dir: session for session in sessions}
    assert set(by_dir) == {"/work/proj", "/work/other"}
    proj = by_dir["/work/proj"]
    assert proj.pid == 11
    assert proj.log_path == str(transcript)
    assert proj.subagents == 2
    assert proj.elapsed_seconds == 600
    assert proj.cpu_percent == 12.5
    assert proj.last_activity == 500
    assert by_dir["/work/other"].log_path == ""


@pytest.mark.asyncio
async def test_snapshot_skips_processes_that_vanish(tmp_path: Path) -> None:
    import psutil

    gone = _proc(21, "claude", "/x")
    gone.cwd.side_effect = psutil.NoSuchProcess(21)
    source = PsutilSessionSource(projects_dir=str(tmp_path))

    with patch("claudio.core.active_sessions.psutil.process_iter", return_value=[gone]):
        assert await source.snapshot() == []


def test_subagent_count_is_cached_by_mtime(tmp_path: Path) -> None:
    transcript = _touch(tmp_path / "s.jsonl", 100, _task_call())
    source = PsutilSessionSource(projects_dir=str(tmp_path))

    assert source._count_subagents(transcript, 100) == 1
    transcript.write_text(_task_call() + "\n" + _task_call(), encoding="utf-8")
    assert source._count_subagents(transcript, 100) == 1
    assert source._count_subagents(transcript, 101) == 2
