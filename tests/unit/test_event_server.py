"""Unit tests for the hook EventServer app and approval table."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from claudio.core.events import AgentEventName
from claudio.hooks.event_server import (
    DENY_BY_USER,
    DENY_SERVER_STOPPED,
    DENY_TIMED_OUT,
    EventServer,
    HookDelivery,
)

PERMISSION_BODY = {
    "session_id": "s1",
    "cwd": "/work/proj",
    "hook_event_name": "PermissionRequest",
    "tool_name": "Bash",
    "tool_input": {"command": "rm -rf build"},
}


def _client(server: EventServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app), base_url="http://bridge")


def _decision(response: httpx.Response) -> dict[str, object]:
    return response.json()["hookSpecificOutput"]["decision"]


class _Recorder:
    def __init__(self) -> None:
        self.deliveries: list[HookDelivery] = []
        self.arrived = asyncio.Event()

    async def __call__(self, delivery: HookDelivery) -> None:
        self.deliveries.append(delivery)
        self.arrived.set()


async def _wait_for_approval(recorder: _Recorder) -> str:
    await asyncio.wait_for(recorder.arrived.wait(), timeout=1)
    approval_id = recorder.deliveries[-1].approval_id
    assert approval_id is not None
    return approval_id


@pytest.mark.asyncio
async def test_notification_route_answers_empty_object_and_delivers() -> None:
    server = EventServer()
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        response = await client.post(
            "/hook/notification",
            json={"hook_event_name": "Notification", "notification_type": "idle_prompt", "message": "Waiting"},
        )

    assert response.status_code == 200
    assert response.json() == {}
    assert len(recorder.deliveries) == 1
    delivery = recorder.deliveries[0]
    assert delivery.approval_id is None
    assert delivery.event.notification_kind == "idle_prompt"


@pytest.mark.asyncio
async def test_route_supplies_event_name_when_body_omits_it() -> None:
    server = EventServer()
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        await client.post("/hook/stop", json={"cwd": "/work/proj"})

    assert recorder.deliveries[0].event.event_name is AgentEventName.STOP


@pytest.mark.asyncio
async def test_malformed_body_answers_empty_object_without_delivery() -> None:
    server = EventServer()
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        broken = await client.post("/hook/stop", content=b"{not json")
        wrong_shape = await client.post("/hook/stop", json=[1, 2, 3])

    assert broken.status_code == 200 and broken.json() == {}
    assert wrong_shape.json() == {}
    assert recorder.deliveries == []


@pytest.mark.asyncio
async def test_malformed_permission_body_is_not_held_open() -> None:
    server = EventServer(permission_timeout=5)

    async with _client(server) as client:
        response = await client.post("/hook/permission", content=b"\xff\xfe")

    assert response.json() == {}
    assert server.pending_count == 0


@pytest.mark.asyncio
async def test_permission_request_waits_for_approval() -> None:
    server = EventServer(permission_timeout=5)
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        request = asyncio.create_task(client.post("/hook/permission", json=PERMISSION_BODY))
        approval_id = await _wait_for_approval(recorder)

        assert not request.done()
        assert server.pending_ids == [approval_id]

        assert server.resolve(approval_id, allow=True) is True
        response = await request

    assert _decision(response) == {"behavior": "allow"}
    assert response.json()["hookSpecificOutput"]["hookEventName"] == "PermissionRequest"
    assert server.pending_count == 0


@pytest.mark.asyncio
async def test_permission_deny_carries_user_message() -> None:
    server = EventServer(permission_timeout=5)
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        request = asyncio.create_task(client.post("/hook/permission", json=PERMISSION_BODY))
        approval_id = await _wait_for_approval(recorder)
        server.resolve(approval_id, allow=False)
        response = await request

    assert _decision(response) == {"behavior": "deny", "message": DENY_BY_USER}


@pytest.mark.asyncio
async def test_second_resolution_is_ignored() -> None:
    server = EventServer(permission_timeout=5)
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        request = asyncio.create_task(client.post("/hook/permission", json=PERMISSION_BODY))
        approval_id = await _wait_for_approval(recorder)

        assert server.resolve(approval_id, allow=False) is True
        assert server.resolve(approval_id, allow=True) is False
        response = await request

    assert _decision(response)["behavior"] == "deny"


def test_resolve_unknown_id_returns_false() -> None:
    assert EventServer().resolve("perm_404", allow=True) is False


@pytest.mark.asyncio
async def test_unanswered_permission_times_out_as_deny() -> None:
    server = EventServer(permission_timeout=0.05)

    async with _client(server) as client:
        response = await client.post("/hook/permission", json=PERMISSION_BODY)

    assert _decision(response) == {"behavior": "deny", "message": DENY_TIMED_OUT}
    assert server.pending_count == 0


@pytest.mark.asyncio
async def test_resolution_after_timeout_is_ignored() -> None:
    server = EventServer(permission_timeout=0.05)
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        await client.post("/hook/permission", json=PERMISSION_BODY)

    approval_id = recorder.deliveries[0].approval_id
    assert approval_id is not None
    assert server.resolve(approval_id, allow=True) is False


@pytest.mark.asyncio
async def test_stop_denies_every_pending_request() -> None:
    server = EventServer(permission_timeout=5)
    recorder = _Recorder()
    server.subscribe(recorder)

    async with _client(server) as client:
        first = asyncio.create_task(client.post("/hook/permission", json=PERMISSION_BODY))
        second = asyncio.create_task(client.post("/hook/permission", json=PERMISSION_BODY))
        for _ in range(100):
            if server.pending_count == 2:
                break
            await asyncio.sleep(0.01)
        assert server.pending_count == 2

        await server.stop()
        responses = await asyncio.gather(first, second)

    for response in responses:
        assert _decision(response) == {"behavior": "deny", "message": DENY_SERVER_STOPPED}
    assert server.pending_count == 0


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_delivery() -> None:
    server = EventServer()
    recorder = _Recorder()

    async def broken(_: HookDelivery) -> None:
        raise RuntimeError("boom")

    server.subscribe(broken)
    server.subscribe(recorder)

    async with _client(server) as client:
        response = await client.post("/hook/session-start", json={"cwd": "/work/proj"})

    assert response.json() == {}
    assert recorder.deliveries[0].event.event_name is AgentEventName.SESSION_START


@pytest.mark.asyncio
async def test_cancelled_subscription_stops_delivery() -> None:
    server = EventServer()
    recorder = _Recorder()
    subscription = server.subscribe(recorder)
    subscription.cancel()

    async with _client(server) as client:
        await client.post("/hook/session-end", json={"cwd": "/work/proj"})

    assert recorder.deliveries == []
    assert subscription.active is False
