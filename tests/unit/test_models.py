"""Unit tests for hook payload decoding and permission decisions."""

from __future__ import annotations

import pytest

from claudio.core.events import AgentEventName
from claudio.core.models import (
    ActiveSession,
    AgentEvent,
    JsonArray,
    JsonNull,
    JsonNumber,
    JsonObject,
    JsonString,
    JsonValue,
    PermissionDecision,
)


def test_from_payload_maps_agent_field_names() -> None:
    event = AgentEvent.from_payload(
        {
            "session_id": "abc",
            "transcript_path": "/tmp/t.jsonl",
            "cwd": "/work/proj",
            "permission_mode": "default",
            "hook_event_name": "PermissionRequest",
            "tool_name": "Bash",
            "tool_input": {"command": "ls -la", "timeout": 30},
        }
    )

    assert event.event_name is AgentEventName.PERMISSION_REQUEST
    assert event.working_dir == "/work/proj"
    assert event.tool_name == "Bash"
    assert event.tool_input is not None
    assert event.tool_input.get("command").as_str() == "ls -la"
    assert event.tool_input.get("timeout").as_number() == 30


def test_from_payload_reads_notification_kind() -> None:
    event = AgentEvent.from_payload(
        {"hook_event_name": "Notification", "notification_type": "idle_prompt", "message": "Waiting"}
    )

    assert event.notification_kind == "idle_prompt"
    assert event.message == "Waiting"


def test_from_payload_uses_route_name_when_missing() -> None:
    event = AgentEvent.from_payload({"cwd": "/x"}, default_name=AgentEventName.STOP)

    assert event.event_name is AgentEventName.STOP


def test_from_payload_ignores_wrongly_typed_fields() -> None:
    event = AgentEvent.from_payload({"hook_event_name": "Stop", "cwd": 12, "message": None})

    assert event.working_dir is None
    assert event.message is None


@pytest.mark.parametrize("payload", [[1, 2], "text", None, {"hook_event_name": "Bogus"}, {}])
def test_from_payload_rejects_invalid_payloads(payload) -> None:
    with pytest.raises(ValueError):
        AgentEvent.from_payload(payload)


def test_json_value_parse_builds_tagged_tree() -> None:
    value = JsonValue.parse({"a": [1, "two", None], "b": True})

    assert isinstance(value, JsonObject)
    items = value.get("a")
    assert isinstance(items, JsonArray)
    assert items.items == (JsonNumber(1), JsonString("two"), JsonNull())
    assert value.get("b").as_bool() is True
    assert value.get("missing") is None
    assert value.to_python() == {"a": [1, "two", None], "b": True}


def test_json_value_accessors_return_none_on_shape_mismatch() -> None:
    value = JsonValue.parse("text")

    assert value.as_number() is None
    assert value.as_bool() is None
    assert value.get("key") is None


def test_bool_is_not_parsed_as_number() -> None:
    assert JsonValue.parse(False).as_number() is None


def test_permission_decision_allow_response() -> None:
    assert PermissionDecision.allow().to_hook_response() == {
        "hookSpecificOutput": {"hookEventName": "PermissionRequest", "decision": {"behavior": "allow"}}
    }


def test_permission_decision_deny_response_carries_message() -> None:
    response = PermissionDecision.deny("Denied by user").to_hook_response()

    assert response["hookSpecificOutput"]["decision"] == {"behavior": "deny", "message": "Denied by user"}


def test_active_session_display_name_is_directory_name() -> None:
    assert ActiveSession(working_dir="/home/me/code/claudio", pid=1).display_name == "claudio"
