"""Pytest configuration for Claudio tests."""

import logging

import pytest

logging.getLogger("claudio").handlers.clear()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s (explicit timeout markers win)."""
    for item in items:
        if item.get_closest_marker("timeout"):
            continue
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


class FakeChat:
    """Stands in for RemoteChatClient; records everything the bridge sends."""

    def __init__(self, chat_id=42):
        self.chat_id = chat_id
        self.is_configured = True
        self.sent = []
        self.answers = []
        self.edits = []

    def set_chat_id(self, chat_id):
        self.chat_id = chat_id

    async def send(self, text, buttons=None):
        self.sent.append((text, buttons))
        return True

    async def answer_callback(self, callback_id, text=None):
        self.answers.append((callback_id, text))

    async def edit_buttons(self, chat_id, message_id, buttons=None):
        self.edits.append((chat_id, message_id, buttons))

    @property
    def texts(self):
        return [text for text, _ in self.sent]

    def last_buttons(self):
        for _, buttons in reversed(self.sent):
            if buttons:
                return [data for row in buttons for _, data in row]
        return []


@pytest.fixture
def fake_chat():
    return FakeChat()


@pytest.fixture
def bridge_config(tmp_path):
    from claudio.config.schema import BridgeConfig

    return BridgeConfig.model_validate(
        {
            "telegram": {"bot_token": "123:abc", "chat_id": 42},
            "hooks": {"install_hooks": False, "agent_settings_path": str(tmp_path / "settings.json")},
        }
    )


def make_callback(data, callback_id="cb-1", chat_id=42, message_id=7):
    from types import SimpleNamespace

    return SimpleNamespace(
        id=callback_id,
        data=data,
        message=SimpleNamespace(chat=SimpleNamespace(id=chat_id), message_id=message_id),
    )


@pytest.fixture
def callback_factory():
    return make_callback
