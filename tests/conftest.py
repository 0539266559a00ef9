from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import Mock

import pytest

from tgsession.config import Settings
from tgsession.schemas.telegram import TelegramMessage, TelegramUpdate
from tgsession.services.store import MemoryStore


class FakeClock:
    """Controllable replacement for the queue's clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def test_settings():
    return Settings(
        bot_token="123:test-token",
        store_backend="memory",
        update_queue_wait_seconds=1.5,
        max_state_transitions=8,
        processing_worker_enabled=False,
    )


@pytest.fixture
def telegram():
    """Mock TelegramService that answers sends with incrementing message ids."""
    mock = Mock()
    counter = {"message_id": 500}

    def send_message(chat_id, message_id, data):
        if message_id is None:
            counter["message_id"] += 1
            message_id = counter["message_id"]
        return [
            TelegramMessage(
                message_id=message_id,
                date=1702000000,
                chat={"id": chat_id, "type": "private"},
                text=data.message,
            )
        ]

    mock.send_message.side_effect = send_message
    return mock


@pytest.fixture
def make_message():
    def _make(
        update_id: int = 1,
        chat_id: int = 100,
        user_id: int = 200,
        text: str = "hello",
        message_id: Optional[int] = None,
        username: str = "alice",
        command: bool = False,
        **extra,
    ) -> TelegramUpdate:
        message = {
            "message_id": message_id or update_id + 1000,
            "date": 1702000000,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": user_id, "is_bot": False, "first_name": "Alice", "username": username},
            "text": text,
            **extra,
        }
        if command:
            message["entities"] = [{"type": "bot_command", "offset": 0, "length": len(text.split()[0])}]
        return TelegramUpdate.model_validate({"update_id": update_id, "message": message})

    return _make


@pytest.fixture
def make_callback():
    def _make(
        update_id: int = 1,
        chat_id: int = 100,
        user_id: int = 200,
        data: Optional[str] = None,
        message_id: int = 900,
        username: str = "alice",
    ) -> TelegramUpdate:
        return TelegramUpdate.model_validate(
            {
                "update_id": update_id,
                "callback_query": {
                    "id": f"cb-{update_id}",
                    "from": {"id": user_id, "is_bot": False, "first_name": "Alice", "username": username},
                    "message": {
                        "message_id": message_id,
                        "date": 1702000000,
                        "chat": {"id": chat_id, "type": "private"},
                        "text": "menu",
                    },
                    "data": data,
                },
            }
        )

    return _make
