import json
from typing import Any, Optional

from pydantic import BaseModel, Field

from tgsession.logging_config import get_logger
from tgsession.services.state_machine import SessionState
from tgsession.services.store import (
    QUEUE_META_NAMESPACE,
    SESSION_NAMESPACE,
    ConversationIdentity,
    KeyValueStore,
)

logger = get_logger("session_store")


class SessionNotFoundError(Exception):
    def __init__(self, identity: ConversationIdentity):
        self.identity = identity
        super().__init__(f"Session does not exist for conversation {identity.key}")


class SessionRecord(BaseModel):
    # Encoded SessionState
    state: str = ""
    # Slot name -> JSON-serialized value
    slots: dict[str, str] = Field(default_factory=dict)

    @property
    def session_state(self) -> SessionState:
        return SessionState.decode(self.state)


class SessionStore:
    """Persists per-conversation state and slots."""

    def __init__(self, store: KeyValueStore):
        self._store = store

    def get(self, identity: ConversationIdentity) -> tuple[Optional[SessionRecord], bool]:
        raw = self._store.get(SESSION_NAMESPACE, identity.key)
        if raw is None:
            return None, False
        return SessionRecord.model_validate_json(raw), True

    def set_state(self, identity: ConversationIdentity, state: SessionState) -> SessionRecord:
        """Put the session into `state`, starting a new session if none exists."""
        record, exists = self.get(identity)
        if not exists:
            record = SessionRecord(state=state.encode())
            logger.info("Session started", extra={"context": {"conversation": identity.key, "state": str(state)}})
        else:
            record.state = state.encode()

        self._save(identity, record)
        return record

    def save_slot(self, identity: ConversationIdentity, name: str, value: Any) -> None:
        record = self._require(identity)
        record.slots[name] = json.dumps(value, ensure_ascii=False)
        self._save(identity, record)

    def get_slot(self, identity: ConversationIdentity, name: str) -> tuple[Any, bool]:
        record = self._require(identity)
        raw = record.slots.get(name)
        if raw is None:
            return None, False
        return json.loads(raw), True

    def delete_slot(self, identity: ConversationIdentity, name: str) -> None:
        record = self._require(identity)
        record.slots.pop(name, None)
        self._save(identity, record)

    def destroy(self, identity: ConversationIdentity) -> None:
        """Delete the session together with anything still queued for the conversation."""
        self._store.delete(SESSION_NAMESPACE, identity.key)
        self._store.delete(QUEUE_META_NAMESPACE, identity.key)
        self._store.delete_list(identity.updates_key)
        logger.info("Session destroyed", extra={"context": {"conversation": identity.key}})

    def _require(self, identity: ConversationIdentity) -> SessionRecord:
        record, exists = self.get(identity)
        if not exists:
            raise SessionNotFoundError(identity)
        return record

    def _save(self, identity: ConversationIdentity, record: SessionRecord) -> None:
        self._store.set(SESSION_NAMESPACE, identity.key, record.model_dump_json())
