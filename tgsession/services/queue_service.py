from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from tgsession.logging_config import get_logger
from tgsession.schemas.telegram import TelegramUpdate
from tgsession.services.store import QUEUE_META_NAMESPACE, ConversationIdentity, KeyValueStore

logger = get_logger("queue_service")


class QueueError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventQueue:
    """Per-conversation update buffer with a sliding debounce window."""

    def __init__(
        self,
        store: KeyValueStore,
        wait_seconds: float,
        now_func: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._wait = timedelta(seconds=wait_seconds)
        self._now = now_func

    def enqueue(self, identity: ConversationIdentity, update: TelegramUpdate) -> datetime:
        """Buffer the update and push the conversation's ready deadline forward."""
        self._store.rpush(identity.updates_key, update.model_dump_json(by_alias=True, exclude_none=True))

        protected_until = self._now() + self._wait
        self._store.set(QUEUE_META_NAMESPACE, identity.key, protected_until.isoformat())

        logger.debug(
            "Update enqueued",
            extra={"context": {"conversation": identity.key, "protected_until": protected_until.isoformat()}},
        )
        return protected_until

    def protected_until(self, identity: ConversationIdentity) -> Optional[datetime]:
        raw = self._store.get(QUEUE_META_NAMESPACE, identity.key)
        if raw is None:
            return None
        return self._parse_meta(identity.key, raw)[1]

    def claim_if_ready(self) -> list[TelegramUpdate]:
        """
        Claim the first ready conversation and drain its buffer.

        Deleting the meta is the claim: a zero delete count means another
        worker got there first, so the scan moves on. A won claim whose buffer
        holds nothing decodable also moves on. Returns an empty list when
        nothing is ready.
        """
        now = self._now()

        for key, raw in self._store.list_all(QUEUE_META_NAMESPACE).items():
            identity, protected_until = self._parse_meta(key, raw)
            if now <= protected_until:
                continue

            if self._store.delete(QUEUE_META_NAMESPACE, key) == 0:
                logger.debug("Queue already claimed", extra={"context": {"conversation": key}})
                continue

            updates = self._decode_updates(identity, self._store.lpop_all(identity.updates_key))
            if not updates:
                logger.debug("Claimed queue was empty", extra={"context": {"conversation": key}})
                continue

            logger.info(
                "Queue claimed",
                extra={"context": {"conversation": key, "updates": len(updates)}},
            )
            return updates

        return []

    @staticmethod
    def _parse_meta(key: str, raw: str) -> tuple[ConversationIdentity, datetime]:
        try:
            identity = ConversationIdentity.from_key(key)
            protected_until = datetime.fromisoformat(raw)
        except ValueError as e:
            raise QueueError(f"Wrong queue meta field {key!r}: {e}") from e

        if protected_until.tzinfo is None:
            protected_until = protected_until.replace(tzinfo=timezone.utc)
        return identity, protected_until

    @staticmethod
    def _decode_updates(identity: ConversationIdentity, items: list[str]) -> list[TelegramUpdate]:
        updates = []
        for item in items:
            try:
                updates.append(TelegramUpdate.model_validate_json(item))
            except ValidationError as e:
                logger.warning(
                    "Dropping undecodable queued update",
                    extra={"context": {"conversation": identity.key, "error": str(e)}},
                )
        return updates
