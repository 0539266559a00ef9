import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import redis

from tgsession.config import Settings
from tgsession.logging_config import get_logger

logger = get_logger("store")

SESSION_NAMESPACE = "sess"
QUEUE_META_NAMESPACE = "meta"
QUEUE_UPDATES_PREFIX = "updates"


@dataclass(frozen=True)
class ConversationIdentity:
    """The (chat, user) pair that scopes a queue and a session."""

    chat_id: int
    user_id: int

    @property
    def key(self) -> str:
        return f"{self.chat_id}:{self.user_id}"

    @property
    def updates_key(self) -> str:
        return f"{QUEUE_UPDATES_PREFIX}:{self.key}"

    @classmethod
    def from_key(cls, key: str) -> "ConversationIdentity":
        parts = key.split(":")
        if len(parts) != 2:
            raise ValueError(f"Malformed conversation key: {key!r}")
        return cls(chat_id=int(parts[0]), user_id=int(parts[1]))


class KeyValueStore(ABC):
    """Shared store for sessions, queue metas and queue buffers.

    Hash-like namespaces hold one value per field; lists hold queued updates.
    `delete` must report how many fields it removed, atomically: the queue
    relies on it to let exactly one caller claim a ready batch.
    """

    @abstractmethod
    def get(self, namespace: str, field: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, namespace: str, field: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, namespace: str, field: str) -> int:
        pass

    @abstractmethod
    def list_all(self, namespace: str) -> dict[str, str]:
        pass

    @abstractmethod
    def rpush(self, list_key: str, item: str) -> None:
        pass

    @abstractmethod
    def lpop_all(self, list_key: str) -> list[str]:
        """Read and clear the whole list in one step."""
        pass

    @abstractmethod
    def delete_list(self, list_key: str) -> int:
        pass

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class RedisStore(KeyValueStore):
    """Store backed by Redis hashes and lists."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str, socket_timeout_seconds: float = 30.0) -> "RedisStore":
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout_seconds,
            socket_timeout=socket_timeout_seconds,
        )
        return cls(client)

    def get(self, namespace: str, field: str) -> Optional[str]:
        return self._client.hget(namespace, field)

    def set(self, namespace: str, field: str, value: str) -> None:
        self._client.hset(namespace, field, value)

    def delete(self, namespace: str, field: str) -> int:
        return int(self._client.hdel(namespace, field))

    def list_all(self, namespace: str) -> dict[str, str]:
        return dict(self._client.hgetall(namespace))

    def rpush(self, list_key: str, item: str) -> None:
        self._client.rpush(list_key, item)

    def lpop_all(self, list_key: str) -> list[str]:
        pipe = self._client.pipeline(transaction=True)
        pipe.lrange(list_key, 0, -1)
        pipe.delete(list_key)
        items, _ = pipe.execute()
        return list(items or [])

    def delete_list(self, list_key: str) -> int:
        return int(self._client.delete(list_key))

    def ping(self) -> bool:
        return bool(self._client.ping())

    def close(self) -> None:
        self._client.close()


class MemoryStore(KeyValueStore):
    """In-process store. Every operation runs under one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._hashes: dict[str, dict[str, str]] = {}
        self._lists: dict[str, list[str]] = {}

    def get(self, namespace: str, field: str) -> Optional[str]:
        with self._lock:
            return self._hashes.get(namespace, {}).get(field)

    def set(self, namespace: str, field: str, value: str) -> None:
        with self._lock:
            self._hashes.setdefault(namespace, {})[field] = value

    def delete(self, namespace: str, field: str) -> int:
        with self._lock:
            fields = self._hashes.get(namespace, {})
            if field not in fields:
                return 0
            del fields[field]
            return 1

    def list_all(self, namespace: str) -> dict[str, str]:
        with self._lock:
            return dict(self._hashes.get(namespace, {}))

    def rpush(self, list_key: str, item: str) -> None:
        with self._lock:
            self._lists.setdefault(list_key, []).append(item)

    def lpop_all(self, list_key: str) -> list[str]:
        with self._lock:
            return self._lists.pop(list_key, [])

    def delete_list(self, list_key: str) -> int:
        with self._lock:
            return 1 if self._lists.pop(list_key, None) is not None else 0


def create_store(config: Settings) -> KeyValueStore:
    """Build the store selected by STORE_BACKEND."""
    if config.store_backend == "memory":
        logger.info("Using in-process memory store")
        return MemoryStore()

    logger.info("Using Redis store")
    return RedisStore.from_url(config.redis_url, config.redis_socket_timeout_seconds)
