from enum import Enum
from typing import TYPE_CHECKING, Optional

from tgsession.logging_config import get_logger
from tgsession.schemas.telegram import TelegramFile, TelegramUpdate
from tgsession.services.state_machine import SessionState, decode_callback_data
from tgsession.services.store import ConversationIdentity

if TYPE_CHECKING:
    from tgsession.services.telegram_service import TelegramService

logger = get_logger("update_chain")


class UpdateType(str, Enum):
    NONE = "none"
    UNKNOWN = "unknown"
    MESSAGE = "message"
    CALLBACK = "callback"


class UpdateChainTypeError(Exception):
    def __init__(self, expected: UpdateType, actual: UpdateType):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Update chain has type '{actual.value}', expected '{expected.value}'")


def update_type(update: TelegramUpdate) -> UpdateType:
    if update.message is not None:
        return UpdateType.MESSAGE
    if update.callback_query is not None:
        return UpdateType.CALLBACK
    return UpdateType.UNKNOWN


def update_identity(update: TelegramUpdate) -> Optional[ConversationIdentity]:
    """Chat and user of the update, or None when either is missing."""
    kind = update_type(update)

    if kind is UpdateType.MESSAGE:
        message = update.message
        if message.from_user is None:
            return None
        return ConversationIdentity(chat_id=message.chat.id, user_id=message.from_user.id)

    if kind is UpdateType.CALLBACK:
        query = update.callback_query
        if query.message is None:
            return None
        return ConversationIdentity(chat_id=query.message.chat.id, user_id=query.from_user.id)

    return None


def update_user_name(update: TelegramUpdate) -> str:
    kind = update_type(update)
    if kind is UpdateType.MESSAGE and update.message.from_user:
        return update.message.from_user.username or ""
    if kind is UpdateType.CALLBACK:
        return update.callback_query.from_user.username or ""
    return ""


class UpdateChain:
    """A homogeneous run of updates from one conversation."""

    def __init__(
        self,
        kind: UpdateType = UpdateType.NONE,
        identity: Optional[ConversationIdentity] = None,
        user_name: str = "",
        updates: Optional[list[TelegramUpdate]] = None,
    ):
        self.kind = kind
        self.identity = identity
        self.user_name = user_name
        self.updates: list[TelegramUpdate] = updates or []

    def __len__(self) -> int:
        return len(self.updates)

    def message_texts(self) -> list[str]:
        """Text (or caption) of every message in a message chain."""
        if self.kind is not UpdateType.MESSAGE:
            return []

        texts = []
        for update in self.updates:
            if update.message.text:
                texts.append(update.message.text)
            elif update.message.caption:
                texts.append(update.message.caption)
        return texts

    def message_ids(self) -> list[int]:
        if self.kind is UpdateType.MESSAGE:
            return [u.message.message_id for u in self.updates]
        if self.kind is UpdateType.CALLBACK:
            return [u.callback_query.message.message_id for u in self.updates]
        return []

    def message_id(self) -> Optional[int]:
        """Message id of the first update: the user's message or the message holding the pressed button."""
        ids = self.message_ids()
        return ids[0] if ids else None

    def callback_query_id(self) -> str:
        if self.kind is not UpdateType.CALLBACK or not self.updates:
            return ""
        return self.updates[0].callback_query.id

    def callback_data(self) -> str:
        if self.kind is not UpdateType.CALLBACK or not self.updates:
            return ""
        return self.updates[0].callback_query.data or ""

    def callback_state(self) -> tuple[SessionState, str]:
        return decode_callback_data(self.callback_data())

    def command(self) -> tuple[str, str]:
        """Command name (without '/' and '@bot') and its arguments, from the first message."""
        if self.kind is not UpdateType.MESSAGE or not self.updates:
            return "", ""

        message = self.updates[0].message
        text = message.text or ""

        if message.entities is not None:
            first = message.entities[0] if message.entities else None
            if first is None or first.type != "bot_command" or first.offset != 0:
                return "", ""
            command_text = text[1:first.length]
        elif text.startswith("/"):
            command_text = text[1:].split(maxsplit=1)[0] if len(text) > 1 else ""
        else:
            return "", ""

        name = command_text.split("@", 1)[0]
        parts = text.split(maxsplit=1)
        args = parts[1].strip() if len(parts) > 1 else ""
        return name, args

    def files(self, telegram: "TelegramService") -> list[TelegramFile]:
        """Fetch metadata for photos (largest size), voices, documents, videos, audios and stickers."""
        if self.kind is not UpdateType.MESSAGE:
            raise UpdateChainTypeError(UpdateType.MESSAGE, self.kind)

        files = []
        for update in self.updates:
            message = update.message
            if message.photo:
                files.append(telegram.get_file(message.photo[-1].file_id))
            if message.voice:
                files.append(telegram.get_file(message.voice.file_id))
            if message.document:
                files.append(telegram.get_file(message.document.file_id, message.document.file_name))
            if message.video:
                files.append(telegram.get_file(message.video.file_id, message.video.file_name))
            if message.audio:
                files.append(telegram.get_file(message.audio.file_id, message.audio.file_name))
            if message.sticker:
                files.append(telegram.get_file(message.sticker.file_id, message.sticker.emoji))
        return files


def build_update_chain(updates: list[TelegramUpdate]) -> UpdateChain:
    """
    Group claimed updates into one chain.

    The first classifiable update fixes the chain's type, conversation and
    user name; later updates of another type or conversation are dropped.
    """
    chain = UpdateChain()

    for update in updates:
        kind = update_type(update)
        identity = update_identity(update)

        if kind is UpdateType.UNKNOWN or identity is None:
            continue

        if chain.kind is UpdateType.NONE:
            chain.kind = kind
            chain.identity = identity
            chain.user_name = update_user_name(update)

        if kind is not chain.kind or identity != chain.identity:
            logger.debug(
                "Dropping update outside the chain",
                extra={"context": {"update_id": update.update_id, "type": kind.value}},
            )
            continue

        chain.updates.append(update)

    return chain
