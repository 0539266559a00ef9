from tgsession.schemas.telegram import (
    MessageSent,
    TelegramCallbackQuery,
    TelegramChat,
    TelegramChatMember,
    TelegramFile,
    TelegramMessage,
    TelegramUpdate,
    TelegramUser,
    TelegramWebhookResponse,
)

__all__ = [
    "MessageSent",
    "TelegramCallbackQuery",
    "TelegramChat",
    "TelegramChatMember",
    "TelegramFile",
    "TelegramMessage",
    "TelegramUpdate",
    "TelegramUser",
    "TelegramWebhookResponse",
]
