"""Debounced update queue and session state machine for Telegram bots."""

from tgsession.services import (
    BREAK,
    DESTROY,
    Bot,
    BotDescription,
    Button,
    ButtonMode,
    Command,
    HandlerResult,
    HandlerSource,
    ParseMode,
    Session,
    SessionState,
    State,
    StateHandlerResult,
    decode_callback_data,
    encode_callback_data,
)

__version__ = "0.1.0"

__all__ = [
    "BREAK",
    "DESTROY",
    "Bot",
    "BotDescription",
    "Button",
    "ButtonMode",
    "Command",
    "HandlerResult",
    "HandlerSource",
    "ParseMode",
    "Session",
    "SessionState",
    "State",
    "StateHandlerResult",
    "decode_callback_data",
    "encode_callback_data",
]
