from tgsession.services.bot import Bot
from tgsession.services.dispatcher import Dispatcher
from tgsession.services.queue_service import EventQueue, QueueError
from tgsession.services.session import Session
from tgsession.services.session_store import SessionNotFoundError, SessionRecord, SessionStore
from tgsession.services.state_machine import (
    BREAK,
    DESTROY,
    BotDescription,
    Button,
    ButtonMode,
    CallbackDataError,
    Command,
    HandlerResult,
    HandlerSource,
    ParseMode,
    RoutingError,
    SessionState,
    State,
    StateFormatError,
    StateHandlerResult,
    StateMissingError,
    TransitionLimitError,
    decode_callback_data,
    encode_callback_data,
)
from tgsession.services.store import ConversationIdentity, KeyValueStore, MemoryStore, RedisStore, create_store
from tgsession.services.telegram_service import (
    FileSend,
    FileSendStream,
    FileType,
    SendMessageData,
    TelegramError,
    TelegramService,
)
from tgsession.services.update_chain import UpdateChain, UpdateChainTypeError, UpdateType, build_update_chain
