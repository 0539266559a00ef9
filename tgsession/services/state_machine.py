import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

CALLBACK_DATA_MAX_BYTES = 64

_DESTROY_VALUE = "internal:destroy"
_NAMED_PREFIX = "user:"


class RoutingError(Exception):
    """A chain could not be routed; fatal for the current processing cycle."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StateMissingError(RoutingError):
    def __init__(self, state: "SessionState"):
        self.state = state
        super().__init__(f"Session state '{state}' not defined in bot description")


class StateFormatError(RoutingError):
    pass


class CallbackDataError(RoutingError):
    pass


class TransitionLimitError(RoutingError):
    def __init__(self, limit: int, last_state: "SessionState"):
        self.limit = limit
        self.last_state = last_state
        super().__init__(f"More than {limit} state transitions in one cycle, last state '{last_state}'")


class StateKind(str, Enum):
    BREAK = "break"
    DESTROY = "destroy"
    NAMED = "named"


@dataclass(frozen=True)
class SessionState:
    """
    Conversation state: BREAK (stay put), DESTROY (wipe the session) or a
    named state declared in the bot description.

    Persisted and sent inside callback data through `encode()`.
    """

    kind: StateKind
    name: str = ""

    @classmethod
    def named(cls, name: str) -> "SessionState":
        if not name:
            raise ValueError("State name must not be empty")
        return cls(StateKind.NAMED, name)

    @classmethod
    def decode(cls, value: str) -> "SessionState":
        if value == "":
            return BREAK
        if value == _DESTROY_VALUE:
            return DESTROY
        if value.startswith(_NAMED_PREFIX) and len(value) > len(_NAMED_PREFIX):
            return cls.named(value[len(_NAMED_PREFIX):])
        raise StateFormatError(f"Unknown session state value: {value!r}")

    def encode(self) -> str:
        if self.kind is StateKind.BREAK:
            return ""
        if self.kind is StateKind.DESTROY:
            return _DESTROY_VALUE
        return _NAMED_PREFIX + self.name

    @property
    def is_terminal(self) -> bool:
        return self.kind is not StateKind.NAMED

    def __str__(self) -> str:
        return self.name if self.kind is StateKind.NAMED else self.kind.value


BREAK = SessionState(StateKind.BREAK)
DESTROY = SessionState(StateKind.DESTROY)


def encode_callback_data(state: SessionState, identifier: str) -> str:
    """Pack a button's target state and identifier into Telegram callback data."""
    data = json.dumps({"s": state.encode(), "i": identifier}, separators=(",", ":"), ensure_ascii=False)
    if len(data.encode("utf-8")) > CALLBACK_DATA_MAX_BYTES:
        raise CallbackDataError(
            f"Callback data exceeds {CALLBACK_DATA_MAX_BYTES} bytes for state '{state}' and identifier {identifier!r}"
        )
    return data


def decode_callback_data(data: Optional[str]) -> tuple[SessionState, str]:
    """Unpack callback data. Empty data means "do nothing" (BREAK)."""
    if not data:
        return BREAK, ""

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise CallbackDataError(f"Wrong callback data format: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("s"), str):
        raise CallbackDataError(f"Wrong callback data format: {data!r}")

    identifier = payload.get("i", "")
    if not isinstance(identifier, str):
        raise CallbackDataError(f"Wrong callback identifier: {identifier!r}")

    try:
        state = SessionState.decode(payload["s"])
    except StateFormatError as e:
        raise CallbackDataError(e.message) from e

    return state, identifier


class ButtonMode(str, Enum):
    DATA = "data"
    URL = "url"
    SWITCH = "switch"


class ParseMode(str, Enum):
    MARKDOWN = "Markdown"
    MARKDOWN_V2 = "MarkdownV2"
    HTML = "HTML"


class HandlerSource(str, Enum):
    INIT = "init"
    COMMAND = "command"
    MESSAGE = "message"
    CALLBACK = "callback"


@dataclass
class Button:
    text: str
    identifier: str = ""
    mode: ButtonMode = ButtonMode.DATA


@dataclass
class HandlerResult:
    """Returned by command, init, message, callback, error and prime handlers."""

    next_state: SessionState = BREAK


@dataclass
class StateHandlerResult:
    """Returned by a state handler when the session enters its state."""

    message: str = ""
    parse_mode: ParseMode = ParseMode.HTML
    disable_web_page_preview: bool = False
    buttons: list[list[Button]] = field(default_factory=list)
    # Ignored when the state declares a message handler
    next_state: SessionState = BREAK
    # Edit the previous message instead of sending a new one
    stick_message: bool = False


# Handler signatures (bot, session, ...); see tgsession.services.bot.Bot and
# tgsession.services.session.Session
CommandHandler = Callable[[Any, Any, str, str], HandlerResult]
InitHandler = Callable[[Any, Any], HandlerResult]
MessageHandler = Callable[[Any, Any], HandlerResult]
CallbackHandler = Callable[[Any, Any, str], HandlerResult]
StateHandler = Callable[[Any, Any], StateHandlerResult]
SentHandler = Callable[[Any, Any, list], None]
ErrorHandler = Callable[[Any, Any, Exception], HandlerResult]
PrimeHandler = Callable[[Any, Any, HandlerSource], Optional[HandlerResult]]
DestroyHandler = Callable[[Any, Any], None]


@dataclass(frozen=True)
class Command:
    # Without the leading '/'
    command: str
    description: str = ""
    handler: Optional[CommandHandler] = None


@dataclass(frozen=True)
class State:
    state_handler: Optional[StateHandler] = None
    message_handler: Optional[MessageHandler] = None
    callback_handler: Optional[CallbackHandler] = None
    sent_handler: Optional[SentHandler] = None


@dataclass(frozen=True)
class BotDescription:
    """Everything the bot author declares: commands, states and global handlers."""

    commands: tuple[Command, ...] = ()
    states: Mapping[SessionState, State] = field(default_factory=dict)
    init_handler: Optional[InitHandler] = None
    error_handler: Optional[ErrorHandler] = None
    prime_handler: Optional[PrimeHandler] = None
    destroy_handler: Optional[DestroyHandler] = None

    def __post_init__(self):
        for state in self.states:
            if state.kind is not StateKind.NAMED:
                raise ValueError(f"Only named states can be declared, got '{state}'")
        object.__setattr__(self, "commands", tuple(self.commands))
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))

    def command_lookup(self, name: str) -> Optional[Command]:
        for command in self.commands:
            if command.command == name:
                return command
        return None

    def state_lookup(self, state: SessionState) -> State:
        description = self.states.get(state)
        if description is None:
            raise StateMissingError(state)
        return description
