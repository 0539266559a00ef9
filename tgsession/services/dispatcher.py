from typing import Any, Callable, Optional

from tgsession.logging_config import LoggerAdapter, conversation_logger, get_logger
from tgsession.services.session import Session
from tgsession.services.session_store import SessionStore
from tgsession.services.state_machine import (
    BotDescription,
    HandlerResult,
    HandlerSource,
    SessionState,
    StateKind,
    TransitionLimitError,
)
from tgsession.services.telegram_service import SendMessageData
from tgsession.services.update_chain import UpdateChain, UpdateType

logger = get_logger("dispatcher")

DEFAULT_MAX_TRANSITIONS = 32


class Dispatcher:
    """
    Routes a claimed update chain to the bot author's handlers and walks the
    session through the states they return.

    Routing order: declared command, init (no session yet), then the current
    state's message handler or the pressed button's callback handler. Every
    handler result ends in `state_switch`.
    """

    def __init__(
        self,
        description: BotDescription,
        sessions: SessionStore,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
    ):
        self.description = description
        self.sessions = sessions
        self.max_transitions = max_transitions

    def process(self, bot: Any, chain: UpdateChain) -> None:
        if chain.kind is UpdateType.NONE or not chain.updates:
            return

        session = Session(chain, self.sessions, getattr(bot, "user_context", None))
        log = conversation_logger(logger, session.chat_id, session.user_id)

        if self._process_command(bot, session, log):
            return

        _, exists = self.sessions.get(session.identity)
        if not exists:
            self._process_init(bot, session, log)
            return

        if chain.kind is UpdateType.MESSAGE:
            self._process_message(bot, session, log)
        else:
            self._process_callback(bot, session, log)

    def _process_command(self, bot: Any, session: Session, log: LoggerAdapter) -> bool:
        """Returns True when the chain was handled as a command."""
        name, args = session.update_chain.command()
        if not name:
            return False

        # Commands without a handler only populate the command menu
        command = self.description.command_lookup(name)
        if command is None or command.handler is None:
            return False

        log.info("Routing command", context={"command": name})
        result = self._call_handler(
            bot, session, HandlerSource.COMMAND, lambda: command.handler(bot, session, name, args)
        )
        self.state_switch(bot, session, result.next_state, None)
        return True

    def _process_init(self, bot: Any, session: Session, log: LoggerAdapter) -> None:
        init_handler = self.description.init_handler
        if init_handler is None:
            log.debug("No session and no init handler, skipping chain")
            return

        log.info("Routing init")
        result = self._call_handler(bot, session, HandlerSource.INIT, lambda: init_handler(bot, session))
        self.state_switch(bot, session, result.next_state, None)

    def _process_message(self, bot: Any, session: Session, log: LoggerAdapter) -> None:
        current, _ = session.state_get()
        state = self.description.state_lookup(current)
        if state.message_handler is None:
            log.debug("State has no message handler", context={"state": str(current)})
            return

        log.info("Routing message", context={"state": str(current)})
        result = self._call_handler(
            bot, session, HandlerSource.MESSAGE, lambda: state.message_handler(bot, session)
        )
        self.state_switch(bot, session, result.next_state, None)

    def _process_callback(self, bot: Any, session: Session, log: LoggerAdapter) -> None:
        chain = session.update_chain
        target, identifier = chain.callback_state()

        if target.is_terminal:
            log.info("Routing terminal callback", context={"state": str(target)})
            self.state_switch(bot, session, target, chain.message_id())
            return

        state = self.description.state_lookup(target)
        if state.callback_handler is None:
            log.debug("State has no callback handler", context={"state": str(target)})
            return

        log.info("Routing callback", context={"state": str(target), "identifier": identifier})
        result = self._call_handler(
            bot, session, HandlerSource.CALLBACK, lambda: state.callback_handler(bot, session, identifier)
        )
        self.state_switch(bot, session, result.next_state, chain.message_id())

    def _call_handler(
        self,
        bot: Any,
        session: Session,
        source: HandlerSource,
        handler: Callable[[], HandlerResult],
    ) -> HandlerResult:
        """Run the prime handler, then `handler`, routing failures to the error handler."""
        try:
            if self.description.prime_handler is not None:
                primed = self.description.prime_handler(bot, session, source)
                if primed is not None:
                    logger.debug(
                        "Prime handler redirected",
                        extra={"context": {"source": source.value, "state": str(primed.next_state)}},
                    )
                    return primed
            return handler()
        except Exception as e:
            return self._handle_error(bot, session, e)

    def _handle_error(self, bot: Any, session: Session, error: Exception) -> HandlerResult:
        if self.description.error_handler is None:
            raise error

        logger.warning(
            f"Handler failed: {error}",
            extra={"context": {"conversation": session.identity.key, "error_type": type(error).__name__}},
        )
        return self.description.error_handler(bot, session, error)

    def state_switch(
        self,
        bot: Any,
        session: Session,
        next_state: SessionState,
        prior_message_id: Optional[int],
    ) -> None:
        """
        Move the session through `next_state` and whatever its state handlers
        chain into, until a BREAK, a DESTROY or a state that waits for user
        input. More than `max_transitions` entered states raise
        TransitionLimitError.
        """
        state_value = next_state
        prior = prior_message_id
        transitions = 0

        while True:
            if state_value.kind is StateKind.BREAK:
                return

            if state_value.kind is StateKind.DESTROY:
                if self.description.destroy_handler is not None:
                    self.description.destroy_handler(bot, session)
                self.sessions.destroy(session.identity)
                return

            if transitions >= self.max_transitions:
                raise TransitionLimitError(self.max_transitions, state_value)
            transitions += 1

            state = self.description.state_lookup(state_value)
            self.sessions.set_state(session.identity, state_value)
            logger.debug(
                "Session state switched",
                extra={"context": {"conversation": session.identity.key, "state": str(state_value)}},
            )

            if state.state_handler is None:
                return

            try:
                result = state.state_handler(bot, session)
            except Exception as e:
                state_value = self._handle_error(bot, session, e).next_state
                prior = None
                continue

            sent_id = None
            if result.message:
                edit_id = prior if result.stick_message else None
                messages = bot.telegram.send_message(
                    session.chat_id,
                    edit_id,
                    SendMessageData(
                        message=result.message,
                        parse_mode=result.parse_mode,
                        disable_web_page_preview=result.disable_web_page_preview,
                        buttons=result.buttons,
                        button_state=state_value,
                    ),
                )
                if messages:
                    sent_id = messages[0].message_id
                if state.sent_handler is not None:
                    state.sent_handler(bot, session, messages)

            if state.message_handler is not None:
                return

            state_value = result.next_state
            if sent_id is not None:
                prior = sent_id
