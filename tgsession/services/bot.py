import threading
from datetime import datetime
from typing import Any, Callable, Optional

from tgsession.config import Settings
from tgsession.logging_config import get_logger
from tgsession.schemas.telegram import TelegramUpdate
from tgsession.services.dispatcher import Dispatcher
from tgsession.services.queue_service import EventQueue, utcnow
from tgsession.services.session_store import SessionStore
from tgsession.services.state_machine import BotDescription
from tgsession.services.store import KeyValueStore, create_store
from tgsession.services.telegram_service import TelegramError, TelegramService
from tgsession.services.update_chain import UpdateType, build_update_chain, update_identity, update_type

logger = get_logger("bot")


class Bot:
    """
    Ties the pieces together for one bot.

    `absorb` takes updates in (webhook or polling) and buffers them per
    conversation; `processing` claims one ready conversation and dispatches
    it. Handlers receive this object as their first argument, so they can
    reach `telegram` and `user_context` from it.
    """

    def __init__(
        self,
        settings: Settings,
        description: BotDescription,
        telegram: Optional[TelegramService] = None,
        store: Optional[KeyValueStore] = None,
        user_context: Any = None,
        now_func: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.description = description
        self.telegram = telegram or TelegramService(
            settings.bot_token,
            api_url=settings.telegram_api_url,
            timeout=settings.http_timeout_seconds,
            proxy=settings.telegram_proxy_url,
        )
        self.store = store or create_store(settings)
        self.user_context = user_context
        # Filled by setup() from getMe
        self.self_id: Optional[int] = None

        self.queue = EventQueue(self.store, settings.update_queue_wait_seconds, now_func=now_func)
        self.sessions = SessionStore(self.store)
        self.dispatcher = Dispatcher(description, self.sessions, max_transitions=settings.max_state_transitions)

    def absorb(self, update: TelegramUpdate) -> bool:
        """Buffer an incoming update. Returns False when it belongs to no conversation."""
        if update_type(update) is UpdateType.CALLBACK:
            # Stops the client-side spinner on the pressed button
            try:
                self.telegram.answer_callback_query(update.callback_query.id)
            except TelegramError as e:
                logger.warning(
                    f"Failed to answer callback query: {e}",
                    extra={"context": {"update_id": update.update_id}},
                )

        identity = update_identity(update)
        if identity is None:
            logger.debug("Skipping update without conversation", extra={"context": {"update_id": update.update_id}})
            return False

        self.queue.enqueue(identity, update)
        return True

    def processing(self) -> bool:
        """Claim one ready conversation and dispatch it. Returns True if a chain was dispatched."""
        updates = self.queue.claim_if_ready()
        if not updates:
            return False

        chain = build_update_chain(updates)
        if chain.kind is UpdateType.NONE:
            return False

        self.dispatcher.process(self, chain)
        return True

    def setup(self) -> None:
        """Fetch the bot's own id, then register commands and set up webhook or polling mode."""
        self.self_id = self.telegram.get_me().id
        logger.info("Bot identified", extra={"context": {"self_id": self.self_id}})

        if self.description.commands:
            self.telegram.set_my_commands(self.description.commands)

        if self.settings.webhook_url:
            self.telegram.set_webhook(self.settings.webhook_url, self.settings.webhook_cert_file)
            logger.info("Webhook set", extra={"context": {"url": self.settings.webhook_url}})
        else:
            self.telegram.delete_webhook()
            logger.info("Webhook deleted, polling mode")

    def poll(self, stop_event: threading.Event) -> None:
        """Long-poll Telegram and absorb every update until `stop_event` is set."""
        offset = 0
        while not stop_event.is_set():
            for update in self.telegram.get_updates(offset, self.settings.polling_timeout_seconds):
                offset = update.update_id + 1
                self.absorb(update)

    def close(self) -> None:
        self.store.close()
