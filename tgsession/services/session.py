from typing import Any, Optional

from tgsession.services.session_store import SessionStore
from tgsession.services.state_machine import SessionState
from tgsession.services.store import ConversationIdentity
from tgsession.services.update_chain import UpdateChain


class Session:
    """What handlers see of the conversation being processed."""

    def __init__(self, chain: UpdateChain, sessions: SessionStore, user_context: Any = None):
        if chain.identity is None:
            raise ValueError("Cannot open a session for an empty update chain")
        self._chain = chain
        self._sessions = sessions
        self.user_context = user_context

    @property
    def identity(self) -> ConversationIdentity:
        return self._chain.identity

    @property
    def chat_id(self) -> int:
        return self._chain.identity.chat_id

    @property
    def user_id(self) -> int:
        return self._chain.identity.user_id

    @property
    def user_name(self) -> str:
        return self._chain.user_name

    @property
    def update_chain(self) -> UpdateChain:
        return self._chain

    def state_get(self) -> tuple[Optional[SessionState], bool]:
        record, exists = self._sessions.get(self.identity)
        if not exists:
            return None, False
        return record.session_state, True

    def slot_save(self, name: str, value: Any) -> None:
        self._sessions.save_slot(self.identity, name, value)

    def slot_get(self, name: str) -> tuple[Any, bool]:
        return self._sessions.get_slot(self.identity, name)

    def slot_del(self, name: str) -> None:
        self._sessions.delete_slot(self.identity, name)
