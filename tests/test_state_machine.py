import json

import pytest

from tgsession.services.state_machine import (
    BREAK,
    CALLBACK_DATA_MAX_BYTES,
    DESTROY,
    BotDescription,
    CallbackDataError,
    Command,
    SessionState,
    State,
    StateFormatError,
    StateKind,
    StateMissingError,
    decode_callback_data,
    encode_callback_data,
)


class TestSessionState:
    def test_encoding(self):
        assert BREAK.encode() == ""
        assert DESTROY.encode() == "internal:destroy"
        assert SessionState.named("welcome").encode() == "user:welcome"

    def test_decode(self):
        assert SessionState.decode("") == BREAK
        assert SessionState.decode("internal:destroy") == DESTROY
        assert SessionState.decode("user:welcome") == SessionState.named("welcome")

    def test_decode_unknown_value(self):
        with pytest.raises(StateFormatError):
            SessionState.decode("welcome")
        with pytest.raises(StateFormatError):
            SessionState.decode("user:")

    def test_named_state_must_have_name(self):
        with pytest.raises(ValueError):
            SessionState.named("")

    def test_user_state_named_like_reserved_is_distinct(self):
        state = SessionState.named("destroy")
        assert state != DESTROY
        assert state.kind is StateKind.NAMED
        assert not state.is_terminal

    def test_terminal_states(self):
        assert BREAK.is_terminal
        assert DESTROY.is_terminal

    def test_str(self):
        assert str(SessionState.named("menu")) == "menu"
        assert str(DESTROY) == "destroy"


class TestCallbackCodec:
    def test_round_trip(self):
        data = encode_callback_data(SessionState.named("menu"), "item-3")

        assert json.loads(data) == {"s": "user:menu", "i": "item-3"}
        assert decode_callback_data(data) == (SessionState.named("menu"), "item-3")

    def test_terminal_state(self):
        assert decode_callback_data(encode_callback_data(DESTROY, "")) == (DESTROY, "")

    def test_empty_data_means_break(self):
        assert decode_callback_data("") == (BREAK, "")
        assert decode_callback_data(None) == (BREAK, "")

    def test_missing_identifier_defaults_empty(self):
        assert decode_callback_data('{"s":"user:menu"}') == (SessionState.named("menu"), "")

    def test_too_long(self):
        with pytest.raises(CallbackDataError):
            encode_callback_data(SessionState.named("menu"), "x" * CALLBACK_DATA_MAX_BYTES)

    def test_limit_counts_bytes(self):
        # Cyrillic letters take two bytes each in UTF-8
        with pytest.raises(CallbackDataError):
            encode_callback_data(SessionState.named("m"), "я" * 25)

    @pytest.mark.parametrize(
        "data",
        ["not json", "[1, 2]", '{"i": "x"}', '{"s": 5}', '{"s": "user:a", "i": 3}', '{"s": "bogus"}'],
    )
    def test_malformed(self, data):
        with pytest.raises(CallbackDataError):
            decode_callback_data(data)


class TestBotDescription:
    def test_lookups(self):
        welcome = SessionState.named("welcome")
        state = State()
        description = BotDescription(commands=[Command("start")], states={welcome: state})

        assert description.command_lookup("start").command == "start"
        assert description.command_lookup("stop") is None
        assert description.state_lookup(welcome) is state

    def test_missing_state(self):
        with pytest.raises(StateMissingError) as exc_info:
            BotDescription().state_lookup(SessionState.named("ghost"))
        assert exc_info.value.state == SessionState.named("ghost")

    def test_reserved_states_cannot_be_declared(self):
        with pytest.raises(ValueError):
            BotDescription(states={DESTROY: State()})

    def test_description_is_immutable(self):
        welcome = SessionState.named("welcome")
        states = {welcome: State()}
        description = BotDescription(states=states)

        states[SessionState.named("other")] = State()

        assert SessionState.named("other") not in description.states
        with pytest.raises(TypeError):
            description.states[SessionState.named("x")] = State()
        with pytest.raises(AttributeError):
            description.init_handler = None
