import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO, Iterable, Iterator, Optional

import httpx

from tgsession.logging_config import get_logger
from tgsession.schemas.telegram import MessageSent, TelegramChatMember, TelegramFile, TelegramUpdate, TelegramUser
from tgsession.services.state_machine import (
    BREAK,
    Button,
    ButtonMode,
    Command,
    ParseMode,
    SessionState,
    encode_callback_data,
)

logger = get_logger("telegram_service")


class TelegramError(Exception):
    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        self.method = method
        self.description = description
        self.error_code = error_code
        super().__init__(f"Telegram {method} failed: {description}")


class FileType(str, Enum):
    DOCUMENT = "document"
    PHOTO = "photo"
    VOICE = "voice"
    VIDEO = "video"
    AUDIO = "audio"
    STICKER = "sticker"


# FileType -> (API method, multipart field)
_UPLOAD_METHODS = {
    FileType.DOCUMENT: ("sendDocument", "document"),
    FileType.PHOTO: ("sendPhoto", "photo"),
    FileType.VOICE: ("sendVoice", "voice"),
    FileType.VIDEO: ("sendVideo", "video"),
    FileType.AUDIO: ("sendAudio", "audio"),
    FileType.STICKER: ("sendSticker", "sticker"),
}


@dataclass
class SendMessageData:
    message: str
    parse_mode: ParseMode = ParseMode.HTML
    disable_web_page_preview: bool = False
    buttons: list[list[Button]] = field(default_factory=list)
    # State whose callback handler receives presses of the data buttons
    button_state: SessionState = BREAK


@dataclass
class FileSendStream:
    file_type: FileType
    file_name: str
    caption: str = ""
    parse_mode: ParseMode = ParseMode.HTML
    buttons: list[list[Button]] = field(default_factory=list)
    # None sends data button identifiers as raw callback data
    button_state: Optional[SessionState] = None


@dataclass
class FileSend:
    file_type: FileType
    file_path: str
    caption: str = ""
    parse_mode: ParseMode = ParseMode.HTML
    buttons: list[list[Button]] = field(default_factory=list)
    button_state: Optional[SessionState] = None


def build_inline_keyboard(buttons: list[list[Button]], state: Optional[SessionState]) -> dict:
    """Build an inline keyboard; data buttons carry `state` and their identifier."""
    rows = []
    for row in buttons:
        keyboard_row = []
        for button in row:
            if button.mode is ButtonMode.URL:
                keyboard_row.append({"text": button.text, "url": button.identifier})
            elif button.mode is ButtonMode.SWITCH:
                keyboard_row.append({"text": button.text, "switch_inline_query": button.identifier})
            else:
                data = button.identifier if state is None else encode_callback_data(state, button.identifier)
                keyboard_row.append({"text": button.text, "callback_data": data})
        rows.append(keyboard_row)
    return {"inline_keyboard": rows}


class TelegramService:
    """Client for the Telegram Bot API."""

    API_URL = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: str,
        api_url: Optional[str] = None,
        timeout: float = 30.0,
        http_transport: Optional[httpx.BaseTransport] = None,
        proxy: Optional[str] = None,
    ):
        self.bot_token = bot_token
        api_url = (api_url or self.API_URL).rstrip("/")
        self.base_url = f"{api_url}/bot{bot_token}"
        self.file_base_url = f"{api_url}/file/bot{bot_token}"
        self.timeout = timeout
        self.proxy = proxy
        self._http_transport = http_transport

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        return httpx.Client(timeout=timeout or self.timeout, transport=self._http_transport, proxy=self.proxy)

    def _make_request(
        self,
        method: str,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Call a Bot API method and return its `result`. Raises TelegramError."""
        url = f"{self.base_url}/{method}"
        try:
            with self._client(timeout) as client:
                if files:
                    response = client.post(url, data=data or {}, files=files)
                else:
                    response = client.post(url, json=data or {})
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            raise TelegramError(method, str(e)) from e

        if not payload.get("ok"):
            description = payload.get("description", "unknown error")
            logger.warning(
                "Telegram API rejected request",
                extra={"context": {"method": method, "description": description}},
            )
            raise TelegramError(method, description, payload.get("error_code"))

        return payload.get("result")

    def send_message(self, chat_id: int, message_id: Optional[int], msg_data: SendMessageData) -> list[MessageSent]:
        """Send a new message, or edit `message_id` when it is set."""
        data = {
            "chat_id": chat_id,
            "text": msg_data.message,
            "parse_mode": msg_data.parse_mode.value,
        }
        if msg_data.disable_web_page_preview:
            data["link_preview_options"] = {"is_disabled": True}
        if msg_data.buttons:
            data["reply_markup"] = build_inline_keyboard(msg_data.buttons, msg_data.button_state)

        if message_id is None:
            result = self._make_request("sendMessage", data)
        else:
            data["message_id"] = message_id
            result = self._make_request("editMessageText", data)

        # editMessageText answers `true` for inline messages
        if isinstance(result, dict):
            return [MessageSent.model_validate(result)]
        return []

    def answer_callback_query(self, callback_query_id: str, text: str = "") -> bool:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return bool(self._make_request("answerCallbackQuery", data))

    def get_file(self, file_id: str, file_name: Optional[str] = None) -> TelegramFile:
        """Fetch file metadata. Without `file_name` the base name of the remote path is used."""
        file = TelegramFile.model_validate(self._make_request("getFile", {"file_id": file_id}))
        if file_name:
            file.file_name = file_name
        elif file.file_path:
            file.file_name = PurePosixPath(file.file_path).name
        return file

    def file_link(self, file: TelegramFile) -> str:
        return f"{self.file_base_url}/{file.file_path}"

    @contextmanager
    def download_file_stream(self, file: TelegramFile) -> Iterator[Iterator[bytes]]:
        """Yield the file content as byte chunks."""
        if not file.file_path:
            raise TelegramError("download", f"File {file.file_id} has no remote path")

        try:
            with self._client() as client:
                with client.stream("GET", self.file_link(file)) as response:
                    if response.status_code != httpx.codes.OK:
                        raise TelegramError("download", f"unexpected status code: {response.status_code}")
                    yield response.iter_bytes()
        except httpx.HTTPError as e:
            raise TelegramError("download", str(e)) from e

    def download_file(self, file: TelegramFile, dst_path: str) -> None:
        with self.download_file_stream(file) as chunks:
            with open(dst_path, "wb") as handle:
                for chunk in chunks:
                    handle.write(chunk)

    def upload_file_stream(self, chat_id: int, file: FileSendStream, reader: BinaryIO) -> MessageSent:
        method, field_name = _UPLOAD_METHODS[file.file_type]

        data = {"chat_id": str(chat_id)}
        if file.caption and file.file_type is not FileType.STICKER:
            data["caption"] = file.caption
            data["parse_mode"] = file.parse_mode.value
        if file.buttons:
            data["reply_markup"] = json.dumps(build_inline_keyboard(file.buttons, file.button_state))

        result = self._make_request(method, data=data, files={field_name: (file.file_name, reader)})
        return MessageSent.model_validate(result)

    def upload_file(self, chat_id: int, file: FileSend) -> MessageSent:
        path = Path(file.file_path)
        with path.open("rb") as handle:
            return self.upload_file_stream(
                chat_id,
                FileSendStream(
                    file_type=file.file_type,
                    file_name=path.name,
                    caption=file.caption,
                    parse_mode=file.parse_mode,
                    buttons=file.buttons,
                    button_state=file.button_state,
                ),
                handle,
            )

    def get_updates(self, offset: int = 0, timeout: int = 60) -> list[TelegramUpdate]:
        """Long-poll for updates newer than `offset`."""
        result = self._make_request(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message", "callback_query"]},
            timeout=timeout + self.timeout,
        )
        return [TelegramUpdate.model_validate(item) for item in result or []]

    def get_me(self) -> TelegramUser:
        """The bot's own account."""
        return TelegramUser.model_validate(self._make_request("getMe"))

    def get_chat_member(self, chat_id: int, user_id: int) -> TelegramChatMember:
        result = self._make_request("getChatMember", {"chat_id": chat_id, "user_id": user_id})
        return TelegramChatMember.model_validate(result)

    def set_my_commands(self, commands: Iterable[Command]) -> None:
        self._make_request(
            "setMyCommands",
            {"commands": [{"command": c.command, "description": c.description} for c in commands]},
        )

    def set_webhook(self, url: str, cert_file: Optional[str] = None) -> None:
        if not cert_file:
            self._make_request("setWebhook", {"url": url})
            return

        path = Path(cert_file)
        with path.open("rb") as handle:
            self._make_request("setWebhook", data={"url": url}, files={"certificate": (path.name, handle)})

    def delete_webhook(self) -> None:
        self._make_request("deleteWebhook")
