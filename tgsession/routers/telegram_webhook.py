import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from tgsession.logging_config import get_logger
from tgsession.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from tgsession.services.bot import Bot

logger = get_logger("telegram_webhook")

router = APIRouter()


def get_bot(request: Request) -> Bot:
    return request.app.state.bot


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(request: Request, bot: Bot = Depends(get_bot)):
    """
    Absorb a Telegram update into the conversation queue.

    Always answers 200 so Telegram does not redeliver; failures are reported
    in the body.
    """
    body = await parse_telegram_update(request)
    if not isinstance(body, dict):
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    logger.debug("Telegram webhook received", extra={"context": {"update_id": body.get("update_id")}})

    try:
        update = TelegramUpdate.model_validate(body)
    except ValidationError as e:
        logger.warning("Malformed telegram update", extra={"context": {"error": str(e)}})
        return TelegramWebhookResponse(success=False, message="Malformed telegram update")

    try:
        absorbed = await asyncio.to_thread(bot.absorb, update)
    except Exception as e:
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(success=False, message=str(e))

    if not absorbed:
        return TelegramWebhookResponse(success=True, message="No actionable content")
    return TelegramWebhookResponse(success=True, message="Queued")
