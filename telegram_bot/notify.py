import logging

from telegram import Bot

from billing_server import config

logger = logging.getLogger(__name__)


async def send_telegram_message(chat_id: int, text: str) -> bool:
    """Push ``text`` to a Telegram chat. Returns ``False`` when nothing was sent."""
    if not config.TELEGRAM_BOT_TOKEN:
        logger.debug("TELEGRAM_BOT_TOKEN is not set; skipping message to chat_id=%s", chat_id)
        return False
    try:
        bot = Bot(token=config.TELEGRAM_BOT_TOKEN)
        logger.info("Sending Telegram message: chat_id=%s", chat_id)
        await bot.send_message(chat_id=chat_id, text=text)
        return True
    except Exception:
        logger.exception("Failed to send Telegram message to chat_id=%s", chat_id)
        return False


async def alert_operator(text: str) -> bool:
    """Send an operator alert to ``ADMIN_CHAT_ID``."""
    if config.ADMIN_CHAT_ID is None:
        logger.warning("ADMIN_CHAT_ID is not set; operator alert only logged: %s", text)
        return False
    return await send_telegram_message(chat_id=config.ADMIN_CHAT_ID, text=f"⚠️ {text}")
