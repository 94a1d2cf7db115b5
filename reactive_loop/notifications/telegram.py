"""Telegram notifier: alerts through an unmuted bot, loop logs through a second one."""
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Send notifications through two Telegram bots."""

    def __init__(self, config: TelegramConfig, timeout_seconds: float = 10.0) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._ssl_context = ssl.create_default_context(cafile=certifi.where())

    async def _send_message(
        self, message: str, bot_token: str, silent: bool = False
    ) -> bool:
        """Send one message through the given bot, truncated to Telegram's limit."""
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": message[:MAX_MESSAGE_LENGTH],
            "disable_notification": silent,
            "disable_web_page_preview": True,
        }

        connector = aiohttp.TCPConnector(ssl=self._ssl_context)
        try:
            async with aiohttp.ClientSession(
                connector=connector, timeout=self._timeout
            ) as session:
                async with session.post(url, json=payload) as response:
                    if response.status == 200:
                        return True
                    body = await response.text()
                    logger.error(
                        "Telegram rejected message (%s): %s", response.status, body[:200]
                    )
                    return False
        except aiohttp.ClientError as e:
            logger.error("Telegram request failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send critical alert (unmuted bot)."""
        text = f"{subject}\n\n{message}" if subject else message
        if await self._send_message(text, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Send loop log message (logs bot)."""
        if await self._send_message(message, self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
