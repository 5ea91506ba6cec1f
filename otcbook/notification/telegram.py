"""Telegram 通知模块"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

from ..config import TelegramConfig
from ..execution.trade_executor import TradeResult
from .reconciler import Notification, NotificationKind, Role

logger = logging.getLogger(__name__)


def format_notification(notification: Notification) -> str:
    when = datetime.fromtimestamp(notification.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    if notification.kind == NotificationKind.UPDATED:
        headline = f"✏️ Order #{notification.order_id} updated"
    elif notification.role == Role.BOUGHT:
        headline = f"🟢 You filled order #{notification.order_id}"
    else:
        headline = f"💰 Your order #{notification.order_id} was filled"
    return f"*{headline}*\n{when}\n`{notification.tx_ref}`"


def format_trade_result(result: TradeResult) -> str:
    if result.success:
        return f"✅ *Order #{result.order_id} settled*\n`{result.tx_ref}`"
    kind = result.error_kind.value if result.error_kind else "unknown"
    lines = [f"❌ *Order #{result.order_id} failed* ({kind})", result.error]
    if result.tx_ref:
        lines.append(f"`{result.tx_ref}`")
    return "\n".join(lines)


class TelegramNotifier:
    """Telegram 通知器"""

    BASE_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, config: TelegramConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.url = self.BASE_URL.format(token=config.bot_token)
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.bot_token and self.config.chat_id)

    async def send(self, message: str) -> bool:
        """发送消息"""
        if not self.enabled:
            return False

        payload = {
            "chat_id": self.config.chat_id,
            "text": message,
            "parse_mode": "Markdown",
        }
        # 支持群组话题
        if self.config.topic_id:
            payload["message_thread_id"] = int(self.config.topic_id)

        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Telegram send failed: {e}")
            return False

        if resp.status_code == 200:
            logger.info(f"Telegram message sent, length: {len(message)}")
            return True
        logger.error(f"Telegram error: {resp.status_code} {resp.text}")
        return False

    async def push_notifications(self, notifications: Iterable[Notification]) -> int:
        """推送通知，返回成功条数"""
        sent = 0
        for notification in notifications:
            if await self.send(format_notification(notification)):
                sent += 1
        return sent
