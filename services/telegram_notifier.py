"""Pushes swap outcomes and vetoes to the operator's Telegram chat."""
from __future__ import annotations

import html
import logging
from typing import Optional

from telegram.error import TelegramError

from analysis.models import NoAction
from services.swap_executor import AttemptStatus, SwapResult

logger = logging.getLogger(__name__)

_STATUS_ICONS = {
    AttemptStatus.SUCCEEDED: "✅",
    AttemptStatus.FAILED: "❌",
    AttemptStatus.TIMED_OUT: "⏳",
    AttemptStatus.REJECTED: "🚫",
    AttemptStatus.DRY_RUN: "🧪",
    AttemptStatus.SKIPPED: "⏭️",
}


def format_swap_result(label: str, result: SwapResult) -> str:
    request = result.request
    icon = _STATUS_ICONS.get(result.status, "")
    lines = [
        f"<b>{icon} {html.escape(label)}: {result.status.value}</b>",
        f"<code>{html.escape(request.describe())}</code>",
    ]
    if result.tx_id:
        lines.append(f"Tx: <code>{html.escape(result.tx_id)}</code>")
    if result.reason:
        lines.append(f"Reason: {html.escape(result.reason)}")
    return "\n".join(lines)


def format_spread_veto(decision: NoAction, max_spread_bps: int) -> str:
    return (
        "<b>⚠️ Rebalance vetoed</b>\n"
        f"Estimated spread <code>{decision.spread_bps}</code> bps exceeds maximum <code>{max_spread_bps}</code> bps"
    )


class TelegramNotifier:
    def __init__(self, bot=None, chat_id: Optional[str] = None) -> None:
        self.bot = bot
        self.chat_id = chat_id

    @property
    def enabled(self) -> bool:
        return self.bot is not None and bool(self.chat_id)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text, parse_mode='HTML')
            return True
        except TelegramError as exc:
            logger.warning("Could not deliver Telegram alert: %s", exc)
            return False
