from unittest.mock import AsyncMock

import pytest
from telegram.error import TelegramError

from analysis.models import NoAction, SwapRequest, SwapSide, Venue
from services.swap_executor import AttemptStatus, SwapResult
from services.telegram_notifier import TelegramNotifier, format_spread_veto, format_swap_result

REQUEST = SwapRequest('LRB', 'USDL', 1000, 2010, Venue.POOL_ROUTER, SwapSide.BUY)


def test_format_swap_result_includes_tx_and_escaped_reason():
    result = SwapResult(REQUEST, AttemptStatus.REJECTED, tx_id='0xabc', reason='SLIPPAGE_EXCEEDED: <fault>')

    text = format_swap_result("Peg buy", result)

    assert "Peg buy: REJECTED" in text
    assert "maxIn=2010" in text
    assert "0xabc" in text
    assert "&lt;fault&gt;" in text


def test_format_spread_veto():
    text = format_spread_veto(NoAction("spread_exceeded", warning=True, spread_bps=150), 100)

    assert "150" in text
    assert "100" in text


@pytest.mark.asyncio
async def test_send_uses_html_and_reports_delivery():
    bot = AsyncMock()
    notifier = TelegramNotifier(bot, "42")

    assert await notifier.send("<b>hi</b>") is True
    bot.send_message.assert_awaited_once_with(chat_id="42", text="<b>hi</b>", parse_mode='HTML')


@pytest.mark.asyncio
async def test_send_swallows_telegram_errors():
    bot = AsyncMock()
    bot.send_message.side_effect = TelegramError("blocked")
    notifier = TelegramNotifier(bot, "42")

    assert await notifier.send("x") is False


@pytest.mark.asyncio
async def test_disabled_notifier_sends_nothing():
    notifier = TelegramNotifier()

    assert notifier.enabled is False
    assert await notifier.send("x") is False
