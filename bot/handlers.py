# bot/handlers.py
import html
import logging
import time

from telegram import Update
from telegram.ext import ContextTypes

from analysis.models import NoAction, RebalanceAction
from storage import SQLiteRepository

logger = logging.getLogger(__name__)

# --- Command Handlers ---

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = """
    <b>Peg Stabilizer Bot</b>

    Keeps the pegged token on target through the pool router and rebalances the wallet on Aviary.

    <b><u>Available Commands:</u></b>
    /status - Bot status, last cycle and last peg check
    /balances - Wallet balances and market values from the last cycle
    /swaps - Most recent swap attempts
    /help - Show this help message
    """
    await update.message.reply_html(help_text)

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Reports the control loop's state."""
    bot_data = context.application.bot_data
    config = bot_data.get('config')
    loop_task = bot_data.get('control_loop_task')
    start_time = bot_data.get('start_time', 0)

    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))

    if loop_task and not loop_task.done():
        loop_status = "✅ Running" if bot_data.get('ready') else "⏳ Waiting for price sources"
    elif loop_task and loop_task.done():
        loop_status = "❌ Stopped with error" if not loop_task.cancelled() and loop_task.exception() else "⏹️ Stopped"
    else:
        loop_status = "⚠️ Not started"

    status_text = (
        f"<b>🤖 Bot Status</b>\n"
        f"Uptime: <code>{uptime_str}</code>\n"
        f"Mode: <code>{'dry run' if config is None or config.dry_run else 'live'}</code>\n\n"
        f"<b>🔁 Control Loop</b>\n"
        f"Status: {loop_status}\n"
        f"Last Cycle: <code>{bot_data.get('last_cycle_time', 'Never')}</code>\n"
    )

    peg = bot_data.get('last_peg')
    if peg:
        status_text += (
            f"Peg Price: <code>{peg['price']:.4f}</code> (target <code>{peg['target']:.2f}</code>)\n"
            f"Peg Action: <code>{peg['action']}</code>\n"
        )

    decision = bot_data.get('last_rebalance')
    if isinstance(decision, RebalanceAction):
        status_text += f"Rebalance: <code>{decision.direction.value} {decision.quantity}</code>\n"
    elif isinstance(decision, NoAction):
        status_text += f"Rebalance: <code>{decision.reason}</code>\n"

    last_error = bot_data.get('last_error')
    if last_error:
        status_text += f"Last Error: <pre>{html.escape(last_error)}</pre>\n"

    await update.message.reply_html(status_text)

async def balances_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows the balance report from the most recent cycle."""
    snapshot = context.application.bot_data.get('last_balances')
    prices = context.application.bot_data.get('last_prices') or {}
    if snapshot is None:
        await update.message.reply_text("No balance report yet; the first cycle has not finished.")
        return

    symbols = list(prices) or ["A", "B"]
    lines = [
        "<b>💼 Balances</b>",
        f"{symbols[0]}: <code>{snapshot.token_a:,.2f}</code> (${snapshot.value_a_usd:,.2f})",
        f"{symbols[1]}: <code>{snapshot.token_b:,.2f}</code> (${snapshot.value_b_usd:,.2f})",
        f"GAS: <code>{snapshot.gas:,.2f}</code>",
        f"Total: <b>${snapshot.total_usd:,.2f}</b>",
    ]
    if prices:
        lines.append("")
        lines.append("<b>📈 Global Prices</b>")
        for symbol, price in prices.items():
            lines.append(f"{symbol}: <code>{price:,.4f}</code>")
    await update.message.reply_html("\n".join(lines))

async def swaps_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists recent swap attempts from the audit trail."""
    repository: SQLiteRepository = context.application.bot_data.get('repository')
    if repository is None:
        await update.message.reply_text("Swap history is not available.")
        return

    limit = 5
    if context.args:
        try:
            limit = max(1, min(int(context.args[0]), 20))
        except ValueError:
            await update.message.reply_text("Usage: /swaps [count]")
            return

    try:
        records = await repository.fetch_swap_attempts(limit=limit)
    except Exception as e:
        logger.error("Error in /swaps command: %s", e)
        await update.message.reply_text("An error occurred while loading swap history.")
        return

    if not records:
        await update.message.reply_text("No swap attempts recorded yet.")
        return

    lines = [f"<b>🔄 Last {len(records)} swap attempts</b>"]
    for record in records:
        when = record.attempted_at.strftime('%m-%d %H:%M') if record.attempted_at else "N/A"
        line = (
            f"<code>{when}</code> {html.escape(record.label)}: "
            f"{record.side} {record.sell_token}→{record.buy_token} qty={record.quantity} <b>{record.status}</b>"
        )
        if record.tx_id:
            line += f"\n   tx <code>{html.escape(record.tx_id)}</code>"
        lines.append(line)
    await update.message.reply_html("\n".join(lines))
