#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import NamedTuple, Optional

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.error import TimedOut, TelegramError

import constants
from config import AppConfig, load_config
from bot.handlers import balances_command, help_command, status_command, swaps_command
from analysis.rebalance import RebalanceDecisionEngine
from control_loop import ControlLoop
from errors import ConfigurationInvalid
from log_config import configure_logging
from services.aviary_client import AviaryQuoteClient
from services.binance_feed import BinancePriceFeed, FeedState
from services.ledger_client import NeoRpcClient
from services.notification_client import NotificationClient
from services.price_aggregator import PoolConfig, PriceAggregator
from services.price_oracle_client import PriceOracleClient
from services.swap_correlator import SwapCompletionCorrelator
from services.swap_executor import SwapExecutor
from services.telegram_notifier import TelegramNotifier
from services.transaction_factory import load_transaction_factory
from storage import SQLiteRepository

logger = logging.getLogger(__name__)


class StabilizerRuntime(NamedTuple):
    control_loop: ControlLoop
    transport: NotificationClient
    feed: Optional[BinancePriceFeed]

    def start_background(self) -> None:
        self.transport.start()
        if self.feed is not None:
            self.feed.start()

    async def stop(self) -> None:
        if self.feed is not None:
            await self.feed.stop()
        await self.transport.stop()


def build_pools(config: AppConfig) -> list[PoolConfig]:
    hashes = config.script_hashes
    return [
        PoolConfig(constants.POOL_FLM_FUSDT, hashes['flm_fusdt'], constants.FLM, constants.FUSDT, hashes['flm']),
        PoolConfig(constants.POOL_FLM_LRB, hashes['flm_lrb'], constants.FLM, constants.LRB, hashes['flm']),
        PoolConfig(constants.POOL_FLM_USDL, hashes['flm_usdl'], constants.FLM, constants.USDL, hashes['flm']),
    ]


def build_runtime(
    config: AppConfig,
    session: aiohttp.ClientSession,
    *,
    repository: Optional[SQLiteRepository] = None,
    notifier: Optional[TelegramNotifier] = None,
    status: Optional[dict] = None,
) -> StabilizerRuntime:
    """Wires every collaborator around one shared aiohttp session."""
    hashes = config.script_hashes
    ledger = NeoRpcClient(session, rpc_url=config.rpc_node_url, timeout=config.rpc_timeout)
    oracle = PriceOracleClient(session, config.price_url, timeout=config.rpc_timeout)

    feed_state = None
    feed = None
    if config.binance_enabled:
        feed_state = FeedState(constants.FLM, config.stale_price_millis / 1000.0)
        feed = BinancePriceFeed(
            session,
            feed_state,
            ws_url=config.binance_ws_url,
            rest_url=config.binance_rest_url,
        )

    aggregator = PriceAggregator(
        ledger,
        oracle,
        build_pools(config),
        constants.TOKEN_DECIMALS,
        bridge_symbol=constants.FLM,
        stable_pool_id=constants.POOL_FLM_FUSDT,
        feed_state=feed_state,
        feed=feed,
    )
    transport = NotificationClient(session, config.ws_node_url, origin=config.ws_origin)
    correlator = SwapCompletionCorrelator(transport, config.verify_wait_millis / 1000.0)

    factory = None
    if config.transaction_factory:
        factory = load_transaction_factory(config.transaction_factory, config)
    else:
        logger.warning("No transaction factory configured; swaps are decided and logged but never built.")

    executor = SwapExecutor(
        ledger,
        correlator,
        factory,
        owner_hash=config.owner_script_hash,
        token_hashes={constants.LRB: hashes['lrb'], constants.USDL: hashes['usdl']},
        aviary_hash=hashes['aviary'],
        dry_run=config.dry_run,
    )
    engine = RebalanceDecisionEngine(
        AviaryQuoteClient(ledger, hashes['aviary']),
        symbol_a=constants.LRB,
        symbol_b=constants.USDL,
        decimals_a=constants.TOKEN_DECIMALS[constants.LRB],
        decimals_b=constants.TOKEN_DECIMALS[constants.USDL],
        balance_threshold=config.balance_threshold,
        max_spread_bps=config.max_spread,
    )
    control_loop = ControlLoop(
        config,
        aggregator,
        ledger,
        engine,
        executor,
        transport=transport,
        notifier=notifier,
        repository=repository,
        status=status,
    )
    return StabilizerRuntime(control_loop, transport, feed)


async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': 'PegStabilizer/1.0'})
    application.bot_data['http_session'] = session

    config = application.bot_data['config']
    try:
        runtime = build_runtime(
            config,
            session,
            repository=application.bot_data.get('repository'),
            notifier=TelegramNotifier(application.bot, config.telegram_chat_id),
            status=application.bot_data,
        )
    except ConfigurationInvalid as exc:
        print(f"{constants.C_RED}Failed to initialise stabilizer: {exc.message}{constants.C_RESET}")
        exit(1)
    application.bot_data['runtime'] = runtime

    # Set bot commands
    commands = [
        BotCommand("status", "Check bot status"),
        BotCommand("balances", "Show wallet balances"),
        BotCommand("swaps", "Show recent swap attempts"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        logger.warning("Unable to set Telegram bot commands (%s). Continuing startup without updating commands.", exc)

    runtime.start_background()
    application.bot_data['control_loop_task'] = asyncio.create_task(runtime.control_loop.start())

async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    task = application.bot_data.get('control_loop_task')
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    runtime = application.bot_data.get('runtime')
    if runtime:
        await runtime.stop()
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


async def run_cli(config: AppConfig) -> None:
    """Runs the control loop without Telegram until interrupted."""
    repository = SQLiteRepository(config.db_path)
    async with aiohttp.ClientSession(headers={'User-Agent': 'PegStabilizer/1.0'}) as session:
        try:
            runtime = build_runtime(config, session, repository=repository)
        except ConfigurationInvalid as exc:
            print(f"{constants.C_RED}Failed to initialise stabilizer: {exc.message}{constants.C_RESET}")
            await repository.close()
            exit(1)
        runtime.start_background()
        try:
            await runtime.control_loop.start()
        finally:
            await runtime.stop()
            await repository.close()


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    configure_logging(config.log_level)

    if config.show_swaps:
        repository = SQLiteRepository(config.db_path)
        try:
            records = asyncio.run(
                repository.fetch_swap_attempts(
                    limit=config.swaps_limit,
                    status=config.swaps_status,
                    token=config.swaps_token,
                )
            )
        finally:
            asyncio.run(repository.close())
        _print_swap_attempts(records, config.swaps_limit, config.swaps_status, config.swaps_token)
        return

    if not config.telegram_enabled:
        print("Telegram is not configured. The application will run in CLI-only mode.")
        try:
            asyncio.run(run_cli(config))
        except KeyboardInterrupt:
            print("Stopped.")
        return

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    # Store config and other shared data
    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = SQLiteRepository(config.db_path)

    # Register command handlers
    application.add_handler(CommandHandler("start", help_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("balances", balances_command))
    application.add_handler(CommandHandler("swaps", swaps_command))

    application.run_polling()


def _print_swap_attempts(records: list, limit: int, status: str | None, token: str | None) -> None:
    heading = f"Showing up to {limit} swap attempts"
    filters = []
    if status:
        filters.append(f"status={status}")
    if token:
        filters.append(f"token={token.upper()}")
    if filters:
        heading += " (" + ", ".join(filters) + ")"
    print(heading)
    print("=" * len(heading))

    if not records:
        print("No swap attempts found.")
        return

    headers = [
        "Time (UTC)",
        "Label",
        "Venue",
        "Side",
        "Pair",
        "Quantity",
        "Bound",
        "Status",
        "Tx",
    ]

    def _format_row(record) -> list[str]:
        time_str = record.attempted_at.strftime("%Y-%m-%d %H:%M:%S") if record.attempted_at else "N/A"
        bound = str(record.bound_quantity)
        if record.max_spread_bps is not None:
            bound = f"spread<={record.max_spread_bps}"
        return [
            time_str,
            record.label,
            record.venue,
            record.side,
            f"{record.sell_token}->{record.buy_token}",
            str(record.quantity),
            bound,
            record.status,
            record.tx_id or "-",
        ]

    rows = [_format_row(rec) for rec in records]
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(_format_line(headers))
    print("  ".join('-' * w for w in widths))
    for row in rows:
        print(_format_line(row))


if __name__ == "__main__":
    main()
