#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple, Optional
import constants
from errors import ConfigurationInvalid

class AppConfig(NamedTuple):
    """Typed configuration object."""
    rpc_node_url: str | None
    ws_node_url: str | None
    ws_origin: str | None
    owner_script_hash: str | None
    price_url: str | None
    binance_enabled: bool
    binance_rest_url: str | None
    binance_ws_url: str | None
    script_hashes: dict[str, str]
    transaction_factory: str | None
    dry_run: bool
    target_price: float
    peg_threshold: float
    balance_threshold: float
    swap_ratio: float
    max_spread: int
    slippage_tolerance: float
    sleep_millis: int
    verify_wait_millis: int
    stale_price_millis: int
    rpc_timeout: float
    telegram_enabled: bool
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    db_path: str
    log_level: str
    show_swaps: bool
    swaps_limit: int
    swaps_status: str | None
    swaps_token: str | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep a pegged token on its target price and rebalance the paired holding.",
        epilog="Example: ./main.py --peg-threshold 0.01 --swap-ratio 0.75 --telegram-enabled"
    )
    # --- Peg & Rebalance Arguments ---
    parser.add_argument('--target-price', type=float, default=constants.DEFAULT_TARGET_PRICE, help='Target USD price of the pegged token (default: 1.00).')
    parser.add_argument('--peg-threshold', type=float, default=constants.DEFAULT_PEG_THRESHOLD, help='Fractional peg deviation that triggers a corrective swap (default: 0.01).')
    parser.add_argument('--balance-threshold', type=float, default=constants.DEFAULT_BALANCE_THRESHOLD, help='Value share below which the wallet is rebalanced; at most 0.5 (default: 0.25).')
    parser.add_argument('--swap-ratio', type=float, default=constants.DEFAULT_SWAP_RATIO, help='Fraction of the perfect peg swap to submit, in (0, 1] (default: 0.75).')
    parser.add_argument('--max-spread', type=int, default=constants.DEFAULT_MAX_SPREAD_BPS, help='Maximum rebalance spread in basis points (default: 100).')
    parser.add_argument('--slippage-tolerance', type=float, default=constants.DEFAULT_SLIPPAGE_TOLERANCE_BPS, help='Slippage tolerance in basis points for pool swaps (default: 50).')

    # --- Timing Arguments ---
    parser.add_argument('--sleep-millis', type=int, default=constants.DEFAULT_SLEEP_MILLIS, help='Target duration of one control cycle in milliseconds (default: 300000).')
    parser.add_argument('--verify-wait-millis', type=int, default=constants.DEFAULT_VERIFY_WAIT_MILLIS, help='How long to wait for a swap confirmation in milliseconds (default: 60000).')
    parser.add_argument('--stale-price-millis', type=int, default=constants.DEFAULT_STALE_PRICE_MILLIS, help='Age after which an exchange feed price is stale in milliseconds (default: 60000).')
    parser.add_argument('--rpc-timeout', type=float, default=constants.DEFAULT_RPC_TIMEOUT, help='Timeout in seconds for RPC and HTTP requests (default: 10).')

    # --- Execution Arguments ---
    parser.add_argument('--live', action='store_true', help='Submit transactions instead of the default dry run.')
    parser.add_argument('--transaction-factory', type=str, help='module:attribute of the transaction factory (overrides TRANSACTION_FACTORY).')
    parser.add_argument('--disable-binance', action='store_true', help='Ignore the Binance feed and always use pool prices for the bridge token.')

    # --- Alerting & Output Arguments ---
    parser.add_argument('--telegram-enabled', action='store_true', help='Enable Telegram alerts and commands.')
    parser.add_argument('--log-level', type=str.upper, default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: INFO).')
    parser.add_argument('--db-path', type=str, default=constants.DEFAULT_DB_PATH, help=f'SQLite audit trail location (default: {constants.DEFAULT_DB_PATH}).')
    parser.add_argument('--show-swaps', action='store_true', help='Display recent swap attempts and exit.')
    parser.add_argument('--swaps-limit', type=int, default=10, help='Number of recent swap attempts to display (default: 10).')
    parser.add_argument('--swaps-status', choices=['SKIPPED', 'DRY_RUN', 'SUCCEEDED', 'FAILED', 'TIMED_OUT', 'REJECTED'], help='Filter swap attempts by status.')
    parser.add_argument('--swaps-token', type=str, help='Filter swap attempts by token symbol.')
    return parser


def validate_config(config: AppConfig) -> None:
    """Raises ConfigurationInvalid for settings the control loop cannot run with."""
    if config.show_swaps:
        return

    missing = [
        name for name, value in (
            (constants.RPC_NODE_URL_ENV_VAR, config.rpc_node_url),
            (constants.WS_NODE_URL_ENV_VAR, config.ws_node_url),
            (constants.OWNER_SCRIPT_HASH_ENV_VAR, config.owner_script_hash),
            (constants.PRICE_URL_ENV_VAR, config.price_url),
        ) if not value
    ]
    missing += [
        constants.SCRIPT_HASH_ENV_VARS[key]
        for key in constants.SCRIPT_HASH_ENV_VARS
        if not config.script_hashes.get(key)
    ]
    if missing:
        raise ConfigurationInvalid(f"Missing environment variables: {', '.join(missing)}")

    if config.target_price <= 0:
        raise ConfigurationInvalid(f"--target-price must be positive, got {config.target_price}")
    if config.peg_threshold <= 0:
        raise ConfigurationInvalid(f"--peg-threshold must be positive, got {config.peg_threshold}")
    if not 0 < config.balance_threshold <= 0.5:
        raise ConfigurationInvalid(f"--balance-threshold must be in (0, 0.5], got {config.balance_threshold}")
    if not 0 < config.swap_ratio <= 1:
        raise ConfigurationInvalid(f"--swap-ratio must be in (0, 1], got {config.swap_ratio}")
    if config.max_spread < 0:
        raise ConfigurationInvalid(f"--max-spread must be non-negative, got {config.max_spread}")
    if config.slippage_tolerance < 0:
        raise ConfigurationInvalid(f"--slippage-tolerance must be non-negative, got {config.slippage_tolerance}")
    for flag, value in (
        ('--sleep-millis', config.sleep_millis),
        ('--verify-wait-millis', config.verify_wait_millis),
        ('--stale-price-millis', config.stale_price_millis),
        ('--rpc-timeout', config.rpc_timeout),
    ):
        if value <= 0:
            raise ConfigurationInvalid(f"{flag} must be positive, got {value}")

    if not config.dry_run and not config.transaction_factory:
        raise ConfigurationInvalid(
            f"--live requires a transaction factory (--transaction-factory or {constants.TRANSACTION_FACTORY_ENV_VAR})."
        )
    if config.binance_enabled and not (config.binance_rest_url and config.binance_ws_url):
        raise ConfigurationInvalid(
            f"Binance feed needs both {constants.BINANCE_REST_URL_ENV_VAR} and {constants.BINANCE_WS_URL_ENV_VAR}."
        )
    if config.telegram_enabled and not (config.telegram_bot_token and config.telegram_chat_id):
        raise ConfigurationInvalid(
            f"Telegram is enabled, but {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} or {constants.TELEGRAM_CHAT_ID_ENV_VAR} are not set."
        )


def load_config(argv: Optional[list[str]] = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    args = build_parser().parse_args(argv)

    # Load from environment
    binance_rest_url = os.environ.get(constants.BINANCE_REST_URL_ENV_VAR)
    binance_ws_url = os.environ.get(constants.BINANCE_WS_URL_ENV_VAR)
    script_hashes = {
        key: os.environ.get(env_var, '')
        for key, env_var in constants.SCRIPT_HASH_ENV_VARS.items()
    }

    config = AppConfig(
        rpc_node_url=os.environ.get(constants.RPC_NODE_URL_ENV_VAR),
        ws_node_url=os.environ.get(constants.WS_NODE_URL_ENV_VAR),
        ws_origin=os.environ.get(constants.WS_ORIGIN_ENV_VAR),
        owner_script_hash=os.environ.get(constants.OWNER_SCRIPT_HASH_ENV_VAR),
        price_url=os.environ.get(constants.PRICE_URL_ENV_VAR),
        binance_enabled=not args.disable_binance and bool(binance_rest_url or binance_ws_url),
        binance_rest_url=binance_rest_url,
        binance_ws_url=binance_ws_url,
        script_hashes=script_hashes,
        transaction_factory=args.transaction_factory or os.environ.get(constants.TRANSACTION_FACTORY_ENV_VAR),
        dry_run=not args.live,
        target_price=args.target_price,
        peg_threshold=args.peg_threshold,
        balance_threshold=args.balance_threshold,
        swap_ratio=args.swap_ratio,
        max_spread=args.max_spread,
        slippage_tolerance=args.slippage_tolerance,
        sleep_millis=args.sleep_millis,
        verify_wait_millis=args.verify_wait_millis,
        stale_price_millis=args.stale_price_millis,
        rpc_timeout=args.rpc_timeout,
        telegram_enabled=args.telegram_enabled,
        telegram_bot_token=os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR),
        telegram_chat_id=os.environ.get(constants.TELEGRAM_CHAT_ID_ENV_VAR),
        db_path=args.db_path,
        log_level=args.log_level,
        show_swaps=args.show_swaps,
        swaps_limit=args.swaps_limit,
        swaps_status=args.swaps_status,
        swaps_token=args.swaps_token.upper() if args.swaps_token else None,
    )

    try:
        validate_config(config)
    except ConfigurationInvalid as exc:
        print(f"{constants.C_RED}{exc.message}{constants.C_RESET}")
        exit(1)
    return config
