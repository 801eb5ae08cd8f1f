#!/usr/bin/env python3
from typing import Dict

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- Environment Variable Names ---
RPC_NODE_URL_ENV_VAR = 'RPC_NODE_URL'
WS_NODE_URL_ENV_VAR = 'WS_NODE_URL'
WS_ORIGIN_ENV_VAR = 'WS_ORIGIN'
OWNER_SCRIPT_HASH_ENV_VAR = 'OWNER_SCRIPT_HASH'
PRICE_URL_ENV_VAR = 'PRICE_URL'
BINANCE_REST_URL_ENV_VAR = 'BINANCE_REST_URL'
BINANCE_WS_URL_ENV_VAR = 'BINANCE_WS_URL'
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
TELEGRAM_CHAT_ID_ENV_VAR = 'TELEGRAM_CHAT_ID'
TRANSACTION_FACTORY_ENV_VAR = 'TRANSACTION_FACTORY'

# --- Contract Script Hash Environment Variable Names ---
SCRIPT_HASH_ENV_VARS: Dict[str, str] = {
    'flm': 'FLM_SCRIPT_HASH',
    'lrb': 'LRB_SCRIPT_HASH',
    'usdl': 'USDL_SCRIPT_HASH',
    'fusdt': 'FUSDT_SCRIPT_HASH',
    'aviary': 'AVIARY_SCRIPT_HASH',
    'router': 'FLAMINGO_ROUTER_SCRIPT_HASH',
    'swap_factory': 'FLAMINGO_SWAP_FACTORY_SCRIPT_HASH',
    'flm_fusdt': 'FLM_FUSDT_SCRIPT_HASH',
    'flm_lrb': 'FLM_LRB_SCRIPT_HASH',
    'flm_usdl': 'FLM_USDL_SCRIPT_HASH',
}

# --- Token Symbols ---
FLM = 'FLM'
LRB = 'LRB'
USDL = 'USDL'
FUSDT = 'FUSDT'
GAS = 'GAS'

# --- Token Decimals ---
TOKEN_DECIMALS: Dict[str, int] = {
    FLM: 8,
    LRB: 8,
    USDL: 8,
    FUSDT: 6,
    GAS: 8,
}

# Native GAS token contract on Neo N3
GAS_SCRIPT_HASH = '0xd2a4cff31913016155e38e474a2c06d08be276cf'

# --- Pool Identifiers ---
# Each pool quotes `quote` per unit of `base` (reserveOf(quote) / reserveOf(base)).
POOL_FLM_FUSDT = 'FLM_FUSDT'
POOL_FLM_LRB = 'FLM_LRB'
POOL_FLM_USDL = 'FLM_USDL'

# --- Oracle Scaling ---
# The price service and the Aviary contract both work in integer micro-units.
PRICE_MULT = 1_000_000

# --- Basis Points ---
BPS_DENOMINATOR = 10_000

# --- Venue Event Names ---
TRANSFER_EVENT = 'Transfer'
AVIARY_SWAP_EVENT = 'Swap'
AVIARY_SWAP_FAILURE_EVENT = 'SwapFailure'

# --- Transaction Defaults ---
VALID_UNTIL_BLOCK_OFFSET = 10

# --- Stabilizer Defaults ---
DEFAULT_TARGET_PRICE = 1.00
DEFAULT_PEG_THRESHOLD = 0.01
DEFAULT_BALANCE_THRESHOLD = 0.25
DEFAULT_SWAP_RATIO = 0.75
DEFAULT_MAX_SPREAD_BPS = 100
DEFAULT_SLIPPAGE_TOLERANCE_BPS = 50
DEFAULT_SLEEP_MILLIS = 300_000
DEFAULT_VERIFY_WAIT_MILLIS = 60_000
DEFAULT_STALE_PRICE_MILLIS = 60_000
DEFAULT_RPC_TIMEOUT = 10.0
DEFAULT_DB_PATH = 'data/stabilizer_history.db'
