"""Shared constants and defaults."""

# Asset categories the scanner can draw from
UNIVERSES: dict[str, list[str]] = {
    "l2": ["OP", "ARB", "MNT", "STRK", "ZK", "MATIC", "IMX", "METIS", "MANTA", "BLAST"],
    "dex": ["UNI", "SUSHI", "GMX", "APEX", "DYDX", "CRV", "BAL", "VELO", "JUP", "RAY"],
    "bluechips": ["BTC", "ETH", "SOL", "AVAX", "BNB", "LINK", "DOT", "ATOM"],
    "defi": ["AAVE", "COMP", "MKR", "SNX", "LDO", "RPL", "FXS", "PENDLE"],
    "ai": ["FET", "RNDR", "AGIX", "TAO", "AR", "FIL", "GRT", "OCEAN"],
    "meme": ["DOGE", "SHIB", "PEPE", "WIF", "BONK", "FLOKI"],
    "gaming": ["IMX", "GALA", "AXS", "SAND", "MANA", "ILV", "PRIME", "PIXEL"],
}

MS_PER_DAY = 24 * 60 * 60 * 1000

# History used for pair statistics
CANDLE_INTERVAL = "1d"
HISTORY_DAYS = 365
LOOKBACK_DAYS = 90
MIN_DATA_POINTS = 20

# Default entry/exit thresholds (also the optimizer baseline)
DEFAULT_Z_ENTRY = 1.5
DEFAULT_Z_EXIT = 0.5

# Position limits
TAKE_PROFIT_PERCENT = 8.0
MAX_HOLDING_MS = 7 * MS_PER_DAY

# Fee rates as a fraction of position size
OPEN_FEE_RATE = 0.001
EXIT_FEE_RATE = {"paper": 0.001, "live": 0.002}

# Optimized parameters stay valid for a week
OPTIMIZED_PARAMS_TTL_MS = 7 * MS_PER_DAY

# Optimizer search grid
Z_ENTRY_GRID = [1.0, 1.2, 1.5, 1.8, 2.0, 2.2, 2.5]
Z_EXIT_GRID = [0.2, 0.3, 0.5, 0.7, 1.0]

# Housekeeping
LOG_RETENTION_MS = 7 * MS_PER_DAY
HEARTBEAT_STALE_MS = 2 * 60 * 1000
