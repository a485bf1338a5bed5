"""Fixed-point scales and protocol defaults."""

# Fixed point scale factors
SCALE = 1_000_000_000  # 1e9: exchange rate, interest rates, borrow index
PRICE_SCALE = 1_000_000  # 6 decimals for oracle prices
BPS_SCALE = 10_000  # Basis points (100% = 10000)
LEVERAGE_SCALE = 100  # 100 = 1x

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

# Vault defaults
DEFAULT_MINT_FEE_BPS = 50
DEFAULT_BURN_FEE_BPS = 75
DEFAULT_VAULT_FEE_SHARE_BPS = 8_000  # 80% of every fee stays in the vault
DEFAULT_YIELD_VAULT_SHARE_BPS = 8_000
DEFAULT_YIELD_REWARD_BPS = 100
DEFAULT_MIN_AMOUNT = 1_000
DEFAULT_MAX_AMOUNT = 1_000_000_000_000_000_000
DEFAULT_MAX_DEVIATION_BPS = 10_000

# Interest rate model limits
MAX_RATE_PARAM_BPS = 1_000_000
DEFAULT_LIQUIDATION_THRESHOLD_BPS = 9_000

# Leverage defaults
MIN_LEVERAGE = 100
DEFAULT_MAX_LEVERAGE = 200
DEFAULT_PRINCIPAL_FEE_BPS = 200
DEFAULT_YIELD_FEE_BPS = 1_000
DEFAULT_LIQUIDATION_BONUS_BPS = 500
MAX_LIQUIDATION_BONUS_BPS = 5_000
DEFAULT_MAX_SLIPPAGE_BPS = 100

# LP position defaults
DEFAULT_LP_OPEN_FEE_BPS = 100
DEFAULT_MAX_LP_QUOTE_AMOUNT = 1_000_000_000_000_000

# Oracle defaults
DEFAULT_MAX_STALENESS_SECONDS = 300
DEFAULT_MAX_CONFIDENCE_BPS = 500
DEFAULT_MIN_PRICE = 1  # $0.000001
DEFAULT_MAX_PRICE = 1_000_000 * PRICE_SCALE  # $1,000,000
