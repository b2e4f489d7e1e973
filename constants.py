# constants.py
"""
Application constants and limits.
These are hardcoded values that control application behavior.
Modify these values directly if you need to change limits.
"""

# =============================================================================
# QUOTE REQUEST LIMITS
# =============================================================================

# Maximum identifiers accepted by /api/quotes in one request
MAX_IDENTIFIERS_PER_REQUEST = 50

# Allowed characters for ISINs, tickers and index symbols
IDENTIFIER_PATTERN = r'^[A-Z0-9.\-^:_]+$'
MAX_IDENTIFIER_LENGTH = 30

# Identifiers per provider batch during price snapshots
SNAPSHOT_BATCH_SIZE = 10

# Maximum rows returned by /api/prices/history
MAX_HISTORY_ROWS = 1000

# =============================================================================
# QUOTE PROVIDERS
# =============================================================================

# Waterfall order, lower index is tried first
PROVIDER_PRIORITY = ['yahoo', 'ing', 'finnhub', 'coingecko']

# Calls allowed per provider per one-minute window
PROVIDER_RATE_LIMITS = {
    'yahoo': 100,
    'ing': 50,
    'finnhub': 60,
    'coingecko': 10,
}

# ISIN country prefixes each provider is likely to know
YAHOO_ISIN_COUNTRIES = ['DE', 'US', 'GB', 'FR', 'IT', 'ES', 'NL', 'CH', 'CA', 'AU', 'JP']
ING_ISIN_COUNTRIES = ['DE', 'AT', 'NL', 'FR', 'BE', 'LU', 'CH', 'IT', 'ES']

# Exchange suffixes Finnhub does not cover
FINNHUB_UNSUPPORTED_SUFFIXES = ['.IN', '.SR', '.SZ', '.SS']

# Yahoo market suffix -> trading currency
SUFFIX_CURRENCIES = {
    '.DE': 'EUR', '.F': 'EUR', '.PA': 'EUR', '.MI': 'EUR', '.MC': 'EUR', '.AS': 'EUR',
    '.L': 'GBP', '.SW': 'CHF', '.TO': 'CAD', '.AX': 'AUD', '.T': 'JPY',
}

# World indices shown in the dashboard header (name, Yahoo symbol)
MARKET_INDICES = [
    ('S&P 500', '^GSPC'),
    ('MSCI World', 'URTH'),
    ('Nasdaq 100', '^NDX'),
    ('Dow Jones', '^DJI'),
    ('DAX 40', '^GDAXI'),
    ('Euro Stoxx 50', '^STOXX50E'),
    ('FTSE 100', '^FTSE'),
    ('Nikkei 225', '^N225'),
    ('Hang Seng', '^HSI'),
    ('CAC 40', '^FCHI'),
    ('Swiss Market', '^SSMI'),
    ('ASX 200', '^AXJO'),
    ('Shanghai Comp', '000001.SS'),
    ('KOSPI', '^KS11'),
    ('Russell 2000', '^RUT'),
    ('FTSE MIB', 'FTSEMIB.MI'),
    ('TSX Composite', '^GSPTSE'),
]

# =============================================================================
# TRADES
# =============================================================================

SUPPORTED_CURRENCIES = ['EUR', 'USD']
MAX_NAME_LENGTH = 200

TIME_RANGES = ['month', 'last30', 'ytd', 'custom', 'all']
SORT_FIELDS = ['pnlEur', 'pnlPct', 'date', 'name']

# =============================================================================
# SANKEY
# =============================================================================

# Remainders at or below this amount are not drawn as their own node
SANKEY_REST_THRESHOLD = 0.5
MAX_SANKEY_ITEMS = 100

# =============================================================================
# RATE LIMITING
# =============================================================================

# Endpoints that fan out to external quote APIs
QUOTES_RATE_LIMIT = "60 per minute"

# Trade creation and imports
TRADE_WRITE_RATE_LIMIT = "30 per minute"

# Authenticated API default
AUTH_API_RATE_LIMIT = "120 per minute"
