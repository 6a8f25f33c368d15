"""Core constants: cache key prefixes, control-plane collection names, naming limits."""

# Cache key prefixes
CACHE_PREFIX_PRODUCT = "product"

# Delimiter for composite keys
CACHE_KEY_SEP = ":"

# Store prefix charset and MongoDB collection-name limit
STORE_PREFIX_PATTERN = r"^[a-z0-9_]+$"
MAX_COLLECTION_NAME_LENGTH = 255
MAX_DATABASE_NAME_LENGTH = 64

# Control-plane collections (one canonical place, control database)
COLLECTION_STORES = "stores"
COLLECTION_GLOBAL_CUSTOMERS = "global_customers"
COLLECTION_POINTS_BALANCES = "points_balances"
COLLECTION_POINTS_TRANSACTIONS = "points_transactions"
COLLECTION_STORE_POINTS_ACCOUNTS = "store_points_accounts"
COLLECTION_POINTS_SETTINGS = "points_settings"

# PointsSettings document that applies when a store has none of its own
GLOBAL_SETTINGS_STORE_ID = "global"

DEFAULT_CONTROL_DATABASE = "pos_main"
