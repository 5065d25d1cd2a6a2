import os

from dotenv import load_dotenv

from enums.currency import Currency
from enums.runtime_environment import RuntimeEnvironment

# Load .env but don't override existing environment variables
# This allows test scripts to set RUNTIME_ENVIRONMENT=TEST before import
load_dotenv(".env", override=False)

# Parse RUNTIME_ENVIRONMENT with clear error message on misconfiguration
try:
    _runtime_env_str = os.environ.get("RUNTIME_ENVIRONMENT")
    if not _runtime_env_str:
        raise ValueError("RUNTIME_ENVIRONMENT environment variable is not set")
    RUNTIME_ENVIRONMENT = RuntimeEnvironment(_runtime_env_str)
except ValueError as e:
    valid_values = [env.value for env in RuntimeEnvironment]
    import sys
    print(f"\n ERROR: Invalid RUNTIME_ENVIRONMENT configuration\n", file=sys.stderr)
    print(f"Reason: {e}", file=sys.stderr)
    print(f"Valid values: {', '.join(valid_values)}", file=sys.stderr)
    print(f"Current value: {os.environ.get('RUNTIME_ENVIRONMENT', '(not set)')}", file=sys.stderr)
    print(f"\nAdd to .env: RUNTIME_ENVIRONMENT={valid_values[0]}\n", file=sys.stderr)
    sys.exit(1)

# Parse CURRENCY with error handling
try:
    CURRENCY = Currency(os.environ.get("CURRENCY", "USD"))
except ValueError as e:
    valid_currencies = [c.value for c in Currency]
    import sys
    print(f"\n ERROR: Invalid CURRENCY configuration\n", file=sys.stderr)
    print(f"Reason: {e}", file=sys.stderr)
    print(f"Valid values: {', '.join(valid_currencies)}", file=sys.stderr)
    print(f"Current value: {os.environ.get('CURRENCY')}", file=sys.stderr)
    print(f"\nAdd to .env: CURRENCY={valid_currencies[0]}\n", file=sys.stderr)
    sys.exit(1)

# Redis (durable cart storage and cross-tab notifications)
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = int(os.environ.get("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.environ.get("REDIS_PASSWORD")
REDIS_DB = int(os.environ.get("REDIS_DB", "0"))

# Local Cart Configuration
CART_STORAGE_KEY = os.environ.get("CART_STORAGE_KEY", "vendure_local_cart")
CART_CACHE_VERSION = os.environ.get("CART_CACHE_VERSION", "1.0")  # Bump to invalidate every stored cart
CART_SYNC_CHANNEL = os.environ.get("CART_SYNC_CHANNEL", "vendure_local_cart:changes")
CART_MEMORY_CACHE_MS = int(os.environ.get("CART_MEMORY_CACHE_MS", "1000"))
CART_CONVERSION_LOCK_KEY = os.environ.get("CART_CONVERSION_LOCK_KEY", "cart_conversion_in_progress")
CART_CONVERSION_LOCK_TIMEOUT_SECONDS = int(os.environ.get("CART_CONVERSION_LOCK_TIMEOUT_SECONDS", "300"))  # Stale lock after 5 minutes

# Product Cache Configuration
PRODUCT_CACHE_KEY = os.environ.get("PRODUCT_CACHE_KEY", "shop_products_cache")
PRODUCT_CACHE_VERSION = os.environ.get("PRODUCT_CACHE_VERSION", "2.0")
PRODUCT_CACHE_MAX_AGE_DAYS = int(os.environ.get("PRODUCT_CACHE_MAX_AGE_DAYS", "365"))
VARIANT_CACHE_TTL_SECONDS = int(os.environ.get("VARIANT_CACHE_TTL_SECONDS", "300"))  # Per-variant stock freshness

# Catalog Configuration
CATALOG_STOCK_TTL_SECONDS = int(os.environ.get("CATALOG_STOCK_TTL_SECONDS", "30"))  # Catalog-level freshness
CATALOG_STATIC_DATA_PATH = os.environ.get("CATALOG_STATIC_DATA_PATH", "data/products.json")

# Stock Reconciliation Configuration
STOCK_REFRESH_MIN_INTERVAL_SECONDS = int(os.environ.get("STOCK_REFRESH_MIN_INTERVAL_SECONDS", "300"))
STOCK_BATCH_SIZE = int(os.environ.get("STOCK_BATCH_SIZE", "50"))

# Vendure API Configuration
VENDURE_SHOP_API_URL = os.environ.get("VENDURE_SHOP_API_URL", "http://localhost:3000/shop-api")
VENDURE_ADMIN_API_URL = os.environ.get("VENDURE_ADMIN_API_URL", "http://localhost:3000/admin-api")
VENDURE_API_TOKEN = os.environ.get("VENDURE_API_TOKEN")
VENDURE_CHANNEL_TOKEN = os.environ.get("VENDURE_CHANNEL_TOKEN")
VENDURE_REQUEST_TIMEOUT_SECONDS = float(os.environ.get("VENDURE_REQUEST_TIMEOUT_SECONDS", "10"))

# Logging Configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_MASK_SECRETS = os.environ.get("LOG_MASK_SECRETS", "true") == "true"  # Mask sensitive data in logs

# Log Retention: Environment-specific defaults
# Dev: keep 30 days for debugging
# Prod: Use 5 days default to save disk space
if RUNTIME_ENVIRONMENT == RuntimeEnvironment.DEV:
    LOG_RETENTION_DAYS = int(os.environ.get("LOG_RETENTION_DAYS", "30"))
else:
    LOG_RETENTION_DAYS = int(os.environ.get("LOG_RETENTION_DAYS", "5"))
