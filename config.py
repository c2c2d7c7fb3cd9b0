"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.  Ranking
weights and thresholds live in :mod:`productreco.constants`; this module
only covers deployment knobs.
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# gRPC server
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

# ---------------------------------------------------------------------------
# Logging / runtime
# ---------------------------------------------------------------------------

APP_ENV: str = os.getenv("APP_ENV", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Attach score breakdowns to every recommendation item.  Defaults to on
# outside production.
DEBUG_SCORES: bool = _flag("DEBUG_SCORES", "true" if APP_ENV != "production" else "false")

# GetHybrid calls slower than this are logged as warnings.
RECOMMENDATION_WARN_THRESHOLD_MS: float = float(
    os.getenv("RECOMMENDATION_WARN_THRESHOLD_MS", "450")
)

# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

# "memory" keeps the cache in-process; "redis" shares it between replicas.
CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "memory").lower()

REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
REDIS_PASSWORD: str | None = os.getenv("REDIS_PASSWORD") or None
REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))

# ---------------------------------------------------------------------------
# Worker pools
# ---------------------------------------------------------------------------

# Strategy fan-out for hybrid requests.
FANOUT_WORKERS: int = int(os.getenv("FANOUT_WORKERS", "16"))

# Fire-and-forget side effects (impression logging).
BACKGROUND_WORKERS: int = int(os.getenv("BACKGROUND_WORKERS", "2"))
BACKGROUND_MAX_PENDING: int = int(os.getenv("BACKGROUND_MAX_PENDING", "1000"))

# ---------------------------------------------------------------------------
# Data files
# ---------------------------------------------------------------------------

# JSON array of products (``Product.to_dict`` shape).  Empty means the
# catalogue starts empty and only emergency placeholders are served.
PRODUCTS_FILE: str = os.getenv("PRODUCTS_FILE", "")

# ---------------------------------------------------------------------------
# Background loops
# ---------------------------------------------------------------------------

# How often (seconds) to reload the product catalogue.
CATALOGUE_REFRESH_INTERVAL_SECONDS: int = int(
    os.getenv("CATALOGUE_REFRESH_INTERVAL_SECONDS", "300")
)

# How often (seconds) to hand all preference profiles to the persister.
STATE_PERSIST_INTERVAL_SECONDS: int = int(
    os.getenv("STATE_PERSIST_INTERVAL_SECONDS", "60")
)

# How often (seconds) to drop interaction events past their retention.
INTERACTION_PURGE_INTERVAL_SECONDS: int = int(
    os.getenv("INTERACTION_PURGE_INTERVAL_SECONDS", "3600")
)
