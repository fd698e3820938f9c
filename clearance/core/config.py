"""
Configuration de l'application, lue depuis les variables d'environnement.
"""
import os


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _list_env(name: str, default: str = "") -> list:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


# Base de données / Redis
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://clearance:clearance@db:5432/clearance")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# Fournisseur amont (Apify, acteur catalogue Home Depot)
UPSTREAM_API_TOKEN = os.getenv("APIFY_API_KEY") or os.getenv("UPSTREAM_API_TOKEN", "")
UPSTREAM_BASE_URL = os.getenv("UPSTREAM_BASE_URL", "https://api.apify.com/v2")
UPSTREAM_ACTOR_ID = os.getenv("UPSTREAM_ACTOR_ID", "jupri~homedepot")
UPSTREAM_POLL_INTERVAL_SEC = _float_env("UPSTREAM_POLL_INTERVAL_SEC", 5.0)
UPSTREAM_MAX_WAIT_SEC = _float_env("UPSTREAM_MAX_WAIT_SEC", 300.0)
UPSTREAM_HTTP_TIMEOUT_SEC = _float_env("UPSTREAM_HTTP_TIMEOUT_SEC", 30.0)
UPSTREAM_SUBMIT_RETRIES = _int_env("UPSTREAM_SUBMIT_RETRIES", 2)

# Cycle de rafraîchissement
REFRESH_INTERVAL_SEC = _int_env("REFRESH_INTERVAL_SEC", 1800)
REFRESH_PER_TERM_LIMIT = _int_env("REFRESH_PER_TERM_LIMIT", 500)
REFRESH_MARKDOWN_TARGET = _int_env("REFRESH_MARKDOWN_TARGET", 30)
REFRESH_MAX_TOTAL = _int_env("REFRESH_MAX_TOTAL", 2000)
# Plancher du timeout rq; la valeur effective couvre le pire cas d'un cycle
# (voir refresh_coordinator.refresh_job_timeout)
REFRESH_JOB_TIMEOUT_SEC = _int_env("REFRESH_JOB_TIMEOUT_SEC", 3600)
REFRESH_JOB_TIMEOUT_MARGIN_SEC = _int_env("REFRESH_JOB_TIMEOUT_MARGIN_SEC", 600)

# Cache
CACHE_RETRY_AFTER_SEC = _float_env("CACHE_RETRY_AFTER_SEC", 60.0)
CACHE_CONNECT_TIMEOUT_SEC = _float_env("CACHE_CONNECT_TIMEOUT_SEC", 5.0)

# Scraper de secours (Playwright)
SCRAPER_START_URLS = _list_env(
    "SCRAPER_START_URLS",
    "https://www.homedepot.com/b/Special-Values/N-5yc1vZ1z11adf",
)

# Auth admin
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

ALLOWED_ORIGINS = _list_env("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")
