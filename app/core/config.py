from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_bool(name: str, default: str) -> bool:
    raw = _getenv(name, default).lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    server_url: str
    ssl_store_id: str
    ssl_store_password: str
    ssl_is_live: bool
    gateway_timeout_seconds: float
    default_currency: str
    jwt_public_key: str

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def gateway_base_url(self) -> str:
        if self.ssl_is_live:
            return "https://securepay.sslcommerz.com"
        return "https://sandbox.sslcommerz.com"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    timeout_raw = _getenv("GATEWAY_TIMEOUT_SECONDS", "10")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        gateway_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"GATEWAY_TIMEOUT_SECONDS must be a number (got {timeout_raw!r})"
        ) from None
    if gateway_timeout <= 0:
        raise ValueError(
            f"GATEWAY_TIMEOUT_SECONDS must be positive (got {timeout_raw!r})"
        )

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", "false"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        server_url=_getenv("SERVER_URL", "http://localhost:8000").rstrip("/"),
        ssl_store_id=_getenv("SSL_STORE_ID", ""),
        ssl_store_password=_getenv("SSL_STORE_PASSWORD", ""),
        ssl_is_live=_getenv_bool("SSL_IS_LIVE", "false"),
        gateway_timeout_seconds=gateway_timeout,
        default_currency=_getenv("DEFAULT_CURRENCY", "BDT").upper(),
        # PEM with literal "\n" escapes, as env files usually carry it
        jwt_public_key=_getenv("JWT_PUBLIC_KEY", "").replace("\\n", "\n"),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
