from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import tomllib


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"


@dataclass(frozen=True)
class BusinessConfig:
    customer_request_window_hours: int = 24
    customer_max_requests: int = 1


@dataclass(frozen=True)
class NotificationConfig:
    webhook_url: str | None = None
    timeout: float = 10.0
    max_retries: int = 3
    retry_backoff: float = 1.0


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    business: BusinessConfig = field(default_factory=BusinessConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    try:
        app = data["app"]
        db = data["db"]
        business = data.get("business", {})
        notifications = data.get("notifications", {})

        window_hours = int(business.get("customer_request_window_hours", 24))
        max_requests = int(business.get("customer_max_requests", 1))
        if window_hours <= 0 or max_requests <= 0:
            raise ConfigError("[business] rate limit window and maximum must be positive")

        return AppConfig(
            name=str(app.get("name", "RepairDesk")),
            log_level=str(app.get("log_level", "INFO")).upper(),
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
            ),
            business=BusinessConfig(
                customer_request_window_hours=window_hours,
                customer_max_requests=max_requests,
            ),
            notifications=NotificationConfig(
                webhook_url=(str(notifications.get("webhook_url", "")).strip() or None),
                timeout=float(notifications.get("timeout", 10.0)),
                max_retries=int(notifications.get("max_retries", 3)),
                retry_backoff=float(notifications.get("retry_backoff", 1.0)),
            ),
        )
    except ConfigError:
        raise
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
