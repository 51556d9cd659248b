# ticketgate/config.py
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError
from . import codec

ONE_WEEK_SECONDS = 7 * 24 * 3600


# ----------------------------
# Config & Constants
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    token_backend: str = "sql"  # 'sql' | 'redis'
    redis_url: str = "redis://127.0.0.1:6379"
    redis_max_conn: int = 512
    token_retention_seconds: int = ONE_WEEK_SECONDS
    session_secret: str = "dev-secret-change-me"
    admin_username: str = "admin"
    admin_password: str = "supasecret"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    database_url = env.get("DATABASE_URL")
    if not database_url:
        raise ConfigError("DATABASE_URL is required")

    # fatal here, never per request
    secret_key = codec.check_key(env.get("SECRET_KEY"))

    backend = env.get("TOKEN_BACKEND", "sql").lower()
    if backend not in ("sql", "redis"):
        raise ConfigError(f"TOKEN_BACKEND must be 'sql' or 'redis', "
                          f"got {backend!r}")

    try:
        retention = int(env.get("TOKEN_RETENTION_SECONDS", ONE_WEEK_SECONDS))
        redis_max_conn = int(env.get("REDIS_MAX_CONN", "512"))
    except ValueError as e:
        raise ConfigError(f"invalid integer setting: {e}") from e
    if retention < 0:
        raise ConfigError("TOKEN_RETENTION_SECONDS must be >= 0")

    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        token_backend=backend,
        redis_url=env.get("REDIS_URL", "redis://127.0.0.1:6379"),
        redis_max_conn=redis_max_conn,
        token_retention_seconds=retention,
        session_secret=env.get("SESSION_SECRET", "dev-secret-change-me"),
        admin_username=env.get("ADMIN_USERNAME", "admin"),
        admin_password=env.get("ADMIN_PASSWORD", "supasecret"),
    )
