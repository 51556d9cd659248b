import pytest

from ticketgate.config import ONE_WEEK_SECONDS, load_settings
from ticketgate.errors import ConfigError, SigningKeyError

BASE = {"DATABASE_URL": "sqlite:///./t.db", "SECRET_KEY": "s"}


def test_defaults():
    s = load_settings(BASE)
    assert s.token_backend == "sql"
    assert s.token_retention_seconds == ONE_WEEK_SECONDS
    assert s.admin_username == "admin"


def test_missing_database_url():
    with pytest.raises(ConfigError):
        load_settings({"SECRET_KEY": "s"})


def test_empty_secret_key_is_fatal():
    with pytest.raises(SigningKeyError):
        load_settings({**BASE, "SECRET_KEY": ""})


def test_signing_key_error_is_a_config_error():
    with pytest.raises(ConfigError):
        load_settings({"DATABASE_URL": "sqlite:///./t.db"})


def test_redis_backend_and_overrides():
    s = load_settings({
        **BASE,
        "TOKEN_BACKEND": "Redis",
        "REDIS_URL": "redis://cache:6379/2",
        "TOKEN_RETENTION_SECONDS": "60",
    })
    assert s.token_backend == "redis"
    assert s.redis_url == "redis://cache:6379/2"
    assert s.token_retention_seconds == 60


@pytest.mark.parametrize("env", [
    {"TOKEN_BACKEND": "mongo"},
    {"TOKEN_RETENTION_SECONDS": "soon"},
    {"TOKEN_RETENTION_SECONDS": "-1"},
    {"REDIS_MAX_CONN": "many"},
])
def test_bad_values(env):
    with pytest.raises(ConfigError):
        load_settings({**BASE, **env})
