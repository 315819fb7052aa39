import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_valid_cron_is_accepted():
    settings = Settings(_env_file=None, pools_cron="*/15 * * * *", protocols_cron="0 3 * * 1-5")

    assert settings.pools_cron == "*/15 * * * *"
    assert settings.protocols_cron == "0 3 * * 1-5"


@pytest.mark.parametrize(
    "field, value",
    [
        ("pools_cron", "not a cron"),
        ("pools_cron", "0 2 * *"),
        ("protocols_cron", "61 * * * *"),
    ],
)
def test_invalid_cron_fails_at_load(field, value):
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None, **{field: value})

    assert field in str(exc_info.value)


def test_invalid_cron_from_environment(monkeypatch):
    monkeypatch.setenv("PROTOCOLS_CRON", "every day")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_shutdown_wait_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, shutdown_wait_seconds=0)
