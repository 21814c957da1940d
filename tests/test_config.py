import pytest

from poolpass.config import Settings, parse_prices
from poolpass.errors import ConfigError
from poolpass.helpers import is_valid_email, mask_key, new_ticket_id

REQUIRED = {
    "FLUTTERWAVE_WEBHOOK_SECRET": "whsec",
    "FLUTTERWAVE_PUBLIC_KEY": "FLWPUBK_TEST-abc",
    "FLUTTERWAVE_SECRET_KEY": "FLWSECK_TEST-def",
}


def test_from_env_defaults():
    s = Settings.from_env(REQUIRED)
    assert s.webhook_secret == "whsec"
    assert s.currency == "NGN"
    assert s.ticket_prefix == "RSG-PPOOL"
    assert s.store_backend == "file"
    assert s.email_delivery == "disabled"
    assert s.ticket_prices == {}


@pytest.mark.parametrize("missing", sorted(REQUIRED))
def test_refuses_without_secrets(missing):
    env = {k: v for k, v in REQUIRED.items() if k != missing}
    with pytest.raises(ConfigError):
        Settings.from_env(env)


def test_sql_backend_needs_database_url():
    with pytest.raises(ConfigError):
        Settings.from_env({**REQUIRED, "TICKET_STORE_BACKEND": "sql"})
    s = Settings.from_env({**REQUIRED, "TICKET_STORE_BACKEND": "SQL",
                           "DATABASE_URL": "sqlite:///x.db"})
    assert s.store_backend == "sql"


def test_smtp_and_legacy_names():
    s = Settings.from_env({
        **REQUIRED,
        "EMAIL_DELIVERY": "smtp",
        "SMTP_PORT": "587",
        "EMAIL_USER": "tickets@example.com",
        "EMAIL_PASSWORD": "pw",
        "ADMIN_EMAIL": "admin@example.com",
    })
    assert s.smtp_port == 587
    assert s.smtp_user == "tickets@example.com"
    assert s.smtp_pass == "pw"
    assert s.admin_email == "admin@example.com"


def test_parse_prices():
    assert parse_prices("male=5000, female=3000") == {
        "male": 5000, "female": 3000,
    }
    assert parse_prices("") == {}
    for bad in ("male", "other=10", "male=ten"):
        with pytest.raises(ConfigError):
            parse_prices(bad)


def test_ticket_id_format():
    for _ in range(50):
        tid = new_ticket_id("RSG-PPOOL")
        prefix, _, digits = tid.rpartition("-")
        assert prefix == "RSG-PPOOL"
        assert len(digits) == 6 and digits.isdigit()
        assert 100000 <= int(digits) <= 999999


def test_email_check():
    assert is_valid_email("ada@example.com")
    assert is_valid_email("  ada@example.com ")
    assert not is_valid_email("ada@example")
    assert not is_valid_email("")
    assert not is_valid_email(None)


def test_mask_key():
    assert mask_key(None) == "(missing)"
    assert mask_key("short") == "shor…"
    assert mask_key("FLWSECK_TEST-0123456789") == "FLWSEC…6789"
