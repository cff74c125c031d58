import importlib
import os
import sqlite3
import sys
from datetime import datetime, time, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from marketplace.services.errors import MarketplaceValidationError
from marketplace.services.marketplace_store import MarketplaceStore


def _reload_config(monkeypatch):
    import marketplace

    monkeypatch.setattr(marketplace, "config", marketplace.config)
    monkeypatch.delitem(sys.modules, "marketplace.config")
    return importlib.import_module("marketplace.config")


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    config = _reload_config(monkeypatch)
    assert config.AUTH_TOKEN_TTL_HOURS == 24


def test_slot_step_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("SLOT_STEP_MINUTES", "0")
    config = _reload_config(monkeypatch)
    assert config.SLOT_STEP_MINUTES == 30


def test_workday_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("WORKDAY_START", "nine")
    monkeypatch.setenv("WORKDAY_END", "18:30")
    config = _reload_config(monkeypatch)
    assert config.WORKDAY_START == time(9, 0)
    assert config.WORKDAY_END == time(18, 30)


def test_admin_ids_parsed_from_csv(monkeypatch):
    monkeypatch.setenv("ADMIN_USER_IDS", " ops_1, ,ops_2 ")
    config = _reload_config(monkeypatch)
    assert config.ADMIN_USER_IDS == {"ops_1", "ops_2"}


def test_tampered_token_is_rejected():
    from marketplace.auth import create_access_token, verify_access_token

    token, _ = create_access_token("user_a")
    assert verify_access_token(token) == "user_a"
    payload, signature = token.split(".", 1)
    assert verify_access_token(f"{payload}.{signature[:-2]}xx") is None
    assert verify_access_token("not-a-token") is None
    assert verify_access_token("%%%.###") is None


def test_timezone_aware_start_is_stored_naive(tmp_path):
    store = MarketplaceStore(db_path=str(tmp_path / "tz.sqlite3"), seed_demo_data=True)
    aware = datetime.fromisoformat("2030-02-01T10:00:00.123456+08:00")
    booking = store.create_booking(customer_id="customer_1", service_id="svc_haircut", start_time=aware)
    assert booking.start_time == datetime(2030, 2, 1, 10, 0)
    assert booking.start_time.tzinfo is None
    with sqlite3.connect(store.db_path) as conn:
        stored = conn.execute("SELECT start_time, end_time FROM bookings WHERE id = ?", (booking.id,)).fetchone()
    assert stored == ("2030-02-01T10:00:00", "2030-02-01T10:30:00")


def test_store_reopens_existing_database(tmp_path):
    db_path = str(tmp_path / "reopen.sqlite3")
    first = MarketplaceStore(db_path=db_path, seed_demo_data=True)
    booking = first.create_booking(customer_id="customer_2", service_id="svc_lawn", start_time=datetime(2030, 2, 1, 9))
    second = MarketplaceStore(db_path=db_path, seed_demo_data=True)
    assert second.get_booking("provider_1", booking.id).status == "PENDING"


def test_expired_token_is_rejected():
    from marketplace.auth import create_access_token, verify_access_token

    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
    token, expires_at = create_access_token("user_b", now=issued)
    assert verify_access_token(token, now=issued + timedelta(hours=1)) == "user_b"
    assert verify_access_token(token, now=datetime.fromisoformat(expires_at) + timedelta(seconds=1)) is None


def test_token_keeps_user_ids_containing_separator():
    from marketplace.auth import bearer_user, create_access_token

    token, _ = create_access_token("team|ops")
    assert bearer_user(f"Bearer {token}") == "team|ops"
    assert bearer_user(f"Basic {token}") is None
    assert bearer_user("Bearer ") is None
    assert bearer_user(None) is None


def test_booking_start_near_datetime_max_is_a_validation_error(tmp_path):
    store = MarketplaceStore(db_path=str(tmp_path / "max.sqlite3"), seed_demo_data=True)
    with pytest.raises(MarketplaceValidationError):
        store.create_booking(customer_id="customer_1", service_id="svc_lawn", start_time=datetime(9999, 12, 31, 23, 30))
    assert store.get_customer_bookings("customer_1") == []
