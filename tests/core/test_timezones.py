"""
Tests for per-user timezone resolution.
"""

import pytest
from datetime import date, datetime, timezone

from nexusflow.errors import TimezoneResolutionError
from nexusflow.timezones import load_timezone, local_date, resolve_timezone


def test_load_known_timezone():
    assert load_timezone("Asia/Tokyo").key == "Asia/Tokyo"


@pytest.mark.parametrize("name", ["", "Mars/Olympus_Mons", "../etc/passwd"])
def test_load_unknown_timezone(name):
    with pytest.raises(TimezoneResolutionError):
        load_timezone(name)


def test_resolve_uses_user_zone():
    assert resolve_timezone("Europe/Lisbon", "America/Sao_Paulo").key == "Europe/Lisbon"


@pytest.mark.parametrize("name", [None, "", "Not/AZone"])
def test_resolve_falls_back_to_default(name):
    assert resolve_timezone(name, "America/Sao_Paulo").key == "America/Sao_Paulo"


def test_resolve_falls_back_to_utc_when_default_invalid():
    assert resolve_timezone("Nope/Nope", "Also/Nope").key == "UTC"


def test_local_date_crosses_midnight():
    moment = datetime(2026, 10, 18, 2, 30, tzinfo=timezone.utc)

    # Still the 17th in Sao Paulo (UTC-3), already the 18th in Tokyo
    assert local_date(moment, load_timezone("America/Sao_Paulo")) == date(2026, 10, 17)
    assert local_date(moment, load_timezone("Asia/Tokyo")) == date(2026, 10, 18)


def test_local_date_naive_is_utc():
    moment = datetime(2026, 10, 18, 2, 30)

    assert local_date(moment, load_timezone("UTC")) == date(2026, 10, 18)
