"""
Tests for datetime utility functions.
"""
from datetime import datetime, timedelta, timezone

import pytest

from adaptive_testing.core.datetime_utils import ensure_timezone_aware, utc_now


class TestUtcNow:
    def test_is_timezone_aware_utc(self):
        now = utc_now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)


class TestEnsureTimezoneAware:
    def test_naive_becomes_utc(self):
        naive = datetime(2024, 3, 1, 8, 30)
        aware = ensure_timezone_aware(naive)
        assert aware.tzinfo == timezone.utc
        assert aware.replace(tzinfo=None) == naive

    def test_aware_unchanged(self):
        offset = timezone(timedelta(hours=2))
        value = datetime(2024, 3, 1, 8, 30, tzinfo=offset)
        assert ensure_timezone_aware(value) is value

    def test_none_rejected(self):
        with pytest.raises(ValueError):
            ensure_timezone_aware(None)
