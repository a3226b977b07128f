"""
Unit tests for date utilities.
"""

from datetime import UTC, datetime, timedelta

import pytest

from compute_gateway.core.utils.date_utils import (
    ensure_utc,
    period_start,
    utcfromtimestamp,
    utcnow,
)


class TestUtcNow:
    """Test timezone-aware helpers"""

    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is UTC

    def test_utcfromtimestamp(self):
        assert utcfromtimestamp(0) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_ensure_utc_attaches_timezone(self):
        naive = datetime(2025, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_ensure_utc_keeps_aware_values(self):
        aware = datetime(2025, 1, 1, tzinfo=UTC)
        assert ensure_utc(aware) is aware


class TestPeriodStart:
    """Test trailing usage windows"""

    @pytest.fixture
    def reference(self):
        return datetime(2025, 3, 31, 12, 0, tzinfo=UTC)

    def test_all_has_no_lower_bound(self, reference):
        assert period_start("all", reference) is None

    @pytest.mark.parametrize(
        "period,delta",
        [("day", timedelta(days=1)), ("week", timedelta(days=7)), ("month", timedelta(days=30))],
    )
    def test_trailing_windows(self, reference, period, delta):
        assert period_start(period, reference) == reference - delta

    def test_unknown_period(self, reference):
        with pytest.raises(ValueError, match="Unknown usage period"):
            period_start("year", reference)  # type: ignore[arg-type]
