"""Tests for next-dose schedule projection."""

import pytest
import sys
from pathlib import Path

# Add module to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medsig.config.sig_config import ScheduleConfig, ScheduleOptions  # noqa: E402

CLINIC_CONFIG = ScheduleConfig(
    time_zone='UTC',
    event_clock={
        'MORN': '08:00',
        'NOON': '12:00',
        'AFT': '15:00',
        'EVE': '18:00',
        'NIGHT': '22:00',
        'HS': '22:00',
        'CM': '08:00',
        'CD': '12:30',
        'CV': '18:30',
    },
    meal_offsets={'AC': -30, 'PC': 30, 'PCM': 30, 'PCD': 30, 'PCV': 30},
)


def _options(**kwargs):
    kwargs.setdefault('config', CLINIC_CONFIG)
    return ScheduleOptions(**kwargs)


def _dosage(repeat, code=None):
    timing = {'repeat': repeat}
    if code:
        timing['code'] = {'coding': [{'code': code}]}
    return {'timing': timing}


class TestAnchoredSchedules:
    """Test event timing and time-of-day anchors."""

    def test_after_meals_and_bedtime(self):
        """Meal offsets apply to specific after-meal codes."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'when': ['PCM', 'PCD', 'PCV', 'HS']}),
            _options(from_='2024-01-01T10:00:00Z', ordered_at='2024-01-01T09:00:00Z', limit=4),
        )

        assert result == [
            '2024-01-01T13:00:00+00:00',
            '2024-01-01T19:00:00+00:00',
            '2024-01-01T22:00:00+00:00',
            '2024-01-02T08:30:00+00:00',
        ]

    def test_generic_before_meals(self):
        """AC expands against every meal anchor."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'when': ['AC']}),
            _options(from_='2024-01-01T07:15:00Z', ordered_at='2024-01-01T07:00:00Z', limit=3),
        )

        assert result == [
            '2024-01-01T07:30:00+00:00',
            '2024-01-01T12:00:00+00:00',
            '2024-01-01T18:00:00+00:00',
        ]

    def test_count_limits_anchored_doses(self):
        """repeat.count caps the output."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'when': ['CM', 'CV'], 'count': 2}),
            _options(from_='2024-01-01T00:00:00Z'),
        )

        assert result == ['2024-01-01T08:00:00+00:00', '2024-01-01T18:30:00+00:00']

    def test_immediate_fires_at_order_time(self):
        """IMD yields the order time only."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'when': ['IMD']}),
            _options(from_='2024-01-01T09:00:00Z', ordered_at='2024-01-01T11:00:00Z'),
        )

        assert result == ['2024-01-01T11:00:00+00:00']

    def test_time_of_day(self):
        """Explicit clock times are walked day by day."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'timeOfDay': ['09:00', '21:00']}),
            _options(from_='2024-01-01T10:00:00Z', limit=3),
        )

        assert result == [
            '2024-01-01T21:00:00+00:00',
            '2024-01-02T09:00:00+00:00',
            '2024-01-02T21:00:00+00:00',
        ]

    def test_meal_codes_without_clocks_produce_nothing(self):
        """AC without meal anchors has no schedule."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'when': ['AC']}),
            ScheduleOptions(from_='2024-01-01T00:00:00Z', time_zone='UTC'),
        )

        assert result == []


class TestIntervalSchedules:
    """Test period-based schedules."""

    def test_interval_from_order_time(self):
        """q6h steps from ordered_at past the window start."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 6, 'periodUnit': 'h'}),
            _options(from_='2024-01-01T10:00:00Z', ordered_at='2024-01-01T09:05:00Z', limit=4),
        )

        assert result == [
            '2024-01-01T15:05:00+00:00',
            '2024-01-01T21:05:00+00:00',
            '2024-01-02T03:05:00+00:00',
            '2024-01-02T09:05:00+00:00',
        ]

    def test_interval_without_order_time(self):
        """Without ordered_at the window start is the base."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 8, 'periodUnit': 'h'}),
            _options(from_='2024-01-01T00:00:00Z', limit=3),
        )

        assert result == [
            '2024-01-01T00:00:00+00:00',
            '2024-01-01T08:00:00+00:00',
            '2024-01-01T16:00:00+00:00',
        ]

    def test_hourly_count(self):
        """count bounds an hourly schedule."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 1, 'periodUnit': 'h', 'count': 3}),
            _options(from_='2024-01-01T09:00:00Z', ordered_at='2024-01-01T09:00:00Z'),
        )

        assert result == [
            '2024-01-01T09:00:00+00:00',
            '2024-01-01T10:00:00+00:00',
            '2024-01-01T11:00:00+00:00',
        ]

    def test_prior_count_reduces_remaining(self):
        """Doses already given are subtracted from count."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 1, 'periodUnit': 'd', 'count': 5}),
            _options(from_='2024-01-04T00:00:00Z', ordered_at='2024-01-01T09:00:00Z', prior_count=3),
        )

        assert result == ['2024-01-04T09:00:00+00:00', '2024-01-05T09:00:00+00:00']

    def test_prior_count_exhausts_schedule(self):
        """No doses remain once prior_count reaches count."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 1, 'periodUnit': 'd', 'count': 2}),
            _options(from_='2024-01-04T00:00:00Z', prior_count=2),
        )

        assert result == []

    def test_weekly_with_day_filter(self):
        """Weekly Monday doses keep the order time's clock."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 1, 'periodUnit': 'wk', 'dayOfWeek': ['mon']}),
            _options(from_='2024-01-03T00:00:00Z', ordered_at='2024-01-01T09:00:00Z', limit=3),
        )

        assert result == [
            '2024-01-08T09:00:00+00:00',
            '2024-01-15T09:00:00+00:00',
            '2024-01-22T09:00:00+00:00',
        ]

    def test_monthly_clamps_to_month_end(self):
        """Calendar months clamp the day of month."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 1, 'periodUnit': 'mo'}),
            _options(from_='2024-01-31T09:00:00Z', limit=2),
        )

        assert result == ['2024-01-31T09:00:00+00:00', '2024-02-29T09:00:00+00:00']

    def test_sub_month_period_stops_stepping(self):
        """A month period that rounds to zero months emits the start only."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 0.5, 'periodUnit': 'mo'}),
            _options(from_='2024-01-31T09:00:00Z', limit=3),
        )

        assert result == ['2024-01-31T09:00:00+00:00']

    def test_sub_month_period_before_window(self):
        """A stalled stepper never reaches a later window."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'period': 0.5, 'periodUnit': 'mo'}),
            _options(from_='2024-01-31T09:00:00Z', ordered_at='2024-01-01T09:00:00Z', limit=3),
        )

        assert result == []


class TestFrequencySchedules:
    """Test frequency-only schedules using clock fallbacks."""

    def test_bid_with_day_filter(self):
        """BID uses the institution clocks on allowed days only."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'frequency': 2, 'period': 1, 'periodUnit': 'd', 'dayOfWeek': ['mon', 'tue']},
                    code='BID'),
            _options(from_='2024-01-01T05:00:00Z', limit=5),
        )

        assert result == [
            '2024-01-01T08:00:00+00:00',
            '2024-01-01T20:00:00+00:00',
            '2024-01-02T08:00:00+00:00',
            '2024-01-02T20:00:00+00:00',
            '2024-01-08T08:00:00+00:00',
        ]

    def test_frequency_defaults_override(self):
        """Caller frequency defaults replace the built-in clocks."""
        from medsig import next_due_doses
        from medsig.config.sig_config import FrequencyDefaults

        result = next_due_doses(
            _dosage({'frequency': 3, 'period': 1, 'periodUnit': 'd'}),
            _options(from_='2024-01-01T00:00:00Z', limit=3,
                     frequency_defaults=FrequencyDefaults(by_frequency={'freq:3/d': ['07:00', '13:00', '19:00']})),
        )

        assert result == [
            '2024-01-01T07:00:00+00:00',
            '2024-01-01T13:00:00+00:00',
            '2024-01-01T19:00:00+00:00',
        ]


class TestTimeZones:
    """Test local calendar handling."""

    def test_offsets_follow_daylight_saving(self):
        """Output offsets change across a DST transition."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'timeOfDay': ['09:00']}),
            ScheduleOptions(from_='2024-03-09T12:00:00Z', time_zone='America/New_York', limit=2),
        )

        assert result == ['2024-03-09T09:00:00-05:00', '2024-03-10T09:00:00-04:00']

    def test_nonexistent_wall_time_skipped(self):
        """Wall times inside the spring-forward gap are skipped."""
        from medsig import next_due_doses

        result = next_due_doses(
            _dosage({'timeOfDay': ['02:30']}),
            ScheduleOptions(from_='2024-03-09T12:00:00Z', time_zone='America/New_York', limit=2),
        )

        assert result == ['2024-03-11T02:30:00-04:00', '2024-03-12T02:30:00-04:00']

    def test_zone_cache_reuses_zones(self):
        """A ZoneCache builds each zone once."""
        from medsig import ZoneCache

        cache = ZoneCache()
        first = cache.get('Asia/Bangkok')
        second = cache.get('Asia/Bangkok')

        assert first is second
        assert len(cache) == 1


class TestScheduleErrors:
    """Test option validation."""

    def test_missing_from(self):
        """from_ is required."""
        from medsig import next_due_doses
        from medsig.errors import ScheduleConfigError

        with pytest.raises(ScheduleConfigError):
            next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}), _options())

    def test_missing_time_zone(self):
        """A time zone must come from options or config."""
        from medsig import next_due_doses
        from medsig.errors import ScheduleConfigError

        with pytest.raises(ScheduleConfigError):
            next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}),
                           ScheduleOptions(from_='2024-01-01T00:00:00Z'))

    def test_unknown_time_zone(self):
        """Unknown zone names are configuration errors."""
        from medsig import next_due_doses
        from medsig.errors import ScheduleConfigError

        with pytest.raises(ScheduleConfigError):
            next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}),
                           ScheduleOptions(from_='2024-01-01T00:00:00Z', time_zone='Mars/Olympus'))

    def test_invalid_timestamp(self):
        """Unparseable timestamps are rejected."""
        from medsig import next_due_doses
        from medsig.errors import ScheduleConfigError

        with pytest.raises(ScheduleConfigError):
            next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}), _options(from_='not a date'))

    def test_negative_prior_count(self):
        """prior_count must be a non-negative number."""
        from medsig import next_due_doses
        from medsig.errors import ScheduleConfigError

        with pytest.raises(ScheduleConfigError):
            next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}),
                           _options(from_='2024-01-01T00:00:00Z', prior_count=-1))

    def test_non_positive_limit(self):
        """A zero limit yields nothing."""
        from medsig import next_due_doses

        result = next_due_doses(_dosage({'period': 6, 'periodUnit': 'h'}),
                                _options(from_='2024-01-01T00:00:00Z', limit=0))

        assert result == []

    def test_no_repeat(self):
        """Dosages without timing.repeat have no schedule."""
        from medsig import next_due_doses

        assert next_due_doses({'timing': {}}, _options(from_='2024-01-01T00:00:00Z')) == []
