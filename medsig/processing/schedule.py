"""
Next-Dose Scheduler
===================

Projects upcoming administration timestamps for a FHIR Dosage.

Schedules are dispatched by the shape of ``timing.repeat``:

1. ``when`` / ``timeOfDay`` anchors: event codes expand to wall-clock times
   (meal anchors plus offsets), immediate (IMD) doses fire at the order time,
   and local calendar days are walked forward
2. Fixed intervals (``period`` + ``periodUnit``): step from the order time in
   absolute units, or calendar months/years in local time
3. Pure frequencies (``BID``, ``freq:3/d``): institution clock fallbacks

All calendar math happens in the configured time zone. Output timestamps are
ISO-8601 strings carrying the local UTC offset
(``2024-01-01T15:05:00+00:00``).
"""

import logging
import math
from datetime import timedelta
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from ..config.sig_config import (
    DAYS_OF_WEEK,
    SCHEDULE_DEFAULTS,
    EventTiming,
    FrequencyDefaults,
    ScheduleConfig,
    ScheduleOptions,
)
from ..errors import ScheduleComputationError, ScheduleConfigError
from ..extractors.tokenizer import format_number

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
DEFAULT_LIMIT = 10

# Days walked per requested dose before giving up on anchored schedules
DAY_WALK_FACTOR = 31
# Interval steps per requested dose before giving up
INTERVAL_STEP_FACTOR = 1000

MEAL_ANCHORS = [EventTiming.BREAKFAST, EventTiming.LUNCH, EventTiming.DINNER]

SPECIFIC_BEFORE_MEALS = {
    EventTiming.BEFORE_BREAKFAST: EventTiming.BREAKFAST,
    EventTiming.BEFORE_LUNCH: EventTiming.LUNCH,
    EventTiming.BEFORE_DINNER: EventTiming.DINNER,
}

SPECIFIC_AFTER_MEALS = {
    EventTiming.AFTER_BREAKFAST: EventTiming.BREAKFAST,
    EventTiming.AFTER_LUNCH: EventTiming.LUNCH,
    EventTiming.AFTER_DINNER: EventTiming.DINNER,
}

INTERVAL_SECONDS = {
    's': 1,
    'min': 60,
    'h': 60 * 60,
    'd': 24 * 60 * 60,
    'wk': 7 * 24 * 60 * 60,
}

CALENDAR_MONTHS = {'mo': 1, 'a': 12}


class ExpandedTime(NamedTuple):
    """A wall-clock time (HH:MM:SS) and the day it falls on relative to the anchor day."""

    time: str
    day_shift: int


# =============================================================================
# TIME ZONES
# =============================================================================

class ZoneCache:
    """
    Time-zone objects keyed by IANA name.

    Each zone is built once and shared across calls. Pass one instance to
    ``next_due_doses`` to control its lifetime (e.g. per test).
    """

    def __init__(self):
        self._zones: Dict[str, ZoneInfo] = {}

    def get(self, time_zone: str) -> ZoneInfo:
        zone = self._zones.get(time_zone)
        if zone is None:
            try:
                zone = ZoneInfo(time_zone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ScheduleConfigError(f"Unknown time zone: {time_zone}") from e
            self._zones[time_zone] = zone
        return zone

    def __len__(self) -> int:
        return len(self._zones)


DEFAULT_ZONE_CACHE = ZoneCache()


def to_utc_timestamp(value: Any, label: str) -> pd.Timestamp:
    """Coerce a datetime, Timestamp or ISO string into a UTC Timestamp.

    Naive values are read as UTC.
    """
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError) as e:
        raise ScheduleConfigError(f"Invalid {label} supplied to next_due_doses") from e
    if pd.isna(ts):
        raise ScheduleConfigError(f"Invalid {label} supplied to next_due_doses")
    if ts.tzinfo is None:
        return ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


def make_zoned(day: pd.Timestamp, clock: str, zone: ZoneInfo) -> Optional[pd.Timestamp]:
    """
    Localise a wall-clock time on a local calendar day.

    Returns None for wall times skipped by a DST gap. Ambiguous wall times
    resolve to their first (daylight) occurrence.
    """
    hour, minute, second = (int(part) for part in clock.split(':'))
    naive = pd.Timestamp(year=day.year, month=day.month, day=day.day,
                         hour=hour, minute=minute, second=second)
    zoned = naive.tz_localize(zone, ambiguous=True, nonexistent='NaT')
    if pd.isna(zoned):
        return None
    return zoned.tz_convert('UTC')


def local_day(ts: pd.Timestamp, zone: ZoneInfo) -> pd.Timestamp:
    """Naive midnight of the local calendar day containing ``ts``."""
    return ts.tz_convert(zone).tz_localize(None).normalize()


def local_weekday(day: pd.Timestamp) -> str:
    return DAYS_OF_WEEK[day.weekday()]


def format_zoned_iso(ts: pd.Timestamp, zone: ZoneInfo) -> str:
    """``YYYY-MM-DDTHH:MM:SS+HH:MM`` in the local zone."""
    local = ts.tz_convert(zone)
    offset_minutes = int(local.utcoffset().total_seconds() // 60)
    sign = '+' if offset_minutes >= 0 else '-'
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}{sign}{hours:02d}:{minutes:02d}"


# =============================================================================
# CLOCKS
# =============================================================================

def normalize_clock(clock: str) -> str:
    """
    Normalise ``HH:MM`` or ``HH:MM:SS`` into ``HH:MM:SS``.

    Raises:
        ScheduleConfigError: If the clock is malformed or out of range
    """
    parts = str(clock).split(':')
    if len(parts) < 2 or len(parts) > 3:
        raise ScheduleConfigError(f"Invalid clock value: {clock}")
    if len(parts) == 2:
        parts.append('00')
    try:
        hour, minute, second = (int(part) for part in parts)
    except ValueError as e:
        raise ScheduleConfigError(f"Invalid clock value: {clock}") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise ScheduleConfigError(f"Invalid clock value: {clock}")
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def apply_offset(clock: str, offset_minutes: float) -> ExpandedTime:
    """Shift a normalised clock by minutes, tracking the day rollover."""
    hour, minute, second = (int(part) for part in clock.split(':'))
    total = hour * 60 + minute + offset_minutes
    day_shift = int(total // MINUTES_PER_DAY)
    total -= day_shift * MINUTES_PER_DAY
    return ExpandedTime(f"{int(total // 60):02d}:{int(total % 60):02d}:{second:02d}", day_shift)


def _offset_entry(clock: str, offset: float) -> ExpandedTime:
    return apply_offset(clock, offset) if offset else ExpandedTime(clock, 0)


def expand_timing(code: str, event_clock: Dict[str, str], meal_offsets: Dict[str, float],
                  repeat_offset: float = 0) -> List[ExpandedTime]:
    """
    Expand one event-timing code into wall-clock entries.

    An explicit clock for the code wins. Otherwise generic meal codes (AC, PC,
    C) expand against the breakfast/lunch/dinner anchors, and specific meal
    codes use their own meal anchor with their own offset, falling back to the
    generic AC/PC offset.
    """
    entries: List[ExpandedTime] = []
    if event_clock.get(code):
        entries.append(ExpandedTime(normalize_clock(event_clock[code]), 0))
    elif code in (EventTiming.BEFORE_MEAL, EventTiming.AFTER_MEAL, EventTiming.MEAL):
        offset = meal_offsets.get(code, 0) if code != EventTiming.MEAL else 0
        for meal in MEAL_ANCHORS:
            if event_clock.get(meal):
                entries.append(_offset_entry(normalize_clock(event_clock[meal]), offset))
    elif code in SPECIFIC_BEFORE_MEALS or code in SPECIFIC_AFTER_MEALS:
        if code in SPECIFIC_BEFORE_MEALS:
            meal, generic = SPECIFIC_BEFORE_MEALS[code], EventTiming.BEFORE_MEAL
        else:
            meal, generic = SPECIFIC_AFTER_MEALS[code], EventTiming.AFTER_MEAL
        if event_clock.get(meal):
            offset = meal_offsets.get(code, meal_offsets.get(generic, 0))
            entries.append(_offset_entry(normalize_clock(event_clock[meal]), offset))

    if repeat_offset and entries:
        shifted = []
        for entry in entries:
            adjusted = apply_offset(entry.time, repeat_offset)
            shifted.append(ExpandedTime(adjusted.time, entry.day_shift + adjusted.day_shift))
        return shifted
    return entries


def expand_when_codes(when_codes: List[str], event_clock: Dict[str, str],
                      meal_offsets: Dict[str, float], repeat_offset: float = 0) -> List[ExpandedTime]:
    """Expand, deduplicate and sort ``when`` codes by (day shift, time)."""
    entries: List[ExpandedTime] = []
    for code in when_codes:
        if code == EventTiming.IMMEDIATE:
            continue
        for expansion in expand_timing(code, event_clock, meal_offsets, repeat_offset):
            if expansion not in entries:
                entries.append(expansion)
    return sorted(entries, key=lambda e: (e.day_shift, e.time))


def merge_frequency_defaults(*layers: Optional[FrequencyDefaults]) -> FrequencyDefaults:
    """Layer frequency defaults; later layers override earlier keys."""
    merged = FrequencyDefaults()
    for layer in layers:
        if layer is None:
            continue
        merged.by_code.update(layer.by_code)
        merged.by_frequency.update(layer.by_frequency)
    return merged


def resolve_frequency_clocks(timing: Dict[str, Any], defaults: FrequencyDefaults) -> List[str]:
    """
    Institution clocks for a frequency-only schedule.

    Clocks from the timing code (``BID``) and from the ``freq:N/unit`` and
    ``freq:N/per:Punit`` keys are combined, deduplicated and sorted.
    """
    collected: Set[str] = set()
    code = None
    for coding in (timing.get('code') or {}).get('coding') or []:
        if coding.get('code'):
            code = coding['code'].upper()
            break
    if code and code in defaults.by_code:
        collected.update(normalize_clock(c) for c in defaults.by_code[code])

    repeat = timing.get('repeat') or {}
    frequency, period, unit = repeat.get('frequency'), repeat.get('period'), repeat.get('periodUnit')
    if frequency and period and unit:
        keys = [
            f"freq:{format_number(frequency)}/{unit}",
            f"freq:{format_number(frequency)}/per:{format_number(period)}{unit}",
        ]
        for key in keys:
            collected.update(normalize_clock(c) for c in defaults.by_frequency.get(key, []))
    return sorted(collected)


# =============================================================================
# SCHEDULE WALKERS
# =============================================================================

class _Collector:
    """Ordered, deduplicated ISO output bounded by ``limit``."""

    def __init__(self, limit: int, zone: ZoneInfo):
        self.limit = limit
        self.zone = zone
        self.results: List[str] = []
        self._seen: Set[str] = set()

    @property
    def full(self) -> bool:
        return len(self.results) >= self.limit

    def add(self, ts: pd.Timestamp):
        iso = format_zoned_iso(ts, self.zone)
        if iso not in self._seen:
            self._seen.add(iso)
            self.results.append(iso)


def _walk_days(entries: List[ExpandedTime], start: pd.Timestamp, ordered_at: Optional[pd.Timestamp],
               day_filter: Set[str], collector: _Collector):
    """Walk local days from ``start`` emitting every entry at or after the window start."""
    zone = collector.zone
    current_day = local_day(start, zone)
    max_iterations = collector.limit * DAY_WALK_FACTOR
    iterations = 0
    while not collector.full and iterations < max_iterations:
        if not day_filter or local_weekday(current_day) in day_filter:
            for entry in entries:
                target_day = current_day + timedelta(days=entry.day_shift)
                zoned = make_zoned(target_day, entry.time, zone)
                if zoned is None or zoned < start:
                    continue
                if ordered_at is not None and zoned < ordered_at:
                    continue
                collector.add(zoned)
                if collector.full:
                    break
        current_day = current_day + timedelta(days=1)
        iterations += 1


def interval_stepper(period: float, period_unit: str,
                     zone: ZoneInfo) -> Optional[Callable[[pd.Timestamp], pd.Timestamp]]:
    """
    Build the function advancing one interval.

    Seconds through weeks are absolute durations; months and years move the
    local calendar, clamping the day to the target month's length.
    """
    if not period or not period_unit:
        return None
    if period_unit in INTERVAL_SECONDS:
        delta = pd.Timedelta(seconds=period * INTERVAL_SECONDS[period_unit])
        return lambda value: value + delta
    if period_unit in CALENDAR_MONTHS:
        months = int(period * CALENDAR_MONTHS[period_unit])

        def add_months(value: pd.Timestamp) -> pd.Timestamp:
            local = value.tz_convert(zone).tz_localize(None)
            target = local + pd.DateOffset(months=months)
            zoned = make_zoned(target.normalize(), target.strftime('%H:%M:%S'), zone)
            if zoned is None:
                raise ScheduleComputationError(
                    f"Unable to resolve {target} in {zone.key} while scheduling")
            return zoned

        return add_months
    return None


def generate_interval_series(base: pd.Timestamp, start: pd.Timestamp, repeat: Dict[str, Any],
                             ordered_at: Optional[pd.Timestamp], day_filter: Set[str],
                             collector: _Collector):
    """Step from ``base`` past ``start`` then emit each qualifying instant."""
    zone = collector.zone
    increment = interval_stepper(repeat.get('period'), repeat.get('periodUnit'), zone)
    if increment is None:
        return
    max_iterations = collector.limit * INTERVAL_STEP_FACTOR
    guard = 0
    current = base
    while current < start and guard < max_iterations:
        following = increment(current)
        if following <= current:
            return
        current = following
        guard += 1

    while not collector.full and guard < max_iterations:
        if not day_filter or local_weekday(local_day(current, zone)) in day_filter:
            if current >= start and (ordered_at is None or current >= ordered_at):
                collector.add(current)
        following = increment(current)
        # Sub-month calendar periods truncate to zero months
        if following <= current:
            break
        current = following
        guard += 1


def treat_as_interval(repeat: Dict[str, Any]) -> bool:
    """True for period schedules that are not plain N-times-daily frequencies."""
    period, unit, frequency = repeat.get('period'), repeat.get('periodUnit'), repeat.get('frequency')
    if not period or not unit:
        return False
    return not frequency or unit != 'd' or (frequency == 1 and period > 1)


# =============================================================================
# ENTRY POINT
# =============================================================================

def _resolve_prior_count(options: ScheduleOptions, ordered_at: Optional[pd.Timestamp]) -> int:
    prior = options.prior_count
    if prior is None:
        if ordered_at is not None:
            # Doses between ordered_at and from are not reconstructed yet
            logger.debug("prior_count not supplied; assuming no doses before 'from'")
        return 0
    if isinstance(prior, bool) or not isinstance(prior, (int, float)) \
            or not math.isfinite(prior) or prior < 0:
        raise ScheduleConfigError("Invalid prior_count supplied to next_due_doses")
    return int(math.floor(prior))


def next_due_doses(dosage: Dict[str, Any], options: ScheduleOptions,
                   zone_cache: Optional[ZoneCache] = None) -> List[str]:
    """
    Project the next administration timestamps for a Dosage.

    Args:
        dosage: FHIR Dosage dictionary
        options: Window start (``from_``), order time, limit, prior dose
            count, time zone and clinic clock overrides
        zone_cache: Time-zone cache (module default when omitted)

    Returns:
        Ascending ISO-8601 timestamps with local UTC offsets, at most
        ``limit`` long

    Raises:
        ScheduleConfigError: On missing ``from_``/time zone, invalid
            timestamps, clocks or ``prior_count``
    """
    if options is None:
        raise ScheduleConfigError("Options argument is required for next_due_doses")
    if options.from_ is None:
        raise ScheduleConfigError("The 'from_' option is required for next_due_doses")

    limit = DEFAULT_LIMIT if options.limit is None else options.limit
    if not isinstance(limit, (int, float)) or not math.isfinite(limit) or limit <= 0:
        return []
    limit = int(limit)

    start = to_utc_timestamp(options.from_, 'from_')
    ordered_at = None if options.ordered_at is None else to_utc_timestamp(options.ordered_at, 'ordered_at')
    prior_count = _resolve_prior_count(options, ordered_at)
    base_time = ordered_at if ordered_at is not None else start

    config = options.config or ScheduleConfig()
    time_zone = options.time_zone or config.time_zone
    if not time_zone:
        raise ScheduleConfigError("Configuration with a valid time_zone is required")
    zone = (zone_cache or DEFAULT_ZONE_CACHE).get(time_zone)

    event_clock = {**config.event_clock, **options.event_clock}
    meal_offsets = {**config.meal_offsets, **options.meal_offsets}

    timing = dosage.get('timing') or {}
    repeat = timing.get('repeat')
    if not repeat:
        return []

    remaining = None
    if repeat.get('count') is not None:
        total = max(0, int(math.floor(repeat['count'])))
        if total == 0:
            return []
        remaining = max(0, total - prior_count)
        if remaining == 0:
            return []
    effective_limit = min(limit, remaining) if remaining is not None else limit

    collector = _Collector(effective_limit, zone)
    day_filter = {day.lower() for day in repeat.get('dayOfWeek') or []}

    when_codes = repeat.get('when') or []
    time_of_day = repeat.get('timeOfDay') or []
    if when_codes or time_of_day:
        entries = expand_when_codes(when_codes, event_clock, meal_offsets, repeat.get('offset') or 0)
        if time_of_day:
            entries.extend(ExpandedTime(normalize_clock(c), 0) for c in time_of_day)
            entries.sort(key=lambda e: (e.day_shift, e.time))
        if EventTiming.IMMEDIATE in when_codes:
            if ordered_at is None or ordered_at >= start:
                collector.add(base_time)
        if collector.full or not entries:
            return collector.results[:effective_limit]
        _walk_days(entries, start, ordered_at, day_filter, collector)
        logger.debug(f"Anchored schedule -> {len(collector.results)} doses")
        return collector.results[:effective_limit]

    if treat_as_interval(repeat):
        generate_interval_series(base_time, start, repeat, ordered_at, day_filter, collector)
        logger.debug(f"Interval schedule -> {len(collector.results)} doses")
        return collector.results[:effective_limit]

    if repeat.get('frequency') and repeat.get('period') and repeat.get('periodUnit'):
        defaults = merge_frequency_defaults(SCHEDULE_DEFAULTS, config.frequency_defaults,
                                            options.frequency_defaults)
        clocks = resolve_frequency_clocks(timing, defaults)
        if not clocks:
            return []
        _walk_days([ExpandedTime(c, 0) for c in clocks], start, ordered_at, day_filter, collector)
        logger.debug(f"Frequency schedule -> {len(collector.results)} doses")
        return collector.results[:effective_limit]

    return []
