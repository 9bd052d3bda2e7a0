"""
Timing Rules
============

Token rules for cadence: separated and compact ``q`` intervals, numeric
cadence (``1 per day``), count-based frequencies (``twice``, ``3 times a
day``), count limits (``x5``, ``for 10 doses``), meal context
(``pc breakfast and dinner``) and the post-passes that backfill codes,
reconcile meal specificity, expand meals and order ``when`` chronologically.

Each rule takes ``(ctx, i)`` and returns True when it claimed token ``i``.
"""

import re
from typing import Dict, List, Optional

from ..config.sig_config import EventTiming, ParseOptions, PeriodUnit
from ..config.vocabulary import (
    COMBO_EVENT_TIMINGS,
    DAY_OF_WEEK_TOKENS,
    DEFAULT_EVENT_TIMING_WEIGHTS,
    EVENT_TIMING_TOKENS,
    MEAL_KEYWORDS,
    TIMING_ABBREVIATIONS,
    WORD_FREQUENCIES,
)
from ..validation.discouraged import check_discouraged
from .parse_context import (
    ParseContext,
    as_number,
    is_number_token,
    js_round,
    normalize_token_lower,
    normalize_unit,
    parse_number,
)
from .tokenizer import Token, format_number


# =============================================================================
# WORD TABLES
# =============================================================================

MEAL_CONTEXT_CONNECTORS = {'and', 'or', '&', '+', 'plus'}

COUNT_KEYWORDS = {
    'time', 'times', 'dose', 'doses', 'application', 'applications', 'use', 'uses',
}

COUNT_CONNECTOR_WORDS = {
    'a', 'an', 'the', 'total', 'of', 'up', 'to', 'no', 'more', 'than', 'max',
    'maximum', 'additional', 'extra',
}

FREQUENCY_SIMPLE_WORDS = {'once': 1, 'twice': 2, 'thrice': 3}

FREQUENCY_NUMBER_WORDS = {
    'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5, 'six': 6,
    'seven': 7, 'eight': 8, 'nine': 9, 'ten': 10, 'eleven': 11, 'twelve': 12,
}

FREQUENCY_TIMES_WORDS = {'time', 'times', 'x'}

FREQUENCY_CONNECTOR_WORDS = {'per', 'a', 'an', 'each', 'every'}

CADENCE_CONNECTORS = {'per', 'a', 'each', 'every'}

FREQUENCY_ADVERB_UNITS = {
    'daily': PeriodUnit.DAY,
    'weekly': PeriodUnit.WEEK,
    'monthly': PeriodUnit.MONTH,
    'hourly': PeriodUnit.HOUR,
}

INTERVAL_UNITS = {
    'min': PeriodUnit.MINUTE, 'mins': PeriodUnit.MINUTE, 'minute': PeriodUnit.MINUTE,
    'minutes': PeriodUnit.MINUTE, 'm': PeriodUnit.MINUTE,
    'h': PeriodUnit.HOUR, 'hr': PeriodUnit.HOUR, 'hrs': PeriodUnit.HOUR,
    'hour': PeriodUnit.HOUR, 'hours': PeriodUnit.HOUR,
    'd': PeriodUnit.DAY, 'day': PeriodUnit.DAY, 'days': PeriodUnit.DAY,
    'wk': PeriodUnit.WEEK, 'w': PeriodUnit.WEEK, 'week': PeriodUnit.WEEK,
    'weeks': PeriodUnit.WEEK,
    'mo': PeriodUnit.MONTH, 'month': PeriodUnit.MONTH, 'months': PeriodUnit.MONTH,
}

PERIOD_UNIT_SUFFIX = {
    PeriodUnit.MINUTE: 'min',
    PeriodUnit.HOUR: 'h',
    PeriodUnit.DAY: 'd',
    PeriodUnit.WEEK: 'wk',
    PeriodUnit.MONTH: 'mo',
    PeriodUnit.YEAR: 'a',
}

SPECIFIC_MEAL_TIMINGS = {
    EventTiming.BEFORE_BREAKFAST, EventTiming.BEFORE_LUNCH, EventTiming.BEFORE_DINNER,
    EventTiming.AFTER_BREAKFAST, EventTiming.AFTER_LUNCH, EventTiming.AFTER_DINNER,
    EventTiming.BREAKFAST, EventTiming.LUNCH, EventTiming.DINNER,
}

NUMERIC_RANGE = re.compile(r'^([0-9]+(?:\.[0-9]+)?)-([0-9]+(?:\.[0-9]+)?)$')
MULTIPLICATIVE = re.compile(r'^([0-9]+(?:\.[0-9]+)?)[x*]([0-9]+(?:\.[0-9]+)?)$')
COMPACT_Q = re.compile(r'^q([0-9]+(?:\.[0-9]+)?)([a-z]+)$')
COMPACT_Q_VALUE = re.compile(r'^q([0-9]+(?:\.[0-9]+)?)$')
COUNT_PREFIX = re.compile(r'^[x*]([0-9]+(?:\.[0-9]+)?)$')
COUNT_SUFFIX = re.compile(r'^([0-9]+(?:\.[0-9]+)?)[x*]$')
CLOCK = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')


# =============================================================================
# PERIOD HELPERS
# =============================================================================

def map_interval_unit(token: str) -> Optional[str]:
    return INTERVAL_UNITS.get(token)


def parse_numeric_range(token: str) -> Optional[Dict[str, float]]:
    """Parse ``1-2`` into ``{'low': 1, 'high': 2}``."""
    match = NUMERIC_RANGE.match(token)
    if not match:
        return None
    return {'low': parse_number(match.group(1)), 'high': parse_number(match.group(2))}


def _hours_to_minutes(value: float):
    return as_number(js_round(value * 60 * 1000) / 1000)


def _is_integer(value: float) -> bool:
    return float(value).is_integer()


def normalize_period_value(value: float, unit: str):
    """Fractional or sub-1 hour periods become minutes (``q0.5h`` -> 30 min)."""
    if unit == PeriodUnit.HOUR and (not _is_integer(value) or value < 1):
        return _hours_to_minutes(value), PeriodUnit.MINUTE
    return value, unit


def normalize_period_range(low: float, high: float, unit: str):
    """Convert both bounds to minutes when either hour bound is fractional."""
    if unit == PeriodUnit.HOUR and (not _is_integer(low) or not _is_integer(high)
                                    or low < 1 or high < 1):
        return _hours_to_minutes(low), _hours_to_minutes(high), PeriodUnit.MINUTE
    return low, high, unit


def maybe_assign_timing_code(ctx: ParseContext, value: float, unit: str):
    suffix = PERIOD_UNIT_SUFFIX.get(unit)
    if not suffix:
        return
    descriptor = TIMING_ABBREVIATIONS.get(f"q{format_number(value)}{suffix}")
    if descriptor and descriptor.get('code') and not ctx.sig.timing_code:
        ctx.sig.timing_code = descriptor['code']


def apply_period(ctx: ParseContext, period: float, unit: str):
    """Set period/unit and infer daily/weekly/monthly codes where obvious."""
    value, unit = normalize_period_value(period, unit)
    sig = ctx.sig
    sig.period = value
    sig.period_unit = unit
    maybe_assign_timing_code(ctx, value, unit)
    if unit == PeriodUnit.DAY and value == 1 and sig.frequency is None:
        sig.frequency = 1
    if unit == PeriodUnit.WEEK and value == 1 and not sig.timing_code:
        sig.timing_code = 'WK'
    if unit == PeriodUnit.MONTH and value == 1 and not sig.timing_code:
        sig.timing_code = 'MO'


def apply_frequency_descriptor(ctx: ParseContext, token: Token, descriptor: Dict,
                               options: Optional[ParseOptions]):
    """Copy a timing abbreviation descriptor onto the accumulator."""
    if descriptor.get('discouraged'):
        warning = check_discouraged(token.original, options)
        if warning:
            ctx.warn(warning)
    sig = ctx.sig
    if descriptor.get('code'):
        sig.timing_code = descriptor['code']
    if descriptor.get('frequency') is not None:
        sig.frequency = descriptor['frequency']
    if descriptor.get('frequency_max') is not None:
        sig.frequency_max = descriptor['frequency_max']
    if descriptor.get('period') is not None:
        sig.period = descriptor['period']
    if descriptor.get('period_max') is not None:
        sig.period_max = descriptor['period_max']
    if descriptor.get('period_unit'):
        sig.period_unit = descriptor['period_unit']
    for code in descriptor.get('when') or []:
        ctx.add_when(code)
    ctx.consume(token)


def descriptor_from_freq_map(entry: Dict) -> Optional[Dict]:
    """Translate a caller ``freq_map`` entry into a timing descriptor."""
    if entry.get('times_per_day'):
        return {'frequency': entry['times_per_day'], 'period': 1, 'period_unit': PeriodUnit.DAY}
    if entry.get('interval_hours'):
        value, unit = normalize_period_value(entry['interval_hours'], PeriodUnit.HOUR)
        return {'period': value, 'period_unit': unit}
    if entry.get('interval_days'):
        return {'period': entry['interval_days'], 'period_unit': PeriodUnit.DAY}
    if entry.get('interval_weeks'):
        return {'period': entry['interval_weeks'], 'period_unit': PeriodUnit.WEEK}
    return None


def apply_count_limit(ctx: ParseContext, value: Optional[float]) -> bool:
    if value is None or value <= 0 or ctx.sig.count is not None:
        return False
    rounded = js_round(value)
    if rounded <= 0:
        return False
    ctx.sig.count = rounded
    return True


# =============================================================================
# PRE-LOOP SCANS
# =============================================================================

def scan_prn_flag(ctx: ParseContext):
    """Find the first ``prn`` / ``as needed [for]`` and mark where the reason starts."""
    tokens = ctx.tokens
    for i, token in enumerate(tokens):
        if token.lower == 'prn':
            ctx.sig.as_needed = True
            ctx.consume(token)
            ctx.prn_reason_start = i + 1
            return
        following = ctx.token_at(i + 1)
        if token.lower == 'as' and following is not None and following.lower == 'needed':
            ctx.sig.as_needed = True
            ctx.consume(token, following)
            reason_index = i + 2
            after = ctx.token_at(reason_index)
            if after is not None and after.lower == 'for':
                ctx.consume(after)
                reason_index += 1
            ctx.prn_reason_start = reason_index
            return


def scan_multiplicative(ctx: ParseContext):
    """``1x3`` sets the dose and a per-day frequency wherever it appears."""
    sig = ctx.sig
    for token in ctx.tokens:
        if ctx.is_consumed(token):
            continue
        match = MULTIPLICATIVE.match(token.lower)
        if not match:
            continue
        if sig.dose is None:
            sig.dose = parse_number(match.group(1))
        sig.frequency = parse_number(match.group(2))
        sig.period = 1
        sig.period_unit = PeriodUnit.DAY
        ctx.consume(token)


# =============================================================================
# TOKEN RULES
# =============================================================================

def rule_discouraged_meal_combo(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    if token.lower not in ('bld', 'b-l-d'):
        return False
    warning = check_discouraged(token.original, ctx.options)
    if warning:
        ctx.warn(warning)
    ctx.add_when(EventTiming.MEAL)
    ctx.consume(token)
    return True


def rule_separated_q(ctx: ParseContext, i: int) -> bool:
    """``q 6-8 h``, ``q 2 wk`` or ``q day``."""
    token = ctx.tokens[i]
    if token.lower != 'q':
        return False
    following = ctx.token_at(i + 1)
    if following is None or ctx.is_consumed(following):
        return False
    after = ctx.token_at(i + 2)
    value_range = parse_numeric_range(following.lower)
    if value_range:
        if after is None:
            return False
        unit = map_interval_unit(after.lower)
        if not unit:
            return False
        low, high, unit = normalize_period_range(value_range['low'], value_range['high'], unit)
        ctx.sig.period = low
        ctx.sig.period_max = high
        ctx.sig.period_unit = unit
        ctx.consume(token, following, after)
        return True
    if not is_number_token(following.lower):
        unit = map_interval_unit(following.lower)
        if unit:
            ctx.consume(token, following)
            apply_period(ctx, 1, unit)
            return True
        return False
    if after is None:
        return False
    unit = map_interval_unit(after.lower)
    if not unit:
        return False
    apply_period(ctx, parse_number(following.original), unit)
    ctx.consume(token, following, after)
    return True


def rule_numeric_cadence(ctx: ParseContext, i: int) -> bool:
    """``1 per day``, ``2 every week``: a number, connectors, an interval unit."""
    token = ctx.tokens[i]
    if not is_number_token(token.lower) or ctx.sig.has_cadence():
        return False
    cursor = i + 1
    connectors: List[Token] = []
    while True:
        connector = ctx.token_at(cursor)
        if connector is None or ctx.is_consumed(connector):
            break
        if normalize_token_lower(connector) in CADENCE_CONNECTORS:
            connectors.append(connector)
            cursor += 1
            continue
        break
    if not connectors:
        return False
    unit_token = ctx.token_at(cursor)
    if unit_token is None or ctx.is_consumed(unit_token):
        return False
    unit = map_interval_unit(normalize_token_lower(unit_token))
    if not unit:
        return False

    value = parse_number(token.original)
    sig = ctx.sig
    sig.frequency = value
    sig.period = 1
    sig.period_unit = unit
    if value == 1 and unit == PeriodUnit.DAY and not sig.timing_code:
        sig.timing_code = 'QD'
    ctx.consume(token, *connectors, unit_token)
    return True


def rule_frequency_abbreviation(ctx: ParseContext, i: int) -> bool:
    """Caller ``freq_map`` entries, then the timing abbreviation table."""
    token = ctx.tokens[i]
    normalized = normalize_token_lower(token)
    if normalized == 'od':
        return False
    custom = (ctx.options.freq_map or {}).get(token.lower)
    if custom:
        descriptor = descriptor_from_freq_map(custom)
        if descriptor:
            apply_frequency_descriptor(ctx, token, descriptor, ctx.options)
            return True
    descriptor = TIMING_ABBREVIATIONS.get(token.lower) or TIMING_ABBREVIATIONS.get(normalized)
    if not descriptor:
        return False
    apply_frequency_descriptor(ctx, token, descriptor, ctx.options)
    return True


def rule_compact_q(ctx: ParseContext, i: int) -> bool:
    """``q30min``, ``q0.5h``, ``q1w`` or ``q2`` followed by a unit token."""
    token = ctx.tokens[i]
    compact = COMPACT_Q.match(token.lower)
    if compact:
        unit = map_interval_unit(compact.group(2))
        if unit:
            apply_period(ctx, parse_number(compact.group(1)), unit)
            ctx.consume(token)
            return True
    value_only = COMPACT_Q_VALUE.match(token.lower)
    if not value_only:
        return False
    unit_token = ctx.token_at(i + 1)
    if unit_token is None or ctx.is_consumed(unit_token):
        return False
    unit = map_interval_unit(unit_token.lower)
    if not unit:
        return False
    apply_period(ctx, parse_number(value_only.group(1)), unit)
    ctx.consume(token, unit_token)
    return True


def rule_meal_context(ctx: ParseContext, i: int) -> bool:
    """``pc``/``ac`` optionally followed by meal names joined by and/or."""
    token = ctx.tokens[i]
    if token.lower not in ('pc', 'ac'):
        return False
    code = EventTiming.AFTER_MEAL if token.lower == 'pc' else EventTiming.BEFORE_MEAL
    key = token.lower
    converted = 0
    for lookahead in range(i + 1, len(ctx.tokens)):
        candidate = ctx.tokens[lookahead]
        if ctx.is_consumed(candidate):
            continue
        if candidate.lower in MEAL_CONTEXT_CONNECTORS:
            ctx.consume(candidate)
            continue
        meal = MEAL_KEYWORDS.get(candidate.lower)
        if not meal:
            break
        ctx.add_when(meal[key])
        ctx.consume(candidate)
        converted += 1
    if converted == 0:
        ctx.add_when(code)
    ctx.consume(token)
    return True


def rule_event_timing_combo(ctx: ParseContext, i: int) -> bool:
    """Two-token anchors such as ``early morning`` or ``with meals``."""
    token = ctx.tokens[i]
    following = ctx.token_at(i + 1)
    if following is None or ctx.is_consumed(following):
        return False
    combo = f"{token.lower} {following.lower}"
    code = COMBO_EVENT_TIMINGS.get(combo) or EVENT_TIMING_TOKENS.get(combo)
    if not code:
        return False
    ctx.add_when(code)
    ctx.consume(token, following)
    return True


def rule_event_timing(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    custom = (ctx.options.when_map or {}).get(token.lower)
    code = custom or EVENT_TIMING_TOKENS.get(token.lower)
    if not code:
        return False
    ctx.add_when(code)
    ctx.consume(token)
    return True


def rule_day_of_week(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    day = DAY_OF_WEEK_TOKENS.get(token.lower)
    if not day:
        return False
    if day not in ctx.sig.day_of_week:
        ctx.sig.day_of_week.append(day)
    ctx.consume(token)
    return True


def _skip_count_connectors(ctx: ParseContext, start: int, bucket: List[Token]) -> int:
    cursor = start
    while cursor < len(ctx.tokens):
        candidate = ctx.tokens[cursor]
        if ctx.is_consumed(candidate):
            cursor += 1
            continue
        if candidate.lower not in COUNT_CONNECTOR_WORDS:
            break
        bucket.append(candidate)
        cursor += 1
    return cursor


def rule_count_limit(ctx: ParseContext, i: int) -> bool:
    """``x5``, ``x 5 doses``, ``for a total of 10 doses``, ``5x times``."""
    if ctx.sig.count is not None:
        return False
    token = ctx.tokens[i]
    lower = token.lower

    match = COUNT_PREFIX.match(lower)
    if match and apply_count_limit(ctx, parse_number(match.group(1))):
        ctx.consume(token)
        keyword = ctx.token_at(i + 1)
        if keyword is not None and keyword.lower in COUNT_KEYWORDS:
            ctx.consume(keyword)
        return True

    if lower in ('x', '*'):
        numeric = ctx.token_at(i + 1)
        if (numeric is not None and not ctx.is_consumed(numeric)
                and is_number_token(numeric.lower)
                and apply_count_limit(ctx, parse_number(numeric.original))):
            ctx.consume(token, numeric)
            keyword = ctx.token_at(i + 2)
            if keyword is not None and keyword.lower in COUNT_KEYWORDS:
                ctx.consume(keyword)
            return True

    if lower == 'for':
        pre_connectors: List[Token] = []
        cursor = _skip_count_connectors(ctx, i + 1, pre_connectors)
        numeric = ctx.token_at(cursor)
        if numeric is not None and not ctx.is_consumed(numeric) and is_number_token(numeric.lower):
            post_connectors: List[Token] = []
            cursor = _skip_count_connectors(ctx, cursor + 1, post_connectors)
            keyword = ctx.token_at(cursor)
            if (keyword is not None and not ctx.is_consumed(keyword)
                    and keyword.lower in COUNT_KEYWORDS
                    and apply_count_limit(ctx, parse_number(numeric.original))):
                ctx.consume(token, *pre_connectors, numeric, *post_connectors, keyword)
                return True

    if lower in COUNT_KEYWORDS:
        parts = [token]
        value = None
        previous = ctx.token_at(i - 1)
        if previous is not None and not ctx.is_consumed(previous):
            suffix = COUNT_SUFFIX.match(previous.lower)
            prefix = COUNT_PREFIX.match(previous.lower)
            if suffix:
                value = parse_number(suffix.group(1))
                parts.append(previous)
            elif prefix:
                value = parse_number(prefix.group(1))
                parts.append(previous)
            elif is_number_token(previous.lower):
                marker = ctx.token_at(i - 2)
                if (marker is not None and not ctx.is_consumed(marker)
                        and marker.lower in ('x', '*')):
                    value = parse_number(previous.original)
                    parts.extend([marker, previous])
        if value is None:
            following = ctx.token_at(i + 1)
            if (following is not None and not ctx.is_consumed(following)
                    and is_number_token(following.lower)):
                value = parse_number(following.original)
                parts.append(following)
        if apply_count_limit(ctx, value):
            ctx.consume(*parts)
            return True
    return False


def rule_count_based_frequency(ctx: ParseContext, i: int) -> bool:
    """
    ``once``, ``twice daily``, ``3 times a day``, ``two times per week``.

    Sets the cadence even when it declines to claim the current token
    (``1 time weekly`` leaves ``1`` for the dose rule).
    """
    token = ctx.tokens[i]
    sig = ctx.sig
    if ctx.is_consumed(token) or sig.has_cadence():
        return False

    normalized = normalize_token_lower(token)
    requires_period = True
    requires_cue = True
    if is_number_token(normalized):
        value = parse_number(token.original)
    elif normalized in FREQUENCY_SIMPLE_WORDS:
        value = FREQUENCY_SIMPLE_WORDS[normalized]
        requires_period = False
        requires_cue = False
    elif normalized in FREQUENCY_NUMBER_WORDS:
        value = FREQUENCY_NUMBER_WORDS[normalized]
    else:
        return False
    if value <= 0:
        return False

    following = ctx.token_at(i + 1)
    if (following is not None and not ctx.is_consumed(following)
            and normalize_unit(normalize_token_lower(following), ctx.options)):
        return False

    parts: List[Token] = []
    cursor = i + 1
    period_unit = None
    saw_cue = not requires_cue
    saw_times = False
    saw_connector = False
    while True:
        candidate = ctx.token_at(cursor)
        if candidate is None or ctx.is_consumed(candidate):
            break
        lower = normalize_token_lower(candidate)
        if lower in FREQUENCY_TIMES_WORDS:
            parts.append(candidate)
            saw_cue = saw_times = True
            cursor += 1
            continue
        if lower in FREQUENCY_CONNECTOR_WORDS:
            parts.append(candidate)
            saw_cue = saw_connector = True
            cursor += 1
            continue
        unit = FREQUENCY_ADVERB_UNITS.get(lower) or map_interval_unit(lower)
        if unit:
            period_unit = unit
            parts.append(candidate)
        break

    if not period_unit:
        if requires_period:
            return False
        period_unit = PeriodUnit.DAY
    if requires_cue and not saw_cue:
        return False

    sig.frequency = value
    sig.period = 1
    sig.period_unit = period_unit
    if value == 1 and period_unit == PeriodUnit.DAY and not sig.timing_code:
        sig.timing_code = 'QD'

    consume_current = not (value == 1 and not saw_connector and saw_times
                           and period_unit != PeriodUnit.DAY)
    if consume_current:
        ctx.consume(token)
    ctx.consume(*parts)
    return consume_current


def rule_word_frequency(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    word = WORD_FREQUENCIES.get(token.lower)
    if not word:
        return False
    ctx.sig.frequency = word['frequency']
    ctx.sig.period = 1
    ctx.sig.period_unit = word['period_unit']
    ctx.consume(token)
    return True


def rule_filler_connector(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    if token.lower not in ('per', 'a', 'every', 'each'):
        return False
    ctx.consume(token)
    return True


# =============================================================================
# POST-PASSES
# =============================================================================

def backfill_frequency_from_code(ctx: ParseContext):
    """A timing code without explicit cadence contributes its defaults."""
    sig = ctx.sig
    if sig.frequency is not None or sig.period is not None or not sig.timing_code:
        return
    descriptor = TIMING_ABBREVIATIONS.get(sig.timing_code.lower())
    if not descriptor:
        return
    if descriptor.get('frequency') is not None:
        sig.frequency = descriptor['frequency']
    if descriptor.get('period') is not None:
        sig.period = descriptor['period']
    if descriptor.get('period_unit'):
        sig.period_unit = descriptor['period_unit']
    for code in descriptor.get('when') or []:
        ctx.add_when(code)


def backfill_code_from_frequency(ctx: ParseContext):
    """Two, three or four times a day gets BID, TID or QID."""
    sig = ctx.sig
    if (sig.timing_code or sig.frequency is None or sig.period_unit != PeriodUnit.DAY
            or sig.period not in (None, 1)):
        return
    sig.timing_code = {2: 'BID', 3: 'TID', 4: 'QID'}.get(sig.frequency, sig.timing_code)


def reconcile_meal_timing_specificity(ctx: ParseContext):
    """``ac`` with ``breakfast`` becomes ``ACM`` rather than ``AC`` + ``CM``."""
    when = ctx.sig.when
    if not when:
        return

    def convert(base, mappings):
        if base not in when:
            return
        replaced = False
        for general, specific in mappings:
            if general in when:
                ctx.remove_when(general)
                ctx.add_when(specific)
                replaced = True
        if replaced:
            ctx.remove_when(base)

    convert(EventTiming.BEFORE_MEAL, [
        (EventTiming.BREAKFAST, EventTiming.BEFORE_BREAKFAST),
        (EventTiming.LUNCH, EventTiming.BEFORE_LUNCH),
        (EventTiming.DINNER, EventTiming.BEFORE_DINNER),
    ])
    convert(EventTiming.AFTER_MEAL, [
        (EventTiming.BREAKFAST, EventTiming.AFTER_BREAKFAST),
        (EventTiming.LUNCH, EventTiming.AFTER_LUNCH),
        (EventTiming.DINNER, EventTiming.AFTER_DINNER),
    ])


_MEAL_SETS = {
    'before': (EventTiming.BEFORE_BREAKFAST, EventTiming.BEFORE_LUNCH, EventTiming.BEFORE_DINNER),
    'after': (EventTiming.AFTER_BREAKFAST, EventTiming.AFTER_LUNCH, EventTiming.AFTER_DINNER),
    'with': (EventTiming.BREAKFAST, EventTiming.LUNCH, EventTiming.DINNER),
}


def compute_meal_expansions(base: str, frequency: float, pair: str) -> Optional[List[str]]:
    """Concrete meal codes for a generic meal anchor at 1-4 doses a day."""
    if frequency < 1 or frequency > 4:
        return None
    breakfast, lunch, dinner = _MEAL_SETS[base]
    if frequency == 1:
        return [breakfast]
    if frequency == 2:
        return [breakfast, lunch] if pair == 'breakfast+lunch' else [breakfast, dinner]
    if frequency == 3:
        return [breakfast, lunch, dinner]
    return [breakfast, lunch, dinner, EventTiming.BEFORE_SLEEP]


def expand_meal_timings(ctx: ParseContext):
    sig = ctx.sig
    options = ctx.options
    if not options.smart_meal_expansion or not sig.when:
        return
    if any(code in SPECIFIC_MEAL_TIMINGS for code in sig.when):
        return
    frequency = sig.frequency
    if not frequency or frequency < 1 or frequency > 4:
        return
    if sig.period is not None and sig.period_unit is not None and (
            sig.period_unit != PeriodUnit.DAY or sig.period != 1):
        return
    if sig.period is not None and sig.period_unit is None and sig.period != 1:
        return
    if sig.period_unit and sig.period_unit != PeriodUnit.DAY:
        return
    if sig.frequency_max is not None or sig.period_max is not None:
        return

    pair = options.two_per_day_pair or 'breakfast+dinner'
    replacements = []
    for general, base in ((EventTiming.BEFORE_MEAL, 'before'),
                          (EventTiming.AFTER_MEAL, 'after'),
                          (EventTiming.MEAL, 'with')):
        if general in sig.when:
            specifics = compute_meal_expansions(base, frequency, pair)
            if specifics:
                replacements.append((general, specifics))
    for general, specifics in replacements:
        ctx.remove_when(general)
        for code in specifics:
            ctx.add_when(code)


def parse_clock_to_seconds(clock: str) -> Optional[int]:
    match = CLOCK.match(clock)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3)) if match.group(3) else 0
    if hour > 23 or minute > 59 or second > 59:
        return None
    return hour * 3600 + minute * 60 + second


def compute_when_weight(code: str, event_clock: Optional[Dict[str, str]]) -> int:
    clock = (event_clock or {}).get(code)
    if clock:
        seconds = parse_clock_to_seconds(clock)
        if seconds is not None:
            return seconds
    return DEFAULT_EVENT_TIMING_WEIGHTS.get(code, 10000)


def sort_when_values(ctx: ParseContext):
    """Order ``when`` chronologically; ties keep first-seen order."""
    when = ctx.sig.when
    if len(when) < 2:
        return
    event_clock = ctx.options.event_clock
    when[:] = sorted(when, key=lambda code: compute_when_weight(code, event_clock))
