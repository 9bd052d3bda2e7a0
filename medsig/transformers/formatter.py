"""
Sig Formatter
=============

Renders a ParsedSig back into text.

- Short style: compact clinical shorthand (``1 tab PO BID PRN pain``)
- Long style: an English instruction sentence led by a route-specific verb
  (``Take 1 tablet by mouth twice daily as needed for pain.``)

Other languages plug in through the localization registry. A localization
receives a FormatContext with the parsed sig and the English default text and
returns its own rendering; the Thai grammar in ``thai_grammar`` registers
itself as ``th``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config.sig_config import EventTiming, PeriodUnit, RouteCode
from ..extractors.parse_context import ParsedSig
from ..extractors.tokenizer import format_number

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')


# =============================================================================
# ROUTE GRAMMAR
# =============================================================================

@dataclass(frozen=True)
class RouteGrammar:
    """Verb, route phrase and site preposition for one route.

    When ``omit_phrase_with_site`` is set the route phrase is dropped as soon
    as a site is rendered (``Instill 1 drop in the right eye``).
    """

    verb: str
    route_phrase: Optional[str] = None
    site_preposition: Optional[str] = None
    omit_phrase_with_site: bool = False

    def phrase(self, has_site: bool) -> Optional[str]:
        if self.omit_phrase_with_site and has_site:
            return None
        return self.route_phrase


def _site_grammar(verb: str, phrase: str, preposition: str) -> RouteGrammar:
    return RouteGrammar(verb, phrase, preposition, omit_phrase_with_site=True)


DEFAULT_ROUTE_GRAMMAR = RouteGrammar('Use')

ROUTE_GRAMMAR: Dict[str, RouteGrammar] = {
    RouteCode.ORAL: RouteGrammar('Take', 'by mouth'),
    RouteCode.OPHTHALMIC: _site_grammar('Instill', 'in the eye', 'in'),
    RouteCode.INTRAVITREAL: _site_grammar('Inject', 'into the eye', 'into'),
    RouteCode.TOPICAL: _site_grammar('Apply', 'topically', 'to'),
    RouteCode.TRANSDERMAL: _site_grammar('Apply', 'transdermally', 'to'),
    RouteCode.SUBCUTANEOUS: _site_grammar('Inject', 'subcutaneously', 'into'),
    RouteCode.INTRAMUSCULAR: _site_grammar('Inject', 'intramuscularly', 'into'),
    RouteCode.INTRAVENOUS: _site_grammar('Inject', 'intravenously', 'into'),
    RouteCode.NASAL: _site_grammar('Use', 'via nasal route', 'into'),
    RouteCode.RESPIRATORY: _site_grammar('Use', 'via inhalation', 'into'),
}

# Substring probes used when only free-text route wording is known
ROUTE_TEXT_PROBES: List[Tuple[Tuple[str, ...], Tuple[str, ...], str]] = [
    (('mouth', 'oral'), (), RouteCode.ORAL),
    (('ophthalm',), (), RouteCode.OPHTHALMIC),
    (('intravitreal',), (), RouteCode.INTRAVITREAL),
    (('topical',), (), RouteCode.TOPICAL),
    (('transdermal',), (), RouteCode.TRANSDERMAL),
    (('subcutaneous',), ('sc', 'sq'), RouteCode.SUBCUTANEOUS),
    (('intramuscular',), ('im',), RouteCode.INTRAMUSCULAR),
    (('intravenous',), ('iv',), RouteCode.INTRAVENOUS),
    (('nasal',), (), RouteCode.NASAL),
    (('inhal',), (), RouteCode.RESPIRATORY),
]


def route_code_from_text(text: Optional[str]) -> Optional[str]:
    """Guess a route code from free-text route wording."""
    normalized = (text or '').strip().lower()
    if not normalized:
        return None
    for substrings, exact, code in ROUTE_TEXT_PROBES:
        if any(s in normalized for s in substrings) or normalized in exact:
            return code
    return None


def resolve_route_grammar(sig: ParsedSig, table: Dict[str, RouteGrammar],
                          default: RouteGrammar) -> RouteGrammar:
    """Pick the grammar for the sig's route code, falling back to its text."""
    if sig.route_code and sig.route_code in table:
        return table[sig.route_code]
    code = route_code_from_text(sig.route_text)
    return table.get(code, default) if code else default


# =============================================================================
# SHARED TABLES
# =============================================================================

ROUTE_SHORT = {
    RouteCode.ORAL: 'PO',
    RouteCode.SUBLINGUAL: 'SL',
    RouteCode.BUCCAL: 'BUC',
    RouteCode.RESPIRATORY: 'INH',
    RouteCode.NASAL: 'IN',
    RouteCode.TOPICAL: 'TOP',
    RouteCode.TRANSDERMAL: 'TD',
    RouteCode.SUBCUTANEOUS: 'SC',
    RouteCode.INTRAMUSCULAR: 'IM',
    RouteCode.INTRAVENOUS: 'IV',
    RouteCode.RECTAL: 'PR',
    RouteCode.VAGINAL: 'PV',
    RouteCode.OPHTHALMIC: 'OPH',
    RouteCode.INTRAVITREAL: 'IVT',
}

WHEN_TEXT = {
    EventTiming.BEFORE_SLEEP: 'at bedtime',
    EventTiming.BEFORE_MEAL: 'before meals',
    EventTiming.BEFORE_BREAKFAST: 'before breakfast',
    EventTiming.BEFORE_LUNCH: 'before lunch',
    EventTiming.BEFORE_DINNER: 'before dinner',
    EventTiming.AFTER_MEAL: 'after meals',
    EventTiming.AFTER_BREAKFAST: 'after breakfast',
    EventTiming.AFTER_LUNCH: 'after lunch',
    EventTiming.AFTER_DINNER: 'after dinner',
    EventTiming.MEAL: 'with meals',
    EventTiming.BREAKFAST: 'with breakfast',
    EventTiming.LUNCH: 'with lunch',
    EventTiming.DINNER: 'with dinner',
    EventTiming.MORNING: 'in the morning',
    EventTiming.EARLY_MORNING: 'in the early morning',
    EventTiming.LATE_MORNING: 'in the late morning',
    EventTiming.NOON: 'at noon',
    EventTiming.AFTERNOON: 'in the afternoon',
    EventTiming.EARLY_AFTERNOON: 'in the early afternoon',
    EventTiming.LATE_AFTERNOON: 'in the late afternoon',
    EventTiming.EVENING: 'in the evening',
    EventTiming.EARLY_EVENING: 'in the early evening',
    EventTiming.LATE_EVENING: 'in the late evening',
    EventTiming.NIGHT: 'at night',
    EventTiming.WAKE: 'after waking',
    EventTiming.AFTER_SLEEP: 'after sleep',
    EventTiming.IMMEDIATE: 'immediately',
}

DAY_NAMES = {
    'mon': 'Monday',
    'tue': 'Tuesday',
    'wed': 'Wednesday',
    'thu': 'Thursday',
    'fri': 'Friday',
    'sat': 'Saturday',
    'sun': 'Sunday',
}

# Generic meal code -> the specific codes that make it redundant
_GENERIC_MEAL_CODES = {
    EventTiming.AFTER_MEAL: {EventTiming.AFTER_BREAKFAST, EventTiming.AFTER_LUNCH,
                             EventTiming.AFTER_DINNER},
    EventTiming.BEFORE_MEAL: {EventTiming.BEFORE_BREAKFAST, EventTiming.BEFORE_LUNCH,
                              EventTiming.BEFORE_DINNER},
    EventTiming.MEAL: {EventTiming.BREAKFAST, EventTiming.LUNCH, EventTiming.DINNER},
}

_PLURAL_UNITS = {
    'tab': 'tablets',
    'tablet': 'tablets',
    'cap': 'capsules',
    'capsule': 'capsules',
    'puff': 'puffs',
    'patch': 'patches',
    'drop': 'drops',
    'suppository': 'suppositories',
}

_SINGULAR_UNITS = {'tab': 'tablet', 'cap': 'capsule'}


# =============================================================================
# SHARED HELPERS
# =============================================================================

def is_daily(sig: ParsedSig) -> bool:
    return sig.period_unit == PeriodUnit.DAY and (not sig.period or sig.period == 1)


def describe_period_range(sig: ParsedSig) -> str:
    """``4`` or ``4-6`` for the period, as used in ``Q4-6H``."""
    base = format_number(sig.period)
    if sig.period_max and sig.period_max != sig.period:
        return f"{base}-{format_number(sig.period_max)}"
    return base


def collect_when_phrases(sig: ParsedSig, table: Dict[str, str],
                         keep_unknown: bool = True) -> List[str]:
    """
    Translate ``when`` codes into phrases.

    Duplicates are dropped, and a generic meal code (AC/PC/C) is suppressed
    when a specific meal code of the same kind is also present.

    Args:
        sig: Parsed sig
        table: Code to phrase mapping
        keep_unknown: Emit the raw code when the table has no phrase

    Returns:
        Phrases in ``when`` order
    """
    unique: List[str] = []
    for code in sig.when:
        if code not in unique:
            unique.append(code)
    phrases = []
    for code in unique:
        specific = _GENERIC_MEAL_CODES.get(code)
        if specific and any(other in specific for other in unique):
            continue
        text = table.get(code) or (code if keep_unknown else None)
        if text:
            phrases.append(text)
    return phrases


def join_with(parts: List[str], conjunction: str) -> str:
    """``a``, ``a and b``, ``a, b and c``."""
    if not parts:
        return ''
    if len(parts) == 1:
        return parts[0]
    return f"{', '.join(parts[:-1])} {conjunction} {parts[-1]}"


def short_route(sig: ParsedSig, table: Dict[str, str]) -> Optional[str]:
    if sig.route_code and sig.route_code in table:
        return table[sig.route_code]
    return sig.route_text or None


def collapse(segments: List[Optional[str]]) -> str:
    return _WHITESPACE.sub(' ', ' '.join(s for s in segments if s)).strip()


# =============================================================================
# ENGLISH GRAMMAR
# =============================================================================

def pluralize(unit: str, value: float) -> str:
    if abs(value) == 1:
        return _SINGULAR_UNITS.get(unit, unit)
    return _PLURAL_UNITS.get(unit, unit)


def format_dose_short(sig: ParsedSig) -> Optional[str]:
    if sig.dose_range:
        base = f"{format_number(sig.dose_range['low'])}-{format_number(sig.dose_range['high'])}"
        return f"{base} {sig.unit}" if sig.unit else base
    if sig.dose is not None:
        amount = format_number(sig.dose)
        return f"{amount} {sig.unit}" if sig.unit else amount
    return None


def format_dose_long(sig: ParsedSig) -> Optional[str]:
    if sig.dose_range:
        low, high = sig.dose_range['low'], sig.dose_range['high']
        base = f"{format_number(low)} to {format_number(high)}"
        return f"{base} {pluralize(sig.unit, high)}" if sig.unit else base
    if sig.dose is not None:
        amount = format_number(sig.dose)
        return f"{amount} {pluralize(sig.unit, sig.dose)}" if sig.unit else amount
    return None


def _every(sig: ParsedSig, noun: str) -> str:
    if sig.period_max and sig.period_max != sig.period:
        return f"every {format_number(sig.period)} to {format_number(sig.period_max)} {noun}s"
    return f"every {format_number(sig.period)} {noun}s"


_DAILY_WORDS = {1: 'once daily', 2: 'twice daily', 3: 'three times daily', 4: 'four times daily'}

_TIMING_CODE_TEXT = {
    'WK': 'once weekly',
    'MO': 'once monthly',
    'BID': 'twice daily',
    'TID': 'three times daily',
    'QID': 'four times daily',
    'QD': 'once daily',
    'QOD': 'every other day',
    'Q6H': 'every 6 hours',
    'Q8H': 'every 8 hours',
}


def describe_frequency(sig: ParsedSig) -> Optional[str]:
    """English cadence phrase, or None when the sig has no cadence."""
    freq, freq_max = sig.frequency, sig.frequency_max
    period, period_max, unit = sig.period, sig.period_max, sig.period_unit

    if freq is not None and freq_max is not None and is_daily(sig):
        if freq == 1 and freq_max == 1:
            return 'once daily'
        if freq == 1 and freq_max == 2:
            return 'one to two times daily'
        return f"{format_number(freq)} to {format_number(freq_max)} times daily"
    if freq and is_daily(sig):
        return _DAILY_WORDS.get(freq, f"{format_number(freq)} times daily")
    if unit == PeriodUnit.HOUR and period:
        if period_max and period_max != period:
            return _every(sig, 'hour')
        return f"every {format_number(period)} hour{'' if period == 1 else 's'}"
    if unit == PeriodUnit.DAY and period and period != 1:
        if period == 2 and (not period_max or period_max == 2):
            return 'every other day'
        return _every(sig, 'day')
    if unit == PeriodUnit.WEEK and period:
        if period == 1 and (not period_max or period_max == 1):
            return 'once weekly'
        return _every(sig, 'week')
    if unit == PeriodUnit.MONTH and period:
        if period == 1 and (not period_max or period_max == 1):
            return 'once monthly'
        return _every(sig, 'month')
    if sig.timing_code and sig.timing_code in _TIMING_CODE_TEXT:
        return _TIMING_CODE_TEXT[sig.timing_code]
    if freq and unit is None and period is None:
        return 'once' if freq == 1 else f"{format_number(freq)} times"
    return None


def combine_frequency_and_events(frequency: Optional[str], events: List[str],
                                 bedtime: str, joiner: Callable[[str], bool],
                                 conjunction: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Merge cadence and event phrases.

    A lone bedtime event attaches to a multi-daily cadence (``twice daily and
    at bedtime``) when ``joiner(frequency)`` accepts it.

    Returns:
        Tuple of (frequency phrase, event phrase)
    """
    if not frequency:
        return None, (join_with(events, conjunction) if events else None)
    if not events:
        return frequency, None
    if len(events) == 1 and events[0] == bedtime and joiner(frequency):
        return f"{frequency} {conjunction} {bedtime}", None
    return frequency, join_with(events, conjunction)


_BEDTIME_JOINABLE = {'twice daily', 'three times daily', 'four times daily'}

_ROUTE_TEXT_PHRASES = {
    'oral': 'by mouth',
    'intravenous': 'intravenously',
    'intramuscular': 'intramuscularly',
    'subcutaneous': 'subcutaneously',
    'topical': 'topically',
    'transdermal': 'transdermally',
    'intranasal': 'via nasal route',
    'nasal': 'via nasal route',
}


def build_route_phrase(sig: ParsedSig, grammar: RouteGrammar, has_site: bool) -> Optional[str]:
    if grammar.route_phrase is not None:
        return grammar.phrase(has_site)
    text = (sig.route_text or '').strip()
    if not text:
        return None
    normalized = text.lower()
    if normalized.startswith(('by ', 'per ', 'via ')):
        return text
    if normalized in _ROUTE_TEXT_PHRASES:
        return _ROUTE_TEXT_PHRASES[normalized]
    if 'inhal' in normalized:
        return 'via inhalation'
    return f"via {text}"


_LIMB_OR_SURFACE = re.compile(
    r'(skin|arm|leg|thigh|abdomen|shoulder|hand|foot|cheek|forearm|back|buttock|hip)')

_ARTICLE_FREE_PREFIXES = ('the ', 'both ', 'each ', 'either ', 'every ', 'all ', 'bilateral ')


def _site_preposition(lower: str) -> str:
    if 'eye' in lower:
        return 'in'
    if 'nostril' in lower or 'nose' in lower:
        return 'into'
    if 'lung' in lower or 'airway' in lower or 'bronch' in lower:
        return 'into'
    if 'ear' in lower:
        return 'in'
    if _LIMB_OR_SURFACE.search(lower):
        return 'to'
    return 'at'


def format_site(sig: ParsedSig, grammar: RouteGrammar) -> Optional[str]:
    """``in the right eye``, ``to both hands``."""
    text = (sig.site_text or '').strip()
    if not text:
        return None
    lower = text.lower()
    preposition = grammar.site_preposition or _site_preposition(lower)
    noun = text if lower.startswith(_ARTICLE_FREE_PREFIXES) else f"the {text}"
    return f"{preposition} {noun}".strip()


def describe_day_of_week(sig: ParsedSig) -> Optional[str]:
    if not sig.day_of_week:
        return None
    return f"on {join_with([DAY_NAMES.get(d, d) for d in sig.day_of_week], 'and')}"


def format_short(sig: ParsedSig) -> str:
    parts = [format_dose_short(sig), short_route(sig, ROUTE_SHORT)]
    if sig.timing_code:
        parts.append(sig.timing_code)
    elif sig.frequency is not None and sig.frequency_max is not None and is_daily(sig):
        parts.append(f"{format_number(sig.frequency)}-{format_number(sig.frequency_max)}x/d")
    elif sig.frequency and is_daily(sig):
        parts.append(f"{format_number(sig.frequency)}x/d")
    elif sig.period and sig.period_unit:
        parts.append(f"Q{describe_period_range(sig)}{sig.period_unit.upper()}")
    if sig.when:
        parts.append(' '.join(sig.when))
    if sig.day_of_week:
        parts.append(','.join(d[:1].upper() + d[1:3] for d in sig.day_of_week))
    if sig.as_needed:
        parts.append(f"PRN {sig.as_needed_reason}" if sig.as_needed_reason else 'PRN')
    return ' '.join(p for p in parts if p)


def format_long(sig: ParsedSig) -> str:
    grammar = resolve_route_grammar(sig, ROUTE_GRAMMAR, DEFAULT_ROUTE_GRAMMAR)
    site_part = format_site(sig, grammar)
    frequency, event = combine_frequency_and_events(
        describe_frequency(sig),
        collect_when_phrases(sig, WHEN_TEXT),
        bedtime=WHEN_TEXT[EventTiming.BEFORE_SLEEP],
        joiner=lambda text: text.lower() in _BEDTIME_JOINABLE,
        conjunction='and',
    )
    as_needed = None
    if sig.as_needed:
        as_needed = f"as needed for {sig.as_needed_reason}" if sig.as_needed_reason else 'as needed'

    body = collapse([
        format_dose_long(sig) or 'the medication',
        build_route_phrase(sig, grammar, bool(site_part)),
        frequency,
        event,
        describe_day_of_week(sig),
        as_needed,
        site_part,
    ])
    return f"{grammar.verb} {body}." if body else f"{grammar.verb}."


def format_default(sig: ParsedSig, style: str) -> str:
    """English rendering in the requested style."""
    return format_short(sig) if style == 'short' else format_long(sig)


# =============================================================================
# LOCALIZATION REGISTRY
# =============================================================================

@dataclass
class FormatContext:
    """What a localization receives when asked to render a sig."""

    style: str
    sig: ParsedSig
    default_text: str

    def format_default(self, style: Optional[str] = None) -> str:
        return format_default(self.sig, style or self.style)


LocalizedFormatter = Callable[[FormatContext], str]


@dataclass
class SigLocalization:
    locale: str
    format_short: Optional[LocalizedFormatter] = None
    format_long: Optional[LocalizedFormatter] = None


_REGISTERED_LOCALIZATIONS: Dict[str, SigLocalization] = {}


def register_localization(localization: SigLocalization):
    """Register (or replace) the localization for ``localization.locale``."""
    _REGISTERED_LOCALIZATIONS[localization.locale.lower()] = localization
    logger.debug(f"Registered sig localization '{localization.locale}'")


def get_registered_localizations() -> List[SigLocalization]:
    return list(_REGISTERED_LOCALIZATIONS.values())


def resolve_localization(locale: Optional[str] = None,
                         config: Optional[Dict[str, Any]] = None) -> Optional[SigLocalization]:
    """
    Resolve the localization for a locale and an optional caller config.

    The config may carry ``locale``, ``inherit``, ``format_short`` and
    ``format_long``. Formatters are layered registered locale, then the
    inherited locale, then the config's own callables.

    Args:
        locale: Requested locale (``en``, ``th``, ...)
        config: Caller overrides

    Returns:
        SigLocalization, or None when nothing is registered and no config
        was given
    """
    config = config or {}
    target = config.get('locale') or locale
    base = _REGISTERED_LOCALIZATIONS.get(target.lower()) if target else None
    inherit = config.get('inherit')
    inherited = _REGISTERED_LOCALIZATIONS.get(inherit.lower()) if inherit else None

    if base is None and inherited is None and not config:
        return None

    resolved = SigLocalization(
        locale=(config.get('locale') or inherit
                or (base.locale if base else None)
                or (inherited.locale if inherited else None)
                or (target.lower() if target else None)
                or 'custom'),
    )
    for layer in (base, inherited):
        if layer is None:
            continue
        if layer.format_short:
            resolved.format_short = layer.format_short
        if layer.format_long:
            resolved.format_long = layer.format_long
    if config.get('format_short') is not None:
        resolved.format_short = config['format_short']
    if config.get('format_long') is not None:
        resolved.format_long = config['format_long']

    if resolved.format_short is None and resolved.format_long is None:
        return base or inherited or resolved
    return resolved


register_localization(SigLocalization(
    locale='en',
    format_short=lambda context: context.default_text,
    format_long=lambda context: context.default_text,
))


def format_internal(sig: ParsedSig, style: str = 'short', locale: Optional[str] = None,
                    i18n: Optional[Dict[str, Any]] = None) -> str:
    """
    Render a ParsedSig in ``short`` or ``long`` style.

    Args:
        sig: Parsed sig
        style: ``short`` or ``long``
        locale: Registered locale to render in (English when omitted)
        i18n: Caller localization config, see resolve_localization

    Returns:
        Rendered text
    """
    default_text = format_default(sig, style)
    localization = resolve_localization(locale, i18n)
    if localization is None:
        return default_text
    formatter = localization.format_short if style == 'short' else localization.format_long
    if formatter is None:
        return default_text
    return formatter(FormatContext(style=style, sig=sig, default_text=default_text))
