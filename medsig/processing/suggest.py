"""
Sig Suggestions
===============

Autocomplete for partially typed sigs. Canonical candidates are generated
lazily from unit/route pairs crossed with frequency codes, intervals, PRN
reasons and meal/bedtime tokens, and filtered by a forgiving prefix match.
Generation order is fixed, so the same input always yields the same list.
"""

import logging
import re
from itertools import islice
from typing import Iterator, List, NamedTuple, Optional, Sequence

from ..config.sig_config import SuggestOptions
from ..extractors.context import infer_unit_from_context

logger = logging.getLogger(__name__)


class UnitRoutePair(NamedTuple):
    unit: str
    route: str


DEFAULT_UNIT_ROUTE_ORDER = [
    UnitRoutePair('tab', 'po'),
    UnitRoutePair('cap', 'po'),
    UnitRoutePair('mL', 'po'),
    UnitRoutePair('mg', 'po'),
    UnitRoutePair('puff', 'inh'),
    UnitRoutePair('spray', 'in'),
    UnitRoutePair('drop', 'oph'),
    UnitRoutePair('suppository', 'pr'),
    UnitRoutePair('patch', 'transdermal'),
    UnitRoutePair('g', 'topical'),
]

DEFAULT_ROUTE_BY_UNIT = {
    'tab': 'po', 'tabs': 'po', 'tablet': 'po',
    'cap': 'po', 'capsule': 'po',
    'ml': 'po', 'mg': 'po',
    'puff': 'inh', 'puffs': 'inh',
    'spray': 'in', 'sprays': 'in',
    'drop': 'oph', 'drops': 'oph',
    'suppository': 'pr', 'suppositories': 'pr',
    'patch': 'transdermal', 'patches': 'transdermal',
    'g': 'topical',
}

FREQUENCY_CODES = ['qd', 'bid', 'tid', 'qid']
INTERVAL_CODES = ['q4h', 'q6h', 'q8h']
WHEN_TOKENS = ['ac', 'pc', 'hs', 'am', 'pm']
CORE_WHEN_TOKENS = ['pc', 'ac', 'hs']
FREQ_TOKEN_BY_NUMBER = {1: 'qd', 2: 'bid', 3: 'tid', 4: 'qid'}

DEFAULT_PRN_REASONS = [
    'pain', 'nausea', 'itching', 'anxiety', 'sleep',
    'cough', 'fever', 'spasm', 'constipation', 'dyspnea',
]
DEFAULT_DOSE_COUNTS = ['1', '2']

# Words users type that canonical candidates leave out
FILLER_WORDS = {'take', 'use', 'by', 'per', 'via', 'the', 'of', 'every', 'each'}

_WHITESPACE = re.compile(r'\s+')
_COMPACT = re.compile(r'[\s\-]+')
_DOSE_VALUE = re.compile(r'\d+(?:\.\d+)?(?:/\d+(?:\.\d+)?)?')


def normalize_spacing(value: str) -> str:
    return _WHITESPACE.sub(' ', value.strip())


def _compact(value: str) -> str:
    return _COMPACT.sub('', value)


def _dedupe(values) -> List[str]:
    return list(dict.fromkeys(values))


# =============================================================================
# CANDIDATE BUILDING
# =============================================================================

def build_unit_route_pairs(context_unit: Optional[str]) -> List[UnitRoutePair]:
    """Default pairs, led by the medication context's unit when known."""
    pairs: List[UnitRoutePair] = []
    seen = set()

    def add(unit: Optional[str], route: Optional[str]):
        clean = (unit or '').strip()
        if not clean:
            return
        resolved = route or DEFAULT_ROUTE_BY_UNIT.get(clean.lower(), 'po')
        key = (clean.lower(), resolved.lower())
        if key in seen:
            return
        seen.add(key)
        pairs.append(UnitRoutePair(clean, resolved))

    if context_unit:
        add(context_unit, DEFAULT_ROUTE_BY_UNIT.get(context_unit.strip().lower()))
    for pair in DEFAULT_UNIT_ROUTE_ORDER:
        add(pair.unit, pair.route)
    return pairs


def build_prn_reasons(custom_reasons: Optional[Sequence[str]]) -> List[str]:
    """Caller reasons first, then the defaults, lower-cased and deduplicated."""
    reasons = [normalize_spacing(r.lower()) for r in list(custom_reasons or []) + DEFAULT_PRN_REASONS
               if r and r.strip()]
    return _dedupe(reasons)


def build_dose_values(text: str) -> List[str]:
    """Numbers already typed (``1.5``, ``1/2``) followed by the default counts."""
    return _dedupe(_DOSE_VALUE.findall(text) + DEFAULT_DOSE_COUNTS)


def _raw_candidates(pairs: List[UnitRoutePair], doses: List[str],
                    reasons: List[str]) -> Iterator[str]:
    for unit, route in pairs:
        for code in FREQUENCY_CODES:
            for dose in doses:
                yield f"{dose} {unit} {route} {code}"
            yield f"{route} {code}"

        for interval in INTERVAL_CODES:
            for dose in doses:
                yield f"{dose} {unit} {route} {interval}"
                for reason in reasons:
                    yield f"{dose} {unit} {route} {interval} prn {reason}"
            yield f"{route} {interval}"

        for freq, freq_token in FREQ_TOKEN_BY_NUMBER.items():
            yield f"1x{freq} {route} {freq_token}"
            for when in CORE_WHEN_TOKENS:
                yield f"1x{freq} {route} {when}"

        for when in WHEN_TOKENS:
            for dose in doses:
                yield f"{dose} {unit} {route} {when}"
            yield f"{route} {when}"

        for reason in reasons:
            yield f"1 {unit} {route} prn {reason}"


def generate_candidates(pairs: List[UnitRoutePair], doses: List[str],
                        reasons: List[str]) -> Iterator[str]:
    """Yield unique canonical candidates in generation order."""
    seen = set()
    for raw in _raw_candidates(pairs, doses, reasons):
        candidate = normalize_spacing(raw)
        key = candidate.lower()
        if not candidate or key in seen:
            continue
        seen.add(key)
        yield candidate


# =============================================================================
# MATCHING
# =============================================================================

class PrefixMatcher:
    """
    Prefix test tolerant of spacing, dashes and filler words.

    ``1 tab po q6h``, ``1tab po q 6h``, ``1 tab by po q-6h`` and
    ``take 1 tab po`` all match the candidate ``1 tab po q6h prn pain``.
    """

    def __init__(self, text: str):
        self.prefix = normalize_spacing(text.lower())
        self.compact = _compact(self.prefix)
        words = self.prefix.split(' ') if self.prefix else []
        self.content_compact = _compact(''.join(w for w in words if w not in FILLER_WORDS))

    def __call__(self, candidate: str) -> bool:
        if not self.prefix:
            return True
        lower = candidate.lower()
        if lower.startswith(self.prefix):
            return True
        compact_candidate = _compact(lower)
        if compact_candidate.startswith(self.compact):
            return True
        return bool(self.content_compact) and compact_candidate.startswith(self.content_compact)


def suggest_sig(text: str, options: Optional[SuggestOptions] = None) -> List[str]:
    """
    Suggest canonical sigs for a partial input.

    Args:
        text: What the user has typed so far
        options: Limit, custom PRN reasons and parse options (the medication
            context picks the leading unit/route pair)

    Returns:
        At most ``options.limit`` suggestions in generation order
    """
    options = options or SuggestOptions()
    limit = options.limit if options.limit is not None else 10
    if limit <= 0:
        return []

    context = options.parse_options.context if options.parse_options else None
    pairs = build_unit_route_pairs(infer_unit_from_context(context))
    candidates = generate_candidates(pairs, build_dose_values(text),
                                     build_prn_reasons(options.prn_reasons))
    matcher = PrefixMatcher(text)
    results = list(islice((c for c in candidates if matcher(c)), limit))
    logger.debug(f"suggest_sig({text!r}) -> {len(results)} suggestions")
    return results
