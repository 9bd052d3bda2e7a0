"""
Parse Context
=============

Mutable state owned by a single parse: the token list, the consumed-token
set and the ParsedSig accumulator that rules write into. Also hosts the
small word sets and number/unit helpers shared by every rule module.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..config.sig_config import ParseOptions
from ..config.vocabulary import (
    DEFAULT_ROUTE_SYNONYMS,
    DEFAULT_UNIT_SYNONYMS,
    HOUSEHOLD_VOLUME_UNITS,
    ROUTE_TEXT,
    RouteSynonym,
    normalize_body_site_key,
)
from .tokenizer import TextRange, Token

logger = logging.getLogger(__name__)


# =============================================================================
# WORD SETS
# =============================================================================

BODY_SITE_HINTS = {
    'left', 'right', 'bilateral', 'arm', 'arms', 'leg', 'legs', 'thigh',
    'thighs', 'shoulder', 'shoulders', 'hand', 'hands', 'foot', 'feet', 'eye',
    'eyes', 'ear', 'ears', 'nostril', 'nostrils', 'abdomen', 'belly', 'cheek',
    'cheeks', 'upper', 'lower', 'forearm', 'back', 'mouth', 'tongue',
    'tongues', 'gum', 'gums', 'tooth', 'teeth', 'nose', 'nares', 'hair',
    'skin', 'scalp', 'face', 'forehead', 'chin', 'neck', 'buttock',
    'buttocks', 'gluteal', 'glute', 'muscle', 'muscles', 'vein', 'veins',
    'vagina', 'vaginal', 'penis', 'penile', 'rectum', 'rectal', 'anus',
    'perineum', 'temple', 'temples',
}

SITE_CONNECTORS = {'to', 'in', 'into', 'on', 'onto', 'at'}

SITE_FILLER_WORDS = {'the', 'a', 'an', 'your', 'his', 'her', 'their', 'my'}

ROUTE_DESCRIPTOR_FILLER_WORDS = {'per', 'by', 'via', 'the', 'a', 'an'}

HOUSEHOLD_VOLUME_UNIT_SET = {unit.lower() for unit in HOUSEHOLD_VOLUME_UNITS}

NUMBER_PATTERN = re.compile(r'^[0-9]+(?:\.[0-9]+)?$')
PUNCTUATION_ONLY = re.compile(r'^[;:.,-]+$')
_TOKEN_NOISE = re.compile(r'[.{};]')


# =============================================================================
# HELPERS
# =============================================================================

def normalize_token_lower(token: Token) -> str:
    """Lower-cased token text without dots, braces or semicolons."""
    return _TOKEN_NOISE.sub('', token.lower)


def parse_number(text: str):
    """Parse a numeric token, returning an int when the value is integral."""
    value = float(text)
    if value.is_integer():
        return int(value)
    return value


def as_number(value: float):
    """Collapse integral floats to int so ``30.0`` renders as ``30``."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def js_round(value: float) -> int:
    """Round half up, matching clinician expectations for ``x2.5``."""
    return int(math.floor(value + 0.5))


def is_number_token(text: str) -> bool:
    return bool(NUMBER_PATTERN.match(text))


def lookup_layered(custom: Optional[Dict[str, Any]], builtin: Dict[str, Any], key: str):
    """Caller overrides win over the built-in dictionary for the same key."""
    if custom:
        value = custom.get(key)
        if value:
            return value
    return builtin.get(key)


def normalize_route_descriptor_phrase(phrase: str) -> str:
    """Drop filler words (per, by, via, articles) from a route phrase."""
    words = phrase.strip().lower().split()
    return ' '.join(w for w in words if w and w not in ROUTE_DESCRIPTOR_FILLER_WORDS)


def _build_descriptor_synonyms() -> Dict[str, RouteSynonym]:
    table: Dict[str, RouteSynonym] = {}
    for phrase, synonym in DEFAULT_ROUTE_SYNONYMS.items():
        normalized = normalize_route_descriptor_phrase(phrase)
        if normalized and normalized not in table:
            table[normalized] = synonym
    return table


DEFAULT_ROUTE_DESCRIPTOR_SYNONYMS = _build_descriptor_synonyms()


def enforce_household_unit_policy(unit: Optional[str],
                                  options: Optional[ParseOptions]) -> Optional[str]:
    """Reject tsp/tbsp when the caller disallows household volume units."""
    if (unit and options is not None and options.allow_household_volume_units is False
            and unit.lower() in HOUSEHOLD_VOLUME_UNIT_SET):
        return None
    return unit


def normalize_unit(token: str, options: Optional[ParseOptions]) -> Optional[str]:
    """Map a unit token to its canonical unit, honouring ``unit_map``."""
    custom = options.unit_map if options is not None else None
    override = enforce_household_unit_policy((custom or {}).get(token), options)
    if override:
        return override
    return enforce_household_unit_policy(DEFAULT_UNIT_SYNONYMS.get(token), options)


def build_custom_site_hints(site_code_map: Optional[Dict[str, Dict]]) -> Optional[Set[str]]:
    """Every word of a caller site key or alias counts as a body-site hint."""
    if not site_code_map:
        return None
    hints: Set[str] = set()

    def add_phrase(phrase):
        for part in normalize_body_site_key(phrase).split(' '):
            if part:
                hints.add(part)

    for key, definition in site_code_map.items():
        add_phrase(key)
        for alias in (definition or {}).get('aliases') or []:
            add_phrase(alias)
    return hints


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class LookupRequest:
    """A site or PRN reason phrase handed to coding resolvers."""

    original_text: str
    text: str
    normalized: str
    canonical: str
    is_probe: bool
    input_text: str
    source_text: Optional[str] = None
    range: Optional[TextRange] = None


@dataclass
class ParsedSig:
    """Accumulator for everything recognised in one sig."""

    dose: Optional[float] = None
    dose_range: Optional[Dict[str, float]] = None
    unit: Optional[str] = None
    route_code: Optional[str] = None
    route_text: Optional[str] = None
    count: Optional[int] = None
    frequency: Optional[float] = None
    frequency_max: Optional[float] = None
    period: Optional[float] = None
    period_max: Optional[float] = None
    period_unit: Optional[str] = None
    day_of_week: List[str] = field(default_factory=list)
    when: List[str] = field(default_factory=list)
    timing_code: Optional[str] = None
    as_needed: Optional[bool] = None
    as_needed_reason: Optional[str] = None
    as_needed_reason_coding: Optional[Dict[str, str]] = None
    warnings: List[str] = field(default_factory=list)
    site_text: Optional[str] = None
    site_source: Optional[str] = None
    site_coding: Optional[Dict[str, str]] = None
    site_lookup_request: Optional[LookupRequest] = None
    site_lookups: List[Dict[str, Any]] = field(default_factory=list)
    prn_reason_lookup_request: Optional[LookupRequest] = None
    prn_reason_lookups: List[Dict[str, Any]] = field(default_factory=list)
    additional_instructions: List[Dict[str, Any]] = field(default_factory=list)

    def has_cadence(self) -> bool:
        """True once frequency or period fields have been assigned."""
        return (self.frequency is not None or self.frequency_max is not None
                or self.period is not None or self.period_max is not None)


# =============================================================================
# PARSE CONTEXT
# =============================================================================

class ParseContext:
    """
    Owns the token list and consumed-token set for one parse.

    Rules claim tokens through ``consume``. ``unconsume`` is only used while
    the PRN reason span is re-collected and trimmed.
    """

    def __init__(self, text: str, tokens: List[Token], options: ParseOptions):
        self.text = text
        self.tokens = tokens
        self.options = options
        self.sig = ParsedSig()
        self.consumed: Set[int] = set()
        self.site_token_indices: Set[int] = set()
        self.custom_site_hints = build_custom_site_hints(options.site_code_map)
        self.prn_reason_start: Optional[int] = None
        self.prn_site_suffix_indices: Set[int] = set()

        self.custom_route_map: Optional[Dict[str, str]] = None
        self.custom_route_descriptor_map: Optional[Dict[str, str]] = None
        if options.route_map:
            self.custom_route_map = {k.lower(): v for k, v in options.route_map.items()}
            self.custom_route_descriptor_map = {}
            for key, code in self.custom_route_map.items():
                normalized = normalize_route_descriptor_phrase(key)
                if normalized:
                    self.custom_route_descriptor_map[normalized] = code

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    def token_at(self, index: int) -> Optional[Token]:
        """Token at ``index`` or None when out of range (no negative wrap)."""
        if 0 <= index < len(self.tokens):
            return self.tokens[index]
        return None

    def is_consumed(self, token) -> bool:
        index = token.index if isinstance(token, Token) else token
        return index in self.consumed

    def consume(self, *tokens: Token):
        for token in tokens:
            self.consumed.add(token.index)

    def unconsume(self, token: Token):
        self.consumed.discard(token.index)

    def is_site_hint(self, word: str) -> bool:
        return word in BODY_SITE_HINTS or bool(
            self.custom_site_hints and word in self.custom_site_hints)

    # ------------------------------------------------------------------
    # Accumulator updates
    # ------------------------------------------------------------------

    def add_when(self, code: str):
        if code not in self.sig.when:
            self.sig.when.append(code)

    def remove_when(self, code: str):
        self.sig.when[:] = [c for c in self.sig.when if c != code]

    def set_route(self, code: str, text: Optional[str] = None):
        self.sig.route_code = code
        self.sig.route_text = text if text is not None else ROUTE_TEXT.get(code)

    def warn(self, message: str):
        logger.info(f"Sig warning: {message}")
        self.sig.warnings.append(message)

    def leftover_tokens(self) -> List[Token]:
        return [t for t in self.tokens if t.index not in self.consumed]
