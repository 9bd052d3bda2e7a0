"""
Sig Tokenizer
=============

Splits a raw sig string into indexed tokens. Punctuation separators are
blanked, fractions are evaluated, compact forms like ``500mg`` or ``q4h`` are
split apart and range forms like ``1 - 2`` are glued into ``1-2``.
"""

import re
from typing import List, NamedTuple, Optional, Sequence, Tuple


class Token(NamedTuple):
    original: str
    lower: str
    index: int


TextRange = Tuple[int, int]


# =============================================================================
# PATTERNS
# =============================================================================

SEPARATORS = re.compile(r'[(),;]')
SPACED_DASH = re.compile(r'\s-\s')
PER_UNIT_FRACTION = re.compile(
    r'(\d+(?:\.\d+)?)\s*/\s*(d|day|days|wk|w|week|weeks|mo|month|months|hr|hrs|hour|hours|h|min|mins|minute|minutes)\b',
    re.IGNORECASE,
)
NUMERIC_FRACTION = re.compile(r'(\d+)\s*/\s*(\d+)')
MULTIPLIER_WORD = re.compile(r'(\d+(?:\.\d+)?[x*])([A-Za-z]+)')
NUMERIC_RANGE = re.compile(r'(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)')
NUMBER_UNIT = re.compile(
    r'(\d+(?:\.\d+)?)(tab|tabs|tablet|tablets|cap|caps|capsule|capsules|mg|mcg|ml|g|drops|drop|puff|puffs|spray|sprays|patch|patches)',
    re.IGNORECASE,
)
SLASHES = re.compile(r'[\\/]')

PURE_NUMBER = re.compile(r'^[0-9]+(?:\.[0-9]+)?$')
PURE_WORD = re.compile(r'^[A-Za-z]+$')
Q_RANGE = re.compile(r'^q([0-9]+(?:\.[0-9]+)?)-([0-9]+(?:\.[0-9]+)?)([A-Za-z]+)$', re.IGNORECASE)
NUMBER_WORD = re.compile(r'^([0-9]+(?:\.[0-9]+)?)([A-Za-z]+)$')
MULTIPLIER_OR_Q_SUFFIX = re.compile(r'^(x|q)\d+', re.IGNORECASE)


def format_number(value: float) -> str:
    """Render a number the way it is written in sig text (``2`` not ``2.0``)."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _evaluate_fraction(match: re.Match) -> str:
    numerator = float(match.group(1))
    denominator = float(match.group(2))
    if denominator == 0:
        return match.group(0)
    return format_number(numerator / denominator)


def split_token(token: str) -> List[str]:
    """Split a compact token such as ``500mg`` or ``q4-6h`` into parts."""
    if PURE_NUMBER.match(token) or PURE_WORD.match(token):
        return [token]
    q_range = Q_RANGE.match(token)
    if q_range:
        low, high, unit = q_range.groups()
        return [token[0], f"{low}-{high}", unit]
    match = NUMBER_WORD.match(token)
    if match:
        number, unit = match.groups()
        if not MULTIPLIER_OR_Q_SUFFIX.match(unit):
            return [number, unit]
    return [token]


def tokenize(text: str) -> List[Token]:
    """
    Tokenize a sig string.

    Args:
        text: Raw sig text

    Returns:
        Tokens with stable positional indices
    """
    normalized = SEPARATORS.sub(' ', text.strip())
    normalized = SPACED_DASH.sub(' ; ', normalized)
    normalized = PER_UNIT_FRACTION.sub(lambda m: f"{m.group(1)} per {m.group(2)}", normalized)
    normalized = NUMERIC_FRACTION.sub(_evaluate_fraction, normalized)
    normalized = MULTIPLIER_WORD.sub(r'\1 \2', normalized)
    normalized = NUMERIC_RANGE.sub(r'\1-\2', normalized)
    normalized = NUMBER_UNIT.sub(r'\1 \2', normalized)
    normalized = SLASHES.sub(' ', normalized)

    raw_tokens = [t.strip() for t in re.split(r'\s+', normalized)]
    raw_tokens = [t for t in raw_tokens if t and t not in ('.', '-')]

    tokens: List[Token] = []
    for raw in raw_tokens:
        for part in split_token(raw):
            if part:
                tokens.append(Token(part, part.lower(), len(tokens)))
    return tokens


# =============================================================================
# SOURCE RANGES
# =============================================================================

def compute_token_range(text: str, tokens: Sequence[Token],
                        indices: Sequence[int]) -> Optional[TextRange]:
    """Locate the character span covering ``indices`` in the original text."""
    if not indices:
        return None
    lower_text = text.lower()
    search_start = 0
    range_start = None
    range_end = None
    for token_index in indices:
        if token_index < 0 or token_index >= len(tokens):
            continue
        segment = tokens[token_index].original.strip().lower()
        if not segment:
            continue
        found = lower_text.find(segment, search_start)
        if found == -1:
            return None
        if range_start is None:
            range_start = found
        range_end = found + len(segment)
        search_start = range_end
    if range_start is None or range_end is None:
        return None
    return (range_start, range_end)


def refine_site_range(text: str, sanitized: str,
                      token_range: Optional[TextRange]) -> Optional[TextRange]:
    """Prefer the exact span of ``sanitized`` over the token-derived range."""
    if not text:
        return token_range
    needle = sanitized.strip().lower()
    if not needle:
        return token_range
    lower_text = text.lower()
    start = lower_text.find(needle, token_range[0]) if token_range else -1
    if start == -1:
        start = lower_text.find(needle)
    if start == -1:
        return token_range
    return (start, start + len(needle))
