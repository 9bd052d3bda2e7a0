"""
Site, Route and PRN Reason Extraction
=====================================

Route synonym matching over token spans, the PRN reason span (with its
separator cutoff and trailing ``to the scalp`` suffix), trailing additional
instructions (``- with food``) and body-site text assembled from leftover
tokens. Body-site display text is normalised to the preferred phrase of the
matching coded definition.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from ..config.sig_config import SNOMED_SYSTEM, RouteCode
from ..config.vocabulary import (
    DEFAULT_ADDITIONAL_INSTRUCTION_DEFINITIONS,
    DEFAULT_ADDITIONAL_INSTRUCTION_ENTRIES,
    DEFAULT_BODY_SITE_SNOMED,
    DEFAULT_ROUTE_SYNONYMS,
    DEFAULT_UNIT_BY_ROUTE,
    ROUTE_TEXT,
    RouteSynonym,
    normalize_additional_instruction_key,
    normalize_body_site_key,
    normalize_prn_reason_key,
)
from .parse_context import (
    DEFAULT_ROUTE_DESCRIPTOR_SYNONYMS,
    PUNCTUATION_ONLY,
    ROUTE_DESCRIPTOR_FILLER_WORDS,
    SITE_CONNECTORS,
    SITE_FILLER_WORDS,
    LookupRequest,
    ParseContext,
    normalize_route_descriptor_phrase,
    normalize_token_lower,
)
from .tokenizer import Token, TextRange, compute_token_range, refine_site_range

logger = logging.getLogger(__name__)


# =============================================================================
# SITE -> ROUTE HINTS
# =============================================================================

SITE_UNIT_ROUTE_HINTS = [
    (re.compile(r'\beyes?\b', re.IGNORECASE), RouteCode.OPHTHALMIC),
    (re.compile(r'\beyelids?\b', re.IGNORECASE), RouteCode.OPHTHALMIC),
    (re.compile(r'\bintravitreal\b', re.IGNORECASE), RouteCode.INTRAVITREAL),
    (re.compile(r'\bears?\b', re.IGNORECASE), RouteCode.OTIC),
    (re.compile(r'\bnostrils?\b', re.IGNORECASE), RouteCode.NASAL),
    (re.compile(r'\bnares?\b', re.IGNORECASE), RouteCode.NASAL),
    (re.compile(r'\bnose\b', re.IGNORECASE), RouteCode.NASAL),
    (re.compile(r'\bmouth\b', re.IGNORECASE), RouteCode.ORAL),
    (re.compile(r'\boral\b', re.IGNORECASE), RouteCode.ORAL),
    (re.compile(r'\bunder (the )?tongue\b', re.IGNORECASE), RouteCode.SUBLINGUAL),
    (re.compile(r'\btongue\b', re.IGNORECASE), RouteCode.SUBLINGUAL),
    (re.compile(r'\bcheeks?\b', re.IGNORECASE), RouteCode.BUCCAL),
    (re.compile(r'\blungs?\b', re.IGNORECASE), RouteCode.RESPIRATORY),
    (re.compile(r'\brespiratory tract\b', re.IGNORECASE), RouteCode.RESPIRATORY),
    (re.compile(r'\bskin\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\bscalp\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\bface\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\bhands?\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'(\bfoot\b|\bfeet\b)', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\belbows?\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\bknees?\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\blegs?\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\barms?\b', re.IGNORECASE), RouteCode.TOPICAL),
    (re.compile(r'\bpatch(es)?\b', re.IGNORECASE), RouteCode.TRANSDERMAL),
    (re.compile(r'\babdomen\b', re.IGNORECASE), RouteCode.SUBCUTANEOUS),
    (re.compile(r'\bbelly\b', re.IGNORECASE), RouteCode.SUBCUTANEOUS),
    (re.compile(r'\bstomach\b', re.IGNORECASE), RouteCode.SUBCUTANEOUS),
    (re.compile(r'\bthighs?\b', re.IGNORECASE), RouteCode.SUBCUTANEOUS),
    (re.compile(r'\bupper arm\b', re.IGNORECASE), RouteCode.SUBCUTANEOUS),
    (re.compile(r'\bbuttocks?\b', re.IGNORECASE), RouteCode.INTRAMUSCULAR),
    (re.compile(r'\bglute(al)?\b', re.IGNORECASE), RouteCode.INTRAMUSCULAR),
    (re.compile(r'\bdeltoid\b', re.IGNORECASE), RouteCode.INTRAMUSCULAR),
    (re.compile(r'\bmuscles?\b', re.IGNORECASE), RouteCode.INTRAMUSCULAR),
    (re.compile(r'\bveins?\b', re.IGNORECASE), RouteCode.INTRAVENOUS),
    (re.compile(r'\brectum\b', re.IGNORECASE), RouteCode.RECTAL),
    (re.compile(r'\banus\b', re.IGNORECASE), RouteCode.RECTAL),
    (re.compile(r'\brectal\b', re.IGNORECASE), RouteCode.RECTAL),
    (re.compile(r'\bvagina\b', re.IGNORECASE), RouteCode.VAGINAL),
    (re.compile(r'\bvaginal\b', re.IGNORECASE), RouteCode.VAGINAL),
]

BODY_SITE_ADJECTIVE_SUFFIXES = (
    'al', 'ial', 'ual', 'ic', 'ous', 'ive', 'ary', 'ory', 'atic', 'etic',
    'ular', 'otic', 'ile', 'eal', 'inal', 'aneal', 'enal',
)

_ROUTE_PUNCTUATION = re.compile(r'^[;:(),]+$')
_BRACES = re.compile(r'[{}]')
_BRACE_ONLY = re.compile(r'^[{}]+$')
_PROBE = re.compile(r'^\{(.+)}$')
_WHITESPACE = re.compile(r'\s+')
_SITE_QUALIFIER_WORDS = re.compile(r'(structure|region|entire|proper|body)')
_EYE = re.compile(r'eye', re.IGNORECASE)


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(' ', text).strip()


def _strip_braces(text: str) -> str:
    return _collapse(_BRACES.sub(' ', text))


def route_from_site_text(site_text: str) -> Optional[str]:
    """First route whose site pattern matches ``site_text``."""
    for pattern, route in SITE_UNIT_ROUTE_HINTS:
        if pattern.search(site_text):
            return route
    return None


def infer_unit_from_route_hints(ctx: ParseContext) -> Optional[str]:
    """Default unit for the recognised route, its text, or the site text."""
    sig = ctx.sig
    if sig.route_code:
        unit = DEFAULT_UNIT_BY_ROUTE.get(sig.route_code)
        if unit:
            return unit
    if sig.route_text:
        synonym = DEFAULT_ROUTE_SYNONYMS.get(sig.route_text.strip().lower())
        if synonym:
            unit = DEFAULT_UNIT_BY_ROUTE.get(synonym.code)
            if unit:
                return unit
    if sig.site_text:
        for pattern, route in SITE_UNIT_ROUTE_HINTS:
            if pattern.search(sig.site_text):
                unit = DEFAULT_UNIT_BY_ROUTE.get(route)
                if unit:
                    return unit
    return None


# =============================================================================
# ROUTES
# =============================================================================

def rule_route_synonym(ctx: ParseContext, i: int) -> bool:
    """Longest route phrase (up to 24 tokens) starting at ``i``."""
    if ctx.prn_reason_start is not None and i >= ctx.prn_reason_start:
        return False
    tokens = ctx.tokens
    for span in range(min(24, len(tokens) - i), 0, -1):
        window = tokens[i:i + span]
        if any(ctx.is_consumed(part) for part in window):
            continue
        phrase = ' '.join(part.lower for part in window
                          if not _ROUTE_PUNCTUATION.match(part.lower))
        custom_code = (ctx.custom_route_map or {}).get(phrase)
        if custom_code:
            synonym = RouteSynonym(custom_code, ROUTE_TEXT.get(custom_code))
        else:
            synonym = DEFAULT_ROUTE_SYNONYMS.get(phrase)
        if not synonym:
            continue
        if phrase == 'in' and span == 1:
            previous = ctx.token_at(i - 1)
            if previous is not None and not ctx.is_consumed(previous):
                continue
        ctx.set_route(synonym.code, synonym.text)
        for part in window:
            ctx.consume(part)
            if ctx.is_site_hint(part.lower):
                ctx.site_token_indices.add(part.index)
        return True
    return False


def maybe_apply_route_descriptor(ctx: ParseContext, phrase: Optional[str]) -> bool:
    """Treat a site phrase such as ``by mouth`` as a route when it names one."""
    if not phrase:
        return False
    normalized = phrase.strip().lower()
    if not normalized:
        return False

    def apply(code, text=None) -> bool:
        if ctx.sig.route_code and ctx.sig.route_code != code:
            return False
        ctx.set_route(code, text)
        return True

    custom_code = (ctx.custom_route_map or {}).get(normalized)
    if custom_code and apply(custom_code):
        return True
    synonym = DEFAULT_ROUTE_SYNONYMS.get(normalized)
    if synonym and apply(synonym.code, synonym.text):
        return True

    descriptor = normalize_route_descriptor_phrase(normalized)
    if descriptor and descriptor != normalized:
        custom_code = (ctx.custom_route_descriptor_map or {}).get(descriptor)
        if custom_code and apply(custom_code):
            return True
        synonym = DEFAULT_ROUTE_DESCRIPTOR_SYNONYMS.get(descriptor)
        if synonym and apply(synonym.code, synonym.text):
            return True
    return False


# =============================================================================
# BODY SITE DISPLAY
# =============================================================================

def lookup_body_site_definition(site_map: Optional[Dict[str, Dict]],
                                canonical: str) -> Optional[Dict]:
    """Find a caller site definition by key, normalised key or alias."""
    if not site_map:
        return None
    direct = site_map.get(canonical)
    if direct:
        return direct
    for key, definition in site_map.items():
        if normalize_body_site_key(key) == canonical:
            return definition
        for alias in (definition or {}).get('aliases') or []:
            if normalize_body_site_key(alias) == canonical:
                return definition
    return None


def is_adjectival_site_phrase(phrase: str) -> bool:
    """Single words like ``otic`` or ``nasal`` that modify a site rather than name one."""
    words = phrase.strip().lower().split()
    if len(words) != 1:
        return False
    word = words[0]
    if len(word) <= 3:
        return False
    return word.endswith(BODY_SITE_ADJECTIVE_SUFFIXES)


def score_body_site_phrase(phrase: str) -> float:
    lower = phrase.lower()
    words = lower.split()
    score = 0.0
    if not _SITE_QUALIFIER_WORDS.search(lower):
        score += 3
    if ' of ' not in lower:
        score += 1
    if len(words) <= 2:
        score += 1
    if len(words) == 1:
        score += 0.5
    score -= len(words) * 0.2
    score -= len(lower) * 0.01
    return score


def pick_preferred_body_site_phrase(canonical: str, definition: Dict,
                                    site_map: Optional[Dict[str, Dict]] = None) -> Optional[str]:
    """
    Pick the most readable synonym for a body site definition.

    Returns None when the best candidate is ``canonical`` itself.
    """
    synonyms = [canonical]

    def add(value):
        normalized = normalize_body_site_key(value)
        if normalized and normalized not in synonyms:
            synonyms.append(normalized)

    for alias in definition.get('aliases') or []:
        add(alias)
    for key, candidate in (site_map or {}).items():
        if candidate is definition:
            add(key)
            for alias in candidate.get('aliases') or []:
                add(alias)

    candidates = [p for p in synonyms if p and not is_adjectival_site_phrase(p)]
    if not candidates:
        return None
    candidates.sort(key=score_body_site_phrase, reverse=True)
    best = candidates[0]
    if normalize_body_site_key(best) == canonical:
        return None
    return best


def normalize_site_display_text(text: str, site_map: Optional[Dict[str, Dict]] = None) -> str:
    """
    Replace a site phrase with the preferred wording of its definition.

    ``otic`` resolves directly. ``left ophthalmic eye`` style phrases whose
    adjectival prefix resolves to the same definition as the rest collapse to
    that definition's preferred phrase. Anything else is returned trimmed.
    """
    trimmed = text.strip()
    if not trimmed:
        return trimmed
    canonical_input = normalize_body_site_key(trimmed)
    if not canonical_input:
        return trimmed

    def resolve(canonical: str) -> Optional[Tuple[str, str]]:
        definition = (lookup_body_site_definition(site_map, canonical)
                      or DEFAULT_BODY_SITE_SNOMED.get(canonical))
        if not definition:
            return None
        value = pick_preferred_body_site_phrase(canonical, definition, site_map) or canonical
        normalized = normalize_body_site_key(value)
        if not normalized:
            return None
        return value, normalized

    if is_adjectival_site_phrase(canonical_input):
        direct = resolve(canonical_input)
        return direct[0] if direct else trimmed

    words = canonical_input.split()
    for i in range(1, len(words)):
        prefix = words[:i]
        if not all(is_adjectival_site_phrase(word) for word in prefix):
            continue
        candidate = resolve(' '.join(words[i:]))
        if not candidate:
            continue
        if all((resolve(word) or (None, None))[1] == candidate[1] for word in prefix):
            return candidate[0]
    return trimmed


# =============================================================================
# PRN REASON
# =============================================================================

def find_prn_reason_separator(source_text: str) -> Optional[int]:
    """Position of the first separator that ends the PRN reason, if any."""
    length = len(source_text)
    for i, ch in enumerate(source_text):
        rest = source_text[i + 1:]
        if ch in ('\n', '\r', ';'):
            if rest.strip():
                return i
            continue
        if ch == '-':
            prev = source_text[i - 1] if i > 0 else ''
            nxt = source_text[i + 1] if i + 1 < length else ''
            spaced = (not prev or prev.isspace()) and (not nxt or nxt.isspace())
            if spaced and rest.strip():
                return i
            continue
        if ch in (':', '.'):
            stripped = rest.lstrip()
            if not stripped:
                continue
            if ch == '.' and i > 0 and source_text[i - 1].isdigit() and stripped[0].isdigit():
                continue
            return i
    return None


def determine_prn_reason_cutoff(tokens: List[Token], source_text: str) -> Optional[int]:
    """Index of the first reason token at or after the separator."""
    separator = find_prn_reason_separator(source_text)
    if separator is None:
        return None
    lower_source = source_text.lower()
    offset = 0
    for i, token in enumerate(tokens):
        fragment = token.original.strip().lower()
        if not fragment:
            continue
        position = lower_source.find(fragment, offset)
        if position == -1:
            continue
        offset = position + len(fragment)
        if position >= separator:
            return i
    return None


def find_trailing_prn_site_suffix(ctx: ParseContext,
                                  tokens: List[Token]) -> Optional[Tuple[List[Token], int]]:
    """
    Detect ``... to the scalp`` at the end of a PRN reason.

    Returns:
        (site word tokens, start position within ``tokens``), or None when
        the suffix has no connector, starts the reason, or names no known site
    """
    suffix_start = None
    has_site_hint = False
    has_connector = False
    for i in range(len(tokens) - 1, -1, -1):
        token = tokens[i]
        lower = normalize_token_lower(token)
        if not lower:
            if suffix_start is not None and token.original.strip():
                break
            continue
        if ctx.is_site_hint(lower):
            has_site_hint = True
            suffix_start = i
            continue
        if suffix_start is not None:
            if lower in SITE_CONNECTORS:
                has_connector = True
                suffix_start = i
                continue
            if lower in SITE_FILLER_WORDS or lower in ROUTE_DESCRIPTOR_FILLER_WORDS:
                suffix_start = i
                continue
            break

    if not has_site_hint or not has_connector or not suffix_start:
        return None

    site_tokens = []
    for token in tokens[suffix_start:]:
        if not token.original.strip():
            continue
        lower = normalize_token_lower(token)
        if (lower in SITE_CONNECTORS or lower in SITE_FILLER_WORDS
                or lower in ROUTE_DESCRIPTOR_FILLER_WORDS):
            continue
        site_tokens.append(token)
    if not site_tokens:
        return None

    canonical = normalize_body_site_key(' '.join(t.original.strip() for t in site_tokens))
    if not canonical:
        return None
    definition = (lookup_body_site_definition(ctx.options.site_code_map, canonical)
                  or DEFAULT_BODY_SITE_SNOMED.get(canonical))
    if not definition:
        return None
    return site_tokens, suffix_start


def extract_prn_reason(ctx: ParseContext):
    """Claim everything after ``prn``/``as needed for`` as the reason."""
    sig = ctx.sig
    if not sig.as_needed or ctx.prn_reason_start is None:
        return
    reason: List[Token] = list(ctx.tokens[ctx.prn_reason_start:])
    if not reason:
        return
    for token in reason:
        ctx.consume(token)

    text = ctx.text
    range_ = compute_token_range(text, ctx.tokens, sorted(t.index for t in reason))
    source_text = text[range_[0]:range_[1]] if range_ else None

    if source_text:
        cutoff = determine_prn_reason_cutoff(reason, source_text)
        if cutoff is not None:
            for token in reason[cutoff:]:
                ctx.unconsume(token)
            del reason[cutoff:]
            while reason and (not reason[-1].original.strip()
                              or PUNCTUATION_ONLY.match(reason[-1].original.strip())):
                ctx.unconsume(reason.pop())
            if reason:
                range_ = compute_token_range(text, ctx.tokens, sorted(t.index for t in reason))
                source_text = text[range_[0]:range_[1]] if range_ else None
            else:
                range_ = None
                source_text = None

    if not reason:
        return

    canonical_prefix = None
    suffix = find_trailing_prn_site_suffix(ctx, reason)
    if suffix:
        site_tokens, start = suffix
        ctx.prn_site_suffix_indices.update(t.index for t in site_tokens)
        prefix = _collapse(' '.join(t.original for t in reason[:start]))
        if prefix:
            canonical_prefix = _strip_braces(prefix)

    joined = ' '.join(t.original for t in reason).strip()
    if not joined:
        return
    sanitized = _collapse(joined)
    is_probe = False
    probe = _PROBE.match(sanitized)
    if probe:
        is_probe = True
        sanitized = probe.group(1)
    sanitized = _strip_braces(sanitized)
    reason_text = sanitized or joined
    sig.as_needed_reason = reason_text
    sig.prn_reason_lookup_request = LookupRequest(
        original_text=joined,
        text=reason_text,
        normalized=reason_text.lower(),
        canonical=normalize_prn_reason_key(canonical_prefix or sanitized or reason_text),
        is_probe=is_probe,
        input_text=text,
        source_text=source_text,
        range=range_,
    )
    logger.debug(f"PRN reason: {reason_text!r} (canonical {sig.prn_reason_lookup_request.canonical!r})")


# =============================================================================
# ADDITIONAL INSTRUCTIONS
# =============================================================================

_INSTRUCTION_DASH = re.compile(r'\s*[-:]+\s*')
_INSTRUCTION_NEWLINE = re.compile(r'\s*(?:\r?\n)+\s*')
_INSTRUCTION_SPLIT = re.compile(r'[;.]')
_INSTRUCTION_MARKER = re.compile(r'[-;:.]')


def find_additional_instruction_definition(canonical: str) -> Optional[Dict]:
    """Loose match of an instruction phrase against the built-in entries."""
    if not canonical:
        return None
    for entry in DEFAULT_ADDITIONAL_INSTRUCTION_ENTRIES:
        entry_canonical = entry['canonical']
        if not entry_canonical:
            continue
        if entry_canonical in canonical or canonical in entry_canonical:
            return entry['definition']
        for term in entry['terms']:
            normalized = normalize_additional_instruction_key(term)
            if normalized and (normalized in canonical or canonical in normalized):
                return entry['definition']
    return None


def _trailing_range(text: str, tokens: List[Token]) -> Optional[TextRange]:
    lower_text = text.lower()
    search_end = len(lower_text)
    start = end = None
    for token in reversed(tokens):
        fragment = token.original.strip().lower()
        if not fragment:
            continue
        found = lower_text.rfind(fragment, 0, max(search_end - 1, 0) + len(fragment))
        if found == -1:
            return None
        start = found
        if end is None:
            end = found + len(fragment)
        search_end = found
    if start is None or end is None:
        return None
    return (start, end)


def _preceded_by_separator(text: str, start: int) -> bool:
    for cursor in range(start - 1, -1, -1):
        ch = text[cursor]
        if ch in ('\n', '\r'):
            return True
        if ch.isspace():
            continue
        return ch in '-;:.,'
    return False


def collect_additional_instructions(ctx: ParseContext):
    """
    Turn a trailing unconsumed run set off by a separator into instructions.

    ``1 tab po daily - with food; avoid alcohol`` yields two instructions.
    Known phrases carry a SNOMED coding; others keep their text only.
    """
    sig = ctx.sig
    if sig.additional_instructions:
        return
    tokens = ctx.tokens
    trailing: List[Token] = []
    expected = None
    for token in reversed(tokens):
        if ctx.is_consumed(token):
            if trailing:
                break
            continue
        if expected is not None and token.index != expected - 1:
            break
        trailing.insert(0, token)
        expected = token.index
    if not trailing:
        return
    content = [t for t in trailing if not PUNCTUATION_ONLY.match(t.original)]
    if not content:
        return
    last_index = trailing[-1].index
    if any(not ctx.is_consumed(t) for t in tokens[last_index + 1:]):
        return

    joined = _collapse(' '.join(t.original for t in content))
    if not joined:
        return
    text = ctx.text
    range_ = (_trailing_range(text, content)
              or compute_token_range(text, tokens, sorted(t.index for t in content)))
    separator = bool(range_) and _preceded_by_separator(text, range_[0])
    source_text = text[range_[0]:range_[1]] if range_ else joined
    if not separator and not _INSTRUCTION_MARKER.search(source_text):
        return

    normalized = _INSTRUCTION_DASH.sub('; ', source_text)
    normalized = _INSTRUCTION_NEWLINE.sub('; ', normalized)
    normalized = _WHITESPACE.sub(' ', normalized)
    segments = [s.strip() for s in _INSTRUCTION_SPLIT.split(normalized) if s.strip()]
    phrases = segments or [joined]

    seen = set()
    instructions = []
    for phrase in phrases:
        canonical = normalize_additional_instruction_key(phrase)
        definition = (DEFAULT_ADDITIONAL_INSTRUCTION_DEFINITIONS.get(canonical)
                      or find_additional_instruction_definition(canonical))
        coding = (definition or {}).get('coding') or {}
        if coding.get('code'):
            key = f"code:{coding.get('system') or SNOMED_SYSTEM}|{coding['code']}"
        elif canonical:
            key = f"text:{canonical}"
        else:
            key = phrase.lower()
        if key in seen:
            continue
        seen.add(key)
        if definition:
            instruction = {'text': definition.get('text') or phrase}
            if coding.get('code'):
                instruction['coding'] = {
                    'code': coding['code'],
                    'display': coding.get('display'),
                    'system': coding.get('system') or SNOMED_SYSTEM,
                }
            instructions.append(instruction)
        else:
            instructions.append({'text': phrase})

    if instructions:
        sig.additional_instructions = instructions
        ctx.consume(*trailing)
        logger.debug(f"Additional instructions: {[i['text'] for i in instructions]}")


# =============================================================================
# BODY SITE TEXT
# =============================================================================

def _is_site_span_word(ctx: ParseContext, lower: str) -> bool:
    return (lower in SITE_CONNECTORS or ctx.is_site_hint(lower)
            or lower in ROUTE_DESCRIPTOR_FILLER_WORDS)


def extract_site(ctx: ParseContext):
    """Assemble site text from leftover body-site words and their connectors."""
    sig = ctx.sig
    tokens = ctx.tokens
    suffix = ctx.prn_site_suffix_indices

    candidates = set()
    leftover_site = set()
    for token in ctx.leftover_tokens():
        if token.index in suffix:
            continue
        normalized = normalize_token_lower(token)
        if ctx.is_site_hint(normalized):
            candidates.add(token.index)
            leftover_site.add(token.index)
            continue
        if normalized in SITE_CONNECTORS:
            following = ctx.token_at(token.index + 1)
            if (following is not None and not ctx.is_consumed(following)
                    and following.index not in suffix):
                candidates.add(following.index)
    if not leftover_site:
        candidates.update(idx for idx in ctx.site_token_indices if idx not in suffix)
    if not candidates:
        return

    included = set(candidates)
    for idx in candidates:
        cursor = idx - 1
        while cursor >= 0 and _is_site_span_word(ctx, normalize_token_lower(tokens[cursor])):
            included.add(cursor)
            cursor -= 1
        cursor = idx + 1
        while cursor < len(tokens) and _is_site_span_word(ctx, normalize_token_lower(tokens[cursor])):
            included.add(cursor)
            cursor += 1

    indices = sorted(included)
    display_words = []
    for index in indices:
        token = tokens[index]
        lower = normalize_token_lower(token)
        trimmed = token.original.strip()
        is_brace = bool(trimmed) and bool(_BRACE_ONLY.match(trimmed))
        if not is_brace and lower not in SITE_CONNECTORS and lower not in SITE_FILLER_WORDS:
            display_words.append(token.original)
        ctx.consume(token)

    normalized_site = ' '.join(w for w in display_words
                               if w.strip().lower() not in SITE_CONNECTORS).strip()
    if not normalized_site:
        return

    token_range = compute_token_range(ctx.text, tokens, indices)
    sanitized = normalized_site
    is_probe = False
    probe = _PROBE.match(sanitized)
    if probe:
        is_probe = True
        sanitized = probe.group(1)
    sanitized = _strip_braces(sanitized)
    range_ = refine_site_range(ctx.text, sanitized, token_range)
    source_text = ctx.text[range_[0]:range_[1]] if range_ else None
    display = normalize_site_display_text(sanitized, ctx.options.site_code_map)
    display_lower = display.lower()
    sig.site_lookup_request = LookupRequest(
        original_text=normalized_site,
        text=display,
        normalized=display_lower,
        canonical=normalize_body_site_key(display) if display else '',
        is_probe=is_probe,
        input_text=ctx.text,
        source_text=source_text,
        range=range_,
    )
    if not display:
        return

    sanitized_lower = sanitized.lower()
    stripped = normalize_route_descriptor_phrase(sanitized_lower)
    has_non_site_words = any(not ctx.is_site_hint(word) for word in display_lower.split())
    attempt_descriptor = (stripped != sanitized_lower or has_non_site_words
                          or stripped == 'mouth')
    if attempt_descriptor and maybe_apply_route_descriptor(ctx, sanitized):
        logger.debug(f"Site phrase {sanitized!r} read as route {ctx.sig.route_code}")
        return
    sig.site_text = display
    if not sig.site_source:
        sig.site_source = 'text'


def apply_route_from_site(ctx: ParseContext):
    sig = ctx.sig
    if sig.route_code or not sig.site_text:
        return
    route = route_from_site_text(sig.site_text)
    if route:
        ctx.set_route(route)


def warn_intravitreal_without_eye(ctx: ParseContext):
    sig = ctx.sig
    if sig.route_code == RouteCode.INTRAVITREAL and not (sig.site_text and _EYE.search(sig.site_text)):
        ctx.warn("Intravitreal administrations require an eye site (e.g., OD/OS/OU).")
