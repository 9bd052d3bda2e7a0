"""
Ocular Disambiguation
=====================

``OD`` is both "once daily" and "right eye"; ``OS``/``OU``/``IVTOD`` and
friends are eye sites. The checks here look at neighbouring tokens (up to
three either side), the consumed set and what the accumulator already holds
to decide which sense applies at a given position.
"""

import re

from ..config.sig_config import RouteCode
from ..config.vocabulary import DEFAULT_ROUTE_SYNONYMS, TIMING_ABBREVIATIONS
from .parse_context import (
    SITE_CONNECTORS,
    SITE_FILLER_WORDS,
    ParseContext,
    normalize_token_lower,
)
from .timing_rules import apply_frequency_descriptor


EYE_SITE_TOKENS = {
    'od': {'site': 'right eye', 'route': RouteCode.OPHTHALMIC},
    're': {'site': 'right eye', 'route': RouteCode.OPHTHALMIC},
    'os': {'site': 'left eye', 'route': RouteCode.OPHTHALMIC},
    'le': {'site': 'left eye', 'route': RouteCode.OPHTHALMIC},
    'ou': {'site': 'both eyes', 'route': RouteCode.OPHTHALMIC},
    'be': {'site': 'both eyes', 'route': RouteCode.OPHTHALMIC},
    'vod': {'site': 'right eye', 'route': RouteCode.INTRAVITREAL},
    'vos': {'site': 'left eye', 'route': RouteCode.INTRAVITREAL},
    'ivtod': {'site': 'right eye', 'route': RouteCode.INTRAVITREAL},
    'ivtre': {'site': 'right eye', 'route': RouteCode.INTRAVITREAL},
    'ivtos': {'site': 'left eye', 'route': RouteCode.INTRAVITREAL},
    'ivtle': {'site': 'left eye', 'route': RouteCode.INTRAVITREAL},
    'ivtou': {'site': 'both eyes', 'route': RouteCode.INTRAVITREAL},
    'ivtbe': {'site': 'both eyes', 'route': RouteCode.INTRAVITREAL},
}

OPHTHALMIC_ROUTE_CODES = {RouteCode.OPHTHALMIC, RouteCode.INTRAVITREAL}

OPHTHALMIC_CONTEXT_TOKENS = {
    'drop', 'drops', 'gtt', 'gtts', 'eye', 'eyes', 'eyelid', 'eyelids',
    'ocular', 'ophthalmic', 'ophth', 'oculus', 'os', 'ou', 're', 'le', 'be',
}

OCULAR_DIRECTION_WORDS = {'left', 'right', 'both', 'either', 'each', 'bilateral'}

OCULAR_SITE_WORDS = {'eye', 'eyes', 'eyelid', 'eyelids', 'ocular', 'ophthalmic', 'oculus'}

_EYE = re.compile(r'eye', re.IGNORECASE)
_OPHTHALMIC_FORM = re.compile(r'(eye|ophth|ocular|intravit)', re.IGNORECASE)


def _mentions_eye(text) -> bool:
    return bool(text) and bool(_EYE.search(text))


# =============================================================================
# CONTEXT PROBES
# =============================================================================

def has_ophthalmic_context_hint(ctx: ParseContext, index: int) -> bool:
    """An eye word, drop unit or other eye abbreviation within three tokens."""
    for offset in (-3, -2, -1, 1, 2, 3):
        neighbor = ctx.token_at(index + offset)
        if neighbor is None:
            continue
        normalized = normalize_token_lower(neighbor)
        if normalized in OPHTHALMIC_CONTEXT_TOKENS or 'eye' in normalized:
            return True
    return False


def has_body_site_context_before(ctx: ParseContext, index: int) -> bool:
    if ctx.sig.site_text:
        return True
    if any(idx < index for idx in ctx.site_token_indices):
        return True
    for token in ctx.tokens[:index]:
        if ctx.is_consumed(token):
            continue
        normalized = normalize_token_lower(token)
        if ctx.is_site_hint(normalized) or normalized in EYE_SITE_TOKENS:
            return True
    return False


def has_body_site_context_after(ctx: ParseContext, index: int) -> bool:
    """A body-site word immediately following, allowing connectors and articles."""
    if any(idx > index for idx in ctx.site_token_indices):
        return True
    for token in ctx.tokens[index + 1:]:
        if ctx.is_consumed(token):
            continue
        normalized = normalize_token_lower(token)
        if normalized in SITE_CONNECTORS or normalized in SITE_FILLER_WORDS:
            continue
        return ctx.is_site_hint(normalized)
    return False


def has_spelled_ocular_site_before(ctx: ParseContext, index: int) -> bool:
    """``in the left eye`` style wording somewhere before ``index``."""
    has_ocular_word = False
    has_directional_cue = False
    for token in ctx.tokens[:index]:
        normalized = normalize_token_lower(token)
        if normalized in SITE_CONNECTORS or normalized in OCULAR_DIRECTION_WORDS:
            has_directional_cue = True
        if normalized in OCULAR_SITE_WORDS or 'eye' in normalized:
            has_ocular_word = True
        if has_directional_cue and has_ocular_word:
            return True
    return False


# =============================================================================
# DECISIONS
# =============================================================================

def should_treat_eye_token_as_site(ctx: ParseContext, index: int) -> bool:
    """Decide whether an eye abbreviation at ``index`` names the site."""
    sig = ctx.sig
    meta = EYE_SITE_TOKENS.get(normalize_token_lower(ctx.tokens[index]))

    if sig.route_code and sig.route_code not in OPHTHALMIC_ROUTE_CODES:
        return False
    if sig.site_text or sig.site_source == 'abbreviation':
        return False

    medication = ctx.options.context
    dosage_form = (medication.dosage_form or '').lower() if medication is not None else ''
    ophthalmic_context = (
        has_ophthalmic_context_hint(ctx, index)
        or sig.route_code in OPHTHALMIC_ROUTE_CODES
        or bool(dosage_form and _OPHTHALMIC_FORM.search(dosage_form))
        or bool(meta and meta['route'] == RouteCode.INTRAVITREAL)
    )

    if has_body_site_context_after(ctx, index):
        return False

    if not ophthalmic_context:
        others = [t for t in ctx.tokens if t.index != index and not ctx.is_consumed(t)]
        if not others:
            return sig.unit is None and sig.route_code is None
        return all(normalize_token_lower(t) == 'od' for t in others)

    for candidate in ctx.tokens[:index]:
        if ctx.is_consumed(candidate):
            continue
        normalized = normalize_token_lower(candidate)
        if normalized in SITE_CONNECTORS:
            continue
        if (ctx.is_site_hint(normalized) or normalized in EYE_SITE_TOKENS
                or normalized in DEFAULT_ROUTE_SYNONYMS):
            return False
    return True


def should_interpret_od_as_once_daily(ctx: ParseContext, index: int,
                                      treat_as_site: bool) -> bool:
    """Decide whether ``OD`` at ``index`` means once daily."""
    if treat_as_site:
        return False
    sig = ctx.sig
    has_cadence = sig.has_cadence() or sig.timing_code is not None
    has_prior_site = has_body_site_context_before(ctx, index)
    has_upcoming_site = has_body_site_context_after(ctx, index)

    previous = ctx.token_at(index - 1)
    previous_normalized = normalize_token_lower(previous) if previous is not None else None
    previous_consumed = previous is not None and ctx.is_consumed(previous)

    # An earlier OD already supplied the eye, so this one is the cadence
    if previous_normalized == 'od' and previous_consumed and _mentions_eye(sig.site_text):
        return True
    if (previous_normalized and previous_normalized != 'od'
            and previous_normalized in EYE_SITE_TOKENS and previous_consumed):
        return True
    if (previous_normalized == 'od' and sig.site_source == 'abbreviation'
            and _mentions_eye(sig.site_text)):
        return True

    if has_prior_site or has_upcoming_site:
        return not has_cadence
    if has_cadence:
        return False

    if sig.route_code and sig.route_code not in OPHTHALMIC_ROUTE_CODES:
        return True
    if sig.unit and sig.unit != 'drop':
        return True
    if sig.site_text and not _mentions_eye(sig.site_text):
        return True

    has_non_od_token = any(
        normalize_token_lower(t) != 'od' for pos, t in enumerate(ctx.tokens) if pos != index
    )
    if not has_non_od_token:
        return False

    ophthalmic_context = (
        has_ophthalmic_context_hint(ctx, index)
        or sig.route_code in OPHTHALMIC_ROUTE_CODES
        or _mentions_eye(sig.site_text)
    )
    if ophthalmic_context and has_spelled_ocular_site_before(ctx, index):
        return True
    return not ophthalmic_context


# =============================================================================
# RULES
# =============================================================================

def _eye_token_decision(ctx: ParseContext, i: int):
    meta = EYE_SITE_TOKENS.get(normalize_token_lower(ctx.tokens[i]))
    if meta is None:
        return None, False
    return meta, should_treat_eye_token_as_site(ctx, i)


def rule_od_once_daily(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    if normalize_token_lower(token) != 'od':
        return False
    _, treat_as_site = _eye_token_decision(ctx, i)
    if not should_interpret_od_as_once_daily(ctx, i, treat_as_site):
        return False
    apply_frequency_descriptor(ctx, token, TIMING_ABBREVIATIONS['od'], ctx.options)
    return True


def rule_eye_site(ctx: ParseContext, i: int) -> bool:
    meta, treat_as_site = _eye_token_decision(ctx, i)
    if meta is None or not treat_as_site:
        return False
    ctx.sig.site_text = meta['site']
    ctx.sig.site_source = 'abbreviation'
    if meta.get('route') and not ctx.sig.route_code:
        ctx.set_route(meta['route'])
    ctx.consume(ctx.tokens[i])
    return True
