"""
Sig Parser
==========

Turns a tokenized sig into a ParsedSig. Each token is offered to ``RULES`` in
order; the first rule that returns True claims it and the parser moves to the
next unconsumed token. Whatever no rule claims is left over for unit, PRN
reason, additional instruction and site extraction.

Rule order matters: ``OD`` must be weighed as once-daily before generic
frequency abbreviations, route phrases are tried before eye-site
abbreviations, and bare numbers are only read as doses after every cadence
and count rule has declined them.
"""

import logging
from typing import Callable, List, Optional, Tuple

from ..config.sig_config import DEFAULT_PARSE_OPTIONS, ParseOptions
from .context import infer_unit_from_context
from .ocular import rule_eye_site, rule_od_once_daily
from .parse_context import (
    ParseContext,
    enforce_household_unit_policy,
    is_number_token,
    normalize_unit,
    parse_number,
)
from .site_extraction import (
    apply_route_from_site,
    collect_additional_instructions,
    extract_prn_reason,
    extract_site,
    infer_unit_from_route_hints,
    rule_route_synonym,
    warn_intravitreal_without_eye,
)
from .timing_rules import (
    COUNT_SUFFIX,
    backfill_code_from_frequency,
    backfill_frequency_from_code,
    expand_meal_timings,
    parse_numeric_range,
    reconcile_meal_timing_specificity,
    rule_compact_q,
    rule_count_based_frequency,
    rule_count_limit,
    rule_day_of_week,
    rule_discouraged_meal_combo,
    rule_event_timing,
    rule_event_timing_combo,
    rule_filler_connector,
    rule_frequency_abbreviation,
    rule_meal_context,
    rule_numeric_cadence,
    rule_separated_q,
    rule_word_frequency,
    scan_multiplicative,
    scan_prn_flag,
    sort_when_values,
)
from .tokenizer import tokenize

logger = logging.getLogger(__name__)

Rule = Callable[[ParseContext, int], bool]


# =============================================================================
# DOSE RULES
# =============================================================================

def _claim_following_unit(ctx: ParseContext, i: int):
    unit_token = ctx.token_at(i + 1)
    if unit_token is None or ctx.is_consumed(unit_token):
        return
    unit = normalize_unit(unit_token.lower, ctx.options)
    if unit:
        ctx.sig.unit = unit
        ctx.consume(unit_token)


def rule_dose_range(ctx: ParseContext, i: int) -> bool:
    """``1-2`` tablets."""
    token = ctx.tokens[i]
    dose_range = parse_numeric_range(token.lower)
    if not dose_range:
        return False
    if ctx.sig.dose_range is None:
        ctx.sig.dose_range = dose_range
    ctx.consume(token)
    _claim_following_unit(ctx, i)
    return True


def rule_dose_number(ctx: ParseContext, i: int) -> bool:
    token = ctx.tokens[i]
    if not is_number_token(token.lower):
        return False
    if ctx.sig.dose is None:
        ctx.sig.dose = parse_number(token.original)
    ctx.consume(token)
    _claim_following_unit(ctx, i)
    return True


def rule_dose_times(ctx: ParseContext, i: int) -> bool:
    """``2x`` on its own is a dose of two."""
    token = ctx.tokens[i]
    match = COUNT_SUFFIX.match(token.lower)
    if not match:
        return False
    if ctx.sig.dose is None:
        ctx.sig.dose = parse_number(match.group(1))
    ctx.consume(token)
    return True


# =============================================================================
# RULE ORDER
# =============================================================================

RULES: List[Tuple[str, Rule]] = [
    ('discouraged_meal_combo', rule_discouraged_meal_combo),
    ('separated_q', rule_separated_q),
    ('numeric_cadence', rule_numeric_cadence),
    ('od_once_daily', rule_od_once_daily),
    ('frequency_abbreviation', rule_frequency_abbreviation),
    ('compact_q', rule_compact_q),
    ('meal_context', rule_meal_context),
    ('event_timing_combo', rule_event_timing_combo),
    ('event_timing', rule_event_timing),
    ('day_of_week', rule_day_of_week),
    ('route_synonym', rule_route_synonym),
    ('eye_site', rule_eye_site),
    ('count_limit', rule_count_limit),
    ('count_based_frequency', rule_count_based_frequency),
    ('dose_range', rule_dose_range),
    ('dose_number', rule_dose_number),
    ('dose_times', rule_dose_times),
    ('word_frequency', rule_word_frequency),
    ('filler_connector', rule_filler_connector),
]


# =============================================================================
# POST-LOOP PASSES
# =============================================================================

def _resolve_unit(ctx: ParseContext):
    """Trailing unit words, then medication context, then route/site defaults."""
    sig = ctx.sig
    options = ctx.options
    if sig.unit is None:
        for token in ctx.leftover_tokens():
            unit = normalize_unit(token.lower, options)
            if unit:
                sig.unit = unit
                ctx.consume(token)
                break
    if sig.unit is None:
        sig.unit = enforce_household_unit_policy(infer_unit_from_context(options.context), options)
    if sig.unit is None:
        fallback = enforce_household_unit_policy(infer_unit_from_route_hints(ctx), options)
        if fallback:
            sig.unit = fallback


def run_rules(ctx: ParseContext, rules: Optional[List[Tuple[str, Rule]]] = None):
    """Offer every unconsumed token to the rules, first match wins."""
    rules = rules or RULES
    for i, token in enumerate(ctx.tokens):
        if ctx.is_consumed(token):
            continue
        for name, rule in rules:
            if rule(ctx, i):
                logger.debug(f"rule {name} -> {token.original!r}")
                break


def parse_internal(text: str, options: Optional[ParseOptions] = None) -> ParseContext:
    """
    Parse a sig into a ParseContext holding the ParsedSig accumulator.

    Args:
        text: Raw sig text
        options: Parse options (defaults to DEFAULT_PARSE_OPTIONS)

    Returns:
        The context after all rules and post-passes have run

    Raises:
        DiscouragedTokenError: If a discouraged token appears while
            ``allow_discouraged`` is False
    """
    options = options or DEFAULT_PARSE_OPTIONS
    tokens = tokenize(text)
    ctx = ParseContext(text, tokens, options)
    if not tokens:
        return ctx
    logger.debug(f"Tokens: {[t.original for t in tokens]}")

    scan_prn_flag(ctx)
    scan_multiplicative(ctx)
    run_rules(ctx)

    _resolve_unit(ctx)
    backfill_frequency_from_code(ctx)
    backfill_code_from_frequency(ctx)
    reconcile_meal_timing_specificity(ctx)
    expand_meal_timings(ctx)
    sort_when_values(ctx)

    extract_prn_reason(ctx)
    collect_additional_instructions(ctx)
    extract_site(ctx)
    apply_route_from_site(ctx)
    warn_intravitreal_without_eye(ctx)

    leftover = [t.original for t in ctx.leftover_tokens()]
    if leftover:
        logger.debug(f"Leftover: {' '.join(leftover)!r}")
    return ctx
