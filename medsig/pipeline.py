"""
Sig Pipeline
============

Public entry points tying the parser, coding resolvers, formatter and FHIR
mapper together.

Usage:
    from medsig import parse_sig

    result = parse_sig("1 tab po bid prn pain")
    result.fhir["timing"]["code"]["text"]   # "BID"
    result.long_text                        # "Take 1 tablet by mouth twice daily as needed for pain."
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config.sig_config import DEFAULT_PARSE_OPTIONS, FormatOptions, ParseOptions
from .extractors.parse_context import ParseContext, ParsedSig
from .extractors.sig_parser import parse_internal
from .extractors.site_coding import (
    apply_prn_reason_coding,
    apply_prn_reason_coding_async,
    apply_site_coding,
    apply_site_coding_async,
)
from .transformers.fhir_mapper import internal_from_fhir, to_fhir
from .transformers.formatter import format_internal
from .validation.lint import LintIssue, collect_lint_issues

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """FHIR Dosage plus rendered text, warnings and parse metadata."""

    fhir: Dict[str, Any]
    short_text: str
    long_text: str
    warnings: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LintResult:
    result: ParseResult
    issues: List[LintIssue] = field(default_factory=list)


def _normalized_meta(sig: ParsedSig) -> Dict[str, Optional[str]]:
    return {'route': sig.route_code, 'unit': sig.unit}


def _build_result(ctx: ParseContext, options: ParseOptions) -> ParseResult:
    sig = ctx.sig
    short_text = format_internal(sig, 'short', options.locale, options.i18n)
    long_text = format_internal(sig, 'long', options.locale, options.i18n)
    fhir = to_fhir(sig, long_text)

    leftover = ctx.leftover_tokens()
    meta = {
        'consumed_tokens': [t.original for t in ctx.tokens if ctx.is_consumed(t)],
        'leftover_text': ' '.join(t.original for t in leftover) if leftover else None,
        'normalized': _normalized_meta(sig),
    }
    if sig.site_lookups:
        meta['site_lookups'] = list(sig.site_lookups)
    if sig.prn_reason_lookups:
        meta['prn_reason_lookups'] = list(sig.prn_reason_lookups)

    return ParseResult(fhir=fhir, short_text=short_text, long_text=long_text,
                       warnings=list(sig.warnings), meta=meta)


def _parse(text: str, options: ParseOptions) -> ParseContext:
    ctx = parse_internal(text, options)
    apply_site_coding(ctx.sig, options)
    apply_prn_reason_coding(ctx.sig, options)
    return ctx


def parse_sig(text: str, options: Optional[ParseOptions] = None) -> ParseResult:
    """
    Parse a sig into a FHIR Dosage with short and long renderings.

    Site and PRN reason resolvers must be synchronous here; use
    ``parse_sig_async`` for resolvers that return awaitables.

    Args:
        text: Raw sig text
        options: Parse options (defaults to DEFAULT_PARSE_OPTIONS)

    Returns:
        ParseResult

    Raises:
        DiscouragedTokenError: If a discouraged token appears while
            ``allow_discouraged`` is False
        ResolverUsageError: If a resolver returns an awaitable
    """
    options = options or DEFAULT_PARSE_OPTIONS
    return _build_result(_parse(text, options), options)


async def parse_sig_async(text: str, options: Optional[ParseOptions] = None) -> ParseResult:
    """Like ``parse_sig`` but awaits site and PRN reason resolvers in order."""
    options = options or DEFAULT_PARSE_OPTIONS
    ctx = parse_internal(text, options)
    await apply_site_coding_async(ctx.sig, options)
    await apply_prn_reason_coding_async(ctx.sig, options)
    return _build_result(ctx, options)


def format_sig(dosage: Dict[str, Any], style: str = 'short',
               options: Optional[FormatOptions] = None) -> str:
    """Render a FHIR Dosage as ``short`` or ``long`` text."""
    options = options or FormatOptions()
    return format_internal(internal_from_fhir(dosage), style, options.locale, options.i18n)


def from_fhir_dosage(dosage: Dict[str, Any], options: Optional[FormatOptions] = None) -> ParseResult:
    """
    Wrap an existing Dosage in a ParseResult.

    The Dosage is returned untouched; ``long_text`` prefers ``Dosage.text``.
    """
    options = options or FormatOptions()
    sig = internal_from_fhir(dosage)
    short_text = format_internal(sig, 'short', options.locale, options.i18n)
    long_text = dosage.get('text') or format_internal(sig, 'long', options.locale, options.i18n)
    return ParseResult(
        fhir=dosage,
        short_text=short_text,
        long_text=long_text,
        warnings=[],
        meta={'consumed_tokens': [], 'leftover_text': None, 'normalized': _normalized_meta(sig)},
    )


def lint_sig(text: str, options: Optional[ParseOptions] = None) -> LintResult:
    """Parse a sig and report every unrecognised segment."""
    options = options or DEFAULT_PARSE_OPTIONS
    ctx = _parse(text, options)
    return LintResult(result=_build_result(ctx, options), issues=collect_lint_issues(ctx))
