"""
Site and PRN Reason Coding
==========================

Resolves the site and PRN reason lookup requests produced by the parser to
coded definitions. Sources are consulted in order: explicit selections,
caller maps, caller resolvers (first truthy result wins), built-in tables.
When nothing resolves, or the phrase was written as a ``{probe}``, deduped
suggestions are collected into ``site_lookups`` / ``prn_reason_lookups``.

The synchronous path rejects resolvers that return awaitables; the async
path awaits them one at a time in registration order.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..config.sig_config import SNOMED_SYSTEM, ParseOptions, Resolver, SyncResolver
from ..config.vocabulary import (
    DEFAULT_BODY_SITE_SNOMED,
    DEFAULT_PRN_REASON_DEFINITIONS,
    DEFAULT_PRN_REASON_ENTRIES,
    normalize_body_site_key,
    normalize_prn_reason_key,
)
from ..errors import ResolverUsageError
from .parse_context import LookupRequest, ParsedSig
from .site_extraction import lookup_body_site_definition

logger = logging.getLogger(__name__)


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _coding_from(definition: Dict) -> Optional[Dict[str, str]]:
    coding = (definition or {}).get('coding') or {}
    if not coding.get('code'):
        return None
    return {
        'code': coding['code'],
        'display': coding.get('display'),
        'system': coding.get('system') or SNOMED_SYSTEM,
    }


def _pick_selection(selections: Optional[List[Dict]], request: LookupRequest,
                    normalize: Callable[[str], str]) -> Optional[Dict]:
    """First selection whose range, canonical phrase or text matches the request."""
    if not selections:
        return None
    normalized_text = normalize(request.text)
    for selection in selections:
        if not selection:
            continue
        matched = False
        if selection.get('range'):
            if not request.range or tuple(selection['range']) != tuple(request.range):
                continue
            matched = True
        if selection.get('canonical'):
            if normalize(selection['canonical']) != request.canonical:
                continue
            matched = True
        elif selection.get('text'):
            normalized = normalize(selection['text'])
            if normalized != request.canonical and normalized != normalized_text:
                continue
            matched = True
        if matched:
            return selection.get('resolution')
    return None


def _iter_suggestion_result(result) -> List[Dict]:
    if not result:
        return []
    if isinstance(result, list):
        return result
    if isinstance(result, dict) and 'suggestions' in result:
        return result['suggestions'] or []
    return [result]


# =============================================================================
# CODING TARGETS
# =============================================================================

@dataclass
class _CodingTarget:
    """What varies between site and PRN reason resolution."""

    label: str
    normalize: Callable[[str], str]
    request_attr: str
    lookups_attr: str
    resolver_message: str
    suggestion_message: str

    def request(self, sig: ParsedSig) -> Optional[LookupRequest]:
        return getattr(sig, self.request_attr)

    def lookups(self, sig: ParsedSig) -> List[Dict[str, Any]]:
        return getattr(sig, self.lookups_attr)


class _SiteTarget(_CodingTarget):

    def selections(self, options: ParseOptions):
        return options.site_code_selections

    def resolvers(self, options: ParseOptions):
        return options.site_code_resolvers or []

    def suggestion_resolvers(self, options: ParseOptions):
        return options.site_code_suggestion_resolvers or []

    def custom(self, options: ParseOptions, canonical: str):
        return lookup_body_site_definition(options.site_code_map, canonical)

    def default(self, canonical: str):
        return DEFAULT_BODY_SITE_SNOMED.get(canonical) if canonical else None

    def apply(self, sig: ParsedSig, definition: Optional[Dict]):
        if definition is None:
            sig.site_coding = None
            return
        sig.site_coding = _coding_from(definition)
        if definition.get('text'):
            sig.site_text = definition['text']
        elif not sig.site_text and sig.site_lookup_request and sig.site_lookup_request.text:
            sig.site_text = sig.site_lookup_request.text

    def to_suggestion(self, definition: Dict) -> Optional[Dict]:
        coding = _coding_from(definition)
        if not coding:
            return None
        return {'coding': coding, 'text': definition.get('text')}

    def add_suggestion(self, bucket: Dict[str, Dict], suggestion: Optional[Dict]):
        coding = _coding_from(suggestion) if suggestion else None
        if not coding:
            return
        key = f"{coding['system']}|{coding['code']}"
        if key not in bucket:
            bucket[key] = {'coding': coding, 'text': suggestion.get('text')}

    def default_suggestions(self, request: LookupRequest) -> List[Dict]:
        return []


class _PrnReasonTarget(_CodingTarget):

    def selections(self, options: ParseOptions):
        return options.prn_reason_selections

    def resolvers(self, options: ParseOptions):
        return options.prn_reason_resolvers or []

    def suggestion_resolvers(self, options: ParseOptions):
        return options.prn_reason_suggestion_resolvers or []

    def custom(self, options: ParseOptions, canonical: str):
        return lookup_prn_reason_definition(options.prn_reason_map, canonical)

    def default(self, canonical: str):
        return DEFAULT_PRN_REASON_DEFINITIONS.get(canonical) if canonical else None

    def apply(self, sig: ParsedSig, definition: Optional[Dict]):
        if definition is None:
            sig.as_needed_reason_coding = None
            return
        sig.as_needed_reason_coding = _coding_from(definition)
        if definition.get('text') and not sig.as_needed_reason:
            sig.as_needed_reason = definition['text']

    def to_suggestion(self, definition: Dict) -> Optional[Dict]:
        coding = _coding_from(definition)
        text = definition.get('text') or ((definition.get('coding') or {}).get('display'))
        suggestion = {'text': text}
        if coding:
            suggestion['coding'] = coding
        return suggestion

    def add_suggestion(self, bucket: Dict[str, Dict], suggestion: Optional[Dict]):
        if not suggestion:
            return
        coding = _coding_from(suggestion)
        if coding:
            key = f"{coding['system']}|{coding['code']}"
        elif suggestion.get('text'):
            key = f"text:{suggestion['text'].lower()}"
        else:
            return
        if key not in bucket:
            bucket[key] = suggestion

    def default_suggestions(self, request: LookupRequest) -> List[Dict]:
        return collect_default_prn_reason_definitions(request)


SITE_TARGET = _SiteTarget(
    label='site',
    normalize=normalize_body_site_key,
    request_attr='site_lookup_request',
    lookups_attr='site_lookups',
    resolver_message=("Site code resolver returned an awaitable; use parse_sig_async "
                      "for asynchronous site resolution."),
    suggestion_message=("Site code suggestion resolver returned an awaitable; use "
                        "parse_sig_async for asynchronous site suggestions."),
)

PRN_REASON_TARGET = _PrnReasonTarget(
    label='PRN reason',
    normalize=normalize_prn_reason_key,
    request_attr='prn_reason_lookup_request',
    lookups_attr='prn_reason_lookups',
    resolver_message=("PRN reason resolver returned an awaitable; use parse_sig_async "
                      "for asynchronous PRN reason resolution."),
    suggestion_message=("PRN reason suggestion resolver returned an awaitable; use "
                        "parse_sig_async for asynchronous PRN reason suggestions."),
)


def lookup_prn_reason_definition(reason_map: Optional[Dict[str, Dict]],
                                 canonical: str) -> Optional[Dict]:
    """Find a caller PRN reason definition by key, normalised key or alias."""
    if not reason_map:
        return None
    direct = reason_map.get(canonical)
    if direct:
        return direct
    for key, definition in reason_map.items():
        if normalize_prn_reason_key(key) == canonical:
            return definition
        for alias in (definition or {}).get('aliases') or []:
            if normalize_prn_reason_key(alias) == canonical:
                return definition
    return None


def collect_default_prn_reason_definitions(request: LookupRequest) -> List[Dict]:
    """
    Built-in PRN reasons related to the request phrase.

    Falls back to the whole table when nothing matches so a picker always
    has something to offer.
    """
    canonical = request.canonical
    normalized = request.normalized
    found: List[Dict] = []

    def add(definition):
        if not any(definition is seen for seen in found):
            found.append(definition)

    for entry in DEFAULT_PRN_REASON_ENTRIES:
        entry_canonical = entry['canonical']
        if not entry_canonical:
            continue
        if entry_canonical == canonical:
            add(entry['definition'])
            continue
        if canonical and (canonical in entry_canonical or entry_canonical in canonical):
            add(entry['definition'])
            continue
        for term in entry['terms']:
            normalized_term = normalize_prn_reason_key(term)
            if not normalized_term:
                continue
            if (canonical and normalized_term in canonical) or normalized_term in normalized:
                add(entry['definition'])
                break
    if not found:
        for entry in DEFAULT_PRN_REASON_ENTRIES:
            add(entry['definition'])
    return found


# =============================================================================
# RESOLUTION
# =============================================================================

def _prepare(target: _CodingTarget, sig: ParsedSig, options: ParseOptions):
    target.lookups(sig).clear()
    request = target.request(sig)
    if request is None:
        return None, None, None
    selection = _pick_selection(target.selections(options), request, target.normalize)
    custom = target.custom(options, request.canonical)
    return request, selection, custom


def _finish(target: _CodingTarget, sig: ParsedSig, request: LookupRequest,
            resolution: Optional[Dict], source: str) -> bool:
    """Apply the resolution; True when suggestions should be gathered."""
    target.apply(sig, resolution)
    if resolution is not None:
        logger.debug(f"{target.label} {request.canonical!r} resolved from {source}")
    return request.is_probe or resolution is None


def _seed_suggestions(target: _CodingTarget, request: LookupRequest, selection, custom,
                      default) -> Dict[str, Dict]:
    bucket: Dict[str, Dict] = {}
    for definition in (selection, custom, default):
        if definition:
            target.add_suggestion(bucket, target.to_suggestion(definition))
    for definition in target.default_suggestions(request):
        target.add_suggestion(bucket, target.to_suggestion(definition))
    return bucket


def _record(target: _CodingTarget, sig: ParsedSig, request: LookupRequest,
            bucket: Dict[str, Dict]):
    suggestions = list(bucket.values())
    if suggestions or request.is_probe:
        target.lookups(sig).append({'request': request, 'suggestions': suggestions})


def _call_sync(resolver: SyncResolver, request: LookupRequest, message: str) -> Any:
    """Call a resolver on the synchronous path, rejecting awaitable results."""
    result = resolver(request)
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise ResolverUsageError(message)
    return result


async def _call_async(resolver: Resolver, request: LookupRequest) -> Any:
    result = resolver(request)
    if inspect.isawaitable(result):
        result = await result
    return result


def resolve_coding(target: _CodingTarget, sig: ParsedSig, options: ParseOptions):
    """
    Synchronous resolution for one target.

    Raises:
        ResolverUsageError: If a resolver returns an awaitable
    """
    request, selection, custom = _prepare(target, sig, options)
    if request is None:
        return
    resolution = selection or custom
    source = 'selection' if selection else 'map'
    if not resolution:
        for resolver in target.resolvers(options):
            result = _call_sync(resolver, request, target.resolver_message)
            if result:
                resolution, source = result, 'resolver'
                break
    default = target.default(request.canonical)
    if not resolution and default:
        resolution, source = default, 'built-in table'

    if not _finish(target, sig, request, resolution or None, source):
        return
    bucket = _seed_suggestions(target, request, selection, custom, default)
    for resolver in target.suggestion_resolvers(options):
        result = _call_sync(resolver, request, target.suggestion_message)
        for suggestion in _iter_suggestion_result(result):
            target.add_suggestion(bucket, suggestion)
    _record(target, sig, request, bucket)


async def resolve_coding_async(target: _CodingTarget, sig: ParsedSig, options: ParseOptions):
    """Asynchronous resolution; sync and async resolvers are awaited in registration order."""
    request, selection, custom = _prepare(target, sig, options)
    if request is None:
        return
    resolution = selection or custom
    source = 'selection' if selection else 'map'
    if not resolution:
        for resolver in target.resolvers(options):
            result = await _call_async(resolver, request)
            if result:
                resolution, source = result, 'resolver'
                break
    default = target.default(request.canonical)
    if not resolution and default:
        resolution, source = default, 'built-in table'

    if not _finish(target, sig, request, resolution or None, source):
        return
    bucket = _seed_suggestions(target, request, selection, custom, default)
    for resolver in target.suggestion_resolvers(options):
        result = await _call_async(resolver, request)
        for suggestion in _iter_suggestion_result(result):
            target.add_suggestion(bucket, suggestion)
    _record(target, sig, request, bucket)


# =============================================================================
# ENTRY POINTS
# =============================================================================

def apply_site_coding(sig: ParsedSig, options: ParseOptions):
    resolve_coding(SITE_TARGET, sig, options)


def apply_prn_reason_coding(sig: ParsedSig, options: ParseOptions):
    resolve_coding(PRN_REASON_TARGET, sig, options)


async def apply_site_coding_async(sig: ParsedSig, options: ParseOptions):
    await resolve_coding_async(SITE_TARGET, sig, options)


async def apply_prn_reason_coding_async(sig: ParsedSig, options: ParseOptions):
    await resolve_coding_async(PRN_REASON_TARGET, sig, options)
