"""
FHIR Dosage Mapper
==================

Converts between the ParsedSig accumulator and FHIR R5 ``Dosage`` dictionaries.

- to_fhir: ParsedSig -> Dosage (always succeeds, empty fields are omitted)
- internal_from_fhir: Dosage -> ParsedSig (coded route, site, reason and
  instruction values are carried back exactly; free text is taken as-is)

Dosage dictionaries keep FHIR's camelCase JSON keys.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config.sig_config import SNOMED_SYSTEM, EventTiming
from ..config.vocabulary import ROUTE_SNOMED, ROUTE_TEXT
from ..extractors.parse_context import ParsedSig
from .formatter import format_internal

logger = logging.getLogger(__name__)

KNOWN_EVENT_TIMINGS = {
    value for name, value in vars(EventTiming).items() if not name.startswith('_')
}


def _concept(text: Optional[str], coding: Optional[Dict[str, str]]) -> Dict[str, Any]:
    concept: Dict[str, Any] = {}
    if text:
        concept['text'] = text
    if coding and coding.get('code'):
        concept['coding'] = [{
            'system': coding.get('system') or SNOMED_SYSTEM,
            'code': coding['code'],
            'display': coding.get('display'),
        }]
    return concept


def _first_coding(concept: Optional[Dict]) -> Optional[Dict[str, str]]:
    for coding in (concept or {}).get('coding') or []:
        if coding.get('code'):
            return {
                'code': coding['code'],
                'display': coding.get('display'),
                'system': coding.get('system') or SNOMED_SYSTEM,
            }
    return None


# =============================================================================
# PARSED SIG -> DOSAGE
# =============================================================================

def _build_repeat(sig: ParsedSig) -> Dict[str, Any]:
    repeat: Dict[str, Any] = {}
    if sig.frequency is not None:
        repeat['frequency'] = sig.frequency
    if sig.count is not None:
        repeat['count'] = sig.count
    if sig.frequency_max is not None:
        repeat['frequencyMax'] = sig.frequency_max
    if sig.period is not None and sig.period_unit:
        repeat['period'] = sig.period
        repeat['periodUnit'] = sig.period_unit
    if sig.period_max is not None:
        repeat['periodMax'] = sig.period_max
    if sig.day_of_week:
        repeat['dayOfWeek'] = list(sig.day_of_week)
    if sig.when:
        repeat['when'] = list(sig.when)
    return repeat


def _quantity(value: float, unit: Optional[str]) -> Dict[str, Any]:
    quantity: Dict[str, Any] = {'value': value}
    if unit:
        quantity['unit'] = unit
    return quantity


def _build_dose_and_rate(sig: ParsedSig) -> Optional[List[Dict[str, Any]]]:
    if sig.dose_range:
        dose_range = {}
        for bound in ('low', 'high'):
            if sig.dose_range.get(bound) is not None:
                dose_range[bound] = _quantity(sig.dose_range[bound], sig.unit)
        return [{'doseRange': dose_range}]
    if sig.dose is not None:
        return [{'doseQuantity': _quantity(sig.dose, sig.unit)}]
    return None


def to_fhir(sig: ParsedSig, long_text: Optional[str] = None) -> Dict[str, Any]:
    """
    Build a FHIR Dosage from a ParsedSig.

    Args:
        sig: Parsed sig
        long_text: Rendered instruction for ``Dosage.text``; rendered in
            English when omitted

    Returns:
        Dosage dictionary
    """
    dosage: Dict[str, Any] = {}

    repeat = _build_repeat(sig)
    dosage['timing'] = {'repeat': repeat} if repeat else {}
    if sig.timing_code:
        dosage['timing']['code'] = {
            'coding': [{'code': sig.timing_code}],
            'text': sig.timing_code,
        }

    dose_and_rate = _build_dose_and_rate(sig)
    if dose_and_rate:
        dosage['doseAndRate'] = dose_and_rate

    if sig.route_code or sig.route_text:
        route_text = sig.route_text or ROUTE_TEXT.get(sig.route_code)
        route = _concept(route_text, ROUTE_SNOMED.get(sig.route_code))
        if route:
            dosage['route'] = route

    if sig.site_text or sig.site_coding:
        dosage['site'] = _concept(sig.site_text, sig.site_coding)

    if sig.as_needed:
        dosage['asNeededBoolean'] = True
        if sig.as_needed_reason or sig.as_needed_reason_coding:
            dosage['asNeededFor'] = [_concept(sig.as_needed_reason, sig.as_needed_reason_coding)]

    if sig.additional_instructions:
        dosage['additionalInstruction'] = [
            _concept(instruction.get('text'), instruction.get('coding'))
            for instruction in sig.additional_instructions
        ]

    text = long_text if long_text is not None else format_internal(sig, 'long')
    if text:
        dosage['text'] = text
    return dosage


# =============================================================================
# DOSAGE -> PARSED SIG
# =============================================================================

def internal_from_fhir(dosage: Dict[str, Any]) -> ParsedSig:
    """
    Rebuild a ParsedSig from a FHIR Dosage.

    ``when`` values outside the FHIR event-timing code system are dropped.
    A SNOMED route coding known to the route table replaces the route text
    with the table's wording.
    """
    timing = dosage.get('timing') or {}
    repeat = timing.get('repeat') or {}
    code_concept = timing.get('code') or {}
    codings = code_concept.get('coding') or []

    sig = ParsedSig(
        day_of_week=list(repeat.get('dayOfWeek') or []),
        when=[w for w in repeat.get('when') or [] if w in KNOWN_EVENT_TIMINGS],
        timing_code=codings[0].get('code') if codings else None,
        count=repeat.get('count'),
        frequency=repeat.get('frequency'),
        frequency_max=repeat.get('frequencyMax'),
        period=repeat.get('period'),
        period_max=repeat.get('periodMax'),
        period_unit=repeat.get('periodUnit'),
        route_text=(dosage.get('route') or {}).get('text'),
        site_text=(dosage.get('site') or {}).get('text'),
        site_coding=_first_coding(dosage.get('site')),
        as_needed=dosage.get('asNeededBoolean'),
    )

    for coding in (dosage.get('route') or {}).get('coding') or []:
        if coding.get('system') == SNOMED_SYSTEM and coding.get('code') in ROUTE_SNOMED:
            sig.route_code = coding['code']
            sig.route_text = ROUTE_TEXT[coding['code']]
            break

    reasons = dosage.get('asNeededFor') or []
    if reasons:
        sig.as_needed_reason = reasons[0].get('text')
        sig.as_needed_reason_coding = _first_coding(reasons[0])

    for instruction in dosage.get('additionalInstruction') or []:
        entry: Dict[str, Any] = {'text': instruction.get('text')}
        coding = _first_coding(instruction)
        if coding:
            entry['coding'] = coding
            entry['text'] = entry['text'] or coding.get('display')
        sig.additional_instructions.append(entry)

    dose_and_rate = (dosage.get('doseAndRate') or [None])[0] or {}
    if dose_and_rate.get('doseRange'):
        low = dose_and_rate['doseRange'].get('low') or {}
        high = dose_and_rate['doseRange'].get('high') or {}
        if low.get('value') is not None and high.get('value') is not None:
            sig.dose_range = {'low': low['value'], 'high': high['value']}
        sig.unit = low.get('unit') or high.get('unit') or sig.unit
    elif dose_and_rate.get('doseQuantity'):
        quantity = dose_and_rate['doseQuantity']
        if quantity.get('value') is not None:
            sig.dose = quantity['value']
        if quantity.get('unit'):
            sig.unit = quantity['unit']

    logger.debug(f"Rebuilt sig from Dosage: route={sig.route_code} unit={sig.unit}")
    return sig
