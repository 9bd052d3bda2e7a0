"""
Sig Vocabulary
==============

Immutable lookup dictionaries consumed by the parser, formatter and
suggestion generator. Large declarative tables come from the YAML files in
this directory; shorthand tables that carry structure (timing descriptors,
unit prefix expansion) are defined here.
"""

import re
from typing import Dict, List, NamedTuple, Optional

from .sig_config import (
    SNOMED_SYSTEM,
    EventTiming,
    PeriodUnit,
    RouteCode,
    load_route_codes,
    load_body_sites,
    load_prn_reasons,
    load_additional_instructions,
    load_dosage_forms,
)


# =============================================================================
# KEY NORMALIZATION
# =============================================================================

_WHITESPACE = re.compile(r'\s+')
_LOOKUP_PUNCTUATION = re.compile(r'[{}()\[\].,;:!?"]')


def normalize_body_site_key(value: Optional[str]) -> str:
    """Trim, lower-case and collapse whitespace for body site lookups."""
    if not value:
        return ""
    cleaned = value.replace('{', ' ').replace('}', ' ')
    return _WHITESPACE.sub(' ', cleaned).strip().lower()


def normalize_prn_reason_key(value: Optional[str]) -> str:
    """Canonical key for PRN reason lookups (punctuation stripped)."""
    if not value:
        return ""
    cleaned = _LOOKUP_PUNCTUATION.sub(' ', value)
    return _WHITESPACE.sub(' ', cleaned).strip().lower()


def normalize_additional_instruction_key(value: Optional[str]) -> str:
    """Canonical key for additional instruction lookups."""
    return normalize_prn_reason_key(value)


# =============================================================================
# ROUTES
# =============================================================================

class RouteSynonym(NamedTuple):
    code: str
    text: str


_QUALIFIER = re.compile(r'\s*\(qualifier value\)', re.IGNORECASE)
_ROUTE_SUFFIX = re.compile(r'\b(route|use)\b', re.IGNORECASE)


def default_route_text(display: str) -> str:
    """Strip qualifier and route/use wording from a SNOMED display."""
    cleaned = _QUALIFIER.sub('', display)
    cleaned = _ROUTE_SUFFIX.sub('', cleaned)
    return _WHITESPACE.sub(' ', cleaned).strip().lower()


def _build_route_tables():
    data = load_route_codes()
    overrides = {str(k): v for k, v in data.get('text_overrides', {}).items()}
    snomed: Dict[str, Dict[str, str]] = {}
    for entry in data['routes']:
        code = str(entry['code'])
        if code not in snomed:
            snomed[code] = {'code': code, 'display': entry['display'], 'system': SNOMED_SYSTEM}
    text = {code: overrides.get(code, default_route_text(meta['display']))
            for code, meta in snomed.items()}
    return snomed, text


ROUTE_SNOMED, ROUTE_TEXT = _build_route_tables()


def _build_route_synonyms() -> Dict[str, RouteSynonym]:
    synonyms: Dict[str, RouteSynonym] = {}

    def assign(key: str, code: str):
        normalized = key.strip().lower()
        if not normalized or normalized in synonyms:
            return
        synonyms[normalized] = RouteSynonym(code, ROUTE_TEXT[code])

    def register_variants(value: str, code: str):
        assign(value, code)
        assign(_WHITESPACE.sub(' ', re.sub(r'[()]', ' ', value)).strip(), code)
        assign(_WHITESPACE.sub(' ', value.replace(',', ' ')).strip(), code)
        assign(_WHITESPACE.sub(' ', re.sub(r'[().,-]', ' ', value)).strip(), code)

    for phrase, code in load_route_codes().get('synonyms', []):
        register_variants(str(phrase), str(code))

    for code, meta in ROUTE_SNOMED.items():
        display = meta['display'].lower()
        register_variants(display, code)
        without_qualifier = re.sub(r'\s*\(qualifier value\)', '', display).strip()
        register_variants(without_qualifier, code)
        without_suffix = _WHITESPACE.sub(' ', re.sub(r'\b(route|use)\b', '', without_qualifier)).strip()
        register_variants(without_suffix, code)
        register_variants(re.sub(r'^per\s+', '', without_suffix).strip(), code)

    return synonyms


DEFAULT_ROUTE_SYNONYMS = _build_route_synonyms()


# =============================================================================
# UNITS
# =============================================================================

# (canonical, abbreviations, name prefix)
UNIT_PREFIXES = [
    ('', [''], ''),
    ('m', ['m'], 'milli'),
    ('mc', ['mc', 'µ', 'μ', 'u'], 'micro'),
    ('n', ['n'], 'nano'),
    ('k', ['k'], 'kilo'),
]

# (canonical, abbreviations, [(singular, plural)])
METRIC_UNIT_BASES = [
    ('g', ['g'], [('gram', 'grams'), ('gramme', 'grammes')]),
    ('L', ['l'], [('liter', 'liters'), ('litre', 'litres')]),
]

HOUSEHOLD_VOLUME_UNITS = ['tsp', 'tbsp']

STATIC_UNIT_SYNONYMS = {
    'tab': 'tab',
    'tabs': 'tab',
    'tablet': 'tab',
    'tablets': 'tab',
    'cap': 'cap',
    'caps': 'cap',
    'capsule': 'cap',
    'capsules': 'cap',
    'puff': 'puff',
    'puffs': 'puff',
    'spray': 'spray',
    'sprays': 'spray',
    'drop': 'drop',
    'drops': 'drop',
    'patch': 'patch',
    'patches': 'patch',
    'supp': 'suppository',
    'suppository': 'suppository',
    'suppositories': 'suppository',
    'tsp': 'tsp',
    'tsp.': 'tsp',
    'tsps': 'tsp',
    'tsps.': 'tsp',
    'teaspoon': 'tsp',
    'teaspoons': 'tsp',
    'tbsp': 'tbsp',
    'tbsp.': 'tbsp',
    'tbs': 'tbsp',
    'tbs.': 'tbsp',
    'tablespoon': 'tbsp',
    'tablespoons': 'tbsp',
}


def _build_unit_synonyms() -> Dict[str, str]:
    synonyms = dict(STATIC_UNIT_SYNONYMS)

    def assign(key: str, canonical: str):
        normalized = key.strip().lower()
        if normalized and normalized not in synonyms:
            synonyms[normalized] = canonical

    for prefix_canonical, prefix_abbrevs, prefix_name in UNIT_PREFIXES:
        for base_canonical, base_abbrevs, base_names in METRIC_UNIT_BASES:
            canonical = f"{prefix_canonical}{base_canonical}"
            for prefix_abbrev in prefix_abbrevs:
                for base_abbrev in base_abbrevs:
                    token = f"{prefix_abbrev}{base_abbrev}"
                    assign(token, canonical)
                    assign(f"{token}s", canonical)
            for singular, plural in base_names:
                assign(f"{prefix_name}{singular}", canonical)
                assign(f"{prefix_name}{plural}", canonical)
                if prefix_name:
                    assign(f"{prefix_name}-{singular}", canonical)
                    assign(f"{prefix_name}-{plural}", canonical)
    return synonyms


DEFAULT_UNIT_SYNONYMS = _build_unit_synonyms()


# =============================================================================
# TIMING
# =============================================================================

TIMING_ABBREVIATIONS = {
    'qd': {'code': 'QD', 'frequency': 1, 'period': 1, 'period_unit': PeriodUnit.DAY, 'discouraged': 'QD'},
    'qod': {'code': 'QOD', 'period': 2, 'period_unit': PeriodUnit.DAY, 'discouraged': 'QOD'},
    'od': {'code': 'QD', 'frequency': 1, 'period': 1, 'period_unit': PeriodUnit.DAY},
    'ad': {'period': 2, 'period_unit': PeriodUnit.DAY, 'discouraged': 'AD'},
    'bid': {'code': 'BID', 'frequency': 2, 'period': 1, 'period_unit': PeriodUnit.DAY},
    'tid': {'code': 'TID', 'frequency': 3, 'period': 1, 'period_unit': PeriodUnit.DAY},
    'qid': {'code': 'QID', 'frequency': 4, 'period': 1, 'period_unit': PeriodUnit.DAY},
    'q1h': {'code': 'Q1H', 'period': 1, 'period_unit': PeriodUnit.HOUR},
    'q2h': {'code': 'Q2H', 'period': 2, 'period_unit': PeriodUnit.HOUR},
    'q3h': {'code': 'Q3H', 'period': 3, 'period_unit': PeriodUnit.HOUR},
    'q4h': {'code': 'Q4H', 'period': 4, 'period_unit': PeriodUnit.HOUR},
    'q6h': {'code': 'Q6H', 'period': 6, 'period_unit': PeriodUnit.HOUR},
    'q8h': {'code': 'Q8H', 'period': 8, 'period_unit': PeriodUnit.HOUR},
    'q12h': {'code': 'Q12H', 'period': 12, 'period_unit': PeriodUnit.HOUR},
    'q24h': {'code': 'Q24H', 'period': 24, 'period_unit': PeriodUnit.HOUR},
    'q1d': {'code': 'QD', 'frequency': 1, 'period': 1, 'period_unit': PeriodUnit.DAY},
    'q2d': {'code': 'Q2D', 'period': 2, 'period_unit': PeriodUnit.DAY},
    'q3d': {'code': 'Q3D', 'period': 3, 'period_unit': PeriodUnit.DAY},
    'q1wk': {'code': 'WK', 'period': 1, 'period_unit': PeriodUnit.WEEK},
    'q1w': {'code': 'WK', 'period': 1, 'period_unit': PeriodUnit.WEEK},
    'q2wk': {'code': 'Q2WK', 'period': 2, 'period_unit': PeriodUnit.WEEK},
    'q1mo': {'code': 'MO', 'period': 1, 'period_unit': PeriodUnit.MONTH},
    'q2mo': {'code': 'Q2MO', 'period': 2, 'period_unit': PeriodUnit.MONTH},
    'wk': {'code': 'WK', 'period': 1, 'period_unit': PeriodUnit.WEEK},
    'weekly': {'code': 'WK', 'period': 1, 'period_unit': PeriodUnit.WEEK},
    'mo': {'code': 'MO', 'period': 1, 'period_unit': PeriodUnit.MONTH},
    'monthly': {'code': 'MO', 'period': 1, 'period_unit': PeriodUnit.MONTH},
    'am': {'code': 'AM', 'when': [EventTiming.MORNING]},
    'pm': {'code': 'PM', 'when': [EventTiming.EVENING]},
}

EVENT_TIMING_TOKENS = {
    'ac': EventTiming.BEFORE_MEAL,
    'acm': EventTiming.BEFORE_BREAKFAST,
    'acl': EventTiming.BEFORE_LUNCH,
    'acd': EventTiming.BEFORE_LUNCH,
    'acv': EventTiming.BEFORE_DINNER,
    'pc': EventTiming.AFTER_MEAL,
    'pcm': EventTiming.AFTER_BREAKFAST,
    'pcl': EventTiming.AFTER_LUNCH,
    'pcd': EventTiming.AFTER_LUNCH,
    'pcv': EventTiming.AFTER_DINNER,
    'wm': EventTiming.MEAL,
    'with meals': EventTiming.MEAL,
    '@m': EventTiming.MEAL,
    '@meal': EventTiming.MEAL,
    '@meals': EventTiming.MEAL,
    'cm': EventTiming.BREAKFAST,
    'cd': EventTiming.LUNCH,
    'cv': EventTiming.DINNER,
    'am': EventTiming.MORNING,
    'morning': EventTiming.MORNING,
    'morn': EventTiming.MORNING,
    'noon': EventTiming.NOON,
    'pm': EventTiming.EVENING,
    'evening': EventTiming.EVENING,
    'night': EventTiming.NIGHT,
    'hs': EventTiming.BEFORE_SLEEP,
    'bedtime': EventTiming.BEFORE_SLEEP,
    'wake': EventTiming.WAKE,
    'waking': EventTiming.WAKE,
    'stat': EventTiming.IMMEDIATE,
}

COMBO_EVENT_TIMINGS = {
    'early morning': EventTiming.EARLY_MORNING,
    'late morning': EventTiming.LATE_MORNING,
    'early afternoon': EventTiming.EARLY_AFTERNOON,
    'late afternoon': EventTiming.LATE_AFTERNOON,
    'early evening': EventTiming.EARLY_EVENING,
    'late evening': EventTiming.LATE_EVENING,
    'after sleep': EventTiming.AFTER_SLEEP,
    'upon waking': EventTiming.WAKE,
}

MEAL_KEYWORDS = {
    'breakfast': {'pc': EventTiming.AFTER_BREAKFAST, 'ac': EventTiming.BEFORE_BREAKFAST},
    'lunch': {'pc': EventTiming.AFTER_LUNCH, 'ac': EventTiming.BEFORE_LUNCH},
    'dinner': {'pc': EventTiming.AFTER_DINNER, 'ac': EventTiming.BEFORE_DINNER},
    'supper': {'pc': EventTiming.AFTER_DINNER, 'ac': EventTiming.BEFORE_DINNER},
}

DISCOURAGED_TOKENS = {
    'qd': 'QD',
    'qod': 'QOD',
    'od': 'OD',
    'bld': 'BLD',
    'b-l-d': 'BLD',
    'ad': 'AD',
}

DAY_OF_WEEK_TOKENS = {
    'monday': 'mon',
    'mon': 'mon',
    'tuesday': 'tue',
    'tue': 'tue',
    'wednesday': 'wed',
    'wed': 'wed',
    'thursday': 'thu',
    'thu': 'thu',
    'friday': 'fri',
    'fri': 'fri',
    'saturday': 'sat',
    'sat': 'sat',
    'sunday': 'sun',
    'sun': 'sun',
}

WORD_FREQUENCIES = {
    'daily': {'frequency': 1, 'period_unit': PeriodUnit.DAY},
    'once daily': {'frequency': 1, 'period_unit': PeriodUnit.DAY},
    'once': {'frequency': 1, 'period_unit': PeriodUnit.DAY},
    'twice': {'frequency': 2, 'period_unit': PeriodUnit.DAY},
    'twice daily': {'frequency': 2, 'period_unit': PeriodUnit.DAY},
    'three times': {'frequency': 3, 'period_unit': PeriodUnit.DAY},
    'three times daily': {'frequency': 3, 'period_unit': PeriodUnit.DAY},
}

# Approximate seconds past midnight used to order `when` codes
DEFAULT_EVENT_TIMING_WEIGHTS = {
    EventTiming.IMMEDIATE: 0,
    EventTiming.WAKE: 6 * 3600,
    EventTiming.AFTER_SLEEP: 6 * 3600 + 15 * 60,
    EventTiming.EARLY_MORNING: 7 * 3600,
    EventTiming.BEFORE_MEAL: 7 * 3600 + 30 * 60,
    EventTiming.BEFORE_BREAKFAST: 7 * 3600 + 45 * 60,
    EventTiming.MORNING: 8 * 3600,
    EventTiming.BREAKFAST: 8 * 3600 + 15 * 60,
    EventTiming.MEAL: 8 * 3600 + 30 * 60,
    EventTiming.AFTER_BREAKFAST: 9 * 3600,
    EventTiming.AFTER_MEAL: 9 * 3600 + 15 * 60,
    EventTiming.LATE_MORNING: 10 * 3600 + 30 * 60,
    EventTiming.BEFORE_LUNCH: 11 * 3600 + 45 * 60,
    EventTiming.NOON: 12 * 3600,
    EventTiming.LUNCH: 12 * 3600 + 15 * 60,
    EventTiming.AFTER_LUNCH: 12 * 3600 + 45 * 60,
    EventTiming.EARLY_AFTERNOON: 13 * 3600 + 30 * 60,
    EventTiming.AFTERNOON: 15 * 3600,
    EventTiming.LATE_AFTERNOON: 16 * 3600 + 30 * 60,
    EventTiming.BEFORE_DINNER: 17 * 3600 + 30 * 60,
    EventTiming.DINNER: 18 * 3600,
    EventTiming.AFTER_DINNER: 19 * 3600,
    EventTiming.EARLY_EVENING: 19 * 3600 + 30 * 60,
    EventTiming.EVENING: 20 * 3600,
    EventTiming.LATE_EVENING: 21 * 3600,
    EventTiming.NIGHT: 22 * 3600,
    EventTiming.BEFORE_SLEEP: 22 * 3600 + 30 * 60,
}


# =============================================================================
# DOSAGE FORMS
# =============================================================================

_forms = load_dosage_forms()

KNOWN_DOSAGE_FORMS_TO_DOSE: Dict[str, str] = dict(_forms['dose_labels'])
DOSAGE_FORM_TO_ROUTE: Dict[str, str] = {k: str(v) for k, v in _forms['routes'].items()}
DEFAULT_UNIT_BY_NORMALIZED_FORM: Dict[str, str] = dict(_forms['units'])
ROUTE_UNIT_FALLBACK_WHITELIST = set(_forms['route_unit_whitelist'])


def _build_default_unit_by_route() -> Dict[str, str]:
    """A route implies a unit only when every form on that route agrees."""
    candidates: Dict[str, set] = {}
    for form, route in DOSAGE_FORM_TO_ROUTE.items():
        if route not in ROUTE_SNOMED:
            continue
        unit = DEFAULT_UNIT_BY_NORMALIZED_FORM.get(form)
        if not unit:
            continue
        candidates.setdefault(route, set()).add(unit)

    resolved = {}
    for route, units in candidates.items():
        if len(units) != 1:
            continue
        unit = next(iter(units))
        if unit in ROUTE_UNIT_FALLBACK_WHITELIST:
            resolved[route] = unit

    for route, unit in _forms.get('route_unit_defaults', {}).items():
        if unit in ROUTE_UNIT_FALLBACK_WHITELIST:
            resolved[str(route)] = unit
    return resolved


DEFAULT_UNIT_BY_ROUTE = _build_default_unit_by_route()


# =============================================================================
# CODED DEFINITIONS (BODY SITES, PRN REASONS, ADDITIONAL INSTRUCTIONS)
# =============================================================================

def _coding(entry: Dict, system: str) -> Dict[str, str]:
    return {'code': str(entry['code']), 'display': entry['display'], 'system': system}


def _build_body_sites() -> Dict[str, Dict]:
    data = load_body_sites()
    system = data.get('system', SNOMED_SYSTEM)
    table: Dict[str, Dict] = {}
    for entry in data['sites']:
        terms = [normalize_body_site_key(t) for t in entry['terms']]
        definition = {'coding': _coding(entry, system), 'aliases': terms}
        for term in terms:
            if term and term not in table:
                table[term] = definition
    return table


DEFAULT_BODY_SITE_SNOMED = _build_body_sites()


def _build_entries(entries: List[Dict], system: str, normalize, text_key: str):
    definitions: Dict[str, Dict] = {}
    indexed = []
    for entry in entries:
        text = entry.get(text_key) or entry['display']
        definition = {'coding': _coding(entry, system), 'text': text}
        canonical = normalize(text)
        terms = [str(t) for t in entry.get('terms', [])]
        indexed.append({'canonical': canonical, 'terms': terms, 'definition': definition})
        for key in [canonical] + [normalize(t) for t in terms]:
            if key and key not in definitions:
                definitions[key] = definition
    return definitions, indexed


_prn = load_prn_reasons()
DEFAULT_PRN_REASON_DEFINITIONS, DEFAULT_PRN_REASON_ENTRIES = _build_entries(
    _prn['reasons'], _prn.get('system', SNOMED_SYSTEM), normalize_prn_reason_key, 'text'
)

_instructions = load_additional_instructions()
DEFAULT_ADDITIONAL_INSTRUCTION_DEFINITIONS, DEFAULT_ADDITIONAL_INSTRUCTION_ENTRIES = _build_entries(
    _instructions['instructions'], _instructions.get('system', SNOMED_SYSTEM),
    normalize_additional_instruction_key, 'display'
)


__all__ = [
    'RouteCode',
    'RouteSynonym',
    'ROUTE_SNOMED',
    'ROUTE_TEXT',
    'DEFAULT_ROUTE_SYNONYMS',
    'DEFAULT_UNIT_SYNONYMS',
    'HOUSEHOLD_VOLUME_UNITS',
    'TIMING_ABBREVIATIONS',
    'EVENT_TIMING_TOKENS',
    'COMBO_EVENT_TIMINGS',
    'MEAL_KEYWORDS',
    'DISCOURAGED_TOKENS',
    'DAY_OF_WEEK_TOKENS',
    'WORD_FREQUENCIES',
    'DEFAULT_EVENT_TIMING_WEIGHTS',
    'KNOWN_DOSAGE_FORMS_TO_DOSE',
    'DOSAGE_FORM_TO_ROUTE',
    'DEFAULT_UNIT_BY_NORMALIZED_FORM',
    'DEFAULT_UNIT_BY_ROUTE',
    'DEFAULT_BODY_SITE_SNOMED',
    'DEFAULT_PRN_REASON_DEFINITIONS',
    'DEFAULT_PRN_REASON_ENTRIES',
    'DEFAULT_ADDITIONAL_INSTRUCTION_DEFINITIONS',
    'DEFAULT_ADDITIONAL_INSTRUCTION_ENTRIES',
    'default_route_text',
    'normalize_body_site_key',
    'normalize_prn_reason_key',
    'normalize_additional_instruction_key',
]
