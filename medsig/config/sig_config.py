"""
Sig Parsing Configuration
=========================

Central configuration for the sig parser, formatter and schedule projector:
code constants, option dataclasses and cached YAML loaders.
"""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import yaml


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

CONFIG_DIR = Path(__file__).parent

ROUTE_CODES_YAML = CONFIG_DIR / "route_codes.yaml"
BODY_SITES_YAML = CONFIG_DIR / "body_sites.yaml"
PRN_REASONS_YAML = CONFIG_DIR / "prn_reasons.yaml"
ADDITIONAL_INSTRUCTIONS_YAML = CONFIG_DIR / "additional_instructions.yaml"
DOSAGE_FORMS_YAML = CONFIG_DIR / "dosage_forms.yaml"
SCHEDULE_DEFAULTS_YAML = CONFIG_DIR / "schedule_defaults.yaml"
THAI_SITES_YAML = CONFIG_DIR / "thai_sites.yaml"

SNOMED_SYSTEM = "http://snomed.info/sct"


# =============================================================================
# CODE CONSTANTS
# =============================================================================

class EventTiming:
    """FHIR event-timing codes (http://hl7.org/fhir/event-timing)."""

    BEFORE_SLEEP = "HS"
    WAKE = "WAKE"
    MEAL = "C"
    BREAKFAST = "CM"
    LUNCH = "CD"
    DINNER = "CV"
    BEFORE_MEAL = "AC"
    BEFORE_BREAKFAST = "ACM"
    BEFORE_LUNCH = "ACD"
    BEFORE_DINNER = "ACV"
    AFTER_MEAL = "PC"
    AFTER_BREAKFAST = "PCM"
    AFTER_LUNCH = "PCD"
    AFTER_DINNER = "PCV"
    MORNING = "MORN"
    EARLY_MORNING = "MORN.early"
    LATE_MORNING = "MORN.late"
    NOON = "NOON"
    AFTERNOON = "AFT"
    EARLY_AFTERNOON = "AFT.early"
    LATE_AFTERNOON = "AFT.late"
    EVENING = "EVE"
    EARLY_EVENING = "EVE.early"
    LATE_EVENING = "EVE.late"
    NIGHT = "NIGHT"
    AFTER_SLEEP = "PHS"
    IMMEDIATE = "IMD"


class PeriodUnit:
    """FHIR timing period units."""

    SECOND = "s"
    MINUTE = "min"
    HOUR = "h"
    DAY = "d"
    WEEK = "wk"
    MONTH = "mo"
    YEAR = "a"


class RouteCode:
    """SNOMED CT route codes referenced directly by the parser."""

    TOPICAL = "6064005"
    OTIC = "10547007"
    VAGINAL = "16857009"
    ORAL = "26643006"
    SUBCUTANEOUS = "34206005"
    RECTAL = "37161004"
    SUBLINGUAL = "37839007"
    TRANSDERMAL = "45890007"
    NASAL = "46713006"
    INTRAVENOUS = "47625008"
    BUCCAL = "54471007"
    OPHTHALMIC = "54485002"
    INTRAMUSCULAR = "78421000"
    OCULAR = "372472002"
    OROMUCOSAL = "372473007"
    INTRAVITREAL = "418401004"
    RESPIRATORY = "447694001"


DAYS_OF_WEEK = ['mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']

# Resolvers receive a LookupRequest. Coding resolvers return a definition dict
# or None; suggestion resolvers return a definition or a list of them.
SyncResolver = Callable[[Any], Any]
AsyncResolver = Callable[[Any], Awaitable[Any]]
Resolver = Union[SyncResolver, AsyncResolver]


# =============================================================================
# PARSE CONFIGURATION
# =============================================================================

@dataclass
class MedicationContext:
    """Medication metadata that helps infer a dose unit."""

    dosage_form: Optional[str] = None
    container_value: Optional[float] = None
    container_unit: Optional[str] = None
    default_unit: Optional[str] = None
    strength_quantity: Optional[Dict[str, Any]] = None


@dataclass
class ParseOptions:
    """Caller options for parsing and formatting a sig.

    Dictionary overrides (``route_map``, ``unit_map``, ``freq_map``,
    ``when_map``) are consulted before the built-in tables. Coding maps and
    resolvers are consulted in the order: selections, maps, resolvers,
    built-in tables.
    """

    # Medication context; None disables context-based unit inference
    context: Optional[MedicationContext] = None

    # Dictionary overrides
    route_map: Dict[str, str] = field(default_factory=dict)
    unit_map: Dict[str, str] = field(default_factory=dict)
    freq_map: Dict[str, Dict[str, float]] = field(default_factory=dict)
    when_map: Dict[str, str] = field(default_factory=dict)

    # Clinic clock anchors used to order `when` codes
    event_clock: Dict[str, str] = field(default_factory=dict)

    # Behaviour switches
    allow_discouraged: bool = True
    smart_meal_expansion: bool = False
    two_per_day_pair: str = "breakfast+dinner"
    allow_household_volume_units: bool = True

    # Body site coding
    site_code_map: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    site_code_resolvers: List[Resolver] = field(default_factory=list)
    site_code_suggestion_resolvers: List[Resolver] = field(default_factory=list)
    site_code_selections: List[Dict[str, Any]] = field(default_factory=list)

    # PRN reason coding
    prn_reason_map: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    prn_reason_resolvers: List[Resolver] = field(default_factory=list)
    prn_reason_suggestion_resolvers: List[Resolver] = field(default_factory=list)
    prn_reason_selections: List[Dict[str, Any]] = field(default_factory=list)

    # Formatting
    locale: str = "en"
    i18n: Optional[Dict[str, Any]] = None


@dataclass
class FormatOptions:
    """Options for rendering a FHIR Dosage back into text."""

    locale: str = "en"
    i18n: Optional[Dict[str, Any]] = None


DEFAULT_PARSE_OPTIONS = ParseOptions()


# =============================================================================
# SCHEDULE CONFIGURATION
# =============================================================================

@dataclass
class FrequencyDefaults:
    """Institution clock times for frequency-only schedules."""

    by_code: Dict[str, List[str]] = field(default_factory=dict)
    by_frequency: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class ScheduleConfig:
    """Clinic-wide scheduling configuration."""

    time_zone: Optional[str] = None
    event_clock: Dict[str, str] = field(default_factory=dict)
    meal_offsets: Dict[str, int] = field(default_factory=dict)
    frequency_defaults: Optional[FrequencyDefaults] = None


@dataclass
class ScheduleOptions:
    """Per-call options for next-dose projection."""

    from_: Any = None
    ordered_at: Any = None
    limit: int = 10
    prior_count: Optional[float] = None
    time_zone: Optional[str] = None
    event_clock: Dict[str, str] = field(default_factory=dict)
    meal_offsets: Dict[str, int] = field(default_factory=dict)
    frequency_defaults: Optional[FrequencyDefaults] = None
    config: Optional[ScheduleConfig] = None


# =============================================================================
# SUGGESTION CONFIGURATION
# =============================================================================

@dataclass
class SuggestOptions:
    """Options for autocomplete suggestions."""

    limit: int = 10
    prn_reasons: List[str] = field(default_factory=list)
    parse_options: ParseOptions = field(default_factory=ParseOptions)


# =============================================================================
# YAML LOADERS
# =============================================================================

_yaml_cache: Dict[Path, Dict] = {}


def _load_yaml(path: Path) -> Dict:
    """Load and cache a YAML file shipped with the package."""
    if path not in _yaml_cache:
        with open(path, 'r', encoding='utf-8') as f:
            _yaml_cache[path] = yaml.safe_load(f) or {}
    return _yaml_cache[path]


def load_route_codes() -> Dict:
    """Load SNOMED route codes, text overrides and shorthand synonyms."""
    return _load_yaml(ROUTE_CODES_YAML)


def load_body_sites() -> Dict:
    """Load body site codings."""
    return _load_yaml(BODY_SITES_YAML)


def load_prn_reasons() -> Dict:
    """Load PRN reason codings."""
    return _load_yaml(PRN_REASONS_YAML)


def load_additional_instructions() -> Dict:
    """Load additional dosage instruction codings."""
    return _load_yaml(ADDITIONAL_INSTRUCTIONS_YAML)


def load_dosage_forms() -> Dict:
    """Load dosage form to dose label/route/unit tables."""
    return _load_yaml(DOSAGE_FORMS_YAML)


def load_thai_site_translations() -> Dict[str, str]:
    """Load English body-site phrase to Thai translations."""
    return dict(_load_yaml(THAI_SITES_YAML).get('sites', {}))


def load_schedule_defaults() -> FrequencyDefaults:
    """Load the built-in frequency fallback clocks."""
    data = _load_yaml(SCHEDULE_DEFAULTS_YAML)
    return FrequencyDefaults(
        by_code={k: list(v) for k, v in data.get('by_code', {}).items()},
        by_frequency={k: list(v) for k, v in data.get('by_frequency', {}).items()},
    )


SCHEDULE_DEFAULTS = load_schedule_defaults()
