"""
Sig Configuration Package
"""

from .sig_config import (
    # Paths
    CONFIG_DIR,
    # Code systems
    SNOMED_SYSTEM,
    EventTiming,
    PeriodUnit,
    RouteCode,
    DAYS_OF_WEEK,
    # Resolver types
    SyncResolver,
    AsyncResolver,
    Resolver,
    # Options
    MedicationContext,
    ParseOptions,
    FormatOptions,
    FrequencyDefaults,
    ScheduleConfig,
    ScheduleOptions,
    SuggestOptions,
    DEFAULT_PARSE_OPTIONS,
    SCHEDULE_DEFAULTS,
    # Loaders
    load_route_codes,
    load_body_sites,
    load_prn_reasons,
    load_additional_instructions,
    load_dosage_forms,
    load_thai_site_translations,
    load_schedule_defaults,
)

__all__ = [
    'CONFIG_DIR',
    'SNOMED_SYSTEM',
    'EventTiming',
    'PeriodUnit',
    'RouteCode',
    'DAYS_OF_WEEK',
    'SyncResolver',
    'AsyncResolver',
    'Resolver',
    'MedicationContext',
    'ParseOptions',
    'FormatOptions',
    'FrequencyDefaults',
    'ScheduleConfig',
    'ScheduleOptions',
    'SuggestOptions',
    'DEFAULT_PARSE_OPTIONS',
    'SCHEDULE_DEFAULTS',
    'load_route_codes',
    'load_body_sites',
    'load_prn_reasons',
    'load_additional_instructions',
    'load_dosage_forms',
    'load_thai_site_translations',
    'load_schedule_defaults',
]
