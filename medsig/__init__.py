"""
medsig
======

Parse free-text medication sigs into FHIR R5 Dosage, render them back as
short or long text, suggest completions, lint leftovers and compute the
next due doses.
"""

from .config import (
    MedicationContext,
    ParseOptions,
    FormatOptions,
    ScheduleConfig,
    ScheduleOptions,
    SuggestOptions,
)

from .errors import (
    SigError,
    DiscouragedTokenError,
    ScheduleConfigError,
    ScheduleComputationError,
    ResolverUsageError,
)

from .pipeline import (
    ParseResult,
    LintResult,
    parse_sig,
    parse_sig_async,
    format_sig,
    from_fhir_dosage,
    lint_sig,
)

from .processing import (
    ZoneCache,
    next_due_doses,
    suggest_sig,
)

from .transformers import (
    SigLocalization,
    register_localization,
)

__version__ = "0.1.0"

__all__ = [
    # Options
    'MedicationContext',
    'ParseOptions',
    'FormatOptions',
    'ScheduleConfig',
    'ScheduleOptions',
    'SuggestOptions',
    # Errors
    'SigError',
    'DiscouragedTokenError',
    'ScheduleConfigError',
    'ScheduleComputationError',
    'ResolverUsageError',
    # Parsing and formatting
    'ParseResult',
    'LintResult',
    'parse_sig',
    'parse_sig_async',
    'format_sig',
    'from_fhir_dosage',
    'lint_sig',
    # Scheduling and suggestions
    'ZoneCache',
    'next_due_doses',
    'suggest_sig',
    # Localization
    'SigLocalization',
    'register_localization',
]
