"""
Sig Transformers
================

Text rendering (English and Thai) and FHIR Dosage mapping.
"""

from .formatter import (
    FormatContext,
    SigLocalization,
    register_localization,
    get_registered_localizations,
    resolve_localization,
    format_internal,
)

# Registers the 'th' localization
from . import thai_grammar  # noqa: F401

from .fhir_mapper import (
    to_fhir,
    internal_from_fhir,
)

__all__ = [
    # Formatting
    'FormatContext',
    'SigLocalization',
    'register_localization',
    'get_registered_localizations',
    'resolve_localization',
    'format_internal',
    # FHIR
    'to_fhir',
    'internal_from_fhir',
]
