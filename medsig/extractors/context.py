"""
Medication Context
==================

Dosage-form normalisation and unit inference from medication metadata.
"""

from typing import Optional

from ..config.sig_config import MedicationContext
from ..config.vocabulary import DEFAULT_UNIT_BY_NORMALIZED_FORM, KNOWN_DOSAGE_FORMS_TO_DOSE


def normalize_dosage_form(form: Optional[str]) -> Optional[str]:
    """Map a dosage form ("Film-coated tablet") to its dose label."""
    if not form:
        return None
    key = form.strip().lower()
    return KNOWN_DOSAGE_FORMS_TO_DOSE.get(key, key)


def infer_unit_from_context(ctx: Optional[MedicationContext]) -> Optional[str]:
    """
    Infer a dose unit from medication context.

    Precedence: explicit default unit, dosage-form unit, container unit.
    """
    if ctx is None:
        return None
    if ctx.default_unit:
        return ctx.default_unit
    if ctx.dosage_form:
        normalized = normalize_dosage_form(ctx.dosage_form)
        unit = DEFAULT_UNIT_BY_NORMALIZED_FORM.get(normalized) if normalized else None
        if unit:
            return unit
    if ctx.container_unit:
        return ctx.container_unit
    return None
