"""
Sig Processing
==============

Next-dose scheduling and autocomplete suggestions.
"""

from .schedule import (
    ZoneCache,
    next_due_doses,
)

from .suggest import (
    suggest_sig,
)

__all__ = [
    'ZoneCache',
    'next_due_doses',
    'suggest_sig',
]
