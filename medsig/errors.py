"""
Sig Errors
==========

Exceptions raised for caller-configuration problems. Ambiguous or malformed
sig text never raises; it is reported through warnings and leftover text.
"""


class SigError(Exception):
    """Base class for all medsig errors."""


class DiscouragedTokenError(SigError, ValueError):
    """A discouraged abbreviation was found while ``allow_discouraged`` is False."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Discouraged token '{token}' is not allowed")


class ScheduleConfigError(SigError, ValueError):
    """Scheduling options are missing or invalid."""


class ScheduleComputationError(SigError, RuntimeError):
    """A local calendar computation could not be resolved."""


class ResolverUsageError(SigError, TypeError):
    """A resolver returned an awaitable inside the synchronous parse path."""
