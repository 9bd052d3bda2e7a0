"""
Sig Validation
==============
"""

from .lint import (
    LintIssue,
    collect_lint_issues,
)

__all__ = [
    'LintIssue',
    'collect_lint_issues',
]
