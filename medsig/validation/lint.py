"""
Sig Lint
========

Reports the parts of a sig the parser could not account for. Each run of
adjacent unconsumed tokens becomes one issue carrying its text, tokens and
character range in the original input.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..extractors.parse_context import ParseContext
from ..extractors.tokenizer import TextRange, Token

logger = logging.getLogger(__name__)

UNRECOGNIZED_TEXT = "Unrecognized text"


@dataclass
class LintIssue:
    message: str
    text: str
    tokens: List[str] = field(default_factory=list)
    range: Optional[TextRange] = None


def locate_tokens(text: str, tokens: List[Token]) -> Dict[int, TextRange]:
    """Character spans of tokens found verbatim in ``text``, searched left to right.

    Tokens rewritten by the tokenizer (evaluated fractions, glued ranges) may
    have no span.
    """
    lower = text.lower()
    cursor = 0
    spans: Dict[int, TextRange] = {}
    for token in tokens:
        needle = token.original.strip().lower()
        if not needle:
            continue
        found = lower.find(needle, cursor)
        if found == -1:
            continue
        spans[token.index] = (found, found + len(needle))
        cursor = found + len(needle)
    return spans


def group_leftover_tokens(ctx: ParseContext) -> List[List[Token]]:
    """Split unconsumed tokens into runs of consecutive indices."""
    groups: List[List[Token]] = []
    for token in ctx.leftover_tokens():
        if groups and groups[-1][-1].index == token.index - 1:
            groups[-1].append(token)
        else:
            groups.append([token])
    return groups


def collect_lint_issues(ctx: ParseContext) -> List[LintIssue]:
    """
    Build one issue per run of leftover tokens.

    Args:
        ctx: Context returned by the parser

    Returns:
        Issues in input order
    """
    spans = locate_tokens(ctx.text, ctx.tokens)
    issues = []
    for group in group_leftover_tokens(ctx):
        first, last = spans.get(group[0].index), spans.get(group[-1].index)
        span = (first[0], last[1]) if first and last else None
        text = ctx.text[span[0]:span[1]] if span else ' '.join(t.original for t in group)
        issues.append(LintIssue(
            message=UNRECOGNIZED_TEXT,
            text=text,
            tokens=[t.original for t in group],
            range=span,
        ))
    if issues:
        logger.debug(f"Lint: {len(issues)} unrecognized segment(s)")
    return issues
