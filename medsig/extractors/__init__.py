"""
Sig Extractors
==============

Tokenizer, rule-driven parser and site/PRN reason coding.
"""

from .tokenizer import (
    Token,
    tokenize,
    format_number,
)

from .parse_context import (
    LookupRequest,
    ParsedSig,
    ParseContext,
)

from .sig_parser import (
    RULES,
    run_rules,
    parse_internal,
)

from .site_coding import (
    apply_site_coding,
    apply_prn_reason_coding,
    apply_site_coding_async,
    apply_prn_reason_coding_async,
)

__all__ = [
    # Tokenizing
    'Token',
    'tokenize',
    'format_number',
    # Parse state
    'LookupRequest',
    'ParsedSig',
    'ParseContext',
    # Parsing
    'RULES',
    'run_rules',
    'parse_internal',
    # Coding
    'apply_site_coding',
    'apply_prn_reason_coding',
    'apply_site_coding_async',
    'apply_prn_reason_coding_async',
]
