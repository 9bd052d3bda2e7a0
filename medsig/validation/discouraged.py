"""
Discouraged Token Policy
========================

Lexical safety check for abbreviations on the do-not-use list (QD, QOD, OD,
BLD, AD). By default these produce a warning; with ``allow_discouraged=False``
they raise.
"""

from typing import Optional

from ..config.sig_config import ParseOptions
from ..config.vocabulary import DISCOURAGED_TOKENS
from ..errors import DiscouragedTokenError


def check_discouraged(token: str, options: Optional[ParseOptions] = None) -> Optional[str]:
    """
    Check a token against the discouraged-abbreviation list.

    Args:
        token: Token as written in the sig
        options: Parse options (``allow_discouraged`` is consulted)

    Returns:
        Warning message, or None when the token is not discouraged

    Raises:
        DiscouragedTokenError: If the token is discouraged and disallowed
    """
    code = DISCOURAGED_TOKENS.get(token.lower())
    if code is None:
        return None
    if options is not None and options.allow_discouraged is False:
        raise DiscouragedTokenError(token)
    return f"{code} is discouraged"
