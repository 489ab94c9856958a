"""
Glob-style identifier matching for subject, action and resource patterns.

``*`` matches any run of characters (including none), ``?`` matches exactly
one character, everything else is literal. Matching is case-insensitive
and anchored to the whole value.
"""

import re
from functools import lru_cache
from typing import Optional, Pattern


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> Optional[Pattern[str]]:
    """Compile a glob pattern into a regular expression for full matching."""
    try:
        escaped = re.escape(pattern)
        # re.escape turns "*" into "\*" and "?" into "\?"
        regex = escaped.replace(r"\*", ".*").replace(r"\?", ".")
        return re.compile(regex, re.IGNORECASE | re.DOTALL)
    except (re.error, TypeError):
        return None


def matches(pattern: str, value: str) -> bool:
    """Return True if ``value`` matches the glob ``pattern``."""
    if not isinstance(pattern, str) or not isinstance(value, str):
        return False

    compiled = compile_pattern(pattern)
    if compiled is None:
        return False

    return compiled.fullmatch(value) is not None
