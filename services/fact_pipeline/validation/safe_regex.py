"""
Bounded Regular Expressions
===========================

Guards for regexes built from untrusted input (DSL `matches` patterns and
free-text extracted values).

Patterns are length-limited and screened for nested quantifiers, the
construct behind catastrophic backtracking. The screen walks the parsed
pattern tree, so extra grouping such as `((a+))+` does not hide a nested
repeat. Subjects are truncated to a fixed length, and slow matches are
logged.

Version: 0.1.0
"""

import re
import time
from re import _parser as sre_parse
from typing import Any

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)

MAX_PATTERN_LENGTH = 100
SLOW_MATCH_SECONDS = 0.05

# Source-level screen for the common spellings, e.g. (a+)+, (\w*\s?)*, (a|a)*
_NESTED_QUANTIFIER = re.compile(r"\((?:[^()\\]|\\.)*[+*}](?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d)")
_QUANTIFIED_ALTERNATION = re.compile(r"\((?:[^()\\]|\\.)*\|(?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d)")

_REPEATS = (sre_parse.MAX_REPEAT, sre_parse.MIN_REPEAT)


class UnsafePatternError(ValueError):
    """Pattern rejected before compilation."""


def _children(op: Any, av: Any) -> list[Any]:
    """Sub-patterns directly below one parsed node."""
    if op in _REPEATS or op is sre_parse.POSSESSIVE_REPEAT:
        return [av[2]]
    if op is sre_parse.SUBPATTERN:
        return [av[3]]
    if op is sre_parse.BRANCH:
        return list(av[1])
    if op in (sre_parse.ASSERT, sre_parse.ASSERT_NOT):
        return [av[1]]
    if op is sre_parse.ATOMIC_GROUP:
        return [av]
    if op is sre_parse.GROUPREF_EXISTS:
        return [p for p in av[1:] if p is not None]
    return []


def _has_backtracking(subpattern: Any) -> bool:
    """Whether a sub-pattern holds a multi-match repeat or an alternation."""
    for op, av in subpattern:
        if op is sre_parse.BRANCH:
            return True
        if op in _REPEATS and av[1] > 1:
            return True
        if any(_has_backtracking(child) for child in _children(op, av)):
            return True
    return False


def _check_tree(subpattern: Any) -> None:
    for op, av in subpattern:
        if op in _REPEATS and av[1] > 1 and _has_backtracking(av[2]):
            raise UnsafePatternError("Pattern has nested quantifiers")
        for child in _children(op, av):
            _check_tree(child)


def compile_safe(pattern: str, flags: int = 0) -> re.Pattern[str]:
    """
    Compile an untrusted pattern after screening it.

    Args:
        pattern: Regex source
        flags: `re` flags

    Returns:
        Compiled pattern

    Raises:
        UnsafePatternError: If the pattern is too long, has nested
            quantifiers, or does not compile
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise UnsafePatternError(
            f"Pattern length {len(pattern)} exceeds {MAX_PATTERN_LENGTH}"
        )
    if _NESTED_QUANTIFIER.search(pattern) or _QUANTIFIED_ALTERNATION.search(pattern):
        raise UnsafePatternError(f"Pattern has nested quantifiers: {pattern!r}")
    try:
        tree = sre_parse.parse(pattern, flags)
    except re.error as e:
        raise UnsafePatternError(f"Pattern does not compile: {e}") from e
    try:
        _check_tree(tree)
    except UnsafePatternError as e:
        raise UnsafePatternError(f"{e}: {pattern!r}") from e
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise UnsafePatternError(f"Pattern does not compile: {e}") from e


def bounded_search(
    compiled: re.Pattern[str],
    subject: str,
    max_subject_length: int | None = None,
) -> re.Match[str] | None:
    """Search a length-bounded subject and log slow matches."""
    limit = max_subject_length or settings.pipeline.max_regex_subject_length
    if len(subject) > limit:
        subject = subject[:limit]

    start = time.perf_counter()
    match = compiled.search(subject)
    elapsed = time.perf_counter() - start

    if elapsed > SLOW_MATCH_SECONDS:
        logger.warning(
            "regex_slow_match",
            pattern=compiled.pattern[:MAX_PATTERN_LENGTH],
            subject_length=len(subject),
            elapsed_ms=round(elapsed * 1000, 2),
        )
    return match
