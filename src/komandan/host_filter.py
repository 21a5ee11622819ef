"""Host filtering for komandan.

Selects hosts by name or tag. Supported patterns:
- Exact names or tags: web
- Regular expressions: ~^db (prefix with ~, matched anywhere in the name or a tag)
- A list of patterns: ["web", "~^db"] (a host matches if any pattern does)
"""

import re
from typing import Callable, Iterable, Sequence, TypeVar

from .exceptions import PatternError

H = TypeVar("H")

Matcher = Callable[[str], bool]


def compile_pattern(pattern: str) -> Matcher:
    """Compile one pattern into a predicate over names and tags.

    Args:
        pattern: Literal name/tag, or ``~`` followed by a regular expression

    Returns:
        A function returning True for matching strings

    Raises:
        PatternError: If the regular expression does not compile
    """
    if pattern.startswith("~"):
        try:
            regex = re.compile(pattern[1:])
        except re.error as e:
            raise PatternError(f"Invalid host pattern {pattern!r}: {e}", pattern=pattern) from e
        return lambda value: regex.search(value) is not None
    return lambda value: value == pattern


def match_host(host: object, matchers: Sequence[Matcher]) -> bool:
    """Check whether a host's name or any of its tags matches.

    A host without a name can only match through its tags.
    """
    name = getattr(host, "name", None)
    tags = getattr(host, "tags", None) or ()
    for matcher in matchers:
        if name and matcher(name):
            return True
        if any(matcher(tag) for tag in tags):
            return True
    return False


def filter_hosts(hosts: Iterable[H], pattern: str | Iterable[str]) -> list[H]:
    """Filter hosts by name or tag, keeping their original order.

    Args:
        hosts: Hosts to filter (anything with ``name`` and ``tags``)
        pattern: A pattern or a list of patterns

    Returns:
        The matching hosts

    Raises:
        PatternError: If a ``~regex`` pattern does not compile

    Examples:
        # Hosts named "web" or tagged "web"
        filter_hosts(hosts, "web")

        # Hosts whose name or a tag starts with "db"
        filter_hosts(hosts, "~^db")

        # Either
        filter_hosts(hosts, ["web", "~^db"])
    """
    patterns = [pattern] if isinstance(pattern, str) else list(pattern)
    for p in patterns:
        if not isinstance(p, str):
            raise PatternError(f"Host pattern must be a string, got {type(p).__name__}")
    matchers = [compile_pattern(p) for p in patterns]
    return [host for host in hosts if match_host(host, matchers)]


def format_filter_summary(original_count: int, filtered_count: int, pattern: str | Iterable[str]) -> str:
    """Format a summary of host filtering.

    Args:
        original_count: Original number of hosts
        filtered_count: Number of hosts after filtering
        pattern: The pattern(s) that were applied

    Returns:
        Human-readable summary string
    """
    if not isinstance(pattern, str):
        pattern = ",".join(pattern)
    if filtered_count == original_count:
        return f"All {original_count} host(s) matched filter: {pattern}"

    excluded = original_count - filtered_count
    return f"Filter '{pattern}': {filtered_count}/{original_count} hosts ({excluded} excluded)"
