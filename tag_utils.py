"""Tag ordering and filtering.

Two orderings are supported: version-aware (``release`` mode) and plain
reverse-lexicographic (``alphabetical`` mode).  Both are deterministic for
any permutation of the same input.
"""

import re
import threading
from typing import List, Optional, Tuple

REGEXP_PREFIX = "regexp:"

# N(.N)*, optional pre-release ("-rc.1", "beta2") and build metadata ("+sha")
_VERSION_RE = re.compile(
    r"^(?P<core>[0-9]+(?:\.[0-9]+)*)"
    r"(?P<pre>-[0-9A-Za-z~-]+(?:\.[0-9A-Za-z~-]+)*"
    r"|[A-Za-z~][0-9A-Za-z~-]*(?:\.[0-9A-Za-z~-]+)*)?"
    r"(?:\+(?P<meta>[0-9A-Za-z~-]+(?:\.[0-9A-Za-z~-]+)*))?$"
)

# Versions are compared with at least major.minor.patch
_MIN_SEGMENTS = 3


class InvalidFilterPattern(ValueError):
    """Raised when an allow-tags regex does not compile or is too expensive."""


def compile_filter(pattern: str, timeout: float = 2.0) -> re.Pattern:
    """Compile an allow-tags regex and test it for catastrophic backtracking.

    Raises InvalidFilterPattern on an invalid or pathological pattern.
    """
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise InvalidFilterPattern(f"Invalid regex for allow-tags '{pattern}': {e}")

    # Test-match against a string that can trigger catastrophic backtracking
    test_string = "a" * 100
    error = [None]

    def _run():
        try:
            compiled.search(test_string)
        except Exception as e:
            error[0] = e

    t = threading.Thread(target=_run, daemon=True)
    t.start()
    t.join(timeout=timeout)

    if t.is_alive():
        raise InvalidFilterPattern(
            f"Regex for allow-tags '{pattern}' is too expensive (possible ReDoS)"
        )
    if error[0]:
        raise InvalidFilterPattern(f"Regex for allow-tags '{pattern}' failed test: {error[0]}")

    return compiled


def regex_from_spec(allow_tags: Optional[str]) -> str:
    """Return the regex carried by an allow-tags annotation, or ''.

    Only values prefixed ``regexp:`` are patterns; anything else is a plain
    tag name and yields no filter.
    """
    if allow_tags and allow_tags.startswith(REGEXP_PREFIX):
        return allow_tags[len(REGEXP_PREFIX):]
    return ""


def filter_by_regex(tags: List[str], pattern: Optional[str]) -> List[str]:
    """Keep only tags matching *pattern*; an empty pattern keeps everything."""
    if not pattern:
        return list(tags)
    compiled = compile_filter(pattern)
    return [tag for tag in tags if compiled.search(tag)]


def parse_version(tag: str) -> Optional[Tuple[int, ...]]:
    """Parse the numeric version of a tag, ignoring a leading 'v'.

    Returns the numeric segments, or None when the tag is not a version.
    Pre-release and metadata suffixes are accepted but not part of the
    returned tuple.
    """
    clean = tag[1:] if tag.startswith('v') else tag
    match = _VERSION_RE.match(clean)
    if not match:
        return None
    return tuple(int(part) for part in match.group('core').split('.'))


def _has_suffix(tag: str) -> bool:
    clean = tag[1:] if tag.startswith('v') else tag
    return '-' in clean


def sort_version_descending(tags: List[str]) -> List[str]:
    """Sort version tags newest first, dropping tags that are not versions.

    Tags written with a leading 'v' are ranked ahead of bare ones.  Within
    that, higher versions come first; for equal versions a tag without a
    hyphenated suffix wins (``1.2.3`` over ``1.2.3-alpine``), then the
    lexicographically greater tag.
    """
    parsed = []
    for tag in tags:
        version = parse_version(tag)
        if version is not None:
            parsed.append((tag, version))

    if not parsed:
        return []

    width = max(_MIN_SEGMENTS, max(len(v) for _, v in parsed))

    def sort_key(item):
        tag, version = item
        padded = version + (0,) * (width - len(version))
        return (tag.startswith('v'), padded, not _has_suffix(tag), tag)

    return [tag for tag, _ in sorted(parsed, key=sort_key, reverse=True)]


def sort_alphabetical_descending(tags: List[str]) -> List[str]:
    """Reverse lexicographic order; every tag participates."""
    return sorted(tags, reverse=True)
