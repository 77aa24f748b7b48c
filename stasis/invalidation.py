"""Query-based cache invalidation.

An invalidation query is a whitespace-separated list of terms. An entry is
removed when it matches any term.

Term syntax:
- ``tag:blog``: entry carries the tag ``blog`` (exact, case-sensitive).
- ``path:/blog``: page path equals or starts with ``/blog``. This is a plain
  string prefix, so ``path:/blo`` also matches ``/blog/...``.
- ``glob:/blog/**``: glob over the page path. ``*`` stays within a path
  segment, ``**`` crosses segments, ``?`` is one character, ``[...]`` is a
  character class.
- ``age:3days``: content younger than the given age. Units are day, week,
  month (30 days) and year (365 days), singular or plural.
- ``blog``: bare term, substring of any tag or of the page path.

Quotes group terms containing spaces: ``"path:/my posts"``.

Malformed terms never raise; they simply match nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import structlog

from .manifest import CacheEntry, load_cache_manifest, save_cache_manifest
from .ttl import age_in_days
from .utils import parse_datetime

log = structlog.get_logger()

AGE_UNIT_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}
_AGE_RE = re.compile(r"^(\d+)\s*(day|week|month|year)s?$", re.IGNORECASE)


@dataclass
class InvalidationResult:
    """Outcome of an :func:`invalidate` call.

    Attributes:
        invalidated_count: Number of entries removed.
        invalidated_paths: Removed paths, in manifest order.
        cleared_all: True when the whole cache was cleared.
    """

    invalidated_count: int = 0
    invalidated_paths: list[str] = field(default_factory=list)
    cleared_all: bool = False


def parse_invalidation_query(query: str) -> list[str]:
    """Split a query into terms, honouring single and double quotes.

    Examples:
        >>> parse_invalidation_query('tag:blog "path:/my posts"')
        ['tag:blog', 'path:/my posts']
    """
    terms: list[str] = []
    current: list[str] = []
    quote: str | None = None

    for char in query:
        if quote is None and char in "\"'":
            quote = char
        elif quote is not None and char == quote:
            quote = None
        elif quote is None and char.isspace():
            if "".join(current).strip():
                terms.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    # An unclosed quote simply runs to the end of the query.
    if "".join(current).strip():
        terms.append("".join(current).strip())
    return terms


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path glob into an anchored regular expression.

    Raises:
        re.error: If the pattern is malformed (e.g. an unclosed ``[``).
    """
    out: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                # Left unescaped so compilation reports the unclosed class.
                out.append("[")
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def _matches_glob(page_path: str, pattern: str) -> bool:
    try:
        regex = glob_to_regex(pattern)
    except re.error as exc:
        log.warning("invalid_glob_pattern", pattern=pattern, error=str(exc))
        return False
    return regex.match(page_path) is not None


def _matches_age(entry: CacheEntry, value: str, now: datetime) -> bool:
    match = _AGE_RE.match(value.strip())
    if not match:
        log.warning("invalid_age_term", value=value)
        return False
    limit_days = int(match.group(1)) * AGE_UNIT_DAYS[match.group(2).lower()]
    baseline = parse_datetime(entry.published_at) or parse_datetime(entry.rendered_at)
    if baseline is None:
        return False
    return age_in_days(baseline, now) < limit_days


def matches_invalidation_term(
    entry: CacheEntry, page_path: str, term: str, now: datetime
) -> bool:
    """Check whether a cache entry matches one invalidation term.

    Args:
        entry: Cache entry to test.
        page_path: Manifest key of the entry.
        term: A single parsed term.
        now: Reference time for ``age:`` terms.

    Returns:
        True if the entry should be invalidated by this term.
    """
    if ":" not in term:
        return any(term in tag for tag in entry.tags) or term in page_path

    kind, _, value = term.partition(":")
    if not kind or not value:
        return False

    kind = kind.lower()
    if kind == "tag":
        return value in entry.tags
    if kind == "path":
        return page_path == value or page_path.startswith(value)
    if kind == "glob":
        return _matches_glob(page_path, value)
    if kind == "age":
        return _matches_age(entry, value, now)

    log.warning("unknown_invalidation_term", kind=kind, term=term)
    return False


def invalidate(
    cache_dir: Path, query: str | None = None, *, now: datetime
) -> InvalidationResult:
    """Remove cache entries matching a query and persist the manifest.

    Args:
        cache_dir: Directory holding the manifest.
        query: Invalidation query; None or blank clears the whole cache.
        now: Reference time for ``age:`` terms.

    Returns:
        Which entries were removed.
    """
    manifest = load_cache_manifest(cache_dir)
    if manifest is None:
        return InvalidationResult()

    if query is None or not query.strip():
        removed = list(manifest.entries)
        manifest.entries.clear()
        save_cache_manifest(cache_dir, manifest)
        log.info("cache_cleared", count=len(removed))
        return InvalidationResult(
            invalidated_count=len(removed), invalidated_paths=removed, cleared_all=True
        )

    terms = parse_invalidation_query(query.strip())
    removed = [
        path
        for path, entry in manifest.entries.items()
        if any(matches_invalidation_term(entry, path, term, now) for term in terms)
    ]
    for path in removed:
        del manifest.entries[path]
    save_cache_manifest(cache_dir, manifest)
    log.info("cache_invalidated", query=query, count=len(removed))
    return InvalidationResult(invalidated_count=len(removed), invalidated_paths=removed)
