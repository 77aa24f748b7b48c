"""Utility functions for Stasis.

This module contains small helpers used throughout the Stasis codebase.
These include string processing, path handling, and date parsing.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_tags: Extract hashtags from text.
    extract_date_from_name: Extract date from filename prefix.
    parse_datetime: Parse front matter / manifest dates into aware datetimes.
    to_iso: Serialize a datetime for the cache manifest.
    is_markdown: Check if a path is a Markdown file.
    is_template: Check if a path is a Jinja template.
    is_html: Check if a path is a plain HTML file.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from datetime import date, datetime, timezone
from pathlib import Path

HASHTAG_RE = re.compile(r"#([a-zA-Z][a-zA-Z0-9]{2,}(?:/[a-zA-Z0-9]+)*)")


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.
    """
    cleaned = name
    if "-" in cleaned:
        parts = cleaned.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            cleaned = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = Path(filename).stem
    if "-" in base:
        parts = base.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            base = "-".join(parts[3:])
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        UTC datetime at midnight if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]), tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def parse_datetime(value: object) -> datetime | None:
    """Parse a date-like value into a timezone-aware datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``), ``datetime`` and
    ``date`` objects as produced by YAML front matter. Naive values are
    assumed to be UTC.

    Args:
        value: Candidate date value.

    Returns:
        Aware datetime, or None if the value is not a parseable date.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    return ensure_utc(parsed)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value: datetime) -> str:
    """Serialize a datetime as an ISO-8601 UTC string with millisecond precision.

    Examples:
        >>> to_iso(datetime(2024, 1, 15, tzinfo=timezone.utc))
        '2024-01-15T00:00:00.000Z'
    """
    utc = ensure_utc(value).astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extract_tags(text: str) -> list[str]:
    """Extract hashtags from text content.

    Finds hashtags matching the pattern #word where word starts with
    a letter and is at least 3 characters. Hierarchical tags like
    #topic/subtopic are also supported.

    Examples:
        >>> extract_tags("Hello #world, this is #python code")
        ['world', 'python']
    """
    tags = HASHTAG_RE.findall(text)
    seen = []
    for tag in tags:
        if tag not in seen:
            seen.append(tag)
    return seen


def strip_hashtags(text: str) -> str:
    """Remove hashtag symbols from text, keeping the tag words."""
    return HASHTAG_RE.sub(lambda m: m.group(1), text)


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from text.

    Strips leading # (headers), HTML tags, and Jinja syntax.
    Collapses whitespace and truncates to the specified limit.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    if not paragraphs:
        return ""
    para = paragraphs[0].lstrip("# ").strip()
    para = re.sub(r"<[^>]+>", "", para)
    para = re.sub(r"\{[%#{].*?[%#}]\}", "", para)
    collapsed = " ".join(para.split())
    return collapsed[:limit]


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # Fallback for stubborn directories
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file."""
    return path.suffix.lower() == ".md"


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template file.

    Matches both .jinja and .html.jinja extensions.
    """
    return path.suffixes[-2:] == [".html", ".jinja"] or path.suffix == ".jinja"


def is_html(path: Path) -> bool:
    """Check if a path is a plain HTML file (not a Jinja template)."""
    return path.suffix.lower() == ".html" and not is_template(path)
