"""Metadata extractors for Stasis pages.

Each extractor pulls one kind of metadata out of a page body. The
:class:`CompositeMetadataExtractor` strips YAML front matter first, runs the
extractors on the remaining body, and lets front matter override the
extracted ``title`` and ``description``.

Key classes:
- TitleExtractor: Title from the first ``# heading`` or the filename.
- TagExtractor: Hashtags from the body.
- DateExtractor: Publish date from a ``YYYY-MM-DD-`` filename prefix.
- DescriptionExtractor: First paragraph, truncated.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import structlog
import yaml

from .utils import (
    extract_date_from_name,
    extract_tags,
    first_paragraph,
    strip_hashtags,
    titleize,
)

log = structlog.get_logger()

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split YAML front matter from a document.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining body). Invalid or non-mapping
        front matter yields an empty dict and the untouched text.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        log.warning("frontmatter_invalid", error=str(exc))
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


class TitleExtractor:
    """Title from the first level-1 heading, falling back to the filename."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class TagExtractor:
    """Hashtags (``#python``) found in the body."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        return {"tags": extract_tags(content)}


class DateExtractor:
    """Publish date from a ``YYYY-MM-DD-`` filename prefix.

    Files without a dated name get no date; front matter dates are read by
    the TTL policy directly.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        return {"published_at": extract_date_from_name(path.stem)}


class DescriptionExtractor:
    """First paragraph of the body, truncated to 160 characters."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        paragraphs = [p for p in content.split("\n\n") if p.strip()]
        # Skip a leading title heading.
        if paragraphs and paragraphs[0].lstrip().startswith("# "):
            paragraphs = paragraphs[1:]
        return {"description": first_paragraph(strip_hashtags("\n\n".join(paragraphs)))}


class CompositeMetadataExtractor:
    """Runs several extractors over a document and merges their results.

    Later extractors override earlier ones. Front matter ``title`` and
    ``description`` override anything extracted from the body.
    """

    def __init__(self, extractors: list | None = None):
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                TagExtractor(),
                DateExtractor(),
                DescriptionExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor) -> None:
        self._extractors.append(extractor)

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from a raw document.

        Args:
            content: Raw file content, front matter included.
            path: Path to the source file.

        Returns:
            Merged metadata, plus ``frontmatter`` and ``body`` keys.
        """
        frontmatter, body = extract_frontmatter(content)
        result: dict[str, Any] = {"frontmatter": frontmatter, "body": body}
        for extractor in self._extractors:
            result.update(extractor.extract(body, path))
        for key in ("title", "description"):
            if isinstance(frontmatter.get(key), str) and frontmatter[key].strip():
                result[key] = frontmatter[key].strip()
        return result


default_metadata_extractor = CompositeMetadataExtractor()
