"""Cache manifest persistence for incremental builds.

The manifest lives at ``<cache_dir>/manifest.json`` and maps each page's
output path to a :class:`CacheEntry`::

    {
      "entries": {
        "/posts/hello/index.html": {
          "path": "/posts/hello/index.html",
          "inputsHash": "sha256-...",
          "deps": ["/abs/site/layout.jinja"],
          "tags": ["page", "blog"],
          "renderedAt": "2024-03-15T10:00:00.000Z",
          "ttlSeconds": 21600,
          "publishedAt": "2024-03-01T00:00:00.000Z"
        }
      }
    }

Loading never fails: a missing, empty or corrupt manifest reads as None so
the caller falls back to a full rebuild. Saving failures are fatal.
"""

from __future__ import annotations

import errno
import json
import os
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from .utils import parse_datetime

log = structlog.get_logger()

MANIFEST_FILENAME = "manifest.json"


class ManifestSaveError(Exception):
    """The cache manifest could not be written.

    Attributes:
        manifest_path: Target file that failed to save.
    """

    def __init__(self, manifest_path: Path, message: str):
        self.manifest_path = manifest_path
        self.message = message
        super().__init__(message)


@dataclass
class CacheEntry:
    """Cached render state of a single page.

    Attributes:
        path: Output path key, e.g. ``/posts/hello/index.html``.
        inputs_hash: Combined hash of content, front matter and dependencies.
        deps: Absolute template/partial paths in discovery order.
        tags: Labels used by invalidation queries.
        rendered_at: ISO-8601 time of the last successful render.
        ttl_seconds: Effective TTL at render time.
        published_at: ISO-8601 publish date, if known.
        max_age_cap_days: Freeze threshold, if any.
    """

    path: str
    inputs_hash: str
    deps: list[str]
    tags: list[str]
    rendered_at: str
    ttl_seconds: int
    published_at: str | None = None
    max_age_cap_days: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "path": self.path,
            "inputsHash": self.inputs_hash,
            "deps": list(self.deps),
            "tags": list(self.tags),
            "renderedAt": self.rendered_at,
            "ttlSeconds": self.ttl_seconds,
        }
        if self.published_at is not None:
            payload["publishedAt"] = self.published_at
        if self.max_age_cap_days is not None:
            payload["maxAgeCapDays"] = self.max_age_cap_days
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CacheEntry:
        return cls(
            path=payload["path"],
            inputs_hash=payload["inputsHash"],
            deps=list(payload["deps"]),
            tags=list(payload["tags"]),
            rendered_at=payload["renderedAt"],
            ttl_seconds=payload["ttlSeconds"],
            published_at=payload.get("publishedAt"),
            max_age_cap_days=payload.get("maxAgeCapDays"),
        )


@dataclass
class CacheManifest:
    """All cache entries keyed by page output path."""

    entries: dict[str, CacheEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"entries": {key: entry.to_dict() for key, entry in self.entries.items()}}


def create_empty_manifest() -> CacheManifest:
    """Return a manifest with no entries."""
    return CacheManifest()


def _entry_problem(payload: Any) -> str | None:
    """Describe why a raw manifest entry is unusable, or None if it is valid."""
    if not isinstance(payload, dict):
        return "not an object"
    required = {
        "path": str,
        "inputsHash": str,
        "deps": list,
        "tags": list,
        "renderedAt": str,
        "ttlSeconds": int,
    }
    for name, expected in required.items():
        if name not in payload:
            return f'missing required field "{name}"'
        value = payload[name]
        if not isinstance(value, expected) or isinstance(value, bool):
            return f'"{name}" must be of type {expected.__name__}'
    if not all(isinstance(dep, str) for dep in payload["deps"]):
        return 'all "deps" must be strings'
    if not all(isinstance(tag, str) for tag in payload["tags"]):
        return 'all "tags" must be strings'
    if parse_datetime(payload["renderedAt"]) is None:
        return '"renderedAt" is not a valid date'
    published_at = payload.get("publishedAt")
    if published_at is not None and (
        not isinstance(published_at, str) or parse_datetime(published_at) is None
    ):
        return '"publishedAt" is not a valid date'
    cap = payload.get("maxAgeCapDays")
    if cap is not None and (not isinstance(cap, int) or isinstance(cap, bool)):
        return '"maxAgeCapDays" must be an integer'
    return None


def load_cache_manifest(cache_dir: Path) -> CacheManifest | None:
    """Load the cache manifest from ``cache_dir``.

    Entries that fail validation are dropped individually; the rest of the
    manifest is kept.

    Args:
        cache_dir: Directory holding ``manifest.json``.

    Returns:
        The manifest, or None when it is missing, unreadable or corrupt.
    """
    manifest_path = Path(cache_dir) / MANIFEST_FILENAME
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("manifest_read_failed", path=str(manifest_path), error=str(exc))
        return None

    if not text.strip():
        log.warning("manifest_empty", path=str(manifest_path))
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        log.warning("manifest_invalid_json", path=str(manifest_path), error=str(exc))
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("entries"), dict):
        log.warning("manifest_invalid_shape", path=str(manifest_path))
        return None

    manifest = create_empty_manifest()
    dropped = 0
    for key, raw in payload["entries"].items():
        problem = _entry_problem(raw)
        if problem:
            log.warning("manifest_entry_invalid", key=key, reason=problem)
            dropped += 1
            continue
        manifest.entries[key] = CacheEntry.from_dict(raw)
    if dropped:
        log.warning("manifest_entries_dropped", count=dropped)
    return manifest


def save_cache_manifest(cache_dir: Path, manifest: CacheManifest) -> None:
    """Write the manifest to ``cache_dir``, creating the directory if needed.

    The file is written next to the target and moved into place, so a failed
    save leaves the previous manifest untouched.

    Args:
        cache_dir: Directory to hold ``manifest.json``.
        manifest: Manifest to persist.

    Raises:
        ManifestSaveError: If the directory or file cannot be written.
    """
    cache_dir = Path(cache_dir)
    manifest_path = cache_dir / MANIFEST_FILENAME
    tmp_path = manifest_path.with_suffix(manifest_path.suffix + ".tmp")
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(
            json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, manifest_path)
    except OSError as exc:
        raise ManifestSaveError(
            manifest_path, _describe_save_error(exc, cache_dir, manifest_path)
        ) from exc
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)


def _describe_save_error(exc: OSError, cache_dir: Path, manifest_path: Path) -> str:
    if isinstance(exc, PermissionError) or exc.errno == errno.EACCES:
        return (
            f"Permission denied saving cache manifest to {manifest_path}. "
            f"Check permissions on {cache_dir}."
        )
    if exc.errno == errno.ENOSPC:
        return (
            f"No space left on device when saving cache manifest to {manifest_path}. "
            "Free up disk space and try again."
        )
    if isinstance(exc, (NotADirectoryError, FileExistsError)) or exc.errno == errno.ENOTDIR:
        return (
            f"Cache directory {cache_dir} is not a directory. "
            "Remove the conflicting file and try again."
        )
    return f"Failed to save cache manifest to {manifest_path}: {exc}"
