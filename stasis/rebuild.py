"""Rebuild decisions and cache entry construction for incremental builds.

The build driver asks :func:`should_rebuild_page` for every page. Pages that
need rendering are rendered elsewhere and then recorded with
:func:`create_cache_entry` (first render) or :func:`update_cache_entry`
(subsequent renders).

A page is rebuilt when:
- it has no cache entry yet;
- it is not frozen and its inputs hash changed (content, front matter, layout
  or partials);
- it is not frozen and its TTL has elapsed since the last render.

Errors from dependency tracking or hashing are not caught here.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from .deps import track_template_dependencies
from .hashing import compute_content_hash, compute_file_hash, compute_inputs_hash
from .manifest import CacheEntry
from .ttl import (
    compute_effective_ttl,
    compute_next_rebuild_at,
    get_published_date,
    is_page_frozen,
)
from .utils import ensure_utc, parse_datetime, to_iso
from .validation import ISGConfig

if TYPE_CHECKING:
    from .content import Page

PAGE_TAG = "page"


def isg_config_from(config: dict[str, Any]) -> ISGConfig:
    """Return the ISG settings of a site config as an :class:`ISGConfig`."""
    isg = config.get("isg")
    if isinstance(isg, ISGConfig):
        return isg
    return ISGConfig.from_dict(isg)


def output_path_for(url: str) -> str:
    """Map a page URL to its output path key.

    Examples:
        >>> output_path_for("/")
        '/index.html'
        >>> output_path_for("/posts/hello/")
        '/posts/hello/index.html'
        >>> output_path_for("/about")
        '/about.html'
    """
    if url == "/":
        return "/index.html"
    if url.endswith("/"):
        return f"{url}index.html"
    return f"{url}.html"


def _compute_inputs(page: Page, config: dict[str, Any]) -> tuple[list[str], str]:
    """Return the page's dependencies and its current inputs hash."""
    content_hash = compute_content_hash(page.body, page.frontmatter)
    deps = track_template_dependencies(page, config)
    dependency_hashes = [compute_file_hash(dep) for dep in deps]
    return deps, compute_inputs_hash(content_hash, dependency_hashes)


def should_rebuild_page(
    page: Page,
    existing_entry: CacheEntry | None,
    config: dict[str, Any],
    now: datetime,
) -> bool:
    """Decide whether a page must be re-rendered.

    Args:
        page: Page to check.
        existing_entry: Its cache entry from the manifest, if any.
        config: Site config (``src_dir``, ``isg``).
        now: Current build time.

    Returns:
        True if the page should be rendered in this build.
    """
    if existing_entry is None:
        return True
    now = ensure_utc(now)

    # Inputs are computed even for frozen pages so tracking errors still surface.
    _, inputs_hash = _compute_inputs(page, config)

    if is_page_frozen(existing_entry, now):
        return False

    if inputs_hash != existing_entry.inputs_hash:
        return True

    rendered_at = parse_datetime(existing_entry.rendered_at)
    if rendered_at is None:
        return True
    next_rebuild_at = compute_next_rebuild_at(
        rendered_at,
        existing_entry.ttl_seconds,
        published_at=parse_datetime(existing_entry.published_at),
        max_age_cap_days=existing_entry.max_age_cap_days,
    )
    if next_rebuild_at is None:
        return False
    return next_rebuild_at <= now


def _tags_for(page: Page) -> list[str]:
    tags = [PAGE_TAG]
    raw = (page.frontmatter or {}).get("tags")
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, list):
        for tag in raw:
            if isinstance(tag, str) and tag not in tags:
                tags.append(tag)
    return tags


def _max_age_cap_days(page: Page, isg_config: ISGConfig) -> int | None:
    override = (page.frontmatter or {}).get("max_age_cap_days")
    if isinstance(override, int) and not isinstance(override, bool) and override > 0:
        return override
    return isg_config.max_age_cap_days


def create_cache_entry(page: Page, config: dict[str, Any], now: datetime) -> CacheEntry:
    """Build the cache entry for a freshly rendered page.

    Args:
        page: The rendered page.
        config: Site config (``src_dir``, ``isg``).
        now: Render time, stored as ``rendered_at``.

    Returns:
        New cache entry keyed by the page's output path.
    """
    isg_config = isg_config_from(config)
    deps, inputs_hash = _compute_inputs(page, config)
    published_at = get_published_date(page)
    return CacheEntry(
        path=output_path_for(page.url),
        inputs_hash=inputs_hash,
        deps=deps,
        tags=_tags_for(page),
        rendered_at=to_iso(now),
        ttl_seconds=compute_effective_ttl(page, isg_config, now),
        published_at=to_iso(published_at) if published_at else None,
        max_age_cap_days=_max_age_cap_days(page, isg_config),
    )


def update_cache_entry(
    existing_entry: CacheEntry, page: Page, config: dict[str, Any], now: datetime
) -> CacheEntry:
    """Rebuild a cache entry after re-rendering a page.

    A publish date already on record is kept when the page no longer
    provides one.
    """
    entry = create_cache_entry(page, config, now)
    if entry.published_at is None and existing_entry.published_at:
        entry.published_at = existing_entry.published_at
    return entry
