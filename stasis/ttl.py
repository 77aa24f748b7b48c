"""TTL and aging policy for the ISG cache.

Fresh content changes often and gets a short TTL; older content settles and
can be cached longer. Aging rules express that as a ladder of
``(until_days, ttl_seconds)`` buckets. Past ``max_age_cap_days`` a page is
frozen and no longer rebuilt on TTL expiry.

Two freeze checks live here with different boundaries at exactly
``age == max_age_cap_days``: :func:`compute_next_rebuild_at` already freezes
(inclusive), :func:`is_page_frozen` does not yet (exclusive).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .utils import ensure_utc, parse_datetime
from .validation import SECONDS_PER_DAY, AgingRule, ISGConfig

if TYPE_CHECKING:
    from .content import Page
    from .manifest import CacheEntry

DEFAULT_TTL_SECONDS = 21600  # 6 hours

# Rebuild time for TTLs too large to add to a date.
FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)

# Front matter keys probed for a publish date, first parseable one wins.
PUBLISHED_DATE_FIELDS: tuple[str, ...] = (
    "published_at",
    "publishedAt",
    "published",
    "date",
    "created_at",
    "createdAt",
)


def get_published_date(page: Page) -> datetime | None:
    """Return the page's publish date.

    Front matter fields from :data:`PUBLISHED_DATE_FIELDS` are tried in order;
    the page's own ``published_at`` (taken from a dated filename) is the last
    resort.

    Args:
        page: Page to inspect.

    Returns:
        Aware datetime, or None if no publish date is known.
    """
    frontmatter = page.frontmatter or {}
    for name in PUBLISHED_DATE_FIELDS:
        parsed = parse_datetime(frontmatter.get(name))
        if parsed is not None:
            return parsed
    return page.published_at


def age_in_days(published_at: datetime, now: datetime) -> float:
    """Fractional days between ``published_at`` and ``now`` (negative if in the future).

    Naive datetimes are taken as UTC.
    """
    return (ensure_utc(now) - ensure_utc(published_at)).total_seconds() / SECONDS_PER_DAY


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def compute_effective_ttl(page: Page, isg_config: ISGConfig, now: datetime) -> int:
    """Compute the TTL a page should be cached for.

    Precedence:
    1. A positive integer ``ttl_seconds`` in the page front matter.
    2. The aging ladder, when the page has a publish date and rules exist.
    3. ``isg_config.ttl_seconds``.
    4. :data:`DEFAULT_TTL_SECONDS`.

    Args:
        page: Page being cached.
        isg_config: Site ISG settings.
        now: Reference time for content age.

    Returns:
        TTL in seconds.
    """
    override = (page.frontmatter or {}).get("ttl_seconds")
    if _positive_int(override):
        return override

    default_ttl = (
        isg_config.ttl_seconds
        if isg_config.ttl_seconds is not None
        else DEFAULT_TTL_SECONDS
    )
    published_at = get_published_date(page)
    if published_at is not None and isg_config.aging:
        return apply_aging_rules(published_at, isg_config.aging, default_ttl, now)
    return default_ttl


def apply_aging_rules(
    published_at: datetime,
    rules: Iterable[AgingRule],
    default_ttl: int,
    now: datetime,
) -> int:
    """Pick the TTL bucket for content of a given age.

    Rules are sorted by ``until_days`` here; callers need not pre-sort.
    Future-dated content counts as age zero.

    Args:
        published_at: When the content was published.
        rules: Aging rules in any order.
        default_ttl: TTL used when there are no rules.
        now: Reference time.

    Returns:
        TTL of the first rule whose ``until_days`` exceeds the age, the last
        rule's TTL when content is older than every rule, or ``default_ttl``.
    """
    ordered = sorted(rules, key=lambda rule: rule.until_days)
    if not ordered:
        return default_ttl
    age_days = max(age_in_days(published_at, now), 0.0)
    for rule in ordered:
        if age_days < rule.until_days:
            return rule.ttl_seconds
    return ordered[-1].ttl_seconds


def compute_next_rebuild_at(
    now: datetime,
    ttl_seconds: int,
    published_at: datetime | None = None,
    max_age_cap_days: int | None = None,
) -> datetime | None:
    """Compute when a page is next due for a TTL rebuild.

    Args:
        now: Baseline time (the last render time when checking an entry).
        ttl_seconds: TTL to add to ``now``.
        published_at: Publish date, if known.
        max_age_cap_days: Freeze threshold, if any.

    Returns:
        ``now + ttl_seconds`` (or :data:`FAR_FUTURE` when that is past the
        largest representable date), or None when the content has reached its
        cap (age greater than or equal to ``max_age_cap_days``).
    """
    now = ensure_utc(now)
    if published_at is not None and max_age_cap_days is not None:
        if age_in_days(published_at, now) >= max_age_cap_days:
            return None
    try:
        return now + timedelta(seconds=ttl_seconds)
    except OverflowError:
        return FAR_FUTURE


def is_page_frozen(entry: CacheEntry, now: datetime) -> bool:
    """Check whether a cached page is past its max age cap.

    Age exactly equal to the cap is not frozen.
    """
    if entry.max_age_cap_days is None or not entry.published_at:
        return False
    published_at = parse_datetime(entry.published_at)
    if published_at is None:
        return False
    return age_in_days(published_at, now) > entry.max_age_cap_days
