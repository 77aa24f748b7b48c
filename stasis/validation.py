"""ISG configuration types and validation.

The ``isg`` block of ``stasis.yaml`` is validated before any build work
starts. The first violation raises :class:`ISGConfigurationError`, which
carries a machine-readable ``code``, the offending ``field`` path and
``value``, and a message with a corrective example.

Checking order:
1. ``enabled`` type.
2. ``ttl_seconds`` type, sign, magnitude.
3. ``max_age_cap_days`` type, sign, magnitude.
4. Each ``aging`` rule on its own (null, shape, fields, sign, magnitude).
5. The ``aging`` list as a whole (sort order, duplicates, cap exceedance).

Example config::

    isg:
      enabled: true
      ttl_seconds: 3600
      max_age_cap_days: 365
      aging:
        - until_days: 7
          ttl_seconds: 3600
        - until_days: 30
          ttl_seconds: 86400
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SECONDS_PER_DAY = 24 * 60 * 60

MAX_TTL_SECONDS = 365 * SECONDS_PER_DAY
MAX_AGING_TTL_SECONDS = 30 * SECONDS_PER_DAY
MAX_AGE_CAP_DAYS = 3650


class ISGValidationError(str, Enum):
    """Error codes for ISG configuration failures."""

    INVALID_ENABLED = "ISG_INVALID_ENABLED"
    INVALID_TTL = "ISG_INVALID_TTL"
    INVALID_MAX_AGE_CAP = "ISG_INVALID_MAX_AGE_CAP"
    INVALID_AGING_RULE = "ISG_INVALID_AGING_RULE"
    UNSORTED_AGING_RULES = "ISG_UNSORTED_AGING_RULES"
    DUPLICATE_AGING_RULE = "ISG_DUPLICATE_AGING_RULE"
    AGING_RULE_EXCEEDS_CAP = "ISG_AGING_RULE_EXCEEDS_CAP"


class ISGConfigurationError(Exception):
    """Invalid ISG configuration.

    Attributes:
        code: Which rule was violated.
        field: Dotted path of the offending setting (e.g. ``aging[1].until_days``).
        value: The offending value.
        message: Human-readable explanation with an example fix.
    """

    def __init__(
        self,
        code: ISGValidationError,
        field: str,
        value: Any,
        message: str,
    ):
        self.code = code
        self.field = field
        self.value = value
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class AgingRule:
    """TTL bucket for content younger than ``until_days``."""

    until_days: int
    ttl_seconds: int


@dataclass
class ISGConfig:
    """Validated ISG settings.

    Attributes:
        enabled: Whether incremental builds are active.
        ttl_seconds: Site-wide TTL, or None for the built-in default.
        max_age_cap_days: Age after which pages freeze, or None.
        aging: Aging ladder, in the order given.
    """

    enabled: bool = True
    ttl_seconds: int | None = None
    max_age_cap_days: int | None = None
    aging: list[AgingRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> ISGConfig:
        """Build an ISGConfig from the raw ``isg`` mapping.

        The mapping is expected to have passed :func:`validate_isg_config`.
        """
        if not raw:
            return cls()
        aging = [
            AgingRule(until_days=rule["until_days"], ttl_seconds=rule["ttl_seconds"])
            for rule in raw.get("aging") or []
        ]
        return cls(
            enabled=raw.get("enabled", True),
            ttl_seconds=raw.get("ttl_seconds"),
            max_age_cap_days=raw.get("max_age_cap_days"),
            aging=aging,
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_isg_config(config: Mapping[str, Any] | None) -> None:
    """Validate the raw ``isg`` configuration mapping.

    Args:
        config: The ``isg`` block from ``stasis.yaml``; None means defaults.

    Raises:
        ISGConfigurationError: On the first invalid setting.
    """
    if config is None:
        return
    if not isinstance(config, Mapping):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_ENABLED,
            "isg",
            config,
            "isg must be a mapping of settings. Example: isg: {enabled: true, ttl_seconds: 3600}",
        )

    enabled = config.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_ENABLED,
            "enabled",
            enabled,
            "enabled must be true or false. Example: enabled: true",
        )

    max_age_cap_days = config.get("max_age_cap_days")
    if config.get("ttl_seconds") is not None:
        _validate_ttl_seconds(config["ttl_seconds"], max_age_cap_days)
    if max_age_cap_days is not None:
        _validate_max_age_cap_days(max_age_cap_days)
    if config.get("aging") is not None:
        _validate_aging_rules(config["aging"], max_age_cap_days)


def _validate_ttl_seconds(ttl_seconds: Any, max_age_cap_days: Any) -> None:
    if not _is_int(ttl_seconds):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_TTL,
            "ttl_seconds",
            ttl_seconds,
            "ttl_seconds must be a whole number of seconds. Example: ttl_seconds: 3600 (1 hour)",
        )
    if ttl_seconds < 0:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_TTL,
            "ttl_seconds",
            ttl_seconds,
            "ttl_seconds cannot be negative. Example: ttl_seconds: 21600 (6 hours)",
        )
    if ttl_seconds > MAX_TTL_SECONDS and max_age_cap_days is None:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_TTL,
            "ttl_seconds",
            ttl_seconds,
            "ttl_seconds is unusually large (>1 year). Lower it or set max_age_cap_days "
            "for long-term caching. Example: ttl_seconds: 86400, max_age_cap_days: 365",
        )


def _validate_max_age_cap_days(max_age_cap_days: Any) -> None:
    if not _is_int(max_age_cap_days):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_MAX_AGE_CAP,
            "max_age_cap_days",
            max_age_cap_days,
            "max_age_cap_days must be a whole number of days. Example: max_age_cap_days: 365",
        )
    if max_age_cap_days <= 0:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_MAX_AGE_CAP,
            "max_age_cap_days",
            max_age_cap_days,
            "max_age_cap_days must be positive. Example: max_age_cap_days: 90",
        )
    if max_age_cap_days > MAX_AGE_CAP_DAYS:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_MAX_AGE_CAP,
            "max_age_cap_days",
            max_age_cap_days,
            "max_age_cap_days is unusually large (>10 years). Example: max_age_cap_days: 365",
        )


def _validate_aging_rule(rule: Any, index: int) -> None:
    prefix = f"aging[{index}]"
    example = "Example: {until_days: 7, ttl_seconds: 3600}"
    if rule is None:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            prefix,
            rule,
            f"Aging rule at index {index} is empty. {example}",
        )
    if not isinstance(rule, Mapping):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            prefix,
            rule,
            f"Aging rule must be a mapping with until_days and ttl_seconds. {example}",
        )
    for name in ("until_days", "ttl_seconds"):
        if name not in rule:
            raise ISGConfigurationError(
                ISGValidationError.INVALID_AGING_RULE,
                f"{prefix}.{name}",
                None,
                f"Aging rule at index {index} is missing {name}. {example}",
            )

    until_days = rule["until_days"]
    if not _is_int(until_days) or until_days <= 0:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            f"{prefix}.until_days",
            until_days,
            "until_days must be a positive whole number of days. Example: until_days: 7",
        )

    ttl_seconds = rule["ttl_seconds"]
    if not _is_int(ttl_seconds) or ttl_seconds < 0:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            f"{prefix}.ttl_seconds",
            ttl_seconds,
            "ttl_seconds must be a non-negative whole number of seconds. "
            "Example: ttl_seconds: 3600 (1 hour)",
        )
    if ttl_seconds > MAX_AGING_TTL_SECONDS:
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            f"{prefix}.ttl_seconds",
            ttl_seconds,
            f"ttl_seconds in aging rule is unusually large (>30 days) for content up to "
            f"{until_days} days old. Example: ttl_seconds: 86400 (1 day)",
        )


def _validate_aging_rules(aging: Any, max_age_cap_days: Any) -> None:
    if not isinstance(aging, list):
        raise ISGConfigurationError(
            ISGValidationError.INVALID_AGING_RULE,
            "aging",
            aging,
            "aging must be a list of rules. Example: aging: [{until_days: 7, ttl_seconds: 3600}]",
        )

    for index, rule in enumerate(aging):
        _validate_aging_rule(rule, index)

    days = [rule["until_days"] for rule in aging]
    if days != sorted(days):
        raise ISGConfigurationError(
            ISGValidationError.UNSORTED_AGING_RULES,
            "aging",
            days,
            f"Aging rules must be sorted by until_days from shortest to longest. "
            f"Example order: {sorted(days)}",
        )

    seen: set[int] = set()
    for index, value in enumerate(days):
        if value in seen:
            raise ISGConfigurationError(
                ISGValidationError.DUPLICATE_AGING_RULE,
                f"aging[{index}].until_days",
                value,
                f"Duplicate aging rule for {value} days; each until_days must be unique. "
                f"Example: until_days: {value + 1}",
            )
        seen.add(value)

    if _is_int(max_age_cap_days):
        for index, value in enumerate(days):
            if value > max_age_cap_days:
                raise ISGConfigurationError(
                    ISGValidationError.AGING_RULE_EXCEEDS_CAP,
                    f"aging[{index}].until_days",
                    value,
                    f"Aging rule for {value} days exceeds max_age_cap_days "
                    f"({max_age_cap_days}) and will never be used. "
                    f"Example: until_days: {max_age_cap_days}",
                )
