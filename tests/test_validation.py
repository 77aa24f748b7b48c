import pytest

from stasis.validation import (
    MAX_TTL_SECONDS,
    AgingRule,
    ISGConfig,
    ISGConfigurationError,
    ISGValidationError,
    validate_isg_config,
)


def _error(config) -> ISGConfigurationError:
    with pytest.raises(ISGConfigurationError) as exc_info:
        validate_isg_config(config)
    return exc_info.value


def test_valid_configs_pass():
    validate_isg_config(None)
    validate_isg_config({})
    validate_isg_config({"enabled": False})
    validate_isg_config({"ttl_seconds": 0})
    validate_isg_config(
        {
            "ttl_seconds": 3600,
            "max_age_cap_days": 365,
            "aging": [
                {"until_days": 7, "ttl_seconds": 3600},
                {"until_days": 30, "ttl_seconds": 86400},
            ],
        }
    )


def test_long_ttl_needs_max_age_cap():
    err = _error({"ttl_seconds": MAX_TTL_SECONDS + 1})
    assert err.code is ISGValidationError.INVALID_TTL
    assert "max_age_cap_days" in err.message
    validate_isg_config({"ttl_seconds": MAX_TTL_SECONDS + 1, "max_age_cap_days": 3650})


@pytest.mark.parametrize("value", [-1, 1.5, True, "3600"])
def test_invalid_ttl(value):
    err = _error({"ttl_seconds": value})
    assert err.code is ISGValidationError.INVALID_TTL
    assert err.field == "ttl_seconds"
    assert err.value == value
    assert "Example" in err.message


@pytest.mark.parametrize("value", [0, -5, 3651, 2.5, False])
def test_invalid_max_age_cap(value):
    err = _error({"max_age_cap_days": value})
    assert err.code is ISGValidationError.INVALID_MAX_AGE_CAP
    assert err.field == "max_age_cap_days"


def test_ttl_checked_before_cap():
    err = _error({"ttl_seconds": -1, "max_age_cap_days": 0})
    assert err.code is ISGValidationError.INVALID_TTL


@pytest.mark.parametrize(
    "rule, field",
    [
        (None, "aging[0]"),
        ("7 days", "aging[0]"),
        ({"ttl_seconds": 60}, "aging[0].until_days"),
        ({"until_days": 7}, "aging[0].ttl_seconds"),
        ({"until_days": 0, "ttl_seconds": 60}, "aging[0].until_days"),
        ({"until_days": 7, "ttl_seconds": -1}, "aging[0].ttl_seconds"),
        ({"until_days": 7, "ttl_seconds": 31 * 86400}, "aging[0].ttl_seconds"),
    ],
)
def test_invalid_aging_rule(rule, field):
    err = _error({"aging": [rule]})
    assert err.code is ISGValidationError.INVALID_AGING_RULE
    assert err.field == field
    assert "Example" in err.message


def test_aging_must_be_a_list():
    err = _error({"aging": {"until_days": 7, "ttl_seconds": 60}})
    assert err.code is ISGValidationError.INVALID_AGING_RULE
    assert err.field == "aging"


def test_unsorted_aging_rules():
    err = _error(
        {
            "aging": [
                {"until_days": 30, "ttl_seconds": 3600},
                {"until_days": 7, "ttl_seconds": 60},
            ]
        }
    )
    assert err.code is ISGValidationError.UNSORTED_AGING_RULES
    assert err.field == "aging"


def test_duplicate_aging_rules():
    err = _error(
        {
            "aging": [
                {"until_days": 7, "ttl_seconds": 60},
                {"until_days": 7, "ttl_seconds": 120},
            ]
        }
    )
    assert err.code is ISGValidationError.DUPLICATE_AGING_RULE
    assert err.field == "aging[1].until_days"


def test_aging_rule_exceeding_cap():
    err = _error(
        {
            "max_age_cap_days": 30,
            "aging": [
                {"until_days": 7, "ttl_seconds": 60},
                {"until_days": 60, "ttl_seconds": 120},
            ],
        }
    )
    assert err.code is ISGValidationError.AGING_RULE_EXCEEDS_CAP
    assert err.field == "aging[1].until_days"
    assert err.value == 60


def test_enabled_must_be_bool():
    err = _error({"enabled": "yes"})
    assert err.code is ISGValidationError.INVALID_ENABLED
    assert _error(["not", "a", "mapping"]).field == "isg"


def test_isg_config_from_dict():
    config = ISGConfig.from_dict(
        {
            "enabled": False,
            "ttl_seconds": 60,
            "max_age_cap_days": 10,
            "aging": [{"until_days": 3, "ttl_seconds": 30}],
        }
    )
    assert config.enabled is False
    assert config.ttl_seconds == 60
    assert config.max_age_cap_days == 10
    assert config.aging == [AgingRule(until_days=3, ttl_seconds=30)]

    default = ISGConfig.from_dict(None)
    assert default.enabled is True
    assert default.aging == []
