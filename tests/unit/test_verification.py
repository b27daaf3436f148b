"""Tests for read-back verification of applied filters."""

import pytest

from vacancy_agent.core.schemas import (
    ActionType,
    AppliedFiltersSnapshot,
    AppliedStepResult,
    ReadbackSource,
    VerificationStatus,
)
from vacancy_agent.pipeline.verification import (
    build_verification,
    check_field,
    expected_field_values,
    loose_equals,
)


class TestLooseEquals:
    @pytest.mark.parametrize(
        ("actual", "expected"),
        [
            ("Москва", "Москва"),
            ("true", True),
            ("True", True),
            (False, "false"),
            ("1", 1.0),
            (250000, "250000"),
            (" 250000 ", 250000),
            (None, None),
        ],
    )
    def test_equal(self, actual: object, expected: object) -> None:
        assert loose_equals(actual, expected)

    @pytest.mark.parametrize(
        ("actual", "expected"),
        [
            (None, ""),
            ("", None),
            (None, False),
            ("Казань", "Москва"),
            ("1.5", 1),
            ("yes", True),
        ],
    )
    def test_not_equal(self, actual: object, expected: object) -> None:
        assert not loose_equals(actual, expected)


def _result(field_key: str, value: object, *, action: ActionType = ActionType.FILL_TEXT,
            success: bool = True) -> AppliedStepResult:
    return AppliedStepResult(
        step_id=f"step-{field_key}",
        field_key=field_key,
        action_type=action,
        intended_value=value,
        success=success,
    )


class TestExpectedValues:
    def test_skips_clicks_and_failures(self) -> None:
        snapshot = AppliedFiltersSnapshot(
            site_id="hh.ru",
            results=(
                _result("text", "Python"),
                _result("salary", 300000, success=False),
                _result("remote", True, action=ActionType.TOGGLE_CHECKBOX),
                _result("submit", True, action=ActionType.CLICK),
            ),
        )
        assert expected_field_values(snapshot) == {"text": "Python", "remote": True}

    def test_last_success_wins(self) -> None:
        snapshot = AppliedFiltersSnapshot(
            site_id="hh.ru",
            results=(_result("text", "Python"), _result("text", "Go")),
        )
        assert expected_field_values(snapshot) == {"text": "Go"}


class TestBuildVerification:
    def test_check_field_statuses(self) -> None:
        source = ReadbackSource.CONTROL_VALUE
        assert check_field("a", "x", "x", source).status == VerificationStatus.MATCH
        assert check_field("a", "x", "y", source).status == VerificationStatus.MISMATCH
        assert check_field("a", "x", None, source).status == VerificationStatus.UNKNOWN

    def test_unknown_does_not_block(self) -> None:
        results = [
            check_field("text", "Python", "Python", ReadbackSource.CONTROL_VALUE),
            check_field("area", "Москва", None, ReadbackSource.UNKNOWN),
        ]
        verification = build_verification("hh.ru", results)
        assert verification.verified is True
        assert verification.mismatches == ()
        assert len(verification.results) == 2

    def test_mismatch_listed(self) -> None:
        results = [
            check_field("salary", 300000, "250000", ReadbackSource.URL_PARAMS),
            check_field("remote", True, "true", ReadbackSource.CONTROL_VALUE),
        ]
        verification = build_verification("hh.ru", results)
        assert verification.verified is False
        assert [m.field_key for m in verification.mismatches] == ["salary"]
