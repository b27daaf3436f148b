"""Read-back verification of applied search filters."""

from typing import Any

from vacancy_agent.core.schemas import (
    ActionType,
    AppliedFiltersSnapshot,
    ControlVerificationResult,
    FiltersVerification,
    ReadbackSource,
    VerificationStatus,
)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def loose_equals(actual: Any, expected: Any) -> bool:
    """Compare a read-back control value with the value that was written.

    Rules, in order:
      1. exact match of same-typed values;
      2. match of the stringified values (booleans as ``true``/``false``,
         integral floats without ``.0``);
      3. if either side is a boolean, case-insensitive stringified match.

    ``None`` equals only ``None``.
    """
    if actual is None or expected is None:
        return actual is None and expected is None
    if type(actual) is type(expected) and actual == expected:
        return True
    left, right = _stringify(actual), _stringify(expected)
    if left == right:
        return True
    if isinstance(actual, bool) or isinstance(expected, bool):
        return left.lower() == right.lower()
    return False


def expected_field_values(snapshot: AppliedFiltersSnapshot) -> dict[str, Any]:
    """Last successfully applied value per field, skipping clicks."""
    expected: dict[str, Any] = {}
    for result in snapshot.results:
        if result.success and result.action_type != ActionType.CLICK:
            expected[result.field_key] = result.intended_value
    return expected


def check_field(
    field_key: str, expected: Any, actual: Any, source: ReadbackSource,
) -> ControlVerificationResult:
    if actual is None:
        status = VerificationStatus.UNKNOWN
    elif loose_equals(actual, expected):
        status = VerificationStatus.MATCH
    else:
        status = VerificationStatus.MISMATCH
    return ControlVerificationResult(
        field_key=field_key,
        expected_value=expected,
        actual_value=actual,
        source=source,
        status=status,
    )


def build_verification(
    site_id: str, results: list[ControlVerificationResult],
) -> FiltersVerification:
    mismatches = tuple(r for r in results if r.status == VerificationStatus.MISMATCH)
    return FiltersVerification(
        site_id=site_id,
        verified=not mismatches,
        results=tuple(results),
        mismatches=mismatches,
    )
