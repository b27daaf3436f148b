"""Search preference drafting, filter plan construction and execution bookkeeping."""

import logging
from datetime import datetime
from typing import Any

from vacancy_agent.core.errors import PlanConstructionError
from vacancy_agent.core.schemas import (
    ActionType,
    AppliedFiltersSnapshot,
    AppliedStepResult,
    ControlType,
    DefaultBehavior,
    ExecutionStatus,
    SearchApplyPlan,
    SearchApplyStep,
    SearchFieldDefinition,
    SearchUISpec,
    SemanticType,
    TargetingSpec,
    UserConstraints,
    UserSearchPrefs,
    WorkMode,
)

logger = logging.getLogger(__name__)

MAX_STEP_ATTEMPTS = 3

SEMANTIC_PRIORITY: dict[SemanticType, int] = {
    SemanticType.LOCATION: 10,
    SemanticType.WORK_MODE: 20,
    SemanticType.SALARY: 30,
    SemanticType.KEYWORD: 40,
    SemanticType.OTHER: 50,
    SemanticType.SUBMIT: 99,
}

CONTROL_ACTIONS: dict[ControlType, ActionType] = {
    ControlType.TEXT: ActionType.FILL_TEXT,
    ControlType.RANGE: ActionType.FILL_TEXT,
    ControlType.SELECT: ActionType.SELECT_OPTION,
    ControlType.CHECKBOX: ActionType.TOGGLE_CHECKBOX,
    ControlType.RADIO: ActionType.TOGGLE_CHECKBOX,
    ControlType.BUTTON: ActionType.CLICK,
}

WORK_MODE_LABELS: dict[WorkMode, tuple[str, ...]] = {
    WorkMode.REMOTE: ("удал", "remote"),
    WorkMode.HYBRID: ("гибрид", "hybrid"),
    WorkMode.OFFICE: ("офис", "office", "на месте"),
}


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


def _keyword_title(targeting: TargetingSpec, constraints: UserConstraints) -> str | None:
    roles = targeting.target_roles
    by_language = {"ru": roles.ru_titles, "en": roles.en_titles}
    for language in constraints.target_languages:
        titles = [t for t in by_language.get(language, []) if t.strip()]
        if titles:
            return titles[0]
    titles = [t for t in roles.all_titles() if t.strip()]
    return titles[0] if titles else None


def _mode_markers(field: SearchFieldDefinition) -> dict[WorkMode, bool]:
    label = field.label.lower()
    return {mode: any(m in label for m in markers) for mode, markers in WORK_MODE_LABELS.items()}


def _work_mode_value(field: SearchFieldDefinition, modes: list[WorkMode]) -> Any:
    if field.ui_control_type in (ControlType.CHECKBOX, ControlType.RADIO):
        markers = _mode_markers(field)
        if not any(markers.values()):
            return field.default_behavior == DefaultBehavior.INCLUDE
        return any(markers[m] for m in modes if m in markers)
    if field.ui_control_type == ControlType.SELECT:
        for mode in modes:
            for option in field.options:
                if any(m in option.lower() for m in WORK_MODE_LABELS.get(mode, ())):
                    return option
    return None


def draft_search_prefs(
    site_id: str,
    ui_spec: SearchUISpec,
    targeting: TargetingSpec,
    constraints: UserConstraints,
) -> UserSearchPrefs:
    """Fill search fields from the targeting spec and the user's constraints."""
    filters: dict[str, Any] = {}
    modes = [m for m in constraints.preferred_work_modes if m != WorkMode.ANY]
    for field in ui_spec.fields:
        if field.default_behavior == DefaultBehavior.EXCLUDE:
            continue
        value: Any = None
        if field.semantic_type == SemanticType.KEYWORD:
            value = _keyword_title(targeting, constraints)
        elif field.semantic_type == SemanticType.SALARY:
            value = constraints.min_salary
        elif field.semantic_type == SemanticType.LOCATION:
            value = constraints.city
        elif field.semantic_type == SemanticType.WORK_MODE and modes:
            value = _work_mode_value(field, modes)
        if value is not None and value is not False:
            filters[field.key] = value
    return UserSearchPrefs(site_id=site_id, filters=filters)


def apply_overrides(prefs: UserSearchPrefs, overrides: dict[str, Any]) -> UserSearchPrefs:
    """Layer user overrides onto drafted prefs. A ``None`` override removes the key."""
    if not overrides:
        return prefs
    filters = dict(prefs.filters)
    for key, value in overrides.items():
        if value is None:
            filters.pop(key, None)
        else:
            filters[key] = value
    return prefs.model_copy(update={"filters": filters, "updated_at": datetime.now()})


# ---------------------------------------------------------------------------
# Plan construction
# ---------------------------------------------------------------------------


def build_apply_plan(ui_spec: SearchUISpec, prefs: UserSearchPrefs) -> SearchApplyPlan:
    """Turn prefs into ordered control actions, submit last.

    Raises:
        PlanConstructionError: If a preference names a field the UI spec lacks.
    """
    unknown = sorted(k for k in prefs.filters if ui_spec.field(k) is None)
    if unknown:
        msg = f"Preferences reference unknown search fields: {', '.join(unknown)}"
        raise PlanConstructionError(msg)

    steps: list[SearchApplyStep] = []
    for field in ui_spec.fields:
        if field.semantic_type == SemanticType.SUBMIT or field.key not in prefs.filters:
            continue
        value = prefs.filters[field.key]
        if value is None or value == "":
            continue
        steps.append(SearchApplyStep(
            step_id="",
            field_key=field.key,
            action_type=CONTROL_ACTIONS.get(field.ui_control_type, ActionType.UNKNOWN),
            value=value,
            rationale=f"User preference for {field.label}",
            priority=SEMANTIC_PRIORITY[field.semantic_type],
        ))

    for field in ui_spec.fields:
        if field.semantic_type == SemanticType.SUBMIT:
            steps.append(SearchApplyStep(
                step_id="",
                field_key=field.key,
                action_type=ActionType.CLICK,
                value=True,
                rationale="Run the search",
                priority=SEMANTIC_PRIORITY[SemanticType.SUBMIT],
            ))
            break

    ordered = sorted(steps, key=lambda s: s.priority)
    numbered = tuple(
        step.model_copy(update={"step_id": f"step-{i}"}) for i, step in enumerate(ordered)
    )
    return SearchApplyPlan(site_id=prefs.site_id, steps=numbered)


# ---------------------------------------------------------------------------
# Execution bookkeeping
# ---------------------------------------------------------------------------


def succeeded_step_ids(snapshot: AppliedFiltersSnapshot) -> set[str]:
    return {r.step_id for r in snapshot.results if r.success}


def failure_count(snapshot: AppliedFiltersSnapshot, step_id: str) -> int:
    return sum(1 for r in snapshot.results if r.step_id == step_id and not r.success)


def next_pending_step(
    plan: SearchApplyPlan, snapshot: AppliedFiltersSnapshot,
) -> SearchApplyStep | None:
    done = succeeded_step_ids(snapshot)
    for step in plan.steps:
        if step.step_id not in done:
            return step
    return None


def derive_overall_status(
    plan: SearchApplyPlan, snapshot: AppliedFiltersSnapshot,
) -> ExecutionStatus:
    done = succeeded_step_ids(snapshot)
    for step in plan.steps:
        if step.step_id not in done and failure_count(snapshot, step.step_id) >= MAX_STEP_ATTEMPTS:
            return ExecutionStatus.FAILED
    if all(step.step_id in done for step in plan.steps):
        return ExecutionStatus.COMPLETED
    return ExecutionStatus.IN_PROGRESS


def record_attempt(
    plan: SearchApplyPlan,
    snapshot: AppliedFiltersSnapshot,
    step: SearchApplyStep,
    *,
    success: bool,
    observed_value: Any = None,
    error: str | None = None,
) -> AppliedFiltersSnapshot:
    """Append one attempt and recompute the overall status."""
    result = AppliedStepResult(
        step_id=step.step_id,
        field_key=step.field_key,
        action_type=step.action_type,
        intended_value=step.value,
        success=success,
        observed_value=observed_value,
        error=error,
    )
    grown = snapshot.model_copy(update={
        "results": (*snapshot.results, result),
        "last_updated_at": datetime.now(),
    })
    return grown.model_copy(update={"overall_status": derive_overall_status(plan, grown)})
