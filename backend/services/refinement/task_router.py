"""Router: picks an execution strategy and executor per task, within budget.

Decision table (first match wins):
    1. critical structural issue                      → FULL_REGENERATE    (planner)
    2. prefer_surgical and surgical fits the budget    → SURGICAL_EDIT      (patcher)
    3. >= 3 issues, critical priority, or factual issue → REGENERATE_SECTION (section-regenerator)
    4. otherwise                                       → SURGICAL_EDIT      (patcher)

The chosen action must fit the remaining budget (action max + delta-judge max);
otherwise fall back to SURGICAL_EDIT, or abandon the task.
"""

import logging

from models.schemas.execution import RouterDecision
from models.schemas.plan import ACTION_LADDER, FixAction, SectionRefinementTask, is_structural_failure
from models.schemas.verdict import Criterion, Severity

logger = logging.getLogger(__name__)

# (min, max) estimated tokens per action
TOKEN_COSTS: dict[FixAction, tuple[int, int]] = {
    FixAction.SURGICAL_EDIT: (500, 1000),
    FixAction.REGENERATE_SECTION: (1200, 2000),
    FixAction.FULL_REGENERATE: (5000, 7000),
}
DELTA_JUDGE_TOKENS: tuple[int, int] = (150, 250)

EXECUTORS: dict[FixAction, str] = {
    FixAction.SURGICAL_EDIT: "patcher",
    FixAction.REGENERATE_SECTION: "section-regenerator",
    FixAction.FULL_REGENERATE: "planner",
}

SECTION_ISSUE_THRESHOLD = 3


def projected_cost(action: FixAction) -> int:
    """Worst-case tokens to execute and verify one action."""
    if action == FixAction.FULL_REGENERATE:
        return TOKEN_COSTS[action][1]
    return TOKEN_COSTS[action][1] + DELTA_JUDGE_TOKENS[1]


def _decision(task: SectionRefinementTask, action: FixAction, reason: str) -> RouterDecision:
    return RouterDecision(
        task=task,
        action=action,
        executor=EXECUTORS[action],
        estimated_tokens=TOKEN_COSTS[action][1],
        reason=reason,
    )


def _abandon(task: SectionRefinementTask, action: FixAction, remaining_budget: int) -> RouterDecision:
    return RouterDecision(
        task=task,
        action=action,
        executor=EXECUTORS[action],
        estimated_tokens=0,
        reason=f"Insufficient budget: {remaining_budget} tokens left, cheapest action needs {projected_cost(FixAction.SURGICAL_EDIT)}",
        abandoned=True,
    )


def _select_action(task: SectionRefinementTask, remaining_budget: int, prefer_surgical: bool) -> tuple[FixAction, str]:
    issues = task.source_issues
    if any(is_structural_failure(i) for i in issues):
        return FixAction.FULL_REGENERATE, "Critical structural issue requires full regeneration"
    if prefer_surgical and projected_cost(FixAction.SURGICAL_EDIT) <= remaining_budget:
        return FixAction.SURGICAL_EDIT, "Surgical edit preferred and fits remaining budget"
    if len(issues) >= SECTION_ISSUE_THRESHOLD:
        return FixAction.REGENERATE_SECTION, f"{len(issues)} issues exceed the per-section threshold"
    if task.priority == Severity.CRITICAL:
        return FixAction.REGENERATE_SECTION, "Critical issue severity requires section regeneration"
    if any(i.criterion == Criterion.FACTUAL_ACCURACY for i in issues):
        return FixAction.REGENERATE_SECTION, "Factual accuracy issue requires section regeneration"
    return FixAction.SURGICAL_EDIT, "Default routing based on configuration preference"


def route_task(task: SectionRefinementTask, remaining_budget: int, prefer_surgical: bool = True) -> RouterDecision:
    action, reason = _select_action(task, remaining_budget, prefer_surgical)

    if projected_cost(action) > remaining_budget:
        if action != FixAction.SURGICAL_EDIT and projected_cost(FixAction.SURGICAL_EDIT) <= remaining_budget:
            logger.info(
                "Downgrading %s to SURGICAL_EDIT for %s (budget %d)", action.value, task.section_id, remaining_budget
            )
            return _decision(
                task,
                FixAction.SURGICAL_EDIT,
                f"Downgraded from {action.value}: projected {projected_cost(action)} tokens exceeds budget",
            )
        logger.warning("Abandoning task for %s: budget %d exhausted", task.section_id, remaining_budget)
        return _abandon(task, action, remaining_budget)

    return _decision(task, action, reason)


def escalate(decision: RouterDecision, remaining_budget: int) -> RouterDecision | None:
    """Next rung of SURGICAL_EDIT → REGENERATE_SECTION → FULL_REGENERATE, if affordable."""
    idx = ACTION_LADDER.index(decision.action)
    if idx + 1 >= len(ACTION_LADDER):
        return None
    next_action = ACTION_LADDER[idx + 1]
    if projected_cost(next_action) > remaining_budget:
        logger.info(
            "Cannot escalate %s to %s: budget %d", decision.task.section_id, next_action.value, remaining_budget
        )
        return None
    return _decision(decision.task, next_action, f"Escalated after failed {decision.action.value}")
