"""Tests for the Router."""

from models.schemas.plan import FixAction, SectionRefinementTask, TargetedIssue
from models.schemas.verdict import Criterion, Severity
from services.refinement.task_router import escalate, projected_cost, route_task

BIG_BUDGET = 15000


def _issue(n: int, criterion=Criterion.CLARITY_READABILITY, severity=Severity.MINOR) -> TargetedIssue:
    return TargetedIssue(
        id=f"light:{criterion.value}:{n}",
        target_section_id="light",
        criterion=criterion,
        severity=severity,
        location="light",
        description="problem",
    )


def _task(*issues: TargetedIssue) -> SectionRefinementTask:
    priority = min((i.severity for i in issues), key=lambda s: ["critical", "major", "minor"].index(s.value))
    return SectionRefinementTask(
        section_id="light",
        action_type=FixAction.SURGICAL_EDIT,
        synthesized_instructions="Address the following issues in this section:",
        priority=priority,
        source_issues=list(issues),
    )


class TestRouteTask:
    def test_critical_structural_goes_to_planner(self):
        task = _task(_issue(0, Criterion.PEDAGOGICAL_STRUCTURE, Severity.CRITICAL))
        decision = route_task(task, BIG_BUDGET)
        assert decision.action == FixAction.FULL_REGENERATE
        assert decision.executor == "planner"

    def test_prefer_surgical_when_affordable(self):
        task = _task(_issue(0), _issue(1), _issue(2))
        decision = route_task(task, BIG_BUDGET, prefer_surgical=True)
        assert decision.action == FixAction.SURGICAL_EDIT
        assert decision.executor == "patcher"
        assert decision.estimated_tokens == 1000

    def test_issue_density_regenerates(self):
        task = _task(_issue(0), _issue(1), _issue(2))
        decision = route_task(task, BIG_BUDGET, prefer_surgical=False)
        assert decision.action == FixAction.REGENERATE_SECTION
        assert decision.executor == "section-regenerator"

    def test_critical_priority_regenerates(self):
        task = _task(_issue(0, severity=Severity.CRITICAL))
        assert route_task(task, BIG_BUDGET, prefer_surgical=False).action == FixAction.REGENERATE_SECTION

    def test_factual_issue_regenerates(self):
        task = _task(_issue(0, Criterion.FACTUAL_ACCURACY))
        assert route_task(task, BIG_BUDGET, prefer_surgical=False).action == FixAction.REGENERATE_SECTION

    def test_default_is_surgical(self):
        task = _task(_issue(0))
        assert route_task(task, BIG_BUDGET, prefer_surgical=False).action == FixAction.SURGICAL_EDIT

    def test_downgrade_to_surgical_when_budget_tight(self):
        task = _task(_issue(0), _issue(1), _issue(2))
        decision = route_task(task, 1500, prefer_surgical=False)
        assert decision.action == FixAction.SURGICAL_EDIT
        assert not decision.abandoned
        assert "Downgraded" in decision.reason

    def test_full_regenerate_downgraded_when_unaffordable(self):
        task = _task(_issue(0, Criterion.LEARNING_OBJECTIVE_ALIGNMENT, Severity.CRITICAL))
        assert route_task(task, 6000).action == FixAction.SURGICAL_EDIT

    def test_abandoned_when_nothing_fits(self):
        decision = route_task(_task(_issue(0)), projected_cost(FixAction.SURGICAL_EDIT) - 1)
        assert decision.abandoned is True
        assert decision.estimated_tokens == 0


class TestEscalate:
    def test_climbs_the_ladder(self):
        decision = route_task(_task(_issue(0)), BIG_BUDGET)
        regen = escalate(decision, BIG_BUDGET)
        assert regen.action == FixAction.REGENERATE_SECTION
        full = escalate(regen, BIG_BUDGET)
        assert full.action == FixAction.FULL_REGENERATE
        assert escalate(full, BIG_BUDGET) is None

    def test_stops_when_budget_exhausted(self):
        decision = route_task(_task(_issue(0)), BIG_BUDGET)
        assert escalate(decision, 2000) is None
