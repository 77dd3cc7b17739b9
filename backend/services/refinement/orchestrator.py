"""Refinement orchestrator: runs the evaluate → plan → patch → verify loop.

Flow:
    LessonContent
      ├─ ConsensusAggregator.evaluate()        → ConsensusResult (iteration 0)
      │       score >= accept? ─────────────────────────────────→ accepted
      ├─ build_refinement_plan()               → RefinementPlan
      │
      └─ loop while IterationController says continue:
            for batch in plan.execution_batches   (sequential)
              ├─ per task, concurrently under a semaphore:
              │     route_task() → Patcher | SectionRegenerator | FullRegenerator
              │     DeltaVerifier.verify() → retry once one rung up, else abandon
              ├─ IterationController.merge_batch() (quality locks, commit/rollback)
              └─ budget / timeout check
            ConsensusAggregator.evaluate()   → score, raise locks
            build_refinement_plan()          → next plan
            should_continue_iteration()
      ↓
    SCORE_MET → accepted, otherwise create_best_effort_result()
"""

import asyncio
import logging
import time
from typing import Callable

from models.schemas.best_effort import RefinementResult, RefinementStatus
from models.schemas.consensus import ConsensusResult
from models.schemas.content import LessonContent, LessonSection
from models.schemas.events import (
    ArbiterCompleteEvent,
    BatchCompleteEvent,
    BatchStartedEvent,
    BudgetWarningEvent,
    EscalationTriggeredEvent,
    IterationCompleteEvent,
    NewIssueDetectedEvent,
    PatchAppliedEvent,
    QualityLockTriggeredEvent,
    RefinementCompleteEvent,
    RefinementEvent,
    RefinementStartEvent,
    SectionLockedEvent,
    TaskStartedEvent,
    VerificationResultEvent,
)
from models.schemas.execution import RestartSignal, RouterDecision, TaskOutcome, TaskStatus
from models.schemas.iteration import ControllerDecision, IterationResult, StopReason
from models.schemas.plan import FixAction, PlanStatus, RefinementPlan, SectionRefinementTask
from models.schemas.refinement_config import OnMaxIterations, RefinementConfig
from models.schemas.verdict import DEFAULT_RUBRIC, CriterionConfig, EvaluationRequest, Issue
from services.refinement.arbiter import build_refinement_plan, deduplicate_issues
from services.refinement.base import GenerationService
from services.refinement.best_effort import create_best_effort_result
from services.refinement.consensus import ConsensusAggregator
from services.refinement.delta_verifier import DeltaVerifier
from services.refinement.errors import EvaluatorUnavailable
from services.refinement.evaluator import compute_overall_score, validate_rubric
from services.refinement.events import EventStream
from services.refinement.executors import FullRegenerator, Patcher, SectionRegenerator
from services.refinement.iteration_controller import BatchMergeReport, IterationController
from services.refinement.task_router import escalate, route_task

logger = logging.getLogger(__name__)

BUDGET_WARNING_RATIO = 0.80
MAX_TASK_ATTEMPTS = 2  # first attempt plus one rung up the ladder


class RefinementRun:
    """State and collaborators for a single call to refine()."""

    def __init__(
        self,
        content: LessonContent,
        config: RefinementConfig,
        panel: ConsensusAggregator,
        generator: GenerationService,
        rubric: list[CriterionConfig],
        events: EventStream | None,
        prefer_surgical: bool,
        supporting_context: list[str],
        target_word_count: int | None,
        clock: Callable[[], float],
    ) -> None:
        self.original = content
        self.config = config
        self.panel = panel
        self.rubric = rubric
        self.events = events
        self.prefer_surgical = prefer_surgical
        self.supporting_context = supporting_context
        self.target_word_count = target_word_count

        self.controller = IterationController(config, content, clock)
        self.patcher = Patcher(generator)
        self.regenerator = SectionRegenerator(generator)
        self.full_regenerator = FullRegenerator()
        self.verifier = DeltaVerifier(panel.primary, rubric)

        self.requires_human_review = False
        self.budget_warned = False
        self.executed_plan: RefinementPlan | None = None
        self.restart_signals: dict[str, RestartSignal] = {}
        self.unresolved: list[Issue] = []

    # --- events ---

    def emit(self, event: RefinementEvent) -> None:
        if self.events is not None:
            self.events.publish(event)

    def check_budget_warning(self) -> None:
        used = self.controller.state.tokens_used
        if not self.budget_warned and used >= self.config.max_tokens * BUDGET_WARNING_RATIO:
            self.budget_warned = True
            logger.warning("Token budget at %d/%d", used, self.config.max_tokens)
            self.emit(BudgetWarningEvent(
                lesson_id=self.original.lesson_id, tokens_used=used, max_tokens=self.config.max_tokens,
            ))

    # --- evaluation ---

    async def evaluate(self, content: LessonContent) -> ConsensusResult:
        request = EvaluationRequest(
            content=content,
            learning_objectives=content.learning_objectives,
            source_materials=content.source_materials,
            rubric=self.rubric,
        )
        return await self.panel.evaluate(request)

    def snapshot(self, iteration: int, content: LessonContent, consensus: ConsensusResult) -> IterationResult:
        return IterationResult(
            iteration=iteration,
            content=content,
            score=consensus.final_score,
            criteria_scores=consensus.criteria_scores,
            issues=[issue for issue, _ in deduplicate_issues(consensus)],
            tokens_used=consensus.tokens_used,
        )

    def plan(self, consensus: ConsensusResult) -> RefinementPlan:
        plan = build_refinement_plan(
            consensus, self.controller.content, self.config, self.controller.state.locked_sections
        )
        if plan.requires_human_review:
            self.requires_human_review = True
        return plan

    # --- main loop ---

    async def run(self) -> RefinementResult:
        lesson_id = self.original.lesson_id
        logger.info(
            "Refinement started: lesson=%s mode=%s sections=%d",
            lesson_id, self.config.mode.value, len(self.original.sections),
        )
        try:
            consensus = await self.evaluate(self.original)
        except EvaluatorUnavailable as e:
            # No initial score when the panel is down
            self.emit(RefinementStartEvent(
                lesson_id=lesson_id,
                mode=self.config.mode.value,
                initial_score=0.0,
                section_ids=self.original.section_ids,
                consensus_method="unavailable",
            ))
            return self.escalate_unavailable(e)

        initial = self.snapshot(0, self.original, consensus)
        self.controller.start(initial)
        self.emit(RefinementStartEvent(
            lesson_id=lesson_id,
            mode=self.config.mode.value,
            initial_score=initial.score,
            section_ids=self.original.section_ids,
            consensus_method=consensus.method.value,
        ))
        self.check_budget_warning()

        plan = self.plan(consensus)
        decision = self.controller.decide(len(plan.tasks))

        while decision.should_continue:
            iteration = self.controller.begin_iteration()
            self.unresolved = list(plan.unresolved_issues)
            plan.status = PlanStatus.EXECUTING
            self.executed_plan = plan
            self.emit(ArbiterCompleteEvent(lesson_id=lesson_id, iteration=iteration, plan=plan))

            stop, any_verified = await self.execute_plan(plan, iteration)
            plan.status = PlanStatus.COMPLETED if any_verified else PlanStatus.FAILED
            if stop is not None:
                logger.warning("Stopping mid-iteration %d: %s", iteration, stop.value)
                decision = self.controller.stop(stop)
                break

            previous = self.controller.state.current_score
            try:
                consensus = await self.evaluate(self.controller.content)
            except EvaluatorUnavailable as e:
                return self.escalate_unavailable(e)

            delta = self.controller.record_iteration(self.snapshot(iteration, self.controller.content, consensus))
            self.emit(IterationCompleteEvent(
                lesson_id=lesson_id,
                iteration=iteration,
                score=consensus.final_score,
                score_delta=delta,
                tokens_used=self.controller.state.tokens_used,
                locked_sections=sorted(self.controller.state.locked_sections),
            ))
            logger.info("Iteration %d: score %.3f -> %.3f", iteration, previous, consensus.final_score)
            self.check_budget_warning()

            plan = self.plan(consensus)
            decision = self.controller.decide(len(plan.tasks))
            for section_id in decision.newly_locked_sections:
                self.emit(SectionLockedEvent(
                    lesson_id=lesson_id, section_id=section_id,
                    reason=self.controller.state.lock_reasons[section_id],
                ))

        return self.finish(decision)

    async def execute_plan(self, plan: RefinementPlan, iteration: int) -> tuple[StopReason | None, bool]:
        """Run the batches in order. Returns (forced stop reason, whether any task verified)."""
        any_verified = False
        for batch_index, batch in enumerate(plan.execution_batches):
            self.emit(BatchStartedEvent(
                lesson_id=self.original.lesson_id,
                iteration=iteration,
                batch_index=batch_index,
                section_ids=[t.section_id for t in batch],
            ))
            outcomes = await self.run_batch(batch, iteration)
            any_verified = any_verified or any(o.status == TaskStatus.VERIFIED for o in outcomes)
            report = self.controller.merge_batch(outcomes)
            self.publish_report(report, outcomes, iteration, batch_index)
            self.check_budget_warning()

            limit = self.controller.limits_exceeded()
            if limit is not None:
                return limit, any_verified
        return None, any_verified

    async def run_batch(self, batch: list[SectionRefinementTask], iteration: int) -> list[TaskOutcome]:
        """Execute one batch concurrently; overruns cancel whatever is still in flight."""
        snapshot = self.controller.content
        semaphore = asyncio.Semaphore(self.config.max_concurrent_patchers)
        spent: dict[str, int] = {t.section_id: 0 for t in batch}
        workers = {
            t.section_id: asyncio.create_task(self.run_task(t, snapshot, iteration, semaphore, spent))
            for t in batch
        }

        pending = set(workers.values())
        while pending:
            done, pending = await asyncio.wait(
                pending, timeout=self.controller.remaining_time_s(), return_when=asyncio.FIRST_COMPLETED
            )
            over_budget = self.controller.state.tokens_used + sum(spent.values()) >= self.config.max_tokens
            if pending and (not done or over_budget):
                logger.warning(
                    "Cancelling %d in-flight task(s): %s", len(pending), "budget exceeded" if over_budget else "timeout"
                )
                for worker in pending:
                    worker.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                break

        outcomes = []
        for task in batch:
            worker = workers[task.section_id]
            if worker.cancelled():
                outcomes.append(TaskOutcome(
                    section_id=task.section_id,
                    status=TaskStatus.CANCELLED,
                    tokens_used=spent[task.section_id],
                    unresolved_issues=task.source_issues,
                    message="Cancelled: run limit reached mid-batch",
                ))
            else:
                outcomes.append(worker.result())
        return outcomes

    async def run_task(
        self,
        task: SectionRefinementTask,
        snapshot: LessonContent,
        iteration: int,
        semaphore: asyncio.Semaphore,
        spent: dict[str, int],
    ) -> TaskOutcome:
        async with semaphore:
            section = snapshot.get_section(task.section_id)

            def budget_left() -> int:
                return max(0, self.config.max_tokens - self.controller.state.tokens_used - sum(spent.values()))

            decision: RouterDecision | None = route_task(task, budget_left(), self.prefer_surgical)
            attempts = 0
            while decision is not None and not decision.abandoned and attempts < MAX_TASK_ATTEMPTS:
                attempts += 1
                self.emit(TaskStartedEvent(
                    lesson_id=snapshot.lesson_id,
                    iteration=iteration,
                    section_id=task.section_id,
                    action=decision.action,
                    executor=decision.executor,
                    estimated_tokens=decision.estimated_tokens,
                    attempt=attempts,
                ))

                if decision.action == FixAction.FULL_REGENERATE:
                    signal = self.full_regenerator.execute(task, snapshot)
                    return TaskOutcome(
                        section_id=task.section_id,
                        status=TaskStatus.RESTART_REQUESTED,
                        action=decision.action,
                        attempts=attempts,
                        tokens_used=spent[task.section_id],
                        unresolved_issues=task.source_issues,
                        restart_signal=signal,
                        message=decision.reason,
                    )

                new_text = await self.generate(decision, task, section, budget_left(), spent)
                if new_text is not None:
                    outcome = await self.verify(decision, task, section, new_text, attempts, spent)
                    if outcome is not None:
                        return outcome

                decision = escalate(decision, budget_left())

            reason = decision.reason if decision is not None and decision.abandoned else "No remaining escalation"
            logger.warning("Task for %s abandoned after %d attempt(s): %s", task.section_id, attempts, reason)
            return TaskOutcome(
                section_id=task.section_id,
                status=TaskStatus.ABANDONED,
                action=decision.action if decision is not None else task.action_type,
                attempts=attempts,
                tokens_used=spent[task.section_id],
                unresolved_issues=task.source_issues,
                message=reason,
            )

    async def generate(
        self,
        decision: RouterDecision,
        task: SectionRefinementTask,
        section: LessonSection,
        budget: int,
        spent: dict[str, int],
    ) -> str | None:
        """New section text, or None when the executor failed."""
        if decision.action == FixAction.SURGICAL_EDIT:
            patch = await self.patcher.execute(task, section, budget)
            spent[task.section_id] += patch.tokens_used
            if patch.success:
                logger.info("Patched %s: %s", section.id, patch.diff_summary)
                return patch.patched_content
            return None

        regenerated = await self.regenerator.execute(
            task,
            section,
            budget,
            self.controller.content.learning_objectives,
            self.supporting_context,
            self.target_word_count,
        )
        spent[task.section_id] += regenerated.tokens_used
        return regenerated.regenerated_content if regenerated.success else None

    async def verify(
        self,
        decision: RouterDecision,
        task: SectionRefinementTask,
        section: LessonSection,
        new_text: str,
        attempts: int,
        spent: dict[str, int],
    ) -> TaskOutcome | None:
        """A VERIFIED outcome, or None when the verifier rejected the edit."""
        result = await self.verifier.verify(
            section.id, section.content, new_text, task.source_issues, task.context_anchors
        )
        spent[task.section_id] += result.tokens_used
        self.emit(VerificationResultEvent(
            lesson_id=self.original.lesson_id,
            section_id=section.id,
            passed=result.passed,
            accepted=result.accepted,
            confidence=result.confidence,
            reasoning=result.reasoning,
            new_issue_count=len(result.new_issues),
        ))
        for issue in result.new_issues:
            self.emit(NewIssueDetectedEvent(lesson_id=self.original.lesson_id, section_id=section.id, issue=issue))

        if not result.accepted:
            return None
        section_score = compute_overall_score(result.criteria_scores, self.rubric) if result.criteria_scores else None
        return TaskOutcome(
            section_id=section.id,
            status=TaskStatus.VERIFIED,
            action=decision.action,
            attempts=attempts,
            new_content=new_text,
            criteria_scores=result.criteria_scores,
            section_score=section_score,
            tokens_used=spent[task.section_id],
        )

    def publish_report(
        self, report: BatchMergeReport, outcomes: list[TaskOutcome], iteration: int, batch_index: int
    ) -> None:
        lesson_id = self.original.lesson_id
        actions = {o.section_id: o.action for o in outcomes}
        for section_id in report.applied:
            self.emit(PatchAppliedEvent(
                lesson_id=lesson_id,
                section_id=section_id,
                action=actions.get(section_id),
                edit_count=report.edit_counts[section_id],
                section_score=report.section_scores.get(section_id),
            ))
        for section_id, violations in report.violations.items():
            self.emit(QualityLockTriggeredEvent(lesson_id=lesson_id, section_id=section_id, violations=violations))
        for section_id, reason in report.newly_locked.items():
            self.emit(SectionLockedEvent(lesson_id=lesson_id, section_id=section_id, reason=reason))
        for signal in report.restart_signals:
            if signal.section_id in self.restart_signals:
                continue
            self.restart_signals[signal.section_id] = signal
            self.emit(EscalationTriggeredEvent(
                lesson_id=lesson_id,
                reason=f"Full regeneration requested: {signal.reason}",
                score=self.controller.state.current_score,
                section_id=signal.section_id,
            ))
        self.unresolved.extend(report.unresolved_issues)
        self.emit(BatchCompleteEvent(
            lesson_id=lesson_id,
            iteration=iteration,
            batch_index=batch_index,
            applied=report.applied,
            rolled_back=report.rolled_back,
            abandoned=report.abandoned,
            tokens_used=report.tokens_used,
        ))

    # --- terminal states ---

    def result(self, status: RefinementStatus, content: LessonContent, final_score: float, **kwargs) -> RefinementResult:
        state = self.controller.state
        result = RefinementResult(
            lesson_id=self.original.lesson_id,
            status=status,
            content=content,
            final_score=final_score,
            iterations=state.iteration,
            run_state=self.controller.run_state,
            requires_human_review=self.requires_human_review or status == RefinementStatus.ESCALATED,
            tokens_used=state.tokens_used,
            duration_ms=self.controller.elapsed_ms(),
            score_history=list(state.score_history),
            plan=self.executed_plan,
            unresolved_issues=list(self.unresolved),
            restart_signals=list(self.restart_signals.values()),
            **kwargs,
        )
        if status == RefinementStatus.ESCALATED:
            self.emit(EscalationTriggeredEvent(
                lesson_id=result.lesson_id, reason=result.escalation_reason or "escalated", score=final_score,
            ))
        self.emit(RefinementCompleteEvent(
            lesson_id=result.lesson_id,
            status=status,
            final_score=final_score,
            iterations=result.iterations,
            stop_reason=result.stop_reason,
            tokens_used=result.tokens_used,
        ))
        logger.info(
            "Refinement finished: lesson=%s status=%s score=%.3f iterations=%d tokens=%d",
            result.lesson_id, status.value, final_score, result.iterations, result.tokens_used,
        )
        return result

    def finish(self, decision: ControllerDecision) -> RefinementResult:
        state = self.controller.state
        if decision.reason == StopReason.SCORE_MET:
            return self.result(
                RefinementStatus.ACCEPTED,
                self.controller.content,
                state.current_score,
                stop_reason=decision.reason,
            )

        best = create_best_effort_result(state.content_history, self.config, self.unresolved)
        escalation_reason = None
        if best.final_status == RefinementStatus.ESCALATED:
            escalation_reason = (
                f"{decision.reason.value}: best score {best.best_score:.3f} "
                f"below {self.config.good_enough_threshold:.2f}"
            )
        return self.result(
            best.final_status,
            best.content,
            best.best_score,
            stop_reason=decision.reason,
            best_effort=best if self.config.on_max_iterations == OnMaxIterations.BEST_EFFORT else None,
            escalation_reason=escalation_reason,
        )

    def escalate_unavailable(self, error: EvaluatorUnavailable) -> RefinementResult:
        logger.error("Consensus unavailable, escalating: %s", error)
        state = self.controller.state
        return self.result(
            RefinementStatus.ESCALATED,
            self.controller.content,
            state.current_score,
            escalation_reason=str(error),
        )


async def refine(
    content: LessonContent,
    config: RefinementConfig,
    panel: ConsensusAggregator,
    generator: GenerationService,
    *,
    rubric: list[CriterionConfig] | None = None,
    events: EventStream | None = None,
    prefer_surgical: bool = True,
    supporting_context: list[str] | None = None,
    target_word_count: int | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RefinementResult:
    """Refine a lesson until it meets the accept threshold or a stop condition fires.

    Raises RubricWeightError for a malformed rubric; every other failure is
    reported through the returned result. The event stream, when given, is
    closed before returning.
    """
    rubric = rubric or DEFAULT_RUBRIC
    validate_rubric(rubric)
    run = RefinementRun(
        content,
        config,
        panel,
        generator,
        rubric,
        events,
        prefer_surgical,
        supporting_context if supporting_context is not None else list(content.source_materials),
        target_word_count,
        clock,
    )
    try:
        return await run.run()
    finally:
        if events is not None:
            events.close()
