"""Arbiter: turns a consensus into a per-section refinement plan.

Flow:
    ConsensusResult + LessonContent
      ├─ flatten + dedupe issues (normalized location, criterion)
      ├─ place each issue in a section (unplaceable → unresolved)
      ├─ Krippendorff alpha → acceptance policy by agreement band
      ├─ resolve conflicts by PRIORITY_HIERARCHY
      ├─ one SectionRefinementTask per section
      └─ execution batches (adjacency gap, concurrency cap, isolated full regenerations)
"""

import hashlib
import logging
import re

from models.schemas.consensus import ConsensusResult
from models.schemas.content import LessonContent
from models.schemas.plan import (
    ACTION_LADDER,
    STRUCTURAL_CRITERIA,
    AgreementLevel,
    ConflictResolution,
    ContextScope,
    ContextWindow,
    FixAction,
    PlanStatus,
    RefinementPlan,
    SectionRefinementTask,
    TargetedIssue,
    is_structural_failure,
)
from models.schemas.refinement_config import RefinementConfig
from models.schemas.verdict import PRIORITY_HIERARCHY, SEVERITY_RANK, Criterion, Issue, Severity
from services.refinement.agreement import agreement_level, calculate_agreement
from services.refinement.task_router import DELTA_JUDGE_TOKENS, TOKEN_COSTS

logger = logging.getLogger(__name__)

PARAGRAPH_QUOTE_MIN_CHARS = 10
ANCHOR_SENTENCES = 3

_SECTION_NUMBER = re.compile(r"^(?:sec(?:tion)?[\s_#-]*)(\d+)\b")
_SLUG = re.compile(r"[^a-z0-9]+")


def normalize_location(location: str) -> str:
    """Reduce a free-text location to a section key.

    "Section 2, paragraph 3" -> "sec_2"; "Introduction" -> "sec_introduction".
    """
    text = location.strip().lower()
    if not text:
        return "sec_unknown"
    head = text.split(",")[0].strip()
    match = _SECTION_NUMBER.match(head)
    if match:
        return f"sec_{int(match.group(1))}"
    if head.startswith("sec_"):
        head = head[4:]
    slug = _SLUG.sub("_", head).strip("_")
    return f"sec_{slug}" if slug else "sec_unknown"


def parse_section_index(section_key: str) -> int:
    """Numeric index of a section key; named sections get a stable hash offset."""
    match = re.fullmatch(r"sec_(\d+)", section_key)
    if match:
        return int(match.group(1))
    digest = hashlib.sha1(section_key.encode("utf-8")).hexdigest()
    return 1000 + int(digest[:6], 16)


def _issue_id(section_key: str, criterion: Criterion, ordinal: int) -> str:
    return f"{section_key}:{criterion.value}:{ordinal}"


def deduplicate_issues(consensus: ConsensusResult) -> list[tuple[Issue, int]]:
    """Flatten every vote's issues; keep the most severe copy per (location, criterion).

    Returns (issue, judge_count) pairs in first-seen order.
    """
    merged: dict[tuple[str, Criterion], tuple[Issue, set[str]]] = {}
    for idx, vote in enumerate(consensus.votes):
        judge = vote.evaluator_id or f"judge_{idx}"
        for issue in vote.issues:
            key = (normalize_location(issue.location), issue.criterion)
            if key not in merged:
                merged[key] = (issue, {judge})
                continue
            kept, judges = merged[key]
            judges.add(judge)
            if SEVERITY_RANK[issue.severity] < SEVERITY_RANK[kept.severity]:
                merged[key] = (issue, judges)
    return [(issue, len(judges)) for issue, judges in merged.values()]


def resolve_section_id(issue: Issue, content: LessonContent) -> str | None:
    """Map an issue onto an existing section id."""
    raw = issue.location.strip()
    ids = content.section_ids
    if raw in ids:
        return raw
    key = normalize_location(raw)
    if key in ids:
        return key
    match = re.fullmatch(r"sec_(\d+)", key)
    if match:
        position = int(match.group(1)) - 1
        if 0 <= position < len(ids):
            return ids[position]
    for section in content.sections:
        if section.title and normalize_location(section.title) == key:
            return section.id
    if issue.quoted_text:
        needle = issue.quoted_text.strip().lower()
        for section in content.sections:
            if needle and needle in section.content.lower():
                return section.id
    return None


def determine_fix_action(issue: Issue) -> FixAction:
    if is_structural_failure(issue):
        return FixAction.FULL_REGENERATE
    if issue.criterion == Criterion.FACTUAL_ACCURACY:
        return FixAction.REGENERATE_SECTION
    if issue.criterion in STRUCTURAL_CRITERIA and issue.severity != Severity.MINOR:
        return FixAction.REGENERATE_SECTION
    if issue.criterion == Criterion.COMPLETENESS:
        return FixAction.REGENERATE_SECTION
    return FixAction.SURGICAL_EDIT


def build_context_window(issue: Issue) -> ContextWindow:
    quote = (issue.quoted_text or "").strip()
    if issue.criterion in STRUCTURAL_CRITERIA or issue.criterion == Criterion.COMPLETENESS:
        return ContextWindow(scope=ContextScope.SECTION)
    if len(quote) > PARAGRAPH_QUOTE_MIN_CHARS:
        words = quote.split()
        return ContextWindow(
            start_quote=" ".join(words[:6]),
            end_quote=" ".join(words[-6:]),
            scope=ContextScope.PARAGRAPH,
        )
    return ContextWindow(scope=ContextScope.SECTION)


def _fix_instruction(issue: Issue) -> str:
    text = f"[{issue.criterion.value}] {issue.severity.value.upper()}: {issue.description}"
    if issue.suggested_fix:
        text += f" Fix: {issue.suggested_fix}"
    return text


def target_issues(consensus: ConsensusResult, content: LessonContent) -> tuple[list[TargetedIssue], list[Issue]]:
    """Dedupe and place issues. Returns (targeted, unplaceable)."""
    targeted: list[TargetedIssue] = []
    unplaced: list[Issue] = []
    for ordinal, (issue, judge_count) in enumerate(deduplicate_issues(consensus)):
        section_id = resolve_section_id(issue, content)
        if section_id is None:
            logger.warning("Could not place issue at '%s' (%s)", issue.location, issue.criterion.value)
            unplaced.append(issue)
            continue
        targeted.append(TargetedIssue(
            **issue.model_dump(),
            id=_issue_id(section_id, issue.criterion, ordinal),
            target_section_id=section_id,
            fix_action=determine_fix_action(issue),
            context_window=build_context_window(issue),
            fix_instructions=_fix_instruction(issue),
            judge_count=judge_count,
        ))
    return targeted, unplaced


def filter_by_agreement(
    issues: list[TargetedIssue],
    agreement: float,
    judge_total: int,
) -> tuple[list[TargetedIssue], list[TargetedIssue]]:
    """Acceptance policy by agreement band. Returns (accepted, rejected)."""
    level = agreement_level(agreement)
    if level == AgreementLevel.HIGH:
        return list(issues), []
    if level == AgreementLevel.MODERATE:
        if judge_total <= 1:
            return list(issues), []
        accepted = [i for i in issues if i.judge_count >= 2]
    else:
        accepted = [i for i in issues if i.severity == Severity.CRITICAL]
    accepted_ids = {i.id for i in accepted}
    return accepted, [i for i in issues if i.id not in accepted_ids]


def _quotes_overlap(a: TargetedIssue, b: TargetedIssue) -> bool:
    if not a.quoted_text or not b.quoted_text:
        return True
    qa = a.quoted_text.strip().lower()
    qb = b.quoted_text.strip().lower()
    return qa in qb or qb in qa


def _priority_key(issue: TargetedIssue) -> tuple[int, int]:
    return PRIORITY_HIERARCHY.index(issue.criterion), SEVERITY_RANK[issue.severity]


def resolve_conflicts(issues: list[TargetedIssue]) -> tuple[list[TargetedIssue], list[ConflictResolution]]:
    """Drop lower-priority instructions that touch the same text as a higher-priority one."""
    ordered = sorted(issues, key=_priority_key)
    kept: list[TargetedIssue] = []
    log: list[ConflictResolution] = []
    for issue in ordered:
        winner = next(
            (
                k for k in kept
                if k.target_section_id == issue.target_section_id
                and normalize_location(k.location) == normalize_location(issue.location)
                and k.criterion != issue.criterion
                and _quotes_overlap(k, issue)
            ),
            None,
        )
        if winner is None:
            kept.append(issue)
            continue
        log.append(ConflictResolution(
            section_id=issue.target_section_id,
            location=issue.location,
            winning_issue_id=winner.id,
            losing_issue_id=issue.id,
            winning_criterion=winner.criterion,
            losing_criterion=issue.criterion,
            discarded_instruction=issue.fix_instructions,
            rationale=(
                f"{winner.criterion.value} ({winner.severity.value}) outranks "
                f"{issue.criterion.value} ({issue.severity.value}) in the priority hierarchy"
            ),
        ))
    kept_ids = {k.id for k in kept}
    # Preserve the original issue order for instruction synthesis
    return [i for i in issues if i.id in kept_ids], log


def synthesize_instructions(issues: list[TargetedIssue]) -> str:
    lines = ["Address the following issues in this section:"]
    for n, issue in enumerate(sorted(issues, key=lambda i: SEVERITY_RANK[i.severity]), start=1):
        lines.append(f"{n}. {issue.fix_instructions}")
    return "\n".join(lines)


def build_tasks(issues: list[TargetedIssue], content: LessonContent) -> list[SectionRefinementTask]:
    """Merge accepted issues into exactly one task per section."""
    by_section: dict[str, list[TargetedIssue]] = {}
    for issue in issues:
        by_section.setdefault(issue.target_section_id, []).append(issue)

    tasks = []
    for section_id, section_issues in by_section.items():
        action = max((i.fix_action for i in section_issues), key=ACTION_LADDER.index)
        priority = min((i.severity for i in section_issues), key=lambda s: SEVERITY_RANK[s])
        tasks.append(SectionRefinementTask(
            section_id=section_id,
            action_type=action,
            synthesized_instructions=synthesize_instructions(section_issues),
            context_anchors=content.context_anchors(section_id, ANCHOR_SENTENCES),
            priority=priority,
            source_issues=section_issues,
        ))
    return tasks


def create_execution_batches(
    tasks: list[SectionRefinementTask],
    content: LessonContent,
    config: RefinementConfig,
) -> list[list[SectionRefinementTask]]:
    """Greedy batching: no two sections within adjacent_section_gap share a batch."""
    def position(task: SectionRefinementTask) -> int:
        pos = content.section_position(task.section_id)
        return pos if pos >= 0 else parse_section_index(task.section_id)

    ordered = sorted(tasks, key=lambda t: (SEVERITY_RANK[t.priority], position(t)))
    batches: list[list[SectionRefinementTask]] = []
    isolated: set[int] = set()

    for task in ordered:
        if task.action_type == FixAction.FULL_REGENERATE and config.sequential_for_regenerations:
            isolated.add(len(batches))
            batches.append([task])
            continue
        placed = False
        for idx, batch in enumerate(batches):
            if idx in isolated or len(batch) >= config.max_concurrent_patchers:
                continue
            if all(abs(position(other) - position(task)) > config.adjacent_section_gap for other in batch):
                batch.append(task)
                placed = True
                break
        if not placed:
            batches.append([task])
    return batches


def estimate_plan_cost(tasks: list[SectionRefinementTask]) -> int:
    verify_cost = sum(DELTA_JUDGE_TOKENS) / 2
    return int(sum(sum(TOKEN_COSTS[t.action_type]) / 2 + verify_cost for t in tasks))


def build_refinement_plan(
    consensus: ConsensusResult,
    content: LessonContent,
    config: RefinementConfig,
    locked_sections: set[str] | None = None,
) -> RefinementPlan:
    """Consolidate a consensus into a PENDING plan. Locked sections get no tasks."""
    locked_sections = locked_sections or set()
    targeted, unplaced = target_issues(consensus, content)

    # Level and filtering use the same value the plan reports
    agreement = round(calculate_agreement(consensus.votes), 4)
    level = agreement_level(agreement)
    accepted, rejected = filter_by_agreement(targeted, agreement, len(consensus.votes))
    accepted, conflicts = resolve_conflicts(accepted)
    actionable = [i for i in accepted if i.target_section_id not in locked_sections]

    tasks = build_tasks(actionable, content)
    batches = create_execution_batches(tasks, content, config)
    plan = RefinementPlan(
        status=PlanStatus.PENDING,
        tasks=tasks,
        execution_batches=batches,
        agreement_score=agreement,
        agreement_level=level,
        requires_human_review=level == AgreementLevel.LOW,
        conflict_resolutions=conflicts,
        rejected_issues=rejected,
        unresolved_issues=unplaced,
        estimated_cost=estimate_plan_cost(tasks),
    )
    logger.info(
        "Plan: %d tasks in %d batches, agreement=%.3f (%s), %d conflicts, %d rejected, est. %d tokens",
        len(tasks), len(batches), agreement, level.value, len(conflicts), len(rejected), plan.estimated_cost,
    )
    return plan
