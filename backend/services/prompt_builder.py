"""All prompt templates for Gemini API calls."""

from models.schemas.content import ContextAnchors, LessonContent
from models.schemas.plan import ContextScope, ContextWindow, TargetedIssue
from models.schemas.verdict import CriterionConfig

PATCHER_SYSTEM_PROMPT = """You are an expert educational content editor performing surgical fixes.

Guidelines:
- Fix ONLY what is explicitly requested in the instructions
- Preserve learning objectives, terminology, and the author's voice
- Keep smooth transitions with the surrounding sections
- Never add meta-commentary about the edit"""


def _anchor_block(anchors: ContextAnchors) -> str:
    prev_end = anchors.prev_section_end or "N/A (This is the first section.)"
    next_start = anchors.next_section_start or "N/A (This is the last section.)"
    return f"Previous section ends with:\n{prev_end}\n\nNext section starts with:\n{next_start}"


def _rubric_block(rubric: list[CriterionConfig]) -> str:
    return "\n".join(
        f"- {c.criterion.value} ({c.weight:.0%} weight): {c.description}" for c in rubric
    )


def build_judge_prompt(
    content: LessonContent,
    learning_objectives: list[str],
    source_materials: list[str],
    rubric: list[CriterionConfig],
) -> str:
    """Whole-lesson evaluation against the weighted rubric."""
    objectives = "\n".join(f"- {o}" for o in learning_objectives) or "- (none provided)"
    sources = "\n---\n".join(source_materials) or "(none provided)"
    criteria_keys = ", ".join(f'"{c.criterion.value}": <float 0-1>' for c in rubric)

    return f"""You are an expert instructional designer reviewing a lesson for quality.

Score the lesson on each rubric criterion from 0.0 (unusable) to 1.0 (exemplary).

RUBRIC:
{_rubric_block(rubric)}

LEARNING OBJECTIVES:
{objectives}

SOURCE MATERIALS:
---
{sources}
---

LESSON (section ids in square brackets):
---
{content.to_markdown()}
---

For every problem, give its location as the section id (e.g. "sec_2") or
"section N, paragraph M". Quote the problematic text when possible.

RESPONSE FORMAT: respond with ONLY valid JSON (no markdown, no code fences):
{{
  "criteria_scores": {{{criteria_keys}}},
  "confidence": "high" | "medium" | "low",
  "issues": [
    {{
      "criterion": "<rubric criterion>",
      "severity": "critical" | "major" | "minor",
      "location": "<section id or description>",
      "description": "<what is wrong>",
      "suggested_fix": "<how to fix it>",
      "quoted_text": "<exact excerpt or null>"
    }}
  ],
  "strengths": ["<strength>"]
}}"""


def build_delta_judge_prompt(
    original_content: str,
    patched_content: str,
    issue: TargetedIssue,
    anchors: ContextAnchors,
    rubric: list[CriterionConfig],
) -> str:
    """Verify that a single patch fixed its issue without introducing new ones."""
    suggested = f"\nSuggested Fix: {issue.suggested_fix}" if issue.suggested_fix else ""
    criteria_keys = ", ".join(f'"{c.criterion.value}": <float 0-1>' for c in rubric)

    return f"""You are verifying a targeted edit to one section of a lesson.

ISSUE THAT WAS ADDRESSED:
Criterion: {issue.criterion.value}
Severity: {issue.severity.value}
Description: {issue.description}{suggested}

ORIGINAL CONTENT:
---
{original_content}
---

PATCHED CONTENT:
---
{patched_content}
---

CONTEXT ANCHORS:
{_anchor_block(anchors)}

EVALUATION CRITERIA:
1. Was the specific issue addressed?
2. Was the fix applied correctly, without changing unrelated text?
3. Were any NEW issues introduced (errors, contradictions, tone shifts)?
4. Does the section keep coherence with its neighbours?

Also score the PATCHED CONTENT on each rubric criterion.

RESPONSE FORMAT: respond with ONLY valid JSON (no markdown, no code fences):
{{
  "passed": true | false,
  "confidence": "high" | "medium" | "low",
  "reasoning": "<one or two sentences>",
  "newIssues": [
    {{"criterion": "<rubric criterion>", "severity": "critical" | "major" | "minor",
      "location": "<where>", "description": "<what>", "suggested_fix": "<how>"}}
  ],
  "criteria_scores": {{{criteria_keys}}}
}}"""


def _scope_instruction(window: ContextWindow) -> str:
    if window.scope == ContextScope.PARAGRAPH and (window.start_quote or window.end_quote):
        return (
            "TARGET AREA: focus on the passage between\n"
            f'  start: "{window.start_quote or "(section start)"}"\n'
            f'  end: "{window.end_quote or "(section end)"}"'
        )
    if window.scope == ContextScope.GLOBAL:
        return "TARGET AREA: apply the fix with the global lesson context in mind."
    return "TARGET AREA: apply the fix throughout this section where relevant."


def build_patcher_prompt(
    section_title: str,
    original_content: str,
    instructions: str,
    anchors: ContextAnchors,
    window: ContextWindow | None = None,
) -> str:
    """Surgical edit of one section."""
    return f"""{PATCHER_SYSTEM_PROMPT}

SECTION TITLE: {section_title or "(untitled)"}

ORIGINAL CONTENT:
---
{original_content}
---

FIX INSTRUCTIONS:
{instructions}

{_scope_instruction(window or ContextWindow())}

CONTEXT FOR COHERENCE:
{_anchor_block(anchors)}

OUTPUT REQUIREMENTS:
- Return ONLY the corrected section content, no headings or commentary
- Preserve all text that doesn't need fixing
- Maintain coherent transitions with the neighbouring sections"""


def build_regeneration_prompt(
    section_title: str,
    original_content: str,
    instructions: str,
    anchors: ContextAnchors,
    learning_objectives: list[str],
    supporting_context: list[str],
    target_word_count: int,
) -> str:
    """Rewrite one section from scratch."""
    objectives = "\n".join(f"- {o}" for o in learning_objectives) or "- (none provided)"
    context = "\n---\n".join(supporting_context) or "(none provided)"

    return f"""You are an expert educational content writer rewriting one lesson section.

SECTION TITLE: {section_title or "(untitled)"}

LEARNING OBJECTIVES:
{objectives}

ISSUES TO RESOLVE:
{instructions}

SUPPORTING MATERIAL:
---
{context}
---

PREVIOUS VERSION (for reference only):
---
{original_content}
---

CONTEXT FOR COHERENCE:
{_anchor_block(anchors)}

OUTPUT REQUIREMENTS:
- Return ONLY the new section content, no headings or commentary
- Target length: about {target_word_count} words
- Ground every claim in the supporting material
- Maintain coherent transitions with the neighbouring sections"""
