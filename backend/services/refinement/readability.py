"""Language-agnostic readability heuristics for patched sections."""

import re

from pydantic import BaseModel

_SENTENCE_END = re.compile(r"[.!?。！？]+")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

MAX_AVG_SENTENCE_LENGTH = 25.0
MAX_AVG_WORD_LENGTH = 10.0
MIN_PARAGRAPH_BREAK_RATIO = 0.08


class ReadabilityMetrics(BaseModel):
    avg_sentence_length: float = 0.0  # words per sentence
    avg_word_length: float = 0.0  # characters per word
    paragraph_break_ratio: float = 0.0  # paragraphs per sentence


class ReadabilityCheck(BaseModel):
    passed: bool
    issues: list[str] = []


def calculate_readability(text: str) -> ReadabilityMetrics:
    text = text.strip()
    if not text:
        return ReadabilityMetrics()

    sentences = [s for s in _SENTENCE_END.split(text) if s.strip()]
    words = text.split()
    paragraphs = [p for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
    if not sentences or not words:
        return ReadabilityMetrics()

    letters = [re.sub(r"[^\w]", "", w) for w in words]
    return ReadabilityMetrics(
        avg_sentence_length=len(words) / len(sentences),
        avg_word_length=sum(len(w) for w in letters) / len(words),
        paragraph_break_ratio=len(paragraphs) / len(sentences),
    )


def validate_readability(
    metrics: ReadabilityMetrics,
    max_sentence_length: float = MAX_AVG_SENTENCE_LENGTH,
    max_word_length: float = MAX_AVG_WORD_LENGTH,
    min_paragraph_ratio: float = MIN_PARAGRAPH_BREAK_RATIO,
) -> ReadabilityCheck:
    issues = []
    if metrics.avg_sentence_length > max_sentence_length:
        issues.append(
            f"Average sentence length {metrics.avg_sentence_length:.1f} words exceeds {max_sentence_length:g}"
        )
    if metrics.avg_word_length > max_word_length:
        issues.append(
            f"Average word length {metrics.avg_word_length:.1f} characters exceeds {max_word_length:g}"
        )
    if metrics.paragraph_break_ratio < min_paragraph_ratio:
        issues.append(
            f"Paragraph break ratio {metrics.paragraph_break_ratio:.2f} below {min_paragraph_ratio:g}"
        )
    return ReadabilityCheck(passed=not issues, issues=issues)
