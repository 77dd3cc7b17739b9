"""Lesson content shared by evaluators, executors, and iteration state."""

import re

from pydantic import BaseModel, field_validator

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class LessonSection(BaseModel):
    id: str
    title: str = ""
    content: str = ""


class ContextAnchors(BaseModel):
    """Boundary sentences of the neighbouring sections, for coherent edits."""
    prev_section_end: str | None = None
    next_section_start: str | None = None


class LessonContent(BaseModel):
    """A lesson as an ordered list of sections.

    Treated as immutable once a run starts: `with_section` returns a copy.
    """
    lesson_id: str
    title: str = ""
    sections: list[LessonSection]
    learning_objectives: list[str] = []
    source_materials: list[str] = []

    @field_validator("sections")
    @classmethod
    def _unique_section_ids(cls, sections: list[LessonSection]) -> list[LessonSection]:
        if not sections:
            raise ValueError("lesson must contain at least one section")
        ids = [s.id for s in sections]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate section ids: {', '.join(duplicates)}")
        return sections

    @property
    def section_ids(self) -> list[str]:
        return [s.id for s in self.sections]

    def get_section(self, section_id: str) -> LessonSection | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def section_position(self, section_id: str) -> int:
        """0-based position of a section, or -1 when unknown."""
        for idx, section in enumerate(self.sections):
            if section.id == section_id:
                return idx
        return -1

    def with_section(self, section_id: str, content: str) -> "LessonContent":
        if self.get_section(section_id) is None:
            raise KeyError(section_id)
        sections = [
            s.model_copy(update={"content": content}) if s.id == section_id else s
            for s in self.sections
        ]
        return self.model_copy(update={"sections": sections})

    def context_anchors(self, section_id: str, sentences: int = 3) -> ContextAnchors:
        idx = self.section_position(section_id)
        if idx < 0:
            return ContextAnchors()
        prev_end = None
        next_start = None
        if idx > 0:
            prev_end = " ".join(split_sentences(self.sections[idx - 1].content)[-sentences:]) or None
        if idx < len(self.sections) - 1:
            next_start = " ".join(split_sentences(self.sections[idx + 1].content)[:sentences]) or None
        return ContextAnchors(prev_section_end=prev_end, next_section_start=next_start)

    def to_markdown(self) -> str:
        parts = [f"# {self.title}"] if self.title else []
        for section in self.sections:
            heading = section.title or section.id
            parts.append(f"## {heading} [{section.id}]\n\n{section.content.strip()}")
        return "\n\n".join(parts)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]
