from typing import Any

from pydantic import BaseModel, Field

from models.schemas.content import LessonContent
from models.schemas.refinement_config import RefinementMode
from models.schemas.verdict import CriterionConfig


class RefineRequest(BaseModel):
    content: LessonContent
    mode: RefinementMode | None = Field(None, description="Defaults to the configured refinement mode")
    overrides: dict[str, Any] = Field({}, description="RefinementConfig fields to override for this run")
    prefer_surgical: bool | None = None
    supporting_context: list[str] | None = Field(None, description="Reference chunks for section regeneration")
    target_word_count: int | None = Field(None, ge=1, description="Target length of regenerated sections")
    rubric: list[CriterionConfig] | None = None
