"""Gemini-backed content-generation service used by the executors."""

import logging

from config import settings
from models.schemas.execution import GenerationRequest, GenerationResponse
from services import gemini_client, prompt_builder
from services.refinement.base import GenerationService
from services.refinement.executors import DEFAULT_TARGET_WORDS

logger = logging.getLogger(__name__)

MIN_OUTPUT_TOKENS = 256


class GeminiGenerationService(GenerationService):
    agent_name = "generator"

    def __init__(self, model: str) -> None:
        self.model = model

    def setup(self) -> None:
        if gemini_client.get_client() is None:
            logger.warning("Generation service has no Gemini client; executors will report failures")

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.mode == "regenerate":
            prompt = prompt_builder.build_regeneration_prompt(
                request.section_title,
                request.original_content,
                request.instructions,
                request.context_anchors,
                request.learning_objectives,
                request.supporting_context,
                request.target_word_count or DEFAULT_TARGET_WORDS,
            )
        else:
            prompt = prompt_builder.build_patcher_prompt(
                request.section_title,
                request.original_content,
                request.instructions,
                request.context_anchors,
                request.context_window,
            )

        reply = await gemini_client.generate_text(
            prompt,
            self.model,
            temperature=settings.generation_temperature,
            max_output_tokens=max(MIN_OUTPUT_TOKENS, request.budget),
        )
        if reply is None:
            return GenerationResponse(success=False, error_message="No response from Gemini")
        if not reply.text:
            return GenerationResponse(
                success=False, tokens_used=reply.tokens_used, error_message="Empty response from Gemini"
            )
        return GenerationResponse(content=reply.text, tokens_used=reply.tokens_used)
