import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import get_generator, get_panel
from config import settings
from models.requests import RefineRequest
from models.responses import RefineResponse
from models.schemas.refinement_config import RefinementConfig
from services.refinement.base import GenerationService
from services.refinement.consensus import ConsensusAggregator
from services.refinement.errors import RubricWeightError
from services.refinement.events import EventStream
from services.refinement.orchestrator import refine

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "gemini_configured": bool(settings.gemini_api_key),
    }


@router.post("/refine", response_model=RefineResponse)
@limiter.limit(settings.refine_rate_limit)
async def refine_lesson(
    request: Request,
    body: RefineRequest,
    panel: ConsensusAggregator = Depends(get_panel),
    generator: GenerationService = Depends(get_generator),
):
    # Request overrides win over environment overrides
    overrides = {**settings.refinement_overrides(), **body.overrides}
    try:
        config = RefinementConfig.for_mode(body.mode or settings.refinement_mode, **overrides)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid refinement configuration: {e}")

    prefer_surgical = settings.prefer_surgical if body.prefer_surgical is None else body.prefer_surgical
    events = EventStream(maxsize=settings.event_queue_size)
    try:
        result = await refine(
            body.content,
            config,
            panel,
            generator,
            rubric=body.rubric,
            events=events,
            prefer_surgical=prefer_surgical,
            supporting_context=body.supporting_context,
            target_word_count=body.target_word_count,
        )
    except RubricWeightError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return RefineResponse(result=result, events=events.drain(), dropped_events=events.dropped)
