from pydantic import BaseModel

from models.schemas.best_effort import RefinementResult
from models.schemas.events import RefinementEvent


class RefineResponse(BaseModel):
    result: RefinementResult
    events: list[RefinementEvent] = []
    dropped_events: int = 0
