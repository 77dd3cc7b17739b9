import os
from typing import Any

from pydantic_settings import BaseSettings


def _parse_cors_origins() -> list[str] | None:
    """Parse CORS_ORIGINS env var as comma-separated string or JSON list."""
    raw = os.environ.get("CORS_ORIGINS")
    if not raw:
        return None
    if raw.startswith("["):
        import json
        return json.loads(raw)
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings(BaseSettings):
    gemini_api_key: str = ""
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    debug: bool = False

    # Evaluator panel and generation models
    generation_model: str = "gemini-2.5-flash"
    judge_primary_model: str = "gemini-2.5-flash"
    judge_secondary_model: str = "gemini-2.5-flash-lite"
    judge_tiebreaker_model: str = "gemini-2.5-pro"
    judge_primary_weight: float = 0.75
    judge_secondary_weight: float = 0.70
    judge_tiebreaker_weight: float = 0.72
    judge_temperature: float = 0.2
    generation_temperature: float = 0.4

    # Refinement run defaults ("semi-auto" | "full-auto"); None keeps the mode default
    refinement_mode: str = "semi-auto"
    refinement_max_iterations: int | None = None
    refinement_max_tokens: int | None = None
    refinement_timeout_ms: int | None = None
    refinement_max_concurrent_patchers: int | None = None
    prefer_surgical: bool = True
    event_queue_size: int = 256
    refine_rate_limit: str = "5/minute"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "protected_namespaces": ("settings_",)}

    def refinement_overrides(self) -> dict[str, Any]:
        """Environment-level overrides for RefinementConfig.for_mode()."""
        overrides = {
            "max_iterations": self.refinement_max_iterations,
            "max_tokens": self.refinement_max_tokens,
            "timeout_ms": self.refinement_timeout_ms,
            "max_concurrent_patchers": self.refinement_max_concurrent_patchers,
        }
        return {k: v for k, v in overrides.items() if v is not None}


_cors_override = _parse_cors_origins()
settings = Settings(**{"cors_origins": _cors_override} if _cors_override else {})
