"""Per-run refinement configuration, built once from mode defaults plus overrides."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RefinementMode(str, Enum):
    SEMI_AUTO = "semi-auto"
    FULL_AUTO = "full-auto"


class OnMaxIterations(str, Enum):
    ESCALATE = "escalate"
    BEST_EFFORT = "best_effort"


MODE_DEFAULTS: dict[RefinementMode, dict[str, Any]] = {
    RefinementMode.SEMI_AUTO: {
        "accept_threshold": 0.90,
        "good_enough_threshold": 0.85,
        "on_max_iterations": OnMaxIterations.ESCALATE,
        "escalation_enabled": True,
    },
    RefinementMode.FULL_AUTO: {
        "accept_threshold": 0.85,
        "good_enough_threshold": 0.75,
        "on_max_iterations": OnMaxIterations.BEST_EFFORT,
        "escalation_enabled": False,
    },
}


class RefinementConfig(BaseModel):
    """Every tunable of a refinement run.

    Build with `RefinementConfig.for_mode()` so the mode-derived fields
    are filled before overrides are applied.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: RefinementMode = RefinementMode.SEMI_AUTO

    # Derived from mode
    accept_threshold: float = Field(0.90, ge=0.0, le=1.0)
    good_enough_threshold: float = Field(0.85, ge=0.0, le=1.0)
    on_max_iterations: OnMaxIterations = OnMaxIterations.ESCALATE
    escalation_enabled: bool = True

    # Hard limits
    max_iterations: int = Field(3, ge=1)
    max_tokens: int = Field(15000, ge=1)
    timeout_ms: int = Field(300000, ge=1)

    # Quality knobs
    regression_tolerance: float = Field(0.05, ge=0.0, le=1.0)
    section_lock_after_edits: int = Field(2, ge=1)
    convergence_threshold: float = Field(0.02, ge=0.0, le=1.0)
    max_concurrent_patchers: int = Field(3, ge=1)
    adjacent_section_gap: int = Field(1, ge=0)
    sequential_for_regenerations: bool = True

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "RefinementConfig":
        if self.good_enough_threshold > self.accept_threshold:
            raise ValueError(
                f"good_enough_threshold ({self.good_enough_threshold}) "
                f"must not exceed accept_threshold ({self.accept_threshold})"
            )
        return self

    @classmethod
    def for_mode(cls, mode: RefinementMode | str = RefinementMode.SEMI_AUTO, /, **overrides: Any) -> "RefinementConfig":
        """Apply mode defaults, then explicit overrides (None values are ignored).

        The mode is only taken from the first argument, never from overrides.
        """
        if "mode" in overrides:
            raise ValueError("mode cannot be overridden; pass it as the mode argument")
        mode = RefinementMode(mode)
        values: dict[str, Any] = {"mode": mode, **MODE_DEFAULTS[mode]}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
