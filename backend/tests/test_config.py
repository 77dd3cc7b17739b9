"""Tests for settings and per-run refinement configuration."""

import pytest
from pydantic import ValidationError

from config import Settings, _parse_cors_origins
from models.schemas.refinement_config import OnMaxIterations, RefinementConfig, RefinementMode


class TestRefinementConfig:
    def test_semi_auto_defaults(self):
        config = RefinementConfig.for_mode()
        assert config.mode == RefinementMode.SEMI_AUTO
        assert config.accept_threshold == 0.90
        assert config.good_enough_threshold == 0.85
        assert config.on_max_iterations == OnMaxIterations.ESCALATE
        assert config.escalation_enabled is True
        assert config.max_iterations == 3
        assert config.max_tokens == 15000
        assert config.timeout_ms == 300000

    def test_full_auto_defaults(self):
        config = RefinementConfig.for_mode("full-auto")
        assert config.accept_threshold == 0.85
        assert config.good_enough_threshold == 0.75
        assert config.on_max_iterations == OnMaxIterations.BEST_EFFORT
        assert config.escalation_enabled is False

    def test_overrides_win_over_mode(self):
        config = RefinementConfig.for_mode("full-auto", accept_threshold=0.95, max_iterations=None)
        assert config.accept_threshold == 0.95
        assert config.max_iterations == 3

    def test_unknown_override(self):
        with pytest.raises(ValidationError):
            RefinementConfig.for_mode("semi-auto", max_passes=4)

    def test_mode_override_rejected(self):
        with pytest.raises(ValueError, match="mode cannot be overridden"):
            RefinementConfig.for_mode("semi-auto", mode="full-auto")

    def test_thresholds_ordered(self):
        with pytest.raises(ValidationError):
            RefinementConfig.for_mode("semi-auto", good_enough_threshold=0.95)

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            RefinementConfig.for_mode("manual")

    def test_frozen(self):
        config = RefinementConfig()
        with pytest.raises(ValidationError):
            config.max_tokens = 1


class TestSettings:
    def test_refinement_overrides_skip_unset(self):
        settings = Settings(refinement_max_iterations=5, refinement_timeout_ms=1000)
        assert settings.refinement_overrides() == {"max_iterations": 5, "timeout_ms": 1000}

    def test_cors_origins_comma_separated(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        assert _parse_cors_origins() == ["http://a.test", "http://b.test"]

    def test_cors_origins_json(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["http://a.test"]')
        assert _parse_cors_origins() == ["http://a.test"]

    def test_cors_origins_unset(self, monkeypatch):
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
        assert _parse_cors_origins() is None
