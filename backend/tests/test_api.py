import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_generator, get_panel
from api.router import limiter
from fakes import FakeEvaluator, FakeGenerator, make_issue, make_verdict
from main import app
from services.refinement.consensus import ConsensusAggregator

client = TestClient(app)

LESSON = {
    "lesson_id": "lesson-api",
    "title": "Photosynthesis",
    "sections": [
        {"id": "intro", "title": "Introduction", "content": "Plants make their own food."},
        {"id": "light", "title": "Light Reactions", "content": "Chlorophyll absorbs light."},
    ],
    "learning_objectives": ["Explain the two stages of photosynthesis"],
}


@pytest.fixture(autouse=True)
def _fake_agents():
    verdicts = [make_verdict(0.70, issues=[make_issue("light")]), make_verdict(0.93)]
    panel = ConsensusAggregator(
        FakeEvaluator("primary_judge", verdicts, weight=0.75),
        FakeEvaluator("secondary_judge", verdicts, weight=0.70),
        FakeEvaluator("tiebreaker_judge", verdicts, weight=0.72),
    )
    app.dependency_overrides[get_panel] = lambda: panel
    app.dependency_overrides[get_generator] = lambda: FakeGenerator()
    limiter.enabled = False
    yield
    app.dependency_overrides.clear()
    limiter.enabled = True


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "gemini_configured" in data


def test_refine():
    response = client.post("/refine", json={"content": LESSON, "mode": "semi-auto"})
    assert response.status_code == 200
    data = response.json()
    result = data["result"]
    assert result["status"] == "accepted"
    assert result["stop_reason"] == "stop_score_threshold_met"
    assert result["iterations"] == 1
    assert result["content"]["sections"][1]["content"] == "Revised light text."
    types = [e["type"] for e in data["events"]]
    assert types[0] == "refinement_start"
    assert types[-1] == "refinement_complete"
    assert data["dropped_events"] == 0


def test_refine_applies_overrides():
    response = client.post(
        "/refine",
        json={"content": LESSON, "mode": "full-auto", "overrides": {"accept_threshold": 0.95}},
    )
    assert response.status_code == 200
    result = response.json()["result"]
    # 0.93 no longer meets the raised threshold, and no issues remain
    assert result["stop_reason"] == "stop_converged"
    assert result["status"] == "accepted_warning"
    assert result["best_effort"]["best_score"] == pytest.approx(0.93)


def test_refine_rejects_unknown_override():
    response = client.post("/refine", json={"content": LESSON, "overrides": {"max_passes": 2}})
    assert response.status_code == 400
    assert "Invalid refinement configuration" in response.json()["detail"]


def test_refine_rejects_mode_override():
    response = client.post("/refine", json={"content": LESSON, "overrides": {"mode": "full-auto"}})
    assert response.status_code == 400
    assert "mode cannot be overridden" in response.json()["detail"]


def test_refine_rejects_bad_rubric():
    response = client.post(
        "/refine",
        json={"content": LESSON, "rubric": [{"criterion": "factual_accuracy", "weight": 0.5}]},
    )
    assert response.status_code == 400
    assert "sum to 1.0" in response.json()["detail"]


def test_refine_rejects_duplicate_sections():
    lesson = {**LESSON, "sections": [LESSON["sections"][0], LESSON["sections"][0]]}
    response = client.post("/refine", json={"content": lesson})
    assert response.status_code == 422
