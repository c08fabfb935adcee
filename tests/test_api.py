"""End-to-end tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from evalgate.config import get_settings
from evalgate.main import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("EVALGATE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("EVALGATE_CONFIDENCE_THRESHOLD", "0.7")
    monkeypatch.setenv("EVALGATE_REFERENCE_DIR", str(tmp_path))
    monkeypatch.setenv("EVALGATE_EXCLUSION_RULES", '[{"name": "policy", "subscore": "policy_violation", "threshold": 0.5}]')
    get_settings.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_settings.cache_clear()


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_root(client):
    assert client.get("/").json()["name"] == "evalgate"


def test_session_lifecycle(client):
    response = client.post("/api/v1/sessions", json={
        "session_id": "s1",
        "input_payload": {"q": "refund?"},
        "created_at": "2025-01-01T12:00:00Z",
    })
    assert response.status_code == 201
    assert response.json()["state"]["status"] == "input_captured"

    response = client.post("/api/v1/sessions/s1/events", json={
        "event_type": "ModelCallIssued",
        "timestamp": "2025-01-01T12:00:01Z",
    })
    assert response.status_code == 201

    response = client.post("/api/v1/sessions/s1/decision", json={
        "scored_output": {"output": "draft", "confidence": 0.65},
    })
    assert response.status_code == 200
    decision = response.json()
    assert decision["action"] == "escalate"
    assert decision["reason"] == "LowConfidence"

    record = client.get("/api/v1/sessions/s1").json()
    assert record["state"]["status"] == "escalated"
    assert [e["event_type"] for e in record["events"]] == [
        "InputCaptured",
        "ModelCallIssued",
        "EscalationTriggered",
    ]


def test_policy_exclusion_via_api(client):
    client.post("/api/v1/sessions", json={"session_id": "s2"})
    response = client.post("/api/v1/sessions/s2/decision", json={
        "scored_output": {"output": "x", "confidence": 0.99, "subscores": {"policy_violation": 0.9}},
    })
    assert response.json()["reason"] == "PolicyExclusion"


def test_session_errors(client):
    client.post("/api/v1/sessions", json={"session_id": "s1", "created_at": "2025-01-01T12:00:00Z"})

    assert client.post("/api/v1/sessions", json={"session_id": "s1"}).status_code == 409
    assert client.get("/api/v1/sessions/missing").status_code == 404

    response = client.post("/api/v1/sessions/s1/events", json={
        "event_type": "ModelCallIssued",
        "timestamp": "2024-12-31T00:00:00Z",
    })
    assert response.status_code == 409

    response = client.post("/api/v1/sessions/missing/events", json={"event_type": "ModelCallIssued"})
    assert response.status_code == 404


def test_reference_evaluation_and_reports(client, reference_file):
    response = client.post("/api/v1/evaluations/run", json={
        "source": "reference",
        "reference_path": reference_file.name,
        "system_version": "v1",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["partial"] is False
    assert body["report"]["dataset_id"].startswith("reference:reference:")
    assert {m["evaluator_name"] for m in body["report"]["metrics"]} == {
        "escalation_rate",
        "decision_consistency",
    }

    run_id = body["report"]["run_id"]
    assert client.get(f"/api/v1/reports/{run_id}").json()["run_id"] == run_id
    assert "# Evaluation Report" in client.get(f"/api/v1/reports/{run_id}/markdown").text
    assert "<html>" in client.get(f"/api/v1/reports/{run_id}/html").text
    assert client.get("/api/v1/reports/unknown").status_code == 404

    dataset_id = body["report"]["dataset_id"]
    response = client.get("/api/v1/trends/decision_consistency", params={"dataset_id": dataset_id})
    trend = response.json()
    assert len(trend["records"]) == 1
    assert trend["summary"]["latest"] == 1.0

    response = client.get(
        "/api/v1/trends/decision_consistency/degradation",
        params={"dataset_id": dataset_id},
    )
    assert response.json()["degraded"] is False


def test_live_evaluation(client):
    for i in range(4):
        client.post("/api/v1/sessions", json={
            "session_id": f"s{i}",
            "created_at": f"2025-01-01T12:0{i}:00Z",
        })
        client.post(f"/api/v1/sessions/s{i}/decision", json={
            "scored_output": {"confidence": 0.9 if i % 2 else 0.3},
        })

    response = client.post("/api/v1/evaluations/run", json={
        "source": "live",
        "window_start": "2025-01-01T00:00:00Z",
        "window_end": "2025-01-02T00:00:00Z",
        "seed": 3,
        "evaluators": ["escalation_rate@1.0.0"],
    })
    assert response.status_code == 200
    assert response.json()["report"]["dataset_id"] == "live"
    metrics = {m["metric_name"]: m["value"] for m in response.json()["report"]["metrics"]}
    assert metrics["decided_sessions"] == 4.0
    assert metrics["escalation_rate"] == 0.5


def test_evaluation_errors(client, tmp_path):
    response = client.post("/api/v1/evaluations/run", json={"source": "reference"})
    assert response.status_code == 422

    response = client.post("/api/v1/evaluations/run", json={
        "source": "reference",
        "reference_path": "nope.json",
    })
    assert response.status_code == 404

    path = tmp_path / "ref.json"
    path.write_text('[{"input": "x"}]')
    response = client.post("/api/v1/evaluations/run", json={
        "source": "reference",
        "reference_path": path.name,
        "evaluators": ["unknown_evaluator"],
    })
    assert response.status_code == 404


def test_reference_path_confined_to_reference_dir(client, tmp_path):
    outside = tmp_path.parent / "outside.json"
    outside.write_text('[{"input": "secret"}]')

    for reference_path in ["../outside.json", str(outside)]:
        response = client.post("/api/v1/evaluations/run", json={
            "source": "reference",
            "reference_path": reference_path,
        })
        assert response.status_code == 422
        assert "outside" not in response.json()["detail"]


def test_invalid_reference_file(client, tmp_path):
    (tmp_path / "broken.json").write_text('["not an object"]')
    response = client.post("/api/v1/evaluations/run", json={
        "source": "reference",
        "reference_path": "broken.json",
    })
    assert response.status_code == 422


def test_reversed_live_window_rejected(client):
    response = client.post("/api/v1/evaluations/run", json={
        "source": "live",
        "window_start": "2025-01-02T00:00:00Z",
        "window_end": "2025-01-01T00:00:00Z",
    })
    assert response.status_code == 422


def test_decision_reports_handoff(client):
    client.post("/api/v1/sessions", json={"session_id": "s3"})
    response = client.post("/api/v1/sessions/s3/decision", json={
        "scored_output": {"confidence": 0.9, "subscores": {"policy_violation": 0.0}},
    })
    assert response.json()["action"] == "auto_return"
    assert response.json()["handed_off"] is False
