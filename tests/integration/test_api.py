"""Integration tests for the HTTP API"""

import pytest
from fastapi.testclient import TestClient

from screenplay_classifier import main
from screenplay_classifier.nodes.review_client import get_model, set_model
from screenplay_classifier.nodes.rule_auditor import RuleAuditor


@pytest.fixture
def client():
    """Test client over fresh process-wide state"""
    main.learner.reset()
    main.auditor = RuleAuditor()
    main.sessions.clear()
    with TestClient(main.app) as c:
        yield c
    main.sessions.clear()


def _correction(**overrides):
    body = {
        "lineText": "يخرج من الغرفة",
        "originalType": "action",
        "correctedType": "dialogue",
        "precedingType": "character",
    }
    body.update(overrides)
    return body


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "model": get_model(), "sessions": 0}


class TestClassify:
    def test_classify(self, client):
        resp = client.post("/classify", json={"text": "أحمد:\nمرحباً كيف حالك؟"})
        assert resp.status_code == 200
        data = resp.json()
        assert [ln["type"] for ln in data["lines"]] == ["character", "dialogue"]
        assert data["lines"][0]["doubtScore"] == 0
        assert data["lines"][0]["lineIndex"] == 0
        assert data["lines"][0]["confidenceTier"] == "high"
        assert "confidence" not in data["lines"][0]
        assert data["review"] is None
        assert data["statistics"]["characters"] == ["أحمد"]

    def test_classify_with_audit(self, client):
        resp = client.post("/classify", json={"text": "مشهد 1\nبيت أحمد - ليل", "audit": True})
        assert resp.status_code == 200
        assert "rule_auditor" in [n["node"] for n in resp.json()["report"]["nodes"]]

    def test_previous_types_seed(self, client):
        resp = client.post("/classify", json={
            "text": "مرحباً كيف حالك يا صديقي؟",
            "previousTypes": ["character"],
        })
        assert resp.json()["lines"][0]["type"] == "dialogue"

    def test_unknown_previous_type(self, client):
        resp = client.post("/classify", json={"text": "x", "previousTypes": ["villain"]})
        assert resp.status_code == 400

    def test_missing_text(self, client):
        resp = client.post("/classify", json={})
        assert resp.status_code == 422
        assert "body_preview" in resp.json()


def test_session_memory_lifecycle(client):
    """Test that a session keeps its speakers until deleted"""
    client.post("/classify", json={"text": "أحمد:\nمرحباً كيف حالك؟", "sessionId": "s1"})
    assert main.sessions["s1"].is_known_character("أحمد") is not None
    assert client.get("/health").json()["sessions"] == 1

    assert client.delete("/sessions/s1").status_code == 200
    assert client.delete("/sessions/s1").status_code == 404


def test_least_recent_session_evicted(client, monkeypatch):
    """Test that the least recently used session is dropped over the limit"""
    monkeypatch.setattr(main.config, "MAX_SESSIONS", 2)
    for session in ("s1", "s2", "s1", "s3"):
        resp = client.post("/classify", json={"text": "أحمد:\nمرحباً كيف حالك؟", "sessionId": session})
        assert resp.status_code == 200

    assert list(main.sessions) == ["s1", "s3"]
    assert main.sessions["s1"].character_weight("أحمد") == 4
    assert client.delete("/sessions/s2").status_code == 404


def test_audit(client):
    resp = client.post("/audit", json={"lines": [
        {"text": "بسم الله الرحمن الرحيم", "type": "action", "confidence": 50},
    ]})
    assert resp.status_code == 200
    [s] = resp.json()["suggestions"]
    assert s["suggested"] == "invocation"
    assert s["severity"] == "high"
    assert s["lineIndex"] == 0


def test_audit_rejects_bad_confidence(client):
    resp = client.post("/audit", json={"lines": [{"text": "x", "type": "action", "confidence": 150}]})
    assert resp.status_code == 422


class TestReview:
    def test_confident_lines_are_not_sent(self, client):
        resp = client.post("/review", json={"lines": [
            {"text": "أحمد:", "type": "character", "doubtScore": 0},
            {"text": "مرحبا", "type": "dialogue", "doubtScore": 5},
        ]})
        assert resp.status_code == 200
        assert resp.json()["stats"]["apiCalls"] == 0
        assert [ln["type"] for ln in resp.json()["lines"]] == ["character", "dialogue"]

    def test_missing_doubt_is_computed(self, client):
        resp = client.post("/review", json={"doubtThreshold": 101, "lines": [
            {"text": "أحمد:", "type": "character"},
            {"text": "يدخل", "type": "action"},
            {"text": "مرحبا يا صديقي العزيز", "type": "dialogue"},
        ]})
        assert resp.status_code == 200
        assert resp.json()["lines"][1]["doubtScore"] == 50


class TestCorrections:
    def test_record_and_export(self, client):
        client.post("/corrections", json=_correction())
        resp = client.post("/corrections", json=_correction())
        assert resp.status_code == 200
        assert resp.json()["totalCorrections"] == 2

        data = client.get("/adaptive/export").json()["data"]
        main.learner.reset()
        resp = client.post("/adaptive/import", json={"data": data})
        assert resp.status_code == 200
        assert resp.json()["totalCorrections"] == 2

    def test_unknown_type(self, client):
        resp = client.post("/corrections", json=_correction(correctedType="villain"))
        assert resp.status_code == 400

    def test_bad_import(self, client):
        assert client.post("/adaptive/import", json={"data": "garbage"}).status_code == 400


class TestKnowledgeBase:
    def test_round_trip(self, client):
        data = client.get("/knowledge-base/export").json()["data"]
        resp = client.post("/knowledge-base/import", json={"data": data})
        assert resp.json() == {"rules": 5}

    def test_bad_import(self, client):
        assert client.post("/knowledge-base/import", json={"data": "{}"}).status_code == 400

    def test_add_rule(self, client):
        resp = client.post("/knowledge-base/rules", json={
            "pattern": r"^\s*صوت\s",
            "rules": [{
                "confirmType": "character",
                "rejectTypes": ["action"],
                "minConfidence": 60,
                "explanation": "voice cue names a speaker",
            }],
        })
        assert resp.json() == {"rules": 6}

    def test_add_bad_pattern(self, client):
        resp = client.post("/knowledge-base/rules", json={"pattern": "(", "rules": []})
        assert resp.status_code == 400


class TestModel:
    def test_get(self, client):
        data = client.get("/model").json()
        assert data["model"] in data["available"]

    def test_set(self, client):
        previous = get_model()
        try:
            resp = client.put("/model", json={"model": "gemini-1.5-pro"})
            assert resp.json() == {"model": "gemini-1.5-pro"}
        finally:
            set_model(previous)

    def test_unknown(self, client):
        assert client.put("/model", json={"model": "nope"}).status_code == 400
