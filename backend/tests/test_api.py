"""
Tests for the session, draft, OTP and submission endpoints.
"""
import re
from datetime import timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient

from card_application.core.draft import step_payload
from card_application.core.forms import ApplicationMode
from card_application.core.steps import step_at
from card_application.database import SessionLocal
from card_application.main import app
from card_application.models.session import ApplicationSession, utcnow
from tests.factories import CARD_SELECTION, filled_draft

client = TestClient(app)

MOBILE = "01712345678"


def _create_session(mode="SELF"):
    resp = client.post("/api/session/create", json={"mode": mode})
    assert resp.status_code == 200
    return resp.json()["sessionId"]


def _save(session_id, step, data, complete=True):
    return client.post("/api/drafts/save", json={
        "sessionId": session_id,
        "stepNumber": step,
        "stepName": step_at(step).name,
        "data": data,
        "isStepComplete": complete,
    })


def _save_application(session_id, draft):
    for step in range(13):
        assert _save(session_id, step, step_payload(draft, step)).status_code == 200


def _submit(session_id, terms=True, declaration=True):
    return client.post("/api/application/submit", json={
        "sessionId": session_id, "termsAccepted": terms, "declarationAccepted": declaration,
    })


def _expire(session_id):
    db = SessionLocal()
    try:
        session = db.get(ApplicationSession, session_id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()
    finally:
        db.close()


# ──────────────── Health & Session ────────────────

def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "connected"


def test_create_self_session():
    resp = client.post("/api/session/create", json={"mode": "SELF"})
    body = resp.json()
    assert body["mode"] == "SELF"
    assert body["isActive"] is True
    assert body["otpVerified"] is False
    assert 1790 <= body["ttlSeconds"] <= 1800
    assert body["applicationId"].startswith("APP")


def test_assisted_session_is_preverified():
    session_id = _create_session("ASSISTED")
    assert client.get(f"/api/session/{session_id}").json()["otpVerified"] is True


def test_unknown_session():
    assert client.get("/api/session/does-not-exist").status_code == 404


def test_expired_session_answers_401():
    session_id = _create_session()
    _expire(session_id)
    assert client.get(f"/api/session/{session_id}").status_code == 401
    assert _save(session_id, 1, {}).status_code == 401


def test_extend_session():
    session_id = _create_session()
    resp = client.post(f"/api/session/{session_id}/extend")
    assert resp.status_code == 200
    assert resp.json()["newTtlSeconds"] >= 1790


def test_ended_session_is_inactive():
    session_id = _create_session()
    assert client.delete(f"/api/session/{session_id}").json()["success"] is True
    assert client.get(f"/api/session/{session_id}").status_code == 401


# ──────────────── Drafts ────────────────

def test_step_versions_increment_per_save():
    session_id = _create_session()
    assert _save(session_id, 1, {"cardTier": "GOLD"}).json()["draftVersion"] == 1
    assert _save(session_id, 1, {"cardTier": "PLATINUM"}).json()["draftVersion"] == 2
    assert _save(session_id, 2, {"nameOnCard": "RAHIM UDDIN"}, complete=False).json()["draftVersion"] == 1

    state = client.get(f"/api/drafts/{session_id}").json()
    assert state["draftVersion"] == 3
    assert state["currentStep"] == 2
    assert state["highestCompletedStep"] == 1
    assert [(v["stepNumber"], v["version"]) for v in state["stepVersions"]] == [(1, 2), (2, 1)]
    assert state["data"]["step_1"] == {"cardTier": "PLATINUM"}


def test_draft_is_null_before_first_save():
    session_id = _create_session()
    resp = client.get(f"/api/drafts/{session_id}")
    assert resp.status_code == 200
    assert resp.json() is None


def test_initialize_assisted_draft_starts_at_card_selection():
    session_id = _create_session("ASSISTED")
    resp = client.post("/api/drafts/initialize", json={"sessionId": session_id})
    assert resp.json()["currentStep"] == 1


def test_step_name_must_match_number():
    session_id = _create_session()
    resp = client.post("/api/drafts/save", json={
        "sessionId": session_id, "stepNumber": 1, "stepName": "mid", "data": {},
    })
    assert resp.status_code == 400


def test_step_number_out_of_range():
    session_id = _create_session()
    resp = client.post("/api/drafts/save", json={
        "sessionId": session_id, "stepNumber": 13, "stepName": "mid", "data": {},
    })
    assert resp.status_code == 422


def test_versions_and_single_step():
    session_id = _create_session()
    _save(session_id, 1, {"cardTier": "GOLD"})
    versions = client.get(f"/api/drafts/{session_id}/versions").json()
    assert versions[0]["stepName"] == "card-selection"

    step = client.get(f"/api/drafts/{session_id}/steps/1").json()
    assert step["data"] == {"cardTier": "GOLD"}
    assert client.get(f"/api/drafts/{session_id}/steps/4").status_code == 404


def test_delete_draft():
    session_id = _create_session()
    _save(session_id, 1, {"cardTier": "GOLD"})
    assert client.delete(f"/api/drafts/{session_id}").json()["success"] is True
    assert client.get(f"/api/drafts/{session_id}").json() is None


# ──────────────── OTP ────────────────

def _request_otp(session_id, mobile=MOBILE):
    return client.post("/api/auth/otp/request", json={"sessionId": session_id, "mobileNumber": mobile})


def _verify_otp(session_id, code, mobile=MOBILE):
    return client.post("/api/auth/otp/verify", json={"sessionId": session_id, "mobileNumber": mobile, "otp": code})


def test_otp_flow_marks_session_verified():
    session_id = _create_session()
    with patch("card_application.services.otp_service.generate_otp", return_value="123456"):
        resp = _request_otp(session_id)
    assert resp.status_code == 200
    assert resp.json()["maskedMobile"] == "0171******8"
    assert resp.json()["attemptState"]["remainingAttempts"] == 5

    wrong = _verify_otp(session_id, "000000").json()
    assert wrong["verified"] is False
    assert wrong["attemptState"]["remainingAttempts"] == 4

    right = _verify_otp(session_id, "123456").json()
    assert right["verified"] is True
    assert client.get(f"/api/session/{session_id}").json()["otpVerified"] is True


def test_otp_lockout_after_max_attempts():
    session_id = _create_session()
    with patch("card_application.services.otp_service.generate_otp", return_value="123456"):
        _request_otp(session_id)
    for _ in range(5):
        last = _verify_otp(session_id, "999999").json()
    assert last["verified"] is False
    assert last["attemptState"]["isLocked"] is True

    locked = _verify_otp(session_id, "123456")
    assert locked.status_code == 429
    assert locked.json()["detail"]["limitType"] == "otp"
    assert int(locked.headers["Retry-After"]) > 0
    assert _request_otp(session_id).status_code == 429

    status = client.get("/api/auth/otp/status", params={"sessionId": session_id}).json()
    assert status["isLocked"] is True
    assert status["remainingAttempts"] == 0


def test_otp_request_is_throttled():
    session_id = _create_session()
    for _ in range(5):
        assert _request_otp(session_id).status_code == 200
    resp = client.post("/api/auth/otp/resend", json={"sessionId": session_id, "mobileNumber": MOBILE})
    assert resp.status_code == 429
    assert resp.json()["detail"]["retryAfterSeconds"] > 0


def test_otp_rejects_invalid_mobile():
    session_id = _create_session()
    assert _request_otp(session_id, mobile="01212345678").status_code == 400


def test_otp_status_before_request():
    session_id = _create_session()
    assert client.get("/api/auth/otp/status", params={"sessionId": session_id}).status_code == 404


# ──────────────── Submission ────────────────

def test_submit_complete_application():
    session_id = _create_session("ASSISTED")
    _save_application(session_id, filled_draft(ApplicationMode.ASSISTED))

    resp = _submit(session_id)
    assert resp.status_code == 200
    body = resp.json()
    assert re.match(r"^MTB-CC-\d{4}-\d{5}$", body["referenceNumber"])
    assert body["status"] == "SUBMITTED"

    status = client.get(f"/api/application/{body['applicationId']}/status").json()
    assert status["status"] == "SUBMITTED"
    assert status["referenceNumber"] == body["referenceNumber"]

    assert _save(session_id, 1, CARD_SELECTION).status_code == 409
    assert _submit(session_id).status_code == 409


def test_submit_rejects_first_invalid_step():
    session_id = _create_session("ASSISTED")
    draft = filled_draft(ApplicationMode.ASSISTED)
    draft.update_personal_info({"father_name": "K"})
    _save_application(session_id, draft)

    resp = _submit(session_id)
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["stepNumber"] == 2
    assert "father_name" in detail["fieldErrors"]


def test_submit_requires_verified_mobile():
    session_id = _create_session("SELF")
    _save_application(session_id, filled_draft())
    resp = _submit(session_id)
    assert resp.status_code == 422
    assert resp.json()["detail"]["stepNumber"] == 0


def test_submit_requires_terms_and_declaration():
    session_id = _create_session("ASSISTED")
    _save_application(session_id, filled_draft(ApplicationMode.ASSISTED))
    resp = _submit(session_id, terms=False)
    assert resp.status_code == 422
    assert resp.json()["detail"]["stepNumber"] == 12
    assert list(resp.json()["detail"]["fieldErrors"]) == ["terms_accepted"]


def test_submit_without_saved_data():
    session_id = _create_session("ASSISTED")
    resp = _submit(session_id)
    assert resp.status_code == 422
    assert resp.json()["detail"]["stepNumber"] == 0


def test_status_of_unknown_application():
    assert client.get("/api/application/APP-NOPE/status").status_code == 404
