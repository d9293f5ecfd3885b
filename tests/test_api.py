"""
API tests across the five services.

Every service runs in-process against one shared MemoryStore, the way the
deployed services share one database. Email senders are replaced with
recorders so login codes and initial passwords can be read back.
"""
from types import SimpleNamespace

import pytest
from conftest import RecordingInviter, RecordingMailer
from fastapi.testclient import TestClient

from multivote.elections import ElectionAdmin
from multivote.otp import OtpEngine
from multivote.services import (
    auth_service, election_service, results_service, voter_service, voting_service,
)
from multivote.services.common import election_admin, otp_engine, reset_components
from multivote.store import MemoryStore, set_store

ROOT_EMAIL = "root@example.com"
ROOT_PASSWORD = "root-password-123"

APPS = {
    "auth": auth_service.app,
    "election": election_service.app,
    "voter": voter_service.app,
    "voting": voting_service.app,
    "results": results_service.app,
}


@pytest.fixture
def api(monkeypatch):
    store = MemoryStore()
    set_store(store)
    reset_components()
    monkeypatch.setattr(auth_service, "SUPER_ADMIN_EMAIL", ROOT_EMAIL)
    monkeypatch.setattr(auth_service, "SUPER_ADMIN_PASSWORD", ROOT_PASSWORD)

    mailer, inviter = RecordingMailer(), RecordingInviter()
    engine = OtpEngine(store, send_code=mailer)
    admin = ElectionAdmin(store, send_invite=inviter, send_reset=inviter)
    auth_service.app.dependency_overrides[otp_engine] = lambda: engine
    election_service.app.dependency_overrides[election_admin] = lambda: admin

    clients = {name: TestClient(app) for name, app in APPS.items()}
    for client in clients.values():
        client.__enter__()
    try:
        yield SimpleNamespace(store=store, mailer=mailer, inviter=inviter, **clients)
    finally:
        for client in clients.values():
            client.__exit__(None, None, None)
        auth_service.app.dependency_overrides.clear()
        election_service.app.dependency_overrides.clear()
        set_store(None)
        reset_components()


def login(api, email, password):
    r = api.auth.post("/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


def bearer(session):
    return {"Authorization": f"Bearer {session['token']}"}


def root_headers(api):
    return bearer(login(api, ROOT_EMAIL, ROOT_PASSWORD))


def build_election(api, headers, name="Student Council"):
    r = api.election.post("/elections", json={"name": name}, headers=headers)
    assert r.status_code == 201, r.text
    election = r.json()
    r = api.election.post(f"/elections/{election['id']}/categories",
                          json={"name": "President"}, headers=headers)
    assert r.status_code == 201, r.text
    category = r.json()
    candidates = []
    for full_name in ("Grace Hopper", "Alan Turing"):
        r = api.election.post(f"/categories/{category['id']}/candidates",
                              json={"full_name": full_name}, headers=headers)
        assert r.status_code == 201, r.text
        candidates.append(r.json())
    return election, category, candidates


# ==========================================================================
# Basics
# ==========================================================================

def test_health(api):
    for name in APPS:
        r = getattr(api, name).get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "healthy", "service": name}


def test_missing_session_is_401(api):
    r = api.auth.get("/me")
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized"


def test_garbage_token_is_not_valid(api):
    r = api.auth.post("/verify", json={"token": "not-a-token"})
    assert r.status_code == 200
    assert r.json()["valid"] is False


def test_super_admin_bootstrap(api):
    session = login(api, ROOT_EMAIL, ROOT_PASSWORD)
    assert session["kind"] == "super_admin"

    r = api.auth.get("/me", headers=bearer(session))
    assert r.json()["email"] == ROOT_EMAIL

    r = api.auth.post("/resolve", json={"email": ROOT_EMAIL})
    assert r.json()["kind"] == "admin_or_observer"
    r = api.auth.post("/request-code", json={"email": ROOT_EMAIL})
    assert r.json()["outcome"] == "password_required"


def test_unknown_email(api):
    assert api.auth.post("/resolve", json={"email": "nobody@example.com"}).json()["kind"] == "none"
    r = api.auth.post("/request-code", json={"email": "nobody@example.com"})
    assert r.status_code == 404


# ==========================================================================
# Voter journey
# ==========================================================================

def test_voter_end_to_end(api):
    headers = root_headers(api)
    election, category, candidates = build_election(api, headers)
    eid = election["id"]
    assert election["status"] == "draft"
    assert election["allowed_actions"] == ["start"]

    r = api.voter.post(f"/elections/{eid}/voters",
                       json={"full_name": "Ada Lovelace", "email": "Ada@Example.com"},
                       headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["email"] == "ada@example.com"
    assert "login_code" not in r.json()

    # draft: no codes yet
    r = api.auth.post("/request-code", json={"email": "ada@example.com"})
    assert r.status_code == 200
    assert r.json()["outcome"] == "election_not_started"
    assert api.mailer.sent == []

    r = api.election.post(f"/elections/{eid}/status/start", headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "active"

    r = api.election.post(f"/elections/{eid}/categories", json={"name": "Late"},
                          headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "structure_locked"

    r = api.election.post(f"/elections/{eid}/status/start", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "illegal_transition"

    r = api.auth.post("/request-code", json={"email": "ada@example.com"})
    assert r.json()["outcome"] == "issued"
    assert r.json()["expires_in"] == 5 * 3600
    code = api.mailer.last_code("ada@example.com")

    r = api.auth.post("/request-code", json={"email": "ada@example.com"})
    assert r.status_code == 429
    assert 0 < r.json()["wait_seconds"] <= 60

    wrong = "000000" if code != "000000" else "111111"
    r = api.auth.post("/verify-code", json={"email": "ada@example.com", "code": wrong})
    assert r.status_code == 401
    assert r.json()["code"] == "invalid_code"

    r = api.auth.post("/verify-code", json={"email": "ada@example.com", "code": "12ab"})
    assert r.status_code == 400
    assert r.json()["code"] == "malformed_code"

    r = api.auth.post("/verify-code", json={"email": "ada@example.com", "code": code})
    assert r.status_code == 200, r.text
    credential = r.json()
    assert credential["view_only"] is False

    # codes are single use while the election runs
    r = api.auth.post("/verify-code", json={"email": "ada@example.com", "code": code})
    assert r.status_code == 401

    session = login(api, "ada@example.com", credential["secret"])
    assert session["kind"] == "voter"
    voter_headers = bearer(session)

    r = api.voting.get("/ballot", headers=voter_headers)
    assert r.status_code == 200
    ballot = r.json()
    assert ballot["can_vote"] is True
    assert [c["name"] for c in ballot["categories"]] == ["President"]
    assert ballot["categories"][0]["has_voted"] is False

    vote = {"category_id": category["id"], "candidate_id": candidates[0]["id"]}
    r = api.voting.post("/vote", json=vote, headers=voter_headers)
    assert r.status_code == 201, r.text
    r = api.voting.post("/vote", json={**vote, "candidate_id": candidates[1]["id"]},
                        headers=voter_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "already_voted"

    r = api.voting.get("/ballot", headers=voter_headers)
    assert r.json()["categories"][0]["voted_candidate_id"] == candidates[0]["id"]

    # voters see results only after the end
    r = api.results.get(f"/elections/{eid}/results", headers=voter_headers)
    assert r.status_code == 403
    r = api.results.get(f"/elections/{eid}/results", headers=headers)
    assert r.status_code == 200

    r = api.election.post(f"/elections/{eid}/status/end", headers=headers)
    assert r.json()["status"] == "completed"

    r = api.results.get(f"/elections/{eid}/results", headers=voter_headers)
    assert r.status_code == 200
    results = r.json()
    assert results["stats"]["votes_cast"] == 1
    assert results["stats"]["participation_rate"] == 100.0
    tally = results["categories"][0]["candidates"]
    assert [(c["full_name"], c["votes"], c["percentage"]) for c in tally] == [
        ("Grace Hopper", 1, 100.0),
        ("Alan Turing", 0, 0),
    ]

    r = api.voting.post("/vote", json=vote, headers=voter_headers)
    assert r.status_code == 409
    assert r.json() == {"error": r.json()["error"], "code": "election_not_active",
                        "status": "completed"}

    # voters cannot export
    r = api.results.get(f"/elections/{eid}/export", headers=voter_headers)
    assert r.status_code == 403


def test_self_registration(api):
    headers = root_headers(api)
    election, _, _ = build_election(api, headers)
    api.voter.post(f"/elections/{election['id']}/voters",
                   json={"full_name": "Bob", "email": "bob@example.com"}, headers=headers)

    r = api.auth.post("/register", json={"email": "bob@example.com"})
    assert r.status_code == 201, r.text
    assert r.json()["instance_name"] == "Student Council"
    assert r.json()["code"] is None

    r = api.auth.post("/register", json={"email": "bob@example.com"})
    assert r.status_code == 409


# ==========================================================================
# Staff
# ==========================================================================

def test_admin_invite_and_own_instance(api):
    headers = root_headers(api)
    r = api.election.post("/accounts", json={"email": "boss@example.com", "role": "admin"},
                          headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["email_sent"] is True
    assert r.json()["password"] is None
    password = api.inviter.sent[-1].password

    session = login(api, "boss@example.com", password)
    assert session["kind"] == "admin"
    assert session["instance_id"] is None
    boss = bearer(session)

    r = api.election.get("/elections", headers=boss)
    assert r.json() == []
    r = api.election.post("/elections", json={"name": "Not Mine"}, headers=boss)
    assert r.status_code == 403

    r = api.election.post("/admin/create-instance", json={"name": "Chess Club"}, headers=boss)
    assert r.status_code == 201, r.text
    eid = r.json()["id"]
    r = api.election.post("/admin/create-instance", json={"name": "Again"}, headers=boss)
    assert r.status_code == 409

    # same token, binding picked up from the store
    r = api.auth.get("/me", headers=boss)
    assert r.json()["instance_name"] == "Chess Club"
    assert [e["id"] for e in api.election.get("/elections", headers=boss).json()] == [eid]

    r = api.election.post(f"/elections/{eid}/observers", json={"email": "obs@example.com"},
                          headers=boss)
    assert r.status_code == 201, r.text
    observer = bearer(login(api, "obs@example.com", api.inviter.sent[-1].password))

    r = api.election.get(f"/elections/{eid}", headers=observer)
    assert r.status_code == 200
    r = api.election.post(f"/elections/{eid}/categories", json={"name": "Captain"},
                          headers=observer)
    assert r.status_code == 403
    r = api.results.get(f"/elections/{eid}/statistics", headers=observer)
    assert r.status_code == 200

    r = api.election.get("/accounts", headers=headers)
    assert {a["email"] for a in r.json()} == {ROOT_EMAIL, "boss@example.com", "obs@example.com"}


def test_invite_without_mail_returns_password(api):
    headers = root_headers(api)
    election, _, _ = build_election(api, headers)
    api.inviter.fail = True

    r = api.election.post(f"/elections/{election['id']}/observers",
                          json={"email": "obs@example.com"}, headers=headers)
    assert r.status_code == 201
    body = r.json()
    assert body["email_sent"] is False
    assert body["warning"]
    assert login(api, "obs@example.com", body["password"])["kind"] == "observer"


def test_revoked_role_ends_session(api):
    headers = root_headers(api)
    election, _, _ = build_election(api, headers)
    r = api.election.post(f"/elections/{election['id']}/observers",
                          json={"email": "obs@example.com"}, headers=headers)
    role_id = r.json()["role_id"]
    observer = bearer(login(api, "obs@example.com", api.inviter.sent[-1].password))

    r = api.election.delete(f"/elections/{election['id']}/observers/{role_id}", headers=headers)
    assert r.status_code == 200
    assert api.auth.get("/me", headers=observer).status_code == 401


def test_change_password(api):
    session = login(api, ROOT_EMAIL, ROOT_PASSWORD)
    r = api.auth.post("/change-password",
                      json={"current_password": ROOT_PASSWORD, "new_password": "brand-new-pass"},
                      headers=bearer(session))
    assert r.status_code == 200
    login(api, ROOT_EMAIL, "brand-new-pass")


# ==========================================================================
# Voter roll and export
# ==========================================================================

def test_csv_upload(api):
    headers = root_headers(api)
    election, _, _ = build_election(api, headers)
    eid = election["id"]
    body = b"full_name,email\nAda Lovelace,ada@example.com\nNo Email,\nBob,bob@example.com\n"

    r = api.voter.post(f"/elections/{eid}/voters/upload",
                       files={"file": ("voters.csv", body, "text/csv")}, headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["voters_added"] == 2
    assert r.json()["voters_skipped"] == 1

    r = api.voter.post(f"/elections/{eid}/voters/upload",
                       files={"file": ("voters.csv", b"\xff\xfe\x00bad", "text/csv")},
                       headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_request"

    voters = api.voter.get(f"/elections/{eid}/voters", headers=headers).json()
    assert {v["email"] for v in voters} == {"ada@example.com", "bob@example.com"}

    r = api.voter.post(f"/elections/{eid}/voters/delete",
                       json={"voter_ids": [voters[0]["id"]]}, headers=headers)
    assert r.status_code == 200
    assert len(api.voter.get(f"/elections/{eid}/voters", headers=headers).json()) == 1


def test_csv_export(api):
    headers = root_headers(api)
    election, category, candidates = build_election(api, headers)
    eid = election["id"]
    api.voter.post(f"/elections/{eid}/voters",
                   json={"full_name": "Ada Lovelace", "email": "ada@example.com"},
                   headers=headers)
    api.election.post(f"/elections/{eid}/status/start", headers=headers)
    api.auth.post("/request-code", json={"email": "ada@example.com"})
    credential = api.auth.post("/verify-code", json={
        "email": "ada@example.com", "code": api.mailer.last_code("ada@example.com"),
    }).json()
    voter = bearer(login(api, "ada@example.com", credential["secret"]))
    api.voting.post("/vote", json={"category_id": category["id"],
                                   "candidate_id": candidates[1]["id"]}, headers=voter)

    r = api.results.get(f"/elections/{eid}/export", headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    lines = r.text.strip().splitlines()
    assert lines[0] == "timestamp,voter_name,voter_email,category,candidate"
    assert lines[1].endswith(",Ada Lovelace,ada@example.com,President,Alan Turing")

    r = api.results.get(f"/elections/{eid}/timeline", headers=headers)
    assert sum(point["count"] for point in r.json()) == 1
