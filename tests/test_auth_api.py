"""
Auth API, password hashing and health probes.
"""

from werkzeug.security import generate_password_hash

from app.models import db
from app.models.auth import User
from app.utils.crypto import hash_password, verify_password


# ═══════════════════════════════════════════════════════════════
# Password hashing
# ═══════════════════════════════════════════════════════════════

def test_bcrypt_round_trip():
    hashed = hash_password("Welcome2026!")
    assert hashed.startswith("$2b$")
    assert verify_password("Welcome2026!", hashed)
    assert not verify_password("welcome2026!", hashed)


def test_legacy_werkzeug_hash_still_verifies():
    legacy = generate_password_hash("Welcome2026!")
    assert verify_password("Welcome2026!", legacy)


def test_empty_hash_never_verifies():
    assert not verify_password("anything", None)


# ═══════════════════════════════════════════════════════════════
# Register / login / me
# ═══════════════════════════════════════════════════════════════

def test_register_then_login(client):
    res = client.post("/api/v1/auth/register", json={
        "username": "newbie", "email": "newbie@acme.io", "password": "Welcome2026!",
    })
    assert res.status_code == 201
    assert res.get_json()["user"]["roles"] == []

    res = client.post("/api/v1/auth/login",
                      json={"username": "newbie@acme.io", "password": "Welcome2026!"})
    assert res.status_code == 200
    body = res.get_json()
    assert body["token_type"] == "Bearer"
    assert body["access_token"]


def test_register_short_password(client):
    res = client.post("/api/v1/auth/register", json={"username": "x", "password": "short"})
    assert res.status_code == 400


def test_register_duplicate_username(client, trainee):
    res = client.post("/api/v1/auth/register",
                      json={"username": "tom_trainee", "password": "Welcome2026!"})
    assert res.status_code == 409


def test_login_wrong_password(client, trainee):
    trainee.password_hash = hash_password("Welcome2026!")
    db.session.commit()
    res = client.post("/api/v1/auth/login", json={"username": "tom_trainee", "password": "nope1234"})
    assert res.status_code == 401


def test_login_suspended_account(client, make_user):
    user = make_user("sue", status="suspended")
    user.password_hash = hash_password("Welcome2026!")
    db.session.commit()
    res = client.post("/api/v1/auth/login", json={"username": "sue", "password": "Welcome2026!"})
    assert res.status_code == 403


def test_login_sets_last_login(client, trainee):
    trainee.password_hash = hash_password("Welcome2026!")
    db.session.commit()
    client.post("/api/v1/auth/login", json={"username": "tom_trainee", "password": "Welcome2026!"})
    assert db.session.get(User, trainee.id).last_login_at is not None


def test_me(client, auth_headers, manager, make_program):
    make_program("alpha", managers=[manager])
    res = client.get("/api/v1/auth/me", headers=auth_headers(manager))
    assert res.status_code == 200
    body = res.get_json()
    assert body["roles"] == ["manager"]
    assert "task.assign" in body["permissions"]
    assert "audit.read" not in body["permissions"]
    assert body["managed_program_ids"] == ["alpha"]
    assert body["client_settings"] == {"metadata_save_delay_ms": 600, "reorder_save_delay_ms": 400}


def test_me_without_token(client):
    assert client.get("/api/v1/auth/me").status_code == 401


# ═══════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════

def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


def test_ready(client):
    assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nothing-here")
    assert res.status_code == 404
    assert res.get_json()["path"] == "/api/v1/nothing-here"
