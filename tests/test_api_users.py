from app.extensions import db
from app.models import User, ROLE_MANAGER, ROLE_EMPLOYEE

from tests.conftest import DownSession


def _login(client, user_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok" and "users" in body["cache"]


def test_password_login_and_current_user(client, team):
    resp = client.post("/auth/login", json={"username": "employee1", "password": "password123"})
    assert resp.status_code == 200
    assert resp.get_json()["role"] == ROLE_EMPLOYEE

    me = client.get("/api/auth/user").get_json()
    assert me["username"] == "employee1"
    assert "password_hash" not in me

    assert client.post("/auth/logout").get_json() == {"ok": True}
    assert client.get("/api/auth/user").status_code == 401


def test_login_failures(client, team):
    assert client.post("/auth/login", json={"username": "employee1", "password": "wrong-pass"}).status_code == 401
    assert client.post("/auth/login", json={"username": "ghost", "password": "password123"}).status_code == 401
    resp = client.post("/auth/login", json={"username": ""})
    assert resp.status_code == 400 and resp.get_json()["error"] == "invalid_data"


def test_login_while_store_down(client, storage, team):
    original = storage._session_factory
    storage._session_factory = DownSession
    try:
        # Cached user can still sign in
        ok = client.post("/auth/login", json={"username": "manager1", "password": "password123"})
        unknown = client.post("/auth/login", json={"username": "ghost", "password": "password123"})
    finally:
        storage._session_factory = original
    assert ok.status_code == 200
    assert unknown.status_code == 503


def test_register_creates_employee(app, client):
    resp = client.post("/auth/register", json={
        "username": "new.hire",
        "password": "longenough",
        "email": "new.hire@company.com",
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["role"] == ROLE_EMPLOYEE
    assert client.get("/api/auth/user").get_json()["id"] == body["id"]

    with app.app_context():
        assert db.session.get(User, body["id"]).username == "new.hire"


def test_register_rejects_taken_and_invalid(client, team):
    taken = client.post("/auth/register", json={"username": "employee1", "password": "longenough"})
    assert taken.status_code == 400
    assert taken.get_json()["errors"] == ["username: already taken"]

    bad = client.post("/auth/register", json={"username": "x", "password": "short"})
    assert bad.status_code == 400 and len(bad.get_json()["errors"]) == 2


def test_register_duplicate_email_is_invalid_data(client, team):
    client.post("/auth/register", json={"username": "first", "password": "longenough", "email": "a@b.co"})
    client.post("/auth/logout")
    resp = client.post("/auth/register", json={"username": "second", "password": "longenough", "email": "a@b.co"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_data"


def test_admin_lists_users_and_feedback(client, team, storage, app):
    with app.app_context():
        storage.create_feedback({
            "manager_id": team["manager"].id,
            "employee_id": team["employee"].id,
            "strengths": "s",
            "improvements": "i",
            "sentiment": "neutral",
        })

    _login(client, team["admin"].id)
    users = client.get("/api/admin/users").get_json()
    assert [u["username"] for u in users] == ["admin", "manager1", "employee1", "manager2"]
    [row] = client.get("/api/admin/feedback").get_json()
    assert row["manager"]["username"] == "manager1"

    _login(client, team["manager"].id)
    assert client.get("/api/admin/users").status_code == 403
    assert client.get("/api/admin/feedback").status_code == 403


def test_admin_changes_role_and_manager(client, team):
    _login(client, team["admin"].id)
    employee_id = team["employee"].id

    resp = client.patch(f"/api/admin/users/{employee_id}/role",
                        json={"role": "employee", "manager_id": team["other_manager"].id})
    assert resp.status_code == 200
    assert resp.get_json()["manager_id"] == team["other_manager"].id

    promoted = client.patch(f"/api/admin/users/{employee_id}/role", json={"role": "manager"}).get_json()
    assert promoted["role"] == ROLE_MANAGER and promoted["manager_id"] is None


def test_admin_role_change_validation(client, team):
    _login(client, team["admin"].id)
    employee_id = team["employee"].id

    assert client.patch(f"/api/admin/users/{employee_id}/role", json={"role": "boss"}).status_code == 400
    # Manager reference must point at a manager
    resp = client.patch(f"/api/admin/users/{employee_id}/role",
                        json={"role": "employee", "manager_id": team["admin"].id})
    assert resp.status_code == 400
    assert client.patch("/api/admin/users/999/role", json={"role": "manager"}).status_code == 404

    _login(client, team["manager"].id)
    resp = client.patch(f"/api/admin/users/{employee_id}/role", json={"role": "manager"})
    assert resp.status_code == 403
    assert resp.get_json()["message"] == "Only admins can change user roles"


def test_role_change_while_store_down_is_503(client, team, storage):
    _login(client, team["admin"].id)
    original = storage._session_factory
    storage._session_factory = DownSession
    try:
        resp = client.patch(f"/api/admin/users/{team['employee'].id}/role", json={"role": "manager"})
    finally:
        storage._session_factory = original
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "store_unavailable"


def test_self_role_switch(client, team):
    _login(client, team["employee"].id)
    resp = client.patch("/api/user/role", json={"role": "manager"})
    assert resp.status_code == 200 and resp.get_json()["role"] == ROLE_MANAGER
    assert client.get("/api/auth/user").get_json()["role"] == ROLE_MANAGER

    assert client.patch("/api/user/role", json={"role": "admin"}).status_code == 400


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "not_found", "code": 404}


def test_admin_updates_offline_user_by_negative_id(client, team, storage):
    original = storage._session_factory
    storage._session_factory = DownSession
    try:
        with client.application.app_context():
            offline = storage.create_user({"username": "offline", "password": "password123"})
    finally:
        storage._session_factory = original
    assert offline.id < 0

    _login(client, team["admin"].id)
    resp = client.patch(f"/api/admin/users/{offline.id}/role",
                        json={"role": "employee", "manager_id": team["manager"].id})
    assert resp.status_code == 200
    assert resp.get_json()["id"] == offline.id
    assert resp.get_json()["manager_id"] == team["manager"].id
