import pytest

from app.extensions import db
from app.models import Feedback, User, ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE
from app.services.storage import DuplicateUserError, FeedbackStorage, Outcome
from app.services.cache import StorageCache


def _feedback(manager_id, employee_id, sentiment="positive", **kw):
    data = {
        "manager_id": manager_id,
        "employee_id": employee_id,
        "strengths": "Clear communicator",
        "improvements": "Write more tests",
        "sentiment": sentiment,
    }
    data.update(kw)
    return data


def test_create_user_persists_and_caches(app, storage):
    with app.app_context():
        user = storage.create_user({"username": "alice", "password": "password123", "role": ROLE_MANAGER})
        assert user.synthetic is False
        row = db.session.get(User, user.id)
        assert row.username == "alice" and row.check_password("password123")
        assert storage.cache.get_user_by_id(user.id) == user


def test_lookup_by_id_and_username_are_coherent(app, storage, team):
    with app.app_context():
        storage.clear_cache()
        by_name = storage.get_user_by_username("employee1")
        by_id = storage.get_user(by_name.id)
        assert by_id is by_name

        storage.clear_cache()
        by_id = storage.get_user(team["manager"].id)
        assert storage.get_user_by_username("manager1") is by_id


def test_lookup_outcomes(app, storage, team):
    with app.app_context():
        assert storage.lookup_user(team["admin"].id).outcome is Outcome.FOUND
        missing = storage.lookup_user(999)
        assert missing.outcome is Outcome.NOT_FOUND and missing.value is None
        assert storage.get_user_by_username("nobody") is None


def test_cached_user_served_without_store(app, storage, team):
    with app.app_context():
        # Row changes behind the cache's back are not seen until expiry
        db.session.get(User, team["employee"].id).first_name = "Changed"
        db.session.commit()
        assert storage.get_user(team["employee"].id).first_name is None


def test_expired_user_is_reloaded_from_store(app, team):
    now = [1000.0]
    storage = FeedbackStorage(StorageCache(ttl_seconds=60, clock=lambda: now[0]))
    with app.app_context():
        assert storage.get_user(team["employee"].id).first_name is None
        db.session.get(User, team["employee"].id).first_name = "Jane"
        db.session.commit()
        now[0] += 61
        assert storage.get_user(team["employee"].id).first_name == "Jane"


def test_duplicate_username_raises(app, storage, team):
    with app.app_context():
        with pytest.raises(DuplicateUserError):
            storage.create_user({"username": "employee1", "password": "password123"})


def test_update_user_role_writes_store_and_cache(app, storage, team):
    with app.app_context():
        updated = storage.update_user_role(team["employee"].id, ROLE_MANAGER, None)
        assert updated.role == ROLE_MANAGER and updated.manager_id is None
        assert db.session.get(User, team["employee"].id).role == ROLE_MANAGER
        assert storage.get_user_by_username("employee1").role == ROLE_MANAGER
        assert storage.update_user_role(999, ROLE_MANAGER) is None


def test_get_all_users_loads_roster(app, storage, team):
    with app.app_context():
        storage.clear_cache()
        users = storage.get_all_users()
        assert [u.username for u in users] == ["admin", "manager1", "employee1", "manager2"]
        assert storage.cache.roster_warm


def test_create_then_read_back_unacknowledged(app, storage, team):
    with app.app_context():
        fb = storage.create_feedback(_feedback(team["manager"].id, team["employee"].id))
        rows = storage.get_feedback_by_employee(team["employee"].id)
        assert [r.id for r in rows] == [fb.id]
        assert rows[0].acknowledged is False
        assert rows[0].acknowledged_at is None
        assert db.session.get(Feedback, fb.id).acknowledged is False


def test_acknowledge_is_idempotent_and_keeps_first_timestamp(app, storage, team):
    with app.app_context():
        fb = storage.create_feedback(_feedback(team["manager"].id, team["employee"].id))
        first = storage.acknowledge_feedback(fb.id)
        assert first.acknowledged is True and first.acknowledged_at is not None

        again = storage.acknowledge_feedback(fb.id)
        assert again.acknowledged is True
        assert again.acknowledged_at == first.acknowledged_at

        row = db.session.get(Feedback, fb.id)
        assert row.acknowledged is True and row.acknowledged_at is not None
        assert storage.acknowledge_feedback(999) is None


def test_update_feedback_keeps_acknowledgment(app, storage, team):
    with app.app_context():
        fb = storage.create_feedback(_feedback(team["manager"].id, team["employee"].id))
        storage.acknowledge_feedback(fb.id)
        updated = storage.update_feedback(fb.id, {"sentiment": "neutral", "acknowledged": False, "manager_id": 42})
        assert updated.sentiment == "neutral"
        assert updated.acknowledged is True
        assert updated.manager_id == team["manager"].id
        assert storage.update_feedback(999, {"sentiment": "neutral"}) is None


def test_feedback_with_users_filters_and_orders(app, storage, team, make_user):
    manager, employee, other = team["manager"], team["employee"], team["other_manager"]
    with app.app_context():
        e2 = make_user(ROLE_EMPLOYEE, manager_id=other.id, username="employee2")
        a = storage.create_feedback(_feedback(manager.id, employee.id))
        b = storage.create_feedback(_feedback(other.id, e2.id, sentiment="negative"))
        c = storage.create_feedback(_feedback(manager.id, employee.id, sentiment="neutral"))

        everything = storage.get_feedback_with_users()
        assert [row.id for row in everything] == [c.id, b.id, a.id]

        by_manager = storage.get_feedback_with_users(manager_id=manager.id)
        assert [row.id for row in by_manager] == [c.id, a.id]
        assert all(row.manager.id == manager.id for row in by_manager)

        by_employee = storage.get_feedback_with_users(employee_id=e2.id)
        assert [row.id for row in by_employee] == [b.id]
        assert by_employee[0].employee.username == "employee2"

        assert storage.get_feedback_with_users(manager_id=manager.id, employee_id=e2.id) == []

        as_dict = by_employee[0].to_dict()
        assert as_dict["manager"]["username"] == "manager2"
        assert "password_hash" not in as_dict["employee"]


def test_feedback_with_unresolvable_user_is_dropped(app, storage, team):
    with app.app_context():
        db.session.add(Feedback(manager_id=team["manager"].id, employee_id=777, strengths="s",
                                improvements="i", sentiment="neutral"))
        db.session.commit()
        kept = storage.create_feedback(_feedback(team["manager"].id, team["employee"].id))
        storage.clear_cache()
        assert [row.id for row in storage.get_feedback_with_users()] == [kept.id]


def test_team_members(app, storage, team):
    with app.app_context():
        members = storage.get_team_members(team["manager"].id)
        assert [u.username for u in members] == ["employee1"]
        assert storage.get_team_members(team["other_manager"].id) == []

        # Cold cache falls back to the store
        storage.clear_cache()
        assert [u.id for u in storage.get_team_members(team["manager"].id)] == [team["employee"].id]


def test_bootstrap_users_seed_lazily(app):
    storage = FeedbackStorage(seed_bootstrap_users=True, bootstrap_password="letmein99")
    with app.app_context():
        assert storage.cache.is_empty()
        admin = storage.get_user_by_username("admin")
        assert admin.role == ROLE_ADMIN and admin.synthetic
        employee3 = storage.get_user(6)
        assert employee3.manager_id == 3
        assert storage.get_user(3).username == "manager2"
        # One shared hash for the whole roster
        assert len({u.password_hash for u in storage.cache.all_users()}) == 1
        assert [u.username for u in storage.get_team_members(2)] == ["employee1", "employee2"]


def test_scenario_manager_feedback_acknowledged(app, storage, make_user):
    with app.app_context():
        make_user(ROLE_ADMIN, username="root")
        m = make_user(ROLE_MANAGER, username="m")
        e = make_user(ROLE_EMPLOYEE, manager_id=m.id, username="e")
        assert (m.id, e.id) == (2, 3)

        fb = storage.create_feedback(_feedback(2, 3, sentiment="positive"))
        by_manager = storage.get_feedback_by_manager(2)
        assert len(by_manager) == 1 and by_manager[0].employee_id == 3

        storage.acknowledge_feedback(fb.id)
        [row] = storage.get_feedback_by_employee(3)
        assert row.id == fb.id and row.acknowledged is True
