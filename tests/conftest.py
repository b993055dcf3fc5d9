import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from app.extensions import db
from app.models import ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE


class DownSession:
    """Stands in for db.session while the database is unreachable."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionError("could not connect to server"))

    get = execute = add = commit = flush = query = scalar = _fail

    def rollback(self):
        return None


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def storage(app):
    return app.extensions["storage"]


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture()
def store_down(storage):
    """Make every store call fail with a connectivity error for the duration of a test."""
    original = storage._session_factory
    storage._session_factory = DownSession
    yield storage
    storage._session_factory = original


@pytest.fixture()
def make_user(app, storage):
    counter = {"n": 0}

    def _make(role=ROLE_EMPLOYEE, manager_id=None, username=None, **fields):
        counter["n"] += 1
        with app.app_context():
            return storage.create_user({
                "username": username or f"{role}{counter['n']}",
                "password": fields.pop("password", "password123"),
                "role": role,
                "manager_id": manager_id,
                **fields,
            })
    return _make


@pytest.fixture()
def team(make_user):
    """Admin (id 1), manager (id 2) with one report (id 3), a second manager (id 4) with none."""
    admin = make_user(ROLE_ADMIN, username="admin")
    manager = make_user(ROLE_MANAGER, username="manager1")
    employee = make_user(ROLE_EMPLOYEE, manager_id=manager.id, username="employee1")
    other_manager = make_user(ROLE_MANAGER, username="manager2")
    return {"admin": admin, "manager": manager, "employee": employee, "other_manager": other_manager}


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
        app.extensions["storage"].clear_cache()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
        app.extensions["storage"].clear_cache()
