"""
Data-access layer for users and feedback.

Reads go cache -> store -> (on store failure) whatever the cache still holds.
Writes go to the store first. User and feedback creation degrade to a synthetic,
cache-only record when the store is unreachable; role updates and feedback edits
do not degrade and raise StoreUnavailableError instead.

Synthetic records are flagged ``synthetic=True``, carry negative ids and are never
written back.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from werkzeug.security import generate_password_hash

from app.extensions import db, login_manager
from app.models.user import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE
from app.models.feedback import Feedback
from app.services.cache import StorageCache
from app.services.records import (
    FeedbackRecord,
    FeedbackWithUsers,
    UserRecord,
    feedback_from_model,
    newest_first_key,
    user_from_model,
)

logger = logging.getLogger(__name__)

# Connectivity / capacity failures; anything else propagates untouched
STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)

FEEDBACK_EDITABLE_FIELDS = ("strengths", "improvements", "sentiment")

# Demo roster served from the cache until the store has been seeded.
# Ids line up with `flask bootstrap demo-users` on an empty database.
BOOTSTRAP_USERS = (
    {"id": 1, "username": "admin", "role": ROLE_ADMIN, "first_name": "System", "last_name": "Admin", "email": "admin@company.com", "manager_id": None},
    {"id": 2, "username": "manager1", "role": ROLE_MANAGER, "first_name": "John", "last_name": "Manager", "email": "manager1@company.com", "manager_id": None},
    {"id": 3, "username": "manager2", "role": ROLE_MANAGER, "first_name": "Sarah", "last_name": "Thompson", "email": "manager2@company.com", "manager_id": None},
    {"id": 4, "username": "employee1", "role": ROLE_EMPLOYEE, "first_name": "Alice", "last_name": "Johnson", "email": "employee1@company.com", "manager_id": 2},
    {"id": 5, "username": "employee2", "role": ROLE_EMPLOYEE, "first_name": "Bob", "last_name": "Smith", "email": "employee2@company.com", "manager_id": 2},
    {"id": 6, "username": "employee3", "role": ROLE_EMPLOYEE, "first_name": "Carol", "last_name": "Davis", "email": "employee3@company.com", "manager_id": 3},
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageError(RuntimeError):
    """Base class for data-access failures surfaced to callers."""


class StoreUnavailableError(StorageError):
    """The store could not be reached and this operation has no cache fallback."""


class ConstraintViolationError(StorageError):
    """The store rejected a write (unique key, foreign key, check constraint)."""


class DuplicateUserError(ConstraintViolationError):
    """Username or email already taken."""


class Outcome(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class Lookup:
    """
    Result of a single-record read.

    STORE_UNAVAILABLE may still carry a value: the last cached copy, possibly expired.
    """
    outcome: Outcome
    value: Any = None

    @classmethod
    def hit(cls, value) -> "Lookup":
        return cls(Outcome.FOUND, value)

    @classmethod
    def miss(cls) -> "Lookup":
        return cls(Outcome.NOT_FOUND, None)

    @classmethod
    def unavailable(cls, stale=None) -> "Lookup":
        return cls(Outcome.STORE_UNAVAILABLE, stale)

    @property
    def found(self) -> bool:
        return self.outcome is Outcome.FOUND

    @property
    def store_unavailable(self) -> bool:
        return self.outcome is Outcome.STORE_UNAVAILABLE


class FeedbackStorage:
    def __init__(
        self,
        cache: Optional[StorageCache] = None,
        *,
        session_factory: Optional[Callable[[], Any]] = None,
        seed_bootstrap_users: bool = False,
        bootstrap_password: str = "password123",
    ):
        self.cache = cache if cache is not None else StorageCache()
        self._session_factory = session_factory or (lambda: db.session)
        self.seed_bootstrap_users = seed_bootstrap_users
        self.bootstrap_password = bootstrap_password
        self._bootstrap_hash: Optional[str] = None

    @property
    def session(self):
        return self._session_factory()

    # ---- internals -----------------------------------------------------

    def _store_failed(self, op: str, exc: Exception, **fields) -> None:
        logger.warning(
            "store unavailable during %s: %s", op, exc,
            extra={"event": "store_unavailable", "op": op, **fields},
        )
        try:
            self.session.rollback()
        except SQLAlchemyError:
            logger.exception("rollback after store failure failed", extra={"event": "rollback_failed", "op": op})

    def _ensure_seeded(self) -> None:
        """Seed the demo roster into an empty cache (never into the store)."""
        if not self.seed_bootstrap_users or not self.cache.is_empty():
            return
        if self._bootstrap_hash is None:
            self._bootstrap_hash = generate_password_hash(self.bootstrap_password)
        now = _utcnow()
        for entry in BOOTSTRAP_USERS:
            self.cache.put_user(UserRecord(
                password_hash=self._bootstrap_hash,
                created_at=now,
                updated_at=now,
                synthetic=True,
                **entry,
            ))
        logger.info("seeded %d bootstrap users into cache", len(BOOTSTRAP_USERS), extra={"event": "bootstrap_seeded"})

    def _not_in_store(self, stale: Optional[UserRecord]) -> Lookup:
        # Synthetic users only ever live in the cache
        if stale is not None and stale.synthetic:
            return Lookup.hit(self.cache.put_user(stale))
        if stale is not None:
            self.cache.evict_user(stale)
        return Lookup.miss()

    # ---- users ---------------------------------------------------------

    def lookup_user(self, user_id: int) -> Lookup:
        self._ensure_seeded()
        cached = self.cache.get_user_by_id(user_id)
        if cached is not None:
            return Lookup.hit(cached)

        try:
            row = self.session.get(User, user_id)
        except STORE_ERRORS as exc:
            self._store_failed("get_user", exc, user_id=user_id)
            return Lookup.unavailable(self.cache.stale_user_by_id(user_id))

        if row is None:
            return self._not_in_store(self.cache.stale_user_by_id(user_id))
        return Lookup.hit(self.cache.put_user(user_from_model(row)))

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self.lookup_user(user_id).value

    def lookup_user_by_username(self, username: str) -> Lookup:
        self._ensure_seeded()
        cached = self.cache.get_user_by_username(username)
        if cached is not None:
            logger.debug("using cached user data for %s", username)
            return Lookup.hit(cached)

        try:
            row = self.session.execute(
                db.select(User).where(User.username == username)
            ).scalar_one_or_none()
        except STORE_ERRORS as exc:
            self._store_failed("get_user_by_username", exc, username=username)
            return Lookup.unavailable(self.cache.stale_user_by_username(username))

        if row is None:
            return self._not_in_store(self.cache.stale_user_by_username(username))
        return Lookup.hit(self.cache.put_user(user_from_model(row)))

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        return self.lookup_user_by_username(username).value

    def create_user(self, data: Dict[str, Any]) -> UserRecord:
        """
        Insert a user. ``data`` carries username plus either ``password`` (plain)
        or ``password_hash``, and optionally email, first_name, last_name, role,
        manager_id.

        When the store is unreachable the user is created in the cache only.
        """
        self._ensure_seeded()
        username = data["username"]
        existing = self.cache.stale_user_by_username(username)
        if existing is not None and existing.synthetic:
            raise DuplicateUserError(f"Username {username!r} already exists")

        row = User(
            username=username,
            email=data.get("email") or None,
            first_name=data.get("first_name") or None,
            last_name=data.get("last_name") or None,
            role=data.get("role") or ROLE_EMPLOYEE,
            manager_id=data.get("manager_id") or None,
        )
        if data.get("password"):
            row.set_password(data["password"])
        else:
            row.password_hash = data["password_hash"]

        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateUserError(f"Username or email already exists: {username!r}") from exc
        except STORE_ERRORS as exc:
            self._store_failed("create_user", exc, username=username)
            now = _utcnow()
            user = UserRecord(
                id=self.cache.allocate_user_id(),
                username=username,
                password_hash=row.password_hash,
                email=row.email,
                first_name=row.first_name,
                last_name=row.last_name,
                role=row.role,
                manager_id=row.manager_id,
                created_at=now,
                updated_at=now,
                synthetic=True,
            )
            logger.warning(
                "user %s created in cache only (id=%s)", username, user.id,
                extra={"event": "cache_fallback_user_created", "user_id": user.id},
            )
            return self.cache.put_user(user)

        return self.cache.put_user(user_from_model(row))

    def update_user_role(self, user_id: int, role: str, manager_id: Optional[int] = None) -> Optional[UserRecord]:
        """
        Set role and manager reference. Synthetic users are edited in the cache and
        never reach the store. Otherwise there is no cache fallback: raises
        StoreUnavailableError when the store is down. Returns None for an unknown user.
        """
        stale = self.cache.stale_user_by_id(user_id)
        if stale is not None and stale.synthetic:
            return self.cache.put_user(replace(stale, role=role, manager_id=manager_id, updated_at=_utcnow()))

        try:
            row = self.session.get(User, user_id)
            if row is None:
                return None
            row.role = role
            row.manager_id = manager_id
            self.session.commit()
        except STORE_ERRORS as exc:
            self._store_failed("update_user_role", exc, user_id=user_id)
            raise StoreUnavailableError("Could not update user role: store unavailable") from exc
        except IntegrityError as exc:
            self.session.rollback()
            raise ConstraintViolationError(f"Invalid manager reference for user {user_id}") from exc

        return self.cache.put_user(user_from_model(row))

    def get_all_users(self) -> List[UserRecord]:
        self._ensure_seeded()
        if not self.cache.roster_warm:
            try:
                rows = self.session.execute(db.select(User).order_by(User.id)).scalars().all()
            except STORE_ERRORS as exc:
                self._store_failed("get_all_users", exc)
            else:
                self.cache.replace_users([user_from_model(r) for r in rows])
        return sorted(self.cache.all_users(), key=lambda u: u.id)

    def get_team_members(self, manager_id: int) -> List[UserRecord]:
        self._ensure_seeded()
        team = [u for u in self.cache.live_users() if u.manager_id == manager_id]
        if team:
            return sorted(team, key=lambda u: u.id)

        try:
            rows = self.session.execute(
                db.select(User).where(User.manager_id == manager_id).order_by(User.id)
            ).scalars().all()
        except STORE_ERRORS as exc:
            self._store_failed("get_team_members", exc, manager_id=manager_id)
            return team
        return [self.cache.put_user(user_from_model(r)) for r in rows]

    # ---- feedback ------------------------------------------------------

    def _all_feedback(self) -> List[FeedbackRecord]:
        if self.cache.feedback_warm:
            return self.cache.all_feedback()
        try:
            rows = self.session.execute(db.select(Feedback)).scalars().all()
        except STORE_ERRORS as exc:
            self._store_failed("list_feedback", exc)
            return self.cache.all_feedback()
        self.cache.replace_feedback([feedback_from_model(r) for r in rows])
        return self.cache.all_feedback()

    def create_feedback(self, data: Dict[str, Any]) -> FeedbackRecord:
        """Insert feedback; acknowledged always starts False. Falls back to a cache-only record."""
        row = Feedback(
            manager_id=data["manager_id"],
            employee_id=data["employee_id"],
            strengths=data["strengths"],
            improvements=data["improvements"],
            sentiment=data["sentiment"],
            acknowledged=False,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConstraintViolationError("Feedback references an unknown user or invalid value") from exc
        except STORE_ERRORS as exc:
            self._store_failed("create_feedback", exc, manager_id=row.manager_id, employee_id=row.employee_id)
            now = _utcnow()
            fb = FeedbackRecord(
                id=self.cache.allocate_feedback_id(),
                manager_id=row.manager_id,
                employee_id=row.employee_id,
                strengths=row.strengths,
                improvements=row.improvements,
                sentiment=row.sentiment,
                acknowledged=False,
                acknowledged_at=None,
                created_at=now,
                updated_at=now,
                synthetic=True,
            )
            logger.warning(
                "feedback created in cache only (id=%s)", fb.id,
                extra={"event": "cache_fallback_feedback_created", "feedback_id": fb.id},
            )
            return self.cache.put_feedback(fb)

        return self.cache.put_feedback(feedback_from_model(row))

    def lookup_feedback(self, feedback_id: int) -> Lookup:
        cached = self.cache.get_feedback(feedback_id)
        if cached is not None:
            return Lookup.hit(cached)
        try:
            row = self.session.get(Feedback, feedback_id)
        except STORE_ERRORS as exc:
            self._store_failed("get_feedback", exc, feedback_id=feedback_id)
            return Lookup.unavailable()
        if row is None:
            return Lookup.miss()
        return Lookup.hit(self.cache.put_feedback(feedback_from_model(row)))

    def get_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]:
        return self.lookup_feedback(feedback_id).value

    def get_feedback_by_employee(self, employee_id: int) -> List[FeedbackRecord]:
        rows = [fb for fb in self._all_feedback() if fb.employee_id == employee_id]
        return sorted(rows, key=newest_first_key, reverse=True)

    def get_feedback_by_manager(self, manager_id: int) -> List[FeedbackRecord]:
        rows = [fb for fb in self._all_feedback() if fb.manager_id == manager_id]
        return sorted(rows, key=newest_first_key, reverse=True)

    def update_feedback(self, feedback_id: int, changes: Dict[str, Any]) -> Optional[FeedbackRecord]:
        """
        Edit strengths / improvements / sentiment. Acknowledgment is left as is.
        Synthetic feedback is edited in the cache; store-backed feedback has no cache
        fallback and raises StoreUnavailableError when the store is down.
        """
        changes = {k: v for k, v in changes.items() if k in FEEDBACK_EDITABLE_FIELDS}
        cached = self.cache.get_feedback(feedback_id)
        if cached is not None and cached.synthetic:
            return self.cache.put_feedback(replace(cached, updated_at=_utcnow(), **changes))

        try:
            row = self.session.get(Feedback, feedback_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            self.session.commit()
        except STORE_ERRORS as exc:
            self._store_failed("update_feedback", exc, feedback_id=feedback_id)
            raise StoreUnavailableError("Could not update feedback: store unavailable") from exc
        except IntegrityError as exc:
            self.session.rollback()
            raise ConstraintViolationError(f"Invalid feedback values for {feedback_id}") from exc

        return self.cache.put_feedback(feedback_from_model(row))

    def acknowledge_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]:
        """
        Mark feedback acknowledged. Idempotent: an acknowledged record keeps its
        original acknowledged_at. Synthetic feedback is acknowledged in the cache.
        Otherwise the store is updated first; if it is unreachable the cached copy
        is acknowledged instead (not written back).
        """
        now = _utcnow()
        cached = self.cache.get_feedback(feedback_id)
        if cached is not None and cached.synthetic:
            return self.cache.put_feedback(cached.acknowledge(now))

        try:
            row = self.session.get(Feedback, feedback_id)
            if row is None:
                return None
            if not row.acknowledged:
                row.acknowledged = True
                row.acknowledged_at = now
                self.session.commit()
        except STORE_ERRORS as exc:
            self._store_failed("acknowledge_feedback", exc, feedback_id=feedback_id)
            if cached is None:
                raise StoreUnavailableError("Could not acknowledge feedback: store unavailable") from exc
            logger.warning(
                "feedback %s acknowledged in cache only", feedback_id,
                extra={"event": "cache_fallback_feedback_acknowledged", "feedback_id": feedback_id},
            )
            return self.cache.put_feedback(cached.acknowledge(now))

        return self.cache.put_feedback(feedback_from_model(row))

    def get_feedback_with_users(
        self,
        manager_id: Optional[int] = None,
        employee_id: Optional[int] = None,
    ) -> List[FeedbackWithUsers]:
        """All feedback matching the optional filters, joined with both users, newest first."""
        enriched = []
        for fb in sorted(self._all_feedback(), key=newest_first_key, reverse=True):
            if manager_id is not None and fb.manager_id != manager_id:
                continue
            if employee_id is not None and fb.employee_id != employee_id:
                continue
            manager = self.get_user(fb.manager_id)
            employee = self.get_user(fb.employee_id)
            if manager is None or employee is None:
                logger.debug("dropping feedback %s: unresolved user", fb.id)
                continue
            enriched.append(FeedbackWithUsers(feedback=fb, manager=manager, employee=employee))
        return enriched

    # ---- ops -----------------------------------------------------------

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def init_storage(app) -> FeedbackStorage:
    """Build the app's single storage instance from config and expose it on app.extensions."""
    storage = FeedbackStorage(
        StorageCache(ttl_seconds=app.config.get("CACHE_TTL_SECONDS", 600)),
        seed_bootstrap_users=bool(app.config.get("STORAGE_SEED_BOOTSTRAP_USERS", False)),
        bootstrap_password=app.config.get("BOOTSTRAP_PASSWORD", "password123"),
    )
    app.extensions["storage"] = storage
    return storage


def get_storage() -> FeedbackStorage:
    return current_app.extensions["storage"]


@login_manager.user_loader
def load_user(user_id: str):
    try:
        return get_storage().get_user(int(user_id))
    except (TypeError, ValueError):
        return None
