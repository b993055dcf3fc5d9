"""
Plain, session-independent snapshots of store rows.

The storage cache outlives any single SQLAlchemy session, so it never holds ORM
instances; rows are copied into these frozen records on the way in.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask_login import UserMixin

from app.models.user import User, ROLE_EMPLOYEE
from app.models.feedback import Feedback


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass(frozen=True)
class UserRecord(UserMixin):
    id: int
    username: str
    password_hash: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = ROLE_EMPLOYEE
    manager_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    synthetic: bool = False

    def get_id(self) -> str:
        return str(self.id)

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "manager_id": self.manager_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class FeedbackRecord:
    id: int
    manager_id: int
    employee_id: int
    strengths: str
    improvements: str
    sentiment: str
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    synthetic: bool = False

    def acknowledge(self, now: datetime) -> "FeedbackRecord":
        """Return the acknowledged copy; an already-acknowledged record comes back unchanged."""
        if self.acknowledged:
            return self
        return replace(self, acknowledged=True, acknowledged_at=now, updated_at=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "manager_id": self.manager_id,
            "employee_id": self.employee_id,
            "strengths": self.strengths,
            "improvements": self.improvements,
            "sentiment": self.sentiment,
            "acknowledged": self.acknowledged,
            "acknowledged_at": _iso(self.acknowledged_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class FeedbackWithUsers:
    feedback: FeedbackRecord
    manager: UserRecord
    employee: UserRecord

    @property
    def id(self) -> int:
        return self.feedback.id

    def to_dict(self) -> Dict[str, Any]:
        out = self.feedback.to_dict()
        out["manager"] = self.manager.to_dict()
        out["employee"] = self.employee.to_dict()
        return out


def user_from_model(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role or ROLE_EMPLOYEE,
        manager_id=row.manager_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def feedback_from_model(row: Feedback) -> FeedbackRecord:
    return FeedbackRecord(
        id=row.id,
        manager_id=row.manager_id,
        employee_id=row.employee_id,
        strengths=row.strengths,
        improvements=row.improvements,
        sentiment=row.sentiment,
        acknowledged=bool(row.acknowledged),
        acknowledged_at=_aware(row.acknowledged_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def newest_first_key(fb: FeedbackRecord):
    """Sort key for newest-first listings; ties broken by id."""
    created = fb.created_at or datetime.min.replace(tzinfo=timezone.utc)
    return (created, fb.id)
