from datetime import datetime, timezone
from sqlalchemy import func, CheckConstraint
from werkzeug.security import generate_password_hash, check_password_hash
from app.extensions import db

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_EMPLOYEE = "employee"
ROLE_CHOICES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE)


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), nullable=False, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)

    # default is employee; manager/admin must be explicit
    role = db.Column(db.String(20), nullable=False, default=ROLE_EMPLOYEE, server_default=ROLE_EMPLOYEE)
    # Not enforced here: a set manager_id should point at a manager (checked by the API layer)
    manager_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin','manager','employee')",
            name="ck_users_role_valid",
        ),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)
