from datetime import datetime, timezone
from sqlalchemy import CheckConstraint
from app.extensions import db

SENTIMENT_POSITIVE = "positive"
SENTIMENT_NEUTRAL = "neutral"
SENTIMENT_NEGATIVE = "negative"
SENTIMENT_CHOICES = (SENTIMENT_POSITIVE, SENTIMENT_NEUTRAL, SENTIMENT_NEGATIVE)


def _utcnow():
    return datetime.now(timezone.utc)


class Feedback(db.Model):
    __tablename__ = "feedback"

    id = db.Column(db.Integer, primary_key=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    strengths = db.Column(db.Text, nullable=False)
    improvements = db.Column(db.Text, nullable=False)
    sentiment = db.Column(db.String(20), nullable=False)

    # One-way: false -> true, never cleared
    acknowledged = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Python-side default keeps sub-second ordering on SQLite
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=db.func.now(), onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_feedback_employee_created_at", "employee_id", "created_at"),
        db.Index("ix_feedback_manager_created_at", "manager_id", "created_at"),
        CheckConstraint(
            "sentiment IN ('positive','neutral','negative')",
            name="ck_feedback_sentiment_valid",
        ),
    )
