from .user import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_EMPLOYEE, ROLE_CHOICES
from .feedback import (
    Feedback,
    SENTIMENT_POSITIVE,
    SENTIMENT_NEUTRAL,
    SENTIMENT_NEGATIVE,
    SENTIMENT_CHOICES,
)

__all__ = [
    "User",
    "Feedback",
    "ROLE_ADMIN",
    "ROLE_MANAGER",
    "ROLE_EMPLOYEE",
    "ROLE_CHOICES",
    "SENTIMENT_POSITIVE",
    "SENTIMENT_NEUTRAL",
    "SENTIMENT_NEGATIVE",
    "SENTIMENT_CHOICES",
]
