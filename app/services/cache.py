"""
Process-local cache backing the storage layer.

- Users are indexed twice (by username and by id); both maps always hold the same record.
- Each user entry carries an expiry; an expired entry is a miss for normal reads but is
  still handed out by ``stale_user_*`` so storage can serve it while the store is down.
- "Warm" markers record that a full roster / feedback list was loaded from the store.
  While warm, list reads are answered from the cache alone.
- Synthetic (cache-only) records get ids from a negative counter, so a row the
  store inserts later can never take over a synthetic entry.

Nothing here is synchronised across processes; each worker has its own copy.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from app.services.records import FeedbackRecord, UserRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 10 * 60


class StorageCache:
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock
        self.users_by_username: Dict[str, UserRecord] = {}
        self.users_by_id: Dict[int, UserRecord] = {}
        self.user_expiry: Dict[str, float] = {}
        self.feedback_by_id: Dict[int, FeedbackRecord] = {}
        self._roster_loaded_until: Optional[float] = None
        self._feedback_loaded_until: Optional[float] = None
        # Cache-only records count down from -1; the store only hands out positive ids
        self._next_user_id = -1
        self._next_feedback_id = -1

    # ---- users ---------------------------------------------------------

    def _fresh(self, username: str) -> bool:
        expires = self.user_expiry.get(username)
        return expires is not None and expires > self._clock()

    def put_user(self, user: UserRecord) -> UserRecord:
        # Drop the old username key if a rename came through
        previous = self.users_by_id.get(user.id)
        if previous is not None and previous.username != user.username:
            self.users_by_username.pop(previous.username, None)
            self.user_expiry.pop(previous.username, None)
        # Same username under another id: the newer record owns the name
        holder = self.users_by_username.get(user.username)
        if holder is not None and holder.id != user.id:
            self.users_by_id.pop(holder.id, None)
        self.users_by_username[user.username] = user
        self.users_by_id[user.id] = user
        self.user_expiry[user.username] = self._clock() + self.ttl_seconds
        return user

    def evict_user(self, user: UserRecord) -> None:
        self.users_by_id.pop(user.id, None)
        self.users_by_username.pop(user.username, None)
        self.user_expiry.pop(user.username, None)

    def replace_users(self, rows: List[UserRecord]) -> None:
        """Swap in a full roster load, keeping synthetic users the store never saw."""
        store_ids = {u.id for u in rows}
        kept = [u for u in self.users_by_id.values() if u.synthetic and u.id not in store_ids]
        self.users_by_username.clear()
        self.users_by_id.clear()
        self.user_expiry.clear()
        for user in kept:
            self.put_user(user)
        for user in rows:
            self.put_user(user)
        self._roster_loaded_until = self._clock() + self.ttl_seconds

    def get_user_by_id(self, user_id: int) -> Optional[UserRecord]:
        user = self.users_by_id.get(user_id)
        if user is None or not self._fresh(user.username):
            return None
        return user

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        user = self.users_by_username.get(username)
        if user is None or not self._fresh(username):
            return None
        return user

    def stale_user_by_id(self, user_id: int) -> Optional[UserRecord]:
        return self.users_by_id.get(user_id)

    def stale_user_by_username(self, username: str) -> Optional[UserRecord]:
        return self.users_by_username.get(username)

    def live_users(self) -> List[UserRecord]:
        return [u for u in self.users_by_id.values() if self._fresh(u.username)]

    def all_users(self) -> List[UserRecord]:
        """Every cached user, expired entries included."""
        return list(self.users_by_id.values())

    def synthetic_users(self) -> List[UserRecord]:
        return [u for u in self.users_by_id.values() if u.synthetic]

    def allocate_user_id(self) -> int:
        uid = self._next_user_id
        self._next_user_id -= 1
        return uid

    @property
    def roster_warm(self) -> bool:
        return self._roster_loaded_until is not None and self._roster_loaded_until > self._clock()

    # ---- feedback ------------------------------------------------------

    def put_feedback(self, fb: FeedbackRecord) -> FeedbackRecord:
        self.feedback_by_id[fb.id] = fb
        return fb

    def get_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]:
        return self.feedback_by_id.get(feedback_id)

    def all_feedback(self) -> List[FeedbackRecord]:
        return list(self.feedback_by_id.values())

    def replace_feedback(self, rows: List[FeedbackRecord]) -> None:
        """Swap in a full store load, keeping synthetic entries the store never saw."""
        kept = {fid: fb for fid, fb in self.feedback_by_id.items() if fb.synthetic}
        self.feedback_by_id = kept
        for fb in rows:
            self.put_feedback(fb)
        self._feedback_loaded_until = self._clock() + self.ttl_seconds

    @property
    def feedback_warm(self) -> bool:
        return self._feedback_loaded_until is not None and self._feedback_loaded_until > self._clock()

    def allocate_feedback_id(self) -> int:
        fid = self._next_feedback_id
        self._next_feedback_id -= 1
        return fid

    # ---- lifecycle -----------------------------------------------------

    def is_empty(self) -> bool:
        return not self.users_by_id

    def clear(self) -> None:
        self.users_by_username.clear()
        self.users_by_id.clear()
        self.user_expiry.clear()
        self.feedback_by_id.clear()
        self._roster_loaded_until = None
        self._feedback_loaded_until = None
        self._next_user_id = -1
        self._next_feedback_id = -1
        logger.info("storage cache cleared", extra={"event": "cache_cleared"})

    def stats(self) -> dict:
        return {
            "users": len(self.users_by_id),
            "live_users": len(self.live_users()),
            "synthetic_users": len(self.synthetic_users()),
            "feedback": len(self.feedback_by_id),
            "synthetic_feedback": sum(1 for fb in self.feedback_by_id.values() if fb.synthetic),
            "roster_warm": self.roster_warm,
            "feedback_warm": self.feedback_warm,
            "ttl_seconds": self.ttl_seconds,
        }
