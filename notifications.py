"""
In-app notifications.

Emission is a side effect of the lifecycle managers: a failure to store a
notification is logged and never undoes the mutation that triggered it.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from database import Store
from schemas import Notification

logger = logging.getLogger(__name__)

SHIFT_SWAP_REQUEST = "shiftSwap"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationEmitter:
    def __init__(self, store: Store):
        self.store = store

    def emit(
        self,
        user_id: str,
        message: str,
        request_type: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Store a new unseen notification for user_id; returns None if it could not be stored."""
        doc = {
            "user_id": user_id,
            "message": message,
            "seen": False,
            "created_at": utc_now_iso(),
            "request_type": request_type,
            "request_id": request_id,
        }
        try:
            doc["id"] = self.store.insert(Notification.COLLECTION, doc)
        except Exception:
            logger.exception("Failed to emit notification for user %s", user_id)
            return None
        logger.debug("Notification %s -> %s: %s", doc["id"], user_id, message)
        return Notification(**doc)

    def emit_unless_actor(self, actor_id: str, user_id: str, message: str, **options) -> Optional[Notification]:
        # Nobody is told about their own action
        if actor_id == user_id:
            return None
        return self.emit(user_id, message, **options)

    def mark_all_seen_for_user(self, user_id: str) -> int:
        """Flip every unseen notification of user_id to seen in one all-or-nothing batch."""
        count = self.store.update_many(Notification.COLLECTION, {"user_id": user_id, "seen": False}, {"seen": True})
        logger.info("Marked %d notification(s) seen for user %s", count, user_id)
        return count

    def clear_for_request(self, request_id: str) -> int:
        try:
            return self.store.delete_many(Notification.COLLECTION, request_id=request_id)
        except Exception:
            logger.exception("Failed to clear notifications for request %s", request_id)
            return 0

    def for_user(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        # Newest first; reversing before the stable sort keeps later inserts ahead on timestamp ties
        docs = sorted(
            reversed(self.store.find(Notification.COLLECTION, user_id=user_id)),
            key=lambda n: n["created_at"],
            reverse=True,
        )
        if limit is not None:
            docs = docs[:limit]
        return [Notification(**n) for n in docs]

    def unseen_for(self, user_id: str) -> List[Notification]:
        return [n for n in self.for_user(user_id) if not n.seen]
