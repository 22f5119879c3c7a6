"""
Coordination facade.

The single owner of every collection: callers go through a Coordinator,
which resolves the acting user, hands the operation to the right lifecycle
manager and, once the mutation has committed, republishes a fresh Snapshot
to its subscribers. Mutations are serialized so each runs to completion
before the next one starts.
"""

import functools
import logging
import threading
from typing import Any, Callable, List, Optional

import config
from bookings import BookingManager
from database import COLLECTIONS, Store
from directory import UserDirectory
from errors import ValidationError
from notifications import NotificationEmitter
from schemas import (
    Booking,
    BookingStatus,
    Notification,
    PendingBooking,
    PendingRequest,
    PendingSwap,
    PendingVacation,
    Role,
    Shift,
    ShiftSwapRequest,
    Snapshot,
    SwapStatus,
    User,
    Vacation,
    VacationStatus,
)
from shift_catalog import ShiftCatalog
from swaps import SwapManager
from vacations import VacationManager

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


def mutation(method):
    """Serialize the call and publish a snapshot if any collection changed."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            try:
                return method(self, *args, **kwargs)
            finally:
                self._flush()

    return wrapper


class Coordinator:
    def __init__(self, store: Store):
        self.store = store
        self.directory = UserDirectory(store)
        self.catalog = ShiftCatalog(store)
        self.notifications = NotificationEmitter(store)
        self.bookings = BookingManager(store, self.directory, self.notifications)
        self.vacations = VacationManager(store, self.directory, self.notifications)
        self.swaps = SwapManager(store, self.directory, self.notifications)

        self._lock = threading.RLock()
        self._listeners: List[SnapshotListener] = []
        self._changed: set = set()
        for collection in COLLECTIONS:
            store.on_collection_changed(collection, self._changed.add)

    # -------------------- Snapshots --------------------
    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                users=self.directory.list_users(),
                shifts=self.catalog.list_shift_templates(),
                bookings=self.bookings.list_bookings(),
                vacations=self.vacations.list_vacations(),
                notifications=[Notification(**doc) for doc in self.store.find(Notification.COLLECTION)],
                shift_swaps=self.swaps.list_swaps(),
            )

    def subscribe(self, callback: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _flush(self) -> None:
        if not self._changed:
            return
        changed = sorted(self._changed)
        self._changed.clear()
        if not self._listeners:
            return
        snapshot = self.snapshot()
        logger.debug("Publishing snapshot after changes to %s", changed)
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")

    def actor(self, user_id: str) -> User:
        return self.directory.get_user(user_id)

    # -------------------- Users --------------------
    def list_users(self) -> List[User]:
        return self.directory.list_users()

    def get_user(self, user_id: str) -> User:
        return self.directory.get_user(user_id)

    def approver_label(self, user_id: str) -> str:
        return self.directory.approver_label(self.directory.get_user(user_id))

    @mutation
    def register_admin(self, username: str, first_name: str, last_name: str = "", email: str = "") -> User:
        return self.directory.register_admin(username, first_name, last_name, email)

    @mutation
    def add_user(self, actor_id: str, username: str, first_name: str, last_name: str = "", email: str = "",
                 role: Role = Role.OPERATOR, vacation_approver: Optional[str] = None) -> User:
        return self.directory.add_user(
            self.actor(actor_id), username, first_name, last_name, email, role, vacation_approver
        )

    @mutation
    def update_user(self, actor_id: str, user_id: str, **fields: Any) -> User:
        return self.directory.update_user(self.actor(actor_id), user_id, **fields)

    @mutation
    def delete_user(self, actor_id: str, user_id: str) -> None:
        """
        Remove the user and everything they take part in.

        Each step is its own write. The user record goes last, so a failure
        partway leaves the user in place and a repeated call finishes the job.
        """
        actor = self.actor(actor_id)
        user = self.directory.check_removable(actor, user_id)
        bookings = self.bookings.remove_for_user(user.id)
        vacations = self.vacations.remove_for_user(user.id)
        swaps = self.swaps.remove_for_user(user.id)
        self.store.delete_many(Notification.COLLECTION, user_id=user.id)
        self.directory.remove_user(actor, user.id)
        logger.info(
            "Cascade for user %s: %d booking(s), %d vacation(s), %d swap(s) removed",
            user.id, bookings, vacations, swaps,
        )

    # -------------------- Shift catalog --------------------
    def list_shift_templates(self) -> List[Shift]:
        return self.catalog.list_shift_templates()

    @mutation
    def add_shift(self, actor_id: str, name: str, start_time: str, end_time: str) -> Shift:
        return self.catalog.add(self.actor(actor_id), name, start_time, end_time)

    @mutation
    def update_shift(self, actor_id: str, shift_id: str, **fields: Any) -> Shift:
        return self.catalog.update(self.actor(actor_id), shift_id, **fields)

    @mutation
    def delete_shift(self, actor_id: str, shift_id: str) -> None:
        self.catalog.delete(self.actor(actor_id), shift_id)

    # -------------------- Bookings --------------------
    def list_bookings(self, **filters: Any) -> List[Booking]:
        return self.bookings.list_bookings(**filters)

    @mutation
    def create_booking(
        self,
        actor_id: str,
        owner_id: str,
        date: str,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        notes: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        shift_id: Optional[str] = None,
    ) -> Booking:
        """Book a slot; a shift template, when given, supplies the times."""
        if shift_id:
            shift = self.catalog.get(shift_id)
            start_time, end_time = shift.start_time, shift.end_time
        if not start_time or not end_time:
            raise ValidationError("Start and end time are required")
        return self.bookings.create(self.actor(actor_id), owner_id, date, start_time, end_time, notes, status)

    @mutation
    def edit_booking(self, actor_id: str, booking_id: str, status: Optional[BookingStatus] = None, **fields: Any) -> Booking:
        return self.bookings.edit(self.actor(actor_id), booking_id, status=status, **fields)

    @mutation
    def decide_booking(self, actor_id: str, booking_id: str, status: BookingStatus) -> Booking:
        return self.bookings.decide(self.actor(actor_id), booking_id, status)

    @mutation
    def delete_booking(self, actor_id: str, booking_id: str) -> Optional[Booking]:
        return self.bookings.request_or_confirm_delete(self.actor(actor_id), booking_id)

    # -------------------- Vacations --------------------
    def list_vacations(self, **filters: Any) -> List[Vacation]:
        return self.vacations.list_vacations(**filters)

    @mutation
    def request_vacation(self, actor_id: str, user_id: str, start_date: str, end_date: str) -> Optional[Vacation]:
        return self.vacations.create(self.actor(actor_id), user_id, start_date, end_date)

    @mutation
    def decide_vacation(self, actor_id: str, vacation_id: str, status: VacationStatus) -> Vacation:
        return self.vacations.decide(self.actor(actor_id), vacation_id, status)

    @mutation
    def edit_vacation(self, actor_id: str, vacation_id: str, start_date: Optional[str] = None,
                      end_date: Optional[str] = None) -> Vacation:
        return self.vacations.edit(self.actor(actor_id), vacation_id, start_date, end_date)

    @mutation
    def delete_vacation(self, actor_id: str, vacation_id: str) -> None:
        self.vacations.delete(self.actor(actor_id), vacation_id)

    # -------------------- Shift swaps --------------------
    def list_swaps(self, **filters: Any) -> List[ShiftSwapRequest]:
        return self.swaps.list_swaps(**filters)

    @mutation
    def propose_swap(self, actor_id: str, requested_from_id: str, requester_booking_id: str,
                     requested_booking_id: str, requester_id: Optional[str] = None) -> ShiftSwapRequest:
        """Privileged actors may propose on behalf of `requester_id`; everyone else proposes for themselves."""
        return self.swaps.propose(
            self.actor(actor_id), requested_from_id, requester_booking_id, requested_booking_id,
            requester_id=requester_id,
        )

    @mutation
    def decide_swap(self, actor_id: str, swap_id: str, status: SwapStatus) -> ShiftSwapRequest:
        return self.swaps.decide(self.actor(actor_id), swap_id, status)

    # -------------------- Notifications --------------------
    def notifications_for(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        return self.notifications.for_user(user_id, limit or config.NOTIFICATION_HISTORY_LIMIT)

    def unseen_for(self, user_id: str) -> List[Notification]:
        return self.notifications.unseen_for(user_id)

    @mutation
    def mark_all_seen(self, user_id: str) -> int:
        return self.notifications.mark_all_seen_for_user(user_id)

    # -------------------- Approvals queue --------------------
    def pending_requests(self, actor_id: str) -> List[PendingRequest]:
        """Everything awaiting a decision the actor is allowed to make."""
        actor = self.actor(actor_id)
        queue: List[PendingRequest] = []
        if actor.is_privileged:
            for booking in self.bookings.list_bookings():
                if booking.status in (BookingStatus.PENDING, BookingStatus.PENDING_DELETION):
                    queue.append(PendingBooking(booking=booking))
        for vacation in self.vacations.list_vacations(status=VacationStatus.PENDING.value):
            owner = self.directory.resolve_user(vacation.user_id)
            if owner and owner.id != actor.id and self.directory.can_decide_vacation(actor, owner):
                queue.append(PendingVacation(vacation=vacation))
        for swap in self.swaps.list_swaps(status=SwapStatus.PENDING.value):
            if actor.is_privileged or swap.requested_from_id == actor.id:
                queue.append(PendingSwap(swap=swap))
        return queue

    def pending_count(self, actor_id: str) -> int:
        return len(self.pending_requests(actor_id))
