"""
Booking lifecycle.

    PENDING ──> APPROVED ──> PENDING_DELETION ──> (removed)
       │            ^               │
       v            └───────────────┘ deletion denied
    REJECTED

Approvals, rejections and deletion decisions notify the booking's creator;
field edits by someone other than the owner notify the owner.
"""

import logging
from typing import Any, Dict, List, Optional

from database import Store
from directory import UserDirectory, require_privileged
from errors import NotFoundError, PermissionDeniedError, ValidationError
from formatting import format_day_month, format_time_range, validate_date
from notifications import NotificationEmitter
from schemas import Booking, BookingStatus, User
from shift_catalog import validate_time_range

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.APPROVED, BookingStatus.REJECTED},
    BookingStatus.APPROVED: {BookingStatus.PENDING_DELETION},
    BookingStatus.PENDING_DELETION: {BookingStatus.APPROVED},
    BookingStatus.REJECTED: set(),
}

EDITABLE_FIELDS = ("date", "start_time", "end_time", "notes")


def default_status(creator: User) -> BookingStatus:
    return BookingStatus.APPROVED if creator.is_privileged else BookingStatus.PENDING


class BookingManager:
    def __init__(self, store: Store, directory: UserDirectory, notifications: NotificationEmitter):
        self.store = store
        self.directory = directory
        self.notifications = notifications

    def get(self, booking_id: str) -> Booking:
        doc = self.store.get(Booking.COLLECTION, booking_id)
        if doc is None:
            raise NotFoundError(Booking.COLLECTION, booking_id, "Booking not found")
        return Booking(**doc)

    def list_bookings(self, **filters: Any) -> List[Booking]:
        docs = self.store.find(Booking.COLLECTION, **filters)
        return sorted((Booking(**doc) for doc in docs), key=lambda b: (b.date, b.start_time))

    def create(
        self,
        actor: User,
        owner_id: str,
        date: str,
        start_time: str,
        end_time: str,
        notes: Optional[str] = None,
        status: Optional[BookingStatus] = None,
    ) -> Booking:
        owner = self.directory.get_user(owner_id)
        if owner.id != actor.id and not actor.is_privileged:
            raise PermissionDeniedError("You can only book shifts for yourself")
        validate_date(date)
        validate_time_range(start_time, end_time)

        if status is None:
            status = default_status(actor)
        status = BookingStatus(status)
        if status not in (BookingStatus.PENDING, BookingStatus.APPROVED):
            raise ValidationError(f"A new booking cannot start as '{status.value}'")
        if status == BookingStatus.APPROVED and not actor.is_privileged:
            raise PermissionDeniedError("Only administrators and assistants can book approved shifts")

        data = {
            "user_id": owner.id,
            "booked_by": actor.id,
            "date": date,
            "start_time": start_time,
            "end_time": end_time,
            "notes": notes,
            "status": status.value,
        }
        booking = Booking(id=self.store.insert(Booking.COLLECTION, data), **data)
        logger.info("Booking %s created for %s by %s (%s)", booking.id, owner.id, actor.id, status.value)

        if actor.id != owner.id:
            self.notifications.emit(
                owner.id,
                f"{actor.full_name} te ha asignado un turno el {format_day_month(date)} "
                f"{format_time_range(start_time, end_time)}.",
            )
        return booking

    def edit(self, actor: User, booking_id: str, status: Optional[BookingStatus] = None, **fields: Any) -> Booking:
        """Change date/time/notes and/or status. A status change is notified as a decision, not as an edit."""
        booking = self.get(booking_id)
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown booking field(s): {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {
            key: value for key, value in fields.items()
            if value is not None and value != getattr(booking, key)
        }
        new_status = BookingStatus(status) if status is not None else booking.status
        status_changed = new_status != booking.status

        if changes:
            require_privileged(actor, "edit bookings")
            if "date" in changes:
                validate_date(changes["date"])
            validate_time_range(changes.get("start_time", booking.start_time), changes.get("end_time", booking.end_time))
        if status_changed:
            self._check_transition(actor, booking, new_status)
            changes["status"] = new_status.value

        if not changes:
            return booking

        if not self.store.update(Booking.COLLECTION, booking_id, changes):
            raise NotFoundError(Booking.COLLECTION, booking_id, "Booking not found")
        updated = booking.model_copy(update={**changes, "status": new_status})
        logger.info("Booking %s updated by %s: %s", booking_id, actor.id, sorted(changes))

        if status_changed:
            self._notify_status_change(actor, booking, new_status)
        elif actor.id != booking.user_id:
            self.notifications.emit(
                booking.user_id,
                f"{actor.full_name} ha modificado tu turno del {format_day_month(booking.date)}. "
                f"Nuevo horario: {format_day_month(updated.date)} "
                f"{format_time_range(updated.start_time, updated.end_time)}.",
            )
        return updated

    def decide(self, actor: User, booking_id: str, status: BookingStatus) -> Booking:
        return self.edit(actor, booking_id, status=status)

    def request_or_confirm_delete(self, actor: User, booking_id: str) -> Optional[Booking]:
        """
        Privileged users delete outright, as does anyone acting on a booking already
        awaiting deletion. An unprivileged owner withdraws a booking still PENDING
        and only flags an approved one as PENDING_DELETION. Returns the flagged
        booking, or None once removed.
        """
        booking = self.get(booking_id)
        if not actor.is_privileged and actor.id != booking.user_id:
            raise PermissionDeniedError("You can only delete your own bookings")

        if actor.is_privileged or booking.status in (BookingStatus.PENDING, BookingStatus.PENDING_DELETION):
            if not self.store.delete(Booking.COLLECTION, booking_id):
                raise NotFoundError(Booking.COLLECTION, booking_id, "Booking not found")
            logger.info("Booking %s deleted by %s", booking_id, actor.id)
            if booking.status == BookingStatus.PENDING_DELETION:
                self.notifications.emit_unless_actor(
                    actor.id,
                    booking.booked_by,
                    f"Tu solicitud de eliminación del turno del {format_day_month(booking.date)} "
                    f"ha sido APROBADA.",
                )
            return None

        return self.edit(actor, booking_id, status=BookingStatus.PENDING_DELETION)

    def remove_for_user(self, user_id: str) -> int:
        return self.store.delete_many(Booking.COLLECTION, user_id=user_id)

    # -------------------- Internals --------------------
    def _check_transition(self, actor: User, booking: Booking, new_status: BookingStatus) -> None:
        if new_status not in TRANSITIONS[booking.status]:
            raise ValidationError(
                f"Booking cannot go from '{booking.status.value}' to '{new_status.value}'",
                details={"from": booking.status.value, "to": new_status.value},
            )
        if new_status == BookingStatus.PENDING_DELETION:
            if actor.id != booking.user_id and not actor.is_privileged:
                raise PermissionDeniedError("You can only request deletion of your own bookings")
        else:
            require_privileged(actor, "approve or reject bookings")

    def _notify_status_change(self, actor: User, booking: Booking, new_status: BookingStatus) -> None:
        day = format_day_month(booking.date)
        hours = format_time_range(booking.start_time, booking.end_time)
        if booking.status == BookingStatus.PENDING and new_status == BookingStatus.APPROVED:
            message = f"Tu reserva para el {day} {hours} ha sido APROBADA."
        elif booking.status == BookingStatus.PENDING and new_status == BookingStatus.REJECTED:
            message = f"Tu reserva para el {day} {hours} ha sido RECHAZADA."
        elif booking.status == BookingStatus.PENDING_DELETION and new_status == BookingStatus.APPROVED:
            message = f"Tu solicitud de eliminación del turno del {day} ha sido DENEGADA. El turno sigue activo."
        else:
            return
        self.notifications.emit_unless_actor(actor.id, booking.booked_by, message)
