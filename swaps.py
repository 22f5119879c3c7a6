"""
Shift-swap lifecycle.

A swap offers one approved booking in exchange for a coworker's approved
booking. Approval exchanges the owners of both bookings in a single atomic
store update together with the swap's own status, so either everything
commits or the swap stays PENDING and can be retried. The update only applies
while both bookings are still held and approved as proposed.
"""

import logging
from typing import Any, List, Optional

from database import Store
from directory import UserDirectory
from errors import AtomicityFailure, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from notifications import SHIFT_SWAP_REQUEST, NotificationEmitter, utc_now_iso
from schemas import Booking, BookingStatus, ShiftSwapRequest, SwapStatus, User

logger = logging.getLogger(__name__)


class SwapManager:
    def __init__(self, store: Store, directory: UserDirectory, notifications: NotificationEmitter):
        self.store = store
        self.directory = directory
        self.notifications = notifications

    def get(self, swap_id: str) -> ShiftSwapRequest:
        doc = self.store.get(ShiftSwapRequest.COLLECTION, swap_id)
        if doc is None:
            raise NotFoundError(ShiftSwapRequest.COLLECTION, swap_id, "Shift swap not found")
        return ShiftSwapRequest(**doc)

    def list_swaps(self, **filters: Any) -> List[ShiftSwapRequest]:
        docs = self.store.find(ShiftSwapRequest.COLLECTION, **filters)
        return sorted((ShiftSwapRequest(**doc) for doc in docs), key=lambda s: s.created_at)

    def _booking(self, booking_id: str) -> Booking:
        doc = self.store.get(Booking.COLLECTION, booking_id)
        if doc is None:
            raise NotFoundError(Booking.COLLECTION, booking_id, "Booking not found")
        return Booking(**doc)

    def propose(
        self,
        actor: User,
        requested_from_id: str,
        requester_booking_id: str,
        requested_booking_id: str,
        requester_id: Optional[str] = None,
    ) -> ShiftSwapRequest:
        requester_id = requester_id or actor.id
        if requester_id != actor.id and not actor.is_privileged:
            raise PermissionDeniedError("You can only propose swaps for your own shifts")
        if requester_id == requested_from_id:
            raise ValidationError("A shift cannot be swapped with yourself")
        requester = self.directory.get_user(requester_id)
        self.directory.get_user(requested_from_id)

        offered = self._booking(requester_booking_id)
        wanted = self._booking(requested_booking_id)
        if offered.user_id != requester_id:
            raise ValidationError("The offered booking does not belong to the requester")
        if wanted.user_id != requested_from_id:
            raise ValidationError("The requested booking does not belong to the selected coworker")
        if offered.status != BookingStatus.APPROVED or wanted.status != BookingStatus.APPROVED:
            raise ValidationError("Only approved bookings can be swapped")

        data = {
            "requester_id": requester_id,
            "requested_from_id": requested_from_id,
            "requester_booking_id": requester_booking_id,
            "requested_booking_id": requested_booking_id,
            "status": SwapStatus.PENDING.value,
            "created_at": utc_now_iso(),
        }
        swap = ShiftSwapRequest(id=self.store.insert(ShiftSwapRequest.COLLECTION, data), **data)
        logger.info("Swap %s proposed by %s to %s", swap.id, requester_id, requested_from_id)

        self.notifications.emit(
            requested_from_id,
            f"{requester.full_name} te ha propuesto un intercambio de turno.",
            request_type=SHIFT_SWAP_REQUEST,
            request_id=swap.id,
        )
        return swap

    def decide(self, actor: User, swap_id: str, status: SwapStatus) -> ShiftSwapRequest:
        swap = self.get(swap_id)
        status = SwapStatus(status)
        if status == SwapStatus.PENDING:
            raise ValidationError("A swap can only be approved or rejected")
        if swap.status != SwapStatus.PENDING:
            raise ConflictError(f"Swap already {swap.status.value}", details={"status": swap.status.value})
        if actor.id != swap.requested_from_id and not actor.is_privileged:
            raise PermissionDeniedError("Only the requested coworker or a supervisor can decide this swap")

        if status == SwapStatus.APPROVED:
            self._exchange(swap)
        else:
            self.store.atomic_multi_update([
                (ShiftSwapRequest.COLLECTION, swap_id, {"status": status.value},
                 {"status": SwapStatus.PENDING.value}),
            ])
        logger.info("Swap %s %s by %s", swap_id, status.value, actor.id)

        # The inline approve/reject affordance is spent once the swap is resolved
        self.notifications.clear_for_request(swap_id)
        self._notify_decision(actor, swap, status)
        return swap.model_copy(update={"status": status})

    def remove_for_user(self, user_id: str) -> int:
        doomed = [
            swap for swap in self.list_swaps()
            if user_id in (swap.requester_id, swap.requested_from_id)
        ]
        for swap in doomed:
            self.store.delete(ShiftSwapRequest.COLLECTION, swap.id)
            self.notifications.clear_for_request(swap.id)
        return len(doomed)

    # -------------------- Internals --------------------
    def _exchange(self, swap: ShiftSwapRequest) -> None:
        offered = self.store.get(Booking.COLLECTION, swap.requester_booking_id)
        wanted = self.store.get(Booking.COLLECTION, swap.requested_booking_id)
        if offered is None or wanted is None:
            logger.warning("Swap %s not applied: a referenced booking is missing", swap.id)
            raise AtomicityFailure("Booking not found", details={"swap_id": swap.id})

        offered_then = {"user_id": swap.requester_id, "status": BookingStatus.APPROVED.value}
        wanted_then = {"user_id": swap.requested_from_id, "status": BookingStatus.APPROVED.value}
        if any(offered.get(k) != v for k, v in offered_then.items()) or any(
            wanted.get(k) != v for k, v in wanted_then.items()
        ):
            logger.warning("Swap %s not applied: its bookings changed hands or status", swap.id)
            raise ConflictError(
                "The bookings in this swap are no longer held as proposed",
                details={"swap_id": swap.id},
            )

        # Each write re-checks the values read above, so a concurrent approval aborts this one
        self.store.atomic_multi_update([
            (Booking.COLLECTION, swap.requester_booking_id, {"user_id": swap.requested_from_id}, offered_then),
            (Booking.COLLECTION, swap.requested_booking_id, {"user_id": swap.requester_id}, wanted_then),
            (ShiftSwapRequest.COLLECTION, swap.id, {"status": SwapStatus.APPROVED.value},
             {"status": SwapStatus.PENDING.value}),
        ])

    def _notify_decision(self, actor: User, swap: ShiftSwapRequest, status: SwapStatus) -> None:
        requester_name = self.directory.display_name(swap.requester_id)
        counterpart_name = self.directory.display_name(swap.requested_from_id)
        if status == SwapStatus.APPROVED:
            to_requester = f"Tu solicitud de intercambio de turno con {counterpart_name} ha sido APROBADA."
            to_counterpart = f"Un administrador ha aprobado el intercambio de turno con {requester_name}."
        else:
            to_requester = f"Tu solicitud de intercambio de turno con {counterpart_name} ha sido RECHAZADA."
            to_counterpart = f"Un administrador ha rechazado el intercambio de turno propuesto por {requester_name}."

        self.notifications.emit_unless_actor(actor.id, swap.requester_id, to_requester)
        # The counterpart already knows when they decided it themselves
        self.notifications.emit_unless_actor(actor.id, swap.requested_from_id, to_counterpart)
