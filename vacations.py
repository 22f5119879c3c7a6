"""
Vacation lifecycle.

Requests start PENDING unless the user approves their own vacations, in which
case they are APPROVED on creation. Decisions are final; editing a decided
request re-submits it as PENDING.
"""

import logging
from typing import Any, List, Optional

from database import Store
from directory import UserDirectory
from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from formatting import format_date_range, validate_date
from notifications import NotificationEmitter
from schemas import User, Vacation, VacationStatus

logger = logging.getLogger(__name__)

DECISIONS = {VacationStatus.APPROVED: "APROBADA", VacationStatus.REJECTED: "RECHAZADA"}


def validate_date_range(start_date: str, end_date: str) -> None:
    validate_date(start_date)
    validate_date(end_date)
    if start_date > end_date:
        raise ValidationError("Start date cannot be after end date")


class VacationManager:
    def __init__(self, store: Store, directory: UserDirectory, notifications: NotificationEmitter):
        self.store = store
        self.directory = directory
        self.notifications = notifications

    def get(self, vacation_id: str) -> Vacation:
        doc = self.store.get(Vacation.COLLECTION, vacation_id)
        if doc is None:
            raise NotFoundError(Vacation.COLLECTION, vacation_id, "Vacation not found")
        return Vacation(**doc)

    def list_vacations(self, **filters: Any) -> List[Vacation]:
        docs = self.store.find(Vacation.COLLECTION, **filters)
        return sorted((Vacation(**doc) for doc in docs), key=lambda v: (v.start_date, v.end_date))

    def _require_owner_or_privileged(self, actor: User, vacation_user_id: str, action: str) -> None:
        if actor.id != vacation_user_id and not actor.is_privileged:
            raise PermissionDeniedError(f"You can only {action} your own vacations")

    def create(self, actor: User, user_id: str, start_date: str, end_date: str) -> Optional[Vacation]:
        """Returns None, storing nothing, when user_id does not resolve."""
        validate_date_range(start_date, end_date)
        user = self.directory.resolve_user(user_id)
        if user is None:
            logger.warning("Vacation request for unknown user %s ignored", user_id)
            return None
        self._require_owner_or_privileged(actor, user.id, "request")

        status = VacationStatus.APPROVED if self.directory.is_self_approving(user) else VacationStatus.PENDING
        data = {
            "user_id": user.id,
            "requested_by": actor.id,
            "start_date": start_date,
            "end_date": end_date,
            "status": status.value,
        }
        vacation = Vacation(id=self.store.insert(Vacation.COLLECTION, data), **data)
        logger.info("Vacation %s requested for %s (%s)", vacation.id, user.id, status.value)
        return vacation

    def decide(self, actor: User, vacation_id: str, status: VacationStatus) -> Vacation:
        vacation = self.get(vacation_id)
        status = VacationStatus(status)
        if status not in DECISIONS:
            raise ValidationError("A vacation can only be approved or rejected")
        if status == vacation.status:
            return vacation
        if vacation.status != VacationStatus.PENDING:
            raise ConflictError(
                f"Vacation already {vacation.status.value}; edit it to submit it again",
                details={"status": vacation.status.value},
            )

        owner = self.directory.resolve_user(vacation.user_id)
        allowed = self.directory.can_decide_vacation(actor, owner) if owner else actor.is_privileged
        if not allowed:
            raise PermissionDeniedError("You are not the approver for this vacation")

        if not self.store.update(Vacation.COLLECTION, vacation_id, {"status": status.value}):
            raise NotFoundError(Vacation.COLLECTION, vacation_id, "Vacation not found")
        logger.info("Vacation %s %s by %s", vacation_id, status.value, actor.id)

        self.notifications.emit_unless_actor(
            actor.id,
            vacation.requested_by,
            f"Tu solicitud de vacaciones {format_date_range(vacation.start_date, vacation.end_date)} "
            f"ha sido {DECISIONS[status]}.",
        )
        return vacation.model_copy(update={"status": status})

    def edit(self, actor: User, vacation_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None) -> Vacation:
        vacation = self.get(vacation_id)
        self._require_owner_or_privileged(actor, vacation.user_id, "edit")
        start_date = start_date or vacation.start_date
        end_date = end_date or vacation.end_date
        validate_date_range(start_date, end_date)

        updates = {"start_date": start_date, "end_date": end_date}
        if vacation.status != VacationStatus.PENDING:
            updates["status"] = VacationStatus.PENDING.value
        if not self.store.update(Vacation.COLLECTION, vacation_id, updates):
            raise NotFoundError(Vacation.COLLECTION, vacation_id, "Vacation not found")
        logger.info("Vacation %s edited by %s", vacation_id, actor.id)
        return vacation.model_copy(update={**updates, "status": VacationStatus(updates.get("status", vacation.status))})

    def delete(self, actor: User, vacation_id: str) -> None:
        vacation = self.get(vacation_id)
        self._require_owner_or_privileged(actor, vacation.user_id, "delete")
        if not self.store.delete(Vacation.COLLECTION, vacation_id):
            raise NotFoundError(Vacation.COLLECTION, vacation_id, "Vacation not found")
        logger.info("Vacation %s deleted by %s", vacation_id, actor.id)

    def remove_for_user(self, user_id: str) -> int:
        return self.store.delete_many(Vacation.COLLECTION, user_id=user_id)
