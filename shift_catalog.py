"""Named shift templates offered as shortcuts when booking."""

import logging
import re
from typing import List, Optional

from database import Store
from directory import require_privileged
from errors import ConflictError, NotFoundError, ValidationError
from schemas import TIME_PATTERN, Shift, User

logger = logging.getLogger(__name__)

MIDNIGHT = "00:00"


def validate_time_range(start_time: str, end_time: str) -> None:
    """Start must precede end; an end of 00:00 wraps to midnight."""
    for value in (start_time, end_time):
        if not re.match(TIME_PATTERN, value or ""):
            raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    if start_time >= end_time and end_time != MIDNIGHT:
        raise ValidationError("Start time must be before end time")


class ShiftCatalog:
    def __init__(self, store: Store):
        self.store = store

    def list_shift_templates(self) -> List[Shift]:
        shifts = [Shift(**doc) for doc in self.store.find(Shift.COLLECTION)]
        return sorted(shifts, key=lambda s: (s.start_time, s.name.lower()))

    def get(self, shift_id: str) -> Shift:
        doc = self.store.get(Shift.COLLECTION, shift_id)
        if doc is None:
            raise NotFoundError(Shift.COLLECTION, shift_id, "Shift not found")
        return Shift(**doc)

    def _validate(self, name: str, start_time: str, end_time: str, exclude_id: Optional[str] = None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Shift name cannot be empty")
        validate_time_range(start_time, end_time)
        for shift in self.list_shift_templates():
            if shift.id != exclude_id and shift.name.lower() == name.lower():
                raise ConflictError("A shift with this name already exists", details={"name": name})
        return name

    def add(self, actor: User, name: str, start_time: str, end_time: str) -> Shift:
        require_privileged(actor, "manage shifts")
        name = self._validate(name, start_time, end_time)
        data = {"name": name, "start_time": start_time, "end_time": end_time}
        shift_id = self.store.insert(Shift.COLLECTION, data)
        logger.info("Shift template '%s' added by %s", name, actor.id)
        return Shift(id=shift_id, **data)

    def update(
        self,
        actor: User,
        shift_id: str,
        name: Optional[str] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ) -> Shift:
        require_privileged(actor, "manage shifts")
        current = self.get(shift_id)
        data = {
            "name": current.name if name is None else name,
            "start_time": start_time or current.start_time,
            "end_time": end_time or current.end_time,
        }
        data["name"] = self._validate(data["name"], data["start_time"], data["end_time"], exclude_id=shift_id)
        self.store.update(Shift.COLLECTION, shift_id, data)
        return Shift(id=shift_id, **data)

    def delete(self, actor: User, shift_id: str) -> None:
        require_privileged(actor, "manage shifts")
        if not self.store.delete(Shift.COLLECTION, shift_id):
            raise NotFoundError(Shift.COLLECTION, shift_id, "Shift not found")
        logger.info("Shift template %s deleted by %s", shift_id, actor.id)
