"""
Record Schemas for the Shift Calendar

Each Pydantic model maps to a store collection (see COLLECTION on each class).
Use these models for validation before inserting/updating documents.

Note: as in the rest of the service, date and time values are kept as ISO
strings (YYYY-MM-DD for dates, HH:MM for wall-clock times, ISO datetime for
timestamps) so they compare correctly as plain strings.
"""

from enum import Enum
from typing import Annotated, ClassVar, List, Literal, Optional, Union

from pydantic import BaseModel, Field

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class Role(str, Enum):
    OPERATOR = "operator"
    ASSISTANT = "assistant"
    ADMINISTRATOR = "administrator"

    @property
    def is_privileged(self) -> bool:
        return self in (Role.ASSISTANT, Role.ADMINISTRATOR)


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_DELETION = "pending_deletion"


class VacationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SwapStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# -------------------- Vacation approver --------------------

class SelfApprover(BaseModel):
    """User decides (and auto-approves) their own vacations"""
    kind: Literal["self"] = "self"


class SpecificApprover(BaseModel):
    """A designated coworker decides the user's vacations"""
    kind: Literal["specific"] = "specific"
    user_id: str = Field(..., description="Approver user id")


class AnyPrivileged(BaseModel):
    """Escalate to any assistant or administrator"""
    kind: Literal["any_privileged"] = "any_privileged"


ApproverPolicy = Annotated[
    Union[SelfApprover, SpecificApprover, AnyPrivileged],
    Field(discriminator="kind"),
]


# -------------------- Collections --------------------

class User(BaseModel):
    """
    Operators, assistants and administrators
    Collection: "users"
    """
    COLLECTION: ClassVar[str] = "users"

    id: str
    username: str = Field(..., min_length=1, description="Unique login username")
    first_name: str = Field(..., description="Given name")
    last_name: str = Field("", description="Family name")
    email: str = Field("", description="Contact email")
    role: Role = Field(Role.OPERATOR, description="operator | assistant | administrator")
    vacation_approver: ApproverPolicy = Field(default_factory=AnyPrivileged, description="Who decides this user's vacations")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_privileged(self) -> bool:
        return self.role.is_privileged

    @property
    def vacation_approver_id(self) -> Optional[str]:
        if isinstance(self.vacation_approver, SelfApprover):
            return self.id
        if isinstance(self.vacation_approver, SpecificApprover):
            return self.vacation_approver.user_id
        return None


class Shift(BaseModel):
    """
    Named start/end templates offered when booking
    Collection: "shifts"
    """
    COLLECTION: ClassVar[str] = "shifts"

    id: str
    name: str = Field(..., description="Template name, unique ignoring case")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM, 00:00 means midnight")


class Booking(BaseModel):
    """
    A reserved shift for one user on one date
    Collection: "bookings"
    """
    COLLECTION: ClassVar[str] = "bookings"

    id: str
    user_id: str = Field(..., description="Owner whose calendar slot this is")
    booked_by: str = Field(..., description="User who submitted the booking")
    date: str = Field(..., pattern=DATE_PATTERN, description="YYYY-MM-DD")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM")
    notes: Optional[str] = Field(None, description="Optional note")
    status: BookingStatus = BookingStatus.PENDING


class Vacation(BaseModel):
    """
    Inclusive date-range absence request
    Collection: "vacations"
    """
    COLLECTION: ClassVar[str] = "vacations"

    id: str
    user_id: str = Field(..., description="User on vacation")
    requested_by: str = Field(..., description="User who submitted the request")
    start_date: str = Field(..., pattern=DATE_PATTERN)
    end_date: str = Field(..., pattern=DATE_PATTERN)
    status: VacationStatus = VacationStatus.PENDING


class ShiftSwapRequest(BaseModel):
    """
    Proposal to exchange the owners of two approved bookings
    Collection: "shiftSwaps"
    """
    COLLECTION: ClassVar[str] = "shiftSwaps"

    id: str
    requester_id: str = Field(..., description="User who wants to swap")
    requested_from_id: str = Field(..., description="User they want to swap with")
    requester_booking_id: str = Field(..., description="Booking the requester offers")
    requested_booking_id: str = Field(..., description="Booking the requester wants")
    status: SwapStatus = SwapStatus.PENDING
    created_at: str = Field(..., description="ISO timestamp (UTC)")


class Notification(BaseModel):
    """
    In-app message for one user
    Collection: "notifications"
    """
    COLLECTION: ClassVar[str] = "notifications"

    id: str
    user_id: str = Field(..., description="Recipient")
    message: str
    seen: bool = False
    created_at: str = Field(..., description="ISO timestamp (UTC)")
    request_type: Optional[Literal["shiftSwap"]] = Field(None, description="Set for actionable requests")
    request_id: Optional[str] = Field(None, description="Id of the actionable request")


# -------------------- Approvals queue --------------------

class PendingBooking(BaseModel):
    kind: Literal["booking"] = "booking"
    booking: Booking


class PendingVacation(BaseModel):
    kind: Literal["vacation"] = "vacation"
    vacation: Vacation


class PendingSwap(BaseModel):
    kind: Literal["shiftSwap"] = "shiftSwap"
    swap: ShiftSwapRequest


PendingRequest = Annotated[
    Union[PendingBooking, PendingVacation, PendingSwap],
    Field(discriminator="kind"),
]


class Snapshot(BaseModel):
    """Consistent view of every collection after a committed mutation"""
    users: List[User] = []
    shifts: List[Shift] = []
    bookings: List[Booking] = []
    vacations: List[Vacation] = []
    notifications: List[Notification] = []
    shift_swaps: List[ShiftSwapRequest] = []
