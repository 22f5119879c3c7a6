import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
from coordinator import Coordinator
from database import get_store
from errors import SchedulerError
from schemas import (
    Booking,
    BookingStatus,
    Notification,
    PendingRequest,
    Role,
    Shift,
    ShiftSwapRequest,
    Snapshot,
    SwapStatus,
    User,
    Vacation,
    VacationStatus,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Shift Calendar API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

coordinator = Coordinator(get_store())


def get_coordinator() -> Coordinator:
    return coordinator


@app.exception_handler(SchedulerError)
def scheduler_error_handler(request: Request, exc: SchedulerError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code, "details": exc.details},
    )


# -------------------- Acting user --------------------
# Authentication happens upstream; the caller identifies the acting user.
def get_actor_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


# -------------------- Request models --------------------
class RegisterAdminRequest(BaseModel):
    username: str
    first_name: str
    last_name: str = ""
    email: str = ""


class CreateUserRequest(RegisterAdminRequest):
    role: Role = Role.OPERATOR
    vacation_approver: Optional[str] = Field(None, description="'self', an approver user id, or empty to escalate")


class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    vacation_approver: Optional[str] = None


class ShiftRequest(BaseModel):
    name: str
    start_time: str
    end_time: str


class UpdateShiftRequest(BaseModel):
    name: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class CreateBookingRequest(BaseModel):
    user_id: str
    date: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    shift_id: Optional[str] = Field(None, description="Template supplying start/end time")
    notes: Optional[str] = None
    status: Optional[BookingStatus] = None


class UpdateBookingRequest(BaseModel):
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[BookingStatus] = None


class BookingDecision(BaseModel):
    status: BookingStatus


class CreateVacationRequest(BaseModel):
    user_id: Optional[str] = None
    start_date: str
    end_date: str


class UpdateVacationRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class VacationDecision(BaseModel):
    status: VacationStatus


class CreateSwapRequest(BaseModel):
    requested_from_id: str
    requester_booking_id: str
    requested_booking_id: str
    requester_id: Optional[str] = None


class SwapDecision(BaseModel):
    status: SwapStatus


# -------------------- Basic routes --------------------
@app.get("/")
def read_root():
    return {"message": "Shift Calendar API running"}


@app.get("/test")
def test_database(c: Coordinator = Depends(get_coordinator)):
    response = {
        "backend": "✅ Running",
        "storage": config.STORAGE_BACKEND,
        "database": "❌ Not Available",
        "collections": [],
    }
    try:
        response["collections"] = c.store.list_collection_names()
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.get("/api/snapshot", response_model=Snapshot)
def snapshot(_: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.snapshot()


# -------------------- Users --------------------
@app.post("/api/register", response_model=User)
def register_admin(payload: RegisterAdminRequest, c: Coordinator = Depends(get_coordinator)):
    return c.register_admin(**payload.model_dump())


@app.get("/api/users", response_model=List[User])
def list_users(_: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.list_users()


@app.get("/api/users/{user_id}/approver")
def user_approver(user_id: str, _: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    user = c.get_user(user_id)
    return {"policy": user.vacation_approver.model_dump(), "label": c.approver_label(user_id)}


@app.post("/api/users", response_model=User)
def create_user(payload: CreateUserRequest, actor_id: str = Depends(get_actor_id),
                c: Coordinator = Depends(get_coordinator)):
    return c.add_user(actor_id, **payload.model_dump())


@app.put("/api/users/{user_id}", response_model=User)
def update_user(user_id: str, payload: UpdateUserRequest, actor_id: str = Depends(get_actor_id),
                c: Coordinator = Depends(get_coordinator)):
    return c.update_user(actor_id, user_id, **payload.model_dump(exclude_unset=True))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    c.delete_user(actor_id, user_id)
    return {"ok": True}


# -------------------- Shift templates --------------------
@app.get("/api/shifts", response_model=List[Shift])
def list_shifts(_: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.list_shift_templates()


@app.post("/api/shifts", response_model=Shift)
def create_shift(payload: ShiftRequest, actor_id: str = Depends(get_actor_id),
                 c: Coordinator = Depends(get_coordinator)):
    return c.add_shift(actor_id, payload.name, payload.start_time, payload.end_time)


@app.put("/api/shifts/{shift_id}", response_model=Shift)
def update_shift(shift_id: str, payload: UpdateShiftRequest, actor_id: str = Depends(get_actor_id),
                 c: Coordinator = Depends(get_coordinator)):
    return c.update_shift(actor_id, shift_id, **payload.model_dump(exclude_unset=True))


@app.delete("/api/shifts/{shift_id}")
def delete_shift(shift_id: str, actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    c.delete_shift(actor_id, shift_id)
    return {"ok": True}


# -------------------- Bookings --------------------
@app.get("/api/bookings", response_model=List[Booking])
def list_bookings(user_id: Optional[str] = None, status: Optional[BookingStatus] = None,
                  _: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    filt: Dict[str, Any] = {}
    if user_id:
        filt["user_id"] = user_id
    if status:
        filt["status"] = status.value
    return c.list_bookings(**filt)


@app.post("/api/bookings", response_model=Booking)
def create_booking(payload: CreateBookingRequest, actor_id: str = Depends(get_actor_id),
                   c: Coordinator = Depends(get_coordinator)):
    return c.create_booking(
        actor_id,
        payload.user_id,
        payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        notes=payload.notes,
        status=payload.status,
        shift_id=payload.shift_id,
    )


@app.put("/api/bookings/{booking_id}", response_model=Booking)
def update_booking(booking_id: str, payload: UpdateBookingRequest, actor_id: str = Depends(get_actor_id),
                   c: Coordinator = Depends(get_coordinator)):
    return c.edit_booking(actor_id, booking_id, **payload.model_dump(exclude_unset=True))


@app.post("/api/bookings/{booking_id}/decision", response_model=Booking)
def decide_booking(booking_id: str, payload: BookingDecision, actor_id: str = Depends(get_actor_id),
                   c: Coordinator = Depends(get_coordinator)):
    return c.decide_booking(actor_id, booking_id, payload.status)


@app.delete("/api/bookings/{booking_id}")
def delete_booking(booking_id: str, actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    flagged = c.delete_booking(actor_id, booking_id)
    return {"ok": True, "deleted": flagged is None, "booking": flagged}


# -------------------- Vacations --------------------
@app.get("/api/vacations", response_model=List[Vacation])
def list_vacations(user_id: Optional[str] = None, status: Optional[VacationStatus] = None,
                   _: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    filt: Dict[str, Any] = {}
    if user_id:
        filt["user_id"] = user_id
    if status:
        filt["status"] = status.value
    return c.list_vacations(**filt)


@app.post("/api/vacations", response_model=Optional[Vacation])
def create_vacation(payload: CreateVacationRequest, actor_id: str = Depends(get_actor_id),
                    c: Coordinator = Depends(get_coordinator)):
    return c.request_vacation(actor_id, payload.user_id or actor_id, payload.start_date, payload.end_date)


@app.put("/api/vacations/{vacation_id}", response_model=Vacation)
def update_vacation(vacation_id: str, payload: UpdateVacationRequest, actor_id: str = Depends(get_actor_id),
                    c: Coordinator = Depends(get_coordinator)):
    return c.edit_vacation(actor_id, vacation_id, payload.start_date, payload.end_date)


@app.post("/api/vacations/{vacation_id}/decision", response_model=Vacation)
def decide_vacation(vacation_id: str, payload: VacationDecision, actor_id: str = Depends(get_actor_id),
                    c: Coordinator = Depends(get_coordinator)):
    return c.decide_vacation(actor_id, vacation_id, payload.status)


@app.delete("/api/vacations/{vacation_id}")
def delete_vacation(vacation_id: str, actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    c.delete_vacation(actor_id, vacation_id)
    return {"ok": True}


# -------------------- Shift swaps --------------------
@app.get("/api/swaps", response_model=List[ShiftSwapRequest])
def list_swaps(status: Optional[SwapStatus] = None, _: str = Depends(get_actor_id),
               c: Coordinator = Depends(get_coordinator)):
    return c.list_swaps(**({"status": status.value} if status else {}))


@app.post("/api/swaps", response_model=ShiftSwapRequest)
def create_swap(payload: CreateSwapRequest, actor_id: str = Depends(get_actor_id),
                c: Coordinator = Depends(get_coordinator)):
    return c.propose_swap(
        actor_id, payload.requested_from_id, payload.requester_booking_id, payload.requested_booking_id,
        requester_id=payload.requester_id,
    )


@app.post("/api/swaps/{swap_id}/decision", response_model=ShiftSwapRequest)
def decide_swap(swap_id: str, payload: SwapDecision, actor_id: str = Depends(get_actor_id),
                c: Coordinator = Depends(get_coordinator)):
    return c.decide_swap(actor_id, swap_id, payload.status)


# -------------------- Notifications --------------------
@app.get("/api/notifications", response_model=List[Notification])
def list_notifications(actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.notifications_for(actor_id)


@app.get("/api/notifications/unseen", response_model=List[Notification])
def unseen_notifications(actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.unseen_for(actor_id)


@app.post("/api/notifications/seen")
def mark_notifications_seen(actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return {"ok": True, "updated": c.mark_all_seen(actor_id)}


# -------------------- Approvals --------------------
@app.get("/api/approvals", response_model=List[PendingRequest])
def pending_approvals(actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return c.pending_requests(actor_id)


@app.get("/api/approvals/count")
def pending_approvals_count(actor_id: str = Depends(get_actor_id), c: Coordinator = Depends(get_coordinator)):
    return {"count": c.pending_count(actor_id)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
