import pytest

from errors import ValidationError
from schemas import BookingStatus, PendingBooking, PendingSwap, PendingVacation


def test_subscribers_get_snapshot_after_commit(coord, admin, op_a):
    seen = []
    unsubscribe = coord.subscribe(seen.append)

    booking = coord.create_booking(admin.id, op_a.id, "2024-07-01", "09:00", "17:00")
    assert len(seen) == 1
    assert [b.id for b in seen[0].bookings] == [booking.id]
    assert len(seen[0].notifications) == 1

    unsubscribe()
    coord.delete_booking(admin.id, booking.id)
    assert len(seen) == 1


def test_failed_operation_publishes_nothing(coord, admin, op_a):
    seen = []
    coord.subscribe(seen.append)
    with pytest.raises(ValidationError):
        coord.create_booking(admin.id, op_a.id, "2024-07-01", "17:00", "09:00")
    assert seen == []


def test_snapshot_holds_every_collection(coord, admin, op_a):
    coord.add_shift(admin.id, "Mañana", "06:00", "14:00")
    coord.request_vacation(op_a.id, op_a.id, "2024-06-01", "2024-06-02")
    snap = coord.snapshot()
    assert {u.username for u in snap.users} == {"admin", "alba"}
    assert len(snap.shifts) == 1
    assert len(snap.vacations) == 1
    assert snap.bookings == [] and snap.shift_swaps == []


def test_pending_queue_for_privileged(coord, admin, op_a, op_b, op_c):
    pending = coord.create_booking(op_a.id, op_a.id, "2024-07-01", "09:00", "17:00")
    flagged = coord.create_booking(admin.id, op_b.id, "2024-07-02", "09:00", "17:00")
    coord.delete_booking(op_b.id, flagged.id)
    vacation = coord.request_vacation(op_a.id, op_a.id, "2024-06-01", "2024-06-02")
    other = coord.create_booking(admin.id, op_c.id, "2024-07-03", "09:00", "17:00")
    mine = coord.create_booking(admin.id, op_b.id, "2024-07-04", "09:00", "17:00")
    swap = coord.propose_swap(op_b.id, op_c.id, mine.id, other.id)

    queue = coord.pending_requests(admin.id)
    bookings = {item.booking.id: item.booking.status for item in queue if isinstance(item, PendingBooking)}
    assert bookings == {pending.id: BookingStatus.PENDING, flagged.id: BookingStatus.PENDING_DELETION}
    assert [item.vacation.id for item in queue if isinstance(item, PendingVacation)] == [vacation.id]
    assert [item.swap.id for item in queue if isinstance(item, PendingSwap)] == [swap.id]
    assert coord.pending_count(admin.id) == 4
    assert {item.kind for item in queue} == {"booking", "vacation", "shiftSwap"}


def test_pending_queue_for_operator(coord, admin, op_a, op_b, op_c):
    coord.update_user(admin.id, op_b.id, vacation_approver=op_a.id)
    vacation = coord.request_vacation(op_b.id, op_b.id, "2024-06-01", "2024-06-02")
    mine = coord.create_booking(admin.id, op_c.id, "2024-07-01", "09:00", "17:00")
    theirs = coord.create_booking(admin.id, op_a.id, "2024-07-02", "09:00", "17:00")
    swap = coord.propose_swap(op_c.id, op_a.id, mine.id, theirs.id)
    coord.create_booking(op_b.id, op_b.id, "2024-07-05", "09:00", "17:00")

    first, second = coord.pending_requests(op_a.id)
    assert isinstance(first, PendingVacation) and first.vacation.id == vacation.id
    assert isinstance(second, PendingSwap) and second.swap.id == swap.id
    assert coord.pending_requests(op_c.id) == []
