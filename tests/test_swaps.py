import pytest

from errors import AtomicityFailure, ConflictError, PermissionDeniedError, ValidationError
from schemas import Booking, BookingStatus, SwapStatus


@pytest.fixture
def bk1(coord, admin, op_b):
    return coord.create_booking(admin.id, op_b.id, "2024-07-01", "09:00", "17:00")


@pytest.fixture
def bk2(coord, admin, op_c):
    return coord.create_booking(admin.id, op_c.id, "2024-07-02", "09:00", "17:00")


@pytest.fixture
def swap(coord, op_b, op_c, bk1, bk2):
    return coord.propose_swap(op_b.id, op_c.id, bk1.id, bk2.id)


def test_proposal_is_pending_and_tags_notification(coord, op_c, swap):
    assert swap.status == SwapStatus.PENDING
    assert swap.created_at
    tagged = [n for n in coord.notifications_for(op_c.id) if n.request_id == swap.id]
    assert len(tagged) == 1
    assert tagged[0].request_type == "shiftSwap"
    assert tagged[0].message == "Bruno Gil te ha propuesto un intercambio de turno."


def test_admin_approval_exchanges_owners(coord, admin, op_b, op_c, bk1, bk2, swap, inbox):
    decided = coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert decided.status == SwapStatus.APPROVED
    assert coord.swaps.get(swap.id).status == SwapStatus.APPROVED

    first, second = coord.bookings.get(bk1.id), coord.bookings.get(bk2.id)
    assert first.user_id == op_c.id
    assert second.user_id == op_b.id
    assert {first.user_id, second.user_id} == {bk1.user_id, bk2.user_id}
    # everything but the owner stays put
    assert first.model_dump(exclude={"user_id"}) == bk1.model_dump(exclude={"user_id"})
    assert second.model_dump(exclude={"user_id"}) == bk2.model_dump(exclude={"user_id"})

    assert [n for n in coord.notifications_for(op_c.id) if n.request_id == swap.id] == []
    assert "Tu solicitud de intercambio de turno con Carla Vega ha sido APROBADA." in inbox(op_b)
    assert "Un administrador ha aprobado el intercambio de turno con Bruno Gil." in inbox(op_c)
    assert inbox(admin) == []


def test_counterpart_approval_only_notifies_requester(coord, op_b, op_c, swap, inbox):
    coord.decide_swap(op_c.id, swap.id, SwapStatus.APPROVED)
    assert len([m for m in inbox(op_b) if "intercambio" in m]) == 1
    assert [m for m in inbox(op_c) if "intercambio" in m] == []


def test_rejection_keeps_owners(coord, assistant, op_b, op_c, bk1, bk2, swap, inbox):
    coord.decide_swap(assistant.id, swap.id, SwapStatus.REJECTED)
    assert coord.bookings.get(bk1.id).user_id == op_b.id
    assert coord.bookings.get(bk2.id).user_id == op_c.id
    assert coord.swaps.get(swap.id).status == SwapStatus.REJECTED
    assert "Tu solicitud de intercambio de turno con Carla Vega ha sido RECHAZADA." in inbox(op_b)
    assert "Un administrador ha rechazado el intercambio de turno propuesto por Bruno Gil." in inbox(op_c)
    assert [n for n in coord.notifications_for(op_c.id) if n.request_id == swap.id] == []


def test_missing_booking_leaves_everything_untouched(coord, store, admin, op_b, op_c, bk1, bk2, swap):
    saved = store.get(Booking.COLLECTION, bk2.id)
    store.delete(Booking.COLLECTION, bk2.id)

    with pytest.raises(AtomicityFailure, match="Booking not found"):
        coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert coord.swaps.get(swap.id).status == SwapStatus.PENDING
    assert coord.bookings.get(bk1.id).user_id == op_b.id
    assert [n for n in coord.notifications_for(op_c.id) if n.request_id == swap.id]

    # restore the booking under its original id and retry
    store._data[Booking.COLLECTION][bk2.id] = saved
    coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert coord.bookings.get(bk1.id).user_id == op_c.id
    assert coord.bookings.get(bk2.id).user_id == op_b.id


def test_atomic_update_applies_nothing_on_missing_record(store):
    first = store.insert("bookings", {"user_id": "u1"})
    with pytest.raises(AtomicityFailure):
        store.atomic_multi_update([
            ("bookings", first, {"user_id": "u2"}, {}),
            ("bookings", "missing", {"user_id": "u1"}, {}),
        ])
    assert store.get("bookings", first)["user_id"] == "u1"


def test_atomic_update_applies_nothing_when_values_changed(store):
    first = store.insert("bookings", {"user_id": "u1"})
    second = store.insert("bookings", {"user_id": "u3"})
    with pytest.raises(ConflictError):
        store.atomic_multi_update([
            ("bookings", first, {"user_id": "u2"}, {"user_id": "u1"}),
            ("bookings", second, {"user_id": "u1"}, {"user_id": "u2"}),
        ])
    assert store.get("bookings", first)["user_id"] == "u1"
    assert store.get("bookings", second)["user_id"] == "u3"


def test_outdated_swap_is_refused(coord, admin, op_a, op_b, op_c, bk1, bk2, swap):
    bk_a = coord.create_booking(admin.id, op_a.id, "2024-07-03", "09:00", "17:00")
    second = coord.propose_swap(op_b.id, op_a.id, bk1.id, bk_a.id)
    coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)

    with pytest.raises(ConflictError):
        coord.decide_swap(admin.id, second.id, SwapStatus.APPROVED)
    owners = {b.id: b.user_id for b in coord.list_bookings()}
    assert owners == {bk1.id: op_c.id, bk2.id: op_b.id, bk_a.id: op_a.id}
    assert coord.swaps.get(second.id).status == SwapStatus.PENDING
    assert [n for n in coord.notifications_for(op_a.id) if n.request_id == second.id]


def test_booking_flagged_for_deletion_blocks_approval(coord, admin, op_b, op_c, bk1, bk2, swap):
    coord.delete_booking(op_c.id, bk2.id)
    with pytest.raises(ConflictError):
        coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert coord.bookings.get(bk1.id).user_id == op_b.id
    assert coord.bookings.get(bk2.id).status == BookingStatus.PENDING_DELETION
    assert coord.swaps.get(swap.id).status == SwapStatus.PENDING


def test_concurrent_owner_change_aborts_exchange(coord, store, admin, op_a, op_b, op_c, bk1, bk2, swap, monkeypatch):
    commit = store.atomic_multi_update

    def other_worker_first(updates):
        # another process hands bk1 to op_a between the read and the commit
        store._data[Booking.COLLECTION][bk1.id]["user_id"] = op_a.id
        return commit(updates)

    monkeypatch.setattr(store, "atomic_multi_update", other_worker_first)
    with pytest.raises(ConflictError):
        coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert coord.bookings.get(bk1.id).user_id == op_a.id
    assert coord.bookings.get(bk2.id).user_id == op_c.id
    assert coord.swaps.get(swap.id).status == SwapStatus.PENDING


def test_concurrent_decision_is_applied_once(coord, store, admin, op_b, op_c, bk1, bk2, swap, monkeypatch):
    commit = store.atomic_multi_update

    def rejected_elsewhere(updates):
        store._data["shiftSwaps"][swap.id]["status"] = SwapStatus.REJECTED.value
        return commit(updates)

    monkeypatch.setattr(store, "atomic_multi_update", rejected_elsewhere)
    with pytest.raises(ConflictError):
        coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)
    assert coord.bookings.get(bk1.id).user_id == op_b.id
    assert coord.bookings.get(bk2.id).user_id == op_c.id


def test_resolved_swap_is_terminal(coord, admin, swap):
    coord.decide_swap(admin.id, swap.id, SwapStatus.REJECTED)
    with pytest.raises(ConflictError):
        coord.decide_swap(admin.id, swap.id, SwapStatus.APPROVED)


def test_uninvolved_operator_cannot_decide(coord, op_a, swap):
    with pytest.raises(PermissionDeniedError):
        coord.decide_swap(op_a.id, swap.id, SwapStatus.APPROVED)


def test_requester_cannot_decide_own_proposal(coord, op_b, swap):
    with pytest.raises(PermissionDeniedError):
        coord.decide_swap(op_b.id, swap.id, SwapStatus.APPROVED)


def test_only_approved_bookings_can_be_swapped(coord, op_b, op_c, bk1):
    pending = coord.create_booking(op_c.id, op_c.id, "2024-07-03", "09:00", "17:00")
    assert pending.status == BookingStatus.PENDING
    with pytest.raises(ValidationError):
        coord.propose_swap(op_b.id, op_c.id, bk1.id, pending.id)


def test_cannot_offer_someone_elses_booking(coord, op_b, op_c, bk2):
    with pytest.raises(ValidationError):
        coord.propose_swap(op_b.id, op_c.id, bk2.id, bk2.id)


def test_cannot_swap_with_yourself(coord, op_b, bk1):
    with pytest.raises(ValidationError):
        coord.propose_swap(op_b.id, op_b.id, bk1.id, bk1.id)


def test_privileged_user_proposes_on_behalf(coord, assistant, op_b, op_c, bk1, bk2, inbox):
    swap = coord.propose_swap(assistant.id, op_c.id, bk1.id, bk2.id, requester_id=op_b.id)
    assert swap.requester_id == op_b.id
    assert "Bruno Gil te ha propuesto un intercambio de turno." in inbox(op_c)


def test_operator_cannot_propose_for_someone_else(coord, op_a, op_b, op_c, bk1, bk2):
    with pytest.raises(PermissionDeniedError):
        coord.propose_swap(op_a.id, op_c.id, bk1.id, bk2.id, requester_id=op_b.id)
