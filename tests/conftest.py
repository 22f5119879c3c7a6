import pytest

from coordinator import Coordinator
from database import MemoryStore
from schemas import Role


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def coord(store):
    return Coordinator(store)


@pytest.fixture
def admin(coord):
    return coord.register_admin("admin", "Ana", "Admin", "ana@example.com")


@pytest.fixture
def assistant(coord, admin):
    return coord.add_user(admin.id, "asis", "Sara", "Asistente", role=Role.ASSISTANT, vacation_approver=admin.id)


@pytest.fixture
def op_a(coord, admin):
    return coord.add_user(admin.id, "alba", "Alba", "Ruiz", vacation_approver=admin.id)


@pytest.fixture
def op_b(coord, admin):
    return coord.add_user(admin.id, "bruno", "Bruno", "Gil")


@pytest.fixture
def op_c(coord, admin):
    return coord.add_user(admin.id, "carla", "Carla", "Vega")


@pytest.fixture
def inbox(coord):
    def messages(user):
        return [n.message for n in coord.notifications_for(user.id)]

    return messages
