"""
User/role directory.

Read-mostly registry of users, their role and who decides their vacations.
Holds no approval logic of its own; the lifecycle managers consult it.
"""

import logging
from typing import Any, Dict, List, Optional

from database import Store
from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from schemas import AnyPrivileged, ApproverPolicy, Role, SelfApprover, SpecificApprover, User

logger = logging.getLogger(__name__)

SELF_APPROVER = "self"


def require_privileged(actor: User, action: str) -> None:
    if not actor.is_privileged:
        raise PermissionDeniedError(f"Only administrators and assistants can {action}")


def require_admin(actor: User, action: str) -> None:
    if actor.role != Role.ADMINISTRATOR:
        raise PermissionDeniedError(f"Only administrators can {action}")


class UserDirectory:
    def __init__(self, store: Store):
        self.store = store

    # -------------------- Reads --------------------
    def resolve_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        doc = self.store.get(User.COLLECTION, user_id)
        return User(**doc) if doc else None

    def get_user(self, user_id: str) -> User:
        user = self.resolve_user(user_id)
        if user is None:
            raise NotFoundError(User.COLLECTION, user_id, "User not found")
        return user

    def list_users(self) -> List[User]:
        users = [User(**doc) for doc in self.store.find(User.COLLECTION)]
        return sorted(users, key=lambda u: u.full_name.lower())

    def find_by_username(self, username: str) -> Optional[User]:
        for doc in self.store.find(User.COLLECTION):
            if doc["username"].lower() == username.strip().lower():
                return User(**doc)
        return None

    def display_name(self, user_id: str) -> str:
        user = self.resolve_user(user_id)
        return user.full_name if user else "Un usuario"

    # -------------------- Vacation approver --------------------
    def approver_policy(self, user: User) -> ApproverPolicy:
        """Effective approver; a designated approver who no longer exists escalates to any privileged user."""
        policy = user.vacation_approver
        if isinstance(policy, SpecificApprover):
            if policy.user_id == user.id:
                return SelfApprover()
            if self.resolve_user(policy.user_id) is None:
                return AnyPrivileged()
        return policy

    def approver_label(self, user: User) -> str:
        policy = self.approver_policy(user)
        if isinstance(policy, SelfApprover):
            return "Auto-aprobado"
        if isinstance(policy, SpecificApprover):
            return self.get_user(policy.user_id).full_name
        return "Superior"

    def is_self_approving(self, user: User) -> bool:
        return isinstance(self.approver_policy(user), SelfApprover)

    def can_decide_vacation(self, actor: User, owner: User) -> bool:
        if actor.is_privileged:
            return True
        policy = self.approver_policy(owner)
        if isinstance(policy, SpecificApprover):
            return policy.user_id == actor.id
        if isinstance(policy, SelfApprover):
            return actor.id == owner.id
        return False

    def _approver_from_choice(self, choice: Optional[str], user_id: Optional[str] = None) -> ApproverPolicy:
        if not choice:
            return AnyPrivileged()
        if choice == SELF_APPROVER or choice == user_id:
            return SelfApprover()
        self.get_user(choice)
        return SpecificApprover(user_id=choice)

    # -------------------- Writes --------------------
    def _check_username(self, username: str, exclude_id: Optional[str] = None) -> str:
        username = username.strip()
        if not username:
            raise ValidationError("Username cannot be empty")
        existing = self.find_by_username(username)
        if existing and existing.id != exclude_id:
            raise ConflictError("Username already exists", details={"username": username})
        return username

    def _insert(self, data: Dict[str, Any]) -> User:
        user_id = self.store.insert(User.COLLECTION, data)
        return User(id=user_id, **data)

    def register_admin(self, username: str, first_name: str, last_name: str = "", email: str = "") -> User:
        """First-run registration; only allowed while no administrator exists."""
        if self.store.find(User.COLLECTION, role=Role.ADMINISTRATOR.value):
            raise ConflictError("An administrator is already registered")
        username = self._check_username(username)
        user = self._insert({
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "role": Role.ADMINISTRATOR.value,
            "vacation_approver": SelfApprover().model_dump(),
        })
        logger.info("Registered administrator %s (%s)", user.username, user.id)
        return user

    def add_user(
        self,
        actor: User,
        username: str,
        first_name: str,
        last_name: str = "",
        email: str = "",
        role: Role = Role.OPERATOR,
        vacation_approver: Optional[str] = None,
    ) -> User:
        require_admin(actor, "add users")
        username = self._check_username(username)
        policy = self._approver_from_choice(vacation_approver)
        user = self._insert({
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "role": Role(role).value,
            "vacation_approver": policy.model_dump(),
        })
        logger.info("User %s added by %s", user.id, actor.id)
        return user

    def update_user(self, actor: User, user_id: str, **fields: Any) -> User:
        require_admin(actor, "edit users")
        user = self.get_user(user_id)
        updates: Dict[str, Any] = {}
        if fields.get("username") is not None:
            updates["username"] = self._check_username(fields["username"], exclude_id=user_id)
        for key in ("first_name", "last_name", "email"):
            if fields.get(key) is not None:
                updates[key] = fields[key]
        if fields.get("role") is not None:
            updates["role"] = Role(fields["role"]).value
        if "vacation_approver" in fields:
            updates["vacation_approver"] = self._approver_from_choice(fields["vacation_approver"], user_id).model_dump()
        if not updates:
            return user
        self.store.update(User.COLLECTION, user_id, updates)
        logger.info("User %s updated by %s: %s", user_id, actor.id, sorted(updates))
        return self.get_user(user_id)

    def check_removable(self, actor: User, user_id: str) -> User:
        require_admin(actor, "delete users")
        if actor.id == user_id:
            raise ValidationError("You cannot delete yourself")
        return self.get_user(user_id)

    def remove_user(self, actor: User, user_id: str) -> User:
        """Delete the user record and reset approver pointers at it; other collections are the caller's concern."""
        user = self.check_removable(actor, user_id)
        dangling = self.store.find(User.COLLECTION, vacation_approver=SpecificApprover(user_id=user_id).model_dump())
        for doc in dangling:
            self.store.update(User.COLLECTION, doc["id"], {"vacation_approver": AnyPrivileged().model_dump()})
        self.store.delete(User.COLLECTION, user_id)
        logger.info("User %s deleted by %s; %d approver link(s) cleared", user_id, actor.id, len(dangling))
        return user
