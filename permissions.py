"""
Role model and authorization guard.

Every mutating operation asks :func:`authorize` first. The guard is a pure
decision function: it looks at the actor's role, the capability table and,
for instance-scoped operations, the owner field of the target. It never
touches the database.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from errors import Conflict, NotAuthorized
from models import Donation, DonationDrive, Request, Role, User

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    create_donation = "create_donation"
    update_donation = "update_donation"
    delete_donation = "delete_donation"
    set_donation_status = "set_donation_status"
    create_request = "create_request"
    update_request = "update_request"
    delete_request = "delete_request"
    fulfill_request = "fulfill_request"
    cancel_request = "cancel_request"
    match_request = "match_request"
    create_drive = "create_drive"
    update_drive = "update_drive"
    delete_drive = "delete_drive"
    join_drive = "join_drive"
    list_users = "list_users"
    read_user = "read_user"
    update_user = "update_user"
    change_role = "change_role"
    delete_user = "delete_user"
    view_reports = "view_reports"


ALL_ROLES: FrozenSet[Role] = frozenset(Role)
ADMIN_ONLY: FrozenSet[Role] = frozenset({Role.admin})

# Roles allowed regardless of ownership. Operations missing here, or roles
# missing from an entry, may still be allowed by OWNER_FIELDS below.
CAPABILITIES: Dict[Operation, FrozenSet[Role]] = {
    Operation.create_donation: frozenset({Role.donor}),
    Operation.create_request: frozenset({Role.recipient}),
    Operation.create_drive: ADMIN_ONLY,
    Operation.update_donation: ADMIN_ONLY,
    Operation.delete_donation: ADMIN_ONLY,
    Operation.set_donation_status: frozenset({Role.admin, Role.logistics}),
    Operation.update_request: ADMIN_ONLY,
    Operation.delete_request: ADMIN_ONLY,
    Operation.fulfill_request: ADMIN_ONLY,
    Operation.cancel_request: ADMIN_ONLY,
    Operation.match_request: frozenset({Role.admin, Role.logistics}),
    Operation.update_drive: ADMIN_ONLY,
    Operation.delete_drive: ADMIN_ONLY,
    Operation.join_drive: ALL_ROLES,
    Operation.list_users: ADMIN_ONLY,
    Operation.read_user: ADMIN_ONLY,
    Operation.update_user: ADMIN_ONLY,
    Operation.change_role: ADMIN_ONLY,
    Operation.delete_user: ADMIN_ONLY,
    Operation.view_reports: ADMIN_ONLY,
}

# Operations the owner of the target instance may perform, keyed to the
# field(s) on the instance that hold the owning user's id.
OWNER_FIELDS: Dict[Operation, Tuple[str, ...]] = {
    Operation.update_donation: ("donor_id",),
    Operation.delete_donation: ("donor_id",),
    Operation.set_donation_status: ("donor_id",),
    Operation.update_request: ("recipient_id",),
    Operation.delete_request: ("recipient_id",),
    Operation.fulfill_request: ("recipient_id", "logistics_id"),
    Operation.cancel_request: ("recipient_id",),
    Operation.read_user: ("id",),
    Operation.update_user: ("id",),
}

# Never settable through the generic user update, not even by an admin.
PROTECTED_USER_FIELDS = frozenset({"password", "password_hash", "role", "is_verified"})

_RESOURCE_NAMES = {
    Donation: "donation",
    Request: "request",
    DonationDrive: "donation drive",
    User: "profile",
}


@dataclass(frozen=True)
class Actor:
    """The authenticated identity behind an operation."""

    id: int
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=Role(user.role))


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    kind: str = "NotAuthorized"

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str, kind: str = "NotAuthorized") -> Decision:
    return Decision(False, reason, kind)


def _verb(operation: Operation) -> str:
    return operation.value.split("_", 1)[0]


def authorize(actor: Actor, operation: Operation, resource: Any = None) -> Decision:
    if actor.role in CAPABILITIES.get(operation, frozenset()):
        if (
            operation == Operation.delete_user
            and resource is not None
            and resource.id == actor.id
        ):
            return deny("Cannot delete your own account", kind="Conflict")
        return ALLOW

    owner_fields = OWNER_FIELDS.get(operation)
    if owner_fields and resource is not None:
        if any(getattr(resource, f, None) == actor.id for f in owner_fields):
            return ALLOW
        name = _RESOURCE_NAMES.get(type(resource), "resource")
        return deny(f"Not authorized to {_verb(operation)} this {name}")

    return deny(f"Role '{actor.role.value}' may not perform {operation.value}")


def require(actor: Actor, operation: Operation, resource: Any = None) -> None:
    """Raise if :func:`authorize` denies the operation."""
    decision = authorize(actor, operation, resource)
    if decision:
        return
    logger.info(
        "Denied %s for user %s (%s): %s",
        operation.value, actor.id, actor.role.value, decision.reason,
    )
    if decision.kind == "Conflict":
        raise Conflict(decision.reason)
    raise NotAuthorized(decision.reason)


def strip_protected_fields(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Drop fields the generic user update must never write."""
    return {k: v for k, v in patch.items() if k not in PROTECTED_USER_FIELDS}
