"""Error taxonomy for the contract approvals core.

Rule violations inside the state machine are *not* exceptions: they are
reported as :class:`Rejection` values on the action outcome. Exceptions are
reserved for boundary failures (store lookups, unusable persisted data,
notification delivery).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from contract_approvals.models import ApprovalRole


class RejectionKind(str, Enum):
    """Why an action was not applied."""

    GATING_VIOLATION = "gating_violation"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    ACTOR_NOT_ASSIGNED = "actor_not_assigned"
    NOT_PERMITTED = "not_permitted"
    ROLE_INACTIVE = "role_inactive"
    ALREADY_RESPONDED = "already_responded"
    ALREADY_ASSIGNED = "already_assigned"
    NOTHING_TO_WITHDRAW = "nothing_to_withdraw"
    INVALID_STATE = "invalid_state"


# Rejections the caller should treat as "nothing happened" rather than an error.
SILENT_REJECTIONS = frozenset({RejectionKind.ACTOR_NOT_ASSIGNED})


class Rejection(BaseModel):
    """Structured reason an action was refused."""

    kind: RejectionKind
    message: str
    role: ApprovalRole | None = None
    blocking_role: ApprovalRole | None = None
    limit: int | None = None

    @property
    def silent(self) -> bool:
        return self.kind in SILENT_REJECTIONS


def gating_violation(role: ApprovalRole, blocking_role: ApprovalRole) -> Rejection:
    return Rejection(
        kind=RejectionKind.GATING_VIOLATION,
        role=role,
        blocking_role=blocking_role,
        message=(
            f"The {blocking_role.value} team must approve before "
            f"{role.value} can act."
        ),
    )


def capacity_exceeded(role: ApprovalRole, limit: int) -> Rejection:
    return Rejection(
        kind=RejectionKind.CAPACITY_EXCEEDED,
        role=role,
        limit=limit,
        message=f"You can only add up to {limit} {role.value} approver(s).",
    )


def actor_not_assigned(role: ApprovalRole, email: str) -> Rejection:
    return Rejection(
        kind=RejectionKind.ACTOR_NOT_ASSIGNED,
        role=role,
        message=f"{email} is not assigned as a {role.value} approver.",
    )


def not_permitted(message: str, role: ApprovalRole | None = None) -> Rejection:
    return Rejection(kind=RejectionKind.NOT_PERMITTED, role=role, message=message)


def invalid_state(message: str, role: ApprovalRole | None = None) -> Rejection:
    return Rejection(kind=RejectionKind.INVALID_STATE, role=role, message=message)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ContractApprovalsError(Exception):
    """Base class for boundary errors."""


class ContractNotFound(ContractApprovalsError):
    """Raised by a store when a contract id is unknown."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(f"Contract {contract_id} not found")
        self.contract_id = contract_id


class InvalidContractData(ContractApprovalsError):
    """Raised when persisted contract data cannot be normalized."""


class NotificationDeliveryFailure(ContractApprovalsError):
    """Wraps a sink error; logged by the dispatcher, never propagated."""

    def __init__(self, recipient_email: str, kind: str, cause: Exception) -> None:
        super().__init__(f"Failed to notify {recipient_email} ({kind}): {cause}")
        self.recipient_email = recipient_email
        self.kind = kind
        self.cause = cause


class ContractAlreadyExists(ContractApprovalsError):
    """Raised by a store when a new document reuses a stored id."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(f"Contract {contract_id} already exists")
        self.contract_id = contract_id
