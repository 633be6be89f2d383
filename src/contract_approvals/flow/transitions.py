"""Status transition table for the approval state machine.

Keys are ``(current status or ANY, role, move)``; an exact status match wins
over the ``ANY`` row. A missing row means the status is left unchanged.
Gating is checked by the machine before any lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from contract_approvals.flow.conditions import counterpart_approved
from contract_approvals.models import (
    SEND_BACK_STATUSES,
    ApprovalRole,
    ApprovalVerb,
    Approver,
    ApproverSet,
    ContractStatus,
)

ANY = None

_L = ApprovalRole.LEGAL
_M = ApprovalRole.MANAGEMENT
_A = ApprovalRole.APPROVER
_S = ContractStatus


class Move(str, Enum):
    """An :class:`ApprovalVerb` refined by the actor's current record."""

    APPROVE = "approve"
    REAPPROVE = "reapprove"
    SEND_BACK = "send_back"
    WITHDRAW_APPROVAL = "withdraw_approval"
    WITHDRAW_SEND_BACK = "withdraw_send_back"


@dataclass(frozen=True)
class Transition:
    """Effect of a move on the outer contract status."""

    next_status: ContractStatus | None = None
    when_counterpart_approved: ContractStatus | None = None
    reset_all: bool = False

    def resolve(self, approvers: ApproverSet, role: ApprovalRole) -> ContractStatus | None:
        if self.when_counterpart_approved and counterpart_approved(approvers, role):
            return self.when_counterpart_approved
        return self.next_status


_BACK_TO_LEGAL_REVIEW = Transition(_S.LEGAL_REVIEW, _S.MANAGEMENT_REVIEW)
_TO_MANAGEMENT_REVIEW = Transition(_S.MANAGEMENT_REVIEW)
_RESET_TO_DRAFT = Transition(_S.DRAFT, reset_all=True)

STATUS_TABLE: dict[tuple[ContractStatus | None, ApprovalRole, Move], Transition] = {
    # legal
    (_S.DRAFT, _L, Move.APPROVE): Transition(_S.LEGAL_REVIEW),
    (_S.LEGAL_SEND_BACK, _L, Move.APPROVE): _BACK_TO_LEGAL_REVIEW,
    (_S.LEGAL_DECLINED, _L, Move.APPROVE): _BACK_TO_LEGAL_REVIEW,
    (_S.MANAGEMENT_SEND_BACK, _L, Move.APPROVE): Transition(
        when_counterpart_approved=_S.MANAGEMENT_REVIEW
    ),
    (_S.MANAGEMENT_DECLINED, _L, Move.APPROVE): Transition(
        when_counterpart_approved=_S.MANAGEMENT_REVIEW
    ),
    (ANY, _L, Move.REAPPROVE): _BACK_TO_LEGAL_REVIEW,
    (ANY, _L, Move.SEND_BACK): Transition(_S.LEGAL_SEND_BACK),
    (_S.LEGAL_SEND_BACK, _L, Move.WITHDRAW_SEND_BACK): _RESET_TO_DRAFT,
    (_S.LEGAL_DECLINED, _L, Move.WITHDRAW_SEND_BACK): _RESET_TO_DRAFT,
    # management
    (_S.DRAFT, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (_S.LEGAL_REVIEW, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (_S.LEGAL_SEND_BACK, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (_S.LEGAL_DECLINED, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (_S.MANAGEMENT_SEND_BACK, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (_S.MANAGEMENT_DECLINED, _M, Move.APPROVE): _TO_MANAGEMENT_REVIEW,
    (ANY, _M, Move.REAPPROVE): _TO_MANAGEMENT_REVIEW,
    (ANY, _M, Move.SEND_BACK): Transition(_S.MANAGEMENT_SEND_BACK),
    (_S.MANAGEMENT_SEND_BACK, _M, Move.WITHDRAW_SEND_BACK): _RESET_TO_DRAFT,
    (_S.MANAGEMENT_DECLINED, _M, Move.WITHDRAW_SEND_BACK): _RESET_TO_DRAFT,
    # final approver
    (ANY, _A, Move.APPROVE): Transition(_S.WWF_SIGNING),
    (ANY, _A, Move.REAPPROVE): Transition(_S.WWF_SIGNING),
}

# Withdrawing an approval unwinds the review regardless of which role withdraws.
for _role in ApprovalRole:
    STATUS_TABLE[(_S.WWF_SIGNING, _role, Move.WITHDRAW_APPROVAL)] = Transition(
        _S.DRAFT, when_counterpart_approved=_S.LEGAL_REVIEW
    )
    STATUS_TABLE[(_S.LEGAL_REVIEW, _role, Move.WITHDRAW_APPROVAL)] = Transition(_S.DRAFT)
    STATUS_TABLE[(_S.MANAGEMENT_REVIEW, _role, Move.WITHDRAW_APPROVAL)] = Transition(
        _S.DRAFT
    )


def classify(verb: ApprovalVerb, record: Approver) -> Move | None:
    """Refine *verb* using the actor's current record.

    Returns ``None`` when the move would not change the record: approving an
    approved record, sending back a sent-back one, or withdrawing nothing.
    """
    if verb == ApprovalVerb.APPROVE:
        if record.approved:
            return None
        return Move.REAPPROVE if record.declined else Move.APPROVE
    if verb == ApprovalVerb.SEND_BACK:
        return None if record.declined else Move.SEND_BACK
    if record.approved:
        return Move.WITHDRAW_APPROVAL
    if record.declined:
        return Move.WITHDRAW_SEND_BACK
    return None


def lookup(
    status: ContractStatus, role: ApprovalRole, move: Move
) -> Transition | None:
    """Find the row for *status*, falling back to the ``ANY`` row."""
    return STATUS_TABLE.get((status, role, move)) or STATUS_TABLE.get((ANY, role, move))


def is_reapproval(status: ContractStatus, role: ApprovalRole, move: Move) -> bool:
    """Approving out of a send-back reads as "Changed from Sent Back to Approved"."""
    return move == Move.REAPPROVE or (
        move == Move.APPROVE and status in SEND_BACK_STATUSES[role]
    )
