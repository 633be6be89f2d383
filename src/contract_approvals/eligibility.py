"""Eligibility filter: who still owes a response on which contract.

Answers two questions per ``(contract, role, actor)``: does the actor need to
act, and has the actor already responded. Dashboard queues and the "awaiting
response" count are both derived from :func:`evaluate`, so they always agree.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from contract_approvals.errors import InvalidContractData
from contract_approvals.flow.normalizer import load_contract
from contract_approvals.models import (
    SEND_BACK_STATUSES,
    Actor,
    ApprovalRole,
    Contract,
    ContractStatus,
)

logger = structlog.get_logger(__name__)

_S = ContractStatus

# Statuses in which nobody is asked to respond.
CLOSED_STATUSES = frozenset(
    {
        _S.FINISHED,
        _S.CONTRACT_END,
        _S.IMPLEMENTATION,
        _S.WWF_SIGNING,
        _S.COUNTERPARTY_SIGNING,
    }
)

_ALL_SEND_BACKS = frozenset().union(*SEND_BACK_STATUSES.values())

REVIEW_STATUSES: dict[ApprovalRole, frozenset[ContractStatus]] = {
    ApprovalRole.LEGAL: frozenset({_S.LEGAL_REVIEW, _S.APPROVAL})
    | SEND_BACK_STATUSES[ApprovalRole.LEGAL],
    ApprovalRole.MANAGEMENT: frozenset({_S.MANAGEMENT_REVIEW, _S.APPROVAL})
    | SEND_BACK_STATUSES[ApprovalRole.MANAGEMENT],
    ApprovalRole.APPROVER: frozenset({_S.APPROVAL, _S.DRAFT, _S.REQUESTED})
    | _ALL_SEND_BACKS,
}

# With an empty slot, the whole team is asked to respond in these statuses.
OPEN_CALL_STATUSES: dict[ApprovalRole, frozenset[ContractStatus]] = {
    ApprovalRole.LEGAL: frozenset({_S.LEGAL_REVIEW}),
    ApprovalRole.MANAGEMENT: frozenset({_S.MANAGEMENT_REVIEW}),
    ApprovalRole.APPROVER: frozenset({_S.APPROVAL, _S.DRAFT, _S.REQUESTED}),
}


class Eligibility(BaseModel):
    """Result of evaluating one contract for one role and actor."""

    needs_action: bool = False
    has_responded: bool = False


class WorkQueues(BaseModel):
    """Disjoint dashboard queues for one actor."""

    awaiting: list[Contract] = Field(default_factory=list)
    responded: list[Contract] = Field(default_factory=list)

    @property
    def awaiting_count(self) -> int:
        return len(self.awaiting)


def evaluate(
    contract: Contract | Mapping[str, Any], role: ApprovalRole, actor_email: str
) -> Eligibility:
    """Decide whether *actor_email* must act on *contract* in *role*.

    The contract is repaired and normalized first, so legacy shapes and
    corrupted flags are judged the same way the state machine sees them.

    Args:
        contract: Raw persisted document or normalized contract.
        role: The role being evaluated.
        actor_email: The actor's email (matched case-insensitively).

    Returns:
        An :class:`Eligibility` with ``needs_action`` and ``has_responded``.
    """
    contract = load_contract(contract)
    slot = contract.approvers.slot(role)
    record = contract.approvers.find(role, actor_email)
    has_responded = record is not None and record.responded

    status = contract.status
    if status in CLOSED_STATUSES or status not in REVIEW_STATUSES[role]:
        return Eligibility(needs_action=False, has_responded=has_responded)

    if not slot:
        needs_action = status in OPEN_CALL_STATUSES[role]
    else:
        needs_action = record is not None and not record.responded

    return Eligibility(needs_action=needs_action, has_responded=has_responded)


def needs_approval_from(
    contract: Contract | Mapping[str, Any], actor: Actor
) -> bool:
    """Check every role the actor holds."""
    return any(evaluate(contract, role, actor.email).needs_action for role in actor.roles)


def _loaded(contracts: Iterable[Contract | Mapping[str, Any]]) -> list[Contract]:
    loaded: list[Contract] = []
    for contract in contracts:
        try:
            loaded.append(load_contract(contract))
        except InvalidContractData as exc:
            contract_id = (
                contract.get("id") if isinstance(contract, Mapping) else contract.id
            )
            logger.warning(
                "eligibility_contract_skipped", contract_id=contract_id, error=str(exc)
            )
    return loaded


def build_work_queues(
    contracts: Iterable[Contract | Mapping[str, Any]], actor: Actor
) -> WorkQueues:
    """Split *contracts* into "awaiting" and "responded" queues for *actor*.

    For an actor holding several roles a contract lands in "awaiting" if
    any role needs action, otherwise in "responded" if any role has a
    response on record. Unreadable contracts are logged and skipped.
    """
    queues = WorkQueues()
    for contract in _loaded(contracts):
        results = [evaluate(contract, role, actor.email) for role in actor.roles]
        if any(r.needs_action for r in results):
            queues.awaiting.append(contract)
        elif any(r.has_responded for r in results):
            queues.responded.append(contract)
    return queues


def awaiting_count(
    contracts: Iterable[Contract | Mapping[str, Any]], actor: Actor
) -> int:
    """Dashboard count of contracts awaiting the actor's response."""
    return build_work_queues(contracts, actor).awaiting_count


def approved_by(
    contracts: Iterable[Contract | Mapping[str, Any]], actor: Actor
) -> list[Contract]:
    """Contracts on which the actor holds an approved record in any slot."""
    return [
        contract
        for contract in _loaded(contracts)
        if any(
            record.approved and record.matches(actor.email)
            for _, record in contract.approvers.records()
        )
    ]
