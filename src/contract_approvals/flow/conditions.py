"""Gating condition functions for the approval state machine.

These pure functions decide whether a role may act on a contract right now,
based on how far the earlier review stages have progressed.
"""

from __future__ import annotations

from contract_approvals.models import ApprovalRole, ApproverSet, Contract

# Role whose full approval a later stage re-checks when it withdraws or
# re-approves (see ``Transition.when_counterpart_approved``).
COUNTERPART: dict[ApprovalRole, ApprovalRole] = {
    ApprovalRole.LEGAL: ApprovalRole.MANAGEMENT,
    ApprovalRole.MANAGEMENT: ApprovalRole.LEGAL,
    ApprovalRole.APPROVER: ApprovalRole.MANAGEMENT,
}


def is_fully_approved(approvers: ApproverSet, role: ApprovalRole) -> bool:
    """Check that a role slot is non-empty and every record is approved.

    Args:
        approvers: The contract's approver set.
        role: The slot to inspect.

    Returns:
        ``True`` if the slot has at least one record and all are approved.
    """
    return approvers.is_fully_approved(role)


def blocking_role(contract: Contract, role: ApprovalRole) -> ApprovalRole | None:
    """Return the earlier role that must finish before *role* can act.

    Legal is never gated. Management needs legal fully approved. The final
    approver needs management fully approved, or legal while the contract is
    under amendment (management is skipped there).

    Args:
        contract: The normalized contract.
        role: The role attempting to approve or send back.

    Returns:
        The blocking role, or ``None`` if *role* may act.
    """
    if role == ApprovalRole.LEGAL:
        return None
    if role == ApprovalRole.MANAGEMENT:
        required = ApprovalRole.LEGAL
    elif contract.in_amendment:
        required = ApprovalRole.LEGAL
    else:
        required = ApprovalRole.MANAGEMENT
    if is_fully_approved(contract.approvers, required):
        return None
    return required


def role_active(contract: Contract, role: ApprovalRole) -> bool:
    """Management has no part in the amendment sub-workflow."""
    return not (contract.in_amendment and role == ApprovalRole.MANAGEMENT)


def counterpart_approved(approvers: ApproverSet, role: ApprovalRole) -> bool:
    """Check whether the counterpart of *role* is fully approved."""
    return is_fully_approved(approvers, COUNTERPART[role])
