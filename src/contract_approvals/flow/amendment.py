"""Amendment sub-workflow.

While a contract is amended its outer status stays ``amendment`` and progress
is tracked in ``amendment_stage``. Management takes no part; the final
approver is gated on legal instead. The stage table below mirrors the status
table in :mod:`contract_approvals.flow.transitions`.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from contract_approvals.errors import invalid_state, not_permitted
from contract_approvals.flow.state import (
    ActionKind,
    ActionOutcome,
    OutcomeEvent,
    applied_outcome,
    rejected_outcome,
    timeline_entry,
)
from contract_approvals.flow.transitions import ANY, Move
from contract_approvals.models import (
    STAGE_LABELS,
    STATUS_LABELS,
    Actor,
    AmendmentStage,
    ApprovalRole,
    Contract,
    ContractPatch,
    ContractStatus,
    CustomTimelineEntry,
    utcnow,
)

logger = structlog.get_logger(__name__)

_L = ApprovalRole.LEGAL
_A = ApprovalRole.APPROVER
_G = AmendmentStage

# Statuses an admin may start an amendment from.
AMENDABLE_STATUSES = frozenset(
    {
        ContractStatus.IMPLEMENTATION,
        ContractStatus.WWF_SIGNING,
        ContractStatus.COUNTERPARTY_SIGNING,
    }
)

# Status restored on completion when the stored original status is missing.
DEFAULT_RETURN_STATUS = ContractStatus.IMPLEMENTATION

STAGE_TABLE: dict[tuple[AmendmentStage | None, ApprovalRole, Move], AmendmentStage] = {
    # legal
    (_G.AMENDMENT, _L, Move.APPROVE): _G.LEGAL,
    (_G.AMENDMENT, _L, Move.REAPPROVE): _G.LEGAL,
    (_G.LEGAL, _L, Move.APPROVE): _G.WWF,
    (_G.LEGAL, _L, Move.REAPPROVE): _G.WWF,
    (ANY, _L, Move.SEND_BACK): _G.AMENDMENT,
    (_G.WWF, _L, Move.WITHDRAW_APPROVAL): _G.LEGAL,
    (_G.COUNTERPARTY, _L, Move.WITHDRAW_APPROVAL): _G.LEGAL,
    (_G.LEGAL, _L, Move.WITHDRAW_APPROVAL): _G.AMENDMENT,
    # final approver
    (_G.AMENDMENT, _A, Move.APPROVE): _G.WWF,
    (_G.AMENDMENT, _A, Move.REAPPROVE): _G.WWF,
    (_G.LEGAL, _A, Move.APPROVE): _G.WWF,
    (_G.LEGAL, _A, Move.REAPPROVE): _G.WWF,
    (_G.WWF, _A, Move.APPROVE): _G.COUNTERPARTY,
    (_G.WWF, _A, Move.REAPPROVE): _G.COUNTERPARTY,
    (_G.WWF, _A, Move.SEND_BACK): _G.LEGAL,
    (_G.COUNTERPARTY, _A, Move.SEND_BACK): _G.LEGAL,
    (_G.COUNTERPARTY, _A, Move.WITHDRAW_APPROVAL): _G.WWF,
    (_G.WWF, _A, Move.WITHDRAW_APPROVAL): _G.LEGAL,
}


def next_stage(
    stage: AmendmentStage | None, role: ApprovalRole, move: Move
) -> AmendmentStage | None:
    """Look up the stage a move leads to.

    Args:
        stage: The current amendment stage.
        role: The acting role (legal or final approver).
        move: The refined move.

    Returns:
        The next stage, or ``None`` when the stage stays where it is.
    """
    return STAGE_TABLE.get((stage, role, move)) or STAGE_TABLE.get((ANY, role, move))


class AmendmentWorkflow:
    """Admin-driven entry, stage override and exit of the amendment workflow."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def start(
        self,
        contract: Contract,
        actor: Actor,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Enter amendment mode.

        Records the current status as ``original_status``, sets the outer
        status to ``amendment`` at stage ``amendment`` and resets every
        approver record so the amendment is reviewed afresh.
        """
        kind = ActionKind.START_AMENDMENT
        if not actor.is_admin:
            return rejected_outcome(
                contract, kind, actor, not_permitted("Only admins can start an amendment.")
            )
        if contract.in_amendment:
            return rejected_outcome(
                contract, kind, actor, invalid_state("Contract is already under amendment.")
            )
        if contract.status not in AMENDABLE_STATUSES:
            return rejected_outcome(
                contract,
                kind,
                actor,
                invalid_state(
                    f"Cannot start an amendment from {STATUS_LABELS[contract.status]}."
                ),
            )

        patch = ContractPatch(
            status=ContractStatus.AMENDMENT,
            amendment_stage=AmendmentStage.AMENDMENT,
            is_amended=True,
            original_status=contract.status,
            approvers=contract.approvers.reset(),
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                "Amendment Started",
                (
                    f"Contract moved to amendment from "
                    f"{STATUS_LABELS[contract.status]} - All approvals reset"
                ),
                custom_entry,
            ),
        )
        logger.info(
            "amendment_started",
            contract_id=contract.id,
            original_status=contract.status.value,
        )
        return applied_outcome(
            contract, kind, actor, patch, events=[OutcomeEvent.AMENDMENT_STARTED]
        )

    def change_stage(
        self,
        contract: Contract,
        actor: Actor,
        stage: AmendmentStage,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Admin override of the amendment stage."""
        kind = ActionKind.CHANGE_STAGE
        if not actor.is_admin:
            return rejected_outcome(
                contract,
                kind,
                actor,
                not_permitted("Only admins can change the amendment stage."),
            )
        if not contract.in_amendment:
            return rejected_outcome(
                contract, kind, actor, invalid_state("Contract is not under amendment.")
            )
        if contract.amendment_stage == stage:
            return rejected_outcome(
                contract,
                kind,
                actor,
                invalid_state(f"Amendment is already at {STAGE_LABELS[stage]} stage."),
            )

        previous = contract.amendment_stage
        patch = ContractPatch(
            amendment_stage=stage,
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                "Amendment Stage Changed",
                f"Amendment stage changed to {STAGE_LABELS[stage]}",
                custom_entry,
            ),
        )
        logger.info(
            "amendment_stage_changed",
            contract_id=contract.id,
            previous=previous.value if previous else None,
            stage=stage.value,
        )
        return applied_outcome(
            contract, kind, actor, patch, events=[OutcomeEvent.AMENDMENT_STAGE_CHANGED]
        )

    def complete(
        self,
        contract: Contract,
        actor: Actor,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Leave amendment mode once counterparty signing is reached.

        Restores ``original_status`` and clears every amendment field.
        """
        kind = ActionKind.COMPLETE_AMENDMENT
        if not actor.is_admin:
            return rejected_outcome(
                contract,
                kind,
                actor,
                not_permitted("Only admins can complete an amendment."),
            )
        if not contract.in_amendment:
            return rejected_outcome(
                contract, kind, actor, invalid_state("Contract is not under amendment.")
            )
        if contract.amendment_stage != AmendmentStage.COUNTERPARTY:
            return rejected_outcome(
                contract,
                kind,
                actor,
                invalid_state(
                    "The amendment must reach Counterparty Signing before it "
                    "can be completed."
                ),
            )

        restored = contract.original_status
        if restored is None:
            logger.warning(
                "amendment_original_status_missing",
                contract_id=contract.id,
                fallback=DEFAULT_RETURN_STATUS.value,
            )
            restored = DEFAULT_RETURN_STATUS

        patch = ContractPatch(
            status=restored,
            is_amended=False,
            amendment_stage=None,
            original_status=None,
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                "Amendment Completed",
                f"Contract returned to {STATUS_LABELS[restored]}",
                custom_entry,
            ),
        )
        logger.info(
            "amendment_completed", contract_id=contract.id, status=restored.value
        )
        return applied_outcome(
            contract, kind, actor, patch, events=[OutcomeEvent.AMENDMENT_COMPLETED]
        )
