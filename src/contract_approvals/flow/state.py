"""Action requests and outcomes for the approval state machine.

An :class:`ApprovalAction` describes what a caller wants to do; the machine
answers with an :class:`ActionOutcome` carrying either a patch or a
structured rejection, plus the events the notification dispatcher reacts to.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from contract_approvals.errors import Rejection
from contract_approvals.models import (
    Actor,
    AmendmentStage,
    ApprovalRole,
    Contract,
    ContractPatch,
    ContractStatus,
    CustomTimelineEntry,
    TeamMember,
    TimelineEntry,
    apply_patch,
)


class ActionKind(str, Enum):
    """Every mutating operation the core understands."""

    ASSIGN = "assign"
    REMOVE = "remove"
    APPROVE = "approve"
    SEND_BACK = "send_back"
    WITHDRAW = "withdraw"
    CHANGE_STATUS = "change_status"
    START_AMENDMENT = "start_amendment"
    CHANGE_STAGE = "change_stage"
    COMPLETE_AMENDMENT = "complete_amendment"


class OutcomeEvent(str, Enum):
    """Side-effect triggers produced by an applied action."""

    SENT_BACK = "sent_back"
    LEGAL_FULLY_APPROVED = "legal_fully_approved"
    MANAGEMENT_FULLY_APPROVED = "management_fully_approved"
    AMENDMENT_STARTED = "amendment_started"
    AMENDMENT_STAGE_CHANGED = "amendment_stage_changed"
    AMENDMENT_COMPLETED = "amendment_completed"


@dataclass
class ApprovalAction:
    """A single requested action, as received from the caller."""

    kind: ActionKind
    actor: Actor
    role: ApprovalRole | None = None
    member: TeamMember | None = None
    email: str | None = None
    status: ContractStatus | None = None
    stage: AmendmentStage | None = None
    custom_entry: CustomTimelineEntry | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the action for logging.

        Returns:
            A JSON-serializable dictionary representation.
        """
        return {
            "kind": self.kind.value,
            "actor": self.actor.email,
            "role": self.role.value if self.role else None,
            "member": self.member.email if self.member else None,
            "email": self.email,
            "status": self.status.value if self.status else None,
            "stage": self.stage.value if self.stage else None,
        }


class ActionOutcome(BaseModel):
    """Result of running one action against a contract snapshot."""

    contract_id: str
    action: ActionKind
    role: ApprovalRole | None = None
    actor_email: str = ""
    applied: bool = False
    rejection: Rejection | None = None
    patch: ContractPatch | None = None
    contract: Contract
    previous_status: ContractStatus
    events: list[OutcomeEvent] = Field(default_factory=list)
    stale: bool = False

    @property
    def status_changed(self) -> bool:
        return self.contract.status != self.previous_status


def applied_outcome(
    contract: Contract,
    action: ActionKind,
    actor: Actor,
    patch: ContractPatch,
    role: ApprovalRole | None = None,
    events: list[OutcomeEvent] | None = None,
) -> ActionOutcome:
    return ActionOutcome(
        contract_id=contract.id,
        action=action,
        role=role,
        actor_email=actor.email,
        applied=True,
        patch=patch,
        contract=apply_patch(contract, patch),
        previous_status=contract.status,
        events=events or [],
    )


def rejected_outcome(
    contract: Contract,
    action: ActionKind,
    actor: Actor,
    rejection: Rejection,
    role: ApprovalRole | None = None,
) -> ActionOutcome:
    return ActionOutcome(
        contract_id=contract.id,
        action=action,
        role=role,
        actor_email=actor.email,
        rejection=rejection,
        contract=contract,
        previous_status=contract.status,
    )


def timeline_entry(
    at: datetime,
    actor: Actor,
    action: str,
    details: str,
    custom: CustomTimelineEntry | None = None,
    actor_name: str | None = None,
) -> TimelineEntry:
    """Build the entry for an action; *custom* wording replaces the generated text."""
    if custom is not None:
        action, details = custom.action, custom.details
    return TimelineEntry(
        timestamp=at,
        action=action,
        actor_email=actor.email,
        actor_name=actor_name or actor.display_name,
        details=details,
    )
