"""Approval state machine.

Every operation takes a contract snapshot, the acting :class:`Actor` and the
operation's arguments, and returns an :class:`ActionOutcome`. The snapshot is
never mutated: an applied outcome carries the patch to persist and the
resulting contract value, a rejected one carries a structured reason.

Checks run in a fixed order for approver actions::

    permission -> role active -> gating -> assigned record -> move -> table
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog

from contract_approvals.errors import (
    Rejection,
    RejectionKind,
    actor_not_assigned,
    capacity_exceeded,
    gating_violation,
    invalid_state,
    not_permitted,
)
from contract_approvals.flow.amendment import AmendmentWorkflow, next_stage
from contract_approvals.flow.conditions import blocking_role, role_active
from contract_approvals.flow.normalizer import load_contract
from contract_approvals.flow.state import (
    ActionKind,
    ActionOutcome,
    ApprovalAction,
    OutcomeEvent,
    applied_outcome,
    rejected_outcome,
    timeline_entry,
)
from contract_approvals.flow.transitions import Move, classify, is_reapproval, lookup
from contract_approvals.models import (
    ROLE_LABELS,
    STAGE_LABELS,
    STATUS_LABELS,
    WORKFLOW_ORDER,
    Actor,
    AmendmentStage,
    ApprovalRole,
    ApprovalVerb,
    Approver,
    ApproverLimits,
    ApproverSet,
    Contract,
    ContractPatch,
    ContractStatus,
    CustomTimelineEntry,
    TeamMember,
    utcnow,
)

logger = structlog.get_logger(__name__)

ContractInput = Contract | Mapping[str, Any]

_MEMBER_LABELS: dict[ApprovalRole, str] = {
    ApprovalRole.LEGAL: "legal team member",
    ApprovalRole.MANAGEMENT: "management team member",
    ApprovalRole.APPROVER: "final approver",
}

_FULL_APPROVAL_EVENTS: dict[ApprovalRole, OutcomeEvent] = {
    ApprovalRole.LEGAL: OutcomeEvent.LEGAL_FULLY_APPROVED,
    ApprovalRole.MANAGEMENT: OutcomeEvent.MANAGEMENT_FULLY_APPROVED,
}

_REVIEW_ROLES = (ApprovalRole.LEGAL, ApprovalRole.MANAGEMENT)


def _revoke_unbacked_management(approvers: ApproverSet) -> tuple[ApproverSet, bool]:
    """Clear management approvals once any legal record is no longer approved."""
    if (approvers.legal and all(r.approved for r in approvers.legal)) or not any(
        r.approved for r in approvers.management
    ):
        return approvers, False
    management = [r.cleared() if r.approved else r for r in approvers.management]
    return approvers.with_slot(ApprovalRole.MANAGEMENT, management), True


def _wording(role: ApprovalRole, move: Move, name: str, reapproval: bool) -> tuple[str, str]:
    label = ROLE_LABELS[role]
    member = _MEMBER_LABELS[role]
    if move in (Move.APPROVE, Move.REAPPROVE):
        if reapproval:
            return (
                f"{label} Approval: Changed from Sent Back to Approved",
                f"{name} changed from sent back to approved as {member}",
            )
        return f"{label} Approval: {name}", f"Approved as {member}"
    if move == Move.SEND_BACK:
        return f"{label} Sent Back: {name}", f"Sent back as {member}"
    if move == Move.WITHDRAW_APPROVAL:
        return f"{label} Approval Withdrawn: {name}", f"Approval withdrawn as {member}"
    return f"{label} Send Back Withdrawn: {name}", f"Send back withdrawn as {member}"


class ApprovalStateMachine:
    """Table-driven engine for assignment, approval and status changes.

    Args:
        limits: Default slot capacities; a contract's own ``approver_limits``
            take precedence.
        clock: Source of timestamps for records and timeline entries.
    """

    def __init__(
        self,
        limits: ApproverLimits | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.limits = limits or ApproverLimits()
        self._clock = clock
        self.amendments = AmendmentWorkflow(clock)

    def limits_for(self, contract: Contract) -> ApproverLimits:
        return contract.approver_limits or self.limits

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def execute(self, contract: ContractInput, action: ApprovalAction) -> ActionOutcome:
        """Run a single :class:`ApprovalAction` and log the result.

        Raises:
            ValueError: If the action is missing an argument its kind needs.
        """
        actor = action.actor
        custom = action.custom_entry
        kind = action.kind

        if kind in (ActionKind.ASSIGN, ActionKind.REMOVE, ActionKind.APPROVE,
                    ActionKind.SEND_BACK, ActionKind.WITHDRAW) and action.role is None:
            raise ValueError(f"{kind.value} requires a role")

        if kind == ActionKind.ASSIGN:
            if action.member is None:
                raise ValueError("assign requires a member")
            outcome = self.assign(contract, actor, action.role, action.member, custom)
        elif kind == ActionKind.REMOVE:
            if not action.email:
                raise ValueError("remove requires an email")
            outcome = self.remove(contract, actor, action.role, action.email, custom)
        elif kind in (ActionKind.APPROVE, ActionKind.SEND_BACK, ActionKind.WITHDRAW):
            outcome = self.act(contract, actor, action.role, ApprovalVerb(kind.value), custom)
        elif kind == ActionKind.CHANGE_STATUS:
            if action.status is None:
                raise ValueError("change_status requires a status")
            outcome = self.change_status(contract, actor, action.status, custom)
        elif kind == ActionKind.START_AMENDMENT:
            outcome = self.start_amendment(contract, actor, custom)
        elif kind == ActionKind.CHANGE_STAGE:
            if action.stage is None:
                raise ValueError("change_stage requires a stage")
            outcome = self.change_stage(contract, actor, action.stage, custom)
        else:
            outcome = self.complete_amendment(contract, actor, custom)

        self._log(outcome, action)
        return outcome

    def _log(self, outcome: ActionOutcome, action: ApprovalAction) -> None:
        if outcome.applied:
            logger.info(
                "approval_applied",
                contract_id=outcome.contract_id,
                action=action.to_dict(),
                status=outcome.contract.status.value,
                previous_status=outcome.previous_status.value,
                events=[e.value for e in outcome.events],
            )
            return
        rejection = outcome.rejection
        log = logger.debug if rejection is not None and rejection.silent else logger.info
        log(
            "approval_rejected",
            contract_id=outcome.contract_id,
            action=action.to_dict(),
            kind=rejection.kind.value if rejection else None,
            reason=rejection.message if rejection else None,
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        member: TeamMember,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Append an unactioned record for *member* to the *role* slot.

        Args:
            contract: Contract snapshot (raw or normalized).
            actor: Must be an admin.
            role: Slot to assign into.
            member: Roster entry to assign.
            custom_entry: Optional wording for the timeline entry.

        Returns:
            An applied outcome, or a rejection (``not_permitted``,
            ``already_assigned``, ``capacity_exceeded``).
        """
        contract = load_contract(contract)
        kind = ActionKind.ASSIGN
        if not actor.is_admin:
            return rejected_outcome(
                contract, kind, actor,
                not_permitted("Only admins can assign approvers.", role), role,
            )

        slot = contract.approvers.slot(role)
        if any(r.matches(member.email) for r in slot):
            return rejected_outcome(
                contract, kind, actor,
                Rejection(
                    kind=RejectionKind.ALREADY_ASSIGNED,
                    role=role,
                    message=f"{member.email} is already a {role.value} approver.",
                ),
                role,
            )

        limit = self.limits_for(contract).for_role(role)
        if len(slot) >= limit:
            return rejected_outcome(
                contract, kind, actor, capacity_exceeded(role, limit), role
            )

        name = member.display_name or member.email
        records = [*slot, Approver(email=member.email, name=name)]
        approvers = contract.approvers.with_slot(role, records)
        details = f"{name} ({member.email}) assigned as {_MEMBER_LABELS[role]}"
        if role == ApprovalRole.LEGAL and not contract.in_amendment:
            approvers, revoked = _revoke_unbacked_management(approvers)
            if revoked:
                details += " - Management approvals revoked"
        patch = ContractPatch(
            approvers=approvers,
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                f"{ROLE_LABELS[role]} Approver Assigned: {name}",
                details,
                custom_entry,
            ),
        )
        return applied_outcome(contract, kind, actor, patch, role)

    def remove(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        email: str,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Remove the record matching *email* from the *role* slot.

        An emptied slot is cleared on write. Removing someone who is not
        in the slot is a silent ``actor_not_assigned`` rejection.
        """
        contract = load_contract(contract)
        kind = ActionKind.REMOVE
        if not actor.is_admin:
            return rejected_outcome(
                contract, kind, actor,
                not_permitted("Only admins can remove approvers.", role), role,
            )

        slot = contract.approvers.slot(role)
        removed = [r for r in slot if r.matches(email)]
        if not removed:
            return rejected_outcome(
                contract, kind, actor, actor_not_assigned(role, email), role
            )

        name = removed[0].name or email
        remaining = [r for r in slot if not r.matches(email)]
        approvers = contract.approvers.with_slot(role, remaining)
        details = f"{name} ({email}) removed as {_MEMBER_LABELS[role]}"
        if role == ApprovalRole.LEGAL and not contract.in_amendment:
            approvers, revoked = _revoke_unbacked_management(approvers)
            if revoked:
                details += " - Management approvals revoked"
        patch = ContractPatch(
            approvers=approvers,
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                f"{ROLE_LABELS[role]} Approver Removed: {name}",
                details,
                custom_entry,
            ),
        )
        return applied_outcome(contract, kind, actor, patch, role)

    # ------------------------------------------------------------------
    # Approver actions
    # ------------------------------------------------------------------

    def approve(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.act(contract, actor, role, ApprovalVerb.APPROVE, custom_entry)

    def send_back(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.act(contract, actor, role, ApprovalVerb.SEND_BACK, custom_entry)

    def withdraw(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.act(contract, actor, role, ApprovalVerb.WITHDRAW, custom_entry)

    def act(
        self,
        contract: ContractInput,
        actor: Actor,
        role: ApprovalRole,
        verb: ApprovalVerb,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Apply *verb* to the actor's own record in the *role* slot.

        Args:
            contract: Contract snapshot (raw or normalized).
            actor: The approver acting; must hold the role flag.
            role: The slot the actor acts in.
            verb: Approve, send back, or withdraw the previous response.
            custom_entry: Optional wording for the timeline entry.

        Returns:
            An applied outcome carrying the patch and events, or a rejection.
        """
        contract = load_contract(contract)
        kind = ActionKind(verb.value)

        def reject(rejection: Rejection) -> ActionOutcome:
            return rejected_outcome(contract, kind, actor, rejection, role)

        if not actor.holds(role):
            return reject(
                not_permitted(f"{actor.email} is not a member of the {role.value} team.", role)
            )
        if not role_active(contract, role):
            return reject(
                Rejection(
                    kind=RejectionKind.ROLE_INACTIVE,
                    role=role,
                    message=f"The {role.value} team takes no part in amendments.",
                )
            )
        if verb != ApprovalVerb.WITHDRAW:
            blocker = blocking_role(contract, role)
            if blocker is not None:
                return reject(gating_violation(role, blocker))

        record = contract.approvers.find(role, actor.email)
        if record is None:
            return reject(actor_not_assigned(role, actor.email))

        move = classify(verb, record)
        if move is None:
            if verb == ApprovalVerb.WITHDRAW:
                return reject(
                    Rejection(
                        kind=RejectionKind.NOTHING_TO_WITHDRAW,
                        role=role,
                        message="There is no approval or send back to withdraw.",
                    )
                )
            return reject(
                Rejection(
                    kind=RejectionKind.ALREADY_RESPONDED,
                    role=role,
                    message=f"{actor.email} has already responded this way.",
                )
            )

        now = self._clock()
        before = contract.approvers
        approvers = before.with_slot(
            role,
            [self._apply_move(r, move, now) if r.matches(actor.email) else r
             for r in before.slot(role)],
        )

        name = record.name or actor.display_name
        action_text, details = _wording(
            role, move, name, is_reapproval(contract.status, role, move)
        )

        if contract.in_amendment:
            return self._act_in_amendment(
                contract, kind, actor, role, move, approvers, action_text, details,
                custom_entry, now, name,
            )

        changes: dict[str, Any] = {}
        events: list[OutcomeEvent] = []
        transition = lookup(contract.status, role, move)
        next_status = transition.resolve(approvers, role) if transition else None
        if transition is not None and transition.reset_all:
            approvers = approvers.reset()
            details += " - All approvals reset"
        if move == Move.SEND_BACK and role == ApprovalRole.LEGAL:
            approvers, revoked = _revoke_unbacked_management(approvers)
            if revoked:
                details += " - Management approvals revoked"
        if next_status is not None and next_status != contract.status:
            changes["status"] = next_status
            details += f" - Status changed to {STATUS_LABELS[next_status]}"

        if move == Move.SEND_BACK:
            events.append(OutcomeEvent.SENT_BACK)
        events.extend(self._full_approval_events(before, approvers))

        patch = ContractPatch(
            approvers=approvers,
            **changes,
            timeline_entry=timeline_entry(
                now, actor, action_text, details, custom_entry, actor_name=name
            ),
        )
        return applied_outcome(contract, kind, actor, patch, role, events)

    def _act_in_amendment(
        self,
        contract: Contract,
        kind: ActionKind,
        actor: Actor,
        role: ApprovalRole,
        move: Move,
        approvers: ApproverSet,
        action_text: str,
        details: str,
        custom_entry: CustomTimelineEntry | None,
        now: datetime,
        name: str,
    ) -> ActionOutcome:
        changes: dict[str, Any] = {}
        stage = next_stage(contract.amendment_stage, role, move)
        if stage is not None and stage != contract.amendment_stage:
            changes["amendment_stage"] = stage
            details += f" - Amendment moved to {STAGE_LABELS[stage]} stage"

        events = [OutcomeEvent.SENT_BACK] if move == Move.SEND_BACK else []
        if "amendment_stage" in changes:
            events.append(OutcomeEvent.AMENDMENT_STAGE_CHANGED)

        patch = ContractPatch(
            approvers=approvers,
            **changes,
            timeline_entry=timeline_entry(
                now, actor, f"Amendment {action_text}", details, custom_entry,
                actor_name=name,
            ),
        )
        return applied_outcome(contract, kind, actor, patch, role, events)

    @staticmethod
    def _apply_move(record: Approver, move: Move, at: datetime) -> Approver:
        if move in (Move.APPROVE, Move.REAPPROVE):
            return record.mark_approved(at)
        if move == Move.SEND_BACK:
            return record.mark_sent_back(at)
        return record.cleared()

    @staticmethod
    def _full_approval_events(
        before: ApproverSet, after: ApproverSet
    ) -> list[OutcomeEvent]:
        return [
            _FULL_APPROVAL_EVENTS[role]
            for role in _REVIEW_ROLES
            if after.is_fully_approved(role) and not before.is_fully_approved(role)
        ]

    # ------------------------------------------------------------------
    # Admin status changes
    # ------------------------------------------------------------------

    def change_status(
        self,
        contract: ContractInput,
        actor: Actor,
        status: ContractStatus,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        """Move the contract to *status* on an admin's behalf.

        Moving forward past draft needs legal and management approvers;
        ``wwf_signing`` needs both review roles fully approved and nothing
        sent back. Amendments are entered through :meth:`start_amendment`.
        """
        contract = load_contract(contract)
        kind = ActionKind.CHANGE_STATUS

        def reject(rejection: Rejection) -> ActionOutcome:
            return rejected_outcome(contract, kind, actor, rejection)

        if not actor.is_admin:
            return reject(not_permitted("Only admins can change the contract status."))
        if contract.in_amendment:
            return reject(
                invalid_state("Status cannot be changed while the contract is under amendment.")
            )
        if status == ContractStatus.AMENDMENT:
            return reject(invalid_state("Use start_amendment to amend a contract."))
        if status == contract.status:
            return reject(invalid_state(f"Contract is already in {STATUS_LABELS[status]}."))

        rejection = self._status_guard(contract, status)
        if rejection is not None:
            return reject(rejection)

        patch = ContractPatch(
            status=status,
            timeline_entry=timeline_entry(
                self._clock(),
                actor,
                "Status Changed",
                (
                    f"Status changed from {STATUS_LABELS[contract.status]} "
                    f"to {STATUS_LABELS[status]}"
                ),
                custom_entry,
            ),
        )
        return applied_outcome(contract, kind, actor, patch)

    @staticmethod
    def _status_guard(contract: Contract, status: ContractStatus) -> Rejection | None:
        approvers = contract.approvers
        current = (
            WORKFLOW_ORDER.index(contract.status)
            if contract.status in WORKFLOW_ORDER
            else -1
        )
        target = WORKFLOW_ORDER.index(status) if status in WORKFLOW_ORDER else -1
        draft = WORKFLOW_ORDER.index(ContractStatus.DRAFT)

        if target > draft and target > current:
            missing = [r.value for r in _REVIEW_ROLES if not approvers.slot(r)]
            if missing:
                return invalid_state(
                    f"Assign {' and '.join(missing)} approvers before moving "
                    f"to {STATUS_LABELS[status]}."
                )

        if status == ContractStatus.MANAGEMENT_REVIEW and not approvers.management:
            return invalid_state("Assign management approvers before management review.")

        if status == ContractStatus.WWF_SIGNING:
            for role in _REVIEW_ROLES:
                if any(r.declined for r in approvers.slot(role)):
                    return Rejection(
                        kind=RejectionKind.GATING_VIOLATION,
                        blocking_role=role,
                        message=(
                            f"Cannot move to WWF Signing while the {role.value} "
                            "team has sent the contract back."
                        ),
                    )
            for role in _REVIEW_ROLES:
                if not approvers.is_fully_approved(role):
                    return Rejection(
                        kind=RejectionKind.GATING_VIOLATION,
                        blocking_role=role,
                        message=(
                            f"All {role.value} approvers must approve before "
                            "WWF Signing."
                        ),
                    )
        return None

    # ------------------------------------------------------------------
    # Amendment
    # ------------------------------------------------------------------

    def start_amendment(
        self,
        contract: ContractInput,
        actor: Actor,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.amendments.start(load_contract(contract), actor, custom_entry)

    def change_stage(
        self,
        contract: ContractInput,
        actor: Actor,
        stage: AmendmentStage,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.amendments.change_stage(
            load_contract(contract), actor, stage, custom_entry
        )

    def complete_amendment(
        self,
        contract: ContractInput,
        actor: Actor,
        custom_entry: CustomTimelineEntry | None = None,
    ) -> ActionOutcome:
        return self.amendments.complete(load_contract(contract), actor, custom_entry)
