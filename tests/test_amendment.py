"""Tests for the amendment sub-workflow."""

from __future__ import annotations

import pytest

from conftest import APPROVER_EMAIL, LEGAL_EMAIL, MANAGER_EMAIL, record
from contract_approvals.errors import RejectionKind
from contract_approvals.flow.amendment import next_stage
from contract_approvals.flow.state import OutcomeEvent
from contract_approvals.flow.transitions import Move
from contract_approvals.models import (
    Actor,
    AmendmentStage,
    ApprovalRole,
    ContractStatus,
    apply_patch_to_document,
)

L = ApprovalRole.LEGAL
M = ApprovalRole.MANAGEMENT
A = ApprovalRole.APPROVER


@pytest.fixture()
def amended(make_contract):
    """A contract under amendment at the given stage."""

    def _make(stage: str, legal_approved: bool = False, **slots):
        return make_contract(
            status="amendment",
            isAmended=True,
            amendmentStage=stage,
            originalStatus="implementation",
            legal=slots.get("legal", [record(LEGAL_EMAIL, approved=legal_approved)]),
            management=slots.get("management", [record(MANAGER_EMAIL)]),
            approver=slots.get("approver", [record(APPROVER_EMAIL)]),
        )

    return _make


def test_start_amendment_from_implementation(machine, admin, make_contract):
    doc = make_contract(
        status="implementation",
        legal=[record(LEGAL_EMAIL, approved=True)],
        management=[record(MANAGER_EMAIL, approved=True)],
        approver=[record(APPROVER_EMAIL, approved=True)],
    )
    outcome = machine.start_amendment(doc, admin)
    contract = outcome.contract

    assert outcome.applied
    assert contract.status == ContractStatus.AMENDMENT
    assert contract.amendment_stage == AmendmentStage.AMENDMENT
    assert contract.is_amended is True
    assert contract.original_status == ContractStatus.IMPLEMENTATION
    for _, rec in contract.approvers.records():
        assert rec.approved is False and rec.declined is False
    assert outcome.events == [OutcomeEvent.AMENDMENT_STARTED]


def test_start_amendment_requires_signed_status(machine, admin, make_contract):
    outcome = machine.start_amendment(make_contract(status="legal_review"), admin)
    assert outcome.rejection.kind == RejectionKind.INVALID_STATE


def test_start_amendment_is_admin_only(machine, legal, make_contract):
    outcome = machine.start_amendment(make_contract(status="implementation"), legal)
    assert outcome.rejection.kind == RejectionKind.NOT_PERMITTED


def test_approver_send_back_at_wwf_returns_to_legal(machine, final_approver, amended):
    doc = amended("wwf", legal_approved=True)
    outcome = machine.send_back(doc, final_approver, A)

    assert outcome.contract.amendment_stage == AmendmentStage.LEGAL
    assert outcome.contract.status == ContractStatus.AMENDMENT
    assert OutcomeEvent.SENT_BACK in outcome.events


def test_approver_send_back_at_amendment_stage_only_records_timeline(
    machine, final_approver, amended
):
    doc = amended("amendment", legal_approved=True)
    outcome = machine.send_back(doc, final_approver, A)

    assert outcome.applied
    assert outcome.contract.amendment_stage == AmendmentStage.AMENDMENT
    assert "amendment_stage" not in outcome.patch.changes()
    assert len(outcome.contract.timeline) == 1
    assert outcome.contract.timeline[0].action.startswith("Amendment Final Approver Sent Back")


def test_legal_walks_the_stages(machine, legal, amended):
    outcome = machine.approve(amended("amendment"), legal, L)
    assert outcome.contract.amendment_stage == AmendmentStage.LEGAL
    assert outcome.contract.timeline[-1].action == "Amendment Legal Approval: Lena Legal"
    assert outcome.contract.timeline[-1].details.endswith(
        "Amendment moved to Legal Review stage"
    )

    outcome = machine.approve(amended("legal"), legal, L)
    assert outcome.contract.amendment_stage == AmendmentStage.WWF


def test_legal_send_back_always_returns_to_amendment(machine, legal, amended):
    outcome = machine.send_back(amended("counterparty", legal_approved=True), legal, L)
    assert outcome.contract.amendment_stage == AmendmentStage.AMENDMENT
    assert outcome.contract.status == ContractStatus.AMENDMENT


def test_approver_reaches_counterparty(machine, final_approver, amended):
    outcome = machine.approve(amended("wwf", legal_approved=True), final_approver, A)
    assert outcome.contract.amendment_stage == AmendmentStage.COUNTERPARTY


def test_approver_is_gated_on_legal_during_amendment(machine, final_approver, amended):
    outcome = machine.approve(amended("wwf"), final_approver, A)
    assert outcome.rejection.kind == RejectionKind.GATING_VIOLATION
    assert outcome.rejection.blocking_role == L


def test_management_is_inactive_during_amendment(machine, amended):
    manager = Actor(email=MANAGER_EMAIL, is_management_team=True)
    outcome = machine.approve(amended("legal", legal_approved=True), manager, M)
    assert outcome.rejection.kind == RejectionKind.ROLE_INACTIVE


def test_withdraw_send_back_keeps_stage(machine, legal, amended):
    doc = amended("legal", legal=[record(LEGAL_EMAIL, declined=True)])
    outcome = machine.withdraw(doc, legal, L)
    assert outcome.applied
    assert outcome.contract.amendment_stage == AmendmentStage.LEGAL


def test_legacy_management_stage_is_treated_as_legal(machine, legal, amended):
    outcome = machine.approve(amended("management"), legal, L)
    assert outcome.contract.amendment_stage == AmendmentStage.WWF


@pytest.mark.parametrize(
    ("stage", "role", "move", "expected"),
    [
        (AmendmentStage.WWF, L, Move.WITHDRAW_APPROVAL, AmendmentStage.LEGAL),
        (AmendmentStage.COUNTERPARTY, L, Move.WITHDRAW_APPROVAL, AmendmentStage.LEGAL),
        (AmendmentStage.LEGAL, L, Move.WITHDRAW_APPROVAL, AmendmentStage.AMENDMENT),
        (AmendmentStage.COUNTERPARTY, A, Move.WITHDRAW_APPROVAL, AmendmentStage.WWF),
        (AmendmentStage.WWF, A, Move.WITHDRAW_APPROVAL, AmendmentStage.LEGAL),
        (AmendmentStage.LEGAL, A, Move.APPROVE, AmendmentStage.WWF),
        (AmendmentStage.COUNTERPARTY, A, Move.APPROVE, None),
        (AmendmentStage.AMENDMENT, A, Move.SEND_BACK, None),
        (AmendmentStage.LEGAL, L, Move.WITHDRAW_SEND_BACK, None),
    ],
)
def test_stage_table(stage, role, move, expected):
    assert next_stage(stage, role, move) == expected


def test_complete_amendment_restores_original_status(machine, admin, amended):
    doc = amended("counterparty", legal_approved=True)
    outcome = machine.complete_amendment(doc, admin)
    contract = outcome.contract

    assert contract.status == ContractStatus.IMPLEMENTATION
    assert contract.is_amended is False
    assert contract.amendment_stage is None
    assert contract.original_status is None
    assert outcome.events == [OutcomeEvent.AMENDMENT_COMPLETED]

    persisted = apply_patch_to_document(doc, outcome.patch)
    assert persisted["status"] == "implementation"
    assert "amendmentStage" not in persisted
    assert "originalStatus" not in persisted
    assert persisted["isAmended"] is False


def test_complete_amendment_requires_counterparty_stage(machine, admin, amended):
    outcome = machine.complete_amendment(amended("wwf"), admin)
    assert outcome.rejection.kind == RejectionKind.INVALID_STATE


def test_change_stage(machine, admin, amended):
    outcome = machine.change_stage(amended("amendment"), admin, AmendmentStage.WWF)
    assert outcome.contract.amendment_stage == AmendmentStage.WWF
    assert outcome.events == [OutcomeEvent.AMENDMENT_STAGE_CHANGED]

    again = machine.change_stage(outcome.contract, admin, AmendmentStage.WWF)
    assert again.rejection.kind == RejectionKind.INVALID_STATE


def test_status_is_frozen_during_amendment(machine, admin, amended):
    outcome = machine.change_status(amended("legal"), admin, ContractStatus.IMPLEMENTATION)
    assert outcome.rejection.kind == RejectionKind.INVALID_STATE


def test_full_approval_events_are_not_emitted_in_amendment(machine, legal, amended):
    outcome = machine.approve(amended("amendment"), legal, L)
    assert OutcomeEvent.LEGAL_FULLY_APPROVED not in outcome.events
    assert OutcomeEvent.AMENDMENT_STAGE_CHANGED in outcome.events
