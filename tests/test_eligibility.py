"""Tests for the eligibility filter and work queues."""

from __future__ import annotations

import pytest

from conftest import APPROVER_EMAIL, LEGAL_EMAIL, MANAGER_EMAIL, record
from contract_approvals.eligibility import (
    approved_by,
    awaiting_count,
    build_work_queues,
    evaluate,
    needs_approval_from,
)
from contract_approvals.mock_data.contracts import SAMPLE_CONTRACTS
from contract_approvals.models import Actor, ApprovalRole

L = ApprovalRole.LEGAL
M = ApprovalRole.MANAGEMENT
A = ApprovalRole.APPROVER


def test_named_unactioned_member_needs_action(make_contract):
    doc = make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)])
    result = evaluate(doc, L, LEGAL_EMAIL.upper())
    assert result.needs_action
    assert not result.has_responded


def test_responded_member_does_not_need_action(make_contract):
    doc = make_contract(status="legal_review", legal=[record(LEGAL_EMAIL, approved=True)])
    result = evaluate(doc, L, LEGAL_EMAIL)
    assert not result.needs_action
    assert result.has_responded


def test_unnamed_actor_is_not_asked_when_slot_is_filled(make_contract):
    doc = make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)])
    assert not evaluate(doc, L, "other@example.com").needs_action


def test_empty_slot_is_an_open_call(make_contract):
    doc = make_contract(status="legal_review")
    assert evaluate(doc, L, "anyone@example.com").needs_action


def test_empty_slot_outside_open_call_status(make_contract):
    doc = make_contract(status="legal_send_back")
    assert not evaluate(doc, L, "anyone@example.com").needs_action


@pytest.mark.parametrize(
    "status", ["finished", "contract_end", "implementation", "wwf_signing", "counterparty_signing"]
)
def test_closed_statuses_need_nothing(make_contract, status):
    doc = make_contract(status=status, approver=[record(APPROVER_EMAIL)])
    assert not evaluate(doc, A, APPROVER_EMAIL).needs_action


def test_status_must_be_a_review_status_for_the_role(make_contract):
    doc = make_contract(status="management_review", legal=[record(LEGAL_EMAIL)])
    assert not evaluate(doc, L, LEGAL_EMAIL).needs_action


def test_approver_sees_drafts_and_send_backs(make_contract):
    for status in ("draft", "requested", "approval", "legal_send_back", "management_declined"):
        doc = make_contract(status=status, approver=[record(APPROVER_EMAIL)])
        assert evaluate(doc, A, APPROVER_EMAIL).needs_action, status


def test_legacy_approval_status_opens_call_to_approvers():
    doc = SAMPLE_CONTRACTS["c-consult-005"]
    assert evaluate(doc, A, "anyone@example.com").needs_action


def test_corrupted_flags_are_repaired_before_evaluation():
    doc = SAMPLE_CONTRACTS["c-lease-003"]
    result = evaluate(doc, L, LEGAL_EMAIL)
    assert result.has_responded
    assert evaluate(doc, M, MANAGER_EMAIL).needs_action


def test_work_queues_are_disjoint_and_awaiting_wins(make_contract):
    actor = Actor(email=LEGAL_EMAIL, is_legal_team=True, is_management_team=True)
    both = make_contract(
        id="both",
        status="management_review",
        legal=[record(LEGAL_EMAIL, approved=True)],
        management=[record(LEGAL_EMAIL)],
    )
    answered = make_contract(
        id="answered", status="legal_review", legal=[record(LEGAL_EMAIL, declined=True)]
    )
    untouched = make_contract(id="untouched", status="draft")

    queues = build_work_queues([both, answered, untouched], actor)

    assert [c.id for c in queues.awaiting] == ["both"]
    assert [c.id for c in queues.responded] == ["answered"]
    assert awaiting_count([both, answered, untouched], actor) == 1


def test_needs_approval_from_checks_every_role(make_contract):
    actor = Actor(email=MANAGER_EMAIL, is_legal_team=True, is_management_team=True)
    doc = make_contract(status="management_review", management=[record(MANAGER_EMAIL)])
    assert needs_approval_from(doc, actor)


def test_unreadable_contracts_are_skipped(make_contract):
    actor = Actor(email=LEGAL_EMAIL, is_legal_team=True)
    broken = {"id": "broken", "status": "nonsense"}
    good = make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)])
    assert awaiting_count([broken, good], actor) == 1


def test_approved_by():
    actor = Actor(email=LEGAL_EMAIL, is_legal_team=True)
    ids = {c.id for c in approved_by(SAMPLE_CONTRACTS.values(), actor)}
    assert ids == {"c-data-002", "c-lease-003", "c-grant-004"}
