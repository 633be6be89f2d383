"""Notification dispatcher.

Turns the events on an applied :class:`ActionOutcome` into notification
requests and hands them to an injected :class:`NotificationSink`. Delivery
failures are logged and counted; they never undo or block the action that
triggered them.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from contract_approvals.errors import NotificationDeliveryFailure
from contract_approvals.flow.state import ActionOutcome, OutcomeEvent
from contract_approvals.models import (
    STAGE_LABELS,
    STATUS_LABELS,
    ApprovalRole,
    Contract,
)

logger = structlog.get_logger(__name__)


class NotificationKind(str, Enum):
    """Email templates the dispatcher can request."""

    LEGAL_APPROVED = "legal_approved"
    MANAGEMENT_APPROVED = "management_approved"
    SENT_BACK = "sent_back"
    AMENDMENT_STARTED = "amendment_started"
    AMENDMENT_STAGE_CHANGED = "amendment_stage_changed"
    AMENDMENT_COMPLETED = "amendment_completed"


class NotificationRequest(BaseModel):
    """One message to one recipient."""

    recipient_email: str
    kind: NotificationKind
    contract: Contract

    @property
    def contract_id(self) -> str:
        return self.contract.id


class DispatchReport(BaseModel):
    """Summary of a dispatch run."""

    requested: int = 0
    delivered: int = 0
    failures: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class NotificationSink(Protocol):
    """Delivery backend (email service, queue, log ...)."""

    async def send(
        self, recipient_email: str, kind: NotificationKind, contract: Contract
    ) -> None: ...


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


_OWNER_EVENTS: dict[OutcomeEvent, NotificationKind] = {
    OutcomeEvent.AMENDMENT_STARTED: NotificationKind.AMENDMENT_STARTED,
    OutcomeEvent.AMENDMENT_STAGE_CHANGED: NotificationKind.AMENDMENT_STAGE_CHANGED,
    OutcomeEvent.AMENDMENT_COMPLETED: NotificationKind.AMENDMENT_COMPLETED,
}


def _recipients(
    outcome: ActionOutcome, event: OutcomeEvent, admin_email: str
) -> tuple[NotificationKind, list[str]] | None:
    contract = outcome.contract
    if event == OutcomeEvent.SENT_BACK:
        return NotificationKind.SENT_BACK, [admin_email]
    if event == OutcomeEvent.LEGAL_FULLY_APPROVED:
        return NotificationKind.LEGAL_APPROVED, [
            r.email for r in contract.approvers.slot(ApprovalRole.MANAGEMENT)
        ]
    if event == OutcomeEvent.MANAGEMENT_FULLY_APPROVED:
        return NotificationKind.MANAGEMENT_APPROVED, [
            r.email for r in contract.approvers.slot(ApprovalRole.APPROVER)
        ]
    if event in _OWNER_EVENTS:
        if not contract.owner:
            logger.debug(
                "notification_skipped_no_owner",
                contract_id=contract.id,
                outcome_event=event.value,
            )
            return None
        return _OWNER_EVENTS[event], [contract.owner]
    return None


def plan_notifications(
    outcome: ActionOutcome, admin_email: str
) -> list[NotificationRequest]:
    """Map an outcome's events to notification requests.

    Args:
        outcome: Result of a state machine call.
        admin_email: Recipient of send-back notices.

    Returns:
        Requests in event order; each recipient appears at most once per
        notification kind (emails compared case-insensitively). A rejected
        outcome yields nothing.
    """
    if not outcome.applied:
        return []

    requests: list[NotificationRequest] = []
    seen: set[tuple[NotificationKind, str]] = set()
    for event in outcome.events:
        planned = _recipients(outcome, event, admin_email)
        if planned is None:
            continue
        kind, emails = planned
        for email in emails:
            key = (kind, email.strip().lower())
            if not email or key in seen:
                continue
            seen.add(key)
            requests.append(
                NotificationRequest(
                    recipient_email=email, kind=kind, contract=outcome.contract
                )
            )
    return requests


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


_ROLE_HEADINGS: dict[ApprovalRole, str] = {
    ApprovalRole.LEGAL: "Legal Team",
    ApprovalRole.MANAGEMENT: "Management Team",
    ApprovalRole.APPROVER: "Approver",
}


def format_approval_history(contract: Contract) -> str:
    """One line per responded approver, legal first."""
    lines: list[str] = []
    for role, record in contract.approvers.records():
        who = f"{_ROLE_HEADINGS[role]}: {record.name or record.email} ({record.email})"
        if record.approved and record.approved_at:
            lines.append(f"{who} - Approved on {record.approved_at:%Y-%m-%d %H:%M} UTC")
        elif record.declined and record.declined_at:
            lines.append(f"{who} - Sent back on {record.declined_at:%Y-%m-%d %H:%M} UTC")
    return "\n".join(lines)


def render_subject(request: NotificationRequest) -> str:
    title = request.contract.title or request.contract.id
    return {
        NotificationKind.LEGAL_APPROVED: (
            f"Legal Team Approval: {title} - Management Review Required"
        ),
        NotificationKind.MANAGEMENT_APPROVED: (
            f"Management Approval: {title} - Final Review Required"
        ),
        NotificationKind.SENT_BACK: f"Contract Sent Back: {title}",
        NotificationKind.AMENDMENT_STARTED: f"Contract Amendment Started: {title}",
        NotificationKind.AMENDMENT_STAGE_CHANGED: f"Contract Amendment Update: {title}",
        NotificationKind.AMENDMENT_COMPLETED: f"Contract Amendment Completed: {title}",
    }[request.kind]


def render_body(request: NotificationRequest, app_url: str) -> str:
    """Plain-text body with contract details, approval history and a link."""
    contract = request.contract
    details = [
        f"Contract Title: {contract.title}",
        f"Project Name: {contract.project_name}",
        f"Current Status: {STATUS_LABELS[contract.status]}",
    ]
    if contract.amendment_stage is not None:
        details.append(f"Amendment Stage: {STAGE_LABELS[contract.amendment_stage]}")

    sections = ["\n".join(details)]
    history = format_approval_history(contract)
    if history:
        sections.append("Approval History\n" + history)
    sections.append(f"View contract: {app_url.rstrip('/')}/contracts/{contract.id}")
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class LoggingNotificationSink:
    """Sink that logs the rendered message instead of sending it."""

    def __init__(self, app_url: str = "http://localhost:8014") -> None:
        self.app_url = app_url
        self.sent: list[NotificationRequest] = []

    async def send(
        self, recipient_email: str, kind: NotificationKind, contract: Contract
    ) -> None:
        request = NotificationRequest(
            recipient_email=recipient_email, kind=kind, contract=contract
        )
        self.sent.append(request)
        logger.info(
            "notification_logged",
            recipient=recipient_email,
            kind=kind.value,
            contract_id=contract.id,
            subject=render_subject(request),
            body=render_body(request, self.app_url),
        )


class NotificationDispatcher:
    """Plan and deliver notifications for applied outcomes."""

    def __init__(self, sink: NotificationSink, admin_email: str) -> None:
        self._sink = sink
        self._admin_email = admin_email

    async def dispatch(self, outcome: ActionOutcome) -> DispatchReport:
        """Deliver every planned notification.

        Each delivery is attempted independently; a failing recipient is
        logged and recorded in the report without affecting the others.
        """
        requests = plan_notifications(outcome, self._admin_email)
        report = DispatchReport(requested=len(requests))
        for request in requests:
            try:
                await self._sink.send(
                    request.recipient_email, request.kind, request.contract
                )
            except Exception as exc:
                failure = NotificationDeliveryFailure(
                    request.recipient_email, request.kind.value, exc
                )
                logger.warning(
                    "notification_delivery_failed",
                    contract_id=request.contract_id,
                    recipient=request.recipient_email,
                    kind=request.kind.value,
                    error=str(failure),
                )
                report.failures.append(request.recipient_email)
                continue
            report.delivered += 1

        if requests:
            logger.info(
                "notifications_dispatched",
                contract_id=outcome.contract_id,
                requested=report.requested,
                delivered=report.delivered,
                failed=report.failed,
            )
        return report
