"""Pydantic models for the contract approvals core.

Defines the domain objects shared by the normalizer, the approval state
machine, the amendment sub-workflow, the eligibility filter, and the
notification dispatcher: statuses, roles, approver records, the contract
value itself, and the patch an action produces.

Persisted documents use camelCase keys (``approvedAt``, ``isAmended``);
models accept either spelling and dump camelCase with ``by_alias=True``.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContractStatus(str, Enum):
    """Outer contract status."""

    REQUESTED = "requested"
    DRAFT = "draft"
    LEGAL_REVIEW = "legal_review"
    MANAGEMENT_REVIEW = "management_review"
    APPROVAL = "approval"
    WWF_SIGNING = "wwf_signing"
    COUNTERPARTY_SIGNING = "counterparty_signing"
    IMPLEMENTATION = "implementation"
    AMENDMENT = "amendment"
    CONTRACT_END = "contract_end"
    FINISHED = "finished"
    LEGAL_SEND_BACK = "legal_send_back"
    MANAGEMENT_SEND_BACK = "management_send_back"
    LEGAL_DECLINED = "legal_declined"
    MANAGEMENT_DECLINED = "management_declined"


class AmendmentStage(str, Enum):
    """Position inside the amendment sub-workflow."""

    AMENDMENT = "amendment"
    LEGAL = "legal"
    WWF = "wwf"
    COUNTERPARTY = "counterparty"


class ApprovalRole(str, Enum):
    """Approver slots on a contract, in review order."""

    LEGAL = "legal"
    MANAGEMENT = "management"
    APPROVER = "approver"


class ApprovalVerb(str, Enum):
    """Actions an assigned approver can take on their own record."""

    APPROVE = "approve"
    SEND_BACK = "send_back"
    WITHDRAW = "withdraw"


# Workflow order used by admin-driven status changes.
WORKFLOW_ORDER: list[ContractStatus] = [
    ContractStatus.REQUESTED,
    ContractStatus.DRAFT,
    ContractStatus.LEGAL_REVIEW,
    ContractStatus.MANAGEMENT_REVIEW,
    ContractStatus.WWF_SIGNING,
    ContractStatus.COUNTERPARTY_SIGNING,
    ContractStatus.IMPLEMENTATION,
    ContractStatus.AMENDMENT,
    ContractStatus.CONTRACT_END,
]

SEND_BACK_STATUSES: dict[ApprovalRole, frozenset[ContractStatus]] = {
    ApprovalRole.LEGAL: frozenset(
        {ContractStatus.LEGAL_SEND_BACK, ContractStatus.LEGAL_DECLINED}
    ),
    ApprovalRole.MANAGEMENT: frozenset(
        {ContractStatus.MANAGEMENT_SEND_BACK, ContractStatus.MANAGEMENT_DECLINED}
    ),
    ApprovalRole.APPROVER: frozenset(),
}

STATUS_LABELS: dict[ContractStatus, str] = {
    ContractStatus.REQUESTED: "Requested",
    ContractStatus.DRAFT: "Draft",
    ContractStatus.LEGAL_REVIEW: "Legal Review",
    ContractStatus.MANAGEMENT_REVIEW: "Management Review",
    ContractStatus.APPROVAL: "Approval",
    ContractStatus.WWF_SIGNING: "WWF Signing",
    ContractStatus.COUNTERPARTY_SIGNING: "Counterparty Signing",
    ContractStatus.IMPLEMENTATION: "Implementation",
    ContractStatus.AMENDMENT: "Amendment",
    ContractStatus.CONTRACT_END: "Contract End",
    ContractStatus.FINISHED: "Finished",
    ContractStatus.LEGAL_SEND_BACK: "Legal Send Back",
    ContractStatus.MANAGEMENT_SEND_BACK: "Management Send Back",
    ContractStatus.LEGAL_DECLINED: "Legal Send Back",
    ContractStatus.MANAGEMENT_DECLINED: "Management Send Back",
}

STAGE_LABELS: dict[AmendmentStage, str] = {
    AmendmentStage.AMENDMENT: "Amendment",
    AmendmentStage.LEGAL: "Legal Review",
    AmendmentStage.WWF: "WWF Signing",
    AmendmentStage.COUNTERPARTY: "Counterparty Signing",
}

ROLE_LABELS: dict[ApprovalRole, str] = {
    ApprovalRole.LEGAL: "Legal",
    ApprovalRole.MANAGEMENT: "Management",
    ApprovalRole.APPROVER: "Final Approver",
}


# ---------------------------------------------------------------------------
# Domain models
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    """Base model with camelCase aliases for persisted documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Approver(CamelModel):
    """A single approver record inside a role slot."""

    email: str
    name: str = ""
    approved: bool = False
    declined: bool = False
    approved_at: datetime | None = None
    declined_at: datetime | None = None

    def matches(self, email: str) -> bool:
        return self.email.strip().lower() == email.strip().lower()

    @property
    def responded(self) -> bool:
        return self.approved or self.declined

    def mark_approved(self, at: datetime) -> Approver:
        return self.model_copy(
            update={
                "approved": True,
                "declined": False,
                "approved_at": at,
                "declined_at": None,
            }
        )

    def mark_sent_back(self, at: datetime) -> Approver:
        return self.model_copy(
            update={
                "approved": False,
                "declined": True,
                "approved_at": None,
                "declined_at": at,
            }
        )

    def cleared(self) -> Approver:
        return self.model_copy(
            update={
                "approved": False,
                "declined": False,
                "approved_at": None,
                "declined_at": None,
            }
        )


class ApproverLimits(CamelModel):
    """Maximum number of records per role slot."""

    legal: int = 2
    management: int = 5
    approver: int = 1

    def for_role(self, role: ApprovalRole) -> int:
        return getattr(self, role.value)


class ApproverSet(CamelModel):
    """Canonical approver slots; every slot is a list."""

    legal: list[Approver] = Field(default_factory=list)
    management: list[Approver] = Field(default_factory=list)
    approver: list[Approver] = Field(default_factory=list)

    def slot(self, role: ApprovalRole) -> list[Approver]:
        return list(getattr(self, role.value))

    def with_slot(self, role: ApprovalRole, records: list[Approver]) -> ApproverSet:
        return self.model_copy(update={role.value: list(records)})

    def find(self, role: ApprovalRole, email: str) -> Approver | None:
        for record in getattr(self, role.value):
            if record.matches(email):
                return record
        return None

    def is_fully_approved(self, role: ApprovalRole) -> bool:
        records = getattr(self, role.value)
        return bool(records) and all(r.approved for r in records)

    def reset(self) -> ApproverSet:
        """Return a copy with every record in every slot unactioned."""
        return ApproverSet(
            legal=[r.cleared() for r in self.legal],
            management=[r.cleared() for r in self.management],
            approver=[r.cleared() for r in self.approver],
        )

    def records(self) -> list[tuple[ApprovalRole, Approver]]:
        return [(role, r) for role in ApprovalRole for r in self.slot(role)]

    def to_persisted(self) -> dict[str, Any]:
        """Dump for storage; empty slots are omitted (cleared)."""
        out: dict[str, Any] = {}
        for role in ApprovalRole:
            records = self.slot(role)
            if records:
                out[role.value] = [
                    r.model_dump(by_alias=True, mode="json") for r in records
                ]
        return out


class TimelineEntry(CamelModel):
    """One append-only entry in a contract's history."""

    timestamp: datetime | None = None
    action: str
    actor_email: str = ""
    actor_name: str = ""
    details: str = ""


class CustomTimelineEntry(CamelModel):
    """Caller-supplied wording that replaces the generated timeline text."""

    action: str
    details: str = ""


class Contract(CamelModel):
    """A contract as seen by the approval core.

    Unknown persisted fields (type, value, parties ...) are kept as extras so
    that snapshots handed to notification sinks still carry them.
    Identity and timestamps are assigned by the store; a document that lacks
    them reads as an empty id and ``None``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str = ""
    title: str = ""
    project_name: str = ""
    owner: str | None = None
    status: ContractStatus = ContractStatus.DRAFT
    approvers: ApproverSet = Field(default_factory=ApproverSet)
    approver_limits: ApproverLimits | None = None
    is_amended: bool = False
    amendment_stage: AmendmentStage | None = None
    original_status: ContractStatus | None = None
    timeline: list[TimelineEntry] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def in_amendment(self) -> bool:
        return self.is_amended and self.status == ContractStatus.AMENDMENT

    def to_persisted(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude={"approvers"})
        data["approvers"] = self.approvers.to_persisted()
        return data


class Actor(BaseModel):
    """Identity and role flags supplied by the caller for every core call."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: str = ""
    is_admin: bool = False
    is_legal_team: bool = False
    is_management_team: bool = False
    is_approver: bool = False

    def holds(self, role: ApprovalRole) -> bool:
        return {
            ApprovalRole.LEGAL: self.is_legal_team,
            ApprovalRole.MANAGEMENT: self.is_management_team,
            ApprovalRole.APPROVER: self.is_approver,
        }[role]

    @property
    def roles(self) -> list[ApprovalRole]:
        return [role for role in ApprovalRole if self.holds(role)]

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


class TeamMember(CamelModel):
    """A roster entry an admin assigns into a slot."""

    email: str
    display_name: str = ""


class ContractPatch(CamelModel):
    """Fields changed by one action plus the timeline entry to append.

    Only fields explicitly set are part of the patch; a field set to
    ``None`` clears the stored value.
    """

    status: ContractStatus | None = None
    approvers: ApproverSet | None = None
    amendment_stage: AmendmentStage | None = None
    is_amended: bool | None = None
    original_status: ContractStatus | None = None
    timeline_entry: TimelineEntry

    def changes(self) -> dict[str, Any]:
        """Set fields other than the timeline entry, keyed by attribute name."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "timeline_entry"
        }

    def to_persisted(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in self.changes().items():
            key = to_camel(name)
            if isinstance(value, ApproverSet):
                out[key] = value.to_persisted()
            elif isinstance(value, Enum):
                out[key] = value.value
            else:
                out[key] = value
        out["timelineEntry"] = self.timeline_entry.model_dump(
            by_alias=True, mode="json"
        )
        return out


def apply_patch(contract: Contract, patch: ContractPatch) -> Contract:
    """Return the contract value that results from *patch*."""
    update = patch.changes()
    if "approvers" in update and update["approvers"] is None:
        update["approvers"] = ApproverSet()
    update["timeline"] = [*contract.timeline, patch.timeline_entry]
    return contract.model_copy(update=update)


def apply_patch_to_document(
    document: dict[str, Any], patch: ContractPatch
) -> dict[str, Any]:
    """Apply *patch* to a persisted document without dropping unknown keys."""
    doc = copy.deepcopy(document)
    for key, value in patch.to_persisted().items():
        if key == "timelineEntry":
            doc.setdefault("timeline", []).append(value)
        elif value is None:
            doc.pop(key, None)
        else:
            doc[key] = value
    return doc
