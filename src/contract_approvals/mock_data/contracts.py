"""Sample persisted contracts for demonstration and testing.

The documents are stored exactly as historical clients wrote them, including
the legacy shapes the normalizer has to cope with: a bare approver object
instead of a list, ``sentBack`` flags, string booleans, approved records that
are also flagged as declined, and the old ``management`` amendment stage.
"""

from __future__ import annotations

from typing import Any

CLOUD_HOSTING_AGREEMENT: dict[str, Any] = {
    "id": "c-hosting-001",
    "title": "Cloud Hosting Agreement",
    "projectName": "Platform Migration",
    "type": "service",
    "value": 300000,
    "owner": "requester@example.com",
    "status": "draft",
    "approvers": {
        "legal": [{"email": "lena.legal@example.com", "name": "Lena Legal"}],
        "management": [{"email": "max.manager@example.com", "name": "Max Manager"}],
        "approver": [{"email": "fiona.final@example.com", "name": "Fiona Final"}],
    },
    "timeline": [],
    "createdAt": "2025-01-15T09:00:00+00:00",
    "updatedAt": "2025-01-15T09:00:00+00:00",
}

# Legal approved, management still to respond; legal stored as a bare object.
DATA_SHARING_AGREEMENT: dict[str, Any] = {
    "id": "c-data-002",
    "title": "Data Sharing Agreement",
    "projectName": "Research Partnership",
    "type": "nda",
    "owner": "requester@example.com",
    "status": "legal_review",
    "approvers": {
        "legal": {
            "email": "lena.legal@example.com",
            "name": "Lena Legal",
            "approved": True,
            "approvedAt": "2025-02-03T10:30:00+00:00",
        },
        "management": [{"email": "max.manager@example.com", "name": "Max Manager"}],
    },
    "timeline": [],
    "createdAt": "2025-02-01T08:00:00+00:00",
    "updatedAt": "2025-02-03T10:30:00+00:00",
}

# Corrupted flags: string booleans and an approved record still flagged
# as sent back under the old key.
FIELD_OFFICE_LEASE: dict[str, Any] = {
    "id": "c-lease-003",
    "title": "Field Office Lease",
    "projectName": "Regional Office",
    "type": "lease",
    "owner": "requester@example.com",
    "status": "management_review",
    "approvers": {
        "legal": [
            {
                "email": "lena.legal@example.com",
                "name": "Lena Legal",
                "approved": "true",
                "sentBack": True,
                "approvedAt": "2025-03-10T12:00:00+00:00",
                "sentBackAt": "2025-03-09T12:00:00+00:00",
            }
        ],
        "management": [
            {"email": "max.manager@example.com", "name": "Max Manager", "approved": "false"}
        ],
    },
    "timeline": [],
    "createdAt": "2025-03-01T08:00:00+00:00",
    "updatedAt": "2025-03-10T12:00:00+00:00",
}

# Amendment written before the legal stage was renamed.
GRANT_AGREEMENT_AMENDMENT: dict[str, Any] = {
    "id": "c-grant-004",
    "title": "Conservation Grant Agreement",
    "projectName": "Wetlands Restoration",
    "type": "grant",
    "owner": "requester@example.com",
    "status": "amendment",
    "isAmended": True,
    "amendmentStage": "management",
    "originalStatus": "implementation",
    "approvers": {
        "legal": [
            {
                "email": "lena.legal@example.com",
                "name": "Lena Legal",
                "approved": True,
                "declined": False,
                "approvedAt": "2025-04-02T09:00:00+00:00",
            }
        ],
        "approver": [{"email": "fiona.final@example.com", "name": "Fiona Final"}],
    },
    "timeline": [],
    "createdAt": "2024-11-20T08:00:00+00:00",
    "updatedAt": "2025-04-02T09:00:00+00:00",
}

# Legacy "approval" status with an open call to the final approver role.
CONSULTING_AGREEMENT: dict[str, Any] = {
    "id": "c-consult-005",
    "title": "Consulting Services Agreement",
    "projectName": "Strategy Review",
    "type": "consultancy",
    "owner": "requester@example.com",
    "status": "approval",
    "approvers": {},
    "timeline": [],
    "createdAt": "2024-06-01T08:00:00+00:00",
    "updatedAt": "2024-06-01T08:00:00+00:00",
}

SAMPLE_CONTRACTS: dict[str, dict[str, Any]] = {
    doc["id"]: doc
    for doc in (
        CLOUD_HOSTING_AGREEMENT,
        DATA_SHARING_AGREEMENT,
        FIELD_OFFICE_LEASE,
        GRANT_AGREEMENT_AMENDMENT,
        CONSULTING_AGREEMENT,
    )
}
