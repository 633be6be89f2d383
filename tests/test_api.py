"""API endpoint tests for the contract approvals service."""

from __future__ import annotations

import pytest

from conftest import LEGAL_EMAIL, MANAGER_EMAIL, record
from contract_approvals.mock_data.contracts import SAMPLE_CONTRACTS

ADMIN = {"X-Actor-Email": "admin@example.com", "X-Actor-Name": "Ada Admin", "X-Actor-Roles": "admin"}
LEGAL = {"X-Actor-Email": LEGAL_EMAIL, "X-Actor-Name": "Lena Legal", "X-Actor-Roles": "legal"}
MANAGER = {"X-Actor-Email": MANAGER_EMAIL, "X-Actor-Roles": "management"}


async def _create(client, document):
    resp = await client.post("/api/v1/contracts", json=document, headers=ADMIN)
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns service info."""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "contract-approvals"


@pytest.mark.asyncio
async def test_create_and_get_contract(client):
    """Legacy documents are stored and read back normalized."""
    created = await _create(client, SAMPLE_CONTRACTS["c-data-002"])
    assert created["id"] == "c-data-002"

    resp = await client.get("/api/v1/contracts/c-data-002")
    assert resp.status_code == 200
    data = resp.json()
    assert isinstance(data["approvers"]["legal"], list)
    assert data["approvers"]["legal"][0]["approved"] is True
    assert data["projectName"] == "Research Partnership"


@pytest.mark.asyncio
async def test_create_defaults_owner_to_actor(client):
    created = await _create(client, {"title": "Office Supplies", "status": "draft"})
    assert created["owner"] == "admin@example.com"


@pytest.mark.asyncio
async def test_create_existing_id_is_conflict(client, make_contract):
    await _create(client, make_contract(status="legal_review"))
    resp = await client.post(
        "/api/v1/contracts", json=make_contract(status="draft"), headers=ADMIN
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "Contract already exists"

    resp = await client.get("/api/v1/contracts/contract-1")
    assert resp.json()["status"] == "legal_review"


@pytest.mark.asyncio
async def test_list_contracts(client):
    for document in SAMPLE_CONTRACTS.values():
        await _create(client, document)
    resp = await client.get("/api/v1/contracts")
    assert resp.status_code == 200
    assert resp.json()["total"] == len(SAMPLE_CONTRACTS)


@pytest.mark.asyncio
async def test_contract_not_found(client):
    """Unknown contracts return 404."""
    resp = await client.get("/api/v1/contracts/nonexistent")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Contract not found"


@pytest.mark.asyncio
async def test_missing_actor_header(client):
    resp = await client.get("/api/v1/queues")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_header(client):
    resp = await client.get(
        "/api/v1/queues", headers={"X-Actor-Email": "x@example.com", "X-Actor-Roles": "owner"}
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_assign_then_approve(client, make_contract):
    """Admin assigns legal; legal approves and the contract enters legal review."""
    await _create(client, make_contract(status="draft"))

    resp = await client.post(
        "/api/v1/contracts/contract-1/approvers/legal",
        json={"email": LEGAL_EMAIL, "displayName": "Lena Legal"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["applied"] is True

    resp = await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={"role": "legal", "verb": "approve"},
        headers=LEGAL,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["contract"]["status"] == "legal_review"
    assert "legal_fully_approved" in data["events"]
    assert data["contract"]["timeline"][-1]["action"] == "Legal Approval: Lena Legal"


@pytest.mark.asyncio
async def test_gated_decision_is_conflict(client, make_contract):
    await _create(
        client,
        make_contract(
            status="legal_review",
            legal=[record(LEGAL_EMAIL)],
            management=[record(MANAGER_EMAIL)],
        ),
    )
    resp = await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={"role": "management", "verb": "approve"},
        headers=MANAGER,
    )
    assert resp.status_code == 409
    data = resp.json()
    assert data["applied"] is False
    assert data["rejection"]["kind"] == "gating_violation"
    assert data["rejection"]["blocking_role"] == "legal"


@pytest.mark.asyncio
async def test_non_admin_assign_is_forbidden(client, make_contract):
    await _create(client, make_contract())
    resp = await client.post(
        "/api/v1/contracts/contract-1/approvers/legal",
        json={"email": "someone@example.com"},
        headers=LEGAL,
    )
    assert resp.status_code == 403
    assert resp.json()["rejection"]["kind"] == "not_permitted"


@pytest.mark.asyncio
async def test_unassigned_actor_is_silent(client, make_contract):
    await _create(client, make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)]))
    resp = await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={"role": "legal", "verb": "approve"},
        headers={"X-Actor-Email": "other@example.com", "X-Actor-Roles": "legal"},
    )
    assert resp.status_code == 200
    assert resp.json()["applied"] is False
    assert resp.json()["rejection"]["kind"] == "actor_not_assigned"


@pytest.mark.asyncio
async def test_remove_approver(client, make_contract):
    await _create(client, make_contract(legal=[record(LEGAL_EMAIL)]))
    resp = await client.delete(
        f"/api/v1/contracts/contract-1/approvers/legal/{LEGAL_EMAIL}", headers=ADMIN
    )
    assert resp.status_code == 200
    assert "legal" not in resp.json()["contract"]["approvers"]


@pytest.mark.asyncio
async def test_stale_decision_is_flagged(client, make_contract):
    await _create(client, make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)]))
    resp = await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={
            "role": "legal",
            "verb": "send_back",
            "expectedUpdatedAt": "2024-12-31T00:00:00+00:00",
        },
        headers=LEGAL,
    )
    assert resp.status_code == 200
    assert resp.json()["stale"] is True
    assert resp.json()["contract"]["status"] == "legal_send_back"


@pytest.mark.asyncio
async def test_custom_timeline_entry(client, make_contract):
    await _create(client, make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)]))
    resp = await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={
            "role": "legal",
            "verb": "send_back",
            "customEntry": {"action": "Returned for redlines", "details": "See clause 4"},
        },
        headers=LEGAL,
    )
    entry = resp.json()["contract"]["timeline"][-1]
    assert entry["action"] == "Returned for redlines"
    assert entry["details"] == "See clause 4"


@pytest.mark.asyncio
async def test_change_status_guard(client, make_contract):
    await _create(client, make_contract(status="draft"))
    resp = await client.post(
        "/api/v1/contracts/contract-1/status",
        json={"status": "legal_review"},
        headers=ADMIN,
    )
    assert resp.status_code == 409
    assert resp.json()["rejection"]["kind"] == "invalid_state"


@pytest.mark.asyncio
async def test_amendment_round_trip(client, make_contract):
    """Start an amendment, jump to counterparty and complete it."""
    await _create(
        client,
        make_contract(
            status="implementation",
            legal=[record(LEGAL_EMAIL, approved=True)],
            management=[record(MANAGER_EMAIL, approved=True)],
        ),
    )

    resp = await client.post("/api/v1/contracts/contract-1/amendment", headers=ADMIN)
    assert resp.status_code == 200
    contract = resp.json()["contract"]
    assert contract["status"] == "amendment"
    assert contract["amendmentStage"] == "amendment"
    assert contract["originalStatus"] == "implementation"

    resp = await client.post(
        "/api/v1/contracts/contract-1/amendment/stage",
        json={"stage": "counterparty"},
        headers=ADMIN,
    )
    assert resp.json()["contract"]["amendmentStage"] == "counterparty"

    resp = await client.post(
        "/api/v1/contracts/contract-1/amendment/complete", headers=ADMIN
    )
    assert resp.status_code == 200
    contract = resp.json()["contract"]
    assert contract["status"] == "implementation"
    assert contract["isAmended"] is False


@pytest.mark.asyncio
async def test_work_queues(client):
    for document in SAMPLE_CONTRACTS.values():
        await _create(client, document)

    resp = await client.get("/api/v1/queues", headers=MANAGER)
    assert resp.status_code == 200
    data = resp.json()
    assert data["awaitingCount"] == 1
    assert [c["id"] for c in data["awaiting"]] == ["c-lease-003"]

    resp = await client.get("/api/v1/queues/approved", headers=LEGAL)
    assert resp.json()["total"] == 3


@pytest.mark.asyncio
async def test_event_history(client, make_contract):
    await _create(client, make_contract(status="legal_review", legal=[record(LEGAL_EMAIL)]))
    await client.post(
        "/api/v1/contracts/contract-1/decisions",
        json={"role": "legal", "verb": "send_back"},
        headers=LEGAL,
    )
    resp = await client.get("/api/v1/contracts/contract-1/events")
    assert resp.status_code == 200
    types = [e["event_type"] for e in resp.json()["events"]]
    assert types[:2] == ["action_applied", "status_changed"]


@pytest.mark.asyncio
async def test_maintenance_repair(client):
    for document in SAMPLE_CONTRACTS.values():
        await _create(client, document)

    resp = await client.get("/api/v1/maintenance/inconsistent", headers=LEGAL)
    assert resp.status_code == 403

    resp = await client.get("/api/v1/maintenance/inconsistent", headers=ADMIN)
    assert set(resp.json()["contract_ids"]) == {"c-data-002", "c-lease-003"}

    resp = await client.post("/api/v1/maintenance/repair", headers=ADMIN)
    assert resp.json()["total"] == 2

    resp = await client.get("/api/v1/maintenance/inconsistent", headers=ADMIN)
    assert resp.json()["total"] == 0
