"""Test fixtures for the contract approvals service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "testing")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for key in ("ADMIN_EMAIL", "SEED_SAMPLE_DATA"):
        monkeypatch.delenv(key, raising=False)


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def settings():
    """Create test settings."""
    from contract_approvals.config import Settings

    return Settings(
        environment="testing",
        log_level="DEBUG",
        admin_email="admin@example.com",
    )


@pytest.fixture()
def app(settings):
    """Create a test FastAPI application."""
    from contract_approvals.api import create_app

    return create_app(settings)


@pytest.fixture()
def client(app):
    """Create an async test client."""
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture()
def machine(clock):
    from contract_approvals.flow.approval_machine import ApprovalStateMachine

    return ApprovalStateMachine(clock=clock)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

LEGAL_EMAIL = "lena.legal@example.com"
MANAGER_EMAIL = "max.manager@example.com"
APPROVER_EMAIL = "fiona.final@example.com"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture()
def admin():
    from contract_approvals.models import Actor

    return Actor(email=ADMIN_EMAIL, name="Ada Admin", is_admin=True)


@pytest.fixture()
def legal():
    from contract_approvals.models import Actor

    return Actor(email=LEGAL_EMAIL, name="Lena Legal", is_legal_team=True)


@pytest.fixture()
def manager():
    from contract_approvals.models import Actor

    return Actor(email=MANAGER_EMAIL, name="Max Manager", is_management_team=True)


@pytest.fixture()
def final_approver():
    from contract_approvals.models import Actor

    return Actor(email=APPROVER_EMAIL, name="Fiona Final", is_approver=True)


# ---------------------------------------------------------------------------
# Contract documents
# ---------------------------------------------------------------------------


def record(
    email: str, approved: bool = False, declined: bool = False, name: str = ""
) -> dict[str, Any]:
    """A persisted approver record."""
    out: dict[str, Any] = {"email": email, "name": name, "approved": approved, "declined": declined}
    if approved:
        out["approvedAt"] = "2025-01-01T08:00:00+00:00"
    if declined:
        out["declinedAt"] = "2025-01-01T08:00:00+00:00"
    return out


@pytest.fixture()
def make_contract():
    """Build a persisted contract document.

    Slots are given as lists of ``record(...)`` dicts; ``None`` leaves the
    slot out of the document entirely.
    """

    def _make(
        status: str = "draft",
        legal: list[dict[str, Any]] | None = None,
        management: list[dict[str, Any]] | None = None,
        approver: list[dict[str, Any]] | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        approvers: dict[str, Any] = {}
        for key, value in (("legal", legal), ("management", management), ("approver", approver)):
            if value is not None:
                approvers[key] = value
        doc: dict[str, Any] = {
            "id": "contract-1",
            "title": "Cloud Hosting Agreement",
            "projectName": "Platform Migration",
            "owner": "requester@example.com",
            "status": status,
            "approvers": approvers,
            "timeline": [],
            "createdAt": "2025-01-01T08:00:00+00:00",
            "updatedAt": "2025-01-01T08:00:00+00:00",
        }
        doc.update(extra)
        return doc

    return _make
