"""FastAPI application for the contract approvals service.

Exposes REST endpoints for:
- Contract creation and retrieval
- Approver assignment and removal
- Approve / send back / withdraw
- Admin status changes and the amendment workflow
- Per-actor work queues
- SSE streaming of applied actions
- Approver data repair

The acting user is read from the ``X-Actor-Email``, ``X-Actor-Name`` and
``X-Actor-Roles`` headers (roles: comma separated ``admin``, ``legal``,
``management``, ``approver``). Authentication is out of scope.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sse_starlette.sse import EventSourceResponse

from contract_approvals.common import ErrorResponse, HealthResponse
from contract_approvals.config import Settings
from contract_approvals.errors import (
    ContractAlreadyExists,
    ContractNotFound,
    InvalidContractData,
    RejectionKind,
)
from contract_approvals.flow.approval_machine import ApprovalStateMachine
from contract_approvals.flow.state import ActionKind, ActionOutcome, ApprovalAction
from contract_approvals.mock_data.contracts import SAMPLE_CONTRACTS
from contract_approvals.models import (
    Actor,
    AmendmentStage,
    ApprovalRole,
    ApprovalVerb,
    ContractStatus,
    CustomTimelineEntry,
    TeamMember,
)
from contract_approvals.notifications import LoggingNotificationSink, NotificationDispatcher
from contract_approvals.service import ApprovalService
from contract_approvals.store import InMemoryContractStore
from contract_approvals.streaming import ContractEventStream

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ActionRequest(BaseModel):
    """Fields shared by every mutating request."""

    expected_updated_at: datetime | None = Field(
        None,
        alias="expectedUpdatedAt",
        description="The updatedAt value the client last saw.",
    )
    custom_entry: CustomTimelineEntry | None = Field(
        None, alias="customEntry", description="Replaces the generated timeline text."
    )

    model_config = ConfigDict(populate_by_name=True)


class AssignRequest(ActionRequest):
    email: str = Field(..., min_length=3)
    display_name: str = Field("", alias="displayName")


class DecisionRequest(ActionRequest):
    role: ApprovalRole
    verb: ApprovalVerb


class StatusRequest(ActionRequest):
    status: ContractStatus


class StageRequest(ActionRequest):
    stage: AmendmentStage


# ---------------------------------------------------------------------------
# Application state container
# ---------------------------------------------------------------------------


class AppState:
    """Shared application state accessible from route handlers."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = InMemoryContractStore()
        self.event_stream = ContractEventStream()
        self.sink = LoggingNotificationSink(settings.app_url)
        self.service = ApprovalService(
            store=self.store,
            machine=ApprovalStateMachine(settings.approver_limits()),
            dispatcher=NotificationDispatcher(self.sink, settings.admin_email),
            event_stream=self.event_stream,
        )


_ROLE_FLAGS = {
    "admin": "is_admin",
    "legal": "is_legal_team",
    "management": "is_management_team",
    "approver": "is_approver",
}


def get_actor(
    x_actor_email: str | None = Header(None),
    x_actor_name: str = Header(""),
    x_actor_roles: str = Header(""),
) -> Actor:
    """Build the :class:`Actor` from request headers."""
    if not x_actor_email:
        raise HTTPException(status_code=401, detail="X-Actor-Email header is required")
    roles = {r.strip().lower() for r in x_actor_roles.split(",") if r.strip()}
    unknown = roles - set(_ROLE_FLAGS)
    if unknown:
        raise HTTPException(
            status_code=400, detail=f"Unknown roles: {', '.join(sorted(unknown))}"
        )
    flags = {_ROLE_FLAGS[r]: True for r in roles}
    return Actor(email=x_actor_email, name=x_actor_name, **flags)


def outcome_response(outcome: ActionOutcome) -> JSONResponse:
    """Translate an outcome into an HTTP response.

    Applied and silent outcomes return 200, ``not_permitted`` 403 and every
    other rejection 409.
    """
    body: dict[str, Any] = {
        "applied": outcome.applied,
        "action": outcome.action.value,
        "stale": outcome.stale,
        "events": [e.value for e in outcome.events],
        "contract": outcome.contract.to_persisted(),
    }
    status_code = 200
    rejection = outcome.rejection
    if rejection is not None:
        body["rejection"] = rejection.model_dump(mode="json")
        if rejection.kind == RejectionKind.NOT_PERMITTED:
            status_code = 403
        elif not rejection.silent:
            status_code = 409
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    state = AppState(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.seed_sample_data:
            for document in SAMPLE_CONTRACTS.values():
                await state.store.create(document)
            logger.info("sample_contracts_seeded", count=len(SAMPLE_CONTRACTS))
        yield

    app = FastAPI(
        title="Contract Approvals",
        description=(
            "Multi-party contract approval: legal, management and final "
            "approver review stages plus the amendment sub-workflow."
        ),
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared state
    app.state.app_state = state
    app.state.settings = settings
    service = state.service

    async def run(
        contract_id: str, action: ApprovalAction, req: ActionRequest
    ) -> JSONResponse:
        action.custom_entry = req.custom_entry
        outcome = await service.perform(contract_id, action, req.expected_updated_at)
        return outcome_response(outcome)

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=settings.service_version,
        )

    # -------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts", status_code=201, tags=["contracts"])
    async def create_contract(
        document: dict[str, Any], actor: Actor = Depends(get_actor)
    ) -> dict[str, Any]:
        """Store a new contract document (legacy shapes are accepted)."""
        document.setdefault("owner", actor.email)
        contract = await service.create(document)
        return contract.to_persisted()

    @app.get("/api/v1/contracts", tags=["contracts"])
    async def list_contracts() -> dict[str, Any]:
        """List all readable contracts."""
        contracts = await service.list_contracts()
        return {
            "contracts": [c.to_persisted() for c in contracts],
            "total": len(contracts),
        }

    @app.get("/api/v1/contracts/{contract_id}", tags=["contracts"])
    async def get_contract(contract_id: str) -> dict[str, Any]:
        """Get a contract in its normalized shape."""
        contract = await service.get(contract_id)
        return contract.to_persisted()

    # -------------------------------------------------------------------
    # Approvers
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts/{contract_id}/approvers/{role}", tags=["approvers"])
    async def assign_approver(
        contract_id: str,
        role: ApprovalRole,
        req: AssignRequest,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Assign a team member to a role slot (admin only)."""
        action = ApprovalAction(
            kind=ActionKind.ASSIGN,
            actor=actor,
            role=role,
            member=TeamMember(email=req.email, display_name=req.display_name),
        )
        return await run(contract_id, action, req)

    @app.delete(
        "/api/v1/contracts/{contract_id}/approvers/{role}/{email}", tags=["approvers"]
    )
    async def remove_approver(
        contract_id: str,
        role: ApprovalRole,
        email: str,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Remove a team member from a role slot (admin only)."""
        action = ApprovalAction(
            kind=ActionKind.REMOVE, actor=actor, role=role, email=email
        )
        return await run(contract_id, action, ActionRequest())

    @app.post("/api/v1/contracts/{contract_id}/decisions", tags=["approval"])
    async def decide(
        contract_id: str,
        req: DecisionRequest,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Approve, send back, or withdraw the actor's response in a role."""
        action = ApprovalAction(
            kind=ActionKind(req.verb.value), actor=actor, role=req.role
        )
        return await run(contract_id, action, req)

    # -------------------------------------------------------------------
    # Status and amendment
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts/{contract_id}/status", tags=["status"])
    async def change_status(
        contract_id: str,
        req: StatusRequest,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Admin-driven status change."""
        action = ApprovalAction(
            kind=ActionKind.CHANGE_STATUS, actor=actor, status=req.status
        )
        return await run(contract_id, action, req)

    @app.post("/api/v1/contracts/{contract_id}/amendment", tags=["amendment"])
    async def start_amendment(
        contract_id: str,
        req: ActionRequest | None = None,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Enter the amendment workflow."""
        action = ApprovalAction(kind=ActionKind.START_AMENDMENT, actor=actor)
        return await run(contract_id, action, req or ActionRequest())

    @app.post("/api/v1/contracts/{contract_id}/amendment/stage", tags=["amendment"])
    async def change_stage(
        contract_id: str,
        req: StageRequest,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Override the amendment stage."""
        action = ApprovalAction(
            kind=ActionKind.CHANGE_STAGE, actor=actor, stage=req.stage
        )
        return await run(contract_id, action, req)

    @app.post(
        "/api/v1/contracts/{contract_id}/amendment/complete", tags=["amendment"]
    )
    async def complete_amendment(
        contract_id: str,
        req: ActionRequest | None = None,
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Leave the amendment workflow and restore the original status."""
        action = ApprovalAction(kind=ActionKind.COMPLETE_AMENDMENT, actor=actor)
        return await run(contract_id, action, req or ActionRequest())

    # -------------------------------------------------------------------
    # Work queues
    # -------------------------------------------------------------------

    @app.get("/api/v1/queues", tags=["queues"])
    async def work_queues(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        """Contracts awaiting the actor's response and those already answered."""
        queues = await service.work_queues(actor)
        return {
            "awaiting": [c.to_persisted() for c in queues.awaiting],
            "responded": [c.to_persisted() for c in queues.responded],
            "awaitingCount": queues.awaiting_count,
        }

    @app.get("/api/v1/queues/approved", tags=["queues"])
    async def approved(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        """Contracts the actor has approved."""
        contracts = await service.approved_by(actor)
        return {
            "contracts": [c.to_persisted() for c in contracts],
            "total": len(contracts),
        }

    # -------------------------------------------------------------------
    # SSE streaming
    # -------------------------------------------------------------------

    @app.get("/api/v1/contracts/{contract_id}/stream", tags=["contracts"])
    async def stream_contract(contract_id: str) -> EventSourceResponse:
        """SSE stream of applied actions on a contract."""
        await service.get(contract_id)

        async def event_generator():  # type: ignore[no-untyped-def]
            async for event in state.event_stream.subscribe(contract_id):
                yield {
                    "event": event.event_type,
                    "data": json.dumps(event.model_dump(), default=str),
                }

        return EventSourceResponse(event_generator())

    @app.get("/api/v1/contracts/{contract_id}/events", tags=["contracts"])
    async def contract_events(contract_id: str) -> dict[str, Any]:
        """Retained event history for a contract."""
        await service.get(contract_id)
        events = state.event_stream.get_history(contract_id)
        return {
            "events": [e.model_dump(mode="json") for e in events],
            "total": len(events),
        }

    # -------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------

    @app.get("/api/v1/maintenance/inconsistent", tags=["maintenance"])
    async def inconsistent(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        """Ids of contracts whose approver data needs repair."""
        if not actor.is_admin:
            raise HTTPException(status_code=403, detail="Admin role required")
        ids = await service.find_inconsistent()
        return {"contract_ids": ids, "total": len(ids)}

    @app.post("/api/v1/maintenance/repair", tags=["maintenance"])
    async def repair(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        """Rewrite inconsistent approver data."""
        if not actor.is_admin:
            raise HTTPException(status_code=403, detail="Admin role required")
        ids = await service.repair_all()
        return {"repaired": ids, "total": len(ids)}

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(ContractNotFound)
    async def not_found_handler(
        request: Request, exc: ContractNotFound
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(
                error="Contract not found", detail=str(exc), status_code=404
            ).model_dump(),
        )

    @app.exception_handler(ContractAlreadyExists)
    async def conflict_handler(
        request: Request, exc: ContractAlreadyExists
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(
                error="Contract already exists", detail=str(exc), status_code=409
            ).model_dump(),
        )

    @app.exception_handler(InvalidContractData)
    async def invalid_data_handler(
        request: Request, exc: InvalidContractData
    ) -> JSONResponse:
        logger.warning("invalid_contract_data", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="Invalid contract data", detail=str(exc), status_code=422
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all error handler."""
        logger.error(
            "unhandled_exception", error=str(exc), path=request.url.path
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc),
                status_code=500,
            ).model_dump(),
        )

    return app
