"""SSE streaming manager for real-time contract approval updates.

The approval service publishes every applied outcome here; API endpoints
consume the per-contract stream via ``async for`` iteration.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator

import structlog
from pydantic import BaseModel, Field

from contract_approvals.flow.state import ActionOutcome
from contract_approvals.models import utcnow

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Canonical event type constants
# ---------------------------------------------------------------------------

EVENT_ACTION_APPLIED = "action_applied"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_AMENDMENT_STAGE_CHANGED = "amendment_stage_changed"
EVENT_STALE_WRITE = "stale_write"
EVENT_NOTIFICATIONS_SENT = "notifications_sent"


class ContractEvent(BaseModel):
    """A single event pushed to SSE subscribers."""

    event_type: str
    contract_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ContractEventStream:
    """In-memory pub/sub for contract approval SSE events.

    Each subscriber gets its own ``asyncio.Queue`` so that multiple SSE
    clients can consume a contract's events independently.
    """

    def __init__(self, max_queue_size: int = 256, max_history: int = 100) -> None:
        self._queues: dict[str, list[asyncio.Queue[ContractEvent | None]]] = {}
        self._max_queue_size = max_queue_size
        self._max_history = max_history
        self._history: dict[str, list[ContractEvent]] = {}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def emit(
        self,
        contract_id: str,
        event_type: str,
        data: dict[str, Any] | None = None,
        message: str = "",
    ) -> ContractEvent:
        """Push an event to all subscribers of *contract_id*.

        Returns the constructed :class:`ContractEvent` for convenience.
        """
        event = ContractEvent(
            event_type=event_type,
            contract_id=contract_id,
            data=data or {},
            message=message,
        )

        history = self._history.setdefault(contract_id, [])
        history.append(event)
        del history[: -self._max_history]

        queues = self._queues.get(contract_id, [])
        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "event_queue_full",
                    contract_id=contract_id,
                    event_type=event_type,
                )

        logger.debug(
            "event_emitted",
            contract_id=contract_id,
            event_type=event_type,
            subscribers=len(queues),
        )
        return event

    async def publish_outcome(self, outcome: ActionOutcome) -> list[ContractEvent]:
        """Emit the events describing an applied outcome."""
        contract = outcome.contract
        emitted = [
            await self.emit(
                outcome.contract_id,
                EVENT_ACTION_APPLIED,
                data={
                    "action": outcome.action.value,
                    "role": outcome.role.value if outcome.role else None,
                    "actor": outcome.actor_email,
                    "status": contract.status.value,
                    "events": [e.value for e in outcome.events],
                },
                message=contract.timeline[-1].action if contract.timeline else "",
            )
        ]
        if outcome.status_changed:
            emitted.append(
                await self.emit(
                    outcome.contract_id,
                    EVENT_STATUS_CHANGED,
                    data={
                        "from": outcome.previous_status.value,
                        "to": contract.status.value,
                    },
                )
            )
        if outcome.patch is not None and "amendment_stage" in outcome.patch.changes():
            stage = contract.amendment_stage
            emitted.append(
                await self.emit(
                    outcome.contract_id,
                    EVENT_AMENDMENT_STAGE_CHANGED,
                    data={"stage": stage.value if stage else None},
                )
            )
        if outcome.stale:
            emitted.append(
                await self.emit(
                    outcome.contract_id,
                    EVENT_STALE_WRITE,
                    message="Contract was updated by someone else.",
                )
            )
        return emitted

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------

    async def subscribe(
        self, contract_id: str, replay: bool = True
    ) -> AsyncIterator[ContractEvent]:
        """Yield events for *contract_id* as they arrive.

        The iterator terminates when ``close(contract_id)`` is called (which
        pushes ``None`` as a sentinel).
        """
        queue: asyncio.Queue[ContractEvent | None] = asyncio.Queue(
            maxsize=self._max_queue_size
        )
        self._queues.setdefault(contract_id, []).append(queue)

        # Replay history first so late joiners catch up
        if replay:
            for past_event in self._history.get(contract_id, []):
                yield past_event

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            contract_queues = self._queues.get(contract_id, [])
            if queue in contract_queues:
                contract_queues.remove(queue)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self, contract_id: str) -> None:
        """Signal all subscribers of *contract_id* to stop iterating."""
        for queue in self._queues.get(contract_id, []):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning("event_queue_full_on_close", contract_id=contract_id)
        self._queues.pop(contract_id, None)

    def get_history(self, contract_id: str) -> list[ContractEvent]:
        """Return the retained events for a contract."""
        return list(self._history.get(contract_id, []))
