"""Approval service: load, decide, persist, notify.

Glues the pure state machine to a :class:`ContractStore`, the
:class:`NotificationDispatcher` and the SSE event stream. Actions on the same
contract are serialized; an action computed against an outdated snapshot is
re-applied to the fresh record and flagged ``stale`` instead of being lost.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime
from typing import Any

import structlog

from contract_approvals.eligibility import (
    WorkQueues,
    approved_by,
    build_work_queues,
)
from contract_approvals.errors import InvalidContractData
from contract_approvals.flow.approval_machine import ApprovalStateMachine
from contract_approvals.flow.normalizer import find_inconsistent, load_contract, repair_contract
from contract_approvals.flow.state import ActionOutcome, ApprovalAction
from contract_approvals.models import Actor, Contract
from contract_approvals.notifications import NotificationDispatcher
from contract_approvals.store import ContractStore
from contract_approvals.streaming import EVENT_NOTIFICATIONS_SENT, ContractEventStream

logger = structlog.get_logger(__name__)


class ApprovalService:
    """Run approval actions against stored contracts."""

    def __init__(
        self,
        store: ContractStore,
        machine: ApprovalStateMachine,
        dispatcher: NotificationDispatcher,
        event_stream: ContractEventStream | None = None,
    ) -> None:
        self.store = store
        self.machine = machine
        self.dispatcher = dispatcher
        self.event_stream = event_stream
        # Entries vanish once no task holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, contract_id: str) -> asyncio.Lock:
        lock = self._locks.get(contract_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[contract_id] = lock
        return lock

    async def perform(
        self,
        contract_id: str,
        action: ApprovalAction,
        expected_updated_at: datetime | None = None,
    ) -> ActionOutcome:
        """Execute *action* on the stored contract and persist the result.

        Args:
            contract_id: Id of the stored contract.
            action: The requested action.
            expected_updated_at: The ``updatedAt`` the caller last saw. When
                the stored value differs, the action still runs against the
                fresh record and the outcome is marked ``stale``.

        Returns:
            The outcome, with ``contract`` reflecting what was persisted.

        Raises:
            ContractNotFound: If the contract does not exist.
            InvalidContractData: If the stored document cannot be normalized.
        """
        async with self._lock_for(contract_id):
            contract = load_contract(await self.store.load(contract_id))
            stale = (
                expected_updated_at is not None
                and contract.updated_at != expected_updated_at
            )
            if stale:
                logger.warning(
                    "contract_changed_since_read",
                    contract_id=contract_id,
                    expected=expected_updated_at.isoformat(),
                    actual=contract.updated_at.isoformat() if contract.updated_at else None,
                )

            outcome = self.machine.execute(contract, action)
            if stale:
                outcome = outcome.model_copy(update={"stale": True})
            if not outcome.applied or outcome.patch is None:
                return outcome

            saved = await self.store.save(contract_id, outcome.patch)
            outcome = outcome.model_copy(update={"contract": load_contract(saved)})

        await self._after_commit(outcome)
        return outcome

    async def _after_commit(self, outcome: ActionOutcome) -> None:
        """Notify and publish; the patch is already saved, so nothing here may raise."""
        try:
            report = await self.dispatcher.dispatch(outcome)
        except Exception as exc:
            logger.exception(
                "notification_dispatch_failed",
                contract_id=outcome.contract_id,
                error=str(exc),
            )
            report = None

        if self.event_stream is None:
            return
        try:
            await self.event_stream.publish_outcome(outcome)
            if report is not None and report.requested:
                await self.event_stream.emit(
                    outcome.contract_id,
                    EVENT_NOTIFICATIONS_SENT,
                    data={
                        "requested": report.requested,
                        "delivered": report.delivered,
                        "failed": report.failed,
                    },
                )
        except Exception as exc:
            logger.exception(
                "event_publish_failed",
                contract_id=outcome.contract_id,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def create(self, document: dict[str, Any]) -> Contract:
        """Validate and store a new contract document."""
        contract = load_contract(document)
        stored = await self.store.create({**document, "status": contract.status.value})
        return load_contract(stored)

    async def get(self, contract_id: str) -> Contract:
        return load_contract(await self.store.load(contract_id))

    async def list_contracts(self) -> list[Contract]:
        """Every readable contract; unreadable documents are logged and skipped."""
        contracts: list[Contract] = []
        for document in await self.store.list():
            try:
                contracts.append(load_contract(document))
            except InvalidContractData as exc:
                logger.warning(
                    "contract_unreadable", contract_id=document.get("id"), error=str(exc)
                )
        return contracts

    async def work_queues(self, actor: Actor) -> WorkQueues:
        return build_work_queues(await self.list_contracts(), actor)

    async def awaiting_count(self, actor: Actor) -> int:
        return (await self.work_queues(actor)).awaiting_count

    async def approved_by(self, actor: Actor) -> list[Contract]:
        return approved_by(await self.list_contracts(), actor)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def find_inconsistent(self) -> list[str]:
        return find_inconsistent(await self.store.list())

    async def repair_all(self) -> list[str]:
        """Write back repaired approver data for every inconsistent contract.

        Returns:
            Ids of the contracts that were rewritten.
        """
        repaired_ids: list[str] = []
        for contract_id in find_inconsistent(await self.store.list()):
            async with self._lock_for(contract_id):
                # Repair the current record; the scan above may be outdated.
                repaired, changed = repair_contract(await self.store.load(contract_id))
                if not changed:
                    continue
                await self.store.replace(contract_id, repaired)
            repaired_ids.append(contract_id)
        logger.info("approver_repair_complete", repaired=len(repaired_ids))
        return repaired_ids
