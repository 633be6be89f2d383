"""Contract persistence.

The approval core never writes storage itself: it hands a
:class:`ContractPatch` to a :class:`ContractStore`. Documents are kept in
their persisted (camelCase, possibly legacy) shape; readers go through the
normalizer.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

import structlog

from contract_approvals.errors import ContractAlreadyExists, ContractNotFound
from contract_approvals.models import ContractPatch, apply_patch_to_document, utcnow

logger = structlog.get_logger(__name__)


class ContractStore(Protocol):
    """Persistence interface consumed by :class:`ApprovalService`."""

    async def load(self, contract_id: str) -> dict[str, Any]: ...

    async def save(self, contract_id: str, patch: ContractPatch) -> dict[str, Any]: ...

    async def list(self) -> list[dict[str, Any]]: ...

    async def create(self, document: dict[str, Any]) -> dict[str, Any]: ...

    async def replace(self, contract_id: str, document: dict[str, Any]) -> dict[str, Any]: ...


class InMemoryContractStore:
    """Dictionary-backed store; writes are serialized by an ``asyncio.Lock``.

    ``save`` applies the patch field by field, appends its timeline entry and
    bumps ``updatedAt``, so unrelated fields written by other clients are
    left untouched.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _get(self, contract_id: str) -> dict[str, Any]:
        document = self._documents.get(contract_id)
        if document is None:
            raise ContractNotFound(contract_id)
        return document

    def _stamp(self) -> str:
        return self._clock().isoformat()

    async def load(self, contract_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._get(contract_id))

    async def list(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._documents.values()]

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document, filling in id and timestamps when absent.

        Raises:
            ContractAlreadyExists: If the document's id is already stored.
        """
        doc = copy.deepcopy(document)
        if not doc.get("id"):
            doc["id"] = str(uuid.uuid4())
        now = self._stamp()
        doc.setdefault("createdAt", now)
        doc.setdefault("updatedAt", now)
        doc.setdefault("timeline", [])
        async with self._lock:
            if doc["id"] in self._documents:
                raise ContractAlreadyExists(doc["id"])
            self._documents[doc["id"]] = doc
        logger.info("contract_created", contract_id=doc["id"])
        return copy.deepcopy(doc)

    async def save(self, contract_id: str, patch: ContractPatch) -> dict[str, Any]:
        """Apply *patch* to the stored document.

        Raises:
            ContractNotFound: If *contract_id* is unknown.
        """
        async with self._lock:
            document = apply_patch_to_document(self._get(contract_id), patch)
            document["updatedAt"] = self._stamp()
            self._documents[contract_id] = document
        logger.debug(
            "contract_saved",
            contract_id=contract_id,
            fields=sorted(patch.changes()),
        )
        return copy.deepcopy(document)

    async def replace(self, contract_id: str, document: dict[str, Any]) -> dict[str, Any]:
        """Overwrite a stored document (maintenance repairs)."""
        async with self._lock:
            self._get(contract_id)
            doc = copy.deepcopy(document)
            doc["id"] = contract_id
            doc["updatedAt"] = self._stamp()
            self._documents[contract_id] = doc
        return copy.deepcopy(doc)
