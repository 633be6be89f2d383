"""Approver normalization and repair.

Persisted contracts come in several historical shapes: ``legal`` and
``management`` may hold a bare approver object instead of a list, older
records use ``sentBack``/``sentBackAt`` instead of ``declined``/``declinedAt``,
flags were sometimes stored as the strings ``"true"``/``"false"``, and early
amendments used a ``management`` stage that is now called ``legal``.

``normalize`` upconverts the shape; ``repair_*`` heals the flag values. Both
are pure and never write back the bare-object shape.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from contract_approvals.errors import InvalidContractData
from contract_approvals.models import ApprovalRole, ApproverSet, Contract

logger = structlog.get_logger(__name__)

_LEGACY_APPROVER_KEYS = {
    "sentBack": "declined",
    "sent_back": "declined",
    "sentBackAt": "declinedAt",
    "sent_back_at": "declinedAt",
}

_LEGACY_STAGES = {"management": "legal"}

_FLAGS = ("approved", "declined")


def _as_records(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, Mapping):
        return [dict(value)]
    if isinstance(value, (list, tuple)):
        return [dict(item) for item in value if isinstance(item, Mapping)]
    raise InvalidContractData(f"Unsupported approver slot value: {value!r}")


def _canonical_record(record: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(record)
    for legacy, canonical in _LEGACY_APPROVER_KEYS.items():
        if legacy in out:
            value = out.pop(legacy)
            out.setdefault(canonical, value)
    for flag in _FLAGS:
        if out.get(flag) is None:
            out.pop(flag, None)
    return out


def normalize_approvers(approvers: Any) -> dict[str, list[dict[str, Any]]]:
    """Return ``{legal: [...], management: [...], approver: [...]}``."""
    if approvers is None:
        approvers = {}
    if isinstance(approvers, ApproverSet):
        approvers = approvers.model_dump(by_alias=True)
    if not isinstance(approvers, Mapping):
        raise InvalidContractData(f"Unsupported approvers value: {approvers!r}")
    return {
        role.value: [_canonical_record(r) for r in _as_records(approvers.get(role.value))]
        for role in ApprovalRole
    }


def normalize(contract: Contract | Mapping[str, Any]) -> Contract:
    """Convert a persisted contract into the canonical :class:`Contract`.

    Idempotent: ``normalize(normalize(x)) == normalize(x)``.

    Raises:
        InvalidContractData: If the document cannot be read as a contract.
    """
    if isinstance(contract, Contract):
        return contract.model_copy(deep=True)

    data = dict(contract)
    data["approvers"] = normalize_approvers(data.get("approvers"))

    for key in ("amendmentStage", "amendment_stage"):
        stage = data.get(key)
        if isinstance(stage, str) and stage in _LEGACY_STAGES:
            data[key] = _LEGACY_STAGES[stage]

    try:
        return Contract.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "contract_normalization_failed",
            contract_id=data.get("id"),
            errors=exc.error_count(),
        )
        raise InvalidContractData(str(exc)) from exc


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


def _repair_record(record: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(record)
    for flag in _FLAGS:
        if isinstance(out.get(flag), str):
            out[flag] = out[flag].strip().lower() == "true"
    if out.get("approved") is True and out.get("declined") in (True, None):
        out["declined"] = False
        out["declinedAt"] = None
    return out


def repair_approvers(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Heal historically corrupted approver records.

    String flags are cast to booleans; an approved record whose ``declined``
    flag is true or missing gets ``declined=False, declinedAt=None``.
    """
    return [_repair_record(r) for r in records]


def repair_contract(document: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Repair every approver slot of a persisted contract.

    The slot shape (bare object or list) is preserved so the result can be
    written back as-is. Returns the repaired copy and whether anything changed.
    """
    repaired = copy.deepcopy(dict(document))
    approvers = repaired.get("approvers")
    if not isinstance(approvers, Mapping):
        return repaired, False

    fixed: dict[str, Any] = dict(approvers)
    for role in ApprovalRole:
        value = approvers.get(role.value)
        if isinstance(value, Mapping):
            fixed[role.value] = _repair_record(value)
        elif isinstance(value, list):
            fixed[role.value] = [
                _repair_record(r) if isinstance(r, Mapping) else r for r in value
            ]
    repaired["approvers"] = fixed
    return repaired, fixed != dict(approvers)


def repair_approver_set(approvers: ApproverSet) -> ApproverSet:
    """Model-level repair for values that were built without going through storage."""
    data = {
        role.value: repair_approvers(
            r.model_dump(by_alias=True) for r in approvers.slot(role)
        )
        for role in ApprovalRole
    }
    return ApproverSet.model_validate(data)


def load_contract(document: Contract | Mapping[str, Any]) -> Contract:
    """Repair then normalize; the entry point every rule evaluation goes through."""
    if isinstance(document, Contract):
        return document.model_copy(
            update={"approvers": repair_approver_set(document.approvers)}, deep=True
        )
    repaired, _ = repair_contract(document)
    return normalize(repaired)


def find_inconsistent(documents: Iterable[Mapping[str, Any]]) -> list[str]:
    """Return ids of persisted contracts whose approver data needs repair."""
    ids: list[str] = []
    for document in documents:
        _, changed = repair_contract(document)
        if changed:
            ids.append(str(document.get("id")))
    return ids
