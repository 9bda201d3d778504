"""
Drift detection and correction - keeps the vectors table and the in-memory
index consistent with the canonical items table.

Drift should never happen while every write goes through InventoryStore; a
finding here means a crash mid-write, a manual edit of the database file, or
an embedding model change.
"""

from dataclasses import dataclass
from typing import Any, Dict, List
import uuid

import numpy as np

from ..util.logging import logger
from .config import get_drift_ruleset
from .errors import ItemNotFound, StuffSearchError
from .ingestion import item_text

MISSING_VECTOR = "missing_vector"
ORPHANED_VECTOR = "orphaned_vector"
STALE_VECTOR = "stale_vector"
DIMENSION_MISMATCH = "dimension_mismatch"


@dataclass
class DriftFinding:
    """Represents a detected inconsistency between items and their vectors."""
    id: str
    type: str  # missing_vector, orphaned_vector, stale_vector, dimension_mismatch
    severity: str  # low, medium, high
    record_id: int
    details: Dict[str, Any]


@dataclass
class CorrectionAction:
    """Represents a corrective action to resolve drift."""
    type: str  # ADD_VECTOR, UPDATE_VECTOR, REMOVE_VECTOR
    record_id: int
    metadata: Dict[str, Any]


@dataclass
class CorrectionPlan:
    """A complete plan to resolve a drift finding."""
    id: str
    finding_id: str
    actions: List[CorrectionAction]
    preview: Dict[str, Any]


def detect_drift(store) -> List[DriftFinding]:
    """
    Compare the items table, the vectors table and the vector index.

    Rules:
    1. Item with no persisted vector or no index entry -> missing_vector
    2. Persisted vector or index entry with no item -> orphaned_vector
    3. Persisted vector of the wrong dimension -> dimension_mismatch
    4. Index entry that differs from the persisted vector -> stale_vector
    """
    index = store.index
    item_ids = set(store.item_ids())
    persisted = {item_id: (dim, vector) for item_id, dim, vector in store.iter_vectors()}
    indexed = set(index.ids())

    findings = []

    def add(kind: str, record_id: int, **details):
        finding = DriftFinding(
            id=str(uuid.uuid4()),
            type=kind,
            severity=_calculate_severity(kind),
            record_id=record_id,
            details=details,
        )
        logger.log_drift_finding(kind, finding.severity, record_id, details)
        findings.append(finding)

    for item_id in sorted(item_ids):
        if item_id not in persisted:
            add(MISSING_VECTOR, item_id, reason="Item has no persisted vector")
        elif item_id not in indexed and persisted[item_id][0] == index.dimension:
            add(MISSING_VECTOR, item_id, reason="Item vector is not loaded in the index")

    for record_id in sorted((set(persisted) | indexed) - item_ids):
        add(ORPHANED_VECTOR, record_id, reason="Vector entry has no owning item",
            persisted=record_id in persisted, indexed=record_id in indexed)

    for item_id in sorted(set(persisted) & item_ids):
        dim, vector = persisted[item_id]
        if dim != index.dimension or vector.shape[0] != index.dimension:
            add(DIMENSION_MISMATCH, item_id, reason="Persisted vector has the wrong dimension",
                dimension=int(vector.shape[0]), expected=index.dimension)
            continue

        loaded = index.get(item_id)
        if loaded is not None and not np.allclose(loaded, vector, atol=1e-5):
            add(STALE_VECTOR, item_id, reason="Index entry differs from the persisted vector")

    return findings


def _calculate_severity(drift_type: str) -> str:
    """Calculate severity based on drift type and ruleset configuration."""
    if get_drift_ruleset() == "strict":
        return "high"

    # Missing or wrong vectors hide items from search; orphans only cost space
    if drift_type in (MISSING_VECTOR, DIMENSION_MISMATCH):
        return "high"
    if drift_type == STALE_VECTOR:
        return "medium"
    return "low"


def create_correction_plan(finding: DriftFinding) -> CorrectionPlan:
    """Generate a correction plan for a drift finding."""
    if finding.type == MISSING_VECTOR:
        action_type, reason = "ADD_VECTOR", "Embed the item and add its vector"
    elif finding.type in (STALE_VECTOR, DIMENSION_MISMATCH):
        action_type, reason = "UPDATE_VECTOR", "Re-embed the item and replace its vector"
    elif finding.type == ORPHANED_VECTOR:
        action_type, reason = "REMOVE_VECTOR", "Remove the vector entry with no owning item"
    else:
        raise ValueError(f"Unknown drift type: {finding.type}")

    action = CorrectionAction(
        type=action_type,
        record_id=finding.record_id,
        metadata={"reason": reason, "finding_details": finding.details},
    )
    return CorrectionPlan(
        id=str(uuid.uuid4()),
        finding_id=finding.id,
        actions=[action],
        preview={
            "drift_type": finding.type,
            "severity": finding.severity,
            "affected_id": finding.record_id,
            "action_type": action.type,
        },
    )


def apply_correction(plan: CorrectionPlan, store, gateway) -> None:
    """Carry out a correction plan through the store's paired-write paths."""
    for action in plan.actions:
        if action.type == "REMOVE_VECTOR":
            store.drop_vector(action.record_id)
            continue

        item = store.get_item(action.record_id)
        if item is None:
            raise ItemNotFound(action.record_id)
        store.put_vector(item.id, gateway.embed(item_text(item.name, item.description)))

    logger.log_operation("drift.correction", "applied", {"plan_id": plan.id, "actions": len(plan.actions)})


def rebuild_index(store, gateway) -> Dict[str, int]:
    """
    Re-embed every item and replace all vectors, then drop orphans.

    Used after an embedding model change or when the vectors table is lost.
    An item whose embedding fails is counted and skipped; it stays visible
    to detect_drift until the next rebuild.
    """
    embedded = 0
    failed = 0

    for item in store.list_items():
        try:
            store.put_vector(item.id, gateway.embed(item_text(item.name, item.description)))
            embedded += 1
        except StuffSearchError as e:
            failed += 1
            logger.log_item_operation("rebuild", item.id, {"error": str(e)}, status="failed")

    removed = 0
    live = set(store.item_ids())
    for record_id in sorted({record_id for record_id, _, _ in store.iter_vectors()} | set(store.index.ids())):
        if record_id not in live:
            store.drop_vector(record_id)
            removed += 1

    summary = {"embedded": embedded, "failed": failed, "removed": removed}
    logger.log_operation("index.rebuild", "complete", summary)
    return summary
