"""
Record Store - durable keyed storage of review records and hallucination incidents.

Records are keyed by content id and review cycle. A content id has at most one open
(non-archived) record; once its record is archived a later reopen starts a new cycle.
Every mutation goes through RecordStore.update, which serializes writers per content id
and rejects stale writes with a version check.
"""

import copy
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Union

from util.logging import logger

from . import config
from .db import get_db, init_db
from .errors import (
    ConcurrentModification,
    DuplicateRecord,
    InvalidTransition,
    NotFound,
    RiskDowngradeRejected,
)
from .schema import (
    ALLOWED_TRANSITIONS,
    GATED_STATES,
    HallucinationIncident,
    ReviewRecord,
    WorkflowState,
)
from .validator import check_approvals, check_claims_resolved, check_escalations, check_intake

Mutation = Union[Callable[[ReviewRecord], None], Dict[str, object]]

# Fields a mutation may never touch; the store owns them
PROTECTED_FIELDS = {"content_id", "cycle", "version", "created_at", "updated_at", "archived"}

# States a record may be created in: fresh intake, or reopened for correction after an incident
CREATABLE_STATES = {WorkflowState.INTAKE, WorkflowState.CORRECTION}

# Edge conditions decidable from the record alone; policy-driven checks stay in the workflow engine
EDGE_CHECKS: Dict[tuple, Callable[[ReviewRecord], None]] = {
    (WorkflowState.INTAKE, WorkflowState.AUTOMATED_CHECKS): check_intake,
    (WorkflowState.EDITORIAL_SCREENING, WorkflowState.SME_VERIFICATION): check_escalations,
    (WorkflowState.CORRECTION, WorkflowState.SME_VERIFICATION): check_claims_resolved,
    (WorkflowState.SME_VERIFICATION, WorkflowState.APPROVAL): check_claims_resolved,
}


class RecordStore:
    """SQLite-backed store of review records and incidents."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        init_db(self.db_path)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, content_id: str) -> Iterator[None]:
        """Hold the per-record lock; re-entrant for the owning thread."""
        with self._locks_guard:
            record_lock = self._locks.setdefault(content_id, threading.RLock())
        with record_lock:
            yield

    # Records

    def create(self, record: ReviewRecord) -> ReviewRecord:
        """Store a new record. Fails with DuplicateRecord if an open record exists."""
        if record.state not in CREATABLE_STATES:
            raise InvalidTransition("none", record.state.value, "records start at intake or correction")

        with self.lock(record.content_id):
            latest = self._latest(record.content_id)
            if latest is not None and not latest.archived:
                raise DuplicateRecord(record.content_id)

            stored = copy.deepcopy(record)
            stored.cycle = latest.cycle + 1 if latest else 1
            stored.version = 0
            stored.archived = False
            stored.created_at = stored.updated_at = datetime.now()

            with get_db(self.db_path) as conn:
                try:
                    conn.execute(
                        "INSERT INTO review_records (content_id, cycle, state, archived, version, document) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (stored.content_id, stored.cycle, stored.state.value, False, 0,
                         json.dumps(stored.to_dict()))
                    )
                    conn.commit()
                except sqlite3.IntegrityError:
                    raise DuplicateRecord(record.content_id)

        logger.log_record_operation("create", stored.content_id, stored.cycle)
        return stored

    def get(self, content_id: str) -> ReviewRecord:
        """Get the latest review cycle of a content item."""
        record = self._latest(content_id)
        if record is None:
            raise NotFound(content_id)
        return record

    def get_cycle(self, content_id: str, cycle: int) -> ReviewRecord:
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM review_records WHERE content_id = ? AND cycle = ?",
                (content_id, cycle)
            ).fetchone()
        if row is None:
            raise NotFound(f"{content_id} (cycle {cycle})")
        return ReviewRecord.from_dict(json.loads(row[0]))

    def history(self, content_id: str) -> List[ReviewRecord]:
        """All review cycles of a content item, oldest first."""
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT document FROM review_records WHERE content_id = ? ORDER BY cycle",
                (content_id,)
            ).fetchall()
        return [ReviewRecord.from_dict(json.loads(row[0])) for row in rows]

    def list_records(self, state: Optional[WorkflowState] = None, include_archived: bool = True) -> List[ReviewRecord]:
        """List the latest cycle of every content item."""
        query = '''
            SELECT document FROM review_records r
            WHERE cycle = (SELECT MAX(cycle) FROM review_records WHERE content_id = r.content_id)
        '''
        params: list = []
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        if not include_archived:
            query += " AND archived = 0"
        query += " ORDER BY content_id"

        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [ReviewRecord.from_dict(json.loads(row[0])) for row in rows]

    def update(self, content_id: str, mutation: Mutation, expected_version: Optional[int] = None) -> ReviewRecord:
        """Apply a field-level mutation to the open record of a content item.

        Raises InvalidTransition when the mutation moves the state along an edge the
        workflow does not allow or touches an archived record, and ConcurrentModification
        when expected_version is stale.
        """
        with self.lock(content_id):
            current = self.get(content_id)
            if expected_version is not None and current.version != expected_version:
                raise ConcurrentModification(content_id, expected_version, current.version)
            if current.archived:
                raise InvalidTransition(current.state.value, current.state.value, "record is archived")

            updated = copy.deepcopy(current)
            _apply_mutation(updated, mutation)
            _restore_protected(current, updated)
            self._check_invariants(current, updated)
            return self._write(current, updated)

    def archive(self, content_id: str, mutation: Optional[Mutation] = None) -> ReviewRecord:
        """Mark the open record immutable, optionally applying a final mutation first.

        Fails with MissingApproval if editor and SME approvals are not both recorded.
        """
        with self.lock(content_id):
            current = self.get(content_id)
            if current.archived:
                raise InvalidTransition(current.state.value, current.state.value, "record is archived")

            updated = copy.deepcopy(current)
            if mutation is not None:
                _apply_mutation(updated, mutation)
                _restore_protected(current, updated)
            check_approvals(updated)
            self._check_invariants(current, updated)
            updated.archived = True
            archived = self._write(current, updated)

        logger.log_record_operation("archive", content_id, archived.cycle)
        return archived

    # Incidents

    def add_incident(self, incident: HallucinationIncident) -> HallucinationIncident:
        """Append an incident. The referenced record must exist."""
        self.get_cycle(incident.content_id, incident.record_cycle)

        with get_db(self.db_path) as conn:
            try:
                conn.execute(
                    "INSERT INTO incidents (incident_id, content_id, record_cycle, document) VALUES (?, ?, ?, ?)",
                    (incident.incident_id, incident.content_id, incident.record_cycle,
                     json.dumps(incident.to_dict()))
                )
                conn.commit()
            except sqlite3.IntegrityError:
                raise DuplicateRecord(incident.incident_id)

        logger.log_record_operation("incident_added", incident.content_id, incident.record_cycle)
        return incident

    def get_incident(self, incident_id: str) -> HallucinationIncident:
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM incidents WHERE incident_id = ?", (incident_id,)
            ).fetchone()
        if row is None:
            raise NotFound(incident_id, kind="incident")
        return HallucinationIncident.from_dict(json.loads(row[0]))

    def list_incidents(self, content_id: Optional[str] = None) -> List[HallucinationIncident]:
        query = "SELECT document FROM incidents"
        params: tuple = ()
        if content_id:
            query += " WHERE content_id = ?"
            params = (content_id,)
        query += " ORDER BY ts, incident_id"

        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [HallucinationIncident.from_dict(json.loads(row[0])) for row in rows]

    def count_records(self) -> int:
        with get_db(self.db_path) as conn:
            return conn.execute("SELECT COUNT(DISTINCT content_id) FROM review_records").fetchone()[0]

    # Internals

    def _latest(self, content_id: str) -> Optional[ReviewRecord]:
        if not content_id or not content_id.strip():
            return None
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM review_records WHERE content_id = ? ORDER BY cycle DESC LIMIT 1",
                (content_id.strip(),)
            ).fetchone()
        return ReviewRecord.from_dict(json.loads(row[0])) if row else None

    def _check_invariants(self, current: ReviewRecord, updated: ReviewRecord):
        if updated.state != current.state:
            if updated.state not in ALLOWED_TRANSITIONS[current.state]:
                raise InvalidTransition(current.state.value, updated.state.value, "transition not allowed")
            edge_check = EDGE_CHECKS.get((current.state, updated.state))
            if edge_check is not None:
                edge_check(updated)
        _check_risk_monotonic(current, updated)
        if updated.state in GATED_STATES:
            check_claims_resolved(updated)
        if updated.state == WorkflowState.PUBLISHED:
            check_approvals(updated)

    def _write(self, current: ReviewRecord, updated: ReviewRecord) -> ReviewRecord:
        updated.version = current.version + 1
        updated.updated_at = datetime.now()

        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE review_records SET state = ?, archived = ?, version = ?, document = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE content_id = ? AND cycle = ? AND version = ?",
                (updated.state.value, updated.archived, updated.version, json.dumps(updated.to_dict()),
                 current.content_id, current.cycle, current.version)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                latest = self._latest(current.content_id)
                raise ConcurrentModification(current.content_id, current.version,
                                             latest.version if latest else None)
            conn.commit()

        logger.log_record_operation("update", updated.content_id, updated.cycle)
        return updated


def _check_risk_monotonic(current: ReviewRecord, updated: ReviewRecord):
    """Within a cycle risk only goes down with a justified entry in risk_history."""
    before, after = current.risk_level, updated.risk_level
    if before is None or (after is not None and not before.is_downgrade_to(after)):
        return
    requested = after.value if after is not None else "none"
    added = updated.risk_history[len(current.risk_history):]
    if not added:
        raise RiskDowngradeRejected(before.value, requested)
    last = added[-1]
    if last.to_level != after or not last.justification or not last.justification.strip():
        raise RiskDowngradeRejected(before.value, requested)


def _apply_mutation(record: ReviewRecord, mutation: Mutation):
    if callable(mutation):
        mutation(record)
        return

    for name, value in mutation.items():
        if name in PROTECTED_FIELDS or not hasattr(record, name) or name in ("verified_by", "approved_roles"):
            raise ValueError(f"Field cannot be mutated: {name}")
        setattr(record, name, value)


def _restore_protected(current: ReviewRecord, updated: ReviewRecord):
    for name in PROTECTED_FIELDS:
        setattr(updated, name, getattr(current, name))
