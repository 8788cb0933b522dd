"""
Retention and SLA maintenance.

Prompt/retrieval context must stay addressable for the retention window after a record is
published. Purging only ever removes context whose window has fully elapsed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from util.logging import logger

from .audit import AuditLog, KIND_CONTEXT
from .config import ReviewPolicy
from .dao import RecordStore
from .errors import RetentionViolation
from .schema import ReviewRecord, WorkflowState
from .sla import overdue_records

# States in which the content is live; a reopen for correction stops the retention clock
PUBLISHED_STATES = {WorkflowState.PUBLISHED, WorkflowState.INCIDENT_LOGGED, WorkflowState.POST_MERGE_LOGGED}


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    recommendations: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.recommendations is None:
            self.recommendations = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "recommendations": self.recommendations,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def retention_expiry(record: ReviewRecord, policy: ReviewPolicy) -> Optional[datetime]:
    """When the record's context may be deleted; None while it is unpublished or reopened."""
    if record.published_at is None or record.state not in PUBLISHED_STATES:
        return None
    return record.published_at + timedelta(days=policy.retention_days)


def purge_context(store: RecordStore, audit: AuditLog, content_id: str, policy: ReviewPolicy,
                  now: Optional[datetime] = None) -> int:
    """Delete stored context for a content item whose retention window has elapsed.

    Raises RetentionViolation while the window is still open or the content is unpublished.
    """
    now = now or datetime.now()
    record = store.get(content_id)
    expires_at = retention_expiry(record, policy)
    if expires_at is None or now < expires_at:
        logger.log_retention("purge", "refused", {"content_id": content_id,
                                                  "expires_at": expires_at.isoformat() if expires_at else None})
        raise RetentionViolation(content_id, expires_at.isoformat() if expires_at else None)

    removed = audit.delete_context(content_id)
    logger.log_retention("purge", "success", {"content_id": content_id, "removed": removed})
    return removed


def purge_expired_context(store: RecordStore, audit: AuditLog, policy: ReviewPolicy,
                          now: Optional[datetime] = None) -> MaintenanceReport:
    """Purge context for every content item whose retention window has elapsed."""
    now = now or datetime.now()
    report = MaintenanceReport(operation="retention_purge", started_at=datetime.now())

    for record in store.list_records():
        expires_at = retention_expiry(record, policy)
        if expires_at is None or now < expires_at:
            continue
        removed = purge_context(store, audit, record.content_id, policy, now)
        if removed:
            report.issues_found += 1
            report.issues_resolved += 1
            report.actions_taken.append(f"purged {removed} context entries for {record.content_id}")

    report.metadata["retention_days"] = policy.retention_days
    report.completed_at = datetime.now()
    return report


def check_retention(store: RecordStore, audit: AuditLog, policy: ReviewPolicy,
                    now: Optional[datetime] = None) -> MaintenanceReport:
    """Report published content inside its retention window that has no stored context."""
    now = now or datetime.now()
    report = MaintenanceReport(operation="retention_check", started_at=datetime.now())

    retained = 0
    for record in store.list_records():
        expires_at = retention_expiry(record, policy)
        if expires_at is None or now >= expires_at:
            continue
        retained += 1
        if not audit.list_entries(record.content_id, kind=KIND_CONTEXT, limit=1):
            report.issues_found += 1
            report.recommendations.append(
                f"{record.content_id}: no prompt/retrieval context recorded (retained until {expires_at.isoformat()})"
            )

    report.metadata["records_in_window"] = retained
    report.completed_at = datetime.now()
    return report


def sla_report(store: RecordStore, now: Optional[datetime] = None) -> MaintenanceReport:
    """Report records past their advisory SLA deadline."""
    now = now or datetime.now()
    report = MaintenanceReport(operation="sla_report", started_at=datetime.now())

    for record in overdue_records(store.list_records(include_archived=False), now):
        report.issues_found += 1
        report.recommendations.append(
            f"{record.content_id} ({record.risk_level.value if record.risk_level else 'unrated'}, "
            f"{record.state.value}) was due {record.sla_deadline.isoformat()}"
        )

    report.completed_at = datetime.now()
    return report
