"""
Severity to SLA mapping. Deadlines are advisory metadata on a record; nothing is preempted when they pass.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from .config import ReviewPolicy
from .schema import ReviewRecord, RiskLevel, WorkflowState

# States where a fix is no longer pending
CLOSED_STATES = {WorkflowState.PUBLISHED, WorkflowState.POST_MERGE_LOGGED}


def add_business_days(start: datetime, days: int) -> datetime:
    """Move forward by whole business days, skipping Saturdays and Sundays."""
    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


def next_cycle_boundary(start: datetime, policy: ReviewPolicy) -> datetime:
    """Start of the first scheduled review cycle strictly after start."""
    anchor = datetime.combine(policy.review_cycle_anchor, datetime.min.time())
    if start < anchor:
        return anchor
    elapsed_cycles = (start - anchor).days // policy.review_cycle_days
    return anchor + timedelta(days=(elapsed_cycles + 1) * policy.review_cycle_days)


def compute_deadline(level: RiskLevel, set_at: datetime, policy: ReviewPolicy) -> datetime:
    """Deadline for fixing content of the given severity, counted from when it was set."""
    if level == RiskLevel.P0:
        return set_at + timedelta(hours=policy.sla_p0_hours)
    if level == RiskLevel.P1:
        return add_business_days(set_at, policy.sla_p1_business_days)
    return next_cycle_boundary(set_at, policy)


def is_overdue(record: ReviewRecord, now: Optional[datetime] = None) -> bool:
    if record.sla_deadline is None or record.state in CLOSED_STATES or record.archived:
        return False
    return (now or datetime.now()) > record.sla_deadline


def overdue_records(records: List[ReviewRecord], now: Optional[datetime] = None) -> List[ReviewRecord]:
    """Records whose advisory deadline has passed while still in review, most overdue first."""
    now = now or datetime.now()
    late = [r for r in records if is_overdue(r, now)]
    return sorted(late, key=lambda r: r.sla_deadline)
