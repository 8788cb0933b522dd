"""
SLA tests - severity deadlines and overdue reporting.
"""

from datetime import date, datetime, timedelta

from reviewgate.core.config import ReviewPolicy
from reviewgate.core.schema import ReviewRecord, RiskLevel, WorkflowState
from reviewgate.core.sla import (
    add_business_days,
    compute_deadline,
    is_overdue,
    next_cycle_boundary,
    overdue_records,
)

POLICY = ReviewPolicy()


def test_p0_deadline_in_hours():
    set_at = datetime(2024, 3, 6, 9, 30)  # Wednesday
    assert compute_deadline(RiskLevel.P0, set_at, POLICY) == datetime(2024, 3, 7, 9, 30)


def test_p0_hours_follow_policy():
    policy = ReviewPolicy(sla_p0_hours=4)
    set_at = datetime(2024, 3, 6, 9, 30)
    assert compute_deadline(RiskLevel.P0, set_at, policy) == datetime(2024, 3, 6, 13, 30)


def test_p1_skips_weekend():
    set_at = datetime(2024, 3, 8, 17, 0)  # Friday
    assert compute_deadline(RiskLevel.P1, set_at, POLICY) == datetime(2024, 3, 13, 17, 0)


def test_add_business_days_from_saturday():
    assert add_business_days(datetime(2024, 3, 9, 10, 0), 1) == datetime(2024, 3, 11, 10, 0)


def test_lower_severities_wait_for_cycle_boundary():
    set_at = datetime(2024, 1, 3, 12, 0)
    expected = datetime(2024, 1, 15)

    assert compute_deadline(RiskLevel.P2, set_at, POLICY) == expected
    assert compute_deadline(RiskLevel.P3, set_at, POLICY) == expected


def test_cycle_boundary_is_strictly_after():
    assert next_cycle_boundary(datetime(2024, 1, 15), POLICY) == datetime(2024, 1, 29)
    assert next_cycle_boundary(datetime(2023, 12, 1), POLICY) == datetime(2024, 1, 1)


def test_cycle_length_and_anchor_follow_policy():
    policy = ReviewPolicy(review_cycle_days=7, review_cycle_anchor=date(2024, 1, 4))
    assert next_cycle_boundary(datetime(2024, 1, 10, 8, 0), policy) == datetime(2024, 1, 11)


def test_overdue_ordering_and_closed_states():
    now = datetime(2024, 6, 1, 12, 0)
    late = ReviewRecord(content_id="late", sla_deadline=now - timedelta(hours=1))
    later = ReviewRecord(content_id="later", sla_deadline=now - timedelta(days=2))
    on_time = ReviewRecord(content_id="on_time", sla_deadline=now + timedelta(hours=1))
    shipped = ReviewRecord(content_id="shipped", sla_deadline=now - timedelta(days=5),
                           state=WorkflowState.PUBLISHED)
    unrated = ReviewRecord(content_id="unrated")

    assert is_overdue(late, now) is True
    assert is_overdue(shipped, now) is False
    assert is_overdue(unrated, now) is False
    assert [r.content_id for r in overdue_records([late, later, on_time, shipped, unrated], now)] == ["later", "late"]
