"""
Validator - deterministic structural checks over a review record.

Judges form, never truth. Every function here is pure: the same record and policy
always produce the same answer, and nothing is read from global state.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .config import REQUIRED_METADATA_FIELDS, ReviewPolicy
from .errors import EscalationRequired, IncompleteIntake, MissingApproval, MissingField, UnresolvedClaims
from .schema import ReviewRecord, ReviewerRole


@dataclass(frozen=True)
class MetadataReport:
    passed: bool
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"passed": self.passed, "missing_fields": list(self.missing_fields)}


def _field_missing(record: ReviewRecord, name: str) -> bool:
    value = getattr(record, name, None)
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def check_metadata_complete(record: ReviewRecord, policy: Optional[ReviewPolicy] = None,
                            exclude: Optional[List[str]] = None) -> MetadataReport:
    """Report which required metadata fields are missing, in declaration order."""
    required = policy.required_fields if policy else REQUIRED_METADATA_FIELDS
    skipped = set(exclude or [])
    missing = [name for name in required if name not in skipped and _field_missing(record, name)]
    return MetadataReport(passed=not missing, missing_fields=missing)


def require_metadata(record: ReviewRecord, policy: Optional[ReviewPolicy] = None,
                     exclude: Optional[List[str]] = None) -> MetadataReport:
    """Raising form of check_metadata_complete."""
    report = check_metadata_complete(record, policy, exclude)
    if not report.passed:
        raise MissingField(report.missing_fields)
    return report


def intake_missing(record: ReviewRecord) -> List[str]:
    """Intake declarations still absent: the AI assistance flag and at least one source."""
    missing = []
    if record.ai_generated is None:
        missing.append("ai_generated")
    if not record.sources:
        missing.append("sources")
    return missing


def check_intake(record: ReviewRecord) -> None:
    missing = intake_missing(record)
    if missing:
        raise IncompleteIntake(missing)


def unresolved_claims(record: ReviewRecord) -> List[str]:
    return [c.claim_id for c in record.claims if not c.status.resolved]


def check_claims_resolved(record: ReviewRecord) -> None:
    """Raise UnresolvedClaims if any claim is still unclear or incorrect."""
    pending = unresolved_claims(record)
    if pending:
        raise UnresolvedClaims(pending)


def missing_approvals(record: ReviewRecord) -> List[str]:
    approved = set(record.approved_roles)
    return [role.value for role in (ReviewerRole.EDITOR, ReviewerRole.SME) if role not in approved]


def check_approvals(record: ReviewRecord) -> None:
    """Raise MissingApproval naming every role that has not signed off."""
    missing = missing_approvals(record)
    if missing:
        raise MissingApproval(missing)


def unescalated_claims(record: ReviewRecord) -> List[str]:
    """P0/P1 claims that have not been explicitly escalated to SME verification."""
    return [
        c.claim_id for c in record.claims
        if c.severity is not None and c.severity.requires_escalation and not c.escalated
    ]


def check_escalations(record: ReviewRecord) -> None:
    """Raise EscalationRequired while a P0/P1 claim is unescalated."""
    pending = unescalated_claims(record)
    if pending:
        raise EscalationRequired(pending)
