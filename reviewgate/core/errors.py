"""
Review workflow error taxonomy.

Every error here means a human has to act before the record can move on.
None of them leaves the record in a changed state.
"""

from typing import Any, Dict, List, Optional


class ReviewError(Exception):
    """Base class for recoverable review workflow failures."""
    error_type = "REVIEW_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and audit entries."""
        data = {"error_type": self.error_type, "message": self.message}
        data.update(self.details)
        return data


class IncompleteIntake(ReviewError):
    error_type = "INCOMPLETE_INTAKE"

    def __init__(self, missing: List[str]):
        super().__init__(f"Intake incomplete, missing: {', '.join(missing)}", missing=list(missing))
        self.missing = list(missing)


class MissingField(ReviewError):
    error_type = "MISSING_FIELD"

    def __init__(self, fields: List[str]):
        super().__init__(f"Missing required metadata fields: {', '.join(fields)}", fields=list(fields))
        self.fields = list(fields)


class UnresolvedClaims(ReviewError):
    error_type = "UNRESOLVED_CLAIMS"

    def __init__(self, claims: List[str]):
        super().__init__(f"Unresolved claims: {', '.join(claims)}", claims=list(claims))
        self.claims = list(claims)


class MissingApproval(ReviewError):
    error_type = "MISSING_APPROVAL"

    def __init__(self, roles: List[str]):
        super().__init__(f"Missing approval from: {', '.join(roles)}", roles=list(roles))
        self.roles = list(roles)


class InvalidTransition(ReviewError):
    error_type = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str, reason: str = ""):
        message = f"Cannot move from {from_state} to {to_state}"
        if reason:
            message += f": {reason}"
        super().__init__(message, from_state=from_state, to_state=to_state, reason=reason)
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason


class ConcurrentModification(InvalidTransition):
    """Raised when a record changed underneath an update (stale version)."""
    error_type = "CONFLICT"

    def __init__(self, content_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            "version %s" % expected_version,
            "version %s" % actual_version,
            f"record {content_id} was modified concurrently",
        )
        self.details.update(content_id=content_id, expected_version=expected_version,
                            actual_version=actual_version)
        self.content_id = content_id


class DuplicateRecord(ReviewError):
    error_type = "DUPLICATE_RECORD"

    def __init__(self, content_id: str):
        super().__init__(f"An open review record already exists for {content_id}", content_id=content_id)
        self.content_id = content_id


class NotFound(ReviewError):
    error_type = "NOT_FOUND"

    def __init__(self, identifier: str, kind: str = "review record"):
        super().__init__(f"No {kind} found for {identifier}", identifier=identifier, kind=kind)
        self.identifier = identifier


class ChecksFailed(ReviewError):
    error_type = "CHECKS_FAILED"

    def __init__(self, results: List[Any]):
        failed = [r for r in results if not r.passed]
        super().__init__(
            f"Automated checks failed: {', '.join(r.check_name for r in failed)}",
            failures=[r.to_dict() for r in failed],
        )
        self.results = list(results)


class EscalationRequired(ReviewError):
    error_type = "ESCALATION_REQUIRED"

    def __init__(self, claims: List[str]):
        super().__init__(
            f"High severity claims must be escalated before SME verification: {', '.join(claims)}",
            claims=list(claims),
        )
        self.claims = list(claims)


class CorrectionLimitExceeded(ReviewError):
    error_type = "CORRECTION_LIMIT_EXCEEDED"

    def __init__(self, content_id: str, limit: int):
        super().__init__(
            f"Record {content_id} reached the limit of {limit} correction cycles; escalate manually",
            content_id=content_id, limit=limit,
        )


class RiskDowngradeRejected(ReviewError):
    error_type = "RISK_DOWNGRADE_REJECTED"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Risk level cannot go from {current} to {requested} without a justification",
            current=current, requested=requested,
        )


class RetentionViolation(ReviewError):
    error_type = "RETENTION_VIOLATION"

    def __init__(self, content_id: str, expires_at: Optional[str]):
        super().__init__(
            f"Context for {content_id} is retained until {expires_at or 'after publish'}",
            content_id=content_id, expires_at=expires_at,
        )
