"""
Validator tests - required metadata, claim resolution and approvals are judged from the record alone.
"""

from datetime import datetime

import pytest

from reviewgate.core.config import REQUIRED_METADATA_FIELDS, ReviewPolicy
from reviewgate.core.errors import MissingApproval, MissingField, UnresolvedClaims
from reviewgate.core.schema import (
    AIAssistance,
    Approval,
    ClaimAnnotation,
    ClaimStatus,
    ReviewRecord,
    ReviewerRole,
    RiskLevel,
)
from reviewgate.core.validator import (
    check_approvals,
    check_claims_resolved,
    check_metadata_complete,
    missing_approvals,
    require_metadata,
    unescalated_claims,
    unresolved_claims,
)


class TestMetadataComplete:

    def test_empty_record_lists_every_field_in_order(self):
        report = check_metadata_complete(ReviewRecord(content_id="x"))

        assert report.passed is False
        assert report.missing_fields == REQUIRED_METADATA_FIELDS

    def test_complete_record_passes(self, make_record):
        record = make_record()
        record.approvals = [Approval(ReviewerRole.SME, "sme_1", datetime.now())]

        report = check_metadata_complete(record)
        assert report.passed is True
        assert report.missing_fields == []

    def test_blank_strings_count_as_missing(self, make_record):
        record = make_record(model="  ", retrieval_context="")

        report = check_metadata_complete(record, exclude=["verified_by"])
        assert report.missing_fields == ["model", "retrieval_context"]

    def test_exclude_skips_fields(self, make_record):
        report = check_metadata_complete(make_record(), exclude=["verified_by"])
        assert report.passed is True

    def test_policy_required_fields(self, make_record):
        policy = ReviewPolicy(required_fields=["ai_generated", "sources"])
        record = make_record(model=None)

        assert check_metadata_complete(record, policy).passed is True

    def test_idempotent(self, make_record):
        record = make_record(sources=[])

        first = check_metadata_complete(record)
        second = check_metadata_complete(record)
        assert first == second
        assert first.to_dict() == {"passed": False, "missing_fields": ["sources", "verified_by"]}

    def test_require_metadata_raises_with_fields(self):
        record = ReviewRecord(content_id="x", ai_generated=AIAssistance.NONE, sources=["repo/a.py"])

        with pytest.raises(MissingField) as exc_info:
            require_metadata(record, exclude=["verified_by"])

        assert exc_info.value.fields == ["review_date", "risk_level", "model", "retrieval_context"]
        assert exc_info.value.to_dict()["error_type"] == "MISSING_FIELD"


class TestClaims:

    def test_unclear_and_incorrect_are_unresolved(self):
        record = ReviewRecord(content_id="x", claims=[
            ClaimAnnotation("c1", "a", ClaimStatus.VERIFIED),
            ClaimAnnotation("c2", "b", ClaimStatus.UNCLEAR),
            ClaimAnnotation("c3", "c", ClaimStatus.INCORRECT),
            ClaimAnnotation("c4", "d", ClaimStatus.CORRECTED),
        ])

        assert unresolved_claims(record) == ["c2", "c3"]
        with pytest.raises(UnresolvedClaims) as exc_info:
            check_claims_resolved(record)
        assert exc_info.value.claims == ["c2", "c3"]

    def test_no_claims_is_resolved(self):
        check_claims_resolved(ReviewRecord(content_id="x"))

    def test_unescalated_high_severity_claims(self):
        record = ReviewRecord(content_id="x", claims=[
            ClaimAnnotation("c1", "a", severity=RiskLevel.P0),
            ClaimAnnotation("c2", "b", severity=RiskLevel.P1, escalated=True),
            ClaimAnnotation("c3", "c", severity=RiskLevel.P2),
        ])

        assert unescalated_claims(record) == ["c1"]


class TestApprovals:

    def test_both_roles_missing(self):
        record = ReviewRecord(content_id="x")

        assert missing_approvals(record) == ["editor", "sme"]
        with pytest.raises(MissingApproval) as exc_info:
            check_approvals(record)
        assert exc_info.value.roles == ["editor", "sme"]

    def test_one_role_missing(self):
        record = ReviewRecord(content_id="x", approvals=[Approval(ReviewerRole.EDITOR, "editor_1", datetime.now())])

        with pytest.raises(MissingApproval) as exc_info:
            check_approvals(record)
        assert exc_info.value.roles == ["sme"]

    def test_same_person_in_both_roles_counts_by_role(self):
        now = datetime.now()
        record = ReviewRecord(content_id="x", approvals=[
            Approval(ReviewerRole.EDITOR, "pat", now),
            Approval(ReviewerRole.SME, "pat", now),
        ])

        check_approvals(record)
        assert record.verified_by == ["pat", "pat"]
