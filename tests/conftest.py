"""
Shared fixtures: a throwaway database per test and a review record that passes every automated check.
"""

from datetime import date

import pytest

from reviewgate.core.audit import AuditLog
from reviewgate.core.config import ReviewPolicy
from reviewgate.core.dao import RecordStore
from reviewgate.core.schema import (
    AIAssistance,
    ClaimAnnotation,
    ClaimStatus,
    ReviewRecord,
    RiskLevel,
    WorkflowState,
)
from reviewgate.core.workflow import WorkflowEngine


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "reviewgate.db")


@pytest.fixture
def policy():
    """Policy with an explicit glossary so no test depends on GLOSSARY_PATH."""
    return ReviewPolicy(glossary={"whitelist": "allowlist", "master branch": "main branch"})


@pytest.fixture
def store(db_path):
    return RecordStore(db_path)


@pytest.fixture
def audit(db_path):
    return AuditLog(db_path)


@pytest.fixture
def engine(store, policy, audit):
    return WorkflowEngine(store, policy, audit=audit)


@pytest.fixture
def intake_fields():
    """Author-declared metadata for a draft that passes the automated checks."""
    return {
        "ai_generated": AIAssistance.FULL,
        "sources": ["repo/file.go#L10"],
        "model": "gpt-4o",
        "prompt_version": "v3",
        "retrieval_context": "repo@main",
        "review_date": date(2024, 5, 1),
        "risk_level": RiskLevel.P1,
        "claims": [
            ClaimAnnotation(claim_id="c1", text="The default timeout is 30 seconds", citation="repo/file.go#L10"),
            ClaimAnnotation(claim_id="c2", text="Retries are disabled unless configured"),
        ],
    }


@pytest.fixture
def make_record():
    """Build an unsaved record with sensible defaults."""
    def _make(content_id="guides/timeouts", **overrides):
        fields = {
            "content_id": content_id,
            "ai_generated": AIAssistance.PARTIAL,
            "sources": ["repo/file.go#L10"],
            "model": "gpt-4o",
            "prompt_version": "v3",
            "retrieval_context": "repo@main",
            "review_date": date(2024, 5, 1),
            "risk_level": RiskLevel.P2,
            "claims": [ClaimAnnotation(claim_id="c1", text="Timeouts default to 30 seconds")],
        }
        fields.update(overrides)
        return ReviewRecord(**fields)
    return _make


@pytest.fixture
def at_sme(engine, intake_fields):
    """Take a fresh record through intake, checks and screening into SME verification."""
    def _drive(content_id="guides/timeouts", **overrides):
        fields = dict(intake_fields, **overrides)
        engine.intake(content_id, "author_1", **fields)
        engine.submit_for_checks(content_id, "author_1")
        engine.complete_automated_checks(content_id)
        return engine.send_to_sme(content_id, "editor_1")
    return _drive


@pytest.fixture
def published(engine, at_sme):
    """A record verified, signed off by both roles and published."""
    def _drive(content_id="guides/timeouts", **overrides):
        record = at_sme(content_id, **overrides)
        for claim in record.claims:
            engine.mark_claim(content_id, claim.claim_id, ClaimStatus.VERIFIED, "sme_1")
        engine.complete_sme_review(content_id, "sme_1")
        engine.record_approval(content_id, "sme", "sme_1")
        engine.record_approval(content_id, "editor", "editor_1")
        record = engine.publish(content_id, "editor_1")
        assert record.state == WorkflowState.PUBLISHED
        return record
    return _drive
