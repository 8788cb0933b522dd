"""
Workflow engine tests - every gate, the correction loop, post-publish incidents and audit trail.
"""

import random
from datetime import timedelta

import pytest

from reviewgate.core.audit import KIND_CONTEXT, KIND_FAILED_CHECK, KIND_TRANSITION
from reviewgate.core.config import ReviewPolicy
from reviewgate.core.errors import (
    ChecksFailed,
    ConcurrentModification,
    CorrectionLimitExceeded,
    EscalationRequired,
    IncompleteIntake,
    InvalidTransition,
    MissingApproval,
    MissingField,
    NotFound,
    ReviewError,
    RiskDowngradeRejected,
    UnresolvedClaims,
)
from reviewgate.core.schema import (
    GATED_STATES,
    AIAssistance,
    CheckResult,
    ClaimAnnotation,
    ClaimStatus,
    FailureMode,
    ReviewerRole,
    RiskLevel,
    WorkflowState,
)
from reviewgate.core.validator import missing_approvals, unresolved_claims
from reviewgate.core.workflow import WorkflowEngine

CID = "guides/timeouts"


class TestIntake:

    def test_intake_creates_record_with_sla(self, engine, intake_fields):
        record = engine.intake(CID, "author_1", **intake_fields)

        assert record.state == WorkflowState.INTAKE
        assert record.risk_level == RiskLevel.P1
        assert record.sla_deadline is not None
        assert len(record.risk_history) == 1
        assert record.risk_history[0].from_level is None

    def test_intake_records_prompt_context(self, engine, audit, intake_fields):
        engine.intake(CID, "author_1", prompt="Write a guide on timeouts", **intake_fields)

        [entry] = audit.list_entries(CID, kind=KIND_CONTEXT)
        assert entry.payload["prompt"] == "Write a guide on timeouts"
        assert entry.payload["retrieval"] == "repo@main"
        assert entry.payload["model_prompt_version"] == "gpt-4o@v3"

    def test_missing_ai_flag_blocks_checks(self, engine, intake_fields):
        engine.intake(CID, "author_1", **dict(intake_fields, ai_generated=None, sources=[]))

        with pytest.raises(IncompleteIntake) as exc_info:
            engine.submit_for_checks(CID, "author_1")

        assert exc_info.value.missing == ["ai_generated", "sources"]
        assert engine.store.get(CID).state == WorkflowState.INTAKE

    def test_zero_sources_blocks_checks(self, engine, intake_fields):
        engine.intake(CID, "author_1", **dict(intake_fields, sources=[]))

        with pytest.raises(IncompleteIntake) as exc_info:
            engine.submit_for_checks(CID, "author_1")

        assert exc_info.value.missing == ["sources"]
        assert engine.store.get(CID).state == WorkflowState.INTAKE

    def test_duplicate_intake(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)

        with pytest.raises(ReviewError) as exc_info:
            engine.intake(CID, "author_1", **intake_fields)
        assert exc_info.value.error_type == "DUPLICATE_RECORD"


class TestAutomatedChecks:

    def test_missing_metadata_blocks(self, engine, intake_fields):
        engine.intake(CID, "author_1", **dict(intake_fields, model=None, prompt_version=None))
        engine.submit_for_checks(CID, "author_1")

        with pytest.raises(MissingField) as exc_info:
            engine.complete_automated_checks(CID)

        assert exc_info.value.fields == ["model"]
        assert engine.store.get(CID).state == WorkflowState.AUTOMATED_CHECKS

    def test_failed_check_blocks_and_is_audited(self, engine, audit, intake_fields):
        claims = [ClaimAnnotation("c1", "Add the host to the whitelist")]
        engine.intake(CID, "author_1", **dict(intake_fields, claims=claims))
        engine.submit_for_checks(CID, "author_1")

        with pytest.raises(ChecksFailed) as exc_info:
            engine.complete_automated_checks(CID)

        assert [f["check_name"] for f in exc_info.value.details["failures"]] == ["glossary"]
        [entry] = audit.list_entries(CID, kind=KIND_FAILED_CHECK)
        assert entry.payload["error_type"] == "CHECKS_FAILED"
        assert entry.payload["target"] == "editorial_screening"

    def test_dry_run_does_not_move_record(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)

        results = engine.run_automated_checks(CID)

        assert all(r.passed for r in results)
        assert engine.store.get(CID).state == WorkflowState.INTAKE

    def test_custom_checkers_injected(self, store, policy, intake_fields):
        class AlwaysFails:
            name = "always"

            def check(self, record):
                return [CheckResult("always", False, "nope")]

        engine = WorkflowEngine(store, policy, checkers=[AlwaysFails()])
        engine.intake(CID, "author_1", **intake_fields)
        engine.submit_for_checks(CID, "author_1")

        with pytest.raises(ChecksFailed):
            engine.complete_automated_checks(CID)


class TestEditorialScreening:

    def test_high_severity_claim_must_be_escalated(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)
        engine.submit_for_checks(CID, "author_1")
        engine.complete_automated_checks(CID)
        engine.flag_claim(CID, "c2", RiskLevel.P0, "editor_1")

        with pytest.raises(EscalationRequired) as exc_info:
            engine.send_to_sme(CID, "editor_1")
        assert exc_info.value.claims == ["c2"]

        record = engine.escalate_claim(CID, "c2", "editor_1", note="retry default unclear")
        assert record.escalations == ["c2"]
        assert record.risk_level == RiskLevel.P0
        assert record.risk_history[-1].to_level == RiskLevel.P0

        assert engine.send_to_sme(CID, "editor_1").state == WorkflowState.SME_VERIFICATION

    def test_escalating_lower_severity_keeps_risk(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)
        engine.flag_claim(CID, "c1", RiskLevel.P3, "editor_1")

        record = engine.escalate_claim(CID, "c1", "editor_1")
        assert record.risk_level == RiskLevel.P1

    def test_unknown_claim(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)

        with pytest.raises(NotFound):
            engine.flag_claim(CID, "c9", RiskLevel.P1, "editor_1")


class TestSmeAndCorrection:

    def test_unresolved_claims_go_to_correction(self, engine, at_sme):
        at_sme(CID)
        engine.mark_claim(CID, "c1", ClaimStatus.VERIFIED, "sme_1")
        engine.mark_claim(CID, "c2", ClaimStatus.INCORRECT, "sme_1", note="retries default to 3")

        record = engine.complete_sme_review(CID, "sme_1")

        assert record.state == WorkflowState.CORRECTION
        assert unresolved_claims(record) == ["c2"]

    def test_approval_blocked_by_unresolved_claims(self, engine, at_sme):
        at_sme(CID)
        engine.mark_claim(CID, "c1", ClaimStatus.VERIFIED, "sme_1")

        with pytest.raises(UnresolvedClaims) as exc_info:
            engine.advance(CID, WorkflowState.APPROVAL, "sme_1")
        assert exc_info.value.claims == ["c2"]

    def test_correction_needs_an_unresolved_claim(self, engine, at_sme):
        at_sme(CID)
        engine.mark_claim(CID, "c1", ClaimStatus.VERIFIED, "sme_1")
        engine.mark_claim(CID, "c2", ClaimStatus.VERIFIED, "sme_1")

        with pytest.raises(InvalidTransition):
            engine.request_correction(CID, "sme_1")

    def test_resubmit_requires_corrections(self, engine, at_sme):
        at_sme(CID)
        engine.request_correction(CID, "sme_1")

        with pytest.raises(UnresolvedClaims):
            engine.resubmit(CID, "author_1")

        engine.mark_claim(CID, "c1", ClaimStatus.CORRECTED, "author_1")
        engine.mark_claim(CID, "c2", ClaimStatus.CORRECTED, "author_1")
        record = engine.resubmit(CID, "author_1")

        assert record.state == WorkflowState.SME_VERIFICATION
        assert record.correction_cycles == 1

    def test_correction_loop_is_bounded(self, store, at_sme, engine):
        engine.policy = ReviewPolicy(max_correction_cycles=2)
        at_sme(CID)

        for _ in range(2):
            engine.mark_claim(CID, "c1", ClaimStatus.INCORRECT, "sme_1")
            engine.request_correction(CID, "sme_1")
            engine.mark_claim(CID, "c1", ClaimStatus.CORRECTED, "author_1")
            engine.mark_claim(CID, "c2", ClaimStatus.VERIFIED, "author_1")
            engine.resubmit(CID, "author_1")

        engine.mark_claim(CID, "c1", ClaimStatus.INCORRECT, "sme_1")
        with pytest.raises(CorrectionLimitExceeded):
            engine.request_correction(CID, "sme_1")
        assert store.get(CID).correction_cycles == 2

    def test_correction_clears_approvals(self, engine, at_sme):
        at_sme(CID)
        engine.record_approval(CID, ReviewerRole.EDITOR, "editor_1")

        record = engine.request_correction(CID, "sme_1")
        assert record.approvals == []

    def test_claims_frozen_after_approval(self, engine, at_sme):
        at_sme(CID)
        engine.mark_claim(CID, "c1", ClaimStatus.VERIFIED, "sme_1")
        engine.mark_claim(CID, "c2", ClaimStatus.VERIFIED, "sme_1")
        engine.complete_sme_review(CID, "sme_1")

        with pytest.raises(UnresolvedClaims):
            engine.mark_claim(CID, "c1", ClaimStatus.UNCLEAR, "sme_1")
        with pytest.raises(InvalidTransition):
            engine.add_claim(CID, "A new claim", "author_1")


class TestApprovalsAndRisk:

    def test_approval_outside_review_rejected(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)

        with pytest.raises(InvalidTransition):
            engine.record_approval(CID, ReviewerRole.SME, "sme_1")

    def test_same_role_replaces_earlier_signoff(self, engine, at_sme):
        at_sme(CID)
        engine.record_approval(CID, ReviewerRole.SME, "sme_1")
        record = engine.record_approval(CID, ReviewerRole.SME, "sme_2")

        assert record.verified_by == ["sme_2"]

    def test_blank_identity_rejected(self, engine, at_sme):
        at_sme(CID)
        with pytest.raises(ValueError):
            engine.record_approval(CID, ReviewerRole.SME, "  ")

    def test_stale_approval_conflicts(self, engine, at_sme):
        record = at_sme(CID)
        engine.record_approval(CID, ReviewerRole.SME, "sme_1", expected_version=record.version)

        with pytest.raises(ConcurrentModification):
            engine.record_approval(CID, ReviewerRole.EDITOR, "editor_1", expected_version=record.version)

    def test_downgrade_needs_justification(self, engine, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)

        with pytest.raises(RiskDowngradeRejected):
            engine.set_risk_level(CID, RiskLevel.P3, "editor_1")

        record = engine.set_risk_level(CID, RiskLevel.P3, "editor_1", justification="internal-only page")
        assert record.risk_level == RiskLevel.P3
        assert record.risk_history[-1].justification == "internal-only page"

    def test_upgrade_recomputes_deadline(self, engine, intake_fields):
        before = engine.intake(CID, "author_1", **dict(intake_fields, risk_level=RiskLevel.P3))

        after = engine.set_risk_level(CID, RiskLevel.P0, "editor_1")

        assert after.sla_deadline != before.sla_deadline
        assert after.sla_deadline - after.risk_history[-1].changed_at == timedelta(hours=24)
        assert [c.to_level for c in after.risk_history] == [RiskLevel.P3, RiskLevel.P0]


class TestScenarios:

    def test_approval_without_signoffs_names_both_roles(self, engine, at_sme):
        at_sme(CID, ai_generated=AIAssistance.FULL, sources=["repo/file.go#L10"], risk_level=RiskLevel.P1)
        engine.mark_claim(CID, "c1", ClaimStatus.VERIFIED, "sme_1")
        engine.mark_claim(CID, "c2", ClaimStatus.VERIFIED, "sme_1")
        engine.complete_sme_review(CID, "sme_1")

        with pytest.raises(MissingApproval) as exc_info:
            engine.publish(CID, "editor_1")

        assert exc_info.value.roles == ["editor", "sme"]
        record = engine.store.get(CID)
        assert record.state == WorkflowState.APPROVAL
        assert record.verified_by == []

    def test_signed_off_and_verified_record_publishes(self, engine, published):
        record = published(CID)

        assert record.verified_by == ["sme_1", "editor_1"]
        assert record.published_at is not None
        assert all(c.status == ClaimStatus.VERIFIED for c in record.claims)

    def test_incident_after_publish_reopens_for_correction(self, engine, published):
        published(CID)

        incident, record = engine.report_incident(
            CID, "support_1",
            failure_mode="wrong_default",
            severity=RiskLevel.P1,
            root_cause="default changed in v2",
            fix="cite the v2 release notes",
            observed_text="The default timeout is 30 seconds",
            expected_truth="The default timeout is 60 seconds",
            claim_id="c1",
            reopen=True,
        )

        assert incident.failure_mode == FailureMode.WRONG_DEFAULT
        assert incident.model_prompt_version == "gpt-4o@v3"
        assert record.state == WorkflowState.CORRECTION
        assert record.get_claim("c1").status == ClaimStatus.INCORRECT
        assert record.approvals == []
        assert [i.incident_id for i in engine.store.list_incidents(CID)] == [incident.incident_id]

        # The fix goes back through SME verification and both sign-offs
        engine.mark_claim(CID, "c1", ClaimStatus.CORRECTED, "author_1")
        engine.resubmit(CID, "author_1")
        engine.complete_sme_review(CID, "sme_1")
        with pytest.raises(MissingApproval):
            engine.publish(CID, "editor_1")
        engine.record_approval(CID, ReviewerRole.SME, "sme_1")
        engine.record_approval(CID, ReviewerRole.EDITOR, "editor_1")
        assert engine.publish(CID, "editor_1").state == WorkflowState.PUBLISHED

    def test_incident_without_reopen_stays_logged(self, engine, published):
        published(CID)

        _, record = engine.report_incident(CID, "support_1", FailureMode.VERSION_DRIFT, RiskLevel.P0,
                                           root_cause="old snapshot", fix="regenerate")

        assert record.state == WorkflowState.INCIDENT_LOGGED
        assert record.risk_level == RiskLevel.P0

        reopened = engine.reopen(CID, "editor_1")
        assert reopened.state == WorkflowState.CORRECTION
        assert reopened.approvals == []

    def test_incident_before_publish_rejected(self, engine, at_sme):
        at_sme(CID)

        with pytest.raises(InvalidTransition):
            engine.report_incident(CID, "support_1", FailureMode.OTHER, RiskLevel.P2, "x", "y")
        assert engine.store.list_incidents(CID) == []

    def test_incident_on_archived_record_starts_new_cycle(self, engine, published):
        published(CID)
        logged = engine.log_post_merge(CID, "editor_1", tuning_notes="tighten retrieval prompt")
        assert logged.archived is True
        assert logged.post_merge["incident_count"] == 0

        _, record = engine.report_incident(CID, "support_1", FailureMode.INVENTED_ENTITY, RiskLevel.P0,
                                           root_cause="made-up flag", fix="remove it",
                                           claim_id="c2", reopen=True)

        assert record.cycle == 2
        assert record.state == WorkflowState.CORRECTION
        assert record.risk_level == RiskLevel.P0
        assert record.get_claim("c2").status == ClaimStatus.INCORRECT
        assert engine.store.get_cycle(CID, 1).state == WorkflowState.POST_MERGE_LOGGED

    def test_post_merge_counts_incidents_and_archives(self, engine, published):
        published(CID)
        engine.report_incident(CID, "support_1", FailureMode.SCHEMA_MISMATCH, RiskLevel.P2, "x", "y")

        record = engine.advance(CID, WorkflowState.POST_MERGE_LOGGED, "editor_1")

        assert record.state == WorkflowState.POST_MERGE_LOGGED
        assert record.post_merge["incident_count"] == 1
        assert record.archived is True
        with pytest.raises(InvalidTransition):
            engine.set_risk_level(CID, RiskLevel.P0, "editor_1")

    def test_stale_version_on_transition(self, engine, intake_fields):
        created = engine.intake(CID, "author_1", **intake_fields)
        engine.submit_for_checks(CID, "author_1")

        with pytest.raises(ConcurrentModification):
            engine.advance(CID, WorkflowState.EDITORIAL_SCREENING, "author_1", expected_version=created.version)


class TestAuditTrail:

    def test_transitions_and_refusals_are_recorded(self, engine, audit, intake_fields):
        engine.intake(CID, "author_1", **intake_fields)
        engine.submit_for_checks(CID, "author_1")
        with pytest.raises(InvalidTransition):
            engine.publish(CID, "author_1")
        engine.add_comment(CID, "editor_1", "Looks close")

        transitions = audit.list_entries(CID, kind=KIND_TRANSITION)
        assert [(e.payload["from"], e.payload["to"]) for e in reversed(transitions)] == [
            ("none", "intake"),
            ("intake", "automated_checks"),
        ]
        [failed] = audit.list_entries(CID, kind=KIND_FAILED_CHECK)
        assert failed.payload["error_type"] == "INVALID_TRANSITION"
        assert audit.list_entries(CID, kind="comment")[0].payload["comment"] == "Looks close"

    def test_incident_state_only_via_report(self, engine, audit, published):
        published(CID)
        with pytest.raises(InvalidTransition):
            engine.advance(CID, WorkflowState.INCIDENT_LOGGED, "support_1")

        refused = [e for e in audit.list_entries(CID, kind=KIND_FAILED_CHECK) if e.actor == "support_1"]
        assert [(e.payload["target"], e.payload["reason"]) for e in refused] == [
            ("incident_logged", "use report_incident"),
        ]

    def test_incident_on_unknown_claim_is_audited(self, engine, audit, published):
        published(CID)

        with pytest.raises(NotFound):
            engine.report_incident(CID, "support_1", FailureMode.OTHER, RiskLevel.P2, "x", "y", claim_id="c9")

        refused = [e for e in audit.list_entries(CID, kind=KIND_FAILED_CHECK) if e.actor == "support_1"]
        assert [(e.payload["error_type"], e.payload["identifier"]) for e in refused] == [("NOT_FOUND", "c9")]
        assert engine.store.list_incidents(CID) == []
        assert engine.store.get(CID).state == WorkflowState.PUBLISHED


def test_random_operation_sequences_keep_invariants(engine, intake_fields):
    """Whatever order operations arrive in, published content is signed off and fully verified."""
    rng = random.Random(1234)
    states = list(WorkflowState)
    statuses = list(ClaimStatus)
    levels = list(RiskLevel)

    for run in range(8):
        content_id = f"guides/random-{run}"
        engine.intake(content_id, "author_1", **intake_fields)

        for _ in range(60):
            op = rng.choice(["advance", "advance", "mark", "approve", "risk", "incident"])
            try:
                if op == "advance":
                    engine.advance(content_id, rng.choice(states), "actor")
                elif op == "mark":
                    engine.mark_claim(content_id, rng.choice(["c1", "c2"]), rng.choice(statuses), "sme_1")
                elif op == "approve":
                    engine.record_approval(content_id, rng.choice(list(ReviewerRole)), rng.choice(["a", "b"]))
                elif op == "risk":
                    engine.set_risk_level(content_id, rng.choice(levels), "editor_1",
                                          justification=rng.choice([None, "triaged"]))
                else:
                    engine.report_incident(content_id, "support_1", FailureMode.OTHER, rng.choice(levels),
                                           "root", "fix", reopen=rng.random() < 0.5)
            except ReviewError:
                pass

            for record in engine.store.history(content_id):
                if record.state in GATED_STATES:
                    assert unresolved_claims(record) == []
                if record.state in (WorkflowState.PUBLISHED, WorkflowState.POST_MERGE_LOGGED):
                    assert missing_approvals(record) == []
                if record.archived:
                    assert record.state == WorkflowState.POST_MERGE_LOGGED
