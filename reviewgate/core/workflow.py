"""
Workflow Engine - drives a review record from intake to publication and enforces the gates.

    intake -> automated_checks -> editorial_screening -> sme_verification
        sme_verification <-> correction   (bounded by policy.max_correction_cycles)
        sme_verification -> approval -> published -> post_merge_logged
        published -> incident_logged -> correction | post_merge_logged

Every operation is atomic per content id: the engine holds the record lock while it
reads, checks and writes, and writes with the version it read. A refused operation
leaves the record untouched, is logged, and lands in the audit log as a failed check.
"""

import copy
import uuid
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple

from util.logging import logger

from ..checks import default_checkers, run_checks, all_passed, IChecker
from .audit import AuditLog
from .config import ReviewPolicy, load_policy
from .dao import RecordStore
from .errors import (
    ChecksFailed,
    ConcurrentModification,
    CorrectionLimitExceeded,
    InvalidTransition,
    NotFound,
    ReviewError,
    RiskDowngradeRejected,
    UnresolvedClaims,
)
from .schema import (
    ALLOWED_TRANSITIONS,
    GATED_STATES,
    AIAssistance,
    Approval,
    CheckResult,
    ClaimAnnotation,
    ClaimStatus,
    FailureMode,
    HallucinationIncident,
    Impact,
    ReviewRecord,
    ReviewerRole,
    RiskChange,
    RiskLevel,
    WorkflowState,
)
from .sla import compute_deadline
from .validator import (
    check_approvals,
    check_claims_resolved,
    check_escalations,
    check_intake,
    require_metadata,
    unresolved_claims,
)

# States in which the content itself (and so its claims) can still change
EDITABLE_STATES = {
    WorkflowState.INTAKE,
    WorkflowState.AUTOMATED_CHECKS,
    WorkflowState.EDITORIAL_SCREENING,
    WorkflowState.SME_VERIFICATION,
    WorkflowState.CORRECTION,
}

APPROVAL_STATES = {WorkflowState.SME_VERIFICATION, WorkflowState.APPROVAL}

INCIDENT_STATES = {WorkflowState.PUBLISHED, WorkflowState.INCIDENT_LOGGED, WorkflowState.POST_MERGE_LOGGED}


class WorkflowEngine:
    """Request/response state machine over the record store."""

    def __init__(self, store: RecordStore, policy: Optional[ReviewPolicy] = None,
                 checkers: Optional[List[IChecker]] = None, audit: Optional[AuditLog] = None):
        self.store = store
        self.policy = policy or load_policy()
        self.checkers = checkers if checkers is not None else default_checkers(self.policy)
        self.audit = audit or AuditLog(store.db_path)
        self._guards: Dict[Tuple[WorkflowState, WorkflowState], Callable] = {
            (WorkflowState.INTAKE, WorkflowState.AUTOMATED_CHECKS): self._guard_intake,
            (WorkflowState.AUTOMATED_CHECKS, WorkflowState.EDITORIAL_SCREENING): self._guard_automated_checks,
            (WorkflowState.EDITORIAL_SCREENING, WorkflowState.SME_VERIFICATION): self._guard_escalations,
            (WorkflowState.SME_VERIFICATION, WorkflowState.CORRECTION): self._guard_needs_correction,
            (WorkflowState.CORRECTION, WorkflowState.SME_VERIFICATION): self._guard_corrected,
            (WorkflowState.SME_VERIFICATION, WorkflowState.APPROVAL): self._guard_claims_resolved,
            (WorkflowState.APPROVAL, WorkflowState.PUBLISHED): self._guard_publish,
            (WorkflowState.INCIDENT_LOGGED, WorkflowState.CORRECTION): self._guard_reopen,
        }

    # Intake

    def intake(self, content_id: str, actor: str, ai_generated: Optional[AIAssistance] = None,
               sources: Optional[List[str]] = None, model: Optional[str] = None,
               prompt_version: Optional[str] = None, retrieval_context: Optional[str] = None,
               review_date: Optional[date] = None, risk_level: Optional[RiskLevel] = None,
               claims: Optional[List[ClaimAnnotation]] = None, prompt: Optional[str] = None) -> ReviewRecord:
        """Open a review record for a content item as declared by its author."""
        now = datetime.now()
        record = ReviewRecord(
            content_id=content_id,
            ai_generated=ai_generated,
            sources=list(sources or []),
            model=model,
            prompt_version=prompt_version,
            retrieval_context=retrieval_context,
            review_date=review_date,
            claims=list(claims or []),
        )
        if risk_level is not None:
            record.risk_level = risk_level
            record.risk_history.append(RiskChange(None, risk_level, actor, now))
            record.sla_deadline = compute_deadline(risk_level, now, self.policy)

        created = self.store.create(record)
        self.audit.record_transition(content_id, actor, "none", created.state.value, created.cycle)
        if prompt is not None:
            self.audit.record_context(content_id, actor, prompt, retrieval_context,
                                      created.model_prompt_version, created.cycle)
        logger.log_transition(content_id, "none", created.state.value, actor)
        return created

    # Transitions

    def advance(self, content_id: str, target: WorkflowState, actor: str,
                expected_version: Optional[int] = None) -> ReviewRecord:
        """Move a record to target if the edge exists and its guard passes."""
        target = WorkflowState(target)
        if target == WorkflowState.POST_MERGE_LOGGED:
            return self.log_post_merge(content_id, actor, expected_version=expected_version)
        if target == WorkflowState.INCIDENT_LOGGED:
            current = self.store.get(content_id)
            error = InvalidTransition(current.state.value, target.value, "use report_incident")
            self._blocked(current, target, actor, error)
            raise error

        with self.store.lock(content_id):
            record = self.store.get(content_id)
            version = record.version if expected_version is None else expected_version
            try:
                if target not in ALLOWED_TRANSITIONS[record.state]:
                    raise InvalidTransition(record.state.value, target.value, "transition not allowed")
                guard = self._guards[(record.state, target)]
                extra = guard(record)

                def mutation(r: ReviewRecord):
                    r.state = target
                    if extra:
                        extra(r)

                updated = self.store.update(content_id, mutation, expected_version=version)
            except ReviewError as e:
                self._blocked(record, target, actor, e)
                raise

        self._transitioned(record, updated, actor)
        return updated

    def submit_for_checks(self, content_id: str, actor: str) -> ReviewRecord:
        return self.advance(content_id, WorkflowState.AUTOMATED_CHECKS, actor)

    def complete_automated_checks(self, content_id: str, actor: str = "automated_checker") -> ReviewRecord:
        return self.advance(content_id, WorkflowState.EDITORIAL_SCREENING, actor)

    def send_to_sme(self, content_id: str, actor: str) -> ReviewRecord:
        return self.advance(content_id, WorkflowState.SME_VERIFICATION, actor)

    def request_correction(self, content_id: str, actor: str) -> ReviewRecord:
        return self.advance(content_id, WorkflowState.CORRECTION, actor)

    def resubmit(self, content_id: str, actor: str) -> ReviewRecord:
        return self.advance(content_id, WorkflowState.SME_VERIFICATION, actor)

    def complete_sme_review(self, content_id: str, actor: str) -> ReviewRecord:
        """Finish SME verification: on to approval if every claim holds, else back to correction."""
        record = self.store.get(content_id)
        if record.state == WorkflowState.SME_VERIFICATION and unresolved_claims(record):
            return self.advance(content_id, WorkflowState.CORRECTION, actor)
        return self.advance(content_id, WorkflowState.APPROVAL, actor)

    def publish(self, content_id: str, actor: str, expected_version: Optional[int] = None) -> ReviewRecord:
        return self.advance(content_id, WorkflowState.PUBLISHED, actor, expected_version)

    def reopen(self, content_id: str, actor: str) -> ReviewRecord:
        """Send a record with a logged incident back to correction for a republish."""
        return self.advance(content_id, WorkflowState.CORRECTION, actor)

    def run_automated_checks(self, content_id: str) -> List[CheckResult]:
        """Run the configured checkers without moving the record."""
        record = self.store.get(content_id)
        results = run_checks(record, self.checkers)
        logger.log_check_results(content_id, results)
        return results

    # Claims, escalations, approvals, risk

    def add_claim(self, content_id: str, text: str, actor: str, claim_id: Optional[str] = None,
                  citation: Optional[str] = None, severity: Optional[RiskLevel] = None,
                  status: ClaimStatus = ClaimStatus.UNCLEAR) -> ReviewRecord:
        claim = ClaimAnnotation(
            claim_id=claim_id or uuid.uuid4().hex[:12],
            text=text,
            status=status,
            citation=citation,
            severity=severity,
        )

        def mutation(r: ReviewRecord):
            self._require_editable(r, "add claims")
            if r.get_claim(claim.claim_id) is not None:
                raise InvalidTransition(r.state.value, r.state.value, f"claim {claim.claim_id} already exists")
            r.claims.append(claim)

        return self._mutate(content_id, actor, mutation)

    def mark_claim(self, content_id: str, claim_id: str, status: ClaimStatus, actor: str,
                   citation: Optional[str] = None, note: Optional[str] = None) -> ReviewRecord:
        """Record a verification verdict on one claim."""
        status = ClaimStatus(status)

        def mutation(r: ReviewRecord):
            claim = self._require_claim(r, claim_id)
            if r.state in GATED_STATES and not status.resolved:
                raise UnresolvedClaims([claim_id])
            self._require_editable(r, "mark claims")
            claim.status = status
            if citation is not None:
                claim.citation = citation
            if note is not None:
                claim.note = note

        return self._mutate(content_id, actor, mutation)

    def flag_claim(self, content_id: str, claim_id: str, severity: RiskLevel, actor: str) -> ReviewRecord:
        """Editorial screening: attach a severity to a claim."""
        severity = RiskLevel(severity)

        def mutation(r: ReviewRecord):
            self._require_editable(r, "flag claims")
            self._require_claim(r, claim_id).severity = severity

        return self._mutate(content_id, actor, mutation)

    def escalate_claim(self, content_id: str, claim_id: str, actor: str, note: Optional[str] = None) -> ReviewRecord:
        """Record an escalation of a flagged claim to SME verification.

        Escalation is advisory: it raises the record risk to the claim severity when that
        is higher, and is recorded so the SME stage can see it.
        """
        now = datetime.now()

        def mutation(r: ReviewRecord):
            self._require_editable(r, "escalate claims")
            claim = self._require_claim(r, claim_id)
            claim.escalated = True
            if note is not None:
                claim.note = note
            if claim_id not in r.escalations:
                r.escalations.append(claim_id)
            if claim.severity is not None and (r.risk_level is None or claim.severity.rank > r.risk_level.rank):
                self._apply_risk(r, claim.severity, actor, now, f"escalation of claim {claim_id}")

        return self._mutate(content_id, actor, mutation)

    def record_approval(self, content_id: str, role: ReviewerRole, identity: str,
                        expected_version: Optional[int] = None) -> ReviewRecord:
        """Record a named sign-off. A later sign-off for the same role replaces the earlier one."""
        role = ReviewerRole(role)
        if not identity or not identity.strip():
            raise ValueError("approval needs a reviewer identity")

        def mutation(r: ReviewRecord):
            if r.state not in APPROVAL_STATES:
                raise InvalidTransition(r.state.value, r.state.value, "approvals are recorded during SME verification or approval")
            r.approvals = [a for a in r.approvals if a.role != role]
            r.approvals.append(Approval(role=role, identity=identity.strip(), approved_at=datetime.now()))

        updated = self._mutate(content_id, identity, mutation, expected_version)
        logger.log_approval(content_id, role.value, identity)
        return updated

    def set_risk_level(self, content_id: str, level: RiskLevel, actor: str,
                       justification: Optional[str] = None) -> ReviewRecord:
        """Set the record severity. Downgrades within a cycle need a recorded justification."""
        level = RiskLevel(level)
        now = datetime.now()

        def mutation(r: ReviewRecord):
            if r.risk_level is not None and r.risk_level.is_downgrade_to(level):
                if not justification or not justification.strip():
                    raise RiskDowngradeRejected(r.risk_level.value, level.value)
            self._apply_risk(r, level, actor, now, justification)

        return self._mutate(content_id, actor, mutation)

    def add_comment(self, content_id: str, actor: str, comment: str) -> int:
        record = self.store.get(content_id)
        return self.audit.add_comment(content_id, actor, comment, record.cycle)

    # Post-publish

    def log_post_merge(self, content_id: str, actor: str, tuning_notes: str = "",
                       expected_version: Optional[int] = None) -> ReviewRecord:
        """Close out a published record with its incident count and tuning notes, then archive it."""
        with self.store.lock(content_id):
            record = self.store.get(content_id)
            target = WorkflowState.POST_MERGE_LOGGED
            try:
                if expected_version is not None and record.version != expected_version:
                    raise ConcurrentModification(content_id, expected_version, record.version)
                if target not in ALLOWED_TRANSITIONS[record.state]:
                    raise InvalidTransition(record.state.value, target.value, "transition not allowed")
                incident_count = len([
                    i for i in self.store.list_incidents(content_id) if i.record_cycle == record.cycle
                ])

                def mutation(r: ReviewRecord):
                    r.state = target
                    r.post_merge = {
                        "incident_count": incident_count,
                        "tuning_notes": tuning_notes,
                        "logged_at": datetime.now().isoformat(),
                        "logged_by": actor,
                    }

                updated = self.store.archive(content_id, mutation)
            except ReviewError as e:
                self._blocked(record, target, actor, e)
                raise

        self._transitioned(record, updated, actor)
        return updated

    def report_incident(self, content_id: str, actor: str, failure_mode: FailureMode, severity: RiskLevel,
                        root_cause: str, fix: str, observed_text: str = "", expected_truth: str = "",
                        claim_id: Optional[str] = None, impact: Impact = Impact.MEDIUM, reproduction: str = "",
                        title: Optional[str] = None, labels: Optional[List[str]] = None,
                        assignees: Optional[List[str]] = None,
                        reopen: bool = False) -> Tuple[HallucinationIncident, ReviewRecord]:
        """Log a defect found after publish and optionally reopen the content for correction."""
        failure_mode = FailureMode(failure_mode)
        severity = RiskLevel(severity)
        now = datetime.now()

        with self.store.lock(content_id):
            record = self.store.get(content_id)
            if record.state not in INCIDENT_STATES:
                error = InvalidTransition(record.state.value, WorkflowState.INCIDENT_LOGGED.value,
                                          "incidents are reported against published content")
                self._blocked(record, WorkflowState.INCIDENT_LOGGED, actor, error)
                raise error
            if claim_id is not None and record.get_claim(claim_id) is None:
                error = NotFound(claim_id, kind="claim")
                self._blocked(record, WorkflowState.INCIDENT_LOGGED, actor, error)
                raise error

            incident = HallucinationIncident(
                incident_id=uuid.uuid4().hex,
                content_id=content_id,
                record_cycle=record.cycle,
                date=now,
                severity=severity,
                failure_mode=failure_mode,
                root_cause=root_cause,
                fix=fix,
                model_prompt_version=record.model_prompt_version,
                title=title or f"[{severity.value}] {failure_mode.value.replace('_', ' ')} in {content_id}",
                observed_text=observed_text,
                expected_truth=expected_truth,
                impact=Impact(impact),
                reproduction=reproduction,
                claim_id=claim_id,
                labels=list(labels or []),
                assignees=list(assignees or []),
            )
            self.store.add_incident(incident)
            logger.log_incident(incident.incident_id, content_id, severity.value, failure_mode.value, reopen)

            if record.archived:
                updated = self._reopen_archived(record, incident, actor) if reopen else record
            else:
                updated = record
                if record.state == WorkflowState.PUBLISHED:
                    updated = self.store.update(
                        content_id,
                        lambda r: setattr(r, "state", WorkflowState.INCIDENT_LOGGED),
                        expected_version=record.version,
                    )
                    self._transitioned(record, updated, actor)
                if severity.rank > (updated.risk_level.rank if updated.risk_level else -1):
                    updated = self.store.update(
                        content_id,
                        lambda r: self._apply_risk(r, severity, actor, now, f"incident {incident.incident_id}"),
                    )
                if reopen:
                    before = updated
                    updated = self.store.update(content_id, lambda r: self._reopen_mutation(r, incident))
                    self._transitioned(before, updated, actor)

        return incident, updated

    # Guards: each returns an optional extra mutation applied alongside the state change

    def _guard_intake(self, record: ReviewRecord):
        check_intake(record)
        return None

    def _guard_automated_checks(self, record: ReviewRecord):
        # verified_by can only be satisfied by sign-offs at the end of the workflow
        require_metadata(record, self.policy, exclude=["verified_by"])
        results = run_checks(record, self.checkers)
        logger.log_check_results(record.content_id, results)
        if not all_passed(results):
            raise ChecksFailed(results)
        return None

    def _guard_escalations(self, record: ReviewRecord):
        check_escalations(record)
        return None

    def _guard_needs_correction(self, record: ReviewRecord):
        if not unresolved_claims(record):
            raise InvalidTransition(record.state.value, WorkflowState.CORRECTION.value,
                                    "no claim is unclear or incorrect")
        if record.correction_cycles >= self.policy.max_correction_cycles:
            raise CorrectionLimitExceeded(record.content_id, self.policy.max_correction_cycles)

        def clear_approvals(r: ReviewRecord):
            r.approvals = []

        return clear_approvals

    def _guard_corrected(self, record: ReviewRecord):
        check_claims_resolved(record)

        def count_cycle(r: ReviewRecord):
            r.correction_cycles += 1

        return count_cycle

    def _guard_claims_resolved(self, record: ReviewRecord):
        check_claims_resolved(record)
        return None

    def _guard_publish(self, record: ReviewRecord):
        check_approvals(record)
        check_claims_resolved(record)
        require_metadata(record, self.policy)

        def stamp(r: ReviewRecord):
            r.published_at = datetime.now()

        return stamp

    def _guard_reopen(self, record: ReviewRecord):
        def reset(r: ReviewRecord):
            r.approvals = []
            r.correction_cycles = 0

        return reset

    # Internals

    def _mutate(self, content_id: str, actor: str, mutation: Callable[[ReviewRecord], None],
                expected_version: Optional[int] = None) -> ReviewRecord:
        with self.store.lock(content_id):
            record = self.store.get(content_id)
            try:
                return self.store.update(content_id, mutation, expected_version=expected_version)
            except ReviewError as e:
                self._blocked(record, record.state, actor, e)
                raise

    def _reopen_archived(self, record: ReviewRecord, incident: HallucinationIncident, actor: str) -> ReviewRecord:
        """Start a new review cycle in correction for content whose last cycle is archived."""
        reopened = copy.deepcopy(record)
        reopened.state = WorkflowState.CORRECTION
        reopened.published_at = None
        reopened.post_merge = {}
        reopened.escalations = []
        reopened.risk_history = []
        reopened.sla_deadline = None
        self._reopen_mutation(reopened, incident)
        level = reopened.risk_level
        if level is None or incident.severity.rank > level.rank:
            level = incident.severity
        self._apply_risk(reopened, level, actor, incident.date, f"incident {incident.incident_id}")
        created = self.store.create(reopened)
        self.audit.record_transition(record.content_id, actor, WorkflowState.INCIDENT_LOGGED.value,
                                     created.state.value, created.cycle)
        logger.log_transition(record.content_id, WorkflowState.INCIDENT_LOGGED.value, created.state.value, actor)
        return created

    @staticmethod
    def _reopen_mutation(r: ReviewRecord, incident: HallucinationIncident):
        r.state = WorkflowState.CORRECTION
        r.approvals = []
        r.correction_cycles = 0
        if incident.claim_id:
            claim = r.get_claim(incident.claim_id)
            if claim is not None:
                claim.status = ClaimStatus.INCORRECT
                claim.note = f"incident {incident.incident_id}: {incident.failure_mode.value}"

    def _apply_risk(self, r: ReviewRecord, level: RiskLevel, actor: str, now: datetime,
                    justification: Optional[str]):
        r.risk_history.append(RiskChange(r.risk_level, level, actor, now, justification))
        justified = bool(justification)
        if r.risk_level != level or r.sla_deadline is None:
            r.sla_deadline = compute_deadline(level, now, self.policy)
        logger.log_risk_change(r.content_id, r.risk_level.value if r.risk_level else "none", level.value, justified)
        r.risk_level = level

    @staticmethod
    def _require_editable(r: ReviewRecord, what: str):
        if r.state not in EDITABLE_STATES:
            raise InvalidTransition(r.state.value, r.state.value, f"cannot {what} in {r.state.value}")

    @staticmethod
    def _require_claim(r: ReviewRecord, claim_id: str) -> ClaimAnnotation:
        claim = r.get_claim(claim_id)
        if claim is None:
            raise NotFound(claim_id, kind="claim")
        return claim

    def _blocked(self, record: ReviewRecord, target: WorkflowState, actor: str, error: ReviewError):
        logger.log_transition_blocked(record.content_id, record.state.value, WorkflowState(target).value,
                                      error.error_type, error.details)
        self.audit.record_failed_check(record.content_id, actor, {
            "state": record.state.value,
            "target": WorkflowState(target).value,
            **error.to_dict(),
        }, record.cycle)

    def _transitioned(self, before: ReviewRecord, after: ReviewRecord, actor: str):
        self.audit.record_transition(after.content_id, actor, before.state.value, after.state.value, after.cycle)
        logger.log_transition(after.content_id, before.state.value, after.state.value, actor)
