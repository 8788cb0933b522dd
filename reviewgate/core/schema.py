"""
Review record data model - records, claim annotations, approvals and hallucination incidents.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Optional


class AIAssistance(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


class RiskLevel(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

    @property
    def rank(self) -> int:
        """Higher rank means more severe (P0 -> 3, P3 -> 0)."""
        return 3 - int(self.value[1])

    def is_downgrade_to(self, other: "RiskLevel") -> bool:
        return other.rank < self.rank

    @property
    def requires_escalation(self) -> bool:
        return self in (RiskLevel.P0, RiskLevel.P1)


class ClaimStatus(str, Enum):
    VERIFIED = "verified"
    UNCLEAR = "unclear"
    INCORRECT = "incorrect"
    CORRECTED = "corrected"

    @property
    def resolved(self) -> bool:
        return self in (ClaimStatus.VERIFIED, ClaimStatus.CORRECTED)


class WorkflowState(str, Enum):
    INTAKE = "intake"
    AUTOMATED_CHECKS = "automated_checks"
    EDITORIAL_SCREENING = "editorial_screening"
    SME_VERIFICATION = "sme_verification"
    CORRECTION = "correction"
    APPROVAL = "approval"
    PUBLISHED = "published"
    POST_MERGE_LOGGED = "post_merge_logged"
    INCIDENT_LOGGED = "incident_logged"


class ReviewerRole(str, Enum):
    EDITOR = "editor"
    SME = "sme"


class FailureMode(str, Enum):
    INVENTED_ENTITY = "invented_entity"
    VERSION_DRIFT = "version_drift"
    WRONG_DEFAULT = "wrong_default"
    SCHEMA_MISMATCH = "schema_mismatch"
    OTHER = "other"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Edges of the review state machine. Anything else is an InvalidTransition.
ALLOWED_TRANSITIONS = {
    WorkflowState.INTAKE: {WorkflowState.AUTOMATED_CHECKS},
    WorkflowState.AUTOMATED_CHECKS: {WorkflowState.EDITORIAL_SCREENING},
    WorkflowState.EDITORIAL_SCREENING: {WorkflowState.SME_VERIFICATION},
    WorkflowState.SME_VERIFICATION: {WorkflowState.CORRECTION, WorkflowState.APPROVAL},
    WorkflowState.CORRECTION: {WorkflowState.SME_VERIFICATION},
    WorkflowState.APPROVAL: {WorkflowState.PUBLISHED},
    WorkflowState.PUBLISHED: {WorkflowState.POST_MERGE_LOGGED, WorkflowState.INCIDENT_LOGGED},
    WorkflowState.POST_MERGE_LOGGED: set(),
    WorkflowState.INCIDENT_LOGGED: {WorkflowState.CORRECTION, WorkflowState.POST_MERGE_LOGGED},
}

# States at or beyond approval; no claim may be unresolved here
GATED_STATES = {
    WorkflowState.APPROVAL,
    WorkflowState.PUBLISHED,
    WorkflowState.POST_MERGE_LOGGED,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


@dataclass
class ClaimAnnotation:
    claim_id: str
    text: str
    status: ClaimStatus = ClaimStatus.UNCLEAR
    citation: Optional[str] = None
    severity: Optional[RiskLevel] = None
    escalated: bool = False
    note: Optional[str] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["severity"] = self.severity.value if self.severity else None
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "ClaimAnnotation":
        data = dict(data)
        data["status"] = ClaimStatus(data.get("status", ClaimStatus.UNCLEAR.value))
        if data.get("severity"):
            data["severity"] = RiskLevel(data["severity"])
        return cls(**data)


@dataclass
class Approval:
    role: ReviewerRole
    identity: str
    approved_at: datetime

    def to_dict(self) -> Dict:
        return {"role": self.role.value, "identity": self.identity, "approved_at": self.approved_at.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict) -> "Approval":
        return cls(
            role=ReviewerRole(data["role"]),
            identity=data["identity"],
            approved_at=_parse_dt(data["approved_at"]),
        )


@dataclass
class RiskChange:
    from_level: Optional[RiskLevel]
    to_level: RiskLevel
    changed_by: str
    changed_at: datetime
    justification: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "from_level": self.from_level.value if self.from_level else None,
            "to_level": self.to_level.value,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat(),
            "justification": self.justification,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RiskChange":
        return cls(
            from_level=RiskLevel(data["from_level"]) if data.get("from_level") else None,
            to_level=RiskLevel(data["to_level"]),
            changed_by=data["changed_by"],
            changed_at=_parse_dt(data["changed_at"]),
            justification=data.get("justification"),
        )


@dataclass
class ReviewRecord:
    """The tracked unit of work for one content item through the review workflow."""
    content_id: str
    ai_generated: Optional[AIAssistance] = None
    sources: List[str] = field(default_factory=list)
    approvals: List[Approval] = field(default_factory=list)
    review_date: Optional[date] = None
    risk_level: Optional[RiskLevel] = None
    model: Optional[str] = None
    prompt_version: Optional[str] = None
    retrieval_context: Optional[str] = None
    state: WorkflowState = WorkflowState.INTAKE
    claims: List[ClaimAnnotation] = field(default_factory=list)
    escalations: List[str] = field(default_factory=list)
    risk_history: List[RiskChange] = field(default_factory=list)
    cycle: int = 1
    correction_cycles: int = 0
    sla_deadline: Optional[datetime] = None
    published_at: Optional[datetime] = None
    archived: bool = False
    post_merge: Dict[str, Any] = field(default_factory=dict)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def verified_by(self) -> List[str]:
        """Identities that signed off, in approval order."""
        return [a.identity for a in self.approvals]

    @property
    def approved_roles(self) -> List[ReviewerRole]:
        return [a.role for a in self.approvals]

    @property
    def model_prompt_version(self) -> Optional[str]:
        if self.model and self.prompt_version:
            return f"{self.model}@{self.prompt_version}"
        return self.model or self.prompt_version

    def get_claim(self, claim_id: str) -> Optional[ClaimAnnotation]:
        for claim in self.claims:
            if claim.claim_id == claim_id:
                return claim
        return None

    def to_dict(self) -> Dict:
        """Convert to dictionary for storage."""
        return {
            "content_id": self.content_id,
            "ai_generated": self.ai_generated.value if self.ai_generated else None,
            "sources": list(self.sources),
            "verified_by": self.verified_by,
            "approvals": [a.to_dict() for a in self.approvals],
            "review_date": self.review_date.isoformat() if self.review_date else None,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "model": self.model,
            "prompt_version": self.prompt_version,
            "retrieval_context": self.retrieval_context,
            "state": self.state.value,
            "claims": [c.to_dict() for c in self.claims],
            "escalations": list(self.escalations),
            "risk_history": [r.to_dict() for r in self.risk_history],
            "cycle": self.cycle,
            "correction_cycles": self.correction_cycles,
            "sla_deadline": _iso(self.sla_deadline),
            "published_at": _iso(self.published_at),
            "archived": self.archived,
            "post_merge": dict(self.post_merge),
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ReviewRecord":
        """Create from dictionary (for loading from storage)."""
        return cls(
            content_id=data["content_id"],
            ai_generated=AIAssistance(data["ai_generated"]) if data.get("ai_generated") else None,
            sources=list(data.get("sources") or []),
            approvals=[Approval.from_dict(a) for a in data.get("approvals") or []],
            review_date=_parse_date(data.get("review_date")),
            risk_level=RiskLevel(data["risk_level"]) if data.get("risk_level") else None,
            model=data.get("model"),
            prompt_version=data.get("prompt_version"),
            retrieval_context=data.get("retrieval_context"),
            state=WorkflowState(data.get("state", WorkflowState.INTAKE.value)),
            claims=[ClaimAnnotation.from_dict(c) for c in data.get("claims") or []],
            escalations=list(data.get("escalations") or []),
            risk_history=[RiskChange.from_dict(r) for r in data.get("risk_history") or []],
            cycle=int(data.get("cycle", 1)),
            correction_cycles=int(data.get("correction_cycles", 0)),
            sla_deadline=_parse_dt(data.get("sla_deadline")),
            published_at=_parse_dt(data.get("published_at")),
            archived=bool(data.get("archived", False)),
            post_merge=dict(data.get("post_merge") or {}),
            version=int(data.get("version", 0)),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class HallucinationIncident:
    """A defect found after publish. Append-only once stored."""
    incident_id: str
    content_id: str
    record_cycle: int
    date: datetime
    severity: RiskLevel
    failure_mode: FailureMode
    root_cause: str
    fix: str
    model_prompt_version: Optional[str] = None
    title: str = ""
    observed_text: str = ""
    expected_truth: str = ""
    impact: Impact = Impact.MEDIUM
    reproduction: str = ""
    claim_id: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["severity"] = self.severity.value
        data["failure_mode"] = self.failure_mode.value
        data["impact"] = self.impact.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "HallucinationIncident":
        data = dict(data)
        data["date"] = _parse_dt(data["date"])
        data["severity"] = RiskLevel(data["severity"])
        data["failure_mode"] = FailureMode(data["failure_mode"])
        data["impact"] = Impact(data.get("impact", Impact.MEDIUM.value))
        return cls(**data)


@dataclass
class CheckResult:
    """Outcome of one automated structural check."""
    check_name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)
