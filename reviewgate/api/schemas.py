"""
Request and response models for the review API.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.schema import (
    AIAssistance,
    ClaimStatus,
    FailureMode,
    Impact,
    ReviewRecord,
    ReviewerRole,
    RiskLevel,
    WorkflowState,
)


def _not_blank(v: str, name: str) -> str:
    if not v or not v.strip():
        raise ValueError(f'{name} cannot be empty')
    return v.strip()


class ClaimRequest(BaseModel):
    claim_id: Optional[str] = None
    text: str
    citation: Optional[str] = None
    severity: Optional[RiskLevel] = None
    status: ClaimStatus = ClaimStatus.UNCLEAR

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        return _not_blank(v, 'text')


class RecordCreateRequest(BaseModel):
    content_id: str
    actor: str
    ai_generated: Optional[AIAssistance] = None
    sources: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    prompt_version: Optional[str] = None
    retrieval_context: Optional[str] = None
    review_date: Optional[date] = None
    risk_level: Optional[RiskLevel] = None
    prompt: Optional[str] = None
    claims: List[ClaimRequest] = Field(default_factory=list)

    @field_validator('content_id')
    @classmethod
    def content_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'content_id')

    @field_validator('actor')
    @classmethod
    def actor_must_not_be_empty(cls, v):
        return _not_blank(v, 'actor')


class ActorRequest(BaseModel):
    actor: str

    @field_validator('actor')
    @classmethod
    def actor_must_not_be_empty(cls, v):
        return _not_blank(v, 'actor')


class TransitionRequest(ActorRequest):
    target: WorkflowState
    expected_version: Optional[int] = None


class ClaimAddRequest(ClaimRequest):
    actor: str


class ClaimStatusRequest(ActorRequest):
    status: ClaimStatus
    citation: Optional[str] = None
    note: Optional[str] = None


class ClaimFlagRequest(ActorRequest):
    severity: RiskLevel


class EscalationRequest(ActorRequest):
    note: Optional[str] = None


class ApprovalRequest(BaseModel):
    role: ReviewerRole
    identity: str
    expected_version: Optional[int] = None

    @field_validator('identity')
    @classmethod
    def identity_must_not_be_empty(cls, v):
        return _not_blank(v, 'identity')


class RiskRequest(ActorRequest):
    level: RiskLevel
    justification: Optional[str] = None


class PostMergeRequest(ActorRequest):
    tuning_notes: str = ""
    expected_version: Optional[int] = None


class CommentRequest(ActorRequest):
    comment: str


class ContextRequest(ActorRequest):
    prompt: str
    retrieval_context: Optional[str] = None


class IncidentRequest(ActorRequest):
    failure_mode: FailureMode
    severity: RiskLevel
    root_cause: str
    fix: str
    observed_text: str = ""
    expected_truth: str = ""
    claim_id: Optional[str] = None
    impact: Impact = Impact.MEDIUM
    reproduction: str = ""
    title: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)
    reopen: bool = False


class ClaimResponse(BaseModel):
    claim_id: str
    text: str
    status: ClaimStatus
    citation: Optional[str] = None
    severity: Optional[RiskLevel] = None
    escalated: bool = False
    note: Optional[str] = None


class ApprovalResponse(BaseModel):
    role: ReviewerRole
    identity: str
    approved_at: datetime


class RecordResponse(BaseModel):
    content_id: str
    cycle: int
    state: WorkflowState
    ai_generated: Optional[AIAssistance] = None
    sources: List[str]
    verified_by: List[str]
    approvals: List[ApprovalResponse]
    review_date: Optional[date] = None
    risk_level: Optional[RiskLevel] = None
    model: Optional[str] = None
    prompt_version: Optional[str] = None
    retrieval_context: Optional[str] = None
    claims: List[ClaimResponse]
    escalations: List[str]
    correction_cycles: int
    sla_deadline: Optional[datetime] = None
    published_at: Optional[datetime] = None
    archived: bool
    post_merge: Dict[str, Any]
    version: int

    @classmethod
    def from_record(cls, record: ReviewRecord) -> "RecordResponse":
        data = record.to_dict()
        data.pop("risk_history", None)
        data.pop("created_at", None)
        data.pop("updated_at", None)
        return cls(**data)


class RecordListResponse(BaseModel):
    records: List[RecordResponse]


class CheckResultResponse(BaseModel):
    check_name: str
    passed: bool
    detail: str


class ChecksResponse(BaseModel):
    content_id: str
    passed: bool
    missing_fields: List[str]
    results: List[CheckResultResponse]


class IncidentResponse(BaseModel):
    incident: Dict[str, Any]
    issue: Dict[str, Any]
    record: RecordResponse


class IncidentListResponse(BaseModel):
    incidents: List[Dict[str, Any]]


class AuditEntryResponse(BaseModel):
    id: int
    content_id: str
    record_cycle: Optional[int] = None
    ts: datetime
    kind: str
    actor: Optional[str] = None
    payload: Dict[str, Any]


class AuditListResponse(BaseModel):
    entries: List[AuditEntryResponse]


class MetadataResponse(BaseModel):
    content_id: str
    front_matter: str


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    record_count: int
    config_issues: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error_type: str
    message: str
