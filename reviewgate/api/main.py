"""
Review API - HTTP surface over the workflow engine.
"""

from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from util.logging import logger

from .schemas import (
    ActorRequest,
    ApprovalRequest,
    AuditEntryResponse,
    AuditListResponse,
    CheckResultResponse,
    ChecksResponse,
    ClaimAddRequest,
    ClaimFlagRequest,
    ClaimStatusRequest,
    CommentRequest,
    ContextRequest,
    EscalationRequest,
    HealthResponse,
    IncidentListResponse,
    IncidentRequest,
    IncidentResponse,
    MetadataResponse,
    PostMergeRequest,
    RecordCreateRequest,
    RecordListResponse,
    RecordResponse,
    RiskRequest,
    TransitionRequest,
)
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.dao import RecordStore
from ..core.db import health_check
from ..core.errors import DuplicateRecord, InvalidTransition, NotFound, ReviewError
from ..core.incidents import render_issue
from ..core.metadata import to_front_matter
from ..core.schema import ClaimAnnotation, WorkflowState
from ..core.validator import check_metadata_complete
from ..core.workflow import WorkflowEngine

app = FastAPI(
    title="ReviewGate API",
    version=VERSION,
    description="Review record engine for AI-assisted technical content",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

_engine: Optional[WorkflowEngine] = None


def get_engine() -> WorkflowEngine:
    """Engine bound to the configured database; tests override this dependency."""
    global _engine
    if _engine is None:
        _engine = WorkflowEngine(RecordStore())
    return _engine


def _status_for(error: ReviewError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, (DuplicateRecord, InvalidTransition)):
        return 409
    return 422


@app.exception_handler(ReviewError)
async def review_error_handler(request: Request, exc: ReviewError):
    return JSONResponse(status_code=_status_for(exc), content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error_type": "BAD_REQUEST", "message": str(exc)})


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(engine: WorkflowEngine = Depends(get_engine)):
    """Check system health."""
    db_health = health_check(engine.store.db_path)
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        record_count=engine.store.count_records() if db_health else 0,
        config_issues=validate_config(engine.policy),
    )


@app.post("/records", response_model=RecordResponse, status_code=201)
def create_record(req: RecordCreateRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.intake(
        content_id=req.content_id,
        actor=req.actor,
        ai_generated=req.ai_generated,
        sources=req.sources,
        model=req.model,
        prompt_version=req.prompt_version,
        retrieval_context=req.retrieval_context,
        review_date=req.review_date,
        risk_level=req.risk_level,
        claims=[
            ClaimAnnotation(
                claim_id=c.claim_id or f"c{i}",
                text=c.text,
                status=c.status,
                citation=c.citation,
                severity=c.severity,
            )
            for i, c in enumerate(req.claims, start=1)
        ],
        prompt=req.prompt,
    )
    return RecordResponse.from_record(record)


# Define /records list BEFORE the /records/{content_id:path} routes
@app.get("/records", response_model=RecordListResponse)
def list_records(state: Optional[WorkflowState] = None, include_archived: bool = True,
                 engine: WorkflowEngine = Depends(get_engine)):
    records = engine.store.list_records(state=state, include_archived=include_archived)
    return RecordListResponse(records=[RecordResponse.from_record(r) for r in records])


@app.get("/records/{content_id:path}/history", response_model=RecordListResponse)
def record_history(content_id: str, engine: WorkflowEngine = Depends(get_engine)):
    history = engine.store.history(content_id)
    if not history:
        raise NotFound(content_id)
    return RecordListResponse(records=[RecordResponse.from_record(r) for r in history])


@app.post("/records/{content_id:path}/transitions", response_model=RecordResponse)
def transition_record(content_id: str, req: TransitionRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.advance(content_id, req.target, req.actor, expected_version=req.expected_version)
    return RecordResponse.from_record(record)


@app.post("/records/{content_id:path}/checks", response_model=ChecksResponse)
def run_checks_endpoint(content_id: str, engine: WorkflowEngine = Depends(get_engine)):
    """Dry run of the automated checks stage; the record does not move."""
    record = engine.store.get(content_id)
    metadata = check_metadata_complete(record, engine.policy, exclude=["verified_by"])
    results = engine.run_automated_checks(content_id)
    return ChecksResponse(
        content_id=content_id,
        passed=metadata.passed and all(r.passed for r in results),
        missing_fields=metadata.missing_fields,
        results=[CheckResultResponse(**r.to_dict()) for r in results],
    )


@app.post("/records/{content_id:path}/claims", response_model=RecordResponse)
def add_claim(content_id: str, req: ClaimAddRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.add_claim(content_id, req.text, req.actor, claim_id=req.claim_id,
                              citation=req.citation, severity=req.severity, status=req.status)
    return RecordResponse.from_record(record)


@app.put("/records/{content_id:path}/claims/{claim_id}", response_model=RecordResponse)
def mark_claim(content_id: str, claim_id: str, req: ClaimStatusRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.mark_claim(content_id, claim_id, req.status, req.actor, citation=req.citation, note=req.note)
    return RecordResponse.from_record(record)


@app.post("/records/{content_id:path}/claims/{claim_id}/flag", response_model=RecordResponse)
def flag_claim(content_id: str, claim_id: str, req: ClaimFlagRequest, engine: WorkflowEngine = Depends(get_engine)):
    return RecordResponse.from_record(engine.flag_claim(content_id, claim_id, req.severity, req.actor))


@app.post("/records/{content_id:path}/claims/{claim_id}/escalate", response_model=RecordResponse)
def escalate_claim(content_id: str, claim_id: str, req: EscalationRequest, engine: WorkflowEngine = Depends(get_engine)):
    return RecordResponse.from_record(engine.escalate_claim(content_id, claim_id, req.actor, note=req.note))


@app.post("/records/{content_id:path}/approvals", response_model=RecordResponse)
def record_approval(content_id: str, req: ApprovalRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.record_approval(content_id, req.role, req.identity, expected_version=req.expected_version)
    return RecordResponse.from_record(record)


@app.post("/records/{content_id:path}/risk", response_model=RecordResponse)
def set_risk(content_id: str, req: RiskRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.set_risk_level(content_id, req.level, req.actor, justification=req.justification)
    return RecordResponse.from_record(record)


@app.post("/records/{content_id:path}/publish", response_model=RecordResponse)
def publish_record(content_id: str, req: ActorRequest, engine: WorkflowEngine = Depends(get_engine)):
    return RecordResponse.from_record(engine.publish(content_id, req.actor))


@app.post("/records/{content_id:path}/post-merge", response_model=RecordResponse)
def post_merge(content_id: str, req: PostMergeRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.log_post_merge(content_id, req.actor, req.tuning_notes, expected_version=req.expected_version)
    return RecordResponse.from_record(record)


@app.post("/records/{content_id:path}/incidents", response_model=IncidentResponse, status_code=201)
def report_incident(content_id: str, req: IncidentRequest, engine: WorkflowEngine = Depends(get_engine)):
    incident, record = engine.report_incident(
        content_id,
        req.actor,
        failure_mode=req.failure_mode,
        severity=req.severity,
        root_cause=req.root_cause,
        fix=req.fix,
        observed_text=req.observed_text,
        expected_truth=req.expected_truth,
        claim_id=req.claim_id,
        impact=req.impact,
        reproduction=req.reproduction,
        title=req.title,
        labels=req.labels,
        assignees=req.assignees,
        reopen=req.reopen,
    )
    return IncidentResponse(
        incident=incident.to_dict(),
        issue=render_issue(incident, record),
        record=RecordResponse.from_record(record),
    )


@app.get("/incidents", response_model=IncidentListResponse)
def list_incidents(content_id: Optional[str] = None, engine: WorkflowEngine = Depends(get_engine)):
    return IncidentListResponse(incidents=[i.to_dict() for i in engine.store.list_incidents(content_id)])


@app.get("/incidents/{incident_id}/issue")
def incident_issue(incident_id: str, engine: WorkflowEngine = Depends(get_engine)):
    """Issue tracker field set for an incident."""
    incident = engine.store.get_incident(incident_id)
    record = engine.store.get_cycle(incident.content_id, incident.record_cycle)
    return render_issue(incident, record)


@app.get("/records/{content_id:path}/metadata", response_model=MetadataResponse)
def record_metadata(content_id: str, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.store.get(content_id)
    return MetadataResponse(content_id=content_id, front_matter=to_front_matter(record))


@app.post("/records/{content_id:path}/comments", status_code=201)
def add_comment(content_id: str, req: CommentRequest, engine: WorkflowEngine = Depends(get_engine)):
    entry_id = engine.add_comment(content_id, req.actor, req.comment)
    return {"id": entry_id}


@app.post("/records/{content_id:path}/context", status_code=201)
def record_context(content_id: str, req: ContextRequest, engine: WorkflowEngine = Depends(get_engine)):
    record = engine.store.get(content_id)
    entry_id = engine.audit.record_context(content_id, req.actor, req.prompt,
                                           req.retrieval_context or record.retrieval_context,
                                           record.model_prompt_version, record.cycle)
    return {"id": entry_id}


@app.get("/records/{content_id:path}/audit", response_model=AuditListResponse)
def record_audit(content_id: str, kind: Optional[str] = None, limit: int = 100,
                 engine: WorkflowEngine = Depends(get_engine)):
    engine.store.get(content_id)
    entries = engine.audit.list_entries(content_id, kind=kind, limit=limit)
    return AuditListResponse(entries=[AuditEntryResponse(**e.to_dict()) for e in entries])


# Content ids may contain slashes; keep this catch-all after every /records/{content_id:path}/... route
@app.get("/records/{content_id:path}", response_model=RecordResponse)
def get_record(content_id: str, engine: WorkflowEngine = Depends(get_engine)):
    return RecordResponse.from_record(engine.store.get(content_id))
