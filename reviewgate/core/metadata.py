"""
Front matter metadata store - reads and writes the review metadata field set in Markdown documents.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import yaml

from .schema import (
    AIAssistance,
    Approval,
    ClaimAnnotation,
    ClaimStatus,
    ReviewRecord,
    ReviewerRole,
    RiskLevel,
)

FRONT_MATTER_DELIMITER = "---"


def split_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a Markdown document into its YAML front matter and body."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return {}, text

    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONT_MATTER_DELIMITER:
            raw = "\n".join(lines[1:idx])
            body = "\n".join(lines[idx + 1:])
            meta = yaml.safe_load(raw) if raw.strip() else {}
            if meta is not None and not isinstance(meta, dict):
                raise ValueError("front matter must be a mapping")
            return (meta or {}), body

    return {}, text


def record_metadata(record: ReviewRecord) -> Dict[str, Any]:
    """The metadata field set of a record, in front matter order."""
    meta: Dict[str, Any] = {
        "content_id": record.content_id,
        "ai_generated": record.ai_generated.value if record.ai_generated else None,
        "sources": list(record.sources),
        "verified_by": record.verified_by,
        "approvals": {a.role.value: a.identity for a in record.approvals},
        "review_date": record.review_date,
        "risk_level": record.risk_level.value if record.risk_level else None,
        "model": record.model,
        "prompt_version": record.prompt_version,
        "retrieval_context": record.retrieval_context,
    }
    if record.claims:
        meta["claims"] = [
            {k: v for k, v in claim.to_dict().items() if v not in (None, False)}
            for claim in record.claims
        ]
    return meta


def to_front_matter(record: ReviewRecord) -> str:
    """Render the record metadata as a YAML front matter block."""
    dumped = yaml.safe_dump(record_metadata(record), sort_keys=False, allow_unicode=True).strip()
    return f"{FRONT_MATTER_DELIMITER}\n{dumped}\n{FRONT_MATTER_DELIMITER}\n"


def write_front_matter(text: str, record: ReviewRecord) -> str:
    """Replace (or add) the front matter of a document, keeping its body."""
    _, body = split_front_matter(text)
    return to_front_matter(record) + body.lstrip("\n")


def _coerce_ai_flag(value: Any) -> Optional[AIAssistance]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return AIAssistance.FULL if value else AIAssistance.NONE
    return AIAssistance(str(value).lower())


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def record_from_metadata(meta: Dict[str, Any], content_id: Optional[str] = None) -> ReviewRecord:
    """Build an (unsaved) review record from a front matter mapping.

    Raises ValueError for values outside the allowed enums. Identities listed only in
    verified_by do not count as approvals; sign-offs must name their role under approvals.
    """
    review_date = _coerce_date(meta.get("review_date"))
    approved_at = datetime.combine(review_date, datetime.min.time()) if review_date else datetime.now()

    approvals = []
    for role, identity in (meta.get("approvals") or {}).items():
        if identity:
            approvals.append(Approval(role=ReviewerRole(str(role).lower()), identity=str(identity),
                                      approved_at=approved_at))

    claims = []
    for index, raw in enumerate(meta.get("claims") or [], start=1):
        claims.append(ClaimAnnotation(
            claim_id=str(raw.get("claim_id") or raw.get("id") or f"c{index}"),
            text=str(raw.get("text", "")),
            status=ClaimStatus(raw.get("status", ClaimStatus.UNCLEAR.value)),
            citation=raw.get("citation"),
            severity=RiskLevel(raw["severity"]) if raw.get("severity") else None,
            escalated=bool(raw.get("escalated", False)),
            note=raw.get("note"),
        ))

    sources = meta.get("sources") or []
    if isinstance(sources, str):
        sources = [sources]

    return ReviewRecord(
        content_id=str(content_id or meta.get("content_id") or ""),
        ai_generated=_coerce_ai_flag(meta.get("ai_generated")),
        sources=[str(s) for s in sources],
        approvals=approvals,
        review_date=review_date,
        risk_level=RiskLevel(str(meta["risk_level"]).upper()) if meta.get("risk_level") else None,
        model=meta.get("model"),
        prompt_version=str(meta["prompt_version"]) if meta.get("prompt_version") is not None else None,
        retrieval_context=meta.get("retrieval_context"),
        claims=claims,
    )


def record_from_front_matter(text: str, content_id: Optional[str] = None) -> ReviewRecord:
    meta, _ = split_front_matter(text)
    return record_from_metadata(meta, content_id)
