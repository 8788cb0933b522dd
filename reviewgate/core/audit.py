"""
Append-only audit sink for prompt/retrieval context, reviewer comments, transitions and failed checks.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from util.logging import audit_event

from . import config
from .db import get_db, init_db

KIND_CONTEXT = "context"
KIND_COMMENT = "comment"
KIND_FAILED_CHECK = "failed_check"
KIND_TRANSITION = "transition"


@dataclass
class AuditEntry:
    id: int
    content_id: str
    record_cycle: Optional[int]
    ts: datetime
    kind: str
    actor: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "content_id": self.content_id,
            "record_cycle": self.record_cycle,
            "ts": self.ts.isoformat(),
            "kind": self.kind,
            "actor": self.actor,
            "payload": self.payload,
        }


class AuditLog:
    """Append-only audit entries stored beside the review records."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        init_db(self.db_path)

    def append(self, content_id: str, kind: str, actor: str, payload: Dict[str, Any],
               record_cycle: Optional[int] = None, ts: Optional[datetime] = None) -> int:
        """Append one entry and return its id."""
        ts = ts or datetime.now()
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "INSERT INTO audit_log (content_id, record_cycle, ts, kind, actor, payload) VALUES (?, ?, ?, ?, ?, ?)",
                (content_id, record_cycle, ts.isoformat(), kind, actor, json.dumps(payload))
            )
            conn.commit()
            entry_id = cursor.lastrowid

        audit_event(f"audit.{kind}", {"content_id": content_id, "actor": actor}, payload,
                    max_length=config.AUDIT_PAYLOAD_MAX)
        return entry_id

    def record_context(self, content_id: str, actor: str, prompt: str, retrieval_context: Optional[str] = None,
                       model_prompt_version: Optional[str] = None, record_cycle: Optional[int] = None) -> int:
        """Keep the prompt and retrieval context a draft was generated from."""
        return self.append(content_id, KIND_CONTEXT, actor, {
            "prompt": prompt,
            "retrieval": retrieval_context,
            "model_prompt_version": model_prompt_version,
        }, record_cycle)

    def add_comment(self, content_id: str, actor: str, comment: str, record_cycle: Optional[int] = None) -> int:
        return self.append(content_id, KIND_COMMENT, actor, {"comment": comment}, record_cycle)

    def record_failed_check(self, content_id: str, actor: str, error: Dict[str, Any],
                            record_cycle: Optional[int] = None) -> int:
        return self.append(content_id, KIND_FAILED_CHECK, actor, error, record_cycle)

    def record_transition(self, content_id: str, actor: str, from_state: str, to_state: str,
                          record_cycle: Optional[int] = None) -> int:
        return self.append(content_id, KIND_TRANSITION, actor, {"from": from_state, "to": to_state}, record_cycle)

    def list_entries(self, content_id: Optional[str] = None, kind: Optional[str] = None,
                     limit: int = 100) -> List[AuditEntry]:
        """List entries newest first."""
        if limit <= 0:
            return []

        query = "SELECT id, content_id, record_cycle, ts, kind, actor, payload FROM audit_log WHERE 1 = 1"
        params: list = []
        if content_id:
            query += " AND content_id = ?"
            params.append(content_id)
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY ts DESC, id DESC LIMIT ?"
        params.append(limit)

        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()

        entries = []
        for entry_id, cid, cycle, ts, kind_value, actor, payload in rows:
            try:
                parsed_payload = json.loads(payload) if payload else {}
            except (json.JSONDecodeError, ValueError):
                parsed_payload = {"raw_data": payload}
            entries.append(AuditEntry(
                id=entry_id,
                content_id=cid,
                record_cycle=cycle,
                ts=datetime.fromisoformat(ts),
                kind=kind_value,
                actor=actor,
                payload=parsed_payload
            ))
        return entries

    def delete_context(self, content_id: str) -> int:
        """Remove stored context for a content item. Callers must enforce retention first."""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM audit_log WHERE content_id = ? AND kind = ?",
                (content_id, KIND_CONTEXT)
            )
            conn.commit()
            return cursor.rowcount
