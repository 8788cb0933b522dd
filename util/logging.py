"""
Structured logging for the review engine - transitions, checks, approvals, incidents and retention.
"""

import logging
from typing import Any, Dict, List

# Prompt text and reviewer comments never go to log lines in full
SENSITIVE_FIELDS = ['prompt', 'retrieval', 'observed_text', 'comment', 'content', 'secret', 'password']


class StructuredLogger:
    """Structured logger for review workflow operations."""

    def __init__(self, name: str = "reviewgate"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_record_operation(self, operation: str, content_id: str, cycle: int = None, status: str = "success"):
        """Log a record store operation."""
        details = {"content_id": content_id}
        if cycle is not None:
            details["cycle"] = cycle
        self.log_operation(f"record.{operation}", status, details)

    def log_transition(self, content_id: str, from_state: str, to_state: str, actor: str):
        """Log a successful workflow transition."""
        self.log_operation("workflow.transition", "success", {
            "content_id": content_id,
            "from": from_state,
            "to": to_state,
            "actor": actor
        })

    def log_transition_blocked(self, content_id: str, from_state: str, to_state: str, error_type: str, details: Dict[str, Any] = None):
        """Log a transition that was refused; the record stays where it is."""
        log_details = {
            "content_id": content_id,
            "from": from_state,
            "to": to_state,
            "error_type": error_type
        }
        if details:
            log_details.update(sanitize_payload(details))
        self.logger.warning(f"Operation: workflow.transition, Status: blocked, Details: {log_details}")

    def log_check_results(self, content_id: str, results: List[Any]):
        """Log automated check outcomes."""
        failed = [r.check_name for r in results if not r.passed]
        self.log_operation("checks.run", "failed" if failed else "passed", {
            "content_id": content_id,
            "checks": len(results),
            "failed": failed
        })

    def log_approval(self, content_id: str, role: str, identity: str):
        """Log an approval recorded on a record."""
        self.log_operation("approval.recorded", "approved", {
            "content_id": content_id,
            "role": role,
            "identity": identity
        })

    def log_risk_change(self, content_id: str, from_level: str, to_level: str, justified: bool):
        """Log a risk level change."""
        self.log_operation("risk.changed", "success", {
            "content_id": content_id,
            "from": from_level,
            "to": to_level,
            "justified": justified
        })

    def log_incident(self, incident_id: str, content_id: str, severity: str, failure_mode: str, reopened: bool):
        """Log a hallucination incident."""
        self.log_operation("incident.logged", "open", {
            "incident_id": incident_id,
            "content_id": content_id,
            "severity": severity,
            "failure_mode": failure_mode,
            "reopened": reopened
        })

    def log_retention(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log retention maintenance."""
        self.log_operation(f"retention.{operation}", status, details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None, max_length: int = 100):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields, max_length=max_length)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None, max_length: int = 100) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields, max_length)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields, max_length) for item in payload]
    else:
        return payload
