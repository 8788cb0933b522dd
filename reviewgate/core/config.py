"""
Review engine configuration - environment driven, read once at import.
Policy values that checks depend on are bundled into ReviewPolicy and passed in explicitly.
"""

import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

import yaml

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/reviewgate.db")

# Retention window for prompt/retrieval context after publish (days, 90-180)
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "90"))
RETENTION_MIN_DAYS = 90
RETENTION_MAX_DAYS = 180

# Bound on SME verification <-> correction round trips per review cycle
MAX_CORRECTION_CYCLES = int(os.getenv("MAX_CORRECTION_CYCLES", "5"))

# Severity to SLA mapping (advisory deadlines)
SLA_P0_HOURS = int(os.getenv("SLA_P0_HOURS", "24"))
SLA_P1_BUSINESS_DAYS = int(os.getenv("SLA_P1_BUSINESS_DAYS", "3"))
REVIEW_CYCLE_DAYS = int(os.getenv("REVIEW_CYCLE_DAYS", "14"))
REVIEW_CYCLE_ANCHOR = os.getenv("REVIEW_CYCLE_ANCHOR", "2024-01-01")  # a Monday

# Optional YAML glossary: {deprecated_term: preferred_term}
GLOSSARY_PATH = os.getenv("GLOSSARY_PATH")

# Audit payloads longer than this are truncated in log lines (never in the audit table)
AUDIT_PAYLOAD_MAX = int(os.getenv("AUDIT_PAYLOAD_MAX", "100"))

VERSION = "1.0.0"

REQUIRED_METADATA_FIELDS = [
    "ai_generated",
    "sources",
    "verified_by",
    "review_date",
    "risk_level",
    "model",
    "retrieval_context",
]


@dataclass
class ReviewPolicy:
    """Tunable review policy injected into the validator, checkers and workflow engine."""
    retention_days: int = 90
    max_correction_cycles: int = 5
    sla_p0_hours: int = 24
    sla_p1_business_days: int = 3
    review_cycle_days: int = 14
    review_cycle_anchor: date = date(2024, 1, 1)
    glossary: Dict[str, str] = field(default_factory=dict)
    required_fields: List[str] = field(default_factory=lambda: list(REQUIRED_METADATA_FIELDS))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: Optional[str] = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def load_glossary(path: Optional[str]) -> Dict[str, str]:
    """Load a deprecated -> preferred term mapping from a YAML file."""
    if not path:
        return {}
    glossary_file = Path(path)
    if not glossary_file.exists():
        return {}
    data = yaml.safe_load(glossary_file.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Glossary file {path} must contain a mapping")
    return {str(k).lower(): str(v) for k, v in data.items()}


def load_policy() -> ReviewPolicy:
    """Build the review policy from environment configuration."""
    return ReviewPolicy(
        retention_days=RETENTION_DAYS,
        max_correction_cycles=MAX_CORRECTION_CYCLES,
        sla_p0_hours=SLA_P0_HOURS,
        sla_p1_business_days=SLA_P1_BUSINESS_DAYS,
        review_cycle_days=REVIEW_CYCLE_DAYS,
        review_cycle_anchor=date.fromisoformat(REVIEW_CYCLE_ANCHOR),
        glossary=load_glossary(GLOSSARY_PATH),
    )


def validate_config(policy: Optional[ReviewPolicy] = None):
    """Validate review configuration and return any issues."""
    policy = policy or load_policy()
    issues = []

    if not RETENTION_MIN_DAYS <= policy.retention_days <= RETENTION_MAX_DAYS:
        issues.append(
            f"RETENTION_DAYS must be between {RETENTION_MIN_DAYS} and {RETENTION_MAX_DAYS}"
        )

    if policy.max_correction_cycles < 1:
        issues.append("MAX_CORRECTION_CYCLES must be >= 1")

    if policy.sla_p0_hours < 1:
        issues.append("SLA_P0_HOURS must be >= 1")

    if policy.sla_p1_business_days < 1:
        issues.append("SLA_P1_BUSINESS_DAYS must be >= 1")

    if policy.review_cycle_days < 1:
        issues.append("REVIEW_CYCLE_DAYS must be >= 1")

    return issues
