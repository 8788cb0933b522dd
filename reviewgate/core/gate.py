"""
CI gate over documents carrying review metadata in their front matter.

Runs the same checks the workflow engine applies at a stage, without a database, so a
pipeline can refuse to merge content whose metadata could not pass review.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from ..checks import default_checkers, run_checks
from .config import ReviewPolicy
from .errors import ReviewError
from .metadata import record_from_front_matter
from .schema import CheckResult, ReviewRecord
from .validator import (
    check_metadata_complete,
    missing_approvals,
    unresolved_claims,
)

STAGE_CHECKS = "checks"
STAGE_PUBLISH = "publish"
STAGES = [STAGE_CHECKS, STAGE_PUBLISH]


@dataclass
class GateReport:
    content_id: str
    stage: str
    results: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    def to_dict(self):
        return {
            "content_id": self.content_id,
            "stage": self.stage,
            "passed": self.passed,
            "results": [r.to_dict() for r in self.results],
        }


def gate_record(record: ReviewRecord, policy: ReviewPolicy, stage: str = STAGE_CHECKS) -> GateReport:
    """Evaluate a record against everything required to leave automated checks, or to publish."""
    if stage not in STAGES:
        raise ValueError(f"stage must be one of: {STAGES}")

    report = GateReport(content_id=record.content_id, stage=stage)

    intake_missing = []
    if record.ai_generated is None:
        intake_missing.append("ai_generated")
    if not record.sources:
        intake_missing.append("sources")
    report.results.append(CheckResult("intake", not intake_missing,
                                      f"missing: {', '.join(intake_missing)}" if intake_missing else ""))

    exclude = ["verified_by"] if stage == STAGE_CHECKS else None
    metadata = check_metadata_complete(record, policy, exclude=exclude)
    report.results.append(CheckResult("metadata", metadata.passed,
                                      f"missing: {', '.join(metadata.missing_fields)}" if not metadata.passed else ""))

    report.results.extend(run_checks(record, default_checkers(policy)))

    if stage == STAGE_PUBLISH:
        pending = unresolved_claims(record)
        report.results.append(CheckResult("claims", not pending,
                                          f"unresolved: {', '.join(pending)}" if pending else ""))
        roles = missing_approvals(record)
        report.results.append(CheckResult("approvals", not roles,
                                          f"missing approval from: {', '.join(roles)}" if roles else ""))

    return report


def gate_document(text: str, policy: ReviewPolicy, stage: str = STAGE_CHECKS,
                  content_id: Optional[str] = None) -> GateReport:
    """Gate a Markdown document by its front matter."""
    try:
        record = record_from_front_matter(text, content_id)
    except (yaml.YAMLError, ValueError, KeyError, TypeError, AttributeError) as e:
        report = GateReport(content_id=content_id or "", stage=stage)
        report.results.append(CheckResult("front_matter", False, f"unreadable metadata: {e}"))
        return report
    return gate_record(record, policy, stage)


def describe_error(error: ReviewError) -> str:
    """One-line description of what a human has to fix."""
    return f"{error.error_type}: {error.message}"
