"""
Built-in structural checkers: metadata schema, system-of-record links, glossary terms.
"""

import re
from typing import Dict, List

from ..core.schema import AIAssistance, CheckResult, RiskLevel, ReviewRecord
from .base import IChecker

URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$")
# repo/path/file.ext, optionally pinned with @ref and anchored with #L10 or #L10-L20
PATH_PATTERN = re.compile(r"^[\w.\-]+(?:/[\w.\-]+)*(?:@[\w.\-/]+)?(?:#L\d+(?:-L\d+)?)?$")


class SchemaChecker(IChecker):
    """Metadata fields carry values of the right type and claim ids are unique."""

    name = "schema"

    def check(self, record: ReviewRecord) -> List[CheckResult]:
        problems = []

        if record.ai_generated is not None and not isinstance(record.ai_generated, AIAssistance):
            problems.append(f"ai_generated has invalid value {record.ai_generated!r}")
        if record.risk_level is not None and not isinstance(record.risk_level, RiskLevel):
            problems.append(f"risk_level has invalid value {record.risk_level!r}")
        if any(not isinstance(s, str) or not s.strip() for s in record.sources):
            problems.append("sources must be non-empty strings")
        if record.model is not None and not record.prompt_version:
            problems.append("model is set without a prompt_version")

        seen = set()
        for claim in record.claims:
            if claim.claim_id in seen:
                problems.append(f"duplicate claim id {claim.claim_id}")
            seen.add(claim.claim_id)
            if not claim.text.strip():
                problems.append(f"claim {claim.claim_id} has no text")

        if problems:
            return [self.result(False, "; ".join(problems))]
        return [self.result(True)]


class LinkChecker(IChecker):
    """Every source reference is a well-formed link into a system of record."""

    name = "links"

    def check(self, record: ReviewRecord) -> List[CheckResult]:
        if not record.sources:
            return [self.result(False, "no source references")]

        bad = [s for s in record.sources if not is_sor_link(s)]
        bad_citations = [
            c.claim_id for c in record.claims
            if c.citation and not is_sor_link(c.citation)
        ]

        details = []
        if bad:
            details.append(f"malformed sources: {', '.join(bad)}")
        if bad_citations:
            details.append(f"malformed citations on claims: {', '.join(bad_citations)}")
        if details:
            return [self.result(False, "; ".join(details))]
        return [self.result(True)]


class GlossaryChecker(IChecker):
    """Claim text avoids terms the glossary marks as deprecated."""

    name = "glossary"

    def __init__(self, glossary: Dict[str, str]):
        self._patterns = [
            (term, preferred, re.compile(r"\b%s\b" % re.escape(term), re.IGNORECASE))
            for term, preferred in sorted(glossary.items())
        ]

    def check(self, record: ReviewRecord) -> List[CheckResult]:
        hits = []
        for claim in record.claims:
            for term, preferred, pattern in self._patterns:
                if pattern.search(claim.text):
                    hits.append(f"claim {claim.claim_id} uses '{term}', prefer '{preferred}'")

        if hits:
            return [self.result(False, "; ".join(hits))]
        return [self.result(True)]


def is_sor_link(reference: str) -> bool:
    reference = reference.strip()
    return bool(URL_PATTERN.match(reference) or PATH_PATTERN.match(reference))
