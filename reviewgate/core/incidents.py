"""
Issue tracker rendering for hallucination incidents.

Trackers receive a fixed field set; nothing here talks to a tracker.
"""

from typing import Any, Dict, List, Optional

from .schema import HallucinationIncident, ReviewRecord

ISSUE_FIELDS = [
    "title",
    "labels",
    "assignees",
    "observed_text",
    "expected_truth",
    "system_of_record_links",
    "failure_mode",
    "impact",
    "reproduction",
    "fix",
    "model_prompt_version",
]


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def render_issue(incident: HallucinationIncident, record: Optional[ReviewRecord] = None) -> Dict[str, Any]:
    """Render an incident as the issue tracker field set."""
    links: List[str] = []
    if record is not None:
        links.extend(record.sources)
        if incident.claim_id:
            claim = record.get_claim(incident.claim_id)
            if claim is not None and claim.citation:
                links.append(claim.citation)

    labels = [
        "hallucination",
        f"severity:{incident.severity.value}",
        f"failure-mode:{incident.failure_mode.value}",
    ] + list(incident.labels)

    return {
        "title": incident.title,
        "labels": _dedupe(labels),
        "assignees": _dedupe(list(incident.assignees)),
        "observed_text": incident.observed_text,
        "expected_truth": incident.expected_truth,
        "system_of_record_links": _dedupe(links),
        "failure_mode": incident.failure_mode.value,
        "impact": incident.impact.value,
        "reproduction": incident.reproduction,
        "fix": incident.fix,
        "model_prompt_version": incident.model_prompt_version,
    }


def render_issue_markdown(incident: HallucinationIncident, record: Optional[ReviewRecord] = None) -> str:
    """Render an incident as a Markdown issue body for trackers that take plain text."""
    issue = render_issue(incident, record)
    lines = [
        f"# {issue['title']}",
        "",
        f"**Failure mode:** {issue['failure_mode']}  ",
        f"**Impact:** {issue['impact']}  ",
        f"**Model/prompt version:** {issue['model_prompt_version'] or 'unknown'}  ",
        f"**Labels:** {', '.join(issue['labels'])}",
        "",
        "## Observed text",
        "",
        issue["observed_text"] or "_Not recorded_",
        "",
        "## Expected truth",
        "",
        issue["expected_truth"] or "_Not recorded_",
        "",
        "## System of record",
        "",
    ]
    if issue["system_of_record_links"]:
        lines.extend(f"- {link}" for link in issue["system_of_record_links"])
    else:
        lines.append("_No links recorded_")
    lines.extend([
        "",
        "## Reproduction",
        "",
        issue["reproduction"] or "_Not recorded_",
        "",
        "## Fix",
        "",
        issue["fix"] or "_Not recorded_",
        "",
        f"Root cause: {incident.root_cause}",
    ])
    return "\n".join(lines) + "\n"
