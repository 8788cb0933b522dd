#!/usr/bin/env python3
"""
Review gate command line - CI check over document front matter and record status lookups.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reviewgate.core.config import load_policy
from reviewgate.core.dao import RecordStore
from reviewgate.core.errors import ReviewError
from reviewgate.core.gate import STAGES, STAGE_CHECKS, GateReport, describe_error, gate_document
from reviewgate.core.validator import missing_approvals, unresolved_claims


def format_report(report: GateReport, path: str) -> str:
    """Format a gate report for display."""
    lines = [f"{path} [{report.content_id or 'no content_id'}] stage={report.stage}: "
             f"{'PASS' if report.passed else 'FAIL'}"]
    for result in report.results:
        if not result.passed:
            lines.append(f"  - {result.check_name}: {result.detail}")
    return "\n".join(lines)


def cmd_check(args) -> int:
    policy = load_policy()
    reports = []
    exit_code = 0

    for path in args.files:
        file_path = Path(path)
        if not file_path.exists():
            print(f"{path}: file not found", file=sys.stderr)
            exit_code = 2
            continue
        text = file_path.read_text(encoding="utf-8")
        report = gate_document(text, policy, stage=args.stage, content_id=None)
        if not report.content_id:
            report.content_id = file_path.stem
        reports.append((path, report))
        if not report.passed:
            exit_code = max(exit_code, 1)

    if args.json:
        print(json.dumps([dict(r.to_dict(), path=p) for p, r in reports], indent=2))
    elif not args.quiet:
        for path, report in reports:
            print(format_report(report, path))

    return exit_code


def cmd_status(args) -> int:
    store = RecordStore()
    try:
        record = store.get(args.content_id)
    except ReviewError as e:
        print(describe_error(e), file=sys.stderr)
        return 1

    status = {
        "content_id": record.content_id,
        "cycle": record.cycle,
        "state": record.state.value,
        "risk_level": record.risk_level.value if record.risk_level else None,
        "sla_deadline": record.sla_deadline.isoformat() if record.sla_deadline else None,
        "verified_by": record.verified_by,
        "missing_approvals": missing_approvals(record),
        "unresolved_claims": unresolved_claims(record),
        "archived": record.archived,
    }

    if args.json:
        print(json.dumps(status, indent=2))
    else:
        for key, value in status.items():
            print(f"{key}: {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Review gate for AI-assisted technical content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s check docs/guide.md                    # Gate a document at the automated checks stage
  %(prog)s check --stage publish docs/*.md        # Require claims resolved and both approvals
  %(prog)s check --json docs/guide.md             # Output results as JSON
  %(prog)s status guides/install                  # Show the tracked record for a content id

Exit codes:
  0 - all documents pass
  1 - at least one document fails a check
  2 - a file could not be read

Environment variables:
- DB_PATH=./data/reviewgate.db (record database, used by status)
- GLOSSARY_PATH=glossary.yaml (deprecated -> preferred terms)
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Gate documents by their front matter")
    check.add_argument("files", nargs="+", help="Markdown files with review front matter")
    check.add_argument("--stage", choices=STAGES, default=STAGE_CHECKS,
                       help="Workflow stage to gate against")
    check.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    check.add_argument("--quiet", "-q", action="store_true", help="Only set the exit code")
    check.set_defaults(func=cmd_check)

    status = subparsers.add_parser("status", help="Show a tracked review record")
    status.add_argument("content_id")
    status.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
