#!/usr/bin/env python3
"""
Retention and SLA maintenance for review records.

Command-line utility for purging expired prompt/retrieval context, checking retention
coverage and listing overdue reviews.
"""

import argparse
import sys
import json
from pathlib import Path
from typing import List, Optional

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reviewgate.core.audit import AuditLog
from reviewgate.core.config import load_policy, validate_config
from reviewgate.core.dao import RecordStore
from reviewgate.core.errors import ReviewError
from reviewgate.core.maintenance import (
    MaintenanceReport,
    check_retention,
    purge_expired_context,
    sla_report,
)


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = []

    lines.append(f"Operation: {report.operation}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > 0:
        lines.append(f"Status: ISSUES FOUND ({report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.issues_resolved > 0:
        lines.append(f"Issues Resolved: {report.issues_resolved}")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    if report.recommendations:
        lines.append("Recommendations:")
        for rec in report.recommendations:
            lines.append(f"  - {rec}")

    if report.actions_taken and len(report.actions_taken) <= 5:  # Don't flood output
        lines.append("Actions Taken:")
        for action in report.actions_taken:
            lines.append(f"  - {action}")

    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Retention and SLA maintenance for review records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --purge-expired           # Delete context past its retention window
  %(prog)s --retention-check         # Find published content missing stored context
  %(prog)s --overdue                 # List reviews past their SLA deadline
  %(prog)s --validate-config         # Check retention and SLA settings
  %(prog)s --overdue --json          # Output results as JSON

Environment variables:
- DB_PATH=./data/reviewgate.db (database location)
- RETENTION_DAYS=90 (90-180 days after publication)
- SLA_P0_HOURS=24, SLA_P1_BUSINESS_DAYS=3, REVIEW_CYCLE_DAYS=14
        """
    )

    parser.add_argument(
        "--purge-expired", "-p",
        action="store_true",
        help="Delete prompt/retrieval context whose retention window has elapsed"
    )

    parser.add_argument(
        "--retention-check", "-r",
        action="store_true",
        help="Report published content inside its window with no stored context"
    )

    parser.add_argument(
        "--overdue", "-o",
        action="store_true",
        help="Report records past their advisory SLA deadline"
    )

    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate retention and SLA configuration"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    args = parser.parse_args(argv)

    if not (args.purge_expired or args.retention_check or args.overdue or args.validate_config):
        parser.error("Must specify at least one maintenance operation")

    policy = load_policy()

    if args.validate_config:
        issues = validate_config(policy)
        if args.json:
            print(json.dumps({"config_issues": issues}, indent=2))
        elif issues:
            for issue in issues:
                print(f"CONFIG: {issue}")
        elif not args.quiet:
            print("Configuration valid")
        if issues:
            return 1
        if not (args.purge_expired or args.retention_check or args.overdue):
            return 0

    try:
        store = RecordStore()
        audit = AuditLog(store.db_path)
        reports = []

        if args.purge_expired:
            if not args.quiet and not args.json:
                print("Purging expired context...")
            reports.append(purge_expired_context(store, audit, policy))

        if args.retention_check:
            if not args.quiet and not args.json:
                print("Checking retention coverage...")
            reports.append(check_retention(store, audit, policy))

        if args.overdue:
            if not args.quiet and not args.json:
                print("Checking SLA deadlines...")
            reports.append(sla_report(store))

        if args.json:
            print(json.dumps({"reports": [report.to_dict() for report in reports]}, indent=2, default=str))
        else:
            for report in reports:
                if not args.quiet or report.issues_found:
                    print(format_report(report))
                    print("-" * 60)

        if any(r.errors for r in reports):
            return 1
        elif any(r.issues_found > r.issues_resolved for r in reports):
            return 2
        return 0

    except ReviewError as e:
        print(f"ERROR: Maintenance operation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
