"""
Automated checker interface - structural checks run while a record sits in automated_checks.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Tuple

from ..core.schema import CheckResult, ReviewRecord


class IChecker(ABC):
    """Abstract interface for a deterministic automated check."""

    name = "checker"

    @abstractmethod
    def check(self, record: ReviewRecord) -> List[CheckResult]:
        """Return one or more results for the record. Any failed result blocks."""
        pass

    def result(self, passed: bool, detail: str = "") -> CheckResult:
        return CheckResult(check_name=self.name, passed=passed, detail=detail)


class ExternalChecker(IChecker):
    """Adapter for an outside tool that takes a content id and returns (name, passed, detail) tuples."""

    def __init__(self, name: str, tool: Callable[[str], Iterable[Tuple[str, bool, str]]]):
        self.name = name
        self._tool = tool

    def check(self, record: ReviewRecord) -> List[CheckResult]:
        results = [
            CheckResult(check_name=check_name, passed=bool(passed), detail=str(detail or ""))
            for check_name, passed, detail in self._tool(record.content_id)
        ]
        if not results:
            # A tool that reports nothing has not checked anything
            return [self.result(False, "checker returned no results")]
        return results


def run_checks(record: ReviewRecord, checkers: Iterable[IChecker]) -> List[CheckResult]:
    """Run every checker against the record and collect all results in order."""
    results: List[CheckResult] = []
    for checker in checkers:
        results.extend(checker.check(record))
    return results


def all_passed(results: Iterable[CheckResult]) -> bool:
    return all(r.passed for r in results)
