"""
Retrieval context checker - catches drafts written against a different snapshot than their sources.
"""

import re
from typing import List, Optional

from ..core.schema import CheckResult, ReviewRecord
from .base import IChecker

# snapshot:<id>  or  <repository>@<branch-or-commit>  or  <repository>/<branch>/<commit>
CONTEXT_PATTERN = re.compile(
    r"^(?:snapshot:(?P<snapshot>[\w.\-]+)"
    r"|(?P<repo>[\w.\-/]+)@(?P<ref>[\w.\-/]+)"
    r"|(?P<path_repo>[\w.\-]+(?:/[\w.\-]+)*)/(?P<branch>[\w.\-]+)/(?P<commit>[\w.\-]+))$"
)


class RetrievalContextChecker(IChecker):
    """The retrieval context is addressable and agrees with refs pinned in the sources."""

    name = "retrieval_context"

    def check(self, record: ReviewRecord) -> List[CheckResult]:
        context = (record.retrieval_context or "").strip()
        if not context:
            return [self.result(False, "no retrieval context recorded")]

        match = CONTEXT_PATTERN.match(context)
        if not match:
            return [self.result(False, f"unrecognized retrieval context '{context}'")]

        if match.group("snapshot") is not None:
            # Snapshots pin everything they contain
            return [self.result(True)]

        if match.group("ref") is not None:
            context_ref = match.group("ref")
            accepted = {context_ref}
        else:
            context_ref = f"{match.group('branch')}/{match.group('commit')}"
            accepted = {match.group("branch"), match.group("commit"), context_ref}

        mismatched = [
            source for source in record.sources
            if pinned_ref(source) is not None and pinned_ref(source) not in accepted
        ]
        if mismatched:
            return [self.result(False, f"sources pinned to a different ref than {context_ref}: {', '.join(mismatched)}")]
        return [self.result(True)]


def pinned_ref(source: str) -> Optional[str]:
    """Ref a path-style source is pinned to (repo/file.go@v1.2#L10 -> v1.2), if any."""
    if source.startswith(("http://", "https://")):
        return None
    path = source.split("#", 1)[0]
    if "@" not in path:
        return None
    return path.rsplit("@", 1)[1]
