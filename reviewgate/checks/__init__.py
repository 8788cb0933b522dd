"""
Automated checks run while a review record sits in automated_checks.
"""

from typing import List

from ..core.config import ReviewPolicy
from .base import IChecker, ExternalChecker, run_checks, all_passed
from .structural import SchemaChecker, LinkChecker, GlossaryChecker, is_sor_link
from .retrieval import RetrievalContextChecker, pinned_ref


def default_checkers(policy: ReviewPolicy) -> List[IChecker]:
    """The standard structural suite for a policy."""
    return [
        SchemaChecker(),
        LinkChecker(),
        GlossaryChecker(policy.glossary),
        RetrievalContextChecker(),
    ]
