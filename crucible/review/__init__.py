"""Critique and remediation invokers."""

from crucible.review.critique import CritiqueInvoker, CritiqueResult
from crucible.review.remediation import RemediationInvoker, RemediationResult

__all__ = [
    "CritiqueInvoker",
    "CritiqueResult",
    "RemediationInvoker",
    "RemediationResult",
]
