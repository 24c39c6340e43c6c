"""Exception hierarchy for the review/fix loop.

Invocation errors are raised at the process boundary and translated into
Loop State transitions by the controller. They never reach a caller of
``AdversarialLoop.run``.
"""

from __future__ import annotations


class CrucibleError(Exception):
    """Base exception for all application-specific errors."""


class ProcessUnavailable(CrucibleError):
    """The external executable is missing or failed to launch in time."""


class ChannelClosed(CrucibleError):
    """A channel operation was attempted on a stopped or exited process."""


class LoopBusy(CrucibleError):
    """A loop is already running for the same project."""


class InvocationError(CrucibleError):
    """Transient failure of a critique or remediation pass.

    Carries whatever raw output was collected before the failure so it can
    be logged, but that output is never interpreted as a result.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class CritiqueError(InvocationError):
    """Base class for critique pass failures."""


class CritiqueTimeout(CritiqueError):
    """The critique process did not deliver a terminal record in time."""


class CritiqueMalformed(CritiqueError):
    """The critique output could not be read as findings at all."""


class RemediationError(InvocationError):
    """Base class for remediation pass failures."""


class RemediationTimeout(RemediationError):
    """The remediation process did not deliver a terminal record in time."""


class RemediationMalformed(RemediationError):
    """The remediation output carried no per-finding report."""


class ChangeSetError(CrucibleError):
    """The change set under review could not be collected."""


class WorkspaceError(CrucibleError):
    """A project directory or identifier could not be resolved."""
