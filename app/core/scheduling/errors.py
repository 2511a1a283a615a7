"""
Scheduling error taxonomy.

Every error here is caught at the orchestrator boundary and turned into
a single spoken reply; none of them reaches the calling transport.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.core.scheduling.conflicts import ConflictReport
    from app.core.scheduling.models import CandidateSlot


class SchedulingError(Exception):
    """Base class for scheduling core errors."""
    pass


class GatewayUnavailable(SchedulingError):
    """Network failure, timeout or non-2xx reply from the practice API."""

    def __init__(
        self,
        operation: str,
        message: str = "",
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        detail = f"{operation} failed"
        if status_code is not None:
            detail += f" (HTTP {status_code})"
        if message:
            detail += f": {message}"
        super().__init__(detail)


class PatientNotFound(SchedulingError):
    """Patient lookup returned no match."""

    def __init__(self, searched: str = ""):
        self.searched = searched
        super().__init__(f"No patient found for {searched!r}" if searched else "No patient found")


class SlotUnavailable(SchedulingError):
    """Conflict detector rejected the requested time."""

    def __init__(
        self,
        report: "ConflictReport",
        alternatives: Optional[list["CandidateSlot"]] = None,
    ):
        self.report = report
        self.alternatives = alternatives or []
        super().__init__(f"Requested slot conflicts on: {', '.join(report.dimensions())}")


class ValidationError(SchedulingError):
    """Malformed or missing input. Names exactly one field to ask for."""

    def __init__(self, field: str, question: str, message: str = ""):
        self.field = field
        self.question = question
        super().__init__(message or f"Invalid or missing {field}")


class WorkflowExhausted(SchedulingError):
    """A turn used more gateway steps than its budget allows."""

    def __init__(self, budget: int, workflow: str = ""):
        self.budget = budget
        self.workflow = workflow
        super().__init__(f"Step budget of {budget} exceeded in {workflow or 'workflow'}")
