"""Exception hierarchy shared by every stage of the command pipeline.

Fatal errors abort the whole command before anything is executed.  Errors
raised by mutation calls are caught by the executor and recorded per
operation instead of propagating.
"""
from __future__ import annotations

from typing import Any, List, Optional


class PipelineError(Exception):
    """Base class for all command pipeline failures."""


class ExtractionError(PipelineError):
    """Model output was not parseable JSON or failed schema validation."""

    def __init__(self, message: str, raw_output: Optional[str] = None, violations: Optional[List[str]] = None):
        super().__init__(message)
        self.raw_output = raw_output
        self.violations = violations or []

    def __str__(self) -> str:
        msg = super().__str__()
        if self.violations:
            msg += " (" + "; ".join(self.violations) + ")"
        if self.raw_output:
            msg += f"\nRaw model output: {self.raw_output}"
        return msg


class NotFoundError(PipelineError):
    """A symbolic reference matched nothing in the backing system."""

    def __init__(self, reference: Any, collection: Optional[str] = None, primary: bool = True):
        self.reference = reference
        self.collection = collection
        self.primary = primary
        where = f" in {collection}" if collection else ""
        super().__init__(f"Could not find '{reference}'{where}")


class AmbiguousReferenceError(PipelineError):
    """Several candidates matched and no valid single candidate was selected."""

    def __init__(self, reference: Any, candidate_count: int, selected_id: Any = None):
        self.reference = reference
        self.candidate_count = candidate_count
        self.selected_id = selected_id
        if selected_id is None:
            detail = "no candidate was selected"
        else:
            detail = f"selected id '{selected_id}' is not one of the candidates"
        super().__init__(
            f"Could not identify '{reference}' among {candidate_count} candidates: {detail}"
        )


class UpstreamAPIError(PipelineError):
    """Network or HTTP failure talking to a gateway or the model provider."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None, transient: bool = False):
        super().__init__(f"{service} request failed: {message}")
        self.service = service
        self.status_code = status_code
        self.transient = transient


class MutationError(UpstreamAPIError):
    """The backing system rejected a write. ``reason`` is machine readable."""

    def __init__(self, service: str, reason: str, message: str, status_code: Optional[int] = None):
        super().__init__(service, message, status_code=status_code, transient=False)
        self.reason = reason


class CompilationError(PipelineError):
    """A resolved operation violates a batch invariant."""


class CommandCancelledError(PipelineError):
    """The caller cancelled the command before execution started."""

    def __init__(self, stage: str):
        super().__init__(f"Command cancelled before {stage}")
        self.stage = stage
