"""Progress events emitted by the orchestrator.

The pipeline reports every stage transition and per-operation outcome as an
ordered :class:`ProgressEvent`.  How events are displayed is up to the
consumer; the default sink keeps them in memory and mirrors them to the
module logger.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "success", "warning", "error")


class ProgressEvent(BaseModel):
    stage: str
    message: str
    severity: str = "info"
    timestamp: datetime = Field(default_factory=datetime.now)


class ProgressSink:
    """Collects ordered progress events for one or more commands."""

    def __init__(self, callback: Optional[Callable[[ProgressEvent], None]] = None):
        self.events: List[ProgressEvent] = []
        self.callback = callback

    def emit(self, stage: str, message: str, severity: str = "info") -> ProgressEvent:
        if severity not in SEVERITIES:
            severity = "info"
        event = ProgressEvent(stage=stage, message=message, severity=severity)
        self.events.append(event)

        # Also log to console
        if severity == "error":
            logger.error("%s: %s", stage, message)
        elif severity == "warning":
            logger.warning("%s: %s", stage, message)
        else:
            logger.info("%s: %s", stage, message)

        if self.callback:
            self.callback(event)
        return event

    def stages(self) -> List[str]:
        return [e.stage for e in self.events]

    def by_severity(self, severity: str) -> List[ProgressEvent]:
        return [e for e in self.events if e.severity == severity]
