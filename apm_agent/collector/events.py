# apm_agent/collector/events.py - Captured fault events
"""
Structured records for errors (warnings) and exceptions observed during an
execution. Records are immutable once created.
"""

from dataclasses import dataclass
import logging
import time

from apm_agent.collector.identifiers import new_event_id


def now_us() -> int:
    """Current wall-clock time in microseconds since the epoch"""
    return time.time_ns() // 1000


@dataclass(frozen=True)
class ErrorEvent:
    """
    A non-exception error signal, such as a warning.

    The severity name is emitted twice on the wire (as the exception type and
    as the log level); collectors rely on both.
    """
    id: str
    timestamp: int
    parent_id: str
    trace_id: str
    severity: int
    message: str
    filename: str
    lineno: int

    @property
    def severity_name(self) -> str:
        """Human-readable severity, e.g. 'WARNING'"""
        return logging.getLevelName(self.severity)

    @classmethod
    def create(cls, context, severity: int, message: str, filename: str,
               lineno: int) -> "ErrorEvent":
        return cls(
            id=new_event_id(),
            timestamp=now_us(),
            parent_id=context.execution_id,
            trace_id=context.trace_id,
            severity=severity,
            message=message,
            filename=filename,
            lineno=lineno,
        )


@dataclass(frozen=True)
class ExceptionEvent:
    """
    An exception raised by the host program.
    """
    id: str
    timestamp: int
    parent_id: str
    trace_id: str
    code: int
    message: str
    type_name: str
    filename: str
    lineno: int

    @classmethod
    def create(cls, context, code: int, message: str, type_name: str,
               filename: str, lineno: int) -> "ExceptionEvent":
        return cls(
            id=new_event_id(),
            timestamp=now_us(),
            parent_id=context.execution_id,
            trace_id=context.trace_id,
            code=code,
            message=message,
            type_name=type_name,
            filename=filename,
            lineno=lineno,
        )
