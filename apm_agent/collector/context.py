# apm_agent/collector/context.py - Execution lifecycle state
"""
Per-execution state and its lifecycle.

One ExecutionContext exists per running execution (a request or a script).
It lives in a context variable, so every thread or request served by the
host sees only its own context.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import os
import time

from apm_agent.collector.events import ErrorEvent, ExceptionEvent
from apm_agent.collector.identifiers import new_execution_id, new_trace_id
from apm_agent.collector.sampler import CpuCounters


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestAttributes:
    """
    Host-provided attributes describing what is being executed.
    Every field is optional and checked independently.
    """
    uri: Optional[str] = None
    host: Optional[str] = None
    referer: Optional[str] = None
    request_time: Optional[int] = None
    script: Optional[str] = None
    method: Optional[str] = None
    client_ip: Optional[str] = None
    working_dir: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Dict) -> "RequestAttributes":
        """
        Build attributes from a WSGI environ.

        Args:
            environ: WSGI environment dictionary

        Returns:
            RequestAttributes for the request
        """
        uri = environ.get('REQUEST_URI')
        if not uri:
            uri = environ.get('SCRIPT_NAME', '') + environ.get('PATH_INFO', '')
            if environ.get('QUERY_STRING'):
                uri = f"{uri}?{environ['QUERY_STRING']}"

        return cls(
            uri=uri or '/',
            host=environ.get('HTTP_HOST'),
            referer=environ.get('HTTP_REFERER'),
            request_time=int(time.time()),
            script=environ.get('SCRIPT_FILENAME'),
            method=environ.get('REQUEST_METHOD'),
            client_ip=environ.get('REMOTE_ADDR'),
            working_dir=environ.get('PWD'),
        )

    @classmethod
    def for_script(cls, script: str) -> "RequestAttributes":
        """Attributes for a script run (no HTTP method)"""
        return cls(
            request_time=int(time.time()),
            script=script,
            working_dir=os.getcwd(),
        )


@dataclass(frozen=True)
class ExecutionContext:
    """
    State of one execution.

    Identifiers and start time are fixed at creation; only the event lists
    grow, in the order signals arrive.
    """
    execution_id: str
    trace_id: str
    start_time: float
    attributes: RequestAttributes = field(default_factory=RequestAttributes)
    baseline: Optional[CpuCounters] = None

    error_events: List[ErrorEvent] = field(default_factory=list)
    exception_events: List[ExceptionEvent] = field(default_factory=list)

    @property
    def start_timestamp_us(self) -> int:
        """Start time in microseconds since the epoch"""
        return int(self.start_time * 1_000_000)

    def add_error(self, event: ErrorEvent):
        self.error_events.append(event)

    def add_exception(self, event: ExceptionEvent):
        self.exception_events.append(event)

    @property
    def event_count(self) -> int:
        return len(self.error_events) + len(self.exception_events)


_current_execution: ContextVar[Optional[ExecutionContext]] = ContextVar(
    'apm_current_execution', default=None
)


def begin_execution(attributes: Optional[RequestAttributes] = None,
                    baseline=None) -> ExecutionContext:
    """
    Create the context for a new execution and make it current.

    Args:
        attributes: Request attributes of the execution
        baseline: CPU counters read at execution start

    Returns:
        New ExecutionContext
    """
    context = ExecutionContext(
        execution_id=new_execution_id(),
        trace_id=new_trace_id(),
        start_time=time.time(),
        attributes=attributes or RequestAttributes(),
        baseline=baseline,
    )
    _current_execution.set(context)
    logger.debug(f"Started execution {context.execution_id} (trace {context.trace_id})")

    return context


def current_execution() -> Optional[ExecutionContext]:
    """Return the active execution context, or None"""
    return _current_execution.get()


def end_execution() -> Optional[ExecutionContext]:
    """
    Detach the active execution context.

    Returns:
        The context that was active, or None
    """
    context = _current_execution.get()
    _current_execution.set(None)
    if context is not None:
        logger.debug(f"Ended execution {context.execution_id} "
                     f"({context.event_count} events)")
    return context


def get_execution_id() -> str:
    """Execution id of the active execution, '' when none is active"""
    context = _current_execution.get()
    return context.execution_id if context else ""


def get_trace_id() -> str:
    """Trace id of the active execution, '' when none is active"""
    context = _current_execution.get()
    return context.trace_id if context else ""
