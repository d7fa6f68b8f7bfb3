# apm_agent/collector/interceptor.py - Error and exception signal interception
"""
Puts the agent in front of the interpreter's process-wide error and exception
hooks.

Errors are warnings, observed at warnings.warn / warnings.warn_explicit, that
is before the warning filters and the per-module registries decide whether
the host shows them. Exceptions are observed when they are raised
(sys.monitoring, Python 3.12+) and at sys.excepthook.

Every signal is recorded into the current execution and then forwarded to the
handler that was installed before. Recording never changes what the host
program sees: if it fails, the signal is only dropped from telemetry.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Callable, List, Optional, Tuple
import logging
import sys
import threading
import warnings

from apm_agent.collector.context import current_execution
from apm_agent.collector.events import ErrorEvent, ExceptionEvent
from apm_agent.exceptions import InterceptorStateError
from apm_agent.exporters.prometheus import AgentMetrics, get_metrics


logger = logging.getLogger(__name__)

# Modules whose own warn() calls warn_explicit()
WARNINGS_MODULES = ('warnings', '_py_warnings')

_paused = threading.local()


def recording_paused() -> bool:
    return getattr(_paused, 'active', False)


@contextmanager
def pause_recording():
    """Ignore exceptions raised on this thread while the block runs"""
    previous = recording_paused()
    _paused.active = True
    try:
        yield
    finally:
        _paused.active = previous


def chain(observer: Callable, next_handler: Optional[Callable],
          quiet: bool = False) -> Callable:
    """
    Build a handler that runs observer, then always calls next_handler.

    Args:
        observer: Function called with the signal arguments; its errors are dropped
        next_handler: Previously installed handler, or None
        quiet: Do not record exceptions raised while next_handler runs

    Returns:
        Handler function with a `next` attribute referencing next_handler
    """
    def handler(*args, **kwargs):
        try:
            observer(*args, **kwargs)
        except Exception:
            logger.debug("Signal observer failed, signal dropped", exc_info=True)

        if next_handler is None:
            return None
        if quiet:
            with pause_recording():
                return next_handler(*args, **kwargs)
        return next_handler(*args, **kwargs)

    handler.next = next_handler
    handler.observer = observer
    return handler


def chain_warning(observer: Callable, next_warn: Optional[Callable]) -> Callable:
    """
    chain() for warnings.warn.

    The call is forwarded with its stack level moved one frame up, past this
    handler, so the host attributes, filters and deduplicates the warning as
    if it had been called directly.
    """
    def warn(message, category=None, stacklevel=1, source=None, **kwargs):
        try:
            observer(message, category, stacklevel, source)
        except Exception:
            logger.debug("Warning observer failed, signal dropped", exc_info=True)

        if next_warn is None:
            return None
        with pause_recording():
            return next_warn(message, category, max(stacklevel, 1) + 1, source, **kwargs)

    warn.next = next_warn
    warn.observer = observer
    return warn


class HookSlot:
    """
    A process-wide handler reference exposed by the host, such as
    sys.excepthook.
    """

    def __init__(self, owner, attribute: str):
        self.owner = owner
        self.attribute = attribute

    def get(self) -> Optional[Callable]:
        return getattr(self.owner, self.attribute, None)

    def set(self, handler: Optional[Callable]):
        setattr(self.owner, self.attribute, handler)

    def __repr__(self):
        name = getattr(self.owner, '__name__', type(self.owner).__name__)
        return f"{name}.{self.attribute}"


class InstallState(Enum):
    UNINSTALLED = "uninstalled"
    INSTALLED = "installed"


def exception_type_name(exc_type: type) -> str:
    """Class name, qualified with its module unless it is a builtin"""
    module = getattr(exc_type, '__module__', None)
    if module in (None, 'builtins'):
        return exc_type.__qualname__
    return f"{module}.{exc_type.__qualname__}"


def exception_code(exc: BaseException) -> int:
    """Numeric code carried by the exception (errno, exit code), else 0"""
    for attribute in ('errno', 'code'):
        value = getattr(exc, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


def innermost_location(tb) -> Tuple[str, int]:
    """File and line where a traceback starts, ("", 0) without one"""
    if tb is None:
        return "", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno or 0


class RaiseMonitor:
    """
    Calls observer once for every Exception raised in Python code, caught
    or not, using sys.monitoring RAISE events.

    An exception is reported in the frame it is raised in; the RAISE events
    of the frames it then propagates through are ignored. Iteration
    sentinels and BaseException-only exits (SystemExit, KeyboardInterrupt,
    GeneratorExit) are not reported.
    """

    TOOL_NAME = 'apm-agent'
    TOOL_IDS = (4, 3)
    IGNORED = (StopIteration, StopAsyncIteration)

    def __init__(self, observer: Callable[[BaseException], None]):
        self.observer = observer
        self.tool_id: Optional[int] = None

    @staticmethod
    def supported() -> bool:
        return hasattr(sys, 'monitoring')

    @property
    def active(self) -> bool:
        return self.tool_id is not None

    def start(self) -> bool:
        """
        Register for RAISE events.

        Returns:
            True if raises are now monitored
        """
        if self.active:
            return True
        if not self.supported():
            logger.debug("sys.monitoring unavailable, only uncaught exceptions are observed")
            return False

        monitoring = sys.monitoring
        free = [tool_id for tool_id in self.TOOL_IDS if monitoring.get_tool(tool_id) is None]
        if not free:
            logger.warning("No free sys.monitoring tool id, only uncaught exceptions are observed")
            return False

        tool_id = free[0]
        monitoring.use_tool_id(tool_id, self.TOOL_NAME)
        monitoring.register_callback(tool_id, monitoring.events.RAISE, self._on_raise)
        monitoring.set_events(tool_id, monitoring.events.RAISE)
        self.tool_id = tool_id
        logger.debug(f"Monitoring raised exceptions with tool id {tool_id}")
        return True

    def stop(self):
        if not self.active:
            return
        monitoring = sys.monitoring
        monitoring.set_events(self.tool_id, monitoring.events.NO_EVENTS)
        monitoring.register_callback(self.tool_id, monitoring.events.RAISE, None)
        monitoring.free_tool_id(self.tool_id)
        self.tool_id = None

    def _on_raise(self, code, instruction_offset, exception):
        if recording_paused():
            return
        if not isinstance(exception, Exception) or isinstance(exception, self.IGNORED):
            return
        tb = exception.__traceback__
        if tb is not None and tb.tb_next is not None:
            return

        _paused.active = True
        try:
            self.observer(exception)
        except Exception:
            logger.debug("Raise observer failed, signal dropped", exc_info=True)
        finally:
            _paused.active = False


class SignalInterceptor:
    """
    First observer of every warning and exception in the process.

    Lifecycle: UNINSTALLED -> install() -> INSTALLED -> remove() -> UNINSTALLED.
    """

    def __init__(self, error_slot: HookSlot, exception_slot: HookSlot,
                 metrics: Optional[AgentMetrics] = None,
                 explicit_error_slot: Optional[HookSlot] = None,
                 monitor_raises: bool = False):
        """
        Initialize the interceptor.

        Args:
            error_slot: Slot of the host's warn(message, category, stacklevel, source)
            exception_slot: Slot of the host's exception hook
            metrics: Agent metrics for capture counters
            explicit_error_slot: Slot of the host's warn_explicit(), if any
            monitor_raises: Also record exceptions when they are raised
        """
        self.error_slot = error_slot
        self.exception_slot = exception_slot
        self.explicit_error_slot = explicit_error_slot
        self.metrics = metrics or get_metrics()
        self.raise_monitor = RaiseMonitor(self._observe_raise) if monitor_raises else None

        self.state = InstallState.UNINSTALLED
        self.previous_error_handler: Optional[Callable] = None
        self.previous_exception_hook: Optional[Callable] = None

        # (slot, our handler, previous handler)
        self._bindings: List[Tuple[HookSlot, Callable, Optional[Callable]]] = []
        self._lock = threading.Lock()

    @property
    def installed(self) -> bool:
        return self.state is InstallState.INSTALLED

    @property
    def raises_monitored(self) -> bool:
        return self.raise_monitor is not None and self.raise_monitor.active

    def install(self):
        """
        Swap our handlers into the slots, keeping the previous ones for
        forwarding.
        """
        with self._lock:
            if self.state is InstallState.INSTALLED:
                raise InterceptorStateError("Signal interceptor is already installed")

            self.previous_error_handler = self.error_slot.get()
            self.previous_exception_hook = self.exception_slot.get()

            bindings = [
                (self.error_slot,
                 chain_warning(self._observe_warning, self.previous_error_handler),
                 self.previous_error_handler),
                (self.exception_slot,
                 chain(self._observe_exception, self.previous_exception_hook, quiet=True),
                 self.previous_exception_hook),
            ]
            if self.explicit_error_slot is not None:
                previous = self.explicit_error_slot.get()
                bindings.append((self.explicit_error_slot,
                                 chain(self._observe_explicit_warning, previous, quiet=True),
                                 previous))

            for slot, handler, _ in bindings:
                slot.set(handler)
            self._bindings = bindings
            self.state = InstallState.INSTALLED

            if self.raise_monitor is not None:
                self.raise_monitor.start()

        logger.debug(f"Installed signal interceptor on {self.error_slot} and {self.exception_slot}")

    def remove(self):
        """
        Restore the previous handlers in every slot.

        A slot that was replaced by someone else after install() is left alone;
        our handler in that chain keeps forwarding but stops recording.
        """
        with self._lock:
            if self.state is InstallState.UNINSTALLED:
                raise InterceptorStateError("Signal interceptor is not installed")

            if self.raise_monitor is not None:
                self.raise_monitor.stop()

            for slot, ours, previous in self._bindings:
                if slot.get() is ours:
                    slot.set(previous)
                else:
                    logger.warning(f"{slot} was replaced after install, not restoring it")

            self._bindings = []
            self.state = InstallState.UNINSTALLED

        logger.debug("Removed signal interceptor")

    def _observe_warning(self, message, category=None, stacklevel=1, source=None):
        if self.state is not InstallState.INSTALLED or current_execution() is None:
            return
        # 0 is this frame, 1 the chained handler, 2 the caller of warn()
        try:
            frame = sys._getframe(1 + max(stacklevel, 1))
        except ValueError:
            filename, lineno = "sys", 1
        else:
            filename, lineno = frame.f_code.co_filename, frame.f_lineno
        self.capture_error(logging.WARNING, str(message), filename, lineno)

    def _observe_explicit_warning(self, message, category, filename, lineno, *args, **kwargs):
        if self.state is not InstallState.INSTALLED:
            return
        if sys._getframe(2).f_globals.get('__name__') in WARNINGS_MODULES:
            return
        self.capture_error(logging.WARNING, str(message), filename, lineno)

    def _observe_exception(self, exc_type, exc_value, exc_traceback):
        if self.state is not InstallState.INSTALLED:
            return
        if self.raises_monitored and isinstance(exc_value, Exception):
            return
        self.capture_exception(exc_value, exc_traceback, exc_type=exc_type)

    def _observe_raise(self, exc: BaseException):
        if self.state is InstallState.INSTALLED:
            self.capture_exception(exc)

    def capture_propagated(self, exc: BaseException) -> Optional[ExceptionEvent]:
        """
        Record an exception the host caught or is propagating, unless it
        was already recorded when it was raised.
        """
        if self.raises_monitored and isinstance(exc, Exception):
            return None
        return self.capture_exception(exc)

    def capture_error(self, severity: int, message: str, filename: str,
                      lineno: int) -> Optional[ErrorEvent]:
        """
        Record an error event into the current execution.

        Args:
            severity: Numeric logging level
            message: Formatted message
            filename: Source file of the signal
            lineno: Source line of the signal

        Returns:
            The recorded event, or None when nothing was recorded
        """
        context = current_execution()
        if context is None:
            return None

        try:
            event = ErrorEvent.create(context, severity, message,
                                      str(filename), int(lineno or 0))
            context.add_error(event)
        except Exception as e:
            logger.debug(f"Failed to record error event: {e}")
            self.metrics.record_capture_failure('error')
            return None

        self.metrics.record_capture('error')
        return event

    def capture_exception(self, exc: Optional[BaseException], tb=None,
                          exc_type: Optional[type] = None) -> Optional[ExceptionEvent]:
        """
        Record an exception event into the current execution.

        Args:
            exc: Exception instance
            tb: Traceback (default: exc.__traceback__)
            exc_type: Exception class, when exc may be None

        Returns:
            The recorded event, or None when nothing was recorded
        """
        context = current_execution()
        if context is None:
            return None

        try:
            exc_type = exc_type or type(exc)
            if tb is None and exc is not None:
                tb = exc.__traceback__
            filename, lineno = innermost_location(tb)

            event = ExceptionEvent.create(
                context,
                code=exception_code(exc) if exc is not None else 0,
                message=str(exc) if exc is not None else "",
                type_name=exception_type_name(exc_type),
                filename=filename,
                lineno=lineno,
            )
            context.add_exception(event)
        except Exception as e:
            logger.debug(f"Failed to record exception event: {e}")
            self.metrics.record_capture_failure('exception')
            return None

        self.metrics.record_capture('exception')
        return event


_interceptor: Optional[SignalInterceptor] = None


def get_interceptor() -> SignalInterceptor:
    """
    Process-wide interceptor bound to warnings.warn, warnings.warn_explicit
    and sys.excepthook, with raise monitoring where the interpreter has it.
    """
    global _interceptor
    if _interceptor is None:
        _interceptor = SignalInterceptor(
            HookSlot(warnings, 'warn'),
            HookSlot(sys, 'excepthook'),
            explicit_error_slot=HookSlot(warnings, 'warn_explicit'),
            monitor_raises=True,
        )
    return _interceptor
