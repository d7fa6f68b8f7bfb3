# tests/test_interceptor.py - Tests for signal interception
"""
Unit tests for the SignalInterceptor and handler chaining.
"""

import logging
import sys
import warnings
from unittest.mock import Mock, patch

import pytest
from apm_agent.collector import context
from apm_agent.collector.context import RequestAttributes
from apm_agent.collector.interceptor import (
    HookSlot, RaiseMonitor, SignalInterceptor, chain, chain_warning,
    exception_code, exception_type_name
)
from apm_agent.exceptions import InterceptorStateError


def raise_and_catch(exc):
    try:
        raise exc
    except Exception as caught:
        return caught


def warn_twice():
    for _ in range(2):
        warnings.warn("deprecated call", UserWarning)


def fail_deep():
    def lookup():
        raise LookupError("missing sku")
    lookup()


class TestChain:
    """Test cases for chain()"""

    def test_forwards_arguments_and_result(self):
        """Test the next handler gets the original arguments"""
        observer = Mock()
        next_handler = Mock(return_value='handled')
        handler = chain(observer, next_handler)

        assert handler(1, 'two', key='value') == 'handled'
        observer.assert_called_once_with(1, 'two', key='value')
        next_handler.assert_called_once_with(1, 'two', key='value')
        assert handler.next is next_handler

    def test_forwards_when_observer_fails(self):
        """Test a failing observer does not stop forwarding"""
        next_handler = Mock()
        handler = chain(Mock(side_effect=RuntimeError("boom")), next_handler)

        handler('signal')

        next_handler.assert_called_once_with('signal')

    def test_without_next_handler(self):
        """Test a missing next handler is a no-op"""
        observer = Mock()
        assert chain(observer, None)('signal') is None
        observer.assert_called_once_with('signal')

    def test_warning_forwarded_past_handler_frame(self):
        """Test warn() is forwarded one stack level up"""
        observer = Mock()
        next_warn = Mock()
        handler = chain_warning(observer, next_warn)

        handler("deprecated call", DeprecationWarning)
        handler("old api", UserWarning, stacklevel=3)

        observer.assert_any_call("deprecated call", DeprecationWarning, 1, None)
        assert next_warn.call_args_list[0][0] == ("deprecated call", DeprecationWarning, 2, None)
        assert next_warn.call_args_list[1][0] == ("old api", UserWarning, 4, None)


class TestSignalInterceptor:
    """Test cases for SignalInterceptor"""

    def test_install_swaps_and_remove_restores_both(self, host, metrics):
        """Test install/remove state machine over both slots"""
        original_error = host.error_cb
        original_hook = host.exception_hook
        interceptor = SignalInterceptor(HookSlot(host, 'error_cb'),
                                        HookSlot(host, 'exception_hook'), metrics=metrics)

        interceptor.install()
        assert interceptor.installed
        assert host.error_cb is not original_error
        assert host.exception_hook is not original_hook
        assert interceptor.previous_error_handler == original_error

        interceptor.remove()
        assert not interceptor.installed
        assert host.error_cb == original_error
        assert host.exception_hook == original_hook

    def test_double_install_raises(self, interceptor):
        """Test installing twice is rejected"""
        with pytest.raises(InterceptorStateError):
            interceptor.install()

    def test_remove_when_uninstalled_raises(self, host, metrics):
        """Test removing without install is rejected"""
        interceptor = SignalInterceptor(HookSlot(host, 'error_cb'),
                                        HookSlot(host, 'exception_hook'), metrics=metrics)
        with pytest.raises(InterceptorStateError):
            interceptor.remove()

    def test_remove_leaves_foreign_handler(self, host, interceptor):
        """Test a handler installed after us is not overwritten"""
        foreign = Mock()
        host.error_cb = foreign

        interceptor.remove()

        assert host.error_cb is foreign

    def test_error_signal_recorded_and_forwarded(self, host, interceptor):
        """Test an error signal is appended and forwarded"""
        execution = context.begin_execution(RequestAttributes.for_script('/var/www/cron.py'))

        host.error_cb("deprecated call", DeprecationWarning)

        assert host.calls == [('error', ("deprecated call", DeprecationWarning, 2, None), {})]
        assert len(execution.error_events) == 1
        event = execution.error_events[0]
        assert event.message == "deprecated call"
        assert event.filename.endswith("test_interceptor.py")
        assert event.lineno > 0
        assert event.severity == logging.WARNING
        assert event.severity_name == "WARNING"
        assert event.parent_id == execution.execution_id
        assert event.trace_id == execution.trace_id
        assert len(event.id) == 32

    def test_explicit_warning_recorded(self, host, metrics):
        """Test warn_explicit() calls carry their own location"""
        host.explicit_cb = Mock()
        interceptor = SignalInterceptor(HookSlot(host, 'error_cb'),
                                        HookSlot(host, 'exception_hook'), metrics=metrics,
                                        explicit_error_slot=HookSlot(host, 'explicit_cb'))
        interceptor.install()
        execution = context.begin_execution()
        try:
            host.explicit_cb("deprecated call", UserWarning, "cron.py", 42)
        finally:
            interceptor.remove()

        event = execution.error_events[0]
        assert (event.filename, event.lineno) == ("cron.py", 42)
        assert interceptor.explicit_error_slot.get().call_count == 1

    def test_exception_signal_recorded_and_forwarded(self, host, interceptor, metrics):
        """Test an exception signal is appended and forwarded unchanged"""
        execution = context.begin_execution()
        exc = raise_and_catch(OSError(13, "Permission denied"))

        host.exception_hook(type(exc), exc, exc.__traceback__)

        assert host.calls == [('exception', (type(exc), exc, exc.__traceback__))]
        event = execution.exception_events[0]
        assert event.type_name == "PermissionError"
        assert event.code == 13
        assert "Permission denied" in event.message
        assert event.filename.endswith("test_interceptor.py")
        assert event.lineno > 0
        assert metrics.value('apm_agent_events_captured_total', {'kind': 'exception'}) == 1.0

    def test_no_event_without_execution(self, host, interceptor, metrics):
        """Test signals outside an execution are only forwarded"""
        host.error_cb("ignored", UserWarning)

        assert len(host.calls) == 1
        assert metrics.value('apm_agent_events_captured_total', {'kind': 'error'}) == 0.0

    def test_capture_failure_is_fail_open(self, host, interceptor, metrics):
        """Test a failing capture still forwards exactly once"""
        execution = context.begin_execution()

        with patch('apm_agent.collector.interceptor.ErrorEvent.create',
                   side_effect=MemoryError):
            host.error_cb("message", UserWarning)

        assert host.calls == [('error', ("message", UserWarning, 2, None), {})]
        assert execution.error_events == []
        assert metrics.value('apm_agent_capture_failures_total', {'kind': 'error'}) == 1.0

    def test_previous_handler_errors_propagate(self, interceptor):
        """Test the host handler's own exceptions still reach the caller"""
        execution = context.begin_execution()
        failing = Mock(side_effect=RuntimeError("warnings are errors"))
        handler = chain_warning(interceptor._observe_warning, failing)

        with pytest.raises(RuntimeError):
            handler("msg", UserWarning)

        assert len(execution.error_events) == 1

    def test_removed_handler_stops_recording(self, host, interceptor):
        """Test a handler left in someone else's chain only forwards"""
        ours = host.error_cb
        interceptor.remove()
        execution = context.begin_execution()

        ours("late", UserWarning)

        assert execution.error_events == []
        assert len(host.calls) == 1

    def test_real_warnings_module(self, metrics):
        """Test interception of warnings.warn"""
        with patch.object(warnings, 'warn', Mock()) as original:
            interceptor = SignalInterceptor(HookSlot(warnings, 'warn'),
                                            HookSlot(Mock(excepthook=None), 'excepthook'),
                                            metrics=metrics)
            interceptor.install()
            execution = context.begin_execution()
            try:
                warnings.warn("deprecated call", UserWarning)
            finally:
                interceptor.remove()

            original.assert_called_once_with("deprecated call", UserWarning, 2, None)
            assert warnings.warn is original

        assert execution.error_events[0].message == "deprecated call"
        assert execution.error_events[0].filename.endswith("test_interceptor.py")

    def test_repeated_warning_recorded_in_every_execution(self, metrics):
        """Test a warning the registry already suppresses is still recorded"""
        interceptor = SignalInterceptor(HookSlot(warnings, 'warn'),
                                        HookSlot(Mock(excepthook=None), 'excepthook'),
                                        metrics=metrics)
        counts = []

        with warnings.catch_warnings(record=True) as shown:
            warnings.simplefilter('default')
            interceptor.install()
            try:
                for _ in range(3):
                    execution = context.begin_execution()
                    warn_twice()
                    context.end_execution()
                    counts.append(len(execution.error_events))
            finally:
                interceptor.remove()

        assert counts == [2, 2, 2]
        # The host still shows it once, attributed to the calling module
        assert len(shown) == 1
        assert shown[0].filename.endswith("test_interceptor.py")


@pytest.mark.skipif(not RaiseMonitor.supported(), reason="needs sys.monitoring")
class TestRaiseMonitoring:
    """Test cases for exceptions recorded when raised"""

    @pytest.fixture
    def monitored(self, host, metrics):
        interceptor = SignalInterceptor(HookSlot(host, 'error_cb'),
                                        HookSlot(host, 'exception_hook'),
                                        metrics=metrics, monitor_raises=True)
        interceptor.install()
        yield interceptor
        if interceptor.installed:
            interceptor.remove()

    def test_caught_exceptions_recorded(self, monitored):
        """Test exceptions the host catches itself are recorded"""
        assert monitored.raises_monitored
        execution = context.begin_execution()

        try:
            int("not a number")
        except ValueError:
            pass
        raise_and_catch(KeyError("sku"))

        monitored.remove()
        assert [e.type_name for e in execution.exception_events] == ['ValueError', 'KeyError']
        assert execution.exception_events[0].filename.endswith("test_interceptor.py")

    def test_propagation_recorded_once(self, monitored):
        """Test an exception crossing several frames is one event"""
        execution = context.begin_execution()

        try:
            fail_deep()
        except LookupError:
            pass

        monitored.remove()
        assert len(execution.exception_events) == 1
        assert execution.exception_events[0].message == "missing sku"

    def test_hook_and_middleware_do_not_duplicate(self, host, monitored):
        """Test exceptions recorded when raised are not recorded again"""
        execution = context.begin_execution()
        exc = raise_and_catch(ValueError("bad input"))

        host.exception_hook(ValueError, exc, exc.__traceback__)
        assert monitored.capture_propagated(exc) is None

        monitored.remove()
        assert len(execution.exception_events) == 1
        assert host.calls == [('exception', (ValueError, exc, exc.__traceback__))]

    def test_exits_not_recorded(self, monitored):
        """Test SystemExit is not an exception event"""
        execution = context.begin_execution()

        try:
            raise SystemExit(3)
        except SystemExit:
            pass

        monitored.remove()
        assert execution.exception_events == []

    def test_remove_releases_tool_id(self, monitored):
        tool_id = monitored.raise_monitor.tool_id
        monitored.remove()

        assert not monitored.raises_monitored
        assert sys.monitoring.get_tool(tool_id) is None


class TestExceptionHelpers:
    """Test cases for exception naming and codes"""

    def test_type_name_builtin(self):
        assert exception_type_name(ValueError) == "ValueError"

    def test_type_name_qualified(self):
        assert exception_type_name(InterceptorStateError) == \
            "apm_agent.exceptions.InterceptorStateError"

    def test_exception_code(self):
        assert exception_code(OSError(2, "missing")) == 2
        assert exception_code(SystemExit(3)) == 3
        assert exception_code(ValueError("x")) == 0
