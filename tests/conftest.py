# tests/conftest.py - Shared fixtures
"""
Shared fixtures for the agent tests.
"""

import pytest

from apm_agent.collector import context
from apm_agent.collector.interceptor import HookSlot, SignalInterceptor
from apm_agent.collector.sampler import CountersSource, CpuCounters
from apm_agent.exporters.prometheus import AgentMetrics


class FakeCountersSource(CountersSource):
    """Counters source returning scripted readings"""

    def __init__(self, readings=None, memory=(1024, 4096), peaks=(2048, 3072)):
        self.readings = list(readings or [])
        self.memory = memory
        self.peaks = peaks

    def read_cpu(self):
        if not self.readings:
            return None
        return self.readings.pop(0)

    def read_memory(self):
        return self.memory

    def read_process_peaks(self):
        return self.peaks


class FakeHost:
    """Stands in for the interpreter's process-wide hooks"""

    def __init__(self):
        self.calls = []
        self.error_cb = self._original_error
        self.exception_hook = self._original_exception

    def _original_error(self, *args, **kwargs):
        self.calls.append(('error', args, kwargs))

    def _original_exception(self, *args):
        self.calls.append(('exception', args))


@pytest.fixture(autouse=True)
def clear_execution():
    """Make sure no execution leaks between tests"""
    context.end_execution()
    yield
    context.end_execution()


@pytest.fixture
def metrics():
    return AgentMetrics()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def interceptor(host, metrics):
    interceptor = SignalInterceptor(
        HookSlot(host, 'error_cb'),
        HookSlot(host, 'exception_hook'),
        metrics=metrics,
    )
    interceptor.install()
    yield interceptor
    if interceptor.installed:
        interceptor.remove()


@pytest.fixture
def counters():
    return FakeCountersSource(readings=[
        CpuCounters(system_busy=100.0, system_idle=300.0, process_busy=10.0),
        CpuCounters(system_busy=150.0, system_idle=350.0, process_busy=30.0),
    ])

