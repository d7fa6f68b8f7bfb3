# apm_agent/__init__.py - In-process APM agent
"""
In-process telemetry agent for Python programs.

Captures one execution (a WSGI request or a script run), records its timing,
resource usage and faults, and posts them as one NDJSON batch to an APM
collector when the execution ends.
"""

__version__ = "0.1.0"

AGENT_NAME = "apm-agent-python"

from apm_agent.collector.context import get_execution_id, get_trace_id  # noqa: E402

__all__ = ["__version__", "AGENT_NAME", "get_execution_id", "get_trace_id"]
