# apm_agent/collector/__init__.py - Capture module
"""
Collector module for capturing what happens during an execution.

This module provides:
- identifiers.py: Random hex identifiers
- events.py: Error and exception event records
- context.py: Per-execution state and lifecycle
- interceptor.py: Warning and exception hook interception
- sampler.py: CPU and memory sampling
"""
