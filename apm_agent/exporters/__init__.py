# apm_agent/exporters/__init__.py - Exporters module
"""
Exporters for turning captured executions into output.

This module provides:
- batch.py: NDJSON intake batch assembly
- reporter.py: HTTP delivery to the collector
- stdout.py: Console output for dry runs
- prometheus.py: Agent self metrics
"""
