# apm_agent/utils/helpers.py - Helper functions
"""
General utility and helper functions.
"""

from typing import List, Tuple
import logging

import psutil
import requests

from apm_agent.exporters.reporter import USER_AGENT


logger = logging.getLogger(__name__)


def check_counters_available() -> bool:
    """
    Check if system and process CPU counters can be read.

    Returns:
        True if psutil can read CPU times, False otherwise
    """
    try:
        psutil.cpu_times()
        psutil.Process().cpu_times()
        return True
    except (psutil.Error, OSError) as e:
        logger.warning(f"CPU counters unavailable: {e}")
        return False


def check_collector_reachable(host: str, timeout: float = 2.0) -> bool:
    """
    Check if the collector answers HTTP requests.

    Args:
        host: Collector base URL
        timeout: Request timeout in seconds

    Returns:
        True if any HTTP response was received, False otherwise
    """
    try:
        requests.get(host, headers={'User-Agent': USER_AGENT}, timeout=timeout)
        return True
    except requests.RequestException as e:
        logger.warning(f"Collector {host} not reachable: {e}")
        return False


def format_bytes(bytes_count: int) -> str:
    """
    Format bytes into human-readable string.

    Args:
        bytes_count: Number of bytes

    Returns:
        Formatted string (e.g., "1.5 MB")
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0

    return f"{bytes_count:.1f} PB"


def check_prerequisites(config) -> List[Tuple[str, bool]]:
    """
    Check everything the agent needs to report.

    Args:
        config: Agent configuration

    Returns:
        List of (check name, passed) pairs
    """
    host = config.get('apm.host')
    return [
        ("Agent enabled (apm.enable)", bool(config.get('apm.enable'))),
        ("Service name set (apm.service_name)", bool(config.get('apm.service_name'))),
        ("CPU counters readable", check_counters_available()),
        (f"Collector reachable ({host})", check_collector_reachable(host)),
    ]
