# apm_agent/collector/identifiers.py - Random hex identifiers
"""
Fixed-width random identifiers for executions, traces and events.

Identifiers only need to be unique within a trace's retention window, so the
general-purpose PRNG is used rather than a cryptographic source.
"""

import random

EXECUTION_ID_BYTES = 16
TRACE_ID_BYTES = 8
EVENT_ID_BYTES = 16


def generate(n_bytes: int) -> str:
    """
    Generate a random identifier.

    Args:
        n_bytes: Number of random bytes

    Returns:
        Lowercase hex string of length 2 * n_bytes
    """
    if n_bytes <= 0:
        return ""
    return format(random.getrandbits(n_bytes * 8), f"0{n_bytes * 2}x")


def new_execution_id() -> str:
    return generate(EXECUTION_ID_BYTES)


def new_trace_id() -> str:
    return generate(TRACE_ID_BYTES)


def new_event_id() -> str:
    return generate(EVENT_ID_BYTES)
