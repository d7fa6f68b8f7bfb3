# apm_agent/exceptions.py - Agent exception types
"""
Exceptions raised inside the agent.

None of these are allowed to reach the host program; the agent turns them
into warnings, log lines or dropped events.
"""


class AgentError(Exception):
    """Base class for agent errors"""


class ConfigurationError(AgentError):
    """A required option is missing or a configured resource is unusable"""


class BatchOverflowError(AgentError):
    """The mandatory batch records do not fit in the batch size cap"""


class InterceptorStateError(AgentError):
    """Install/remove called in the wrong interceptor state"""


class ConfigurationWarning(UserWarning):
    """Warning category used to surface configuration errors to the host"""
