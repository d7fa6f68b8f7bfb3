# apm_agent/middleware.py - WSGI request lifecycle binding
"""
WSGI middleware that treats every request as one execution.

The execution starts before the application is called and ends when the
server closes the response iterable, so streamed responses are timed in full.
Exceptions raised by the application are recorded and re-raised unchanged.
"""

from typing import Callable, Iterable, Optional

from apm_agent.agent import Agent, get_agent
from apm_agent.collector.context import RequestAttributes


class ClosingIterator:
    """
    Wraps a response iterable and ends the execution when it is closed.
    """

    def __init__(self, iterable: Iterable, agent: Agent):
        self.iterable = iterable
        self.agent = agent
        self._iterator = iter(iterable)
        self._closed = False

    def __iter__(self):
        return self

    def __next__(self):
        try:
            return next(self._iterator)
        except StopIteration:
            raise
        except Exception as exc:
            self.agent.capture_exception(exc)
            raise

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            if hasattr(self.iterable, 'close'):
                self.iterable.close()
        finally:
            self.agent.end_execution()


class ApmMiddleware:
    """
    Example:
        app.wsgi_app = ApmMiddleware(app.wsgi_app, agent)
    """

    def __init__(self, app: Callable, agent: Optional[Agent] = None):
        """
        Args:
            app: WSGI application to wrap
            agent: Agent to report through (default: the one from init())
        """
        self.app = app
        self.agent = agent

    def _get_agent(self) -> Optional[Agent]:
        return self.agent or get_agent()

    def __call__(self, environ, start_response):
        agent = self._get_agent()
        if agent is None:
            return self.app(environ, start_response)

        agent.begin_execution(RequestAttributes.from_environ(environ))
        try:
            result = self.app(environ, start_response)
        except Exception as exc:
            agent.capture_exception(exc)
            agent.end_execution()
            raise

        return ClosingIterator(result, agent)
