# apm_agent/exporters/reporter.py - Batch delivery to the collector
"""
Posts an assembled batch to the collector's intake endpoint.

Delivery is attempted exactly once. Failures are never raised to the caller;
they are appended to the configured delivery log, if any.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import time

import requests

from apm_agent import AGENT_NAME, __version__
from apm_agent.exceptions import ConfigurationError
from apm_agent.exporters.batch import Batch
from apm_agent.exporters.prometheus import AgentMetrics

INTAKE_PATH = "/intake/v2/events"
DEFAULT_TIMEOUT = 0.5
CONTENT_TYPE = "application/x-ndjson"
USER_AGENT = f"{AGENT_NAME}/{__version__}"


def intake_url(host: str) -> str:
    """Full intake URL for a collector base URL"""
    return f"{host.rstrip('/')}{INTAKE_PATH}"


@dataclass(frozen=True)
class DeliveryResult:
    """
    Outcome of a delivery attempt.
    """
    delivered: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    duration: float = 0.0


class DeliveryLog:
    """
    Append-only local log of delivery failures, one line per failure:
    "[YYYY-MM-DD HH:MM:SS] <endpoint> <error>".
    """

    FORMAT = '[%(asctime)s] %(message)s'
    DATEFMT = '%Y-%m-%d %H:%M:%S'

    def __init__(self, path: str):
        self.path = path
        self.formatter = logging.Formatter(self.FORMAT, datefmt=self.DATEFMT)

    def write(self, endpoint: str, error: str):
        """
        Append one failure line.

        Raises:
            ConfigurationError: If the log file cannot be opened
        """
        try:
            handler = logging.FileHandler(self.path, mode='a', encoding='utf-8')
        except OSError as e:
            raise ConfigurationError(
                f"Cannot access the file specified in apm.log ({self.path}): {e}"
            ) from e

        handler.setFormatter(self.formatter)
        try:
            record = logging.makeLogRecord({
                'name': __name__,
                'levelno': logging.ERROR,
                'levelname': 'ERROR',
                'msg': '%s %s',
                'args': (endpoint, error),
            })
            handler.handle(record)
        finally:
            handler.close()


class Reporter:
    """
    Sends batches to the collector with one synchronous POST each.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, log_path: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 metrics: Optional[AgentMetrics] = None):
        """
        Initialize the reporter.

        Args:
            timeout: Timeout of the POST in seconds
            log_path: Delivery-failure log file, or None
            session: requests session to post with (default: requests module)
            metrics: Agent metrics to count deliveries in
        """
        self.timeout = timeout
        self.delivery_log = DeliveryLog(log_path) if log_path else None
        self.http = session or requests
        self.metrics = metrics
        self.logger = logging.getLogger(__name__)

    def build_headers(self, secret_token: Optional[str] = None) -> dict:
        headers = {
            'Content-Type': CONTENT_TYPE,
            'User-Agent': USER_AGENT,
        }
        if secret_token:
            headers['Authorization'] = f"Bearer {secret_token}"
        return headers

    def deliver(self, batch: Batch, endpoint: str,
                secret_token: Optional[str] = None) -> DeliveryResult:
        """
        Post a batch once.

        Args:
            batch: Batch to send
            endpoint: Full intake URL
            secret_token: Optional bearer token

        Returns:
            DeliveryResult describing the attempt

        Raises:
            ConfigurationError: If a failure occurred and the delivery log
                cannot be opened
        """
        started = time.monotonic()
        try:
            response = self.http.post(
                endpoint,
                data=batch.body,
                headers=self.build_headers(secret_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            result = DeliveryResult(delivered=False, error=str(e) or type(e).__name__,
                                    duration=time.monotonic() - started)
        else:
            duration = time.monotonic() - started
            if response.status_code >= 400:
                result = DeliveryResult(
                    delivered=False,
                    status_code=response.status_code,
                    error=f"HTTP {response.status_code} {response.reason or ''}".rstrip(),
                    duration=duration,
                )
            else:
                result = DeliveryResult(delivered=True, status_code=response.status_code,
                                        duration=duration)

        # Counted before the log write, which may raise
        if self.metrics is not None:
            self.metrics.record_delivery(result.delivered, batch.size, result.duration)

        if result.delivered:
            self.logger.debug(f"Delivered {len(batch)} records to {endpoint} "
                              f"({result.duration * 1000:.1f}ms)")
        else:
            self.logger.info(f"Delivery to {endpoint} failed: {result.error}")
            if self.delivery_log is not None:
                self.delivery_log.write(endpoint, result.error)

        return result
