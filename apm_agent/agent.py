# apm_agent/agent.py - Agent lifecycle
"""
Wires the pipeline together.

start()/stop() install and remove signal interception for the process;
begin_execution()/end_execution() bracket one unit of work and report it.
Nothing raised inside the pipeline reaches the host program.
"""

from contextlib import contextmanager
from typing import Optional
import logging
import time
import warnings

from apm_agent import __version__
from apm_agent.collector import context
from apm_agent.collector.context import ExecutionContext, RequestAttributes
from apm_agent.collector.interceptor import SignalInterceptor, get_interceptor
from apm_agent.collector.sampler import MetricSampler
from apm_agent.exceptions import BatchOverflowError, ConfigurationError, ConfigurationWarning
from apm_agent.exporters.batch import DEFAULT_MAX_BATCH_BYTES, BatchBuilder, transaction_name_and_type
from apm_agent.exporters.prometheus import AgentMetrics, get_metrics
from apm_agent.exporters.reporter import DEFAULT_TIMEOUT, DeliveryResult, Reporter, intake_url
from apm_agent.utils.config import Config
from apm_agent.utils.logger import setup_logging


class Agent:
    """
    In-process APM agent.

    Configuration is read when an execution ends, except `apm.enable`, which
    is also checked when it begins: a disabled agent creates no context and
    records nothing.
    """

    def __init__(self, config: Optional[Config] = None,
                 sampler: Optional[MetricSampler] = None,
                 reporter: Optional[Reporter] = None,
                 interceptor: Optional[SignalInterceptor] = None,
                 metrics: Optional[AgentMetrics] = None,
                 exporter=None):
        """
        Initialize the agent.

        Args:
            config: Agent configuration (default: environment)
            sampler: Metric sampler
            reporter: Fixed reporter (default: built from config per execution)
            interceptor: Signal interceptor (default: process-wide one)
            metrics: Self metrics
            exporter: Object with export(batch); replaces delivery when set
        """
        self.config = config or Config.from_env()
        self.metrics = metrics or get_metrics()
        self.sampler = sampler or MetricSampler()
        self.interceptor = interceptor or get_interceptor()
        self.reporter = reporter
        self.exporter = exporter

        self._reported_config_errors = set()
        self.logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.config.get('apm.enable', False))

    def start(self):
        """Install signal interception and, if configured, the metrics server"""
        if not self.interceptor.installed:
            self.interceptor.install()

        port = self.config.get('metrics.port')
        if port:
            try:
                self.metrics.start(int(port))
            except (OSError, ValueError) as e:
                self.logger.error(f"Metrics server not started on port {port}: {e}")

        self.logger.info(f"Agent {__version__} started (enabled={self.enabled})")

    def stop(self):
        """Remove signal interception"""
        if self.interceptor.installed:
            self.interceptor.remove()
        self.logger.info("Agent stopped")

    def begin_execution(self, attributes: Optional[RequestAttributes] = None
                        ) -> Optional[ExecutionContext]:
        """
        Start an execution.

        Args:
            attributes: Request attributes of the execution

        Returns:
            The new ExecutionContext, or None when the agent is disabled
        """
        if not self.enabled:
            return None
        return context.begin_execution(attributes, baseline=self.sampler.baseline())

    def capture_exception(self, exc: BaseException):
        """
        Record an exception the host is about to handle itself. Exceptions
        already recorded when they were raised are not recorded again.
        """
        return self.interceptor.capture_propagated(exc)

    def end_execution(self) -> Optional[DeliveryResult]:
        """
        Finish the active execution and report it.

        Returns:
            DeliveryResult, or None when nothing was posted
        """
        execution = context.end_execution()
        if execution is None or not self.enabled:
            return None

        try:
            return self._report(execution)
        except ConfigurationError as e:
            self.report_configuration_error(str(e))
        except BatchOverflowError as e:
            self.logger.error(f"Execution {execution.execution_id} not reported: {e}")
        except Exception as e:
            self.logger.error(f"Failed to report execution {execution.execution_id}: {e}",
                              exc_info=True)
        return None

    @contextmanager
    def execution(self, attributes: Optional[RequestAttributes] = None):
        """
        Run a block as one execution. Exceptions are recorded and re-raised.
        """
        execution = self.begin_execution(attributes)
        try:
            yield execution
        except Exception as exc:
            self.capture_exception(exc)
            raise
        finally:
            self.end_execution()

    def _report(self, execution: ExecutionContext) -> Optional[DeliveryResult]:
        end_time = time.time()
        sample = self.sampler.sample_system_and_process(execution.baseline)

        builder = BatchBuilder(
            max_bytes=int(self.config.get('apm.max_batch_bytes', DEFAULT_MAX_BATCH_BYTES))
        )
        batch = builder.build(execution, sample, self.config.get('apm.service_name', ''),
                              __version__, end_time)
        if batch.dropped:
            self.logger.warning(f"Batch cap of {builder.max_bytes} bytes reached, "
                                f"dropped {batch.dropped} event records")

        _, transaction_type = transaction_name_and_type(execution)
        self.metrics.executions.labels(type=transaction_type).inc()

        if self.exporter is not None:
            self.exporter.export(batch)
            return None

        reporter = self.reporter or Reporter(
            timeout=float(self.config.get('apm.timeout', DEFAULT_TIMEOUT)),
            log_path=self.config.get('apm.log') or None,
            metrics=self.metrics,
        )
        endpoint = intake_url(self.config.get('apm.host', 'http://localhost:8200'))
        return reporter.deliver(batch, endpoint, self.config.get('apm.secret_token') or None)

    def report_configuration_error(self, message: str):
        """
        Surface a configuration error through the host's warning channel,
        once per distinct message.
        """
        self.logger.error(message)
        if message in self._reported_config_errors:
            return
        self._reported_config_errors.add(message)
        warnings.warn(message, ConfigurationWarning, stacklevel=2)


_agent: Optional[Agent] = None


def init(config: Optional[Config] = None, **kwargs) -> Agent:
    """
    Create and start the process-wide agent.

    The agent logger is set up at the configured logging.level.

    Args:
        config: Agent configuration (default: environment)
        **kwargs: Passed to Agent

    Returns:
        The started agent
    """
    global _agent
    config = config or Config.from_env()
    setup_logging(level=config.get('logging.level', 'WARNING'))

    if _agent is not None:
        _agent.stop()
    _agent = Agent(config, **kwargs)
    _agent.start()
    return _agent


def get_agent() -> Optional[Agent]:
    """The agent created by init(), or None"""
    return _agent
