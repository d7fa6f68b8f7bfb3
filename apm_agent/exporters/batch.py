# apm_agent/exporters/batch.py - NDJSON batch assembly
"""
Assembles the intake batch for one execution: metadata, transaction and
metricset records followed by every captured error and exception, one JSON
object per line.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import json
import os
import time

from apm_agent import AGENT_NAME, __version__
from apm_agent.collector.context import ExecutionContext
from apm_agent.collector.events import ErrorEvent, ExceptionEvent
from apm_agent.collector.sampler import MetricSample
from apm_agent.exceptions import BatchOverflowError, ConfigurationError

DEFAULT_MAX_BATCH_BYTES = 102400


@dataclass
class Batch:
    """
    An assembled batch. Lines keep their trailing newline.
    """
    lines: List[str]
    dropped: int = 0

    @property
    def body(self) -> bytes:
        return "".join(self.lines).encode('utf-8')

    @property
    def size(self) -> int:
        return sum(len(line.encode('utf-8')) for line in self.lines)

    def __len__(self) -> int:
        return len(self.lines)


def encode_record(record: Dict) -> str:
    """Serialize one record as a newline-terminated JSON line"""
    return json.dumps(record, separators=(',', ':'), ensure_ascii=False) + "\n"


def metadata_record(service_name: str, agent_version: str) -> Dict:
    return {
        'metadata': {
            'process': {'pid': os.getpid()},
            'service': {
                'name': service_name,
                'language': {'name': 'python'},
                'agent': {'version': agent_version, 'name': AGENT_NAME},
            },
        }
    }


def transaction_name_and_type(context: ExecutionContext):
    """
    Name and type of the transaction.

    An HTTP method makes it a request named "<METHOD> <URI>"; otherwise it is
    a script named after its path.
    """
    attributes = context.attributes
    if attributes.method:
        return f"{attributes.method} {attributes.uri or ''}", 'request'
    return attributes.script or '', 'script'


def transaction_record(context: ExecutionContext, end_time: float) -> Dict:
    name, transaction_type = transaction_name_and_type(context)
    return {
        'transaction': {
            'name': name,
            'trace_id': context.trace_id,
            'id': context.execution_id,
            'type': transaction_type,
            'duration': round(end_time - context.start_time, 3),
            'timestamp': context.start_timestamp_us,
            'result': '0',
            'context': None,
            'spans': None,
            'sampled': None,
            'span_count': {'started': 0},
        }
    }


def metricset_record(sample: MetricSample) -> Dict:
    samples = {
        'system.cpu.total.norm.pct': sample.cpu_pct,
        'system.process.cpu.total.norm.pct': sample.process_cpu_pct,
        'system.memory.actual.free': sample.memory_free,
        'system.memory.total': sample.memory_total,
        'system.process.memory.size': sample.process_memory_size,
        'system.process.memory.rss.bytes': sample.process_memory_rss,
    }
    return {
        'metricset': {
            'samples': {name: {'value': value} for name, value in samples.items()},
            'timestamp': sample.timestamp,
        }
    }


def error_record(event: ErrorEvent) -> Dict:
    return {
        'error': {
            'timestamp': event.timestamp,
            'id': event.id,
            'parent_id': event.parent_id,
            'trace_id': event.trace_id,
            'exception': {
                'code': event.severity,
                'message': event.message,
                'type': event.severity_name,
                'stacktrace': [{'filename': event.filename, 'lineno': event.lineno}],
            },
            'log': {
                'level': event.severity_name,
                'logger_name': 'python',
                'message': event.message,
            },
        }
    }


def exception_record(event: ExceptionEvent) -> Dict:
    return {
        'error': {
            'timestamp': event.timestamp,
            'id': event.id,
            'parent_id': event.parent_id,
            'trace_id': event.trace_id,
            'exception': {
                'code': event.code,
                'message': event.message,
                'type': event.type_name,
                'stacktrace': [{'filename': event.filename, 'lineno': event.lineno}],
            },
        }
    }


class BatchBuilder:
    """
    Builds batches without side effects.

    The three leading records are mandatory; a batch whose leading records
    alone exceed max_bytes is rejected. Event records that would push the
    batch past max_bytes are dropped from the tail.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_BATCH_BYTES):
        self.max_bytes = max_bytes

    def build(self, context: ExecutionContext, sample: MetricSample,
              service_name: str, agent_version: str = __version__,
              end_time: Optional[float] = None) -> Batch:
        """
        Assemble the batch for an execution.

        Args:
            context: Execution being reported
            sample: Final metric sample
            service_name: Service name (required)
            agent_version: Agent version for the metadata record
            end_time: Execution end time in epoch seconds (default: now)

        Returns:
            Batch of 3 + errors + exceptions lines, minus any dropped
        """
        if not service_name:
            raise ConfigurationError("A service name is required (apm.service_name)")

        if end_time is None:
            end_time = time.time()

        lines = [
            encode_record(metadata_record(service_name, agent_version)),
            encode_record(transaction_record(context, end_time)),
            encode_record(metricset_record(sample)),
        ]
        size = sum(len(line.encode('utf-8')) for line in lines)
        if size > self.max_bytes:
            raise BatchOverflowError(
                f"Mandatory records take {size} bytes, cap is {self.max_bytes}"
            )

        events = [error_record(e) for e in list(context.error_events)]
        events += [exception_record(e) for e in list(context.exception_events)]

        batch = Batch(lines=lines)
        for index, record in enumerate(events):
            line = encode_record(record)
            line_size = len(line.encode('utf-8'))
            if size + line_size > self.max_bytes:
                batch.dropped = len(events) - index
                break
            lines.append(line)
            size += line_size

        return batch
