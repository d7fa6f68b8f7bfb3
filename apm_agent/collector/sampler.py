# apm_agent/collector/sampler.py - System and process metric sampling
"""
Point-in-time CPU and memory readings for the machine and the current process.

CPU utilisation is derived from counter deltas between the baseline read at
execution start and the final read at execution end.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging
import tracemalloc

import psutil

from apm_agent.collector.events import now_us

try:
    import resource
except ImportError:  # Windows
    resource = None


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CpuCounters:
    """
    Cumulative CPU times in seconds.

    system_busy/system_idle are summed over all CPUs; process_busy is the
    user + system time of this process.
    """
    system_busy: float
    system_idle: float
    process_busy: float


@dataclass(frozen=True)
class MetricSample:
    """
    Immutable snapshot emitted as the metricset record.
    """
    cpu_pct: float
    process_cpu_pct: float
    memory_free: int
    memory_total: int
    process_memory_size: int
    process_memory_rss: int
    timestamp: int


class CountersSource:
    """
    Interface over the platform counters facility.
    """

    def read_cpu(self) -> Optional[CpuCounters]:
        raise NotImplementedError

    def read_memory(self) -> Tuple[int, int]:
        """Return (free, total) system memory in bytes"""
        raise NotImplementedError

    def read_process_peaks(self) -> Tuple[int, int]:
        """Return (peak allocation, peak resident set) in bytes"""
        raise NotImplementedError


class PsutilCountersSource(CountersSource):
    """
    Counters source backed by psutil.

    Peak figures come from the interpreter where it tracks them: tracemalloc
    for allocations when tracing is on, getrusage for the resident peak.
    """

    IDLE_FIELDS = ('idle', 'iowait')
    # Already included in user and nice on Linux
    GUEST_FIELDS = ('guest', 'guest_nice')

    def __init__(self):
        self.process = psutil.Process()

    def read_cpu(self) -> Optional[CpuCounters]:
        try:
            times = psutil.cpu_times()
            proc = self.process.cpu_times()
        except (psutil.Error, OSError) as e:
            logger.debug(f"CPU counters unavailable: {e}")
            return None

        idle = sum(getattr(times, name, 0.0) for name in self.IDLE_FIELDS)
        total = sum(times) - sum(getattr(times, name, 0.0) for name in self.GUEST_FIELDS)
        return CpuCounters(
            system_busy=total - idle,
            system_idle=idle,
            process_busy=proc.user + proc.system,
        )

    def read_memory(self) -> Tuple[int, int]:
        try:
            memory = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            logger.debug(f"Memory counters unavailable: {e}")
            return 0, 0
        return memory.free, memory.total

    def read_process_peaks(self) -> Tuple[int, int]:
        try:
            info = self.process.memory_info()
        except (psutil.Error, OSError) as e:
            logger.debug(f"Process memory unavailable: {e}")
            return 0, 0

        if tracemalloc.is_tracing():
            size = tracemalloc.get_traced_memory()[1]
        else:
            size = info.vms

        rss = info.rss
        if resource is not None:
            # ru_maxrss is reported in kilobytes on Linux
            rss = max(rss, resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024)

        return size, rss


def utilization(busy_delta: float, idle_delta: float) -> float:
    """
    Compute busy / (busy + idle), rounded to two decimals.

    Returns 0.0 for an empty or negative interval.
    """
    total = busy_delta + idle_delta
    if total <= 0 or busy_delta < 0:
        return 0.0
    return round(min(busy_delta / total, 1.0), 2)


class MetricSampler:
    """
    Takes the baseline and final readings for one execution.
    """

    def __init__(self, source: Optional[CountersSource] = None):
        """
        Initialize the sampler.

        Args:
            source: Counters source (default: psutil-backed)
        """
        self.source = source or PsutilCountersSource()

    def baseline(self) -> Optional[CpuCounters]:
        """Read the CPU counters at execution start"""
        return self.source.read_cpu()

    def sample_system_and_process(self, baseline: Optional[CpuCounters]) -> MetricSample:
        """
        Take the final reading and derive the execution's metric sample.

        Args:
            baseline: Counters read at execution start, or None

        Returns:
            MetricSample; CPU percentages are 0.0 when counters are unavailable
        """
        cpu_pct = 0.0
        process_cpu_pct = 0.0

        final = self.source.read_cpu()
        if baseline is not None and final is not None:
            busy = final.system_busy - baseline.system_busy
            idle = final.system_idle - baseline.system_idle
            cpu_pct = utilization(busy, idle)

            process_busy = final.process_busy - baseline.process_busy
            process_cpu_pct = utilization(process_busy, busy + idle - process_busy)

        memory_free, memory_total = self.source.read_memory()
        size, rss = self.source.read_process_peaks()

        return MetricSample(
            cpu_pct=cpu_pct,
            process_cpu_pct=process_cpu_pct,
            memory_free=memory_free,
            memory_total=memory_total,
            process_memory_size=size,
            process_memory_rss=rss,
            timestamp=now_us(),
        )
