# apm_agent/exporters/stdout.py - Console batch exporter
"""
Prints batches to the terminal instead of posting them. Used for dry runs.
"""

from typing import Dict
from colorama import Fore, Style, init
import json
import sys

from apm_agent.exporters.batch import Batch
from apm_agent.utils.helpers import format_bytes


# Initialize colorama
init(autoreset=True)


class ConsoleExporter:
    """
    Exports batches to a console stream with colored output.
    """

    COLORS = {
        'metadata': Fore.CYAN,
        'transaction': Fore.GREEN,
        'metricset': Fore.BLUE,
        'error': Fore.RED,
    }

    def __init__(self, use_colors: bool = True, raw: bool = False, stream=None):
        """
        Initialize the console exporter.

        Args:
            use_colors: Whether to use colored output
            raw: Print the NDJSON lines exactly as they would be posted
            stream: Output stream (default: stderr)
        """
        self.use_colors = use_colors
        self.raw = raw
        self.stream = stream or sys.stderr

    def export(self, batch: Batch):
        """
        Print a batch.

        Args:
            batch: Batch to print
        """
        if self.raw:
            self.stream.write("".join(batch.lines))
            return

        self._print(f"{'='*80}", Fore.CYAN)
        self._print(f"Batch: {len(batch)} records, {format_bytes(batch.size)}", Fore.CYAN)
        self._print(f"{'='*80}", Fore.CYAN)

        for line in batch.lines:
            record = json.loads(line)
            kind = next(iter(record))
            self._print(f"[{kind:11}] {self._summarize(kind, record[kind])}",
                        self.COLORS.get(kind, ""))

        if batch.dropped:
            self._print(f"... {batch.dropped} event records dropped (batch cap)", Fore.YELLOW)

    def _summarize(self, kind: str, body: Dict) -> str:
        if kind == 'metadata':
            service = body['service']
            return f"service={service['name']} pid={body['process']['pid']} agent={service['agent']['version']}"
        if kind == 'transaction':
            return (f"{body['type']} \"{body['name']}\" {body['duration'] * 1000:.0f}ms "
                    f"id={body['id']} trace={body['trace_id']}")
        if kind == 'metricset':
            samples = body['samples']
            return (f"cpu={samples['system.cpu.total.norm.pct']['value']:.2f} "
                    f"process_cpu={samples['system.process.cpu.total.norm.pct']['value']:.2f} "
                    f"rss={format_bytes(samples['system.process.memory.rss.bytes']['value'])}")
        exception = body['exception']
        frame = exception['stacktrace'][0]
        return f"{exception['type']}: {exception['message']} ({frame['filename']}:{frame['lineno']})"

    def _print(self, text: str, color: str = ""):
        if self.use_colors and color:
            text = f"{color}{text}{Style.RESET_ALL}"
        print(text, file=self.stream)
