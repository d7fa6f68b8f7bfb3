# apm_agent/utils/logger.py - Logging setup
"""
Logging configuration for the agent.

Only the 'apm_agent' logger hierarchy is configured; the host program's own
logging setup is left untouched.
"""

import copy
import logging
import sys
from typing import Optional
from colorama import Fore, Style


AGENT_LOGGER = 'apm_agent'


class ColoredFormatter(logging.Formatter):
    """
    Colored log formatter for console output.
    """

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        """Format log record with colors"""
        levelname = record.levelname
        if levelname in self.COLORS:
            # Other handlers share the record
            record = copy.copy(record)
            record.levelname = f"{self.COLORS[levelname]}{levelname}{Style.RESET_ALL}"

        return super().format(record)


def setup_logging(level: str = 'WARNING', log_file: Optional[str] = None,
                  stream=None) -> logging.Logger:
    """
    Setup logging for the agent.

    Args:
        level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        log_file: Optional log file path
        stream: Console stream (default: stderr)

    Returns:
        The configured agent logger
    """
    numeric_level = getattr(logging, str(level).upper(), logging.WARNING)

    agent_logger = logging.getLogger(AGENT_LOGGER)
    agent_logger.setLevel(numeric_level)
    agent_logger.propagate = False

    for handler in list(agent_logger.handlers):
        agent_logger.removeHandler(handler)
        handler.close()

    # Console handler with colors; stderr keeps the host's stdout clean
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(numeric_level)
    console_formatter = ColoredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    agent_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        agent_logger.addHandler(file_handler)

    agent_logger.debug(f"Logging initialized at {level} level")
    return agent_logger

