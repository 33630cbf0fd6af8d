"""
Output Formatting

Provides formatted output for console and structured reporting.
"""

from .base import BaseFormatter, OutputLevel
from .console import ConsoleFormatter, print_banner

__all__ = [
    "BaseFormatter",
    "OutputLevel",
    "ConsoleFormatter",
    "print_banner",
]
