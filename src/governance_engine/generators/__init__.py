"""
Generation Collaborators

Adapters for the text-generation services that produce candidate artifacts.
"""

from .base import BaseGenerator, GeneratorConfig
from .claude import ClaudeGenerator
from .http import HttpGenerator
from .mock import MockGenerator

__all__ = [
    "BaseGenerator",
    "GeneratorConfig",
    "ClaudeGenerator",
    "HttpGenerator",
    "MockGenerator",
]
