"""
Governors

Pluggable verification units and the scaffolding for the built-in kinds.
"""

from .base import CallableGovernor, Governor, GovernorSpec
from .builtin import (
    ArchitectureGovernor,
    ImportRule,
    PatternGovernor,
    PatternRule,
    SecurityGovernor,
    StyleGovernor,
    TypeGovernor,
    get_default_governors,
)

__all__ = [
    "Governor",
    "GovernorSpec",
    "CallableGovernor",
    "PatternGovernor",
    "PatternRule",
    "ImportRule",
    "ArchitectureGovernor",
    "TypeGovernor",
    "StyleGovernor",
    "SecurityGovernor",
    "get_default_governors",
]
