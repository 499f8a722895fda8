"""
Plugin system for the Elasticsearch operator.

Convergence strategies are pluggable; the built-in ones live in
``plugins.strategies`` and others are discovered via entry points.
"""

from plugins.base import ConvergenceStrategy, TerminalSyncError
from plugins.registry import StrategyRegistry, get_registry

__all__ = [
    "ConvergenceStrategy",
    "TerminalSyncError",
    "StrategyRegistry",
    "get_registry",
]
