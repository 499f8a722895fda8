"""Built-in convergence strategies."""

from plugins.strategies.log_only import LoggingStrategy

__all__ = ["LoggingStrategy"]
