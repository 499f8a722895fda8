"""
Strategy Registry - Discovery and registration of convergence strategies.

Built-in strategies are registered explicitly; third-party strategies are
pip packages exposing an entry point in the 'es_operator.strategies' group.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, Optional, Type

from plugins.base import ConvergenceStrategy

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "es_operator.strategies"


class StrategyRegistry:
    """Central registry of convergence strategy classes and instances."""

    def __init__(self):
        # Registered strategy classes (not instantiated)
        self._strategies: Dict[str, Type[ConvergenceStrategy]] = {}

        # Cached metadata (name, version) to avoid repeated instantiation
        self._strategy_info: Dict[str, Dict[str, str]] = {}

        # Instantiated and initialized strategies
        self._instances: Dict[str, ConvergenceStrategy] = {}

        # Strategy configurations loaded from environment
        self._strategy_configs: Dict[str, Dict[str, Any]] = {}

    def register_strategy(self, strategy_class: Type[ConvergenceStrategy]) -> None:
        """
        Register a convergence strategy class.

        Args:
            strategy_class: The ConvergenceStrategy subclass to register
        """
        # Create temporary instance to get name/version (only once at registration)
        temp_instance = strategy_class()
        name = temp_instance.name
        version = temp_instance.version

        if name in self._strategies:
            logger.warning(f"Overwriting existing strategy: {name}")

        self._strategies[name] = strategy_class
        self._strategy_info[name] = {"name": name, "version": version}
        self._strategy_configs[name] = strategy_class.load_config_from_env()
        self._instances.pop(name, None)
        logger.info(f"Registered convergence strategy: {name} v{version}")

    async def get_strategy(
        self, name: str, options: Optional[Dict[str, Any]] = None
    ) -> ConvergenceStrategy:
        """
        Get an initialized strategy instance.

        Environment-loaded configuration is merged with ``options``, with
        ``options`` taking precedence.

        Raises:
            ValueError: If the strategy name is not registered
        """
        if name not in self._strategies:
            available = ", ".join(self._strategies.keys()) or "none"
            raise ValueError(
                f"Unknown convergence strategy: {name}. Available strategies: {available}"
            )

        if name not in self._instances:
            config = self._strategy_configs.get(name, {}).copy()
            if options:
                config.update(options)
            strategy = self._strategies[name]()
            await strategy.initialize(config)
            self._instances[name] = strategy
            logger.info(f"Initialized convergence strategy: {name}")

        return self._instances[name]

    def list_strategies(self) -> list[str]:
        """List all registered strategy names."""
        return list(self._strategies.keys())

    def has_strategy(self, name: str) -> bool:
        return name in self._strategies

    def get_strategy_info(self, name: str) -> Optional[Dict[str, str]]:
        """
        Get information about a registered strategy.

        Returns:
            Dictionary with 'name' and 'version', or None if not found
        """
        return self._strategy_info.get(name)


# Global registry instance
_registry: Optional[StrategyRegistry] = None


def get_registry() -> StrategyRegistry:
    """Get the global strategy registry singleton."""
    global _registry
    if _registry is None:
        _registry = StrategyRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_strategies() -> None:
    """
    Register the strategies that ship with the operator and discover
    installed ones via entry points.
    """
    registry = get_registry()

    from plugins.strategies import LoggingStrategy

    registry.register_strategy(LoggingStrategy)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register_strategy(ep.load())
        except Exception as e:
            logger.warning(f"Could not load convergence strategy {ep.name}: {e}")
