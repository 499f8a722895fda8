"""
Convergence Strategy Base - Interface for the logic that realizes a cluster.

A convergence strategy creates, updates and deletes the Deployments,
StatefulSets, ServiceAccounts and Services that make up an Elasticsearch
cluster. The controller treats it as a black box: it is handed the current
state of a cluster and either succeeds or raises.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from models import ElasticsearchCluster

logger = logging.getLogger(__name__)


class TerminalSyncError(Exception):
    """
    A convergence failure that retrying cannot fix.

    Raising this instead of any other exception tells the controller to
    drop the key rather than requeue it with backoff, e.g. when the owner
    was deleted while it was being converged.
    """


class ConvergenceStrategy(ABC):
    """
    Abstract base class for convergence strategies.

    Strategies are discovered via Python entry points in the
    'es_operator.strategies' group.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this strategy."""
        pass

    @property
    def version(self) -> str:
        return "0.0.0"

    async def initialize(self, options: Dict[str, Any]) -> None:
        """
        Configure the strategy before its first use.

        Args:
            options: Strategy-specific configuration
        """
        pass

    @abstractmethod
    async def sync_cluster(self, cluster: ElasticsearchCluster) -> None:
        """
        Converge the cluster's subordinate resources towards its spec.

        Must be idempotent. A cluster whose ``metadata.deletion_timestamp``
        is set must have every subordinate resource torn down.

        Raises:
            TerminalSyncError: If the failure must not be retried
            Exception: Any other failure; the cluster is retried with backoff
        """
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Strategy options read from the environment; none by default."""
        return {}
