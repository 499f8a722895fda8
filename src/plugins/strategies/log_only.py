"""
Logging strategy - Reports what a real strategy would converge, changes nothing.

Useful as a dry run when pointing the operator at a live cluster, and as the
default when no other strategy is installed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from models import ElasticsearchCluster
from plugins.base import ConvergenceStrategy

logger = logging.getLogger(__name__)

# Services created for every cluster: (name suffix, roles selected)
CLUSTER_SERVICES = (
    ("clients", ["client"]),
    ("discovery", []),
)


@dataclass
class ConvergencePlan:
    """Subordinate resources a cluster is expected to own."""

    teardown: bool = False
    service_account: str = ""
    deployments: List[str] = field(default_factory=list)
    statefulsets: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)


def plan_for(cluster: ElasticsearchCluster) -> ConvergencePlan:
    base = f"es-{cluster.metadata.name}"
    plan = ConvergencePlan(
        teardown=cluster.metadata.deletion_timestamp is not None,
        service_account=base,
        services=[f"{base}-{suffix}" for suffix, _ in CLUSTER_SERVICES],
    )
    for np in cluster.spec.node_pools:
        name = f"{base}-{np.name}"
        if np.state is not None and np.state.stateful:
            plan.statefulsets.append(name)
        else:
            plan.deployments.append(name)
    return plan


class LoggingStrategy(ConvergenceStrategy):
    """Logs the convergence plan of every cluster it is given."""

    def __init__(self):
        self.plans: Dict[str, ConvergencePlan] = {}
        self.log_level = logging.INFO

    @property
    def name(self) -> str:
        return "logging"

    @property
    def version(self) -> str:
        return "1.0.0"

    async def initialize(self, options: Dict[str, Any]) -> None:
        level = options.get("log_level", "INFO")
        self.log_level = logging.getLevelName(str(level).upper())
        if not isinstance(self.log_level, int):
            raise ValueError(f"Invalid log_level for logging strategy: {level}")

    async def sync_cluster(self, cluster: ElasticsearchCluster) -> None:
        key = f"{cluster.metadata.namespace}/{cluster.metadata.name}"
        plan = plan_for(cluster)
        if plan.teardown:
            self.plans.pop(key, None)
            logger.log(
                self.log_level,
                f"Would tear down elasticsearchcluster {key}: "
                f"{len(plan.deployments)} deployments, "
                f"{len(plan.statefulsets)} statefulsets, "
                f"{len(plan.services)} services, serviceaccount {plan.service_account}",
            )
            return

        self.plans[key] = plan
        logger.log(
            self.log_level,
            f"Would converge elasticsearchcluster {key} "
            f"(version {cluster.spec.version}): "
            f"deployments={plan.deployments} statefulsets={plan.statefulsets} "
            f"services={plan.services} serviceaccount={plan.service_account}",
        )
