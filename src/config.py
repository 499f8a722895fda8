"""
Configuration module for the Elasticsearch operator.

Loads configuration from environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class KubeConfig:
    """Kubernetes API access and watched resource coordinates."""

    in_cluster: bool = False
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    namespace: str = ""  # empty = all namespaces

    # ElasticsearchCluster custom resource
    group: str = "marshal.io"
    version: str = "v1alpha1"
    plural: str = "elasticsearchclusters"

    watch_timeout: int = 300  # seconds per watch request

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            in_cluster=_env_bool("KUBE_IN_CLUSTER", "false"),
            kubeconfig=os.getenv("KUBECONFIG") or None,
            context=os.getenv("KUBE_CONTEXT") or None,
            namespace=os.getenv("WATCH_NAMESPACE", ""),
            group=os.getenv("ES_CRD_GROUP", "marshal.io"),
            version=os.getenv("ES_CRD_VERSION", "v1alpha1"),
            plural=os.getenv("ES_CRD_PLURAL", "elasticsearchclusters"),
            watch_timeout=int(os.getenv("WATCH_TIMEOUT", "300")),
        )


@dataclass
class ControllerConfig:
    """Controller work queue and worker pool configuration."""

    workers: int = 5
    cache_sync_timeout: float = 60.0  # seconds, 0 = wait forever

    # Exponential backoff configuration
    backoff_base_delay: float = 0.005  # base delay in seconds
    backoff_max_delay: float = 1000.0  # max delay in seconds

    # Overall retry rate limit shared by all clusters
    rate_limit_qps: float = 10.0
    rate_limit_burst: int = 100

    watch_retry_delay: float = 1.0  # seconds before relisting after an error
    validate_specs: bool = True

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            workers=int(os.getenv("WORKERS", "5")),
            cache_sync_timeout=float(os.getenv("CACHE_SYNC_TIMEOUT", "60")),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "0.005")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "1000")),
            rate_limit_qps=float(os.getenv("RATE_LIMIT_QPS", "10")),
            rate_limit_burst=int(os.getenv("RATE_LIMIT_BURST", "100")),
            watch_retry_delay=float(os.getenv("WATCH_RETRY_DELAY", "1")),
            validate_specs=_env_bool("VALIDATE_SPECS", "true"),
        )


@dataclass
class APIConfig:
    """Operator API server configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=_env_bool("API_ENABLED", "true"),
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8080")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class StrategyConfig:
    """Convergence strategy selection and options."""

    name: str = "logging"
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        options = {}
        if os.getenv("STRATEGY_CONFIG"):
            try:
                options = json.loads(os.getenv("STRATEGY_CONFIG"))
            except json.JSONDecodeError:
                logger.warning("Ignoring STRATEGY_CONFIG: not valid JSON")

        return cls(
            name=os.getenv("CONVERGENCE_STRATEGY", "logging"),
            options=options,
        )


@dataclass
class Config:
    """Main configuration object."""

    kube: KubeConfig
    controller: ControllerConfig
    api: APIConfig
    strategy: StrategyConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            kube=KubeConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            strategy=StrategyConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            kube=KubeConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
            strategy=StrategyConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
