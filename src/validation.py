"""
Cluster Validation - Structural and semantic checks for ElasticsearchClusters.

Structural validation checks a wire manifest against a JSON Schema while it
is decoded; any violation travels with the decoded cluster. Semantic
validation inspects a decoded cluster and rejects specs that the
convergence strategy must never act on.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

if TYPE_CHECKING:
    from models import ElasticsearchCluster, NodePool

logger = logging.getLogger(__name__)

VALID_ROLES = ("data", "client", "master")

NODE_POOL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "replicas": {"type": "integer", "minimum": 0},
        "roles": {"type": "array", "items": {"type": "string"}},
        "resources": {"type": "object"},
        "state": {
            "type": "object",
            "properties": {
                "stateful": {"type": "boolean"},
                "persistence": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "size": {"type": ["string", "integer"]},
                        "storageClass": {"type": "string"},
                    },
                },
            },
        },
    },
}

CLUSTER_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["metadata"],
    "properties": {
        "apiVersion": {"type": "string"},
        "kind": {"type": "string"},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string"},
            },
        },
        "spec": {
            "type": "object",
            "properties": {
                "version": {"type": "string"},
                "image": {"type": "object"},
                "plugins": {"type": "array", "items": {"type": "string"}},
                "sysctl": {"type": "array", "items": {"type": "string"}},
                "nodePools": {"type": "array", "items": NODE_POOL_SCHEMA},
            },
        },
    },
}


class ClusterSpecError(ValueError):
    """Raised when a cluster specification is semantically invalid."""


def validate_spec_against_schema(
    spec: Any, schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a document against a JSON Schema.

    Args:
        spec: The document to validate
        schema: The Draft 7 JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema)
        errors = sorted(
            validator.iter_errors(spec),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"

    if not errors:
        return True, None

    # Collect all validation errors
    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def validate_cluster_manifest(manifest: Any) -> Tuple[bool, Optional[str]]:
    """Check the shape of an ElasticsearchCluster manifest."""
    return validate_spec_against_schema(manifest, CLUSTER_SCHEMA)


def verify_elasticsearch_cluster(cluster: "ElasticsearchCluster") -> None:
    """
    Reject a cluster whose spec must not be converged.

    Only the first violation found is reported.

    Raises:
        ClusterSpecError: If the manifest broke the schema, the
            version is empty or a node pool is invalid
    """
    if cluster.schema_error:
        raise ClusterSpecError(cluster.schema_error)

    if cluster.spec.version == "":
        raise ClusterSpecError("cluster version number must be specified")

    for np in cluster.spec.node_pools:
        verify_node_pool(np)


def verify_node_pool(np: "NodePool") -> None:
    for role in np.roles:
        if role not in VALID_ROLES:
            raise ClusterSpecError(
                f"invalid role '{role}' specified. "
                "must be one of 'data', 'client' or 'master'"
            )

    if np.state is not None:
        if not np.state.stateful and np.state.persistence.enabled:
            raise ClusterSpecError(
                "a non-stateful node pool cannot have persistence enabled"
            )
