"""
Resource Models - Typed mirrors of the objects the operator watches.

Objects arrive from the API server as camelCase JSON dicts. Each kind is
decoded into a dataclass so that event handlers can perform checked
downcasts and compare old/new objects structurally.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from validation import validate_cluster_manifest

logger = logging.getLogger(__name__)

CLUSTER_KIND = "ElasticsearchCluster"


class DecodeError(ValueError):
    """Raised when a wire object cannot be decoded into a model."""


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise DecodeError(f"invalid timestamp {value!r}: {e}")


@dataclass
class OwnerReference:
    """Link from a subordinate object to the object that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        try:
            return cls(
                api_version=data.get("apiVersion", ""),
                kind=data["kind"],
                name=data["name"],
                uid=data.get("uid", ""),
                controller=bool(data.get("controller", False)),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise DecodeError(f"invalid owner reference: {e}")


@dataclass
class ObjectMeta:
    """Subset of Kubernetes object metadata used by the controller."""

    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        if not isinstance(data, dict) or not data.get("name"):
            raise DecodeError("object metadata must contain a name")
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "",
            uid=data.get("uid") or "",
            resource_version=data.get("resourceVersion") or "",
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in data.get("ownerReferences") or []
            ],
            deletion_timestamp=_parse_timestamp(data.get("deletionTimestamp")),
        )

    def controller_ref(self) -> Optional[OwnerReference]:
        """Return the owner reference flagged as the managing controller."""
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None


def meta_namespace_key(obj: Any) -> str:
    """
    Build the ``namespace/name`` cache key for an object.

    Cluster-scoped objects are keyed by name alone.

    Raises:
        DecodeError: If the object carries no usable metadata
    """
    metadata = getattr(obj, "metadata", None)
    if not isinstance(metadata, ObjectMeta) or not metadata.name:
        raise DecodeError(f"object of type {type(obj).__name__} has no metadata")
    if metadata.namespace:
        return f"{metadata.namespace}/{metadata.name}"
    return metadata.name


# ElasticsearchCluster


@dataclass
class NodePoolPersistence:
    enabled: bool = False
    size: str = ""
    storage_class: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NodePoolPersistence":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            size=str(data.get("size", "")),
            storage_class=data.get("storageClass", ""),
        )


@dataclass
class NodePoolState:
    stateful: bool = False
    persistence: NodePoolPersistence = field(default_factory=NodePoolPersistence)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodePoolState":
        return cls(
            stateful=bool(data.get("stateful", False)),
            persistence=NodePoolPersistence.from_dict(data.get("persistence")),
        )


@dataclass
class NodePool:
    """A named group of Elasticsearch nodes sharing roles and storage policy."""

    name: str
    replicas: int = 1
    roles: List[str] = field(default_factory=list)
    resources: Dict[str, Any] = field(default_factory=dict)
    state: Optional[NodePoolState] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodePool":
        state = data.get("state")
        return cls(
            name=data.get("name") or "",
            replicas=int(data.get("replicas", 1)),
            roles=list(data.get("roles") or []),
            resources=dict(data.get("resources") or {}),
            state=NodePoolState.from_dict(state) if state is not None else None,
        )


@dataclass
class ElasticsearchClusterSpec:
    version: str = ""
    image: Dict[str, Any] = field(default_factory=dict)
    plugins: List[str] = field(default_factory=list)
    sysctl: List[str] = field(default_factory=list)
    node_pools: List[NodePool] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElasticsearchClusterSpec":
        return cls(
            version=data.get("version") or "",
            image=dict(data.get("image") or {}),
            plugins=list(data.get("plugins") or []),
            sysctl=list(data.get("sysctl") or []),
            node_pools=[NodePool.from_dict(np) for np in data.get("nodePools") or []],
        )


@dataclass
class ElasticsearchCluster:
    """The declarative resource this operator reconciles."""

    metadata: ObjectMeta
    spec: ElasticsearchClusterSpec = field(default_factory=ElasticsearchClusterSpec)
    # Structural problems found while decoding; rejected at sync time
    schema_error: Optional[str] = None
    kind = CLUSTER_KIND

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElasticsearchCluster":
        """
        Decode a cluster from its wire representation.

        Only the metadata must be usable. A spec that does not match the
        structural schema is decoded as far as possible and the schema
        violation is kept on ``schema_error``, so that the cache still
        tracks the object and the sync path can reject it.

        Raises:
            DecodeError: If the payload is not a mapping or has no metadata
        """
        if not isinstance(data, dict):
            raise DecodeError(f"expected a {CLUSTER_KIND} object, got {type(data).__name__}")
        metadata = ObjectMeta.from_dict(data.get("metadata"))

        _, error = validate_cluster_manifest(data)
        try:
            spec = ElasticsearchClusterSpec.from_dict(data.get("spec") or {})
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            spec = ElasticsearchClusterSpec()
            error = error or f"spec: {e}"
        return cls(metadata=metadata, spec=spec, schema_error=error)


# Subordinate kinds. The controller reads their metadata only; the
# remainder of each object is kept as-is for structural comparison.


@dataclass
class KubeObject:
    metadata: ObjectMeta
    spec: Dict[str, Any] = field(default_factory=dict)
    status: Dict[str, Any] = field(default_factory=dict)
    kind = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise DecodeError(f"expected a {cls.kind} object, got {type(data).__name__}")
        try:
            metadata = ObjectMeta.from_dict(data.get("metadata"))
        except DecodeError as e:
            raise DecodeError(f"invalid {cls.kind}: {e}")
        return cls(
            metadata=metadata,
            spec=dict(data.get("spec") or {}),
            status=dict(data.get("status") or {}),
        )


@dataclass
class Deployment(KubeObject):
    kind = "Deployment"


@dataclass
class StatefulSet(KubeObject):
    kind = "StatefulSet"


@dataclass
class Service(KubeObject):
    kind = "Service"


@dataclass
class ServiceAccount(KubeObject):
    """Service accounts carry no spec; secrets are kept under ``spec``."""

    kind = "ServiceAccount"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        obj = super().from_dict(data)
        obj.spec = {"secrets": list(data.get("secrets") or [])}
        return obj
