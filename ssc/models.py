from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Queue payload: "namespace/name", or "name" for objects without a namespace.
ResourceKey = str

# Terminated reasons that count as a finished container.
COMPLETED_REASONS = frozenset({"Completed", "Error"})

TERMINATE_COMMAND: tuple[str, ...] = ("sh", "-c", "kill -s TERM 1")


def meta_namespace_key(namespace: str | None, name: str) -> ResourceKey:
    return f"{namespace}/{name}" if namespace else name


def split_meta_namespace_key(key: ResourceKey) -> tuple[str, str]:
    """Return (namespace, name); raise ValueError for a malformed key."""
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


class ContainerStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Container name as declared in the pod spec")
    ready: bool = Field(False, description="Readiness reported by the kubelet")
    terminated_reason: str | None = Field(None, description="Reason of the terminated state, if terminated")

    @property
    def completed(self) -> bool:
        return not self.ready and self.terminated_reason in COMPLETED_REASONS

    @classmethod
    def from_kube(cls, status: Any) -> "ContainerStatus":
        terminated = getattr(getattr(status, "state", None), "terminated", None)
        return cls(
            name=status.name,
            ready=bool(status.ready),
            terminated_reason=getattr(terminated, "reason", None) if terminated is not None else None,
        )


class PodSnapshot(BaseModel):
    """Immutable view of a pod, as read from the informer cache."""

    model_config = ConfigDict(frozen=True)

    namespace: str = ""
    name: str
    node_name: str | None = None
    annotations: dict[str, str] = Field(default_factory=dict)
    container_statuses: tuple[ContainerStatus, ...] = ()
    resource_version: str | None = None

    @property
    def key(self) -> ResourceKey:
        return meta_namespace_key(self.namespace, self.name)

    @classmethod
    def from_kube(cls, pod: Any) -> "PodSnapshot":
        """Build a snapshot from a kubernetes.client.V1Pod."""
        meta = pod.metadata
        spec = getattr(pod, "spec", None)
        status = getattr(pod, "status", None)
        statuses = getattr(status, "container_statuses", None) or []
        return cls(
            namespace=meta.namespace or "",
            name=meta.name,
            node_name=getattr(spec, "node_name", None),
            annotations=dict(meta.annotations or {}),
            container_statuses=tuple(ContainerStatus.from_kube(s) for s in statuses),
            resource_version=meta.resource_version,
        )


class ShutdownCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str
    pod: str
    containers: tuple[str, ...] = Field(..., description="Target containers, in pod status order")
    command: tuple[str, ...] = TERMINATE_COMMAND
