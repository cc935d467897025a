import sys

import pytest

from kubernetes import client

# Ensure project root is importable (so `import main` / `import ssc` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ssc.models import ContainerStatus, PodSnapshot  # noqa: E402

MAIN = "riskified.com/main_sidecars"
SIDECARS = "riskified.com/sidecars"


def running(name):
    return ContainerStatus(name=name, ready=True)


def terminated(name, reason="Completed"):
    return ContainerStatus(name=name, ready=False, terminated_reason=reason)


def waiting(name):
    return ContainerStatus(name=name, ready=False)


def snapshot(statuses, main=None, sidecars=None, name="job-1", namespace="default", annotations=None):
    ann = dict(annotations or {})
    if main is not None:
        ann[MAIN] = main
    if sidecars is not None:
        ann[SIDECARS] = sidecars
    return PodSnapshot(
        namespace=namespace, name=name, node_name="node-a", annotations=ann, container_statuses=tuple(statuses)
    )


def kube_pod(name="job-1", namespace="default", annotations=None, statuses=(), resource_version="1"):
    """A real kubernetes.client.V1Pod, as the API client would deserialize it."""
    container_statuses = []
    for s in statuses:
        state = client.V1ContainerState()
        if s.terminated_reason is not None:
            state = client.V1ContainerState(
                terminated=client.V1ContainerStateTerminated(exit_code=0, reason=s.terminated_reason)
            )
        elif s.ready:
            state = client.V1ContainerState(running=client.V1ContainerStateRunning())
        container_statuses.append(
            client.V1ContainerStatus(
                name=s.name, ready=s.ready, restart_count=0, image="busybox", image_id="", state=state
            )
        )
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name, namespace=namespace, annotations=annotations, resource_version=resource_version
        ),
        spec=client.V1PodSpec(containers=[], node_name="node-a"),
        status=client.V1PodStatus(container_statuses=container_statuses or None),
    )


@pytest.fixture
def make_snapshot():
    return snapshot


@pytest.fixture
def make_kube_pod():
    return kube_pod
