"""Shutdown eligibility rules for annotated pods.

Everything here is a pure function of the snapshot: no logging, no I/O, and
the same snapshot always yields an equal result.
"""
from __future__ import annotations

from dataclasses import dataclass

from .containerset import ContainerSet
from .models import PodSnapshot, ShutdownCommand

DEFAULT_MAIN_ANNOTATION = "riskified.com/main_sidecars"
DEFAULT_SIDECAR_ANNOTATION = "riskified.com/sidecars"


@dataclass(frozen=True)
class ContainerClassification:
    all: ContainerSet
    running: ContainerSet
    completed: ContainerSet
    main_processes: ContainerSet
    sidecars: ContainerSet

    @property
    def fully_observed(self) -> bool:
        """Every container is either running or completed."""
        return self.running.union(self.completed) == self.all


def is_tracked(
    pod: PodSnapshot,
    main_annotation: str = DEFAULT_MAIN_ANNOTATION,
    sidecar_annotation: str = DEFAULT_SIDECAR_ANNOTATION,
) -> bool:
    return main_annotation in pod.annotations or sidecar_annotation in pod.annotations


def classify(
    pod: PodSnapshot,
    main_annotation: str = DEFAULT_MAIN_ANNOTATION,
    sidecar_annotation: str = DEFAULT_SIDECAR_ANNOTATION,
    keep_empty_names: bool = False,
) -> ContainerClassification:
    running = [s.name for s in pod.container_statuses if s.ready]
    completed = [s.name for s in pod.container_statuses if s.completed]
    return ContainerClassification(
        all=ContainerSet(s.name for s in pod.container_statuses),
        running=ContainerSet(running),
        completed=ContainerSet(completed),
        main_processes=ContainerSet.parse(pod.annotations.get(main_annotation), keep_empty_names),
        sidecars=ContainerSet.parse(pod.annotations.get(sidecar_annotation), keep_empty_names),
    )


def select_targets(c: ContainerClassification) -> ContainerSet | None:
    if not c.fully_observed or not c.running:
        return None
    # Main processes finished; whatever still runs is a leftover sidecar.
    if c.main_processes and c.completed.contains_all(c.main_processes):
        return c.running
    # Only the declared sidecars are left.
    if c.running == c.sidecars:
        return c.running
    return None


def command_for(pod: PodSnapshot, c: ContainerClassification) -> ShutdownCommand | None:
    """Shutdown command for an already classified pod."""
    targets = select_targets(c)
    if targets is None:
        return None
    return ShutdownCommand(namespace=pod.namespace, pod=pod.name, containers=targets.to_tuple())


def decide(
    pod: PodSnapshot,
    main_annotation: str = DEFAULT_MAIN_ANNOTATION,
    sidecar_annotation: str = DEFAULT_SIDECAR_ANNOTATION,
    keep_empty_names: bool = False,
) -> ShutdownCommand | None:
    """Return the shutdown command for pod, or None when nothing should be signalled."""
    if not is_tracked(pod, main_annotation, sidecar_annotation):
        return None
    return command_for(pod, classify(pod, main_annotation, sidecar_annotation, keep_empty_names))
