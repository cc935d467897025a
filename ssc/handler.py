from __future__ import annotations

import logging

from .decision import DEFAULT_MAIN_ANNOTATION, DEFAULT_SIDECAR_ANNOTATION, classify, command_for, is_tracked
from .dispatcher import ShutdownDispatcher
from .models import PodSnapshot, ResourceKey


class Handler:
    """Reaction to reconciled pods. Every hook is a no-op unless overridden."""

    def init(self) -> None:
        return None

    def object_created(self, pod: PodSnapshot) -> None:
        return None

    def object_deleted(self, key: ResourceKey) -> None:
        return None

    def object_updated(self, old: PodSnapshot, new: PodSnapshot) -> None:
        return None


class SidecarShutdownHandler(Handler):
    """Signals leftover sidecars of annotated pods once their main work is over."""

    def __init__(
        self,
        dispatcher: ShutdownDispatcher,
        main_annotation: str = DEFAULT_MAIN_ANNOTATION,
        sidecar_annotation: str = DEFAULT_SIDECAR_ANNOTATION,
        keep_empty_names: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.dispatcher = dispatcher
        self.main_annotation = main_annotation
        self.sidecar_annotation = sidecar_annotation
        self.keep_empty_names = keep_empty_names
        self.logger = logger or logging.getLogger(__name__)

    def init(self) -> None:
        self.logger.info(
            "SidecarShutdownHandler.init: main=%s sidecars=%s", self.main_annotation, self.sidecar_annotation
        )

    def object_created(self, pod: PodSnapshot) -> None:
        self.logger.debug("SidecarShutdownHandler.object_created: %s", pod.key)
        if not is_tracked(pod, self.main_annotation, self.sidecar_annotation):
            return

        c = classify(pod, self.main_annotation, self.sidecar_annotation, self.keep_empty_names)
        self.logger.info(
            "pod: %s ; namespace: %s ; mainProc: %s ; sidecars: %s ; node: %s",
            pod.name, pod.namespace, c.main_processes, c.sidecars, pod.node_name,
        )
        self.logger.debug(
            "pod %s: all=%s running=%s completed=%s observed=%s",
            pod.key, c.all, c.running, c.completed, c.fully_observed,
        )

        cmd = command_for(pod, c)
        if cmd is None:
            return
        self.logger.info("Sending shutdown signal to containers %s in pod %s", ", ".join(cmd.containers), pod.key)
        self.dispatcher.dispatch(cmd)

    def object_deleted(self, key: ResourceKey) -> None:
        self.logger.debug("SidecarShutdownHandler.object_deleted: %s", key)
