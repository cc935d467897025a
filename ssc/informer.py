"""Pod list/watch loop with a locally indexed snapshot cache."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Event, Lock, Thread
from typing import Any, Callable

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from .errors import CacheLookupError
from .models import PodSnapshot, ResourceKey, split_meta_namespace_key


def _noop(*_args: Any) -> None:
    return None


@dataclass(frozen=True)
class ResourceEventHandler:
    on_add: Callable[[ResourceKey], None] = _noop
    on_update: Callable[[ResourceKey, ResourceKey], None] = _noop
    on_delete: Callable[[ResourceKey], None] = _noop


class PodInformer:
    """Lists and watches pods, keeps the latest snapshot per key, and notifies handlers.

    No resync period: handlers only hear about real changes, plus the adds of
    every (re)list.
    """

    def __init__(
        self,
        api: Any,
        namespace: str = "",
        logger: logging.Logger | None = None,
        watch_timeout_s: int = 300,
        backoff_s: float = 1.0,
        watch_factory: Callable[[], Any] = watch.Watch,
    ):
        self.api = api
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)
        self.watch_timeout_s = watch_timeout_s
        self.backoff_s = backoff_s
        self._watch_factory = watch_factory

        self._lock = Lock()
        self._store: dict[ResourceKey, PodSnapshot] = {}
        self._handlers: list[ResourceEventHandler] = []
        self._synced = Event()
        self._stop = Event()
        self._thr: Thread | None = None
        self._current_watch: Any = None

    # -- public contract ----------------------------------------------------

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout_s: float, stop: Event | None = None, poll_s: float = 0.1) -> bool:
        """Block until the first list completed, the timeout expires or stop is set."""
        deadline = time.monotonic() + max(0.0, timeout_s)
        while not self.has_synced():
            if stop is not None and stop.is_set():
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._synced.wait(min(poll_s, remaining))
        return True

    def lookup(self, key: ResourceKey) -> PodSnapshot | None:
        """Return the cached snapshot, or None when the pod no longer exists."""
        try:
            split_meta_namespace_key(key)
        except ValueError as e:
            raise CacheLookupError(key, str(e)) from e
        with self._lock:
            return self._store.get(key)

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="pod-informer", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()
        w = self._current_watch
        if w is not None:
            w.stop()

    # -- list / watch -------------------------------------------------------

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        if self.namespace:
            return self.api.list_namespaced_pod, (self.namespace,)
        return self.api.list_pod_for_all_namespaces, ()

    def _loop(self) -> None:
        self.logger.info("Pod informer started (namespace=%s)", self.namespace or "<all>")
        while not self._stop.is_set():
            try:
                rv = self.list_once()
                while not self._stop.is_set():
                    rv = self.watch_once(rv)
            except ApiException as e:
                if e.status == 410:
                    self.logger.debug("Watch expired, relisting pods")
                    continue
                self.logger.error("Pod list/watch failed: %s", e)
            except Exception as e:
                self.logger.error("Pod list/watch failed: %s: %s", type(e).__name__, e)
            self._stop.wait(self.backoff_s)
        self.logger.info("Pod informer stopped")

    def list_once(self) -> str | None:
        """List every pod, replace the cache, and mark the informer synced."""
        func, args = self._list_call()
        pod_list = func(*args)
        snapshots = [PodSnapshot.from_kube(p) for p in (pod_list.items or [])]
        self.replace(snapshots)
        self._synced.set()
        return pod_list.metadata.resource_version if pod_list.metadata else None

    def watch_once(self, resource_version: str | None) -> str | None:
        """Consume one watch stream; returns the last resource version seen."""
        func, args = self._list_call()
        w = self._watch_factory()
        self._current_watch = w
        try:
            for event in w.stream(
                func, *args, resource_version=resource_version, timeout_seconds=self.watch_timeout_s
            ):
                etype = event.get("type")
                obj = event.get("object")
                if etype == "ERROR":
                    raw = event.get("raw_object") or {}
                    raise ApiException(status=raw.get("code", 500), reason=raw.get("message", "watch error"))
                if etype == "BOOKMARK" or obj is None:
                    continue
                snapshot = PodSnapshot.from_kube(obj)
                resource_version = snapshot.resource_version or resource_version
                self.apply(etype, snapshot)
                if self._stop.is_set():
                    break
        finally:
            self._current_watch = None
        return resource_version

    # -- store mutation -----------------------------------------------------

    def apply(self, event_type: str, snapshot: PodSnapshot) -> None:
        key = snapshot.key
        with self._lock:
            existed = key in self._store
            if event_type == "DELETED":
                self._store.pop(key, None)
            else:
                self._store[key] = snapshot
            handlers = list(self._handlers)

        for h in handlers:
            if event_type == "DELETED":
                h.on_delete(key)
            elif existed:
                h.on_update(key, key)
            else:
                h.on_add(key)

    def replace(self, snapshots: list[PodSnapshot]) -> None:
        """Swap the cache for a fresh listing; vanished keys are reported as deletes."""
        fresh = {s.key: s for s in snapshots}
        with self._lock:
            previous = self._store
            self._store = fresh
            handlers = list(self._handlers)

        for key in fresh:
            for h in handlers:
                if key in previous:
                    h.on_update(key, key)
                else:
                    h.on_add(key)
        for key in previous:
            if key not in fresh:
                for h in handlers:
                    h.on_delete(key)
