from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Protocol

from .errors import CacheLookupError, CacheSyncError, ErrorReporter
from .handler import Handler
from .informer import ResourceEventHandler
from .models import PodSnapshot, ResourceKey
from .workqueue import RateLimitingQueue


class EventSource(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def wait_for_sync(self, timeout_s: float, stop: Event | None = None) -> bool: ...

    def lookup(self, key: ResourceKey) -> PodSnapshot | None: ...


def queue_event_handler(queue: RateLimitingQueue, logger: logging.Logger | None = None) -> ResourceEventHandler:
    """Event handler that turns every pod notification into a queued key."""
    log = logger or logging.getLogger(__name__)

    def on_add(key: ResourceKey) -> None:
        log.debug("Add pod: %s", key)
        queue.add(key)
        log.debug("Queue len: %d", len(queue))

    def on_update(_old: ResourceKey, key: ResourceKey) -> None:
        log.debug("Update pod: %s", key)
        queue.add(key)
        log.debug("Queue len: %d", len(queue))

    def on_delete(key: ResourceKey) -> None:
        log.debug("Delete pod: %s", key)
        queue.add(key)
        log.debug("Queue len: %d", len(queue))

    return ResourceEventHandler(on_add=on_add, on_update=on_update, on_delete=on_delete)


class Controller:
    """Turns queued pod keys into handler calls, one key at a time per worker."""

    def __init__(
        self,
        informer: EventSource,
        queue: RateLimitingQueue,
        handler: Handler,
        reporter: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
        workers: int = 1,
        max_retries: int = 5,
        cache_sync_timeout_s: float = 120.0,
        worker_restart_s: float = 10.0,
    ):
        self.informer = informer
        self.queue = queue
        self.handler = handler
        self.logger = logger or logging.getLogger(__name__)
        self.reporter = reporter or ErrorReporter(self.logger)
        self.workers = max(1, int(workers))
        self.max_retries = max(0, int(max_retries))
        self.cache_sync_timeout_s = cache_sync_timeout_s
        self.worker_restart_s = worker_restart_s
        self._threads: list[Thread] = []

    def run(self, stop: Event) -> None:
        """Block until stop is set. Raises CacheSyncError if the cache never syncs."""
        self.logger.info("Controller.run: initiating")
        try:
            self.handler.init()
            self.informer.start()

            # do the initial synchronization (one time) to populate resources
            if not self.informer.wait_for_sync(self.cache_sync_timeout_s, stop):
                if stop.is_set():
                    return
                raise CacheSyncError(f"error syncing cache within {self.cache_sync_timeout_s}s")
            self.logger.info("Controller.run: cache sync complete")

            self._threads = [
                Thread(target=self._run_worker, args=(stop,), name=f"ssc-worker-{i}", daemon=True)
                for i in range(self.workers)
            ]
            for t in self._threads:
                t.start()

            while not stop.wait(1.0):
                pass
        finally:
            # ignore new items; workers drain what is already queued
            self.queue.shut_down()
            self.informer.stop()

        for t in self._threads:
            t.join()
        self.logger.info("Controller.run: stopped")

    def _run_worker(self, stop: Event) -> None:
        while True:
            self.logger.debug("Controller.run_worker: starting")
            try:
                while self.process_next_item():
                    self.logger.debug("Controller.run_worker: processing next item")
            except Exception as e:
                self.reporter.handle_error(e, "Controller.run_worker")
            self.logger.debug("Controller.run_worker: completed")
            if self.queue.shutting_down():
                return
            stop.wait(self.worker_restart_s)

    def process_next_item(self) -> bool:
        """Handle one key. Returns False once the queue is shut down and drained."""
        key, shutdown = self.queue.get()
        if shutdown or key is None:
            return False
        try:
            self.reconcile(key)
        except Exception as e:
            self.reporter.handle_error(e, f"Controller.process_next_item: unexpected failure for {key}")
        finally:
            self.queue.done(key)
        return True

    def reconcile(self, key: ResourceKey) -> None:
        try:
            pod = self.informer.lookup(key)
        except CacheLookupError as e:
            if self.queue.num_requeues(key) < self.max_retries:
                self.logger.error(
                    "Controller.process_next_item: Failed processing item with key %s with error %s, retrying", key, e
                )
                self.queue.add_rate_limited(key)
            else:
                self.logger.error(
                    "Controller.process_next_item: Failed processing item with key %s with error %s, no more retries",
                    key, e,
                )
                self.queue.forget(key)
                self.reporter.handle_error(e)
            return

        if pod is None:
            self.logger.debug("Controller.process_next_item: object deleted detected: %s", key)
            self.handler.object_deleted(key)
        else:
            self.logger.debug("Controller.process_next_item: object created detected: %s", key)
            self.handler.object_created(pod)
        self.queue.forget(key)
