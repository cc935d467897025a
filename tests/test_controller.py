import logging
import threading
import time

import pytest

from conftest import running, snapshot, terminated
from ssc.controller import Controller, queue_event_handler
from ssc.errors import CacheLookupError, CacheSyncError, ErrorReporter
from ssc.handler import Handler
from ssc.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue


class FakeInformer:
    def __init__(self, pods=None, fail=False, synced=True):
        self.pods = dict(pods or {})
        self.fail = fail
        self.synced = synced
        self.lookups = []
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def wait_for_sync(self, timeout_s, stop=None):
        return self.synced

    def lookup(self, key):
        self.lookups.append(key)
        if self.fail:
            raise CacheLookupError(key, "index unavailable")
        return self.pods.get(key)


class RecordingHandler(Handler):
    def __init__(self, explode_on=()):
        self.created = []
        self.deleted = []
        self.initialized = False
        self.explode_on = set(explode_on)

    def init(self):
        self.initialized = True

    def object_created(self, pod):
        if pod.key in self.explode_on:
            raise RuntimeError(f"boom on {pod.key}")
        self.created.append(pod.key)

    def object_deleted(self, key):
        self.deleted.append(key)


@pytest.fixture
def queue():
    q = RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay=0.0, max_delay=0.0))
    yield q
    q.shut_down()


def _controller(informer, queue, handler, **kw):
    reporter = ErrorReporter(logging.getLogger("test.errors"))
    return Controller(informer, queue, handler, reporter=reporter, worker_restart_s=0.01, **kw)


def test_present_pod_goes_to_object_created(queue):
    pod = snapshot([terminated("A"), running("B")], main="A", sidecars="B")
    handler = RecordingHandler()
    c = _controller(FakeInformer({pod.key: pod}), queue, handler)

    queue.add(pod.key)
    assert c.process_next_item() is True

    assert handler.created == ["default/job-1"]
    assert handler.deleted == []
    assert len(queue) == 0


def test_absent_pod_goes_to_object_deleted(queue):
    handler = RecordingHandler()
    c = _controller(FakeInformer(), queue, handler)

    queue.add("default/gone")
    c.process_next_item()

    assert handler.deleted == ["default/gone"]
    assert queue.num_requeues("default/gone") == 0


def test_lookup_failure_is_forgotten_after_exactly_five_requeues(queue):
    informer = FakeInformer(fail=True)
    handler = RecordingHandler()
    c = _controller(informer, queue, handler)
    requeues = []
    original = queue.add_rate_limited
    queue.add_rate_limited = lambda key: (requeues.append(key), original(key))

    queue.add("default/a")
    for _ in range(6):
        assert c.process_next_item() is True

    assert len(requeues) == 5
    assert len(informer.lookups) == 6
    assert len(queue) == 0
    assert queue.num_requeues("default/a") == 0
    assert c.reporter.count == 1
    assert isinstance(c.reporter.recent()[0], CacheLookupError)
    assert handler.created == [] and handler.deleted == []


def test_lookup_failure_keeps_counter_until_budget_spent(queue):
    c = _controller(FakeInformer(fail=True), queue, RecordingHandler())

    queue.add("default/a")
    c.process_next_item()
    c.process_next_item()

    assert queue.num_requeues("default/a") == 2
    assert c.reporter.count == 0


def test_handler_fault_is_isolated_per_cycle(queue):
    bad = snapshot([running("B")], name="bad", sidecars="B")
    good = snapshot([running("B")], name="good", sidecars="B")
    handler = RecordingHandler(explode_on={bad.key})
    c = _controller(FakeInformer({bad.key: bad, good.key: good}), queue, handler)

    queue.add(bad.key)
    queue.add(good.key)
    assert c.process_next_item() is True
    assert c.process_next_item() is True

    assert handler.created == ["default/good"]
    assert c.reporter.count == 1
    # the failed key is released and can be queued again
    queue.add(bad.key)
    assert len(queue) == 1


def test_process_next_item_stops_on_shutdown(queue):
    c = _controller(FakeInformer(), queue, RecordingHandler())
    queue.shut_down()
    assert c.process_next_item() is False


def test_run_fails_fast_when_cache_never_syncs(queue):
    informer = FakeInformer(synced=False)
    c = _controller(informer, queue, RecordingHandler(), cache_sync_timeout_s=0.01)

    with pytest.raises(CacheSyncError):
        c.run(threading.Event())

    assert informer.started and informer.stopped
    assert queue.shutting_down()
    assert c._threads == []


def test_run_processes_until_stopped(queue):
    pods = {f"default/p{i}": snapshot([running("B")], name=f"p{i}", sidecars="B") for i in range(5)}
    informer = FakeInformer(pods)
    handler = RecordingHandler()
    c = _controller(informer, queue, handler, workers=3)
    stop = threading.Event()
    for key in pods:
        queue.add(key)

    t = threading.Thread(target=c.run, args=(stop,))
    t.start()
    deadline = time.monotonic() + 5
    while len(handler.created) < 5 and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    t.join(timeout=5)

    assert not t.is_alive()
    assert handler.initialized
    assert sorted(handler.created) == sorted(pods)
    assert informer.stopped


def test_queue_event_handler_enqueues_keys(queue):
    h = queue_event_handler(queue)

    h.on_add("default/a")
    h.on_update("default/a", "default/a")
    h.on_delete("default/b")

    assert len(queue) == 2
