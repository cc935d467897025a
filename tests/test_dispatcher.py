import threading
from urllib.parse import parse_qsl, urlsplit

import pytest
from websockets.sync.server import serve

from ssc.dispatcher import ShutdownDispatcher, WebsocketExecTransport, build_exec_url
from ssc.errors import ExecChannelError, KubeConfigError
from ssc.kube import KubeConnection
from ssc.models import ShutdownCommand

CONN = KubeConnection(host="https://10.0.0.1:6443", headers={"Authorization": "Bearer t0ken"})


def _cmd(*containers):
    return ShutdownCommand(namespace="jobs", pod="etl-7", containers=containers)


class FlakyTransport:
    """Fails the first N calls per container, then succeeds."""

    def __init__(self, failures):
        self.failures = dict(failures)
        self.calls = []

    def run(self, url, conn):
        container = dict(parse_qsl(urlsplit(url).query))["container"]
        self.calls.append(container)
        if self.failures.get(container, 0) > 0:
            self.failures[container] -= 1
            raise ExecChannelError("connection reset")
        return ""


def test_build_exec_url_secure():
    url = build_exec_url("https://10.0.0.1:6443", "jobs", "etl-7", "proxy", ("sh", "-c", "kill -s TERM 1"))

    assert url == (
        "wss://10.0.0.1:6443/api/v1/namespaces/jobs/pods/etl-7/exec"
        "?command=sh&command=-c&command=kill+-s+TERM+1&container=proxy&stderr=true&stdout=true"
    )


def test_build_exec_url_plain_keeps_path_prefix():
    url = build_exec_url("http://localhost:8001/k8s/", "ns", "p", "c", ("true",))
    u = urlsplit(url)

    assert u.scheme == "ws"
    assert u.path == "/k8s/api/v1/namespaces/ns/pods/p/exec"
    assert parse_qsl(u.query) == [("command", "true"), ("container", "c"), ("stderr", "true"), ("stdout", "true")]


def test_build_exec_url_rejects_unknown_scheme():
    with pytest.raises(ExecChannelError):
        build_exec_url("ftp://example", "ns", "p", "c", ("true",))


def test_four_failures_then_success():
    transport = FlakyTransport({"proxy": 4})
    sleeps = []
    d = ShutdownDispatcher(lambda: CONN, transport=transport, attempts=5, delay_s=3.0, sleep=sleeps.append)

    assert d.dispatch(_cmd("proxy")) == {"proxy": True}
    assert transport.calls == ["proxy"] * 5
    assert sleeps == [3.0] * 4


def test_exhausted_container_does_not_block_the_next():
    transport = FlakyTransport({"proxy": 5})
    sleeps = []
    d = ShutdownDispatcher(lambda: CONN, transport=transport, attempts=5, delay_s=3.0, sleep=sleeps.append)

    assert d.dispatch(_cmd("proxy", "fluentd")) == {"proxy": False, "fluentd": True}
    assert transport.calls == ["proxy"] * 5 + ["fluentd"]
    # no delay after the final failed attempt
    assert sleeps == [3.0] * 4


def test_credential_failures_are_retried_too():
    calls = []

    def factory():
        calls.append(1)
        if len(calls) < 3:
            raise KubeConfigError("token file missing")
        return CONN

    d = ShutdownDispatcher(factory, transport=FlakyTransport({}), attempts=5, delay_s=0, sleep=lambda s: None)
    assert d.dispatch(_cmd("proxy")) == {"proxy": True}
    assert len(calls) == 3


@pytest.fixture
def ws_server():
    """Local websocket server; the handler is chosen per test."""
    behaviour = {}

    def handler(ws):
        behaviour["path"] = ws.request.path
        behaviour["auth"] = ws.request.headers.get("Authorization")
        behaviour["handle"](ws)

    with serve(handler, "127.0.0.1", 0) as server:
        t = threading.Thread(target=server.serve_forever, daemon=True)
        t.start()
        port = server.socket.getsockname()[1]
        yield f"http://127.0.0.1:{port}", behaviour
    t.join(timeout=5)


def test_transport_reads_until_normal_close(ws_server):
    host, behaviour = ws_server

    def handle(ws):
        ws.send(b"\x01terminated\n")
        ws.close(code=1000)

    behaviour["handle"] = handle
    conn = KubeConnection(host=host, headers={"Authorization": "Bearer abc"})
    url = build_exec_url(host, "jobs", "etl-7", "proxy", ("sh", "-c", "kill -s TERM 1"))

    out = WebsocketExecTransport(open_timeout_s=5).run(url, conn)

    assert out == "terminated\n"
    assert behaviour["auth"] == "Bearer abc"
    assert behaviour["path"].startswith("/api/v1/namespaces/jobs/pods/etl-7/exec?command=sh")


def test_transport_abnormal_close_is_an_error(ws_server):
    host, behaviour = ws_server
    behaviour["handle"] = lambda ws: ws.close(code=1011, reason="exec failed")
    conn = KubeConnection(host=host)
    url = build_exec_url(host, "jobs", "etl-7", "proxy", ("true",))

    with pytest.raises(ExecChannelError):
        WebsocketExecTransport(open_timeout_s=5).run(url, conn)


def test_transport_connection_refused_is_an_error():
    conn = KubeConnection(host="http://127.0.0.1:1")
    url = build_exec_url(conn.host, "jobs", "etl-7", "proxy", ("true",))

    with pytest.raises(ExecChannelError):
        WebsocketExecTransport(open_timeout_s=2).run(url, conn)


def test_transport_going_away_close_is_not_success(ws_server):
    host, behaviour = ws_server
    behaviour["handle"] = lambda ws: ws.close(code=1001)
    conn = KubeConnection(host=host)
    url = build_exec_url(host, "jobs", "etl-7", "proxy", ("true",))

    with pytest.raises(ExecChannelError):
        WebsocketExecTransport(open_timeout_s=5).run(url, conn)


class ExplodingTransport:
    def __init__(self, broken):
        self.broken = broken
        self.calls = []

    def run(self, url, conn):
        container = dict(parse_qsl(urlsplit(url).query))["container"]
        self.calls.append(container)
        if container == self.broken:
            raise OSError("socket torn down")
        return ""


def test_unexpected_transport_error_does_not_block_other_containers():
    transport = ExplodingTransport("proxy")
    d = ShutdownDispatcher(lambda: CONN, transport=transport, attempts=3, delay_s=0, sleep=lambda s: None)

    assert d.dispatch(_cmd("proxy", "fluentd")) == {"proxy": False, "fluentd": True}
    assert transport.calls == ["proxy"] * 3 + ["fluentd"]


def test_unexpected_connection_error_is_retried():
    calls = []

    def factory():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("token file unreadable")
        return CONN

    d = ShutdownDispatcher(factory, transport=FlakyTransport({}), attempts=5, delay_s=0, sleep=lambda s: None)
    assert d.dispatch(_cmd("proxy")) == {"proxy": True}
    assert len(calls) == 2
