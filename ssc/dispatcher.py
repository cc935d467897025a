from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, Sequence
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidStatus, WebSocketException
from websockets.sync.client import connect

from .errors import ExecChannelError
from .kube import KubeConnection
from .models import ShutdownCommand

# Kubernetes exec subprotocols; each binary frame starts with a channel byte.
EXEC_SUBPROTOCOLS = ["v4.channel.k8s.io", "channel.k8s.io"]

_SCHEMES = {"https": "wss", "http": "ws"}

NORMAL_CLOSURE = 1000


def build_exec_url(host: str, namespace: str, pod: str, container: str, command: Sequence[str]) -> str:
    """Exec endpoint URL for one container.

    Every command segment is its own ``command`` parameter; the API server
    reassembles them into argv.
    """
    u = urlsplit(host)
    scheme = _SCHEMES.get(u.scheme)
    if scheme is None:
        raise ExecChannelError(f"malformed URL {host}")

    base = u.path.rstrip("/")
    path = f"{base}/api/v1/namespaces/{quote(namespace, safe='')}/pods/{quote(pod, safe='')}/exec"
    params: list[tuple[str, str]] = [("command", c) for c in command]
    if container:
        params += [("container", container), ("stderr", "true"), ("stdout", "true")]
    return urlunsplit((scheme, u.netloc, path, urlencode(params), ""))


class ExecTransport(Protocol):
    def run(self, url: str, conn: KubeConnection) -> str: ...


class WebsocketExecTransport:
    """Opens the exec stream and reads it until the server closes it."""

    def __init__(self, open_timeout_s: float = 10.0):
        self.open_timeout_s = open_timeout_s

    def run(self, url: str, conn: KubeConnection) -> str:
        ssl_context = conn.ssl_context if url.startswith("wss://") else None
        try:
            ws = connect(
                url,
                additional_headers=conn.headers,
                ssl=ssl_context,
                subprotocols=EXEC_SUBPROTOCOLS,
                open_timeout=self.open_timeout_s,
            )
        except InvalidStatus as e:
            resp = e.response
            body = resp.body.decode("utf-8", "replace") if resp.body else ""
            raise ExecChannelError(
                f"can't connect to container ({resp.status_code}): {body}", status_code=resp.status_code
            ) from e
        except (OSError, TimeoutError, WebSocketException) as e:
            raise ExecChannelError(f"can't connect to container: {e}") from e

        chunks: list[str] = []
        with ws:
            while True:
                try:
                    msg = ws.recv()
                except ConnectionClosedOK as e:
                    # Only 1000 (normal closure) ends the stream successfully.
                    if e.rcvd is not None and e.rcvd.code == NORMAL_CLOSURE:
                        return "".join(chunks)
                    raise ExecChannelError(f"exec stream closed: {e}") from e
                except ConnectionClosedError as e:
                    raise ExecChannelError(f"exec stream closed abnormally: {e}") from e
                except (OSError, WebSocketException) as e:
                    raise ExecChannelError(f"exec stream read failed: {e}") from e
                if isinstance(msg, bytes):
                    chunks.append(msg[1:].decode("utf-8", "replace"))
                else:
                    chunks.append(msg)


class ShutdownDispatcher:
    """Delivers a ShutdownCommand container by container with fixed-delay retries."""

    def __init__(
        self,
        connection_factory: Callable[[], KubeConnection],
        transport: ExecTransport | None = None,
        attempts: int = 5,
        delay_s: float = 3.0,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connection_factory = connection_factory
        self.transport = transport or WebsocketExecTransport()
        self.attempts = max(1, int(attempts))
        self.delay_s = max(0.0, float(delay_s))
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    def dispatch(self, cmd: ShutdownCommand) -> dict[str, bool]:
        """Signal every target container; returns container -> delivered."""
        self.logger.info(
            "terminating pod %s/%s, with containers %s", cmd.namespace, cmd.pod, ", ".join(cmd.containers)
        )
        results: dict[str, bool] = {}
        for container in cmd.containers:
            results[container] = self._deliver(cmd, container)
        return results

    def _deliver(self, cmd: ShutdownCommand, container: str) -> bool:
        last_err: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                conn = self.connection_factory()
                url = build_exec_url(conn.host, cmd.namespace, cmd.pod, container, cmd.command)
                output = self.transport.run(url, conn)
            except Exception as e:
                last_err = e
                self.logger.debug(
                    "signal to %s/%s[%s] failed (attempt %d/%d): %s",
                    cmd.namespace, cmd.pod, container, attempt, self.attempts, e,
                )
                if attempt < self.attempts:
                    self._sleep(self.delay_s)
                continue
            if output:
                self.logger.debug("exec output from %s/%s[%s]: %s", cmd.namespace, cmd.pod, container, output.strip())
            self.logger.info("Sent shutdown signal to container %s in pod %s/%s", container, cmd.namespace, cmd.pod)
            return True

        self.logger.error(
            "Giving up on container %s in pod %s/%s after %d attempts: %s",
            container, cmd.namespace, cmd.pod, self.attempts, last_err,
        )
        return False
