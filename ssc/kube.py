from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass, field

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from .errors import KubeConfigError
from .settings import Settings

logger = logging.getLogger(__name__)


def load_configuration(cfg: Settings) -> client.Configuration:
    """Load cluster credentials: in-cluster service account, else the local kubeconfig."""
    configuration = client.Configuration()
    try:
        if cfg.in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            # Local development mode
            config.load_kube_config(config_file=cfg.kubeconfig, client_configuration=configuration)
    except (ConfigException, OSError) as e:
        where = "inCluster kube config" if cfg.in_cluster else f"kube config {cfg.kubeconfig}"
        raise KubeConfigError(f"Failed to load {where}: {e}") from e
    logger.debug("Loaded kube configuration for %s", configuration.host)
    return configuration


def create_core_api(configuration: client.Configuration) -> client.CoreV1Api:
    api = client.CoreV1Api(client.ApiClient(configuration))
    logger.debug("Successfully constructed k8s client")
    return api


def _ssl_context(configuration: client.Configuration) -> ssl.SSLContext:
    ctx = ssl.create_default_context(cafile=configuration.ssl_ca_cert or None)
    if configuration.cert_file:
        ctx.load_cert_chain(configuration.cert_file, configuration.key_file or None)
    if not configuration.verify_ssl:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


@dataclass(frozen=True)
class KubeConnection:
    """What the exec channel needs to reach the API server."""

    host: str
    headers: dict[str, str] = field(default_factory=dict)
    ssl_context: ssl.SSLContext | None = None

    @classmethod
    def from_configuration(cls, configuration: client.Configuration) -> "KubeConnection":
        headers: dict[str, str] = {}
        try:
            # Refreshes expiring service account tokens through the configured hook.
            token = configuration.get_api_key_with_prefix("authorization")
            if token:
                headers["Authorization"] = token
            elif configuration.username and configuration.password:
                headers["Authorization"] = configuration.get_basic_auth_token()
        except (ConfigException, OSError) as e:
            raise KubeConfigError(f"Failed to refresh credentials: {e}") from e

        ssl_context = None
        if configuration.host.startswith("https://"):
            try:
                ssl_context = _ssl_context(configuration)
            except (OSError, ssl.SSLError) as e:
                raise KubeConfigError(f"Failed to build TLS config: {e}") from e
        return cls(host=configuration.host, headers=headers, ssl_context=ssl_context)


def connection_factory(cfg: Settings):
    """Return a callable resolving a fresh KubeConnection on every call."""

    def _resolve() -> KubeConnection:
        return KubeConnection.from_configuration(load_configuration(cfg))

    return _resolve
