from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_kubeconfig() -> str:
    return os.getenv("KUBECONFIG") or os.path.join(os.path.expanduser("~"), ".kube", "config")


@dataclass(frozen=True)
class Settings:
    # Cluster
    in_cluster: bool = bool(os.getenv("KUBERNETES_SERVICE_HOST"))
    kubeconfig: str = _default_kubeconfig()
    namespace: str = os.getenv("SSC_NAMESPACE", "")  # "" watches every namespace
    watch_timeout_s: int = _env_int("SSC_WATCH_TIMEOUT_S", 300)

    # Reconciler
    workers: int = _env_int("SSC_WORKERS", 1)
    max_lookup_retries: int = _env_int("SSC_MAX_LOOKUP_RETRIES", 5)
    cache_sync_timeout_s: float = _env_float("SSC_CACHE_SYNC_TIMEOUT_S", 120.0)
    worker_restart_s: float = _env_float("SSC_WORKER_RESTART_S", 10.0)

    # Shutdown signal delivery
    dispatch_attempts: int = _env_int("SSC_DISPATCH_ATTEMPTS", 5)
    dispatch_delay_s: float = _env_float("SSC_DISPATCH_DELAY_S", 3.0)
    exec_open_timeout_s: float = _env_float("SSC_EXEC_OPEN_TIMEOUT_S", 10.0)

    # Annotation contract carried on the watched pods
    main_annotation: str = os.getenv("SSC_MAIN_ANNOTATION", "riskified.com/main_sidecars")
    sidecar_annotation: str = os.getenv("SSC_SIDECAR_ANNOTATION", "riskified.com/sidecars")
    keep_empty_names: bool = _env_bool("SSC_KEEP_EMPTY_NAMES", False)

    # Logging; None derives the level from in_cluster.
    log_level: str | None = os.getenv("SSC_LOG_LEVEL")


settings = Settings()
