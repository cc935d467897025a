from __future__ import annotations

import logging
from collections import deque
from threading import Lock


class ControllerError(Exception):
    """Base class for every error raised by the controller."""


class KubeConfigError(ControllerError):
    """Cluster credentials or connection settings could not be loaded."""


class CacheSyncError(ControllerError):
    """The informer never finished its initial listing."""


class CacheLookupError(ControllerError):
    """A key could not be resolved against the informer cache."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"failed to look up {key!r}: {reason}")
        self.key = key
        self.reason = reason


class ExecChannelError(ControllerError):
    """Opening or reading the exec stream of a container failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ErrorReporter:
    """Process-wide sink for errors that are reported but never fatal.

    Components receive the reporter through their constructor. Every error is
    logged with its traceback and the most recent ones are kept for inspection.
    """

    def __init__(self, logger: logging.Logger | None = None, keep: int = 50):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = Lock()
        self._recent: deque[BaseException] = deque(maxlen=max(1, int(keep)))
        self._count = 0

    def handle_error(self, err: BaseException, context: str = "") -> None:
        with self._lock:
            self._recent.append(err)
            self._count += 1
        prefix = f"{context}: " if context else ""
        self.logger.error(
            "%s%s: %s", prefix, type(err).__name__, err, exc_info=(type(err), err, err.__traceback__)
        )

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def recent(self) -> list[BaseException]:
        with self._lock:
            return list(self._recent)
