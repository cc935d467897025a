from __future__ import annotations

import logging
import signal
import sys
from threading import Event

from ssc.controller import Controller, queue_event_handler
from ssc.dispatcher import ShutdownDispatcher, WebsocketExecTransport
from ssc.errors import ControllerError, ErrorReporter
from ssc.handler import SidecarShutdownHandler
from ssc.informer import PodInformer
from ssc.kube import connection_factory, create_core_api, load_configuration
from ssc.logs import init_logging
from ssc.settings import Settings, settings
from ssc.workqueue import RateLimitingQueue


def build_controller(cfg: Settings, logger: logging.Logger) -> Controller:
    """Wire the informer, queue, handler and dispatcher; raises KubeConfigError."""
    api = create_core_api(load_configuration(cfg))
    reporter = ErrorReporter(logger.getChild("errors"))

    informer = PodInformer(
        api, namespace=cfg.namespace, logger=logger.getChild("informer"), watch_timeout_s=cfg.watch_timeout_s
    )
    queue = RateLimitingQueue()
    informer.add_event_handler(queue_event_handler(queue, logger.getChild("events")))

    dispatcher = ShutdownDispatcher(
        connection_factory(cfg),
        transport=WebsocketExecTransport(open_timeout_s=cfg.exec_open_timeout_s),
        attempts=cfg.dispatch_attempts,
        delay_s=cfg.dispatch_delay_s,
        logger=logger.getChild("dispatcher"),
    )
    handler = SidecarShutdownHandler(
        dispatcher,
        main_annotation=cfg.main_annotation,
        sidecar_annotation=cfg.sidecar_annotation,
        keep_empty_names=cfg.keep_empty_names,
        logger=logger.getChild("handler"),
    )
    return Controller(
        informer,
        queue,
        handler,
        reporter=reporter,
        logger=logger.getChild("controller"),
        workers=cfg.workers,
        max_retries=cfg.max_lookup_retries,
        cache_sync_timeout_s=cfg.cache_sync_timeout_s,
        worker_restart_s=cfg.worker_restart_s,
    )


def install_signal_handlers(stop: Event, logger: logging.Logger) -> None:
    def _handle(signum, _frame) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def main(argv: list[str] | None = None, cfg: Settings | None = None, stop: Event | None = None) -> int:
    cfg = cfg or settings
    logger = init_logging(cfg)
    stop = stop or Event()

    try:
        controller = build_controller(cfg, logger)
    except ControllerError as e:
        logger.critical("Startup failed: %s", e)
        return 1

    install_signal_handlers(stop, logger)
    try:
        controller.run(stop)
    except ControllerError as e:
        logger.critical("Startup failed: %s", e)
        return 1

    logger.info("Shutting down....")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
