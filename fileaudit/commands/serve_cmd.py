"""Serve command - run the background audit service."""

from __future__ import annotations

import signal
import sys
import threading

from loguru import logger

from ..config import ServiceConfig
from ..diagnostics import install_diagnostics
from ..host import HostChannel, JsonLinesChannel
from ..owner import OwnerResolver, default_owner_resolver
from ..registry import ProjectRegistry

EXIT_OK = 0
EXIT_NO_PROJECT_STARTED = 3


def run_serve(
    config: ServiceConfig,
    *,
    channel: HostChannel | None = None,
    owner_resolver: OwnerResolver | None = None,
    stop_event: threading.Event | None = None,
) -> int:
    """
    Watch every configured project until interrupted.

    Events and diagnostics go to the host channel (JSON lines on stdout by
    default). Returns the process exit code.
    """
    channel = channel or JsonLinesChannel(sys.stdout)
    handler_id = install_diagnostics(channel, replace_default=True)
    stop = stop_event or threading.Event()

    logger.info("File audit service started")
    logger.info("Service using user data path: {}", config.user_data)

    if not config.projects:
        logger.info("No projects configured to watch. Service will now exit.")
        logger.remove(handler_id)
        return EXIT_OK

    resolver = owner_resolver or default_owner_resolver(config.default_user, timeout=config.owner_timeout)
    registry = ProjectRegistry(config, channel, resolver)

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())

    try:
        logger.info("Found {} projects to monitor.", len(config.projects))
        failures = registry.start_all(config.projects)
        if len(failures) == len(config.projects):
            logger.error("None of the configured projects could be watched")
            return EXIT_NO_PROJECT_STARTED

        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        registry.stop_all()
        resolver.close()
        logger.info("File audit service stopped")
        logger.complete()
        logger.remove(handler_id)

    return EXIT_OK
