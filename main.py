"""Server entry point: console logging, CLS log shipping and the debug HTTP API."""

import atexit
import logging
import signal
import sys

from cls_shipper.config import load_config
from cls_shipper.logger import configure_logging, shutdown_logging
from cls_shipper.server import create_app


def main():
    config = load_config()
    transport = configure_logging(config.logging, config.cls)
    logger = logging.getLogger(__name__)

    atexit.register(shutdown_logging)

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    app = create_app(config, transport)
    logger.info(
        "Starting debug server on %s:%d (CLS shipping %s)",
        config.server.host,
        config.server.port,
        "enabled" if transport is not None else "disabled",
    )

    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=config.server.debug,
            use_reloader=False,
        )
    finally:
        shutdown_logging()


if __name__ == "__main__":
    main()
