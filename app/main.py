"""Gateway entry point: configuration, server startup and shutdown."""

import argparse
import asyncio
import logging
import logging.config
import signal
import sys
from typing import List, Optional

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from app.config import GatewayConfig
from app.errors import ConfigurationError
from app.server import configure_tracing, create_app
from app.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GatewayServer(uvicorn.Server):
    """
    uvicorn server with the gateway's lifecycle policy.

    SIGINT/SIGTERM drain in-flight requests and exit 0. An exception that
    escapes to the event loop (e.g. a failed task nobody awaited) is fatal:
    the server stops without draining and the process exits 1.
    """

    def __init__(self, config: uvicorn.Config, gateway_config: GatewayConfig):
        super().__init__(config)
        self.gateway_config = gateway_config
        self.exit_code = 0

    def handle_exit(self, sig, frame) -> None:
        if not self.should_exit:
            logger.info(f"[Gateway] {signal.Signals(sig).name} received, shutting down gracefully")
        super().handle_exit(sig, frame)

    async def startup(self, sockets=None) -> None:
        asyncio.get_running_loop().set_exception_handler(self.handle_loop_fault)
        await super().startup(sockets=sockets)
        if self.started:
            port = self.config.port
            logger.info(f"[Gateway] Server running on port {port}")
            logger.info(f"[Gateway] React app: http://localhost:{port}")
            logger.info(
                f"[Gateway] WordPress blog: http://localhost:{port}{self.gateway_config.mount_prefix}"
            )

    def handle_loop_fault(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exception = context.get("exception")
        if exception is None:
            loop.default_exception_handler(context)
            return

        message = context.get("message", "Unhandled error in event loop")
        log_exception_with_details(logger, f"[Gateway] Fatal: {message}:", exception)
        self.exit_code = 1
        self.should_exit = True
        self.force_exit = True


def _ignore_replayed_signal(sig, frame) -> None:
    # uvicorn re-raises the signal it captured once shutdown has finished
    logger.debug(f"[Gateway] Ignoring replayed {signal.Signals(sig).name}")


def run_server(server: GatewayServer) -> int:
    """Run the server to completion and translate the outcome to an exit status."""
    for sig in HANDLED_SIGNALS:
        signal.signal(sig, _ignore_replayed_signal)

    try:
        server.run()
    except SystemExit as e:
        # uvicorn exits with its own startup failure status when it cannot bind
        if e.code:
            logger.error(f"[Gateway] Server failed to start (uvicorn exit status {e.code})")
            return 1
    except Exception as e:
        log_exception_with_details(logger, "[Gateway] Uncaught fault:", e)
        return 1

    if server.exit_code:
        return server.exit_code

    if not server.started:
        logger.error("[Gateway] Server did not start")
        return 1

    logger.info("[Gateway] Process terminated")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve the SPA build and proxy the blog under its prefix"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to (default: HOST env var or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port number to listen on (default: PORT env var or 3000)",
    )
    parser.add_argument(
        "--static-root",
        type=str,
        default=None,
        help="Directory holding the SPA build (default: STATIC_ROOT env var or dist)",
    )
    parser.add_argument(
        "--blog-url",
        type=str,
        default=None,
        help="Upstream blog origin (default: BLOG_URL env var)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    logging.config.dictConfig(LOGGING_CONFIG)
    args = parse_args(argv)

    try:
        config = GatewayConfig.from_env().with_overrides(
            host=args.host,
            port=args.port,
            static_root=args.static_root,
            upstream_url=args.blog_url,
        )
    except ConfigurationError as e:
        logger.error(f"[Gateway] FATAL: invalid configuration: {e}")
        return 1

    configure_tracing(config)
    app = create_app(config)

    server = GatewayServer(
        uvicorn.Config(app, host=config.host, port=config.port, log_level="info"),
        config,
    )
    return run_server(server)


if __name__ == "__main__":
    sys.exit(main())
