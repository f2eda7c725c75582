#!/usr/bin/env python3
"""
Command line entry point for the RTSP control server.

Example:
    rtsp-server --host 10.221.222.90 --port 8554 --source 239.221.222.241:6780
"""

import argparse
import logging
import sys

from .core.config import DEFAULT_RTSP_PORT, ServerConfig
from .core.dispatcher import MethodDispatcher
from .core.server_core import RTSPServer
from .core.server_utils import ServerConfigError, configure_logging
from .features.metrics import start_metrics_server
from .features.stream_controller import (
    SocatStreamController, StreamControllerError, StreamSource
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RTSP control server")
    parser.add_argument("--host", default="0.0.0.0",
                        help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=DEFAULT_RTSP_PORT,
                        help=f"TCP and UDP control port (default: {DEFAULT_RTSP_PORT})")
    parser.add_argument("--source", action="append", default=[], metavar="ADDR:PORT",
                        help="Multicast RTP source, once per track")
    parser.add_argument("--interface",
                        help="Address advertised as stream source (default: --host)")
    parser.add_argument("--socat", default="socat", help="socat executable")
    parser.add_argument("--read-chunk-size", type=int, default=200,
                        help="Bytes per TCP read (default: 200)")
    parser.add_argument("--read-retry-interval", type=float, default=0.01,
                        help="Seconds between empty reads (default: 0.01)")
    parser.add_argument("--max-read-attempts", type=int, default=50,
                        help="Empty reads before a connection is dropped (default: 50)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--json-logs", action="store_true",
                        help="Emit structured JSON log records")
    parser.add_argument("--metrics-port", type=int,
                        help="Expose Prometheus metrics on this port")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logger = configure_logging(getattr(logging, args.log_level), args.log_file,
                               json_format=args.json_logs)

    if not args.source:
        logger.error("At least one --source ADDR:PORT is required")
        return 1

    try:
        config = ServerConfig.from_args(args)
        sources = [StreamSource.parse(value) for value in args.source]
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    interface = args.interface or args.host
    controller = SocatStreamController(interface, sources, socat_path=args.socat)
    try:
        controller.check_available()
    except StreamControllerError as e:
        logger.error(str(e))
        return 1

    server = RTSPServer(MethodDispatcher.from_config(controller, config), config)
    try:
        server.bind()
    except ServerConfigError as e:
        logger.error(str(e))
        return 1

    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
