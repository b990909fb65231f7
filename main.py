"""
AUV navigation process entry point.

Modes:
    broker    Run the TCP message broker
    gps       Read NMEA from the serial GPS (or a replay file) and publish fixes
    position  Run the EKF position estimator
"""

import sys
import signal
import logging
import argparse
import threading
from typing import List, Optional

import serial

import config
from nav_core.errors import NavCoreError
from nav_core.io import BrokerServer, Node, NodeConfig, TcpTransport
from nav_core.localization import EKFConfig
from nav_core.metrics import get_metrics
from nav_core.nodes import GPSNode, PositionNode
from nav_core.proto import GPS_DATA_CODEC, topics

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False):
    """Configure root logging from LOGGING_CONFIG."""
    logging.basicConfig(
        level=getattr(logging, config.LOGGING_CONFIG["level"]),
        format=config.LOGGING_CONFIG["format"]
    )
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


def install_signal_handlers(stop_event: threading.Event):
    """Set stop_event on SIGINT/SIGTERM."""
    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)


def create_node(role: str, servers: List[str]) -> Node:
    """Connect a fabric node configured from NODE_CONFIG[role]."""
    node_config = NodeConfig.from_dict(role, config.NODE_CONFIG[role], servers=servers)
    transport = TcpTransport(servers, connect_timeout=config.TRANSPORT_CONFIG["connect_timeout"])
    return Node.create(node_config, transport)


def run_broker(stop_event: threading.Event, host: str, port: int) -> int:
    server = BrokerServer(host, port)
    if not server.start():
        return 1

    try:
        stop_event.wait()
    finally:
        server.stop()
    return 0


def run_gps(stop_event: threading.Event, servers: List[str],
            serial_port: str, replay: Optional[str]) -> int:
    node = create_node("gps", servers)
    try:
        gps_node = GPSNode(node.create_publisher(topics.GPS_TOPIC, GPS_DATA_CODEC))
        read_size = config.GPS_SERIAL_CONFIG["read_size"]

        if replay:
            logger.info(f"Replaying NMEA log {replay}")
            with open(replay, "rb") as source:
                gps_node.run(source, stop_event, read_size=read_size)
        else:
            with serial.Serial(
                serial_port,
                baudrate=config.GPS_SERIAL_CONFIG["baudrate"],
                timeout=config.GPS_SERIAL_CONFIG["timeout"],
            ) as port:
                logger.info(f"Reading GPS from {serial_port}")
                gps_node.run(port, stop_event, read_size=read_size, stop_on_eof=False)
    finally:
        node.close()
    return 0


def run_position(stop_event: threading.Event, servers: List[str]) -> int:
    node = create_node("position", servers)
    position_config = config.NODE_CONFIG["position"]
    position = PositionNode(
        node,
        EKFConfig.from_dict(config.EKF_CONFIG),
        queue_size=position_config["queue_size"],
        require_imu_calibration=position_config["require_imu_calibration"],
    )

    def republish():
        if stop_event.is_set():
            node.stop()
        else:
            position.tick()

    try:
        position.start()
        node.loop(republish)
    finally:
        position.stop()
        node.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='AUV navigation core')
    parser.add_argument('mode', choices=['broker', 'gps', 'position'],
                        help='Process to run')
    parser.add_argument('--servers', '-s', nargs='+', default=None,
                        help='Broker endpoints (tcp://host:port)')
    parser.add_argument('--host', '-H', type=str, default=None,
                        help='Broker bind address')
    parser.add_argument('--port', '-p', type=int, default=None,
                        help='Broker bind port')
    parser.add_argument('--serial', type=str, default=None,
                        help='GPS serial device')
    parser.add_argument('--replay', type=str, default=None,
                        help='Read NMEA from a log file instead of the serial port')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)
    setup_logging(args.debug)

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    servers = args.servers or config.TRANSPORT_CONFIG["servers"]

    try:
        if args.mode == 'broker':
            code = run_broker(
                stop_event,
                args.host or config.TRANSPORT_CONFIG["broker_host"],
                args.port if args.port is not None else config.TRANSPORT_CONFIG["broker_port"],
            )
        elif args.mode == 'gps':
            code = run_gps(stop_event, servers,
                           args.serial or config.GPS_SERIAL_CONFIG["port"], args.replay)
        else:
            code = run_position(stop_event, servers)
    except (NavCoreError, serial.SerialException, OSError) as e:
        logger.error(f"{args.mode} failed: {e}")
        code = 1
    finally:
        get_metrics().log_summary()

    return code


if __name__ == "__main__":
    sys.exit(main())
