"""
Position node: IMU/GPS/speed/depth subscriptions -> EKF -> position estimates.

All four message kinds are funneled through one bounded queue consumed by
a single worker thread, so the estimator is driven sequentially.

Lifecycle:
    1. Waiting: the first sufficient GPS fix builds the EKF. With
       require_imu_calibration the node also waits for an IMU sample
       reporting full system calibration and starts from the latest
       sufficient fix once both hold.
    2. Running: IMU -> predict + publish, GPS -> update_gps,
       speed -> update_velocity, depth -> update_depth. tick() (driven by
       Node.loop) republishes the current estimate when no IMU sample
       produced one since the previous tick.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional

from nav_core.io.node import Node
from nav_core.localization.ekf import EKFConfig, EKFPositionEstimator
from nav_core.metrics import get_metrics
from nav_core.proto import topics
from nav_core.proto.codec import (
    DEPTH_CODEC,
    GPS_DATA_CODEC,
    IMU_DATA_CODEC,
    POSITION_ESTIMATE_CODEC,
    SPEED_ESTIMATE_CODEC,
)
from nav_core.proto.gps_data import GPSData
from nav_core.proto.imu_data import IMUData
from nav_core.proto.position_estimate import PositionEstimate

logger = logging.getLogger(__name__)

IMU = 'imu'
GPS = 'gps'
SPEED = 'speed'
DEPTH = 'depth'
TICK = 'tick'

MESSAGE_KINDS = (IMU, GPS, SPEED, DEPTH, TICK)

_STOP = object()


class PositionNode:
    """
    EKF position estimator process.

    Usage:
        node = Node.create(NodeConfig(name='position'))
        position = PositionNode(node, EKFConfig.from_dict(EKF_CONFIG))
        position.start()
        node.loop(position.tick)
        position.stop()
        node.close()

    handle_message() is the single entry point into the estimator; the
    worker thread calls it for every queued message, and tests may call it
    directly without start().
    """

    def __init__(
        self,
        node: Node,
        ekf_config: Optional[EKFConfig] = None,
        queue_size: int = 100,
        require_imu_calibration: bool = False,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Initialize position node.

        Args:
            node: Connected fabric node
            ekf_config: Filter configuration (defaults if None)
            queue_size: Bound of the shared message queue
            require_imu_calibration: Also wait for IMU system calibration 3
                before building the EKF
            clock: Monotonic time source handed to the EKF
            wall_clock: Time source for estimate timestamps (s since epoch)
        """
        self.node = node
        self.ekf_config = ekf_config or EKFConfig()
        self.require_imu_calibration = require_imu_calibration
        self.metrics = get_metrics()
        self._clock = clock
        self._wall_clock = wall_clock

        self.ekf: Optional[EKFPositionEstimator] = None
        self._latest_fix: Optional[GPSData] = None
        self._imu_calibrated = False
        self._published_since_tick = False

        self._inbox: queue.Queue = queue.Queue(maxsize=queue_size)
        self._worker: Optional[threading.Thread] = None
        self._publisher = node.create_publisher(topics.POSITION_ESTIMATE_TOPIC,
                                                POSITION_ESTIMATE_CODEC)

    @property
    def is_initialized(self) -> bool:
        return self.ekf is not None

    def start(self):
        """Subscribe to the sensor topics and start the worker thread."""
        self.node.create_subscriber(
            topics.IMU_TOPIC, IMU_DATA_CODEC, IMU,
            on_message=lambda msg: self._enqueue(IMU, msg), on_error=self._on_error,
        )
        self.node.create_subscriber(
            topics.GPS_TOPIC, GPS_DATA_CODEC, GPS,
            on_message=lambda msg: self._enqueue(GPS, msg), on_error=self._on_error,
        )
        self.node.create_subscriber(
            topics.SPEED_ESTIMATE_TOPIC, SPEED_ESTIMATE_CODEC, SPEED,
            on_message=lambda msg: self._enqueue(SPEED, msg), on_error=self._on_error,
        )
        self.node.create_subscriber(
            topics.DEPTH_TOPIC, DEPTH_CODEC, DEPTH,
            on_message=lambda msg: self._enqueue(DEPTH, msg), on_error=self._on_error,
        )

        self._worker = threading.Thread(target=self._run, name="position-ekf", daemon=True)
        self._worker.start()
        if self.require_imu_calibration:
            logger.info("Position node started, waiting for GPS fix and IMU calibration")
        else:
            logger.info("Position node started, waiting for GPS fix")

    def stop(self, timeout: float = 2.0):
        """Stop the worker after the messages already queued."""
        if self._worker is None:
            return
        self._inbox.put(_STOP)
        self._worker.join(timeout=timeout)
        self._worker = None
        logger.info("Position node stopped")

    def _enqueue(self, kind: str, message):
        try:
            self._inbox.put_nowait((kind, message))
        except queue.Full:
            self.metrics.increment_drop('queue_full')
            logger.warning(f"Position node queue full, dropping {kind} message")

    def tick(self):
        """Queue a periodic publish check (the Node.loop body)."""
        self._enqueue(TICK, None)

    def _on_error(self, error: Exception):
        logger.debug(f"Subscriber error: {error}")

    def _run(self):
        while True:
            item = self._inbox.get()
            if item is _STOP:
                return
            kind, message = item
            try:
                self.handle_message(kind, message)
            except Exception:
                logger.exception(f"Failed to process {kind} message")

    def handle_message(self, kind: str, message) -> Optional[PositionEstimate]:
        """
        Apply one message to the estimator.

        Returns:
            The published estimate for an IMU message that advanced the
            filter (or a tick that republished), else None
        """
        if kind not in MESSAGE_KINDS:
            raise ValueError(f"Unknown message kind: {kind}")

        if kind == TICK:
            return self._handle_tick()

        if self.ekf is None:
            self._handle_before_init(kind, message)
            return None

        if kind == IMU:
            if self.ekf.predict(message):
                return self._publish_estimate()
        elif kind == GPS:
            self.ekf.update_gps(message)
        elif kind == SPEED:
            self.ekf.update_velocity(message.speed)
        elif kind == DEPTH:
            self.ekf.update_depth(message.depth)
        return None

    def _handle_before_init(self, kind: str, message):
        if kind == GPS:
            if EKFPositionEstimator.fix_sufficient(message):
                self._latest_fix = message
            else:
                logger.debug(
                    f"Waiting for sufficient GPS fix (link_quality="
                    f"{message.link_quality.value}, fix={message.fix})"
                )
        elif kind == IMU and self.require_imu_calibration:
            if isinstance(message, IMUData) and message.is_calibrated:
                if not self._imu_calibrated:
                    logger.info("IMU fully calibrated")
                self._imu_calibrated = True
        else:
            self.metrics.increment_drop('not_initialized')
            return

        if self._latest_fix is None:
            return
        if self.require_imu_calibration and not self._imu_calibrated:
            return
        self.ekf = EKFPositionEstimator(self._latest_fix, self.ekf_config, self._clock)

    def _handle_tick(self) -> Optional[PositionEstimate]:
        if self.ekf is None:
            return None
        if self._published_since_tick:
            self._published_since_tick = False
            return None
        estimate = self._publish_estimate()
        self._published_since_tick = False
        return estimate

    def _publish_estimate(self) -> PositionEstimate:
        estimate = PositionEstimate(
            local=self.ekf.get_state(),
            global_position=self.ekf.get_global_position(),
            timestamp=self._wall_clock() * 1000.0,
        )
        self._publisher.send(estimate)
        self._published_since_tick = True
        self.metrics.increment('position_estimates')
        return estimate
