"""
Extended Kalman Filter position estimator.

Fuses IMU orientation/linear acceleration (predict), GPS fixes, depth and
forward speed (updates) into an 8-element state:

    [x, y, z, v, qw, qx, qy, qz]

x/y are local Cartesian coordinates around the first accepted GPS fix,
z is depth (positive downward), v forward velocity along the body x-axis.
Orientation is taken from the IMU's onboard fusion rather than integrated
from gyroscope rates.

Lifecycle:
    Construction requires a sufficient GPS fix (see fix_sufficient) and
    raises InitializationError otherwise. After that the filter runs for
    the lifetime of the process.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple
import numpy as np

from nav_core.errors import ConfigurationError, InitializationError, NumericalError
from nav_core.metrics import get_metrics
from nav_core.proto.gps_data import GPSData, LinkQuality
from nav_core.proto.imu_data import IMUData
from nav_core.proto.position_estimate import GlobalPosition, LocalState, STATE_SIZE
from . import matrix
from .coordinate_converter import CoordinateConverter, GeodeticReference
from .gnss_quality import (
    DEFAULT_GPS_NOISE,
    DEFAULT_GPS_NOISE_FALLBACK,
    gps_measurement_covariance,
    is_fix_sufficient,
    is_link_quality_accepted,
)

logger = logging.getLogger(__name__)

# State indices
X, Y, Z, V, QW, QX, QY, QZ = range(STATE_SIZE)

COVARIANCE_FORMS = ('standard', 'joseph')


@dataclass
class EKFConfig:
    """
    Configuration for the EKF position estimator.

    Attributes:
        q_pos: Process noise for position
        q_vel: Process noise for velocity
        q_orient: Process noise for orientation
        depth_noise: Depth measurement variance (m²)
        velocity_noise: Speed measurement variance ((m/s)²)
        gps_noise: GPS variance per link quality (m²)
        gps_noise_fallback: GPS variance for any other link quality
        initial_covariance: Diagonal of the initial covariance
        covariance_form: "standard" for P = (I-KH)P, "joseph" for
            P = (I-KH)P(I-KH)ᵀ + KRKᵀ
    """

    q_pos: float = 0.1
    q_vel: float = 0.1
    q_orient: float = 0.01
    depth_noise: float = 0.01
    velocity_noise: float = 0.1
    gps_noise: Dict[LinkQuality, float] = field(default_factory=lambda: dict(DEFAULT_GPS_NOISE))
    gps_noise_fallback: float = DEFAULT_GPS_NOISE_FALLBACK
    initial_covariance: Tuple[float, ...] = (100.0, 100.0, 1.0, 10.0, 0.1, 0.1, 0.1, 0.1)
    covariance_form: str = 'standard'

    def __post_init__(self):
        """Validate configuration."""
        self.gps_noise = {LinkQuality(k): float(v) for k, v in self.gps_noise.items()}
        self.initial_covariance = tuple(float(v) for v in self.initial_covariance)

        if self.covariance_form not in COVARIANCE_FORMS:
            raise ConfigurationError(
                f"covariance_form must be one of {COVARIANCE_FORMS}: {self.covariance_form!r}"
            )

        if len(self.initial_covariance) != STATE_SIZE:
            raise ConfigurationError(
                f"initial_covariance must have {STATE_SIZE} entries: "
                f"{len(self.initial_covariance)}"
            )

        noises = [self.q_pos, self.q_vel, self.q_orient, self.depth_noise,
                  self.velocity_noise, self.gps_noise_fallback]
        noises.extend(self.gps_noise.values())
        noises.extend(self.initial_covariance)
        if any(n < 0 for n in noises):
            raise ConfigurationError("EKF noise parameters cannot be negative")

    @classmethod
    def from_dict(cls, data: dict) -> 'EKFConfig':
        """
        Build from a config dictionary (see EKF_CONFIG in config.py).

        Unknown keys are rejected so typos do not silently fall back to
        defaults.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown EKF config keys: {sorted(unknown)}")
        try:
            return cls(**data)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid EKF config: {e}") from e


class EKFPositionEstimator:
    """
    EKF fusing IMU, GPS, depth and speed.

    Usage:
        if EKFPositionEstimator.fix_sufficient(fix):
            ekf = EKFPositionEstimator(fix)

        ekf.predict(imu_sample)
        ekf.update_gps(fix)
        ekf.update_depth(2.5)
        ekf.update_velocity(1.2)

        state = ekf.get_state()
        position = ekf.get_global_position()

    Thread safety:
        predict/update calls and readers share one lock, so a reader never
        observes a partially applied step. Callers should still drive
        predict/update from a single thread to keep measurement order.
    """

    fix_sufficient = staticmethod(is_fix_sufficient)

    def __init__(
        self,
        fix: GPSData,
        config: Optional[EKFConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the estimator from a GPS fix.

        Args:
            fix: First GPS fix; becomes the local frame origin
            config: Filter configuration (uses defaults if None)
            clock: Time source in seconds for dt computation

        Raises:
            InitializationError: If the fix is not sufficient
        """
        if not self.fix_sufficient(fix):
            raise InitializationError(
                f"EKF initialized without a sufficient GPS fix "
                f"(link_quality={fix.link_quality.value}, fix={fix.fix}, "
                f"altitude={fix.altitude})"
            )

        self.config = config or EKFConfig()
        self.metrics = get_metrics()
        self._clock = clock
        self._lock = threading.RLock()

        self.reference = GeodeticReference(fix.latitude, fix.longitude, fix.altitude)
        self._converter = CoordinateConverter(self.reference)

        self._state = np.zeros(STATE_SIZE)
        self._state[Z] = -fix.altitude
        self._state[QW] = 1.0
        self._covariance = np.diag(self.config.initial_covariance)

        self._last_prediction = clock()
        self.last_gps_fix_time = self._last_prediction

        logger.info(
            f"EKF initialized at lat={fix.latitude:.6f}, lon={fix.longitude:.6f}, "
            f"alt={fix.altitude:.2f} (link quality {fix.link_quality.value})"
        )

    # ------------------------------------------------------------------
    # Predict
    # ------------------------------------------------------------------

    def predict(self, imu: IMUData, t_now: Optional[float] = None) -> bool:
        """
        Propagate the state to t_now using an IMU sample.

        Args:
            imu: IMU sample with orientation and linear acceleration
            t_now: Current time in clock seconds (default: clock())

        Returns:
            True if the state was propagated, False for a no-op

        Notes:
            - dt is measured from the previous predict call (or construction)
              and is consumed even when the sample is incomplete
            - An incomplete sample leaves state and covariance untouched
        """
        if t_now is None:
            t_now = self._clock()
        if not np.isfinite(t_now):
            self.metrics.increment_drop('numerical_error')
            logger.warning(f"Skipping predict at non-finite time {t_now}")
            return False

        with self._lock:
            dt = t_now - self._last_prediction
            self._last_prediction = t_now

            if not imu.has_motion_data:
                self.metrics.increment_drop('imu_incomplete')
                logger.debug("IMU sample missing orientation or linear acceleration")
                return False

            q = imu.orientation
            norm = q.norm
            if norm == 0.0 or not np.isfinite(norm):
                self.metrics.increment_drop('imu_incomplete')
                logger.warning(f"IMU orientation is degenerate: {q}")
                return False

            if dt < 0:
                logger.warning(f"Negative predict interval {dt:.6f}s, clamped to 0")
                dt = 0.0

            qw, qx, qy, qz = q.w / norm, q.x / norm, q.y / norm, q.z / norm
            forward = matrix.quaternion_to_rotation_matrix(qw, qx, qy, qz)[:, 0]

            acc = imu.linear_acceleration
            forward_acc = float(forward @ np.array([acc.x, acc.y, acc.z]))
            if not np.isfinite(forward_acc):
                self.metrics.increment_drop('numerical_error')
                logger.warning(f"Skipping predict with non-finite forward acceleration ({acc})")
                return False

            state = self._state.copy()
            state[QW:QZ + 1] = (qw, qx, qy, qz)
            state[X:Z + 1] += state[V] * forward * dt
            state[V] += forward_acc * dt

            F = self._state_transition_jacobian(dt, forward, forward_acc)
            Q = self._process_noise(dt)
            covariance = matrix.add(
                matrix.multiply(matrix.multiply(F, self._covariance), matrix.transpose(F)),
                Q,
            )

            if not (np.all(np.isfinite(state)) and np.all(np.isfinite(covariance))):
                self.metrics.increment_drop('numerical_error')
                logger.warning("Skipping predict: propagated state is not finite")
                return False

            self._state = state
            self._covariance = covariance

        self.metrics.increment('ekf_predictions')
        self.metrics.record_histogram('ekf_predict_dt_s', dt)
        return True

    def _state_transition_jacobian(self, dt: float, forward: np.ndarray,
                                   forward_acc: float) -> np.ndarray:
        F = matrix.identity(STATE_SIZE)
        # Position on velocity
        F[X, V] = forward[0] * dt
        F[Y, V] = forward[1] * dt
        F[Z, V] = forward[2] * dt
        # Velocity on acceleration
        F[V, V] = 1.0 + forward_acc * dt
        # Orientation rows stay identity: orientation comes from the IMU
        return F

    def _process_noise(self, dt: float) -> np.ndarray:
        cfg = self.config
        Q = matrix.zeros(STATE_SIZE, STATE_SIZE)
        for i in (X, Y, Z):
            Q[i, i] = cfg.q_pos * dt ** 4 / 4
            Q[i, V] = cfg.q_pos * dt ** 3 / 2
            Q[V, i] = cfg.q_pos * dt ** 3 / 2
        Q[V, V] = cfg.q_vel * dt ** 2
        for i in (QW, QX, QY, QZ):
            Q[i, i] = cfg.q_orient * dt ** 2
        return Q

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_gps(self, fix: GPSData) -> bool:
        """
        Correct position with a GPS fix.

        Fixes below the accepted link quality, or without lat/lon/altitude,
        are ignored.

        Returns:
            True if the update was applied
        """
        if not is_link_quality_accepted(fix.link_quality):
            self.metrics.increment_drop('gps_poor_quality')
            logger.debug(f"Ignoring GPS fix with link quality {fix.link_quality.value}")
            return False

        if not fix.has_position or fix.altitude is None:
            self.metrics.increment_drop('gps_poor_quality')
            logger.debug("Ignoring GPS fix without lat/lon/altitude")
            return False

        x, y = self._converter.geodetic_to_local(fix.latitude, fix.longitude)
        measurement = np.array([x, y, -fix.altitude])

        H = matrix.zeros(3, STATE_SIZE)
        H[0, X] = 1.0
        H[1, Y] = 1.0
        H[2, Z] = 1.0

        R = gps_measurement_covariance(
            fix.link_quality, self.config.gps_noise, self.config.gps_noise_fallback
        )

        applied = self._update(H, measurement, R, 'gps')
        if applied:
            self.last_gps_fix_time = self._clock()
        return applied

    def update_depth(self, depth_m: float) -> bool:
        """Correct z with a depth reading (meters, positive downward)."""
        H = matrix.zeros(1, STATE_SIZE)
        H[0, Z] = 1.0
        R = np.array([[self.config.depth_noise]])
        return self._update(H, np.array([depth_m]), R, 'depth')

    def update_velocity(self, speed_m_s: float) -> bool:
        """Correct forward velocity with a speed estimate (m/s)."""
        H = matrix.zeros(1, STATE_SIZE)
        H[0, V] = 1.0
        R = np.array([[self.config.velocity_noise]])
        return self._update(H, np.array([speed_m_s]), R, 'velocity')

    def _update(self, H: np.ndarray, measurement: np.ndarray, R: np.ndarray,
                source: str) -> bool:
        """
        Linear Kalman measurement update.

        A singular innovation covariance leaves state and covariance
        untouched and is counted as a numerical_error drop, as is a
        non-finite measurement or a result that would not be finite.
        """
        if not np.all(np.isfinite(measurement)):
            self.metrics.increment_drop('numerical_error')
            logger.warning(f"Skipping {source} update with non-finite measurement {measurement}")
            return False

        with self._lock:
            innovation = measurement - H @ self._state
            HT = matrix.transpose(H)
            S = matrix.add(matrix.multiply(matrix.multiply(H, self._covariance), HT), R)

            try:
                S_inv = matrix.inverse(S)
            except NumericalError as e:
                self.metrics.increment_drop('numerical_error')
                logger.warning(f"Skipping {source} update: {e}")
                return False

            K = matrix.multiply(matrix.multiply(self._covariance, HT), S_inv)

            state = self._state + K @ innovation
            self._normalize_quaternion(state)

            I_KH = matrix.subtract(matrix.identity(STATE_SIZE), matrix.multiply(K, H))
            if self.config.covariance_form == 'joseph':
                covariance = matrix.add(
                    matrix.multiply(matrix.multiply(I_KH, self._covariance), matrix.transpose(I_KH)),
                    matrix.multiply(matrix.multiply(K, R), matrix.transpose(K)),
                )
            else:
                covariance = matrix.multiply(I_KH, self._covariance)

            if not (np.all(np.isfinite(state)) and np.all(np.isfinite(covariance))):
                self.metrics.increment_drop('numerical_error')
                logger.warning(f"Skipping {source} update: result is not finite")
                return False

            self._state = state
            self._covariance = covariance

        innovation_norm = float(np.linalg.norm(innovation))
        self.metrics.increment('ekf_updates')
        self.metrics.record_histogram('ekf_innovation_norm', innovation_norm)
        logger.debug(f"EKF {source} update, innovation norm {innovation_norm:.3f}")
        return True

    @staticmethod
    def _normalize_quaternion(state: np.ndarray):
        norm = float(np.linalg.norm(state[QW:QZ + 1]))
        if norm == 0.0 or not np.isfinite(norm):
            logger.warning("Quaternion collapsed during update, reset to identity")
            state[QW:QZ + 1] = (1.0, 0.0, 0.0, 0.0)
        else:
            state[QW:QZ + 1] /= norm

    # ------------------------------------------------------------------
    # Readers and coordinate transforms
    # ------------------------------------------------------------------

    def get_state(self) -> LocalState:
        """Copy of the current state."""
        with self._lock:
            return LocalState.from_vector(self._state)

    def get_covariance(self) -> np.ndarray:
        """Copy of the current 8x8 covariance."""
        with self._lock:
            return self._covariance.copy()

    def get_global_position(self) -> GlobalPosition:
        """Current position as latitude/longitude/altitude (altitude = -z)."""
        with self._lock:
            x, y, z = self._state[X], self._state[Y], self._state[Z]
        latitude, longitude = self._converter.local_to_geodetic(x, y)
        return GlobalPosition(latitude=latitude, longitude=longitude, altitude=float(-z))

    def geodetic_to_local(self, latitude: float, longitude: float) -> Tuple[float, float]:
        return self._converter.geodetic_to_local(latitude, longitude)

    def local_to_geodetic(self, x: float, y: float) -> Tuple[float, float]:
        return self._converter.local_to_geodetic(x, y)
