"""
Pytest configuration and shared fixtures for the AUV navigation core tests.

This module provides reusable fixtures for the NMEA decoder, EKF estimator,
messaging fabric and node composition tests.
"""

import sys
import time
from pathlib import Path
from typing import List

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from nav_core.io import InProcessBroker, InProcessTransport
from nav_core.metrics import reset_metrics
from nav_core.nmea import compute_checksum
from nav_core.proto import (
    CalibrationStatus,
    FixType,
    GPSData,
    IMUData,
    LinkQuality,
    Quaternion,
    Vector3,
)


# =============================================================================
# Metrics
# =============================================================================


@pytest.fixture(autouse=True)
def clean_metrics():
    """Reset the global metrics singleton around every test."""
    reset_metrics()
    yield
    reset_metrics()


# =============================================================================
# NMEA Fixtures
# =============================================================================


def nmea(body: str) -> str:
    """
    Build a complete sentence with a correct checksum.

    Args:
        body: Sentence text between '$' and '*'

    Returns:
        "$<body>*HH" (no line delimiter)
    """
    return f"${body}*{compute_checksum(body):02X}"


@pytest.fixture
def nmea_log() -> List[str]:
    """
    A short multi-sentence receiver log (complete sentences, no delimiters).

    Returns:
        List of checksummed sentences covering GGA, GSA, RMC, VTG, GSV and ZDA.
    """
    return [
        nmea("GPGGA,123519,4807.038,N,01131.000,E,4,08,0.9,545.4,M,46.9,M,,"),
        nmea("GPGSA,A,3,04,05,,09,12,,,24,,,,,2.5,1.3,2.1"),
        nmea("GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W"),
        nmea("GPVTG,054.7,T,034.4,M,005.5,N,010.2,K"),
        nmea("GPGSV,2,1,08,01,40,083,46,02,17,308,,12,07,344,39,14,22,228,45"),
        nmea("GPZDA,201530.00,04,07,2002,00,00"),
    ]


# =============================================================================
# GPS / IMU Fixtures
# =============================================================================


@pytest.fixture
def good_fix() -> GPSData:
    """Excellent 3D fix with altitude (sufficient for EKF initialization)."""
    return GPSData(
        timestamp=1_700_000_000_000.0,
        latitude=37.0,
        longitude=-122.0,
        altitude=10.0,
        satellites=9,
        hdop=0.9,
        fix=FixType.FIX_3D,
        link_quality=LinkQuality.EXCELLENT,
    )


@pytest.fixture
def poor_fix() -> GPSData:
    """3D fix with poor link quality (rejected for initialization/updates)."""
    return GPSData(
        latitude=37.0,
        longitude=-122.0,
        altitude=10.0,
        fix=FixType.FIX_3D,
        link_quality=LinkQuality.POOR,
    )


def make_imu(
    orientation=(1.0, 0.0, 0.0, 0.0),
    linear_acceleration=(0.0, 0.0, 0.0),
    sys_calibration: int = 3,
) -> IMUData:
    """
    Build an IMU sample.

    Args:
        orientation: (w, x, y, z) or None
        linear_acceleration: (x, y, z) or None
        sys_calibration: System calibration level (0-3)
    """
    return IMUData(
        acceleration=Vector3(0.0, 0.0, 9.81),
        gyroscope=Vector3(0.0, 0.0, 0.0),
        magnetometer=Vector3(20.0, 0.0, -40.0),
        orientation=Quaternion(*orientation) if orientation is not None else None,
        linear_acceleration=(
            Vector3(*linear_acceleration) if linear_acceleration is not None else None
        ),
        gravity=Vector3(0.0, 0.0, 9.81),
        temperature=21.0,
        calibration_status=CalibrationStatus(sys=sys_calibration, gyro=3, accel=3, mag=3),
    )


@pytest.fixture
def still_imu() -> IMUData:
    """Identity orientation, zero linear acceleration, fully calibrated."""
    return make_imu()


# =============================================================================
# Fabric Fixtures
# =============================================================================


@pytest.fixture
def broker() -> InProcessBroker:
    """Fresh in-process broker."""
    return InProcessBroker()


@pytest.fixture
def transport_factory(broker: InProcessBroker):
    """
    Factory for connected in-process transports sharing one broker.

    All transports created through the factory are closed at teardown.
    """
    created = []

    def _create() -> InProcessTransport:
        transport = InProcessTransport(broker)
        transport.connect()
        created.append(transport)
        return transport

    yield _create

    for transport in created:
        transport.close()


# =============================================================================
# Helper Functions
# =============================================================================


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate until it returns True or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class ManualClock:
    """Deterministic clock for dt-dependent tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds
