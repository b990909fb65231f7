"""
Unit tests for GNSS quality classification and GPS noise selection.
"""

import numpy as np
import pytest

from nav_core.localization import (
    gps_measurement_covariance,
    gps_noise_variance,
    is_fix_sufficient,
    is_link_quality_accepted,
    link_quality_from_fix_quality,
)
from nav_core.nmea import FixQuality
from nav_core.proto import FixType, GPSData, LinkQuality


class TestLinkQuality:
    """Tests for GGA quality -> link quality."""

    @pytest.mark.parametrize("quality,expected", [
        (None, LinkQuality.UNKNOWN),
        (FixQuality.INVALID, LinkQuality.POOR),
        (FixQuality.GPS_FIX, LinkQuality.POOR),
        (FixQuality.DGPS_FIX, LinkQuality.MODERATE),
        (FixQuality.PPS_FIX, LinkQuality.GOOD),
        (FixQuality.RTK_FIX, LinkQuality.EXCELLENT),
        (FixQuality.RTK_FLOAT, LinkQuality.EXCELLENT),
        (8, LinkQuality.EXCELLENT),
    ])
    def test_mapping(self, quality, expected):
        assert link_quality_from_fix_quality(quality) == expected

    def test_accepted_qualities(self):
        """Test only excellent and good are trusted."""
        assert is_link_quality_accepted(LinkQuality.EXCELLENT)
        assert is_link_quality_accepted(LinkQuality.GOOD)
        assert not is_link_quality_accepted(LinkQuality.MODERATE)
        assert not is_link_quality_accepted(LinkQuality.POOR)
        assert not is_link_quality_accepted(LinkQuality.UNKNOWN)


class TestFixSufficient:
    """Tests for the initialization gate."""

    def test_good_fix_sufficient(self, good_fix):
        assert is_fix_sufficient(good_fix)

    def test_poor_link_rejected(self, poor_fix):
        assert not is_fix_sufficient(poor_fix)

    def test_2d_fix_rejected(self, good_fix):
        good_fix.fix = FixType.FIX_2D
        assert not is_fix_sufficient(good_fix)

    def test_missing_altitude_rejected(self, good_fix):
        good_fix.altitude = None
        assert not is_fix_sufficient(good_fix)

    def test_missing_position_rejected(self):
        """Test a 3D excellent fix without lat/lon."""
        fix = GPSData(altitude=5.0, fix=FixType.FIX_3D, link_quality=LinkQuality.EXCELLENT)
        assert not is_fix_sufficient(fix)


class TestGPSNoise:
    """Tests for measurement noise selection."""

    def test_default_table(self):
        assert gps_noise_variance(LinkQuality.EXCELLENT) == 5.0
        assert gps_noise_variance(LinkQuality.GOOD) == 10.0
        assert gps_noise_variance(LinkQuality.MODERATE) == 20.0
        assert gps_noise_variance(LinkQuality.UNKNOWN) == 20.0

    def test_custom_table(self):
        table = {LinkQuality.EXCELLENT: 1.0}
        assert gps_noise_variance(LinkQuality.EXCELLENT, table, fallback=3.0) == 1.0
        assert gps_noise_variance(LinkQuality.GOOD, table, fallback=3.0) == 3.0

    def test_covariance_diagonal(self):
        r = gps_measurement_covariance(LinkQuality.GOOD)
        assert np.array_equal(r, np.diag([10.0, 10.0, 10.0]))
