"""
Unit tests for message schemas and JSON codecs.
"""

import json

import pytest

from conftest import make_imu
from nav_core.errors import DecodeError
from nav_core.proto import (
    DEPTH_CODEC,
    GPS_DATA_CODEC,
    IMU_DATA_CODEC,
    POSITION_ESTIMATE_CODEC,
    SPEED_ESTIMATE_CODEC,
    CalibrationStatus,
    DepthReading,
    FixType,
    GlobalPosition,
    GPSData,
    IMUData,
    LinkQuality,
    LocalState,
    PositionEstimate,
    Quaternion,
    SpeedEstimate,
    Vector3,
)


class TestRoundTrip:
    """decode(encode(v)) == v for each schema."""

    def test_gps_data(self, good_fix):
        assert GPS_DATA_CODEC.decode(GPS_DATA_CODEC.encode(good_fix)) == good_fix

    def test_gps_data_all_absent(self):
        """Test a fix with every optional field missing."""
        empty = GPSData()
        decoded = GPS_DATA_CODEC.decode(GPS_DATA_CODEC.encode(empty))

        assert decoded == empty
        assert decoded.link_quality == LinkQuality.UNKNOWN

    def test_imu_data(self, still_imu):
        assert IMU_DATA_CODEC.decode(IMU_DATA_CODEC.encode(still_imu)) == still_imu

    def test_imu_missing_vectors(self):
        imu = make_imu(orientation=None, linear_acceleration=None)
        decoded = IMU_DATA_CODEC.decode(IMU_DATA_CODEC.encode(imu))

        assert decoded.orientation is None
        assert not decoded.has_motion_data

    def test_scalars(self):
        assert DEPTH_CODEC.decode(DEPTH_CODEC.encode(DepthReading(2.75))) == DepthReading(2.75)
        assert (SPEED_ESTIMATE_CODEC.decode(SPEED_ESTIMATE_CODEC.encode(SpeedEstimate(1.1)))
                == SpeedEstimate(1.1))

    def test_position_estimate(self):
        estimate = PositionEstimate(
            local=LocalState(x=1.5, y=-2.25, z=3.0, v=0.4),
            global_position=GlobalPosition(37.00001, -121.99998, -3.0),
            timestamp=1_700_000_000_123.0,
        )
        decoded = POSITION_ESTIMATE_CODEC.decode(POSITION_ESTIMATE_CODEC.encode(estimate))

        assert decoded == estimate


class TestWireFormat:
    """Tests for the JSON field names on the wire."""

    def test_gps_enum_names(self, good_fix):
        """Test fix and link quality travel as their string names."""
        payload = json.loads(GPS_DATA_CODEC.encode(good_fix))

        assert payload['fix'] == 'FIX_3D'
        assert payload['link_quality'] == 'excellent'

    def test_gps_accepts_string_enums(self):
        raw = json.dumps({
            'latitude': 37.0, 'longitude': -122.0, 'altitude': 10,
            'fix': 'FIX_3D', 'link_quality': 'excellent',
        }).encode()

        fix = GPS_DATA_CODEC.decode(raw)

        assert fix.fix == FixType.FIX_3D
        assert fix.link_quality == LinkQuality.EXCELLENT
        assert fix.speed is None

    def test_position_estimate_global_key(self):
        estimate = PositionEstimate(LocalState(), GlobalPosition(1.0, 2.0, 3.0), 0.0)
        payload = json.loads(POSITION_ESTIMATE_CODEC.encode(estimate))

        assert payload['global'] == {'latitude': 1.0, 'longitude': 2.0, 'altitude': 3.0}


class TestDecodeErrors:
    """Malformed payloads raise DecodeError."""

    @pytest.mark.parametrize("payload", [
        b"not json",
        b"[1, 2, 3]",
        b"\xff\xfe",
        b'{"latitude": 95.0}',
        b'{"fix": "FIX_4D"}',
        b'{"link_quality": "superb"}',
    ])
    def test_gps_malformed(self, payload):
        with pytest.raises(DecodeError):
            GPS_DATA_CODEC.decode(payload)

    @pytest.mark.parametrize("codec,payload", [
        (DEPTH_CODEC, b'{"depth":NaN}'),
        (DEPTH_CODEC, b'{"depth":Infinity}'),
        (DEPTH_CODEC, b'{"depth":"deep"}'),
        (DEPTH_CODEC, b'{"depth":true}'),
        (SPEED_ESTIMATE_CODEC, b'{"speed":-Infinity}'),
        (SPEED_ESTIMATE_CODEC, b'{"speed":null}'),
        (GPS_DATA_CODEC, b'{"altitude":NaN}'),
        (GPS_DATA_CODEC, b'{"timestamp":Infinity}'),
        (GPS_DATA_CODEC, b'{"speed":"fast"}'),
        (GPS_DATA_CODEC, b'{"satellites":8.5}'),
    ])
    def test_rejects_non_finite_and_mistyped(self, codec, payload):
        """Test bad numbers surface as DecodeError, not as a decoded value."""
        with pytest.raises(DecodeError):
            codec.decode(payload)

    @pytest.mark.parametrize("section,key,value", [
        ('orientation', 'w', float('nan')),
        ('linear_acceleration', 'x', float('inf')),
        ('gyroscope', 'z', 'fast'),
    ])
    def test_imu_rejects_bad_vector_component(self, still_imu, section, key, value):
        payload = json.loads(IMU_DATA_CODEC.encode(still_imu))
        payload[section][key] = value

        with pytest.raises(DecodeError):
            IMU_DATA_CODEC.decode(json.dumps(payload).encode())

    def test_imu_rejects_non_finite_temperature(self, still_imu):
        payload = json.loads(IMU_DATA_CODEC.encode(still_imu))
        payload['temperature'] = float('nan')

        with pytest.raises(DecodeError):
            IMU_DATA_CODEC.decode(json.dumps(payload).encode())

    def test_missing_required_field(self):
        with pytest.raises(DecodeError):
            DEPTH_CODEC.decode(b'{"speed": 1.0}')

    def test_bad_calibration_level(self, still_imu):
        payload = json.loads(IMU_DATA_CODEC.encode(still_imu))
        payload['calibration_status']['sys'] = 7

        with pytest.raises(DecodeError):
            IMU_DATA_CODEC.decode(json.dumps(payload).encode())

    def test_encode_wrong_type(self):
        with pytest.raises(TypeError):
            GPS_DATA_CODEC.encode(DepthReading(1.0))


class TestSchemaValidation:
    """__post_init__ validation."""

    def test_latitude_range(self):
        with pytest.raises(ValueError):
            GPSData(latitude=91.0)

    def test_calibration_range(self):
        with pytest.raises(ValueError):
            CalibrationStatus(sys=4)

    def test_non_finite_scalars(self):
        with pytest.raises(ValueError):
            DepthReading(float('nan'))
        with pytest.raises(ValueError):
            SpeedEstimate(float('inf'))
        with pytest.raises(ValueError):
            Quaternion(w=float('nan'))
        with pytest.raises(ValueError):
            Vector3(x=float('-inf'))

    def test_mistyped_fields(self):
        with pytest.raises(TypeError):
            DepthReading('deep')
        with pytest.raises(TypeError):
            GPSData(altitude='10')
        with pytest.raises(TypeError):
            IMUData(orientation=(1.0, 0.0, 0.0, 0.0))

    def test_integers_coerced_to_float(self):
        """Test integral JSON numbers decode to floats."""
        assert DEPTH_CODEC.decode(b'{"depth":3}').depth == 3.0
        assert isinstance(GPS_DATA_CODEC.decode(b'{"altitude":10}').altitude, float)

    def test_local_state_vector_round_trip(self):
        state = LocalState(1, 2, 3, 4, 0.5, 0.5, 0.5, 0.5)
        assert LocalState.from_vector(state.to_vector()) == state
        assert state.quaternion_norm == pytest.approx(1.0)
