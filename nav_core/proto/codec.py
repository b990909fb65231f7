"""
Message codecs: typed value <-> bytes for transport.

Every schema class exposes to_dict()/from_dict(); the codec wraps those in
compact UTF-8 JSON. Python float repr round-trips exactly, so
decode(encode(v)) == v for every valid v.
"""

import json
import logging
from typing import Generic, Type, TypeVar

from nav_core.errors import DecodeError
from .gps_data import GPSData
from .imu_data import IMUData
from .scalars import DepthReading, SpeedEstimate
from .position_estimate import PositionEstimate

logger = logging.getLogger(__name__)

T = TypeVar('T')


class MessageCodec(Generic[T]):
    """
    JSON codec for one message schema.

    Usage:
        codec = MessageCodec(GPSData)
        raw = codec.encode(GPSData(latitude=37.0, longitude=-122.0))
        fix = codec.decode(raw)
    """

    def __init__(self, message_cls: Type[T]):
        self.message_cls = message_cls

    @property
    def name(self) -> str:
        return self.message_cls.__name__

    def encode(self, message: T) -> bytes:
        """
        Serialize a message.

        Raises:
            TypeError: If message is not an instance of this codec's schema
        """
        if not isinstance(message, self.message_cls):
            raise TypeError(
                f"{self.name} codec cannot encode {type(message).__name__}"
            )
        return json.dumps(message.to_dict(), separators=(',', ':')).encode('utf-8')

    def decode(self, data: bytes) -> T:
        """
        Deserialize a message.

        Raises:
            DecodeError: If the payload is not valid JSON for this schema
        """
        try:
            payload = json.loads(data.decode('utf-8'))
            if not isinstance(payload, dict):
                raise ValueError(f"expected JSON object, got {type(payload).__name__}")
            return self.message_cls.from_dict(payload)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise DecodeError(f"Failed to decode {self.name}: {e}") from e

    def __repr__(self) -> str:
        return f"MessageCodec({self.name})"


GPS_DATA_CODEC = MessageCodec(GPSData)
IMU_DATA_CODEC = MessageCodec(IMUData)
DEPTH_CODEC = MessageCodec(DepthReading)
SPEED_ESTIMATE_CODEC = MessageCodec(SpeedEstimate)
POSITION_ESTIMATE_CODEC = MessageCodec(PositionEstimate)
