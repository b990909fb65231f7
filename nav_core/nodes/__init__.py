"""
Nodes Module: Process composition.

- GPSNode: serial bytes -> NMEA decoder -> GPS fix publisher
- PositionNode: sensor subscribers -> EKF -> position estimate publisher
"""

from .gps_node import GPSFixAggregator, GPSNode
from .position_node import PositionNode

__all__ = [
    'GPSFixAggregator',
    'GPSNode',
    'PositionNode',
]
