"""
NMEA Module: Streaming NMEA-0183 decoding.

- Line-buffered, restartable decoder (feed arbitrary byte fragments)
- XOR checksum validation (mismatch flags the record, does not drop it)
- Typed records for GGA, GSA, RMC, VTG, GSV, GLL, ZDA, GST, HDT, GRS,
  GBS and GNS
"""

from .sentences import (
    SentenceType,
    FixQuality,
    FAAMode,
    SatelliteInfo,
    NMEASentence,
    GGASentence,
    GSASentence,
    RMCSentence,
    VTGSentence,
    GSVSentence,
    GLLSentence,
    ZDASentence,
    GSTSentence,
    HDTSentence,
    GRSSentence,
    GBSSentence,
    GNSSentence,
)
from .fields import compute_checksum, KNOTS_TO_KMH
from .decoder import NMEADecoder

__all__ = [
    'SentenceType',
    'FixQuality',
    'FAAMode',
    'SatelliteInfo',
    'NMEASentence',
    'GGASentence',
    'GSASentence',
    'RMCSentence',
    'VTGSentence',
    'GSVSentence',
    'GLLSentence',
    'ZDASentence',
    'GSTSentence',
    'HDTSentence',
    'GRSSentence',
    'GBSSentence',
    'GNSSentence',
    'NMEADecoder',
    'compute_checksum',
    'KNOTS_TO_KMH',
]
