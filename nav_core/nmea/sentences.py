"""
NMEA-0183 sentence records.

One dataclass per supported sentence type. Every field parsed from the
sentence is Optional: None means the field was empty, never "measured
zero". The `valid` flag records the checksum result only; a record with
valid=False was still fully parsed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import ClassVar, List, Optional


class SentenceType(str, Enum):
    """Supported sentence types (the three letters after the talker ID)."""

    GGA = "GGA"   # Fix data
    GSA = "GSA"   # DOP and active satellites
    RMC = "RMC"   # Recommended minimum
    VTG = "VTG"   # Track and ground speed
    GSV = "GSV"   # Satellites in view
    GLL = "GLL"   # Geographic position
    ZDA = "ZDA"   # Time and date
    GST = "GST"   # Pseudorange error statistics
    HDT = "HDT"   # True heading
    GRS = "GRS"   # Range residuals
    GBS = "GBS"   # Satellite fault detection
    GNS = "GNS"   # Multi-constellation fix data


class FixQuality(IntEnum):
    """GGA fix quality indicator."""

    INVALID = 0
    GPS_FIX = 1          # Standard GPS fix
    DGPS_FIX = 2         # Differential GPS
    PPS_FIX = 3          # PPS (Precision Positioning Service)
    RTK_FIX = 4          # Real-Time Kinematic
    RTK_FLOAT = 5        # RTK Float
    ESTIMATED = 6        # Dead reckoning
    MANUAL = 7           # Manual input
    SIMULATION = 8       # Simulation mode


class FAAMode(str, Enum):
    """FAA mode indicator (NMEA 2.3+)."""

    AUTONOMOUS = "autonomous"
    DIFFERENTIAL = "differential"
    ESTIMATED = "estimated"
    MANUAL_INPUT = "manual input"
    SIMULATED = "simulated"
    NOT_VALID = "not valid"
    PRECISE = "precise"
    RTK = "rtk"
    RTK_FLOAT = "rtk-float"


@dataclass
class SatelliteInfo:
    """
    One satellite block from a GSV sentence.

    Attributes:
        prn: Satellite PRN number
        elevation: Elevation in degrees
        azimuth: Azimuth in degrees true
        snr: Signal-to-noise ratio (dB-Hz), None when not tracked
        status: "tracking" (PRN and SNR), "in view" (PRN only), or None
        system: Constellation name derived from the talker ID
        key: Talker + PRN, unique across constellations (e.g. "GP12")
    """

    prn: Optional[int] = None
    elevation: Optional[float] = None
    azimuth: Optional[float] = None
    snr: Optional[float] = None
    status: Optional[str] = None
    system: str = "unknown"
    key: str = ""


@dataclass
class NMEASentence:
    """
    Fields shared by all sentence records.

    Attributes:
        talker: Two-letter talker ID (e.g. "GP", "GN")
        raw: Original sentence text
        valid: True if the trailing checksum matched
    """

    sentence_type: ClassVar[SentenceType]

    talker: str = ""
    raw: str = ""
    valid: bool = False


@dataclass
class GGASentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GGA

    time: Optional[datetime] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    quality: Optional[FixQuality] = None
    satellites: Optional[int] = None
    hdop: Optional[float] = None
    alt: Optional[float] = None
    geoidal: Optional[float] = None
    age: Optional[float] = None
    station_id: Optional[int] = None


@dataclass
class GSASentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GSA

    mode: Optional[str] = None            # "manual" / "automatic"
    fix: Optional[str] = None             # "2D" / "3D"
    satellites: List[int] = field(default_factory=list)
    pdop: Optional[float] = None
    hdop: Optional[float] = None
    vdop: Optional[float] = None
    system_id: Optional[int] = None
    system: str = "unknown"


@dataclass
class RMCSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.RMC

    time: Optional[datetime] = None
    status: Optional[str] = None          # "active" / "void"
    lat: Optional[float] = None
    lon: Optional[float] = None
    speed: Optional[float] = None         # km/h
    track: Optional[float] = None
    variation: Optional[float] = None     # negative = west
    faa: Optional[FAAMode] = None
    nav_status: Optional[str] = None


@dataclass
class VTGSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.VTG

    track: Optional[float] = None
    track_magnetic: Optional[float] = None
    speed: Optional[float] = None         # km/h
    faa: Optional[FAAMode] = None


@dataclass
class GSVSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GSV

    msg_number: Optional[int] = None
    msgs_total: Optional[int] = None
    sats_in_view: Optional[int] = None
    satellites: List[SatelliteInfo] = field(default_factory=list)
    signal_id: Optional[int] = None
    system: str = "unknown"


@dataclass
class GLLSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GLL

    time: Optional[datetime] = None
    status: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    faa: Optional[FAAMode] = None


@dataclass
class ZDASentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.ZDA

    time: Optional[datetime] = None


@dataclass
class GSTSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GST

    time: Optional[datetime] = None
    rms: Optional[float] = None
    ellipse_major: Optional[float] = None
    ellipse_minor: Optional[float] = None
    ellipse_orientation: Optional[float] = None
    latitude_error: Optional[float] = None
    longitude_error: Optional[float] = None
    height_error: Optional[float] = None


@dataclass
class HDTSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.HDT

    heading: Optional[float] = None
    true_north: bool = False


@dataclass
class GRSSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GRS

    time: Optional[datetime] = None
    mode: Optional[int] = None
    residuals: List[float] = field(default_factory=list)


@dataclass
class GBSSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GBS

    time: Optional[datetime] = None
    err_lat: Optional[float] = None
    err_lon: Optional[float] = None
    err_alt: Optional[float] = None
    failed_sat: Optional[int] = None
    prob_failed_sat: Optional[float] = None
    bias_failed_sat: Optional[float] = None
    std_failed_sat: Optional[float] = None
    system_id: Optional[int] = None
    signal_id: Optional[int] = None


@dataclass
class GNSSentence(NMEASentence):
    sentence_type: ClassVar[SentenceType] = SentenceType.GNS

    time: Optional[datetime] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    mode: str = ""
    sats_used: Optional[int] = None
    hdop: Optional[float] = None
    alt: Optional[float] = None
    sep: Optional[float] = None
    diff_age: Optional[float] = None
    diff_station: Optional[int] = None
    nav_status: Optional[str] = None
