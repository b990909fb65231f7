"""
GPS node: serial bytes -> NMEA decoder -> aggregated GPS fix -> fabric.

GGA, RMC, GSA and VTG sentences are folded into one running GPSData and
each of them publishes the current aggregate. GSV carries per-satellite
detail only and is not folded.
"""

import logging
import threading
from typing import Callable, Iterable, Optional, Union

from nav_core.errors import TransportError
from nav_core.localization.gnss_quality import link_quality_from_fix_quality
from nav_core.metrics import get_metrics
from nav_core.nmea import (
    GGASentence,
    GSASentence,
    NMEADecoder,
    NMEASentence,
    RMCSentence,
    SentenceType,
    VTGSentence,
)
from nav_core.proto.gps_data import FixType, GPSData, LinkQuality

logger = logging.getLogger(__name__)

GSA_FIX_TYPES = {
    '2D': FixType.FIX_2D,
    '3D': FixType.FIX_3D,
}

DEFAULT_READ_SIZE = 256


class GPSFixAggregator:
    """
    Folds decoded sentences into one GPSData.

    Usage:
        aggregator = GPSFixAggregator(on_update=publisher.send)
        decoder.add_handler(None, aggregator.handle)

    Notes:
        - Sentences that failed their checksum are counted and skipped
        - Every GGA/RMC/GSA/VTG calls on_update with a fresh GPSData
    """

    def __init__(self, on_update: Optional[Callable[[GPSData], None]] = None):
        self.on_update = on_update
        self.metrics = get_metrics()
        self._fields = {
            'timestamp': None,
            'latitude': None,
            'longitude': None,
            'altitude': None,
            'speed': None,
            'course': None,
            'satellites': None,
            'hdop': None,
            'fix': None,
            'link_quality': LinkQuality.UNKNOWN,
        }
        self._handlers = {
            SentenceType.GGA: self._handle_gga,
            SentenceType.RMC: self._handle_rmc,
            SentenceType.GSA: self._handle_gsa,
            SentenceType.VTG: self._handle_vtg,
        }

    @property
    def current(self) -> GPSData:
        """Snapshot of the aggregate."""
        return GPSData(**self._fields)

    def handle(self, record: NMEASentence) -> Optional[GPSData]:
        """
        Fold one record.

        Returns:
            The published GPSData, or None if the record changed nothing
        """
        handler = self._handlers.get(record.sentence_type)
        if handler is None:
            return None

        if not record.valid:
            self.metrics.increment_drop('checksum_mismatch')
            logger.warning(f"Skipping {record.sentence_type.value} with bad checksum: {record.raw!r}")
            return None

        handler(record)

        try:
            fix = self.current
        except ValueError as e:
            self.metrics.increment_drop('parse_error')
            logger.warning(f"Discarding implausible GPS fix: {e}")
            return None

        if self.on_update is not None:
            self.on_update(fix)
        return fix

    @staticmethod
    def _timestamp_ms(record) -> Optional[float]:
        return record.time.timestamp() * 1000.0 if record.time is not None else None

    def _handle_gga(self, record: GGASentence):
        self._fields.update(
            timestamp=self._timestamp_ms(record),
            latitude=record.lat,
            longitude=record.lon,
            altitude=record.alt,
            satellites=record.satellites,
            hdop=record.hdop,
            link_quality=link_quality_from_fix_quality(record.quality),
        )

    def _handle_rmc(self, record: RMCSentence):
        self._fields.update(
            timestamp=self._timestamp_ms(record),
            latitude=record.lat,
            longitude=record.lon,
            speed=record.speed,
            course=record.track,
        )

    def _handle_gsa(self, record: GSASentence):
        self._fields['fix'] = GSA_FIX_TYPES.get(record.fix)

    def _handle_vtg(self, record: VTGSentence):
        self._fields.update(speed=record.speed, course=record.track)


class GPSNode:
    """
    Drives decoding from a byte source and publishes GPS fixes.

    The node never opens the serial device itself; main.py hands it an
    open pyserial port (anything with read(size)) or any iterable of byte
    chunks.

    Usage:
        gps_node = GPSNode(node.create_publisher(GPS_TOPIC, GPS_DATA_CODEC))
        gps_node.run(serial_port, stop_event)
    """

    def __init__(self, publisher, decoder: Optional[NMEADecoder] = None):
        """
        Initialize GPS node.

        Args:
            publisher: TopicPublisher for GPSData
            decoder: NMEA decoder (a new one if None)
        """
        self.publisher = publisher
        self.decoder = decoder or NMEADecoder()
        self.aggregator = GPSFixAggregator(on_update=self._publish)
        self.decoder.add_handler(None, self.aggregator.handle)

    def _publish(self, fix: GPSData):
        self.publisher.send(fix)
        logger.debug(
            f"Published GPS fix lat={fix.latitude} lon={fix.longitude} "
            f"fix={fix.fix} quality={fix.link_quality.value}"
        )

    def feed(self, data: Union[bytes, str]):
        """Decode one chunk and publish every resulting fix."""
        self.decoder.feed(data)

    def run(
        self,
        source: Union[Iterable[bytes], object],
        stop_event: Optional[threading.Event] = None,
        read_size: int = DEFAULT_READ_SIZE,
        stop_on_eof: bool = True,
    ) -> int:
        """
        Consume a byte source until exhausted or stopped.

        Args:
            source: Object with read(size) (serial port, file) or an
                iterable of byte chunks
            stop_event: Stops reading when set
            read_size: Bytes per read() call
            stop_on_eof: For read() sources, stop on an empty read; a serial
                port with a read timeout should pass False

        Returns:
            Number of bytes consumed

        Raises:
            TransportError: If publishing fails
        """
        stop_event = stop_event or threading.Event()
        consumed = 0
        logger.info("GPS node reading")

        try:
            if hasattr(source, 'read'):
                while not stop_event.is_set():
                    data = source.read(read_size)
                    if not data:
                        if stop_on_eof:
                            break
                        continue
                    consumed += len(data)
                    self.feed(data)
            else:
                for chunk in source:
                    if stop_event.is_set():
                        break
                    consumed += len(chunk)
                    self.feed(chunk)
        except TransportError as e:
            logger.error(f"GPS node stopped, publish failed: {e}")
            raise

        logger.info(f"GPS node stopped after {consumed} bytes")
        return consumed
