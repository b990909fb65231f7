"""
Streaming NMEA-0183 decoder.

Turns a raw, possibly fragmented serial byte stream into typed,
checksum-validated sentence records.

Usage:
    decoder = NMEADecoder(on_error=lambda err: logger.warning(err))
    decoder.add_handler(SentenceType.GGA, handle_gga)
    decoder.add_handler(None, handle_any)

    for chunk in serial_chunks:
        decoder.feed(chunk)

Behavior:
- Lines are split on CR-LF; a trailing partial line is kept for the next
  feed() call, so feeding a log in one call or in arbitrary fragments
  yields the same records in the same order
- Only lines beginning with '$' are parsed; unsupported types are ignored
- A checksum mismatch is not an error: the record is emitted with
  valid=False
- A line that fails to parse is reported as one ParseError and the stream
  continues with the next line
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Callable, Dict, List, Optional, Union

from nav_core.errors import ParseError
from nav_core.metrics import get_metrics
from . import fields as f
from .sentences import (
    GBSSentence,
    GGASentence,
    GLLSentence,
    GNSSentence,
    GRSSentence,
    GSASentence,
    GSTSentence,
    GSVSentence,
    HDTSentence,
    NMEASentence,
    RMCSentence,
    SatelliteInfo,
    SentenceType,
    VTGSentence,
    ZDASentence,
)

logger = logging.getLogger(__name__)

SENTENCE_DELIMITER = '\r\n'

SentenceHandler = Callable[[NMEASentence], None]
ErrorHandler = Callable[[ParseError], None]


class NMEADecoder:
    """
    Stateful line-buffering NMEA parser.

    Notifications per parsed sentence, in order:
        1. every "any sentence" handler (registered with type None, or
           on_sentence)
        2. every handler registered for the record's SentenceType
    """

    def __init__(
        self,
        on_sentence: Optional[SentenceHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        date_provider: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize decoder.

        Args:
            on_sentence: Handler for every parsed sentence
            on_error: Handler for per-line parse errors
            date_provider: Date used for time fields of sentences that carry
                no date (default: today UTC)
        """
        self._buffer = ''
        self._any_handlers: List[SentenceHandler] = []
        self._type_handlers: Dict[SentenceType, List[SentenceHandler]] = defaultdict(list)
        self._error_handlers: List[ErrorHandler] = []
        self._date_provider = date_provider
        self.metrics = get_metrics()

        if on_sentence is not None:
            self._any_handlers.append(on_sentence)
        if on_error is not None:
            self._error_handlers.append(on_error)

        self._parsers = {
            SentenceType.GGA: self._parse_gga,
            SentenceType.GSA: self._parse_gsa,
            SentenceType.RMC: self._parse_rmc,
            SentenceType.VTG: self._parse_vtg,
            SentenceType.GSV: self._parse_gsv,
            SentenceType.GLL: self._parse_gll,
            SentenceType.ZDA: self._parse_zda,
            SentenceType.GST: self._parse_gst,
            SentenceType.HDT: self._parse_hdt,
            SentenceType.GRS: self._parse_grs,
            SentenceType.GBS: self._parse_gbs,
            SentenceType.GNS: self._parse_gns,
        }

    def add_handler(self, sentence_type: Optional[SentenceType], handler: SentenceHandler):
        """
        Register a sentence handler.

        Args:
            sentence_type: Type to listen for, or None for every sentence
            handler: Called with the parsed record
        """
        if sentence_type is None:
            self._any_handlers.append(handler)
        else:
            self._type_handlers[SentenceType(sentence_type)].append(handler)

    def add_error_handler(self, handler: ErrorHandler):
        """Register a handler for per-line parse errors."""
        self._error_handlers.append(handler)

    @property
    def pending(self) -> str:
        """Buffered partial sentence awaiting its delimiter."""
        return self._buffer

    def reset(self):
        """Discard any buffered partial sentence."""
        self._buffer = ''

    def feed(self, data: Union[bytes, str]) -> List[NMEASentence]:
        """
        Append data and parse every complete line.

        Args:
            data: Raw bytes from the serial port (or already-decoded text)

        Returns:
            Records emitted by this call, in stream order

        Raises:
            Whatever a handler raises. Complete lines after the failing one
            are kept and parsed by the next feed() call.
        """
        if isinstance(data, (bytes, bytearray)):
            # latin-1 maps each byte to one code point, so a chunk boundary
            # can never split a character
            data = bytes(data).decode('latin-1')

        self._buffer += data
        lines = self._buffer.split(SENTENCE_DELIMITER)
        self._buffer = lines.pop()

        emitted = []
        for index, line in enumerate(lines):
            try:
                record = self._process_line(line)
            except Exception:
                # Lines after a failing handler stay buffered for the next feed()
                unprocessed = ''.join(rest + SENTENCE_DELIMITER for rest in lines[index + 1:])
                self._buffer = unprocessed + self._buffer
                raise
            if record is not None:
                emitted.append(record)

        return emitted

    def _process_line(self, line: str) -> Optional[NMEASentence]:
        if not line.startswith('$'):
            return None

        try:
            record = self.parse_sentence(line)
        except ParseError as e:
            self.metrics.increment('nmea_parse_errors')
            self.metrics.increment_drop('parse_error')
            logger.warning(f"NMEA parse error: {e} ({line!r})")
            for handler in self._error_handlers:
                handler(e)
            return None

        if record is not None:
            self._emit(record)
        return record

    def _emit(self, record: NMEASentence):
        for handler in self._any_handlers:
            handler(record)
        for handler in self._type_handlers.get(record.sentence_type, []):
            handler(record)

    def parse_sentence(self, sentence: str) -> Optional[NMEASentence]:
        """
        Parse one complete sentence (without the CR-LF delimiter).

        Returns:
            Typed record, or None for unsupported sentence types

        Raises:
            ParseError: If a field cannot be parsed
        """
        sentence = sentence.rstrip()
        star = sentence.rfind('*')

        if star == -1:
            body = sentence[1:]
            valid = False
        else:
            body = sentence[1:star]
            valid = self._checksum_matches(body, sentence[star + 1:])

        fields = body.split(',')
        address = fields[0]
        talker, type_code = address[:2], address[2:]

        try:
            sentence_type = SentenceType(type_code)
        except ValueError:
            logger.debug(f"Ignoring unsupported sentence type {address!r}")
            self.metrics.increment_drop('unknown_sentence')
            return None

        try:
            record = self._parsers[sentence_type](fields, talker)
        except ValueError as e:
            raise ParseError(f"{address}: {e}", sentence) from e

        record.talker = talker
        record.raw = sentence
        record.valid = valid

        self.metrics.increment('nmea_sentences')
        if not valid:
            self.metrics.increment('nmea_checksum_failures')
            logger.debug(f"Checksum mismatch: {sentence!r}")

        return record

    @staticmethod
    def _checksum_matches(body: str, checksum_field: str) -> bool:
        checksum_text = checksum_field[:2]
        if len(checksum_text) != 2:
            return False
        try:
            expected = int(checksum_text, 16)
        except ValueError:
            return False
        return f.compute_checksum(body) == expected

    def _default_date(self) -> Optional[date]:
        return self._date_provider() if self._date_provider else None

    def _time(self, value: str, on_date: Optional[date] = None):
        return f.parse_time(value, on_date, self._default_date())

    # ------------------------------------------------------------------
    # Per-type parsers. `fields[0]` is the address field (talker + type).
    # ------------------------------------------------------------------

    def _parse_gga(self, fields: List[str], talker: str) -> GGASentence:
        return GGASentence(
            time=self._time(f.field_at(fields, 1)),
            lat=f.parse_coordinate(f.field_at(fields, 2), f.field_at(fields, 3)),
            lon=f.parse_coordinate(f.field_at(fields, 4), f.field_at(fields, 5)),
            quality=f.parse_fix_quality(f.field_at(fields, 6)),
            satellites=f.parse_int(f.field_at(fields, 7)),
            hdop=f.parse_number(f.field_at(fields, 8)),
            alt=f.parse_distance(f.field_at(fields, 9), f.field_at(fields, 10)),
            geoidal=f.parse_distance(f.field_at(fields, 11), f.field_at(fields, 12)),
            age=f.parse_number(f.field_at(fields, 13)),
            station_id=f.parse_int(f.field_at(fields, 14)),
        )

    def _parse_gsa(self, fields: List[str], talker: str) -> GSASentence:
        satellites = []
        for i in range(3, 15):
            sat = f.parse_int(f.field_at(fields, i))
            if sat is not None:
                satellites.append(sat)

        system_id = f.parse_int(fields[18]) if len(fields) > 18 else None
        return GSASentence(
            mode=f.parse_gsa_mode(f.field_at(fields, 1)),
            fix=f.parse_gsa_fix(f.field_at(fields, 2)),
            satellites=satellites,
            pdop=f.parse_number(f.field_at(fields, 15)),
            hdop=f.parse_number(f.field_at(fields, 16)),
            vdop=f.parse_number(f.field_at(fields, 17)),
            system_id=system_id,
            system=f.system_from_id(system_id),
        )

    def _parse_rmc(self, fields: List[str], talker: str) -> RMCSentence:
        return RMCSentence(
            time=self._time(f.field_at(fields, 1), f.parse_date(f.field_at(fields, 9))),
            status=f.parse_status(f.field_at(fields, 2)),
            lat=f.parse_coordinate(f.field_at(fields, 3), f.field_at(fields, 4)),
            lon=f.parse_coordinate(f.field_at(fields, 5), f.field_at(fields, 6)),
            speed=f.parse_knots(f.field_at(fields, 7)),
            track=f.parse_number(f.field_at(fields, 8)),
            variation=f.parse_variation(f.field_at(fields, 10), f.field_at(fields, 11)),
            faa=f.parse_faa(fields[12]) if len(fields) > 12 else None,
            nav_status=fields[13] if len(fields) > 13 else None,
        )

    def _parse_vtg(self, fields: List[str], talker: str) -> VTGSentence:
        return VTGSentence(
            track=f.parse_number(f.field_at(fields, 1)),
            track_magnetic=f.parse_number(f.field_at(fields, 3)),
            speed=f.parse_knots(f.field_at(fields, 5)),
            faa=f.parse_faa(fields[9]) if len(fields) > 9 else None,
        )

    def _parse_gsv(self, fields: List[str], talker: str) -> GSVSentence:
        system = f.system_from_talker(talker)
        satellites = []

        # Four fields per satellite starting at index 4; a trailing signal
        # ID (NMEA 4.10) leaves one extra field
        i = 4
        while i + 3 < len(fields):
            prn = f.parse_int(fields[i])
            snr = f.parse_number(fields[i + 3])
            if prn is None:
                status = None
            else:
                status = 'tracking' if snr is not None else 'in view'

            satellites.append(SatelliteInfo(
                prn=prn,
                elevation=f.parse_number(fields[i + 1]),
                azimuth=f.parse_number(fields[i + 2]),
                snr=snr,
                status=status,
                system=system,
                key=f"{talker}{prn}",
            ))
            i += 4

        signal_id = f.parse_int(fields[-1]) if len(fields) % 4 == 1 else None
        return GSVSentence(
            msg_number=f.parse_int(f.field_at(fields, 2)),
            msgs_total=f.parse_int(f.field_at(fields, 1)),
            sats_in_view=f.parse_int(f.field_at(fields, 3)),
            satellites=satellites,
            signal_id=signal_id,
            system=system,
        )

    def _parse_gll(self, fields: List[str], talker: str) -> GLLSentence:
        return GLLSentence(
            lat=f.parse_coordinate(f.field_at(fields, 1), f.field_at(fields, 2)),
            lon=f.parse_coordinate(f.field_at(fields, 3), f.field_at(fields, 4)),
            time=self._time(f.field_at(fields, 5)),
            status=f.parse_status(f.field_at(fields, 6)),
            faa=f.parse_faa(fields[7]) if len(fields) > 7 else None,
        )

    def _parse_zda(self, fields: List[str], talker: str) -> ZDASentence:
        day = f.parse_int(f.field_at(fields, 2))
        month = f.parse_int(f.field_at(fields, 3))
        year = f.parse_int(f.field_at(fields, 4))

        on_date = None
        if day is not None and month is not None and year is not None:
            if year < 100:
                year = f.expand_year(year)
            on_date = date(year, month, day)

        return ZDASentence(time=self._time(f.field_at(fields, 1), on_date))

    def _parse_gst(self, fields: List[str], talker: str) -> GSTSentence:
        return GSTSentence(
            time=self._time(f.field_at(fields, 1)),
            rms=f.parse_number(f.field_at(fields, 2)),
            ellipse_major=f.parse_number(f.field_at(fields, 3)),
            ellipse_minor=f.parse_number(f.field_at(fields, 4)),
            ellipse_orientation=f.parse_number(f.field_at(fields, 5)),
            latitude_error=f.parse_number(f.field_at(fields, 6)),
            longitude_error=f.parse_number(f.field_at(fields, 7)),
            height_error=f.parse_number(f.field_at(fields, 8)),
        )

    def _parse_hdt(self, fields: List[str], talker: str) -> HDTSentence:
        return HDTSentence(
            heading=f.parse_number(f.field_at(fields, 1)),
            true_north=f.field_at(fields, 2) == 'T',
        )

    def _parse_grs(self, fields: List[str], talker: str) -> GRSSentence:
        residuals = []
        for i in range(3, 15):
            value = f.parse_number(f.field_at(fields, i))
            if value is not None:
                residuals.append(value)

        return GRSSentence(
            time=self._time(f.field_at(fields, 1)),
            mode=f.parse_int(f.field_at(fields, 2)),
            residuals=residuals,
        )

    def _parse_gbs(self, fields: List[str], talker: str) -> GBSSentence:
        has_ids = len(fields) > 10
        return GBSSentence(
            time=self._time(f.field_at(fields, 1)),
            err_lat=f.parse_number(f.field_at(fields, 2)),
            err_lon=f.parse_number(f.field_at(fields, 3)),
            err_alt=f.parse_number(f.field_at(fields, 4)),
            failed_sat=f.parse_int(f.field_at(fields, 5)),
            prob_failed_sat=f.parse_number(f.field_at(fields, 6)),
            bias_failed_sat=f.parse_number(f.field_at(fields, 7)),
            std_failed_sat=f.parse_number(f.field_at(fields, 8)),
            system_id=f.parse_int(fields[9]) if has_ids else None,
            signal_id=f.parse_int(fields[10]) if has_ids else None,
        )

    def _parse_gns(self, fields: List[str], talker: str) -> GNSSentence:
        return GNSSentence(
            time=self._time(f.field_at(fields, 1)),
            lat=f.parse_coordinate(f.field_at(fields, 2), f.field_at(fields, 3)),
            lon=f.parse_coordinate(f.field_at(fields, 4), f.field_at(fields, 5)),
            mode=f.field_at(fields, 6),
            sats_used=f.parse_int(f.field_at(fields, 7)),
            hdop=f.parse_number(f.field_at(fields, 8)),
            alt=f.parse_number(f.field_at(fields, 9)),
            sep=f.parse_number(f.field_at(fields, 10)),
            diff_age=f.parse_number(f.field_at(fields, 11)),
            diff_station=f.parse_int(f.field_at(fields, 12)),
            nav_status=fields[13] if len(fields) > 13 else None,
        )
