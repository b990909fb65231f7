"""
Error taxonomy for the navigation core.

Two families:
- Fatal to the owning component, propagated to the node:
  TransportConnectionError, InitializationError, ConfigurationError
- Local, observed-and-continue (logged, counted, reported to error callbacks):
  TransportError, DecodeError, ParseError, NumericalError

No component retries on its own; retry policy belongs to the node layer.
"""


class NavCoreError(Exception):
    """Base class for all navigation core errors."""


class TransportConnectionError(NavCoreError, ConnectionError):
    """Transport unreachable or handshake failed at connect time."""


class TransportError(NavCoreError):
    """Publish/receive failed after the connection was lost or closed."""


class DecodeError(NavCoreError):
    """Inbound payload could not be decoded into its message type."""


class ParseError(NavCoreError):
    """
    A single NMEA sentence failed structural parsing.

    Attributes:
        sentence: Raw sentence text that failed
    """

    def __init__(self, message: str, sentence: str = ""):
        super().__init__(message)
        self.sentence = sentence


class InitializationError(NavCoreError):
    """Estimator constructed without a qualifying GPS fix."""


class NumericalError(NavCoreError):
    """Degenerate numerical input (e.g. singular innovation covariance)."""


class ConfigurationError(NavCoreError, ValueError):
    """Misconfiguration detected at the point of use."""


__all__ = [
    'NavCoreError',
    'TransportConnectionError',
    'TransportError',
    'DecodeError',
    'ParseError',
    'InitializationError',
    'NumericalError',
    'ConfigurationError',
]
