"""
AUV Navigation Core Package.

Messaging fabric, NMEA-0183 decoding and EKF position estimation for the
vehicle's navigation processes.

Package structure:
- io: Messaging fabric (transports, nodes, publishers, subscribers)
- proto: Message schemas, codecs and topic names
- nmea: Streaming NMEA-0183 decoder
- localization: GNSS quality, coordinate transforms, EKF estimator
- nodes: GPS and position node composition
- metrics: Diagnostics, counters, histograms
- errors: Error taxonomy
"""

__version__ = "0.1.0"
__author__ = "AUV Navigation Team"
