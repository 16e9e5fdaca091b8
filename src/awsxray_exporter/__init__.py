"""
awsxray-exporter: forward AWS X-Ray trace segments to an OpenTelemetry collector.

Polls X-Ray for recently recorded traces and relays every segment document
to a collector's X-Ray receiver over UDP, in the X-Ray daemon wire format.
"""

__version__ = "0.1.0"
