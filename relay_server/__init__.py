"""Support relay: realtime presence and message routing between users and staff."""

__version__ = "1.0.0"
