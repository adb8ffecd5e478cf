"""Relays call-event notifications from a telephony websocket channel to a webhook."""

__version__ = "1.0.0"
