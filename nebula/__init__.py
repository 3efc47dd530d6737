"""Overlay network node parts: headers, cipher state, packet parsing, metrics, host maps, relays and handshakes."""

__version__ = "0.1.0"

__all__ = [
    "handshake_manager",
    "header",
    "hostmap",
    "iputil",
    "logger",
    "message_metrics",
    "noise",
    "packet",
    "relay",
]