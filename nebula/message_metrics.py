"""Counters for sent and received messages, keyed by type and subtype."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence

from nebula.header import MessageType

CounterTable = Sequence[Optional[Sequence["Counter"]]]


@dataclass
class Counter:
    """A named, thread safe counter."""

    name: str
    count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self.count += amount


@dataclass
class MetricsRegistry:
    """Holds counters and gauges by name."""

    counters: dict[str, Counter] = field(default_factory=dict)
    gauges: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def counter(self, name: str) -> Counter:
        """Return the counter called ``name``, registering it first if needed."""
        with self._lock:
            existing = self.counters.get(name)
            if existing is None:
                existing = self.counters[name] = Counter(name)
            return existing

    def gauge(self, name: str, value: int) -> None:
        """Set the gauge called ``name``."""
        with self._lock:
            self.gauges[name] = int(value)


def _record(table: CounterTable, unknown: Optional[Counter], message_type: int, subtype: int, amount: int) -> None:
    row = table[message_type] if 0 <= message_type < len(table) else None
    if row is not None and 0 <= subtype < len(row):
        row[subtype].inc(amount)
    elif unknown is not None:
        unknown.inc(amount)


@dataclass
class MessageMetrics:
    """Counter tables indexed by message type then subtype.

    Messages with no counter in the table go to the ``unknown`` counter when
    there is one, and are otherwise not counted.
    """

    rx_counters: CounterTable = ()
    tx_counters: CounterTable = ()
    rx_unknown: Optional[Counter] = None
    tx_unknown: Optional[Counter] = None

    def rx(self, message_type: int, subtype: int, amount: int = 1) -> None:
        _record(self.rx_counters, self.rx_unknown, message_type, subtype, amount)

    def tx(self, message_type: int, subtype: int, amount: int = 1) -> None:
        _record(self.tx_counters, self.tx_unknown, message_type, subtype, amount)


def new_message_metrics(registry: Optional[MetricsRegistry] = None) -> MessageMetrics:
    """Count every known message type in both directions."""
    registry = registry if registry is not None else MetricsRegistry()

    def table(direction: str) -> list[Optional[list[Counter]]]:
        rows: list[Optional[list[Counter]]] = [None] * (MessageType.CLOSE_TUNNEL + 1)
        rows[MessageType.HANDSHAKE] = [registry.counter(f"messages.{direction}.handshake_ixpsk0")]
        rows[MessageType.RECV_ERROR] = [registry.counter(f"messages.{direction}.recv_error")]
        rows[MessageType.LIGHTHOUSE] = [registry.counter(f"messages.{direction}.lighthouse")]
        rows[MessageType.TEST] = [
            registry.counter(f"messages.{direction}.test_request"),
            registry.counter(f"messages.{direction}.test_response"),
        ]
        rows[MessageType.CLOSE_TUNNEL] = [registry.counter(f"messages.{direction}.close_tunnel")]
        return rows

    return MessageMetrics(
        rx_counters=table("rx"),
        tx_counters=table("tx"),
        rx_unknown=registry.counter("messages.rx.other"),
        tx_unknown=registry.counter("messages.tx.other"),
    )


def new_message_metrics_only_recv_error(registry: Optional[MetricsRegistry] = None) -> MessageMetrics:
    """Count only recv_error messages, as older releases did."""
    registry = registry if registry is not None else MetricsRegistry()

    def table(direction: str) -> list[Optional[list[Counter]]]:
        return [None, None, [registry.counter(f"messages.{direction}.recv_error")]]

    return MessageMetrics(rx_counters=table("rx"), tx_counters=table("tx"))