from nebula.header import TEST_REPLY, TEST_REQUEST, MessageType
from nebula.message_metrics import (
    Counter,
    MessageMetrics,
    MetricsRegistry,
    new_message_metrics,
    new_message_metrics_only_recv_error,
)


def test_counter_inc():
    counter = Counter("c")
    counter.inc()
    counter.inc(4)
    assert counter.count == 5


def test_registry_returns_same_counter():
    registry = MetricsRegistry()
    first = registry.counter("messages.rx.other")
    assert registry.counter("messages.rx.other") is first


def test_registry_gauge():
    registry = MetricsRegistry()
    registry.gauge("routines", 3)
    registry.gauge("routines", 4)
    assert registry.gauges == {"routines": 4}


def test_full_metrics_counts_known_types():
    registry = MetricsRegistry()
    metrics = new_message_metrics(registry)
    metrics.rx(MessageType.HANDSHAKE, 0, 1)
    metrics.rx(MessageType.TEST, TEST_REQUEST, 2)
    metrics.tx(MessageType.TEST, TEST_REPLY, 3)
    metrics.tx(MessageType.CLOSE_TUNNEL, 0, 1)
    assert registry.counters["messages.rx.handshake_ixpsk0"].count == 1
    assert registry.counters["messages.rx.test_request"].count == 2
    assert registry.counters["messages.tx.test_response"].count == 3
    assert registry.counters["messages.tx.close_tunnel"].count == 1
    assert registry.counters["messages.rx.other"].count == 0


def test_full_metrics_unknown_goes_to_other():
    registry = MetricsRegistry()
    metrics = new_message_metrics(registry)
    metrics.rx(MessageType.MESSAGE, 0, 1)
    metrics.rx(99, 0, 1)
    metrics.tx(MessageType.TEST, 7, 1)
    metrics.tx(MessageType.CONTROL, 0, 1)
    assert registry.counters["messages.rx.other"].count == 2
    assert registry.counters["messages.tx.other"].count == 2


def test_only_recv_error():
    registry = MetricsRegistry()
    metrics = new_message_metrics_only_recv_error(registry)
    metrics.rx(MessageType.RECV_ERROR, 0, 1)
    metrics.tx(MessageType.RECV_ERROR, 0, 2)
    metrics.rx(MessageType.TEST, 0, 1)
    metrics.tx(MessageType.HANDSHAKE, 0, 1)
    assert {name: c.count for name, c in registry.counters.items()} == {
        "messages.rx.recv_error": 1,
        "messages.tx.recv_error": 2,
    }


def test_empty_metrics_ignore_everything():
    metrics = MessageMetrics()
    metrics.rx(MessageType.TEST, 0, 1)
    metrics.tx(MessageType.TEST, 0, 1)
    assert metrics.rx_unknown is None and metrics.tx_counters == ()


def test_default_registry_is_private():
    first = new_message_metrics()
    second = new_message_metrics()
    first.rx(MessageType.LIGHTHOUSE, 0, 1)
    assert first.rx_counters[MessageType.LIGHTHOUSE][0].count == 1
    assert second.rx_counters[MessageType.LIGHTHOUSE][0].count == 0