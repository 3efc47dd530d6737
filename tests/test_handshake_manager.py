from unittest import mock

import pytest

from nebula.handshake_manager import (
    DEFAULT_HANDSHAKE_TRY_INTERVAL,
    AlreadySeenError,
    ExistingHandshakeError,
    ExistingHostInfoError,
    HandshakeConfig,
    HandshakeManager,
    IndexGenerationError,
    LocalIndexCollisionError,
    generate_index,
    hs_timeout,
)
from nebula.hostmap import HostInfo, HostMap, HostNotFoundError
from nebula.iputil import ip_to_vpn_ip
from nebula.message_metrics import MetricsRegistry

IP = ip_to_vpn_ip("172.1.1.2")


class RecordingTimer:
    def __init__(self):
        self.entries = []

    def add(self, item, delay):
        self.entries.append((item, delay))


def make_manager():
    registry = MetricsRegistry()
    timer = RecordingTimer()
    main = HostMap("test")
    manager = HandshakeManager(main, HandshakeConfig(), registry=registry, timer=timer)
    return manager, main, registry, timer


def host(vpn_ip=IP, local=1, remote=2, packet=b"a", when=1):
    return HostInfo(
        vpn_ip=vpn_ip,
        local_index_id=local,
        remote_index_id=remote,
        handshake_packet={0: packet},
        last_handshake_time=when,
    )


def test_hs_timeout():
    assert hs_timeout(10, 0.1) == pytest.approx(5.5)
    assert hs_timeout(3, 1.0) == pytest.approx(4.0)
    assert hs_timeout(1, 1.0) == 0


def test_generate_index_skips_zero():
    with mock.patch("secrets.token_bytes", side_effect=[b"\x00\x00\x00\x00", b"\x00\x00\x01\x02"]):
        assert generate_index() == 258


def test_add_vpn_ip_like_source():
    manager, main, registry, timer = make_manager()
    calls = []
    first = manager.add_vpn_ip(IP, calls.append)
    assert calls == [first]
    second = manager.add_vpn_ip(IP, calls.append)
    assert len(calls) == 1
    assert second is first
    assert len(main.hosts) == 0
    assert IP in manager.pending_host_map.hosts
    assert timer.entries == [(IP, DEFAULT_HANDSHAKE_TRY_INTERVAL)]
    assert registry.counters["handshake_manager.initiated"].count == 1


def test_add_index_host_info_avoids_collisions():
    manager, main, _, _ = make_manager()
    main.indexes[5] = host(local=5)
    h = host(local=0)
    with mock.patch("secrets.token_bytes", side_effect=[(5).to_bytes(4, "big"), (9).to_bytes(4, "big")]):
        assert manager.add_index_host_info(h) == 9
    assert h.local_index_id == 9
    assert manager.pending_host_map.indexes[9] is h
    assert manager.query_index(9) is h


def test_add_index_host_info_gives_up():
    manager, main, _, _ = make_manager()
    main.indexes[5] = host(local=5)
    with mock.patch("secrets.token_bytes", return_value=(5).to_bytes(4, "big")):
        with pytest.raises(IndexGenerationError):
            manager.add_index_host_info(host(local=0))


def test_check_and_complete_adds():
    manager, main, _, _ = make_manager()
    h = host()
    assert manager.check_and_complete(h, 0, False) is None
    assert main.hosts[IP] is h
    assert main.indexes[1] is h
    assert main.remote_indexes[2] is h


def test_check_and_complete_already_seen():
    manager, main, _, _ = make_manager()
    old = host()
    main.add_host_info(old)
    with pytest.raises(AlreadySeenError) as info:
        manager.check_and_complete(host(local=3, packet=b"a", when=5), 0, False)
    assert info.value.hostinfo is old


def test_check_and_complete_older_handshake():
    manager, main, _, _ = make_manager()
    old = host(when=10)
    main.add_host_info(old)
    with pytest.raises(ExistingHostInfoError) as info:
        manager.check_and_complete(host(local=3, packet=b"b", when=10), 0, False)
    assert info.value.hostinfo is old


def test_check_and_complete_replaces_older():
    manager, main, _, _ = make_manager()
    old = host(when=1)
    main.add_host_info(old)
    new = host(local=3, remote=4, packet=b"b", when=2)
    assert manager.check_and_complete(new, 0, False) is old
    assert main.hosts[IP] is new
    assert 1 not in main.indexes
    assert 2 not in main.remote_indexes


def test_check_and_complete_local_index_collisions():
    manager, main, _, _ = make_manager()
    other = host(vpn_ip=ip_to_vpn_ip("172.1.1.9"), local=7)
    main.add_host_info(other)
    with pytest.raises(LocalIndexCollisionError) as info:
        manager.check_and_complete(host(local=7), 0, False)
    assert info.value.hostinfo is other

    pending_other = host(vpn_ip=ip_to_vpn_ip("172.1.1.8"), local=8)
    manager.pending_host_map.indexes[8] = pending_other
    with pytest.raises(LocalIndexCollisionError) as info:
        manager.check_and_complete(host(local=8), 0, False)
    assert info.value.hostinfo is pending_other


def test_check_and_complete_pending_race():
    manager, main, _, _ = make_manager()
    pending = manager.add_vpn_ip(IP)
    pending.cache_packet(1, 0, b"data", lambda *args: None)
    with pytest.raises(ExistingHandshakeError) as info:
        manager.check_and_complete(host(), 0, False)
    assert info.value.hostinfo is pending

    winner = host()
    assert manager.check_and_complete(winner, 0, True) is None
    assert [p.packet for p in winner.packet_store] == [b"data"]
    assert IP not in manager.pending_host_map.hosts
    assert main.hosts[IP] is winner


def test_complete_moves_to_main():
    manager, main, _, _ = make_manager()
    old = host(local=11, remote=12)
    main.add_host_info(old)
    h = manager.add_vpn_ip(IP)
    h.local_index_id = 21
    h.remote_index_id = 22
    manager.complete(h)
    assert main.hosts[IP] is h
    assert 11 not in main.indexes
    assert 12 not in main.remote_indexes
    assert IP not in manager.pending_host_map.hosts


def test_remote_index_and_delete():
    manager, _, _, _ = make_manager()
    h = manager.add_vpn_ip(IP)
    manager.add_remote_index_host_info(44, h)
    assert h.remote_index_id == 44
    assert manager.pending_host_map.query_reverse_index(44) is h
    manager.delete_host_info(h)
    with pytest.raises(HostNotFoundError):
        manager.pending_host_map.query_vpn_ip(IP)


def test_emit_stats():
    manager, main, _, _ = make_manager()
    manager.add_vpn_ip(IP)
    main.add_host_info(host(vpn_ip=ip_to_vpn_ip("172.1.1.3")))
    registry = MetricsRegistry()
    manager.emit_stats(registry)
    assert registry.gauges["hostmap.pending.hosts"] == 1
    assert registry.gauges["hostmap.main.hosts"] == 1
    assert registry.gauges["hostmap.main.indexes"] == 1
    assert registry.gauges["hostmap.pending.indexes"] == 0