"""Tables of known hosts, indexed by overlay address and by tunnel indexes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from nebula.iputil import VpnIp
from nebula.message_metrics import Counter, MetricsRegistry
from nebula.relay import RelayState

PROMOTE_EVERY = 1000
REQUERY_EVERY = 5000
MAX_REMOTES = 10
MAX_CACHED_PACKETS = 100

# How long to refuse roaming back to the previous address, to avoid flapping
# on packets that were already in flight.
ROAMING_SUPPRESS_SECONDS = 2

_log = logging.getLogger(__name__)

PacketCallback = Callable[..., None]


class HostNotFoundError(LookupError):
    """Raised when a host map has no entry for the requested key."""


@dataclass
class CachedPacket:
    """A packet held back until the tunnel to its host is ready."""

    message_type: int
    subtype: int
    callback: PacketCallback
    packet: bytes


@dataclass(eq=False)
class HostInfo:
    """Everything known about one peer; compared and hashed by identity."""

    vpn_ip: VpnIp = VpnIp(0)
    remote: Any = None
    remotes: Any = None
    promote_counter: int = 0
    connection_state: Any = None
    handshake_start: Optional[datetime] = None
    handshake_ready: bool = False
    handshake_counter: int = 0
    handshake_complete: bool = False
    handshake_packet: dict[int, bytes] = field(default_factory=dict)
    packet_store: list[CachedPacket] = field(default_factory=list)
    remote_index_id: int = 0
    local_index_id: int = 0
    recv_error: int = 0
    remote_cidr: Any = None
    relay_state: RelayState = field(default_factory=RelayState)
    last_rebind_count: int = 0
    last_handshake_time: int = 0
    last_roam: Optional[datetime] = None
    last_roam_remote: Any = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __post_init__(self) -> None:
        self.vpn_ip = VpnIp(self.vpn_ip)

    def cache_packet(
        self,
        message_type: int,
        subtype: int,
        packet: bytes,
        callback: PacketCallback,
        dropped: Optional[Counter] = None,
    ) -> bool:
        """Keep a copy of ``packet`` for sending later; return False if the store is full."""
        if len(self.packet_store) < MAX_CACHED_PACKETS:
            self.packet_store.append(CachedPacket(message_type, subtype, callback, bytes(packet)))
            _log.debug("Packet store vpnIp=%s length=%d stored=true", self.vpn_ip, len(self.packet_store))
            return True
        if dropped is not None:
            dropped.inc(1)
        _log.debug("Packet store vpnIp=%s length=%d stored=false", self.vpn_ip, len(self.packet_store))
        return False

    def recv_error_exceeded(self) -> bool:
        """Count a receive error; return True once three have already been seen."""
        if self.recv_error < 3:
            self.recv_error += 1
            return False
        return True


class HostMap:
    """Hosts by overlay address, local index, remote index and relay index."""

    def __init__(self, name: str, vpn_cidr: Any = None, preferred_ranges: Any = None) -> None:
        self.name = name
        self.vpn_cidr = vpn_cidr
        self.preferred_ranges = list(preferred_ranges or [])
        self.indexes: dict[int, HostInfo] = {}
        self.relays: dict[int, HostInfo] = {}
        self.remote_indexes: dict[int, HostInfo] = {}
        self.hosts: dict[VpnIp, HostInfo] = {}
        self.metrics_enabled = False
        self.lock = threading.RLock()

    def stats(self) -> dict[str, int]:
        """Return the sizes of the four tables."""
        with self.lock:
            return {
                "hosts": len(self.hosts),
                "indexes": len(self.indexes),
                "remoteIndexes": len(self.remote_indexes),
                "relayIndexes": len(self.relays),
            }

    def emit_stats(self, registry: MetricsRegistry, name: str) -> None:
        """Report table sizes as ``hostmap.<name>.*`` gauges."""
        for key, value in self.stats().items():
            registry.gauge(f"hostmap.{name}.{key}", value)

    def remove_relay(self, local_idx: int) -> None:
        """Tear down the relay at ``local_idx`` and its partner on the other peer."""
        with self.lock:
            relay_host = self.relays.pop(local_idx, None)
        if relay_host is None:
            return
        peer_ip = relay_host.relay_state.remove_relay(local_idx)
        if peer_ip is None:
            return
        try:
            peer = self.query_vpn_ip(peer_ip)
        except HostNotFoundError:
            return
        other_idx = 0
        peer.relay_state.delete_relay(relay_host.vpn_ip)
        relay = peer.relay_state.get_relay_for_by_ip(relay_host.vpn_ip)
        if relay is not None:
            other_idx = relay.local_index
        # A relaying host also has to drop the other half of the relay.
        self.remove_relay(other_idx)

    def get_index_by_vpn_ip(self, vpn_ip: VpnIp) -> int:
        with self.lock:
            hostinfo = self.hosts.get(VpnIp(vpn_ip))
            if hostinfo is None:
                raise HostNotFoundError("vpn IP not found")
            return hostinfo.local_index_id

    def add(self, ip: VpnIp, hostinfo: HostInfo) -> None:
        with self.lock:
            self.hosts[VpnIp(ip)] = hostinfo

    def add_vpn_ip(
        self, vpn_ip: VpnIp, init: Optional[Callable[[HostInfo], None]] = None
    ) -> tuple[HostInfo, bool]:
        """Return the host for ``vpn_ip`` and whether it was just created.

        A new host is passed to ``init`` before it is stored.
        """
        vpn_ip = VpnIp(vpn_ip)
        with self.lock:
            existing = self.hosts.get(vpn_ip)
            if existing is not None:
                return existing, False
        hostinfo = HostInfo(vpn_ip=vpn_ip)
        if init is not None:
            init(hostinfo)
        with self.lock:
            self.hosts[vpn_ip] = hostinfo
        return hostinfo, True

    def delete_vpn_ip(self, vpn_ip: VpnIp) -> None:
        with self.lock:
            self.hosts.pop(VpnIp(vpn_ip), None)
            size = len(self.hosts)
        _log.debug("Hostmap vpnIp deleted mapName=%s vpnIp=%s mapTotalSize=%d", self.name, VpnIp(vpn_ip), size)

    def add_remote_index_host_info(self, index: int, hostinfo: HostInfo) -> None:
        """Record the remote index once it becomes known."""
        with self.lock:
            hostinfo.remote_index_id = index
            self.remote_indexes[index] = hostinfo

    def add_vpn_ip_host_info(self, vpn_ip: VpnIp, hostinfo: HostInfo) -> None:
        with self.lock:
            hostinfo.vpn_ip = VpnIp(vpn_ip)
            self.hosts[hostinfo.vpn_ip] = hostinfo
            self.indexes[hostinfo.local_index_id] = hostinfo
            self.remote_indexes[hostinfo.remote_index_id] = hostinfo

    def delete_index(self, index: int) -> None:
        """Remove the host at local ``index`` from every table it is in."""
        with self.lock:
            hostinfo = self.indexes.pop(index, None)
            if hostinfo is not None:
                self.remote_indexes.pop(hostinfo.remote_index_id, None)
                if self.hosts.get(hostinfo.vpn_ip) is hostinfo:
                    del self.hosts[hostinfo.vpn_ip]
            size = len(self.indexes)
        _log.debug("Hostmap index deleted mapName=%s indexNumber=%d mapTotalSize=%d", self.name, index, size)

    def delete_reverse_index(self, index: int) -> None:
        """Remove the host at remote ``index`` from every table it is in."""
        with self.lock:
            hostinfo = self.remote_indexes.pop(index, None)
            if hostinfo is not None:
                self.indexes.pop(hostinfo.local_index_id, None)
                if self.hosts.get(hostinfo.vpn_ip) is hostinfo:
                    del self.hosts[hostinfo.vpn_ip]
            size = len(self.indexes)
        _log.debug("Hostmap remote index deleted mapName=%s indexNumber=%d mapTotalSize=%d", self.name, index, size)

    def delete_host_info(self, hostinfo: HostInfo) -> None:
        """Remove ``hostinfo`` and tear down every relay through or to it."""
        with self.lock:
            self.unlocked_delete_host_info(hostinfo)

        for local_idx in hostinfo.relay_state.copy_relay_for_idxs():
            self.remove_relay(local_idx)

        teardown: list[int] = []
        for relay_ip in hostinfo.relay_state.copy_relay_ips():
            try:
                relay_host = self.query_vpn_ip(relay_ip)
            except HostNotFoundError:
                _log.info("Missing relay host in hostmap relay=%s", relay_ip)
                continue
            relay = relay_host.relay_state.query_relay_for_by_ip(hostinfo.vpn_ip)
            if relay is not None:
                teardown.append(relay.local_index)
        for local_idx in teardown:
            self.remove_relay(local_idx)

    def delete_relay_idx(self, local_idx: int) -> None:
        with self.lock:
            self.remote_indexes.pop(local_idx, None)

    def unlocked_delete_host_info(self, hostinfo: HostInfo) -> None:
        """Remove ``hostinfo``; the caller is expected to hold ``lock``.

        A different instance stored under the same address is removed too.
        """
        other = self.hosts.get(hostinfo.vpn_ip)
        if other is not None and other is not hostinfo:
            self.hosts.pop(other.vpn_ip, None)
            self.indexes.pop(other.local_index_id, None)
            self.remote_indexes.pop(other.remote_index_id, None)

        self.hosts.pop(hostinfo.vpn_ip, None)
        self.indexes.pop(hostinfo.local_index_id, None)
        self.remote_indexes.pop(hostinfo.remote_index_id, None)
        _log.debug(
            "Hostmap hostInfo deleted mapName=%s mapTotalSize=%d vpnIp=%s indexNumber=%d remoteIndexNumber=%d",
            self.name,
            len(self.hosts),
            hostinfo.vpn_ip,
            hostinfo.local_index_id,
            hostinfo.remote_index_id,
        )

    def query_index(self, index: int) -> HostInfo:
        with self.lock:
            hostinfo = self.indexes.get(index)
        if hostinfo is None:
            raise HostNotFoundError("unable to find index")
        return hostinfo

    def query_relay_index(self, index: int) -> HostInfo:
        with self.lock:
            hostinfo = self.relays.get(index)
        if hostinfo is None:
            raise HostNotFoundError("unable to find index")
        return hostinfo

    def query_reverse_index(self, index: int) -> HostInfo:
        with self.lock:
            hostinfo = self.remote_indexes.get(index)
        if hostinfo is None:
            raise HostNotFoundError(
                f"unable to find reverse index or connectionstate nil in {self.name} hostmap"
            )
        return hostinfo

    def query_vpn_ip(self, vpn_ip: VpnIp) -> HostInfo:
        with self.lock:
            hostinfo = self.hosts.get(VpnIp(vpn_ip))
        if hostinfo is None:
            raise HostNotFoundError("unable to find host")
        return hostinfo

    def add_host_info(self, hostinfo: HostInfo) -> None:
        """Store ``hostinfo`` under its address, local index and remote index."""
        with self.lock:
            self.hosts[hostinfo.vpn_ip] = hostinfo
            self.indexes[hostinfo.local_index_id] = hostinfo
            self.remote_indexes[hostinfo.remote_index_id] = hostinfo
            size = len(self.hosts)
        _log.debug("Hostmap vpnIp added mapName=%s vpnIp=%s mapTotalSize=%d", self.name, hostinfo.vpn_ip, size)