"""Pending handshakes and their promotion into the main host map."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from nebula.hostmap import HostInfo, HostMap
from nebula.iputil import VpnIp
from nebula.message_metrics import MessageMetrics, MetricsRegistry

DEFAULT_HANDSHAKE_TRY_INTERVAL = 0.1
DEFAULT_HANDSHAKE_RETRIES = 10
DEFAULT_HANDSHAKE_TRIGGER_BUFFER = 64
DEFAULT_USE_RELAYS = True

_INDEX_ATTEMPTS = 32

_log = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Anything that can schedule ``item`` to come due after ``delay`` seconds."""

    def add(self, item: object, delay: float) -> None: ...


@dataclass
class HandshakeConfig:
    """Timing and behaviour of outbound handshakes; intervals are in seconds."""

    try_interval: float = DEFAULT_HANDSHAKE_TRY_INTERVAL
    retries: int = DEFAULT_HANDSHAKE_RETRIES
    trigger_buffer: int = DEFAULT_HANDSHAKE_TRIGGER_BUFFER
    use_relays: bool = DEFAULT_USE_RELAYS
    message_metrics: Optional[MessageMetrics] = None


class _HandshakeConflict(Exception):
    """Base for conflicts found while completing a handshake.

    ``hostinfo`` is the entry that caused the conflict.
    """

    default_message = "handshake conflict"

    def __init__(self, hostinfo: Optional[HostInfo], message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.hostinfo = hostinfo


class ExistingHostInfoError(_HandshakeConflict):
    """The main map holds a tunnel from a handshake at least as new."""

    default_message = "existing hostinfo"


class AlreadySeenError(_HandshakeConflict):
    """The main map holds a tunnel built from this exact handshake packet."""

    default_message = "already seen"


class LocalIndexCollisionError(_HandshakeConflict):
    """Another host already uses this local index."""

    default_message = "local index collision"


class ExistingHandshakeError(_HandshakeConflict):
    """Our own pending handshake with this host wins."""

    default_message = "existing handshake"


class IndexGenerationError(RuntimeError):
    """Raised when no unused local index could be found."""

    def __init__(self, message: str = "failed to generate unique localIndexId") -> None:
        super().__init__(message)


def generate_index() -> int:
    """Return a random non-zero 32 bit index; zero means an unknown index."""
    index = 0
    while index == 0:
        index = int.from_bytes(secrets.token_bytes(4), "big")
    _log.debug("Generated index index=%d", index)
    return index


def hs_timeout(tries: int, interval: float) -> float:
    """Return the total time a handshake with linear backoff may take."""
    return int(tries / 2) * (2 * interval + (tries - 1) * interval)


def _remove_from_main(main: HostMap, hostinfo: HostInfo) -> None:
    main.hosts.pop(hostinfo.vpn_ip, None)
    main.indexes.pop(hostinfo.local_index_id, None)
    main.remote_indexes.pop(hostinfo.remote_index_id, None)
    for relay_idx in hostinfo.relay_state.copy_relay_for_idxs():
        main.relays.pop(relay_idx, None)


class HandshakeManager:
    """Holds hosts with handshakes in flight and moves them to the main map."""

    def __init__(
        self,
        main_host_map: HostMap,
        config: Optional[HandshakeConfig] = None,
        *,
        vpn_cidr: object = None,
        preferred_ranges: object = None,
        registry: Optional[MetricsRegistry] = None,
        timer: Optional[Scheduler] = None,
    ) -> None:
        self.config = config if config is not None else HandshakeConfig()
        self.main_host_map = main_host_map
        self.pending_host_map = HostMap("pending", vpn_cidr, preferred_ranges)
        self.message_metrics = self.config.message_metrics
        self.timer = timer
        self.timeout = hs_timeout(self.config.retries, self.config.try_interval)
        registry = registry if registry is not None else MetricsRegistry()
        self.metric_initiated = registry.counter("handshake_manager.initiated")
        self.metric_timed_out = registry.counter("handshake_manager.timed_out")

    def add_vpn_ip(
        self, vpn_ip: VpnIp, init: Optional[Callable[[HostInfo], None]] = None
    ) -> HostInfo:
        """Return the pending host for ``vpn_ip``, creating and scheduling it if new."""
        hostinfo, created = self.pending_host_map.add_vpn_ip(vpn_ip, init)
        if created:
            if self.timer is not None:
                self.timer.add(VpnIp(vpn_ip), self.config.try_interval)
            self.metric_initiated.inc(1)
        return hostinfo

    def check_and_complete(
        self, hostinfo: HostInfo, handshake_packet: int, overwrite: bool
    ) -> Optional[HostInfo]:
        """Add ``hostinfo`` to the main map unless it conflicts with what is there.

        Returns the main map entry that was replaced, if any. Raises
        AlreadySeenError, ExistingHostInfoError, LocalIndexCollisionError or
        ExistingHandshakeError on a conflict.
        """
        pending = self.pending_host_map
        main = self.main_host_map
        with pending.lock, main.lock:
            existing = main.hosts.get(hostinfo.vpn_ip)
            if existing is not None:
                new_packet = hostinfo.handshake_packet.get(handshake_packet) or b""
                old_packet = existing.handshake_packet.get(handshake_packet) or b""
                if new_packet == old_packet:
                    raise AlreadySeenError(existing)
                if existing.last_handshake_time >= hostinfo.last_handshake_time:
                    raise ExistingHostInfoError(existing)
                _log.info("Taking new handshake vpnIp=%s", existing.vpn_ip)

            collision = main.indexes.get(hostinfo.local_index_id)
            if collision is not None:
                raise LocalIndexCollisionError(collision)

            collision = pending.indexes.get(hostinfo.local_index_id)
            if collision is not None and collision is not hostinfo:
                raise LocalIndexCollisionError(collision)

            shadowed = main.remote_indexes.get(hostinfo.remote_index_id)
            if shadowed is not None and shadowed.vpn_ip != hostinfo.vpn_ip:
                _log.info(
                    "New host shadows existing host remoteIndex vpnIp=%s remoteIndex=%d collision=%s",
                    hostinfo.vpn_ip,
                    hostinfo.remote_index_id,
                    shadowed.vpn_ip,
                )

            pending_host = pending.hosts.get(hostinfo.vpn_ip)
            if pending_host is not None:
                if not overwrite:
                    raise ExistingHandshakeError(pending_host)
                with pending_host.lock:
                    hostinfo.packet_store.extend(pending_host.packet_store)
                    pending.unlocked_delete_host_info(pending_host)
                _log.info(
                    "Handshake race lost, replacing pending handshake with completed tunnel vpnIp=%s",
                    pending_host.vpn_ip,
                )

            if existing is not None:
                _remove_from_main(main, existing)

            main.add_host_info(hostinfo)
            return existing

    def complete(self, hostinfo: HostInfo) -> None:
        """Move ``hostinfo`` from pending to main, replacing any host at its address."""
        pending = self.pending_host_map
        main = self.main_host_map
        with pending.lock, main.lock:
            existing = main.hosts.get(hostinfo.vpn_ip)
            if existing is not None:
                _remove_from_main(main, existing)

            shadowed = main.remote_indexes.get(hostinfo.remote_index_id)
            if shadowed is not None:
                _log.info(
                    "New host shadows existing host remoteIndex vpnIp=%s remoteIndex=%d collision=%s",
                    hostinfo.vpn_ip,
                    hostinfo.remote_index_id,
                    shadowed.vpn_ip,
                )

            main.add_host_info(hostinfo)
            pending.unlocked_delete_host_info(hostinfo)

    def add_index_host_info(self, hostinfo: HostInfo) -> int:
        """Give ``hostinfo`` a local index unused in either map and return it."""
        pending = self.pending_host_map
        main = self.main_host_map
        with pending.lock, main.lock:
            for _ in range(_INDEX_ATTEMPTS):
                index = generate_index()
                if index not in pending.indexes and index not in main.indexes:
                    hostinfo.local_index_id = index
                    pending.indexes[index] = hostinfo
                    return index
        raise IndexGenerationError()

    def add_remote_index_host_info(self, index: int, hostinfo: HostInfo) -> None:
        self.pending_host_map.add_remote_index_host_info(index, hostinfo)

    def delete_host_info(self, hostinfo: HostInfo) -> None:
        self.pending_host_map.delete_host_info(hostinfo)

    def query_index(self, index: int) -> HostInfo:
        return self.pending_host_map.query_index(index)

    def emit_stats(self, registry: MetricsRegistry) -> None:
        """Report the sizes of the pending and main maps."""
        self.pending_host_map.emit_stats(registry, "pending")
        self.main_host_map.emit_stats(registry, "main")