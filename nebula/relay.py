"""Relay bookkeeping kept on each host: who relays for it and whom it relays for."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Optional

from nebula.iputil import VpnIp


class RelayStatus(enum.IntEnum):
    """Lifecycle of a relay."""

    REQUESTED = 0
    ESTABLISHED = 1


class RelayType(enum.IntEnum):
    """Role of this host in a relay."""

    UNKNOWN = 0
    FORWARDING = 1
    TERMINAL = 2


@dataclass
class Relay:
    """One relay tunnel as seen from this host."""

    type: RelayType = RelayType.UNKNOWN
    state: RelayStatus = RelayStatus.REQUESTED
    local_index: int = 0
    remote_index: int = 0
    peer_ip: VpnIp = VpnIp(0)


@dataclass
class RelayState:
    """Thread safe relay tables for a single host.

    ``relays`` holds the addresses of hosts that can relay traffic to this
    peer. ``relay_for_by_ip`` and ``relay_for_by_idx`` hold the relays this
    host serves, keyed by peer address and by local index.
    """

    relays: set[VpnIp] = field(default_factory=set)
    relay_for_by_ip: dict[VpnIp, Relay] = field(default_factory=dict)
    relay_for_by_idx: dict[int, Relay] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def delete_relay(self, ip: VpnIp) -> None:
        """Forget ``ip`` as a relay for this peer."""
        with self._lock:
            self.relays.discard(VpnIp(ip))

    def get_relay_for_by_ip(self, ip: VpnIp) -> Optional[Relay]:
        """Return the relay served for peer ``ip``, or None."""
        with self._lock:
            return self.relay_for_by_ip.get(VpnIp(ip))

    def insert_relay_to(self, ip: VpnIp) -> None:
        """Record ``ip`` as a host that can relay to this peer."""
        with self._lock:
            self.relays.add(VpnIp(ip))

    def copy_relay_ips(self) -> list[VpnIp]:
        """Return the addresses of hosts relaying to this peer."""
        with self._lock:
            return list(self.relays)

    def copy_relay_for_ips(self) -> list[VpnIp]:
        """Return the peer addresses this host relays for."""
        with self._lock:
            return list(self.relay_for_by_ip)

    def copy_relay_for_idxs(self) -> list[int]:
        """Return the local indexes of the relays this host serves."""
        with self._lock:
            return list(self.relay_for_by_idx)

    def remove_relay(self, local_idx: int) -> Optional[VpnIp]:
        """Drop the relay at ``local_idx`` and return its peer address, or None."""
        with self._lock:
            relay = self.relay_for_by_idx.pop(local_idx, None)
            if relay is None:
                return None
            self.relay_for_by_ip.pop(relay.peer_ip, None)
            return relay.peer_ip

    def query_relay_for_by_ip(self, ip: VpnIp) -> Optional[Relay]:
        """Return the relay served for peer ``ip``, or None."""
        with self._lock:
            return self.relay_for_by_ip.get(VpnIp(ip))

    def query_relay_for_by_idx(self, idx: int) -> Optional[Relay]:
        """Return the relay with local index ``idx``, or None."""
        with self._lock:
            return self.relay_for_by_idx.get(idx)

    def insert_relay(self, ip: VpnIp, idx: int, relay: Relay) -> None:
        """Register ``relay`` under both peer address and local index."""
        with self._lock:
            self.relay_for_by_ip[VpnIp(ip)] = relay
            self.relay_for_by_idx[idx] = relay