# nebula

Building blocks for a node of an overlay network: the packet header, AEAD
cipher state, firewall packet parsing, message counters, host tables, relay
bookkeeping and the tracking of pending handshakes.

## Modules

- `nebula.iputil`: `VpnIp`, an IPv4 address held as an unsigned 32 bit integer,
  with `to_ip()`, `to_ip_address()` and `to_json()`; `ip_to_vpn_ip()` and
  `to_ip_network()`.
- `nebula.header`: the 16 byte header. `Header` (with `encode()`, `type_name()`,
  `sub_type_name()`, `to_json()`), `MessageType`, `encode()`, `parse_header()`,
  `type_name()`, `sub_type_name()` and `HeaderTooShortError`.
- `nebula.noise`: `NebulaCipherState` with `encrypt_danger()`, `decrypt_danger()`
  and `overhead()`; `new_cipher_state()` builds one for `"aes"` (AES-GCM) or
  `"chachapoly"` (ChaCha20-Poly1305); `make_nonce()` and `Endianness`.
- `nebula.packet`: `new_packet()` returns a `FirewallPacket` with the addresses,
  ports, protocol and fragment flag of an IPv4 packet, or raises `PacketError`.
- `nebula.message_metrics`: `Counter`, `MetricsRegistry`, `MessageMetrics` and the
  constructors `new_message_metrics()` and `new_message_metrics_only_recv_error()`.
- `nebula.logger`: `configure_logger()` applies `logging.level`, `logging.format`
  (`text` or `json`), `logging.timestamp_format` and `logging.disable_timestamp`
  from a nested settings mapping to a standard library logger; bad values raise
  `LoggerConfigError`.
- `nebula.relay`: `Relay`, `RelayType`, `RelayStatus` and the thread safe `RelayState`.
- `nebula.hostmap`: `HostInfo`, `CachedPacket`, `HostMap` (hosts by address, local
  index, remote index and relay index) and `HostNotFoundError`.
- `nebula.handshake_manager`: `HandshakeConfig` and `HandshakeManager`, which keeps
  hosts with a handshake in flight in its own `pending_host_map` and moves them
  into the main `HostMap` with `check_and_complete()` or `complete()`;
  `generate_index()` and `hs_timeout()`.

## Install

    pip install .

For the test suite:

    pip install ".[test]"
    pytest

## Examples

Encode and parse a header:

    from nebula.header import Header, MessageType, parse_header

    raw = Header(version=1, message_type=MessageType.TEST, subtype=0,
                 reserved=0, remote_index=10, message_counter=9).encode()
    h = parse_header(raw)
    print(h)  # ver=1 type=test subtype=testRequest reserved=0x0 remoteindex=10 messagecounter=9

Overlay addresses:

    from nebula.iputil import ip_to_vpn_ip

    ip = ip_to_vpn_ip("10.128.0.2")
    print(str(ip), ip.to_json())  # 10.128.0.2 "10.128.0.2"

Seal and open a payload:

    import os
    from nebula.noise import new_cipher_state

    state = new_cipher_state("aes", os.urandom(32))
    sealed = state.encrypt_danger(b"header", b"payload", counter=1)
    assert state.decrypt_danger(b"header", sealed[len(b"header"):], counter=1) == b"payload"

Parse an outbound IPv4 packet for the firewall:

    from nebula.packet import new_packet, PacketError

    try:
        fp = new_packet(data, incoming=False)
    except PacketError as err:
        print("bad packet:", err)

Complete a handshake:

    from nebula.hostmap import HostMap
    from nebula.handshake_manager import HandshakeManager, AlreadySeenError

    main = HostMap("main")
    manager = HandshakeManager(main)
    hostinfo = manager.add_vpn_ip(ip)
    manager.add_index_host_info(hostinfo)
    try:
        manager.check_and_complete(hostinfo, 0, overwrite=False)
    except AlreadySeenError as err:
        print("duplicate handshake for", err.hostinfo.vpn_ip)

Failures are raised as exceptions: `HeaderTooShortError`, `PacketError`,
`HostNotFoundError`, `LoggerConfigError`, `IndexGenerationError`, and the
handshake conflicts `AlreadySeenError`, `ExistingHostInfoError`,
`LocalIndexCollisionError` and `ExistingHandshakeError`, each carrying the
conflicting `hostinfo`.

## What this package does not do

It is a library of parts, not a running node. It opens no tun device and no
UDP socket, sends and receives no packets, performs no Noise handshake and
verifies no certificates. There is no lighthouse, no firewall rule engine, no
timer wheel driving handshake retries (`HandshakeManager` accepts any object
with an `add(item, delay)` method for that), no configuration file loader and
no command-line program.