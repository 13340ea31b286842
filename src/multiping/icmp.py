"""Shared raw ICMP/ICMPv6 transport.

One raw socket per address family is opened up front and shared by every
probing thread. Outgoing echo requests are written under a send lock; a single
receiver thread reads all sockets and hands each reply to the waiter registered
under its (family, sequence) key. Replies carrying a different identifier
belong to other processes and are dropped.
"""
from __future__ import annotations

import errno
import logging
import os
import select
import socket
import struct
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from multiping.errors import TransportSetupError
from multiping.models import Address

ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACHABLE = 3
ICMP_ECHO_REQUEST = 8
ICMP6_DEST_UNREACHABLE = 1
ICMP6_ECHO_REQUEST = 128
ICMP6_ECHO_REPLY = 129

IPPROTO_ICMPV6 = getattr(socket, "IPPROTO_ICMPV6", 58)

PAYLOAD = b"multiping".ljust(56, b"\x00")

ECHO = "echo"
UNREACHABLE = "unreachable"


@dataclass
class Reply:
    family: int
    kind: str
    identifier: int
    sequence: int
    code: int = 0


def checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return (~total) & 0xFFFF


def build_echo_request(family: int, identifier: int, sequence: int, payload: bytes = PAYLOAD) -> bytes:
    if family == socket.AF_INET6:
        # The kernel fills in the ICMPv6 checksum (it covers the pseudo header).
        return struct.pack("!BBHHH", ICMP6_ECHO_REQUEST, 0, 0, identifier, sequence) + payload
    header = struct.pack("!BBHHH", ICMP_ECHO_REQUEST, 0, 0, identifier, sequence)
    csum = checksum(header + payload)
    return struct.pack("!BBHHH", ICMP_ECHO_REQUEST, 0, csum, identifier, sequence) + payload


def parse_reply(family: int, packet: bytes) -> Optional[Reply]:
    """Decode an echo reply or a destination-unreachable error quoting one of
    our echo requests. Everything else yields None.

    IPv4 raw sockets deliver the IP header, IPv6 ones start at the ICMPv6
    header.
    """
    if family == socket.AF_INET:
        if len(packet) < 20:
            return None
        packet = packet[(packet[0] & 0x0F) * 4:]
    if len(packet) < 8:
        return None
    icmp_type, code, _, identifier, sequence = struct.unpack("!BBHHH", packet[:8])

    if family == socket.AF_INET:
        if icmp_type == ICMP_ECHO_REPLY:
            return Reply(family, ECHO, identifier, sequence)
        if icmp_type != ICMP_DEST_UNREACHABLE:
            return None
        inner = packet[8:]
        if len(inner) < 20:
            return None
        quoted = inner[(inner[0] & 0x0F) * 4:]
        request_type = ICMP_ECHO_REQUEST
    else:
        if icmp_type == ICMP6_ECHO_REPLY:
            return Reply(family, ECHO, identifier, sequence)
        if icmp_type != ICMP6_DEST_UNREACHABLE:
            return None
        # 8 byte error header, 40 byte IPv6 header of the invoking packet
        quoted = packet[48:]
        request_type = ICMP6_ECHO_REQUEST

    if len(quoted) < 8:
        return None
    inner_type, _, _, inner_id, inner_seq = struct.unpack("!BBHHH", quoted[:8])
    if inner_type != request_type:
        return None
    return Reply(family, UNREACHABLE, inner_id, inner_seq, code=code)


class PendingEcho:
    """One outstanding echo request. Completed at most once."""

    def __init__(self, address: Address, sequence: int) -> None:
        self.address = address
        self.sequence = sequence
        self.sent_at: Optional[float] = None
        self.received_at: Optional[float] = None
        self.reply: Optional[Reply] = None
        self.aborted = False
        self._event = threading.Event()

    @property
    def key(self) -> Tuple[int, int]:
        return (self.address.family, self.sequence)

    @property
    def rtt(self) -> Optional[float]:
        if self.reply is None or self.sent_at is None or self.received_at is None:
            return None
        return max(0.0, self.received_at - self.sent_at)

    def wait(self, timeout: float) -> bool:
        """Block until a reply arrives, the echo is aborted or `timeout` runs out."""
        return self._event.wait(max(0.0, timeout))

    def _complete(self, reply: Optional[Reply], received_at: Optional[float]) -> bool:
        if self._event.is_set():
            return False
        if reply is None:
            self.aborted = True
        else:
            self.reply = reply
            self.received_at = received_at
        self._event.set()
        return True


SocketFactory = Callable[[int, int, int], socket.socket]


class IcmpTransport:
    def __init__(
        self,
        families: Iterable[int] = (socket.AF_INET, socket.AF_INET6),
        socket_factory: SocketFactory = socket.socket,
        poll_interval: float = 0.1,
    ) -> None:
        self.families = sorted(set(families))
        self.identifier = os.getpid() & 0xFFFF
        self.poll_interval = poll_interval
        self._socket_factory = socket_factory
        self._sockets: Dict[int, socket.socket] = {}
        self._pending: Dict[Tuple[int, int], PendingEcho] = {}
        self._sequence = 0
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stop = threading.Event()
        self._aborted = False
        self._receiver: Optional[threading.Thread] = None

    def open(self) -> "IcmpTransport":
        for family in self.families:
            proto = socket.IPPROTO_ICMP if family == socket.AF_INET else IPPROTO_ICMPV6
            try:
                sock = self._socket_factory(family, socket.SOCK_RAW, proto)
            except PermissionError as exc:
                self.close()
                raise TransportSetupError("cannot create ICMP socket - missing privileges?") from exc
            except OSError as exc:
                self.close()
                raise TransportSetupError(f"cannot create ICMP socket: {exc.strerror or exc}") from exc
            sock.setblocking(False)
            self._sockets[family] = sock
        self._stop.clear()
        self._aborted = False
        self._receiver = threading.Thread(target=self._receive_loop, name="icmp-receiver", daemon=True)
        self._receiver.start()
        logging.debug("ICMP transport open (identifier %#06x)", self.identifier)
        return self

    def close(self) -> None:
        self._stop.set()
        if self._receiver is not None and self._receiver is not threading.current_thread():
            self._receiver.join(timeout=1.0)
        self._receiver = None
        self.abort_pending()
        for sock in self._sockets.values():
            sock.close()
        self._sockets.clear()

    def __enter__(self) -> "IcmpTransport":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def send_echo(self, address: Address) -> PendingEcho:
        """Register and send one echo request. Send errors propagate as OSError."""
        sock = self._sockets.get(address.family)
        if sock is None:
            raise OSError(errno.EAFNOSUPPORT, "no ICMP socket for this address family")
        with self._lock:
            if self._aborted or self._stop.is_set():
                raise OSError(errno.ECANCELED, "ICMP transport aborted")
            pending = PendingEcho(address, self._next_sequence(address.family))
            self._pending[pending.key] = pending
        packet = build_echo_request(address.family, self.identifier, pending.sequence)
        try:
            with self._send_lock:
                pending.sent_at = time.perf_counter()
                sock.sendto(packet, (address.ip, 0))
        except OSError:
            self.discard(pending)
            raise
        return pending

    def discard(self, pending: PendingEcho) -> None:
        with self._lock:
            if self._pending.get(pending.key) is pending:
                del self._pending[pending.key]

    def abort_pending(self) -> None:
        """Wake every waiting probe; their echoes count as unanswered.

        Echo requests sent afterwards are refused with ECANCELED.
        """
        with self._lock:
            self._aborted = True
            waiters: List[PendingEcho] = list(self._pending.values())
            self._pending.clear()
            for pending in waiters:
                pending._complete(None, None)

    def _next_sequence(self, family: int) -> int:
        # caller holds self._lock
        for _ in range(0x10000):
            self._sequence = (self._sequence + 1) & 0xFFFF
            if (family, self._sequence) not in self._pending:
                return self._sequence
        raise OSError(errno.ENOBUFS, "too many outstanding echo requests")

    def _receive_loop(self) -> None:
        by_fd = {sock.fileno(): (family, sock) for family, sock in self._sockets.items()}
        socks = [sock for _, sock in by_fd.values()]
        while not self._stop.is_set():
            try:
                readable, _, _ = select.select(socks, [], [], self.poll_interval)
            except (OSError, ValueError):
                # sockets closed underneath us
                break
            for sock in readable:
                family, _ = by_fd[sock.fileno()]
                try:
                    packet, _ = sock.recvfrom(4096)
                except BlockingIOError:
                    continue
                except OSError as exc:
                    logging.debug("ICMP receive failed: %s", exc)
                    continue
                self.dispatch(parse_reply(family, packet), time.perf_counter())

    def dispatch(self, reply: Optional[Reply], received_at: float) -> bool:
        if reply is None or reply.identifier != self.identifier:
            return False
        with self._lock:
            pending = self._pending.pop((reply.family, reply.sequence), None)
            if pending is None:
                return False
            return pending._complete(reply, received_at)
