"""Netlink message framing and sockets for the netfilter subsystem."""

from __future__ import annotations

import enum
import errno
import os
import random
import socket
import struct
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional

__all__ = [
    "HeaderFlags",
    "Header",
    "Message",
    "Attribute",
    "NetlinkError",
    "NetlinkSocket",
    "TestSocket",
    "marshal_attributes",
    "unmarshal_attributes",
    "HEADER_LEN",
    "NLMSG_NOOP",
    "NLMSG_ERROR",
    "NLMSG_DONE",
    "NLMSG_OVERRUN",
    "NLA_F_NESTED",
    "NLA_F_NET_BYTEORDER",
    "NLA_TYPE_MASK",
    "NETLINK_NETFILTER",
    "NFNL_SUBSYS_NFTABLES",
    "NFNL_MSG_BATCH_BEGIN",
    "NFNL_MSG_BATCH_END",
    "NFT_MSG_NEWTABLE",
    "NFT_MSG_GETTABLE",
    "NFT_MSG_DELTABLE",
    "NFT_MSG_NEWCHAIN",
    "NFT_MSG_GETCHAIN",
    "NFT_MSG_DELCHAIN",
    "NFT_MSG_NEWRULE",
    "NFT_MSG_GETRULE",
    "NFT_MSG_DELRULE",
]

NLMSG_NOOP = 1
NLMSG_ERROR = 2
NLMSG_DONE = 3
NLMSG_OVERRUN = 4

NLA_F_NESTED = 0x8000
NLA_F_NET_BYTEORDER = 0x4000
NLA_TYPE_MASK = ~(NLA_F_NESTED | NLA_F_NET_BYTEORDER) & 0xFFFF

NETLINK_NETFILTER = 12

NFNL_SUBSYS_NFTABLES = 10
NFNL_MSG_BATCH_BEGIN = 0x10
NFNL_MSG_BATCH_END = 0x11

NFT_MSG_NEWTABLE = 0
NFT_MSG_GETTABLE = 1
NFT_MSG_DELTABLE = 2
NFT_MSG_NEWCHAIN = 3
NFT_MSG_GETCHAIN = 4
NFT_MSG_DELCHAIN = 5
NFT_MSG_NEWRULE = 6
NFT_MSG_GETRULE = 7
NFT_MSG_DELRULE = 8

_HEADER = struct.Struct("=IHHII")
_ATTR = struct.Struct("=HH")
_ERRNO = struct.Struct("=i")
HEADER_LEN = _HEADER.size
_ATTR_LEN = _ATTR.size
_MAX_ATTR_DATA = 0xFFFF - _ATTR_LEN
_RECV_SIZE = 1 << 18
_CLONE_NEWNET = getattr(os, "CLONE_NEWNET", 0x40000000)


def _align(n: int) -> int:
    return (n + 3) & ~3


class HeaderFlags(enum.IntFlag):
    """Flags of a netlink message header."""

    REQUEST = 0x1
    MULTI = 0x2
    ACKNOWLEDGE = 0x4
    ECHO = 0x8
    DUMP_INTERRUPTED = 0x10
    DUMP_FILTERED = 0x20
    ROOT = 0x100
    MATCH = 0x200
    ATOMIC = 0x400
    DUMP = 0x300
    REPLACE = 0x100
    EXCLUDED = 0x200
    CREATE = 0x400
    APPEND = 0x800


@dataclass(frozen=True)
class Header:
    """A netlink message header; ``length`` is filled in on the wire."""

    type: int = 0
    flags: HeaderFlags = HeaderFlags(0)
    sequence: int = 0
    pid: int = 0
    length: int = 0


@dataclass(frozen=True)
class Message:
    """A netlink message: a header and its payload."""

    header: Header
    data: bytes = b""

    def marshal(self) -> bytes:
        """Encode the message, padded to a four-byte boundary."""
        length = HEADER_LEN + len(self.data)
        raw = _HEADER.pack(
            length,
            self.header.type,
            int(self.header.flags),
            self.header.sequence,
            self.header.pid,
        ) + bytes(self.data)
        return raw + bytes(_align(length) - length)

    @staticmethod
    def unmarshal(data: bytes) -> "Message":
        """Decode the first message in ``data``."""
        if len(data) < HEADER_LEN:
            raise ValueError("netlink message shorter than its header")
        length, mtype, flags, seq, pid = _HEADER.unpack_from(data)
        if length < HEADER_LEN or length > len(data):
            raise ValueError(f"invalid netlink message length {length}")
        header = Header(mtype, HeaderFlags(flags), seq, pid, length)
        return Message(header, bytes(data[HEADER_LEN:length]))


@dataclass(frozen=True)
class Attribute:
    """A netlink attribute; ``type`` may carry the nested/byte-order flags."""

    type: int
    data: bytes = b""


def marshal_attributes(attrs: Iterable[Attribute]) -> bytes:
    """Encode attributes, each padded to a four-byte boundary."""
    parts = []
    for attr in attrs:
        if len(attr.data) > _MAX_ATTR_DATA:
            raise ValueError(
                f"attribute {attr.type} data too long: {len(attr.data)} bytes"
            )
        length = _ATTR_LEN + len(attr.data)
        parts.append(_ATTR.pack(length, attr.type))
        parts.append(bytes(attr.data))
        parts.append(bytes(_align(length) - length))
    return b"".join(parts)


def unmarshal_attributes(data: bytes) -> List[Attribute]:
    """Decode a sequence of attributes, keeping their raw types."""
    view = memoryview(bytes(data))
    attrs = []
    while view:
        if len(view) < _ATTR_LEN:
            raise ValueError("trailing bytes after netlink attributes")
        length, atype = _ATTR.unpack_from(view)
        if length < _ATTR_LEN or length > len(view):
            raise ValueError(f"invalid netlink attribute length {length}")
        attrs.append(Attribute(atype, bytes(view[_ATTR_LEN:length])))
        view = view[min(_align(length), len(view)):]
    return attrs


class NetlinkError(OSError):
    """An error reported by netlink, carrying an errno value."""

    def __init__(self, code: int, message: Optional[str] = None) -> None:
        super().__init__(code, message or os.strerror(code))


def _raise_for_error(msg: Message) -> None:
    if msg.header.type not in (NLMSG_ERROR, NLMSG_DONE):
        return
    if len(msg.data) < _ERRNO.size:
        if msg.header.type == NLMSG_ERROR:
            raise NetlinkError(errno.EBADMSG, "short netlink error message")
        return
    code = _ERRNO.unpack_from(msg.data)[0]
    if code != 0:
        raise NetlinkError(abs(code))


def _split_messages(data: bytes) -> List[Message]:
    messages = []
    offset = 0
    while offset < len(data):
        msg = Message.unmarshal(data[offset:])
        messages.append(msg)
        offset += _align(msg.header.length)
    return messages


class _SocketBase:
    """Sequence numbering, reply collection and error checking."""

    def __init__(self) -> None:
        self._next_seq = random.randrange(1, 0xFFFFFFFF)
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise NetlinkError(errno.EBADF, "use of closed netlink socket")

    def _take_sequence(self) -> int:
        seq = self._next_seq
        self._next_seq = seq % 0xFFFFFFFF + 1
        return seq

    def _write(self, messages: List[Message]) -> None:
        raise NotImplementedError

    def _read(self) -> List[Message]:
        raise NotImplementedError

    def send_messages(self, messages: Iterable[Message]) -> List[Message]:
        """Send messages, assigning sequence numbers where unset.

        Returns the messages as sent.
        """
        self._ensure_open()
        sent = [
            Message(
                replace(
                    msg.header,
                    sequence=msg.header.sequence or self._take_sequence(),
                    length=HEADER_LEN + len(msg.data),
                ),
                msg.data,
            )
            for msg in messages
        ]
        self._write(sent)
        return sent

    def receive(self) -> List[Message]:
        """Receive replies, draining multi-part messages.

        Error messages with a non-zero errno raise :class:`NetlinkError`;
        done markers are dropped.
        """
        self._ensure_open()
        replies: List[Message] = []
        while True:
            batch = self._read()
            if not batch:
                return replies
            for msg in batch:
                _raise_for_error(msg)
                if msg.header.type != NLMSG_DONE:
                    replies.append(msg)
            last = batch[-1]
            if last.header.type == NLMSG_DONE or not last.header.flags & HeaderFlags.MULTI:
                return replies

    def execute(self, message: Message) -> List[Message]:
        """Send one message and return its validated replies."""
        (sent,) = self.send_messages([message])
        replies = self.receive()
        for reply in replies:
            if reply.header.sequence and reply.header.sequence != sent.header.sequence:
                raise NetlinkError(
                    errno.EPROTO, "mismatched sequence in netlink reply"
                )
        return replies


class NetlinkSocket(_SocketBase):
    """A kernel netlink socket, optionally inside another network namespace."""

    def __init__(self, protocol: int = NETLINK_NETFILTER, netns: int = 0) -> None:
        super().__init__()
        self._sock = self._open(protocol, netns)
        try:
            self._sock.bind((0, 0))
        except OSError:
            self._sock.close()
            raise

    @staticmethod
    def _create(protocol: int) -> socket.socket:
        family = getattr(socket, "AF_NETLINK", None)
        if family is None:
            raise NetlinkError(errno.EAFNOSUPPORT, "netlink is not available")
        return socket.socket(family, socket.SOCK_RAW, protocol)

    @classmethod
    def _open(cls, protocol: int, netns: int) -> socket.socket:
        if not netns:
            return cls._create(protocol)
        setns = getattr(os, "setns", None)
        if setns is None:
            raise NetlinkError(
                errno.ENOSYS, "switching network namespaces is not supported"
            )
        original = os.open("/proc/thread-self/ns/net", os.O_RDONLY)
        try:
            setns(netns, _CLONE_NEWNET)
            try:
                return cls._create(protocol)
            finally:
                setns(original, _CLONE_NEWNET)
        finally:
            os.close(original)

    def _write(self, messages: List[Message]) -> None:
        self._sock.sendto(b"".join(m.marshal() for m in messages), (0, 0))

    def _read(self) -> List[Message]:
        return _split_messages(self._sock.recv(_RECV_SIZE))

    def send_messages(self, messages: Iterable[Message]) -> List[Message]:
        return super().send_messages(messages)

    def receive(self) -> List[Message]:
        return super().receive()

    def execute(self, message: Message) -> List[Message]:
        return super().execute(message)

    def close(self) -> None:
        """Close the socket."""
        if not self._closed:
            self._sock.close()
        super().close()


Handler = Callable[[List[Message]], Optional[Iterable[Message]]]


class TestSocket(_SocketBase):
    """An in-memory socket whose replies come from ``handler``.

    The handler receives the messages sent since the last receive and
    returns the replies to them.
    """

    __test__ = False

    def __init__(self, handler: Handler) -> None:
        super().__init__()
        self._handler = handler
        self._pending: List[Message] = []

    def _write(self, messages: List[Message]) -> None:
        self._pending.extend(messages)

    def _read(self) -> List[Message]:
        if not self._pending:
            return []
        requests = list(self._pending)
        self._pending.clear()
        return list(self._handler(requests) or [])

    def send_messages(self, messages: Iterable[Message]) -> List[Message]:
        return super().send_messages(messages)

    def receive(self) -> List[Message]:
        return super().receive()

    def execute(self, message: Message) -> List[Message]:
        return super().execute(message)

    def close(self) -> None:
        """Close the socket; later operations fail."""
        self._pending.clear()
        super().close()