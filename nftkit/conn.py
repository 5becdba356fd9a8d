"""Connections that query and modify the Linux nftables ruleset.

Commands are buffered on a :class:`Conn`; :meth:`Conn.flush` sends them to
the kernel as one batch.
"""

from __future__ import annotations

import errno
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Union

from . import binaryutil
from .chain import (
    NFTA_CHAIN_NAME,
    NFTA_CHAIN_TABLE,
    NFTA_RULE_CHAIN,
    NFTA_RULE_TABLE,
    NFTA_TABLE_NAME,
    Chain,
    Table,
    TableFamily,
    chain_from_message,
)
from .netlink import (
    NETLINK_NETFILTER,
    NFNL_MSG_BATCH_BEGIN,
    NFNL_MSG_BATCH_END,
    NFNL_SUBSYS_NFTABLES,
    NFT_MSG_DELCHAIN,
    NFT_MSG_DELRULE,
    NFT_MSG_DELTABLE,
    NFT_MSG_GETCHAIN,
    NFT_MSG_NEWCHAIN,
    NLMSG_ERROR,
    Attribute,
    Header,
    HeaderFlags,
    Message,
    NetlinkError,
    NetlinkSocket,
    TestSocket,
    marshal_attributes,
)

__all__ = ["Conn", "extra_header", "batch", "receive_ack_aware"]

NFNETLINK_V0 = 0
_MAX_UINT32 = 0xFFFFFFFF
_FATAL_ERRNOS = {errno.EPERM, errno.EACCES, errno.ENOBUFS, errno.ENOMEM}

SockOption = Callable[[Any], None]


def _cstr(s: str) -> bytes:
    return s.encode("utf-8") + b"\x00"


def _nft_type(msg_type: int) -> int:
    return (NFNL_SUBSYS_NFTABLES << 8) | msg_type


def extra_header(family: int, res_id: int) -> bytes:
    """Return the nfnetlink header: family, version and big-endian resource id."""
    return bytes([int(family) & 0xFF, NFNETLINK_V0]) + binaryutil.BIG_ENDIAN.put_uint16(res_id)


@dataclass
class _PendingMessage:
    header: Header
    data: bytes
    rule: Any = None


def batch(messages: Sequence[Any]) -> List[Message]:
    """Wrap messages between nftables batch-begin and batch-end markers."""
    marker_data = extra_header(0, NFNL_SUBSYS_NFTABLES)
    begin = Message(Header(NFNL_MSG_BATCH_BEGIN, HeaderFlags.REQUEST), marker_data)
    end = Message(Header(NFNL_MSG_BATCH_END, HeaderFlags.REQUEST), marker_data)
    return [begin, *(Message(m.header, m.data) for m in messages), end]


def receive_ack_aware(sock: Any, sent_flags: HeaderFlags) -> List[Message]:
    """Receive the reply to a message, then its acknowledgement if one was asked for."""
    if sock is None:
        raise ValueError("netlink conn is not initialized")
    reply = sock.receive()
    if not sent_flags & HeaderFlags.ACKNOWLEDGE:
        return reply
    if sent_flags & HeaderFlags.DUMP == HeaderFlags.DUMP:
        # Dump requests are never acknowledged.
        return reply
    ack = sock.receive()
    if not ack:
        raise NetlinkError(errno.EPROTO, "received an empty ack")
    msg = ack[0]
    if msg.header.type != NLMSG_ERROR:
        raise NetlinkError(
            errno.EPROTO,
            f"expected header {NLMSG_ERROR}, but got {msg.header.type}",
        )
    if binaryutil.BIG_ENDIAN.uint32(msg.data[:4]) != 0:
        raise NetlinkError(errno.EPROTO, f"error delivered in message: {msg.data!r}")
    return reply


class Conn:
    """A netfilter netlink connection that buffers nftables commands.

    With ``lasting`` one socket is opened up front and reused until
    :meth:`close_lasting`; otherwise each operation opens its own socket.
    ``test_dial`` replaces the kernel with a :class:`TestSocket` handler.
    """

    def __init__(
        self,
        netns: int = 0,
        test_dial: Optional[Callable[[List[Message]], Optional[Iterable[Message]]]] = None,
        lasting: bool = False,
        sock_options: Optional[Iterable[SockOption]] = None,
    ) -> None:
        self.netns = netns
        self.test_dial = test_dial
        self._lasting = lasting
        self._sock_options = list(sock_options or [])
        self._lock = threading.Lock()
        self._messages: List[_PendingMessage] = []
        self._err: Optional[Exception] = None
        self._last_id = 0
        self._allocated_ids = 0
        self._sock = self._dial() if lasting else None

    def __enter__(self) -> "Conn":
        return self

    def __exit__(self, *args) -> None:
        self.close_lasting()

    # Sockets

    def _dial(self):
        if self.test_dial is not None:
            sock = TestSocket(self.test_dial)
        else:
            sock = NetlinkSocket(NETLINK_NETFILTER, self.netns)
        try:
            for option in self._sock_options:
                option(sock)
        except BaseException:
            sock.close()
            raise
        return sock

    @contextmanager
    def _socket(self, locked: bool = False) -> Iterator[Any]:
        if locked:
            sock = self._sock
        else:
            with self._lock:
                sock = self._sock
        if sock is not None:
            yield sock
            return
        sock = self._dial()
        try:
            yield sock
        finally:
            sock.close()

    def close_lasting(self) -> None:
        """Close the lasting socket, if any; later operations open transient ones."""
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    # Buffering

    def _set_err(self, err: Exception) -> None:
        if self._err is None:
            self._err = err

    def _marshal_attr(self, attrs: Iterable[Attribute]) -> bytes:
        try:
            return marshal_attributes(attrs)
        except ValueError as exc:
            self._set_err(exc)
            return b""

    def _queue(self, msg_type: int, flags: HeaderFlags, data: bytes, rule: Any = None) -> None:
        self._messages.append(_PendingMessage(Header(_nft_type(msg_type), flags), data, rule))

    def allocate_transaction_id(self) -> int:
        """Allocate an identifier valid only within the current transaction."""
        if self._allocated_ids == _MAX_UINT32:
            raise RuntimeError(
                f"trying to allocate more than {_MAX_UINT32} IDs in a single "
                "nftables transaction"
            )
        self._allocated_ids += 1
        self._last_id = (self._last_id + 1) & _MAX_UINT32
        if self._last_id == 0:
            self._last_id = 1
        return self._last_id

    def flush_ruleset(self) -> None:
        """Queue the removal of the entire ruleset."""
        with self._lock:
            self._queue(
                NFT_MSG_DELTABLE,
                HeaderFlags.REQUEST | HeaderFlags.ACKNOWLEDGE | HeaderFlags.CREATE,
                extra_header(0, 0),
            )

    def add_chain(self, chain: Chain) -> Chain:
        """Queue the creation of ``chain`` and return it."""
        with self._lock:
            data = self._marshal_attr(chain.attributes())
            self._queue(
                NFT_MSG_NEWCHAIN,
                HeaderFlags.REQUEST | HeaderFlags.ACKNOWLEDGE | HeaderFlags.CREATE,
                extra_header(chain.table.family, 0) + data,
            )
        return chain

    def _chain_ref(self, chain: Chain, table_attr: int, chain_attr: int) -> bytes:
        if chain.table is None:
            raise ValueError(f"chain {chain.name!r} has no table")
        return self._marshal_attr(
            [Attribute(table_attr, _cstr(chain.table.name)), Attribute(chain_attr, _cstr(chain.name))]
        )

    def del_chain(self, chain: Chain) -> None:
        """Queue the deletion of ``chain``."""
        with self._lock:
            data = self._chain_ref(chain, NFTA_CHAIN_TABLE, NFTA_CHAIN_NAME)
            self._queue(
                NFT_MSG_DELCHAIN,
                HeaderFlags.REQUEST | HeaderFlags.ACKNOWLEDGE,
                extra_header(chain.table.family, 0) + data,
            )

    def flush_chain(self, chain: Chain) -> None:
        """Queue the removal of every rule in ``chain``."""
        with self._lock:
            data = self._chain_ref(chain, NFTA_RULE_TABLE, NFTA_RULE_CHAIN)
            self._queue(
                NFT_MSG_DELRULE,
                HeaderFlags.REQUEST | HeaderFlags.ACKNOWLEDGE,
                extra_header(chain.table.family, 0) + data,
            )

    # Sending

    def _next_echo(self, index: int) -> int:
        while index < len(self._messages) and not self._messages[index].header.flags & HeaderFlags.ECHO:
            index += 1
        return index

    def flush(self) -> None:
        """Send all buffered commands to the kernel in a single batch."""
        with self._lock:
            try:
                self._flush_locked()
            finally:
                self._messages = []
                self._allocated_ids = 0

    def _flush_locked(self) -> None:
        if not self._messages:
            return
        if self._err is not None:
            raise self._err
        with self._socket(locked=True) as sock:
            sent = sock.send_messages(batch(self._messages))
            errors: List[Exception] = []

            # Messages with the echo flag get a reply of their own type.
            reply_index = self._next_echo(0)
            err: Optional[Exception] = None
            try:
                replies = list(sock.receive())
            except OSError as exc:
                err, replies = exc, []
            while err is None and replies:
                reply = replies.pop(0)
                if reply.header.type == NLMSG_ERROR and reply.header.sequence == sent[1].header.sequence:
                    # The acknowledgement of the first message: no more replies.
                    break
                if reply_index < len(self._messages):
                    msg = sent[reply_index + 1]
                    if msg.header.sequence == reply.header.sequence and msg.header.type == reply.header.type:
                        rule = self._messages[reply_index].rule
                        try:
                            if rule is not None:
                                rule.handle_create_reply(reply)
                        except Exception as exc:
                            errors.append(exc)
                        reply_index = self._next_echo(reply_index + 1)
                if not replies:
                    try:
                        replies = list(sock.receive())
                    except OSError as exc:
                        err, replies = exc, []

            for i in range(len(self._messages)):
                if i != 0:
                    try:
                        sock.receive()
                        err = None
                    except OSError as exc:
                        err = exc
                if err is not None:
                    if getattr(err, "errno", None) in _FATAL_ERRNOS:
                        # The kernel reports only one such error.
                        raise err
                    errors.append(err)

            if errors:
                raise RuntimeError(
                    "conn.receive: " + "; ".join(str(e) for e in errors)
                ) from errors[0]
            if reply_index < len(self._messages):
                raise RuntimeError(f"missing reply for message {reply_index} in batch")

    # Queries

    def list_chains(self) -> List[Chain]:
        """Return every chain configured in the kernel."""
        return self.list_chains_of_table_family(TableFamily.UNSPECIFIED)

    def list_chain(self, table: Table, name: str) -> Chain:
        """Return the chain called ``name`` in ``table``."""
        attrs = [
            Attribute(NFTA_TABLE_NAME, _cstr(table.name)),
            Attribute(NFTA_CHAIN_NAME, _cstr(name)),
        ]
        msg = Message(
            Header(_nft_type(NFT_MSG_GETCHAIN), HeaderFlags.REQUEST),
            extra_header(table.family, 0) + marshal_attributes(attrs),
        )
        with self._socket() as sock:
            response = sock.execute(msg)
        if len(response) != 1:
            raise ValueError(f"expected 1 response message for chain, got {len(response)}")
        return chain_from_message(response[0])

    def list_chains_of_table_family(self, family: Union[TableFamily, int]) -> List[Chain]:
        """Return the chains of one family; all chains for ``UNSPECIFIED``."""
        msg = Message(
            Header(_nft_type(NFT_MSG_GETCHAIN), HeaderFlags.REQUEST | HeaderFlags.DUMP),
            extra_header(family, 0),
        )
        with self._socket() as sock:
            response = sock.execute(msg)
        return [chain_from_message(m) for m in response]