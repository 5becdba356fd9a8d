"""Chains, the tables that hold them, and their netlink attributes."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from . import binaryutil
from .netlink import (
    NFNL_SUBSYS_NFTABLES,
    NFT_MSG_DELCHAIN,
    NFT_MSG_NEWCHAIN,
    NLA_F_NESTED,
    NLA_TYPE_MASK,
    Attribute,
    Message,
    marshal_attributes,
    unmarshal_attributes,
)

__all__ = [
    "TableFamily",
    "Table",
    "ChainType",
    "ChainPolicy",
    "Chain",
    "chain_from_message",
    "hook_from_attributes",
]

NFTA_TABLE_NAME = 1

NFTA_CHAIN_TABLE = 1
NFTA_CHAIN_HANDLE = 2
NFTA_CHAIN_NAME = 3
NFTA_CHAIN_HOOK = 4
NFTA_CHAIN_POLICY = 5
NFTA_CHAIN_USE = 6
NFTA_CHAIN_TYPE = 7

NFTA_HOOK_HOOKNUM = 1
NFTA_HOOK_PRIORITY = 2
NFTA_HOOK_DEV = 3

NFTA_RULE_TABLE = 1
NFTA_RULE_CHAIN = 2

# Hook numbers at which a base chain runs.
CHAIN_HOOK_PREROUTING = 0
CHAIN_HOOK_INPUT = 1
CHAIN_HOOK_FORWARD = 2
CHAIN_HOOK_OUTPUT = 3
CHAIN_HOOK_POSTROUTING = 4
CHAIN_HOOK_INGRESS = 0
CHAIN_HOOK_EGRESS = 1

# Priorities relative to netfilter's internal operations.
CHAIN_PRIORITY_FIRST = -(2**31)
CHAIN_PRIORITY_CONNTRACK_DEFRAG = -400
CHAIN_PRIORITY_RAW = -300
CHAIN_PRIORITY_SELINUX_FIRST = -225
CHAIN_PRIORITY_CONNTRACK = -200
CHAIN_PRIORITY_MANGLE = -150
CHAIN_PRIORITY_NAT_DEST = -100
CHAIN_PRIORITY_FILTER = 0
CHAIN_PRIORITY_SECURITY = 50
CHAIN_PRIORITY_NAT_SOURCE = 100
CHAIN_PRIORITY_SELINUX_LAST = 225
CHAIN_PRIORITY_CONNTRACK_HELPER = 300
CHAIN_PRIORITY_CONNTRACK_CONFIRM = 2**31 - 1
CHAIN_PRIORITY_LAST = 2**31 - 1

NEWCHAIN_MESSAGE_TYPE = (NFNL_SUBSYS_NFTABLES << 8) | NFT_MSG_NEWCHAIN
DELCHAIN_MESSAGE_TYPE = (NFNL_SUBSYS_NFTABLES << 8) | NFT_MSG_DELCHAIN

_BIG = binaryutil.BIG_ENDIAN


class TableFamily(enum.IntEnum):
    """Address family of a table."""

    UNSPECIFIED = 0
    INET = 1
    IPV4 = 2
    ARP = 3
    NETDEV = 5
    BRIDGE = 7
    IPV6 = 10


@dataclass
class Table:
    """An nftables table."""

    name: str
    family: Union[TableFamily, int] = TableFamily.UNSPECIFIED


class ChainType(str, enum.Enum):
    """What a base chain is used for."""

    FILTER = "filter"
    ROUTE = "route"
    NAT = "nat"


class ChainPolicy(enum.IntEnum):
    """Default verdict of a base chain."""

    DROP = 0
    ACCEPT = 1


def _cstr(s: str) -> bytes:
    return s.encode("utf-8") + b"\x00"


def _uint32(attr: Attribute) -> int:
    if len(attr.data) != 4:
        raise ValueError(
            f"netlink: attribute {attr.type & NLA_TYPE_MASK} is not a uint32; "
            f"length: {len(attr.data)}"
        )
    return _BIG.uint32(attr.data)


def _to_int32(v: int) -> int:
    return v - (1 << 32) if v & 0x80000000 else v


def _as_enum(cls, value):
    try:
        return cls(value)
    except ValueError:
        return value


@dataclass
class Chain:
    """A chain of rules; a base chain also has a hook and a priority."""

    name: str = ""
    table: Optional[Table] = None
    hooknum: Optional[int] = None
    priority: Optional[int] = None
    type: Optional[Union[ChainType, str]] = None
    policy: Optional[Union[ChainPolicy, int]] = None
    device: str = ""

    def attributes(self) -> List[Attribute]:
        """Return the attributes that describe this chain to the kernel."""
        if self.table is None:
            raise ValueError(f"chain {self.name!r} has no table")
        attrs = [
            Attribute(NFTA_CHAIN_TABLE, _cstr(self.table.name)),
            Attribute(NFTA_CHAIN_NAME, _cstr(self.name)),
        ]
        if self.hooknum is not None and self.priority is not None:
            hook = [
                Attribute(NFTA_HOOK_HOOKNUM, _BIG.put_uint32(int(self.hooknum))),
                Attribute(NFTA_HOOK_PRIORITY, _BIG.put_uint32(int(self.priority) & 0xFFFFFFFF)),
            ]
            if self.device:
                hook.append(Attribute(NFTA_HOOK_DEV, _cstr(self.device)))
            attrs.append(Attribute(NLA_F_NESTED | NFTA_CHAIN_HOOK, marshal_attributes(hook)))
        if self.policy is not None:
            attrs.append(Attribute(NFTA_CHAIN_POLICY, _BIG.put_uint32(int(self.policy))))
        if self.type:
            kind = self.type.value if isinstance(self.type, ChainType) else self.type
            attrs.append(Attribute(NFTA_CHAIN_TYPE, _cstr(kind)))
        return attrs


def hook_from_attributes(data: bytes) -> Tuple[int, int]:
    """Decode a nested hook attribute into ``(hooknum, priority)``."""
    hooknum = 0
    priority = 0
    for attr in unmarshal_attributes(data):
        kind = attr.type & NLA_TYPE_MASK
        if kind == NFTA_HOOK_HOOKNUM:
            hooknum = _uint32(attr)
        elif kind == NFTA_HOOK_PRIORITY:
            priority = _to_int32(_uint32(attr))
    return hooknum, priority


def chain_from_message(msg: Message) -> Chain:
    """Decode a new-chain or delete-chain message."""
    if msg.header.type not in (NEWCHAIN_MESSAGE_TYPE, DELCHAIN_MESSAGE_TYPE):
        raise ValueError(
            f"unexpected header type: got {msg.header.type}, want "
            f"{NEWCHAIN_MESSAGE_TYPE} or {DELCHAIN_MESSAGE_TYPE}"
        )
    if len(msg.data) < 4:
        raise ValueError("chain message lacks the nfnetlink header")
    chain = Chain()
    for attr in unmarshal_attributes(msg.data[4:]):
        kind = attr.type & NLA_TYPE_MASK
        if kind == NFTA_CHAIN_NAME:
            chain.name = binaryutil.string(attr.data)
        elif kind == NFTA_TABLE_NAME:
            chain.table = Table(
                binaryutil.string(attr.data), _as_enum(TableFamily, msg.data[0])
            )
        elif kind == NFTA_CHAIN_TYPE:
            chain.type = _as_enum(ChainType, binaryutil.string(attr.data))
        elif kind == NFTA_CHAIN_POLICY:
            chain.policy = _as_enum(ChainPolicy, _uint32(attr))
        elif kind == NFTA_CHAIN_HOOK:
            chain.hooknum, chain.priority = hook_from_attributes(attr.data)
    return chain