"""Named counter objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from . import binaryutil
from .chain import Table, TableFamily
from .netlink import NLA_TYPE_MASK, unmarshal_attributes

__all__ = ["CounterObj", "NFTA_COUNTER_BYTES", "NFTA_COUNTER_PACKETS"]

NFTA_COUNTER_BYTES = 1
NFTA_COUNTER_PACKETS = 2


@dataclass
class CounterObj:
    """A stateful counter object kept in a table."""

    table: Optional[Table]
    name: str
    bytes: int = 0
    packets: int = 0

    def unmarshal(self, data: bytes) -> None:
        """Update the counts from the object's netlink attributes."""
        for attr in unmarshal_attributes(data):
            kind = attr.type & NLA_TYPE_MASK
            if kind not in (NFTA_COUNTER_BYTES, NFTA_COUNTER_PACKETS):
                continue
            if len(attr.data) != 8:
                raise ValueError(
                    f"netlink: attribute {kind} is not a uint64; length: {len(attr.data)}"
                )
            value = binaryutil.BIG_ENDIAN.uint64(attr.data)
            if kind == NFTA_COUNTER_BYTES:
                self.bytes = value
            else:
                self.packets = value

    def family(self) -> Union[TableFamily, int]:
        """Return the family of the table holding the counter."""
        if self.table is None:
            raise ValueError(f"counter {self.name!r} has no table")
        return self.table.family