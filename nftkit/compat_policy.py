"""Protocol policy shared between xtables matches/targets and nftables rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

__all__ = [
    "CompatPolicy",
    "CompatConflictError",
    "Match",
    "Target",
    "get_compat_policy",
    "NFT_RULE_COMPAT_F_INV",
    "NFT_RULE_COMPAT_F_MASK",
]

NFT_RULE_COMPAT_F_INV = 1 << 1
NFT_RULE_COMPAT_F_MASK = NFT_RULE_COMPAT_F_INV

IPPROTO_TCP = 6
IPPROTO_UDP = 17
IPPROTO_ESP = 50
IPPROTO_COMP = 108
IPPROTO_SCTP = 132
IPPROTO_UDPLITE = 136


@dataclass(frozen=True)
class CompatPolicy:
    """The protocol (and flags) an xtables extension requires of a rule."""

    proto: int
    flag: int = 0


class CompatConflictError(ValueError):
    """Raised when extensions in one rule require different policies."""


@dataclass
class Match:
    """An xtables match expression."""

    name: str
    rev: int = 0
    info: Any = None


@dataclass
class Target:
    """An xtables target expression."""

    name: str
    rev: int = 0
    info: Any = None


XT_MATCH_COMPAT = {
    "tcp": CompatPolicy(IPPROTO_TCP),
    "udp": CompatPolicy(IPPROTO_UDP),
    "udplite": CompatPolicy(IPPROTO_UDPLITE),
    "tcpmss": CompatPolicy(IPPROTO_TCP),
    "sctp": CompatPolicy(IPPROTO_SCTP),
    "osf": CompatPolicy(IPPROTO_TCP),
    "ipcomp": CompatPolicy(IPPROTO_COMP),
    "esp": CompatPolicy(IPPROTO_ESP),
}

XT_TARGET_COMPAT = {
    "TCPOPTSTRIP": CompatPolicy(IPPROTO_TCP),
    "TCPMSS": CompatPolicy(IPPROTO_TCP),
}


def get_compat_policy(exprs: Iterable[Any]) -> Optional[CompatPolicy]:
    """Return the policy required by the matches and targets in ``exprs``.

    Returns ``None`` when no expression requires one; raises
    :class:`CompatConflictError` when two require different ones.
    """
    found: Optional[CompatPolicy] = None
    source: Any = None
    for item in exprs:
        if isinstance(item, Match):
            policy = XT_MATCH_COMPAT.get(item.name)
        elif isinstance(item, Target):
            policy = XT_TARGET_COMPAT.get(item.name)
        else:
            continue
        if policy is None:
            continue
        if found is None:
            found, source = policy, item
        elif found != policy:
            raise CompatConflictError(
                f"{source!r} and {item!r} have conflicting compat policies "
                f"{found!r} vs {policy!r}"
            )
    return found