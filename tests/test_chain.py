import pytest

from nftkit.binaryutil import BIG_ENDIAN
from nftkit.chain import (
    CHAIN_HOOK_FORWARD,
    CHAIN_HOOK_OUTPUT,
    CHAIN_PRIORITY_FIRST,
    CHAIN_PRIORITY_NAT_DEST,
    DELCHAIN_MESSAGE_TYPE,
    NEWCHAIN_MESSAGE_TYPE,
    NFTA_CHAIN_HOOK,
    NFTA_CHAIN_NAME,
    NFTA_CHAIN_POLICY,
    NFTA_CHAIN_TABLE,
    NFTA_CHAIN_TYPE,
    NFTA_HOOK_DEV,
    NFTA_HOOK_HOOKNUM,
    NFTA_HOOK_PRIORITY,
    Chain,
    ChainPolicy,
    ChainType,
    Table,
    TableFamily,
    chain_from_message,
    hook_from_attributes,
)
from nftkit.netlink import (
    NLA_F_NESTED,
    NLA_TYPE_MASK,
    Attribute,
    Header,
    Message,
    marshal_attributes,
    unmarshal_attributes,
)


def _message(chain, family, mtype=NEWCHAIN_MESSAGE_TYPE):
    return Message(Header(type=mtype), bytes([family, 0, 0, 0]) + marshal_attributes(chain.attributes()))


def _base_chain():
    return Chain(
        name="test-chain",
        table=Table("test-table", TableFamily.INET),
        hooknum=CHAIN_HOOK_OUTPUT,
        priority=CHAIN_PRIORITY_NAT_DEST,
        type=ChainType.NAT,
        policy=ChainPolicy.ACCEPT,
    )


def test_base_chain_attributes():
    attrs = _base_chain().attributes()
    assert [a.type for a in attrs] == [
        NFTA_CHAIN_TABLE,
        NFTA_CHAIN_NAME,
        NLA_F_NESTED | NFTA_CHAIN_HOOK,
        NFTA_CHAIN_POLICY,
        NFTA_CHAIN_TYPE,
    ]
    assert attrs[0].data == b"test-table\x00"
    assert attrs[1].data == b"test-chain\x00"
    assert attrs[3].data == b"\x00\x00\x00\x01"
    assert attrs[4].data == b"nat\x00"


def test_hook_attribute_contents():
    hook = _base_chain().attributes()[2]
    inner = unmarshal_attributes(hook.data)
    assert [a.type for a in inner] == [NFTA_HOOK_HOOKNUM, NFTA_HOOK_PRIORITY]
    assert inner[0].data == BIG_ENDIAN.put_uint32(CHAIN_HOOK_OUTPUT)
    assert inner[1].data == b"\xff\xff\xff\x9c"
    assert hook_from_attributes(hook.data) == (CHAIN_HOOK_OUTPUT, CHAIN_PRIORITY_NAT_DEST)


def test_device_in_hook():
    chain = Chain("ingress", Table("t", TableFamily.NETDEV), hooknum=0, priority=0, device="dummy0")
    hook = next(a for a in chain.attributes() if a.type & NLA_TYPE_MASK == NFTA_CHAIN_HOOK)
    dev = [a for a in unmarshal_attributes(hook.data) if a.type == NFTA_HOOK_DEV]
    assert [a.data for a in dev] == [b"dummy0\x00"]


def test_regular_chain_has_only_names():
    attrs = Chain("plain", Table("t", TableFamily.IPV4)).attributes()
    assert [a.type for a in attrs] == [NFTA_CHAIN_TABLE, NFTA_CHAIN_NAME]


def test_hook_needs_priority():
    attrs = Chain("c", Table("t"), hooknum=CHAIN_HOOK_FORWARD).attributes()
    assert [a.type for a in attrs] == [NFTA_CHAIN_TABLE, NFTA_CHAIN_NAME]
    assert [a.data for a in attrs] == [b"t\x00", b"c\x00"]


def test_chain_without_table():
    with pytest.raises(ValueError):
        Chain("orphan").attributes()


def test_round_trip_through_message():
    chain = _base_chain()
    assert chain_from_message(_message(chain, TableFamily.INET)) == chain


def test_delete_message_parses_and_min_priority():
    chain = Chain("c", Table("t", TableFamily.IPV6), hooknum=CHAIN_HOOK_FORWARD, priority=CHAIN_PRIORITY_FIRST)
    parsed = chain_from_message(_message(chain, TableFamily.IPV6, DELCHAIN_MESSAGE_TYPE))
    assert parsed.priority == CHAIN_PRIORITY_FIRST
    assert parsed.table == Table("t", TableFamily.IPV6)
    assert parsed.policy is None


def test_unknown_family_kept_raw():
    parsed = chain_from_message(_message(Chain("c", Table("t")), 99))
    assert parsed.table.family == 99


def test_wrong_header_type():
    with pytest.raises(ValueError):
        chain_from_message(_message(Chain("c", Table("t")), 2, mtype=NEWCHAIN_MESSAGE_TYPE + 3))


def test_hook_defaults_and_bad_length():
    assert hook_from_attributes(b"") == (0, 0)
    with pytest.raises(ValueError):
        hook_from_attributes(marshal_attributes([Attribute(NFTA_HOOK_HOOKNUM, b"\x01")]))