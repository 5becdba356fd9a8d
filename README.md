# nftkit

A Python library for managing Linux nftables chains over netlink.

Commands are queued on a `Conn` and sent to the kernel as one batch
when `flush()` is called, so a set of changes is applied together or
not at all.

## Installation

```
pip install nftkit
```

There are no runtime dependencies. Speaking to the kernel requires
Linux and the `CAP_NET_ADMIN` capability.

## Example

```python
from nftkit.chain import (
    CHAIN_HOOK_INPUT,
    CHAIN_PRIORITY_FILTER,
    Chain,
    ChainPolicy,
    ChainType,
    Table,
    TableFamily,
)
from nftkit.conn import Conn

table = Table(name="filter", family=TableFamily.INET)

with Conn() as conn:
    conn.add_chain(
        Chain(
            name="input",
            table=table,
            hooknum=CHAIN_HOOK_INPUT,
            priority=CHAIN_PRIORITY_FILTER,
            type=ChainType.FILTER,
            policy=ChainPolicy.ACCEPT,
        )
    )
    conn.flush()

    for chain in conn.list_chains():
        print(chain.table.name, chain.name, chain.hooknum, chain.priority)
```

The table must already exist in the kernel; this package has no
command to create one.

## The connection

`nftkit.conn.Conn(netns=0, test_dial=None, lasting=False, sock_options=None)`

- `add_chain(chain)`, `del_chain(chain)`, `flush_chain(chain)` (remove
  every rule in the chain) and `flush_ruleset()` queue commands.
- `flush()` sends the queued commands wrapped in batch-begin and
  batch-end markers, collects the acknowledgements, and clears the
  queue whether or not it succeeded. Errors from the kernel are raised;
  permission and out-of-memory errors are raised as they are, other
  receive errors are gathered into a `RuntimeError`.
- `list_chains()`, `list_chains_of_table_family(family)` and
  `list_chain(table, name)` query the kernel straight away and return
  `Chain` objects.
- `allocate_transaction_id()` hands out identifiers valid for the
  current batch.

By default each operation opens its own netlink socket. With
`lasting=True` one socket is opened up front and reused until
`close_lasting()` is called or the `with` block is left. `netns` is a
file descriptor of a network namespace to open sockets in, and each
callable in `sock_options` is called with every new socket.

## Testing without a kernel

Pass `test_dial=` a handler and the connection talks to a
`nftkit.netlink.TestSocket` instead. The handler receives the messages
sent since the last receive and returns the replies to them:

```python
from nftkit.conn import Conn

sent = []

def handler(requests):
    sent.extend(requests)
    return []

conn = Conn(test_dial=handler)
conn.flush_ruleset()
conn.flush()
assert len(sent) == 3  # batch begin, delete table, batch end
```

## Modules

- `nftkit.conn`: `Conn`, plus `extra_header`, `batch` and
  `receive_ack_aware`
- `nftkit.chain`: `Table`, `TableFamily`, `Chain`, `ChainType`,
  `ChainPolicy`, the `CHAIN_HOOK_*` and `CHAIN_PRIORITY_*` constants,
  and `chain_from_message` / `hook_from_attributes` for decoding
  kernel replies
- `nftkit.counter`: `CounterObj`, which decodes the byte and packet
  counts of a named counter from its netlink attributes
- `nftkit.compat_policy`: `get_compat_policy`, which works out the
  protocol that the xtables `Match` and `Target` expressions of a rule
  require, raising `CompatConflictError` when they disagree
- `nftkit.netlink`: `Message`, `Header`, `HeaderFlags`, `Attribute`,
  `marshal_attributes`, `unmarshal_attributes`, `NetlinkSocket`,
  `TestSocket` and `NetlinkError`
- `nftkit.binaryutil`: `NATIVE_ENDIAN` and `BIG_ENDIAN` byte orders and
  int32 and string helpers
- `nftkit.alignedbuff`: `AlignedBuff`, which reads and writes values
  with the host's C alignment, raising `AlignedBuffEOF` past the end

## What it does not do

The package manages chains only. It cannot create, list or delete
tables, rules, sets, flowtables or named objects, and it does not
encode rule expressions: `Match` and `Target` carry a name and a
payload for the compatibility check, and `CounterObj` can only be
decoded, not sent to the kernel. There is no command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```