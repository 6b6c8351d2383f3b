# tokenstate

A small library for the stored state of a token ledger and for querying that
state over JSON-RPC.

## What it provides

- `tokenstate.storage` holds the binary key layout and the value encoding for
  transactions, balances, assets, orders and loans. It works with any database
  object that has `get_value`, `insert` and `remove`, where `get_value` raises
  `NotFoundError` for a missing key. `MemoryDatabase` is an in-memory store
  that does this. It also has `read_state(keys)`, which returns `None` for
  each missing key. The `*_from_state` functions accept a reader of that kind.
- `tokenstate.address` turns 32-byte public keys into bech32 addresses and
  parses them back: `address(public_key, hrp)` and `parse_address(text, hrp)`.
  Both raise `AddressError` on bad input.
- `tokenstate.ids` writes 32-byte identifiers as base58 text with a 4-byte
  SHA-256 checksum and reads them back: `encode_id(raw)` and
  `decode_id(text)`. Both raise `IDError` on bad input.
- `tokenstate.server.JSONRPCServer` answers the `genesis`, `tx`, `asset`,
  `balance`, `orders` and `loan` methods. It reads from a `Controller` that
  you supply, and it is also a WSGI application.
- `tokenstate.client.JSONRPCClient` calls those methods over HTTP. It can also
  poll until a balance is reached or a transaction is known.

## Installation

```
pip install tokenstate
```

## Storage

```python
from tokenstate.storage import (
    InvalidBalanceError, MemoryDatabase, add_balance, get_balance, sub_balance,
)

db = MemoryDatabase()
owner = bytes(32)
asset = bytes(32)

add_balance(db, owner, asset, 100)
sub_balance(db, owner, asset, 40)
assert get_balance(db, owner, asset) == 60

try:
    sub_balance(db, owner, asset, 1000)
except InvalidBalanceError as exc:
    print(exc)
```

Amounts are unsigned 64-bit values. If an addition would overflow, or a
subtraction would go below zero, the call raises `InvalidBalanceError`.
When a balance or a loan drops to zero, its record is removed instead of being
stored as zero. Reading a missing balance or loan returns zero.

`get_transaction`, `get_asset` and `get_order` return a `TransactionRecord`,
`AssetRecord` or `OrderRecord`, or `None` if the record is missing.
`height_key`, `incoming_warp_key_prefix` and `outgoing_warp_key_prefix` only
build keys. The package reads and writes nothing under them.

## Server

`JSONRPCServer(controller, hrp, namespace)` uses `hrp` to format and parse
addresses. It only answers methods called as `<namespace>.<method>`. The
controller must provide these methods:

- `genesis()`
- `get_transaction(tx_id)`
- `get_asset_from_state(asset)`
- `get_balance_from_state(public_key, asset)`
- `orders(pair, limit)`
- `get_loan_from_state(asset, destination)`

`orders` is called with a limit of 128. If the genesis or an order is a
dataclass, it is converted to a dict in the reply.

`handle(payload)` takes one request, either as a dict or as JSON text, and
returns the reply dict. A missing transaction is reported as `tx not found`,
and a missing asset as `asset not found`. When the server runs as a WSGI app,
it accepts POST only:

```python
from wsgiref.simple_server import make_server
from tokenstate.server import JSONRPCServer

app = JSONRPCServer(my_controller, "token", "tokenapi")
make_server("localhost", 8000, app).serve_forever()
```

## Client

```python
from tokenstate.client import JSONRPCClient

client = JSONRPCClient("http://localhost:8000", bytes(32), "tokenapi")
status = client.tx(tx_id)          # TxStatus or None
if status is not None:
    print(status.success, status.timestamp, status.units)
print(client.balance(addr, asset))
info = client.asset(asset)         # AssetInfo or None
```

The client adds `/tokenapi` to the URI it is given. If the server reports
`tx not found` or `asset not found`, `tx` or `asset` returns `None` instead of
raising. Any other error reply, and any HTTP status other than 200, raises
`RPCError`. The client fetches the genesis once and then caches it.

`wait_for_balance(address, asset, minimum)` and `wait_for_transaction(tx_id)`
poll every `poll_interval` seconds, which defaults to 1. If `wait_timeout` is
set, they raise `TimeoutError` once it has passed. `wait_for_transaction`
returns whether the transaction succeeded.

## What it does not do

This package does not run a ledger node. It does not build, sign or submit
transactions, and it does not produce blocks. It has no genesis model and no
order book. Those must come from the `Controller` you pass to the server. It
has no command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```