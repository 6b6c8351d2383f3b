"""Key layout and value encoding for token state: transactions, balances, assets, orders, loans."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from tokenstate.ids import encode_id

_ID_LEN = 32
_PUBLIC_KEY_LEN = 32
_UINT64_LEN = 8
_UINT16_LEN = 2
_MAX_UINT64 = (1 << 64) - 1
_MAX_UINT16 = (1 << 16) - 1

_TX_PREFIX = 0x0

_BALANCE_PREFIX = 0x0
_ASSET_PREFIX = 0x1
_ORDER_PREFIX = 0x2
_LOAN_PREFIX = 0x3
_HEIGHT_PREFIX = 0x4
_INCOMING_WARP_PREFIX = 0x5
_OUTGOING_WARP_PREFIX = 0x6

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1

ReadState = Callable[[Sequence[bytes]], Sequence[Optional[bytes]]]


class InvalidBalanceError(ValueError):
    """Raised when a balance or loan would overflow or go negative."""


class NotFoundError(KeyError):
    """Raised by a database when a key is absent."""


class _Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A dictionary-backed key-value store."""

    def __init__(self) -> None:
        self._items: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._items[bytes(key)]
        except KeyError:
            raise NotFoundError(bytes(key)) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._items[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._items.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[Optional[bytes]]:
        """Return the value of each key, or None where a key is absent."""
        return [self._items.get(bytes(key)) for key in keys]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._items

    def __len__(self) -> int:
        return len(self._items)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _fixed(value: bytes, length: int, what: str) -> bytes:
    data = bytes(value)
    if len(data) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(data)}")
    return data


def _u64(value: int, what: str) -> bytes:
    if not 0 <= value <= _MAX_UINT64:
        raise ValueError(f"{what} {value} does not fit in an unsigned 64-bit integer")
    return value.to_bytes(_UINT64_LEN, "big")


def _read_u64(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + _UINT64_LEN], "big")


def _get_optional(db: _Database, key: bytes) -> Optional[bytes]:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


# Transactions: [txPrefix] + [txID] => timestamp|success|units


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([_TX_PREFIX]) + _fixed(tx_id, _ID_LEN, "transaction id")


def store_transaction(db: _Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    """Record when a transaction was accepted, whether it succeeded and the units it used."""
    value = (
        (timestamp & _MAX_UINT64).to_bytes(_UINT64_LEN, "big")
        + bytes([_SUCCESS_BYTE if success else _FAILURE_BYTE])
        + _u64(units, "units")
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: _Database, tx_id: bytes) -> Optional[TransactionRecord]:
    """Return the stored transaction record, or None if there is none."""
    value = _get_optional(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp = int.from_bytes(value[:_UINT64_LEN], "big", signed=True)
    success = value[_UINT64_LEN] != _FAILURE_BYTE
    units = _read_u64(value, _UINT64_LEN + 1)
    return TransactionRecord(timestamp, success, units)


# Balances: [balancePrefix] + [owner] + [asset] => balance


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return (
        bytes([_BALANCE_PREFIX])
        + _fixed(public_key, _PUBLIC_KEY_LEN, "public key")
        + _fixed(asset, _ID_LEN, "asset id")
    )


def _decode_amount(value: Optional[bytes]) -> int:
    return 0 if value is None else _read_u64(value, 0)


def get_balance(db: _Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance of an account in an asset; a missing record is zero."""
    return _decode_amount(_get_optional(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    """Return a balance through a batched state reader."""
    (value,) = read_state([prefix_balance_key(public_key, asset)])
    return _decode_amount(value)


def set_balance(db: _Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _u64(balance, "balance"))


def delete_balance(db: _Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    """Increase a balance, failing on overflow."""
    _u64(amount, "amount")
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_optional(db, key))
    new_balance = balance + amount
    if new_balance > _MAX_UINT64:
        raise InvalidBalanceError(
            f"invalid balance: could not add balance (asset={encode_id(asset)}, "
            f"bal={balance}, addr={bytes(public_key).hex()}, amount={amount})"
        )
    db.insert(key, _u64(new_balance, "balance"))


def sub_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    """Decrease a balance, failing on underflow; a zero balance removes the record."""
    _u64(amount, "amount")
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_optional(db, key))
    if amount > balance:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract balance (asset={encode_id(asset)}, "
            f"bal={balance}, addr={bytes(public_key).hex()}, amount={amount})"
        )
    new_balance = balance - amount
    if new_balance == 0:
        db.remove(key)
        return
    db.insert(key, _u64(new_balance, "balance"))


# Assets: [assetPrefix] + [asset] => metadataLen|metadata|supply|owner|warp


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([_ASSET_PREFIX]) + _fixed(asset, _ID_LEN, "asset id")


def _decode_asset(value: Optional[bytes]) -> Optional[AssetRecord]:
    if value is None:
        return None
    metadata_len = int.from_bytes(value[:_UINT16_LEN], "big")
    offset = _UINT16_LEN + metadata_len
    metadata = value[_UINT16_LEN:offset]
    supply = _read_u64(value, offset)
    offset += _UINT64_LEN
    owner = value[offset : offset + _PUBLIC_KEY_LEN]
    warp = value[offset + _PUBLIC_KEY_LEN] == 0x1
    return AssetRecord(metadata, supply, owner, warp)


def get_asset(db: _Database, asset: bytes) -> Optional[AssetRecord]:
    """Return an asset's record, or None if it does not exist."""
    return _decode_asset(_get_optional(db, prefix_asset_key(asset)))


def get_asset_from_state(read_state: ReadState, asset: bytes) -> Optional[AssetRecord]:
    """Return an asset's record through a batched state reader."""
    (value,) = read_state([prefix_asset_key(asset)])
    return _decode_asset(value)


def set_asset(
    db: _Database, asset: bytes, metadata: bytes, supply: int, owner: bytes, warp: bool
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > _MAX_UINT16:
        raise ValueError(f"metadata of {len(metadata)} bytes is too long")
    value = (
        len(metadata).to_bytes(_UINT16_LEN, "big")
        + metadata
        + _u64(supply, "supply")
        + _fixed(owner, _PUBLIC_KEY_LEN, "owner")
        + bytes([0x1 if warp else 0x0])
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: _Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders: [orderPrefix] + [txID] => in|inTick|out|outTick|remaining|owner


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([_ORDER_PREFIX]) + _fixed(tx_id, _ID_LEN, "order id")


def set_order(
    db: _Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = (
        _fixed(in_asset, _ID_LEN, "in asset")
        + _u64(in_tick, "in tick")
        + _fixed(out_asset, _ID_LEN, "out asset")
        + _u64(out_tick, "out tick")
        + _u64(supply, "supply")
        + _fixed(owner, _PUBLIC_KEY_LEN, "owner")
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: _Database, order: bytes) -> Optional[OrderRecord]:
    """Return an order's record, or None if it does not exist."""
    value = _get_optional(db, prefix_order_key(order))
    if value is None:
        return None
    in_asset = value[:_ID_LEN]
    in_tick = _read_u64(value, _ID_LEN)
    out_start = _ID_LEN + _UINT64_LEN
    out_asset = value[out_start : out_start + _ID_LEN]
    out_tick = _read_u64(value, _ID_LEN * 2 + _UINT64_LEN)
    remaining = _read_u64(value, _ID_LEN * 2 + _UINT64_LEN * 2)
    owner_start = _ID_LEN * 2 + _UINT64_LEN * 3
    owner = value[owner_start : owner_start + _PUBLIC_KEY_LEN]
    return OrderRecord(in_asset, in_tick, out_asset, out_tick, remaining, owner)


def delete_order(db: _Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans: [loanPrefix] + [asset] + [destination] => amount


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return (
        bytes([_LOAN_PREFIX])
        + _fixed(asset, _ID_LEN, "asset id")
        + _fixed(destination, _ID_LEN, "destination")
    )


def get_loan(db: _Database, asset: bytes, destination: bytes) -> int:
    """Return the amount of an asset loaned to a destination chain; missing is zero."""
    return _decode_amount(_get_optional(db, prefix_loan_key(asset, destination)))


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    (value,) = read_state([prefix_loan_key(asset, destination)])
    return _decode_amount(value)


def set_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64(amount, "loan"))


def add_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    """Increase a loan, failing on overflow."""
    _u64(amount, "amount")
    loan = get_loan(db, asset, destination)
    if loan + amount > _MAX_UINT64:
        raise InvalidBalanceError(
            f"invalid balance: could not add loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    set_loan(db, asset, destination, loan + amount)


def sub_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    """Decrease a loan, failing on underflow; a zero loan removes the record."""
    _u64(amount, "amount")
    loan = get_loan(db, asset, destination)
    if amount > loan:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    remaining = loan - amount
    if remaining == 0:
        db.remove(prefix_loan_key(asset, destination))
        return
    set_loan(db, asset, destination, remaining)


def height_key() -> bytes:
    return bytes([_HEIGHT_PREFIX])


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([_INCOMING_WARP_PREFIX])
        + _fixed(source_chain_id, _ID_LEN, "source chain id")
        + _fixed(msg_id, _ID_LEN, "message id")
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([_OUTGOING_WARP_PREFIX]) + _fixed(tx_id, _ID_LEN, "transaction id")