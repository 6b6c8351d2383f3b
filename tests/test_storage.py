import pytest

from tokenstate import storage
from tokenstate.storage import (
    AssetRecord,
    InvalidBalanceError,
    MemoryDatabase,
    NotFoundError,
    OrderRecord,
    TransactionRecord,
)

MAX_UINT64 = 18446744073709551615

PK = bytes(range(32))
PK2 = bytes(range(32, 64))
ASSET = b"\x11" * 32
ASSET2 = b"\x22" * 32
TX = b"\x33" * 32
DEST = b"\x44" * 32


@pytest.fixture
def db():
    return MemoryDatabase()


def test_memory_database_basic_operations(db):
    with pytest.raises(NotFoundError):
        db.get_value(b"k")
    db.insert(b"k", b"v")
    assert db.get_value(b"k") == b"v"
    assert db.read_state([b"k", b"missing"]) == [b"v", None]
    db.remove(b"k")
    assert b"k" not in db
    db.remove(b"k")
    assert len(db) == 0


def test_key_layouts():
    assert storage.prefix_tx_key(TX) == b"\x00" + TX
    assert storage.prefix_balance_key(PK, ASSET) == b"\x00" + PK + ASSET
    assert storage.prefix_asset_key(ASSET) == b"\x01" + ASSET
    assert storage.prefix_order_key(TX) == b"\x02" + TX
    assert storage.prefix_loan_key(ASSET, DEST) == b"\x03" + ASSET + DEST
    assert storage.height_key() == b"\x04"
    assert storage.incoming_warp_key_prefix(DEST, TX) == b"\x05" + DEST + TX
    assert storage.outgoing_warp_key_prefix(TX) == b"\x06" + TX


def test_key_rejects_wrong_length():
    with pytest.raises(ValueError):
        storage.prefix_asset_key(b"\x01" * 5)


def test_transaction_wire_bytes(db):
    storage.store_transaction(db, TX, 1, True, 2)
    expected = b"\x00" * 7 + b"\x01" + b"\x01" + b"\x00" * 7 + b"\x02"
    assert db.get_value(storage.prefix_tx_key(TX)) == expected


@pytest.mark.parametrize("timestamp,success,units", [(1_700_000_000, True, 472), (-5, False, 0)])
def test_transaction_round_trip(db, timestamp, success, units):
    storage.store_transaction(db, TX, timestamp, success, units)
    assert storage.get_transaction(db, TX) == TransactionRecord(timestamp, success, units)


def test_missing_transaction(db):
    assert storage.get_transaction(db, TX) is None


def test_balance_missing_is_zero(db):
    assert storage.get_balance(db, PK, ASSET) == 0
    assert storage.get_balance_from_state(db.read_state, PK, ASSET) == 0


def test_set_and_get_balance(db):
    storage.set_balance(db, PK, ASSET, 1000000000000)
    assert storage.get_balance(db, PK, ASSET) == 1000000000000
    assert storage.get_balance_from_state(db.read_state, PK, ASSET) == 1000000000000
    assert storage.get_balance(db, PK2, ASSET) == 0
    assert storage.get_balance(db, PK, ASSET2) == 0


def test_add_then_sub_restores_balance(db):
    storage.set_balance(db, PK, ASSET, 5000)
    storage.add_balance(db, PK, ASSET, 100000)
    storage.sub_balance(db, PK, ASSET, 100000)
    assert storage.get_balance(db, PK, ASSET) == 5000


def test_add_to_missing_balance(db):
    storage.add_balance(db, PK, ASSET, 5000)
    assert storage.get_balance(db, PK, ASSET) == 5000


def test_add_balance_overflow(db):
    storage.set_balance(db, PK, ASSET, MAX_UINT64)
    with pytest.raises(InvalidBalanceError, match="invalid balance"):
        storage.add_balance(db, PK, ASSET, 1)
    assert storage.get_balance(db, PK, ASSET) == MAX_UINT64


def test_sub_balance_underflow(db):
    storage.set_balance(db, PK, ASSET, 10)
    with pytest.raises(InvalidBalanceError, match="could not subtract balance"):
        storage.sub_balance(db, PK, ASSET, 20)
    assert storage.get_balance(db, PK, ASSET) == 10


def test_sub_balance_to_zero_removes_record(db):
    storage.set_balance(db, PK, ASSET, 5000)
    storage.sub_balance(db, PK, ASSET, 5000)
    assert storage.prefix_balance_key(PK, ASSET) not in db
    assert storage.get_balance(db, PK, ASSET) == 0


def test_delete_balance(db):
    storage.set_balance(db, PK, ASSET, 15)
    storage.delete_balance(db, PK, ASSET)
    assert storage.get_balance(db, PK, ASSET) == 0


def test_set_balance_rejects_out_of_range(db):
    with pytest.raises(ValueError):
        storage.set_balance(db, PK, ASSET, MAX_UINT64 + 1)


@pytest.mark.parametrize("metadata,warp", [(b"", False), (b"blah", True), (b"1", False)])
def test_asset_round_trip(db, metadata, warp):
    storage.set_asset(db, ASSET, metadata, 2900, PK, warp)
    expected = AssetRecord(metadata, 2900, PK, warp)
    assert storage.get_asset(db, ASSET) == expected
    assert storage.get_asset_from_state(db.read_state, ASSET) == expected


def test_asset_value_layout(db):
    storage.set_asset(db, ASSET, b"blah", 10, PK, True)
    value = db.get_value(storage.prefix_asset_key(ASSET))
    assert value[:2] == (4).to_bytes(2, "big")
    assert value[2:6] == b"blah"
    assert value[-1:] == b"\x01"
    assert value[-33:-1] == PK


def test_missing_and_deleted_asset(db):
    assert storage.get_asset(db, ASSET) is None
    storage.set_asset(db, ASSET, b"x", 1, PK, False)
    storage.delete_asset(db, ASSET)
    assert storage.get_asset(db, ASSET) is None
    assert storage.get_asset_from_state(db.read_state, ASSET) is None


def test_order_round_trip(db):
    storage.set_order(db, TX, ASSET, 4, ASSET2, 1, 5, PK2)
    assert storage.get_order(db, TX) == OrderRecord(ASSET, 4, ASSET2, 1, 5, PK2)


def test_missing_and_deleted_order(db):
    assert storage.get_order(db, TX) is None
    storage.set_order(db, TX, ASSET, 1, ASSET2, 2, 4, PK)
    storage.delete_order(db, TX)
    assert storage.get_order(db, TX) is None


def test_loan_operations(db):
    assert storage.get_loan(db, ASSET, DEST) == 0
    storage.add_loan(db, ASSET, DEST, 5000)
    assert storage.get_loan(db, ASSET, DEST) == 5000
    assert storage.get_loan_from_state(db.read_state, ASSET, DEST) == 5000
    storage.sub_loan(db, ASSET, DEST, 5000)
    assert storage.prefix_loan_key(ASSET, DEST) not in db


def test_loan_overflow_and_underflow(db):
    storage.set_loan(db, ASSET, DEST, MAX_UINT64)
    with pytest.raises(InvalidBalanceError, match="could not add loan"):
        storage.add_loan(db, ASSET, DEST, 1)
    storage.set_loan(db, ASSET, DEST, 100)
    with pytest.raises(InvalidBalanceError, match="could not subtract loan"):
        storage.sub_loan(db, ASSET, DEST, 2000)
    assert storage.get_loan(db, ASSET, DEST) == 100


def test_sub_loan_partial_keeps_record(db):
    storage.set_loan(db, ASSET, DEST, 2900)
    storage.sub_loan(db, ASSET, DEST, 900)
    storage.add_loan(db, ASSET, DEST, 900)
    assert storage.get_loan(db, ASSET, DEST) == 2900


def test_read_state_errors_propagate():
    def failing(keys):
        raise RuntimeError("read failed")

    with pytest.raises(RuntimeError, match="read failed"):
        storage.get_balance_from_state(failing, PK, ASSET)