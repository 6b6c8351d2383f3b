"""JSON-RPC service that answers queries about token state."""

from __future__ import annotations

import base64
import dataclasses
import json
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

from tokenstate.address import AddressError, parse_address
from tokenstate.address import address as format_address
from tokenstate.ids import IDError, decode_id
from tokenstate.storage import AssetRecord, TransactionRecord

JSONRPC_ENDPOINT = "/tokenapi"
ORDERS_TO_SEND = 128

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

_EMPTY_ID = bytes(32)


class RPCError(Exception):
    """An error reported over JSON-RPC, carrying its code and message."""

    def __init__(self, message: str, code: int = SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class TxNotFoundError(RPCError):
    """The requested transaction is not known."""

    def __init__(self, message: str = "tx not found", code: int = SERVER_ERROR) -> None:
        super().__init__(message, code)


class AssetNotFoundError(RPCError):
    """The requested asset does not exist."""

    def __init__(self, message: str = "asset not found", code: int = SERVER_ERROR) -> None:
        super().__init__(message, code)


class Controller(Protocol):
    """What the server needs from the node it runs in."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> Optional[TransactionRecord]: ...

    def get_asset_from_state(self, asset: bytes) -> Optional[AssetRecord]: ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> Sequence[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _id_param(params: dict, name: str) -> bytes:
    value = params.get(name)
    if value is None:
        return _EMPTY_ID
    if not isinstance(value, str):
        raise IDError(f"{name} must be a string")
    return decode_id(value)


def _str_param(params: dict, name: str) -> str:
    value = params.get(name, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def _reply(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def _error(request_id: Any, code: int, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "error": {"code": code, "message": message, "data": None},
        "id": request_id,
    }


class JSONRPCServer:
    """Serves token-state queries for one controller under a method namespace."""

    def __init__(self, controller: Controller, hrp: str, namespace: str) -> None:
        self._controller = controller
        self.hrp = hrp
        self.namespace = namespace
        self._handlers: dict[str, tuple[Callable[[dict], tuple], Callable[..., dict]]] = {
            "genesis": (lambda p: (), self.genesis),
            "tx": (lambda p: (_id_param(p, "txId"),), self.tx),
            "asset": (lambda p: (_id_param(p, "asset"),), self.asset),
            "balance": (
                lambda p: (_str_param(p, "address"), _id_param(p, "asset")),
                self._balance,
            ),
            "orders": (lambda p: (_str_param(p, "pair"),), self.orders),
            "loan": (
                lambda p: (_id_param(p, "asset"), _id_param(p, "destination")),
                self.loan,
            ),
        }

    def genesis(self) -> dict:
        return {"genesis": _jsonable(self._controller.genesis())}

    def tx(self, tx_id: bytes) -> dict:
        record = self._controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, asset: bytes) -> dict:
        record = self._controller.get_asset_from_state(asset)
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": format_address(record.owner, self.hrp),
            "warp": record.warp,
        }

    def balance(self, address: str) -> dict:
        """Balance of the native asset held by ``address``."""
        return self._balance(address, _EMPTY_ID)

    def _balance(self, address: str, asset: bytes) -> dict:
        public_key = parse_address(address, self.hrp)
        return {"amount": self._controller.get_balance_from_state(public_key, asset)}

    def orders(self, pair: str) -> dict:
        orders: Iterable[Any] = self._controller.orders(pair, ORDERS_TO_SEND)
        return {"orders": [_jsonable(order) for order in orders]}

    def loan(self, asset: bytes, destination: bytes) -> dict:
        return {"amount": self._controller.get_loan_from_state(asset, destination)}

    def handle(self, payload: Any) -> dict:
        """Answer one JSON-RPC request given as a dict or as raw JSON text."""
        if isinstance(payload, (bytes, bytearray, str)):
            try:
                request = json.loads(payload)
            except ValueError as exc:
                return _error(None, PARSE_ERROR, f"rpc: could not decode request: {exc}")
        else:
            request = payload
        if not isinstance(request, dict):
            return _error(None, INVALID_REQUEST, "rpc: invalid request")
        request_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str):
            return _error(request_id, INVALID_REQUEST, "rpc: method must be a string")

        service, _, name = method.rpartition(".")
        entry = self._handlers.get(name.lower()) if service == self.namespace else None
        if entry is None:
            return _error(request_id, METHOD_NOT_FOUND, f"rpc: can't find method {method}")
        decode, call = entry

        params = request.get("params")
        if params is None:
            params = {}
        elif isinstance(params, list):
            params = params[0] if params else {}
        if not isinstance(params, dict):
            return _error(request_id, INVALID_PARAMS, "rpc: params must be an object")

        try:
            args = decode(params)
        except (IDError, TypeError) as exc:
            return _error(request_id, INVALID_PARAMS, str(exc))
        try:
            result = call(*args)
        except RPCError as exc:
            return _error(request_id, exc.code, exc.message)
        except AddressError as exc:
            return _error(request_id, SERVER_ERROR, str(exc))
        return _reply(request_id, result)

    def __call__(self, environ: dict, start_response: Callable) -> list[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        if method != "POST":
            body = f"rpc: POST method required, received {method}".encode()
            start_response(
                "405 Method Not Allowed",
                [("Content-Type", "text/plain; charset=utf-8"), ("Content-Length", str(len(body)))],
            )
            return [body]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        raw = environ["wsgi.input"].read(length) if length > 0 else b""
        body = json.dumps(self.handle(raw), default=_json_default).encode()
        start_response(
            "200 OK",
            [("Content-Type", "application/json; charset=utf-8"), ("Content-Length", str(len(body)))],
        )
        return [body]