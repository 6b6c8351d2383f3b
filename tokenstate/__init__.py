"""Token ledger state layout, bech32 addresses, identifiers, and a JSON-RPC client and server."""

__version__ = "0.0.1"
__all__ = ["address", "client", "ids", "server", "storage"]