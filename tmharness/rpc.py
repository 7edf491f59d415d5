"""Tendermint JSON-RPC transport for the merkleeyes key/value app.

Every register operation, reads included, is submitted as a transaction
through ``broadcast_tx_commit`` so it is ordered by consensus. Transactions
are ``nonce(12) | type(1) | byte slices``; byte slices use the go-wire
layout of a one-byte length-of-length, the big-endian length, then the data.
Keys are decimal strings and values JSON text. Tendermint 0.10 returns
``deliver_tx.data`` hex-encoded; anything that does not decode as hex JSON is
reported as a ``malformed-value`` RPC error.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any, Dict, Optional

import requests

from tmharness.errors import (
    RPCConnectionRefused,
    RPCError,
    RPCTimeout,
    Unauthorized,
    UnknownAddress,
)
from tmharness.types import Node

logger = logging.getLogger(__name__)

DEFAULT_PORT: int = 46657
NONCE_LENGTH: int = 12

TX_SET: int = 0x01
TX_REMOVE: int = 0x02
TX_GET: int = 0x03
TX_CAS: int = 0x04

# ABCI result codes
CODES: Dict[int, str] = {
    0: "ok",
    1: "internal-error",
    2: "encoding-error",
    3: "bad-nonce",
    4: "unauthorized",
    5: "insufficient-funds",
    6: "unknown-request",
    101: "base-duplicate-address",
    102: "base-encoding-error",
    103: "base-insufficient-fees",
    104: "base-insufficient-funds",
    105: "base-insufficient-gas-price",
    106: "base-invalid-input",
    107: "base-invalid-output",
    108: "base-invalid-pubkey",
    109: "base-invalid-sequence",
    110: "base-invalid-signature",
    111: "base-unknown-address",
    112: "base-unknown-pubkey",
    113: "base-unknown-plugin",
}

_ERRORS = {
    "unauthorized": Unauthorized,
    "base-unknown-address": UnknownAddress,
}


# --------------------------------------------------------------------------------------
# Codec
# --------------------------------------------------------------------------------------


def encode_uvarint(n: int) -> bytes:
    if n < 0:
        raise ValueError("length must be non-negative")
    if n == 0:
        return b"\x00"
    body = n.to_bytes((n.bit_length() + 7) // 8, "big")
    return bytes([len(body)]) + body


def encode_bytes(data: bytes) -> bytes:
    return encode_uvarint(len(data)) + data


def encode_key(key: Any) -> bytes:
    return str(key).encode("utf-8")


def encode_value(value: Any) -> bytes:
    return json.dumps(value).encode("utf-8")


def decode_value(data: Optional[bytes]) -> Any:
    if not data:
        return None
    return json.loads(data.decode("utf-8"))


def build_tx(tx_type: int, *parts: bytes, nonce: Optional[bytes] = None) -> bytes:
    """Assemble a merkleeyes transaction."""
    nonce = nonce if nonce is not None else secrets.token_bytes(NONCE_LENGTH)
    if len(nonce) != NONCE_LENGTH:
        raise ValueError(f"nonce must be {NONCE_LENGTH} bytes")
    return nonce + bytes([tx_type]) + b"".join(encode_bytes(part) for part in parts)


def check_result(result: Dict[str, Any]) -> None:
    """Raise the matching :class:`RPCError` for a non-zero ABCI result."""
    code = int(result.get("code") or 0)
    if code == 0:
        return
    kind = CODES.get(code, f"code-{code}")
    raise _ERRORS.get(kind, RPCError)(code, kind, result.get("log", ""))


# --------------------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------------------


class TendermintRPC:
    """Blocking RPC client bound to one node."""

    def __init__(
        self,
        node: Node,
        *,
        port: int = DEFAULT_PORT,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.node = node
        self.base_url = f"http://{node}:{port}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def call(self, method: str, **params: str) -> Dict[str, Any]:
        """Invoke an RPC method and return its ``result`` object.

        Raises:
            RPCConnectionRefused: the node could not be reached.
            RPCTimeout: the node did not answer within :attr:`timeout`.
            RPCError: the transfer broke off or the response was not usable.
        """
        url = f"{self.base_url}/{method}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            # ConnectTimeout subclasses both Timeout and ConnectionError; the
            # request may already be queued on the node, so treat it as a timeout.
            raise RPCTimeout(self.node, f"{method} timed out after {self.timeout}s") from exc
        except requests.exceptions.ConnectionError as exc:
            raise RPCConnectionRefused(self.node, f"{method}: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            # e.g. a response cut off mid-body by a partition
            raise RPCError(-1, "transport-error", f"{type(exc).__name__}: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise RPCError(-1, "malformed-response", f"HTTP {resp.status_code}: {resp.text[:200]}") from exc
        if body.get("error"):
            raise RPCError(-1, "rpc-error", str(body["error"]))
        return body.get("result") or {}

    def broadcast(self, tx: bytes) -> Dict[str, Any]:
        """Submit *tx* and wait for it to be committed; return ``deliver_tx``."""
        result = self.call("broadcast_tx_commit", tx="0x" + tx.hex())
        check_result(result.get("check_tx") or {})
        deliver = result.get("deliver_tx") or {}
        check_result(deliver)
        return deliver

    def read(self, key: Any) -> Any:
        deliver = self.broadcast(build_tx(TX_GET, encode_key(key)))
        data = deliver.get("data") or ""
        try:
            return decode_value(bytes.fromhex(data))
        except ValueError as exc:
            raise RPCError(-1, "malformed-value", f"{data[:64]!r}: {exc}") from exc

    def write(self, key: Any, value: Any) -> None:
        self.broadcast(build_tx(TX_SET, encode_key(key), encode_value(value)))

    def cas(self, key: Any, old: Any, new: Any) -> None:
        self.broadcast(build_tx(TX_CAS, encode_key(key), encode_value(old), encode_value(new)))

    def close(self) -> None:
        self.session.close()
