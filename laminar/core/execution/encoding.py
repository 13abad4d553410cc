"""
Canonical binary encoding for Aptos transactions.

The node accepts BCS encoded signed transactions. This module provides:
- `Serializer`: BCS primitives (ULEB128 lengths, little-endian integers)
- `normalize_address(addr)`: 0x-prefixed, zero padded, lower-case form
- `parse_type_tag(tag)`: Move type tag string -> nested tuple form
- `raw_transaction_bytes(...)`: BCS of a RawTransaction with an entry function payload
- `signing_message(raw)`: domain separated bytes handed to the signer
- `signed_transaction_bytes(raw, public_key, signature)`: submission body
- `transaction_hash(signed)`: hash the node reports for the transaction
"""

from __future__ import annotations

import hashlib
import re
from typing import List, Sequence, Tuple, Union

ADDRESS_LENGTH = 32
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

RAW_TRANSACTION_SALT = b"APTOS::RawTransaction"
TRANSACTION_SALT = b"APTOS::Transaction"

# TransactionPayload / TransactionAuthenticator / Transaction variant indices
PAYLOAD_ENTRY_FUNCTION = 2
AUTHENTICATOR_ED25519 = 0
TRANSACTION_USER = 0

_TYPE_TAG_VARIANTS = {
    "bool": 0,
    "u8": 1,
    "u64": 2,
    "u128": 3,
    "address": 4,
    "signer": 5,
    # vector = 6, struct = 7
    "u16": 8,
    "u32": 9,
    "u256": 10,
}
_VECTOR_VARIANT = 6
_STRUCT_VARIANT = 7

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# ("vector", inner) | ("struct", address, module, name, (type args...)) | primitive name
TypeTag = Union[str, Tuple]


class EncodingError(ValueError):
    """Raised when a value cannot be represented canonically."""


def _sha3(data: bytes) -> bytes:
    return hashlib.sha3_256(data).digest()


# -----------------------------------------------------------------------------
# BCS primitives
# -----------------------------------------------------------------------------


class Serializer:
    """Append-only BCS writer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def output(self) -> bytes:
        return bytes(self._buf)

    def uleb128(self, value: int) -> "Serializer":
        if value < 0 or value > 0xFFFFFFFF:
            raise EncodingError(f"uleb128 length out of range: {value}")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def _uint(self, value: int, width: int) -> "Serializer":
        if not isinstance(value, int) or isinstance(value, bool):
            raise EncodingError(f"expected int, got {type(value).__name__}")
        if value < 0 or value >= 1 << (8 * width):
            raise EncodingError(f"u{8 * width} out of range: {value}")
        self._buf += value.to_bytes(width, "little")
        return self

    def u8(self, value: int) -> "Serializer":
        return self._uint(value, 1)

    def u16(self, value: int) -> "Serializer":
        return self._uint(value, 2)

    def u32(self, value: int) -> "Serializer":
        return self._uint(value, 4)

    def u64(self, value: int) -> "Serializer":
        return self._uint(value, 8)

    def u128(self, value: int) -> "Serializer":
        return self._uint(value, 16)

    def u256(self, value: int) -> "Serializer":
        return self._uint(value, 32)

    def bool(self, value: bool) -> "Serializer":
        if not isinstance(value, bool):
            raise EncodingError(f"expected bool, got {type(value).__name__}")
        self._buf.append(1 if value else 0)
        return self

    def fixed_bytes(self, value: bytes) -> "Serializer":
        self._buf += value
        return self

    def to_bytes(self, value: bytes) -> "Serializer":
        self.uleb128(len(value))
        self._buf += value
        return self

    def str(self, value: str) -> "Serializer":
        return self.to_bytes(value.encode("utf-8"))

    def address(self, value: str) -> "Serializer":
        return self.fixed_bytes(address_bytes(value))

    def type_tag(self, tag: TypeTag) -> "Serializer":
        if isinstance(tag, str):
            self.uleb128(_TYPE_TAG_VARIANTS[tag])
        elif tag[0] == "vector":
            self.uleb128(_VECTOR_VARIANT)
            self.type_tag(tag[1])
        else:
            _, address, module, name, type_args = tag
            self.uleb128(_STRUCT_VARIANT)
            self.address(address)
            self.str(module)
            self.str(name)
            self.uleb128(len(type_args))
            for arg in type_args:
                self.type_tag(arg)
        return self


# Single-value helpers for entry function arguments (each argument is its own BCS blob)


def encode_u8(value: int) -> bytes:
    return Serializer().u8(value).output()


def encode_u64(value: int) -> bytes:
    return Serializer().u64(value).output()


def encode_u128(value: int) -> bytes:
    return Serializer().u128(value).output()


def encode_bool(value: bool) -> bytes:
    return Serializer().bool(value).output()


def encode_address(value: str) -> bytes:
    return Serializer().address(value).output()


# -----------------------------------------------------------------------------
# Addresses and type tags
# -----------------------------------------------------------------------------


def address_bytes(address: str) -> bytes:
    """Decode a hex account address (short forms like ``0x1`` allowed)."""
    if not isinstance(address, str):
        raise EncodingError(f"address must be a string, got {type(address).__name__}")
    raw = address[2:] if address.lower().startswith("0x") else address
    if not raw or len(raw) > ADDRESS_LENGTH * 2:
        raise EncodingError(f"invalid address: {address!r}")
    try:
        return bytes.fromhex(raw.rjust(ADDRESS_LENGTH * 2, "0"))
    except ValueError as e:
        raise EncodingError(f"invalid address: {address!r}") from e


def normalize_address(address: str) -> str:
    """Return the long ``0x`` + 64 hex form used as an identity key."""
    return "0x" + address_bytes(address).hex()


def _split_type_args(body: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(body):
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(body[start:i].strip())
            start = i + 1
    parts.append(body[start:].strip())
    return [p for p in parts if p]


def parse_type_tag(tag: str) -> TypeTag:
    """
    Parse a Move type tag string.

    >>> parse_type_tag("u64")
    'u64'
    >>> parse_type_tag("0x1::aptos_coin::AptosCoin")[2:4]
    ('aptos_coin', 'AptosCoin')
    """
    tag = tag.strip()
    if tag in _TYPE_TAG_VARIANTS:
        return tag

    if tag.startswith("vector<") and tag.endswith(">"):
        return ("vector", parse_type_tag(tag[len("vector<"):-1]))

    type_args: Tuple[TypeTag, ...] = ()
    head = tag
    if "<" in tag:
        if not tag.endswith(">"):
            raise EncodingError(f"unbalanced type arguments in {tag!r}")
        head, _, rest = tag.partition("<")
        type_args = tuple(parse_type_tag(t) for t in _split_type_args(rest[:-1]))

    pieces = head.split("::")
    if len(pieces) != 3:
        raise EncodingError(f"invalid struct tag: {tag!r}")
    address, module, name = pieces
    for ident in (module, name):
        if not _IDENTIFIER.match(ident):
            raise EncodingError(f"invalid identifier {ident!r} in {tag!r}")
    return ("struct", normalize_address(address), module, name, type_args)


def same_address(left: str, right: str) -> bool:
    try:
        return address_bytes(left) == address_bytes(right)
    except EncodingError:
        return False


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------


def entry_function_bytes(
    module_address: str,
    module_name: str,
    function: str,
    type_args: Sequence[str],
    args: Sequence[bytes],
) -> bytes:
    """BCS of ``TransactionPayload::EntryFunction``."""
    s = Serializer()
    s.uleb128(PAYLOAD_ENTRY_FUNCTION)
    s.address(module_address)
    s.str(module_name)
    s.str(function)
    s.uleb128(len(type_args))
    for t in type_args:
        s.type_tag(parse_type_tag(t))
    s.uleb128(len(args))
    for a in args:
        s.to_bytes(a)
    return s.output()


def raw_transaction_bytes(
    sender: str,
    sequence_number: int,
    payload: bytes,
    max_gas_amount: int,
    gas_unit_price: int,
    expiration_timestamp_secs: int,
    chain_id: int,
) -> bytes:
    """BCS of a RawTransaction; ``payload`` is already encoded."""
    return (
        Serializer()
        .address(sender)
        .u64(sequence_number)
        .fixed_bytes(payload)
        .u64(max_gas_amount)
        .u64(gas_unit_price)
        .u64(expiration_timestamp_secs)
        .u8(chain_id)
        .output()
    )


def signing_message(raw_transaction: bytes) -> bytes:
    """Prefix the raw transaction with its domain separator hash."""
    return _sha3(RAW_TRANSACTION_SALT) + raw_transaction


def signed_transaction_bytes(raw_transaction: bytes, public_key: bytes, signature: bytes) -> bytes:
    if len(public_key) != 32:
        raise EncodingError(f"ed25519 public key must be 32 bytes, got {len(public_key)}")
    if len(signature) != 64:
        raise EncodingError(f"ed25519 signature must be 64 bytes, got {len(signature)}")
    return (
        Serializer()
        .fixed_bytes(raw_transaction)
        .uleb128(AUTHENTICATOR_ED25519)
        .to_bytes(public_key)
        .to_bytes(signature)
        .output()
    )


def transaction_hash(signed_transaction: bytes) -> str:
    """Hash of ``Transaction::UserTransaction(signed)`` as the node reports it."""
    digest = _sha3(_sha3(TRANSACTION_SALT) + bytes([TRANSACTION_USER]) + signed_transaction)
    return "0x" + digest.hex()
