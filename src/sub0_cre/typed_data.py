"""EIP-712 hashing, signing and recovery.

Everything here is synchronous: digests come from ``encode_typed_data`` and
signatures from ``Account.unsafe_sign_hash`` (RFC 6979 nonces, low-S), so the
same inputs always give the same 65-byte ``r || s || v`` signature.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import keccak, to_checksum_address

from sub0_cre.errors import CryptoError, InvalidSignature, ValidationError
from sub0_cre.models import hex_to_bytes

TypeSchema = Mapping[str, list[dict[str, str]]]

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

DON_QUOTE_TYPES: dict[str, list[dict[str, str]]] = {
    "DONQuote": [
        {"name": "marketId", "type": "bytes32"},
        {"name": "outcomeIndex", "type": "uint256"},
        {"name": "buy", "type": "bool"},
        {"name": "quantity", "type": "uint256"},
        {"name": "tradeCostUsdc", "type": "uint256"},
        {"name": "user", "type": "address"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

USER_TRADE_TYPES: dict[str, list[dict[str, str]]] = {
    "UserTrade": [
        {"name": "marketId", "type": "bytes32"},
        {"name": "outcomeIndex", "type": "uint256"},
        {"name": "buy", "type": "bool"},
        {"name": "quantity", "type": "uint256"},
        {"name": "maxCostUsdc", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

_DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
)


@dataclass(frozen=True)
class TypedDataDomain:
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": int(self.chain_id),
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }


def _coerce_value(type_: str, value: Any, field_name: str) -> Any:
    if value is None:
        raise ValidationError(f"typed data field {field_name} is missing")
    if type_ == "address":
        return to_checksum_address(str(value))
    if type_ == "bool":
        if not isinstance(value, bool):
            raise ValidationError(f"typed data field {field_name} must be a bool")
        return value
    if type_.startswith(("uint", "int")):
        if isinstance(value, bool):
            raise ValidationError(f"typed data field {field_name} must be an integer")
        if isinstance(value, str):
            text = value.strip()
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        return int(value)
    if type_.startswith("bytes"):
        return hex_to_bytes(value, field_name)
    return value


def _coerce_message(types: TypeSchema, primary_type: str, message: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for member in types[primary_type]:
        name, type_ = member["name"], member["type"]
        if type_ in types:
            out[name] = _coerce_message(types, type_, message.get(name) or {})
        else:
            out[name] = _coerce_value(type_, message.get(name), name)
    return out


def _signable(
    domain: TypedDataDomain, types: TypeSchema, primary_type: str, message: Mapping[str, Any]
) -> SignableMessage:
    if primary_type not in types:
        raise ValidationError(f"primary type {primary_type!r} is not declared")
    domain_data = domain.as_dict()
    full_types: dict[str, Any] = {
        "EIP712Domain": [{"name": name, "type": type_} for name, type_ in _DOMAIN_FIELDS],
    }
    full_types.update({key: list(fields) for key, fields in types.items()})
    return encode_typed_data(
        full_message={
            "types": full_types,
            "primaryType": primary_type,
            "domain": domain_data,
            "message": _coerce_message(types, primary_type, message),
        }
    )


def hash_typed_data(
    domain: TypedDataDomain, types: TypeSchema, primary_type: str, message: Mapping[str, Any]
) -> bytes:
    signable = _signable(domain, types, primary_type, message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def _normalize_key(private_key: str | bytes) -> bytes:
    if isinstance(private_key, (bytes, bytearray)):
        raw = bytes(private_key)
    else:
        text = str(private_key or "").strip()
        if not text:
            raise CryptoError("private key is empty")
        try:
            raw = hex_to_bytes(text, "private key")
        except ValidationError as exc:
            raise CryptoError("private key is not valid hex") from exc
    if len(raw) != 32:
        raise CryptoError("private key must be 32 bytes")
    if not 0 < int.from_bytes(raw, "big") < SECP256K1_ORDER:
        raise CryptoError("private key is outside the secp256k1 range")
    return raw


def address_of(private_key: str | bytes) -> str:
    try:
        return Account.from_key(_normalize_key(private_key)).address
    except (ValueError, KeyValidationError) as exc:
        raise CryptoError("private key is outside the secp256k1 range") from exc


def sign_hash(digest: bytes, private_key: str | bytes) -> bytes:
    if len(digest) != 32:
        raise CryptoError("digest must be 32 bytes")
    key = _normalize_key(private_key)
    try:
        signed = Account.unsafe_sign_hash(digest, key)
    except (ValueError, KeyValidationError) as exc:
        raise CryptoError("private key is outside the secp256k1 range") from exc
    return bytes(signed.signature)


def sign_typed_data(
    domain: TypedDataDomain,
    types: TypeSchema,
    primary_type: str,
    message: Mapping[str, Any],
    private_key: str | bytes,
) -> str:
    digest = hash_typed_data(domain, types, primary_type, message)
    return "0x" + sign_hash(digest, private_key).hex()


def recover_signer(
    domain: TypedDataDomain,
    types: TypeSchema,
    primary_type: str,
    message: Mapping[str, Any],
    signature: str | bytes,
) -> str:
    try:
        sig = hex_to_bytes(signature, "signature")
    except ValidationError as exc:
        raise InvalidSignature("signature is not valid hex") from exc
    if len(sig) != 65:
        raise InvalidSignature(f"signature must be 65 bytes, got {len(sig)}")
    if sig[64] not in (0, 1, 27, 28):
        raise InvalidSignature(f"signature has invalid recovery id {sig[64]}")
    signable = _signable(domain, types, primary_type, message)
    try:
        address = Account.recover_message(signable, signature=sig)
    except (ValueError, TypeError, BadSignature, KeyValidationError) as exc:
        raise InvalidSignature(f"failed to recover signer: {exc}") from exc
    if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
        raise InvalidSignature("recovered signer is not a well-formed address")
    return address


