"""Ephemeral agent keys and their encrypted at-rest form.

The blob layout is ``base64url(iv(16) || tag(16) || ciphertext)`` without
padding. The plaintext is the 0x-prefixed private key hex. The AES-256 key is
derived with scrypt from the master secret, so any holder of the same master
secret can decrypt it.
"""
from __future__ import annotations

import base64
import binascii
import logging
import secrets
import unicodedata

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from eth_utils import keccak

from sub0_cre.chain import SecretStore, require_secret
from sub0_cre.errors import CryptoError, ValidationError
from sub0_cre.models import AgentIdentity
from sub0_cre.typed_data import SECP256K1_ORDER, address_of

LOGGER = logging.getLogger("sub0_cre")

TEE_MASTER_ENCRYPTION_KEY = "TEE_MASTER_ENCRYPTION_KEY"

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_SALT = b"sub0-agent-key-v1"
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


def _draw_scalar(entropy: str | None) -> bytes:
    mix = keccak(entropy.encode("utf-8")) if entropy else None
    while True:
        raw = secrets.token_bytes(32)
        if mix is not None:
            raw = bytes(a ^ b for a, b in zip(raw, mix))
        if 0 < int.from_bytes(raw, "big") < SECP256K1_ORDER:
            return raw


def generate_agent_key(entropy: str | None = None) -> AgentIdentity:
    """Fresh secp256k1 key pair. ``entropy`` is mixed in, never used alone."""
    key = _draw_scalar(entropy)
    private_key = "0x" + key.hex()
    return AgentIdentity(address=address_of(private_key), private_key=private_key)


def derive_key(master_secret: str) -> bytes:
    password = unicodedata.normalize("NFKC", master_secret).encode("utf-8")
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(password)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padded = text.strip() + "=" * (-len(text.strip()) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise CryptoError("encrypted key blob is not valid base64url") from exc


def encrypt_private_key(private_key: str, master_secret: str) -> str:
    if not master_secret:
        raise CryptoError("master secret must not be empty")
    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(derive_key(master_secret)).encrypt(iv, private_key.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return _b64url_encode(iv + tag + ciphertext)


def decrypt_private_key(blob: str, master_secret: str) -> str:
    if not master_secret:
        raise CryptoError("master secret must not be empty")
    raw = _b64url_decode(blob)
    if len(raw) <= IV_LENGTH + TAG_LENGTH:
        raise CryptoError("encrypted key blob is too short")
    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH :]
    try:
        plaintext = AESGCM(derive_key(master_secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CryptoError("failed to decrypt agent key (wrong secret or tampered blob)") from exc
    return plaintext.decode("utf-8")


def create_agent_key(store: SecretStore, agent_id: str, entropy: str | None = None) -> dict[str, str]:
    """Generate and encrypt a key for ``agent_id``; only the address and blob leave."""
    agent_id = str(agent_id or "").strip()
    if not agent_id:
        raise ValidationError("agentId is required")
    master_secret = require_secret(store, TEE_MASTER_ENCRYPTION_KEY)
    identity = generate_agent_key(entropy if entropy is not None else agent_id)
    blob = encrypt_private_key(identity.private_key, master_secret)
    LOGGER.info("agent_key_generated agent_id=%s address=%s", agent_id, identity.address)
    return {"address": identity.address, "encryptedKeyBlob": blob}
