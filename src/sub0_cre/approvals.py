"""Signed (not broadcast) approval transactions for agents and the backend signer."""
from __future__ import annotations

import logging
from typing import Any

from eth_account import Account

from sub0_cre.chain import SecretStore, encode_call, require_secret
from sub0_cre.config import ChainConfig
from sub0_cre.errors import ValidationError
from sub0_cre.models import ensure_address, parse_int
from sub0_cre.protocol import BACKEND_SIGNER_PRIVATE_KEY
from sub0_cre.typed_data import address_of

LOGGER = logging.getLogger("sub0_cre")

ERC20_APPROVE = "approve(address,uint256)"
SET_APPROVAL_FOR_ALL = "setApprovalForAll(address,bool)"

APPROVAL_GAS_LIMIT = 300_000
MAX_FEE_PER_GAS = 2 * 10**9
MAX_PRIORITY_FEE_PER_GAS = 1 * 10**9
BROADCAST_NOTE = "Broadcast signedTx via RPC (eth_sendRawTransaction) if needed."


def resolve_signer(store: SecretStore, signer: str, agent_id: str | None = None) -> tuple[str, str]:
    """Return ``(private_key, address)`` for ``backend`` or ``agent`` signers."""
    if signer == "backend":
        key = require_secret(store, BACKEND_SIGNER_PRIVATE_KEY)
    elif signer == "agent":
        agent_id = str(agent_id or "").strip()
        if not agent_id:
            raise ValidationError('signer is "agent" but agentId is missing')
        key = require_secret(store, agent_id)
    else:
        raise ValidationError('signer must be "agent" or "backend"')
    if not key.startswith("0x"):
        key = f"0x{key}"
    return key, address_of(key)


def _sign(config: ChainConfig, private_key: str, to: str, data: bytes, nonce: int) -> str:
    tx = {
        "type": 2,
        "to": to,
        "data": "0x" + data.hex(),
        "value": 0,
        "gas": APPROVAL_GAS_LIMIT,
        "nonce": nonce,
        "chainId": int(config.chain_id),
        "maxFeePerGas": MAX_FEE_PER_GAS,
        "maxPriorityFeePerGas": MAX_PRIORITY_FEE_PER_GAS,
    }
    signed = Account.sign_transaction(tx, private_key)
    raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
    if raw_tx is None:
        raise RuntimeError("unable to access signed raw transaction")
    return "0x" + bytes(raw_tx).hex()


def sign_erc20_approve(
    config: ChainConfig,
    store: SecretStore,
    *,
    signer: str,
    spender: str,
    amount: Any,
    agent_id: str | None = None,
    token: str | None = None,
    nonce: Any = 0,
) -> dict[str, Any]:
    if not str(spender or "").strip():
        raise ValidationError("spender is required")
    token_address = ensure_address(token or config.contracts.usdc, "token")
    spender_address = ensure_address(spender, "spender")
    value = parse_int(amount, "amount")
    key, signer_address = resolve_signer(store, signer, agent_id)
    signed_tx = _sign(
        config,
        key,
        token_address,
        encode_call(ERC20_APPROVE, [spender_address, value]),
        parse_int(nonce, "nonce"),
    )
    LOGGER.info("erc20_approve_signed signer=%s token=%s spender=%s", signer_address, token_address, spender_address)
    return {
        "status": "ok",
        "result": "approveErc20",
        "signedTx": signed_tx,
        "signerAddress": signer_address,
        "note": BROADCAST_NOTE,
    }


def sign_conditional_token_approval(
    config: ChainConfig,
    store: SecretStore,
    *,
    signer: str,
    operator: str,
    approved: bool = True,
    agent_id: str | None = None,
    conditional_tokens: str | None = None,
    nonce: Any = 0,
) -> dict[str, Any]:
    if not str(operator or "").strip():
        raise ValidationError("operator is required")
    ctf_address = ensure_address(conditional_tokens or config.contracts.conditional_tokens, "conditionalTokens")
    operator_address = ensure_address(operator, "operator")
    key, signer_address = resolve_signer(store, signer, agent_id)
    signed_tx = _sign(
        config,
        key,
        ctf_address,
        encode_call(SET_APPROVAL_FOR_ALL, [operator_address, bool(approved)]),
        parse_int(nonce, "nonce"),
    )
    LOGGER.info(
        "ctf_approval_signed signer=%s conditional_tokens=%s operator=%s approved=%s",
        signer_address,
        ctf_address,
        operator_address,
        bool(approved),
    )
    return {
        "status": "ok",
        "result": "approveConditionalToken",
        "signedTx": signed_tx,
        "signerAddress": signer_address,
        "note": BROADCAST_NOTE,
    }
