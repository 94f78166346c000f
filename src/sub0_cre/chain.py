from __future__ import annotations

import logging
import os
import re
from typing import Any, Protocol, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from sub0_cre.config import ChainConfig
from sub0_cre.errors import MissingSecret, ValidationError
from sub0_cre.models import (
    ZERO_BYTES32,
    Market,
    ReceiverStatus,
    TxStatus,
    WriteResult,
    ensure_bytes32,
    hex_to_bytes,
)

LOGGER = logging.getLogger("sub0_cre")

CRE_ETH_PRIVATE_KEY = "CRE_ETH_PRIVATE_KEY"

GET_MARKET = "getMarket(bytes32)"
GET_CONDITION_ID = "getConditionId(bytes32)"
NONCE_USED = "nonceUsed(bytes32,uint256)"
BACKEND_SIGNER = "backendSigner()"
GET_COLLECTION_ID = "getCollectionId(bytes32,bytes32,uint256)"
GET_POSITION_ID = "getPositionId(address,bytes32)"
BALANCE_OF = "balanceOf(address,uint256)"
ON_REPORT = "onReport(bytes,bytes)"

MARKET_TUPLE = "(string,bytes32,address,address,uint256,uint256,uint256,uint8,uint8)"

_SIGNATURE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\((.*)\)$")


class ChainClient(Protocol):
    def read_contract(
        self, address: str, signature: str, args: Sequence[Any], *, finalized: bool = False
    ) -> bytes: ...

    def submit_report(self, receiver: str, payload: bytes, gas_limit: int) -> WriteResult: ...


class SecretStore(Protocol):
    def get_secret(self, secret_id: str) -> str | None: ...


class EnvSecretStore:
    """Secrets from process environment variables (``.env`` is loaded by the CLI)."""

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def get_secret(self, secret_id: str) -> str | None:
        value = str(self._environ.get(secret_id, "") or "").strip()
        return value or None


def require_secret(secrets: SecretStore, secret_id: str) -> str:
    value = secrets.get_secret(secret_id)
    if not value:
        raise MissingSecret(secret_id)
    return value


def argument_types(signature: str) -> list[str]:
    match = _SIGNATURE_RE.match(signature.replace(" ", ""))
    if not match:
        raise ValidationError(f"malformed function signature {signature!r}")
    inner = match.group(2)
    return inner.split(",") if inner else []


def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    types = argument_types(signature)
    if len(types) != len(args):
        raise ValidationError(f"{signature} expects {len(types)} arguments, got {len(args)}")
    return function_signature_to_4byte_selector(signature) + encode(types, list(args))


class ContractViews:
    """Typed reads against Sub0, PredictionVault and the conditional tokens contract."""

    def __init__(self, config: ChainConfig, client: ChainClient) -> None:
        self.config = config
        self.client = client

    def _call(self, address: str, signature: str, args: Sequence[Any], out_types: list[str], *, finalized: bool = False):
        data = self.client.read_contract(address, signature, args, finalized=finalized)
        return decode(out_types, bytes(data))

    def get_market(self, question_id: str, *, finalized: bool = False) -> Market:
        qid = hex_to_bytes(ensure_bytes32(question_id), "questionId")
        data = bytes(self.client.read_contract(self.config.contracts.sub0, GET_MARKET, [qid], finalized=finalized))
        if not data:
            return Market.empty()
        try:
            (raw,) = decode([MARKET_TUPLE], data)
        except DecodingError as exc:
            LOGGER.warning("get_market_decode_failed question_id=%s error=%s", question_id, exc)
            return Market.empty()
        question, condition_id, oracle, owner, created_at, duration, slots, oracle_type, market_type = raw
        return Market(
            question=question,
            condition_id="0x" + bytes(condition_id).hex(),
            oracle=to_checksum_address(oracle),
            owner=to_checksum_address(owner),
            created_at=int(created_at),
            duration=int(duration),
            outcome_slot_count=int(slots),
            oracle_type=int(oracle_type),
            market_type=int(market_type),
        )

    def get_condition_id(self, question_id: str) -> str:
        qid = hex_to_bytes(ensure_bytes32(question_id), "questionId")
        (condition_id,) = self._call(self.config.contracts.prediction_vault, GET_CONDITION_ID, [qid], ["bytes32"])
        return "0x" + bytes(condition_id).hex()

    def backend_signer(self) -> str:
        (address,) = self._call(self.config.contracts.prediction_vault, BACKEND_SIGNER, [], ["address"])
        return to_checksum_address(address)

    def nonce_used(self, question_id: str, nonce: int) -> bool:
        qid = hex_to_bytes(ensure_bytes32(question_id), "questionId")
        (used,) = self._call(self.config.contracts.prediction_vault, NONCE_USED, [qid, int(nonce)], ["bool"])
        return bool(used)

    def vault_balance_for_outcome(self, condition_id: str, outcome_index: int) -> int:
        """Outcome-token balance held by the PredictionVault for one outcome slot."""
        ctf = self.config.contracts.conditional_tokens
        parent = hex_to_bytes(self.config.conventions.parent_collection_id or ZERO_BYTES32, "parentCollectionId")
        cid = hex_to_bytes(ensure_bytes32(condition_id, "conditionId"), "conditionId")
        (collection_id,) = self._call(ctf, GET_COLLECTION_ID, [parent, cid, 1 << int(outcome_index)], ["bytes32"])
        (position_id,) = self._call(
            ctf,
            GET_POSITION_ID,
            [to_checksum_address(self.config.contracts.usdc), bytes(collection_id)],
            ["uint256"],
        )
        (balance,) = self._call(
            ctf,
            BALANCE_OF,
            [to_checksum_address(self.config.contracts.prediction_vault), int(position_id)],
            ["uint256"],
        )
        return int(balance)

    def outcome_supplies(self, market: Market) -> list[int]:
        return [self.vault_balance_for_outcome(market.condition_id, i) for i in range(market.outcome_slot_count)]


class Web3ChainClient:
    """ChainClient over a JSON-RPC node.

    Reports are delivered by calling ``onReport(metadata, report)`` on the
    receiver from the ``CRE_ETH_PRIVATE_KEY`` account.
    """

    def __init__(
        self,
        config: ChainConfig,
        secrets: SecretStore,
        w3: Any | None = None,
        *,
        request_timeout: float = 20.0,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.config = config
        self.secrets = secrets
        self._w3 = w3
        self.request_timeout = request_timeout
        self.receipt_timeout = receipt_timeout

    def _web3(self):
        if self._w3 is not None:
            return self._w3
        from web3 import Web3

        if not self.config.rpc_url:
            raise ValidationError("SUB0_RPC_URL is required for chain access")
        provider = Web3.HTTPProvider(
            self.config.rpc_url,
            request_kwargs={"timeout": max(5.0, self.request_timeout)},
        )
        self._w3 = Web3(provider)
        return self._w3

    @staticmethod
    def _to_hex(value: Any) -> str:
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        text = str(value)
        return text if text.startswith("0x") else f"0x{text}"

    @staticmethod
    def _receipt_status(receipt: Any) -> int:
        if receipt is None:
            return 0
        raw = receipt.get("status") if isinstance(receipt, dict) else getattr(receipt, "status", None)
        if raw is None:
            return 0
        if isinstance(raw, str):
            return int(raw, 16) if raw.startswith("0x") else int(raw)
        return int(raw)

    def read_contract(
        self, address: str, signature: str, args: Sequence[Any], *, finalized: bool = False
    ) -> bytes:
        w3 = self._web3()
        call = {"to": to_checksum_address(address), "data": encode_call(signature, args)}
        result = w3.eth.call(call, "finalized" if finalized else "latest")
        return bytes(result)

    def submit_report(self, receiver: str, payload: bytes, gas_limit: int) -> WriteResult:
        private_key = require_secret(self.secrets, CRE_ETH_PRIVATE_KEY)
        signer = Account.from_key(private_key).address
        calldata = encode_call(ON_REPORT, [b"", bytes(payload)])
        tx_hash = ""
        try:
            w3 = self._web3()
            tx = {
                "from": signer,
                "to": to_checksum_address(receiver),
                "data": "0x" + calldata.hex(),
                "value": 0,
                "nonce": int(w3.eth.get_transaction_count(signer, "pending")),
                "chainId": int(self.config.chain_id),
                "gasPrice": max(1, int(w3.eth.gas_price)),
                "gas": int(gas_limit),
            }
            signed = Account.sign_transaction(tx, private_key)
            raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
            if raw_tx is None:
                raise RuntimeError("unable to access signed raw transaction")
            tx_hash = self._to_hex(w3.eth.send_raw_transaction(raw_tx))
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as exc:
            LOGGER.error("report_send_failed receiver=%s tx_hash=%s error=%s", receiver, tx_hash or "-", exc)
            return WriteResult(tx_status=TxStatus.FATAL, tx_hash=tx_hash, error_message=str(exc))

        if self._receipt_status(receipt) != 1:
            return WriteResult(
                tx_status=TxStatus.SUCCESS,
                receiver_status=ReceiverStatus.REVERTED,
                tx_hash=tx_hash,
                error_message="receipt status 0",
            )
        return WriteResult(tx_status=TxStatus.SUCCESS, tx_hash=tx_hash)
