"""Action-prefixed reports consumed by the settlement contracts.

Every report is one prefix byte followed by standard ABI encoding of the
action's arguments. Prefixes are contract constants scoped per receiver, so
``CREATE_MARKET`` on Sub0 and ``EXECUTE_TRADE`` on PredictionVault share 0x00.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Protocol, Union

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_abi.packed import encode_packed
from eth_utils import keccak

from sub0_cre.errors import ReceiverRevert, TransportFailure, ValidationError
from sub0_cre.models import (
    ZERO_ADDRESS,
    ZERO_BYTES32,
    ReceiverStatus,
    TxStatus,
    WriteResult,
    ensure_address,
    hex_to_bytes,
)

LOGGER = logging.getLogger("sub0_cre")


class ReportAction(Enum):
    CREATE_MARKET = ("sub0", 0x00)
    RESOLVE = ("sub0", 0x01)
    STAKE = ("sub0", 0x02)
    REDEEM = ("sub0", 0x03)
    EXECUTE_TRADE = ("prediction_vault", 0x00)
    SEED_LIQUIDITY = ("prediction_vault", 0x01)

    @property
    def receiver(self) -> str:
        return self.value[0]

    @property
    def prefix(self) -> int:
        return self.value[1]


ABI_LAYOUTS: dict[ReportAction, list[str]] = {
    ReportAction.CREATE_MARKET: [
        "(string,bytes32,address,address,uint256,uint256,uint256,uint8,uint8)",
    ],
    ReportAction.RESOLVE: ["bytes32", "uint256[]", "address"],
    ReportAction.STAKE: ["bytes32", "bytes32", "uint256[]", "address", "uint256", "address"],
    ReportAction.REDEEM: [
        "bytes32",
        "bytes32",
        "uint256[]",
        "address",
        "address",
        "uint256",
        "uint256",
        "bytes",
    ],
    ReportAction.EXECUTE_TRADE: [
        "bytes32",
        "uint256",
        "bool",
        "uint256",
        "uint256",
        "uint256",
        "uint256",
        "uint256",
        "address",
        "bytes",
        "bytes",
    ],
    ReportAction.SEED_LIQUIDITY: ["bytes32", "uint256"],
}


def _b32(value: str | bytes, name: str) -> bytes:
    raw = hex_to_bytes(value, name)
    if len(raw) != 32:
        raise ValidationError(f"{name} must be 32 bytes")
    return raw


def _uint_list(values: list[int], name: str) -> list[int]:
    out = [int(v) for v in values]
    if any(v < 0 for v in out):
        raise ValidationError(f"{name} entries must be non-negative")
    return out


@dataclass
class CreateMarketReport:
    question: str
    oracle: str
    duration: int
    outcome_slot_count: int
    oracle_type: int
    market_type: int
    condition_id: str = ZERO_BYTES32
    owner: str = ZERO_ADDRESS
    created_at: int = 0

    action = ReportAction.CREATE_MARKET

    def placeholder_violations(self) -> list[str]:
        """Fields the contract assigns itself that were supplied non-zero."""
        out = []
        if _b32(self.condition_id, "conditionId") != b"\x00" * 32:
            out.append("conditionId")
        if ensure_address(self.owner, "owner") != ZERO_ADDRESS:
            out.append("owner")
        if int(self.created_at) != 0:
            out.append("createdAt")
        return out

    def abi_values(self) -> list[Any]:
        return [
            (
                self.question,
                _b32(self.condition_id, "conditionId"),
                ensure_address(self.oracle, "oracle"),
                ensure_address(self.owner, "owner"),
                int(self.created_at),
                int(self.duration),
                int(self.outcome_slot_count),
                int(self.oracle_type),
                int(self.market_type),
            )
        ]


@dataclass
class ResolveReport:
    question_id: str
    payouts: list[int]
    oracle: str

    action = ReportAction.RESOLVE

    def abi_values(self) -> list[Any]:
        return [
            _b32(self.question_id, "questionId"),
            _uint_list(self.payouts, "payouts"),
            ensure_address(self.oracle, "oracle"),
        ]


@dataclass
class StakeReport:
    question_id: str
    partition: list[int]
    token: str
    amount: int
    owner: str
    parent_collection_id: str = ZERO_BYTES32

    action = ReportAction.STAKE

    def abi_values(self) -> list[Any]:
        return [
            _b32(self.question_id, "questionId"),
            _b32(self.parent_collection_id, "parentCollectionId"),
            _uint_list(self.partition, "partition"),
            ensure_address(self.token, "token"),
            int(self.amount),
            ensure_address(self.owner, "owner"),
        ]


@dataclass
class RedeemReport:
    condition_id: str
    index_sets: list[int]
    token: str
    owner: str
    deadline: int
    nonce: int
    signature: str
    parent_collection_id: str = ZERO_BYTES32

    action = ReportAction.REDEEM

    def abi_values(self) -> list[Any]:
        return [
            _b32(self.parent_collection_id, "parentCollectionId"),
            _b32(self.condition_id, "conditionId"),
            _uint_list(self.index_sets, "indexSets"),
            ensure_address(self.token, "token"),
            ensure_address(self.owner, "owner"),
            int(self.deadline),
            int(self.nonce),
            hex_to_bytes(self.signature, "signature"),
        ]


@dataclass
class ExecuteTradeReport:
    question_id: str
    outcome_index: int
    buy: bool
    quantity: int
    trade_cost_usdc: int
    max_cost_usdc: int
    nonce: int
    deadline: int
    user: str
    don_signature: str
    user_signature: str = "0x"

    action = ReportAction.EXECUTE_TRADE

    def abi_values(self) -> list[Any]:
        return [
            _b32(self.question_id, "questionId"),
            int(self.outcome_index),
            bool(self.buy),
            int(self.quantity),
            int(self.trade_cost_usdc),
            int(self.max_cost_usdc),
            int(self.nonce),
            int(self.deadline),
            ensure_address(self.user, "user"),
            hex_to_bytes(self.don_signature, "donSignature"),
            hex_to_bytes(self.user_signature or "0x", "userSignature"),
        ]


@dataclass
class SeedLiquidityReport:
    question_id: str
    amount_usdc: int

    action = ReportAction.SEED_LIQUIDITY

    def abi_values(self) -> list[Any]:
        return [_b32(self.question_id, "questionId"), int(self.amount_usdc)]


Report = Union[
    CreateMarketReport,
    ResolveReport,
    StakeReport,
    RedeemReport,
    ExecuteTradeReport,
    SeedLiquidityReport,
]

REPORT_TYPES: dict[str, type] = {
    ReportAction.CREATE_MARKET.name: CreateMarketReport,
    ReportAction.RESOLVE.name: ResolveReport,
    ReportAction.STAKE.name: StakeReport,
    ReportAction.REDEEM.name: RedeemReport,
    ReportAction.EXECUTE_TRADE.name: ExecuteTradeReport,
    ReportAction.SEED_LIQUIDITY.name: SeedLiquidityReport,
}


def encode_report(report: Report) -> bytes:
    action = report.action
    if isinstance(report, CreateMarketReport):
        violations = report.placeholder_violations()
        if violations:
            LOGGER.warning(
                "create_market_placeholders_nonzero fields=%s question=%r",
                ",".join(violations),
                report.question[:80],
            )
    try:
        body = encode(ABI_LAYOUTS[action], report.abi_values())
    except (EncodingError, TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"cannot ABI-encode {action.name} report: {exc}") from exc
    return bytes([action.prefix]) + body


def compute_question_id(question: str, creator: str, oracle: str) -> str:
    """``keccak256(abi.encodePacked(question, creator, oracle))`` as 0x hex."""
    packed = encode_packed(
        ["string", "address", "address"],
        [question, ensure_address(creator, "creator"), ensure_address(oracle, "oracle")],
    )
    return "0x" + keccak(packed).hex()


class ReportSubmitter(Protocol):
    def submit_report(self, receiver: str, payload: bytes, gas_limit: int) -> WriteResult: ...


def submit_report(
    client: ReportSubmitter,
    receiver: str,
    payload: bytes,
    gas_limit: int,
    label: str,
) -> str:
    """Submit an encoded report and return its tx hash ("" when none is reported)."""
    result = client.submit_report(receiver, payload, gas_limit)
    tx_status = TxStatus(result.tx_status)
    receiver_status = ReceiverStatus(result.receiver_status)
    context = {
        "label": label,
        "receiver": receiver,
        "tx_status": tx_status.value,
        "receiver_status": receiver_status.value,
        "tx_hash": result.tx_hash or "",
    }
    if tx_status != TxStatus.SUCCESS:
        detail = f": {result.error_message}" if result.error_message else ""
        LOGGER.error("report_tx_failed label=%s receiver=%s status=%s", label, receiver, tx_status.value)
        raise TransportFailure(f"{label} transaction failed ({tx_status.value}){detail}", **context)
    if receiver_status == ReceiverStatus.REVERTED:
        LOGGER.error(
            "report_receiver_reverted label=%s receiver=%s tx_hash=%s", label, receiver, result.tx_hash or "-"
        )
        raise ReceiverRevert(f"{label} receiver contract reverted", **context)
    LOGGER.info("report_submitted label=%s receiver=%s tx_hash=%s", label, receiver, result.tx_hash or "-")
    return result.tx_hash or ""
