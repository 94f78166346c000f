from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from enum import Enum, IntEnum
import re
from typing import Any

from eth_utils import is_address, to_checksum_address

from sub0_cre.errors import ValidationError
from sub0_cre.pricing import PRICING_CONTEXT

ZERO_ADDRESS = "0x" + ("00" * 20)
ZERO_BYTES32 = "0x" + ("00" * 32)

_HEX32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")


class OracleType(IntEnum):
    NONE = 0
    PLATFORM = 1
    ARBITRATOR = 2
    CUSTOM = 3


class MarketType(IntEnum):
    SINGLE = 0
    GROUP = 1
    PUBLIC = 2


class TxStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"
    FATAL = "fatal"


class ReceiverStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"


class TradeStage(str, Enum):
    VALIDATING = "validating"
    PRICING = "pricing"
    SIGNING = "signing"
    RECOVERING = "recovering"
    SUBMITTING = "submitting"
    DONE = "done"


def ensure_bytes32(value: Any, name: str = "questionId") -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValidationError(f"{name} must be 32 bytes")
        return "0x" + bytes(value).hex()
    raw = str(value or "").strip()
    hex_value = raw if raw.startswith("0x") else f"0x{raw}"
    if not _HEX32_RE.match(hex_value):
        raise ValidationError(f"{name} must be 32-byte hex (0x + 64 hex chars)")
    return hex_value.lower()


def ensure_address(value: Any, name: str = "address") -> str:
    raw = str(value or "").strip()
    candidate = raw if raw.startswith("0x") else f"0x{raw}"
    if len(candidate) != 42 or not is_address(candidate.lower()):
        raise ValidationError(f"{name} must be a valid 20-byte address")
    return to_checksum_address(candidate)


def normalize_signature(value: Any) -> str | None:
    if not isinstance(value, (str, bytes, bytearray)):
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex() if value else None
    text = value.strip()
    if not text:
        return None
    return text if text.startswith("0x") else f"0x{text}"


def hex_to_bytes(value: str | bytes, name: str = "value") -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value or "").strip()
    if not text.startswith("0x"):
        text = f"0x{text}"
    if not _HEX_RE.match(text):
        raise ValidationError(f"{name} must be even-length hex")
    return bytes.fromhex(text[2:])


def parse_int(raw: Any, name: str, *, minimum: int | None = 0) -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw if raw is not None else "").strip()
        if not text:
            raise ValidationError(f"{name} is required")
        try:
            value = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError as exc:
            raise ValidationError(f"{name} must be an integer, got {text!r}") from exc
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def parse_units(raw: Any, decimals: int, name: str) -> int:
    """Integer base units from an integer or decimal amount.

    Integers (and integer strings) are already base units. Decimal strings are
    human units: scaled by ``10**decimals`` and rounded up when they carry more
    fractional digits than ``decimals``.
    """
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be numeric")
    if isinstance(raw, int):
        return parse_int(raw, name)
    text = str(raw if raw is not None else "").strip()
    if "." not in text:
        return parse_int(text, name)
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValidationError(f"{name} must be numeric, got {text!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{name} must be a non-negative number")
    scaled = PRICING_CONTEXT.multiply(amount, Decimal(10) ** decimals)
    scaled = scaled.to_integral_value(rounding=ROUND_CEILING, context=PRICING_CONTEXT)
    return int(scaled)


@dataclass
class Market:
    question: str
    condition_id: str
    oracle: str
    owner: str
    created_at: int
    duration: int
    outcome_slot_count: int
    oracle_type: int
    market_type: int

    @classmethod
    def empty(cls) -> "Market":
        return cls(
            question="",
            condition_id=ZERO_BYTES32,
            oracle=ZERO_ADDRESS,
            owner=ZERO_ADDRESS,
            created_at=0,
            duration=0,
            outcome_slot_count=0,
            oracle_type=0,
            market_type=0,
        )

    @property
    def is_empty(self) -> bool:
        return (not self.condition_id or self.condition_id == ZERO_BYTES32) and not self.question.strip()

    def to_dict(self) -> dict[str, str]:
        return {
            "question": self.question,
            "conditionId": self.condition_id,
            "oracle": self.oracle,
            "owner": self.owner,
            "createdAt": str(self.created_at),
            "duration": str(self.duration),
            "outcomeSlotCount": str(self.outcome_slot_count),
            "oracleType": str(self.oracle_type),
            "marketType": str(self.market_type),
        }


@dataclass
class PriceRequest:
    question_id: str
    outcome_index: int
    quantity: int
    b_parameter: Decimal
    buy: bool = True


@dataclass
class TradeItem:
    quantity: int
    trade_cost_usdc: int
    nonce: int
    deadline: int
    user_signature: str | None = None
    max_cost_usdc: int | None = None

    @property
    def effective_max_cost(self) -> int:
        return self.trade_cost_usdc if self.max_cost_usdc is None else self.max_cost_usdc


@dataclass
class QuoteRequest:
    question_id: str
    outcome_index: int
    buy: bool
    quantity: int
    trade_cost_usdc: int
    nonce: int
    deadline: int
    max_cost_usdc: int | None = None
    user_signature: str | None = None
    trades: list[TradeItem] = field(default_factory=list)

    def as_item(self) -> TradeItem:
        return TradeItem(
            quantity=self.quantity,
            trade_cost_usdc=self.trade_cost_usdc,
            nonce=self.nonce,
            deadline=self.deadline,
            user_signature=self.user_signature,
            max_cost_usdc=self.max_cost_usdc,
        )


@dataclass
class SignedQuote:
    question_id: str
    outcome_index: int
    buy: bool
    quantity: int
    trade_cost_usdc: int
    nonce: int
    deadline: int
    user: str
    signature: str

    @property
    def advisory(self) -> bool:
        return self.user == ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "outcomeIndex": self.outcome_index,
            "buy": self.buy,
            "quantity": str(self.quantity),
            "tradeCostUsdc": str(self.trade_cost_usdc),
            "nonce": str(self.nonce),
            "deadline": str(self.deadline),
            "user": self.user,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class AgentIdentity:
    address: str
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class WriteResult:
    tx_status: TxStatus
    receiver_status: ReceiverStatus = ReceiverStatus.SUCCESS
    tx_hash: str = ""
    error_message: str = ""


@dataclass
class BatchItemError:
    index: int
    kind: str
    message: str

    def __str__(self) -> str:
        return f"trade[{self.index}]: {self.message}"


@dataclass
class BatchResult:
    tx_hashes: list[str] = field(default_factory=list)
    errors: list[BatchItemError] = field(default_factory=list)

    @property
    def submitted(self) -> int:
        return len(self.tx_hashes)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"txHashes": list(self.tx_hashes)}
        if self.errors:
            out["errors"] = [str(err) for err in self.errors]
        return out


@dataclass
class ActionResult:
    result: str
    status: str = "ok"
    tx_hash: str | None = None
    question_id: str | None = None
    errors: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status, "result": self.result}
        if self.tx_hash is not None:
            out["txHash"] = self.tx_hash
        if self.question_id is not None:
            out["questionId"] = self.question_id
        out.update(self.fields)
        if self.errors:
            out["errors"] = list(self.errors)
        return out
