"""Platform writes against Sub0 and PredictionVault, plus market reads."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from sub0_cre.chain import ChainClient, ContractViews
from sub0_cre.config import ChainConfig
from sub0_cre.errors import InvalidParameter, ValidationError
from sub0_cre.models import (
    ZERO_ADDRESS,
    ActionResult,
    Market,
    OracleType,
    MarketType,
    ensure_address,
    ensure_bytes32,
    hex_to_bytes,
    parse_int,
)
from sub0_cre.reports import (
    CreateMarketReport,
    RedeemReport,
    ResolveReport,
    SeedLiquidityReport,
    StakeReport,
    compute_question_id,
    encode_report,
    submit_report,
)

LOGGER = logging.getLogger("sub0_cre")

MIN_OUTCOME_SLOTS = 2
MAX_OUTCOME_SLOTS = 255


def _int_list(values: Sequence[Any], name: str) -> list[int]:
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{name} must be a list")
    return [parse_int(v, f"{name}[{i}]") for i, v in enumerate(values)]


def _enum_value(enum_cls: Any, raw: Any, name: str) -> int:
    value = parse_int(raw, name)
    try:
        return int(enum_cls(value))
    except ValueError as exc:
        raise InvalidParameter(f"{name} {value} is not a valid {enum_cls.__name__}") from exc


class PlatformActions:
    def __init__(self, config: ChainConfig, client: ChainClient) -> None:
        self.config = config
        self.client = client
        self.views = ContractViews(config, client)

    def _submit_sub0(self, report: Any, label: str) -> str:
        return submit_report(self.client, self.config.contracts.sub0, encode_report(report), self.config.gas_limit, label)

    def _submit_vault(self, report: Any, label: str) -> str:
        return submit_report(
            self.client, self.config.contracts.prediction_vault, encode_report(report), self.config.gas_limit, label
        )

    def create_market(
        self,
        *,
        question: str,
        oracle: str,
        creator: str,
        duration: Any,
        outcome_slot_count: Any = 2,
        oracle_type: Any = OracleType.PLATFORM,
        market_type: Any = MarketType.SINGLE,
        owner: str | None = None,
    ) -> ActionResult:
        """Create a market and echo it back.

        The read-back happens at the latest block; when the node does not see
        the new market yet, request fields fill the response instead.
        """
        question = str(question or "").strip()
        if not question:
            raise ValidationError("question is required")
        slots = parse_int(outcome_slot_count, "outcomeSlotCount")
        if slots < MIN_OUTCOME_SLOTS or slots > MAX_OUTCOME_SLOTS:
            raise InvalidParameter(f"outcomeSlotCount must be {MIN_OUTCOME_SLOTS}-{MAX_OUTCOME_SLOTS}")
        duration_s = parse_int(duration, "duration")
        if duration_s <= 0:
            raise InvalidParameter("duration must be positive")
        oracle_address = ensure_address(oracle, "oracle")
        creator_address = ensure_address(creator, "creatorAddress")
        oracle_kind = _enum_value(OracleType, oracle_type, "oracleType")
        market_kind = _enum_value(MarketType, market_type, "marketType")

        question_id = compute_question_id(question, creator_address, oracle_address)
        report = CreateMarketReport(
            question=question,
            oracle=oracle_address,
            duration=duration_s,
            outcome_slot_count=slots,
            oracle_type=oracle_kind,
            market_type=market_kind,
            owner=ensure_address(owner, "owner") if owner else ZERO_ADDRESS,
        )
        tx_hash = self._submit_sub0(report, "createMarket")
        LOGGER.info("market_created question_id=%s tx_hash=%s", question_id, tx_hash or "-")

        try:
            market = self.views.get_market(question_id)
        except Exception as exc:
            LOGGER.warning("market_readback_failed question_id=%s error=%s", question_id, exc)
            market = Market.empty()
        if market.is_empty:
            market = Market(
                question=question,
                condition_id=market.condition_id,
                oracle=oracle_address,
                owner=creator_address,
                created_at=0,
                duration=duration_s,
                outcome_slot_count=slots,
                oracle_type=oracle_kind,
                market_type=market_kind,
            )
        fields = market.to_dict()
        if tx_hash:
            fields["createMarketTxHash"] = tx_hash
        return ActionResult(result="createMarket", tx_hash=tx_hash, question_id=question_id, fields=fields)

    def get_market(self, question_id: str) -> ActionResult:
        qid = ensure_bytes32(question_id)
        market = self.views.get_market(qid)
        return ActionResult(result="getMarket", question_id=qid, fields=market.to_dict())

    def seed_liquidity(self, *, question_id: str, amount_usdc: Any) -> ActionResult:
        qid = ensure_bytes32(question_id)
        amount = parse_int(amount_usdc, "amountUsdc")
        if amount <= 0:
            raise InvalidParameter("amountUsdc must be positive")
        tx_hash = self._submit_vault(SeedLiquidityReport(question_id=qid, amount_usdc=amount), "seedLiquidity")
        return ActionResult(result="seedLiquidity", tx_hash=tx_hash, question_id=qid)

    def resolve_market(self, *, question_id: str, payouts: Sequence[Any], oracle: str) -> ActionResult:
        qid = ensure_bytes32(question_id)
        payout_values = _int_list(payouts, "payouts")
        if not payout_values:
            raise ValidationError("payouts array is required")
        report = ResolveReport(question_id=qid, payouts=payout_values, oracle=ensure_address(oracle, "oracle"))
        tx_hash = self._submit_sub0(report, "resolveMarket")
        return ActionResult(result="resolveMarket", tx_hash=tx_hash, question_id=qid)

    def stake(
        self,
        *,
        question_id: str,
        partition: Sequence[Any],
        token: str,
        amount: Any,
        owner: str,
        parent_collection_id: str | None = None,
    ) -> ActionResult:
        qid = ensure_bytes32(question_id)
        value = parse_int(amount, "amount")
        if value <= 0:
            raise InvalidParameter("amount must be positive")
        report = StakeReport(
            question_id=qid,
            partition=_int_list(partition, "partition"),
            token=ensure_address(token, "token"),
            amount=value,
            owner=ensure_address(owner, "owner"),
            parent_collection_id=ensure_bytes32(
                parent_collection_id or self.config.conventions.parent_collection_id, "parentCollectionId"
            ),
        )
        tx_hash = self._submit_sub0(report, "stake")
        return ActionResult(result="stake", tx_hash=tx_hash, question_id=qid)

    def redeem(
        self,
        *,
        condition_id: str,
        index_sets: Sequence[Any],
        token: str,
        owner: str,
        deadline: Any,
        nonce: Any,
        signature: str,
        parent_collection_id: str | None = None,
    ) -> ActionResult:
        sig = str(signature or "").strip()
        if not sig or len(hex_to_bytes(sig, "signature")) == 0:
            raise ValidationError("signature is required (owner-signed redeem authorization)")
        report = RedeemReport(
            parent_collection_id=ensure_bytes32(
                parent_collection_id or self.config.conventions.parent_collection_id, "parentCollectionId"
            ),
            condition_id=ensure_bytes32(condition_id, "conditionId"),
            index_sets=_int_list(index_sets, "indexSets"),
            token=ensure_address(token, "token"),
            owner=ensure_address(owner, "owner"),
            deadline=parse_int(deadline, "deadline"),
            nonce=parse_int(nonce, "nonce"),
            signature=sig,
        )
        tx_hash = self._submit_sub0(report, "redeem")
        return ActionResult(result="redeem", tx_hash=tx_hash)
