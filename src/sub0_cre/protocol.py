"""Quote pricing and dual-signature trade authorization.

Quotes move VALIDATING -> PRICING -> SIGNING -> DONE and executions move
VALIDATING -> RECOVERING -> SIGNING -> SUBMITTING -> DONE. Any failure aborts
the request and carries the stage it happened in; no partial signatures are
returned. Batches are the one place errors are turned into per-item entries
instead of propagating.
"""
from __future__ import annotations

from contextlib import contextmanager
import logging
import secrets
import time
from typing import Any, Callable, Iterator, Mapping

from sub0_cre import pricing
from sub0_cre.chain import ChainClient, ContractViews, SecretStore, require_secret
from sub0_cre.config import ChainConfig, Conventions
from sub0_cre.errors import (
    IndexOutOfRange,
    InsufficientVaultBalance,
    InvalidParameter,
    MarketNotFound,
    NonceAlreadyUsed,
    StateConflict,
    Sub0Error,
    ValidationError,
)
from sub0_cre.models import (
    ZERO_ADDRESS,
    BatchItemError,
    BatchResult,
    Market,
    PriceRequest,
    QuoteRequest,
    SignedQuote,
    TradeItem,
    TradeStage,
    ensure_bytes32,
    normalize_signature,
    parse_int,
    parse_units,
)
from sub0_cre.reports import ExecuteTradeReport, encode_report, submit_report
from sub0_cre.typed_data import (
    DON_QUOTE_TYPES,
    USER_TRADE_TYPES,
    TypedDataDomain,
    address_of,
    recover_signer,
    sign_typed_data,
)

LOGGER = logging.getLogger("sub0_cre")

BACKEND_SIGNER_PRIVATE_KEY = "BACKEND_SIGNER_PRIVATE_KEY"
NONCE_ATTEMPTS = 10


def random_nonce() -> int:
    return secrets.randbits(256)


@contextmanager
def _stage(stage: TradeStage, question_id: str) -> Iterator[None]:
    LOGGER.debug("trade_stage stage=%s question_id=%s", stage.value, question_id)
    try:
        yield
    except Sub0Error as exc:
        if exc.stage is None:
            exc.stage = stage.value
        raise


def _finish(question_id: str) -> None:
    LOGGER.debug("trade_stage stage=%s question_id=%s", TradeStage.DONE.value, question_id)


def _parse_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw if raw is not None else "").strip().lower()
    if text in {"1", "true", "yes"}:
        return True
    if text in {"", "0", "false", "no"}:
        return False
    raise ValidationError(f"{name} must be a boolean")


def _parse_item(raw: Mapping[str, Any], conventions: Conventions, where: str) -> TradeItem:
    max_cost = raw.get("maxCostUsdc")
    return TradeItem(
        quantity=parse_units(raw.get("quantity", "0"), conventions.outcome_token_decimals, f"{where}quantity"),
        trade_cost_usdc=parse_units(raw.get("tradeCostUsdc", "0"), conventions.usdc_decimals, f"{where}tradeCostUsdc"),
        nonce=parse_int(raw.get("nonce", "0"), f"{where}nonce"),
        deadline=parse_int(raw.get("deadline", "0"), f"{where}deadline"),
        user_signature=normalize_signature(raw.get("userSignature")),
        max_cost_usdc=(
            parse_units(max_cost, conventions.usdc_decimals, f"{where}maxCostUsdc") if max_cost is not None else None
        ),
    )


def parse_quote_request(payload: Mapping[str, Any], conventions: Conventions) -> QuoteRequest:
    """Build a QuoteRequest from a camelCase request body.

    Amounts given as integers are base units; decimal strings are human units
    scaled by the token's decimals (quantity by the outcome token, costs by USDC).
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be an object")
    raw_id = payload.get("questionId") or payload.get("marketId")
    if not str(raw_id or "").strip():
        raise ValidationError("questionId is required (32-byte hex)")
    trades_raw = payload.get("trades") or []
    if not isinstance(trades_raw, list):
        raise ValidationError("trades must be a list")
    item = _parse_item(payload, conventions, "")
    return QuoteRequest(
        question_id=ensure_bytes32(raw_id),
        outcome_index=parse_int(payload.get("outcomeIndex", 0), "outcomeIndex"),
        buy=_parse_bool(payload.get("buy"), "buy"),
        quantity=item.quantity,
        trade_cost_usdc=item.trade_cost_usdc,
        nonce=item.nonce,
        deadline=item.deadline,
        max_cost_usdc=item.max_cost_usdc,
        user_signature=item.user_signature,
        trades=[_parse_item(t, conventions, f"trades[{i}].") for i, t in enumerate(trades_raw)],
    )


def parse_price_request(payload: Mapping[str, Any], conventions: Conventions) -> PriceRequest:
    raw_id = payload.get("questionId") or payload.get("marketId")
    if not str(raw_id or "").strip():
        raise ValidationError("questionId is required (32-byte hex)")
    return PriceRequest(
        question_id=ensure_bytes32(raw_id),
        outcome_index=parse_int(payload.get("outcomeIndex", 0), "outcomeIndex"),
        quantity=parse_units(payload.get("quantity", "0"), conventions.outcome_token_decimals, "quantity"),
        b_parameter=pricing.to_decimal(payload.get("bParameter"), "bParameter"),
        buy=_parse_bool(payload.get("buy", True), "buy"),
    )


class TradeAuthorizer:
    def __init__(
        self,
        config: ChainConfig,
        client: ChainClient,
        secrets_store: SecretStore,
        *,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], int] = random_nonce,
    ) -> None:
        self.config = config
        self.client = client
        self.secrets = secrets_store
        self.views = ContractViews(config, client)
        self.clock = clock
        self.nonce_factory = nonce_factory

    @property
    def domain(self) -> TypedDataDomain:
        return TypedDataDomain(
            name=self.config.eip712.domain_name,
            version=self.config.eip712.domain_version,
            chain_id=self.config.chain_id,
            verifying_contract=self.config.contracts.prediction_vault,
        )

    # Validation

    def _load_market(self, question_id: str, outcome_index: int) -> Market:
        market = self.views.get_market(question_id)
        if market.outcome_slot_count == 0:
            raise MarketNotFound(f"market {question_id} not found or invalid")
        if outcome_index < 0 or outcome_index >= market.outcome_slot_count:
            raise IndexOutOfRange(
                f"outcomeIndex {outcome_index} out of range for {market.outcome_slot_count} outcomes"
            )
        return market

    def _check_deadline(self, deadline: int) -> None:
        if deadline <= int(self.clock()):
            raise ValidationError("deadline must be in the future")

    def _check_nonce(self, question_id: str, nonce: int) -> None:
        if self.views.nonce_used(question_id, nonce):
            raise NonceAlreadyUsed("nonce already used")

    def _check_vault(self, market: Market, outcome_index: int, quantity: int) -> None:
        balance = self.views.vault_balance_for_outcome(market.condition_id, outcome_index)
        if balance < quantity:
            raise InsufficientVaultBalance(
                f"insufficient vault balance for outcome {outcome_index} ({balance} < {quantity})"
            )

    def _validate_item(self, request: QuoteRequest, market: Market, item: TradeItem) -> None:
        if item.quantity <= 0:
            raise InvalidParameter("quantity must be > 0")
        self._check_deadline(item.deadline)
        self._check_nonce(request.question_id, item.nonce)
        if request.buy:
            self._check_vault(market, request.outcome_index, item.quantity)
        if item.user_signature and item.trade_cost_usdc > item.effective_max_cost:
            raise ValidationError(
                f"tradeCostUsdc {item.trade_cost_usdc} exceeds maxCostUsdc {item.effective_max_cost}"
            )

    def _issue_nonce(self, question_id: str) -> int:
        for _ in range(NONCE_ATTEMPTS):
            nonce = int(self.nonce_factory())
            if not self.views.nonce_used(question_id, nonce):
                return nonce
        raise StateConflict(f"no unused nonce after {NONCE_ATTEMPTS} attempts")

    # Signatures

    def _don_key(self) -> str:
        return require_secret(self.secrets, BACKEND_SIGNER_PRIVATE_KEY)

    def _sign_don_quote(self, request: QuoteRequest, item: TradeItem, user: str, key: str) -> str:
        message = {
            "marketId": request.question_id,
            "outcomeIndex": request.outcome_index,
            "buy": request.buy,
            "quantity": item.quantity,
            "tradeCostUsdc": item.trade_cost_usdc,
            "user": user,
            "nonce": item.nonce,
            "deadline": item.deadline,
        }
        return sign_typed_data(self.domain, DON_QUOTE_TYPES, "DONQuote", message, key)

    def _user_trade_message(self, request: QuoteRequest, item: TradeItem) -> dict[str, Any]:
        return {
            "marketId": request.question_id,
            "outcomeIndex": request.outcome_index,
            "buy": request.buy,
            "quantity": item.quantity,
            "maxCostUsdc": item.effective_max_cost,
            "nonce": item.nonce,
            "deadline": item.deadline,
        }

    def _recover_user(self, request: QuoteRequest, item: TradeItem) -> str:
        return recover_signer(
            self.domain,
            USER_TRADE_TYPES,
            "UserTrade",
            self._user_trade_message(request, item),
            item.user_signature or "",
        )

    def _submit(self, request: QuoteRequest, item: TradeItem, user: str, don_signature: str, user_signature: str) -> str:
        report = ExecuteTradeReport(
            question_id=request.question_id,
            outcome_index=request.outcome_index,
            buy=request.buy,
            quantity=item.quantity,
            trade_cost_usdc=item.trade_cost_usdc,
            max_cost_usdc=item.effective_max_cost,
            nonce=item.nonce,
            deadline=item.deadline,
            user=user,
            don_signature=don_signature,
            user_signature=user_signature,
        )
        return submit_report(
            self.client,
            self.config.contracts.prediction_vault,
            encode_report(report),
            self.config.gas_limit,
            "executeTrade",
        )

    def _execute_item(self, request: QuoteRequest, market: Market, item: TradeItem, key: str) -> str:
        qid = request.question_id
        with _stage(TradeStage.VALIDATING, qid):
            if not item.user_signature:
                raise ValidationError("userSignature is required to execute a trade")
            self._validate_item(request, market, item)
        with _stage(TradeStage.RECOVERING, qid):
            user = self._recover_user(request, item)
        with _stage(TradeStage.SIGNING, qid):
            don_signature = self._sign_don_quote(request, item, user, key)
        with _stage(TradeStage.SUBMITTING, qid):
            tx_hash = self._submit(request, item, user, don_signature, item.user_signature)
        _finish(qid)
        LOGGER.info(
            "trade_executed question_id=%s outcome=%s buy=%s user=%s nonce=%s tx_hash=%s",
            qid,
            request.outcome_index,
            request.buy,
            user,
            item.nonce,
            tx_hash or "-",
        )
        return tx_hash

    # Operations

    def price_quote(self, request: PriceRequest) -> SignedQuote:
        """Price a trade from on-chain supplies and return an advisory DON-signed quote."""
        qid = ensure_bytes32(request.question_id)
        with _stage(TradeStage.VALIDATING, qid):
            if request.quantity <= 0:
                raise InvalidParameter("quantity must be > 0")
            market = self._load_market(qid, request.outcome_index)
        with _stage(TradeStage.PRICING, qid):
            supplies = self.views.outcome_supplies(market)
            if request.buy and supplies[request.outcome_index] < request.quantity:
                raise InsufficientVaultBalance(
                    f"insufficient vault balance for outcome {request.outcome_index}"
                )
            cost = pricing.cost_to_buy(supplies, request.outcome_index, request.quantity, request.b_parameter)
            conventions = self.config.conventions
            trade_cost = pricing.to_settlement_units(
                cost, conventions.outcome_token_decimals, conventions.usdc_decimals
            )
            nonce = self._issue_nonce(qid)
            deadline = int(self.clock()) + int(self.config.deadline_seconds)
        quote = QuoteRequest(
            question_id=qid,
            outcome_index=request.outcome_index,
            buy=request.buy,
            quantity=request.quantity,
            trade_cost_usdc=trade_cost,
            nonce=nonce,
            deadline=deadline,
        )
        with _stage(TradeStage.SIGNING, qid):
            signature = self._sign_don_quote(quote, quote.as_item(), ZERO_ADDRESS, self._don_key())
        _finish(qid)
        LOGGER.info(
            "quote_priced question_id=%s outcome=%s quantity=%s trade_cost_usdc=%s",
            qid,
            request.outcome_index,
            request.quantity,
            trade_cost,
        )
        return self._signed(quote, quote.as_item(), ZERO_ADDRESS, signature)

    def sign_quote(self, request: QuoteRequest) -> SignedQuote:
        """DON-sign a caller-priced quote without executing it (zero-address user)."""
        qid = request.question_id
        item = request.as_item()
        with _stage(TradeStage.VALIDATING, qid):
            if item.quantity <= 0:
                raise InvalidParameter("quantity must be > 0")
            market = self._load_market(qid, request.outcome_index)
            self._check_deadline(item.deadline)
            self._check_nonce(qid, item.nonce)
            if request.buy:
                self._check_vault(market, request.outcome_index, item.quantity)
        with _stage(TradeStage.SIGNING, qid):
            signature = self._sign_don_quote(request, item, ZERO_ADDRESS, self._don_key())
        _finish(qid)
        LOGGER.info("quote_signed question_id=%s outcome=%s nonce=%s advisory=true", qid, request.outcome_index, item.nonce)
        return self._signed(request, item, ZERO_ADDRESS, signature)

    def execute_trade(self, request: QuoteRequest) -> str:
        qid = request.question_id
        with _stage(TradeStage.VALIDATING, qid):
            market = self._load_market(qid, request.outcome_index)
            key = self._don_key()
        return self._execute_item(request, market, request.as_item(), key)

    def execute_batch(self, request: QuoteRequest) -> BatchResult:
        qid = request.question_id
        with _stage(TradeStage.VALIDATING, qid):
            if not request.trades:
                raise ValidationError("trades must not be empty")
            market = self._load_market(qid, request.outcome_index)
            key = self._don_key()
        result = BatchResult()
        for index, item in enumerate(request.trades):
            try:
                result.tx_hashes.append(self._execute_item(request, market, item, key))
            except Sub0Error as exc:
                LOGGER.warning("batch_item_failed question_id=%s index=%s error=%s", qid, index, exc.message)
                result.errors.append(BatchItemError(index=index, kind=exc.kind, message=exc.message))
        LOGGER.info(
            "batch_executed question_id=%s submitted=%s errors=%s", qid, result.submitted, len(result.errors)
        )
        return result

    def execute_agent_trade(self, agent_id: str, request: QuoteRequest) -> str:
        """Trade on behalf of a custodial agent: the agent key signs the trader side."""
        qid = request.question_id
        agent_id = str(agent_id or "").strip()
        item = request.as_item()
        with _stage(TradeStage.VALIDATING, qid):
            if not agent_id:
                raise ValidationError("agentId is required")
            market = self._load_market(qid, request.outcome_index)
            self._validate_item(request, market, item)
            agent_key = require_secret(self.secrets, agent_id)
            don_key = self._don_key()
        item.max_cost_usdc = item.trade_cost_usdc
        with _stage(TradeStage.SIGNING, qid):
            user = address_of(agent_key)
            user_signature = sign_typed_data(
                self.domain, USER_TRADE_TYPES, "UserTrade", self._user_trade_message(request, item), agent_key
            )
            don_signature = self._sign_don_quote(request, item, user, don_key)
        with _stage(TradeStage.SUBMITTING, qid):
            tx_hash = self._submit(request, item, user, don_signature, user_signature)
        _finish(qid)
        LOGGER.info("agent_trade_executed question_id=%s agent_id=%s user=%s tx_hash=%s", qid, agent_id, user, tx_hash or "-")
        return tx_hash

    def authorize(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch a request body: batch, single execution, or advisory quote."""
        request = parse_quote_request(payload, self.config.conventions)
        if request.trades:
            return self.execute_batch(request).to_dict()
        if request.user_signature:
            return {"txHash": self.execute_trade(request)}
        return self.sign_quote(request).to_dict()

    @staticmethod
    def _signed(request: QuoteRequest, item: TradeItem, user: str, signature: str) -> SignedQuote:
        return SignedQuote(
            question_id=request.question_id,
            outcome_index=request.outcome_index,
            buy=request.buy,
            quantity=item.quantity,
            trade_cost_usdc=item.trade_cost_usdc,
            nonce=item.nonce,
            deadline=item.deadline,
            user=user,
            signature=signature,
        )
