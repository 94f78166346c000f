from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import sys
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from eth_abi import encode  # noqa: E402
from eth_utils import keccak  # noqa: E402

from sub0_cre import chain  # noqa: E402
from sub0_cre.config import ChainConfig, ContractAddresses, Conventions, EIP712Config  # noqa: E402
from sub0_cre.models import Market, ReceiverStatus, TxStatus, WriteResult  # noqa: E402
from sub0_cre.typed_data import address_of  # noqa: E402

SUB0 = "0x" + "a1" * 20
PREDICTION_VAULT = "0x" + "b2" * 20
CONDITIONAL_TOKENS = "0x" + "c3" * 20
USDC = "0x" + "d4" * 20
ORACLE = "0x" + "e5" * 20
CREATOR = "0x" + "f6" * 20

DON_KEY = "0x" + "01" * 32
USER_KEY = "0x" + "02" * 32
AGENT_KEY = "0x" + "03" * 32
DON_ADDRESS = address_of(DON_KEY)
USER_ADDRESS = address_of(USER_KEY)
AGENT_ADDRESS = address_of(AGENT_KEY)

QUESTION_ID = "0x" + "11" * 32
CONDITION_ID = "0x" + "22" * 32

NOW = 1_700_000_000


def make_config(**kwargs: Any) -> ChainConfig:
    cfg = ChainConfig(
        chain_id=11155111,
        chain_selector_name="ethereum-testnet-sepolia",
        contracts=ContractAddresses(
            sub0=SUB0,
            prediction_vault=PREDICTION_VAULT,
            conditional_tokens=CONDITIONAL_TOKENS,
            usdc=USDC,
        ),
        eip712=EIP712Config(domain_name="Sub0PredictionVault", domain_version="1"),
        conventions=Conventions(),
    )
    return replace(cfg, **kwargs)


def build_market(outcome_slot_count: int = 2, question: str = "Will it rain?") -> Market:
    return Market(
        question=question,
        condition_id=CONDITION_ID,
        oracle=ORACLE,
        owner=CREATOR,
        created_at=NOW - 60,
        duration=86_400,
        outcome_slot_count=outcome_slot_count,
        oracle_type=1,
        market_type=0,
    )


class DictSecretStore:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = dict(values or {})

    def get_secret(self, secret_id: str) -> str | None:
        return self.values.get(secret_id) or None


def default_secrets(**extra: str) -> DictSecretStore:
    values = {"BACKEND_SIGNER_PRIVATE_KEY": DON_KEY}
    values.update(extra)
    return DictSecretStore(values)


class FakeChainClient:
    """In-memory contracts answering the views the core reads, ABI-encoded."""

    def __init__(self) -> None:
        self.markets: dict[str, Market] = {}
        self.used_nonces: set[tuple[str, int]] = set()
        self.balances: dict[tuple[str, int], int] = {}
        self.condition_ids: dict[str, str] = {}
        self.backend_signer = DON_ADDRESS
        self.write_results: list[WriteResult] = []
        self.submissions: list[tuple[str, bytes, int]] = []
        self.reads: list[tuple[str, str, bool]] = []
        self._collections: dict[bytes, tuple[str, int]] = {}
        self._positions: dict[int, tuple[str, int]] = {}

    def add_market(self, question_id: str, market: Market, balances: list[int] | None = None) -> None:
        self.markets[question_id.lower()] = market
        for index, balance in enumerate(balances or []):
            self.balances[(market.condition_id.lower(), index)] = balance

    def read_contract(self, address: str, signature: str, args: Any, *, finalized: bool = False) -> bytes:
        self.reads.append((address, signature, finalized))
        if signature == chain.GET_MARKET:
            market = self.markets.get("0x" + bytes(args[0]).hex())
            if market is None:
                return b""
            return encode(
                [chain.MARKET_TUPLE],
                [
                    (
                        market.question,
                        bytes.fromhex(market.condition_id[2:]),
                        market.oracle,
                        market.owner,
                        market.created_at,
                        market.duration,
                        market.outcome_slot_count,
                        market.oracle_type,
                        market.market_type,
                    )
                ],
            )
        if signature == chain.NONCE_USED:
            used = ("0x" + bytes(args[0]).hex(), int(args[1])) in self.used_nonces
            return encode(["bool"], [used])
        if signature == chain.GET_CONDITION_ID:
            cid = self.condition_ids.get("0x" + bytes(args[0]).hex(), "0x" + "00" * 32)
            return encode(["bytes32"], [bytes.fromhex(cid[2:])])
        if signature == chain.BACKEND_SIGNER:
            return encode(["address"], [self.backend_signer])
        if signature == chain.GET_COLLECTION_ID:
            _parent, condition_id, index_set = args
            collection = keccak(bytes(condition_id) + int(index_set).to_bytes(32, "big"))
            self._collections[collection] = ("0x" + bytes(condition_id).hex(), int(index_set).bit_length() - 1)
            return encode(["bytes32"], [collection])
        if signature == chain.GET_POSITION_ID:
            _token, collection = args
            position = int.from_bytes(keccak(bytes(collection)), "big")
            self._positions[position] = self._collections[bytes(collection)]
            return encode(["uint256"], [position])
        if signature == chain.BALANCE_OF:
            _account, position = args
            key = self._positions.get(int(position))
            return encode(["uint256"], [self.balances.get(key, 0) if key else 0])
        raise AssertionError(f"unexpected read {signature}")

    def submit_report(self, receiver: str, payload: bytes, gas_limit: int) -> WriteResult:
        self.submissions.append((receiver, bytes(payload), gas_limit))
        if self.write_results:
            return self.write_results.pop(0)
        return WriteResult(tx_status=TxStatus.SUCCESS, tx_hash="0x" + f"{len(self.submissions):064x}")


def reverted(tx_hash: str = "0x" + "ee" * 32) -> WriteResult:
    return WriteResult(tx_status=TxStatus.SUCCESS, receiver_status=ReceiverStatus.REVERTED, tx_hash=tx_hash)


def fatal(message: str = "rpc unavailable") -> WriteResult:
    return WriteResult(tx_status=TxStatus.FATAL, error_message=message)
