from __future__ import annotations

import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from eth_abi import decode, encode
from eth_account import Account
from eth_utils import to_checksum_address

from sub0_cre.chain import (
    BALANCE_OF,
    GET_MARKET,
    NONCE_USED,
    ON_REPORT,
    ContractViews,
    EnvSecretStore,
    Web3ChainClient,
    argument_types,
    encode_call,
)
from sub0_cre.errors import MissingSecret, ValidationError
from sub0_cre.models import ReceiverStatus, TxStatus
from tests.helpers import (
    CONDITION_ID,
    DON_ADDRESS,
    DON_KEY,
    PREDICTION_VAULT,
    QUESTION_ID,
    SUB0,
    DictSecretStore,
    FakeChainClient,
    build_market,
    make_config,
)


class FakeEth:
    def __init__(self) -> None:
        self.gas_price = 7
        self.calls: list[tuple[dict, str]] = []
        self.sent: list[bytes] = []
        self.call_result = encode(["bool"], [True])
        self.receipt: dict = {"status": 1}
        self.send_error: Exception | None = None

    def call(self, tx: dict, block: str) -> bytes:
        self.calls.append((tx, block))
        return self.call_result

    def get_transaction_count(self, address: str, block: str) -> int:
        return 4

    def send_raw_transaction(self, raw_tx: bytes) -> bytes:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(bytes(raw_tx))
        return b"\xaa" * 32

    def wait_for_transaction_receipt(self, tx_hash: str, timeout: float) -> dict:
        return self.receipt


class FakeWeb3:
    def __init__(self) -> None:
        self.eth = FakeEth()


def make_client(secrets: DictSecretStore | None = None) -> tuple[Web3ChainClient, FakeEth]:
    w3 = FakeWeb3()
    store = secrets if secrets is not None else DictSecretStore({"CRE_ETH_PRIVATE_KEY": DON_KEY})
    return Web3ChainClient(make_config(), store, w3=w3), w3.eth


class CallEncodingTests(unittest.TestCase):
    def test_known_selectors(self) -> None:
        self.assertEqual(encode_call(BALANCE_OF, [SUB0, 1])[:4].hex(), "00fdd58e")
        self.assertEqual(encode_call("approve(address,uint256)", [SUB0, 1])[:4].hex(), "095ea7b3")

    def test_argument_types(self) -> None:
        self.assertEqual(argument_types(NONCE_USED), ["bytes32", "uint256"])
        self.assertEqual(argument_types("backendSigner()"), [])

    def test_argument_count_mismatch(self) -> None:
        with self.assertRaises(ValidationError):
            encode_call(NONCE_USED, [b"\x00" * 32])


class EnvSecretStoreTests(unittest.TestCase):
    def test_blank_values_are_missing(self) -> None:
        store = EnvSecretStore({"A": "  ", "B": " value "})
        self.assertIsNone(store.get_secret("A"))
        self.assertIsNone(store.get_secret("C"))
        self.assertEqual(store.get_secret("B"), "value")


class GarbageClient(FakeChainClient):
    def read_contract(self, address, signature, args, *, finalized=False):
        if signature == GET_MARKET:
            return b"\x01\x02\x03"
        return super().read_contract(address, signature, args, finalized=finalized)


class ContractViewsTests(unittest.TestCase):
    def test_missing_market_is_empty(self) -> None:
        views = ContractViews(make_config(), FakeChainClient())
        market = views.get_market(QUESTION_ID)
        self.assertEqual(market.outcome_slot_count, 0)
        self.assertTrue(market.is_empty)

    def test_undecodable_market_is_empty(self) -> None:
        views = ContractViews(make_config(), GarbageClient())
        self.assertEqual(views.get_market(QUESTION_ID).outcome_slot_count, 0)

    def test_market_round_trip(self) -> None:
        client = FakeChainClient()
        client.add_market(QUESTION_ID, build_market(3))
        market = ContractViews(make_config(), client).get_market(QUESTION_ID)
        self.assertEqual(market.condition_id, CONDITION_ID)
        self.assertEqual(market.outcome_slot_count, 3)
        self.assertEqual(client.reads[0], (SUB0, GET_MARKET, False))

    def test_vault_balances_per_outcome(self) -> None:
        client = FakeChainClient()
        client.add_market(QUESTION_ID, build_market(3), balances=[5, 6, 7])
        views = ContractViews(make_config(), client)
        self.assertEqual(views.outcome_supplies(build_market(3)), [5, 6, 7])

    def test_simple_views(self) -> None:
        client = FakeChainClient()
        client.condition_ids[QUESTION_ID] = CONDITION_ID
        client.used_nonces.add((QUESTION_ID, 9))
        views = ContractViews(make_config(), client)
        self.assertEqual(views.get_condition_id(QUESTION_ID), CONDITION_ID)
        self.assertEqual(views.backend_signer(), DON_ADDRESS)
        self.assertTrue(views.nonce_used(QUESTION_ID, 9))
        self.assertFalse(views.nonce_used(QUESTION_ID, 10))


class Web3ChainClientTests(unittest.TestCase):
    def test_reads_use_latest_unless_finalized(self) -> None:
        client, eth = make_client()
        args = [bytes.fromhex(QUESTION_ID[2:]), 1]
        client.read_contract(PREDICTION_VAULT, NONCE_USED, args)
        client.read_contract(PREDICTION_VAULT, NONCE_USED, args, finalized=True)
        self.assertEqual([block for _tx, block in eth.calls], ["latest", "finalized"])
        tx, _block = eth.calls[0]
        self.assertEqual(tx["to"], to_checksum_address(PREDICTION_VAULT))
        self.assertEqual(tx["data"], encode_call(NONCE_USED, args))

    def test_validation_views_read_latest_state(self) -> None:
        client, eth = make_client()
        views = ContractViews(make_config(), client)
        views.nonce_used(QUESTION_ID, 5)
        eth.call_result = encode(["bytes32"], [b"\x33" * 32])
        views.vault_balance_for_outcome(CONDITION_ID, 0)
        self.assertEqual(len(eth.calls), 4)
        self.assertEqual({block for _tx, block in eth.calls}, {"latest"})

    def test_submit_signs_on_report(self) -> None:
        client, eth = make_client()
        result = client.submit_report(PREDICTION_VAULT, b"\x01\x02", 500_000)
        self.assertEqual(result.tx_status, TxStatus.SUCCESS)
        self.assertEqual(result.receiver_status, ReceiverStatus.SUCCESS)
        self.assertEqual(result.tx_hash, "0x" + "aa" * 32)
        self.assertEqual(Account.recover_transaction(eth.sent[0]), DON_ADDRESS)

    def test_on_report_calldata(self) -> None:
        calldata = encode_call(ON_REPORT, [b"", b"\x01\x02"])
        metadata, report = decode(["bytes", "bytes"], calldata[4:])
        self.assertEqual(metadata, b"")
        self.assertEqual(report, b"\x01\x02")

    def test_send_failure_is_fatal(self) -> None:
        client, eth = make_client()
        eth.send_error = ConnectionError("rpc down")
        result = client.submit_report(PREDICTION_VAULT, b"\x01", 500_000)
        self.assertEqual(result.tx_status, TxStatus.FATAL)
        self.assertIn("rpc down", result.error_message)

    def test_status_zero_is_receiver_revert(self) -> None:
        client, eth = make_client()
        eth.receipt = {"status": 0}
        result = client.submit_report(PREDICTION_VAULT, b"\x01", 500_000)
        self.assertEqual(result.tx_status, TxStatus.SUCCESS)
        self.assertEqual(result.receiver_status, ReceiverStatus.REVERTED)

    def test_missing_forwarder_key(self) -> None:
        client, _eth = make_client(DictSecretStore())
        with self.assertRaises(MissingSecret):
            client.submit_report(PREDICTION_VAULT, b"\x01", 500_000)

    def test_rpc_url_required(self) -> None:
        client = Web3ChainClient(make_config(), DictSecretStore())
        with self.assertRaises(ValidationError):
            client.read_contract(PREDICTION_VAULT, NONCE_USED, [b"\x00" * 32, 1])


if __name__ == "__main__":
    unittest.main()
