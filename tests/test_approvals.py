from __future__ import annotations

import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from eth_account import Account

from sub0_cre.approvals import sign_conditional_token_approval, sign_erc20_approve
from sub0_cre.errors import MissingSecret, ValidationError
from tests.helpers import AGENT_ADDRESS, AGENT_KEY, DON_ADDRESS, PREDICTION_VAULT, DictSecretStore, default_secrets, make_config


class Erc20ApproveTests(unittest.TestCase):
    def test_backend_signed_type2_transaction(self) -> None:
        out = sign_erc20_approve(
            make_config(), default_secrets(), signer="backend", spender=PREDICTION_VAULT, amount="1000000"
        )
        self.assertEqual(out["status"], "ok")
        self.assertEqual(out["result"], "approveErc20")
        self.assertEqual(out["signerAddress"], DON_ADDRESS)
        raw = bytes.fromhex(out["signedTx"][2:])
        self.assertEqual(raw[0], 0x02)
        self.assertEqual(Account.recover_transaction(out["signedTx"]), DON_ADDRESS)
        self.assertIn("095ea7b3", out["signedTx"])

    def test_agent_signer(self) -> None:
        store = default_secrets(**{"agent-1": AGENT_KEY[2:]})
        out = sign_erc20_approve(
            make_config(), store, signer="agent", agent_id="agent-1", spender=PREDICTION_VAULT, amount=1
        )
        self.assertEqual(out["signerAddress"], AGENT_ADDRESS)
        self.assertNotIn(AGENT_KEY[2:], str(out))

    def test_agent_requires_id(self) -> None:
        with self.assertRaises(ValidationError):
            sign_erc20_approve(make_config(), default_secrets(), signer="agent", spender=PREDICTION_VAULT, amount=1)

    def test_unknown_signer(self) -> None:
        with self.assertRaises(ValidationError):
            sign_erc20_approve(make_config(), default_secrets(), signer="user", spender=PREDICTION_VAULT, amount=1)

    def test_spender_required(self) -> None:
        with self.assertRaises(ValidationError):
            sign_erc20_approve(make_config(), default_secrets(), signer="backend", spender="", amount=1)

    def test_missing_agent_key(self) -> None:
        with self.assertRaises(MissingSecret):
            sign_erc20_approve(
                make_config(), DictSecretStore(), signer="agent", agent_id="agent-2", spender=PREDICTION_VAULT, amount=1
            )


class ConditionalTokenApprovalTests(unittest.TestCase):
    def test_set_approval_for_all(self) -> None:
        out = sign_conditional_token_approval(
            make_config(), default_secrets(), signer="backend", operator=PREDICTION_VAULT
        )
        self.assertEqual(out["result"], "approveConditionalToken")
        self.assertEqual(Account.recover_transaction(out["signedTx"]), DON_ADDRESS)
        self.assertIn("a22cb465", out["signedTx"])

    def test_operator_required(self) -> None:
        with self.assertRaises(ValidationError):
            sign_conditional_token_approval(make_config(), default_secrets(), signer="backend", operator=" ")


if __name__ == "__main__":
    unittest.main()
