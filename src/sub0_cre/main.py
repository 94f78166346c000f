from __future__ import annotations

import argparse
import inspect
import json
import logging
import re
from typing import Any, Iterable

from dotenv import load_dotenv

from sub0_cre import pricing
from sub0_cre.approvals import sign_conditional_token_approval, sign_erc20_approve
from sub0_cre.chain import EnvSecretStore, Web3ChainClient
from sub0_cre.config import ChainConfig, env_log_level, load_config
from sub0_cre.custody import create_agent_key
from sub0_cre.errors import Sub0Error, ValidationError
from sub0_cre.platform import PlatformActions
from sub0_cre.protocol import TradeAuthorizer, parse_price_request, parse_quote_request
from sub0_cre.reports import REPORT_TYPES, CreateMarketReport, compute_question_id, encode_report

LOGGER = logging.getLogger("sub0_cre")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _setup_logging(level: str) -> None:
    numeric = getattr(logging, level, logging.INFO)
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # basicConfig is a no-op once handlers exist; the configured level still applies.
    logging.getLogger().setLevel(numeric)
    for noisy in ("urllib3", "web3"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _agent_key_command(args: argparse.Namespace) -> int:
    result = create_agent_key(EnvSecretStore(), args.agent_id, args.entropy)
    _print(result)
    return 0


def _question_id_command(args: argparse.Namespace) -> int:
    _print({"questionId": compute_question_id(args.question, args.creator, args.oracle)})
    return 0


def _price_command(args: argparse.Namespace) -> int:
    cost = pricing.cost_to_buy(args.supplies, args.outcome, args.quantity, args.b)
    units = pricing.to_settlement_units(cost, args.outcome_decimals, args.usdc_decimals)
    prices = pricing.outcome_prices(args.supplies, args.b)
    _print(
        {
            "cost": str(cost),
            "tradeCostUsdc": str(units),
            "prices": [str(p) for p in prices],
        }
    )
    return 0


PLATFORM_ACTIONS = {
    "createMarket": "create_market",
    "getMarket": "get_market",
    "seedLiquidity": "seed_liquidity",
    "resolveMarket": "resolve_market",
    "stake": "stake",
    "redeem": "redeem",
}
APPROVALS = {
    "erc20": sign_erc20_approve,
    "conditional-token": sign_conditional_token_approval,
}
_KEY_ALIASES = {"creator_address": "creator", "market_id": "question_id"}


def _snake_keys(payload: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in payload.items():
        name = _CAMEL_RE.sub("_", key).lower()
        out[_KEY_ALIASES.get(name, name)] = value
    return out


def _load_payload(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"--payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("--payload must be a JSON object")
    return payload


def _bind(fn: Any, kwargs: dict[str, Any], what: str) -> None:
    try:
        inspect.signature(fn).bind(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"invalid {what} payload: {exc}") from exc


def _runtime() -> tuple[ChainConfig, EnvSecretStore, Web3ChainClient]:
    config = load_config()
    _setup_logging(config.log_level)
    store = EnvSecretStore()
    return config, store, Web3ChainClient(config, store)


def _encode_command(args: argparse.Namespace) -> int:
    action = args.action.upper().replace("-", "_")
    report_cls = REPORT_TYPES.get(action)
    if report_cls is None:
        raise ValidationError(f"unknown report action {args.action!r}")
    fields = _snake_keys(_load_payload(args.payload))
    try:
        report = report_cls(**fields)
    except TypeError as exc:
        raise ValidationError(f"invalid {action} payload: {exc}") from exc
    out: dict[str, Any] = {"action": action, "report": "0x" + encode_report(report).hex()}
    if isinstance(report, CreateMarketReport):
        out["placeholderViolations"] = report.placeholder_violations()
    _print(out)
    return 0


def _quote_command(args: argparse.Namespace) -> int:
    config, store, client = _runtime()
    _print(TradeAuthorizer(config, client, store).authorize(_load_payload(args.payload)))
    return 0


def _price_quote_command(args: argparse.Namespace) -> int:
    config, store, client = _runtime()
    request = parse_price_request(_load_payload(args.payload), config.conventions)
    _print(TradeAuthorizer(config, client, store).price_quote(request).to_dict())
    return 0


def _agent_trade_command(args: argparse.Namespace) -> int:
    config, store, client = _runtime()
    request = parse_quote_request(_load_payload(args.payload), config.conventions)
    tx_hash = TradeAuthorizer(config, client, store).execute_agent_trade(args.agent_id, request)
    _print({"txHash": tx_hash})
    return 0


def _platform_command(args: argparse.Namespace) -> int:
    method_name = PLATFORM_ACTIONS.get(args.action)
    if method_name is None:
        raise ValidationError(f"unknown platform action {args.action!r}")
    config, _store, client = _runtime()
    method = getattr(PlatformActions(config, client), method_name)
    kwargs = _snake_keys(_load_payload(args.payload))
    _bind(method, kwargs, args.action)
    _print(method(**kwargs).to_dict())
    return 0


def _approve_command(args: argparse.Namespace) -> int:
    sign = APPROVALS[args.kind]
    kwargs = _snake_keys(_load_payload(args.payload))
    _bind(sign, {"config": None, "store": None, **kwargs}, args.kind)
    config = load_config()
    _setup_logging(config.log_level)
    _print(sign(config, EnvSecretStore(), **kwargs))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sub0-cre", description="Sub0 prediction-market pricing, signing and report tooling"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    agent = sub.add_parser("agent-key", help="Generate an agent key and print its encrypted blob")
    agent.add_argument("--agent-id", required=True, help="Agent identifier (logged, never the key)")
    agent.add_argument("--entropy", default=None, help="Extra entropy mixed into the random key")
    agent.set_defaults(func=_agent_key_command)

    qid = sub.add_parser("question-id", help="Compute keccak256(abi.encodePacked(question, creator, oracle))")
    qid.add_argument("question")
    qid.add_argument("creator")
    qid.add_argument("oracle")
    qid.set_defaults(func=_question_id_command)

    price = sub.add_parser("price", help="LMSR cost to buy from a supply vector")
    price.add_argument("--supplies", nargs="+", required=True, help="Outcome supplies in base units")
    price.add_argument("--b", required=True, help="LMSR liquidity parameter")
    price.add_argument("--outcome", type=int, required=True, help="Outcome index")
    price.add_argument("--quantity", required=True, help="Quantity in base units")
    price.add_argument("--outcome-decimals", type=int, default=18)
    price.add_argument("--usdc-decimals", type=int, default=6)
    price.set_defaults(func=_price_command)

    encode = sub.add_parser("encode", help="Encode an action-prefixed report")
    encode.add_argument("action", help="CREATE_MARKET, RESOLVE, STAKE, REDEEM, EXECUTE_TRADE or SEED_LIQUIDITY")
    encode.add_argument("--payload", required=True, help="Report fields as a camelCase JSON object")
    encode.set_defaults(func=_encode_command)

    quote = sub.add_parser("quote", help="Sign a quote, execute a trade, or execute a batch")
    quote.add_argument("--payload", required=True, help="Quote request body (JSON)")
    quote.set_defaults(func=_quote_command)

    price_quote = sub.add_parser("price-quote", help="Price from vault supplies and DON-sign the quote")
    price_quote.add_argument("--payload", required=True, help="questionId, outcomeIndex, quantity, bParameter")
    price_quote.set_defaults(func=_price_quote_command)

    agent_trade = sub.add_parser("agent-trade", help="Execute a trade signed by a custodial agent key")
    agent_trade.add_argument("--agent-id", required=True)
    agent_trade.add_argument("--payload", required=True, help="Quote request body (JSON)")
    agent_trade.set_defaults(func=_agent_trade_command)

    platform = sub.add_parser("platform", help="Submit a platform action report")
    platform.add_argument("action", choices=sorted(PLATFORM_ACTIONS))
    platform.add_argument("--payload", required=True, help="Action fields as a camelCase JSON object")
    platform.set_defaults(func=_platform_command)

    approve = sub.add_parser("approve", help="Sign (not broadcast) an approval transaction")
    approve.add_argument("kind", choices=sorted(APPROVALS))
    approve.add_argument("--payload", required=True, help="signer, agentId, spender/operator, amount, ...")
    approve.set_defaults(func=_approve_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    load_dotenv(override=False)
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _setup_logging(env_log_level())
    try:
        return int(args.func(args))
    except Sub0Error as exc:
        LOGGER.error("%s failed: %s", args.command, exc.message)
        return 2


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
