from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Any

from sub0_cre.errors import ConfigError


DEFAULT_TARGET = "staging-settings"
DEFAULT_DEADLINE_SECONDS = 900
DEFAULT_GAS_LIMIT = 500_000
ZERO_BYTES32 = "0x" + ("00" * 32)


@dataclass(frozen=True)
class ContractAddresses:
    sub0: str
    prediction_vault: str
    conditional_tokens: str
    usdc: str = ""


@dataclass(frozen=True)
class EIP712Config:
    domain_name: str
    domain_version: str


@dataclass(frozen=True)
class Conventions:
    usdc_decimals: int = 6
    outcome_token_decimals: int = 18
    parent_collection_id: str = ZERO_BYTES32


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    chain_selector_name: str
    contracts: ContractAddresses
    eip712: EIP712Config
    conventions: Conventions
    gas_limit: int = DEFAULT_GAS_LIMIT
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    rpc_url: str = ""
    log_level: str = "INFO"


def _require(raw: dict[str, Any], key: str, where: str) -> Any:
    value = raw.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigError(f"{where}.{key} is required")
    return value


def _as_int(value: Any, where: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where} must be an integer, got {value!r}") from exc


def parse_chain_config(raw: dict[str, Any]) -> ChainConfig:
    """Build a ChainConfig from one target entry of a contracts JSON file.

    Keys follow the deployed contracts.json (camelCase). ``gasLimit`` may be a
    string, as the workflow configs store it.
    """
    if not isinstance(raw, dict):
        raise ConfigError("contracts config must be an object")
    contracts_raw = _require(raw, "contracts", "config")
    eip712_raw = _require(raw, "eip712", "config")
    conventions_raw = raw.get("conventions") or {}
    if not isinstance(contracts_raw, dict) or not isinstance(eip712_raw, dict):
        raise ConfigError("config.contracts and config.eip712 must be objects")

    contracts = ContractAddresses(
        sub0=str(_require(contracts_raw, "sub0", "contracts")),
        prediction_vault=str(_require(contracts_raw, "predictionVault", "contracts")),
        conditional_tokens=str(_require(contracts_raw, "conditionalTokens", "contracts")),
        usdc=str(contracts_raw.get("usdc") or ""),
    )
    eip712 = EIP712Config(
        domain_name=str(_require(eip712_raw, "domainName", "eip712")),
        domain_version=str(_require(eip712_raw, "domainVersion", "eip712")),
    )
    conventions = Conventions(
        usdc_decimals=_as_int(conventions_raw.get("usdcDecimals", 6), "conventions.usdcDecimals"),
        outcome_token_decimals=_as_int(
            conventions_raw.get("outcomeTokenDecimals", 18), "conventions.outcomeTokenDecimals"
        ),
        parent_collection_id=str(conventions_raw.get("parentCollectionId") or ZERO_BYTES32),
    )
    gas_limit = raw.get("gasLimit")
    return ChainConfig(
        chain_id=_as_int(_require(raw, "chainId", "config"), "config.chainId"),
        chain_selector_name=str(raw.get("chainSelectorName") or ""),
        contracts=contracts,
        eip712=eip712,
        conventions=conventions,
        gas_limit=_as_int(gas_limit, "config.gasLimit") if gas_limit not in (None, "") else DEFAULT_GAS_LIMIT,
    )


def load_contracts_file(path: str | Path, target: str = DEFAULT_TARGET) -> ChainConfig:
    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"contracts file not found: {file_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"contracts file is not valid JSON: {file_path}") from exc
    if isinstance(data, dict) and target in data:
        return parse_chain_config(data[target])
    if isinstance(data, dict) and "chainId" in data:
        return parse_chain_config(data)
    raise ConfigError(f"target {target!r} not found in {file_path}")


def env_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"


def load_config() -> ChainConfig:
    contracts_file = os.getenv("SUB0_CONTRACTS_FILE", "contracts.json").strip()
    target = os.getenv("SUB0_TARGET", DEFAULT_TARGET).strip() or DEFAULT_TARGET
    config = load_contracts_file(contracts_file, target)

    raw_deadline = os.getenv("SUB0_DEADLINE_SECONDS", "").strip()
    deadline_seconds = config.deadline_seconds
    if raw_deadline:
        deadline_seconds = _as_int(raw_deadline, "SUB0_DEADLINE_SECONDS")
        if deadline_seconds <= 0:
            raise ConfigError("SUB0_DEADLINE_SECONDS must be > 0")
    raw_gas = os.getenv("SUB0_GAS_LIMIT", "").strip()
    gas_limit = _as_int(raw_gas, "SUB0_GAS_LIMIT") if raw_gas else config.gas_limit

    return ChainConfig(
        chain_id=config.chain_id,
        chain_selector_name=config.chain_selector_name,
        contracts=config.contracts,
        eip712=config.eip712,
        conventions=config.conventions,
        gas_limit=gas_limit,
        deadline_seconds=deadline_seconds,
        rpc_url=os.getenv("SUB0_RPC_URL", "").strip(),
        log_level=env_log_level(),
    )
