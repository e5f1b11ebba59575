# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Harness configuration. Everything that differs between deployments lives here: endpoints,
package locations, raffle parameters and the rejection messages the deployed contract
produces. A configuration file is optional; every field has a default and the node and
faucet endpoints can also be overridden through the environment.

Example::

    [network]
    node_url = "http://127.0.0.1:8080/v1"
    faucet_url = "http://127.0.0.1:8081"

    [contract]
    package_dir = "."
    module = "raffle_test_1"

    [[coins]]
    name = "MoonCoin"
    package_dir = "MoonCoin"

    [rejections]
    coin_mismatch = "E_COIN_TYPE_MISMATCH"
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
    get_type_hints,
)

import tomli
from aptos_sdk.account import Account

from .common import (
    ADMIN_KEY_ENV,
    CLI_PATH_ENV,
    DEFAULT_BINARY,
    DEFAULT_FAUCET_URL,
    DEFAULT_FUND_AMOUNT,
    DEFAULT_NODE_URL,
    DEFAULT_TRANSACTION_WAIT_SECS,
    FAUCET_URL_ENV,
    NODE_URL_ENV,
)

LOG = logging.getLogger(__name__)


class ConfigError(Exception):
    """The configuration file or environment holds an unusable value."""


@dataclass(frozen=True)
class NetworkConfig:
    node_url: str = DEFAULT_NODE_URL
    faucet_url: str = DEFAULT_FAUCET_URL
    faucet_auth_token: Optional[str] = None
    transaction_wait_secs: int = DEFAULT_TRANSACTION_WAIT_SECS


@dataclass(frozen=True)
class AccountsConfig:
    fund_amount: int = DEFAULT_FUND_AMOUNT
    admin_key_file: Optional[str] = None


@dataclass(frozen=True)
class ContractConfig:
    package_dir: str = "."
    # Named address in Move.toml that is bound to the admin account.
    named_address: str = "admin"
    module: str = "raffle_test_1"
    # Bytecode modules to publish, in order. Empty publishes every module in the build.
    modules: Tuple[str, ...] = ()
    # Optional view function, relative to the contract address, returning tickets sold
    # for (raffle creator, raffle index).
    tickets_sold_view: Optional[str] = None


@dataclass(frozen=True)
class CoinConfig:
    name: str
    package_dir: str
    module: str
    named_address: str


@dataclass(frozen=True)
class RaffleConfig:
    ticket_price: int = 1000
    ticket_supply: int = 200
    duration_ms: int = 500_000
    tickets_per_entry: int = 100
    mint_amount: int = 1_000_000_000
    token_supply: int = 1


@dataclass(frozen=True)
class RejectionConfig:
    """Regular expressions matched against the VM status of rejected transactions.

    An empty pattern accepts any rejection. For claims, an empty pattern means the
    contract may either reject or silently accept the call.
    """

    coin_mismatch: str = ""
    tickets_exhausted: str = ""
    unauthorized_resolve: str = ""
    losing_claim: str = ""
    duplicate_claim: str = ""


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    compiler_level: str = "WARNING"


def default_coins() -> Tuple[CoinConfig, ...]:
    return (
        CoinConfig("MoonCoin", "MoonCoin", "MoonCoin", "MoonCoin"),
        CoinConfig("SunCoin", "SunCoin", "SunCoin", "SunCoin"),
    )


@dataclass(frozen=True)
class HarnessConfig:
    network: NetworkConfig = field(default_factory=NetworkConfig)
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    contract: ContractConfig = field(default_factory=ContractConfig)
    coins: Tuple[CoinConfig, ...] = field(default_factory=default_coins)
    raffle: RaffleConfig = field(default_factory=RaffleConfig)
    rejections: RejectionConfig = field(default_factory=RejectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cli_path: str = DEFAULT_BINARY

    def coin(self, name: str) -> CoinConfig:
        for coin in self.coins:
            if coin.name == name:
                return coin
        raise ConfigError(f"No coin named {name} is configured")

    def redacted(self) -> Dict[str, Any]:
        network = dict(self.network.__dict__)
        if network["faucet_auth_token"]:
            network["faucet_auth_token"] = "<redacted>"
        return {
            "network": network,
            "accounts": dict(self.accounts.__dict__),
            "contract": dict(self.contract.__dict__),
            "coins": [dict(coin.__dict__) for coin in self.coins],
            "raffle": dict(self.raffle.__dict__),
            "rejections": dict(self.rejections.__dict__),
            "logging": dict(self.logging.__dict__),
            "cli_path": self.cli_path,
        }


def load_config(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> HarnessConfig:
    """Read a TOML configuration file (if any) and apply environment overrides."""

    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if path:
        try:
            with open(path, "rb") as f:
                data = tomli.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Configuration file not found: {path}") from e
        except tomli.TOMLDecodeError as e:
            raise ConfigError(f"Invalid configuration file {path}: {e}") from e

    base_dir = os.path.dirname(os.path.abspath(path)) if path else os.getcwd()

    network = _section(NetworkConfig, data, "network")
    network = replace(
        network,
        node_url=environ.get(NODE_URL_ENV) or network.node_url,
        faucet_url=environ.get(FAUCET_URL_ENV) or network.faucet_url,
    )

    accounts = _section(AccountsConfig, data, "accounts")
    if accounts.admin_key_file:
        accounts = replace(
            accounts, admin_key_file=_resolve(base_dir, accounts.admin_key_file)
        )

    contract = _section(ContractConfig, data, "contract")
    contract = replace(
        contract,
        package_dir=_resolve(base_dir, contract.package_dir),
        modules=tuple(contract.modules),
    )

    config = HarnessConfig(
        network=network,
        accounts=accounts,
        contract=contract,
        coins=_coins(data.get("coins"), base_dir),
        raffle=_section(RaffleConfig, data, "raffle"),
        rejections=_section(RejectionConfig, data, "rejections"),
        logging=_section(LoggingConfig, data, "logging"),
        cli_path=environ.get(CLI_PATH_ENV) or _cli_path(data),
    )
    validate(config)
    return config


def validate(config: HarnessConfig) -> None:
    raffle = config.raffle
    for name in ("ticket_price", "ticket_supply", "tickets_per_entry", "token_supply"):
        if getattr(raffle, name) <= 0:
            raise ConfigError(f"raffle.{name} must be positive")
    if raffle.duration_ms < 0:
        raise ConfigError("raffle.duration_ms must not be negative")
    if config.accounts.fund_amount <= 0:
        raise ConfigError("accounts.fund_amount must be positive")
    if config.network.transaction_wait_secs <= 0:
        raise ConfigError("network.transaction_wait_secs must be positive")
    if len(config.coins) < 2:
        raise ConfigError("At least two coins are required to exercise coin mismatches")

    for name, pattern in config.rejections.__dict__.items():
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"rejections.{name} is not a valid pattern: {e}") from e

    for level in (config.logging.level, config.logging.compiler_level):
        if not isinstance(logging.getLevelName(level.upper()), int):
            raise ConfigError(f"Unknown log level: {level}")


def load_admin_account(
    config: HarnessConfig, environ: Optional[Mapping[str, str]] = None
) -> Account:
    """The admin key is injected, never embedded. Without one a throwaway key is used."""

    environ = os.environ if environ is None else environ
    key = environ.get(ADMIN_KEY_ENV)
    if key:
        try:
            return Account.load_key(key)
        except Exception as e:
            raise ConfigError(f"{ADMIN_KEY_ENV} does not hold a valid private key") from e
    if config.accounts.admin_key_file:
        try:
            return Account.load(config.accounts.admin_key_file)
        except (OSError, ValueError, KeyError) as e:
            raise ConfigError(
                f"Unable to load admin key from {config.accounts.admin_key_file}: {e}"
            ) from e

    LOG.warning(
        f"Neither {ADMIN_KEY_ENV} nor accounts.admin_key_file is set, generating a new admin account"
    )
    return Account.generate()


def _cli_path(data: Dict[str, Any]) -> str:
    cli_path = data.get("cli_path", DEFAULT_BINARY)
    _check_type("cli_path", cli_path, str)
    return cli_path


def _section(cls, data: Dict[str, Any], name: str):
    values = data.get(name, {})
    if not isinstance(values, dict):
        raise ConfigError(f"[{name}] must be a table")
    hints = get_type_hints(cls)
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    for key, value in values.items():
        _check_type(f"{name}.{key}", value, hints[key])
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid [{name}] section: {e}") from e


def _coins(
    values: Optional[List[Dict[str, Any]]], base_dir: str
) -> Tuple[CoinConfig, ...]:
    if values is None:
        return tuple(
            replace(coin, package_dir=_resolve(base_dir, coin.package_dir))
            for coin in default_coins()
        )

    if not isinstance(values, list) or not all(isinstance(v, dict) for v in values):
        raise ConfigError("coins must be an array of tables, declared with [[coins]]")

    known = {f.name for f in fields(CoinConfig)}
    coins = []
    for value in values:
        if "name" not in value:
            raise ConfigError("Every [[coins]] entry needs a name")
        unknown = set(value) - known
        if unknown:
            raise ConfigError(
                f"Unknown keys in [[coins]]: {', '.join(sorted(unknown))}"
            )
        for key, item in value.items():
            _check_type(f"coins.{key}", item, str)
        name = value["name"]
        coins.append(
            CoinConfig(
                name=name,
                package_dir=_resolve(base_dir, value.get("package_dir", name)),
                module=value.get("module", name),
                named_address=value.get("named_address", name),
            )
        )
    names = [coin.name for coin in coins]
    if len(set(names)) != len(names):
        raise ConfigError("Coin names must be unique")
    return tuple(coins)


_TYPE_NAMES = {int: "an integer", str: "a string", list: "an array of strings"}


def _expected_type(hint) -> type:
    origin = getattr(hint, "__origin__", None)
    if origin is Union:
        return _expected_type(next(a for a in hint.__args__ if a is not type(None)))
    if origin is tuple:
        return list
    return hint


def _check_type(key: str, value: Any, hint) -> None:
    expected = _expected_type(hint)
    valid = isinstance(value, expected)
    # TOML booleans are ints to isinstance.
    if expected is int and isinstance(value, bool):
        valid = False
    if valid and expected is list:
        valid = all(isinstance(item, str) for item in value)
    if not valid:
        raise ConfigError(
            f"{key} must be {_TYPE_NAMES[expected]}, not {type(value).__name__}"
        )


def _resolve(base_dir: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))
