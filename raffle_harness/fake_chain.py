# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
An in-memory ChainClient for exercising the workflow without a network. It models just
enough of the framework (AptosCoin, managed coins, token v1) and of a raffle contract to
produce the successes and aborts the harness expects from a real deployment.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.transactions import TransactionArgument
from aptos_sdk.type_tag import TypeTag

from .chain import ChainClient
from .common import APTOS_COIN_STORE, TOKEN_STORE
from .models import CoinType, StepResult, TokenId

SUCCESS = "Executed successfully"

# Abort codes of the scripted raffle contract.
E_NOT_AUTHORIZED = 1
E_COIN_TYPE_MISMATCH = 2
E_NOT_ENOUGH_TICKETS = 3
E_RAFFLE_NOT_ENDED = 4
E_RAFFLE_RESOLVED = 5
E_RAFFLE_NOT_RESOLVED = 6
E_ALREADY_CLAIMED = 7
E_TOKEN_NOT_OWNED = 8
E_NO_SUCH_RAFFLE = 9
E_INSUFFICIENT_BALANCE = 10


class Abort(Exception):
    def __init__(self, vm_status: str):
        super().__init__(vm_status)
        self.vm_status = vm_status


@dataclass
class FakeRaffle:
    coin_type: str
    token_key: Tuple[str, str, str, int]
    end_time: int
    ticket_price: int
    ticket_supply: int
    tickets_sold: int = 0
    escrow: int = 0
    tickets: List[Tuple[str, int]] = field(default_factory=list)
    winner: Optional[str] = None
    claimed: bool = False


class FakeChainClient(ChainClient):
    """Executes transactions immediately. Every call is appended to `transactions`."""

    def __init__(
        self,
        raffle_module: str = "raffle_test_1",
        winning_ticket: int = 0,
        losing_claim_aborts: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.raffle_module = raffle_module
        self.winning_ticket = winning_ticket
        self.losing_claim_aborts = losing_claim_aborts
        self.clock = clock

        self.apt: Dict[str, int] = {}
        self.coin_stores: Dict[Tuple[str, str], int] = {}
        self.packages: Dict[str, List[bytes]] = {}
        self.collections: Set[Tuple[str, str]] = set()
        self.token_stores: Dict[str, Dict[Tuple[str, str, str, int], int]] = {}
        self.raffles: Dict[Tuple[str, int], FakeRaffle] = {}
        self.raffle_counts: Dict[str, int] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.closed = False

    #
    # ChainClient
    #

    async def fund_account(self, address: AccountAddress, amount: int) -> None:
        key = str(address)
        self.apt[key] = self.apt.get(key, 0) + amount

    async def account_resource(
        self, address: AccountAddress, resource_type: str
    ) -> Optional[Dict[str, Any]]:
        key = str(address)
        if resource_type == APTOS_COIN_STORE:
            if key not in self.apt:
                return None
            value = str(self.apt[key])
            return {"type": resource_type, "data": {"coin": {"value": value}}}
        if resource_type == TOKEN_STORE:
            if key not in self.token_stores:
                return None
            return {"type": resource_type, "data": {"tokens": {"handle": f"0x{key}"}}}
        for (owner, coin_type), value in self.coin_stores.items():
            if owner == key and resource_type == f"0x1::coin::CoinStore<{coin_type}>":
                return {"type": resource_type, "data": {"coin": {"value": str(value)}}}
        return None

    async def account_balance(self, address: AccountAddress) -> int:
        return self.apt.get(str(address), 0)

    async def coin_balance(self, address: AccountAddress, coin_type: CoinType) -> int:
        return self.coin_stores.get((str(address), str(coin_type)), 0)

    async def coin_registered(
        self, address: AccountAddress, coin_type: CoinType
    ) -> bool:
        return (str(address), str(coin_type)) in self.coin_stores

    async def token_balance(self, owner: AccountAddress, token_id: TokenId) -> int:
        store = self.token_stores.get(str(owner), {})
        return store.get(self._token_key(token_id), 0)

    async def submit_entry_function(
        self,
        sender: Account,
        function: str,
        type_arguments: List[TypeTag],
        arguments: List[TransactionArgument],
        check_success: bool = True,
    ) -> StepResult:
        values = [argument.value for argument in arguments]
        types = [str(type_argument) for type_argument in type_arguments]
        return self._execute(
            sender,
            function,
            lambda: self._dispatch(str(sender.address()), function, types, values),
            check_success,
        )

    async def create_collection(
        self,
        account: Account,
        name: str,
        description: str,
        uri: str,
        check_success: bool = True,
    ) -> StepResult:
        def run():
            key = (str(account.address()), name)
            if key in self.collections:
                self._abort("0x3", "token", "ECOLLECTION_ALREADY_EXISTS", 1)
            self.collections.add(key)

        return self._execute(
            account, "0x3::token::create_collection_script", run, check_success
        )

    async def create_token(
        self,
        account: Account,
        collection_name: str,
        name: str,
        description: str,
        supply: int,
        uri: str,
        check_success: bool = True,
    ) -> StepResult:
        def run():
            creator = str(account.address())
            if (creator, collection_name) not in self.collections:
                self._abort("0x3", "token", "ECOLLECTION_NOT_PUBLISHED", 2)
            store = self.token_stores.setdefault(creator, {})
            store[(creator, collection_name, name, 0)] = supply

        return self._execute(
            account, "0x3::token::create_token_script", run, check_success
        )

    async def publish_package(
        self,
        sender: Account,
        package_metadata: bytes,
        modules: List[bytes],
        check_success: bool = True,
    ) -> StepResult:
        def run():
            if not modules:
                self._abort("0x1", "code", "EEMPTY_PACKAGE", 3)
            self.packages.setdefault(str(sender.address()), []).extend(modules)

        return self._execute(
            sender, "0x1::code::publish_package_txn", run, check_success
        )

    async def view(
        self, function: str, type_arguments: List[str], arguments: List[str]
    ) -> List[Any]:
        address, module, name = function.split("::")
        if module != self.raffle_module or name != "tickets_sold":
            raise ValueError(f"Unknown view function {function}")
        raffle = self.raffles.get((arguments[0], int(arguments[1])))
        if raffle is None:
            raise ValueError(f"No raffle {arguments[0]}#{arguments[1]}")
        return [str(raffle.tickets_sold)]

    async def close(self) -> None:
        self.closed = True

    #
    # Execution
    #

    def _execute(
        self,
        sender: Account,
        function: str,
        run: Callable[[], None],
        check_success: bool,
    ) -> StepResult:
        txn_hash = "0x" + hashlib.sha3_256(
            f"{len(self.transactions)}:{sender.address()}:{function}".encode()
        ).hexdigest()
        try:
            run()
            result = StepResult(txn_hash, True, SUCCESS)
        except Abort as e:
            result = StepResult(txn_hash, False, e.vm_status)
        self.transactions.append(
            {
                "hash": txn_hash,
                "sender": str(sender.address()),
                "function": function,
                "success": result.success,
                "vm_status": result.vm_status,
            }
        )
        return self.checked(result, check_success)

    @staticmethod
    def _abort(address: str, module: str, reason: str, code: int) -> None:
        raise Abort(f"Move abort in {address}::{module}: {reason}(0x{code:x}): ")

    def _dispatch(
        self, sender: str, function: str, types: List[str], values: List[Any]
    ) -> None:
        address, module, name = function.split("::")
        if f"{address}::{module}" == "0x1::managed_coin":
            if name == "register":
                return self._register(sender, types[0])
            if name == "mint":
                return self._mint(sender, types[0], str(values[0]), values[1])
        elif module == self.raffle_module:
            if address not in self.packages:
                raise Abort("LINKER_ERROR")
            handler = {
                "create_raffle": self._create_raffle,
                "enter": self._enter,
                "resolve": self._resolve,
                "claim_token": self._claim_token,
            }.get(name)
            if handler is not None:
                return handler(address, sender, types[0], values)
        raise Abort("FUNCTION_RESOLUTION_FAILURE")

    def _register(self, sender: str, coin_type: str) -> None:
        self._assert_coin_published(coin_type)
        self.coin_stores.setdefault((sender, coin_type), 0)

    def _mint(self, sender: str, coin_type: str, receiver: str, amount: int) -> None:
        self._assert_coin_published(coin_type)
        if coin_type.split("::")[0] != sender:
            self._abort("0x1", "managed_coin", "ENO_CAPABILITIES", 0x60001)
        if (receiver, coin_type) not in self.coin_stores:
            self._abort("0x1", "coin", "ECOIN_STORE_NOT_PUBLISHED", 0x60005)
        self.coin_stores[(receiver, coin_type)] += amount

    def _assert_coin_published(self, coin_type: str) -> None:
        if coin_type.split("::")[0] not in self.packages:
            raise Abort("TYPE_RESOLUTION_FAILURE")

    def _raffle_abort(self, owner: str, reason: str, code: int) -> None:
        self._abort(owner, self.raffle_module, reason, code)

    def _create_raffle(
        self, owner: str, sender: str, coin_type: str, values: List[Any]
    ) -> None:
        token_creator, collection, name, property_version = values[:4]
        end_time, ticket_price, ticket_supply = values[4:7]
        token_key = (str(token_creator), collection, name, property_version)
        store = self.token_stores.get(sender, {})
        if store.get(token_key, 0) < 1:
            self._raffle_abort(owner, "E_TOKEN_NOT_OWNED", E_TOKEN_NOT_OWNED)
        store[token_key] -= 1

        index = self.raffle_counts.get(sender, 0)
        self.raffle_counts[sender] = index + 1
        self.raffles[(sender, index)] = FakeRaffle(
            coin_type, token_key, end_time, ticket_price, ticket_supply
        )

    def _raffle(self, owner: str, values: List[Any]) -> FakeRaffle:
        raffle = self.raffles.get((str(values[0]), values[1]))
        if raffle is None:
            self._raffle_abort(owner, "E_NO_SUCH_RAFFLE", E_NO_SUCH_RAFFLE)
        return raffle

    def _enter(
        self, owner: str, sender: str, coin_type: str, values: List[Any]
    ) -> None:
        raffle = self._raffle(owner, values)
        count = values[2]
        if raffle.winner is not None:
            self._raffle_abort(owner, "E_RAFFLE_RESOLVED", E_RAFFLE_RESOLVED)
        if coin_type != raffle.coin_type:
            self._raffle_abort(owner, "E_COIN_TYPE_MISMATCH", E_COIN_TYPE_MISMATCH)
        if raffle.tickets_sold + count > raffle.ticket_supply:
            self._raffle_abort(owner, "E_NOT_ENOUGH_TICKETS", E_NOT_ENOUGH_TICKETS)
        cost = raffle.ticket_price * count
        if self.coin_stores.get((sender, coin_type), 0) < cost:
            self._raffle_abort(owner, "E_INSUFFICIENT_BALANCE", E_INSUFFICIENT_BALANCE)

        self.coin_stores[(sender, coin_type)] -= cost
        raffle.escrow += cost
        raffle.tickets_sold += count
        raffle.tickets.append((sender, count))

    def _resolve(
        self, owner: str, sender: str, coin_type: str, values: List[Any]
    ) -> None:
        raffle = self._raffle(owner, values)
        if sender != owner and sender != str(values[0]):
            self._raffle_abort(owner, "E_NOT_AUTHORIZED", E_NOT_AUTHORIZED)
        if raffle.winner is not None:
            self._raffle_abort(owner, "E_RAFFLE_RESOLVED", E_RAFFLE_RESOLVED)
        sold_out = raffle.tickets_sold == raffle.ticket_supply
        if not sold_out and int(self.clock() * 1000) < raffle.end_time:
            self._raffle_abort(owner, "E_RAFFLE_NOT_ENDED", E_RAFFLE_NOT_ENDED)
        if not raffle.tickets:
            # Nobody entered; the prize goes back to the creator.
            raffle.winner = str(values[0])
            return

        ticket = self.winning_ticket % raffle.tickets_sold
        for buyer, count in raffle.tickets:
            if ticket < count:
                raffle.winner = buyer
                break
            ticket -= count

    def _claim_token(
        self, owner: str, sender: str, coin_type: str, values: List[Any]
    ) -> None:
        raffle = self._raffle(owner, values)
        if raffle.winner is None:
            self._raffle_abort(owner, "E_RAFFLE_NOT_RESOLVED", E_RAFFLE_NOT_RESOLVED)
        if sender != raffle.winner:
            if self.losing_claim_aborts:
                self._raffle_abort(owner, "E_NOT_AUTHORIZED", E_NOT_AUTHORIZED)
            return
        if raffle.claimed:
            self._raffle_abort(owner, "E_ALREADY_CLAIMED", E_ALREADY_CLAIMED)
        raffle.claimed = True
        store = self.token_stores.setdefault(sender, {})
        store[raffle.token_key] = store.get(raffle.token_key, 0) + 1

    @staticmethod
    def _token_key(token_id: TokenId) -> Tuple[str, str, str, int]:
        return (
            str(token_id.creator),
            token_id.collection,
            token_id.name,
            token_id.property_version,
        )
