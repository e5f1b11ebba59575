# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The raffle lifecycle as a sequence of dependent on-chain steps.

Every step takes the WorkflowContext, submits its transaction(s) through the context's
ChainClient, waits for finalization, records the StepResult on the context and checks the
observed outcome against an Expectation. When the caller does not pass one, enter and
resolve derive the expected outcome from the harness' own ledger of the raffle, so a
coin-type mismatch, an oversold raffle or an unauthorized resolver must all be rejected by
the contract.

A step never retries. A mismatch raises ExpectationError and the remaining steps, which
depend on the state this one should have produced, are not run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import TransactionArgument

from .chain import ChainClient, TransactionRejected
from .config import CoinConfig, HarnessConfig
from .expectations import Expectation, ExpectationError
from .models import CoinType, RaffleId, RaffleRecord, StepResult, TokenId
from .publisher import ContractPublisher

LOG = logging.getLogger(__name__)

ADMIN = "admin"


class PreconditionError(Exception):
    """A step was asked to run before the state it depends on was established."""


@dataclass
class WorkflowContext:
    """State accumulated by the workflow. Passed explicitly to every step."""

    chain: ChainClient
    config: HarnessConfig
    admin: Account
    publisher: ContractPublisher
    clock: Callable[[], float] = time.time
    accounts: Dict[str, Account] = field(default_factory=dict)
    contract_address: Optional[AccountAddress] = None
    coin_types: Dict[str, CoinType] = field(default_factory=dict)
    tokens: List[TokenId] = field(default_factory=list)
    raffles: Dict[str, RaffleRecord] = field(default_factory=dict)
    raffle_counts: Dict[str, int] = field(default_factory=dict)
    results: List[Tuple[str, StepResult]] = field(default_factory=list)

    def __post_init__(self):
        self.accounts.setdefault(ADMIN, self.admin)

    def account(self, role: str) -> Account:
        try:
            return self.accounts[role]
        except KeyError:
            raise PreconditionError(f"No account for role {role}") from None

    def role_of(self, address: AccountAddress) -> str:
        for role, account in self.accounts.items():
            if account.address() == address:
                return role
        return str(address)

    def coin_type(self, name: str) -> CoinType:
        try:
            return self.coin_types[name]
        except KeyError:
            raise PreconditionError(f"Coin {name} has not been published") from None

    def raffle(self, raffle_id: RaffleId) -> RaffleRecord:
        try:
            return self.raffles[str(raffle_id)]
        except KeyError:
            raise PreconditionError(f"Raffle {raffle_id} was not created") from None

    def latest_raffle(self, creator: AccountAddress) -> RaffleRecord:
        count = self.raffle_counts.get(str(creator), 0)
        if count == 0:
            raise PreconditionError(f"{creator} has not created a raffle")
        return self.raffle(RaffleId(creator, count - 1))

    def contract_function(self, name: str) -> str:
        if self.contract_address is None:
            raise PreconditionError("The raffle contract has not been published")
        return f"{self.contract_address}::{self.config.contract.module}::{name}"

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def record(self, step: str, result: StepResult) -> StepResult:
        self.results.append((step, result))
        return result


async def _attempt(ctx: WorkflowContext, step: str, submission) -> StepResult:
    """Runs one chain call. A rejection is an observation, anything else propagates."""
    try:
        result = await submission
    except TransactionRejected as e:
        result = e.result
    LOG.info(f"{step}: {result}")
    return ctx.record(step, result)


def _verify(step: str, what: str, expected: Any, actual: Any) -> None:
    if expected != actual:
        raise ExpectationError(step, f"{what} == {expected}", str(actual))


#
# Setup
#


async def init_accounts(
    ctx: WorkflowContext, roles: Sequence[str], amount: Optional[int] = None
) -> StepResult:
    """Creates an account for every role that does not have one and funds all of them."""

    amount = ctx.config.accounts.fund_amount if amount is None else amount
    for role in roles:
        if role not in ctx.accounts:
            ctx.accounts[role] = Account.generate()

    LOG.info("=== Addresses ===")
    for role, account in ctx.accounts.items():
        LOG.info(f"{role}: {account.address()}")

    for role, account in ctx.accounts.items():
        await ctx.chain.fund_account(account.address(), amount)
        balance = await ctx.chain.account_balance(account.address())
        if balance < amount:
            raise ExpectationError(
                f"init_accounts[{role}]", f"balance >= {amount}", str(balance)
            )
    return ctx.record("init_accounts", StepResult.ok())


async def publish_contract(
    ctx: WorkflowContext,
    compile: bool = True,
    expect: Optional[Expectation] = None,
) -> StepResult:
    contract = ctx.config.contract
    result = await _attempt(
        ctx,
        "publish_contract",
        ctx.publisher.publish(
            ctx.admin,
            contract.package_dir,
            {contract.named_address: ctx.admin.address()},
            contract.modules,
            compile,
        ),
    )
    (expect or Expectation.succeeds()).check("publish_contract", result)
    if result.success:
        ctx.contract_address = ctx.admin.address()
    return result


async def publish_coin(
    ctx: WorkflowContext,
    publisher: Account,
    coin: CoinConfig,
    compile: bool = True,
    expect: Optional[Expectation] = None,
) -> StepResult:
    step = f"publish_coin[{coin.name}]"
    result = await _attempt(
        ctx,
        step,
        ctx.publisher.publish(
            publisher,
            coin.package_dir,
            {coin.named_address: publisher.address()},
            None,
            compile,
        ),
    )
    (expect or Expectation.succeeds()).check(step, result)
    if result.success:
        ctx.coin_types[coin.name] = CoinType(
            publisher.address(), coin.module, coin.name
        )
    return result


#
# Coins
#


async def register_coin(
    ctx: WorkflowContext,
    account: Account,
    coin_type: CoinType,
    expect: Optional[Expectation] = None,
) -> StepResult:
    if coin_type not in ctx.coin_types.values():
        raise PreconditionError(f"{coin_type} has not been published")

    step = f"register_coin[{ctx.role_of(account.address())}, {coin_type.name}]"
    address = account.address()
    if not await ctx.chain.coin_registered(address, coin_type):
        _verify(
            step,
            "balance before registration",
            0,
            await ctx.chain.coin_balance(address, coin_type),
        )

    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            account,
            "0x1::managed_coin::register",
            [coin_type.type_tag()],
            [],
        ),
    )
    (expect or Expectation.succeeds()).check(step, result)
    if result.success:
        _verify(
            step,
            "registered",
            True,
            await ctx.chain.coin_registered(address, coin_type),
        )
    return result


async def mint_coin(
    ctx: WorkflowContext,
    minter: Account,
    receiver: AccountAddress,
    amount: int,
    coin_type: CoinType,
    expect: Optional[Expectation] = None,
) -> StepResult:
    step = f"mint_coin[{ctx.role_of(receiver)}, {amount} {coin_type.name}]"
    if not await ctx.chain.coin_registered(receiver, coin_type):
        raise PreconditionError(f"{receiver} is not registered for {coin_type}")

    before = await ctx.chain.coin_balance(receiver, coin_type)
    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            minter,
            "0x1::managed_coin::mint",
            [coin_type.type_tag()],
            [
                TransactionArgument(receiver, Serializer.struct),
                TransactionArgument(amount, Serializer.u64),
            ],
        ),
    )
    (expect or Expectation.succeeds()).check(step, result)

    after = await ctx.chain.coin_balance(receiver, coin_type)
    _verify(step, "balance", before + amount if result.success else before, after)
    return result


#
# Token
#


async def mint_token(ctx: WorkflowContext, minter: Account) -> TokenId:
    """Mints a new token into the minter's raffle collection, creating the collection on
    the first mint. Returns the new token's id."""

    address = minter.address()
    index = sum(1 for token in ctx.tokens if token.creator == address)
    token_id = TokenId(
        creator=address,
        collection=f"{address}'s raffle collection",
        name=f"{address}'s raffle token {index}",
        property_version=0,
    )
    step = f"mint_token[{ctx.role_of(address)}]"

    if index == 0:
        await _create_collection(ctx, step, minter, token_id.collection)

    supply = ctx.config.raffle.token_supply
    result = await _attempt(
        ctx,
        f"{step}.create_token",
        ctx.chain.create_token(
            minter,
            token_id.collection,
            token_id.name,
            "Raffle prize",
            supply,
            "https://aptos.dev/img/nyan.jpeg",
        ),
    )
    Expectation.succeeds().check(f"{step}.create_token", result)
    balance = await ctx.chain.token_balance(address, token_id)
    _verify(step, "token balance", supply, balance)

    ctx.tokens.append(token_id)
    return token_id


async def _create_collection(
    ctx: WorkflowContext, step: str, minter: Account, collection: str
) -> None:
    result = await _attempt(
        ctx,
        f"{step}.create_collection",
        ctx.chain.create_collection(
            minter,
            collection,
            "Collection holding raffle prizes",
            "https://aptos.dev",
        ),
    )
    Expectation.succeeds().check(f"{step}.create_collection", result)


#
# Raffle
#


async def create_raffle(
    ctx: WorkflowContext,
    creator: Account,
    token_id: TokenId,
    coin_type: CoinType,
    end_time: int,
    ticket_price: int,
    ticket_supply: int,
    expect: Optional[Expectation] = None,
) -> StepResult:
    address = creator.address()
    step = f"create_raffle[{ctx.role_of(address)}]"
    function = ctx.contract_function("create_raffle")
    if token_id not in ctx.tokens:
        raise PreconditionError(f"Token {token_id.name} was not minted")
    if await ctx.chain.token_balance(address, token_id) < 1:
        raise PreconditionError(f"{address} does not own {token_id.name}")

    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            creator,
            function,
            [coin_type.type_tag()],
            [
                TransactionArgument(token_id.creator, Serializer.struct),
                TransactionArgument(token_id.collection, Serializer.str),
                TransactionArgument(token_id.name, Serializer.str),
                TransactionArgument(token_id.property_version, Serializer.u64),
                TransactionArgument(end_time, Serializer.u64),
                TransactionArgument(ticket_price, Serializer.u64),
                TransactionArgument(ticket_supply, Serializer.u64),
            ],
        ),
    )
    (expect or Expectation.succeeds()).check(step, result)

    if result.success:
        index = ctx.raffle_counts.get(str(address), 0)
        raffle_id = RaffleId(address, index)
        ctx.raffles[str(raffle_id)] = RaffleRecord(
            raffle_id=raffle_id,
            token_id=token_id,
            coin_type=coin_type,
            end_time=end_time,
            ticket_price=ticket_price,
            ticket_supply=ticket_supply,
        )
        ctx.raffle_counts[str(address)] = index + 1
        LOG.info(f"Raffle {raffle_id} created")
    return result


def expected_entry(
    ctx: WorkflowContext, record: RaffleRecord, coin_type: CoinType, ticket_count: int
) -> Expectation:
    rejections = ctx.config.rejections
    if coin_type != record.coin_type:
        return Expectation.rejected(rejections.coin_mismatch)
    if record.resolved:
        return Expectation.rejected()
    if ticket_count > record.tickets_remaining():
        return Expectation.rejected(rejections.tickets_exhausted)
    return Expectation.succeeds()


async def enter(
    ctx: WorkflowContext,
    buyer: Account,
    raffle_id: RaffleId,
    coin_type: CoinType,
    ticket_count: int,
    expect: Optional[Expectation] = None,
) -> StepResult:
    record = ctx.raffle(raffle_id)
    address = buyer.address()
    step = f"enter[{ctx.role_of(address)}, {ticket_count} x {coin_type.name}]"
    expect = expect or expected_entry(ctx, record, coin_type, ticket_count)

    sold_before = await tickets_sold(ctx, record)
    balance_before = await ctx.chain.coin_balance(address, coin_type)

    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            buyer,
            ctx.contract_function("enter"),
            [coin_type.type_tag()],
            [
                TransactionArgument(raffle_id.creator, Serializer.struct),
                TransactionArgument(raffle_id.index, Serializer.u64),
                TransactionArgument(ticket_count, Serializer.u64),
            ],
        ),
    )
    expect.check(step, result)

    if result.success:
        record.tickets_sold += ticket_count
        record.entries.append({"buyer": address, "tickets": ticket_count})
        expected_balance = balance_before - record.ticket_price * ticket_count
    else:
        expected_balance = balance_before

    # A rejected purchase must not have touched the buyer's funds or the ticket count.
    _verify(
        step,
        f"{coin_type.name} balance",
        expected_balance,
        await ctx.chain.coin_balance(address, coin_type),
    )
    if sold_before is not None:
        sold = await tickets_sold(ctx, record)
        _verify(step, "tickets sold", record.tickets_sold, sold)
    return result


async def tickets_sold(ctx: WorkflowContext, record: RaffleRecord) -> Optional[int]:
    """Reads the on-chain ticket count when the contract exposes a view for it."""

    view = ctx.config.contract.tickets_sold_view
    if not view:
        return None
    if ctx.contract_address is None:
        raise PreconditionError("The raffle contract has not been published")
    response = await ctx.chain.view(
        f"{ctx.contract_address}::{view}",
        [str(record.coin_type)],
        [str(record.raffle_id.creator), str(record.raffle_id.index)],
    )
    return int(response[0])


def expected_resolution(
    ctx: WorkflowContext, record: RaffleRecord, caller: AccountAddress
) -> Expectation:
    if caller != ctx.admin.address() and caller != record.raffle_id.creator:
        return Expectation.rejected(ctx.config.rejections.unauthorized_resolve)
    if record.resolved:
        return Expectation.rejected()
    if record.tickets_remaining() > 0 and ctx.now_ms() < record.end_time:
        return Expectation.rejected()
    return Expectation.succeeds()


async def resolve(
    ctx: WorkflowContext,
    caller: Account,
    raffle_id: RaffleId,
    expect: Optional[Expectation] = None,
) -> StepResult:
    record = ctx.raffle(raffle_id)
    address = caller.address()
    step = f"resolve[{ctx.role_of(address)}]"
    expect = expect or expected_resolution(ctx, record, address)

    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            caller,
            ctx.contract_function("resolve"),
            [record.coin_type.type_tag()],
            [
                TransactionArgument(raffle_id.creator, Serializer.struct),
                TransactionArgument(raffle_id.index, Serializer.u64),
            ],
        ),
    )
    expect.check(step, result)
    if result.success:
        record.resolved = True
    return result


def expected_claim(
    ctx: WorkflowContext, record: RaffleRecord, caller: AccountAddress
) -> Expectation:
    rejections = ctx.config.rejections
    if not record.resolved:
        return Expectation.rejected()
    if record.winner is not None and record.winner == caller:
        if rejections.duplicate_claim:
            return Expectation.rejected(rejections.duplicate_claim)
        return Expectation.either()
    if record.winner is not None and rejections.losing_claim:
        return Expectation.rejected(rejections.losing_claim)
    # Until the winner has claimed, any caller may be the winner.
    return Expectation.either(rejections.losing_claim)


async def claim(
    ctx: WorkflowContext,
    caller: Account,
    raffle_id: RaffleId,
    expect: Optional[Expectation] = None,
) -> StepResult:
    """Claims the prize. Whoever gains the token becomes the recorded winner; nobody may
    gain it after that, including the winner."""

    record = ctx.raffle(raffle_id)
    address = caller.address()
    step = f"claim[{ctx.role_of(address)}]"
    expect = expect or expected_claim(ctx, record, address)

    before = await ctx.chain.token_balance(address, record.token_id)
    result = await _attempt(
        ctx,
        step,
        ctx.chain.submit_entry_function(
            caller,
            ctx.contract_function("claim_token"),
            [record.coin_type.type_tag()],
            [
                TransactionArgument(raffle_id.creator, Serializer.struct),
                TransactionArgument(raffle_id.index, Serializer.u64),
            ],
        ),
    )
    expect.check(step, result)

    gained = await ctx.chain.token_balance(address, record.token_id) - before
    if gained > 0:
        if record.winner is not None:
            raise ExpectationError(
                step,
                f"no transfer, {ctx.role_of(record.winner)} already claimed",
                f"{gained} token(s) transferred",
            )
        eligible = (
            record.holds_tickets(address)
            if record.entries
            else address == record.raffle_id.creator
        )
        if not eligible:
            raise ExpectationError(
                step,
                "the token to go to a ticket holder, or back to the creator if none",
                f"{ctx.role_of(address)} received it",
            )
        record.winner = address
        LOG.info(f"{ctx.role_of(address)} won raffle {raffle_id}")
    return result
