# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import os
import tempfile
import unittest
from dataclasses import replace

from aptos_sdk.account import Account

from . import workflow
from .chain import ChainClient
from .config import CoinConfig, ContractConfig, HarnessConfig, RejectionConfig
from .expectations import Expectation, ExpectationError
from .fake_chain import FakeChainClient
from .move_cli import MoveCompiler
from .publisher import ContractPublisher
from .publisher_test import write_package
from .workflow import PreconditionError, WorkflowContext


def packaged_config(root: str) -> HarnessConfig:
    """A configuration whose contract and coin packages are already built under root."""
    write_package(root, "Raffle", {"raffle_test_1": b"raffle"})
    write_package(root, "MoonCoin", {"MoonCoin": b"moon"})
    write_package(root, "SunCoin", {"SunCoin": b"sun"})
    return HarnessConfig(
        contract=ContractConfig(
            package_dir=os.path.join(root, "Raffle"),
            tickets_sold_view="raffle_test_1::tickets_sold",
        ),
        coins=tuple(
            CoinConfig(name, os.path.join(root, name), name, name)
            for name in ("MoonCoin", "SunCoin")
        ),
    )


def create_context(config: HarnessConfig, chain: ChainClient) -> WorkflowContext:
    return WorkflowContext(
        chain=chain,
        config=config,
        admin=Account.generate(),
        publisher=ContractPublisher(chain, MoveCompiler()),
    )


class GenerousChainClient(FakeChainClient):
    """A broken contract that hands the prize to every claimant."""

    def _claim_token(self, owner, sender, coin_type, values):
        raffle = self._raffle(owner, values)
        store = self.token_stores.setdefault(sender, {})
        store[raffle.token_key] = store.get(raffle.token_key, 0) + 1


class WorkflowTestCase(unittest.IsolatedAsyncioTestCase):
    chain_class = FakeChainClient

    async def asyncSetUp(self) -> None:
        self.temp = tempfile.TemporaryDirectory()
        self.chain = self.chain_class()
        self.config = packaged_config(self.temp.name)
        self.ctx = create_context(self.config, self.chain)

    async def asyncTearDown(self) -> None:
        self.temp.cleanup()

    async def setup_coins(self) -> None:
        ctx = self.ctx
        await workflow.init_accounts(
            ctx, ["creator", "buyer_a", "buyer_b", "moon", "sun"]
        )
        await workflow.publish_contract(ctx, compile=False)
        await workflow.publish_coin(
            ctx, ctx.account("moon"), ctx.config.coin("MoonCoin"), compile=False
        )
        await workflow.publish_coin(
            ctx, ctx.account("sun"), ctx.config.coin("SunCoin"), compile=False
        )
        for buyer in ("buyer_a", "buyer_b"):
            for coin, publisher in (("MoonCoin", "moon"), ("SunCoin", "sun")):
                coin_type = ctx.coin_type(coin)
                await workflow.register_coin(ctx, ctx.account(buyer), coin_type)
                await workflow.mint_coin(
                    ctx,
                    ctx.account(publisher),
                    ctx.account(buyer).address(),
                    1_000_000,
                    coin_type,
                )

    async def create_raffle(self, duration_ms: int = 500_000, supply: int = 200):
        ctx = self.ctx
        creator = ctx.account("creator")
        token_id = await workflow.mint_token(ctx, creator)
        await workflow.create_raffle(
            ctx,
            creator,
            token_id,
            ctx.coin_type("MoonCoin"),
            ctx.now_ms() + duration_ms,
            1000,
            supply,
        )
        return ctx.latest_raffle(creator.address())


class SetupTest(WorkflowTestCase):
    async def test_init_accounts(self) -> None:
        await workflow.init_accounts(self.ctx, ["creator", "buyer_a"], amount=500)
        self.assertEqual(set(self.ctx.accounts), {"admin", "creator", "buyer_a"})
        for account in self.ctx.accounts.values():
            self.assertEqual(await self.chain.account_balance(account.address()), 500)

    async def test_publish(self) -> None:
        await self.setup_coins()
        admin = str(self.ctx.admin.address())
        self.assertEqual(self.ctx.contract_address, self.ctx.admin.address())
        self.assertEqual(self.chain.packages[admin], [b"raffle"])
        moon = self.ctx.coin_type("MoonCoin")
        self.assertEqual(moon.address, self.ctx.account("moon").address())
        self.assertEqual(str(moon), f"{moon.address}::MoonCoin::MoonCoin")

    async def test_coins(self) -> None:
        await self.setup_coins()
        buyer = self.ctx.account("buyer_a").address()
        for coin in ("MoonCoin", "SunCoin"):
            coin_type = self.ctx.coin_type(coin)
            self.assertTrue(await self.chain.coin_registered(buyer, coin_type))
            self.assertEqual(await self.chain.coin_balance(buyer, coin_type), 1_000_000)

    async def test_mint_without_capability(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        buyer = ctx.account("buyer_a").address()
        moon = ctx.coin_type("MoonCoin")
        result = await workflow.mint_coin(
            ctx,
            ctx.account("sun"),
            buyer,
            1000,
            moon,
            Expectation.rejected("ENO_CAPABILITIES"),
        )
        self.assertFalse(result.success)
        self.assertEqual(await self.chain.coin_balance(buyer, moon), 1_000_000)

    async def test_register_unpublished_coin(self) -> None:
        await workflow.init_accounts(self.ctx, ["buyer_a"])
        with self.assertRaises(PreconditionError):
            await workflow.register_coin(
                self.ctx, self.ctx.account("buyer_a"), self.ctx.coin_type("MoonCoin")
            )

    async def test_missing_role(self) -> None:
        with self.assertRaises(PreconditionError):
            self.ctx.account("nobody")

    async def test_contract_not_published(self) -> None:
        with self.assertRaises(PreconditionError):
            self.ctx.contract_function("enter")

    async def test_results_are_recorded(self) -> None:
        await self.setup_coins()
        steps = [step for step, _ in self.ctx.results]
        self.assertEqual(steps[:2], ["init_accounts", "publish_contract"])
        self.assertTrue(all(result.success for _, result in self.ctx.results))


class RaffleTest(WorkflowTestCase):
    async def test_mint_token_and_create(self) -> None:
        await self.setup_coins()
        record = await self.create_raffle()
        creator = self.ctx.account("creator").address()
        self.assertEqual(record.raffle_id.creator, creator)
        self.assertEqual(record.raffle_id.index, 0)
        self.assertEqual(record.token_id.collection, f"{creator}'s raffle collection")
        # The prize is held by the raffle until it is claimed.
        self.assertEqual(await self.chain.token_balance(creator, record.token_id), 0)

    async def test_mint_second_token(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        creator = ctx.account("creator")
        first = await workflow.mint_token(ctx, creator)
        second = await workflow.mint_token(ctx, creator)
        self.assertNotEqual(first.name, second.name)
        self.assertEqual(first.collection, second.collection)
        self.assertEqual(ctx.tokens, [first, second])

        result = await workflow.create_raffle(
            ctx,
            creator,
            first,
            ctx.coin_type("MoonCoin"),
            ctx.now_ms() + 500_000,
            1000,
            200,
        )
        self.assertTrue(result.success)
        self.assertEqual(ctx.latest_raffle(creator.address()).token_id, first)
        balance = await self.chain.token_balance(creator.address(), second)
        self.assertEqual(balance, 1)

    async def test_create_with_unowned_token(self) -> None:
        await self.setup_coins()
        record = await self.create_raffle()
        with self.assertRaises(PreconditionError):
            await workflow.create_raffle(
                self.ctx,
                self.ctx.account("creator"),
                record.token_id,
                record.coin_type,
                record.end_time,
                1000,
                200,
            )

    async def test_enter_derives_expectations(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle()
        buyer_a = ctx.account("buyer_a")
        moon = ctx.coin_type("MoonCoin")
        sun = ctx.coin_type("SunCoin")

        result = await workflow.enter(ctx, buyer_a, record.raffle_id, sun, 100)
        self.assertFalse(result.success)
        self.assertIn("E_COIN_TYPE_MISMATCH", result.vm_status)
        balance = await self.chain.coin_balance(buyer_a.address(), sun)
        self.assertEqual(balance, 1_000_000)

        result = await workflow.enter(ctx, buyer_a, record.raffle_id, moon, 150)
        self.assertTrue(result.success)
        self.assertEqual(record.tickets_sold, 150)
        balance = await self.chain.coin_balance(buyer_a.address(), moon)
        self.assertEqual(balance, 850_000)

        result = await workflow.enter(ctx, buyer_a, record.raffle_id, moon, 51)
        self.assertFalse(result.success)
        self.assertEqual(record.tickets_sold, 150)
        self.assertEqual(await workflow.tickets_sold(ctx, record), 150)

    async def test_contract_accepting_wrong_coin(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle()
        with self.assertRaises(ExpectationError):
            await workflow.enter(
                ctx,
                ctx.account("buyer_a"),
                record.raffle_id,
                ctx.coin_type("SunCoin"),
                100,
                Expectation.succeeds(),
            )

    async def test_resolve_before_end(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle()
        result = await workflow.resolve(ctx, ctx.admin, record.raffle_id)
        self.assertFalse(result.success)
        self.assertFalse(record.resolved)

    async def test_resolve_after_end(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(duration_ms=0)
        await workflow.enter(
            ctx, ctx.account("buyer_a"), record.raffle_id, record.coin_type, 10
        )
        result = await workflow.resolve(ctx, ctx.account("creator"), record.raffle_id)
        self.assertTrue(result.success)
        self.assertTrue(record.resolved)

        result = await workflow.resolve(ctx, ctx.admin, record.raffle_id)
        self.assertFalse(result.success)

    async def test_unauthorized_resolve(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(supply=100)
        await workflow.enter(
            ctx, ctx.account("buyer_a"), record.raffle_id, record.coin_type, 100
        )
        result = await workflow.resolve(ctx, ctx.account("buyer_b"), record.raffle_id)
        self.assertIn("E_NOT_AUTHORIZED", result.vm_status)

    async def test_claim_before_resolve(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle()
        result = await workflow.claim(ctx, ctx.account("buyer_a"), record.raffle_id)
        self.assertFalse(result.success)
        self.assertIsNone(record.winner)

    async def test_claim(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(supply=100)
        buyer_a = ctx.account("buyer_a")
        buyer_b = ctx.account("buyer_b")
        await workflow.enter(ctx, buyer_a, record.raffle_id, record.coin_type, 100)
        await workflow.resolve(ctx, ctx.admin, record.raffle_id)

        await workflow.claim(ctx, buyer_b, record.raffle_id)
        self.assertIsNone(record.winner)
        await workflow.claim(ctx, buyer_a, record.raffle_id)
        self.assertEqual(record.winner, buyer_a.address())
        balance = await self.chain.token_balance(buyer_a.address(), record.token_id)
        self.assertEqual(balance, 1)

        result = await workflow.claim(ctx, buyer_a, record.raffle_id)
        self.assertIn("E_ALREADY_CLAIMED", result.vm_status)
        balance = await self.chain.token_balance(buyer_a.address(), record.token_id)
        self.assertEqual(balance, 1)

    async def test_configured_claim_rejections(self) -> None:
        self.ctx.config = replace(
            self.config,
            rejections=RejectionConfig(
                losing_claim="E_NOT_AUTHORIZED", duplicate_claim="E_ALREADY_CLAIMED"
            ),
        )
        self.chain.losing_claim_aborts = True
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(supply=100)
        await workflow.enter(
            ctx, ctx.account("buyer_a"), record.raffle_id, record.coin_type, 100
        )
        await workflow.resolve(ctx, ctx.admin, record.raffle_id)
        await workflow.claim(ctx, ctx.account("buyer_a"), record.raffle_id)
        await workflow.claim(ctx, ctx.account("buyer_b"), record.raffle_id)
        await workflow.claim(ctx, ctx.account("buyer_a"), record.raffle_id)


class DoubleTransferTest(WorkflowTestCase):
    chain_class = GenerousChainClient

    async def test_second_transfer_fails(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(supply=100)
        await workflow.enter(
            ctx, ctx.account("buyer_a"), record.raffle_id, record.coin_type, 100
        )
        await workflow.resolve(ctx, ctx.admin, record.raffle_id)
        await workflow.claim(ctx, ctx.account("buyer_a"), record.raffle_id)
        with self.assertRaises(ExpectationError):
            await workflow.claim(ctx, ctx.account("buyer_b"), record.raffle_id)

    async def test_token_to_non_holder(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        record = await self.create_raffle(supply=100)
        await workflow.enter(
            ctx, ctx.account("buyer_a"), record.raffle_id, record.coin_type, 100
        )
        await workflow.resolve(ctx, ctx.admin, record.raffle_id)
        with self.assertRaises(ExpectationError):
            await workflow.claim(ctx, ctx.account("buyer_b"), record.raffle_id)
        self.assertIsNone(record.winner)


class UnsoldRaffleTest(WorkflowTestCase):
    async def test_creator_reclaims_token(self) -> None:
        await self.setup_coins()
        ctx = self.ctx
        creator = ctx.account("creator")
        record = await self.create_raffle(duration_ms=0)
        await workflow.resolve(ctx, creator, record.raffle_id)
        await workflow.claim(ctx, ctx.account("buyer_a"), record.raffle_id)
        self.assertIsNone(record.winner)
        await workflow.claim(ctx, creator, record.raffle_id)
        self.assertEqual(record.winner, creator.address())
        balance = await self.chain.token_balance(creator.address(), record.token_id)
        self.assertEqual(balance, 1)
