# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The end-to-end raffle scenario:

1. Fund an admin, a raffle creator, two buyers and the publishers of two coins.
2. Publish the raffle contract and both coin packages.
3. Register both buyers for both coins and mint them each a balance.
4. The creator mints a token and raffles it for coin X.
5. Buyer A tries coin Y (rejected), buys with coin X, buyer B buys the rest, and buyer A's
   next purchase is rejected because the raffle is sold out.
6. Buyer B may not resolve the raffle; the admin may.
7. Both buyers claim. Exactly one of them receives the token, and neither a second claim
   by the winner nor a claim by the creator moves it again.

Stages run in order and the first failure skips everything after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from . import workflow
from .config import ConfigError
from .expectations import Expectation, ExpectationError
from .models import RaffleRecord, TokenId
from .workflow import ADMIN, WorkflowContext

LOG = logging.getLogger(__name__)

CREATOR = "creator"
BUYER_A = "buyer_a"
BUYER_B = "buyer_b"
COIN_X_PUBLISHER = "coin_x_publisher"
COIN_Y_PUBLISHER = "coin_y_publisher"

ROLES = (CREATOR, BUYER_A, BUYER_B, COIN_X_PUBLISHER, COIN_Y_PUBLISHER)


@dataclass
class ScenarioReport:
    passed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, Exception]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def succeeded(self) -> bool:
        return not self.failed and not self.skipped


class RaffleScenario:
    ctx: WorkflowContext
    compile: bool
    token_id: Optional[TokenId]
    raffle: Optional[RaffleRecord]

    def __init__(self, ctx: WorkflowContext, compile: bool = True):
        raffle = ctx.config.raffle
        if raffle.ticket_supply != 2 * raffle.tickets_per_entry:
            raise ConfigError(
                "The scenario sells out the raffle with two purchases: "
                "raffle.ticket_supply must be twice raffle.tickets_per_entry"
            )
        self.ctx = ctx
        self.compile = compile
        self.token_id = None
        self.raffle = None

    def stages(self) -> List[Tuple[str, Callable[[], Awaitable[None]]]]:
        return [
            ("init_accounts", self.init_accounts),
            ("publish_contracts", self.publish_contracts),
            ("setup_coins", self.setup_coins),
            ("create_raffle", self.create_raffle),
            ("buy_tickets", self.buy_tickets),
            ("resolve_raffle", self.resolve_raffle),
            ("claim_token", self.claim_token),
        ]

    async def run(self) -> ScenarioReport:
        report = ScenarioReport()
        for name, stage in self.stages():
            if report.failed:
                report.skipped.append(name)
                continue
            LOG.info(f"[{name}] started")
            try:
                await stage()
            except Exception as e:
                LOG.error(f"[{name}] failed: {e}", exc_info=True)
                report.failed.append((name, e))
            else:
                LOG.info(f"[{name}] passed")
                report.passed.append(name)
        return report

    #
    # Stages
    #

    async def init_accounts(self):
        await workflow.init_accounts(self.ctx, ROLES)

    async def publish_contracts(self):
        ctx = self.ctx
        await workflow.publish_contract(ctx, compile=self.compile)
        coin_x, coin_y = ctx.config.coins[:2]
        await workflow.publish_coin(
            ctx, ctx.account(COIN_X_PUBLISHER), coin_x, compile=self.compile
        )
        await workflow.publish_coin(
            ctx, ctx.account(COIN_Y_PUBLISHER), coin_y, compile=self.compile
        )

    async def setup_coins(self):
        ctx = self.ctx
        amount = ctx.config.raffle.mint_amount
        coin_x, coin_y = ctx.config.coins[:2]
        publishers = {coin_x.name: COIN_X_PUBLISHER, coin_y.name: COIN_Y_PUBLISHER}
        for buyer in (BUYER_A, BUYER_B):
            for coin_name, publisher in publishers.items():
                coin_type = ctx.coin_type(coin_name)
                await workflow.register_coin(ctx, ctx.account(buyer), coin_type)
                await workflow.mint_coin(
                    ctx,
                    ctx.account(publisher),
                    ctx.account(buyer).address(),
                    amount,
                    coin_type,
                )

    async def create_raffle(self):
        ctx = self.ctx
        raffle = ctx.config.raffle
        creator = ctx.account(CREATOR)
        self.token_id = await workflow.mint_token(ctx, creator)
        await workflow.create_raffle(
            ctx,
            creator,
            self.token_id,
            self.coin_x(),
            ctx.now_ms() + raffle.duration_ms,
            raffle.ticket_price,
            raffle.ticket_supply,
        )
        self.raffle = ctx.latest_raffle(creator.address())

    async def buy_tickets(self):
        ctx = self.ctx
        record = self.require_raffle()
        count = ctx.config.raffle.tickets_per_entry
        rejections = ctx.config.rejections
        buyer_a = ctx.account(BUYER_A)
        buyer_b = ctx.account(BUYER_B)
        coin_y = ctx.coin_type(ctx.config.coins[1].name)

        await workflow.enter(
            ctx,
            buyer_a,
            record.raffle_id,
            coin_y,
            count,
            Expectation.rejected(rejections.coin_mismatch),
        )
        self.expect_sold(0)

        await workflow.enter(
            ctx, buyer_a, record.raffle_id, self.coin_x(), count, Expectation.succeeds()
        )
        self.expect_sold(count)

        await workflow.enter(
            ctx, buyer_b, record.raffle_id, self.coin_x(), count, Expectation.succeeds()
        )
        self.expect_sold(2 * count)

        await workflow.enter(
            ctx,
            buyer_a,
            record.raffle_id,
            self.coin_x(),
            count,
            Expectation.rejected(rejections.tickets_exhausted),
        )
        self.expect_sold(2 * count)

    async def resolve_raffle(self):
        ctx = self.ctx
        record = self.require_raffle()
        await workflow.resolve(
            ctx,
            ctx.account(BUYER_B),
            record.raffle_id,
            Expectation.rejected(ctx.config.rejections.unauthorized_resolve),
        )
        await workflow.resolve(
            ctx, ctx.account(ADMIN), record.raffle_id, Expectation.succeeds()
        )

    async def claim_token(self):
        ctx = self.ctx
        record = self.require_raffle()
        buyers = [ctx.account(BUYER_A), ctx.account(BUYER_B)]
        for buyer in buyers:
            await workflow.claim(ctx, buyer, record.raffle_id)

        if record.winner is None or record.winner not in [b.address() for b in buyers]:
            raise ExpectationError(
                "claim_token",
                "exactly one buyer to receive the token",
                "no buyer received it",
            )
        LOG.info(f"Winner: {ctx.role_of(record.winner)}")

        winner = buyers[0] if buyers[0].address() == record.winner else buyers[1]
        await workflow.claim(ctx, winner, record.raffle_id)
        await workflow.claim(ctx, ctx.account(CREATOR), record.raffle_id)

    #
    # Helpers
    #

    def coin_x(self):
        return self.ctx.coin_type(self.ctx.config.coins[0].name)

    def require_raffle(self) -> RaffleRecord:
        if self.raffle is None:
            raise workflow.PreconditionError("No raffle has been created")
        return self.raffle

    def expect_sold(self, expected: int) -> None:
        record = self.require_raffle()
        if record.tickets_sold != expected:
            raise ExpectationError(
                "buy_tickets", f"tickets sold == {expected}", str(record.tickets_sold)
            )


async def run_scenario(ctx: WorkflowContext, compile: bool = True) -> ScenarioReport:
    return await RaffleScenario(ctx, compile).run()
