# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Value records passed between workflow steps. None of these own chain state; they only
name things that live on chain so later steps can refer to them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from aptos_sdk.account_address import AccountAddress
from aptos_sdk.type_tag import StructTag, TypeTag


@dataclass(frozen=True, eq=False)
class CoinType:
    """A managed coin, identified by the publishing account, module and struct name."""

    address: AccountAddress
    module: str
    name: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CoinType):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    def __str__(self) -> str:
        return f"{self.address}::{self.module}::{self.name}"

    def coin_store(self) -> str:
        return f"0x1::coin::CoinStore<{self}>"

    def type_tag(self) -> TypeTag:
        return TypeTag(StructTag(self.address, self.module, self.name, []))


@dataclass(frozen=True, eq=False)
class TokenId:
    creator: AccountAddress
    collection: str
    name: str
    property_version: int = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenId):
            return NotImplemented
        return self.to_json() == other.to_json()

    def __hash__(self) -> int:
        return hash(
            (str(self.creator), self.collection, self.name, self.property_version)
        )

    def to_json(self) -> Dict[str, Any]:
        """The REST representation of a 0x3::token::TokenId."""
        return {
            "token_data_id": {
                "creator": str(self.creator),
                "collection": self.collection,
                "name": self.name,
            },
            "property_version": str(self.property_version),
        }


@dataclass(frozen=True, eq=False)
class RaffleId:
    """Raffles are addressed by their creator and the creator's raffle counter."""

    creator: AccountAddress
    index: int

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RaffleId):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    def __str__(self) -> str:
        return f"{self.creator}#{self.index}"


@dataclass
class RaffleRecord:
    """What the harness knows about a raffle it created, plus its own ticket ledger."""

    raffle_id: RaffleId
    token_id: TokenId
    coin_type: CoinType
    end_time: int
    ticket_price: int
    ticket_supply: int
    tickets_sold: int = 0
    winner: Optional[AccountAddress] = None
    resolved: bool = False
    entries: List[Dict[str, Any]] = field(default_factory=list)

    def tickets_remaining(self) -> int:
        return self.ticket_supply - self.tickets_sold

    def holds_tickets(self, address: AccountAddress) -> bool:
        return any(entry["buyer"] == address for entry in self.entries)


@dataclass(frozen=True)
class StepResult:
    transaction_hash: Optional[str]
    success: bool
    vm_status: Optional[str] = None

    @staticmethod
    def from_transaction(data: Dict[str, Any]) -> StepResult:
        """Build a result from a committed transaction as returned by /transactions/by_hash."""
        return StepResult(
            transaction_hash=data.get("hash"),
            success=bool(data.get("success", False)),
            vm_status=data.get("vm_status"),
        )

    @staticmethod
    def ok(transaction_hash: Optional[str] = None) -> StepResult:
        return StepResult(transaction_hash, True, "Executed successfully")

    def __str__(self) -> str:
        outcome = "success" if self.success else "failure"
        return f"{outcome} ({self.vm_status}) - {self.transaction_hash}"
