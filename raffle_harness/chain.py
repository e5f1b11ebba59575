# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The boundary between the harness and the chain. Construction, signing, BCS and the REST
protocol all belong to the Aptos SDK; this module only turns its calls into finalized
StepResults and its failures into the harness' error taxonomy.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.aptos_tokenv1_client import AptosTokenV1Client
from aptos_sdk.async_client import (
    ApiError,
    ClientConfig,
    FaucetClient,
    ResourceNotFound,
    RestClient,
)
from aptos_sdk.package_publisher import PackagePublisher
from aptos_sdk.transactions import (
    EntryFunction,
    TransactionArgument,
    TransactionPayload,
)
from aptos_sdk.type_tag import TypeTag

from .common import APTOS_COIN_STORE, DEFAULT_TRANSACTION_WAIT_SECS, TOKEN_STORE
from .models import CoinType, StepResult, TokenId

LOG = logging.getLogger(__name__)


class ChainError(Exception):
    """Base class for failures surfaced by a ChainClient."""


class TransportError(ChainError):
    """The node or faucet could not be reached or answered with a server error."""


class TransactionRejected(ChainError):
    """The chain reported the transaction as failed; the VM status says why."""

    result: StepResult

    def __init__(self, result: StepResult):
        super().__init__(
            f"Transaction {result.transaction_hash} failed: {result.vm_status}"
        )
        self.result = result

    @property
    def vm_status(self) -> Optional[str]:
        return self.result.vm_status


class FinalizationTimeout(ChainError):
    """A submitted transaction stayed pending past the configured wait."""

    def __init__(self, txn_hash: str, waited_secs: float):
        super().__init__(f"transaction {txn_hash} timed out after {waited_secs}s")
        self.txn_hash = txn_hash


class ChainClient:
    """Everything the workflow needs from a chain. Every mutating call blocks until the
    transaction is finalized and, with check_success, raises TransactionRejected on failure."""

    async def fund_account(self, address: AccountAddress, amount: int) -> None:
        raise NotImplementedError()

    async def account_resource(
        self, address: AccountAddress, resource_type: str
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError()

    async def account_balance(self, address: AccountAddress) -> int:
        raise NotImplementedError()

    async def coin_balance(self, address: AccountAddress, coin_type: CoinType) -> int:
        raise NotImplementedError()

    async def coin_registered(
        self, address: AccountAddress, coin_type: CoinType
    ) -> bool:
        raise NotImplementedError()

    async def token_balance(self, owner: AccountAddress, token_id: TokenId) -> int:
        raise NotImplementedError()

    async def submit_entry_function(
        self,
        sender: Account,
        function: str,
        type_arguments: List[TypeTag],
        arguments: List[TransactionArgument],
        check_success: bool = True,
    ) -> StepResult:
        raise NotImplementedError()

    async def create_collection(
        self,
        account: Account,
        name: str,
        description: str,
        uri: str,
        check_success: bool = True,
    ) -> StepResult:
        raise NotImplementedError()

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
        raise NotImplementedError()

    async def publish_package(
        self,
        sender: Account,
        package_metadata: bytes,
        modules: List[bytes],
        check_success: bool = True,
    ) -> StepResult:
        raise NotImplementedError()

    async def view(
        self, function: str, type_arguments: List[str], arguments: List[str]
    ) -> List[Any]:
        raise NotImplementedError()

    async def close(self) -> None:
        pass

    @staticmethod
    def checked(result: StepResult, check_success: bool) -> StepResult:
        if check_success and not result.success:
            raise TransactionRejected(result)
        return result


class AptosChainClient(ChainClient):
    """A ChainClient backed by the Aptos REST API and faucet."""

    _rest_client: RestClient
    _faucet_client: FaucetClient
    _token_client: AptosTokenV1Client
    _publisher: PackagePublisher
    wait_secs: int
    poll_interval_secs: float

    def __init__(
        self,
        node_url: str,
        faucet_url: str,
        faucet_auth_token: Optional[str] = None,
        wait_secs: int = DEFAULT_TRANSACTION_WAIT_SECS,
        poll_interval_secs: float = 1.0,
        rest_client: Optional[RestClient] = None,
    ):
        client_config = ClientConfig()
        client_config.transaction_wait_in_seconds = wait_secs
        self._rest_client = rest_client or RestClient(node_url, client_config)
        self._faucet_client = FaucetClient(
            faucet_url, self._rest_client, faucet_auth_token
        )
        self._token_client = AptosTokenV1Client(self._rest_client)
        self._publisher = PackagePublisher(self._rest_client)
        self.wait_secs = wait_secs
        self.poll_interval_secs = poll_interval_secs

    async def close(self) -> None:
        await self._rest_client.close()

    #
    # Faucet
    #

    async def fund_account(self, address: AccountAddress, amount: int) -> None:
        LOG.debug(f"Funding {address} with {amount}")
        try:
            await self._faucet_client.fund_account(address, amount)
        except httpx.HTTPError as e:
            raise TransportError(f"Faucet unreachable: {e}") from e
        except ApiError as e:
            raise TransportError(f"Faucet refused to fund {address}: {e}") from e
        except AssertionError as e:
            # The SDK asserts on the outcome of the faucet's own transactions.
            raise TransportError(f"Funding {address} did not complete: {e}") from e

    #
    # Reads
    #

    async def account_resource(
        self, address: AccountAddress, resource_type: str
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self._rest_client.account_resource(address, resource_type)
        except ResourceNotFound:
            return None
        except ApiError as e:
            # Unknown accounts are reported as 404 on some node versions.
            if e.status_code == 404:
                return None
            raise self._api_failure(e)
        except httpx.HTTPError as e:
            raise TransportError(f"Node unreachable: {e}") from e

    async def account_balance(self, address: AccountAddress) -> int:
        resource = await self.account_resource(address, APTOS_COIN_STORE)
        if resource is None:
            return 0
        return int(resource["data"]["coin"]["value"])

    async def coin_balance(self, address: AccountAddress, coin_type: CoinType) -> int:
        resource = await self.account_resource(address, coin_type.coin_store())
        if resource is None:
            return 0
        return int(resource["data"]["coin"]["value"])

    async def coin_registered(
        self, address: AccountAddress, coin_type: CoinType
    ) -> bool:
        return await self.account_resource(address, coin_type.coin_store()) is not None

    async def token_balance(self, owner: AccountAddress, token_id: TokenId) -> int:
        if await self.account_resource(owner, TOKEN_STORE) is None:
            return 0
        try:
            balance = await self._token_client.get_token_balance(
                owner,
                token_id.creator,
                token_id.collection,
                token_id.name,
                token_id.property_version,
            )
        except ResourceNotFound:
            return 0
        except ApiError as e:
            raise self._api_failure(e)
        except httpx.HTTPError as e:
            raise TransportError(f"Node unreachable: {e}") from e
        return int(balance)

    async def view(
        self, function: str, type_arguments: List[str], arguments: List[str]
    ) -> List[Any]:
        try:
            response = await self._rest_client.view(function, type_arguments, arguments)
        except ApiError as e:
            raise self._api_failure(e)
        except httpx.HTTPError as e:
            raise TransportError(f"Node unreachable: {e}") from e
        return json.loads(response)

    #
    # Transactions
    #

    async def submit_entry_function(
        self,
        sender: Account,
        function: str,
        type_arguments: List[TypeTag],
        arguments: List[TransactionArgument],
        check_success: bool = True,
    ) -> StepResult:
        module, name = function.rsplit("::", 1)
        payload = TransactionPayload(
            EntryFunction.natural(module, name, type_arguments, arguments)
        )

        async def submit() -> str:
            signed_transaction = await self._rest_client.create_bcs_signed_transaction(
                sender, payload
            )
            return await self._rest_client.submit_bcs_transaction(signed_transaction)

        LOG.debug(f"{sender.address()} calls {function}")
        return await self._finalize(submit(), check_success)

    async def create_collection(
        self,
        account: Account,
        name: str,
        description: str,
        uri: str,
        check_success: bool = True,
    ) -> StepResult:
        return await self._finalize(
            self._token_client.create_collection(account, name, description, uri),
            check_success,
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
        return await self._finalize(
            self._token_client.create_token(
                account, collection_name, name, description, supply, uri, 0
            ),
            check_success,
        )

    async def publish_package(
        self,
        sender: Account,
        package_metadata: bytes,
        modules: List[bytes],
        check_success: bool = True,
    ) -> StepResult:
        return await self._finalize(
            self._publisher.publish_package(sender, package_metadata, modules),
            check_success,
        )

    async def wait_for_transaction(
        self, txn_hash: str, check_success: bool = True
    ) -> StepResult:
        """
        Waits up to wait_secs for a transaction to move past pending state and reports how
        it executed.
        """

        try:
            count = 0
            while await self._rest_client.transaction_pending(txn_hash):
                if count * self.poll_interval_secs >= self.wait_secs:
                    raise FinalizationTimeout(txn_hash, self.wait_secs)
                await asyncio.sleep(self.poll_interval_secs)
                count += 1
            transaction = await self._rest_client.transaction_by_hash(txn_hash)
        except ApiError as e:
            raise self._api_failure(e)
        except httpx.HTTPError as e:
            raise TransportError(f"Node unreachable: {e}") from e

        result = StepResult.from_transaction(transaction)
        LOG.debug(f"Finalized {result}")
        return self.checked(result, check_success)

    async def _finalize(self, submission, check_success: bool) -> StepResult:
        try:
            txn_hash = await submission
        except ApiError as e:
            # A 4xx at submission means the node validated and refused the transaction,
            # e.g. a failed prologue. That is a rejection, not a transport failure.
            if e.status_code >= 500:
                raise TransportError(f"Node error {e.status_code}: {e}") from e
            LOG.debug(f"Submission refused: {e}")
            return self.checked(StepResult(None, False, str(e)), check_success)
        except httpx.HTTPError as e:
            raise TransportError(f"Node unreachable: {e}") from e
        return await self.wait_for_transaction(txn_hash, check_success)

    @staticmethod
    def _api_failure(error: ApiError) -> ChainError:
        if error.status_code >= 500:
            return TransportError(f"Node error {error.status_code}: {error}")
        return ChainError(f"Node request failed with {error.status_code}: {error}")
