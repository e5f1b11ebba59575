# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

DEFAULT_NODE_URL = "https://fullnode.testnet.aptoslabs.com/v1"
DEFAULT_FAUCET_URL = "https://faucet.testnet.aptoslabs.com"

NODE_URL_ENV = "APTOS_NODE_URL"
FAUCET_URL_ENV = "APTOS_FAUCET_URL"
CLI_PATH_ENV = "APTOS_CLI_PATH"
ADMIN_KEY_ENV = "RAFFLE_ADMIN_PRIVATE_KEY"

# Assume that the binary is in the global path if one is not provided.
DEFAULT_BINARY = "aptos"

APTOS_COIN_STORE = "0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>"
TOKEN_STORE = "0x3::token::TokenStore"

# Octas handed to every participant by the faucet.
DEFAULT_FUND_AMOUNT = 100_000_000

# Seconds to wait for a submitted transaction to leave the pending state.
DEFAULT_TRANSACTION_WAIT_SECS = 20
