# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Runs the raffle contract's end-to-end scenario against an Aptos network.

Example (local testnet started with `aptos node run-local-testnet --with-faucet`):
  APTOS_NODE_URL=http://127.0.0.1:8080/v1 APTOS_FAUCET_URL=http://127.0.0.1:8081 \\
    raffle-harness run --config harness.toml

The admin account that publishes the contract is read from RAFFLE_ADMIN_PRIVATE_KEY or
from accounts.admin_key_file in the configuration.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Optional

import click

from .applogging import init_logging, parse_level, set_compiler_level
from .chain import AptosChainClient, ChainClient
from .config import ConfigError, HarnessConfig, load_admin_account, load_config
from .move_cli import MoveCompiler
from .publisher import ContractPublisher
from .scenario import ScenarioReport, run_scenario
from .workflow import WorkflowContext

LOG = logging.getLogger("raffle_harness")


class CatchAllExceptions(click.Group):
    def __call__(self, *args: Any, **kwargs: Any):
        try:
            return self.main(*args, **kwargs)
        except Exception as exc:
            click.echo("Exception: %s" % exc)
            sys.exit(1)


CONTEXT_SETTINGS = {
    "max_content_width": 140,
    "terminal_width": 140,
    "help_option_names": ["-h", "--help"],
}


def create_context(
    config: HarnessConfig, chain: Optional[ChainClient] = None
) -> WorkflowContext:
    admin = load_admin_account(config)
    if chain is None:
        chain = AptosChainClient(
            config.network.node_url,
            config.network.faucet_url,
            config.network.faucet_auth_token,
            config.network.transaction_wait_secs,
        )
    return WorkflowContext(
        chain=chain,
        config=config,
        admin=admin,
        publisher=ContractPublisher(chain, MoveCompiler(config.cli_path)),
    )


def configure_logging(config: HarnessConfig, debug: bool) -> None:
    level = logging.DEBUG if debug else parse_level(config.logging.level)
    if not LOG.handlers:
        init_logging(LOG, level=level, print_metadata=True)
    LOG.setLevel(level)
    set_compiler_level(logging.DEBUG if debug else config.logging.compiler_level)


def print_report(report: ScenarioReport) -> None:
    if report.passed:
        click.secho("These stages passed:", fg="green")
        for name in report.passed:
            click.secho(f"  {name}", fg="green")
    if report.failed:
        click.secho("These stages failed:", fg="red")
        for name, error in report.failed:
            click.secho(f"  {name}: {error}", fg="red")
    if report.skipped:
        click.secho("These stages were skipped:", fg="yellow")
        for name in report.skipped:
            click.secho(f"  {name}", fg="yellow")


async def run_with_context(ctx: WorkflowContext, compile: bool) -> ScenarioReport:
    try:
        return await run_scenario(ctx, compile)
    finally:
        await ctx.chain.close()


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="TOML configuration file",
)


@click.group(
    "raffle-harness", context_settings=CONTEXT_SETTINGS, cls=CatchAllExceptions
)
def cli():
    """Integration tests for the raffle contract."""
    pass


@cli.command()
@config_option
@click.option("--skip-compile", is_flag=True, help="Publish the existing build output")
@click.option("-d", "--debug", is_flag=True)
def run(config_path: Optional[str], skip_compile: bool, debug: bool) -> None:
    """Run the end-to-end raffle scenario."""
    config = load_config(config_path)
    configure_logging(config, debug)
    LOG.info(f"Node: {config.network.node_url}, faucet: {config.network.faucet_url}")

    ctx = create_context(config)
    report = asyncio.run(run_with_context(ctx, not skip_compile))
    print_report(report)
    if not report.succeeded():
        sys.exit(1)
    click.secho("All stages passed!", fg="green")


@cli.command("compile")
@config_option
@click.option("-d", "--debug", is_flag=True)
def compile_packages(config_path: Optional[str], debug: bool) -> None:
    """Compile the raffle contract and coin packages for the admin account."""
    config = load_config(config_path)
    configure_logging(config, debug)
    admin = load_admin_account(config)
    compiler = MoveCompiler(config.cli_path)

    compiler.compile_package(
        config.contract.package_dir, {config.contract.named_address: admin.address()}
    )
    click.echo(f"Compiled {config.contract.package_dir}")
    for coin in config.coins:
        # Coins are published by their own accounts at run time; bind the admin here so
        # the packages can be checked for compile errors.
        compiler.compile_package(
            coin.package_dir, {coin.named_address: admin.address()}
        )
        click.echo(f"Compiled {coin.package_dir}")


@cli.command("show-config")
@config_option
def show_config(config_path: Optional[str]) -> None:
    """Print the resolved configuration."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(config.redacted(), indent=4, sort_keys=True))


if __name__ == "__main__":
    cli()
