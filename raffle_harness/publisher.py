# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import tomli
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress

from .chain import ChainClient
from .models import StepResult
from .move_cli import MoveCompiler

LOG = logging.getLogger(__name__)


class PublishError(Exception):
    """The compiled package is missing or incomplete."""


@dataclass
class BuildArtifacts:
    package_name: str
    metadata: bytes
    # (module name, bytecode) in publishing order
    modules: List[Tuple[str, bytes]]

    def module_names(self) -> List[str]:
        return [name for name, _ in self.modules]

    def bytecode(self) -> List[bytes]:
        return [code for _, code in self.modules]

    @staticmethod
    def package_name_of(package_dir: str) -> str:
        manifest = os.path.join(package_dir, "Move.toml")
        try:
            with open(manifest, "rb") as f:
                data = tomli.load(f)
        except FileNotFoundError as e:
            raise PublishError(f"No Move.toml in {package_dir}") from e
        except tomli.TOMLDecodeError as e:
            raise PublishError(f"Invalid {manifest}: {e}") from e
        try:
            return data["package"]["name"]
        except KeyError as e:
            raise PublishError(f"{manifest} does not name its package") from e

    @staticmethod
    def load(
        package_dir: str, modules: Optional[Sequence[str]] = None
    ) -> BuildArtifacts:
        """Read package-metadata.bcs and the bytecode modules produced by a compile with
        --save-metadata. Without an explicit module list every module is loaded, sorted by
        name."""

        package = BuildArtifacts.package_name_of(package_dir)
        package_build_dir = os.path.join(package_dir, "build", package)
        module_directory = os.path.join(package_build_dir, "bytecode_modules")

        if not modules:
            try:
                module_files = sorted(os.listdir(module_directory))
            except FileNotFoundError as e:
                raise PublishError(
                    f"{package} has not been compiled, missing {module_directory}"
                ) from e
            modules = [
                name[: -len(".mv")]
                for name in module_files
                if name.endswith(".mv")
                and os.path.isfile(os.path.join(module_directory, name))
            ]
            if not modules:
                raise PublishError(f"No bytecode modules in {module_directory}")

        loaded = []
        for module in modules:
            module_path = os.path.join(module_directory, f"{module}.mv")
            try:
                with open(module_path, "rb") as f:
                    loaded.append((module, f.read()))
            except FileNotFoundError as e:
                raise PublishError(f"Missing bytecode module {module_path}") from e

        metadata_path = os.path.join(package_build_dir, "package-metadata.bcs")
        try:
            with open(metadata_path, "rb") as f:
                metadata = f.read()
        except FileNotFoundError as e:
            raise PublishError(
                f"Missing {metadata_path}, was the package compiled with --save-metadata?"
            ) from e

        return BuildArtifacts(package, metadata, loaded)


class ContractPublisher:
    """Compiles a package with the sender bound to its named addresses, then publishes it."""

    chain: ChainClient
    compiler: MoveCompiler

    def __init__(self, chain: ChainClient, compiler: MoveCompiler):
        self.chain = chain
        self.compiler = compiler

    def compile(
        self, package_dir: str, named_addresses: Dict[str, AccountAddress]
    ) -> None:
        LOG.info(f"Compiling {package_dir}")
        self.compiler.compile_package(package_dir, named_addresses)

    async def publish(
        self,
        sender: Account,
        package_dir: str,
        named_addresses: Dict[str, AccountAddress],
        modules: Optional[Sequence[str]] = None,
        compile: bool = True,
        check_success: bool = True,
    ) -> StepResult:
        if compile:
            self.compile(package_dir, named_addresses)
        artifacts = BuildArtifacts.load(package_dir, modules)
        LOG.info(
            f"Publishing {artifacts.package_name} ({', '.join(artifacts.module_names())}) "
            f"under {sender.address()}"
        )
        result = await self.chain.publish_package(
            sender, artifacts.metadata, artifacts.bytecode(), check_success
        )
        LOG.info(f"Published {artifacts.package_name}: {result.transaction_hash}")
        return result
