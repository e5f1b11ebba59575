# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""Compiling Move packages through the Aptos CLI."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from aptos_sdk.account_address import AccountAddress

from .common import DEFAULT_BINARY

# This is applogging.COMPILER_LOGGER; compiler output is only visible at DEBUG.
LOG = logging.getLogger(__name__)


class MissingCLIError(Exception):
    """The CLI was not found in the expected path."""

    def __init__(self, binary: str):
        super().__init__(f"The CLI was not found in the expected path, {binary}")


class CLIError(Exception):
    """The CLI failed execution of a command."""

    def __init__(self, command: Sequence[str], output: str, error: str):
        super().__init__(
            f"The CLI operation failed:\n\tCommand: {' '.join(command)}\n\tOutput: {output}\n\tError: {error}"
        )
        self.command = list(command)
        self.output = output
        self.error = error


@dataclass
class RunResult:
    exit_code: int
    stdout: str
    stderr: str

    def succeeded(self) -> bool:
        return self.exit_code == 0


def run_process(command: Sequence[str]) -> RunResult:
    process_output = subprocess.run(list(command), capture_output=True, text=True)
    return RunResult(
        process_output.returncode, process_output.stdout, process_output.stderr
    )


class MoveCompiler:
    """Tooling to make easy access to `aptos move compile` from within Python."""

    binary: str
    runner: Callable[[Sequence[str]], RunResult]

    def __init__(
        self,
        binary: str = DEFAULT_BINARY,
        runner: Callable[[Sequence[str]], RunResult] = run_process,
    ):
        self.binary = binary
        self.runner = runner

    @staticmethod
    def prepare_named_addresses(
        named_addresses: Dict[str, AccountAddress]
    ) -> List[str]:
        if not named_addresses:
            return []
        pairs = ",".join(f"{name}={addr}" for name, addr in named_addresses.items())
        return ["--named-addresses", pairs]

    def compile_command(
        self, package_dir: str, named_addresses: Dict[str, AccountAddress]
    ) -> List[str]:
        args = [
            self.binary,
            "move",
            "compile",
            "--save-metadata",
            "--package-dir",
            package_dir,
        ]
        args.extend(self.prepare_named_addresses(named_addresses))
        return args

    def compile_package(
        self, package_dir: str, named_addresses: Dict[str, AccountAddress]
    ) -> RunResult:
        self.assert_cli_exists()
        args = self.compile_command(package_dir, named_addresses)
        LOG.debug(f"+ {' '.join(args)}")

        result = self.runner(args)
        for line in result.stdout.splitlines():
            LOG.debug(line)
        for line in result.stderr.splitlines():
            LOG.debug(line)
        if not result.succeeded():
            raise CLIError(args, result.stdout, result.stderr)
        return result

    def assert_cli_exists(self) -> None:
        if not self.does_cli_exist():
            raise MissingCLIError(self.binary)

    def does_cli_exist(self) -> bool:
        return shutil.which(self.binary) is not None
