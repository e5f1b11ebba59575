# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import unittest
from typing import List, Sequence
from unittest import mock

from aptos_sdk.account_address import AccountAddress

from .move_cli import CLIError, MissingCLIError, MoveCompiler, RunResult

ADMIN = AccountAddress.from_str("0xa")


class FakeRunner:
    def __init__(self, result: RunResult):
        self.result = result
        self.commands: List[List[str]] = []

    def __call__(self, command: Sequence[str]) -> RunResult:
        self.commands.append(list(command))
        return self.result


class MoveCompilerTest(unittest.TestCase):
    def test_prepare_named_addresses(self) -> None:
        self.assertEqual(MoveCompiler.prepare_named_addresses({}), [])
        self.assertEqual(
            MoveCompiler.prepare_named_addresses(
                {"admin": ADMIN, "MoonCoin": AccountAddress.from_str("0xb")}
            ),
            ["--named-addresses", "admin=0xa,MoonCoin=0xb"],
        )

    @mock.patch("raffle_harness.move_cli.shutil.which", return_value="/usr/bin/aptos")
    def test_compile_package(self, which: mock.Mock) -> None:
        runner = FakeRunner(RunResult(0, "BUILDING raffle\n", ""))
        compiler = MoveCompiler("aptos", runner)
        result = compiler.compile_package("/src/raffle", {"admin": ADMIN})

        self.assertTrue(result.succeeded())
        which.assert_called_once_with("aptos")
        self.assertEqual(
            runner.commands,
            [
                [
                    "aptos",
                    "move",
                    "compile",
                    "--save-metadata",
                    "--package-dir",
                    "/src/raffle",
                    "--named-addresses",
                    "admin=0xa",
                ]
            ],
        )

    @mock.patch("raffle_harness.move_cli.shutil.which", return_value="/usr/bin/aptos")
    def test_compile_failure(self, which: mock.Mock) -> None:
        runner = FakeRunner(RunResult(1, "", "error[E01001]: unbound module"))
        compiler = MoveCompiler("aptos", runner)
        with self.assertRaises(CLIError) as cm:
            compiler.compile_package("/src/raffle", {"admin": ADMIN})
        self.assertIn("unbound module", cm.exception.error)
        self.assertEqual(cm.exception.command[:3], ["aptos", "move", "compile"])

    @mock.patch("raffle_harness.move_cli.shutil.which", return_value=None)
    def test_missing_cli(self, which: mock.Mock) -> None:
        runner = FakeRunner(RunResult(0, "", ""))
        compiler = MoveCompiler("/nowhere/aptos", runner)
        self.assertFalse(compiler.does_cli_exist())
        with self.assertRaises(MissingCLIError):
            compiler.compile_package("/src/raffle", {})
        self.assertEqual(runner.commands, [])
