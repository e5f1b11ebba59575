# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import unittest

from .expectations import Expectation, ExpectationError
from .models import StepResult

SUCCESS = StepResult.ok("0x1")
MISMATCH = StepResult(
    "0x2", False, "Move abort in 0xa::raffle: E_COIN_TYPE_MISMATCH(0x2): "
)


class ExpectationTest(unittest.TestCase):
    def test_succeeds(self) -> None:
        self.assertTrue(Expectation.succeeds().matches(SUCCESS))
        self.assertFalse(Expectation.succeeds().matches(MISMATCH))

    def test_rejected(self) -> None:
        self.assertFalse(Expectation.rejected().matches(SUCCESS))
        self.assertTrue(Expectation.rejected().matches(MISMATCH))
        self.assertTrue(Expectation.rejected("COIN_TYPE_MISMATCH").matches(MISMATCH))
        self.assertFalse(Expectation.rejected("NOT_ENOUGH_TICKETS").matches(MISMATCH))

    def test_either(self) -> None:
        self.assertTrue(Expectation.either().matches(SUCCESS))
        self.assertTrue(Expectation.either().matches(MISMATCH))
        self.assertTrue(Expectation.either("NOT_AUTHORIZED").matches(SUCCESS))
        self.assertFalse(Expectation.either("NOT_AUTHORIZED").matches(MISMATCH))

    def test_rejection_without_status(self) -> None:
        result = StepResult(None, False, None)
        self.assertTrue(Expectation.rejected().matches(result))
        self.assertFalse(Expectation.rejected("ABORT").matches(result))

    def test_check(self) -> None:
        self.assertIs(Expectation.succeeds().check("enter", SUCCESS), SUCCESS)
        with self.assertRaises(ExpectationError) as cm:
            Expectation.succeeds().check("enter", MISMATCH)
        self.assertEqual(cm.exception.step, "enter")
        self.assertEqual(cm.exception.expected, "success")
        self.assertIn("E_COIN_TYPE_MISMATCH", cm.exception.actual)

    def test_str(self) -> None:
        self.assertEqual(str(Expectation.succeeds()), "success")
        self.assertEqual(str(Expectation.rejected()), "rejection")
        self.assertEqual(
            str(Expectation.either("E_X")), "success or rejection matching /E_X/"
        )
