# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import logging
import unittest

from .applogging import COMPILER_LOGGER, init_logging, parse_level, set_compiler_level


class AppLoggingTest(unittest.TestCase):
    def test_parse_level(self) -> None:
        self.assertEqual(parse_level("debug"), logging.DEBUG)
        self.assertEqual(parse_level(logging.WARNING), logging.WARNING)
        with self.assertRaises(ValueError):
            parse_level("chatty")

    def test_compiler_level(self) -> None:
        set_compiler_level("ERROR")
        self.assertEqual(logging.getLogger(COMPILER_LOGGER).level, logging.ERROR)
        set_compiler_level(logging.WARNING)
        self.assertEqual(logging.getLogger(COMPILER_LOGGER).level, logging.WARNING)

    def test_init_logging(self) -> None:
        logger = logging.getLogger("raffle_harness.applogging_test")
        init_logging(logger, level=logging.DEBUG)
        try:
            self.assertEqual(logger.level, logging.DEBUG)
            self.assertEqual(len(logger.handlers), 1)
            self.assertIn("%(funcName)s", logger.handlers[0].formatter._fmt)
        finally:
            logger.handlers.clear()
