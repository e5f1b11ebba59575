# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

# CLI logging.

import logging
import sys
from typing import Union

# Compiler output is routed here at DEBUG so it can be silenced by level alone.
COMPILER_LOGGER = "raffle_harness.move_cli"


def init_logging(
    logger: logging.Logger,
    level: int = logging.INFO,
    print_metadata: bool = True,
) -> None:
    """Initialize logging for an application"""
    logger.setLevel(level)
    sh = logging.StreamHandler(sys.stderr)
    if print_metadata:
        sh.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s [%(filename)s.%(funcName)s:%(lineno)d] %(message)s",
                datefmt="%a, %d %b %Y %H:%M:%S",
            )
        )
    logger.addHandler(sh)


def set_compiler_level(level: Union[int, str]) -> None:
    logging.getLogger(COMPILER_LOGGER).setLevel(parse_level(level))


def parse_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value
