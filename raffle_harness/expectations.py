# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .models import StepResult


# Raised when a step observes something other than what it expected. This is a test
# failure, never a condition to retry.
class ExpectationError(Exception):
    def __init__(self, step: str, expected: str, actual: str):
        super().__init__(f"{step}: expected {expected}, observed {actual}")
        self.step = step
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class Expectation:
    """The outcome class a step must produce.

    success is True for a successful transaction, False for a rejection and None when
    either is acceptable. A rejection reason is a regular expression searched for in the
    VM status; an empty reason accepts any rejection.
    """

    success: Optional[bool]
    reason: str = ""

    @staticmethod
    def succeeds() -> Expectation:
        return Expectation(True)

    @staticmethod
    def rejected(reason: str = "") -> Expectation:
        return Expectation(False, reason)

    @staticmethod
    def either(reason: str = "") -> Expectation:
        return Expectation(None, reason)

    def matches(self, result: StepResult) -> bool:
        if result.success:
            return self.success is not False
        if self.success is True:
            return False
        if not self.reason:
            return True
        return re.search(self.reason, result.vm_status or "") is not None

    def check(self, step: str, result: StepResult) -> StepResult:
        if not self.matches(result):
            raise ExpectationError(step, str(self), str(result))
        return result

    def __str__(self) -> str:
        if self.success is True:
            return "success"
        rejection = f"rejection matching /{self.reason}/" if self.reason else "rejection"
        if self.success is None:
            return f"success or {rejection}"
        return rejection
