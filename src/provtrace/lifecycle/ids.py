"""Record identifier generation."""

from __future__ import annotations

import random
import time
from typing import Callable, Optional

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

SAMPLE_PREFIX = "SAMPLE"
BATCH_PREFIX = "BATCH"
STEP_PREFIX = "STEP"
TEST_PREFIX = "TEST"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def random_base36(length: int, rng: random.Random) -> str:
    return "".join(rng.choice(BASE36_DIGITS) for _ in range(length))


class IdGenerator:
    """Builds ``PREFIX-<base36 ms>-<random>`` identifiers.

    The clock returns epoch milliseconds; both it and the random source may be
    replaced for deterministic ids in tests.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        rng: Optional[random.Random] = None,
        random_length: int = 6,
    ) -> None:
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._rng = rng or random.SystemRandom()
        self._random_length = random_length

    def new(self, prefix: str) -> str:
        stamp = to_base36(self._clock())
        suffix = random_base36(self._random_length, self._rng)
        return f"{prefix}-{stamp}-{suffix}".upper()

    def sample_id(self) -> str:
        return self.new(SAMPLE_PREFIX)

    def batch_id(self) -> str:
        return self.new(BATCH_PREFIX)

    def step_id(self) -> str:
        return self.new(STEP_PREFIX)

    def test_id(self) -> str:
        return self.new(TEST_PREFIX)
