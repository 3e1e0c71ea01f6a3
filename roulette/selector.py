from __future__ import annotations

import random

from roulette.errors import InvalidArgument


class RandomSelector:
    """Uniform index draw backed by the OS entropy source.

    32 random bits are reduced modulo `n`; for participant counts in the
    thousands the modulo bias is far below anything observable.
    """

    BITS = 32

    def __init__(self, rng: random.Random | None = None) -> None:
        # Tests may inject a seeded `random.Random`; production uses SystemRandom.
        self._rng = rng if rng is not None else random.SystemRandom()

    def draw(self, n: int) -> int:
        if n <= 0:
            raise InvalidArgument(f"Cannot draw from {n} participants")
        return self._rng.getrandbits(self.BITS) % n
