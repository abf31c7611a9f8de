from __future__ import annotations

import random

from pygame.math import Vector2


def derive_stream_seed(seed: int, salt: int) -> int:
    return (int(seed) ^ int(salt)) & 0xFFFFFFFFFFFFFFFF


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)

    def reset(self) -> None:
        self._random.seed(self._seed)

    def next_float(self) -> float:
        return self._random.random()

    def next_range(self, low: float, high: float) -> float:
        return self._random.uniform(low, high)

    def next_gaussian(self, mean: float = 0.0, std: float = 1.0) -> float:
        return self._random.gauss(mean, std)

    def next_truncated_gaussian(self, mean: float, std: float, low: float) -> float:
        return max(low, self._random.gauss(mean, std))

    def next_exponential(self, mean: float) -> float:
        if mean <= 0.0:
            return 0.0
        return self._random.expovariate(1.0 / mean)

    def next_gaussian_vector(self, scale: float = 1.0) -> Vector2:
        return Vector2(self._random.gauss(0.0, 1.0) * scale, self._random.gauss(0.0, 1.0) * scale)
