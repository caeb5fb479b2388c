"""
Per-key generation counters used to detect superseded fetches.
"""

from typing import Dict


class GenerationLedger:
    """One monotonically increasing counter per cache key.

    Counters start at 0 and only move forward, on invalidation. A fetch
    records the generation when it starts and may only write its result if
    the generation is unchanged when it completes.
    """

    def __init__(self):
        self._generations: Dict[str, int] = {}

    def get(self, key: str) -> int:
        return self._generations.get(key, 0)

    def bump(self, key: str) -> int:
        generation = self.get(key) + 1
        self._generations[key] = generation
        return generation

    def is_current(self, key: str, generation: int) -> bool:
        return self.get(key) == generation
