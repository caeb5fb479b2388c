"""
Registry of outstanding fetches, one per cache key.
"""

import asyncio
from typing import Dict, Optional


class InFlightRegistry:
    """Maps a key to the single outstanding fetch task for that key."""

    def __init__(self):
        self._tasks: Dict[str, "asyncio.Task"] = {}

    def get(self, key: str) -> Optional["asyncio.Task"]:
        return self._tasks.get(key)

    def register(self, key: str, task: "asyncio.Task") -> None:
        self._tasks[key] = task

    def release(self, key: str, task: Optional["asyncio.Task"] = None) -> bool:
        """Drop the registration for ``key``.

        With ``task`` given, only that task's registration is dropped, so a
        superseded fetch settling late never unregisters its replacement.
        """
        current = self._tasks.get(key)
        if current is None:
            return False
        if task is not None and current is not task:
            return False
        del self._tasks[key]
        return True

    def discard(self, key: str) -> bool:
        """Forget the reference without touching the running fetch."""
        return self._tasks.pop(key, None) is not None

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
