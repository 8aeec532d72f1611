"""Lifecycle hook registries (load, join, quit, unload).

Registration is additive only. Dispatch iterates over a snapshot of the
callbacks, in registration order, and isolates failures: a raising hook is
logged and the remaining hooks still run.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from playerdata.host.base import OfflinePlayer
    from playerdata.storage.document import PlayerData

logger = logging.getLogger(__name__)

Hook = Callable[["OfflinePlayer", "PlayerData"], None]


class HookType(Enum):
    LOAD = "load"
    JOIN = "join"
    QUIT = "quit"
    UNLOAD = "unload"


class HookRegistry:
    """Append-only ordered list of callbacks for one lifecycle transition."""

    def __init__(self, hook_type: HookType) -> None:
        self.hook_type = hook_type
        self._hooks: list[Hook] = []
        self._lock = threading.Lock()

    def register(self, hook: Hook) -> Hook:
        """Append a callback. Returns it, so this works as a decorator."""
        if not callable(hook):
            raise TypeError(f"{self.hook_type.value} hook must be callable, got {hook!r}")
        with self._lock:
            self._hooks.append(hook)
        return hook

    def snapshot(self) -> tuple[Hook, ...]:
        with self._lock:
            return tuple(self._hooks)

    def dispatch(self, player: OfflinePlayer, data: PlayerData) -> int:
        """Run every hook. Returns the number of hooks that raised."""
        failures = 0
        for hook in self.snapshot():
            try:
                hook(player, data)
            except Exception:
                failures += 1
                logger.exception(
                    "%s hook %s failed for %s",
                    self.hook_type.value,
                    getattr(hook, "__qualname__", repr(hook)),
                    getattr(player, "name", None) or getattr(player, "unique_id", "?"),
                )
        return failures

    def __len__(self) -> int:
        return len(self._hooks)
