"""Collaborator protocols implemented by the hosting application, and shared types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class OfflinePlayer(Protocol):
    """Any player known to the host, online or not."""

    @property
    def unique_id(self) -> uuid.UUID: ...

    @property
    def name(self) -> str | None: ...

    @property
    def has_played_before(self) -> bool: ...

    @property
    def is_online(self) -> bool: ...


# Online players expose the same surface; the alias documents hook signatures.
Player = OfflinePlayer


@runtime_checkable
class IdentityDirectory(Protocol):
    """Resolves a UUID to the host's view of that player."""

    def get_offline_player(self, unique_id: uuid.UUID) -> OfflinePlayer: ...


@runtime_checkable
class Authority(Protocol):
    """Elevated (operator) status lookup."""

    def is_operator(self, unique_id: uuid.UUID) -> bool: ...


@runtime_checkable
class TaskScheduler(Protocol):
    """One-shot and periodic task submission with cancellation by id."""

    def run_task_later(self, callback: Callable[[], None], delay: float) -> int: ...

    def run_task_timer(self, callback: Callable[[], None], delay: float, period: float) -> int: ...

    def cancel_task(self, task_id: int) -> None: ...


@dataclass
class PlayerIdentity:
    """Plain player reference, for hosts without their own player type."""

    unique_id: uuid.UUID
    name: str | None = None
    has_played_before: bool = True
    is_online: bool = False
    operator: bool = False


@dataclass
class StaticDirectory:
    """In-memory directory and authority.

    Unknown UUIDs resolve to an offline player that may have a stored record.
    """

    players: dict[uuid.UUID, PlayerIdentity] = field(default_factory=dict)

    def add(self, player: PlayerIdentity) -> PlayerIdentity:
        self.players[player.unique_id] = player
        return player

    def get_offline_player(self, unique_id: uuid.UUID) -> PlayerIdentity:
        return self.players.get(unique_id) or PlayerIdentity(unique_id)

    def is_operator(self, unique_id: uuid.UUID) -> bool:
        player = self.players.get(unique_id)
        return bool(player and player.operator)
