"""Player data lifecycle: the owner of every online player's document.

Responsibilities:
1. Field schema: load/seed fields.json, delegate add/remove during the loading phase
2. Load: read (or create) a player's document and reconcile it with the schema
3. Online cache: exactly one document per online player, keyed by UUID
4. Hooks: load/join/quit/unload callbacks, dispatched in registration order
5. Unload: run unload hooks, then persist the document to <uuid>.json
6. Shutdown: drain every online player through the quit path, save the schema
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from playerdata.config import PlayerDataConfig
from playerdata.errors import DecodeError, LoadError, PersistError
from playerdata.hooks import Hook, HookRegistry, HookType
from playerdata.host.base import (
    Authority,
    IdentityDirectory,
    OfflinePlayer,
    Player,
    StaticDirectory,
    TaskScheduler,
)
from playerdata.storage import codec
from playerdata.storage.document import PlayerData
from playerdata.storage.fields import FieldDefinition, FieldRegistry

logger = logging.getLogger(__name__)


class DocumentState(Enum):
    """Where a player's document is in its online lifecycle."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    ONLINE = "online"
    UNLOADING = "unloading"


@dataclass
class _Session:
    player: Player
    data: PlayerData


class PlayerDataManager:
    """Loads, caches, reconciles and persists per-player documents."""

    def __init__(
        self,
        config: PlayerDataConfig,
        scheduler: TaskScheduler,
        directory: IdentityDirectory | None = None,
        authority: Authority | None = None,
    ) -> None:
        self.config = config
        self.scheduler = scheduler
        self.directory = directory or StaticDirectory()
        if authority is None:
            authority = self.directory if isinstance(self.directory, Authority) else StaticDirectory()
        self.authority = authority
        self.fields = FieldRegistry(config.fields_file)
        self._hooks = {hook_type: HookRegistry(hook_type) for hook_type in HookType}
        self._sessions: dict[uuid.UUID, _Session] = {}
        self._states: dict[uuid.UUID, DocumentState] = {}
        self._lock = threading.Lock()
        self._in_loading_phase = False

        self._register_builtin_hooks()

    # ── Phases ────────────────────────────────────────────────

    def load(self) -> None:
        """Enter the loading phase: prepare directories and load the field schema.

        Raises LoadError or PersistError when the store cannot be initialized.
        """
        self._in_loading_phase = True
        try:
            self.config.players_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoadError(f"Cannot create {self.config.players_dir}: {e}") from e
        self.fields.load()
        logger.info(
            "Player data store ready at %s (%d fields)", self.config.data_dir, len(self.fields)
        )

    def enable(self, online_players: Iterable[Player] = ()) -> None:
        """Leave the loading phase and join every player already online."""
        self._in_loading_phase = False
        for player in online_players:
            self.join(player)

    def shutdown(self) -> None:
        """Quit every online player (persisting their data), then save the schema."""
        with self._lock:
            sessions = list(self._sessions.values())
        logger.info("Shutting down, saving %d online players", len(sessions))
        for session in sessions:
            try:
                self.quit(session.player)
            except Exception:
                logger.exception("Failed to quit %s during shutdown", session.player.name)
        try:
            self.fields.save()
        except PersistError as e:
            logger.error("%s", e, exc_info=self.config.debug)

    @property
    def in_loading_phase(self) -> bool:
        return self._in_loading_phase

    # ── Built-in hooks ───────────────────────────────────────

    def _register_builtin_hooks(self) -> None:
        self.on_load(self._fill_identity)
        self.on_join(self._start_playtime)

    @staticmethod
    def _fill_identity(player: OfflinePlayer, data: PlayerData) -> None:
        if data.field_is_null("uuid"):
            data._set_unique_id(player.unique_id)
        if data.field_is_null("username"):
            data._set_name(player.name)

    def _start_playtime(self, player: Player, data: PlayerData) -> None:
        interval = self.config.playtime.interval

        def tick() -> None:
            data._set_playing_time(data.playing_time + 1)

        data.add_task(self.scheduler.run_task_timer(tick, interval, interval))

    # ── Load / reconcile ─────────────────────────────────────

    def document_path(self, unique_id: uuid.UUID) -> Path:
        return self.config.players_dir / f"{unique_id}.json"

    def load_document(self, player: OfflinePlayer) -> PlayerData:
        """Read (or create) a player's document, reconcile it and run load hooks.

        Raises LoadError when an existing file cannot be read or decoded.
        """
        path = self.document_path(player.unique_id)
        if not player.has_played_before or not path.exists():
            data = PlayerData({}, manager=self)
            logger.debug("Created player data: %s", player.name)
        else:
            try:
                fields = codec.decode_document(path.read_bytes())
            except (OSError, DecodeError) as e:
                logger.error(
                    "Failed to load data of %s: %s", player.name, e, exc_info=self.config.debug
                )
                raise LoadError(f"Failed to load data of {player.name} from {path}") from e
            data = PlayerData(fields, manager=self)

        self._reconcile(data)
        self._hooks[HookType.LOAD].dispatch(player, data)
        logger.debug("Loaded data: %s", player.name)
        return data

    def _reconcile(self, data: PlayerData) -> None:
        """Fill missing or null fields with defaults; drop unregistered fields."""
        definitions = self.fields.list()
        raw = data.mutable_data
        for definition in definitions:
            if definition.name not in raw or data.field_is_null(definition.name):
                raw[definition.name] = definition.encoded_default()

        registered = {definition.name for definition in definitions}
        stale = [name for name in raw if name not in registered]
        for name in stale:
            del raw[name]
        if stale:
            logger.debug("Stripped unregistered fields %s", stale)

    # ── Online lifecycle ─────────────────────────────────────

    def join(self, player: Player) -> PlayerData | None:
        """Load a joining player's document, run join hooks and cache it.

        Returns None (nothing cached) when the document fails to load.
        """
        unique_id = player.unique_id
        with self._lock:
            session = self._sessions.get(unique_id)
            if session is not None:
                logger.error("%s joined while already online; keeping cached data", player.name)
                return session.data
            self._states[unique_id] = DocumentState.LOADING

        try:
            data = self.load_document(player)
        except LoadError:
            with self._lock:
                self._states.pop(unique_id, None)
            return None

        self._hooks[HookType.JOIN].dispatch(player, data)
        with self._lock:
            self._sessions[unique_id] = _Session(player, data)
            self._states[unique_id] = DocumentState.ONLINE
        return data

    def quit(self, player: Player) -> None:
        """Run quit hooks, cancel the player's tasks, uncache and persist."""
        unique_id = player.unique_id
        with self._lock:
            session = self._sessions.get(unique_id)
            if session is None:
                logger.warning("No cached data for %s on quit", player.name)
                return
            self._states[unique_id] = DocumentState.UNLOADING

        data = session.data
        self._hooks[HookType.QUIT].dispatch(player, data)
        for task_id in data._clear_tasks():
            try:
                self.scheduler.cancel_task(task_id)
            except Exception as e:
                logger.error("Failed to cancel task %d of %s: %s", task_id, player.name, e)

        with self._lock:
            self._sessions.pop(unique_id, None)
        try:
            self.unload_document(data, session.player)
        finally:
            with self._lock:
                self._states.pop(unique_id, None)

    def unload_document(self, data: PlayerData, player: OfflinePlayer | None = None) -> bool:
        """Run unload hooks, then write the document. Returns False if it was not saved."""
        try:
            unique_id = data.unique_id
        except DecodeError:
            unique_id = None
        if unique_id is None:
            logger.error("Cannot save data of %s: missing uuid", self._label(data))
            return False

        if player is None:
            player = self.directory.get_offline_player(unique_id)
        self._hooks[HookType.UNLOAD].dispatch(player, data)

        try:
            self._write_document(unique_id, data)
        except PersistError as e:
            logger.error(
                "Failed to save data of %s: %s", self._label(data, player), e, exc_info=self.config.debug
            )
            return False
        logger.debug("Saved data: %s", self._label(data, player))
        return True

    @staticmethod
    def _label(data: PlayerData, player: OfflinePlayer | None = None) -> str:
        """Name for log messages. Reads raw text so a malformed username cannot raise."""
        if player is not None and player.name:
            return player.name
        return data.raw().get("username") or "<unknown player>"

    def _write_document(self, unique_id: uuid.UUID, data: PlayerData) -> None:
        path = self.document_path(unique_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(codec.encode_document(data.mutable_data))
            tmp.replace(path)
        except OSError as e:
            raise PersistError(f"Cannot write {path}: {e}") from e

    # ── Public access ────────────────────────────────────────

    def get(self, player: OfflinePlayer | uuid.UUID) -> PlayerData | None:
        """Document of a player, online or not.

        Online players get their cached document (no I/O). Offline players get a
        fresh, uncached copy that must be released (``close()`` or ``with``) for
        changes to be saved. Returns None when the document cannot be loaded.
        """
        if isinstance(player, uuid.UUID):
            player = self.directory.get_offline_player(player)

        with self._lock:
            session = self._sessions.get(player.unique_id)
        if session is not None:
            return session.data
        if player.is_online:
            logger.warning("%s is online but has no cached data", player.name)
            return None

        try:
            return self.load_document(player)
        except LoadError:
            return None

    def release(self, data: PlayerData) -> bool:
        """Persist an offline document. Cached documents are owned by the cache: no-op."""
        try:
            unique_id = data.unique_id
        except DecodeError:
            unique_id = None
        with self._lock:
            session = self._sessions.get(unique_id) if unique_id else None
        if session is not None and session.data is data:
            return False
        return self.unload_document(data)

    def is_online(self, unique_id: uuid.UUID) -> bool:
        with self._lock:
            return unique_id in self._sessions

    def state_of(self, unique_id: uuid.UUID) -> DocumentState:
        with self._lock:
            return self._states.get(unique_id, DocumentState.UNLOADED)

    def online_players(self) -> list[Player]:
        with self._lock:
            return [session.player for session in self._sessions.values()]

    # ── Field management ─────────────────────────────────────

    def add_field(self, field: FieldDefinition | str, default: Any = None) -> bool:
        """Register a field. Meant for the loading phase; returns False for duplicates."""
        definition = field if isinstance(field, FieldDefinition) else FieldDefinition.of(field, default)
        if not self._in_loading_phase:
            logger.warning(
                "Field '%s' added outside the loading phase; online players get it on next load",
                definition.name,
            )
        return self.fields.add(definition)

    def remove_field(self, name: str) -> bool:
        """Unregister a field. Reserved fields are never removed."""
        return self.fields.remove(name)

    def contains_field(self, name: str) -> bool:
        return self.fields.contains(name)

    def list_fields(self) -> tuple[FieldDefinition, ...]:
        return self.fields.list()

    # ── Hook registration ────────────────────────────────────

    def on_load(self, hook: Hook) -> Hook:
        """Run ``hook(player, data)`` whenever a document is loaded from disk or created."""
        return self._hooks[HookType.LOAD].register(hook)

    def on_join(self, hook: Hook) -> Hook:
        """Run ``hook(player, data)`` when a player joins, before the document is cached."""
        return self._hooks[HookType.JOIN].register(hook)

    def on_quit(self, hook: Hook) -> Hook:
        return self._hooks[HookType.QUIT].register(hook)

    def on_unload(self, hook: Hook) -> Hook:
        """Run ``hook(player, data)`` right before a document is written."""
        return self._hooks[HookType.UNLOAD].register(hook)
