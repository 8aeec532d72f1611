"""Tests for the player data lifecycle manager."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Callable

import pytest

from playerdata.config import PlayerDataConfig
from playerdata.errors import LoadError
from playerdata.host.base import PlayerIdentity, StaticDirectory
from playerdata.manager import DocumentState, PlayerDataManager
from playerdata.storage import codec
from playerdata.storage.document import PlayerData
from playerdata.storage.fields import FieldDefinition


class FakeScheduler:
    """Scheduler whose periodic tasks run only when tick() is called."""

    def __init__(self) -> None:
        self.tasks: dict[int, Callable[[], None]] = {}
        self.cancelled: list[int] = []
        self._next_id = 1

    def run_task_later(self, callback, delay):
        return self.run_task_timer(callback, delay, delay)

    def run_task_timer(self, callback, delay, period):
        task_id = self._next_id
        self._next_id += 1
        self.tasks[task_id] = callback
        return task_id

    def cancel_task(self, task_id):
        self.tasks.pop(task_id, None)
        self.cancelled.append(task_id)

    def tick(self) -> None:
        for callback in list(self.tasks.values()):
            callback()


@pytest.fixture
def config(tmp_path: Path) -> PlayerDataConfig:
    return PlayerDataConfig(data_dir=tmp_path / "data")


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory()


@pytest.fixture
def manager(config, scheduler, directory) -> PlayerDataManager:
    m = PlayerDataManager(config, scheduler, directory)
    m.load()
    return m


def new_player(name: str = "Steve", **kwargs) -> PlayerIdentity:
    kwargs.setdefault("has_played_before", False)
    kwargs.setdefault("is_online", True)
    return PlayerIdentity(uuid.uuid4(), name, **kwargs)


def write_document(manager: PlayerDataManager, unique_id: uuid.UUID, values: dict) -> Path:
    path = manager.document_path(unique_id)
    fields = {name: codec.encode(value) for name, value in values.items()}
    path.write_bytes(codec.encode_document(fields))
    return path


def read_document(manager: PlayerDataManager, unique_id: uuid.UUID) -> dict:
    raw = codec.decode_document(manager.document_path(unique_id).read_bytes())
    return {name: codec.decode(value) for name, value in raw.items()}


class TestPhases:
    def test_load_prepares_store(self, manager: PlayerDataManager, config: PlayerDataConfig):
        assert config.players_dir.is_dir()
        assert config.fields_file.exists()
        assert manager.in_loading_phase

    def test_enable_joins_online_players(self, manager: PlayerDataManager):
        players = [new_player("A"), new_player("B")]
        manager.enable(players)
        assert not manager.in_loading_phase
        assert all(manager.is_online(p.unique_id) for p in players)

    def test_shutdown_drains_cache(self, manager: PlayerDataManager, scheduler: FakeScheduler):
        players = [new_player("A"), new_player("B")]
        manager.enable(players)
        manager.shutdown()

        assert manager.online_players() == []
        assert scheduler.tasks == {}
        for player in players:
            assert read_document(manager, player.unique_id)["username"] == player.name

    def test_shutdown_survives_malformed_username(self, manager: PlayerDataManager, caplog):
        bad = PlayerIdentity(uuid.uuid4(), None, has_played_before=True, is_online=True)
        bad_path = manager.document_path(bad.unique_id)
        # username stored as bare text instead of encoded JSON
        bad_path.write_bytes(
            codec.encode_document({"uuid": codec.encode(str(bad.unique_id)), "username": "Bad"})
        )
        good = new_player("Good")
        manager.enable([bad, good])
        assert manager.is_online(bad.unique_id)

        with caplog.at_level(logging.DEBUG):
            manager.shutdown()

        assert manager.online_players() == []
        assert manager.state_of(bad.unique_id) is DocumentState.UNLOADED
        assert manager.state_of(good.unique_id) is DocumentState.UNLOADED
        assert codec.decode_document(bad_path.read_bytes())["username"] == "Bad"
        assert read_document(manager, good.unique_id)["username"] == "Good"
        assert "Saved data: Bad" in caplog.text

    def test_shutdown_continues_after_failed_quit(self, manager: PlayerDataManager, monkeypatch):
        first, second = new_player("A"), new_player("B")
        manager.enable([first, second])
        real_unload = manager.unload_document

        def flaky_unload(data, player=None):
            if player is first:
                raise RuntimeError("disk on fire")
            return real_unload(data, player)

        monkeypatch.setattr(manager, "unload_document", flaky_unload)
        manager.shutdown()

        assert manager.online_players() == []
        assert manager.state_of(first.unique_id) is DocumentState.UNLOADED
        assert read_document(manager, second.unique_id)["username"] == "B"


class TestNewPlayer:
    def test_join_creates_and_ticks(self, manager: PlayerDataManager, scheduler: FakeScheduler):
        player = new_player()
        manager.enable()
        data = manager.join(player)

        assert data.unique_id == player.unique_id
        assert data.name == "Steve"
        assert data.get_long("playing_time") == 0
        assert data.permissions == []

        scheduler.tick()
        assert data.get_long("playing_time") == 1

        task_ids = data.task_ids
        manager.quit(player)
        assert scheduler.cancelled == task_ids
        assert read_document(manager, player.unique_id)["playing_time"] == 1

    def test_set_then_quit_persists(self, manager: PlayerDataManager):
        manager.add_field("coins", 0)
        manager.enable()
        player = new_player()
        data = manager.join(player)
        data.set("coins", 50)
        manager.quit(player)

        raw = codec.decode_document(manager.document_path(player.unique_id).read_bytes())
        assert codec.decode(raw["coins"], int) == 50


class TestReconciliation:
    def test_injects_new_field_without_touching_others(self, manager: PlayerDataManager):
        unique_id = uuid.uuid4()
        write_document(
            manager,
            unique_id,
            {"uuid": str(unique_id), "username": "Alex", "playing_time": 42, "permissions": ["chat"]},
        )
        manager.add_field(FieldDefinition.of("coins", 0))

        data = manager.load_document(PlayerIdentity(unique_id, "Alex"))
        assert data.get_long("coins") == 0
        assert data.playing_time == 42
        assert data.permissions == ["chat"]
        assert data.name == "Alex"

    def test_fills_null_values(self, manager: PlayerDataManager):
        unique_id = uuid.uuid4()
        write_document(manager, unique_id, {"uuid": str(unique_id), "playing_time": None})
        data = manager.load_document(PlayerIdentity(unique_id, "Alex"))
        assert data.playing_time == 0
        assert data.name == "Alex"

    def test_strips_removed_fields(self, manager: PlayerDataManager):
        unique_id = uuid.uuid4()
        manager.add_field("coins", 0)
        write_document(manager, unique_id, {"uuid": str(unique_id), "coins": 5, "legacy": "x"})

        assert manager.remove_field("coins")
        data = manager.load_document(PlayerIdentity(unique_id, "Alex"))
        assert set(data.raw()) == {f.name for f in manager.list_fields()}
        assert "coins" not in data.raw()

    def test_reserved_fields_survive(self, manager: PlayerDataManager):
        for name in ("uuid", "username", "playing_time"):
            assert not manager.remove_field(name)
        data = manager.load_document(new_player(is_online=False))
        assert {"uuid", "username", "playing_time"} <= set(data.raw())

    def test_unknown_file_means_new_document(self, manager: PlayerDataManager):
        data = manager.load_document(PlayerIdentity(uuid.uuid4(), "Ghost", has_played_before=True))
        assert data.playing_time == 0


class TestCorruptedDocument:
    def test_load_raises(self, manager: PlayerDataManager):
        player = new_player(has_played_before=True)
        manager.document_path(player.unique_id).write_bytes(b"{not json")
        with pytest.raises(LoadError):
            manager.load_document(player)

    def test_join_caches_nothing_and_quit_writes_nothing(self, manager: PlayerDataManager, caplog):
        player = new_player(has_played_before=True)
        path = manager.document_path(player.unique_id)
        path.write_bytes(b"{not json")

        assert manager.join(player) is None
        assert not manager.is_online(player.unique_id)
        assert manager.state_of(player.unique_id) is DocumentState.UNLOADED

        with caplog.at_level(logging.WARNING):
            manager.quit(player)
        assert path.read_bytes() == b"{not json"
        assert "No cached data" in caplog.text

    @pytest.mark.parametrize(
        "content",
        [
            b'{"coins": ' + b"9" * 5000 + b"}",
            b"[" * 100000 + b"]" * 100000,
        ],
        ids=["oversized-integer", "deep-nesting"],
    )
    def test_pathological_json_is_a_load_error(self, manager: PlayerDataManager, content: bytes):
        player = new_player(has_played_before=True)
        manager.document_path(player.unique_id).write_bytes(content)

        with pytest.raises(LoadError):
            manager.load_document(player)
        assert manager.join(player) is None
        assert not manager.is_online(player.unique_id)

    def test_offline_get_returns_none(self, manager: PlayerDataManager):
        unique_id = uuid.uuid4()
        manager.document_path(unique_id).write_bytes(b"[]")
        assert manager.get(unique_id) is None


class TestOnlineCache:
    def test_get_online_uses_cache(self, manager: PlayerDataManager, monkeypatch):
        player = new_player()
        data = manager.join(player)

        def no_io(*args, **kwargs):
            raise AssertionError("load_document called for an online player")

        monkeypatch.setattr(manager, "load_document", no_io)
        assert manager.get(player) is data
        assert manager.get(player.unique_id) is data

    def test_double_join_keeps_single_copy(self, manager: PlayerDataManager, scheduler: FakeScheduler):
        player = new_player()
        first = manager.join(player)
        second = manager.join(player)
        assert first is second
        assert len(scheduler.tasks) == 1

    def test_online_without_cache(self, manager: PlayerDataManager):
        assert manager.get(new_player(is_online=True)) is None

    def test_release_of_cached_document_is_noop(self, manager: PlayerDataManager):
        player = new_player()
        data = manager.join(player)
        data.close()
        assert manager.is_online(player.unique_id)
        assert not manager.document_path(player.unique_id).exists()

    def test_states(self, manager: PlayerDataManager):
        player = new_player()
        seen = []
        manager.on_join(lambda p, d: seen.append(manager.state_of(p.unique_id)))
        manager.on_quit(lambda p, d: seen.append(manager.state_of(p.unique_id)))

        manager.join(player)
        assert manager.state_of(player.unique_id) is DocumentState.ONLINE
        manager.quit(player)
        assert manager.state_of(player.unique_id) is DocumentState.UNLOADED
        assert seen == [DocumentState.LOADING, DocumentState.UNLOADING]


class TestOfflineAccess:
    def test_scoped_release_persists(self, manager: PlayerDataManager):
        manager.add_field("coins", 0)
        unique_id = uuid.uuid4()
        write_document(manager, unique_id, {"uuid": str(unique_id), "username": "Alex", "coins": 1})

        with manager.get(unique_id) as data:
            data.set("coins", data.get_long("coins") + 10)
            assert not manager.is_online(unique_id)

        assert read_document(manager, unique_id)["coins"] == 11

    def test_unreleased_changes_are_lost(self, manager: PlayerDataManager):
        manager.add_field("coins", 0)
        unique_id = uuid.uuid4()
        write_document(manager, unique_id, {"uuid": str(unique_id), "coins": 1})

        manager.get(unique_id).set("coins", 99)
        assert read_document(manager, unique_id)["coins"] == 1


class TestHooks:
    def test_dispatch_order_and_arguments(self, manager: PlayerDataManager):
        calls = []
        manager.on_load(lambda p, d: calls.append(("load", p.name)))
        manager.on_join(lambda p, d: calls.append(("join", p.name)))
        manager.on_quit(lambda p, d: calls.append(("quit", p.name)))
        manager.on_unload(lambda p, d: calls.append(("unload", p.name)))

        player = new_player()
        manager.join(player)
        manager.quit(player)
        assert calls == [("load", "Steve"), ("join", "Steve"), ("quit", "Steve"), ("unload", "Steve")]

    def test_failing_hook_does_not_abort_load(self, manager: PlayerDataManager):
        def broken(p, d):
            raise ValueError("boom")

        manager.on_load(broken)
        player = new_player()
        assert manager.join(player) is not None
        assert manager.is_online(player.unique_id)

    def test_unload_hook_mutates_before_write(self, manager: PlayerDataManager):
        manager.add_field("coins", 0)
        manager.on_unload(lambda p, d: d.set("coins", 7))
        player = new_player()
        manager.join(player)
        manager.quit(player)
        assert read_document(manager, player.unique_id)["coins"] == 7

    def test_offline_unload_resolves_player(self, manager, directory: StaticDirectory):
        known = directory.add(PlayerIdentity(uuid.uuid4(), "Known"))
        seen = []
        manager.on_unload(lambda p, d: seen.append(p))

        data = manager.get(known.unique_id)
        data.close()
        assert seen == [known]


class TestPersistFailure:
    def test_write_failure_is_logged(self, manager: PlayerDataManager, caplog):
        player = new_player()
        manager.join(player)
        manager.document_path(player.unique_id).mkdir()

        with caplog.at_level(logging.ERROR):
            manager.quit(player)
        assert "Failed to save data of Steve" in caplog.text
        assert not manager.is_online(player.unique_id)

    def test_missing_uuid(self, manager: PlayerDataManager, caplog):
        with caplog.at_level(logging.ERROR):
            assert not manager.unload_document(PlayerData({"uuid": None}))
        assert "missing uuid" in caplog.text


class TestFieldManagement:
    def test_delegation(self, manager: PlayerDataManager):
        assert manager.add_field("coins", 0)
        assert not manager.add_field("coins", 5)
        assert manager.contains_field("coins")
        assert "coins" in [f.name for f in manager.list_fields()]
        assert manager.remove_field("coins")
        assert not manager.contains_field("coins")

    def test_add_after_loading_phase_warns(self, manager: PlayerDataManager, caplog):
        manager.enable()
        with caplog.at_level(logging.WARNING):
            assert manager.add_field("late", True)
        assert manager.contains_field("late")
        assert "outside the loading phase" in caplog.text

    def test_operator_permission(self, config, scheduler, directory: StaticDirectory):
        op = directory.add(PlayerIdentity(uuid.uuid4(), "Admin", has_played_before=False, operator=True))
        m = PlayerDataManager(config, scheduler, directory)
        m.load()
        data = m.join(op)
        assert data.has_permission("anything")
