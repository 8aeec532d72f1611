"""Tests for lifecycle hook registries."""

from __future__ import annotations

import logging
import uuid

import pytest

from playerdata.hooks import HookRegistry, HookType
from playerdata.host.base import PlayerIdentity
from playerdata.storage.document import PlayerData


@pytest.fixture
def registry() -> HookRegistry:
    return HookRegistry(HookType.LOAD)


@pytest.fixture
def player() -> PlayerIdentity:
    return PlayerIdentity(uuid.uuid4(), "Alex")


class TestHookRegistry:
    def test_dispatch_in_registration_order(self, registry, player):
        calls = []
        registry.register(lambda p, d: calls.append("first"))
        registry.register(lambda p, d: calls.append("second"))
        registry.register(lambda p, d: calls.append("third"))

        assert registry.dispatch(player, PlayerData()) == 0
        assert calls == ["first", "second", "third"]

    def test_failure_is_isolated(self, registry, player, caplog):
        calls = []

        def broken(p, d):
            raise RuntimeError("boom")

        registry.register(lambda p, d: calls.append("before"))
        registry.register(broken)
        registry.register(lambda p, d: calls.append("after"))

        with caplog.at_level(logging.ERROR):
            failures = registry.dispatch(player, PlayerData())

        assert failures == 1
        assert calls == ["before", "after"]
        assert "load hook" in caplog.text
        assert "broken" in caplog.text

    def test_registration_during_dispatch(self, registry, player):
        calls = []

        def registers_another(p, d):
            calls.append("outer")
            registry.register(lambda p, d: calls.append("late"))

        registry.register(registers_another)
        registry.dispatch(player, PlayerData())
        assert calls == ["outer"]
        assert len(registry) == 2

    def test_register_returns_callback(self, registry):
        @registry.register
        def hook(p, d):
            pass

        assert registry.snapshot() == (hook,)

    def test_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.register("not a hook")  # type: ignore[arg-type]
