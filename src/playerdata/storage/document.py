"""Per-player document: raw encoded field values plus typed accessors.

Retrieve documents through ``PlayerDataManager.get()``. Online players get the
cached instance; offline players get a fresh copy that must be released when
done, preferably as a context manager::

    with manager.get(offline_player) as data:
        data.set("coins", data.get_long("coins") + 10)
"""

from __future__ import annotations

import uuid
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from playerdata.errors import DecodeError
from playerdata.storage import codec
from playerdata.storage.codec import FieldType

if TYPE_CHECKING:
    from playerdata.manager import PlayerDataManager


class PlayerData:
    """Field values of a single player."""

    def __init__(
        self,
        data: dict[str, str | None] | None = None,
        manager: PlayerDataManager | None = None,
    ) -> None:
        self._data: dict[str, str | None] = dict(data or {})
        self._manager = manager
        self._task_ids: list[int] = []

    # ── Typed getters ────────────────────────────────────────

    def get_custom_type(self, field_name: str, type_: Any) -> Any:
        """Decode a field to ``type_``: a FieldType, a class, ``list[X]`` or a dataclass.

        Returns None when the field is null; raises DecodeError when the stored
        value cannot be coerced.
        """
        return codec.decode(self._data.get(field_name), type_)

    def get_object(self, field_name: str) -> Any:
        return self.get_custom_type(field_name, object)

    def get_boolean(self, field_name: str) -> bool | None:
        return self.get_custom_type(field_name, FieldType.BOOLEAN)

    def get_string(self, field_name: str) -> str | None:
        return self.get_custom_type(field_name, FieldType.STRING)

    def get_char(self, field_name: str) -> str | None:
        return self.get_custom_type(field_name, FieldType.CHAR)

    def get_byte(self, field_name: str) -> int | None:
        return self.get_custom_type(field_name, FieldType.BYTE)

    def get_number(self, field_name: str) -> int | float | None:
        value = self.get_object(field_name)
        return None if value is None else codec.as_number(value)

    def get_long(self, field_name: str) -> int | None:
        return self._narrowed(field_name, 64)

    def get_int(self, field_name: str) -> int | None:
        return self._narrowed(field_name, 32)

    def get_short(self, field_name: str) -> int | None:
        return self._narrowed(field_name, 16)

    def get_double(self, field_name: str) -> float | None:
        return self.get_custom_type(field_name, FieldType.FLOAT)

    def get_float(self, field_name: str) -> float | None:
        value = self.get_object(field_name)
        return None if value is None else codec.to_single(value)

    def _narrowed(self, field_name: str, bits: int) -> int | None:
        value = self.get_object(field_name)
        return None if value is None else codec.narrow(value, bits)

    # ── Raw access ───────────────────────────────────────────

    def field_is_null(self, field_name: str) -> bool:
        """True when the field is absent or holds JSON null."""
        raw = self._data.get(field_name)
        if raw is None:
            return True
        try:
            return codec.decode(raw) is None
        except DecodeError:
            return False

    def set(self, field_name: str, value: Any) -> None:
        """Replace a field's value. The field must already be part of the document."""
        if field_name not in self._data:
            raise KeyError(f"Unknown field '{field_name}'")
        self._data[field_name] = codec.encode(value)

    def get_all(self) -> Mapping[str, Any]:
        """Read-only snapshot of every field, decoded generically."""
        return MappingProxyType({name: codec.decode(raw) for name, raw in self._data.items()})

    def raw(self) -> Mapping[str, str | None]:
        return MappingProxyType(self._data)

    @property
    def mutable_data(self) -> dict[str, str | None]:
        """The underlying raw mapping; used by reconciliation."""
        return self._data

    # ── Built-in fields ──────────────────────────────────────

    @property
    def unique_id(self) -> uuid.UUID | None:
        return self.get_custom_type("uuid", uuid.UUID)

    @property
    def name(self) -> str | None:
        return self.get_string("username")

    @property
    def playing_time(self) -> int:
        """Total seconds played."""
        return self.get_long("playing_time") or 0

    def _set_unique_id(self, value: uuid.UUID) -> None:
        self.set("uuid", value)

    def _set_name(self, value: str | None) -> None:
        self.set("username", value)

    def _set_playing_time(self, value: int) -> None:
        self.set("playing_time", value)

    @property
    def permissions(self) -> list[str]:
        return self.get_custom_type("permissions", FieldType.STRING_LIST) or []

    def get_permissions(self) -> list[str]:
        return self.permissions

    def has_permission(self, permission: str) -> bool:
        """True if the permission is granted explicitly or the player is an operator."""
        if permission in self.permissions:
            return True
        if self._manager is None or self.unique_id is None:
            return False
        return self._manager.authority.is_operator(self.unique_id)

    # ── Scheduled tasks ──────────────────────────────────────

    def add_task(self, task_id: int) -> int:
        """Record a repeating task to be cancelled when the player quits."""
        self._task_ids.append(task_id)
        return task_id

    @property
    def task_ids(self) -> list[int]:
        return list(self._task_ids)

    def _clear_tasks(self) -> list[int]:
        task_ids, self._task_ids = self._task_ids, []
        return task_ids

    # ── Scoped release ───────────────────────────────────────

    def close(self) -> None:
        """Persist and release an offline document. No-op for cached (online) documents."""
        if self._manager is not None:
            self._manager.release(self)

    def __enter__(self) -> PlayerData:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"PlayerData({self._data.get('username')}, {len(self._data)} fields)"
