"""Field schema: the ordered set of named, typed, defaultable fields.

The registry is persisted in full to ``fields.json`` after every mutation.
Reconciliation of documents reads a snapshot taken under the registry lock, so
a document is never reconciled against a half-updated schema.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from playerdata.errors import LoadError, PersistError, SchemaError
from playerdata.storage.codec import FieldType, encode

logger = logging.getLogger(__name__)

RESERVED_FIELDS = frozenset({"uuid", "username", "playing_time"})


@dataclass(frozen=True)
class FieldDefinition:
    """A named field with its default value and value type."""

    name: str
    default: Any = None
    type: FieldType = FieldType.NULL

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise SchemaError(f"Field name must be a non-empty string, got {self.name!r}")
        if self.default is not None and not self.type.accepts(self.default):
            raise SchemaError(
                f"Default {self.default!r} of field '{self.name}' is not a valid {self.type.value}"
            )

    @classmethod
    def of(cls, name: str, default: Any = None) -> FieldDefinition:
        """Build a definition whose type is taken from its default value."""
        try:
            field_type = FieldType.infer(default)
        except TypeError as e:
            raise SchemaError(f"Field '{name}': {e}") from e
        return cls(name, default, field_type)

    @property
    def reserved(self) -> bool:
        return self.name in RESERVED_FIELDS

    def encoded_default(self) -> str:
        return encode(self.default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "defaultValue": json.loads(self.encoded_default()),
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> FieldDefinition:
        """Parse a schema entry. Entries without a ``type`` get one inferred."""
        if not isinstance(data, dict) or "name" not in data:
            raise SchemaError(f"Invalid field entry: {data!r}")
        default = data.get("defaultValue")
        if "type" not in data:
            return cls.of(data["name"], default)
        try:
            field_type = FieldType(data["type"])
        except ValueError as e:
            raise SchemaError(f"Unknown field type {data['type']!r}") from e
        return cls(data["name"], default, field_type)


BUILTIN_FIELDS: tuple[FieldDefinition, ...] = (
    FieldDefinition("uuid", None, FieldType.STRING),
    FieldDefinition("username", None, FieldType.STRING),
    FieldDefinition("playing_time", 0, FieldType.INTEGER),
    FieldDefinition("permissions", [], FieldType.STRING_LIST),
)


class FieldRegistry:
    """Ordered, persisted set of field definitions."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fields: list[FieldDefinition] = []
        self._lock = threading.RLock()

    # ── Persistence ──────────────────────────────────────────

    def load(self) -> None:
        """Load the schema file (creating it if absent) and restore missing built-ins."""
        with self._lock:
            if self.path.exists():
                fields = self._read()
            else:
                fields = []
                logger.info("Creating field schema at %s", self.path)

            names = {f.name for f in fields}
            for builtin in BUILTIN_FIELDS:
                if builtin.name not in names:
                    fields.append(builtin)

            self._fields = fields
            self.save()

    def _read(self) -> list[FieldDefinition]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LoadError(f"Failed to read field schema {self.path}: {e}") from e
        if not isinstance(data, list):
            raise LoadError(f"Field schema {self.path} must hold a JSON array")

        fields: list[FieldDefinition] = []
        seen: set[str] = set()
        for entry in data:
            try:
                definition = FieldDefinition.from_dict(entry)
            except SchemaError as e:
                raise LoadError(f"Invalid field schema {self.path}: {e}") from e
            if definition.name in seen:
                logger.warning("Ignoring duplicate field '%s' in %s", definition.name, self.path)
                continue
            seen.add(definition.name)
            fields.append(definition)
        return fields

    def save(self) -> None:
        """Write the whole registry. Raises PersistError on failure."""
        with self._lock:
            payload = json.dumps([f.to_dict() for f in self._fields], indent=2, ensure_ascii=False)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(payload + "\n", encoding="utf-8")
            except OSError as e:
                raise PersistError(f"Failed to save field schema {self.path}: {e}") from e

    def _save_logged(self) -> None:
        try:
            self.save()
        except PersistError as e:
            logger.error("%s", e)

    # ── Mutation ─────────────────────────────────────────────

    def add(self, definition: FieldDefinition) -> bool:
        """Append a field unless one with the same name exists."""
        with self._lock:
            if self.contains(definition.name):
                logger.debug("Field '%s' already registered", definition.name)
                return False
            self._fields.append(definition)
            logger.info("Added field '%s' (%s)", definition.name, definition.type.value)
            self._save_logged()
            return True

    def remove(self, name: str) -> bool:
        """Remove a field by case-insensitive name. Reserved fields are never removed."""
        if name.lower() in RESERVED_FIELDS:
            logger.debug("Refusing to remove reserved field '%s'", name)
            return False
        with self._lock:
            match = next((f for f in self._fields if f.name.lower() == name.lower()), None)
            if match is None:
                return False
            self._fields.remove(match)
            logger.info("Removed field '%s'", match.name)
            self._save_logged()
            return True

    # ── Queries ──────────────────────────────────────────────

    def contains(self, name: str) -> bool:
        with self._lock:
            return any(f.name == name for f in self._fields)

    def get(self, name: str) -> FieldDefinition | None:
        with self._lock:
            return next((f for f in self._fields if f.name == name), None)

    def list(self) -> tuple[FieldDefinition, ...]:
        """Immutable snapshot of the registry, in registration order."""
        with self._lock:
            return tuple(self._fields)

    def names(self) -> frozenset[str]:
        with self._lock:
            return frozenset(f.name for f in self._fields)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fields)
