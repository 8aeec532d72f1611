"""Entry point: python -m playerdata <command>

- fields                       List registered fields
- add-field NAME DEFAULT_JSON  Register a field (default given as JSON)
- remove-field NAME            Unregister a field
- show UUID                    Print an offline player's document
- init-config [PATH]           Write a default playerdata.toml
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from pathlib import Path

from playerdata.config import PlayerDataConfig, load_config, write_default_config
from playerdata.errors import PlayerDataError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_manager(config: PlayerDataConfig):
    from playerdata.manager import PlayerDataManager
    from playerdata.scheduler.tasks import AsyncioScheduler

    manager = PlayerDataManager(config, AsyncioScheduler())
    manager.load()
    return manager


def _list_fields(config: PlayerDataConfig, args: list[str]) -> int:
    manager = _build_manager(config)
    for definition in manager.list_fields():
        marker = " (reserved)" if definition.reserved else ""
        default = json.dumps(definition.to_dict()["defaultValue"])
        print(f"{definition.name:<20} {definition.type.value:<12} {default}{marker}")
    return 0


def _add_field(config: PlayerDataConfig, args: list[str]) -> int:
    if len(args) != 2:
        print("Usage: python -m playerdata add-field NAME DEFAULT_JSON")
        return 1
    name, default_json = args
    try:
        default = json.loads(default_json)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON default {default_json!r}: {e}", file=sys.stderr)
        return 1

    manager = _build_manager(config)
    if manager.add_field(name, default):
        print(f"Added field '{name}'")
    else:
        print(f"Field '{name}' already exists")
    return 0


def _remove_field(config: PlayerDataConfig, args: list[str]) -> int:
    if len(args) != 1:
        print("Usage: python -m playerdata remove-field NAME")
        return 1
    manager = _build_manager(config)
    if manager.remove_field(args[0]):
        print(f"Removed field '{args[0]}'")
        return 0
    print(f"Field '{args[0]}' is reserved or not registered", file=sys.stderr)
    return 1


def _show(config: PlayerDataConfig, args: list[str]) -> int:
    if len(args) != 1:
        print("Usage: python -m playerdata show UUID")
        return 1
    try:
        unique_id = uuid.UUID(args[0])
    except ValueError:
        print(f"Invalid UUID: {args[0]}", file=sys.stderr)
        return 1

    manager = _build_manager(config)
    if not manager.document_path(unique_id).exists():
        print(f"No data stored for {unique_id}", file=sys.stderr)
        return 1
    data = manager.get(unique_id)
    if data is None:
        return 1
    # Read-only: the copy is never released, so the stored file is left as is
    print(json.dumps(dict(data.get_all()), indent=2, ensure_ascii=False))
    return 0


def _init_config(config: PlayerDataConfig, args: list[str]) -> int:
    path = Path(args[0]) if args else Path.cwd() / "playerdata.toml"
    if path.exists():
        print(f"{path} already exists", file=sys.stderr)
        return 1
    write_default_config(path)
    print(f"Wrote {path}")
    return 0


_COMMANDS = {
    "fields": _list_fields,
    "add-field": _add_field,
    "remove-field": _remove_field,
    "show": _show,
    "init-config": _init_config,
}


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    handler = _COMMANDS.get(cmd)
    if handler is None:
        print("Usage: python -m playerdata <command>")
        print("  fields                       List registered fields")
        print("  add-field NAME DEFAULT_JSON  Register a field")
        print("  remove-field NAME            Unregister a field")
        print("  show UUID                    Print an offline player's data")
        print("  init-config [PATH]           Write a default playerdata.toml")
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    try:
        sys.exit(handler(config, sys.argv[2:]))
    except PlayerDataError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
