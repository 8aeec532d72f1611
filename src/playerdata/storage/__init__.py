"""Player data storage: field schema, value codec and per-player documents.

Layout:
    <data_dir>/
    ├── fields.json                    # Ordered field schema: [{name, defaultValue, type}]
    └── playerdata/
        └── <uuid>.json                # One document per player: {field: encoded JSON text}

Documents are reconciled against the schema every time they are loaded:
missing fields get their default, fields no longer registered are dropped.
"""
