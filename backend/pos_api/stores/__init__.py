"""
Store adapters.

- mapping: entity registry, document <-> row conversion
- local: LocalStore over the SQLite mirror
- remote: RemoteStore over the document database
- sync_queue: pending cross-store writes
- selector: active engine choice
"""
