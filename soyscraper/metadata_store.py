"""SQLite-backed store for per-post metadata records.

One row per post number holding the serialized ``PostRecord``. The search UI
reads the same table, so the schema is part of the on-disk contract:

    post_metadata(post_number TEXT PRIMARY KEY, payload_json TEXT, updated_at TEXT)

A store is opened once by the process that owns it and closed exactly once;
callers receive it by reference instead of looking it up in a global cache.
"""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .utils import log_warning, utc_now_iso

_SCHEMA = """
CREATE TABLE IF NOT EXISTS post_metadata (
    post_number  TEXT PRIMARY KEY,
    payload_json TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
"""

_UPSERT = """
INSERT INTO post_metadata (post_number, payload_json, updated_at)
VALUES (?, ?, ?)
ON CONFLICT(post_number) DO UPDATE SET
    payload_json = excluded.payload_json,
    updated_at = excluded.updated_at
"""


@dataclass
class PostRecord:
    post_number: str
    tag_data: Dict[str, Any]
    post_url: str
    image_urls: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    saved_at: str = field(default_factory=utc_now_iso)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "postNumber": str(self.post_number),
            "tagData": self.tag_data,
            "postUrl": self.post_url,
            "imageUrls": list(self.image_urls),
            "files": list(self.files),
            "savedAt": self.saved_at,
        }


class MetadataStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(self.path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")
        with self._conn:
            self._conn.execute(_SCHEMA)

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Metadata store {self.path} is closed")
        return self._conn

    @staticmethod
    def _row_params(post_number: Any, payload: Optional[Dict[str, Any]]) -> Tuple[str, str, str]:
        payload = payload or {}
        updated_at = str(payload.get("savedAt") or utc_now_iso())
        return str(post_number), json.dumps(payload, ensure_ascii=False), updated_at

    def upsert(self, post_number: Any, payload: Optional[Dict[str, Any]]) -> None:
        """Insert or replace the record for ``post_number``; a falsy key is ignored."""

        if not post_number:
            return
        conn = self._connection()
        conn.execute(_UPSERT, self._row_params(post_number, payload))
        conn.commit()

    def upsert_record(self, record: PostRecord) -> None:
        self.upsert(record.post_number, record.to_payload())

    def upsert_batch(self, items: Iterable[Tuple[Any, Dict[str, Any]]]) -> int:
        """Upsert ``(post_number, payload)`` pairs in one transaction."""

        rows = [self._row_params(key, payload) for key, payload in items if key]
        if not rows:
            return 0
        conn = self._connection()
        with conn:
            conn.executemany(_UPSERT, rows)
        return len(rows)

    def get(self, post_number: Any) -> Optional[Dict[str, Any]]:
        cursor = self._connection().execute(
            "SELECT payload_json FROM post_metadata WHERE post_number = ?",
            (str(post_number),),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["payload_json"])

    def load_map(self) -> Dict[str, Dict[str, Any]]:
        """Return every record keyed by post number, skipping unreadable rows."""

        result: Dict[str, Dict[str, Any]] = {}
        cursor = self._connection().execute(
            "SELECT post_number, payload_json FROM post_metadata"
        )
        for row in cursor.fetchall():
            if not row["post_number"]:
                continue
            try:
                result[str(row["post_number"])] = json.loads(row["payload_json"])
            except (TypeError, ValueError):
                log_warning(f"Skipping unreadable metadata row for post {row['post_number']}")
        return result

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        conn.close()

    def __enter__(self) -> "MetadataStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@contextmanager
def open_metadata_store(path: Path) -> Iterator[MetadataStore]:
    store = MetadataStore(path)
    try:
        yield store
    finally:
        store.close()


def load_metadata_map(path: Path) -> Dict[str, Dict[str, Any]]:
    """Read-only helper for consumers; a missing database yields ``{}``."""

    if not Path(path).exists():
        return {}
    with open_metadata_store(path) as store:
        return store.load_map()


__all__ = [
    "PostRecord",
    "MetadataStore",
    "open_metadata_store",
    "load_metadata_map",
]
