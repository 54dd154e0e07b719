"""SQLite node directory adapter.

Implements the core NodeDirectoryPort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Mapping, Optional


class SQLiteNodeDirectory:
    """Thin SQLite wrapper that satisfies the NodeDirectoryPort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - nodes: latest identity announced by each node
        """

        with self._connect() as conn:
            # nodes keeps one row per node, overwritten by every node info packet.
            # Fields:
            # - node_id: 8-digit lowercase hex node id (PRIMARY KEY)
            # - long_name / short_name: names announced by the node
            # - hw_model: hardware model enum name, empty if unknown
            # - hop_start: hop budget of the announcing packet, 0 if unknown
            # - updated_at: time of the last announcement
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                    node_id TEXT PRIMARY KEY,
                    long_name TEXT NOT NULL,
                    short_name TEXT NOT NULL DEFAULT '',
                    hw_model TEXT NOT NULL DEFAULT '',
                    hop_start INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )

    def get_node_name(self, node_hex: str) -> Optional[str]:
        """Return the long name for a node, if known."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT long_name FROM nodes WHERE node_id = ?",
                (node_hex,),
            ).fetchone()
        return row["long_name"] if row else None

    def upsert_node(
        self,
        node_hex: str,
        long_name: str,
        short_name: str = "",
        hw_model: str = "",
        hop_start: int = 0,
    ) -> None:
        """Insert or replace the identity announced by a node."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO nodes (node_id, long_name, short_name, hw_model, hop_start, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(node_id) DO UPDATE SET
                    long_name = excluded.long_name,
                    short_name = excluded.short_name,
                    hw_model = excluded.hw_model,
                    hop_start = excluded.hop_start,
                    updated_at = excluded.updated_at
                """,
                (node_hex, long_name, short_name, hw_model, hop_start, now.isoformat()),
            )

    def seed_names(self, names: Mapping[str, str]) -> int:
        """Add configured names for nodes that have not announced themselves.

        Existing rows win, so seeds never overwrite live node info. Returns
        the number of rows added.
        """

        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            cur = conn.executemany(
                """
                INSERT OR IGNORE INTO nodes (node_id, long_name, updated_at)
                VALUES (?, ?, ?)
                """,
                [(node_hex, name, now) for node_hex, name in names.items()],
            )
            return cur.rowcount

    def count_nodes(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM nodes").fetchone()
        return int(row["total"])

    def list_nodes(self) -> list[sqlite3.Row]:
        """Return every node, most recently updated first."""

        with self._connect() as conn:
            return conn.execute(
                """
                SELECT node_id, long_name, short_name, hw_model, hop_start, updated_at
                FROM nodes
                ORDER BY updated_at DESC
                """
            ).fetchall()
