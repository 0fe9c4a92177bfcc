"""
Transfer History

Design Decision: Why SQLite?
============================

Options Considered:
1. SQLite - Embedded, no server, single file
2. JSON lines file - Simple, but no querying or updates in place
3. Nothing - History lost when the CLI exits

Decision: SQLite with aiosqlite
- Zero configuration
- Status updates in place (in_progress -> completed / failed)
- Async, so it does not block the receive loop

Only metadata is stored: ids, names, sizes, counts, status. File contents
never touch the database.

Tables:
- transfers: one row per sent or received transfer
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

DIRECTION_SENT = 'sent'
DIRECTION_RECEIVED = 'received'


class TransferHistory:
    """SQLite log of transfers made by this peer."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Open database connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.debug(f"History database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> 'TransferHistory':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _init_schema(self):
        """Initialize database schema."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS transfers (
                transfer_id TEXT NOT NULL,
                direction TEXT NOT NULL,
                room_token TEXT NOT NULL,
                name TEXT,
                size INTEGER,
                mime_type TEXT,
                status TEXT DEFAULT 'in_progress',
                bytes INTEGER DEFAULT 0,
                chunks INTEGER DEFAULT 0,
                detail TEXT,
                started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                finished_at TIMESTAMP,
                PRIMARY KEY (transfer_id, direction)
            );

            CREATE INDEX IF NOT EXISTS idx_transfers_started ON transfers(started_at);
        """)
        await self._connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await self._connection.commit()

    async def start_transfer(self, transfer_id: str, direction: str,
                             room_token: str, name: Optional[str] = None,
                             size: Optional[int] = None,
                             mime_type: Optional[str] = None):
        """Record a transfer as in progress."""
        await self._connection.execute(
            """INSERT INTO transfers (transfer_id, direction, room_token, name, size, mime_type)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(transfer_id, direction) DO UPDATE SET
                   name = ?, size = ?, mime_type = ?, status = 'in_progress'""",
            (transfer_id, direction, room_token, name, size, mime_type,
             name, size, mime_type)
        )
        await self._connection.commit()

    async def finish_transfer(self, transfer_id: str, direction: str,
                              status: str, bytes_count: int = 0,
                              chunks: int = 0, detail: Optional[str] = None):
        """Mark a transfer as completed, incomplete or failed."""
        await self._connection.execute(
            """UPDATE transfers
               SET status = ?, bytes = ?, chunks = ?, detail = ?,
                   finished_at = CURRENT_TIMESTAMP
               WHERE transfer_id = ? AND direction = ?""",
            (status, bytes_count, chunks, detail, transfer_id, direction)
        )
        await self._connection.commit()

    async def get_transfer(self, transfer_id: str, direction: str) -> Optional[Dict]:
        async with self._connection.execute(
            "SELECT * FROM transfers WHERE transfer_id = ? AND direction = ?",
            (transfer_id, direction)
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_recent(self, limit: int = 20) -> List[Dict]:
        """Get transfers, most recent first."""
        async with self._connection.execute(
            """SELECT * FROM transfers
               ORDER BY started_at DESC, rowid DESC
               LIMIT ?""",
            (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


async def open_history(db_path: Path) -> TransferHistory:
    """Open (creating if needed, along with its directory) a history database."""
    history = TransferHistory(db_path)
    await history.connect()
    return history
