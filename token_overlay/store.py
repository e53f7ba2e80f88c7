"""Persistence for token records.

The index talks to a :class:`TokenStore` handed to it at construction time.
The SQLite implementation keeps a single connection open for the lifetime of
the store and runs its blocking calls on worker threads, one at a time.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

from .errors import DuplicateOutputError, StorageError
from .models import TokenRecord

T = TypeVar("T")


class TokenStore:
    """Interface for storing and retrieving token records."""

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def insert(self, record: TokenRecord) -> None:
        raise NotImplementedError

    async def mark_spent(self, txid: str, output_index: int) -> bool:
        raise NotImplementedError

    async def delete(self, txid: str, output_index: int) -> bool:
        raise NotImplementedError

    async def get(self, txid: str, output_index: int) -> Optional[TokenRecord]:
        raise NotImplementedError

    async def find_unspent(self, token_id: str) -> List[TokenRecord]:
        raise NotImplementedError

    async def find_all_unspent(self) -> List[TokenRecord]:
        raise NotImplementedError

    async def find_history(self, token_id: str, limit: int) -> List[TokenRecord]:
        raise NotImplementedError

    async def __aenter__(self) -> "TokenStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


_COLUMNS = (
    "txid, output_index, token_id, amount, owner_key, metadata, "
    "locking_script, value_units, spent, admitted_at"
)


class SQLiteTokenStore(TokenStore):
    """Persist token records to a local SQLite database."""

    DEFAULT_DB_PATH = Path.home() / ".token-overlay" / "tokens.sqlite"

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path == ":memory:":
            self.db_path: str | Path = db_path
        else:
            self.db_path = Path(db_path).expanduser() if db_path else self.DEFAULT_DB_PATH
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    async def open(self) -> None:
        if self.conn is not None:
            return
        await asyncio.to_thread(self._connect)

    async def close(self) -> None:
        if self.conn is None:
            return
        conn, self.conn = self.conn, None
        await asyncio.to_thread(self._close_connection, conn)

    def _connect(self) -> None:
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._init_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Could not open token store at {self.db_path}: {exc}") from exc
        self.conn = conn

    def _close_connection(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            conn.close()

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        cursor = conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS tokens (
                txid TEXT NOT NULL,
                output_index INTEGER NOT NULL,
                token_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                owner_key TEXT NOT NULL,
                metadata TEXT,
                locking_script TEXT NOT NULL,
                value_units INTEGER NOT NULL,
                spent INTEGER NOT NULL DEFAULT 0,
                admitted_at REAL NOT NULL,
                PRIMARY KEY (txid, output_index)
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tokens_token_id ON tokens(token_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tokens_token_spent ON tokens(token_id, spent)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tokens_spent ON tokens(spent)")
        conn.commit()

    async def _run(self, func: Callable[[sqlite3.Connection], T]) -> T:
        conn = self.conn
        if conn is None:
            raise StorageError("Token store is not open")

        def locked() -> T:
            with self._lock:
                try:
                    return func(conn)
                except sqlite3.IntegrityError:
                    conn.rollback()
                    raise
                except (sqlite3.Error, OverflowError) as exc:
                    conn.rollback()
                    raise StorageError(f"Token store request failed: {exc}") from exc

        return await asyncio.to_thread(locked)

    async def insert(self, record: TokenRecord) -> None:
        params = {
            "txid": record.txid,
            "output_index": record.output_index,
            "token_id": record.token_id,
            "amount": str(record.amount),
            "owner_key": record.owner_key,
            "metadata": json.dumps(record.metadata) if record.metadata is not None else None,
            "locking_script": record.locking_script,
            "value_units": record.value_units,
            "spent": int(record.spent),
            "admitted_at": record.admitted_at.timestamp(),
        }

        def insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"""
                INSERT INTO tokens ({_COLUMNS})
                VALUES (:txid, :output_index, :token_id, :amount, :owner_key, :metadata,
                        :locking_script, :value_units, :spent, :admitted_at)
                """,
                params,
            )
            conn.commit()

        try:
            await self._run(insert)
        except sqlite3.IntegrityError as exc:
            raise DuplicateOutputError(record.txid, record.output_index) from exc

    async def mark_spent(self, txid: str, output_index: int) -> bool:
        def update(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "UPDATE tokens SET spent = 1 WHERE txid = ? AND output_index = ?",
                (txid, output_index),
            )
            conn.commit()
            return cursor.rowcount > 0

        return await self._run(update)

    async def delete(self, txid: str, output_index: int) -> bool:
        def delete(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "DELETE FROM tokens WHERE txid = ? AND output_index = ?",
                (txid, output_index),
            )
            conn.commit()
            return cursor.rowcount > 0

        return await self._run(delete)

    async def get(self, txid: str, output_index: int) -> Optional[TokenRecord]:
        rows = await self._select(
            f"SELECT {_COLUMNS} FROM tokens WHERE txid = ? AND output_index = ?",
            (txid, output_index),
        )
        return rows[0] if rows else None

    async def find_unspent(self, token_id: str) -> List[TokenRecord]:
        return await self._select(
            f"SELECT {_COLUMNS} FROM tokens WHERE token_id = ? AND spent = 0 "
            "ORDER BY admitted_at, rowid",
            (token_id,),
        )

    async def find_all_unspent(self) -> List[TokenRecord]:
        return await self._select(
            f"SELECT {_COLUMNS} FROM tokens WHERE spent = 0 ORDER BY admitted_at, rowid",
            (),
        )

    async def find_history(self, token_id: str, limit: int) -> List[TokenRecord]:
        return await self._select(
            f"SELECT {_COLUMNS} FROM tokens WHERE token_id = ? "
            "ORDER BY admitted_at DESC, rowid DESC LIMIT ?",
            (token_id, limit),
        )

    async def _select(self, sql: str, params: tuple[Any, ...]) -> List[TokenRecord]:
        def select(conn: sqlite3.Connection) -> List[TokenRecord]:
            return [self._row_to_record(row) for row in conn.execute(sql, params).fetchall()]

        return await self._run(select)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TokenRecord:
        return TokenRecord(
            txid=row["txid"],
            output_index=row["output_index"],
            token_id=row["token_id"],
            amount=int(row["amount"]),
            owner_key=row["owner_key"],
            metadata=json.loads(row["metadata"]) if row["metadata"] is not None else None,
            locking_script=row["locking_script"],
            value_units=row["value_units"],
            spent=bool(row["spent"]),
            admitted_at=datetime.fromtimestamp(row["admitted_at"], tz=timezone.utc),
        )


__all__ = ["TokenStore", "SQLiteTokenStore"]
