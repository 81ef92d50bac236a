"""SQLite-backed persistent storage for pools, mints and worker threads."""

import asyncio
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from solders.keypair import Keypair

from frt_workload.models import PoolRecord, TokenMint

log = logging.getLogger("frt_workload.sqlite_store")


class SQLiteStore:
    """Persistent Store using SQLite.

    Each call opens its own connection; an asyncio.Lock serializes writers
    inside one process.
    """

    def __init__(self, db_path: Path | str = "frt_workload.db"):
        self.db_path = Path(db_path)
        self._lock = asyncio.Lock()
        self._init_db()
        log.info(f"SQLite store initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._connect()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS pools (
                    pool_id TEXT PRIMARY KEY,
                    token_a_mint TEXT NOT NULL,
                    token_b_mint TEXT NOT NULL,
                    ratio_a_numerator INTEGER NOT NULL,
                    ratio_b_denominator INTEGER NOT NULL,
                    origin TEXT NOT NULL,
                    is_valid INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_pools_pair ON pools(token_a_mint, token_b_mint);

                CREATE TABLE IF NOT EXISTS token_mints (
                    address TEXT PRIMARY KEY,
                    decimals INTEGER NOT NULL,
                    authority_secret TEXT,
                    created_at REAL NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS core_wallet (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    secret TEXT NOT NULL,
                    created_at REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS active_pools (
                    pool_id TEXT PRIMARY KEY REFERENCES pools(pool_id) ON DELETE CASCADE,
                    position INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS threads (
                    thread_id TEXT PRIMARY KEY,
                    pool_id TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    data TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_threads_pool ON threads(pool_id);
            """)
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Pools
    # =========================================================================

    async def save_pool(self, rec: PoolRecord) -> None:
        d = rec.to_dict()
        async with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO pools (pool_id, token_a_mint, token_b_mint, ratio_a_numerator,
                                       ratio_b_denominator, origin, is_valid, created_at, updated_at, data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(pool_id) DO UPDATE SET
                        origin = excluded.origin,
                        is_valid = excluded.is_valid,
                        updated_at = excluded.updated_at,
                        data = excluded.data
                    """,
                    (
                        d["pool_id"],
                        d["token_a_mint"],
                        d["token_b_mint"],
                        d["ratio_a_numerator"],
                        d["ratio_b_denominator"],
                        d["origin"],
                        int(d["is_valid"]),
                        d["created_at"],
                        time.time(),
                        json.dumps(d),
                    ),
                )
                conn.commit()
                log.debug("Saved pool %s", d["pool_id"])
            finally:
                conn.close()

    async def get_pool(self, pool_id: str) -> PoolRecord | None:
        async with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT data FROM pools WHERE pool_id = ?", (pool_id,)).fetchone()
            finally:
                conn.close()
        return PoolRecord.from_dict(json.loads(row[0])) if row else None

    async def load_pools(self) -> list[PoolRecord]:
        async with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT data FROM pools ORDER BY created_at").fetchall()
            finally:
                conn.close()
        return [PoolRecord.from_dict(json.loads(r[0])) for r in rows]

    async def delete_pool(self, pool_id: str) -> bool:
        """Remove a pool; its active_pools entry goes with it via ON DELETE CASCADE."""
        async with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM pools WHERE pool_id = ?", (pool_id,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    # =========================================================================
    # Token mints and wallets
    # =========================================================================

    async def save_token_mint(self, mint: TokenMint, authority: Keypair | None = None) -> None:
        async with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO token_mints (address, decimals, authority_secret, created_at, data)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(address) DO UPDATE SET
                        authority_secret = COALESCE(excluded.authority_secret, authority_secret),
                        data = excluded.data
                    """,
                    (
                        str(mint.address),
                        mint.decimals,
                        str(authority) if authority else None,
                        mint.created_at,
                        json.dumps(mint.to_dict()),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    async def load_token_mints(self) -> list[tuple[TokenMint, Keypair | None]]:
        async with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT data, authority_secret FROM token_mints").fetchall()
            finally:
                conn.close()
        out = []
        for data, secret in rows:
            out.append((TokenMint.from_dict(json.loads(data)), Keypair.from_base58_string(secret) if secret else None))
        log.debug(f"Loaded {len(out)} token mints from database")
        return out

    async def save_core_wallet(self, wallet: Keypair) -> None:
        async with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO core_wallet (id, secret, created_at) VALUES (1, ?, ?)",
                    (str(wallet), time.time()),
                )
                conn.commit()
                log.debug(f"Saved core wallet {wallet.pubkey()}")
            finally:
                conn.close()

    async def load_core_wallet(self) -> Keypair | None:
        async with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT secret FROM core_wallet WHERE id = 1").fetchone()
            finally:
                conn.close()
        return Keypair.from_base58_string(row[0]) if row else None

    # =========================================================================
    # Active pool set
    # =========================================================================

    async def save_active_pool_ids(self, pool_ids: list[str]) -> None:
        async with self._lock:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM active_pools")
                conn.executemany(
                    "INSERT INTO active_pools (pool_id, position) VALUES (?, ?)",
                    [(pid, i) for i, pid in enumerate(pool_ids)],
                )
                conn.commit()
            finally:
                conn.close()

    async def load_active_pool_ids(self) -> list[str]:
        async with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT pool_id FROM active_pools ORDER BY position").fetchall()
            finally:
                conn.close()
        return [r[0] for r in rows]

    # =========================================================================
    # Worker threads
    # =========================================================================

    async def save_thread(self, thread_id: str, pool_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO threads (thread_id, pool_id, updated_at, data) VALUES (?, ?, ?, ?)
                    ON CONFLICT(thread_id) DO UPDATE SET
                        pool_id = excluded.pool_id,
                        updated_at = excluded.updated_at,
                        data = excluded.data
                    """,
                    (thread_id, pool_id, time.time(), json.dumps({**data, "thread_id": thread_id, "pool_id": pool_id})),
                )
                conn.commit()
            finally:
                conn.close()

    async def load_threads(self, pool_id: str | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            conn = self._connect()
            try:
                if pool_id is None:
                    rows = conn.execute("SELECT data FROM threads").fetchall()
                else:
                    rows = conn.execute("SELECT data FROM threads WHERE pool_id = ?", (pool_id,)).fetchall()
            finally:
                conn.close()
        return [json.loads(r[0]) for r in rows]

    async def delete_threads_for_pool(self, pool_id: str) -> int:
        async with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM threads WHERE pool_id = ?", (pool_id,))
                conn.commit()
                n = cur.rowcount
            finally:
                conn.close()
        if n:
            log.info("Deleted %d thread(s) for pool %s", n, pool_id)
        return n
