import os
import logging
from typing import Optional, List, Callable, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

SHARED_SCOPE = "shared"


class Database:
    def __init__(self, path: str):
        self.path = path

    def connect(self, **kwargs):
        return aiosqlite.connect(self.path, **kwargs)

    async def init_db(self):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        async with self.connect() as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(
                "CREATE TABLE IF NOT EXISTS kv_store (scope TEXT NOT NULL, key TEXT NOT NULL, value TEXT, version INTEGER DEFAULT 1, updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, PRIMARY KEY(scope, key))"
            )
            await db.execute(
                "CREATE TABLE IF NOT EXISTS users (id INTEGER PRIMARY KEY AUTOINCREMENT, email TEXT UNIQUE, username TEXT, password_hash TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
            )
            await db.execute("CREATE TABLE IF NOT EXISTS user_roles (user_id INTEGER PRIMARY KEY, role TEXT NOT NULL DEFAULT 'user')")
            await db.execute(
                "CREATE TABLE IF NOT EXISTS short_links (id INTEGER PRIMARY KEY AUTOINCREMENT, short_code TEXT UNIQUE NOT NULL, original_url TEXT NOT NULL, click_count INTEGER DEFAULT 0, user_id INTEGER, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
            )
            await db.execute(
                "CREATE TABLE IF NOT EXISTS users_data (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER UNIQUE NOT NULL, ads TEXT DEFAULT '[]', countdown INTEGER DEFAULT 30, short_links TEXT DEFAULT '[]', analytics TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_short_links_user_id ON short_links(user_id)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_kv_store_key ON kv_store(key)")
            await db.commit()


class KeyValueStore:
    """Text values under a scope, the server-side stand-in for a browser's
    local/session storage.

    Reads never raise: a failed read is logged and returns ``None``. Writes
    propagate errors so callers can decide whether to degrade.
    """

    def __init__(self, db: Database, scope: str):
        self.db = db
        self.scope = scope

    async def get(self, key: str) -> Optional[str]:
        row = await self.get_versioned(key)
        return row[0] if row else None

    async def get_versioned(self, key: str) -> Optional[Tuple[str, int]]:
        try:
            async with self.db.connect() as db:
                row = await (
                    await db.execute("SELECT value, version FROM kv_store WHERE scope=? AND key=?", (self.scope, key))
                ).fetchone()
        except Exception as e:
            logger.error(f"KV read error scope={self.scope} key={key}: {e}")
            return None
        if not row:
            return None
        return str(row[0]) if row[0] is not None else None, int(row[1] or 0)

    async def set(self, key: str, value: str) -> None:
        async with self.db.connect() as db:
            await db.execute(
                "INSERT INTO kv_store (scope, key, value, version) VALUES (?,?,?,1) "
                "ON CONFLICT(scope, key) DO UPDATE SET value=excluded.value, version=kv_store.version+1, updated_at=CURRENT_TIMESTAMP",
                (self.scope, key, value),
            )
            await db.commit()

    async def compare_and_set(self, key: str, value: str, expected_version: int) -> bool:
        """Write only if the stored version still equals ``expected_version``
        (0 meaning the key must not exist yet)."""
        async with self.db.connect() as db:
            if expected_version <= 0:
                cur = await db.execute(
                    "INSERT OR IGNORE INTO kv_store (scope, key, value, version) VALUES (?,?,?,1)",
                    (self.scope, key, value),
                )
            else:
                cur = await db.execute(
                    "UPDATE kv_store SET value=?, version=version+1, updated_at=CURRENT_TIMESTAMP WHERE scope=? AND key=? AND version=?",
                    (value, self.scope, key, expected_version),
                )
            await db.commit()
            return cur.rowcount == 1

    async def update(self, key: str, fn: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        """Atomic read-modify-write. ``fn`` gets the current text (or None) and
        returns the new text; returning None leaves the row untouched."""
        async with self.db.connect(isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                row = await (
                    await db.execute("SELECT value FROM kv_store WHERE scope=? AND key=?", (self.scope, key))
                ).fetchone()
                new_value = fn(row[0] if row else None)
                if new_value is not None:
                    await db.execute(
                        "INSERT INTO kv_store (scope, key, value, version) VALUES (?,?,?,1) "
                        "ON CONFLICT(scope, key) DO UPDATE SET value=excluded.value, version=kv_store.version+1, updated_at=CURRENT_TIMESTAMP",
                        (self.scope, key, new_value),
                    )
                await db.execute("COMMIT")
            except BaseException:
                await db.execute("ROLLBACK")
                raise
        return new_value

    async def remove(self, key: str) -> None:
        async with self.db.connect() as db:
            await db.execute("DELETE FROM kv_store WHERE scope=? AND key=?", (self.scope, key))
            await db.commit()

    async def clear(self) -> None:
        async with self.db.connect() as db:
            await db.execute("DELETE FROM kv_store WHERE scope=?", (self.scope,))
            await db.commit()

    async def keys(self) -> List[str]:
        try:
            async with self.db.connect() as db:
                rows = await (await db.execute("SELECT key FROM kv_store WHERE scope=? ORDER BY key", (self.scope,))).fetchall()
        except Exception as e:
            logger.error(f"KV keys error scope={self.scope}: {e}")
            return []
        return [str(r[0]) for r in rows]


async def scan_key(db: Database, key: str, scope_prefix: str) -> List[Tuple[str, str]]:
    """All (scope, value) pairs for ``key`` across scopes starting with ``scope_prefix``."""
    try:
        async with db.connect() as conn:
            rows = await (
                await conn.execute(
                    "SELECT scope, value FROM kv_store WHERE key=? AND scope LIKE ?",
                    (key, scope_prefix + "%"),
                )
            ).fetchall()
    except Exception as e:
        logger.error(f"KV scan error key={key}: {e}")
        return []
    return [(str(r[0]), str(r[1] or "")) for r in rows]


def local_scope(client_id: str) -> str:
    return f"local:{client_id}"


def session_scope(client_id: str) -> str:
    return f"session:{client_id}"
