from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import aiosqlite


REF_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ref_state (
    slug TEXT NOT NULL,
    ref_name TEXT NOT NULL,
    object_id TEXT NOT NULL,
    PRIMARY KEY (slug, ref_name)
);
"""

SYNC_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_state (
    slug TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    synced_at INTEGER NOT NULL,
    head_id TEXT,
    ref_count INTEGER NOT NULL DEFAULT 0,
    error TEXT
);
"""


@dataclass(slots=True)
class SyncRecord:
    slug: str
    status: str
    synced_at: int
    head_id: str | None
    ref_count: int
    error: str | None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(REF_SCHEMA_SQL)
        await db.execute(SYNC_SCHEMA_SQL)
        await db.commit()


async def load_refs(db_path: Path, slug: str) -> dict[str, str]:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT ref_name, object_id FROM ref_state WHERE slug = ? ORDER BY ref_name",
            (slug,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return {str(row["ref_name"]): str(row["object_id"]) for row in rows}


async def replace_refs(db_path: Path, slug: str, refs: dict[str, str]) -> None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM ref_state WHERE slug = ?", (slug,))
        if refs:
            await db.executemany(
                """
                INSERT INTO ref_state (slug, ref_name, object_id)
                VALUES (?, ?, ?)
                """,
                [(slug, name, object_id) for name, object_id in refs.items()],
            )
        await db.commit()


async def record_success(
    db_path: Path, slug: str, *, head_id: str | None, ref_count: int
) -> None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT OR REPLACE INTO sync_state (slug, status, synced_at, head_id, ref_count, error)
            VALUES (?, 'ok', strftime('%s','now'), ?, ?, NULL)
            """,
            (slug, head_id, ref_count),
        )
        await db.commit()


async def record_failure(db_path: Path, slug: str, error: str) -> None:
    """Mark the latest attempt as failed, keeping the last known head and ref count."""
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT INTO sync_state (slug, status, synced_at, head_id, ref_count, error)
            VALUES (?, 'failed', strftime('%s','now'), NULL, 0, ?)
            ON CONFLICT(slug) DO UPDATE SET
                status = 'failed',
                synced_at = excluded.synced_at,
                error = excluded.error
            """,
            (slug, error),
        )
        await db.commit()


async def load_sync_records(db_path: Path) -> dict[str, SyncRecord]:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT slug, status, synced_at, head_id, ref_count, error FROM sync_state ORDER BY slug"
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return {
        str(row["slug"]): SyncRecord(
            slug=str(row["slug"]),
            status=str(row["status"]),
            synced_at=int(row["synced_at"]),
            head_id=None if row["head_id"] is None else str(row["head_id"]),
            ref_count=int(row["ref_count"]),
            error=None if row["error"] is None else str(row["error"]),
        )
        for row in rows
    }
