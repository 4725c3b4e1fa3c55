"""
Serviço de banco de dados 100% assíncrono: extensões, snapshots e agenda de updates.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.core.constants import (
    HIGH_PRIORITY_MIN_USERS,
    MAX_SNAPSHOTS_PER_EXTENSION,
    MEDIUM_PRIORITY_MIN_USERS,
)
from app.core.database import get_pool
from app.services.automation.models import (
    ExtensionUpdateRecord,
    Priority,
    UpdateFrequency,
    utcnow,
)
from app.services.scraper.models import ExtensionRecord

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS extensions (
    extension_id     TEXT PRIMARY KEY,
    name             TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    developer        TEXT NOT NULL DEFAULT '',
    category         TEXT NOT NULL DEFAULT '',
    users            BIGINT NOT NULL DEFAULT 0,
    rating           REAL NOT NULL DEFAULT 0,
    review_count     INTEGER NOT NULL DEFAULT 0,
    keywords         TEXT[] NOT NULL DEFAULT '{}',
    removed          BOOLEAN NOT NULL DEFAULT FALSE,
    first_seen_at    TIMESTAMPTZ NOT NULL,
    last_updated_at  TIMESTAMPTZ NOT NULL
);
CREATE TABLE IF NOT EXISTS extension_snapshots (
    id            BIGSERIAL PRIMARY KEY,
    extension_id  TEXT NOT NULL REFERENCES extensions(extension_id) ON DELETE CASCADE,
    users         BIGINT NOT NULL,
    rating        REAL NOT NULL,
    review_count  INTEGER NOT NULL,
    scraped_at    TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_extension_snapshots_ext
    ON extension_snapshots (extension_id, scraped_at DESC);
CREATE TABLE IF NOT EXISTS extension_update_schedule (
    extension_id            TEXT PRIMARY KEY REFERENCES extensions(extension_id) ON DELETE CASCADE,
    next_update_due         TIMESTAMPTZ NOT NULL,
    frequency               TEXT NOT NULL,
    priority                SMALLINT NOT NULL,
    consecutive_failures    INTEGER NOT NULL DEFAULT 0,
    last_successful_update  TIMESTAMPTZ,
    users                   BIGINT NOT NULL DEFAULT 0,
    trending                BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS idx_extension_update_due
    ON extension_update_schedule (next_update_due);
"""


class ExtensionStore(ABC):
    """Contrato do datastore usado pelo pipeline de automação."""

    @abstractmethod
    async def save_extension(self, record: ExtensionRecord) -> bool:
        """Salva (upsert) a extensão e um snapshot. True se a extensão é nova."""

    @abstractmethod
    async def get_extension(self, extension_id: str) -> Optional[ExtensionRecord]:
        ...

    @abstractmethod
    async def extension_exists(self, extension_id: str) -> bool:
        ...

    @abstractmethod
    async def get_extension_update_record(self, extension_id: str) -> Optional[ExtensionUpdateRecord]:
        ...

    @abstractmethod
    async def upsert_extension_update_record(self, record: ExtensionUpdateRecord) -> None:
        ...

    @abstractmethod
    async def query_due_extensions(self, before: datetime, limit: int) -> List[ExtensionUpdateRecord]:
        """Registros com next_update_due <= before, maior prioridade e mais atrasados primeiro."""

    @abstractmethod
    async def query_popular_extensions(self, min_users: int, limit: int) -> List[str]:
        ...

    @abstractmethod
    async def delete_invalid_extensions(self) -> int:
        ...

    @abstractmethod
    async def mark_extension_removed(self, extension_id: str) -> None:
        ...

    @abstractmethod
    async def get_update_stats(self) -> Dict[str, Any]:
        ...


def _row_to_extension(row) -> ExtensionRecord:
    return ExtensionRecord(
        extension_id=row["extension_id"],
        name=row["name"],
        description=row["description"],
        developer=row["developer"],
        category=row["category"],
        users=row["users"],
        rating=row["rating"],
        review_count=row["review_count"],
        keywords=list(row["keywords"] or []),
        scraped_at=row["last_updated_at"],
    )


def _row_to_update_record(row) -> ExtensionUpdateRecord:
    return ExtensionUpdateRecord(
        extension_id=row["extension_id"],
        next_update_due=row["next_update_due"],
        frequency=UpdateFrequency(row["frequency"]),
        priority=Priority(row["priority"]),
        consecutive_failures=row["consecutive_failures"],
        last_successful_update=row["last_successful_update"],
        users=row["users"],
        trending=row["trending"],
    )


class PostgresExtensionStore(ExtensionStore):
    """Implementação asyncpg do ExtensionStore."""

    async def ensure_schema(self) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("✅ Schema de extensões verificado")

    async def save_extension(self, record: ExtensionRecord) -> bool:
        now = record.scraped_at or utcnow()
        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                created = await conn.fetchval(
                    """
                    INSERT INTO extensions (
                        extension_id, name, description, developer, category, users,
                        rating, review_count, keywords, removed, first_seen_at, last_updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, FALSE, $10, $10)
                    ON CONFLICT (extension_id) DO UPDATE SET
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        developer = EXCLUDED.developer,
                        category = EXCLUDED.category,
                        users = EXCLUDED.users,
                        rating = EXCLUDED.rating,
                        review_count = EXCLUDED.review_count,
                        keywords = EXCLUDED.keywords,
                        removed = FALSE,
                        last_updated_at = EXCLUDED.last_updated_at
                    RETURNING (xmax = 0) AS created
                    """,
                    record.extension_id,
                    record.name,
                    record.description,
                    record.developer,
                    record.category,
                    record.users,
                    record.rating,
                    record.review_count,
                    list(record.keywords),
                    now,
                )
                await conn.execute(
                    """
                    INSERT INTO extension_snapshots (extension_id, users, rating, review_count, scraped_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    record.extension_id,
                    record.users,
                    record.rating,
                    record.review_count,
                    now,
                )
                # Mantém apenas os N snapshots mais recentes
                await conn.execute(
                    """
                    DELETE FROM extension_snapshots
                     WHERE extension_id = $1
                       AND id NOT IN (
                        SELECT id FROM extension_snapshots
                         WHERE extension_id = $1
                         ORDER BY scraped_at DESC
                         LIMIT $2
                       )
                    """,
                    record.extension_id,
                    MAX_SNAPSHOTS_PER_EXTENSION,
                )
        logger.debug(f"✅ Extensão salva: {record.extension_id} (nova={created})")
        return bool(created)

    async def get_extension(self, extension_id: str) -> Optional[ExtensionRecord]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM extensions WHERE extension_id = $1", extension_id
            )
        return _row_to_extension(row) if row else None

    async def extension_exists(self, extension_id: str) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM extensions WHERE extension_id = $1", extension_id
            )
        return bool(found)

    async def get_extension_update_record(self, extension_id: str) -> Optional[ExtensionUpdateRecord]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM extension_update_schedule WHERE extension_id = $1", extension_id
            )
        return _row_to_update_record(row) if row else None

    async def upsert_extension_update_record(self, record: ExtensionUpdateRecord) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO extension_update_schedule (
                    extension_id, next_update_due, frequency, priority,
                    consecutive_failures, last_successful_update, users, trending
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (extension_id) DO UPDATE SET
                    next_update_due = EXCLUDED.next_update_due,
                    frequency = EXCLUDED.frequency,
                    priority = EXCLUDED.priority,
                    consecutive_failures = EXCLUDED.consecutive_failures,
                    last_successful_update = EXCLUDED.last_successful_update,
                    users = EXCLUDED.users,
                    trending = EXCLUDED.trending
                """,
                record.extension_id,
                record.next_update_due,
                record.frequency.value,
                int(record.priority),
                record.consecutive_failures,
                record.last_successful_update,
                record.users,
                record.trending,
            )

    async def query_due_extensions(self, before: datetime, limit: int) -> List[ExtensionUpdateRecord]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT s.* FROM extension_update_schedule s
                  JOIN extensions e ON e.extension_id = s.extension_id
                 WHERE s.next_update_due <= $1 AND NOT e.removed
                 ORDER BY s.priority DESC, s.next_update_due ASC
                 LIMIT $2
                """,
                before,
                limit,
            )
        return [_row_to_update_record(r) for r in rows]

    async def query_popular_extensions(self, min_users: int, limit: int) -> List[str]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT extension_id FROM extensions
                 WHERE users >= $1 AND NOT removed
                 ORDER BY users DESC
                 LIMIT $2
                """,
                min_users,
                limit,
            )
        return [r["extension_id"] for r in rows]

    async def delete_invalid_extensions(self) -> int:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM extensions
                 WHERE extension_id = '' OR length(trim(name)) < 2
                    OR users < 0 OR rating < 0 OR rating > 5 OR review_count < 0
                """
            )
        deleted = int(result.split()[-1])
        if deleted:
            logger.info(f"🧹 {deleted} extensões inválidas removidas")
        return deleted

    async def mark_extension_removed(self, extension_id: str) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                "UPDATE extensions SET removed = TRUE WHERE extension_id = $1", extension_id
            )
        logger.info(f"🗑️ Extensão marcada como removida da loja: {extension_id}")

    async def get_update_stats(self) -> Dict[str, Any]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COUNT(*) AS total_extensions,
                    COUNT(*) FILTER (WHERE last_updated_at >= $1) AS recently_updated,
                    COUNT(*) FILTER (WHERE removed) AS removed,
                    COUNT(*) FILTER (WHERE users >= $2) AS users_1m_plus,
                    COUNT(*) FILTER (WHERE users >= $3 AND users < $2) AS users_100k_1m,
                    COUNT(*) FILTER (WHERE users >= 10000 AND users < $3) AS users_10k_100k,
                    COUNT(*) FILTER (WHERE users < 10000) AS users_under_10k
                FROM extensions
                """,
                utcnow() - timedelta(hours=24),
                HIGH_PRIORITY_MIN_USERS,
                MEDIUM_PRIORITY_MIN_USERS,
            )
        return {
            "total_extensions": row["total_extensions"],
            "recently_updated": row["recently_updated"],
            "removed": row["removed"],
            "by_user_range": {
                "1M+": row["users_1m_plus"],
                "100K-1M": row["users_100k_1m"],
                "10K-100K": row["users_10k_100k"],
                "<10K": row["users_under_10k"],
            },
        }


_extension_store: Optional[PostgresExtensionStore] = None


def get_extension_store() -> PostgresExtensionStore:
    """Retorna instância singleton do store."""
    global _extension_store
    if _extension_store is None:
        _extension_store = PostgresExtensionStore()
    return _extension_store
