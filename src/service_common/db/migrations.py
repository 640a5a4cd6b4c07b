"""SQL migration runner and schema capability check."""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

SCHEMA_MIGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version text PRIMARY KEY,
    checksum text NOT NULL,
    applied_at timestamptz NOT NULL DEFAULT now()
);
"""


class SettingsProtocol(Protocol):
    database_url: Any


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


@dataclass
class SchemaState:
    """Result of the one-time startup check for required tables."""

    ready: bool = False
    missing: list[str] = field(default_factory=list)


def find_migrations_dir(possible_paths: Iterable[Path]) -> Path | None:
    for path in possible_paths:
        if path.exists():
            return path
    return None


def load_migrations(directory: Path) -> list[Migration]:
    migrations: dict[str, Migration] = {}
    for path in sorted(directory.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = Migration(version, path, path.read_text(encoding="utf-8"))
    return list(migrations.values())


async def apply_pending(conn: asyncpg.Connection, migrations: Sequence[Migration]) -> list[str]:
    """Apply migrations not yet recorded in ``schema_migrations``. Returns applied versions."""
    await conn.execute(SCHEMA_MIGRATIONS_DDL)
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    done: list[str] = []
    for migration in migrations:
        recorded = applied.get(migration.version)
        if recorded is not None:
            if recorded != migration.checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {migration.version}: "
                    f"{recorded} (db) != {migration.checksum} (file)"
                )
            continue
        logger.info("Applying migration", version=migration.version, file=migration.path.name)
        async with conn.transaction():
            await conn.execute(migration.sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                migration.version,
                migration.checksum,
            )
        done.append(migration.version)
    return done


async def check_schema(pool: asyncpg.Pool, required_tables: Sequence[str]) -> SchemaState:
    """Check once whether every required table exists."""
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT name, to_regclass(name) IS NOT NULL AS present FROM unnest($1::text[]) AS name",
            list(required_tables),
        )
    missing = [row["name"] for row in rows if not row["present"]]
    return SchemaState(ready=not missing, missing=missing)


def create_migration_runner(
    settings: SettingsProtocol,
    possible_paths: Iterable[Path],
    *,
    max_retries: int = 5,
    retry_delay_seconds: float = 2.0,
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook that applies SQL migrations."""
    possible_paths_list = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = find_migrations_dir(possible_paths_list)
        if migrations_dir is None:
            logger.warning("Migrations directory not found", tried=[str(p) for p in possible_paths_list])
            return

        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("No migrations found", directory=str(migrations_dir))
            return

        conn: asyncpg.Connection | None = None
        for attempt in range(1, max_retries + 1):
            try:
                conn = await asyncpg.connect(str(settings.database_url))
                break
            except (OSError, asyncpg.PostgresError) as exc:
                logger.warning(
                    "Database connection failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(exc),
                )
                if attempt < max_retries:
                    await asyncio.sleep(retry_delay_seconds)
        if conn is None:
            logger.error("Failed to connect to database, skipping migrations")
            return

        try:
            applied = await apply_pending(conn, migrations)
        finally:
            await conn.close()
        if applied:
            logger.info("Migrations applied", versions=applied)
        else:
            logger.info("No pending migrations")

    return apply_migrations_on_startup
