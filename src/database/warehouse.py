"""
Warehouse Repository

Table-level read and write operations between Polars DataFrames and the
relational store. Every bulk write runs as one transaction so a failure leaves
the previous table version intact, and a single writer per table is enforced.
"""

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence

import polars as pl
import structlog
from sqlalchemy import Boolean, Date, Float, Integer, String, Table, bindparam, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.config import get_settings
from .models import AGGREGATE_TABLES, Base, DIMENSION_TABLES, FACT_TABLE
from .staging import STAGING_TABLES

logger = structlog.get_logger(__name__)
settings = get_settings()

INSERT_CHUNK_SIZE = 5000


def polars_schema(table: Table) -> Dict[str, pl.DataType]:
    """Map a table's column types onto Polars dtypes"""
    schema = {}
    for column in table.columns:
        if isinstance(column.type, Boolean):
            dtype = pl.Boolean
        elif isinstance(column.type, Integer):
            dtype = pl.Int64
        elif isinstance(column.type, Float):
            dtype = pl.Float64
        elif isinstance(column.type, Date):
            dtype = pl.Date
        elif isinstance(column.type, String):
            dtype = pl.Utf8
        else:
            raise TypeError(f"Unsupported column type {column.type!r} for {table.name}.{column.name}")
        schema[column.name] = dtype
    return schema


def conform(df: pl.DataFrame, table: Table) -> pl.DataFrame:
    """Select and cast a frame to a table's columns, adding absent ones as null"""
    schema = polars_schema(table)
    return df.select([
        (pl.col(name) if name in df.columns else pl.lit(None)).cast(dtype).alias(name)
        for name, dtype in schema.items()
    ])


class WarehouseRepository:
    """
    Star-schema store backed by an async SQLAlchemy engine.

    Example:
        repo = WarehouseRepository(engine)
        await repo.create_schema()
        await repo.replace(FACT_TABLE, facts_df)
    """

    def __init__(self, engine: AsyncEngine, max_concurrency: Optional[int] = None):
        self.engine = engine
        concurrency = max_concurrency or settings.warehouse.max_concurrency
        if engine.dialect.name == "sqlite":
            # SQLite allows a single writer per database
            concurrency = 1
        self._writers = asyncio.Semaphore(concurrency)
        self._table_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def managed_tables(self) -> List[Table]:
        """Every table the pipeline writes, in dependency order"""
        managed = set(STAGING_TABLES.values()) | set(DIMENSION_TABLES) | {FACT_TABLE} | set(AGGREGATE_TABLES.values())
        return [t for t in Base.metadata.sorted_tables if t in managed]

    @asynccontextmanager
    async def _exclusive(self, *tables: Table) -> AsyncIterator[AsyncConnection]:
        """Hold the write locks of the given tables inside one transaction"""
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self._writers)
            # Fixed acquisition order prevents lock inversion
            for name in sorted({t.name for t in tables}):
                await stack.enter_async_context(self._table_locks[name])
            conn = await stack.enter_async_context(self.engine.begin())
            yield conn

    async def _insert(self, conn: AsyncConnection, table: Table, df: pl.DataFrame) -> int:
        if df.is_empty():
            return 0
        rows = conform(df, table).to_dicts()
        for i in range(0, len(rows), INSERT_CHUNK_SIZE):
            await conn.execute(table.insert(), rows[i:i + INSERT_CHUNK_SIZE])
        return len(rows)

    async def create_schema(self) -> None:
        """Create every warehouse table that does not exist yet"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Warehouse schema ready", tables=len(Base.metadata.tables))

    async def read_table(self, table: Table) -> pl.DataFrame:
        """Read a whole table into a DataFrame"""
        async with self.engine.connect() as conn:
            result = await conn.execute(select(table))
            rows = [tuple(row) for row in result.all()]
        return pl.DataFrame(rows, schema=polars_schema(table), orient="row")

    async def read_tables(self, tables: Iterable[Table]) -> Dict[str, pl.DataFrame]:
        tables = list(tables)
        frames = await asyncio.gather(*(self.read_table(t) for t in tables))
        return {t.name: df for t, df in zip(tables, frames)}

    async def append(self, table: Table, df: pl.DataFrame) -> int:
        """Insert rows into a table"""
        async with self._exclusive(table) as conn:
            inserted = await self._insert(conn, table, df)
        logger.info("Appended rows", table=table.name, rows=inserted)
        return inserted

    async def replace(self, table: Table, df: pl.DataFrame) -> int:
        """Replace a table's contents (delete + insert in one transaction)"""
        async with self._exclusive(table) as conn:
            await conn.execute(table.delete())
            inserted = await self._insert(conn, table, df)
        logger.info("Replaced table contents", table=table.name, rows=inserted)
        return inserted

    async def rebuild(self, table: Table, df: pl.DataFrame) -> int:
        """Drop, recreate and populate a table in one transaction"""
        async with self._exclusive(table) as conn:
            await conn.run_sync(lambda sync_conn: table.drop(sync_conn, checkfirst=True))
            await conn.run_sync(lambda sync_conn: table.create(sync_conn))
            inserted = await self._insert(conn, table, df)
        logger.info("Rebuilt table", table=table.name, rows=inserted)
        return inserted

    async def update_rows(
        self,
        table: Table,
        key: str,
        df: pl.DataFrame,
        columns: Sequence[str],
    ) -> int:
        """Overwrite the given columns of existing rows matched by key"""
        if df.is_empty():
            return 0
        stmt = (
            table.update()
            .where(table.c[key] == bindparam(f"b_{key}"))
            .values({c: bindparam(f"b_{c}") for c in columns})
        )
        rows = [
            {f"b_{name}": value for name, value in row.items()}
            for row in df.select([key, *columns]).to_dicts()
        ]
        async with self._exclusive(table) as conn:
            await conn.execute(stmt, rows)
        logger.info("Updated rows", table=table.name, rows=len(rows), columns=list(columns))
        return len(rows)

    async def snapshot(self, tables: Optional[Iterable[Table]] = None) -> Dict[str, pl.DataFrame]:
        """Capture the current contents of the given tables"""
        frames = await self.read_tables(tables or self.managed_tables)
        logger.info("Captured warehouse snapshot", tables=len(frames))
        return frames

    async def restore(self, snapshot: Dict[str, pl.DataFrame]) -> None:
        """Restore tables to a snapshot in one transaction"""
        tables = [t for t in Base.metadata.sorted_tables if t.name in snapshot]
        async with self._exclusive(*tables) as conn:
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))
            # Children first on delete, parents first on insert
            for table in reversed(tables):
                await conn.execute(table.delete())
            for table in tables:
                await self._insert(conn, table, snapshot[table.name])
        logger.warning("Restored warehouse snapshot", tables=[t.name for t in tables])
