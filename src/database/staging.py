"""
Staging Tables

Cleaned source records are persisted in one staging table per raw source,
shaped from the source declarations. Staging tables share the warehouse
metadata so schema creation and snapshots cover them.
"""

from typing import Dict

from sqlalchemy import Boolean, Column, Float, Integer, String, Table

from src.ingestion.schemas import ColumnSpec, ColumnType, SourceSchema, SOURCE_SCHEMAS
from .models import Base

_SQL_TYPES = {
    ColumnType.TEXT: lambda: String(255),
    ColumnType.CATEGORICAL: lambda: String(100),
    ColumnType.INTEGER: Integer,
    ColumnType.FLOAT: Float,
    ColumnType.BOOLEAN: Boolean,
}


def _column(spec: ColumnSpec, schema: SourceSchema) -> Column:
    is_key = spec.name in schema.natural_key
    return Column(
        spec.name,
        _SQL_TYPES[spec.kind](),
        primary_key=is_key,
        autoincrement=False,
        nullable=not (is_key or spec.mandatory or spec.kind == ColumnType.BOOLEAN),
    )


def staging_table_name(source: str) -> str:
    return f"stg_{source}"


def build_staging_table(schema: SourceSchema) -> Table:
    """Create (or fetch) the staging table for a source schema"""
    name = staging_table_name(schema.name)
    if name in Base.metadata.tables:
        return Base.metadata.tables[name]
    return Table(name, Base.metadata, *[_column(spec, schema) for spec in schema.columns])


STAGING_TABLES: Dict[str, Table] = {
    name: build_staging_table(schema) for name, schema in SOURCE_SCHEMAS.items()
}
