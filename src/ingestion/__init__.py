"""
Data Ingestion Module
"""
from .extracts import CsvExtractProvider, InMemoryExtractProvider, RawExtractProvider
from .schemas import ColumnSpec, ColumnType, SourceSchema, SOURCE_SCHEMAS

__all__ = [
    "CsvExtractProvider",
    "InMemoryExtractProvider",
    "RawExtractProvider",
    "ColumnSpec",
    "ColumnType",
    "SourceSchema",
    "SOURCE_SCHEMAS",
]
