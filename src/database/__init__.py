"""
Database Module
"""
from .connection import check_database_health, close_database, create_engine, get_db, init_database
from .models import AGGREGATE_TABLES, Base, DIMENSION_TABLES, FACT_TABLE
from .staging import STAGING_TABLES, staging_table_name
from .warehouse import WarehouseRepository

__all__ = [
    "check_database_health",
    "close_database",
    "create_engine",
    "get_db",
    "init_database",
    "AGGREGATE_TABLES",
    "Base",
    "DIMENSION_TABLES",
    "FACT_TABLE",
    "STAGING_TABLES",
    "staging_table_name",
    "WarehouseRepository",
]
