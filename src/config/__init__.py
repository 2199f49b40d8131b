"""
Telco Churn Warehouse
Configuration Module
"""
from .settings import Settings, WarehouseSettings, get_settings

__all__ = ["Settings", "WarehouseSettings", "get_settings"]
