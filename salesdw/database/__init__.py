"""
Database Module
"""
from .store import RowStore, StoreTransaction

__all__ = [
    "RowStore",
    "StoreTransaction",
]
