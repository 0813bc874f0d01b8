"""
Data Ingestion Module
"""
from .loader import BatchLoader, LoadResult

__all__ = [
    "BatchLoader",
    "LoadResult",
]
