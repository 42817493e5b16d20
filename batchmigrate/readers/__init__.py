"""Paged readers for source tables."""

from .base import BasePagedReader
from .table_reader import TablePagedReader

__all__ = [
    "BasePagedReader",
    "TablePagedReader",
]
