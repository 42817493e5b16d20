"""Batched writers for destination tables."""

from .base import BaseBatchWriter
from .store_writer import StoreWriter

__all__ = [
    "BaseBatchWriter",
    "StoreWriter",
]
