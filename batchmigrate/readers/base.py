"""Base paged reader interface."""

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from ..models.record import Cursor, Page


class BasePagedReader(ABC):
    """
    Base class for paged readers.

    Readers hand out bounded pages of source rows in a stable order. A page
    that comes back empty or short marks the end of the source.
    """

    def __init__(self, table: str, page_size: int = 100):
        """
        Initialize the reader.

        Args:
            table: Source table name
            page_size: Maximum rows per page
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.table = table
        self.page_size = page_size

    @abstractmethod
    def next_page(self, cursor: Cursor) -> Page:
        """
        Fetch the page that follows ``cursor``.

        Args:
            cursor: Position returned with the previous page, or Cursor.start()

        Returns:
            Page of SourceRecord objects

        Raises:
            PageReadError: if the page could not be fetched
        """
        pass

    @abstractmethod
    def probe_page(self, cursor: Cursor) -> Page:
        """
        Fetch only the keys of the page that follows ``cursor``.

        Used to step over a page whose full read failed.
        """
        pass

    @abstractmethod
    def has_more(self, cursor: Cursor) -> bool:
        """Whether any row in scope follows ``cursor``."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count the rows in scope."""
        pass

    def stream(self, cursor: Optional[Cursor] = None) -> Iterator[Page]:
        """
        Stream pages until the source is exhausted.

        Args:
            cursor: Starting position (defaults to the start)

        Yields:
            Non-empty pages in order
        """
        cursor = cursor or Cursor.start()

        while True:
            page = self.next_page(cursor)
            if page.records:
                yield page
            if page.done:
                break
            cursor = page.next_cursor

    def describe(self) -> str:
        return f"{self.__class__.__name__}({self.table}, page_size={self.page_size})"
