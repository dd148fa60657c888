"""Abstract key-value store for durable sync state."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


class StateStore(ABC):
    """Abstract store for the feed cursor and the shipment ledger.

    This allows swapping the default JSON files for a real database.
    Implementations must make `update` atomic with respect to other
    `update` calls on the same key.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get the stored document for key.

        Args:
            key: Document name (e.g. "stream_cursor", "shipment_ledger")

        Returns:
            The JSON-compatible document, or None if absent
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Replace the document for key."""
        pass

    @abstractmethod
    async def update(self, key: str, mutate: Callable[[Optional[Any]], Any]) -> Any:
        """Atomically read, transform and write the document for key.

        Args:
            key: Document name
            mutate: Pure function receiving the current document (or None)
                and returning the new one

        Returns:
            The document as written
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the storage backend is accessible.

        Returns:
            True if healthy, False otherwise
        """
        pass
