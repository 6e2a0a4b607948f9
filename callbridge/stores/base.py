"""Base interface for call result stores."""
from abc import ABC, abstractmethod
from typing import Iterable
from ..event_models import CallResult, StoredCallResult


class ResultStore(ABC):
    """Abstract interface for keeping finished call results."""

    @abstractmethod
    async def record(self, result: CallResult) -> StoredCallResult:
        """
        Store a finished call result.

        Args:
            result: The frozen result returned by the correlator

        Returns:
            The stored result with assigned ID and timestamp
        """
        pass

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> Iterable[StoredCallResult]:
        """
        Retrieve recent results, newest first.

        Args:
            limit: Maximum number of results to return
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if the store is healthy, False otherwise
        """
        pass
