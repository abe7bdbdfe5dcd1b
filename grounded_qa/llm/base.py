"""Base completion provider interface."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from grounded_qa.query.models import QueryRequest, QueryResponse, StreamingChunk


class CompletionProvider(ABC):
    """Abstract base class for grounded completion providers.

    Implementations never raise from ``complete`` or ``stream``; failures
    are reported inside the returned values.
    """

    @abstractmethod
    async def complete(self, request: QueryRequest) -> QueryResponse:
        """Answer a question in one round trip.

        Args:
            request: Question and generation options

        Returns:
            QueryResponse, with ``success`` False on failure
        """
        pass

    @abstractmethod
    def stream(self, request: QueryRequest) -> AsyncIterator[StreamingChunk]:
        """Answer a question incrementally.

        Args:
            request: Question and generation options

        Returns:
            Async iterator of chunks; the last one has ``is_complete`` set
        """
        pass

    @abstractmethod
    async def test_connection(self) -> dict[str, Any]:
        """Issue a minimal real request.

        Returns:
            ``{"success": bool}`` plus ``"error"`` on failure
        """
        pass

    async def health_check(self) -> bool:
        """Check if the provider is healthy and accessible.

        Returns:
            True if healthy, False otherwise
        """
        result = await self.test_connection()
        return bool(result.get("success"))

    async def aclose(self) -> None:
        """Release transport resources."""

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

