"""Abstract interface for memory and RAG context retrieval."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from agentd.models.context import ContextSnippet


logger = logging.getLogger(__name__)


class ContextProvider(ABC):
    """Interface for retrieving snippets relevant to a query."""

    @abstractmethod
    async def retrieve(self, query: str, conversation_id: str) -> List[ContextSnippet]:
        """Return snippets relevant to the query, best first."""
        pass


class NullContextProvider(ContextProvider):
    """Provider used when no memory or RAG backend is configured."""

    async def retrieve(self, query: str, conversation_id: str) -> List[ContextSnippet]:
        return []


class CompositeContextProvider(ContextProvider):
    """Queries several sources concurrently; a failing source contributes nothing."""

    def __init__(self, sources: Sequence[ContextProvider], limit: int = 8):
        self.sources = list(sources)
        self.limit = limit

    async def retrieve(self, query: str, conversation_id: str) -> List[ContextSnippet]:
        results = await asyncio.gather(
            *(source.retrieve(query, conversation_id) for source in self.sources),
            return_exceptions=True
        )

        snippets: List[ContextSnippet] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"Context source {type(source).__name__} failed: {result}")
                continue
            snippets.extend(result)

        snippets.sort(key=lambda s: s.score, reverse=True)
        return snippets[:self.limit]
