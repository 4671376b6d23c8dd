"""Unit tests for context retrieval providers."""

import pytest

from agentd.models.context import ContextBundle, ContextSnippet, SnippetSource
from agentd.services.interfaces.context_provider import CompositeContextProvider, NullContextProvider

from conftest import StaticContextProvider


def _snippet(content: str, score: float, source: SnippetSource = SnippetSource.MEMORY) -> ContextSnippet:
    return ContextSnippet(source=source, content=content, score=score)


class TestNullContextProvider:

    @pytest.mark.asyncio
    async def test_returns_nothing(self):
        assert await NullContextProvider().retrieve("anything", "conv-1") == []


class TestCompositeContextProvider:
    """Test merging several retrieval sources."""

    @pytest.mark.asyncio
    async def test_merges_by_score(self):
        memory = StaticContextProvider([_snippet("likes tea", 0.4)])
        rag = StaticContextProvider([
            _snippet("tea guide", 0.9, SnippetSource.RAG),
            _snippet("coffee guide", 0.1, SnippetSource.RAG)
        ])

        snippets = await CompositeContextProvider([memory, rag]).retrieve("tea", "conv-1")

        assert [s.content for s in snippets] == ["tea guide", "likes tea", "coffee guide"]
        assert memory.queries == ["tea"]
        assert rag.queries == ["tea"]

    @pytest.mark.asyncio
    async def test_failing_source_skipped(self):
        healthy = StaticContextProvider([_snippet("still works", 0.5)])
        broken = StaticContextProvider(error=ConnectionError("index offline"))

        snippets = await CompositeContextProvider([broken, healthy]).retrieve("q", "conv-1")

        assert [s.content for s in snippets] == ["still works"]

    @pytest.mark.asyncio
    async def test_limit(self):
        source = StaticContextProvider([_snippet(str(i), float(i)) for i in range(10)])

        snippets = await CompositeContextProvider([source], limit=3).retrieve("q", "conv-1")

        assert [s.content for s in snippets] == ["9", "8", "7"]


class TestContextBundle:
    """Test bundle helpers used by provider gateways."""

    def test_messages_put_context_first(self):
        bundle = ContextBundle(
            conversation_id="conv-1",
            query="hi",
            history=[{"role": "user", "content": "hi"}],
            snippets=[_snippet("likes tea", 0.5), _snippet("doc", 0.2, SnippetSource.RAG)]
        )

        messages = bundle.to_messages()

        assert messages[0]["role"] == "system"
        assert "(memory) likes tea" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "hi"}
        assert [s.content for s in bundle.rag_snippets()] == ["doc"]

    def test_no_snippets_no_system_message(self):
        bundle = ContextBundle(conversation_id="conv-1", history=[{"role": "user", "content": "hi"}])

        assert bundle.to_messages() == [{"role": "user", "content": "hi"}]
