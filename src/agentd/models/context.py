"""Context models assembled for each loop iteration."""

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class SnippetSource(str, Enum):
    MEMORY = "memory"
    RAG = "rag"


class ContextSnippet(BaseModel):
    """A retrieved memory item or document passage."""

    source: SnippetSource = Field(default=SnippetSource.MEMORY, description="Where the snippet came from")
    content: str = Field(..., description="Snippet text")
    score: float = Field(default=0.0, description="Relevance score reported by the retriever")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ContextBundle(BaseModel):
    """
    Ephemeral provider input: history window plus retrieved context.

    Rebuilt on every loop iteration and never persisted.
    """

    conversation_id: str
    query: str = ""
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Chat-format history window")
    snippets: List[ContextSnippet] = Field(default_factory=list)

    def memory_snippets(self) -> List[ContextSnippet]:
        return [s for s in self.snippets if s.source == SnippetSource.MEMORY]

    def rag_snippets(self) -> List[ContextSnippet]:
        return [s for s in self.snippets if s.source == SnippetSource.RAG]

    def to_messages(self) -> List[Dict[str, Any]]:
        """Flatten the bundle into chat messages, retrieved context first."""
        messages: List[Dict[str, Any]] = []
        if self.snippets:
            context_lines = [f"- ({s.source.value}) {s.content}" for s in self.snippets]
            messages.append({
                "role": "system",
                "content": "Relevant context:\n" + "\n".join(context_lines)
            })
        messages.extend(self.history)
        return messages
