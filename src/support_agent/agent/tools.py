"""Knowledge lookup tool exposed to the model in tool mode."""

from __future__ import annotations

from pydantic import BaseModel, Field

from support_agent.agent.prompts import ToolAffordance, format_context
from support_agent.agent.registry import ToolSpec
from support_agent.retrieval.retriever import ContextRetriever

KNOWLEDGE_TOOL = ToolAffordance(
    name="search_knowledge_base",
    description=(
        "search the company's knowledge base for information relevant to the "
        "user's question. It returns the most relevant excerpts with their source "
        "titles."
    ),
)

NO_CONTEXT_RESULT = "No relevant context found."


class KnowledgeSearchInput(BaseModel):
    query: str = Field(min_length=1, description="What to look up in the knowledge base.")


def build_knowledge_tool(
    retriever: ContextRetriever,
    *,
    tenant_id: str,
    credential: str,
) -> ToolSpec:
    """Bind retrieval for one tenant and credential as a callable tool."""

    def _search(input_data: KnowledgeSearchInput) -> str:
        result = retriever.retrieve(tenant_id, input_data.query, credential)
        if result.is_empty:
            return NO_CONTEXT_RESULT
        return format_context(result)

    return ToolSpec(
        name=KNOWLEDGE_TOOL.name,
        description=f"Use this to {KNOWLEDGE_TOOL.description}",
        args_schema=KnowledgeSearchInput,
        handler=_search,
        tags=["retrieval", "rag"],
    )
