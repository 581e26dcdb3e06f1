"""System prompt assembly for chat turns."""

from __future__ import annotations

from dataclasses import dataclass

from support_agent.types import RetrievalResult

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True, slots=True)
class ToolAffordance:
    """Describes a knowledge tool the model may call instead of inline context."""

    name: str
    description: str


def format_context(result: RetrievalResult) -> str:
    """Render ranked snippets as one text block, best match first."""
    parts = []
    for snippet in result.snippets:
        if snippet.source_title:
            parts.append(f"[Source: {snippet.source_title}]\n{snippet.content}")
        else:
            parts.append(snippet.content)
    return CONTEXT_SEPARATOR.join(parts)


def build_system_prompt(
    instructions: str,
    grounding: RetrievalResult | ToolAffordance | None,
    welcome_message: str,
) -> str:
    """Combine tenant instructions, grounding and guidelines.

    `grounding` is either context retrieved up front (inline mode) or the
    knowledge tool the model can call mid-generation (tool mode). An empty
    retrieval adds no context section. Output depends only on the arguments.
    """

    prompt = instructions

    if isinstance(grounding, ToolAffordance):
        prompt += (
            "\n\n## Knowledge Base Tool\n\n"
            f"You can call the `{grounding.name}` tool to {grounding.description}\n"
            "Call it whenever the user's question may be answered by the company's "
            "documentation, products, policies or procedures. You may call it again "
            "with a refined query if the first results are not relevant.\n"
            "When your answer uses information returned by the tool, cite the source "
            "title in the form [Source: <title>]. If the tool finds nothing relevant, "
            "you can still help from general knowledge, but tell the user you are not "
            "certain."
        )
    elif grounding is not None and not grounding.is_empty:
        prompt += (
            "\n\n## Relevant Context from Knowledge Base\n\n"
            "Use the following information to help answer the user's question:\n\n"
            f"{format_context(grounding)}"
            "\n\n---\n\n"
            "If the context doesn't contain relevant information, you can still try to "
            "help based on your general knowledge, but let the user know if you're not "
            "certain."
        )

    prompt += (
        "\n\n## Guidelines\n"
        "- Be helpful, friendly, and concise\n"
        "- If you don't know something, say so honestly\n"
        f'- Your welcome message is: "{welcome_message}"'
    )
    return prompt
