"""
Prompt templates for grounded document Q&A.

Keeping templates in a separate module makes them easy to iterate on
without touching retrieval or provider logic.
"""
from __future__ import annotations

from typing import Optional

from docqa.chunking.schemas import Chunk

# ---------------------------------------------------------------------------
# Preambles
# ---------------------------------------------------------------------------

GENERIC_PREAMBLE = (
    "You are an expert document analysis assistant. "
    "Your task is to answer questions about the provided documents."
)

# System message sent alongside the prompt by providers that take one
SYSTEM_MESSAGE = "You are a document analysis expert assistant."

# ---------------------------------------------------------------------------
# Grounding prompt
# ---------------------------------------------------------------------------

MISSING_INFO_PHRASE = "I couldn't find this information in the provided documents."

ANSWER_PROMPT = """\
{preamble}

CONTEXT INFORMATION:
{context}

USER QUESTION:
{query}

Please provide a clear, concise answer based only on the information in the context. \
If the information is not in the context, say "{missing}"

For any values, dates, or specific details you mention, indicate which document and page \
they came from. If you're quoting directly from a document, use quotation marks and cite the source.
"""

# ---------------------------------------------------------------------------
# Fixed answers
# ---------------------------------------------------------------------------

NO_RELEVANT_INFO_RESPONSE = (
    "I couldn't find any relevant information in the uploaded documents. "
    "Please try a different query or upload more documents."
)

PROVIDER_ERROR_RESPONSE = (
    "I encountered an error while processing your query with {provider}. "
    "Please check your API key and try again. Error details: {error}"
)


def citation_label(document_name: str, page_number: Optional[int]) -> str:
    if page_number:
        return f"[{document_name}, Page {page_number}]"
    return f"[{document_name}]"


def build_prompt(
    query: str,
    chunks: list[tuple[Chunk, str]],
    preamble: Optional[str] = None,
) -> str:
    """
    Assemble the grounding prompt.

    Args:
        query: The user's question, inserted verbatim.
        chunks: (chunk, owning document name) pairs in retrieval order.
        preamble: Context-specific framing; the generic one when empty.
    """
    context = "\n\n".join(
        f"{citation_label(name, chunk.metadata.page_number)} {chunk.content}"
        for chunk, name in chunks
    )
    return ANSWER_PROMPT.format(
        preamble=(preamble or "").strip() or GENERIC_PREAMBLE,
        context=context,
        query=query,
        missing=MISSING_INFO_PHRASE,
    )
