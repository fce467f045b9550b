"""
Chunk schema - the atomic unit that gets embedded and searched.

A Chunk traces back to its parent Document through document_id so every
retrieval result carries full provenance for citations.
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Fixed namespace so chunk ids are a pure function of (document_id, ordinal)
_CHUNK_NAMESPACE = uuid.UUID("6f1c0d52-8a43-4c1e-9b47-2d5e0c9a7b13")


class ChunkType(str, Enum):
    PARAGRAPH = "paragraph"
    SENTENCE_GROUP = "sentence-group"
    FALLBACK = "fallback"


class ChunkPosition(BaseModel):
    """Character offsets of the chunk inside its page segment (pdf) or document."""

    start: int
    end: int


class ChunkMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    page_number: Optional[int] = None
    position: Optional[ChunkPosition] = None
    chunk_type: ChunkType = ChunkType.PARAGRAPH


class Chunk(BaseModel):
    """
    A single retrievable excerpt of a Document.

    Created in one batch right after extraction and never mutated; removed
    only through the cascade that follows deletion of its Document.
    """

    id: str
    document_id: str                     # Parent Document.id
    content: str                         # Trimmed excerpt text
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

    @staticmethod
    def make_id(document_id: str, ordinal: int) -> str:
        return str(uuid.uuid5(_CHUNK_NAMESPACE, f"{document_id}:{ordinal}"))
