"""
Core Pydantic schemas for the document Q&A pipeline.

All stages share these models so ingestion, storage, retrieval and the
serving layer agree on one shape for documents, embeddings and answers.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enumerations ------------------------------------------------------------

class DocumentType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"
    TEXT = "text"


# --- Stored records ----------------------------------------------------------

class Document(BaseModel):
    """
    One uploaded file after successful extraction.

    content keeps the page markers ("Page <n>:") for PDFs so the chunker can
    recover page boundaries; raw_content is the plain pre-chunking text.
    Only metadata may change after creation.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    content: str
    raw_content: str = ""
    type: DocumentType
    metadata: dict[str, Any] = Field(default_factory=dict)
    upload_date: datetime = Field(default_factory=_utcnow)

    @property
    def context(self) -> Optional[str]:
        """Context tag the document was uploaded under, if any."""
        return self.metadata.get("context")


class EmbeddingRecord(BaseModel):
    """Vector for exactly one Chunk. tokens are informational only."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chunk_id: str
    vector: list[float]
    tokens: list[str] = Field(default_factory=list)


# --- Configuration-like entities ---------------------------------------------

class ProjectContext(BaseModel):
    """
    A named profile that narrows retrieval to documents tagged with its id
    and frames the LLM prompt for a domain (pensions, legal, medical, ...).
    """

    id: str
    name: str
    description: str = ""
    prompt_prefix: str = ""
    example_questions: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)   # Lexical score bonus terms


# --- Ingestion ----------------------------------------------------------------

class ProgressStatus(BaseModel):
    is_processing: bool
    progress: int = Field(ge=0, le=100)
    message: str


ProgressCallback = Callable[[ProgressStatus], None]


class UploadedFile(BaseModel):
    """Raw bytes of one user-supplied file plus what the filesystem told us."""

    name: str
    data: bytes
    last_modified: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self.data)


class IngestedFile(BaseModel):
    name: str
    document_id: str


class FailedFile(BaseModel):
    name: str
    error: str


class IngestionReport(BaseModel):
    processed: list[IngestedFile] = Field(default_factory=list)
    failed: list[FailedFile] = Field(default_factory=list)


# --- Serving ------------------------------------------------------------------

class Source(BaseModel):
    """One retrieved chunk as shown to the user next to the answer."""

    document_id: str
    document_name: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


@dataclass
class QueryResult:
    """
    Full output from a single question.

    sources lists every retrieved chunk, including ones the model did not
    cite explicitly. Timing fields are in milliseconds.
    """

    query: str
    answer: str
    sources: list[Source] = field(default_factory=list)
    context_id: Optional[str] = None
    provider: str = ""
    model: str = ""
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0

    @property
    def total_ms(self) -> float:
        return self.retrieval_ms + self.generation_ms

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "answer": self.answer,
            "sources": [s.model_dump(mode="json") for s in self.sources],
            "context_id": self.context_id,
            "provider": self.provider,
            "model": self.model,
            "latency_ms": {
                "retrieval": round(self.retrieval_ms, 1),
                "generation": round(self.generation_ms, 1),
                "total": round(self.total_ms, 1),
            },
        }
