"""
Document Q&A - Web API Server
------------------------------
FastAPI server that wraps the RAGPipeline and its ingestion side.

Endpoints:
  GET    /api/health               -> pipeline status, store counts, retrieval mode
  GET    /api/contexts             -> configured project contexts
  GET    /api/documents            -> stored documents (optionally ?context_id=)
  GET    /api/documents/{id}       -> one document with its chunks
  DELETE /api/documents/{id}       -> delete a document (cascades to chunks/embeddings)
  POST   /api/documents            -> multipart upload, returns the ingestion report
  GET    /api/models?provider=     -> models offered by a provider
  POST   /api/chat                 -> answer a question with the chosen provider/model

Run from the project root:
    uvicorn app.server:app --reload --port 8000

The store snapshot path in config/config.yaml is relative to CWD.
"""
from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import Any, Optional

# Windows cp1252 terminal fix
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from docqa.chunking.schemas import Chunk
from docqa.generation.providers import LLMModel, ProviderConfigError, ProviderKind, create_provider
from docqa.schemas import Document, IngestionReport, ProjectContext, Source, UploadedFile

CONFIG_PATH = "config/config.yaml"

# ---------------------------------------------------------------------------
# Pipeline singleton
# ---------------------------------------------------------------------------

_pipeline = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline once at startup; drop it on shutdown."""
    global _pipeline
    from docqa.config import load_config
    from docqa.serving.pipeline import RAGPipeline
    from docqa.utils.logger import setup_logger

    config = load_config(CONFIG_PATH)
    setup_logger(log_level=config.logging.level, log_file=config.logging.file)
    logger.info("[Server] Loading pipeline...")
    _pipeline = RAGPipeline.from_config(config)
    stats = await _pipeline.store.stats()
    logger.info(
        f"[Server] Pipeline ready | {stats['documents']} documents | "
        f"{stats['chunks']} chunks | provider={config.llm.provider.value}"
    )
    yield
    _pipeline = None
    logger.info("[Server] Pipeline unloaded.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Document Q&A API",
    description="Question answering over uploaded PDFs, Word files, images and text",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str
    context_id: Optional[str] = None
    provider: Optional[ProviderKind] = None     # Default: configured provider
    model: Optional[str] = None                 # Default: configured model for the provider


class LatencyModel(BaseModel):
    retrieval: float
    generation: float
    total: float


class ChatResponse(BaseModel):
    answer: str
    sources: list[Source]
    context_id: Optional[str]
    provider: str
    model: str
    latency_ms: LatencyModel


class DocumentSummary(BaseModel):
    id: str
    name: str
    type: str
    context: Optional[str]
    metadata: dict[str, Any]
    upload_date: str

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            name=document.name,
            type=document.type.value,
            context=document.context,
            metadata=document.metadata,
            upload_date=document.upload_date.isoformat(),
        )


class DocumentDetail(DocumentSummary):
    content: str
    chunks: list[Chunk]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _require_pipeline():
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not ready")
    return _pipeline


@app.get("/api/health")
async def health():
    """Return pipeline status and store counts."""
    pipeline = _require_pipeline()
    stats = await pipeline.store.stats()
    return {
        "status": "ok",
        "documents": stats["documents"],
        "chunks": stats["chunks"],
        "embeddings": stats["embeddings"],
        "retrieval_mode": pipeline.config.retrieval.mode.value,
        "top_k": pipeline.retriever.top_k,
        "provider": pipeline.config.llm.provider.value,
    }


@app.get("/api/contexts", response_model=list[ProjectContext])
async def list_contexts():
    return _require_pipeline().config.contexts


@app.get("/api/documents", response_model=list[DocumentSummary])
async def list_documents(context_id: Optional[str] = None):
    documents = await _require_pipeline().store.get_documents()
    if context_id is not None:
        documents = [d for d in documents if d.context == context_id]
    return [DocumentSummary.from_document(d) for d in documents]


@app.get("/api/documents/{document_id}", response_model=DocumentDetail)
async def get_document(document_id: str):
    pipeline = _require_pipeline()
    document = await pipeline.store.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")
    chunks = await pipeline.store.get_chunks(document_id)
    return DocumentDetail(
        **DocumentSummary.from_document(document).model_dump(),
        content=document.content,
        chunks=chunks,
    )


@app.delete("/api/documents/{document_id}")
async def delete_document(document_id: str):
    if not await _require_pipeline().store.remove_document(document_id):
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")
    return {"deleted": document_id}


@app.post("/api/documents", response_model=IngestionReport)
async def upload_documents(
    files: list[UploadFile] = File(...),
    context_id: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
):
    """
    Ingest uploaded files one after another.

    Files that fail are listed in the report's `failed` section; the
    request itself still succeeds.
    """
    pipeline = _require_pipeline()
    uploads = [
        UploadedFile(name=f.filename or "upload", data=await f.read())
        for f in files
    ]
    tag_list = [t.strip() for t in (tags or "").split(",") if t.strip()]

    logger.info(f"[API] Upload | {len(uploads)} file(s) | context={context_id}")
    return await pipeline.ingestion().process_files(uploads, context_id=context_id, tags=tag_list)


@app.get("/api/models", response_model=list[LLMModel])
async def list_models(provider: Optional[ProviderKind] = None):
    try:
        return await _require_pipeline().fetch_models(provider)
    except ProviderConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """
    Answer a user question from the stored documents.

    Missing API key or model selection is a 400; provider call failures come
    back as a normal answer describing the error.
    """
    pipeline = _require_pipeline()

    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message cannot be empty")

    logger.info(
        f"[API] Chat | provider={request.provider} model={request.model} | "
        f"context={request.context_id} | query={message[:80]!r}"
    )

    try:
        async with create_provider(pipeline.config.llm, kind=request.provider, model=request.model) as llm:
            result = await pipeline.answer(message, context_id=request.context_id, provider=llm)
    except ProviderConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return ChatResponse(
        answer=result.answer,
        sources=result.sources,
        context_id=result.context_id,
        provider=result.provider,
        model=result.model,
        latency_ms=LatencyModel(
            retrieval=round(result.retrieval_ms, 1),
            generation=round(result.generation_ms, 1),
            total=round(result.total_ms, 1),
        ),
    )
