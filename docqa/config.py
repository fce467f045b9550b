"""
Application Configuration
--------------------------
config/config.yaml validated into pydantic models.

Secrets never live in the YAML file: API keys come from the environment
(a local .env is loaded first), and an environment key always wins over
anything the file says.

    OPENAI_API_KEY     -> llm.openai.api_key
    GEMINI_API_KEY     -> llm.gemini.api_key
    ANTHROPIC_API_KEY  -> llm.anthropic.api_key

The resulting AppConfig is passed explicitly to every component; nothing
reads settings from module globals.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field

from docqa.generation.providers import ProviderKind
from docqa.retrieval.retriever import RetrievalMode
from docqa.schemas import ProjectContext

DEFAULT_CONFIG_PATH = "config/config.yaml"

_API_KEY_ENV = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.GEMINI: "GEMINI_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
}


# ---------------------------------------------------------------------------
# Default project contexts
# ---------------------------------------------------------------------------

DEFAULT_CONTEXTS: list[ProjectContext] = [
    ProjectContext(
        id="pensions",
        name="Pension Backfiles",
        description="UK Pensions Administration Tool",
        prompt_prefix=(
            "You are an expert UK pensions administrator assistant. Focus specifically on UK "
            "pension terminology and regulations. If you identify information about transfers, "
            "scheme details, benefit values, or retirement options, highlight these clearly."
        ),
        example_questions=[
            "What is the transfer value mentioned in the documents?",
            "When can I access my pension benefits?",
            "What are the death benefits in my pension scheme?",
        ],
        keywords=["pension", "scheme", "transfer", "benefit", "retirement", "annuity", "contribution"],
    ),
    ProjectContext(
        id="university",
        name="University Assessments",
        description="Academic Assessment Analysis Tool",
        prompt_prefix=(
            "You are an expert academic assessor. Analyze the documents for academic quality, "
            "structure, and content. Evaluate whether the assessment meets the required criteria "
            "and provide constructive feedback."
        ),
        example_questions=[
            "Does this assessment meet the criteria for a distinction?",
            "What are the main subjects covered in this document?",
            "How could this assignment be improved?",
        ],
        keywords=["assessment", "criteria", "grade", "distinction", "module", "assignment", "marks"],
    ),
    ProjectContext(
        id="legal",
        name="Legal Documents",
        description="Legal Document Analysis Tool",
        prompt_prefix=(
            "You are a legal document specialist. Analyze contracts, agreements, and legal "
            "correspondence for key terms, obligations, and potential issues. Highlight important "
            "clauses and legal implications."
        ),
        example_questions=[
            "What are the key obligations in this contract?",
            "When does this agreement expire?",
            "Are there any concerning clauses in this document?",
        ],
        keywords=["contract", "agreement", "clause", "party", "obligation", "liability", "termination"],
    ),
    ProjectContext(
        id="medical",
        name="Medical Records",
        description="Medical Documentation Analysis Tool",
        prompt_prefix=(
            "You are a medical records specialist. Analyze medical documents for key diagnoses, "
            "treatments, and medical history. Focus on medical terminology and healthcare "
            "information."
        ),
        example_questions=[
            "What treatments are mentioned in these records?",
            "When was the last consultation date?",
            "Are there any medication allergies noted?",
        ],
        keywords=["diagnosis", "treatment", "medication", "patient", "allergy", "consultation", "symptom"],
    ),
    ProjectContext(
        id="finance",
        name="Financial Statements",
        description="Invoice and Statement Analysis Tool",
        prompt_prefix=(
            "You are a financial analyst assistant. Analyze invoices, statements and reports for "
            "amounts, due dates, counterparties and balances. State figures exactly as written."
        ),
        example_questions=[
            "What is the total amount due on the latest invoice?",
            "Which payments are overdue?",
            "What was the closing balance for the period?",
        ],
        keywords=["invoice", "payment", "revenue", "balance", "amount", "due", "account"],
    ),
]


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------

class ProviderSettings(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None     # Selected model; None means "not chosen yet"


class LLMSettings(BaseModel):
    provider: ProviderKind = ProviderKind.OPENAI
    temperature: float = 0.3
    max_tokens: int = 1000
    timeout: float = 60.0
    openai: ProviderSettings = Field(default_factory=lambda: ProviderSettings(model="gpt-4o"))
    gemini: ProviderSettings = Field(default_factory=lambda: ProviderSettings(model="gemini-1.5-flash"))
    anthropic: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(model="claude-haiku-4-5-20251001")
    )

    def for_kind(self, kind: ProviderKind) -> ProviderSettings:
        return getattr(self, ProviderKind(kind).value)


class EmbeddingSettings(BaseModel):
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    batch_size: int = 64
    device: Optional[str] = None


class RetrievalSettings(BaseModel):
    mode: RetrievalMode = RetrievalMode.EMBEDDING
    top_k: int = Field(default=5, ge=1)


class ExtractionSettings(BaseModel):
    ocr_language: str = "eng"


class StorageSettings(BaseModel):
    path: Optional[str] = "data/store.json"   # None keeps the store in memory only


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/docqa.log"


class AppConfig(BaseModel):
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    contexts: list[ProjectContext] = Field(default_factory=lambda: list(DEFAULT_CONTEXTS))

    def get_context(self, context_id: Optional[str]) -> Optional[ProjectContext]:
        if context_id is None:
            return None
        return next((c for c in self.contexts if c.id == context_id), None)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load .env, parse the YAML file (if present) and apply environment API keys.

    A missing file is not an error: every setting has a default.
    """
    load_dotenv()

    path = Path(path)
    raw: dict = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.warning(f"[Config] {path} not found, using defaults")

    config = AppConfig(**raw)
    for kind, env_var in _API_KEY_ENV.items():
        value = os.getenv(env_var)
        if value:
            config.llm.for_kind(kind).api_key = value

    logger.debug(
        f"[Config] provider={config.llm.provider.value} | retrieval={config.retrieval.mode.value} | "
        f"store={config.storage.path} | contexts={len(config.contexts)}"
    )
    return config
