"""
Keyword Scorer
---------------
Lexical retrieval used when no embedding model is available.

Scoring:
  - the query is lowercased, stripped of punctuation and split into keywords
    (stop-words and single characters dropped)
  - a chunk scores one point per substring occurrence of each keyword in its
    lowercased text
  - chunks that already match get a bonus for every keyword of the active
    context's fixed domain list they contain (a "finance" context favours
    chunks mentioning invoices, revenue, ...)

Only chunks scoring above zero are returned, best first, with the same limit
semantics as the cosine search.
"""
from __future__ import annotations

import re
from typing import Optional

from loguru import logger

from docqa.chunking.schemas import Chunk
from docqa.schemas import ProjectContext

DEFAULT_LIMIT = 5
DOMAIN_BONUS = 2.0

_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "did", "do", "does",
        "for", "from", "has", "have", "how", "i", "in", "is", "it", "my", "of", "on",
        "or", "that", "the", "there", "this", "to", "was", "were", "what", "when",
        "where", "which", "who", "why", "will", "with", "you", "your",
    }
)


def keyword_tokens(text: str) -> list[str]:
    """
    Normalise text into lowercase keywords, order preserved, duplicates removed.

    Punctuation is stripped first so "contract's" and "contract," both
    reduce to "contract".
    """
    normalised = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    seen: dict[str, None] = {}
    for token in normalised.split():
        if len(token) > 1 and token not in _STOPWORDS:
            seen.setdefault(token, None)
    return list(seen)


class KeywordScorer:
    """Scores chunks by keyword substring matches with a per-context domain bonus."""

    def __init__(self, domain_bonus: float = DOMAIN_BONUS) -> None:
        self.domain_bonus = domain_bonus

    def score(self, keywords: list[str], chunk: Chunk, context: Optional[ProjectContext] = None) -> float:
        text = chunk.content.lower()
        base = float(sum(text.count(k) for k in keywords))
        if base <= 0 or context is None or not context.keywords:
            return base
        matches = sum(1 for term in context.keywords if term.lower() in text)
        return base + self.domain_bonus * matches

    def search(
        self,
        query: str,
        chunks: list[Chunk],
        context: Optional[ProjectContext] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[tuple[Chunk, float]]:
        """
        Returns: List of (Chunk, keyword_score) sorted descending, scores > 0 only.
        """
        keywords = keyword_tokens(query)
        if not keywords or not chunks:
            return []

        scored = [(chunk, self.score(keywords, chunk, context)) for chunk in chunks]
        # sorted() is stable: equal scores keep store order
        ranked = sorted((item for item in scored if item[1] > 0), key=lambda x: x[1], reverse=True)

        logger.debug(
            f"[KeywordScorer] keywords={keywords} | {len(chunks)} candidates -> "
            f"{min(len(ranked), limit)} hit(s)"
        )
        return ranked[:limit]
