"""Org document layer backed by the hybrid FAISS/Whoosh index."""
import asyncio
from typing import List

from ..app.config import Config
from ..schemas.session_models import RetrievalItem
from .base import Retriever

SNIPPET_CHARS = 480


class ContentRetriever(Retriever):
    name = "content"

    def __init__(self, hybrid, top_k: int = None):
        self.hybrid = hybrid
        self.top_k = top_k or Config.CONTENT_TOP_K

    def _search(self, query: str) -> List[RetrievalItem]:
        items = []
        for doc in self.hybrid.hybrid_search(query, k=self.top_k):
            items.append(RetrievalItem(
                layer="content",
                id=str(doc["id"]),
                title=doc.get("title") or doc.get("source"),
                snippet=doc["text"][:SNIPPET_CHARS].strip(),
                score=doc["retrieval_score"],
            ))
        return items

    async def retrieve(self, query: str, sender: str) -> List[RetrievalItem]:
        return await asyncio.to_thread(self._search, query)
