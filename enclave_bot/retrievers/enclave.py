"""Product-help layer: keyword search over the Enclave reference document."""
import re
from typing import List, Optional

from ..app.config import Config
from ..schemas.session_models import RetrievalItem
from .base import Retriever

TERM = re.compile(r"\w+")
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
STOPWORDS = {"a", "an", "the", "is", "are", "do", "does", "i", "you", "to", "of", "and", "or", "it", "in", "on",
             "what", "how", "can", "my", "me", "for", "with"}
SNIPPET_SENTENCES = 3


def keyword_score(text: str, query: str) -> float:
    """Fraction of query terms present in the text, damped for very short queries."""
    terms = [t for t in TERM.findall(query.lower()) if t not in STOPWORDS]
    if not terms:
        return 0.0
    lower = text.lower()
    hits = sum(1 for t in terms if t in lower)
    return min(1.0, hits / max(3, len(terms)))


def split_sections(document: str) -> List[dict]:
    """Split markdown into (heading, paragraph) sections."""
    sections = []
    heading = None
    for block in re.split(r"\n\s*\n", document):
        block = block.strip()
        if not block:
            continue
        if block.startswith("#"):
            lines = block.splitlines()
            heading = lines[0].lstrip("#").strip()
            block = "\n".join(lines[1:]).strip()
            if not block:
                continue
        sections.append({"title": heading, "text": block})
    return sections


class EnclaveReferenceRetriever(Retriever):
    name = "enclave"

    def __init__(self, path: Optional[str] = None, document: Optional[str] = None):
        self.path = path or Config.PRODUCT_REFERENCE_PATH
        self._document = document

    def _load(self) -> str:
        if self._document is None:
            with open(self.path, "r", encoding="utf-8") as f:
                self._document = f.read()
        return self._document

    async def retrieve(self, query: str, sender: str) -> List[RetrievalItem]:
        items = []
        for i, section in enumerate(split_sections(self._load())):
            score = keyword_score(f"{section['title'] or ''} {section['text']}", query)
            if score <= 0:
                continue
            sentences = SENTENCE_END.split(section["text"].replace("\n", " "))
            items.append(RetrievalItem(
                layer="enclave",
                id=f"enclave_ref_{i}",
                title=section["title"] or "Enclave Reference",
                snippet=" ".join(sentences[:SNIPPET_SENTENCES]),
                score=score,
            ))
        items.sort(key=lambda item: item.score, reverse=True)
        return items[:3]
