"""Common interface for the side-chat retrieval layers."""
from abc import ABC, abstractmethod
from typing import List

from ..schemas.session_models import RetrievalItem


class Retriever(ABC):
    name = "base"

    @abstractmethod
    async def retrieve(self, query: str, sender: str) -> List[RetrievalItem]:
        """Return items for the query, best first. May raise; callers isolate failures."""
        raise NotImplementedError
