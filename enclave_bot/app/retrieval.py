#!/usr/bin/env python3
"""
Retrieval module for the Enclave SMS backend.

Hybrid search over the organization's document chunks using FAISS (dense)
and Whoosh BM25 (sparse). Either index may be missing; the retriever then
searches with whatever is available.
"""

import json
import os
from typing import Any, Dict, List, Optional, Tuple

import faiss
import numpy as np
from whoosh.fields import ID, STORED, TEXT, Schema
from whoosh.index import create_in, exists_in, open_dir
from whoosh.qparser import OrGroup, QueryParser

from ..utils.logger import get_logger
from .config import Config

logger = get_logger()


class HybridRetriever:
    """Hybrid retriever combining FAISS and BM25 retrieval."""

    def __init__(self, chunks_path: Optional[str] = None, faiss_path: Optional[str] = None,
                 whoosh_path: Optional[str] = None, embed_client=None):
        """Initialize the hybrid retriever."""
        self.chunks_path = chunks_path or Config.CHUNKS_FILE_PATH
        self.faiss_path = faiss_path or Config.FAISS_INDEX_PATH
        self.whoosh_path = whoosh_path or Config.WHOOSH_INDEX_PATH
        self.embed_client = embed_client
        self.faiss_index = None
        self.whoosh_index = None
        self.chunks: List[Dict[str, Any]] = []

        # Load data and indexes
        self._load_data()
        self._load_faiss_index()
        self._load_whoosh_index()

    def _load_data(self):
        """Load document chunks from file."""
        if os.path.exists(self.chunks_path):
            with open(self.chunks_path, "r", encoding="utf-8") as f:
                self.chunks = json.load(f)
            logger.info(f"Loaded {len(self.chunks)} document chunks")
        else:
            logger.info("No chunks file found")
        self._positions = {chunk["id"]: i for i, chunk in enumerate(self.chunks)}

    def _load_faiss_index(self):
        if os.path.exists(self.faiss_path):
            self.faiss_index = faiss.read_index(self.faiss_path)
            logger.info(f"Loaded FAISS index with {self.faiss_index.ntotal} vectors")

    def _load_whoosh_index(self):
        if os.path.isdir(self.whoosh_path) and exists_in(self.whoosh_path):
            self.whoosh_index = open_dir(self.whoosh_path)
            logger.info("Loaded Whoosh index")

    @property
    def available(self) -> bool:
        return bool(self.chunks) and (self.faiss_index is not None or self.whoosh_index is not None)

    def _embedder(self):
        if self.embed_client is None:
            from .embed import EmbeddingClient
            self.embed_client = EmbeddingClient()
        return self.embed_client

    def _faiss_search(self, query_text: str, k: int) -> List[Tuple[int, float]]:
        """Return (chunk index, L2 distance) pairs."""
        if self.faiss_index is None:
            return []

        query_embedding = self._embedder().generate_embedding(query_text)
        query_vector = np.array(query_embedding).astype("float32").reshape(1, -1)
        distances, indices = self.faiss_index.search(query_vector, k)

        results = []
        for i in range(len(indices[0])):
            if indices[0][i] != -1:  # -1 means no result
                results.append((int(indices[0][i]), float(distances[0][i])))
        return results

    def _terms(self, text: str) -> set:
        analyzer = self.whoosh_index.schema["content"].analyzer
        return {token.text for token in analyzer(text or "")}

    def _bm25_search(self, query_text: str, k: int) -> List[Tuple[int, float]]:
        """
        Return (chunk index, query term coverage) pairs in BM25 rank order.

        Coverage is the share of the query's indexed terms found in the chunk,
        so a hit on one word of a six-word question scores 1/6 however it
        ranks against the other hits.
        """
        if self.whoosh_index is None:
            return []

        query_terms = self._terms(query_text)
        if not query_terms:
            return []

        results = []
        with self.whoosh_index.searcher() as searcher:
            parser = QueryParser("content", self.whoosh_index.schema, group=OrGroup)
            query = parser.parse(query_text)
            for hit in searcher.search(query, limit=k):
                idx = self._positions.get(hit["id"])
                if idx is None:
                    continue
                matched = query_terms & self._terms(hit["content"])
                results.append((idx, len(matched) / len(query_terms)))
        return results

    def hybrid_search(self, query_text: str, k: int = 5) -> List[Dict[str, Any]]:
        """
        Perform hybrid search using both FAISS and BM25.

        Args:
            query_text: Query text
            k: Number of results to return

        Returns:
            Chunks with a ``retrieval_score`` in [0, 1], best first
        """
        if not self.available:
            return []

        faiss_results = self._faiss_search(query_text, k * 2)
        bm25_results = self._bm25_search(query_text, k * 2)
        logger.debug(f"FAISS returned {len(faiss_results)}, BM25 returned {len(bm25_results)}")

        # each signal contributes half when both indexes exist
        dense_weight = 0.5 if self.whoosh_index is not None else 1.0
        sparse_weight = 0.5 if self.faiss_index is not None else 1.0

        combined_scores: Dict[int, float] = {}
        for idx, distance in faiss_results:
            similarity = 1 / (1 + distance)
            combined_scores[idx] = combined_scores.get(idx, 0) + dense_weight * similarity

        for idx, coverage in bm25_results:
            combined_scores[idx] = combined_scores.get(idx, 0) + sparse_weight * coverage

        sorted_results = sorted(combined_scores.items(), key=lambda x: x[1], reverse=True)[:k]

        retrieved_docs = []
        for idx, score in sorted_results:
            if idx < len(self.chunks):
                doc = self.chunks[idx].copy()
                doc["retrieval_score"] = min(1.0, score)
                retrieved_docs.append(doc)
        return retrieved_docs


def load_chunks(chunks_file: str) -> List[Dict[str, Any]]:
    with open(chunks_file, "r", encoding="utf-8") as f:
        return json.load(f)


def create_faiss_index(chunks_file: str, index_file: str, embed_client=None):
    """
    Create FAISS index from document chunks.

    Args:
        chunks_file: Path to chunks JSON file
        index_file: Path to save FAISS index
    """
    chunks = load_chunks(chunks_file)
    if not chunks:
        logger.info("No chunks found, skipping FAISS index creation")
        return

    if embed_client is None:
        from .embed import EmbeddingClient
        embed_client = EmbeddingClient()

    embeddings = embed_client.generate_embeddings_batch([chunk["text"] for chunk in chunks])
    embeddings_array = np.array(embeddings).astype("float32")

    index = faiss.IndexFlatL2(embeddings_array.shape[1])
    index.add(embeddings_array)

    faiss.write_index(index, index_file)
    logger.info(f"FAISS index created with {index.ntotal} vectors")


def create_whoosh_index(chunks_file: str, index_dir: str):
    """
    Create Whoosh index from document chunks.

    Args:
        chunks_file: Path to chunks JSON file
        index_dir: Directory to save Whoosh index
    """
    chunks = load_chunks(chunks_file)
    if not chunks:
        logger.info("No chunks found, skipping Whoosh index creation")
        return

    os.makedirs(index_dir, exist_ok=True)
    schema = Schema(
        id=ID(stored=True),
        content=TEXT(stored=True),
        title=STORED(),
        source=STORED(),
    )
    index = create_in(index_dir, schema)

    writer = index.writer()
    for chunk in chunks:
        writer.add_document(
            id=chunk["id"],
            content=chunk["text"],
            title=chunk.get("title"),
            source=chunk.get("source"),
        )
    writer.commit()
    logger.info(f"Whoosh index created with {len(chunks)} documents")


def main():
    """Build both indexes from the configured chunks file."""
    if not os.path.exists(Config.CHUNKS_FILE_PATH):
        print(f"No chunks file at {Config.CHUNKS_FILE_PATH}")
        return
    create_whoosh_index(Config.CHUNKS_FILE_PATH, Config.WHOOSH_INDEX_PATH)
    create_faiss_index(Config.CHUNKS_FILE_PATH, Config.FAISS_INDEX_PATH)


if __name__ == "__main__":
    main()
