#!/usr/bin/env python3
"""
Embedding module for the Enclave SMS backend.

This module handles text embedding using sentence-transformers.
"""

from typing import List, Optional

from sentence_transformers import SentenceTransformer

from .config import Config


class EmbeddingClient:
    """Client for generating text embeddings using sentence-transformers."""

    def __init__(self, model_name: Optional[str] = None):
        """Initialize the embedding client."""
        self.model = SentenceTransformer(model_name or Config.EMBEDDING_MODEL)

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate embedding for a text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as a list of floats
        """
        embedding = self.model.encode(text)
        return embedding.tolist()

    def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of text strings."""
        embeddings = self.model.encode(texts)
        return embeddings.tolist()
