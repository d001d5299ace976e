#!/usr/bin/env python3
"""
Generation module for the Enclave SMS backend.

This module wraps the Gemini REST API. The assistant only uses the model as a
fallback classifier, so every call is bounded by ``Config.LLM_TIMEOUT_SECONDS``
and a failure degrades to an empty string instead of aborting the turn.
"""

import asyncio
from typing import Optional

import requests
from pydantic import BaseModel

from ..utils.errors import LanguageModelTimeout
from ..utils.logger import get_logger
from .config import Config

logger = get_logger()


class GenerationRequest(BaseModel):
    query: str
    context: str = ""
    kind: str = "classify"


class GenerationClient:
    """Client for generating text using the Gemini LLM API."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, http=None):
        """Initialize the generation client."""
        self.api_key = api_key or Config.GEMINI_API_KEY
        self.llm_model = model or Config.GEMINI_MODEL
        self.api_base_url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.llm_model}:generateContent"
        self.http = http or requests

        if not self.api_key:
            raise ValueError("Gemini API key is required")

    def generate_answer(self, prompt: str, timeout: float = 60) -> str:
        """
        Generate a completion using the Gemini LLM.

        Args:
            prompt: Formatted prompt for the LLM
            timeout: Socket timeout in seconds

        Returns:
            Generated text
        """
        logger.debug(f"Generating with {self.llm_model}, prompt length: {len(prompt)}")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.0,
                "maxOutputTokens": 300,
                "stopSequences": ["\nUser:"],
            },
        }

        try:
            response = self.http.post(
                f"{self.api_base_url}?key={self.api_key}",
                json=payload,
                timeout=timeout,
            )
            if response.status_code != 200:
                logger.warning(f"Gemini error response {response.status_code}: {response.text[:200]}")
                response.raise_for_status()

            data = response.json()
            if "candidates" in data and len(data["candidates"]) > 0:
                answer = data["candidates"][0]["content"]["parts"][0]["text"].strip()
            else:
                raise KeyError("No candidates found in response")
            logger.info(f"[WORKFLOW] LLM raw response: {answer[:200]}")
            return answer

        except requests.exceptions.RequestException as e:
            raise Exception(f"Error generating answer: {str(e)}")
        except (KeyError, IndexError) as e:
            raise Exception(f"Error parsing generation response: {str(e)}")


class LanguageModelService:
    """Async, timeout-bounded facade over a blocking generation client."""

    def __init__(self, client: Optional[GenerationClient] = None, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout if timeout is not None else Config.LLM_TIMEOUT_SECONDS

    async def complete(self, prompt: str) -> str:
        """Return the completion; raises LanguageModelTimeout past the deadline."""
        if self.client is None:
            return ""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.client.generate_answer, prompt, self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise LanguageModelTimeout(f"no response within {self.timeout}s")

    async def generate(self, request: GenerationRequest) -> str:
        prompt = request.query if not request.context else f"{request.context}\n\n{request.query}"
        try:
            return await self.complete(prompt)
        except LanguageModelTimeout as e:
            logger.warning(f"[LLM] {request.kind} timed out: {e}")
            return ""
        except Exception as e:
            logger.warning(f"[LLM] {request.kind} failed: {e}")
            return ""
