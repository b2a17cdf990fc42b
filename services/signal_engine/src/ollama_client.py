"""
Ollama client for the local advisory provider.

This module provides an interface to Ollama for running a local LLM model
as the last link of the advisory fallback chain, after the hosted providers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class OllamaError(Exception):
    """Raised when the Ollama server cannot produce a completion."""


@dataclass
class OllamaResponse:
    """Response from Ollama API."""

    content: str
    model: str
    tokens_used: int
    response_time: float


class OllamaClient:
    """Client for interacting with local Ollama instance."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama2",
        request_timeout: float = 120.0,
    ):
        """
        Initialize Ollama client.

        Args:
            base_url: Ollama server URL
            model: Model name to use
            request_timeout: Upper bound for a single generate call, in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def query(
        self, prompt: str, max_tokens: int = 1000, temperature: float = 0.3
    ) -> OllamaResponse:
        """
        Query Ollama with a prompt.

        Args:
            prompt: The prompt to send
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            OllamaResponse object

        Raises:
            OllamaError: On timeout or connection failure
        """
        session = await self._ensure_session()

        start_time = time.time()

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "num_predict": max_tokens,
                "temperature": temperature,
            },
        }

        try:
            async with session.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                response.raise_for_status()
                result = await response.json()

                return OllamaResponse(
                    content=result.get("response", ""),
                    model=self.model,
                    tokens_used=result.get("eval_count", 0),
                    response_time=time.time() - start_time,
                )

        except asyncio.TimeoutError as e:
            logger.error(f"Ollama request timed out after {self.request_timeout} seconds")
            raise OllamaError("Ollama request timed out") from e
        except aiohttp.ClientError as e:
            logger.error(f"Ollama client error: {e}")
            raise OllamaError(f"Failed to connect to Ollama: {e}") from e

    async def health_check(self) -> bool:
        """
        Check if Ollama server is healthy and model is available.

        Returns:
            True if healthy, False otherwise
        """
        models = await self.list_models()
        if self.model not in models:
            logger.warning(f"Model {self.model} not found. Available models: {models}")
            return False
        return True

    async def list_models(self) -> List[str]:
        """
        List available models on Ollama server.

        Returns:
            List of model names (empty when the server is unreachable)
        """
        session = await self._ensure_session()

        try:
            async with session.get(
                f"{self.base_url}/api/tags", timeout=aiohttp.ClientTimeout(total=10)
            ) as response:
                response.raise_for_status()
                models_data = await response.json()
                return [model["name"] for model in models_data.get("models", [])]

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to list Ollama models: {e}")
            return []

    async def close(self):
        """Close the aiohttp session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
