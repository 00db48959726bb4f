"""Embedding generation for code entities using a local Ollama server."""

import asyncio
import logging
from typing import Dict, List, Optional

import blake3
import httpx

logger = logging.getLogger(__name__)


class OllamaEmbeddings:
    """Generate embeddings using Ollama's local embedding models.

    Embeddings are memoized in memory, keyed by a Blake3 hash of model and
    text, so re-analyzing an unchanged entity does not hit the server again.
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        max_concurrent: int = 4,
        max_tokens: int = 2048,
        max_cached: int = 10000,
    ):
        """Initialize Ollama embeddings client.

        Args:
            host: Ollama API host URL
            model: Name of the embedding model to use
            max_concurrent: Maximum concurrent requests to Ollama
            max_tokens: Maximum token length for the model
            max_cached: Embeddings kept in memory before the cache is reset
        """
        self.host = host.rstrip("/")
        self.model = model
        self.max_concurrent = max_concurrent
        self.max_tokens = max_tokens
        self.max_cached = max_cached
        self._cache: Dict[str, List[float]] = {}
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop_id: Optional[int] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

        logger.info(f"Initialized Ollama embeddings with model: {model} (max_tokens: {max_tokens})")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create an httpx client bound to the running event loop.

        The server runs the file watcher on its own loop, and an AsyncClient
        (like a Semaphore) cannot be shared across loops.
        """
        loop_id = id(asyncio.get_running_loop())
        if self._client is None or self._client_loop_id != loop_id:
            self._client = httpx.AsyncClient(timeout=60.0)
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._client_loop_id = loop_id
            logger.debug(f"Created new httpx client for event loop {loop_id}")
        return self._client

    def _get_cache_key(self, text: str) -> str:
        # Model name is part of the key so switching models never reuses vectors
        return blake3.blake3(f"{self.model}:{text}".encode()).hexdigest()

    def _truncate_text(self, text: str) -> str:
        # Roughly 3 characters per token, with a 20% buffer
        max_chars = int(self.max_tokens * 3 * 0.8)
        if len(text) > max_chars:
            logger.debug(f"Truncated text from {len(text)} to {max_chars} chars")
            return text[:max_chars]
        return text

    async def generate_embedding(self, text: str, max_retries: int = 3) -> List[float]:
        """Generate the embedding for a single text.

        Args:
            text: Text to embed
            max_retries: Attempts made when the server answers with a 5xx

        Returns:
            Embedding vector

        Raises:
            httpx.HTTPError: If the request fails after all retries
        """
        cache_key = self._get_cache_key(text)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        text = self._truncate_text(text)
        client = self._get_client()

        async with self._semaphore:
            for attempt in range(max_retries):
                try:
                    response = await client.post(
                        f"{self.host}/api/embeddings",
                        json={"model": self.model, "prompt": text},
                    )
                    response.raise_for_status()
                    embedding = response.json()["embedding"]
                    break
                except httpx.HTTPStatusError as e:
                    if e.response.status_code >= 500 and attempt < max_retries - 1:
                        wait_time = 2**attempt
                        logger.warning(
                            f"Ollama {e.response.status_code} error (attempt {attempt + 1}/{max_retries}), "
                            f"retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(f"Ollama API error {e.response.status_code}: text_len={len(text)}")
                    raise
                except KeyError as e:
                    logger.error(f"Unexpected API response format: {e}")
                    raise

        if len(self._cache) >= self.max_cached:
            self._cache.clear()
        self._cache[cache_key] = embedding
        return embedding

    async def generate_embeddings(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Generate embeddings for several texts concurrently.

        Failed texts yield None in their position instead of failing the batch.

        Args:
            texts: Texts to embed

        Returns:
            One embedding (or None) per input text
        """
        if not texts:
            return []

        results = await asyncio.gather(
            *(self.generate_embedding(text) for text in texts), return_exceptions=True
        )

        embeddings: List[Optional[List[float]]] = []
        failed_count = 0
        for i, result in enumerate(results):
            if isinstance(result, Exception):
                failed_count += 1
                logger.warning(f"Failed to generate embedding for text {i}: {result}")
                embeddings.append(None)
            else:
                embeddings.append(result)

        if failed_count:
            logger.warning(f"{failed_count}/{len(texts)} embeddings failed, continuing with successful ones")
        return embeddings

    async def health_check(self) -> bool:
        """Check that Ollama is running and the model is pulled."""
        try:
            response = await self._get_client().get(f"{self.host}/api/tags")
            response.raise_for_status()
            model_names = [m["name"] for m in response.json().get("models", [])]

            if self.model not in model_names and f"{self.model}:latest" not in model_names:
                logger.warning(f"Model '{self.model}' not found in Ollama. Available models: {model_names}")
                return False
            return True
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
