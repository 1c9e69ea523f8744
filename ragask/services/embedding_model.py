"""Embedding model integration with Hugging Face Inference API."""
import time
import logging
from typing import List, Optional
import httpx

from ragask.config import EMBEDDING_DIMENSION, EMBEDDING_MODEL
from ragask.errors import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingModel:
    """Wrapper for Hugging Face Inference API embedding model."""

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = EMBEDDING_MODEL,
        dimension: int = EMBEDDING_DIMENSION,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier
            dimension: Vector size the model produces
            timeout: Request timeout in seconds
            client: Shared async HTTP client (one is created otherwise)
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.dimension = dimension
        self.timeout = timeout
        self.api_url = f"https://router.huggingface.co/hf-inference/models/{model_name}/pipeline/feature-extraction"
        self._client = client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized EmbeddingModel with model: {model_name} ({dimension} dimensions)")

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts in a single API call.

        Vector ``i`` of the result belongs to ``texts[i]``.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors

        Raises:
            ValueError: If texts list is empty
            EmbeddingError: If the API call fails or returns a malformed payload
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True  # Wait for model to load if sleeping
            }
        }

        start_time = time.time()
        try:
            response = await self._client.post(self.api_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Request timeout after {self.timeout}s", {"model": self.model_name}) from e
        except httpx.RequestError as e:
            raise EmbeddingError(f"Network error: {str(e)}", {"model": self.model_name}) from e

        elapsed = time.time() - start_time

        # Handle 503 Service Unavailable (model loading)
        if response.status_code == 503:
            logger.warning(f"Model {self.model_name} is loading (503)")
            raise EmbeddingError("Model is loading", {"model": self.model_name, "status": 503})

        if response.status_code == 429:
            logger.error("Rate limit exceeded for Hugging Face API")
            raise EmbeddingError("Rate limit exceeded", {"model": self.model_name, "status": 429})

        if response.status_code == 401:
            logger.error("Authentication failed for Hugging Face API")
            raise EmbeddingError("Invalid API key", {"model": self.model_name, "status": 401})

        if response.status_code != 200:
            error_msg = f"API request failed with status {response.status_code}: {response.text}"
            logger.error(error_msg)
            raise EmbeddingError(error_msg, {"model": self.model_name, "status": response.status_code})

        embeddings = response.json()
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise EmbeddingError(
                "Malformed embedding response",
                {"model": self.model_name, "expected": len(texts)},
            )

        if elapsed > 10.0:
            logger.info(f"Model loading delay detected: {elapsed:.1f}s for {len(texts)} texts")
        else:
            logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")

        return embeddings

    async def aclose(self) -> None:
        await self._client.aclose()
