import os
from abc import ABC, abstractmethod

from openai import AsyncOpenAI, OpenAIError

from vault_categorizer.domain.embeddings import DEFAULT_EMBEDDING_DIM, is_placeholder
from vault_categorizer.domain.errors import EmbeddingProviderFailure
from vault_categorizer.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODEL = "all-minilm"


class EmbeddingProvider(ABC):
    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding for ``text`` or raise ``EmbeddingProviderFailure``."""
        pass

    async def aclose(self) -> None:
        pass


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from an OpenAI-compatible server running on this machine
    (Ollama, llama.cpp, text-embeddings-inference, ...).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str | None = None,
        dimensions: int = DEFAULT_EMBEDDING_DIM,
        client: AsyncOpenAI | None = None,
    ):
        self.client = client or AsyncOpenAI(
            # Local servers ignore the key, but the client refuses to start without one.
            api_key=api_key or os.getenv("EMBEDDING_API_KEY") or "local",
            base_url=base_url or os.getenv("EMBEDDING_BASE_URL") or DEFAULT_BASE_URL,
        )
        self.model = model
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise EmbeddingProviderFailure("Cannot embed empty text")

        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            logger.warning("[EMBED] Embedding request failed: %s", e.__class__.__name__)
            raise EmbeddingProviderFailure(f"Embedding request failed: {e.__class__.__name__}") from e

        if not response.data:
            raise EmbeddingProviderFailure("Embedding response was empty")

        vector = [float(value) for value in response.data[0].embedding]
        if len(vector) != self.dimensions:
            raise EmbeddingProviderFailure(
                f"Expected {self.dimensions} dimensions from {self.model}, got {len(vector)}",
                recoverable=False,
            )
        if is_placeholder(vector):
            raise EmbeddingProviderFailure("Model returned an all-zero vector")
        return vector

    async def aclose(self) -> None:
        await self.client.close()
