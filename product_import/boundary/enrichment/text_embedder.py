"""
Text embedding enricher.

Embeds product text and captions through a LangChain Embeddings model
and checks the returned dimension against the downstream column.

Dependencies: langchain_core, product_import.boundary.enrichment.errors
System role: Text embedding step of the import pipeline
"""

import logging
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings

from product_import.boundary.enrichment.errors import to_enrichment_error
from product_import.core.exceptions import EnrichmentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingResult:
    """Vector with its provenance."""

    vector: list[float]
    model: str

    @property
    def dim(self) -> int:
        return len(self.vector)


class TextEmbedder:
    """Produces fixed-dimension text embeddings."""

    def __init__(self, embeddings: Embeddings, model_name: str, dimension: int) -> None:
        """
        Args:
            embeddings: LangChain embeddings model
            model_name: Model identifier stored with each row
            dimension: Expected vector length
        """
        self._embeddings = embeddings
        self._model_name = model_name
        self._dimension = dimension

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Embed one text.

        Raises:
            EnrichmentError: Provider failure (classified) or unexpected dimension
        """
        try:
            vector = await self._embeddings.aembed_query(text)
        except Exception as e:
            raise to_enrichment_error(e, "Text embedding") from e

        if len(vector) != self._dimension:
            raise EnrichmentError(
                f"Unexpected embedding length: {len(vector)} (expected {self._dimension})",
                status_code=500,
                retryable=False,
                error_code="bad_dimension",
            )
        return EmbeddingResult(vector=[float(v) for v in vector], model=self._model_name)
