"""Code search against the Qdrant vector store.

The engineer agent's search_code tool queries indexed repository chunks
by vector similarity. Every query is scoped to one customer and one
repository through a payload filter, so an agent never sees another
customer's code.

Each point payload carries:
- customer_id: Owner of the indexed repository
- repository: Repository name the chunk belongs to
- source: File path of the chunk
- text: The chunk content

Indexing lives outside this service.
"""

import logging
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel

from src.triage.errors import UpstreamError


logger = logging.getLogger(__name__)


DEFAULT_NUM_RESULTS = 3


class VectorStoreError(UpstreamError):
    """Raised when vector store operations fail.

    Attributes:
        http_status: HTTP status code from the response if applicable.
        response_body: Response body from the API if applicable.
    """

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class CodeChunk(BaseModel):
    """A code search hit.

    Attributes:
        source: File path within the repository.
        text: Chunk content.
    """

    source: str
    text: str


class CodeSearchClient:
    """Async client for repository-scoped code search.

    Uses Qdrant's REST API via httpx, consistent with github/client.py.

    Attributes:
        base_url: Base URL of the Qdrant server (e.g., http://qdrant:6333).
        collection_name: Name of the Qdrant collection to search.
        embedding_url: URL of the embedding service for query vectorization.
        timeout: Request timeout in seconds.

    Example:
        >>> async with CodeSearchClient(
        ...     base_url="http://qdrant:6333",
        ...     collection_name="CodeSearch",
        ...     embedding_url="http://embedding-svc:8000",
        ... ) as search:
        ...     chunks = await search.search_code("auth flow", "cust-1", "api")
    """

    def __init__(
        self,
        base_url: str,
        collection_name: str,
        embedding_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.collection_name = collection_name
        self.embedding_url = embedding_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CodeSearchClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _get_embedding(self, text: str) -> List[float]:
        """Get embedding vector for a text query.

        Raises:
            VectorStoreError: If embedding generation fails.
        """
        try:
            response = await self.client.post(
                f"{self.embedding_url}/embed",
                json={"text": text},
            )
        except httpx.RequestError as e:
            logger.error(
                "Embedding service request failed",
                extra={"error": str(e)},
            )
            raise VectorStoreError(f"Embedding service request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Embedding service error",
                extra={
                    "status_code": response.status_code,
                    "response": response.text[:500],
                },
            )
            raise VectorStoreError(
                f"Embedding service error: {response.status_code}",
                http_status=response.status_code,
                response_body=response.text,
            )

        return response.json()["embedding"]

    async def search_code(
        self,
        query: str,
        customer_id: str,
        repository: str,
        num_results: int = DEFAULT_NUM_RESULTS,
    ) -> List[CodeChunk]:
        """Find the chunks of one repository most similar to a query.

        Args:
            query: Natural language or code query.
            customer_id: Owner of the repository.
            repository: Repository name.
            num_results: Maximum number of chunks to return.

        Returns:
            Matching chunks ordered by relevance. Empty when nothing matches.

        Raises:
            VectorStoreError: If the search fails.
            ValueError: If query is empty.
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        search_request = {
            "query": await self._get_embedding(query),
            "limit": num_results,
            "with_payload": True,
            "filter": {
                "must": [
                    {"key": "customer_id", "match": {"value": customer_id}},
                    {"key": "repository", "match": {"value": repository}},
                ]
            },
        }

        try:
            response = await self.client.post(
                f"{self.base_url}/collections/{self.collection_name}/points/query",
                json=search_request,
            )
        except httpx.RequestError as e:
            logger.error(
                "Qdrant request failed",
                extra={"error": str(e), "collection": self.collection_name},
            )
            raise VectorStoreError(f"Qdrant request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Qdrant search error",
                extra={
                    "status_code": response.status_code,
                    "response": response.text[:500],
                    "collection": self.collection_name,
                },
            )
            raise VectorStoreError(
                f"Qdrant search error: {response.status_code}",
                http_status=response.status_code,
                response_body=response.text,
            )

        return self._parse_results(response.json())

    def _parse_results(self, response_data: dict[str, Any]) -> List[CodeChunk]:
        result = response_data.get("result", [])
        # points/query nests hits under "points"; the legacy search API does not
        points = result.get("points", []) if isinstance(result, dict) else result

        chunks = []
        for point in points:
            payload = point.get("payload") or {}
            source = payload.get("source")
            text = payload.get("text")
            if not source or text is None:
                logger.warning(
                    "Skipping search result with missing fields",
                    extra={"has_source": bool(source), "has_text": text is not None},
                )
                continue
            chunks.append(CodeChunk(source=source, text=text))
        return chunks

    async def health_check(self) -> bool:
        """Check if Qdrant is reachable and the collection exists."""
        try:
            response = await self.client.get(
                f"{self.base_url}/collections/{self.collection_name}",
            )
            return response.status_code == 200
        except Exception as e:
            logger.warning(
                "Vector store health check failed",
                extra={"error": str(e), "collection": self.collection_name},
            )
            return False
