"""Web search through SerpAPI for the engineer agent."""

import logging
from typing import Any, Dict, Optional

import httpx

from src.triage.errors import UpstreamError

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com"
NO_RESULTS = "No good search result found"


class WebSearchError(UpstreamError):
    """Raised when a web search fails."""


class SerpAPISearch:
    """Google search via the SerpAPI JSON endpoint.

    Returns the most direct answer SerpAPI offers: the answer box, then
    the knowledge graph description, then the top organic snippets.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = SERPAPI_URL,
        timeout: float = 30.0,
        num_snippets: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.num_snippets = num_snippets
        self._transport = transport

    async def search(self, query: str) -> str:
        """Run a search and return a text answer.

        Raises:
            WebSearchError: If SerpAPI is unreachable or returns an error.
        """
        params = {"q": query, "engine": "google", "api_key": self._api_key}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get("/search.json", params=params)
        except httpx.RequestError as e:
            raise WebSearchError(f"SerpAPI request failed: {e}", cause=e) from e

        if response.status_code != 200:
            logger.error(
                "SerpAPI error",
                extra={"status_code": response.status_code, "response": response.text[:500]},
            )
            raise WebSearchError(f"SerpAPI error: {response.status_code}")

        data = response.json()
        if data.get("error"):
            raise WebSearchError(f"SerpAPI error: {data['error']}")
        return self._summarize(data)

    def _summarize(self, data: Dict[str, Any]) -> str:
        answer_box = data.get("answer_box") or {}
        for key in ("answer", "snippet"):
            if answer_box.get(key):
                return str(answer_box[key])

        knowledge_graph = data.get("knowledge_graph") or {}
        if knowledge_graph.get("description"):
            return str(knowledge_graph["description"])

        snippets = [
            result["snippet"]
            for result in data.get("organic_results") or []
            if result.get("snippet")
        ][: self.num_snippets]
        if snippets:
            return "\n".join(snippets)
        return NO_RESULTS
