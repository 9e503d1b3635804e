"""Unit tests for the Stripe, Qdrant and SerpAPI clients using httpx.MockTransport."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from src.triage.billing.payment_links import PaymentLinkError, StripePaymentLinks
from src.triage.engineer.web_search import NO_RESULTS, SerpAPISearch, WebSearchError
from src.triage.knowledge.vector import CodeChunk, CodeSearchClient, VectorStoreError


def run_async(coro):
    return asyncio.run(coro)


class TestStripePaymentLinks:
    def _links(self, handler, prices=None):
        return StripePaymentLinks(
            secret_key="sk_test",
            prices=prices if prices is not None else {"base": "price_123"},
            transport=httpx.MockTransport(handler),
        )

    def test_creates_link_tagged_with_customer(self):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"url": "https://buy.stripe.com/abc"})

        url = run_async(self._links(handler).create_payment_link("cust-1", "base"))

        assert url == "https://buy.stripe.com/abc"
        assert seen["form"]["line_items[0][price]"] == ["price_123"]
        assert seen["form"]["metadata[customerId]"] == ["cust-1"]
        assert seen["auth"] == "Bearer sk_test"

    def test_unknown_plan(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(PaymentLinkError):
            run_async(self._links(handler, prices={}).create_payment_link("cust-1", "base"))

    def test_stripe_error(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Invalid API Key"}})

        with pytest.raises(PaymentLinkError) as exc_info:
            run_async(self._links(handler).create_payment_link("cust-1", "base"))

        assert exc_info.value.status_code == 500


class TestCodeSearch:
    def _client(self, handler):
        return CodeSearchClient(
            base_url="http://qdrant:6333",
            collection_name="CodeSearch",
            embedding_url="http://embed:8000",
            transport=httpx.MockTransport(handler),
        )

    def test_search_is_scoped_and_parsed(self):
        seen = {}

        def handler(request):
            if request.url.host == "embed":
                return httpx.Response(200, json={"embedding": [0.1, 0.2]})
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "result": {
                        "points": [
                            {"payload": {"source": "src/app.py", "text": "def main():"}},
                            {"payload": {"source": "README.md"}},
                        ]
                    }
                },
            )

        async def scenario():
            async with self._client(handler) as search:
                return await search.search_code("entry point", "cust-1", "api", num_results=2)

        chunks = run_async(scenario())

        assert chunks == [CodeChunk(source="src/app.py", text="def main():")]
        assert seen["path"] == "/collections/CodeSearch/points/query"
        assert seen["body"]["query"] == [0.1, 0.2]
        assert seen["body"]["limit"] == 2
        assert seen["body"]["filter"]["must"] == [
            {"key": "customer_id", "match": {"value": "cust-1"}},
            {"key": "repository", "match": {"value": "api"}},
        ]

    def test_legacy_result_list_is_parsed(self):
        def handler(request):
            if request.url.host == "embed":
                return httpx.Response(200, json={"embedding": [0.0]})
            return httpx.Response(
                200, json={"result": [{"payload": {"source": "a.py", "text": "x"}}]}
            )

        chunks = run_async(self._client(handler).search_code("x", "c", "r"))

        assert [chunk.source for chunk in chunks] == ["a.py"]

    def test_empty_query_is_rejected(self):
        with pytest.raises(ValueError):
            run_async(self._client(lambda request: httpx.Response(200)).search_code(" ", "c", "r"))

    def test_search_failure(self):
        def handler(request):
            if request.url.host == "embed":
                return httpx.Response(200, json={"embedding": [0.0]})
            return httpx.Response(404, text="Collection not found")

        with pytest.raises(VectorStoreError) as exc_info:
            run_async(self._client(handler).search_code("x", "c", "r"))

        assert exc_info.value.http_status == 404

    def test_health_check(self):
        healthy = self._client(lambda request: httpx.Response(200, json={}))
        unhealthy = self._client(lambda request: httpx.Response(404))

        assert run_async(healthy.health_check()) is True
        assert run_async(unhealthy.health_check()) is False


class TestSerpAPISearch:
    def _search(self, payload, status=200):
        def handler(request):
            assert request.url.path == "/search.json"
            assert request.url.params["api_key"] == "serp-key"
            return httpx.Response(status, json=payload)

        return SerpAPISearch(api_key="serp-key", transport=httpx.MockTransport(handler))

    def test_answer_box_wins(self):
        search = self._search(
            {
                "answer_box": {"answer": "42"},
                "knowledge_graph": {"description": "ignored"},
            }
        )

        assert run_async(search.search("meaning of life")) == "42"

    def test_knowledge_graph_description(self):
        search = self._search({"knowledge_graph": {"description": "A language"}})

        assert run_async(search.search("python")) == "A language"

    def test_organic_snippets(self):
        search = self._search(
            {"organic_results": [{"snippet": f"s{i}"} for i in range(5)] + [{"title": "t"}]}
        )

        assert run_async(search.search("q")) == "s0\ns1\ns2"

    def test_no_results(self):
        assert run_async(self._search({}).search("q")) == NO_RESULTS

    def test_error_response(self):
        with pytest.raises(WebSearchError):
            run_async(self._search({"error": "Invalid API key."}, status=401).search("q"))
