"""GatewayMemoryClient against a mocked JSON-RPC endpoint."""

import json

import httpx
import pytest

from agencyos.core.exceptions import MemoryStoreError
from agencyos.services.memory_store import GatewayMemoryClient


def _tool_result(payload):
    return {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": json.dumps(payload)}]}}


@pytest.fixture()
def requests_seen():
    return []


def _client(requests_seen, responder):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests_seen.append((request, body))
        return responder(body)

    return GatewayMemoryClient(
        "http://gateway.test/", api_key="k-123", timeout=2, transport=httpx.MockTransport(handler)
    )


def test_add_posts_tools_call(requests_seen):
    client = _client(requests_seen, lambda body: httpx.Response(200, json=_tool_result({"id": "m1"})))
    assert client.add("payload", "a1::_::u1") == {"id": "m1"}

    request, body = requests_seen[0]
    assert str(request.url) == "http://gateway.test/mcp"
    assert request.headers["Authorization"] == "Bearer k-123"
    assert body["method"] == "tools/call"
    assert body["params"] == {"name": "mem0_add", "arguments": {"content": "payload", "userId": "a1::_::u1"}}


def test_search_normalizes_results(requests_seen):
    results = {"results": [{"memory_id": "m1", "content": "hello", "score": 0.7}]}
    client = _client(requests_seen, lambda body: httpx.Response(200, json=_tool_result(results)))
    assert client.search("hi", "a1::_::u1", top_k=3) == [{"id": "m1", "memory": "hello", "score": 0.7}]
    assert requests_seen[0][1]["params"]["arguments"]["topK"] == 3


def test_list_and_delete(requests_seen):
    def responder(body):
        name = body["params"]["name"]
        if name == "mem0_list":
            return httpx.Response(200, json=_tool_result({"results": [{"id": "m1", "memory": "x"}], "count": 1}))
        return httpx.Response(200, json=_tool_result({"success": True}))

    client = _client(requests_seen, responder)
    assert client.list("a1::_::u1", page=2, page_size=10) == {"results": [{"id": "m1", "memory": "x"}], "count": 1}
    assert requests_seen[0][1]["params"]["arguments"] == {"userId": "a1::_::u1", "page": 2, "pageSize": 10}
    assert client.delete("m1") is True
    assert client.delete_all("a1::_::u1") is True


def test_http_error_raises_store_error(requests_seen):
    client = _client(requests_seen, lambda body: httpx.Response(502, text="bad gateway"))
    with pytest.raises(MemoryStoreError):
        client.get("m1")


def test_rpc_error_raises_store_error(requests_seen):
    client = _client(
        requests_seen,
        lambda body: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "nope"}}),
    )
    with pytest.raises(MemoryStoreError):
        client.entities()


def test_connection_error_raises_store_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = GatewayMemoryClient("http://gateway.test", transport=httpx.MockTransport(handler))
    with pytest.raises(MemoryStoreError):
        client.history("m1")


def test_close_releases_the_http_client(requests_seen):
    client = _client(requests_seen, lambda body: httpx.Response(200, json=_tool_result({})))
    client.close()
    assert client._client.is_closed
