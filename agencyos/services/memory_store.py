"""Clients for the external memory store."""

import json
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from agencyos.core.config import settings
from agencyos.core.exceptions import MemoryStoreError


class MemoryStoreClient(ABC):
    """The nine operations the memory store exposes.

    ``scope`` is always a fully resolved key from ``memory_scope``; the store
    has no notion of wildcards. Record dicts carry at least ``id`` and
    ``memory`` (the opaque payload).
    """

    @abstractmethod
    def add(self, content: str, scope: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def search(self, query: str, scope: str, top_k: Optional[int] = None) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get(self, memory_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def list(self, scope: str, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        """Return ``{"results": [...], "count": int | None}``."""
        ...

    @abstractmethod
    def update(self, memory_id: str, content: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def delete(self, memory_id: str) -> bool:
        ...

    @abstractmethod
    def delete_all(self, scope: str) -> bool:
        ...

    @abstractmethod
    def history(self, memory_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def entities(self) -> List[Dict[str, Any]]:
        ...

    def close(self) -> None:
        """Release connections. Clients without any keep the default."""


class GatewayMemoryClient(MemoryStoreClient):
    """Calls the gateway's ``mem0_*`` tools over JSON-RPC (``POST {url}/mcp``)."""

    def __init__(
        self,
        base_url: str = settings.MEMORY_GATEWAY_URL,
        api_key: str = settings.MEMORY_GATEWAY_API_KEY,
        timeout: float = settings.MEMORY_GATEWAY_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = base_url.rstrip("/") + "/mcp"
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
            "id": int(time.time() * 1000),
        }
        try:
            resp = self._client.post(self.url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise MemoryStoreError(f"Memory gateway call {name} failed: {exc}") from exc

        if data.get("error"):
            raise MemoryStoreError(f"Memory gateway call {name} failed: {data['error']}")

        result = data.get("result") or {}
        content = result.get("content") if isinstance(result, dict) else None
        if content and isinstance(content, list) and content[0].get("text"):
            try:
                return json.loads(content[0]["text"])
            except ValueError as exc:
                raise MemoryStoreError(f"Memory gateway returned invalid JSON for {name}") from exc
        return result

    @staticmethod
    def _results(result: Any) -> List[Dict[str, Any]]:
        if isinstance(result, dict):
            return result.get("results") or []
        return result or []

    def add(self, content: str, scope: str) -> Dict[str, Any]:
        result = self.call_tool("mem0_add", {"content": content, "userId": scope})
        return {"id": (result or {}).get("id") or str(uuid.uuid4())}

    def search(self, query: str, scope: str, top_k: Optional[int] = None) -> List[Dict[str, Any]]:
        args: Dict[str, Any] = {"query": query, "userId": scope}
        if top_k:
            args["topK"] = top_k
        results = self._results(self.call_tool("mem0_search", args))
        return [
            {
                "id": r.get("id") or r.get("memory_id") or str(uuid.uuid4()),
                "memory": r.get("memory") or r.get("content") or "",
                "score": r.get("score"),
            }
            for r in results
        ]

    def get(self, memory_id: str) -> Dict[str, Any]:
        return self.call_tool("mem0_get", {"memoryId": memory_id})

    def list(self, scope: str, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        result = self.call_tool("mem0_list", {"userId": scope, "page": page, "pageSize": page_size})
        count = result.get("count") if isinstance(result, dict) else None
        return {"results": self._results(result), "count": count}

    def update(self, memory_id: str, content: str) -> Dict[str, Any]:
        return self.call_tool("mem0_update", {"memoryId": memory_id, "content": content})

    def delete(self, memory_id: str) -> bool:
        result = self.call_tool("mem0_delete", {"memoryId": memory_id})
        return bool((result or {}).get("success"))

    def delete_all(self, scope: str) -> bool:
        result = self.call_tool("mem0_delete_all", {"userId": scope})
        return bool((result or {}).get("success"))

    def history(self, memory_id: str) -> List[Dict[str, Any]]:
        return self._results(self.call_tool("mem0_history", {"memoryId": memory_id}))

    def entities(self) -> List[Dict[str, Any]]:
        return self._results(self.call_tool("mem0_entities", {}))
