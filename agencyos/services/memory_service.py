"""Memory service — tenant-scoped cross-session memory for the assistant.

All store access goes through one fully resolved scope key (see
``memory_scope``). Failures to reach the store never propagate: reads come
back empty and writes report ``None`` / ``False`` so a chat turn can carry on
without memory context.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from agencyos.core.config import settings
from agencyos.core.exceptions import MemoryStoreError
from agencyos.schemas.schemas import (
    MEMORY_TYPES,
    Memory,
    MemoryAddRequest,
    MemoryEntity,
    MemoryHistoryEntry,
    MemoryListResponse,
    MemoryMetadata,
    MemorySearchRequest,
    MemorySearchResult,
    MemoryStats,
)
from agencyos.services.cache_service import CacheService
from agencyos.services.memory_scope import (
    ScopeKey,
    Specific,
    build_scoped_key,
    decode_memory_content,
    encode_memory_content,
    segment,
)
from agencyos.services.memory_store import MemoryStoreClient

logger = logging.getLogger("agencyos.memory")

LIST_CACHE_PREFIX = "memory:list:"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return _now()


def _validate_metadata(merged: Dict[str, Any], memory_id: Any) -> MemoryMetadata:
    """Drop fields another writer left malformed instead of failing the read."""
    try:
        return MemoryMetadata.model_validate(merged)
    except ValidationError as e:
        bad = {err["loc"][0] for err in e.errors() if err["loc"]}
        logger.warning(f"Dropping malformed metadata {sorted(map(str, bad))} on memory {memory_id}")
    try:
        return MemoryMetadata.model_validate({k: v for k, v in merged.items() if k not in bad})
    except ValidationError:
        return MemoryMetadata()


def _to_memory(record: Dict[str, Any], defaults: Dict[str, Any], score: Optional[float] = None) -> Memory:
    content, stored = decode_memory_content(record.get("memory") or record.get("content") or "")
    merged = {"type": "conversation", **{k: v for k, v in defaults.items() if v is not None}, **stored}
    return Memory(
        id=str(record.get("id")),
        content=content,
        metadata=_validate_metadata(merged, record.get("id")),
        score=score if score is not None else record.get("score"),
        created_at=_parse_ts(record.get("created_at")),
        updated_at=_parse_ts(record.get("updated_at")),
    )


def record_scope(record: Dict[str, Any]) -> Optional[ScopeKey]:
    """The scope a stored record lives under, or ``None`` when it cannot be established.

    The store's own ``user_id`` (the scope key the record was added with) wins;
    the envelope's ids are used only when the store does not report one.
    """
    try:
        raw = record.get("user_id")
        if isinstance(raw, str) and raw:
            return ScopeKey.parse(raw)
        _, stored = decode_memory_content(record.get("memory") or record.get("content") or "")
        agency_id = stored.get("agencyId") or stored.get("agency_id")
        if not isinstance(agency_id, str) or not agency_id:
            return None
        return ScopeKey(
            Specific(agency_id),
            segment(stored.get("clientId") or stored.get("client_id")),
            segment(stored.get("userId") or stored.get("user_id")),
        )
    except (ValueError, TypeError):
        return None


def _scope_defaults(scope: Optional[ScopeKey]) -> Dict[str, Any]:
    if scope is None:
        return {}
    return {
        "agencyId": scope.agency.id,
        "clientId": scope.client.id if isinstance(scope.client, Specific) else None,
        "userId": scope.user.id if isinstance(scope.user, Specific) else None,
    }


class MemoryService:
    """Cross-session memory with 3-part tenant scoping."""

    def __init__(
        self,
        client: MemoryStoreClient,
        cache: Optional[CacheService] = None,
        cache_ttl_seconds: int = settings.MEMORY_CACHE_TTL_SECONDS,
    ):
        self.client = client
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    # ---- Core operations ----

    def add_memory(self, request: MemoryAddRequest) -> Optional[Memory]:
        """Store a memory under the most specific scope the request names."""
        scope = build_scoped_key(request.agency_id, request.user_id, request.client_id)
        metadata = MemoryMetadata(
            agency_id=request.agency_id,
            client_id=request.client_id,
            user_id=request.user_id,
            session_id=request.session_id,
            type=request.type,
            topic=request.topic,
            entities=request.entities,
            importance=request.importance,
        )
        payload = encode_memory_content(
            request.content, metadata.model_dump(by_alias=True, exclude_none=True)
        )

        try:
            result = self.client.add(payload, scope)
        except Exception as e:
            logger.warning(f"Memory add failed for {scope}: {e}")
            return None

        self._invalidate(scope)
        now = _now()
        return Memory(
            id=str(result.get("id")),
            content=request.content,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

    def search_memories(self, request: MemorySearchRequest, strict: bool = False) -> MemorySearchResult:
        """Search one scope. With ``strict`` a store failure raises ``MemoryStoreError``."""
        started = time.monotonic()
        scope = build_scoped_key(request.agency_id, request.user_id, request.client_id)

        try:
            results = self.client.search(request.query, scope)
        except Exception as e:
            if strict:
                raise MemoryStoreError(f"Memory search failed for {scope}: {e}") from e
            logger.warning(f"Memory search failed for {scope}: {e}")
            return MemorySearchResult()

        defaults = {
            "agencyId": request.agency_id,
            "clientId": request.client_id,
            "userId": request.user_id,
        }
        memories = [_to_memory(r, defaults, r.get("score")) for r in results]

        if request.min_score is not None:
            memories = [m for m in memories if (m.score or 0) >= request.min_score]
        if request.types:
            memories = [m for m in memories if m.metadata.type in request.types]

        return MemorySearchResult(
            memories=memories[: request.limit or 5],
            total_found=len(results),
            search_time_ms=int((time.monotonic() - started) * 1000),
        )

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        found = self.get_memory_with_scope(memory_id)
        return found[0] if found else None

    def get_memory_with_scope(self, memory_id: str) -> Optional[Tuple[Memory, Optional[ScopeKey]]]:
        """Fetch one memory together with the scope it is stored under (``None`` if unknown)."""
        try:
            record = self.client.get(memory_id)
        except Exception as e:
            logger.warning(f"Memory get failed for {memory_id}: {e}")
            return None
        if not record:
            return None
        scope = record_scope(record)
        return _to_memory(record, _scope_defaults(scope)), scope

    def list_memories(
        self,
        agency_id: str,
        user_id: str,
        page: int = 1,
        page_size: int = 50,
        client_id: Optional[str] = None,
    ) -> MemoryListResponse:
        scope = build_scoped_key(agency_id, user_id, client_id)
        cache_key = f"{LIST_CACHE_PREFIX}{scope}:{page}:{page_size}"

        if self.cache is not None:
            cached = self.cache.get_json(cache_key)
            if cached is not None:
                return MemoryListResponse.model_validate(cached)

        try:
            result = self.client.list(scope, page=page, page_size=page_size)
        except Exception as e:
            logger.warning(f"Memory list failed for {scope}: {e}")
            return MemoryListResponse(page=page, page_size=page_size, total=0)

        defaults = {"agencyId": agency_id, "clientId": client_id, "userId": user_id}
        memories = [_to_memory(r, defaults) for r in result.get("results") or []]
        response = MemoryListResponse(
            memories=memories,
            page=page,
            page_size=page_size,
            total=result.get("count") or len(memories),
        )

        if self.cache is not None:
            self.cache.set_json(cache_key, response.model_dump(mode="json"), self.cache_ttl_seconds)
        return response

    def update_memory(
        self,
        memory_id: str,
        content: str,
        metadata: Optional[MemoryMetadata] = None,
        scope: Optional[ScopeKey] = None,
    ) -> Optional[Memory]:
        """Replace a memory's content; the envelope is rewritten only when metadata is given.

        Pass ``scope`` (or rely on the store echoing it) so cached lists of that
        scope are dropped.
        """
        payload = (
            encode_memory_content(content, metadata.model_dump(by_alias=True, exclude_none=True))
            if metadata is not None
            else content
        )
        try:
            record = self.client.update(memory_id, payload)
        except Exception as e:
            logger.warning(f"Memory update failed for {memory_id}: {e}")
            return None
        if not record:
            return None
        scope = scope or record_scope(record)
        if scope is not None:
            self._invalidate(scope.serialize())
        return _to_memory({"id": memory_id, **record}, _scope_defaults(scope))

    def delete_memory(self, memory_id: str, scope: Optional[ScopeKey] = None) -> bool:
        try:
            success = self.client.delete(memory_id)
        except Exception as e:
            logger.warning(f"Memory delete failed for {memory_id}: {e}")
            return False
        if success and scope is not None:
            self._invalidate(scope.serialize())
        return success

    def clear_memories(self, agency_id: str, user_id: str, client_id: Optional[str] = None) -> bool:
        """Delete every memory stored under one scope key."""
        scope = build_scoped_key(agency_id, user_id, client_id)
        try:
            success = self.client.delete_all(scope)
        except Exception as e:
            logger.warning(f"Memory clear failed for {scope}: {e}")
            return False
        self._invalidate(scope)
        return success

    def get_memory_history(self, memory_id: str) -> List[MemoryHistoryEntry]:
        try:
            rows = self.client.history(memory_id)
        except Exception as e:
            logger.warning(f"Memory history failed for {memory_id}: {e}")
            return []
        return [
            MemoryHistoryEntry(
                id=str(r.get("id")),
                memory_id=str(r.get("memory_id") or memory_id),
                old_content=r.get("old_memory") or "",
                new_content=r.get("new_memory") or "",
                event=r.get("event") or "updated",
                timestamp=_parse_ts(r.get("created_at")),
            )
            for r in rows
        ]

    def get_entities(self) -> List[MemoryEntity]:
        try:
            rows = self.client.entities()
        except Exception as e:
            logger.warning(f"Memory entities failed: {e}")
            return []
        return [
            MemoryEntity(
                type=r.get("type") or "user",
                id=str(r.get("id")),
                name=r.get("name"),
                memory_count=r.get("count"),
            )
            for r in rows
        ]

    # ---- Convenience helpers ----

    def get_recent_memories(
        self, agency_id: str, user_id: str, limit: int = 10, client_id: Optional[str] = None
    ) -> List[Memory]:
        return self.search_memories(MemorySearchRequest(
            query="recent conversations and decisions",
            agency_id=agency_id, user_id=user_id, client_id=client_id, limit=limit,
        )).memories

    def get_memories_by_type(
        self, agency_id: str, user_id: str, memory_type: str, limit: int = 10,
        client_id: Optional[str] = None,
    ) -> List[Memory]:
        return self.search_memories(MemorySearchRequest(
            query=f"{memory_type} memory",
            agency_id=agency_id, user_id=user_id, client_id=client_id,
            limit=limit, types=[memory_type],
        )).memories

    def get_important_memories(
        self, agency_id: str, user_id: str, limit: int = 5, client_id: Optional[str] = None
    ) -> List[Memory]:
        memories = self.search_memories(MemorySearchRequest(
            query="important decisions and preferences",
            agency_id=agency_id, user_id=user_id, client_id=client_id, limit=limit,
        )).memories
        return [m for m in memories if m.metadata.importance == "high"]

    def store_conversation_summary(
        self, agency_id: str, user_id: str, session_id: str, summary: str,
        topics: List[str], client_id: Optional[str] = None,
    ) -> Optional[Memory]:
        return self.add_memory(MemoryAddRequest(
            content=summary, agency_id=agency_id, user_id=user_id, client_id=client_id,
            session_id=session_id, type="conversation", topic=", ".join(topics),
            entities=topics, importance="medium",
        ))

    def store_decision(
        self, agency_id: str, user_id: str, decision: str, context: str,
        client_id: Optional[str] = None,
    ) -> Optional[Memory]:
        return self.add_memory(MemoryAddRequest(
            content=f"Decision: {decision}. Context: {context}",
            agency_id=agency_id, user_id=user_id, client_id=client_id,
            type="decision", importance="high",
        ))

    def store_preference(
        self, agency_id: str, user_id: str, preference: str, client_id: Optional[str] = None
    ) -> Optional[Memory]:
        return self.add_memory(MemoryAddRequest(
            content=f"Preference: {preference}",
            agency_id=agency_id, user_id=user_id, client_id=client_id,
            type="preference", importance="high",
        ))

    def store_task(
        self, agency_id: str, user_id: str, task: str, due_context: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> Optional[Memory]:
        content = f"Task: {task}. Due: {due_context}" if due_context else f"Task: {task}"
        return self.add_memory(MemoryAddRequest(
            content=content, agency_id=agency_id, user_id=user_id, client_id=client_id,
            type="task", importance="medium",
        ))

    def get_stats(self, agency_id: str, user_id: str, client_id: Optional[str] = None) -> MemoryStats:
        """Estimate counts by searching each memory type."""
        by_type = {t: 0 for t in MEMORY_TYPES}
        by_importance = {"low": 0, "medium": 0, "high": 0}
        for memory_type in MEMORY_TYPES:
            memories = self.search_memories(MemorySearchRequest(
                query=memory_type, agency_id=agency_id, user_id=user_id,
                client_id=client_id, limit=100, types=[memory_type],
            )).memories
            by_type[memory_type] = len(memories)
            for m in memories:
                by_importance[m.metadata.importance or "medium"] += 1
        return MemoryStats(
            total_memories=sum(by_type.values()),
            by_type=by_type,
            by_importance=by_importance,
        )

    def close(self) -> None:
        self.client.close()

    def _invalidate(self, scope: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_prefix(f"{LIST_CACHE_PREFIX}{scope}:")
