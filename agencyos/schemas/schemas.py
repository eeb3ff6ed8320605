"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime


# ---- Auth context ----
class AuthContextOut(BaseModel):
    id: str
    email: Optional[str] = None
    agencyId: str
    roleId: Optional[str] = None
    isOwner: bool = False

class MeResponse(BaseModel):
    user: AuthContextOut
    hierarchy_level: int
    permissions: List[str]
    client_scope: Literal["all", "restricted"]
    accessible_client_ids: List[str] = []


# ---- Roles ----
class RoleOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    hierarchy_level: Optional[int] = None
    is_system: bool
    permissions: List[str] = []

class RoleAssignRequest(BaseModel):
    role_id: str


# ---- Clients ----
class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    stage: str = "Lead"
    health_status: Literal["green", "yellow", "red"] = "green"
    notes: Optional[str] = None

class ClientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    stage: Optional[str] = None
    health_status: Optional[Literal["green", "yellow", "red"]] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

class ClientOut(BaseModel):
    id: str
    name: str
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    stage: str
    health_status: str
    notes: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Client access grants ----
class ClientGrantRequest(BaseModel):
    user_id: str
    client_id: str
    permission: Literal["read", "write"] = "read"

class ClientRevokeRequest(BaseModel):
    user_id: str
    client_id: str

class ClientGrantOut(BaseModel):
    user_id: str
    client_id: str
    permission: str
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None


# ---- Memory ----
MEMORY_TYPES = ("conversation", "decision", "preference", "project", "insight", "task")

class MemoryMetadata(BaseModel):
    """Scoping identifiers plus tags. Serialized with camelCase keys inside the envelope."""
    agency_id: str = Field("", alias="agencyId")
    client_id: Optional[str] = Field(None, alias="clientId")
    user_id: str = Field("", alias="userId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    type: str = "conversation"
    topic: Optional[str] = None
    entities: Optional[List[str]] = None
    importance: Optional[Literal["low", "medium", "high"]] = None

    class Config:
        populate_by_name = True

class Memory(BaseModel):
    id: str
    content: str
    metadata: MemoryMetadata
    score: Optional[float] = None
    created_at: datetime
    updated_at: datetime

class MemoryAddRequest(BaseModel):
    content: str
    agency_id: str
    user_id: str
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    type: str = "conversation"
    topic: Optional[str] = None
    entities: Optional[List[str]] = None
    importance: Literal["low", "medium", "high"] = "medium"

class MemorySearchRequest(BaseModel):
    query: str
    agency_id: str
    user_id: str
    client_id: Optional[str] = None
    limit: int = 5
    min_score: Optional[float] = None
    types: Optional[List[str]] = None

class MemorySearchResult(BaseModel):
    memories: List[Memory] = []
    total_found: int = 0
    search_time_ms: int = 0

class MemoryListResponse(BaseModel):
    memories: List[Memory] = []
    page: int
    page_size: int
    total: int

class MemoryHistoryEntry(BaseModel):
    id: str
    memory_id: str
    old_content: str = ""
    new_content: str = ""
    event: str
    timestamp: datetime

class MemoryEntity(BaseModel):
    type: str
    id: str
    name: Optional[str] = None
    memory_count: Optional[int] = None

class MemoryStats(BaseModel):
    total_memories: int
    by_type: Dict[str, int]
    by_importance: Dict[str, int]

class RecallDetection(BaseModel):
    is_recall_query: bool
    confidence: float
    extracted_topic: Optional[str] = None
    time_reference: Optional[str] = None
    suggested_search_query: str

class MemoryInjection(BaseModel):
    context_block: str = ""
    memories: List[Memory] = []
    relevance_explanation: str


# ---- Memory API bodies ----
class MemoryCreate(BaseModel):
    content: str = Field(..., min_length=1)
    type: Literal["conversation", "decision", "preference", "project", "insight", "task"]
    importance: Literal["low", "medium", "high"] = "high"
    topic: Optional[str] = None
    client_id: Optional[str] = None

class MemoryUpdate(BaseModel):
    memory_id: str
    content: str = Field(..., min_length=1)

class MemoryDelete(BaseModel):
    memory_id: Optional[str] = None
    delete_all: bool = False
    client_id: Optional[str] = None


# ---- Audit ----
class AuditLogOut(BaseModel):
    id: str
    actor_email: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    old_value_json: Optional[str] = None
    new_value_json: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Generic ----
class MessageResponse(BaseModel):
    message: str
    detail: Optional[Any] = None
