"""Scope keys for the cross-session memory store.

A scope key partitions the external store by tenant, client and user::

    agency::_::_          agency-wide
    agency::client::_     client-wide
    agency::client::user  user-specific

``_`` marks a wildcard segment. Segments are typed so that a real id can
never be mistaken for the wildcard.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

SEPARATOR = "::"
WILDCARD_TOKEN = "_"


@dataclass(frozen=True)
class Wildcard:
    def serialize(self) -> str:
        return WILDCARD_TOKEN


@dataclass(frozen=True)
class Specific:
    id: str

    def __post_init__(self):
        if not self.id:
            raise ValueError("Scope segment id must not be empty")
        if self.id == WILDCARD_TOKEN:
            raise ValueError(f"'{WILDCARD_TOKEN}' is reserved for wildcard segments")
        if SEPARATOR in self.id:
            raise ValueError(f"Scope segment id must not contain '{SEPARATOR}'")

    def serialize(self) -> str:
        return self.id


ScopeSegment = Union[Specific, Wildcard]

WILDCARD = Wildcard()


def segment(value: Optional[str]) -> ScopeSegment:
    """Falsy values become the wildcard."""
    return Specific(value) if value else WILDCARD


@dataclass(frozen=True)
class ScopeKey:
    agency: Specific
    client: ScopeSegment = WILDCARD
    user: ScopeSegment = WILDCARD

    def serialize(self) -> str:
        return SEPARATOR.join(
            (self.agency.serialize(), self.client.serialize(), self.user.serialize())
        )

    def __str__(self) -> str:
        return self.serialize()

    @property
    def granularity(self) -> str:
        if isinstance(self.user, Specific):
            return "user"
        if isinstance(self.client, Specific):
            return "client"
        return "agency"

    @classmethod
    def parse(cls, raw: str) -> "ScopeKey":
        parts = raw.split(SEPARATOR)
        if len(parts) != 3 or not parts[0] or parts[0] == WILDCARD_TOKEN:
            raise ValueError(f"Malformed scope key: {raw!r}")

        def _parse(part: str) -> ScopeSegment:
            return WILDCARD if part == WILDCARD_TOKEN else Specific(part)

        return cls(Specific(parts[0]), _parse(parts[1]), _parse(parts[2]))


def build_scoped_key(agency_id: str, user_id: Optional[str], client_id: Optional[str] = None) -> str:
    """``agency::client-or-_::user-or-_``."""
    return ScopeKey(Specific(agency_id), segment(client_id), segment(user_id)).serialize()


def build_agency_scope(agency_id: str) -> str:
    return ScopeKey(Specific(agency_id)).serialize()


def build_client_scope(agency_id: str, client_id: str) -> str:
    return ScopeKey(Specific(agency_id), Specific(client_id)).serialize()


# ---- Payload envelope ----

def encode_memory_content(content: str, metadata: Dict[str, Any]) -> str:
    """Wrap content and its metadata into the JSON envelope stored as the payload."""
    return json.dumps({"content": content, "metadata": metadata}, default=str)


def decode_memory_content(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Inverse of ``encode_memory_content``.

    Entries written before the envelope existed are plain text; anything that
    does not parse as an envelope is returned as raw content with no metadata.
    """
    if raw.startswith("{") and '"content"' in raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw, {}
        if isinstance(parsed, dict) and isinstance(parsed.get("content"), str):
            metadata = parsed.get("metadata")
            return parsed["content"], metadata if isinstance(metadata, dict) else {}
    return raw, {}
