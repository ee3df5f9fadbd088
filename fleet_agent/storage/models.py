"""
Data models for storage layer.

Defines persisted entities and the derived usage summary.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Thread:
    """A persisted conversation context owned by exactly one resource."""
    id: str
    resource_id: str
    created_at: datetime
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resourceId": self.resource_id,
            "title": self.title,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ThreadMessage:
    """One turn of conversation memory stored against a thread."""
    thread_id: str
    role: str
    content: str
    created_at: datetime


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of the tokens consumed by one agent invocation.

    Append-only rows; once written they are never modified or deleted.
    total_tokens is always input_tokens + output_tokens.
    """
    id: int
    agent_id: str
    thread_id: Optional[str]
    model_id: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cache_read_tokens: int
    cache_write_tokens: int
    cost: Optional[float]
    timestamp: datetime


@dataclass(frozen=True)
class UsageSummary:
    """Aggregate over a filtered set of usage records, recomputed on demand."""
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cache_write_tokens: int = 0
    total_cost: Optional[float] = None
    cache_hit_rate: Optional[float] = None
    requests: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used by the HTTP API."""
        return {
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalTokens": self.total_tokens,
            "totalCacheReadTokens": self.total_cache_read_tokens,
            "totalCacheWriteTokens": self.total_cache_write_tokens,
            "totalCost": self.total_cost,
            "cacheHitRate": self.cache_hit_rate,
            "requests": self.requests,
        }
