"""
Audit sinks.

Every state-changing operation reports who did what to which entity, with
before/after snapshots.  Records are written after the business
transaction commits; a failing sink is logged and never undoes the
transition.
"""

from __future__ import annotations

import enum
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

from haulage.clock import utcnow

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def record(
        self,
        actor_id: Any,
        action: str,
        entity_kind: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
    ) -> None: ...


def snapshot(entity: Any, *fields: str) -> dict:
    """Plain-value copy of *fields* of *entity*, fit for JSON."""
    return {name: _plain(getattr(entity, name, None)) for name in fields}


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class RedisAuditSink:
    """Appends one entry per record to a Redis stream (``XADD``)."""

    def __init__(self, client: aioredis.Redis, stream: str = "haulage:audit"):
        self.redis = client
        self.stream = stream

    async def record(
        self,
        actor_id: Any,
        action: str,
        entity_kind: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
    ) -> None:
        fields = {
            "at": utcnow().isoformat(),
            "actor_id": "" if actor_id is None else str(actor_id),
            "action": action,
            "entity_kind": entity_kind,
            "entity_id": str(entity_id),
            "before": json.dumps(before or {}),
            "after": json.dumps(after or {}),
        }
        try:
            await self.redis.xadd(self.stream, fields)
        except Exception:
            logger.exception(
                "Audit write failed for %s %s %s", action, entity_kind, entity_id
            )


class LoggingAuditSink:
    """Writes audit records to the application log."""

    def __init__(self, name: str = "haulage.audit"):
        self.logger = logging.getLogger(name)

    async def record(
        self,
        actor_id: Any,
        action: str,
        entity_kind: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
    ) -> None:
        self.logger.info(
            "actor=%s action=%s %s=%s before=%s after=%s",
            actor_id,
            action,
            entity_kind,
            entity_id,
            json.dumps(before or {}),
            json.dumps(after or {}),
        )
