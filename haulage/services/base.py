"""Collaborators shared by the domain services."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from haulage.clock import Clock
from haulage.config import Settings, settings
from haulage.domain.enums import ReceiptKind
from haulage.domain.errors import PreconditionFailed
from haulage.infrastructure.audit import AuditSink
from haulage.infrastructure.models import ReceiptModel
from haulage.infrastructure.receipts import ReceiptStorage
from haulage.infrastructure.repositories import ReceiptRepository
from haulage.infrastructure.store import Store
from haulage.schemas import ReceiptUpload


class BaseService:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        audit: AuditSink,
        receipts: Optional[ReceiptStorage] = None,
        config: Settings = settings,
    ):
        self.store = store
        self.clock = clock
        self.audit = audit
        self.receipts = receipts
        self.config = config

    def today(self) -> date:
        return self.clock.now().date()

    async def _store_receipt(
        self, session: AsyncSession, upload: ReceiptUpload, kind: ReceiptKind, folder: str
    ) -> ReceiptModel:
        """Upload the file, then record it.  An upload error aborts the caller."""
        if self.receipts is None:
            raise PreconditionFailed("Receipt storage is not configured")
        stored = await self.receipts.store(upload.content, folder, upload.filename)
        return await ReceiptRepository(session).create(
            ReceiptModel(
                kind=kind,
                url=stored.url,
                ref=stored.ref,
                original_filename=upload.filename,
            )
        )

    async def _audit(
        self,
        actor_id: Any,
        action: str,
        entity_kind: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
    ) -> None:
        await self.audit.record(actor_id, action, entity_kind, entity_id, before, after)
