"""Receipt file storage."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Protocol

from haulage.domain.entities import StoredReceipt


class ReceiptStorage(Protocol):
    async def store(self, data: bytes, folder: str, filename: str) -> StoredReceipt: ...


class LocalReceiptStorage:
    """Stores receipts as files below *root*, one sub-directory per folder."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    async def store(self, data: bytes, folder: str, filename: str) -> StoredReceipt:
        ref = f"{folder}/{uuid.uuid4().hex}_{Path(filename).name}"
        path = self.root / ref
        await asyncio.to_thread(self._write, path, data)
        return StoredReceipt(url=path.resolve().as_uri(), ref=ref)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
