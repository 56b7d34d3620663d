"""File-backed conversation ledger: one JSON document per conversation key."""
from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.domain.errors import PersistenceError
from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, ConversationRecord, Message
)

logger = structlog.get_logger(__name__)


# -----------------------------
# Helpers
# -----------------------------
def _safe_key(key: str) -> str:
    # Keep it readable but filesystem-safe.
    s = re.sub(r"[^\w.\-@]+", "_", key.strip() or "default")
    return s[:128]


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


# -----------------------------
# FileLedger
# -----------------------------
class FileLedger:
    """Key/value JSON ledger on disk.

    Layout:
        root/
          <key>.json              # one document per key
          <key>.corrupt.<ts>.json # unreadable documents moved aside
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        return self.root / f"{_safe_key(key)}.json"

    def read(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the document stored under key, or None."""
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            # Corruption fallback: keep a backup and treat as absent.
            with self._lock:
                bad = path.with_suffix(f".corrupt.{int(time.time())}.json")
                path.rename(bad)
            logger.warning("Corrupt ledger document moved aside", key=key, backup=str(bad))
            return None
        return data if isinstance(data, dict) else None

    def write(self, key: str, document: Dict[str, Any]) -> None:
        with self._lock:
            _atomic_write_text(self._path(key), json.dumps(document, ensure_ascii=False, indent=2))

    def delete(self, key: str) -> bool:
        with self._lock:
            path = self._path(key)
            existed = path.exists()
            path.unlink(missing_ok=True)
            return existed

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json") if ".corrupt." not in p.name)


class FileConversationRepository(ConversationRepository):
    """Conversation repository over a :class:`FileLedger`; file I/O runs in worker threads."""

    def __init__(self, ledger: FileLedger) -> None:
        self.ledger = ledger

    async def get_by_user(self, identity: ConversationIdentity) -> Optional[ConversationRecord]:
        try:
            document = await asyncio.to_thread(self.ledger.read, identity.key)
        except OSError as e:
            raise PersistenceError("read", identity.key, str(e)) from e
        if document is None:
            return None
        try:
            return ConversationRecord.from_document(document)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError("decode", identity.key, str(e)) from e

    async def save(
        self,
        identity: ConversationIdentity,
        messages: List[Message],
        last_activity: float
    ) -> None:
        record = ConversationRecord(
            user_id=identity.user_id,
            scope_id=identity.scope_id,
            messages=messages,
            last_activity=last_activity,
            updated_at=time.time(),
        )
        try:
            await asyncio.to_thread(self.ledger.write, identity.key, record.to_document())
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError("write", identity.key, str(e)) from e

    async def delete(self, identity: ConversationIdentity) -> bool:
        try:
            return await asyncio.to_thread(self.ledger.delete, identity.key)
        except OSError as e:
            raise PersistenceError("delete", identity.key, str(e)) from e

    async def list_recent(self, since: float, limit: int = 100) -> List[ConversationRecord]:
        records: List[ConversationRecord] = []
        for key in await asyncio.to_thread(self.ledger.keys):
            try:
                document = await asyncio.to_thread(self.ledger.read, key)
            except OSError as e:
                raise PersistenceError("read", key, str(e)) from e
            if document is None:
                continue
            try:
                record = ConversationRecord.from_document(document)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping undecodable conversation document", key=key)
                continue
            if record.last_activity >= since:
                records.append(record)
        records.sort(key=lambda r: r.last_activity, reverse=True)
        return records[:limit]
