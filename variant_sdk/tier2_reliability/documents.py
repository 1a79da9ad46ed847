"""
variant_sdk.tier2_reliability.documents
─────────────────────────────────────────
Document store abstraction: the system of record for experiment documents
and user assignments. Provides a unified interface for scanning a
collection and reading/writing single JSON documents regardless of the
underlying backend (Firestore, a database, local files, memory).

``create_document`` is a conditional write: it succeeds only if no document
with that id exists and raises ConflictError otherwise. The assignment
store relies on this to keep "assign once" true across processes.

Configure via: VARIANT_DOCUMENTS_BACKEND=memory|local
               VARIANT_DOCUMENTS_PATH (local backend)
"""
from __future__ import annotations

import asyncio
import copy
import json
import os
import uuid
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from variant_sdk.tier0_core.config import get_settings
from variant_sdk.tier0_core.errors import ConflictError
from variant_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

Document = dict[str, Any]


@runtime_checkable
class DocumentStore(Protocol):
    async def list_documents(self, collection: str) -> list[Document]: ...

    async def get_document(self, collection: str, doc_id: str) -> Document | None: ...

    async def create_document(self, collection: str, doc_id: str, data: Document) -> None: ...

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None: ...

    async def delete_document(self, collection: str, doc_id: str) -> None: ...


class InMemoryDocumentStore:
    """
    Process-local store for tests and single-process use.

    ``latency`` inserts an await before each operation so concurrent callers
    interleave the way they would against a remote backend. Setting
    ``fail_reads`` / ``fail_writes`` makes the matching operations raise
    ConnectionError.
    """

    def __init__(
        self,
        collections: dict[str, dict[str, Document]] | None = None,
        *,
        latency: float = 0.0,
    ) -> None:
        self._collections: dict[str, dict[str, Document]] = copy.deepcopy(collections or {})
        self.latency = latency
        self.fail_reads = False
        self.fail_writes = False
        self.create_calls = 0

    async def _io(self, write: bool) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)
        if write and self.fail_writes:
            raise ConnectionError("document store unavailable for writes")
        if not write and self.fail_reads:
            raise ConnectionError("document store unavailable for reads")

    async def list_documents(self, collection: str) -> list[Document]:
        await self._io(write=False)
        docs = self._collections.get(collection, {})
        return [{"id": doc_id, **copy.deepcopy(data)} for doc_id, data in docs.items()]

    async def get_document(self, collection: str, doc_id: str) -> Document | None:
        await self._io(write=False)
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def create_document(self, collection: str, doc_id: str, data: Document) -> None:
        self.create_calls += 1
        await self._io(write=True)
        docs = self._collections.setdefault(collection, {})
        # no await between the check and the insert: atomic on the event loop
        if doc_id in docs:
            raise ConflictError(f"Document {collection}/{doc_id} already exists", collection=collection, doc_id=doc_id)
        docs[doc_id] = copy.deepcopy(data)

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None:
        await self._io(write=True)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await self._io(write=True)
        self._collections.get(collection, {}).pop(doc_id, None)

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))


class LocalDocumentStore:
    """
    Filesystem-backed store: one JSON file per document under
    ``<base>/<collection>/<quoted id>.json``. Survives process restarts.

    Conditional creates write a temp file and hard-link it into place; the
    link fails if the target exists, so concurrent processes sharing the
    directory cannot both win.
    """

    def __init__(self, base_path: str | None = None) -> None:
        self._base = Path(base_path or get_settings().documents_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _dir(self, collection: str) -> Path:
        path = self._base / quote(collection, safe="")
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _path(self, collection: str, doc_id: str) -> Path:
        return self._dir(collection) / f"{quote(doc_id, safe='')}.json"

    def _write_temp(self, collection: str, data: Document) -> Path:
        tmp = self._dir(collection) / f".tmp-{uuid.uuid4().hex}"
        tmp.write_text(json.dumps(data, default=str), encoding="utf-8")
        return tmp

    def _list_sync(self, collection: str) -> list[Document]:
        docs: list[Document] = []
        for path in sorted(self._dir(collection).glob("*.json")):
            doc_id = unquote(path.stem)
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("documents.unreadable", collection=collection, doc_id=doc_id, error=str(exc))
                continue
            if isinstance(data, dict):
                docs.append({"id": doc_id, **data})
        return docs

    def _get_sync(self, collection: str, doc_id: str) -> Document | None:
        path = self._path(collection, doc_id)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def _create_sync(self, collection: str, doc_id: str, data: Document) -> None:
        tmp = self._write_temp(collection, data)
        try:
            os.link(tmp, self._path(collection, doc_id))
        except FileExistsError:
            raise ConflictError(
                f"Document {collection}/{doc_id} already exists", collection=collection, doc_id=doc_id
            ) from None
        finally:
            tmp.unlink(missing_ok=True)

    def _set_sync(self, collection: str, doc_id: str, data: Document) -> None:
        tmp = self._write_temp(collection, data)
        os.replace(tmp, self._path(collection, doc_id))

    def _delete_sync(self, collection: str, doc_id: str) -> None:
        self._path(collection, doc_id).unlink(missing_ok=True)

    async def list_documents(self, collection: str) -> list[Document]:
        return await asyncio.to_thread(self._list_sync, collection)

    async def get_document(self, collection: str, doc_id: str) -> Document | None:
        return await asyncio.to_thread(self._get_sync, collection, doc_id)

    async def create_document(self, collection: str, doc_id: str, data: Document) -> None:
        await asyncio.to_thread(self._create_sync, collection, doc_id, data)

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None:
        await asyncio.to_thread(self._set_sync, collection, doc_id, data)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, collection, doc_id)


def build_document_store() -> DocumentStore:
    """Construct the backend selected by VARIANT_DOCUMENTS_BACKEND."""
    settings = get_settings()
    backend = settings.documents_backend
    if backend in ("memory", "mock"):
        return InMemoryDocumentStore()
    if backend == "local":
        return LocalDocumentStore(settings.documents_path)
    raise ValueError(
        f"Unknown VARIANT_DOCUMENTS_BACKEND: {backend!r}. Supported: memory, local"
    )


__all__ = [
    "Document", "DocumentStore", "InMemoryDocumentStore", "LocalDocumentStore",
    "build_document_store",
]
