"""
variant_sdk.tier3_platform.assignments
─────────────────────────────────────────
Durable user → variant assignments with a read-through memory cache.

One document per ``(user_id, experiment_id)`` keyed ``"<userId>_<experimentId>"``.
``create`` is a conditional write against the document store: the first
writer wins and every later writer gets AssignmentExistsError, which is how
"assign once" holds across processes and devices. Memory is only populated
from data the store has confirmed.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from variant_sdk.tier0_core.config import EngineSettings, get_settings
from variant_sdk.tier0_core.errors import AssignmentExistsError, ConflictError, StoreError
from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier2_reliability.cache import MemoryCache
from variant_sdk.tier2_reliability.documents import Document, DocumentStore

logger = get_logger(__name__)


def assignment_key(user_id: str, experiment_id: str) -> str:
    return f"{user_id}_{experiment_id}"


class UserExperimentAssignment(BaseModel):
    """The permanent binding of one user to one variant of one experiment."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=1)
    experiment_id: str = Field(alias="experimentId", min_length=1)
    variant_id: str = Field(alias="variantId", min_length=1)
    assigned_at: datetime = Field(alias="assignedAt")

    @property
    def id(self) -> str:
        return assignment_key(self.user_id, self.experiment_id)

    def to_document(self) -> Document:
        return {"id": self.id, **self.model_dump(mode="json", by_alias=True)}

    @classmethod
    def from_document(cls, document: Document) -> "UserExperimentAssignment":
        return cls.model_validate(document)


class AssignmentStore:
    """
    Read-through cache plus persistent store for assignments.

    Backend failures surface as StoreError; callers decide how much of that
    to absorb.
    """

    def __init__(
        self,
        documents: DocumentStore,
        *,
        settings: EngineSettings | None = None,
    ) -> None:
        self._documents = documents
        self._memory: MemoryCache[str, UserExperimentAssignment] = MemoryCache()
        self.collection = (settings or get_settings()).assignments_collection

    async def get(self, user_id: str, experiment_id: str) -> UserExperimentAssignment | None:
        key = assignment_key(user_id, experiment_id)
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        try:
            document = await self._documents.get_document(self.collection, key)
        except Exception as exc:
            raise StoreError(f"reading assignment {key} failed: {exc}", doc_id=key) from exc
        if document is None:
            return None

        try:
            assignment = UserExperimentAssignment.from_document(document)
        except PydanticValidationError as exc:
            raise StoreError(f"assignment {key} is corrupt", doc_id=key) from exc
        self._memory.set(key, assignment)
        return assignment

    async def create(self, assignment: UserExperimentAssignment) -> None:
        """
        Persist a brand-new assignment if none exists yet.

        Raises AssignmentExistsError if another writer got there first and
        StoreError on any other backend failure. Memory is untouched on
        failure so the next call retries persistence.
        """
        key = assignment.id
        try:
            await self._documents.create_document(self.collection, key, assignment.to_document())
        except ConflictError as exc:
            raise AssignmentExistsError(f"assignment {key} already exists", doc_id=key) from exc
        except Exception as exc:
            raise StoreError(f"writing assignment {key} failed: {exc}", doc_id=key) from exc
        self._memory.set(key, assignment)

    async def overwrite(self, assignment: UserExperimentAssignment) -> None:
        """Unconditional write. Administrative use only (QA overrides)."""
        key = assignment.id
        try:
            await self._documents.set_document(self.collection, key, assignment.to_document())
        except Exception as exc:
            self._memory.delete(key)
            raise StoreError(f"overwriting assignment {key} failed: {exc}", doc_id=key) from exc
        self._memory.set(key, assignment)

    async def reset(self, user_id: str, experiment_id: str) -> None:
        """Forget an assignment in memory and in the store (support tooling, tests)."""
        key = assignment_key(user_id, experiment_id)
        self._memory.delete(key)
        try:
            await self._documents.delete_document(self.collection, key)
        except Exception as exc:
            raise StoreError(f"deleting assignment {key} failed: {exc}", doc_id=key) from exc
        logger.info("assignment.reset", user_id=user_id, experiment_id=experiment_id)


__all__ = ["UserExperimentAssignment", "AssignmentStore", "assignment_key"]
