"""
Persistence gateway for curriculum records.

Two implementations share one contract: a Supabase table (production) and an
in-process dictionary (tests and the local CLI). Every storage failure is
raised as PersistenceError.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from alignment_api.analysis_schema import AnalysisStatus, CurriculumRecord
from alignment_api.config import AnalysisSettings
from alignment_api.errors import PersistenceError

try:
    from supabase import Client, create_client
    SUPABASE_AVAILABLE = True
except ImportError:
    SUPABASE_AVAILABLE = False
    Client = None  # type: ignore
    create_client = None  # type: ignore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name",
    "school_tag",
    "original_file_name",
    "storage_address",
    "analysis_status",
    "analysis_error",
    "analysis_results",
    "last_analysis_triggered_at",
    "last_analysis_completed_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise PersistenceError(f"Cannot update unknown curriculum fields: {sorted(unknown)}")


class CurriculumRepository(ABC):
    @abstractmethod
    def find_by_id(self, curriculum_id: str) -> Optional[CurriculumRecord]:
        ...

    @abstractmethod
    def update(self, curriculum_id: str, fields: Dict[str, Any]) -> CurriculumRecord:
        ...

    @abstractmethod
    def create(
        self,
        name: str,
        original_file_name: str,
        storage_address: str,
        school_tag: Optional[str] = None,
    ) -> CurriculumRecord:
        ...


class InMemoryCurriculumRepository(CurriculumRepository):
    """Thread-safe dictionary store."""

    def __init__(self):
        self._records: Dict[str, CurriculumRecord] = {}
        self._lock = threading.Lock()

    def find_by_id(self, curriculum_id):
        with self._lock:
            record = self._records.get(curriculum_id)
            return record.model_copy(deep=True) if record else None

    def update(self, curriculum_id, fields):
        _check_fields(fields)
        with self._lock:
            record = self._records.get(curriculum_id)
            if record is None:
                raise PersistenceError(f"Curriculum {curriculum_id} not found")
            data = record.model_dump()
            data.update(fields)
            data["updated_at"] = utcnow()
            updated = CurriculumRecord.model_validate(data)
            self._records[curriculum_id] = updated
            return updated.model_copy(deep=True)

    def create(self, name, original_file_name, storage_address, school_tag=None):
        now = utcnow()
        record = CurriculumRecord(
            id=str(uuid.uuid4()),
            name=name,
            school_tag=school_tag,
            original_file_name=original_file_name,
            storage_address=storage_address,
            analysis_status=AnalysisStatus.NOT_STARTED,
            uploaded_at=now,
            updated_at=now,
        )
        with self._lock:
            self._records[record.id] = record
        logger.info("Registered curriculum %s (%s)", record.id, original_file_name)
        return record.model_copy(deep=True)


class SupabaseCurriculumRepository(CurriculumRepository):
    """Records stored in a Supabase table with snake_case columns."""

    def __init__(self, client, table: str = "curricula"):
        self.client = client
        self.table = table

    @classmethod
    def from_settings(cls, settings: AnalysisSettings) -> "SupabaseCurriculumRepository":
        if not SUPABASE_AVAILABLE:
            raise PersistenceError("supabase package is required for CURRICULUM_STORE=supabase")
        if not settings.supabase_url or not settings.supabase_key:
            raise PersistenceError("SUPABASE_URL and a Supabase key are required for CURRICULUM_STORE=supabase")
        try:
            client = create_client(settings.supabase_url, settings.supabase_key)
        except Exception as exc:
            raise PersistenceError(f"Failed to initialize Supabase client: {exc}") from exc
        return cls(client, settings.curricula_table)

    def find_by_id(self, curriculum_id):
        try:
            response = self.client.table(self.table).select("*").eq("id", curriculum_id).limit(1).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to load curriculum {curriculum_id}: {exc}") from exc
        rows = response.data or []
        return CurriculumRecord.model_validate(rows[0]) if rows else None

    def update(self, curriculum_id, fields):
        _check_fields(fields)
        payload = {key: _serialize_value(value) for key, value in fields.items()}
        payload["updated_at"] = utcnow().isoformat()
        try:
            response = self.client.table(self.table).update(payload).eq("id", curriculum_id).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to update curriculum {curriculum_id}: {exc}") from exc
        rows = response.data or []
        if not rows:
            raise PersistenceError(f"Curriculum {curriculum_id} not found")
        return CurriculumRecord.model_validate(rows[0])

    def create(self, name, original_file_name, storage_address, school_tag=None):
        now = utcnow().isoformat()
        payload = {
            "id": str(uuid.uuid4()),
            "name": name,
            "school_tag": school_tag,
            "original_file_name": original_file_name,
            "storage_address": storage_address,
            "analysis_status": AnalysisStatus.NOT_STARTED.value,
            "uploaded_at": now,
            "updated_at": now,
        }
        try:
            response = self.client.table(self.table).insert(payload).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to create curriculum: {exc}") from exc
        rows = response.data or [payload]
        return CurriculumRecord.model_validate(rows[0])


def build_repository(settings: AnalysisSettings) -> CurriculumRepository:
    if settings.curriculum_store == "memory":
        logger.info("Using in-memory curriculum store")
        return InMemoryCurriculumRepository()
    return SupabaseCurriculumRepository.from_settings(settings)
