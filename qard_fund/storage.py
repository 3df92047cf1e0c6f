"""
Storage Backend Module

Provides the abstract storage interface the fund core writes through, and an
in-memory implementation used for tests and local runs. Records travel as
plain JSON-compatible dicts; amounts are integers.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from dataclasses import dataclass, asdict, fields
from enum import Enum
from contextlib import contextmanager
import json
import threading
import uuid

from .exceptions import NotFoundError, StaleStateError, StoreError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Enum):
                result[key] = value.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary, ignoring fields the store added"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        # Convert ISO strings back to datetime objects
        for key in ('created_at', 'updated_at'):
            value = values.get(key)
            if isinstance(value, str):
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                values[key] = parsed
            elif value is None:
                values[key] = utc_now()

        try:
            return cls(**values)
        except TypeError as e:
            raise StoreError(
                f"Store returned a malformed {cls.__name__} record: {e}",
                error_code="malformed_record"
            ) from e


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    # Whether rollback() really undoes writes made since begin_transaction()
    supports_transactions = False

    @abstractmethod
    def create(self, table: str, data: Dict[str, Any],
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Create a record and return it as stored.

        Repeating a create with the same idempotency key returns the record
        created the first time instead of a duplicate.
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        """Overwrite the given fields of a record and return it as stored.

        Fields absent from ``data`` are preserved. When ``expected_version``
        is given the write only succeeds if the stored version still matches,
        otherwise StaleStateError is raised.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self.load_all(table))

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _copy(data: Any) -> Any:
    # Deep copy through JSON so stored records never share state with callers
    return json.loads(json.dumps(data, default=str))


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing and local runs"""

    supports_transactions = True

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._idempotency: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
            self._idempotency[table] = {}

    def create(self, table: str, data: Dict[str, Any],
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Create a record in memory"""
        with self._lock:
            self._ensure_table(table)

            if idempotency_key and idempotency_key in self._idempotency[table]:
                existing_id = self._idempotency[table][idempotency_key]
                return _copy(self._data[table][existing_id])

            record = _copy(data)
            record_id = record.get('id') or str(uuid.uuid4())
            if record_id in self._data[table]:
                raise StoreError(
                    f"{table} record {record_id} already exists",
                    error_code="duplicate_record",
                    status_code=409
                )

            now = utc_now().isoformat()
            record['id'] = record_id
            record['created_at'] = record.get('created_at') or now
            record['updated_at'] = now
            record['version'] = record.get('version') or 0

            self._data[table][record_id] = record
            if idempotency_key:
                self._idempotency[table][idempotency_key] = record_id
            return _copy(record)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(_copy(record))
            return results

    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        """Update a record in memory with an optional version check"""
        with self._lock:
            self._ensure_table(table)
            existing = self._data[table].get(record_id)
            if existing is None:
                raise NotFoundError(f"{table} record {record_id} not found", "not_found")

            current_version = existing.get('version', 0)
            if expected_version is not None and current_version != expected_version:
                raise StaleStateError(
                    f"{table} record {record_id} changed since it was read, reload and retry",
                    expected_version=expected_version,
                    actual_version=current_version
                )

            merged = dict(existing)
            merged.update(_copy(data))
            merged['id'] = record_id
            merged['created_at'] = existing['created_at']
            merged['updated_at'] = utc_now().isoformat()
            merged['version'] = current_version + 1

            self._data[table][record_id] = merged
            return _copy(merged)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction; nested calls join the outer one.

        The lock stays held until the matching commit or rollback, so other
        threads wait for the whole transaction instead of joining it.
        """
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = (_copy(self._data), _copy(self._idempotency))
        self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            if self._depth == 0:
                self._snapshot = None
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            if self._depth == 0 and self._snapshot is not None:
                self._data, self._idempotency = self._snapshot
                self._snapshot = None
            self._lock.release()

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all data for debugging/inspection"""
        with self._lock:
            return _copy(self._data)
