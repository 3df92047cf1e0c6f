"""
REST Storage Client Module

Storage backend that talks to the fund's persistence API over HTTP. Each table
maps to a collection endpoint; the store assigns ids and timestamps.

The API speaks camelCase (``memberId``, ``loanBalance``, ``createdAt``) while
the fund core uses snake_case field names. Keys are translated here, in both
directions, for bodies, query filters and returned records.
"""

import httpx
import logging
import re
from typing import Any, Dict, List, Optional

from .exceptions import NotFoundError, StaleStateError, StoreError
from .storage import StorageInterface

logger = logging.getLogger("qard.store")


# Collection endpoints exposed by the persistence API
TABLE_PATHS = {
    "members": "/api/members",
    "loans": "/api/loans",
    "payments": "/api/payments",
    "fund_log": "/api/fundLog",
    "receipt_submissions": "/api/receipt-submissions",
    "loan_requests": "/api/loanRequests",
}

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def to_camel(key: str) -> str:
    """member_id -> memberId"""
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake(key: str) -> str:
    """memberId -> member_id"""
    return _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()


def camelize(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_camel(k): v for k, v in data.items()}


def snakify(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise StoreError(f"Store returned a non-object record: {data!r}",
                         error_code="malformed_record")
    return {to_snake(k): v for k, v in data.items()}


class HttpStorage(StorageInterface):
    """REST client for the fund persistence API

    The API has no multi-record transactions, so ``atomic()`` cannot undo a
    partially applied sequence; callers detect that case themselves.
    """

    supports_transactions = False

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport
        )

    def _path(self, table: str, record_id: Optional[str] = None) -> str:
        path = TABLE_PATHS.get(table, f"/api/{table}")
        if record_id is not None:
            path = f"{path}/{record_id}"
        return path

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Store request {method} {path} failed: {e}")
            raise StoreError(f"Store request failed: {e}") from e

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        if response.status_code in (409, 412):
            raise StaleStateError(f"Store rejected {action}: record changed, reload and retry")
        logger.warning(f"Store returned {response.status_code} for {action}: {response.text}")
        raise StoreError(
            f"Store returned {response.status_code} for {action}",
            status_code=response.status_code
        )

    def _json(self, response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"Store returned invalid JSON for {action}") from e

    def _record(self, response: httpx.Response, action: str) -> Dict[str, Any]:
        return snakify(self._json(response, action))

    def _records(self, response: httpx.Response, table: str, action: str) -> List[Dict[str, Any]]:
        data = self._json(response, action)
        if not isinstance(data, list):
            raise StoreError(f"Store returned a non-list body for {table}")
        return [snakify(record) for record in data]

    def create(self, table: str, data: Dict[str, Any],
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """POST a new record to its collection"""
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        response = self._request("POST", self._path(table), json=camelize(data),
                                 headers=headers)
        self._raise_for_status(response, f"create {table}")
        return self._record(response, f"create {table}")

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """GET a single record; a 404 means it does not exist"""
        response = self._request("GET", self._path(table, record_id))
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"load {table}/{record_id}")
        return self._record(response, f"load {table}/{record_id}")

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """GET the whole collection"""
        response = self._request("GET", self._path(table))
        self._raise_for_status(response, f"list {table}")
        return self._records(response, table, f"list {table}")

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET the collection with query filters.

        Results are filtered again locally since not every endpoint honours
        query parameters.
        """
        params = {to_camel(k): str(v) for k, v in filters.items() if v is not None}
        response = self._request("GET", self._path(table), params=params)
        self._raise_for_status(response, f"find {table}")
        return [
            record for record in self._records(response, table, f"find {table}")
            if all(record.get(k) == v for k, v in filters.items())
        ]

    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        """PATCH a record, sending the expected version as If-Match"""
        headers = {}
        if expected_version is not None:
            headers["If-Match"] = str(expected_version)

        response = self._request(
            "PATCH", self._path(table, record_id), json=camelize(data), headers=headers
        )
        if response.status_code == 404:
            raise NotFoundError(f"{table} record {record_id} not found", "not_found")
        self._raise_for_status(response, f"update {table}/{record_id}")
        return self._record(response, f"update {table}/{record_id}")

    def health_check(self) -> bool:
        """Check if the store is reachable"""
        try:
            r = self._client.get("/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()
