"""
RecordService over the persons REST API.

Endpoints (relative to ``base_url``, e.g. ``http://host/api/v1``):

    GET    /persons/search                      candidate and document search
    GET    /persons/{id}                        full record
    POST   /persons/                            create
    PUT    /persons/{id}                        update person fields and aliases
    POST   /persons/{id}/addresses              add address
    PUT    /persons/{id}/addresses/{address_id} change address
    DELETE /persons/{id}/addresses/{address_id} remove address

requests is blocking, so every call runs in a worker thread.
"""

import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests

from ..errors import RecordServiceError, RecordValidationError, SearchCollaboratorFailure
from ..logger import StructuredLogger, get_logger
from ..records import plan_address_changes
from ..retry import CircuitBreaker, exponential_backoff, is_transient_error, should_retry_http_status

VALIDATION_STATUSES = (400, 422)


class HttpStatusError(RecordServiceError):
    """Non-2xx response from the persons API."""

    def __init__(self, status_code: int, message: str, body: Any = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.body = body


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, HttpStatusError):
        return should_retry_http_status(error.status_code)
    return is_transient_error(error)


def _query_params(filters: Mapping[str, Any]) -> Dict[str, Any]:
    params = {}
    for key, value in filters.items():
        if value is None:
            continue
        params[key] = ("true" if value else "false") if isinstance(value, bool) else value
    return params


def _validation_details(payload: Any) -> Tuple[Dict[str, str], str]:
    """
    Split an error body into per-field messages and a summary.

    Handles FastAPI's ``{"detail": "text"}`` and
    ``{"detail": [{"loc": ["body", "surname"], "msg": "..."}]}`` shapes.
    """
    detail = payload.get("detail") if isinstance(payload, Mapping) else payload
    if isinstance(detail, str):
        return {}, detail
    field_errors: Dict[str, str] = {}
    if isinstance(detail, list):
        for item in detail:
            if not isinstance(item, Mapping):
                continue
            loc = [str(p) for p in item.get("loc") or [] if p != "body"]
            field_errors[".".join(loc) or "record"] = str(item.get("msg", "invalid value"))
    return field_errors, "Record rejected"


class HttpRecordService:
    """
    Async RecordService backed by the persons REST API.

    Reads (search, get) are retried with exponential backoff on transient
    failures and search is guarded by a circuit breaker. Writes are sent once.

    Args:
        base_url: API root including the version prefix
        token: Optional bearer token
        timeout: Per-request timeout in seconds
        session: requests.Session to use (a new one by default)
        max_retries: Retry attempts for reads
        breaker: Circuit breaker for search (a new one by default)
        logger: Structured logger (defaults to the global one)
        sleep: Backoff sleep function, replaceable in tests
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        max_retries: int = 3,
        breaker: Optional[CircuitBreaker] = None,
        logger: Optional[StructuredLogger] = None,
        sleep=time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=RecordServiceError
        )
        self._logger = logger or get_logger()
        self._retrying = exponential_backoff(
            max_retries=max_retries,
            exceptions=(RecordServiceError,),
            retry_if=_is_retryable,
            on_retry=self._log_retry,
            sleep=sleep,
        )

    # RecordService

    async def search(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._search_sync, dict(filters))

    async def get(self, record_id: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._retrying(self._get_sync), record_id)

    async def create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._create_sync, dict(payload))

    async def update(self, record_id: Any, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._update_sync, record_id, dict(payload))

    # Blocking implementations

    def _search_sync(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            body = self.breaker.call(self._retrying(self._request_json), "GET", "/persons/search",
                                     params=_query_params(filters))
        except SearchCollaboratorFailure:
            raise
        except RecordServiceError as e:
            raise SearchCollaboratorFailure(f"Person search failed: {e}") from e

        if isinstance(body, Mapping):
            body = body.get("persons", [])
        if not isinstance(body, list):
            raise SearchCollaboratorFailure("Person search returned an unexpected payload")
        return [dict(p) for p in body if isinstance(p, Mapping)]

    def _get_sync(self, record_id: Any) -> Dict[str, Any]:
        try:
            return self._request_json("GET", f"/persons/{record_id}")
        except HttpStatusError as e:
            if e.status_code == 404:
                raise RecordServiceError(f"Person not found: {record_id}") from e
            raise

    def _create_sync(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        addresses = payload.pop("addresses", None) or []
        record = self._write_sync("POST", "/persons/", payload)
        if not addresses:
            return record
        record_id = record.get("id")
        if record_id is None:
            raise RecordServiceError("Created person has no id; addresses were not saved")

        base = f"/persons/{record_id}/addresses"
        for address in addresses:
            self._write_sync("POST", base, {k: v for k, v in address.items() if k != "id"})
        return self._retrying(self._get_sync)(record_id)

    def _update_sync(self, record_id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        addresses = payload.pop("addresses", None)
        record = self._write_sync("PUT", f"/persons/{record_id}", payload)
        if addresses is None:
            return record

        plan = plan_address_changes(record.get("addresses") or [], addresses)
        base = f"/persons/{record_id}/addresses"
        for gone in plan.to_delete:
            self._write_sync("DELETE", f"{base}/{gone['id']}")
        for changed in plan.to_update:
            body = {k: v for k, v in changed.items() if k != "id"}
            self._write_sync("PUT", f"{base}/{changed['id']}", body)
        for created in plan.to_create:
            self._write_sync("POST", base, created)

        if plan.is_empty:
            return record
        return self._retrying(self._get_sync)(record_id)

    def _write_sync(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            body = self._request_json(method, path, json=payload)
        except HttpStatusError as e:
            if e.status_code in VALIDATION_STATUSES:
                field_errors, message = _validation_details(e.body)
                raise RecordValidationError(field_errors, message) from e
            raise
        return body if isinstance(body, dict) else {}

    def _request_json(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RecordServiceError(f"{method} {path} timed out") from e
        except requests.exceptions.RequestException as e:
            raise RecordServiceError(f"{method} {path} connection error: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            raise HttpStatusError(response.status_code, f"{method} {path}", body)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RecordServiceError(f"{method} {path} returned invalid JSON") from e

    def _log_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self._logger.warning(
            "Retrying persons API call",
            attempt=attempt,
            delay=round(delay, 2),
            error=str(error),
        )
