"""Remote record store backed by a Salesforce-style REST API."""

import csv
import io
import logging
import xml.etree.ElementTree as ElementTree
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import RecordStoreClient
from ..constants import DEFAULT_API_VERSION
from ..errors import MetadataError, QueryError, StoreError
from ..models.record import Record
from ..models.schema import ObjectMetadata, ObjectQuery, Operation

logger = logging.getLogger(__name__)


class ApiRecordStore(RecordStoreClient):
    """
    Record store for a remote org reachable over REST.

    Supports:
    - Queries with transparent ``nextRecordsUrl`` pagination
    - Counts and Describe
    - Composite (synchronous) writes of up to 200 records
    - Bulk API v1 and v2 job primitives
    - Retry logic on throttling and server errors
    """

    supports_bulk = True

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        name: str = "",
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the API store.

        Args:
            instance_url: Base URL of the org
            access_token: OAuth access token
            api_version: REST API version, e.g. ``59.0``
            name: Display name used in logs
            max_retries: Retries on 429 and 5xx responses
            backoff_factor: Retry backoff factor
            session: Custom requests session
            logger: Logger to use
        """
        super().__init__(name=name or instance_url, logger=logger)
        self.instance_url = instance_url.rstrip("/")
        self.access_token = access_token
        self.api_version = api_version
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=None,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers["Authorization"] = f"Bearer {self.access_token}"
        return session

    @property
    def data_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    @property
    def async_url(self) -> str:
        return f"{self.instance_url}/services/async/{self.api_version}"

    def _request(self, method: str, url: str, error_class=StoreError, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.HTTPError as e:
            raise error_class(
                f"{method} {url} failed: {e.response.status_code} - {_error_message(e.response)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise error_class(f"{method} {url} failed: {e}") from e

    # Queries

    def count(self, query: ObjectQuery) -> int:
        text = query.compose_count()
        response = self._request("GET", f"{self.data_url}/query", QueryError, params={"q": text})
        return int(response.json().get("totalSize", 0))

    def query(self, query: ObjectQuery) -> List[Record]:
        text = query.compose()
        self.logger.debug(f"[{self.name}] {text}")

        response = self._request("GET", f"{self.data_url}/query", QueryError, params={"q": text})
        data = response.json()
        records = [_flatten(item) for item in data.get("records", [])]

        while not data.get("done", True) and data.get("nextRecordsUrl"):
            response = self._request("GET", f"{self.instance_url}{data['nextRecordsUrl']}", QueryError)
            data = response.json()
            records.extend(_flatten(item) for item in data.get("records", []))

        return records

    def describe(self, object_name: str) -> ObjectMetadata:
        response = self._request("GET", f"{self.data_url}/sobjects/{object_name}/describe", MetadataError)
        return ObjectMetadata.from_describe(response.json())

    # Synchronous writes

    def crud_sync(
        self,
        object_name: str,
        operation: Operation,
        records: List[Record],
        all_or_none: bool = False
    ) -> List[Dict[str, Any]]:
        url = f"{self.data_url}/composite/sobjects"

        if operation == Operation.DELETE:
            ids = ",".join(quote(str(r["Id"])) for r in records)
            response = self._request(
                "DELETE", f"{url}?ids={ids}&allOrNone={str(all_or_none).lower()}"
            )
        elif operation in (Operation.INSERT, Operation.UPDATE):
            body = {
                "allOrNone": all_or_none,
                "records": [
                    {"attributes": {"type": object_name}, **_without_id(r, operation)}
                    for r in records
                ],
            }
            method = "POST" if operation == Operation.INSERT else "PATCH"
            response = self._request(method, url, json=body)
        else:
            raise ValueError(f"Unsupported synchronous operation: {operation.value}")

        return [
            {
                "id": item.get("id"),
                "success": bool(item.get("success")),
                "error": "; ".join(e.get("message", "") for e in item.get("errors", [])) or None,
            }
            for item in response.json()
        ]

    # Bulk v1

    def _async_headers(self, content_type: str) -> Dict[str, str]:
        return {"X-SFDC-Session": self.access_token, "Content-Type": content_type}

    def create_bulk_v1_job(self, object_name: str, operation: Operation) -> str:
        body = {"operation": operation.value.lower(), "object": object_name, "contentType": "CSV"}
        response = self._request(
            "POST", f"{self.async_url}/job",
            json=body, headers=self._async_headers("application/json; charset=UTF-8"),
        )
        return _parse_async_response(response)["id"]

    def add_bulk_v1_batch(self, job_id: str, csv_data: str) -> str:
        response = self._request(
            "POST", f"{self.async_url}/job/{job_id}/batch",
            data=csv_data.encode("utf-8"), headers=self._async_headers("text/csv; charset=UTF-8"),
        )
        return _parse_async_response(response)["id"]

    def get_bulk_v1_batch(self, job_id: str, batch_id: str) -> Dict[str, Any]:
        response = self._request(
            "GET", f"{self.async_url}/job/{job_id}/batch/{batch_id}",
            headers=self._async_headers("application/json"),
        )
        return _parse_async_response(response)

    def get_bulk_v1_batch_results(self, job_id: str, batch_id: str) -> List[Dict[str, str]]:
        response = self._request(
            "GET", f"{self.async_url}/job/{job_id}/batch/{batch_id}/result",
            headers=self._async_headers("text/csv"),
        )
        return _parse_csv(response.text)

    def close_bulk_v1_job(self, job_id: str) -> None:
        self._request(
            "POST", f"{self.async_url}/job/{job_id}",
            json={"state": "Closed"}, headers=self._async_headers("application/json; charset=UTF-8"),
        )

    # Bulk v2

    def create_bulk_v2_job(self, object_name: str, operation: Operation) -> str:
        body = {
            "object": object_name,
            "contentType": "CSV",
            "operation": operation.value.lower(),
            "lineEnding": "LF",
        }
        response = self._request("POST", f"{self.data_url}/jobs/ingest", json=body)
        return response.json()["id"]

    def upload_bulk_v2_data(self, job_id: str, csv_data: str) -> None:
        self._request(
            "PUT", f"{self.data_url}/jobs/ingest/{job_id}/batches",
            data=csv_data.encode("utf-8"), headers={"Content-Type": "text/csv"},
        )

    def close_bulk_v2_job(self, job_id: str) -> None:
        self._request("PATCH", f"{self.data_url}/jobs/ingest/{job_id}", json={"state": "UploadComplete"})

    def get_bulk_v2_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"{self.data_url}/jobs/ingest/{job_id}").json()

    def get_bulk_v2_results(self, job_id: str, kind: str) -> List[Dict[str, str]]:
        response = self._request("GET", f"{self.data_url}/jobs/ingest/{job_id}/{kind}")
        return _parse_csv(response.text)


def _flatten(item: Dict[str, Any], prefix: str = "") -> Record:
    """Flatten nested relationship objects into dotted keys."""
    result: Record = {}
    for key, value in item.items():
        if key == "attributes":
            continue
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            result.update(_flatten(value, f"{name}."))
        else:
            result[name] = value
    return result


def _without_id(record: Record, operation: Operation) -> Record:
    if operation == Operation.INSERT:
        return {k: v for k, v in record.items() if k != "Id"}
    return dict(record)


def _parse_csv(text: str) -> List[Dict[str, str]]:
    if not text.strip():
        return []
    return list(csv.DictReader(io.StringIO(text)))


def _parse_async_response(response: requests.Response) -> Dict[str, Any]:
    """Bulk v1 answers in JSON or XML depending on the job content type."""
    content_type = response.headers.get("Content-Type", "")
    if "json" in content_type:
        return response.json()

    root = ElementTree.fromstring(response.content)
    result = {}
    for child in root:
        tag = child.tag.split("}", 1)[-1]
        result[tag] = child.text
    return result


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, list) and data:
        return "; ".join(str(item.get("message", item)) for item in data)
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)
