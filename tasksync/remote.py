"""HTTP client for the remote authority."""

import logging
from typing import Sequence

import httpx
from pydantic import ValidationError as SchemaError

from .config import Settings
from .errors import TransportFailure
from .models import utcnow
from .mutation_queue import QueuedMutation
from .schemas import BatchItem, BatchRequest, BatchResponse, ItemOutcome

logger = logging.getLogger(__name__)


def _to_item(entry: QueuedMutation) -> BatchItem:
    return BatchItem(
        id=entry.id,
        client_id=entry.task_id,
        operation=entry.operation,
        data=entry.to_data(),
        created_at=entry.created_at,
        retry_count=entry.retry_count,
    )


class RemoteAuthorityClient:
    """Talks to ``{api_base_url}/health`` and ``{api_base_url}/batch``.

    Args:
        settings: Source of the base URL and the per-request timeout.
        http_client: Optional pre-built ``httpx.Client`` (tests pass one
            with a ``MockTransport``).
    """

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self._base_url = settings.api_base_url.rstrip("/")
        self._timeout = settings.request_timeout
        self._http = http_client or httpx.Client(timeout=self._timeout)

    def probe(self) -> bool:
        """Check whether the authority is reachable. Never raises."""
        try:
            response = self._http.get(f"{self._base_url}/health", timeout=self._timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Connectivity check failed: %s", e)
            return False

        if not response.is_success:
            logger.debug("Connectivity check got status %s", response.status_code)
            return False
        return True

    def submit_batch(self, entries: Sequence[QueuedMutation]) -> list[ItemOutcome]:
        """Send one batch and return the authority's per-item outcomes.

        Raises:
            TransportFailure: the request did not complete with a usable
                response (network error, timeout, error status, bad body).
        """
        request = BatchRequest(items=[_to_item(e) for e in entries], client_timestamp=utcnow())
        try:
            response = self._http.post(
                f"{self._base_url}/batch",
                content=request.model_dump_json(),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = BatchResponse.model_validate_json(response.content)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportFailure(str(e) or e.__class__.__name__) from e
        except SchemaError as e:
            raise TransportFailure(
                f"Malformed batch response ({e.error_count()} validation error(s))"
            ) from e

        return body.processed_items

    def close(self) -> None:
        self._http.close()
