"""HTTP client for the remote event catalog.

This module provides:
- CatalogClient: HTTP client implementing the CatalogQuery protocol
- Organizer: An organizing unit (collection) from the catalog
- Catalog exceptions mapped from transport failures and status codes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from eventsync.core.config import CatalogConfig
from eventsync.core.types import Event, EventFilter, EventSyncError, Pagination

logger = logging.getLogger(__name__)


class CatalogError(EventSyncError):
    """Base exception for catalog API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(CatalogError):
    """Authentication failed."""


class RateLimitError(CatalogError):
    """The catalog asked us to slow down.

    Attributes:
        retry_after: Seconds the server asked to wait, if it said so.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, 429)
        self.retry_after = retry_after


class CatalogTimeoutError(CatalogError):
    """The catalog did not answer in time."""


class CatalogConnectionError(CatalogError):
    """The catalog could not be reached."""


class MalformedResponseError(CatalogError):
    """The catalog answered with something we cannot parse."""


@dataclass
class Organizer:
    """Organizing unit from the catalog (one collection key)."""

    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Organizer:
        """Create from API response dictionary."""
        return cls(id=str(data["id"]), name=str(data.get("name") or data["id"]))


class CatalogClient:
    """HTTP client for the catalog API."""

    def __init__(self, config: CatalogConfig) -> None:
        """Initialize the catalog client.

        Args:
            config: Catalog connection configuration.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> CatalogClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to catalog errors."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise CatalogTimeoutError(f"Catalog request timed out: {e}") from e
        except httpx.RequestError as e:
            raise CatalogConnectionError(f"Catalog unreachable: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limited by catalog",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            raise CatalogError(_error_detail(response), response.status_code)
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from catalog: {e}") from e

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the catalog is reachable.

        Returns:
            True if the catalog answers its health endpoint.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Event queries ===

    def query(
        self, event_filter: EventFilter, pagination: Pagination
    ) -> list[Event] | None:
        """Query events for a collection.

        Args:
            event_filter: Collection key and optional number prefix.
            pagination: Date window, result cap and id cursor.

        Returns:
            List of events, or None if the catalog returned no payload.

        Raises:
            CatalogError: On any API or transport failure.
        """
        body: dict[str, Any] = {
            "filter": {"collectionKey": event_filter.collection_key},
            "pagination": {"maxResults": pagination.max_results},
        }
        if event_filter.number_prefix:
            body["filter"]["numberPrefix"] = event_filter.number_prefix
        if pagination.from_date is not None:
            body["pagination"]["fromDate"] = pagination.from_date.isoformat()
        if pagination.to_date is not None:
            body["pagination"]["toDate"] = pagination.to_date.isoformat()
        if pagination.from_key is not None:
            body["pagination"]["fromKey"] = pagination.from_key

        response = self._request("POST", "/api/events/query", json=body)
        data = self._json(response)
        if not isinstance(data, dict):
            raise MalformedResponseError("Expected a JSON object from catalog")

        payload = data.get("return")
        if payload is None:
            return None
        if isinstance(payload, dict):
            # Single results come back unwrapped
            payload = [payload]
        if not isinstance(payload, list):
            raise MalformedResponseError("Expected a list of events in 'return'")

        try:
            return [Event.from_dict(item) for item in payload]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid event in catalog response: {e}") from e

    def list_active_collections(self) -> list[Organizer]:
        """List organizers that currently have events.

        Returns:
            List of organizers.
        """
        response = self._request("GET", "/api/organizers/active")
        data = self._json(response)
        if not isinstance(data, list):
            raise MalformedResponseError("Expected a list of organizers")
        return [Organizer.from_dict(item) for item in data]


def _error_detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", "Unknown error"))
    except (ValueError, AttributeError):
        return response.text or "Unknown error"
