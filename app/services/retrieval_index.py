"""Ephemeral per-run retrieval index (vector store) management."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import httpx

from app.config.settings import IndexProviderConfig

logger = logging.getLogger(__name__)


class IndexProviderError(RuntimeError):
    """Raised when the index provider rejects or fails a request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


def expiry(retention_days: int, now: datetime | None = None) -> datetime:
    """Return the instant after which the index may be garbage collected."""

    reference = now or datetime.now(timezone.utc)
    return reference + timedelta(days=retention_days)


class RetrievalIndexManager:
    """Create, populate and delete indexes through the provider's REST API."""

    def __init__(
        self,
        config: IndexProviderConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def retention_days(self) -> int:
        return self._config.retention_days

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key.get_secret_value()}"
        return headers

    async def _request(self, method: str, path: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, headers=self._headers(), **kwargs
            )
        except httpx.RequestError as exc:
            raise IndexProviderError(f"Index {action} failed: {exc.__class__.__name__}: {exc}") from exc
        if not response.is_success:
            raise IndexProviderError(
                f"Index {action} failed: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    async def create_index(self, name: str) -> str:
        """Create an empty index and return its id."""

        response = await self._request("POST", "/indexes", "create", json={"name": name})
        try:
            index_id = response.json().get("indexId")
        except (ValueError, AttributeError) as exc:
            raise IndexProviderError("Index create returned a malformed body") from exc
        if not index_id:
            raise IndexProviderError("Index create response did not include an indexId")
        logger.info("Created retrieval index %s (%s)", index_id, name)
        return str(index_id)

    async def attach_files(self, index_id: str, file_refs: Sequence[str]) -> None:
        """Attach uploaded files to an index; an empty list is a no-op."""

        if not file_refs:
            logger.info("No files to attach to retrieval index %s", index_id)
            return
        await self._request(
            "POST",
            f"/indexes/{index_id}/files/batch",
            "attach",
            json={"fileIds": list(file_refs)},
        )
        logger.info("Attached %d files to retrieval index %s", len(file_refs), index_id)

    async def delete_index(self, index_id: str) -> None:
        await self._request("DELETE", f"/indexes/{index_id}", "delete")
        logger.info("Deleted retrieval index %s", index_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["IndexProviderError", "RetrievalIndexManager", "expiry"]
