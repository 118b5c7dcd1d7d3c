"""HTTP client for the four content-generation stages."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

import httpx

from app.application.interfaces import StageClientInterface
from app.config.settings import StageServiceConfig
from app.domain.models import StageName
from app.services.http_retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

# Field each stage returns its output under.
STAGE_OUTPUT_FIELDS: dict[StageName, str] = {
    StageName.DOCUMENT_OVERVIEW: "overview",
    StageName.CONTENT_MAPPING: "contentMap",
    StageName.OUTLINE_GENERATION: "outline",
    StageName.SCRIPT_FINALIZATION: "finalizedScript",
}

_RAW_BODY_LIMIT = 2000


class StageExecutionError(RuntimeError):
    """Raised when a stage call fails or returns an unusable response."""

    def __init__(
        self,
        stage_name: StageName,
        http_status: Optional[int],
        raw_body: str,
        reason: str | None = None,
    ) -> None:
        self.stage_name = stage_name
        self.http_status = http_status
        self.raw_body = raw_body
        self.reason = reason
        super().__init__(self.summary)

    @property
    def summary(self) -> str:
        """Human-readable message safe to persist on the run."""

        prefix = f"Stage {self.stage_name.order} ({self.stage_name.value})"
        if self.reason:
            return f"{prefix} failed: {self.reason}"
        if self.http_status is not None:
            return f"{prefix} failed with HTTP {self.http_status}"
        return f"{prefix} failed"


def _truncate(value: str, max_length: int = _RAW_BODY_LIMIT) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


class HttpStageClient(StageClientInterface):
    """POST JSON to each stage endpoint and unwrap its output field."""

    def __init__(
        self,
        config: StageServiceConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._retry_policy = retry_policy or RetryPolicy.no_retry()
        self._timeout = config.timeout_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )
        self._paths: dict[StageName, str] = {
            StageName.DOCUMENT_OVERVIEW: config.overview_path,
            StageName.CONTENT_MAPPING: config.content_mapping_path,
            StageName.OUTLINE_GENERATION: config.outline_path,
            StageName.SCRIPT_FINALIZATION: config.finalization_path,
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.service_token:
            headers["Authorization"] = (
                f"Bearer {self._config.service_token.get_secret_value()}"
            )
        return headers

    async def invoke(self, stage: StageName, payload: Mapping[str, Any]) -> Any:
        """Call ``stage`` with ``payload`` and return its output, retrying per policy."""

        return await call_with_retry(
            lambda: self._invoke_once(stage, payload),
            policy=self._retry_policy,
            should_retry=self._should_retry,
            label=f"Stage {stage.value}",
        )

    def _should_retry(self, exc: Exception) -> bool:
        if not isinstance(exc, StageExecutionError):
            return False
        # Transport errors and timeouts carry no status and are transient.
        if exc.http_status is None:
            return exc.reason is not None and exc.reason.startswith("transport")
        return self._retry_policy.is_retryable_status(exc.http_status)

    async def _invoke_once(self, stage: StageName, payload: Mapping[str, Any]) -> Any:
        path = self._paths[stage]
        try:
            response = await asyncio.wait_for(
                self._client.post(path, json=dict(payload), headers=self._headers()),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise StageExecutionError(
                stage, None, "", reason=f"transport timeout after {self._timeout:.0f}s"
            ) from exc
        except httpx.RequestError as exc:
            raise StageExecutionError(
                stage, None, "", reason=f"transport error: {exc.__class__.__name__}"
            ) from exc

        raw_body = response.text
        if not response.is_success:
            logger.warning(
                "Stage %s returned HTTP %s: %s",
                stage.value,
                response.status_code,
                _truncate(raw_body, 500),
            )
            raise StageExecutionError(stage, response.status_code, _truncate(raw_body))

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise StageExecutionError(
                stage, response.status_code, _truncate(raw_body), reason="malformed JSON response"
            ) from exc

        output_field = STAGE_OUTPUT_FIELDS[stage]
        if not isinstance(body, dict) or output_field not in body:
            raise StageExecutionError(
                stage,
                response.status_code,
                _truncate(raw_body),
                reason=f"response is missing '{output_field}'",
            )
        return body[output_field]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpStageClient", "StageExecutionError", "STAGE_OUTPUT_FIELDS"]
