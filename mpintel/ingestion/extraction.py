"""Client for the external quote extraction service.

The service receives the raw document bytes and answers with loosely typed
JSON. Everything it returns is validated into ``ExtractionResult`` here; a
payload that does not validate is an extraction error, not partial data.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from mpintel.config import ExtractionConfig, get_config
from mpintel.exceptions import ExtractionError, ExtractionTimeoutError
from mpintel.models import ExtractionResult

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def extract(
        self, content: bytes, file_name: str, content_type: str
    ) -> ExtractionResult: ...


def parse_extraction_payload(payload: Any) -> ExtractionResult:
    """Validate a decoded JSON payload into an ``ExtractionResult``.

    Raises:
        ExtractionError: If the payload does not match the expected shape
    """
    if not isinstance(payload, dict):
        raise ExtractionError(
            f"Malformed extraction payload: expected an object, got {type(payload).__name__}"
        )
    try:
        return ExtractionResult.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ExtractionError(
            f"Malformed extraction payload: {exc.error_count()} error(s), "
            f"first at '{location}': {first['msg']}"
        ) from exc


class HttpExtractor:
    """Posts documents to the extraction service over HTTP."""

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or get_config().extraction
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def extract(
        self, content: bytes, file_name: str, content_type: str
    ) -> ExtractionResult:
        files = {"file": (file_name, content, content_type)}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.config.service_url,
                    files=files,
                    headers=self._headers(),
                    timeout=self.config.http_timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(
                    timeout=self.config.http_timeout_seconds
                ) as client:
                    response = await client.post(
                        self.config.service_url, files=files, headers=self._headers()
                    )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExtractionTimeoutError(
                f"Extraction service timed out after {self.config.http_timeout_seconds}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(
                f"Extraction service returned {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Extraction service request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExtractionError("Extraction service returned a non-JSON body") from exc

        logger.debug("Extraction payload received for %s", file_name)
        return parse_extraction_payload(payload)
