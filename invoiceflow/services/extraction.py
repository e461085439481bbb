"""
Client for the external invoice extraction (OCR) webhook.

The webhook receives ``{file_url, file_type, company_id, user_id}`` and may
answer with parsed invoice fields. Any failure (no URL configured, timeout,
non-2xx, unparseable body) yields ``None`` and the invoice waits for
manual entry.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    data: Optional[Dict[str, Any]]
    processing_time_ms: int
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.data)


class ExtractionClient:
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("EXTRACTION_WEBHOOK_URL")
        self.timeout = timeout if timeout is not None else float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "30"))
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def extract(self, file_url: str, file_type: str, company_id: str, user_id: str) -> ExtractionResult:
        started = time.monotonic()
        if not self.enabled:
            return ExtractionResult(data=None, processing_time_ms=0, error="extraction webhook not configured")

        payload = {
            "file_url": file_url,
            "file_type": file_type,
            "company_id": company_id,
            "user_id": user_id,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
                body = response.json() if response.content else None
        except (httpx.HTTPError, ValueError) as exc:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.error(f"Extraction webhook failed for {file_url}: {exc}")
            return ExtractionResult(data=None, processing_time_ms=elapsed, error=str(exc))

        elapsed = int((time.monotonic() - started) * 1000)
        data = self._unwrap(body)
        if not data:
            logger.info(f"Extraction webhook returned no fields for {file_url}")
        return ExtractionResult(data=data, processing_time_ms=elapsed)

    @staticmethod
    def _unwrap(body: Any) -> Optional[Dict[str, Any]]:
        """Accept a bare field mapping or one nested under ``data`` / ``extracted_data``."""
        if isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, dict):
            return None
        for key in ("data", "extracted_data"):
            if isinstance(body.get(key), dict):
                return body[key] or None
        return body or None
