"""Generic JSON-over-HTTP producer with status-code error classification."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import httpx

from core import ErrorKind, ProducerResponse
from utils.exceptions import ConfigurationError

from .base import BaseProducer


def classify_status(status_code: int) -> Optional[ErrorKind]:
    """Map an HTTP status onto an ErrorKind; None for success codes."""
    if status_code < 400:
        return None
    if status_code in {401, 403}:
        return ErrorKind.AUTH
    if status_code == 402:
        return ErrorKind.QUOTA_EXHAUSTED
    if status_code == 413:
        return ErrorKind.PAYLOAD_TOO_LARGE
    if status_code == 429:
        return ErrorKind.THROTTLED
    if status_code in {408, 504}:
        return ErrorKind.TIMEOUT
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.INVALID_INPUT


class HttpProducer(BaseProducer):
    """
    POSTs the stage payload to ``{base_url}{path}`` and expects a JSON body back.

    Configuration falls back to ``{ENV_PREFIX}_BASE_URL`` / ``{ENV_PREFIX}_API_KEY``
    environment variables, where the prefix is the upper-cased producer id.
    """

    def __init__(
        self,
        producer_id: str,
        *,
        base_url: Optional[str] = None,
        path: str = "/v1/produce",
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        supports_reduced: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        env_prefix = str(producer_id).strip().upper()
        self.producer_id = str(producer_id).strip()
        self.base_url = str(base_url or os.getenv(f"{env_prefix}_BASE_URL") or "").strip().rstrip("/")
        self.path = "/" + str(path or "").lstrip("/")
        self.api_key = str(api_key or os.getenv(f"{env_prefix}_API_KEY") or "").strip()
        try:
            self.timeout_s = float(timeout_s if timeout_s is not None else (os.getenv(f"{env_prefix}_TIMEOUT_S") or 60.0))
        except ValueError:
            self.timeout_s = 60.0
        self.supports_reduced = bool(supports_reduced)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if not self.base_url:
            raise ConfigurationError(
                f"{self.producer_id} base url missing",
                {"env": f"{self.producer_id.upper()}_BASE_URL"},
            )
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def call(
        self,
        payload: Dict[str, Any],
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> ProducerResponse:
        client = self._get_client()
        request_timeout = timeout if timeout is not None else self.timeout_s
        try:
            response = await client.post(
                self.path,
                json=payload,
                headers={"Idempotency-Key": idempotency_key},
                timeout=request_timeout,
            )
        except httpx.TimeoutException as exc:
            return ProducerResponse(success=False, error_kind=ErrorKind.TIMEOUT, error_message=f"{self.producer_id} timeout: {exc}")
        except httpx.RequestError as exc:
            return ProducerResponse(
                success=False,
                error_kind=ErrorKind.SERVER_ERROR,
                error_message=f"{self.producer_id} request failed: {exc}",
            )

        kind = classify_status(response.status_code)
        if kind is not None:
            return ProducerResponse(
                success=False,
                error_kind=kind,
                error_message=f"{self.producer_id} http {response.status_code}: {response.text[:200]}",
            )

        try:
            body = response.json()
        except ValueError:
            return ProducerResponse(
                success=False,
                error_kind=ErrorKind.SERVER_ERROR,
                error_message=f"{self.producer_id} returned non-JSON body",
            )
        body = body if isinstance(body, dict) else {"data": body}
        return ProducerResponse(
            success=True,
            payload=body.get("payload", body),
            cost=float(body.get("cost") or 0.0),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
