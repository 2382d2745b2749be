"""Producer abstractions: the boundary to out-of-scope media/trend services."""

from __future__ import annotations

from typing import Any, Dict, Optional

from core import ProducerResponse


class BaseProducer:
    """Base producer that real services, fallbacks or mocks replace."""

    producer_id = "base"
    supports_reduced = False

    async def call(
        self,
        payload: Dict[str, Any],
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> ProducerResponse:
        """
        Produce a stage payload.

        Expected failures come back as ``ProducerResponse(success=False, error_kind=...)``
        or as a raised ``ProducerError``. When ``payload["reduced"]`` is true the
        producer should emit its reduced-complexity variant.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
