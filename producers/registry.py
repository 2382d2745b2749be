"""Producer lookup by id."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from utils.exceptions import UnknownProducerError

from .base import BaseProducer


class ProducerRegistry:
    """Maps tier producer ids onto producer instances."""

    def __init__(self, producers: Optional[Iterable[BaseProducer]] = None) -> None:
        self._producers: Dict[str, BaseProducer] = {}
        for producer in producers or []:
            self.register(producer)

    def register(self, producer: BaseProducer, producer_id: Optional[str] = None) -> None:
        key = str(producer_id or producer.producer_id).strip()
        self._producers[key] = producer

    def get(self, producer_id: str) -> BaseProducer:
        producer = self._producers.get(producer_id)
        if producer is None:
            raise UnknownProducerError(producer_id)
        return producer

    def __contains__(self, producer_id: str) -> bool:
        return producer_id in self._producers

    def ids(self) -> List[str]:
        return sorted(self._producers.keys())

    async def aclose(self) -> None:
        for producer in self._producers.values():
            await producer.aclose()
