"""Request intake and batch execution on top of the pipeline coordinator."""

from .queue import InMemoryRequestQueue
from .service import PipelineOrchestrator

__all__ = [
    "InMemoryRequestQueue",
    "PipelineOrchestrator",
]
