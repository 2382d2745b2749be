"""Producer boundary: live HTTP producers, fallback producers and the registry."""

from .base import BaseProducer
from .fallbacks import (
    CachedCandidatesProducer,
    CachingProducer,
    KeywordCandidatesProducer,
    TemplateProducer,
    script_template_producer,
    trend_template_producer,
)
from .http import HttpProducer, classify_status
from .registry import ProducerRegistry

__all__ = [
    "BaseProducer",
    "CachedCandidatesProducer",
    "CachingProducer",
    "HttpProducer",
    "KeywordCandidatesProducer",
    "ProducerRegistry",
    "TemplateProducer",
    "classify_status",
    "script_template_producer",
    "trend_template_producer",
]
