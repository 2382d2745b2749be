"""
Configuration Management Module
Central thresholds and stage definitions for the pipeline engine.
"""
from .settings import (
    CircuitBreakerSettings,
    DeadLetterSettings,
    PipelineSettings,
    RankerSettings,
    RetrySettings,
    Settings,
    StageConfig,
    default_stages,
    get_circuit_settings,
    get_pipeline_settings,
    get_ranker_settings,
    get_retry_settings,
    get_settings,
)

__all__ = [
    "CircuitBreakerSettings",
    "DeadLetterSettings",
    "PipelineSettings",
    "RankerSettings",
    "RetrySettings",
    "Settings",
    "StageConfig",
    "default_stages",
    "get_circuit_settings",
    "get_pipeline_settings",
    "get_ranker_settings",
    "get_retry_settings",
    "get_settings",
]
