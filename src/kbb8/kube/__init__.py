"""Kubernetes API access."""

from .client import (
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
    VALIDATING_WEBHOOK_CONFIGURATION,
    ApiError,
    KubeClient,
    ResourceKind,
)

__all__ = [
    "CUSTOM_RESOURCE_DEFINITION",
    "MUTATING_WEBHOOK_CONFIGURATION",
    "VALIDATING_WEBHOOK_CONFIGURATION",
    "ApiError",
    "KubeClient",
    "ResourceKind",
]
