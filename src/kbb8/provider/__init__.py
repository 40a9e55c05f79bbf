"""Provider package for running controller processes against the control plane.

This package provides:
1. Manifest parsing and webhook rewriting
2. Create-or-update reconciliation of CRDs and webhook configurations
3. Per-provider startup (ports, CA, objects, process, readiness)
4. Concurrent orchestration of many providers
"""

from .manifest import ManifestObjects, WebhookTarget, classify, read_and_adapt, read_documents
from .orchestrator import OrchestrationResult, ProviderOrchestrator, ProviderResult
from .provider import Provider, ProviderSpec, provider_name
from .reconciler import ManifestReconciler, is_crd_established

__all__ = [
    # Manifests
    "ManifestObjects",
    "WebhookTarget",
    "classify",
    "read_and_adapt",
    "read_documents",
    # Reconciliation
    "ManifestReconciler",
    "is_crd_established",
    # Providers
    "Provider",
    "ProviderSpec",
    "provider_name",
    # Orchestration
    "OrchestrationResult",
    "ProviderOrchestrator",
    "ProviderResult",
]
