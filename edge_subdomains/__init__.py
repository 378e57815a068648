"""
Subdomain edge provisioning: DNS record, TLS certificate and nginx site per label.
"""
from edge_subdomains.config import configure_logging
from edge_subdomains.errors import (
    AlreadyExistsError,
    DefineError,
    NotFoundError,
    PropagationTimeoutError,
    ProviderError,
    SubdomainError,
    ValidationError,
)
from edge_subdomains.models import SubdomainConfig, SubdomainInfo, TeardownReport
from edge_subdomains.services.reconciler import SubdomainReconciler

__all__ = [
    "AlreadyExistsError",
    "DefineError",
    "NotFoundError",
    "PropagationTimeoutError",
    "ProviderError",
    "SubdomainConfig",
    "SubdomainError",
    "SubdomainInfo",
    "SubdomainReconciler",
    "TeardownReport",
    "ValidationError",
    "configure_logging",
]
