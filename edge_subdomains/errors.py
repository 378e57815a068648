"""
Exception types raised by the providers and the subdomain reconciler.
"""


class SubdomainError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SubdomainError, ValueError):
    """Bad subdomain label or missing/invalid configuration. Never retried."""


class AlreadyExistsError(SubdomainError):
    """Raised by a provider ``create`` when the resource is already present."""


class NotFoundError(SubdomainError):
    """Raised by a provider ``delete`` when the resource is absent."""


class PropagationTimeoutError(SubdomainError):
    """The public resolver never returned the expected address."""

    def __init__(self, domain: str, expected_ip: str, attempts: int):
        self.domain = domain
        self.expected_ip = expected_ip
        self.attempts = attempts
        super().__init__(f"DNS propagation timeout for {domain} after {attempts} attempts")


class ProviderError(SubdomainError):
    """Opaque failure of an upstream system (API, CLI tool, config reload)."""


class DefineError(ProviderError):
    """
    A ``define`` pipeline step failed. The failed step name is kept in ``step``
    and the original exception is chained as ``__cause__``.
    """

    def __init__(self, label: str, step: str, error: BaseException):
        self.label = label
        self.step = step
        self.error = error
        super().__init__(f"Failed to define subdomain at {step}: {error}")
