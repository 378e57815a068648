"""
Provider contracts consumed by the subdomain reconciler.

Every provider follows the same idempotency idiom: ``create`` fails if the
resource exists, ``delete`` fails if it is absent, ``undefine`` is ``delete``
with absence reported as ``Outcome.NOT_FOUND``, and ``define`` is ``undefine``
followed by ``create``.
"""
import abc
import logging
from typing import Optional

from edge_subdomains.errors import NotFoundError
from edge_subdomains.models import (
    AddressRecord,
    CertificateBundle,
    Outcome,
    PropagationResult,
    VirtualHost,
)

logger = logging.getLogger(__name__)


class ManagedResource(abc.ABC):
    """Shared remove-if-present behaviour of the three providers."""

    kind = "resource"

    @abc.abstractmethod
    def delete(self, key: str) -> None: ...

    def undefine(self, key: str) -> Outcome:
        try:
            self.delete(key)
        except NotFoundError as e:
            logger.debug(f"{self.kind} {key} does not exist or already deleted")
            return Outcome.not_found(str(e))
        return Outcome.ok()


class DnsProvider(ManagedResource):
    """Address records for labels under one base domain."""

    kind = "DNS record"
    base_domain: str

    @abc.abstractmethod
    def get(self, label: str) -> Optional[AddressRecord]: ...

    @abc.abstractmethod
    def list(self) -> list[AddressRecord]: ...

    @abc.abstractmethod
    def create(self, label: str, ip: str, ttl: int = 300, proxied: bool = False) -> AddressRecord: ...

    def define(self, label: str, ip: str, ttl: int = 300, proxied: bool = False) -> AddressRecord:
        self.undefine(label)
        return self.create(label, ip, ttl=ttl, proxied=proxied)

    def write_credentials_file(self) -> str:
        """Write DNS-01 credentials for certbot and return the file path."""
        raise NotImplementedError(f"{type(self).__name__} cannot issue DNS-01 credentials")


class CertificateProvider(ManagedResource):
    """Certificate bundles keyed by full domain."""

    kind = "SSL certificate"

    @abc.abstractmethod
    def get(self, full_domain: str) -> Optional[CertificateBundle]: ...

    @abc.abstractmethod
    def create(self, full_domain: str, email: Optional[str] = None) -> None: ...

    @abc.abstractmethod
    def renew(self, full_domain: str, days_before_expiry: int = 30) -> bool: ...

    @abc.abstractmethod
    def wait(self, full_domain: str, ip: str, max_attempts: int = 12) -> PropagationResult: ...

    def define(self, full_domain: str, email: Optional[str] = None) -> None:
        self.undefine(full_domain)
        self.create(full_domain, email)

    def check(self, full_domain: str) -> CertificateBundle:
        """Existence check that never reports absence as an error."""
        return self.get(full_domain) or CertificateBundle.missing(full_domain)

    def get_wildcard(self, base_domain: str) -> Optional[CertificateBundle]:
        return None

    def create_wildcard(self, base_domain: str, email: Optional[str], credentials_path: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not issue wildcard certificates")


class ReverseProxyProvider(ManagedResource):
    """Virtual hosts keyed by full domain, plus the global validate/reload primitives."""

    kind = "Nginx site"

    @abc.abstractmethod
    def get(self, server_name: str) -> Optional[VirtualHost]: ...

    @abc.abstractmethod
    def list(self) -> list[VirtualHost]: ...

    @abc.abstractmethod
    def create(self, vhost: VirtualHost) -> None: ...

    @abc.abstractmethod
    def is_enabled(self, server_name: str) -> bool: ...

    @abc.abstractmethod
    def enable(self, server_name: str) -> None: ...

    @abc.abstractmethod
    def disable(self, server_name: str) -> None: ...

    @abc.abstractmethod
    def validate(self) -> None:
        """Check the merged configuration; raise ProviderError if it is invalid."""

    @abc.abstractmethod
    def reload(self) -> None:
        """Hot-reload the serving process."""

    def define(self, vhost: VirtualHost) -> None:
        self.undefine(vhost.server_name)
        self.create(vhost)

    def reinitialize(self) -> None:
        self.validate()
        self.reload()
