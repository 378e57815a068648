"""
Data model shared by the providers and the subdomain reconciler.
Provider read models are plain dataclasses; caller input is validated with pydantic.
"""
import datetime
import enum
import ipaddress
from dataclasses import asdict, dataclass, field
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class SubdomainConfig(BaseModel):
    """Desired state for one subdomain, as supplied by the caller."""
    ip: str                                  # public address of this server
    port: int = Field(ge=1, le=65535)        # local backend port behind nginx
    ttl: int = Field(default=300, ge=1)
    proxied: bool = False                    # Cloudflare proxy status
    email: Optional[str] = None              # ACME contact, falls back to settings

    @field_validator("ip")
    @classmethod
    def _ipv4(cls, value: str) -> str:
        try:
            address = ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"{value!r} is not a valid IP address") from None
        if address.version != 4:
            raise ValueError("IPv6 not supported: A records only")
        return value


@dataclass
class AddressRecord:
    """A DNS "A" record as returned by the DNS provider."""
    id: str
    name: str
    content: str
    ttl: int = 300
    proxied: bool = False
    type: str = "A"


@dataclass(frozen=True)
class CertificatePaths:
    cert: str
    key: str
    fullchain: str


@dataclass
class CertificateBundle:
    """Certificate triad on disk for one full domain."""
    exists: bool
    full_domain: str
    expires_at: Optional[datetime.datetime] = None
    days_left: Optional[int] = None
    paths: Optional[CertificatePaths] = None
    domains: tuple[str, ...] = ()

    @classmethod
    def missing(cls, full_domain: str) -> "CertificateBundle":
        return cls(exists=False, full_domain=full_domain)

    @property
    def is_wildcard(self) -> bool:
        return any(d.startswith("*.") for d in self.domains)

    def covers(self, full_domain: str) -> bool:
        """True if the certificate names full_domain directly or through a one-level wildcard."""
        if not self.exists:
            return False
        if full_domain in self.domains:
            return True
        parent = full_domain.split(".", 1)[1] if "." in full_domain else ""
        return bool(parent) and f"*.{parent}" in self.domains


@dataclass
class VirtualHost:
    """One nginx server entry routing a full domain to a local backend."""
    server_name: str
    proxy_target: Optional[str] = None       # "http://127.0.0.1:3000"
    tls_cert_path: Optional[str] = None
    tls_key_path: Optional[str] = None
    enabled: bool = True

    @property
    def port(self) -> int:
        if not self.proxy_target:
            return 80
        target = self.proxy_target.split("://", 1)[-1].rstrip("/")
        _, _, port = target.rpartition(":")
        return int(port) if port.isdigit() else 80

    @property
    def has_tls(self) -> bool:
        return bool(self.tls_cert_path and self.tls_key_path)


@dataclass
class PropagationResult:
    domain: str
    expected_ip: str
    actual_ip: Optional[str]
    propagated: bool
    attempts: int


@dataclass
class DnsStatus:
    exists: bool
    record_id: Optional[str] = None
    ttl: Optional[int] = None
    proxied: Optional[bool] = None


@dataclass
class CertStatus:
    exists: bool
    expires_at: Optional[datetime.datetime] = None
    days_left: Optional[int] = None
    wildcard: bool = False


@dataclass
class ProxyStatus:
    exists: bool
    enabled: bool
    server_name: Optional[str] = None


@dataclass
class SubdomainInfo:
    """Live view of a subdomain, recomputed from the providers on every read."""
    label: str
    full_domain: str
    ip: str
    port: int
    dns_status: DnsStatus
    cert_status: CertStatus
    proxy_status: ProxyStatus

    @property
    def fully_active(self) -> bool:
        return (
            self.dns_status.exists
            and self.cert_status.exists
            and self.proxy_status.exists
            and self.proxy_status.enabled
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["fully_active"] = self.fully_active
        return data


class OutcomeStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Result of a removal: done, nothing to remove, or failed with a reason."""
    status: OutcomeStatus
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "Outcome":
        return cls(OutcomeStatus.OK)

    @classmethod
    def not_found(cls, reason: Optional[str] = None) -> "Outcome":
        return cls(OutcomeStatus.NOT_FOUND, reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.FAILED, reason)

    @property
    def succeeded(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


@dataclass
class TeardownReport:
    """Per-step outcomes of a subdomain teardown."""
    label: str
    full_domain: str
    steps: dict[str, Outcome] = field(default_factory=dict)

    @property
    def warnings(self) -> list[str]:
        return [f"{step}: {o.reason}" for step, o in self.steps.items() if not o.succeeded]

    @property
    def clean(self) -> bool:
        return not self.warnings
