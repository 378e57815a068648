"""In-memory providers shared by the reconciler tests."""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Optional

import pytest

from edge_subdomains.errors import AlreadyExistsError, NotFoundError, PropagationTimeoutError
from edge_subdomains.locks import LabelLocks
from edge_subdomains.models import (
    AddressRecord,
    CertificateBundle,
    CertificatePaths,
    PropagationResult,
    VirtualHost,
)
from edge_subdomains.names import get_full_domain
from edge_subdomains.providers.base import CertificateProvider, DnsProvider, ReverseProxyProvider
from edge_subdomains.services.reconciler import SubdomainReconciler

BASE = "example.com"


class FailureMixin:
    """Raise a configured exception when a named method is called."""

    def _init_failures(self, journal: list):
        self.journal = journal
        self.failures: dict[str, Exception] = {}

    def _call(self, name: str, *args):
        self.journal.append((type(self).__name__, name, *args))
        if name in self.failures:
            raise self.failures[name]


class FakeDns(FailureMixin, DnsProvider):
    def __init__(self, journal: list, base_domain: str = BASE):
        self._init_failures(journal)
        self.base_domain = base_domain
        self.records: dict[str, AddressRecord] = {}
        self.extra: list[AddressRecord] = []
        self.credentials: list[str] = []
        self.tmp_dir: Optional[Path] = None
        self._next_id = 1

    def add(self, label: str, ip: str = "203.0.113.10") -> AddressRecord:
        record = AddressRecord(
            id=f"rec-{self._next_id}",
            name=get_full_domain(label, self.base_domain),
            content=ip,
        )
        self._next_id += 1
        self.records[label] = record
        return record

    def get(self, label):
        self._call("get", label)
        return self.records.get(label)

    def list(self):
        self._call("list")
        return [*self.records.values(), *self.extra]

    def create(self, label, ip, ttl=300, proxied=False):
        self._call("create", label)
        if label in self.records:
            raise AlreadyExistsError(label)
        record = self.add(label, ip)
        record.ttl = ttl
        record.proxied = proxied
        return record

    def delete(self, label):
        self._call("delete", label)
        if label not in self.records:
            raise NotFoundError(label)
        del self.records[label]

    def write_credentials_file(self):
        self._call("write_credentials_file")
        path = self.tmp_dir / f"cloudflare-{len(self.credentials)}.ini"
        path.write_text("dns_cloudflare_api_token = token\n")
        self.credentials.append(str(path))
        return str(path)


def make_bundle(name: str, days_left: int = 90, domains: tuple = ()) -> CertificateBundle:
    live = f"/etc/letsencrypt/live/{name}"
    return CertificateBundle(
        exists=True,
        full_domain=name,
        expires_at=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=days_left),
        days_left=days_left,
        paths=CertificatePaths(
            cert=f"{live}/cert.pem",
            key=f"{live}/privkey.pem",
            fullchain=f"{live}/fullchain.pem",
        ),
        domains=domains or (name,),
    )


class FakeCertificates(FailureMixin, CertificateProvider):
    def __init__(self, journal: list):
        self._init_failures(journal)
        self.bundles: dict[str, CertificateBundle] = {}
        self.wildcard: Optional[CertificateBundle] = None
        self.wildcard_issued = 0
        self.credentials_seen: list[tuple[str, bool]] = []
        self.propagated = True
        self.renewed: list[str] = []

    def get(self, full_domain):
        self._call("get", full_domain)
        return self.bundles.get(full_domain)

    def create(self, full_domain, email=None):
        self._call("create", full_domain)
        if full_domain in self.bundles:
            raise AlreadyExistsError(full_domain)
        self.bundles[full_domain] = make_bundle(full_domain)

    def delete(self, full_domain):
        self._call("delete", full_domain)
        if full_domain not in self.bundles:
            raise NotFoundError(full_domain)
        del self.bundles[full_domain]

    def renew(self, full_domain, days_before_expiry=30):
        self._call("renew", full_domain)
        bundle = self.bundles.get(full_domain)
        if not bundle or bundle.days_left > days_before_expiry:
            return False
        self.bundles[full_domain] = make_bundle(full_domain)
        self.renewed.append(full_domain)
        return True

    def wait(self, full_domain, ip, max_attempts=12):
        self._call("wait", full_domain)
        if not self.propagated:
            raise PropagationTimeoutError(full_domain, ip, max_attempts)
        return PropagationResult(full_domain, ip, ip, True, 1)

    def get_wildcard(self, base_domain):
        self._call("get_wildcard", base_domain)
        return self.wildcard

    def create_wildcard(self, base_domain, email, credentials_path):
        self._call("create_wildcard", base_domain)
        self.credentials_seen.append((credentials_path, Path(credentials_path).exists()))
        self.wildcard_issued += 1
        self.wildcard = make_bundle(
            f"{base_domain}-wildcard",
            domains=(base_domain, f"*.{base_domain}"),
        )


class FakeProxy(FailureMixin, ReverseProxyProvider):
    def __init__(self, journal: list):
        self._init_failures(journal)
        self.sites: dict[str, VirtualHost] = {}
        self.disabled: set[str] = set()
        self.validations = 0
        self.reloads = 0

    def get(self, server_name):
        self._call("get", server_name)
        return self.sites.get(server_name)

    def list(self):
        self._call("list")
        return list(self.sites.values())

    def create(self, vhost):
        self._call("create", vhost.server_name)
        if vhost.server_name in self.sites:
            raise AlreadyExistsError(vhost.server_name)
        self.sites[vhost.server_name] = vhost

    def delete(self, server_name):
        self._call("delete", server_name)
        if server_name not in self.sites:
            raise NotFoundError(server_name)
        del self.sites[server_name]
        self.disabled.discard(server_name)

    def is_enabled(self, server_name):
        return server_name in self.sites and server_name not in self.disabled

    def enable(self, server_name):
        self.disabled.discard(server_name)

    def disable(self, server_name):
        self.disabled.add(server_name)

    def validate(self):
        self._call("validate")
        self.validations += 1

    def reload(self):
        self._call("reload")
        self.reloads += 1


@pytest.fixture
def journal():
    return []


@pytest.fixture
def dns(journal, tmp_path):
    provider = FakeDns(journal)
    provider.tmp_dir = tmp_path
    return provider


@pytest.fixture
def certificates(journal):
    return FakeCertificates(journal)


@pytest.fixture
def proxy(journal):
    return FakeProxy(journal)


@pytest.fixture
def reconciler(dns, certificates, proxy):
    return SubdomainReconciler(
        dns,
        certificates,
        proxy,
        base_domain=BASE,
        locks=LabelLocks(),
        propagation_attempts=3,
        use_wildcard_ssl=False,
        renew_within_days=30,
    )


@pytest.fixture
def wildcard_reconciler(dns, certificates, proxy):
    return SubdomainReconciler(
        dns,
        certificates,
        proxy,
        base_domain=BASE,
        locks=LabelLocks(),
        propagation_attempts=3,
        use_wildcard_ssl=True,
        renew_within_days=30,
    )
