"""
Subdomain reconciler.

Drives the DNS, certificate and reverse proxy providers so that a subdomain
label is either fully provisioned (A record, TLS certificate, nginx site) or
fully absent. Every read is recomputed from the providers; nothing is cached.
"""
import logging
from pathlib import Path
from typing import Optional, Union

import pydantic

from edge_subdomains.config import settings
from edge_subdomains.errors import DefineError, ProviderError, SubdomainError, ValidationError
from edge_subdomains.locks import LabelLocks
from edge_subdomains.models import (
    CertificateBundle,
    CertStatus,
    DnsStatus,
    Outcome,
    ProxyStatus,
    SubdomainConfig,
    SubdomainInfo,
    TeardownReport,
    VirtualHost,
)
from edge_subdomains.names import check_label, get_full_domain, label_for, validate_subdomain_name
from edge_subdomains.providers.base import CertificateProvider, DnsProvider, ReverseProxyProvider

logger = logging.getLogger(__name__)

STEP_DNS = "Creating DNS record"
STEP_PROPAGATION = "Waiting for DNS propagation"
STEP_CERT = "Creating SSL certificate"
STEP_WILDCARD = "Ensuring wildcard SSL certificate"
STEP_PROXY = "Creating Nginx configuration"
STEP_RELOAD = "Reinitializing nginx"

TEARDOWN_PROXY = "Removing Nginx configuration"
TEARDOWN_CERT = "Removing SSL certificate"
TEARDOWN_DNS = "Removing DNS record"

# Lock key for the shared wildcard bundle; never a valid label
WILDCARD_LOCK = "*"


class SubdomainReconciler:
    """
    Orchestrates define/undefine of subdomains across the three providers.

    ``define`` runs DNS -> propagation -> certificate -> nginx -> reload and
    tears everything down again if any step fails. ``undefine`` removes all
    three resources best-effort and reports what could not be removed.
    """

    def __init__(
        self,
        dns: DnsProvider,
        certificates: CertificateProvider,
        proxy: ReverseProxyProvider,
        base_domain: Optional[str] = None,
        locks: Optional[LabelLocks] = None,
        propagation_attempts: Optional[int] = None,
        use_wildcard_ssl: Optional[bool] = None,
        renew_within_days: Optional[int] = None,
    ):
        self.dns = dns
        self.certificates = certificates
        self.proxy = proxy
        self.base_domain = base_domain or getattr(dns, "base_domain", None) or settings.BASE_DOMAIN
        if not self.base_domain:
            raise ValidationError("BASE_DOMAIN is required")
        self.locks = locks or LabelLocks()
        self.propagation_attempts = propagation_attempts or settings.PROPAGATION_ATTEMPTS
        self.use_wildcard_ssl = settings.USE_WILDCARD_SSL if use_wildcard_ssl is None else use_wildcard_ssl
        self.renew_within_days = settings.LE_RENEW_SOON if renew_within_days is None else renew_within_days

        logger.info(
            f"Subdomain reconciler ready for {self.base_domain} "
            f"({'wildcard' if self.use_wildcard_ssl else 'per-domain'} certificates)"
        )

    # ------------------------------------------------------------
    def validate_subdomain_name(self, label: str) -> None:
        validate_subdomain_name(label)

    def get_full_domain(self, label: str) -> str:
        return get_full_domain(label, self.base_domain)

    @staticmethod
    def _parse_config(config: Union[SubdomainConfig, dict]) -> SubdomainConfig:
        if isinstance(config, SubdomainConfig):
            return config
        try:
            return SubdomainConfig.model_validate(config)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid subdomain configuration: {e}") from e

    # ------------------------------------------------------------
    def define(self, label: str, config: Union[SubdomainConfig, dict]) -> SubdomainInfo:
        """
        Provision label so that it routes to 127.0.0.1:<port> over HTTPS.
        Raises ValidationError before touching any provider, DefineError if a step fails.
        """
        check_label(label)
        cfg = self._parse_config(config)
        full_domain = self.get_full_domain(label)

        with self.locks.hold(label):
            logger.info(f"Defining {full_domain} -> {cfg.ip} (port {cfg.port})")
            step = STEP_DNS
            try:
                self.dns.define(label, cfg.ip, ttl=cfg.ttl, proxied=cfg.proxied)

                step = STEP_PROPAGATION
                self.certificates.wait(full_domain, cfg.ip, max_attempts=self.propagation_attempts)

                if self.use_wildcard_ssl:
                    step = STEP_WILDCARD
                    bundle = self._ensure_wildcard(full_domain, cfg.email)
                else:
                    step = STEP_CERT
                    self.certificates.define(full_domain, cfg.email)
                    bundle = self.certificates.check(full_domain)

                step = STEP_PROXY
                paths = bundle.paths
                self.proxy.define(VirtualHost(
                    server_name=full_domain,
                    proxy_target=f"http://127.0.0.1:{cfg.port}",
                    tls_cert_path=paths.fullchain if paths else None,
                    tls_key_path=paths.key if paths else None,
                ))

                step = STEP_RELOAD
                self.proxy.reinitialize()
            except Exception as e:
                logger.error(f"Failed to define {full_domain} at {step}: {e}")
                report = self._teardown(label)
                if not report.clean:
                    logger.warning(f"Cleanup of {full_domain} left: {'; '.join(report.warnings)}")
                raise DefineError(label, step, e) from e

            logger.info(f"Subdomain {full_domain} defined")
            return self._info(label)

    def undefine(self, label: str) -> TeardownReport:
        """
        Remove every resource of label. Provider failures are reported as
        warnings and never raised.
        """
        check_label(label)
        with self.locks.hold(label):
            report = self._teardown(label)
        for warning in report.warnings:
            logger.warning(f"Undefine {report.full_domain}: {warning}")
        if report.clean:
            logger.info(f"Subdomain {report.full_domain} undefined")
        return report

    def _attempt(self, step: str, call, *args) -> Outcome:
        try:
            result = call(*args)
        except Exception as e:
            logger.warning(f"{step} failed: {e}")
            return Outcome.failed(str(e))
        return result if isinstance(result, Outcome) else Outcome.ok()

    def _teardown(self, label: str) -> TeardownReport:
        full_domain = self.get_full_domain(label)
        report = TeardownReport(label=label, full_domain=full_domain)

        report.steps[TEARDOWN_PROXY] = self._attempt(TEARDOWN_PROXY, self.proxy.undefine, full_domain)
        # per-domain bundle only; the shared <base>-wildcard bundle is never removed here
        report.steps[TEARDOWN_CERT] = self._attempt(TEARDOWN_CERT, self.certificates.undefine, full_domain)
        report.steps[TEARDOWN_DNS] = self._attempt(TEARDOWN_DNS, self.dns.undefine, label)
        report.steps[STEP_RELOAD] = self._attempt(STEP_RELOAD, self.proxy.reinitialize)
        return report

    # ------------------------------------------------------------
    def _wildcard_fresh(self, bundle: Optional[CertificateBundle], days_before_expiry: int) -> bool:
        return bool(
            bundle
            and bundle.exists
            and bundle.days_left is not None
            and bundle.days_left > days_before_expiry
        )

    def _issue_wildcard(self, email: Optional[str]) -> CertificateBundle:
        credentials = self.dns.write_credentials_file()
        try:
            self.certificates.create_wildcard(self.base_domain, email, credentials)
        finally:
            Path(credentials).unlink(missing_ok=True)

        bundle = self.certificates.get_wildcard(self.base_domain)
        if not bundle:
            raise ProviderError(f"Wildcard certificate for {self.base_domain} missing after issuance")
        return bundle

    def _ensure_wildcard(self, full_domain: str, email: Optional[str]) -> CertificateBundle:
        """Reuse the shared wildcard bundle, issuing it when absent or due for renewal."""
        with self.locks.hold(WILDCARD_LOCK):
            bundle = self.certificates.get_wildcard(self.base_domain)
            if self._wildcard_fresh(bundle, self.renew_within_days) and bundle.covers(full_domain):
                logger.debug(f"Wildcard certificate valid for {bundle.days_left} more days")
                return bundle

            logger.info(f"Issuing wildcard certificate for *.{self.base_domain}")
            return self._issue_wildcard(email)

    # ------------------------------------------------------------
    def _cert_status(self, full_domain: str) -> CertStatus:
        if self.use_wildcard_ssl:
            bundle = self.certificates.get_wildcard(self.base_domain)
            if bundle and bundle.covers(full_domain):
                return CertStatus(
                    exists=True,
                    expires_at=bundle.expires_at,
                    days_left=bundle.days_left,
                    wildcard=True,
                )

        bundle = self.certificates.check(full_domain)
        return CertStatus(exists=bundle.exists, expires_at=bundle.expires_at, days_left=bundle.days_left)

    def _info(self, label: str) -> SubdomainInfo:
        full_domain = self.get_full_domain(label)

        record = self.dns.get(label)
        dns_status = DnsStatus(
            exists=record is not None,
            record_id=record.id if record else None,
            ttl=record.ttl if record else None,
            proxied=record.proxied if record else None,
        )

        vhost = self.proxy.get(full_domain)
        proxy_status = ProxyStatus(
            exists=vhost is not None,
            enabled=self.proxy.is_enabled(full_domain),
            server_name=vhost.server_name if vhost else None,
        )

        return SubdomainInfo(
            label=label,
            full_domain=full_domain,
            ip=record.content if record else "",
            port=vhost.port if vhost else 80,
            dns_status=dns_status,
            cert_status=self._cert_status(full_domain),
            proxy_status=proxy_status,
        )

    def get_info(self, label: str) -> SubdomainInfo:
        check_label(label)
        return self._info(label)

    def reinitialize_proxy(self) -> None:
        self.proxy.reinitialize()

    def renew_certificates(self, days_before_expiry: Optional[int] = None) -> dict[str, bool]:
        """
        Renew certificates expiring within days_before_expiry days and reload
        nginx if anything was renewed. Returns {full_domain: renewed}.
        """
        threshold = self.renew_within_days if days_before_expiry is None else days_before_expiry
        results: dict[str, bool] = {}

        if self.use_wildcard_ssl:
            name = f"*.{self.base_domain}"
            with self.locks.hold(WILDCARD_LOCK):
                bundle = self.certificates.get_wildcard(self.base_domain)
                if not bundle:
                    logger.info(f"No wildcard certificate for {self.base_domain}, nothing to renew")
                    return results
                if self._wildcard_fresh(bundle, threshold):
                    results[name] = False
                else:
                    try:
                        self._issue_wildcard(None)
                        results[name] = True
                    except (SubdomainError, NotImplementedError) as e:
                        logger.error(f"Failed to renew wildcard certificate {name}: {e}")
                        results[name] = False
        else:
            for info in self.list():
                try:
                    with self.locks.hold(info.label):
                        results[info.full_domain] = self.certificates.renew(info.full_domain, threshold)
                except SubdomainError as e:
                    logger.error(f"Failed to renew certificate for {info.full_domain}: {e}")
                    results[info.full_domain] = False

        renewed = [d for d, ok in results.items() if ok]
        if renewed:
            logger.info(f"Renewed certificates: {', '.join(renewed)}")
            self.proxy.reinitialize()
        return results

    def list(self) -> list[SubdomainInfo]:
        """Fully active subdomains under the base domain, sorted by label."""
        labels = set()
        for record in self.dns.list():
            label = label_for(record.name, self.base_domain)
            if label is not None:
                labels.add(label)

        active = []
        for label in sorted(labels):
            try:
                info = self._info(label)
            except SubdomainError as e:
                logger.warning(f"Skipping {label}: {e}")
                continue
            if info.fully_active:
                active.append(info)
        return active
