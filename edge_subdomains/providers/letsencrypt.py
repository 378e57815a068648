"""
Let's Encrypt certificate provider.
Issues, renews and deletes per-domain certificates through the certbot CLI and
reads their expiry straight from the PEM files.
"""
import datetime
import logging
import math
import subprocess
import time
from pathlib import Path
from typing import Optional

import dns.resolver
from cryptography import x509

from edge_subdomains.config import settings
from edge_subdomains.errors import (
    AlreadyExistsError,
    NotFoundError,
    PropagationTimeoutError,
    ProviderError,
    ValidationError,
)
from edge_subdomains.models import CertificateBundle, CertificatePaths, PropagationResult
from edge_subdomains.providers.base import CertificateProvider
from edge_subdomains.providers.resolver import lookup_a, make_resolver

logger = logging.getLogger(__name__)

CERTBOT_TIMEOUT = 300  # 5 minutes


class LetsEncryptProvider(CertificateProvider):
    """
    Manages certificates under <config-dir>/live/<name>/{cert,privkey,fullchain}.pem.
    A certificate exists only when all three files are present.
    """

    def __init__(
        self,
        email: Optional[str] = None,
        live_dir: Optional[str] = None,
        certbot_path: Optional[str] = None,
        plugin: Optional[str] = None,
        staging: Optional[bool] = None,
        resolver: Optional[dns.resolver.Resolver] = None,
        propagation_interval: Optional[float] = None,
    ):
        self.default_email = email or settings.LETSENCRYPT_EMAIL
        self.live_dir = Path(live_dir or settings.LE_LIVE_DIR)
        self.certbot_path = certbot_path or settings.CERTBOT_PATH
        self.plugin = plugin or settings.CERTBOT_PLUGIN
        self.staging = settings.LE_STAGING if staging is None else staging
        self.resolver = resolver
        self.propagation_interval = (
            settings.PROPAGATION_INTERVAL if propagation_interval is None else propagation_interval
        )
        logger.debug(f"Let's Encrypt provider initialized with email: {'set' if self.default_email else 'not set'}")

    # ------------------------------------------------------------
    def _check_certbot(self) -> None:
        """Raise ValidationError if certbot cannot be executed."""
        try:
            subprocess.run([self.certbot_path, "--version"], capture_output=True, check=True, timeout=30)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise ValidationError(f"certbot is not available. Please install it first: {e}") from e

    def _common_args(self) -> list[str]:
        args = ["--non-interactive", "--config-dir", str(self.live_dir.parent)]
        if self.staging:
            args.append("--staging")
        return args

    def _run_certbot(self, cmd: list[str], action: str) -> subprocess.CompletedProcess:
        logger.info(f"Running certbot: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=CERTBOT_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise ProviderError(f"Certbot timed out after {CERTBOT_TIMEOUT} seconds ({action})") from e
        except OSError as e:
            raise ProviderError(f"Error running certbot ({action}): {e}") from e

        if result.returncode != 0:
            logger.error(f"Certbot failed with exit code {result.returncode} ({action})")
            if result.stdout:
                logger.error(f"stdout: {result.stdout}")
            raise ProviderError(f"Failed to {action}: {result.stderr.strip() or result.stdout.strip()}")
        return result

    def _resolve_email(self, email: Optional[str]) -> str:
        contact = email or self.default_email
        if not contact:
            raise ValidationError(
                "Email is required for SSL certificate creation. "
                "Provide it explicitly or set LETSENCRYPT_EMAIL."
            )
        return contact

    # ------------------------------------------------------------
    def get_certificate_paths(self, name: str) -> CertificatePaths:
        base = self.live_dir / name
        return CertificatePaths(
            cert=str(base / "cert.pem"),
            key=str(base / "privkey.pem"),
            fullchain=str(base / "fullchain.pem"),
        )

    def _exists(self, name: str) -> bool:
        paths = self.get_certificate_paths(name)
        return all(Path(p).exists() for p in (paths.cert, paths.key, paths.fullchain))

    def _bundle(self, name: str, full_domain: str) -> Optional[CertificateBundle]:
        if not self._exists(name):
            logger.debug(f"Certificate {name} does not exist")
            return None

        paths = self.get_certificate_paths(name)
        try:
            cert = x509.load_pem_x509_certificate(Path(paths.cert).read_bytes())
        except (OSError, ValueError) as e:
            raise ProviderError(f"Failed to read certificate {paths.cert}: {e}") from e

        expires = cert.not_valid_after_utc
        delta = expires - datetime.datetime.now(datetime.timezone.utc)
        days_left = math.ceil(delta.total_seconds() / 86400)

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            domains = tuple(san.value.get_values_for_type(x509.DNSName))
        except x509.ExtensionNotFound:
            domains = (full_domain,)

        logger.debug(f"Certificate {name}: expires {expires:%Y-%m-%d}, {days_left} days left")
        return CertificateBundle(
            exists=True,
            full_domain=full_domain,
            expires_at=expires,
            days_left=days_left,
            paths=paths,
            domains=domains,
        )

    def get(self, full_domain: str) -> Optional[CertificateBundle]:
        return self._bundle(full_domain, full_domain)

    def create(self, full_domain: str, email: Optional[str] = None) -> None:
        """Issue a certificate for full_domain. Fails if one is already on disk."""
        self._check_certbot()
        contact = self._resolve_email(email)

        if self._exists(full_domain):
            raise AlreadyExistsError(f"SSL certificate for {full_domain} already exists")

        cmd = [
            self.certbot_path, "certonly", f"--{self.plugin}",
            "--agree-tos",
            "--email", contact,
            "--cert-name", full_domain,
            "-d", full_domain,
            *self._common_args(),
        ]
        self._run_certbot(cmd, f"create SSL certificate for {full_domain}")
        logger.info(f"Certificate created successfully for {full_domain}")

    def delete(self, full_domain: str) -> None:
        if not self._exists(full_domain):
            raise NotFoundError(f"SSL certificate for {full_domain} does not exist")
        self._check_certbot()

        cmd = [self.certbot_path, "delete", "--cert-name", full_domain, *self._common_args()]
        self._run_certbot(cmd, f"delete SSL certificate for {full_domain}")
        logger.info(f"Certificate deleted: {full_domain}")

    def renew(self, full_domain: str, days_before_expiry: int = 30) -> bool:
        """
        Renew the certificate if it expires within days_before_expiry days.
        Returns True if certbot renewed it.
        """
        info = self.check(full_domain)
        if not info.exists or info.days_left is None:
            logger.debug(f"Certificate for {full_domain} does not exist, cannot renew")
            return False

        if info.days_left > days_before_expiry:
            logger.debug(f"Certificate for {full_domain} still valid for {info.days_left} days, no renewal needed")
            return False

        self._check_certbot()
        cmd = [
            self.certbot_path, "renew",
            "--cert-name", full_domain,
            "--force-renewal",
            *self._common_args(),
        ]
        self._run_certbot(cmd, f"renew SSL certificate for {full_domain}")
        logger.info(f"Certificate renewed successfully for {full_domain}")
        return True

    def wait(self, full_domain: str, ip: str, max_attempts: int = 12) -> PropagationResult:
        """
        Poll the public resolver until full_domain resolves to ip.
        Raises PropagationTimeoutError after max_attempts lookups.
        """
        resolver = self.resolver or make_resolver(settings.DNS_RESOLVER)
        logger.info(f"Waiting for DNS propagation: {full_domain} -> {ip}")

        for attempt in range(1, max_attempts + 1):
            actual = lookup_a(resolver, full_domain)
            if actual == ip:
                logger.info(f"DNS propagated: {full_domain} -> {ip} (attempt {attempt})")
                return PropagationResult(
                    domain=full_domain,
                    expected_ip=ip,
                    actual_ip=actual,
                    propagated=True,
                    attempts=attempt,
                )

            logger.debug(f"DNS not yet propagated ({attempt}/{max_attempts}): {full_domain} -> {actual or 'no result'}")
            if attempt < max_attempts:
                time.sleep(self.propagation_interval)

        raise PropagationTimeoutError(full_domain, ip, max_attempts)

    # ------------------------------------------------------------
    @staticmethod
    def wildcard_name(base_domain: str) -> str:
        return f"{base_domain}-wildcard"

    def get_wildcard(self, base_domain: str) -> Optional[CertificateBundle]:
        return self._bundle(self.wildcard_name(base_domain), base_domain)

    def create_wildcard(self, base_domain: str, email: Optional[str], credentials_path: str) -> None:
        """
        Issue (or force-reissue) a certificate for base_domain and *.base_domain
        using the DNS-01 challenge through certbot's dns-cloudflare plugin.
        """
        self._check_certbot()
        contact = self._resolve_email(email)

        cmd = [
            self.certbot_path, "certonly",
            "--dns-cloudflare",
            f"--dns-cloudflare-credentials={credentials_path}",
            "--dns-cloudflare-propagation-seconds", "60",
            "--preferred-challenges", "dns-01",
            "--agree-tos",
            "--email", contact,
            "--cert-name", self.wildcard_name(base_domain),
            "-d", base_domain,
            "-d", f"*.{base_domain}",
            "--force-renewal",
            *self._common_args(),
        ]
        self._run_certbot(cmd, f"create wildcard SSL certificate for {base_domain}")
        logger.info(f"Wildcard certificate created successfully for *.{base_domain}")
