"""
Cloudflare DNS provider.
Manages one "A" record per label under the configured base domain.
"""
import logging
import os
import tempfile
from typing import Any, Callable, Optional

import cloudflare

from edge_subdomains.config import settings
from edge_subdomains.errors import AlreadyExistsError, NotFoundError, ProviderError, ValidationError
from edge_subdomains.models import AddressRecord
from edge_subdomains.names import get_full_domain, in_base_domain
from edge_subdomains.providers.base import DnsProvider

logger = logging.getLogger(__name__)

PER_PAGE = 100


class CloudflareDnsProvider(DnsProvider):
    """
    DNS provider backed by the Cloudflare API.
    The zone id is taken from settings or discovered from the base domain on first use.
    """

    def __init__(
        self,
        base_domain: Optional[str] = None,
        cf: Optional[cloudflare.Cloudflare] = None,
        zone_id: Optional[str] = None,
        api_token: Optional[str] = None,
    ):
        self.base_domain = base_domain or settings.BASE_DOMAIN
        if not self.base_domain:
            raise ValidationError("Cloudflare configuration incomplete: BASE_DOMAIN is required")
        self.api_token = api_token or settings.CLOUDFLARE_API_TOKEN
        self.cf = cf or cloudflare.Cloudflare(api_token=self.api_token)
        self._zone_id = zone_id or settings.CLOUDFLARE_ZONE_ID
        logger.debug(f"Cloudflare DNS provider initialized for domain: {self.base_domain}")

    def _api(self, action: str, call: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return call(*args, **kwargs)
        except cloudflare.APIError as e:
            logger.error(f"Cloudflare API request failed ({action}): {e}")
            raise ProviderError(f"Cloudflare API request failed ({action}): {e}") from e

    @property
    def zone_id(self) -> str:
        if not self._zone_id:
            for zone in self._api("list zones", self.cf.zones.list, name=self.base_domain):
                if zone.name == self.base_domain:
                    self._zone_id = zone.id
                    logger.info(f"Found zone ID {zone.id} for domain {self.base_domain}")
                    break
            else:
                raise ProviderError(f"Zone not found for domain: {self.base_domain}")
        return self._zone_id

    def full_domain(self, label: str) -> str:
        return get_full_domain(label, self.base_domain)

    @staticmethod
    def _to_record(entry: Any) -> AddressRecord:
        return AddressRecord(
            id=entry.id,
            name=entry.name,
            content=entry.content,
            ttl=entry.ttl,
            proxied=bool(entry.proxied),
            type=entry.type,
        )

    def get(self, label: str) -> Optional[AddressRecord]:
        """Return the A record for label, or None."""
        fqdn = self.full_domain(label)
        page = self._api(
            f"get {fqdn}", self.cf.dns.records.list,
            zone_id=self.zone_id, type="A", name={"exact": fqdn},
        )
        for entry in page.result:
            if entry.name == fqdn and entry.type == "A":
                return self._to_record(entry)
        logger.debug(f"No A record found for {fqdn}")
        return None

    def list(self) -> list[AddressRecord]:
        """All A records of the zone that belong to the base domain, across every page."""
        page = self._api(
            "list records", self.cf.dns.records.list,
            zone_id=self.zone_id, type="A", page=1, per_page=PER_PAGE,
        )
        entries = list(page.result)
        while page.has_next_page():
            page = self._api("list records", page.get_next_page)
            entries.extend(page.result)

        records = [
            self._to_record(e) for e in entries
            if e.type == "A" and in_base_domain(e.name, self.base_domain)
        ]
        logger.debug(f"Found {len(records)} A records for domain {self.base_domain}")
        return records

    def create(self, label: str, ip: str, ttl: int = 300, proxied: bool = False) -> AddressRecord:
        fqdn = self.full_domain(label)
        existing = self.get(label)
        if existing:
            raise AlreadyExistsError(f"DNS record for {fqdn} already exists (ID: {existing.id})")

        logger.info(f"Creating DNS record: {fqdn} -> {ip}")
        entry = self._api(
            f"create {fqdn}", self.cf.dns.records.create,
            zone_id=self.zone_id,
            name=fqdn,
            type="A",
            content=ip,
            ttl=ttl or settings.DEFAULT_TTL,
            proxied=proxied,
        )
        return self._to_record(entry)

    def delete(self, label: str) -> None:
        fqdn = self.full_domain(label)
        existing = self.get(label)
        if not existing:
            raise NotFoundError(f"DNS record for {fqdn} does not exist")

        logger.info(f"Deleting DNS record {existing.id} for {fqdn}")
        self._api(f"delete {fqdn}", self.cf.dns.records.delete, existing.id, zone_id=self.zone_id)

    def write_credentials_file(self) -> str:
        """
        Write a certbot dns-cloudflare credentials file (mode 0600).
        The caller removes it once issuance is done.
        """
        os.makedirs(settings.CF_CREDENTIALS_DIR, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="cloudflare-", suffix=".ini", dir=settings.CF_CREDENTIALS_DIR)
        with os.fdopen(fd, "w") as f:
            f.write(f"dns_cloudflare_api_token = {self.api_token}\n")
        os.chmod(path, 0o600)
        logger.debug(f"Cloudflare credentials written to {path}")
        return path
