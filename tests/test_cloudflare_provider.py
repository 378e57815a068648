"""Tests for the Cloudflare DNS provider."""

from __future__ import annotations

import os
import stat
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
import cloudflare

from edge_subdomains.config import settings
from edge_subdomains.errors import AlreadyExistsError, NotFoundError, ProviderError, ValidationError
from edge_subdomains.models import OutcomeStatus
from edge_subdomains.providers.cloudflare import CloudflareDnsProvider

BASE = "example.com"


def entry(name, content="203.0.113.10", id="rec-1", type="A", ttl=300, proxied=False):
    return SimpleNamespace(id=id, name=name, content=content, type=type, ttl=ttl, proxied=proxied)


def page(entries, next_page=None):
    p = MagicMock()
    p.result = entries
    p.has_next_page.return_value = next_page is not None
    p.get_next_page.return_value = next_page
    return p


@pytest.fixture
def cf():
    client = MagicMock()
    client.dns.records.list.return_value = page([])
    return client


@pytest.fixture
def provider(cf):
    return CloudflareDnsProvider(base_domain=BASE, cf=cf, zone_id="zone-1", api_token="token")


class TestCloudflareDnsProvider:
    def test_requires_base_domain(self, cf, monkeypatch):
        monkeypatch.setattr(settings, "BASE_DOMAIN", "")
        with pytest.raises(ValidationError):
            CloudflareDnsProvider(base_domain="", cf=cf)

    def test_zone_discovered_from_base_domain(self, cf):
        cf.zones.list.return_value = [
            SimpleNamespace(id="zone-other", name="other.org"),
            SimpleNamespace(id="zone-42", name=BASE),
        ]
        provider = CloudflareDnsProvider(base_domain=BASE, cf=cf, zone_id=None, api_token="t")
        provider._zone_id = None

        assert provider.zone_id == "zone-42"
        cf.zones.list.assert_called_once_with(name=BASE)

    def test_zone_not_found(self, cf):
        cf.zones.list.return_value = []
        provider = CloudflareDnsProvider(base_domain=BASE, cf=cf, api_token="t")
        provider._zone_id = None

        with pytest.raises(ProviderError):
            provider.zone_id

    def test_get_uses_exact_name_filter(self, provider, cf):
        cf.dns.records.list.return_value = page([entry("api.example.com")])

        record = provider.get("api")

        assert record.id == "rec-1"
        assert record.content == "203.0.113.10"
        cf.dns.records.list.assert_called_once_with(
            zone_id="zone-1", type="A", name={"exact": "api.example.com"}
        )

    def test_get_missing(self, provider):
        assert provider.get("api") is None

    def test_get_apex(self, provider, cf):
        cf.dns.records.list.return_value = page([entry(BASE)])

        assert provider.get("@").name == BASE

    def test_list_follows_pages_and_filters(self, provider, cf):
        second = page([entry("www.example.com", id="rec-2"), entry("api.other.org", id="rec-3")])
        first = page([entry("api.example.com"), entry(BASE, id="rec-4")], next_page=second)
        cf.dns.records.list.return_value = first

        records = provider.list()

        assert [r.name for r in records] == ["api.example.com", BASE, "www.example.com"]
        cf.dns.records.list.assert_called_once_with(zone_id="zone-1", type="A", page=1, per_page=100)

    def test_create(self, provider, cf):
        cf.dns.records.create.return_value = entry("api.example.com", ttl=120, proxied=True)

        record = provider.create("api", "203.0.113.10", ttl=120, proxied=True)

        assert record.ttl == 120
        assert record.proxied is True
        cf.dns.records.create.assert_called_once_with(
            zone_id="zone-1",
            name="api.example.com",
            type="A",
            content="203.0.113.10",
            ttl=120,
            proxied=True,
        )

    def test_create_existing_fails(self, provider, cf):
        cf.dns.records.list.return_value = page([entry("api.example.com")])

        with pytest.raises(AlreadyExistsError):
            provider.create("api", "203.0.113.10")
        cf.dns.records.create.assert_not_called()

    def test_delete(self, provider, cf):
        cf.dns.records.list.return_value = page([entry("api.example.com", id="rec-9")])

        provider.delete("api")

        cf.dns.records.delete.assert_called_once_with("rec-9", zone_id="zone-1")

    def test_delete_missing(self, provider):
        with pytest.raises(NotFoundError):
            provider.delete("api")

    def test_undefine_missing_is_not_found(self, provider):
        assert provider.undefine("api").status is OutcomeStatus.NOT_FOUND

    def test_define_replaces_record(self, provider, cf):
        cf.dns.records.list.side_effect = [
            page([entry("api.example.com", id="old")]),  # delete lookup
            page([]),                                     # create lookup
        ]
        cf.dns.records.create.return_value = entry("api.example.com", content="198.51.100.7", id="new")

        record = provider.define("api", "198.51.100.7")

        cf.dns.records.delete.assert_called_once_with("old", zone_id="zone-1")
        assert record.id == "new"

    def test_api_error_wrapped(self, provider, cf):
        request = httpx.Request("GET", "https://api.cloudflare.com/client/v4/zones")
        cf.dns.records.list.side_effect = cloudflare.APIError("boom", request, body=None)

        with pytest.raises(ProviderError, match="boom"):
            provider.get("api")

    def test_write_credentials_file(self, provider, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "CF_CREDENTIALS_DIR", str(tmp_path))

        path = provider.write_credentials_file()

        assert os.path.dirname(path) == str(tmp_path)
        with open(path) as f:
            assert f.read() == "dns_cloudflare_api_token = token\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
