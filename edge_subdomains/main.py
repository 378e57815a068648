"""
Reconciler factory wiring the concrete providers from settings.
"""
from typing import Optional

from edge_subdomains.config import Settings, settings as default_settings
from edge_subdomains.locks import LabelLocks
from edge_subdomains.providers.cloudflare import CloudflareDnsProvider
from edge_subdomains.providers.letsencrypt import LetsEncryptProvider
from edge_subdomains.providers.nginx import NginxProvider
from edge_subdomains.providers.resolver import make_resolver
from edge_subdomains.services.reconciler import SubdomainReconciler


def create_reconciler(settings: Optional[Settings] = None, locks: Optional[LabelLocks] = None) -> SubdomainReconciler:
    """Create a reconciler backed by Cloudflare, certbot and nginx."""
    s = settings or default_settings

    dns = CloudflareDnsProvider(
        base_domain=s.BASE_DOMAIN,
        cf=s.cloudflare_client(),
        zone_id=s.CLOUDFLARE_ZONE_ID,
        api_token=s.CLOUDFLARE_API_TOKEN,
    )
    certificates = LetsEncryptProvider(
        email=s.LETSENCRYPT_EMAIL,
        live_dir=s.LE_LIVE_DIR,
        certbot_path=s.CERTBOT_PATH,
        plugin=s.CERTBOT_PLUGIN,
        staging=s.LE_STAGING,
        resolver=make_resolver(s.DNS_RESOLVER),
        propagation_interval=s.PROPAGATION_INTERVAL,
    )
    proxy = NginxProvider(
        sites_available=s.NGINX_SITES_AVAILABLE,
        sites_enabled=s.NGINX_SITES_ENABLED,
        test_cmd=s.NGINX_TEST_CMD,
        reload_cmd=s.NGINX_RELOAD_CMD,
        reload_fallback_cmd=s.NGINX_RELOAD_FALLBACK_CMD,
    )

    return SubdomainReconciler(
        dns,
        certificates,
        proxy,
        base_domain=s.BASE_DOMAIN,
        locks=locks,
        propagation_attempts=s.PROPAGATION_ATTEMPTS,
        use_wildcard_ssl=s.USE_WILDCARD_SSL,
        renew_within_days=s.LE_RENEW_SOON,
    )
