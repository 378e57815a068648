"""
Lookups against a public resolver, bypassing the local resolver cache.
"""
import logging
from typing import Optional

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)


def make_resolver(nameserver: str) -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver(configure=False)
    resolver.nameservers = [nameserver]
    resolver.timeout = 2.0     # per try
    resolver.lifetime = 5.0    # total
    resolver.retry_servfail = True
    return resolver


def lookup_a(resolver: dns.resolver.Resolver, domain: str) -> Optional[str]:
    """First A address for domain, or None when it does not resolve (yet)."""
    try:
        return resolver.resolve(domain, "A")[0].address
    except dns.exception.DNSException as e:
        logger.debug(f"DNS lookup for {domain} failed: {e}")
        return None
