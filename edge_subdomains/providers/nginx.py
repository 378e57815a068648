"""
Nginx reverse proxy provider.
Renders one site file per full domain into sites-available and enables it with a
symlink in sites-enabled.
"""
import logging
import os
import re
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from edge_subdomains.config import settings
from edge_subdomains.errors import AlreadyExistsError, NotFoundError, ProviderError
from edge_subdomains.models import VirtualHost
from edge_subdomains.providers.base import ReverseProxyProvider

logger = logging.getLogger(__name__)

NGINX_TIMEOUT = 30

SERVER_NAME_RE = re.compile(r"server_name\s+([^;]+);")
PROXY_PASS_RE = re.compile(r"proxy_pass\s+([^;]+);")
SSL_CERT_RE = re.compile(r"ssl_certificate\s+([^;]+);")
SSL_KEY_RE = re.compile(r"ssl_certificate_key\s+([^;]+);")


def _location_block(proxy_target: str) -> str:
    return f"""    location / {{
        proxy_pass {proxy_target};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        # WebSocket support
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";

        proxy_connect_timeout 60s;
        proxy_send_timeout 60s;
        proxy_read_timeout 60s;
    }}
"""


def render_site(vhost: VirtualHost) -> str:
    """
    Render the server blocks for a virtual host.
    With TLS paths: an HTTPS server plus an HTTP->HTTPS redirect; otherwise plain HTTP on port 80.
    """
    location = _location_block(vhost.proxy_target) if vhost.proxy_target else ""

    if vhost.has_tls:
        return f"""server {{
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name {vhost.server_name};

    ssl_certificate {vhost.tls_cert_path};
    ssl_certificate_key {vhost.tls_key_path};

    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_ciphers ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256:ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384;
    ssl_prefer_server_ciphers off;
    ssl_session_cache shared:SSL:10m;
    ssl_session_timeout 10m;

{location}}}

# HTTP to HTTPS redirect
server {{
    listen 80;
    listen [::]:80;
    server_name {vhost.server_name};

    return 301 https://$host$request_uri;
}}
"""

    return f"""server {{
    listen 80;
    listen [::]:80;
    server_name {vhost.server_name};

{location}}}
"""


def parse_site(content: str, fallback_name: str) -> VirtualHost:
    """Recover the fields of a rendered site file."""
    def first(pattern: re.Pattern) -> Optional[str]:
        m = pattern.search(content)
        return m.group(1).strip() if m else None

    return VirtualHost(
        server_name=first(SERVER_NAME_RE) or fallback_name,
        proxy_target=first(PROXY_PASS_RE),
        tls_cert_path=first(SSL_CERT_RE),
        tls_key_path=first(SSL_KEY_RE),
    )


class NginxProvider(ReverseProxyProvider):
    """
    Sites keyed by full domain. When sites-available and sites-enabled are the
    same directory every present site counts as enabled.
    """

    def __init__(
        self,
        sites_available: Optional[str] = None,
        sites_enabled: Optional[str] = None,
        test_cmd: Optional[str] = None,
        reload_cmd: Optional[str] = None,
        reload_fallback_cmd: Optional[str] = None,
    ):
        self.sites_available = Path(sites_available or settings.NGINX_SITES_AVAILABLE)
        self.sites_enabled = Path(sites_enabled or settings.NGINX_SITES_ENABLED)
        self.test_cmd = test_cmd or settings.NGINX_TEST_CMD
        self.reload_cmd = reload_cmd or settings.NGINX_RELOAD_CMD
        self.reload_fallback_cmd = reload_fallback_cmd or settings.NGINX_RELOAD_FALLBACK_CMD
        self.use_symlinks = self.sites_available.resolve() != self.sites_enabled.resolve()

        self.sites_available.mkdir(parents=True, exist_ok=True)
        if self.use_symlinks:
            self.sites_enabled.mkdir(parents=True, exist_ok=True)

        logger.debug(
            f"Nginx provider: available={self.sites_available}, "
            f"enabled={self.sites_enabled}, symlinks={self.use_symlinks}"
        )

    def _config_path(self, server_name: str) -> Path:
        return self.sites_available / server_name

    def _enabled_path(self, server_name: str) -> Path:
        return self.sites_enabled / server_name

    def _run(self, cmd: str) -> subprocess.CompletedProcess:
        return subprocess.run(shlex.split(cmd), capture_output=True, text=True, timeout=NGINX_TIMEOUT)

    def _write_file(self, path: Path, content: str) -> None:
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(content)
        os.replace(tmp, path)

    # ------------------------------------------------------------
    def get(self, server_name: str) -> Optional[VirtualHost]:
        path = self._config_path(server_name)
        if not path.is_file():
            logger.debug(f"Site {server_name} not found in {path}")
            return None
        try:
            content = path.read_text()
        except OSError as e:
            raise ProviderError(f"Failed to read site configuration {path}: {e}") from e

        vhost = parse_site(content, server_name)
        vhost.enabled = self.is_enabled(server_name)
        return vhost

    def list(self) -> list[VirtualHost]:
        if not self.sites_available.is_dir():
            return []
        sites = []
        for path in sorted(self.sites_available.iterdir()):
            if path.is_file() and not path.name.startswith("."):
                vhost = self.get(path.name)
                if vhost:
                    sites.append(vhost)
        logger.debug(f"Found {len(sites)} nginx sites")
        return sites

    def create(self, vhost: VirtualHost) -> None:
        """
        Write and enable the site, then validate the merged configuration.
        On validation failure the new files are removed again.
        """
        path = self._config_path(vhost.server_name)
        if path.exists():
            raise AlreadyExistsError(f"Nginx site {vhost.server_name} already exists")

        self._write_file(path, render_site(vhost))
        logger.info(f"Site configuration written to: {path}")

        enabled = self._enabled_path(vhost.server_name)
        try:
            if self.use_symlinks and vhost.enabled and not enabled.exists():
                enabled.symlink_to(path)
            self.validate()
        except (ProviderError, OSError) as e:
            logger.error(f"Rolling back nginx site {vhost.server_name}: {e}")
            if self.use_symlinks and enabled.is_symlink():
                enabled.unlink()
            path.unlink(missing_ok=True)
            if isinstance(e, ProviderError):
                raise
            raise ProviderError(f"Failed to create nginx site {vhost.server_name}: {e}") from e

    def delete(self, server_name: str) -> None:
        path = self._config_path(server_name)
        if not path.exists():
            raise NotFoundError(f"Nginx site {server_name} does not exist")

        try:
            enabled = self._enabled_path(server_name)
            if self.use_symlinks and (enabled.is_symlink() or enabled.exists()):
                enabled.unlink()
                logger.debug(f"Removed symlink: {enabled}")
            path.unlink()
        except OSError as e:
            raise ProviderError(f"Failed to delete nginx site {server_name}: {e}") from e
        logger.info(f"Removed nginx site: {server_name}")

    def is_enabled(self, server_name: str) -> bool:
        if not self.use_symlinks:
            return self._config_path(server_name).exists()
        return self._enabled_path(server_name).exists()

    def enable(self, server_name: str) -> None:
        path = self._config_path(server_name)
        if not path.exists():
            raise NotFoundError(f"Nginx site {server_name} does not exist")
        if not self.use_symlinks:
            return

        enabled = self._enabled_path(server_name)
        if enabled.exists():
            logger.debug(f"Site {server_name} is already enabled")
            return

        enabled.symlink_to(path)
        try:
            self.validate()
        except ProviderError:
            enabled.unlink()
            raise
        logger.info(f"Site {server_name} enabled")

    def disable(self, server_name: str) -> None:
        if not self.use_symlinks:
            raise ProviderError("Cannot disable a site when sites-available and sites-enabled are the same directory")

        enabled = self._enabled_path(server_name)
        if not enabled.is_symlink() and not enabled.exists():
            logger.debug(f"Site {server_name} is already disabled")
            return
        enabled.unlink()
        logger.info(f"Site {server_name} disabled")

    def validate(self) -> None:
        try:
            result = self._run(self.test_cmd)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProviderError(f"Nginx configuration test failed: {e}") from e
        if result.returncode != 0:
            raise ProviderError(f"Nginx configuration test failed: {result.stderr.strip()}")
        logger.debug("Nginx configuration test passed")

    def reload(self) -> None:
        try:
            result = self._run(self.reload_cmd)
            if result.returncode == 0:
                logger.info("Nginx reloaded")
                return
            error = result.stderr.strip()
        except (OSError, subprocess.TimeoutExpired) as e:
            error = str(e)

        logger.warning(f"'{self.reload_cmd}' failed ({error}), trying '{self.reload_fallback_cmd}'")
        try:
            result = self._run(self.reload_fallback_cmd)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProviderError(f"Failed to reload nginx: {error}") from e
        if result.returncode != 0:
            raise ProviderError(f"Failed to reload nginx: {error}")
        logger.info("Nginx reloaded via fallback command")
