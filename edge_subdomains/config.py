"""
Application settings loaded from the environment and an optional .env file.
"""
import logging

import cloudflare
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Subdomain Edge Provisioner"
    LOG_LEVEL: str = "INFO"

    # Base domain every managed label lives under (e.g. "example.com")
    BASE_DOMAIN: str = ""

    # DNS provider (Cloudflare)
    CLOUDFLARE_API_TOKEN: str = ""
    CLOUDFLARE_ZONE_ID: str | None = None  # discovered from BASE_DOMAIN if unset
    DEFAULT_TTL: int = 300
    CF_CREDENTIALS_DIR: str = "/etc/letsencrypt"

    # Certificates (Let's Encrypt via certbot)
    LETSENCRYPT_EMAIL: str = ""
    CERTBOT_PATH: str = "certbot"
    CERTBOT_PLUGIN: str = "nginx"
    LE_LIVE_DIR: str = "/etc/letsencrypt/live"
    LE_STAGING: bool = False
    LE_RENEW_SOON: int = 30             # renew if <30 days to expiry
    USE_WILDCARD_SSL: bool = False

    # Propagation polling against a public resolver
    DNS_RESOLVER: str = "8.8.8.8"
    PROPAGATION_ATTEMPTS: int = Field(default=12, ge=1)
    PROPAGATION_INTERVAL: float = Field(default=10.0, ge=0)

    # Nginx
    NGINX_SITES_AVAILABLE: str = "/etc/nginx/sites-available"
    NGINX_SITES_ENABLED: str = "/etc/nginx/sites-enabled"
    NGINX_TEST_CMD: str = "nginx -t"
    NGINX_RELOAD_CMD: str = "nginx -s reload"
    NGINX_RELOAD_FALLBACK_CMD: str = "systemctl reload nginx"

    def cloudflare_client(self) -> cloudflare.Cloudflare:
        return cloudflare.Cloudflare(api_token=self.CLOUDFLARE_API_TOKEN)


def configure_logging(level: str | None = None) -> None:
    """Install a root handler at LOG_LEVEL (or the given level)."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


settings = Settings()
