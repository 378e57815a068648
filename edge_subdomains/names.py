"""
Subdomain label grammar and full-domain derivation.
"""
import re

from edge_subdomains.errors import ValidationError

# Sentinel label for the base domain itself
APEX = "@"

_LABEL_CHARS = re.compile(r"^[A-Za-z0-9-]+$")


def validate_subdomain_name(label: str) -> None:
    """Raise ValidationError unless label is a single DNS label."""
    if not label or not label.strip():
        raise ValidationError("Subdomain name cannot be empty")
    if len(label) > 63:
        raise ValidationError(f"Subdomain name {label!r} is longer than 63 characters")
    if not _LABEL_CHARS.match(label):
        raise ValidationError(
            f"Invalid subdomain name {label!r}. Use only letters, numbers, and hyphens."
        )
    if label.startswith("-") or label.endswith("-"):
        raise ValidationError(f"Subdomain {label!r} cannot start or end with a hyphen")


def check_label(label: str) -> None:
    """Like validate_subdomain_name, but also accepts the apex sentinel."""
    if label == APEX:
        return
    validate_subdomain_name(label)


def get_full_domain(label: str, base_domain: str) -> str:
    if label in (APEX, ""):
        return base_domain
    return f"{label}.{base_domain}"


def in_base_domain(name: str, base_domain: str) -> bool:
    return name == base_domain or name.endswith(f".{base_domain}")


def label_for(name: str, base_domain: str) -> str | None:
    """Map a record name back to its label; None for names outside base_domain."""
    if name == base_domain:
        return APEX
    suffix = f".{base_domain}"
    if name.endswith(suffix):
        return name[: -len(suffix)]
    return None
