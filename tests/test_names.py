"""Tests for label validation and full-domain derivation."""

from __future__ import annotations

import pytest

from edge_subdomains.errors import ValidationError
from edge_subdomains.names import (
    APEX,
    check_label,
    get_full_domain,
    in_base_domain,
    label_for,
    validate_subdomain_name,
)


class TestValidateSubdomainName:
    @pytest.mark.parametrize("label", ["api", "a", "my-app", "App2", "x" * 63, "0"])
    def test_valid(self, label):
        validate_subdomain_name(label)

    @pytest.mark.parametrize(
        "label",
        ["", "   ", "-api", "api-", "-", "a_b", "a.b", "ü", "a b", "x" * 64, APEX],
    )
    def test_invalid(self, label):
        with pytest.raises(ValidationError):
            validate_subdomain_name(label)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_subdomain_name("bad_label")

    def test_check_label_accepts_apex(self):
        check_label(APEX)
        check_label("api")
        with pytest.raises(ValidationError):
            check_label("api-")


class TestFullDomain:
    def test_label(self):
        assert get_full_domain("api", "example.com") == "api.example.com"

    def test_apex_and_empty(self):
        assert get_full_domain(APEX, "example.com") == "example.com"
        assert get_full_domain("", "example.com") == "example.com"

    def test_in_base_domain(self):
        assert in_base_domain("example.com", "example.com")
        assert in_base_domain("api.example.com", "example.com")
        assert not in_base_domain("badexample.com", "example.com")
        assert not in_base_domain("api.other.org", "example.com")

    def test_label_for(self):
        assert label_for("example.com", "example.com") == APEX
        assert label_for("api.example.com", "example.com") == "api"
        assert label_for("a.b.example.com", "example.com") == "a.b"
        assert label_for("api.other.org", "example.com") is None
