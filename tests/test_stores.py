"""Store pricing policy, custom domains and host resolution."""

import pytest
from bson import ObjectId

import config
from errors import ValidationError
from stores import (
    new_store_doc,
    normalize_custom_domain,
    resolve_store_by_host,
    split_store_host,
    store_full_domain,
    validate_pricing_settings,
)


class TestPricingSettings:
    def test_defaults_are_consistent(self):
        s = validate_pricing_settings({})
        assert s["minimum_markup"] <= s["default_markup"] <= s["maximum_markup"]
        assert s["auto_fulfillment"] is True

    def test_partial_override(self):
        s = validate_pricing_settings({"default_markup": "35"})
        assert s["default_markup"] == 35.0

    @pytest.mark.parametrize(
        "settings",
        [
            {"minimum_markup": 30, "default_markup": 20},
            {"default_markup": 60, "maximum_markup": 50},
            {"minimum_markup": -1},
            {"low_balance_alert": -5},
            {"default_markup": "lots"},
        ],
    )
    def test_rejects_invalid(self, settings):
        with pytest.raises(ValidationError):
            validate_pricing_settings(settings)


class TestCustomDomain:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Acme-Data.com", "acme-data.com"),
            ("https://www.acme-data.com/", "acme-data.com"),
            ("http://shop.acme.co.uk:8080/x?y=1", "shop.acme.co.uk"),
            ("", None),
            (None, None),
        ],
    )
    def test_normalise(self, raw, expected):
        assert normalize_custom_domain(raw) == expected

    @pytest.mark.parametrize("raw", ["localhost", "acme", "bad_domain.com", "-acme.com"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            normalize_custom_domain(raw)

    def test_platform_domain_is_refused(self):
        with pytest.raises(ValidationError):
            normalize_custom_domain(f"acme.{config.STORE_PUBLIC_HOST}")


class TestHosts:
    def test_subdomain_host(self):
        assert split_store_host(f"acme.{config.STORE_PUBLIC_HOST}:443") == ("acme", None)

    def test_apex_is_not_a_store(self):
        assert split_store_host(f"www.{config.STORE_PUBLIC_HOST}") == (None, None)

    def test_nested_label_is_not_a_store(self):
        assert split_store_host(f"a.b.{config.STORE_PUBLIC_HOST}") == (None, None)

    def test_custom_host(self):
        assert split_store_host("WWW.Acme-Data.com") == (None, "acme-data.com")

    def test_full_domain_prefers_verified_custom_domain(self):
        doc = new_store_doc(ObjectId(), "Acme", "acme", "REG-1", custom_domain="acme-data.com")
        assert store_full_domain(doc) == f"acme.{config.STORE_PUBLIC_HOST}"
        doc["domain_settings"]["custom_domain_verified"] = True
        assert store_full_domain(doc) == "acme-data.com"


class TestResolveStore:
    def test_by_subdomain(self, storage):
        owner = ObjectId()
        storage.insert_store(new_store_doc(owner, "Acme", "acme", "REG-1"))

        out = resolve_store_by_host(storage, f"acme.{config.STORE_PUBLIC_HOST}")
        assert out["owner_id"] == str(owner)
        assert out["full_domain"] == f"acme.{config.STORE_PUBLIC_HOST}"

    def test_unverified_custom_domain_does_not_resolve(self, storage):
        storage.insert_store(new_store_doc(ObjectId(), "Acme", "acme", "REG-1", custom_domain="acme-data.com"))
        assert resolve_store_by_host(storage, "acme-data.com") is None

    def test_verified_custom_domain(self, storage):
        doc = new_store_doc(ObjectId(), "Acme", "acme", "REG-1", custom_domain="acme-data.com")
        doc["domain_settings"]["custom_domain_verified"] = True
        storage.insert_store(doc)
        assert resolve_store_by_host(storage, "acme-data.com")["full_domain"] == "acme-data.com"

    def test_unknown_host(self, storage):
        assert resolve_store_by_host(storage, f"ghost.{config.STORE_PUBLIC_HOST}") is None
