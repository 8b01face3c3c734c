"""Tests for NuGet service type matching."""

import pytest

from registry.nuget.catalog import (
    KNOWN_TAGS,
    ServiceType,
    is_known_alias,
    is_versioned,
    match_specificity,
    match_tag,
)


class TestMatchTag:
    """Test match_tag."""

    def test_matches_base_tag(self):
        assert match_tag("SearchQueryService") is ServiceType.SEARCH_QUERY_SERVICE

    def test_matches_versioned_alias(self):
        assert match_tag("RegistrationsBaseUrl/3.6.0") is ServiceType.REGISTRATIONS_BASE_URL
        assert match_tag("RegistrationsBaseUrl/Versioned") is ServiceType.REGISTRATIONS_BASE_URL

    def test_matches_case_insensitively(self):
        assert match_tag("packagebaseaddress/3.0.0") is ServiceType.PACKAGE_BASE_ADDRESS
        assert match_tag("PACKAGEPUBLISH/2.0.0") is ServiceType.PACKAGE_PUBLISH

    def test_ignores_surrounding_whitespace(self):
        assert match_tag("  LegacyGallery/2.0.0 ") is ServiceType.LEGACY_GALLERY

    @pytest.mark.parametrize(
        "tag",
        [
            "Catalog/3.0.0",
            "SearchGalleryQueryService/3.0.0-rc",
            "SearchQueryServiceX",
            "Search",
            "",
            "   ",
            None,
        ],
    )
    def test_unknown_tags_return_none(self, tag):
        assert match_tag(tag) is None

    def test_every_known_alias_matches_its_type(self):
        for service_type, tags in KNOWN_TAGS.items():
            for tag in tags:
                assert match_tag(tag) is service_type, tag


class TestSpecificity:
    """Test tag ranking helpers."""

    def test_longer_alias_ranks_higher(self):
        assert match_specificity("RegistrationsBaseUrl/Versioned") > match_specificity(
            "RegistrationsBaseUrl/3.6.0"
        )
        assert match_specificity("SearchQueryService/3.0.0-beta") > match_specificity("SearchQueryService")

    def test_is_versioned(self):
        assert is_versioned("PackagePublish/2.0.0")
        assert not is_versioned("SearchQueryService")

    def test_is_known_alias(self):
        assert is_known_alias(ServiceType.REGISTRATIONS_BASE_URL, " registrationsbaseurl/3.6.0 ")
        assert not is_known_alias(ServiceType.REGISTRATIONS_BASE_URL, "RegistrationsBaseUrl/9.0.0")
        assert not is_known_alias(ServiceType.SEARCH_QUERY_SERVICE, "RegistrationsBaseUrl/3.6.0")

    def test_service_type_str_is_base_tag(self):
        assert str(ServiceType.VULNERABILITY_INFO) == "VulnerabilityInfo"
        assert ServiceType.OWNER_DETAILS_URI_TEMPLATE.base_tag == "OwnerDetailsUriTemplate"
        assert len(ServiceType) == 13
