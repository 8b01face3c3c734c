"""NuGet V3 service types and the rules that recognize them in a service index."""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

VERSION_SEPARATOR = "/"


class ServiceType(Enum):
    """Capabilities a NuGet V3 source can advertise.

    The value is the base ``@type`` tag; servers append version suffixes
    such as ``/3.0.0-beta`` or ``/Versioned``.
    """

    SEARCH_QUERY_SERVICE = "SearchQueryService"
    REGISTRATIONS_BASE_URL = "RegistrationsBaseUrl"
    SEARCH_AUTOCOMPLETE_SERVICE = "SearchAutocompleteService"
    REPORT_ABUSE_URI_TEMPLATE = "ReportAbuseUriTemplate"
    README_URI_TEMPLATE = "ReadmeUriTemplate"
    PACKAGE_DETAILS_URI_TEMPLATE = "PackageDetailsUriTemplate"
    LEGACY_GALLERY = "LegacyGallery"
    PACKAGE_PUBLISH = "PackagePublish"
    PACKAGE_BASE_ADDRESS = "PackageBaseAddress"
    REPOSITORY_SIGNATURES = "RepositorySignatures"
    SYMBOL_PACKAGE_PUBLISH = "SymbolPackagePublish"
    VULNERABILITY_INFO = "VulnerabilityInfo"
    OWNER_DETAILS_URI_TEMPLATE = "OwnerDetailsUriTemplate"

    def __str__(self) -> str:
        return self.value

    @property
    def base_tag(self) -> str:
        return self.value


# Versioned aliases published by nuget.org today. Matching does not depend
# on this table; discovery logs whether a resolved tag is one of them.
KNOWN_TAGS: Dict[ServiceType, Tuple[str, ...]] = {
    ServiceType.SEARCH_QUERY_SERVICE: (
        "SearchQueryService/Versioned",
        "SearchQueryService/3.5.0",
        "SearchQueryService/3.0.0-rc",
        "SearchQueryService/3.0.0-beta",
        "SearchQueryService",
    ),
    ServiceType.REGISTRATIONS_BASE_URL: (
        "RegistrationsBaseUrl/Versioned",
        "RegistrationsBaseUrl/3.6.0",
        "RegistrationsBaseUrl/3.4.0",
        "RegistrationsBaseUrl/3.0.0-rc",
        "RegistrationsBaseUrl/3.0.0-beta",
        "RegistrationsBaseUrl",
    ),
    ServiceType.SEARCH_AUTOCOMPLETE_SERVICE: (
        "SearchAutocompleteService/Versioned",
        "SearchAutocompleteService/3.5.0",
        "SearchAutocompleteService/3.0.0-rc",
        "SearchAutocompleteService/3.0.0-beta",
        "SearchAutocompleteService",
    ),
    ServiceType.REPORT_ABUSE_URI_TEMPLATE: (
        "ReportAbuseUriTemplate/Versioned",
        "ReportAbuseUriTemplate/3.0.0",
        "ReportAbuseUriTemplate/3.0.0-rc",
        "ReportAbuseUriTemplate/3.0.0-beta",
    ),
    ServiceType.README_URI_TEMPLATE: (
        "ReadmeUriTemplate/Versioned",
        "ReadmeUriTemplate/6.13.0",
    ),
    ServiceType.PACKAGE_DETAILS_URI_TEMPLATE: ("PackageDetailsUriTemplate/5.1.0",),
    ServiceType.LEGACY_GALLERY: ("LegacyGallery/Versioned", "LegacyGallery/2.0.0", "LegacyGallery"),
    ServiceType.PACKAGE_PUBLISH: ("PackagePublish/Versioned", "PackagePublish/2.0.0"),
    ServiceType.PACKAGE_BASE_ADDRESS: ("PackageBaseAddress/Versioned", "PackageBaseAddress/3.0.0"),
    ServiceType.REPOSITORY_SIGNATURES: (
        "RepositorySignatures/5.0.0",
        "RepositorySignatures/4.9.0",
        "RepositorySignatures/4.7.0",
    ),
    ServiceType.SYMBOL_PACKAGE_PUBLISH: ("SymbolPackagePublish/4.9.0",),
    ServiceType.VULNERABILITY_INFO: ("VulnerabilityInfo/6.7.0",),
    ServiceType.OWNER_DETAILS_URI_TEMPLATE: ("OwnerDetailsUriTemplate/6.11.0",),
}

_BY_BASE_TAG: Dict[str, ServiceType] = {st.value.lower(): st for st in ServiceType}
_KNOWN_LOWER: Dict[ServiceType, FrozenSet[str]] = {
    st: frozenset(tag.lower() for tag in tags) for st, tags in KNOWN_TAGS.items()
}


def match_tag(tag: Optional[str]) -> Optional[ServiceType]:
    """Return the ServiceType a raw ``@type`` tag represents, or None.

    A tag matches when it equals a base tag or starts with the base tag
    followed by ``/`` (case-insensitive). Unknown tags are not an error.
    """
    if not isinstance(tag, str):
        return None
    normalized = tag.strip().lower()
    if not normalized:
        return None
    base, _, _ = normalized.partition(VERSION_SEPARATOR)
    return _BY_BASE_TAG.get(base)


def match_specificity(tag: str) -> int:
    """Rank a matched tag; longer (more specific) aliases rank higher."""
    return len(tag.strip())


def is_versioned(tag: str) -> bool:
    return VERSION_SEPARATOR in tag.strip()


def is_known_alias(service_type: ServiceType, tag: str) -> bool:
    """True when ``tag`` is one of the aliases nuget.org publishes for ``service_type``."""
    return tag.strip().lower() in _KNOWN_LOWER.get(service_type, frozenset())
