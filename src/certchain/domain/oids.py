"""
Object identifiers the engine knows by name.

Dotted-string constants for the naming attributes and X.509 extensions that
the certificate model gives typed treatment to. Anything not listed here is
still carried through, keyed by its dotted OID.
"""

from __future__ import annotations

# ─────────────────────── Naming attributes (RFC 5280 / 4519) ───────────────────────

COMMON_NAME = "2.5.4.3"
SURNAME = "2.5.4.4"
SERIAL_NUMBER = "2.5.4.5"
COUNTRY_NAME = "2.5.4.6"
LOCALITY_NAME = "2.5.4.7"
STATE_OR_PROVINCE_NAME = "2.5.4.8"
STREET_ADDRESS = "2.5.4.9"
ORGANIZATION_NAME = "2.5.4.10"
ORGANIZATIONAL_UNIT_NAME = "2.5.4.11"
TITLE = "2.5.4.12"
GIVEN_NAME = "2.5.4.42"
ORGANIZATION_IDENTIFIER = "2.5.4.97"
USER_ID = "0.9.2342.19200300.100.1.1"
DOMAIN_COMPONENT = "0.9.2342.19200300.100.1.25"
EMAIL_ADDRESS = "1.2.840.113549.1.9.1"

ATTRIBUTE_SHORT_NAMES: dict[str, str] = {
    COMMON_NAME: "CN",
    SURNAME: "SN",
    SERIAL_NUMBER: "serialNumber",
    COUNTRY_NAME: "C",
    LOCALITY_NAME: "L",
    STATE_OR_PROVINCE_NAME: "ST",
    STREET_ADDRESS: "street",
    ORGANIZATION_NAME: "O",
    ORGANIZATIONAL_UNIT_NAME: "OU",
    TITLE: "title",
    GIVEN_NAME: "GN",
    ORGANIZATION_IDENTIFIER: "organizationIdentifier",
    USER_ID: "UID",
    DOMAIN_COMPONENT: "DC",
    EMAIL_ADDRESS: "emailAddress",
}


def short_name_for(oid: str) -> str:
    """Conventional short name for an attribute OID, or the dotted OID itself."""
    return ATTRIBUTE_SHORT_NAMES.get(oid, oid)


# ─────────────────────── Certificate extensions ───────────────────────

SUBJECT_KEY_IDENTIFIER = "2.5.29.14"
SUBJECT_ALTERNATIVE_NAME = "2.5.29.17"
BASIC_CONSTRAINTS = "2.5.29.19"
AUTHORITY_KEY_IDENTIFIER = "2.5.29.35"
