"""
Shared test fixtures for the certchain test suite.

Certificates, keys and PKCS#12 containers are generated once per session
with cryptography's builders, so no binary fixtures are checked in:

  Test Root CA (RSA, self-signed) → Test Intermediate CA (EC) → leaf.example.com (EC)

Two byte-patched certificates exercise the fallback extractor:
  - unknown_key_der: the leaf with its SPKI algorithm OID changed to one
    no library knows
  - version_4_der: the leaf with its version field set to 3 (v4)
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from structlog.testing import capture_logs

NOT_BEFORE = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
NOT_AFTER = dt.datetime(2034, 1, 1, tzinfo=dt.timezone.utc)

PKCS12_PASSWORD = b"correct horse"

EC_PUBLIC_KEY_OID = bytes.fromhex("06072a8648ce3d0201")
UNKNOWN_KEY_OID = bytes.fromhex("06072a8648ce3d0209")
VERSION_3_FIELD = bytes.fromhex("a003020102")
VERSION_4_FIELD = bytes.fromhex("a003020103")


@dataclass(frozen=True)
class Issued:
    """A generated certificate with the key it was issued for."""

    certificate: x509.Certificate
    key: Any

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> str:
        """PEM text as the framer captures it: no trailing newline."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii").rstrip("\n")

    @property
    def key_pem(self) -> str:
        return (
            self.key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
            .decode("ascii")
            .rstrip("\n")
        )


def make_name(common_name: str | None, organization: str = "certchain tests") -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization)]
    if common_name is not None:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def issue_certificate(
    common_name: str | None,
    issuer: Issued | None = None,
    *,
    ca: bool = False,
    key: Any = None,
    serial: int = 0x1000,
    organization: str = "certchain tests",
    dns_names: tuple[str, ...] = (),
    not_before: dt.datetime = NOT_BEFORE,
    not_after: dt.datetime = NOT_AFTER,
) -> Issued:
    """
    Issue a certificate signed by `issuer`, or self-signed when `issuer` is None.

    Every certificate carries BasicConstraints and both key identifiers.
    """
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = make_name(common_name, organization)
    issuer_name = issuer.certificate.subject if issuer else subject
    signing_key = issuer.key if issuer else key

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()),
            critical=False,
        )
    )
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names]),
            critical=False,
        )
    return Issued(builder.sign(signing_key, hashes.SHA256()), key)


@pytest.fixture(autouse=True)
def captured_logs() -> Iterator[list[dict[str, Any]]]:
    """Capture structlog events instead of printing them; yields the event list."""
    with capture_logs() as logs:
        yield logs


@pytest.fixture(scope="session")
def certificate_factory() -> Callable[..., Issued]:
    return issue_certificate


@pytest.fixture(scope="session")
def root() -> Issued:
    return issue_certificate(
        "Test Root CA",
        ca=True,
        key=rsa.generate_private_key(public_exponent=65537, key_size=2048),
        serial=0x01,
    )


@pytest.fixture(scope="session")
def intermediate(root: Issued) -> Issued:
    return issue_certificate("Test Intermediate CA", root, ca=True, serial=0x02)


@pytest.fixture(scope="session")
def leaf(intermediate: Issued) -> Issued:
    return issue_certificate(
        "leaf.example.com",
        intermediate,
        serial=0x0A1B2C3D,
        dns_names=("leaf.example.com", "www.leaf.example.com"),
    )


@pytest.fixture(scope="session")
def pem_bundle(leaf: Issued, intermediate: Issued, root: Issued) -> bytes:
    """Root first, leaf last, key in the middle: input order is not chain order."""
    return "\n".join([root.pem, leaf.key_pem, intermediate.pem, leaf.pem, ""]).encode("ascii")


@pytest.fixture(scope="session")
def unknown_key_der(leaf: Issued) -> bytes:
    assert leaf.der.count(EC_PUBLIC_KEY_OID) == 1
    return leaf.der.replace(EC_PUBLIC_KEY_OID, UNKNOWN_KEY_OID)


@pytest.fixture(scope="session")
def version_4_der(leaf: Issued) -> bytes:
    assert leaf.der.count(VERSION_3_FIELD) == 1
    return leaf.der.replace(VERSION_3_FIELD, VERSION_4_FIELD)


# ─────────────────────── PKCS#12 containers ───────────────────────


@pytest.fixture(scope="session")
def pfx_modern(leaf: Issued, intermediate: Issued, root: Issued) -> bytes:
    """PBES2 (PBKDF2 + AES-256-CBC) with an HMAC-SHA256 MAC."""
    return pkcs12.serialize_key_and_certificates(
        b"leaf",
        leaf.key,
        leaf.certificate,
        [intermediate.certificate, root.certificate],
        serialization.BestAvailableEncryption(PKCS12_PASSWORD),
    )


@pytest.fixture(scope="session")
def pfx_legacy(leaf: Issued, intermediate: Issued) -> bytes:
    """pbeWithSHAAnd3-KeyTripleDES-CBC with an HMAC-SHA1 MAC."""
    encryption = (
        serialization.PrivateFormat.PKCS12.encryption_builder()
        .kdf_rounds(2048)
        .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
        .hmac_hash(hashes.SHA1())
        .build(PKCS12_PASSWORD)
    )
    return pkcs12.serialize_key_and_certificates(
        b"leaf", leaf.key, leaf.certificate, [intermediate.certificate], encryption
    )


@pytest.fixture(scope="session")
def pfx_unencrypted(leaf: Issued) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        b"leaf", leaf.key, leaf.certificate, None, serialization.NoEncryption()
    )


@pytest.fixture(scope="session")
def pfx_certificates_only(intermediate: Issued, root: Issued) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        None,
        None,
        None,
        [intermediate.certificate, root.certificate],
        serialization.BestAvailableEncryption(PKCS12_PASSWORD),
    )
