"""
Certificate model builder — DER certificate → CertificateRecord.

Adapter layer — two CertificateFieldExtractor strategies and the builder
that dispatches between them:

  - CryptographyFieldExtractor (primary): cryptography (PyCA) loads the
    certificate and interprets the public key. Raises on key algorithms
    the library does not know.
  - DerFieldExtractor (fallback): a positional walk over the Asn1Node tree
    that keeps SubjectPublicKeyInfo as raw bytes and marks the public key
    unavailable.

Names, extensions and times are read by the shared readers in this module
in both strategies (the primary one feeds them the DER that cryptography
hands back), so the two always agree on those fields.

TBSCertificate field order:

  [0] EXPLICIT version (optional, default v1)
  serialNumber, signature, issuer, validity, subject, subjectPublicKeyInfo
  [1] issuerUniqueID, [2] subjectUniqueID (optional, ignored)
  [3] EXPLICIT extensions (optional)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm as UnsupportedKeyAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from railway import FailureDescription
from railway.result import Result

from certchain.adapters import der
from certchain.adapters.der import DerDecoder, expect
from certchain.adapters.framer import pem_armor
from certchain.domain import oids
from certchain.domain.errors import MalformedEncoding, UnsupportedCertificate, capture
from certchain.domain.models import (
    Asn1Node,
    AuthorityKeyIdentifier,
    BasicConstraints,
    CertificateRecord,
    DistinguishedName,
    Extension,
    NameAttribute,
    PublicKeyDetails,
    SubjectAlternativeName,
    SubjectKeyIdentifier,
    UnknownExtension,
)
from certchain.domain.ports import Asn1Decoder, CertificateFieldExtractor

log = structlog.get_logger()


# ─────────────────────── Shared readers ───────────────────────


def read_name(node: Asn1Node) -> DistinguishedName:
    """Name ::= SEQUENCE OF SET OF AttributeTypeAndValue, flattened in order."""
    expect(node, der.SEQUENCE, "Name")
    attributes: list[NameAttribute] = []
    for rdn in node.children:
        expect(rdn, der.SET, "RelativeDistinguishedName")
        for atv in rdn.children:
            expect(atv, der.SEQUENCE, "AttributeTypeAndValue")
            if len(atv.children) != 2:
                raise MalformedEncoding("AttributeTypeAndValue must have a type and a value")
            oid = der.decode_oid(expect(atv.children[0], der.OBJECT_IDENTIFIER, "attribute type").content)
            value, encoding = der.decode_string(atv.children[1])
            attributes.append(NameAttribute(oid, oids.short_name_for(oid), value, encoding))
    return DistinguishedName(tuple(attributes))


def read_validity(node: Asn1Node) -> tuple[datetime, datetime]:
    expect(node, der.SEQUENCE, "Validity")
    if len(node.children) != 2:
        raise MalformedEncoding(f"Validity must hold two times, found {len(node.children)}")
    return der.decode_time(node.children[0]), der.decode_time(node.children[1])


def read_algorithm_oid(node: Asn1Node) -> str:
    expect(node, der.SEQUENCE, "AlgorithmIdentifier")
    if not node.children:
        raise MalformedEncoding("empty AlgorithmIdentifier")
    return der.decode_oid(expect(node.children[0], der.OBJECT_IDENTIFIER, "algorithm").content)


def _basic_constraints(oid: str, critical: bool, value: bytes) -> BasicConstraints:
    # An empty SEQUENCE means "not a CA" by omission.
    seq = expect(der.decode_node(value), der.SEQUENCE, "BasicConstraints")
    ca, path_length = False, None
    for child in seq.children:
        if child.is_universal(der.BOOLEAN):
            ca = der.decode_boolean(child.content)
        elif child.is_universal(der.INTEGER):
            path_length = der.decode_integer(child.content)
    return BasicConstraints(oid, critical, value, ca=ca, path_length=path_length)


def _authority_key_identifier(oid: str, critical: bool, value: bytes) -> AuthorityKeyIdentifier:
    seq = expect(der.decode_node(value), der.SEQUENCE, "AuthorityKeyIdentifier")
    key_id = next((child.content for child in seq.children if child.is_context(0)), None)
    return AuthorityKeyIdentifier(oid, critical, value, key_identifier=key_id)


def _subject_alternative_name(oid: str, critical: bool, value: bytes) -> SubjectAlternativeName:
    seq = expect(der.decode_node(value), der.SEQUENCE, "SubjectAltName")
    dns_names = tuple(
        child.content.decode("ascii") for child in seq.children if child.is_context(2)
    )
    return SubjectAlternativeName(oid, critical, value, dns_names=dns_names)


def typed_extension(oid: str, critical: bool, value: bytes) -> Extension:
    """
    Map one extension onto its typed variant.

    A known extension whose value cannot be decoded is kept as UnknownExtension.
    """
    try:
        match oid:
            case oids.BASIC_CONSTRAINTS:
                return _basic_constraints(oid, critical, value)
            case oids.SUBJECT_KEY_IDENTIFIER:
                key_id = expect(der.decode_node(value), der.OCTET_STRING, "SubjectKeyIdentifier").content
                return SubjectKeyIdentifier(oid, critical, value, key_identifier=key_id)
            case oids.AUTHORITY_KEY_IDENTIFIER:
                return _authority_key_identifier(oid, critical, value)
            case oids.SUBJECT_ALTERNATIVE_NAME:
                return _subject_alternative_name(oid, critical, value)
    except (MalformedEncoding, UnicodeDecodeError) as e:
        log.warning("certificate.extension_undecodable", oid=oid, error=str(e))
    return UnknownExtension(oid, critical, value)


def read_extension(node: Asn1Node) -> Extension:
    """Extension ::= SEQUENCE { extnID, critical BOOLEAN DEFAULT FALSE, extnValue OCTET STRING }"""
    expect(node, der.SEQUENCE, "Extension")
    fields = node.children
    if not fields:
        raise MalformedEncoding("empty Extension")
    oid = der.decode_oid(expect(fields[0], der.OBJECT_IDENTIFIER, "extnID").content)
    position, critical = 1, False
    if position < len(fields) and fields[position].is_universal(der.BOOLEAN):
        critical = der.decode_boolean(fields[position].content)
        position += 1
    if position >= len(fields):
        raise MalformedEncoding(f"extension {oid} has no value")
    value = expect(fields[position], der.OCTET_STRING, "extnValue").content
    return typed_extension(oid, critical, value)


def read_extensions(node: Asn1Node) -> tuple[Extension, ...]:
    expect(node, der.SEQUENCE, "Extensions")
    return tuple(read_extension(child) for child in node.children)


# ─────────────────────── Fallback: positional DER walk ───────────────────────


def _explicit(node: Asn1Node, what: str) -> Asn1Node:
    if len(node.children) != 1:
        raise MalformedEncoding(f"{what} must wrap exactly one element")
    return node.children[0]


class DerFieldExtractor:
    """
    Read certificate fields by walking the decoded DER tree.

    Implements the CertificateFieldExtractor port. The public key is never
    interpreted: `public_key` is None and the raw SubjectPublicKeyInfo is kept.
    """

    name = "der"

    def extract(self, node: Asn1Node, pem: str) -> Result[CertificateRecord]:
        return capture(lambda: self._walk(node, pem), "Positional certificate walk failed")

    def _walk(self, node: Asn1Node, pem: str) -> CertificateRecord:
        if not node.is_universal(der.SEQUENCE) or len(node.children) != 3:
            raise UnsupportedCertificate("not a Certificate SEQUENCE of three elements")
        tbs, signature_algorithm, _signature = node.children
        if not tbs.is_universal(der.SEQUENCE):
            raise UnsupportedCertificate("tbsCertificate is not a SEQUENCE")

        fields = tbs.children
        position, version = 0, 0
        # Look ahead: the version is present only when the first field is [0].
        if fields and fields[0].is_context(0):
            version = der.decode_integer(expect(_explicit(fields[0], "version"), der.INTEGER, "version").content)
            position = 1

        required = fields[position : position + 6]
        if len(required) < 6:
            raise UnsupportedCertificate(f"tbsCertificate has {len(required)} of 6 required fields")
        serial, _tbs_signature, issuer, validity, subject, spki = required

        extensions: tuple[Extension, ...] = ()
        for trailing in fields[position + 6 :]:
            if trailing.is_context(3):
                extensions = read_extensions(_explicit(trailing, "extensions"))

        not_before, not_after = read_validity(validity)
        expect(spki, der.SEQUENCE, "SubjectPublicKeyInfo")
        if not spki.children:
            raise MalformedEncoding("empty SubjectPublicKeyInfo")

        return CertificateRecord(
            version=version + 1,
            serial_number=der.decode_integer(expect(serial, der.INTEGER, "serialNumber").content),
            signature_algorithm_oid=read_algorithm_oid(signature_algorithm),
            issuer=read_name(issuer),
            subject=read_name(subject),
            not_before=not_before,
            not_after=not_after,
            public_key_algorithm_oid=read_algorithm_oid(spki.children[0]),
            subject_public_key_info=spki.encoded,
            der=node.encoded,
            pem=pem,
            public_key=None,
            extensions=extensions,
            decoded_with=self.name,
        )


# ─────────────────────── Primary: cryptography ───────────────────────


def describe_public_key(key: object) -> PublicKeyDetails:
    match key:
        case rsa.RSAPublicKey():
            return PublicKeyDetails("RSA", key.key_size)
        case ec.EllipticCurvePublicKey():
            return PublicKeyDetails("EC", key.key_size, key.curve.name)
        case dsa.DSAPublicKey():
            return PublicKeyDetails("DSA", key.key_size)
        case ed25519.Ed25519PublicKey():
            return PublicKeyDetails("Ed25519", 256)
        case ed448.Ed448PublicKey():
            return PublicKeyDetails("Ed448", 456)
    return PublicKeyDetails(type(key).__name__)


class CryptographyFieldExtractor:
    """
    Read certificate fields through cryptography's X.509 API.

    Implements the CertificateFieldExtractor port. Fails with
    BUSINESS_RULE_ERROR when the public-key algorithm is not supported,
    which is the builder's cue to fall back to the DER walk.
    """

    name = "cryptography"

    def extract(self, node: Asn1Node, pem: str) -> Result[CertificateRecord]:
        return capture(lambda: self._read(node, pem), "cryptography could not load the certificate")

    def _read(self, node: Asn1Node, pem: str) -> CertificateRecord:
        cert = x509.load_der_x509_certificate(node.encoded)
        try:
            public_key = cert.public_key()
        except (UnsupportedKeyAlgorithm, ValueError) as e:
            raise UnsupportedCertificate(f"public key algorithm not supported: {e}") from e

        extensions = tuple(
            typed_extension(ext.oid.dotted_string, ext.critical, ext.value.public_bytes())
            for ext in cert.extensions
        )

        return CertificateRecord(
            version=cert.version.value + 1,
            serial_number=cert.serial_number,
            signature_algorithm_oid=cert.signature_algorithm_oid.dotted_string,
            issuer=read_name(der.decode_node(cert.issuer.public_bytes())),
            subject=read_name(der.decode_node(cert.subject.public_bytes())),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            public_key_algorithm_oid=cert.public_key_algorithm_oid.dotted_string,
            subject_public_key_info=public_key.public_bytes(
                serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
            ),
            der=node.encoded,
            pem=pem,
            public_key=describe_public_key(public_key),
            extensions=extensions,
            decoded_with=self.name,
        )


# ─────────────────────── Builder ───────────────────────


class CertificateModelBuilder:
    """
    DER certificate → CertificateRecord, trying the primary extractor first.

    Any primary failure sends the same tree to the fallback extractor; the
    certificate is reported unsupported only when both fail.

        builder = CertificateModelBuilder()
        builder.build(der_bytes, source="bundle.pem")  # → Result[CertificateRecord]
    """

    def __init__(
        self,
        decoder: Asn1Decoder | None = None,
        primary: CertificateFieldExtractor | None = None,
        fallback: CertificateFieldExtractor | None = None,
    ) -> None:
        self._decoder = decoder or DerDecoder()
        self._primary = primary or CryptographyFieldExtractor()
        self._fallback = fallback or DerFieldExtractor()

    def build(
        self,
        der_bytes: bytes,
        pem: str | None = None,
        source: str | None = None,
    ) -> Result[CertificateRecord]:
        """
        Decode DER bytes into a record.

        `pem` is the text the bytes came from; when absent it is regenerated
        from the DER.
        """
        text = pem if pem is not None else pem_armor(der_bytes)
        return (
            self._decoder.decode(der_bytes)
            .flat_map(lambda node: self.build_from_node(node, text))
            .map(lambda record: replace(record, source=source))
        )

    def build_from_node(self, node: Asn1Node, pem: str) -> Result[CertificateRecord]:
        return self._primary.extract(node, pem).or_else(
            lambda reason: self._fall_back(node, pem, reason)
        )

    def _fall_back(
        self, node: Asn1Node, pem: str, reason: FailureDescription
    ) -> Result[CertificateRecord]:
        log.info(
            "builder.fallback_used",
            primary=self._primary.name,
            fallback=self._fallback.name,
            reason=reason.message,
        )
        return self._fallback.extract(node, pem).peek_failure(
            lambda err: log.warning("builder.unsupported_certificate", error=err.message)
        )
