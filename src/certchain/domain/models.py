"""
Domain models — immutable data structures for decoded certificate material.

These are pure value objects with no I/O. They represent what the engine
extracts from PEM/DER/PKCS#12 input: the transient framing and ASN.1 nodes,
the certificate and private-key records handed to callers, and the ordered
chains the reconstructor produces.

All models are frozen dataclasses (immutable) following functional principles.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, TypeVar

from certchain.domain import oids

UNKNOWN_COMMON_NAME = "Unknown"

E = TypeVar("E", bound="Extension")


# ─────────────────────── Framing ───────────────────────


class BlockEncoding(Enum):
    PEM = "PEM"
    DER = "DER"
    PKCS12 = "PKCS12"


class BlockKind(Enum):
    CERTIFICATE = "certificate"
    PRIVATE_KEY = "private_key"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class RawBlock:
    """
    One unit of input produced by the framer.

    For PEM blocks `payload` is the block text from BEGIN to END inclusive and
    `label` is the text between the BEGIN dashes. Binary blocks carry the whole
    buffer and no label.
    """

    encoding: BlockEncoding
    payload: bytes = field(repr=False)
    label: str | None = None

    @property
    def kind(self) -> BlockKind:
        if self.label is None:
            return BlockKind.OTHER if self.encoding is BlockEncoding.PKCS12 else BlockKind.CERTIFICATE
        if "CERTIFICATE" in self.label:
            return BlockKind.CERTIFICATE
        if "PRIVATE KEY" in self.label:
            return BlockKind.PRIVATE_KEY
        return BlockKind.OTHER

    @property
    def encrypted(self) -> bool:
        return self.label is not None and "ENCRYPTED" in self.label


# ─────────────────────── ASN.1 ───────────────────────


class TagClass(IntEnum):
    UNIVERSAL = 0
    APPLICATION = 1
    CONTEXT_SPECIFIC = 2
    PRIVATE = 3


@dataclass(frozen=True, slots=True)
class Asn1Node:
    """
    A decoded TLV.

    Primitive nodes expose their value through `content`; constructed nodes
    expose their decoded `children` (and `content` still holds the raw bytes
    the children were decoded from). `encoded` is the complete TLV, header
    included.
    """

    tag_class: TagClass
    tag_number: int
    constructed: bool
    content: bytes = field(repr=False)
    children: tuple[Asn1Node, ...] = ()
    encoded: bytes = field(default=b"", repr=False)

    def is_universal(self, tag_number: int) -> bool:
        return self.tag_class is TagClass.UNIVERSAL and self.tag_number == tag_number

    def is_context(self, tag_number: int) -> bool:
        return self.tag_class is TagClass.CONTEXT_SPECIFIC and self.tag_number == tag_number


# ─────────────────────── Names ───────────────────────


@dataclass(frozen=True, slots=True)
class NameAttribute:
    oid: str
    short_name: str
    value: str
    value_encoding: str


@dataclass(frozen=True, slots=True)
class DistinguishedName:
    """
    Ordered naming attributes of a subject or issuer.

    Equality is element-wise over the attribute sequence, so two names with the
    same attributes in a different order, or with a different string encoding
    for the same value, are different names.
    """

    attributes: tuple[NameAttribute, ...] = ()

    def get(self, key: str) -> str | None:
        """Last value whose short name or dotted OID equals `key`, matching `as_dict`."""
        for attr in reversed(self.attributes):
            if key in (attr.short_name, attr.oid):
                return attr.value
        return None

    @property
    def common_name(self) -> str | None:
        return self.get(oids.COMMON_NAME)

    def as_dict(self) -> dict[str, str]:
        """Short name → value. A repeated attribute keeps its last value."""
        return {attr.short_name: attr.value for attr in self.attributes}

    def __str__(self) -> str:
        return ", ".join(f"{attr.short_name}={attr.value}" for attr in self.attributes)


# ─────────────────────── Extensions ───────────────────────


@dataclass(frozen=True, slots=True)
class Extension:
    """A certificate extension: OID, criticality and the raw extnValue contents."""

    oid: str
    critical: bool
    value: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class BasicConstraints(Extension):
    ca: bool = False
    path_length: int | None = None


@dataclass(frozen=True, slots=True)
class SubjectKeyIdentifier(Extension):
    key_identifier: bytes = b""


@dataclass(frozen=True, slots=True)
class AuthorityKeyIdentifier(Extension):
    key_identifier: bytes | None = None


@dataclass(frozen=True, slots=True)
class SubjectAlternativeName(Extension):
    dns_names: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class UnknownExtension(Extension):
    """Any extension without typed treatment; only the raw bytes are kept."""


# ─────────────────────── Records ───────────────────────


@dataclass(frozen=True, slots=True)
class PublicKeyDetails:
    """Semantic view of a SubjectPublicKeyInfo, present only when the algorithm is supported."""

    algorithm: str
    key_size: int | None = None
    curve: str | None = None


@dataclass(frozen=True, slots=True)
class CertificateRecord:
    """
    A decoded X.509 certificate.

    `version` is the display value (ASN.1 value + 1). `public_key` is None when
    the public-key algorithm could not be interpreted; the raw
    SubjectPublicKeyInfo is always kept. `der` and `pem` are the encodings the
    record was derived from. The validity interval is passed through as found,
    even when notBefore is after notAfter.
    """

    version: int
    serial_number: int
    signature_algorithm_oid: str
    issuer: DistinguishedName
    subject: DistinguishedName
    not_before: datetime
    not_after: datetime
    public_key_algorithm_oid: str
    subject_public_key_info: bytes = field(repr=False)
    der: bytes = field(repr=False)
    pem: str = field(repr=False)
    public_key: PublicKeyDetails | None = None
    extensions: tuple[Extension, ...] = ()
    decoded_with: str = ""
    source: str | None = None

    @property
    def subject_common_name(self) -> str:
        name = self.subject.common_name
        return UNKNOWN_COMMON_NAME if name is None else name

    @property
    def issuer_common_name(self) -> str:
        name = self.issuer.common_name
        return UNKNOWN_COMMON_NAME if name is None else name

    @property
    def serial_hex(self) -> str:
        """Lowercase hex without leading zeros; negative serials keep their sign."""
        return format(self.serial_number, "x")

    @property
    def public_key_available(self) -> bool:
        return self.public_key is not None

    def extension(self, kind: type[E]) -> E | None:
        for ext in self.extensions:
            if isinstance(ext, kind):
                return ext
        return None

    @property
    def is_ca(self) -> bool:
        bc = self.extension(BasicConstraints)
        return bc is not None and bc.ca

    @property
    def is_self_signed(self) -> bool:
        # Name equality only; no signature is checked.
        return self.subject == self.issuer

    @property
    def subject_key_identifier(self) -> bytes | None:
        ski = self.extension(SubjectKeyIdentifier)
        return ski.key_identifier if ski is not None else None

    @property
    def authority_key_identifier(self) -> bytes | None:
        aki = self.extension(AuthorityKeyIdentifier)
        return aki.key_identifier if aki is not None else None

    @property
    def fingerprint_sha256(self) -> str:
        return hashlib.sha256(self.der).hexdigest()

    def summary(self) -> dict[str, Any]:
        """JSON-serialisable view used by the CLI and HTTP surfaces."""
        san = self.extension(SubjectAlternativeName)
        return {
            "subject": self.subject.as_dict(),
            "issuer": self.issuer.as_dict(),
            "subject_common_name": self.subject_common_name,
            "issuer_common_name": self.issuer_common_name,
            "serial_number": self.serial_hex,
            "version": self.version,
            "valid_from": self.not_before.isoformat(),
            "valid_to": self.not_after.isoformat(),
            "signature_algorithm": self.signature_algorithm_oid,
            "public_key": (
                {
                    "algorithm": self.public_key.algorithm,
                    "key_size": self.public_key.key_size,
                    "curve": self.public_key.curve,
                }
                if self.public_key is not None
                else None
            ),
            "public_key_algorithm": self.public_key_algorithm_oid,
            "dns_names": list(san.dns_names) if san is not None else [],
            "is_ca": self.is_ca,
            "is_self_signed": self.is_self_signed,
            "fingerprint_sha256": self.fingerprint_sha256,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class PrivateKeyRecord:
    """
    A private key in PEM form.

    The engine never decrypts PEM keys: `encrypted` reports what the label says.
    Keys recovered from PKCS#12 shrouded bags are already decrypted.
    """

    pem: str = field(repr=False)
    encrypted: bool = False
    source: str | None = None

    @property
    def label(self) -> str:
        first_line = self.pem.split("\n", 1)[0]
        return first_line.removeprefix("-----BEGIN ").removesuffix("-----")


# ─────────────────────── Chains ───────────────────────


@dataclass(frozen=True, slots=True)
class ChainLink:
    """A certificate paired with its input position, used only while chains are assembled."""

    position: int
    record: CertificateRecord

    @property
    def encoding(self) -> str:
        return self.record.pem


@dataclass(frozen=True, slots=True)
class CertificateChain:
    """Certificates ordered from leaf to root, or to the deepest ancestor available."""

    certificates: tuple[CertificateRecord, ...]

    @property
    def leaf(self) -> CertificateRecord:
        return self.certificates[0]

    @property
    def top(self) -> CertificateRecord:
        return self.certificates[-1]

    @property
    def is_complete(self) -> bool:
        """True when the chain ends at a self-signed certificate."""
        return self.top.is_self_signed

    def common_names(self) -> list[str]:
        return [cert.subject_common_name for cert in self.certificates]

    def __len__(self) -> int:
        return len(self.certificates)

    def __iter__(self) -> Iterator[CertificateRecord]:
        return iter(self.certificates)


# ─────────────────────── Results ───────────────────────


@dataclass(frozen=True, slots=True)
class ParseResult:
    """
    Everything decoded from one input.

    `needs_password` is set when a PKCS#12 container rejected the password;
    the lists are then empty. `warnings` lists blocks or bags that were skipped.
    """

    certificates: list[CertificateRecord] = field(default_factory=list)
    private_keys: list[PrivateKeyRecord] = field(default_factory=list)
    needs_password: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return len(self.certificates) + len(self.private_keys)

    def summary(self, include_pem: bool = False) -> dict[str, Any]:
        certificates = [record.summary() for record in self.certificates]
        keys = [
            {"label": key.label, "encrypted": key.encrypted, "source": key.source}
            for key in self.private_keys
        ]
        if include_pem:
            for entry, record in zip(certificates, self.certificates):
                entry["pem"] = record.pem
            for entry, key in zip(keys, self.private_keys):
                entry["pem"] = key.pem
        return {
            "certificates": certificates,
            "private_keys": keys,
            "needs_password": self.needs_password,
            "warnings": list(self.warnings),
        }
