"""
Bundle serialization — an ordered chain (and optional key) as deployable PEM text.

The layout is the one reverse proxies read from a single certificate file:
leaf, then each intermediate in ascending trust order, then the private
key, with one blank line between blocks. The PEM captured at parse time is
reused as-is; nothing is re-encoded.
"""

from __future__ import annotations

from collections.abc import Iterable

from certchain.domain.models import CertificateRecord, PrivateKeyRecord


def serialize_bundle(
    chain: Iterable[CertificateRecord],
    key: PrivateKeyRecord | None = None,
) -> str:
    blocks = [certificate.pem.rstrip() for certificate in chain]
    if key is not None:
        blocks.append(key.pem.rstrip())
    return "\n\n".join(blocks).rstrip()


def pair_keys_by_source(
    certificates: Iterable[CertificateRecord],
    keys: Iterable[PrivateKeyRecord],
) -> list[tuple[CertificateRecord, PrivateKeyRecord | None]]:
    """
    Pair each certificate with the first key read from the same input.

    Records without a source never pair. No key material is compared.
    """
    keys_by_source: dict[str, PrivateKeyRecord] = {}
    for key in keys:
        if key.source is not None:
            keys_by_source.setdefault(key.source, key)
    return [
        (certificate, keys_by_source.get(certificate.source) if certificate.source is not None else None)
        for certificate in certificates
    ]
