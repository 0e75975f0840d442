"""
Ports — Protocol-based interfaces for the engine's adapters.

These define WHAT the engine needs (contracts) without specifying HOW it's
done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy the contract
simply by implementing the methods — no inheritance.

Decoding flow:
  1. BlockFramer                → split input bytes into RawBlocks
  2. Asn1Decoder                → turn one DER unit into an Asn1Node tree
  3. CertificateFieldExtractor  → map the tree onto a CertificateRecord
  4. ContainerExtractor         → open a PKCS#12 container (uses 2 + 3)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway.result import Result

from certchain.domain.models import (
    Asn1Node,
    BlockEncoding,
    CertificateRecord,
    ParseResult,
    RawBlock,
)


@runtime_checkable
class BlockFramer(Protocol):
    """
    Port: split an input buffer into RawBlocks.

    PEM input yields one block per terminated BEGIN/END pair; DER and PKCS#12
    input yield the whole buffer as a single block. The framer never sniffs
    the format; the caller decides `encoding`.
    """

    def frame(self, data: bytes, encoding: BlockEncoding) -> Result[list[RawBlock]]: ...


@runtime_checkable
class Asn1Decoder(Protocol):
    """
    Port: decode one DER element into its TLV tree.

    Fails with VALIDATION_ERROR (MalformedEncoding) when the buffer is
    truncated or a length prefix overruns it.
    """

    def decode(self, data: bytes) -> Result[Asn1Node]: ...


@runtime_checkable
class CertificateFieldExtractor(Protocol):
    """
    Port: one strategy for reading certificate fields out of a decoded tree.

    Two strategies exist: a library-backed primary one that also interprets
    the public key, and a positional DER walk used when the primary one
    cannot cope. Both must agree on names, validity, serial and extensions.
    """

    name: str

    def extract(self, node: Asn1Node, pem: str) -> Result[CertificateRecord]: ...


@runtime_checkable
class ContainerExtractor(Protocol):
    """
    Port: open a password-protected PKCS#12 container.

    Returns every certificate and private key found. A wrong password is an
    AUTHENTICATION_ERROR failure and nothing else is; bags that cannot be
    read are reported in ParseResult.warnings instead of failing the call.
    """

    def extract(self, data: bytes, password: str = "") -> Result[ParseResult]: ...
