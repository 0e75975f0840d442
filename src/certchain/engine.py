"""
Certificate engine — the caller-facing operations, composed from adapters.

Control flow:

  bytes + hint ──► framer ──► builder ──────────────┐
                     │                              ├──► ParseResult
                     └──► PKCS#12 extractor ────────┘
  certificates ──► chain reconstructor ──► [CertificateChain]
  chain + key  ──► bundle serializer   ──► PEM text

Format dispatch by hint:

  pem        PEM framing
  der        the leading DER element as one certificate
  crt, cer   DER first, then PEM text when DER decoding fails
  pfx, p12   PKCS#12; a wrong password yields needs_password=True
  other      PEM first, then DER when PEM framing finds nothing

The engine holds no mutable state: one instance can serve any number of
calls, from any number of threads.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from enum import Enum

import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result

from certchain.adapters.certificates import CertificateModelBuilder
from certchain.adapters.der import SEQUENCE, decode_leading
from certchain.adapters.framer import PemDerFramer, pem_body, pem_text
from certchain.adapters.pkcs12 import Pkcs12Extractor
from certchain.config import AppSettings
from certchain.domain.bundle import serialize_bundle
from certchain.domain.chains import ChainReconstructor, match_by_common_name, match_by_key_identifier
from certchain.domain.errors import MalformedEncoding, capture
from certchain.domain.models import (
    BlockEncoding,
    BlockKind,
    CertificateChain,
    CertificateRecord,
    ParseResult,
    PrivateKeyRecord,
    RawBlock,
)
from certchain.domain.ports import BlockFramer, ContainerExtractor

log = structlog.get_logger()


class InputFormat(Enum):
    PEM = "pem"
    DER = "der"
    CRT = "crt"
    CER = "cer"
    PFX = "pfx"
    P12 = "p12"
    UNKNOWN = "unknown"

    @classmethod
    def from_hint(cls, hint: str | None) -> InputFormat:
        """Accept a bare extension ("p12", ".PEM") or a file name ("site.crt")."""
        if not hint:
            return cls.UNKNOWN
        extension = hint.strip().lower().rsplit(".", 1)[-1]
        try:
            return cls(extension)
        except ValueError:
            return cls.UNKNOWN


def _produced_something(parsed: ParseResult) -> bool:
    return bool(parsed.total_items or parsed.warnings)


def _leading_element(data: bytes) -> bytes:
    """
    The first DER element of a binary file, header included.

    Files saved by some tools end with a newline or padding after the
    certificate; those bytes are logged and dropped. The element must be a
    SEQUENCE, which keeps PEM text and other binaries on the failure track.
    """
    node, trailing = decode_leading(data)
    if not (node.is_universal(SEQUENCE) and node.constructed):
        raise MalformedEncoding("root element is not a SEQUENCE")
    if trailing:
        log.info("engine.trailing_bytes_ignored", trailing=trailing)
    return node.encoded


def _stamp_source(parsed: ParseResult, source: str | None) -> ParseResult:
    if source is None:
        return parsed
    return replace(
        parsed,
        certificates=[replace(record, source=source) for record in parsed.certificates],
        private_keys=[replace(key, source=source) for key in parsed.private_keys],
    )


class CertificateEngine:
    """
    Decode certificate material, rebuild chains, serialize bundles.

    Constructed explicitly and passed to whoever needs it; there is no
    module-level instance.

        engine = CertificateEngine()
        parsed = engine.parse(data, "bundle.pem").value()
        chains = engine.build_chains(parsed.certificates)
        text = engine.bundle(chains[0], parsed.private_keys[0])
    """

    def __init__(
        self,
        framer: BlockFramer | None = None,
        builder: CertificateModelBuilder | None = None,
        container_extractor: ContainerExtractor | None = None,
        reconstructor: ChainReconstructor | None = None,
        default_password: str = "",
    ) -> None:
        self._framer = framer or PemDerFramer()
        self._builder = builder or CertificateModelBuilder()
        self._container = container_extractor or Pkcs12Extractor(self._builder)
        self._reconstructor = reconstructor or ChainReconstructor()
        self._default_password = default_password

    @classmethod
    def from_settings(cls, settings: AppSettings) -> CertificateEngine:
        matcher = match_by_key_identifier if settings.chain.match_key_identifiers else match_by_common_name
        return cls(
            reconstructor=ChainReconstructor(matcher),
            default_password=settings.default_password.get_secret_value(),
        )

    # ─────────────────────── Decoding ───────────────────────

    def parse(
        self,
        data: bytes,
        hint: InputFormat | str | None = None,
        password: str | None = None,
        source: str | None = None,
    ) -> Result[ParseResult]:
        """
        Decode one input into certificate and key records.

        Per-block problems are reported in ParseResult.warnings. A Failure
        means the input as a whole could not be read; its code says why.
        """
        input_format = hint if isinstance(hint, InputFormat) else InputFormat.from_hint(hint)

        match input_format:
            case InputFormat.PEM:
                result = self._parse_pem(data)
            case InputFormat.DER:
                result = self._parse_der(data)
            case InputFormat.CRT | InputFormat.CER:
                result = self._parse_der(data).or_else(lambda err: self._retry_as_pem(data, err))
            case InputFormat.PFX | InputFormat.P12:
                result = self._parse_container(data, password)
            case _:
                result = self._parse_unknown(data)

        return (
            result.map(lambda parsed: _stamp_source(parsed, source))
            .peek(
                lambda parsed: log.info(
                    "engine.parsed",
                    format=input_format.value,
                    source=source,
                    certificates=len(parsed.certificates),
                    private_keys=len(parsed.private_keys),
                    warnings=len(parsed.warnings),
                    needs_password=parsed.needs_password,
                )
            )
            .peek_failure(
                lambda err: log.warning(
                    "engine.parse_failed",
                    format=input_format.value,
                    source=source,
                    code=err.code.value,
                    error=err.message,
                )
            )
        )

    def _parse_pem(self, data: bytes) -> Result[ParseResult]:
        return self._framer.frame(data, BlockEncoding.PEM).map(self._decode_blocks)

    def _parse_der(self, data: bytes) -> Result[ParseResult]:
        return (
            capture(lambda: _leading_element(data), "DER decoding failed")
            .flat_map(self._builder.build)
            .map(lambda record: ParseResult(certificates=[record]))
        )

    def _parse_container(self, data: bytes, password: str | None) -> Result[ParseResult]:
        secret = password if password is not None else self._default_password
        return self._container.extract(data, secret).recover_on(
            ErrorCode.AUTHENTICATION_ERROR, self._needs_password
        )

    def _parse_unknown(self, data: bytes) -> Result[ParseResult]:
        pem = self._parse_pem(data)
        if pem.is_success() and _produced_something(pem.value()):
            return pem
        return self._parse_der(data)

    def _retry_as_pem(self, data: bytes, der_error: FailureDescription) -> Result[ParseResult]:
        log.info("engine.retry_as_pem", reason=der_error.message)
        pem = self._parse_pem(data)
        if pem.is_success() and _produced_something(pem.value()):
            return pem
        return Result.failure_from(der_error)

    @staticmethod
    def _needs_password(error: FailureDescription) -> ParseResult:
        log.info("engine.needs_password", reason=error.message)
        return ParseResult(needs_password=True)

    def _decode_blocks(self, blocks: list[RawBlock]) -> ParseResult:
        """Decode each PEM block on its own; a bad block becomes a warning."""
        result = ParseResult()
        for index, block in enumerate(blocks):
            match block.kind:
                case BlockKind.CERTIFICATE:
                    self._decode_certificate_block(index, block, result)
                case BlockKind.PRIVATE_KEY:
                    result.private_keys.append(PrivateKeyRecord(pem_text(block), encrypted=block.encrypted))
                case _:
                    log.debug("engine.block_skipped", index=index, label=block.label)
        return result

    def _decode_certificate_block(self, index: int, block: RawBlock, result: ParseResult) -> None:
        text = pem_text(block)
        (
            capture(lambda: pem_body(block), "PEM body could not be read")
            .flat_map(lambda der: self._builder.build(der, pem=text))
            .either(
                result.certificates.append,
                lambda err: self._warn(result, f"block {index} ({block.label}): {err.message}"),
            )
        )

    @staticmethod
    def _warn(result: ParseResult, message: str) -> None:
        log.warning("engine.block_failed", detail=message)
        result.warnings.append(message)

    # ─────────────────────── Chains and bundles ───────────────────────

    def build_chains(self, certificates: Sequence[CertificateRecord]) -> list[CertificateChain]:
        return self._reconstructor.reconstruct(certificates)

    def bundle(self, chain: CertificateChain, key: PrivateKeyRecord | None = None) -> str:
        return serialize_bundle(chain, key)
