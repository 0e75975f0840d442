"""
PKCS#12 extractor adapter — password-protected container → records.

Adapter layer — implements the ContainerExtractor port using:
  - pyasn1 / pyasn1-modules: PFX, AuthenticatedSafe, SafeContents and bag
    structures (RFC 7292, RFC 5652, RFC 5958)
  - certchain.adapters.pbe: MAC check and password-based decryption
  - CertificateModelBuilder: certificate bags → CertificateRecord
  - cryptography (PyCA): recovery of certificates from safes protected by
    ciphers the extractor does not implement

Pipeline:
  container bytes
    → PFX → authSafe (id-data) → MAC check over its content
    → AuthenticatedSafe: SEQUENCE OF ContentInfo (id-data | id-encryptedData)
    → SafeContents → SafeBags
        certBag               → builder
        pkcs8ShroudedKeyBag   → decrypt → unencrypted PKCS#8 PEM
        keyBag                → PKCS#8 PEM
        safeContentsBag       → nested SafeContents, same treatment

A wrong password is the only AUTHENTICATION_ERROR. A safe or bag that cannot
be read becomes a warning and the rest of the container is still extracted.
"""

from __future__ import annotations

from typing import Any

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ
from pyasn1_modules import rfc5652, rfc5958, rfc7292
from railway.result import Result

from certchain.adapters import pbe
from certchain.adapters.certificates import CertificateModelBuilder
from certchain.adapters.framer import pem_armor
from certchain.adapters.pbe import Secret, decode_parameters
from certchain.domain.errors import (
    CertificateEngineError,
    InvalidPassword,
    MalformedEncoding,
    UnsupportedAlgorithm,
    capture,
)
from certchain.domain.models import ParseResult, PrivateKeyRecord

log = structlog.get_logger()

X509_CERTIFICATE = str(rfc7292.x509Certificate["certId"])
MAX_NESTING = 8

_BAG_NAMES = {
    str(rfc7292.id_keyBag): "keyBag",
    str(rfc7292.id_pkcs8ShroudedKeyBag): "pkcs8ShroudedKeyBag",
    str(rfc7292.id_certBag): "certBag",
    str(rfc7292.id_CRLBag): "crlBag",
    str(rfc7292.id_secretBag): "secretBag",
    str(rfc7292.id_safeContentsBag): "safeContentsBag",
}


def _decode_decrypted(plaintext: bytes, spec: Any, what: str, secret: Secret) -> Any:
    """
    Decode bytes that came out of pbe.decrypt.

    Without a verified MAC a wrong password can still pass the padding
    check (always for RC4), so a plaintext that does not decode is reported
    as InvalidPassword in that case.
    """
    try:
        return decode_parameters(plaintext, spec, what)
    except MalformedEncoding as e:
        if secret.verified:
            raise
        raise InvalidPassword(f"{what} is unreadable after decryption") from e


class Pkcs12Extractor:
    """
    Open a PKCS#12 container and return its certificates and private keys.

    Implements the ContainerExtractor port. All exceptions are caught at
    this adapter boundary; the error code tells the caller what happened:

      AUTHENTICATION_ERROR  wrong password (re-prompt)
      VALIDATION_ERROR      not a PKCS#12 structure
      BUSINESS_RULE_ERROR   integrity or privacy mode not supported
    """

    def __init__(self, builder: CertificateModelBuilder | None = None) -> None:
        self._builder = builder or CertificateModelBuilder()

    def extract(self, data: bytes, password: str = "") -> Result[ParseResult]:
        return capture(lambda: self._do_extract(data, password), "Failed to extract PKCS#12 container")

    def _do_extract(self, data: bytes, password: str) -> ParseResult:
        pfx = decode_parameters(data, rfc7292.PFX(), "PFX")
        auth_safe = pfx["authSafe"]
        if str(auth_safe["contentType"]) != str(rfc5652.id_data):
            raise UnsupportedAlgorithm(
                f"public-key integrity mode ({auth_safe['contentType']}) is not supported"
            )
        content = decode_parameters(
            auth_safe["content"].asOctets(), univ.OctetString(), "authSafe content"
        ).asOctets()

        if pfx["macData"].isValue:
            secret = pbe.verify_mac(content, pfx["macData"], password)
        else:
            log.debug("pkcs12.no_mac")
            secret = Secret(password, pbe.bmp_password(password))

        result = ParseResult()
        unsupported_safes = 0
        safes = decode_parameters(content, rfc7292.AuthenticatedSafe(), "AuthenticatedSafe")
        for index, content_info in enumerate(safes):
            try:
                safe_contents = self._open_safe(content_info, secret)
            except CertificateEngineError as e:
                self._tolerate(e, secret, result, f"safe {index}")
                if isinstance(e, UnsupportedAlgorithm):
                    unsupported_safes += 1
                continue
            self._read_bags(safe_contents, secret, result, depth=0)

        if unsupported_safes:
            self._recover_with_library(data, password, result)

        log.info(
            "pkcs12.extracted",
            safes=len(safes),
            certificates=len(result.certificates),
            private_keys=len(result.private_keys),
            warnings=len(result.warnings),
        )
        return result

    # ─────────────────────── Safes and bags ───────────────────────

    def _open_safe(self, content_info: rfc5652.ContentInfo, secret: Secret) -> rfc7292.SafeContents:
        content_type = str(content_info["contentType"])
        payload = content_info["content"].asOctets()

        if content_type == str(rfc5652.id_data):
            plaintext = decode_parameters(payload, univ.OctetString(), "safe content").asOctets()
            return decode_parameters(plaintext, rfc7292.SafeContents(), "SafeContents")
        if content_type != str(rfc5652.id_encryptedData):
            raise UnsupportedAlgorithm(f"safe content type {content_type} is not supported")

        encrypted = decode_parameters(payload, rfc5652.EncryptedData(), "EncryptedData")
        info = encrypted["encryptedContentInfo"]
        if not info["encryptedContent"].isValue:
            return rfc7292.SafeContents()
        plaintext = pbe.decrypt(info["contentEncryptionAlgorithm"], info["encryptedContent"].asOctets(), secret)
        return _decode_decrypted(plaintext, rfc7292.SafeContents(), "SafeContents", secret)

    def _read_bags(
        self, safe_contents: rfc7292.SafeContents, secret: Secret, result: ParseResult, depth: int
    ) -> None:
        for index, bag in enumerate(safe_contents):
            bag_id = str(bag["bagId"])
            where = f"bag {index} ({_BAG_NAMES.get(bag_id, bag_id)})"
            try:
                self._read_bag(bag_id, bag["bagValue"].asOctets(), secret, result, depth)
            except CertificateEngineError as e:
                self._tolerate(e, secret, result, where)
            except PyAsn1Error as e:
                self._tolerate(MalformedEncoding(pbe.short_reason(e)), secret, result, where)

    def _read_bag(self, bag_id: str, value: bytes, secret: Secret, result: ParseResult, depth: int) -> None:
        match _BAG_NAMES.get(bag_id):
            case "certBag":
                self._read_certificate_bag(value, result)
            case "pkcs8ShroudedKeyBag":
                shrouded = decode_parameters(value, rfc5958.EncryptedPrivateKeyInfo(), "EncryptedPrivateKeyInfo")
                key_der = pbe.decrypt(
                    shrouded["encryptionAlgorithm"], shrouded["encryptedData"].asOctets(), secret
                )
                _decode_decrypted(key_der, rfc5958.PrivateKeyInfo(), "decrypted PrivateKeyInfo", secret)
                result.private_keys.append(PrivateKeyRecord(pem_armor(key_der, "PRIVATE KEY"), encrypted=False))
            case "keyBag":
                decode_parameters(value, rfc5958.PrivateKeyInfo(), "PrivateKeyInfo")
                result.private_keys.append(PrivateKeyRecord(pem_armor(value, "PRIVATE KEY"), encrypted=False))
            case "safeContentsBag":
                if depth >= MAX_NESTING:
                    raise MalformedEncoding(f"safe contents nested deeper than {MAX_NESTING} levels")
                nested = decode_parameters(value, rfc7292.SafeContents(), "nested SafeContents")
                self._read_bags(nested, secret, result, depth + 1)
            case name:
                log.debug("pkcs12.bag_skipped", bag=name or bag_id)

    def _read_certificate_bag(self, value: bytes, result: ParseResult) -> None:
        cert_bag = decode_parameters(value, rfc7292.CertBag(), "CertBag")
        cert_type = str(cert_bag["certId"])
        if cert_type != X509_CERTIFICATE:
            log.debug("pkcs12.cert_bag_skipped", cert_type=cert_type)
            return
        der = decode_parameters(cert_bag["certValue"].asOctets(), univ.OctetString(), "certValue").asOctets()
        self._builder.build(der).either(
            result.certificates.append,
            lambda err: self._warn(result, f"certificate bag: {err.message}"),
        )

    # ─────────────────────── Failure policy ───────────────────────

    def _tolerate(self, error: CertificateEngineError, secret: Secret, result: ParseResult, where: str) -> None:
        """
        Record a per-safe or per-bag failure as a warning.

        Without a verified MAC a decryption failure means the password is
        wrong, so InvalidPassword is re-raised in that case.
        """
        if isinstance(error, InvalidPassword) and not secret.verified:
            raise error
        self._warn(result, f"{where}: {error}")

    @staticmethod
    def _warn(result: ParseResult, message: str) -> None:
        log.warning("pkcs12.bag_failed", detail=message)
        result.warnings.append(message)

    def _recover_with_library(self, data: bytes, password: str, result: ParseResult) -> None:
        """Read certificates (and a key, if none was found) from safes our ciphers cannot open."""
        try:
            container = pkcs12.load_pkcs12(data, password.encode("utf-8") or None)
        except ValueError as e:
            self._warn(result, f"legacy safe could not be opened: {e}")
            return

        known = {record.der for record in result.certificates}
        bundled = [container.cert] if container.cert is not None else []
        bundled.extend(container.additional_certs)
        recovered = 0
        for entry in bundled:
            der = entry.certificate.public_bytes(serialization.Encoding.DER)
            if der in known:
                continue
            known.add(der)
            built = self._builder.build(der)
            built.peek(result.certificates.append).peek_failure(
                lambda err: self._warn(result, f"recovered certificate: {err.message}")
            )
            recovered += built.is_success()

        if container.key is not None and not result.private_keys:
            pem = container.key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
            result.private_keys.append(PrivateKeyRecord(pem.decode("ascii").strip(), encrypted=False))

        log.info("pkcs12.library_fallback", recovered_certificates=recovered)
