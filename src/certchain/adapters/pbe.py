"""
Password-based integrity and encryption for PKCS#12 containers.

Adapter layer — used by the PKCS#12 extractor:
  - pyasn1 / pyasn1-modules: algorithm parameter structures (RFC 7292, RFC 8018)
  - cryptography (PyCA): HMAC, PBKDF2, block and stream ciphers

Supported schemes:
  MAC          HMAC-SHA1/224/256/384/512 keyed by the PKCS#12 KDF
  PBES2        PBKDF2 (HMAC-SHA1..SHA512) + AES-128/192/256-CBC or 3DES-CBC
  PKCS#12 PBE  SHA1 with 3DES (3-key, 2-key), RC2-128, RC4-128, RC4-40

RC2-40 is reported as UnsupportedAlgorithm: the cipher implementation only
accepts 128-bit RC2 keys.

The PKCS#12 key derivation (RFC 7292, Appendix B.2) takes the password as a
BMPString: UTF-16BE with a two-byte NUL terminator. An empty password is
also tried as zero bytes, which is what OpenSSL writes when no password
was given.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.decrepit.ciphers.algorithms import ARC4, RC2, TripleDES
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import (
    BlockCipherAlgorithm,
    Cipher,
    CipherAlgorithm,
    algorithms,
    modes,
)
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pyasn1.codec.ber import decoder as ber_decoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ
from pyasn1_modules import rfc5280, rfc7292, rfc8018

from certchain.domain.errors import InvalidPassword, MalformedEncoding, UnsupportedAlgorithm

log = structlog.get_logger()

KEY_MATERIAL = 1
IV_MATERIAL = 2
MAC_MATERIAL = 3

HashFactory = Callable[[], hashes.HashAlgorithm]

_MAC_DIGESTS: dict[str, HashFactory] = {
    "1.3.14.3.2.26": hashes.SHA1,
    "2.16.840.1.101.3.4.2.4": hashes.SHA224,
    "2.16.840.1.101.3.4.2.1": hashes.SHA256,
    "2.16.840.1.101.3.4.2.2": hashes.SHA384,
    "2.16.840.1.101.3.4.2.3": hashes.SHA512,
}

_PBKDF2_PRFS: dict[str, HashFactory] = {
    str(rfc8018.id_hmacWithSHA1): hashes.SHA1,
    str(rfc8018.id_hmacWithSHA224): hashes.SHA224,
    str(rfc8018.id_hmacWithSHA256): hashes.SHA256,
    str(rfc8018.id_hmacWithSHA384): hashes.SHA384,
    str(rfc8018.id_hmacWithSHA512): hashes.SHA512,
}

# OID → (cipher class, key length in bytes)
_PBES2_CIPHERS: dict[str, tuple[type[BlockCipherAlgorithm], int]] = {
    str(rfc8018.des_EDE3_CBC): (TripleDES, 24),
    str(rfc8018.aes128_CBC_PAD): (algorithms.AES, 16),
    str(rfc8018.aes192_CBC_PAD): (algorithms.AES, 24),
    str(rfc8018.aes256_CBC_PAD): (algorithms.AES, 32),
}

# OID → (cipher class, key length in bytes, is block cipher)
_PKCS12_PBE: dict[str, tuple[type[CipherAlgorithm], int, bool]] = {
    str(rfc7292.pbeWithSHAAnd3_KeyTripleDES_CBC): (TripleDES, 24, True),
    str(rfc7292.pbeWithSHAAnd2_KeyTripleDES_CBC): (TripleDES, 16, True),
    str(rfc7292.pbeWithSHAAnd128BitRC2_CBC): (RC2, 16, True),
    str(rfc7292.pbeWithSHAAnd128BitRC4): (ARC4, 16, False),
    str(rfc7292.pbeWithSHAAnd40BitRC4): (ARC4, 5, False),
}


@dataclass(frozen=True, slots=True)
class Secret:
    """
    A container password in the forms the schemes need.

    `verified` is True when the container MAC accepted `bmp`; a later
    decryption failure then cannot be blamed on the password.
    """

    text: str = field(repr=False)
    bmp: bytes = field(repr=False)
    verified: bool = False

    @property
    def utf8(self) -> bytes:
        return self.text.encode("utf-8")


def bmp_password(password: str) -> bytes:
    return password.encode("utf-16-be") + b"\x00\x00"


def password_candidates(password: str) -> list[bytes]:
    candidates = [bmp_password(password)]
    if not password:
        candidates.append(b"")
    return candidates


def short_reason(error: Exception, limit: int = 80) -> str:
    """First line of a pyasn1 error; the full text can embed a repr of the whole schema."""
    lines = str(error).strip().splitlines()
    reason = lines[0] if lines else type(error).__name__
    return reason if len(reason) <= limit else reason[: limit - 3] + "..."


def decode_parameters(substrate: bytes, spec: Any, what: str) -> Any:
    if not substrate:
        raise MalformedEncoding(f"{what}: empty input")
    try:
        value, rest = ber_decoder.decode(substrate, asn1Spec=spec)
    except PyAsn1Error as e:
        raise MalformedEncoding(f"{what}: {short_reason(e)}") from e
    if rest:
        raise MalformedEncoding(f"{what}: {len(rest)} trailing bytes")
    return value


# ─────────────────────── PKCS#12 key derivation ───────────────────────


def _digest(algorithm: hashes.HashAlgorithm, data: bytes) -> bytes:
    h = hashes.Hash(algorithm)
    h.update(data)
    return h.finalize()


def _fill(data: bytes, block: int) -> bytes:
    """Concatenate copies of `data` up to the next multiple of `block` bytes."""
    if not data:
        return b""
    size = block * -(-len(data) // block)
    return (data * (size // len(data) + 1))[:size]


def pkcs12_kdf(
    algorithm: hashes.HashAlgorithm,
    password: bytes,
    salt: bytes,
    iterations: int,
    purpose: int,
    size: int,
) -> bytes:
    """
    Derive `size` bytes for `purpose` (KEY_MATERIAL, IV_MATERIAL or MAC_MATERIAL).

    `password` is already in BMPString form.
    """
    block = algorithm.block_size
    if block is None:
        raise UnsupportedAlgorithm(f"{algorithm.name} has no block size")
    diversifier = bytes([purpose]) * block
    state = bytearray(_fill(salt, block) + _fill(password, block))
    modulus = 1 << (block * 8)

    output = b""
    while len(output) < size:
        chunk = diversifier + bytes(state)
        for _ in range(iterations):
            chunk = _digest(algorithm, chunk)
        output += chunk
        if len(output) >= size:
            break
        increment = int.from_bytes(_fill(chunk, block), "big") + 1
        for offset in range(0, len(state), block):
            value = int.from_bytes(state[offset : offset + block], "big")
            state[offset : offset + block] = ((value + increment) % modulus).to_bytes(block, "big")
    return output[:size]


# ─────────────────────── MAC ───────────────────────


def verify_mac(content: bytes, mac_data: rfc7292.MacData, password: str) -> Secret:
    """
    Check the container MAC over the authSafe content.

    Returns the Secret whose BMPString form matched. Raises InvalidPassword
    when no form matches.
    """
    digest_oid = str(mac_data["mac"]["digestAlgorithm"]["algorithm"])
    factory = _MAC_DIGESTS.get(digest_oid)
    if factory is None:
        raise UnsupportedAlgorithm(f"MAC digest {digest_oid} is not supported")

    salt = mac_data["macSalt"].asOctets()
    iterations = int(mac_data["iterations"])
    expected = mac_data["mac"]["digest"].asOctets()

    for candidate in password_candidates(password):
        key = pkcs12_kdf(factory(), candidate, salt, iterations, MAC_MATERIAL, factory().digest_size)
        mac = hmac.HMAC(key, factory())
        mac.update(content)
        try:
            mac.verify(expected)
        except InvalidSignature:
            continue
        log.debug("pkcs12.mac_verified", digest=factory().name, iterations=iterations)
        return Secret(password, candidate, verified=True)
    raise InvalidPassword("MAC verification failed")


# ─────────────────────── Decryption ───────────────────────


def _cbc_decrypt(cipher: BlockCipherAlgorithm, iv: bytes, data: bytes) -> bytes:
    decryptor = Cipher(cipher, modes.CBC(iv)).decryptor()
    try:
        padded = decryptor.update(data) + decryptor.finalize()
    except ValueError as e:
        raise MalformedEncoding(f"ciphertext is not a whole number of blocks: {e}") from e
    unpadder = padding.PKCS7(cipher.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise InvalidPassword("decryption produced invalid padding") from e


def _decrypt_pbes2(parameters: bytes, data: bytes, secret: Secret) -> bytes:
    params = decode_parameters(parameters, rfc8018.PBES2_params(), "PBES2 parameters")

    kdf = params["keyDerivationFunc"]
    if str(kdf["algorithm"]) != str(rfc8018.id_PBKDF2):
        raise UnsupportedAlgorithm(f"PBES2 key derivation {kdf['algorithm']} is not supported")
    kdf_params = decode_parameters(kdf["parameters"].asOctets(), rfc8018.PBKDF2_params(), "PBKDF2 parameters")
    if kdf_params["salt"].getName() != "specified":
        raise UnsupportedAlgorithm("PBKDF2 salt from another source is not supported")

    scheme = params["encryptionScheme"]
    scheme_oid = str(scheme["algorithm"])
    if scheme_oid not in _PBES2_CIPHERS:
        raise UnsupportedAlgorithm(f"PBES2 cipher {scheme_oid} is not supported")
    cipher_class, key_length = _PBES2_CIPHERS[scheme_oid]
    if kdf_params["keyLength"].isValue:
        key_length = int(kdf_params["keyLength"])

    prf_oid = str(kdf_params["prf"]["algorithm"])
    prf = _PBKDF2_PRFS.get(prf_oid)
    if prf is None:
        raise UnsupportedAlgorithm(f"PBKDF2 PRF {prf_oid} is not supported")

    key = PBKDF2HMAC(
        algorithm=prf(),
        length=key_length,
        salt=kdf_params["salt"]["specified"].asOctets(),
        iterations=int(kdf_params["iterationCount"]),
    ).derive(secret.utf8)
    iv = decode_parameters(scheme["parameters"].asOctets(), univ.OctetString(), "cipher IV").asOctets()
    return _cbc_decrypt(cipher_class(key), iv, data)


def _decrypt_pkcs12_pbe(algorithm_oid: str, parameters: bytes, data: bytes, secret: Secret) -> bytes:
    cipher_class, key_length, is_block = _PKCS12_PBE[algorithm_oid]
    params = decode_parameters(parameters, rfc7292.Pkcs_12PbeParams(), "PKCS#12 PBE parameters")
    salt = params["salt"].asOctets()
    iterations = int(params["iterations"])

    key = pkcs12_kdf(hashes.SHA1(), secret.bmp, salt, iterations, KEY_MATERIAL, key_length)
    if not is_block:
        decryptor = Cipher(cipher_class(key), mode=None).decryptor()
        return decryptor.update(data) + decryptor.finalize()

    cipher = cipher_class(key)
    iv = pkcs12_kdf(hashes.SHA1(), secret.bmp, salt, iterations, IV_MATERIAL, cipher.block_size // 8)
    return _cbc_decrypt(cipher, iv, data)


def decrypt(algorithm: rfc5280.AlgorithmIdentifier, data: bytes, secret: Secret) -> bytes:
    """
    Decrypt `data` protected by the password-based scheme `algorithm`.

    Raises UnsupportedAlgorithm for schemes outside the table above and
    InvalidPassword when the plaintext padding is wrong.
    """
    algorithm_oid = str(algorithm["algorithm"])
    parameters = algorithm["parameters"].asOctets() if algorithm["parameters"].isValue else b""

    if algorithm_oid == str(rfc8018.id_PBES2):
        return _decrypt_pbes2(parameters, data, secret)
    if algorithm_oid in _PKCS12_PBE:
        return _decrypt_pkcs12_pbe(algorithm_oid, parameters, data, secret)
    raise UnsupportedAlgorithm(f"encryption scheme {algorithm_oid} is not supported")
