"""
certchain — TLS certificate decoding and chain reconstruction.

Reads PEM text, raw DER and PKCS#12 containers into structured certificate
and key records, rebuilds leaf → root chains from an unordered set, and
writes them back out as concatenated PEM bundles.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
