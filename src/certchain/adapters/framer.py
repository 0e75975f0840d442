"""
Framer adapter — split input bytes into PEM blocks or binary units.

Adapter layer — implements the BlockFramer port.

PEM mode scans line by line for BEGIN/END delimiters and captures each block
from its BEGIN line to the matching END line inclusive. Lines are stripped of
surrounding whitespace and rejoined with "\\n"; nothing else is touched, so
RFC 1421 headers (Proc-Type, DEK-Info) and their blank separator line survive.
Unterminated blocks are dropped without an error.

Binary mode (DER, PKCS#12) wraps the whole buffer in one block; the caller
has already decided what it is.
"""

from __future__ import annotations

import base64
import binascii
import re
import textwrap

import structlog
from railway.result import Result

from certchain.domain.errors import MalformedEncoding, capture
from certchain.domain.models import BlockEncoding, RawBlock

log = structlog.get_logger()

_BEGIN = re.compile(r"-----BEGIN ([^-]+)-----")
_END = re.compile(r"-----END ([^-]+)-----")


def split_pem(text: str) -> list[RawBlock]:
    """Every terminated BEGIN/END block in `text`, in input order."""
    blocks: list[RawBlock] = []
    label: str | None = None
    lines: list[str] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()

        begin = _BEGIN.fullmatch(line)
        if begin is not None:
            if label is not None:
                log.debug("framer.block_discarded", label=label, reason="BEGIN before END")
            label, lines = begin.group(1), [line]
            continue

        if label is None:
            continue
        lines.append(line)

        end = _END.fullmatch(line)
        if end is not None:
            if end.group(1) == label:
                blocks.append(
                    RawBlock(BlockEncoding.PEM, "\n".join(lines).encode("utf-8"), label)
                )
            else:
                log.debug(
                    "framer.block_discarded", label=label, end_label=end.group(1), reason="END label mismatch"
                )
            label, lines = None, []

    if label is not None:
        log.debug("framer.block_discarded", label=label, reason="unterminated")
    return blocks


def pem_text(block: RawBlock) -> str:
    return block.payload.decode("utf-8")


def pem_body(block: RawBlock) -> bytes:
    """
    Base64-decode the body of a PEM block.

    Delimiter lines, header lines ("Name: value") and blank lines are skipped.
    """
    body = "".join(
        line
        for line in pem_text(block).split("\n")[1:-1]
        if line and ":" not in line
    )
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEncoding(f"invalid base64 in {block.label} block: {e}") from e


def pem_armor(der: bytes, label: str = "CERTIFICATE") -> str:
    """Wrap DER bytes as PEM with 64-character lines and no trailing newline."""
    body = "\n".join(textwrap.wrap(base64.b64encode(der).decode("ascii"), 64))
    return f"-----BEGIN {label}-----\n{body}\n-----END {label}-----"


def _frame(data: bytes, encoding: BlockEncoding) -> list[RawBlock]:
    if encoding is not BlockEncoding.PEM:
        return [RawBlock(encoding, data)]
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedEncoding(f"PEM input is not UTF-8 text: {e}") from e
    return split_pem(text.lstrip("\ufeff"))


class PemDerFramer:
    """
    Split a buffer into RawBlocks.

    Implements the BlockFramer port.
    """

    def frame(self, data: bytes, encoding: BlockEncoding) -> Result[list[RawBlock]]:
        return capture(lambda: _frame(data, encoding), f"{encoding.value} framing failed")
