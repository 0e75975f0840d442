"""
ASN.1 DER decoder adapter — a recursive tag-length-value reader.

Adapter layer — implements the Asn1Decoder port. The decoder knows nothing
about certificates: it produces an Asn1Node tree and leaves interpretation
to the field extractors, which use the primitive readers below.

Encoding rules handled:
  - tag byte: class (bits 8-7), constructed flag (bit 6), number (bits 5-1);
    number 31 switches to base-128 continuation bytes
  - length: short form (< 0x80) or long form (0x80 | count, then count
    big-endian bytes); the indefinite form is rejected
  - constructed content is decoded recursively into children
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from railway.result import Result

from certchain.domain.errors import MalformedEncoding, capture
from certchain.domain.models import Asn1Node, TagClass

# ─────────────────────── Universal tag numbers ───────────────────────

BOOLEAN = 1
INTEGER = 2
BIT_STRING = 3
OCTET_STRING = 4
NULL = 5
OBJECT_IDENTIFIER = 6
UTF8_STRING = 12
SEQUENCE = 16
SET = 17
PRINTABLE_STRING = 19
TELETEX_STRING = 20
IA5_STRING = 22
UTC_TIME = 23
GENERALIZED_TIME = 24
VISIBLE_STRING = 26
UNIVERSAL_STRING = 28
BMP_STRING = 30

MAX_DEPTH = 64

# tag → (encoding name, Python codec)
_STRING_TYPES: dict[int, tuple[str, str]] = {
    UTF8_STRING: ("UTF8String", "utf-8"),
    PRINTABLE_STRING: ("PrintableString", "ascii"),
    TELETEX_STRING: ("TeletexString", "latin-1"),
    IA5_STRING: ("IA5String", "ascii"),
    VISIBLE_STRING: ("VisibleString", "ascii"),
    UNIVERSAL_STRING: ("UniversalString", "utf-32-be"),
    BMP_STRING: ("BMPString", "utf-16-be"),
}

_UTC_TIME = re.compile(r"(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})Z")
_GENERALIZED_TIME = re.compile(r"(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})Z")


# ─────────────────────── TLV decoding ───────────────────────


def _read_length(data: bytes, offset: int) -> tuple[int, int]:
    if offset >= len(data):
        raise MalformedEncoding(f"truncated length at offset {offset}")
    first = data[offset]
    offset += 1
    if first < 0x80:
        return first, offset
    count = first & 0x7F
    if count == 0:
        raise MalformedEncoding(f"indefinite length at offset {offset - 1} is not DER")
    if offset + count > len(data):
        raise MalformedEncoding(f"long-form length at offset {offset - 1} overruns the buffer")
    return int.from_bytes(data[offset : offset + count], "big"), offset + count


def _read_tlv(data: bytes, offset: int, depth: int) -> tuple[Asn1Node, int]:
    if depth > MAX_DEPTH:
        raise MalformedEncoding(f"nesting deeper than {MAX_DEPTH} levels")
    start = offset
    if offset >= len(data):
        raise MalformedEncoding(f"truncated tag at offset {offset}")
    first = data[offset]
    offset += 1

    tag_number = first & 0x1F
    if tag_number == 0x1F:
        tag_number = 0
        while True:
            if offset >= len(data):
                raise MalformedEncoding(f"truncated tag number at offset {start}")
            byte = data[offset]
            offset += 1
            tag_number = (tag_number << 7) | (byte & 0x7F)
            if not byte & 0x80:
                break

    length, offset = _read_length(data, offset)
    end = offset + length
    if end > len(data):
        raise MalformedEncoding(
            f"length {length} at offset {start} overruns the buffer ({len(data) - offset} bytes left)"
        )

    constructed = bool(first & 0x20)
    content = data[offset:end]
    children: tuple[Asn1Node, ...] = ()
    if constructed:
        children = tuple(_read_children(content, depth + 1))

    node = Asn1Node(
        tag_class=TagClass(first >> 6),
        tag_number=tag_number,
        constructed=constructed,
        content=content,
        children=children,
        encoded=data[start:end],
    )
    return node, end


def _read_children(content: bytes, depth: int) -> list[Asn1Node]:
    children: list[Asn1Node] = []
    offset = 0
    while offset < len(content):
        child, offset = _read_tlv(content, offset, depth)
        children.append(child)
    return children


def decode_leading(data: bytes) -> tuple[Asn1Node, int]:
    """Decode the first TLV of the buffer. Returns it with the number of bytes left after it."""
    if not data:
        raise MalformedEncoding("empty input")
    node, end = _read_tlv(data, 0, 0)
    return node, len(data) - end


def decode_node(data: bytes) -> Asn1Node:
    """Decode exactly one TLV spanning the whole buffer. Raises MalformedEncoding."""
    node, trailing = decode_leading(data)
    if trailing:
        raise MalformedEncoding(f"{trailing} trailing bytes after the root element")
    return node


class DerDecoder:
    """
    Decode DER bytes into an Asn1Node tree.

    Implements the Asn1Decoder port. Stateless; one instance can be shared.
    """

    def decode(self, data: bytes) -> Result[Asn1Node]:
        return capture(lambda: decode_node(data), "DER decoding failed")


# ─────────────────────── Primitive readers ───────────────────────


def expect(node: Asn1Node, tag_number: int, what: str) -> Asn1Node:
    """Return the node if it is the universal type `tag_number`, else raise MalformedEncoding."""
    if not node.is_universal(tag_number):
        raise MalformedEncoding(
            f"{what}: expected universal tag {tag_number}, "
            f"found {node.tag_class.name.lower()} tag {node.tag_number}"
        )
    return node


def decode_oid(content: bytes) -> str:
    if not content:
        raise MalformedEncoding("empty OBJECT IDENTIFIER")
    if content[-1] & 0x80:
        raise MalformedEncoding("OBJECT IDENTIFIER ends inside a subidentifier")

    subidentifiers: list[int] = []
    value = 0
    for byte in content:
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            subidentifiers.append(value)
            value = 0

    first = subidentifiers[0]
    if first < 40:
        arcs = [0, first]
    elif first < 80:
        arcs = [1, first - 40]
    else:
        arcs = [2, first - 80]
    arcs.extend(subidentifiers[1:])
    return ".".join(str(arc) for arc in arcs)


def decode_integer(content: bytes) -> int:
    if not content:
        raise MalformedEncoding("empty INTEGER")
    return int.from_bytes(content, "big", signed=True)


def decode_boolean(content: bytes) -> bool:
    if len(content) != 1:
        raise MalformedEncoding(f"BOOLEAN must be one byte, got {len(content)}")
    return content[0] != 0x00


def decode_bit_string(content: bytes) -> bytes:
    """Bit string payload without the leading unused-bits count."""
    if not content:
        raise MalformedEncoding("empty BIT STRING")
    return content[1:]


def decode_string(node: Asn1Node) -> tuple[str, str]:
    """
    Decode a directory string into (value, encoding name).

    Unknown string types are rendered as '#' + hex of the raw content.
    """
    known = _STRING_TYPES.get(node.tag_number) if node.tag_class is TagClass.UNIVERSAL else None
    if known is None:
        return f"#{node.content.hex()}", f"tag{node.tag_number}"
    name, codec = known
    try:
        return node.content.decode(codec), name
    except UnicodeDecodeError as e:
        raise MalformedEncoding(f"invalid {name}: {e}") from e


def decode_time(node: Asn1Node) -> datetime:
    """
    Decode UTCTime (YYMMDDHHMMSSZ) or GeneralizedTime (YYYYMMDDHHMMSSZ) to an aware UTC datetime.

    Two-digit years 50-99 are 19xx, 00-49 are 20xx.
    """
    text = node.content.decode("ascii", errors="replace")
    if node.is_universal(UTC_TIME):
        match = _UTC_TIME.fullmatch(text)
        if match is None:
            raise MalformedEncoding(f"UTCTime {text!r} does not match YYMMDDHHMMSSZ")
        year = int(match.group(1))
        year += 1900 if year >= 50 else 2000
    elif node.is_universal(GENERALIZED_TIME):
        match = _GENERALIZED_TIME.fullmatch(text)
        if match is None:
            raise MalformedEncoding(f"GeneralizedTime {text!r} does not match YYYYMMDDHHMMSSZ")
        year = int(match.group(1))
    else:
        raise MalformedEncoding(f"expected a time value, found tag {node.tag_number}")

    month, day, hour, minute, second = (int(g) for g in match.groups()[1:])
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError as e:
        raise MalformedEncoding(f"invalid timestamp {text!r}: {e}") from e
