"""ECDSA signature codec: ASN.1 DER <-> fixed-width raw r||s.

Platform signers (cryptography, keystores, HSMs reached through a DER-aware
API) emit ``SEQUENCE { INTEGER r, INTEGER s }``. COSE-style manifest
embedding needs the big-endian concatenation r||s with each component
left-padded to the curve's coordinate size (32 bytes for P-256).
"""

from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from c2pa_signing.errors import MalformedSignature

_SEQUENCE = 0x30
_INTEGER = 0x02


def _read_length(der: bytes, offset: int) -> tuple[int, int]:
    """Read a DER length at ``offset``. Returns (length, next_offset)."""
    if offset >= len(der):
        raise MalformedSignature("Truncated DER signature: missing length")
    first = der[offset]
    offset += 1
    if first < 0x80:
        return first, offset

    # Long form: low bits give the number of length octets
    num_octets = first & 0x7F
    if num_octets == 0 or num_octets > 4:
        raise MalformedSignature("Invalid DER length encoding")
    if offset + num_octets > len(der):
        raise MalformedSignature("Truncated DER signature: length octets")
    length = int.from_bytes(der[offset : offset + num_octets], "big")
    return length, offset + num_octets


def _read_integer(der: bytes, offset: int, limit: int, name: str) -> tuple[bytes, int]:
    if offset >= limit or der[offset] != _INTEGER:
        raise MalformedSignature(f"Invalid DER signature: missing INTEGER tag for {name}")
    length, offset = _read_length(der, offset + 1)
    end = offset + length
    if length == 0 or end > limit:
        raise MalformedSignature(f"Invalid DER signature: bad length for {name}")
    if der[offset] & 0x80:
        raise MalformedSignature(f"Invalid DER signature: {name} is negative")
    return der[offset:end], end


def der_to_raw(der: bytes, coordinate_size: int) -> bytes:
    """Convert a DER ECDSA signature to raw r||s.

    Raises MalformedSignature on a wrong SEQUENCE/INTEGER tag, truncated
    input, bytes outside the declared SEQUENCE, a negative INTEGER, or a
    component wider than ``coordinate_size`` once its sign padding is removed.
    """
    if not der or der[0] != _SEQUENCE:
        raise MalformedSignature("Invalid DER signature: missing SEQUENCE tag")

    seq_length, offset = _read_length(der, 1)
    seq_end = offset + seq_length
    if seq_end > len(der):
        raise MalformedSignature("Invalid DER signature: SEQUENCE overruns input")
    if seq_end < len(der):
        raise MalformedSignature("Invalid DER signature: trailing data after SEQUENCE")

    r, offset = _read_integer(der, offset, seq_end, "r")
    s, offset = _read_integer(der, offset, seq_end, "s")
    if offset != seq_end:
        raise MalformedSignature("Invalid DER signature: trailing data after s")

    parts = []
    for name, component in (("r", r), ("s", s)):
        stripped = component.lstrip(b"\x00")
        if len(stripped) > coordinate_size:
            raise MalformedSignature(
                f"Invalid DER signature: {name} is {len(stripped)} bytes, "
                f"expected at most {coordinate_size}"
            )
        parts.append(stripped.rjust(coordinate_size, b"\x00"))

    return parts[0] + parts[1]


def raw_to_der(raw: bytes, coordinate_size: int) -> bytes:
    """Convert raw r||s back to a DER SEQUENCE of two positive INTEGERs."""
    if len(raw) != 2 * coordinate_size:
        raise MalformedSignature(
            f"Raw signature must be {2 * coordinate_size} bytes, got {len(raw)}"
        )
    r = int.from_bytes(raw[:coordinate_size], "big")
    s = int.from_bytes(raw[coordinate_size:], "big")
    # encode_dss_signature emits minimal INTEGERs with a 0x00 prefix when the high bit is set
    return encode_dss_signature(r, s)
