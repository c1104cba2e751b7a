"""Signing algorithms supported for manifest embedding."""

from enum import StrEnum

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from c2pa_signing.errors import UnsupportedAlgorithm


class SigningAlgorithm(StrEnum):
    """Algorithms with a fixed raw signature width.

    Values are the lowercase names used on the wire and by the manifest engine.
    """

    ES256 = "es256"
    ES384 = "es384"
    ES512 = "es512"
    ED25519 = "ed25519"

    @classmethod
    def parse(cls, name: str) -> "SigningAlgorithm":
        """Map a wire name (any case) to an algorithm."""
        if not isinstance(name, str):
            raise UnsupportedAlgorithm(repr(name))
        normalized = name.strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedAlgorithm(name) from None

    @property
    def is_ecdsa(self) -> bool:
        return self is not SigningAlgorithm.ED25519

    @property
    def coordinate_size(self) -> int:
        """Byte length of each of r and s. Zero for Ed25519."""
        return _COORDINATE_SIZES[self]

    @property
    def signature_length(self) -> int:
        """Exact length of the raw signature handed to the engine."""
        if self is SigningAlgorithm.ED25519:
            return 64
        return 2 * self.coordinate_size

    @property
    def curve(self) -> ec.EllipticCurve | None:
        return _CURVES.get(self)

    @property
    def hash_algorithm(self) -> hashes.HashAlgorithm | None:
        """Digest for ECDSA. Ed25519 hashes internally."""
        factory = _HASHES.get(self)
        return factory() if factory else None


_COORDINATE_SIZES = {
    SigningAlgorithm.ES256: 32,
    SigningAlgorithm.ES384: 48,
    SigningAlgorithm.ES512: 66,
    SigningAlgorithm.ED25519: 0,
}

_CURVES: dict[SigningAlgorithm, ec.EllipticCurve] = {
    SigningAlgorithm.ES256: ec.SECP256R1(),
    SigningAlgorithm.ES384: ec.SECP384R1(),
    SigningAlgorithm.ES512: ec.SECP521R1(),
}

_HASHES: dict[SigningAlgorithm, type[hashes.HashAlgorithm]] = {
    SigningAlgorithm.ES256: hashes.SHA256,
    SigningAlgorithm.ES384: hashes.SHA384,
    SigningAlgorithm.ES512: hashes.SHA512,
}
