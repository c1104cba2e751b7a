"""Signer strategies over different key custody models.

Every signer exposes the same capability the manifest engine needs: an
algorithm, a leaf-first PEM certificate chain, an optional timestamp
authority URL, and ``sign(data) -> bytes`` returning a raw signature of
exactly ``algorithm.signature_length`` bytes.

- KeyPairSigner: private key held in-process.
- CallbackSigner: the raw-sign step is delegated to an external capability
  (keystore, HSM, remote HTTP signer). The callback is called synchronously
  and blocks the calling worker thread until it returns.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from cryptography.exceptions import UnsupportedAlgorithm as CryptoUnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from c2pa_signing.errors import (
    MalformedSignature,
    SignerConfigurationError,
    SigningFailed,
)
from c2pa_signing.logging_config import get_logger

from .algorithms import SigningAlgorithm
from .codec import der_to_raw

logger = get_logger(__name__)

SignCallback = Callable[[bytes], bytes]


class Signer(ABC):
    """Uniform signing capability."""

    def __init__(
        self,
        algorithm: SigningAlgorithm,
        certificate_chain_pem: str,
        timestamp_authority_url: str | None = None,
    ) -> None:
        if "BEGIN CERTIFICATE" not in certificate_chain_pem:
            raise SignerConfigurationError("Certificate chain must be PEM encoded")
        self._algorithm = algorithm
        self._certificate_chain_pem = certificate_chain_pem
        # Empty string means "no timestamping"
        self._timestamp_authority_url = timestamp_authority_url or None

    @property
    def algorithm(self) -> SigningAlgorithm:
        return self._algorithm

    @property
    def certificate_chain_pem(self) -> str:
        return self._certificate_chain_pem

    @property
    def timestamp_authority_url(self) -> str | None:
        return self._timestamp_authority_url

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` and return a raw fixed-width signature.

        Any failure in the underlying custody model surfaces as SigningFailed.
        """
        try:
            signature = self._sign(data)
        except SigningFailed:
            raise
        except Exception as e:
            logger.error(
                "Signing failed",
                signer=type(self).__name__,
                algorithm=self._algorithm.value,
                error=str(e),
            )
            raise SigningFailed(f"{type(self).__name__} failed to sign") from e

        expected = self._algorithm.signature_length
        if len(signature) != expected:
            logger.error(
                "Signature has wrong length",
                signer=type(self).__name__,
                algorithm=self._algorithm.value,
                length=len(signature),
                expected=expected,
            )
            raise SigningFailed(
                f"Signature must be {expected} bytes for {self._algorithm.value}, "
                f"got {len(signature)}"
            )
        return signature

    @abstractmethod
    def _sign(self, data: bytes) -> bytes:
        """Produce the raw signature. Exceptions are normalized by sign()."""


class KeyPairSigner(Signer):
    """Signs in-process with PEM private key material."""

    def __init__(
        self,
        private_key_pem: str | bytes,
        certificate_chain_pem: str,
        algorithm: SigningAlgorithm = SigningAlgorithm.ES256,
        timestamp_authority_url: str | None = None,
        password: bytes | None = None,
    ) -> None:
        super().__init__(algorithm, certificate_chain_pem, timestamp_authority_url)
        if isinstance(private_key_pem, str):
            private_key_pem = private_key_pem.encode()
        try:
            key = serialization.load_pem_private_key(private_key_pem, password=password)
        except (ValueError, TypeError, CryptoUnsupportedAlgorithm) as e:
            raise SignerConfigurationError("Private key is not a readable PEM key") from e
        _check_key_matches(key, algorithm)
        self._private_key = key

    def _sign(self, data: bytes) -> bytes:
        key = self._private_key
        if isinstance(key, ed25519.Ed25519PrivateKey):
            return key.sign(data)
        # cryptography returns DER; manifests need r||s
        der = key.sign(data, ec.ECDSA(self._algorithm.hash_algorithm))
        return der_to_raw(der, self._algorithm.coordinate_size)


class CallbackSigner(Signer):
    """Delegates the raw-sign step to an external capability.

    For ECDSA, a callback result that is not already raw-width is taken to be
    DER and converted. A DER P-256 signature is 8-72 bytes and only collides
    with the 64-byte raw width when r and s together are 58 bytes long.
    """

    def __init__(
        self,
        algorithm: SigningAlgorithm,
        certificate_chain_pem: str,
        callback: SignCallback,
        timestamp_authority_url: str | None = None,
    ) -> None:
        super().__init__(algorithm, certificate_chain_pem, timestamp_authority_url)
        self._callback = callback

    def _sign(self, data: bytes) -> bytes:
        signature = self._callback(data)
        if not isinstance(signature, bytes | bytearray):
            raise SigningFailed(f"Sign callback returned {type(signature).__name__}, not bytes")
        signature = bytes(signature)
        if self._algorithm.is_ecdsa and len(signature) != self._algorithm.signature_length:
            try:
                return der_to_raw(signature, self._algorithm.coordinate_size)
            except MalformedSignature as e:
                raise SigningFailed("Sign callback returned an undecodable signature") from e
        return signature


def _check_key_matches(key: object, algorithm: SigningAlgorithm) -> None:
    if algorithm is SigningAlgorithm.ED25519:
        if not isinstance(key, ed25519.Ed25519PrivateKey):
            raise SignerConfigurationError("ed25519 requires an Ed25519 private key")
        return
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise SignerConfigurationError(f"{algorithm.value} requires an EC private key")
    if key.curve.name != algorithm.curve.name:
        raise SignerConfigurationError(
            f"{algorithm.value} requires curve {algorithm.curve.name}, key uses {key.curve.name}"
        )

