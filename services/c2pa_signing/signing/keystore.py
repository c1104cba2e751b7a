"""Key custody backends for keystore and hardware signing modes.

Keys are addressed by alias. ``sign`` returns DER for ECDSA keys (the shape
platform keystores emit) and raw bytes for Ed25519; CallbackSigner normalizes
either form.
"""

import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm as CryptoUnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.x509.oid import NameOID

from c2pa_signing.config import KeyStoreConfig
from c2pa_signing.errors import KeyStoreError, ServiceUnavailable, SignerConfigurationError
from c2pa_signing.logging_config import get_logger

from .algorithms import SigningAlgorithm
from .codec import raw_to_der

logger = get_logger(__name__)

_ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


@dataclass(frozen=True)
class SubjectInfo:
    """Distinguished name used for CSRs built from keystore keys."""

    common_name: str = "C2PA Hardware Key"
    organization: str = "C2PA Signing Service"
    organizational_unit: str = "Mobile"
    country: str = "US"
    state: str = "CA"
    locality: str = "San Francisco"

    def to_x509_name(self) -> x509.Name:
        attributes = [
            (NameOID.COMMON_NAME, self.common_name),
            (NameOID.ORGANIZATION_NAME, self.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (NameOID.COUNTRY_NAME, self.country),
            (NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (NameOID.LOCALITY_NAME, self.locality),
        ]
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in attributes if value])


@runtime_checkable
class KeyStore(Protocol):
    """Alias-addressed key custody."""

    def contains(self, alias: str) -> bool: ...

    def generate_key(
        self, alias: str, algorithm: SigningAlgorithm = SigningAlgorithm.ES256
    ) -> None: ...

    def import_private_key(self, alias: str, private_key_pem: str | bytes) -> None: ...

    def public_key_pem(self, alias: str) -> str: ...

    def sign(self, alias: str, data: bytes) -> bytes: ...

    def create_csr(self, alias: str, subject: SubjectInfo | None = None) -> str: ...

    def delete_key(self, alias: str) -> None: ...


def _check_alias(alias: str) -> None:
    if not _ALIAS_PATTERN.match(alias):
        raise KeyStoreError(f"Invalid key alias: {alias!r}")


# ── Software Keystore ────────────────────────────────────────────────────


class SoftwareKeyStore:
    """Keys held by the process, optionally persisted as PEM files.

    With ``data_dir`` set each alias maps to ``<data_dir>/<alias>.key``
    (mode 0600). Without it keys live only in memory.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self._data_dir = data_dir
        self._keys: dict[str, ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey] = {}
        self._lock = threading.Lock()
        if data_dir is not None:
            data_dir.mkdir(parents=True, exist_ok=True)

    def _key_path(self, alias: str) -> Path | None:
        if self._data_dir is None:
            return None
        return self._data_dir / f"{alias}.key"

    def _load(self, alias: str) -> ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey:
        _check_alias(alias)
        with self._lock:
            key = self._keys.get(alias)
            if key is not None:
                return key
            path = self._key_path(alias)
            if path is None or not path.exists():
                raise KeyStoreError(f"No key with alias {alias!r}")
            loaded = serialization.load_pem_private_key(path.read_bytes(), password=None)
            if not isinstance(loaded, ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey):
                raise KeyStoreError(f"Key {alias!r} has unsupported type {type(loaded).__name__}")
            self._keys[alias] = loaded
            return loaded

    def _store(
        self, alias: str, key: ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey
    ) -> None:
        with self._lock:
            self._keys[alias] = key
            path = self._key_path(alias)
            if path is not None:
                pem = key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                )
                # Create with restrictive mode so the key is never world-readable
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(pem)
                path.chmod(0o600)

    def contains(self, alias: str) -> bool:
        _check_alias(alias)
        with self._lock:
            if alias in self._keys:
                return True
            path = self._key_path(alias)
            return path is not None and path.exists()

    def generate_key(
        self, alias: str, algorithm: SigningAlgorithm = SigningAlgorithm.ES256
    ) -> None:
        _check_alias(alias)
        key: ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey
        if algorithm is SigningAlgorithm.ED25519:
            key = ed25519.Ed25519PrivateKey.generate()
        else:
            key = ec.generate_private_key(algorithm.curve)
        self._store(alias, key)
        logger.info("Generated keystore key", alias=alias, algorithm=algorithm.value)

    def import_private_key(self, alias: str, private_key_pem: str | bytes) -> None:
        _check_alias(alias)
        if isinstance(private_key_pem, str):
            private_key_pem = private_key_pem.encode()
        try:
            key = serialization.load_pem_private_key(private_key_pem, password=None)
        except (ValueError, TypeError, CryptoUnsupportedAlgorithm) as e:
            raise KeyStoreError("Private key is not a readable PEM key") from e
        if not isinstance(key, ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey):
            raise KeyStoreError(f"Unsupported key type {type(key).__name__}")
        self._store(alias, key)
        logger.info("Imported key into keystore", alias=alias)

    def public_key_pem(self, alias: str) -> str:
        key = self._load(alias)
        return (
            key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode()
        )

    def sign(self, alias: str, data: bytes) -> bytes:
        key = self._load(alias)
        if isinstance(key, ed25519.Ed25519PrivateKey):
            return key.sign(data)
        algorithm = _algorithm_for_curve(key.curve.name)
        return key.sign(data, ec.ECDSA(algorithm.hash_algorithm))

    def create_csr(self, alias: str, subject: SubjectInfo | None = None) -> str:
        key = self._load(alias)
        subject = subject or SubjectInfo()
        builder = x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name())
        if isinstance(key, ed25519.Ed25519PrivateKey):
            csr = builder.sign(key, None)
        else:
            csr = builder.sign(key, _algorithm_for_curve(key.curve.name).hash_algorithm)
        return csr.public_bytes(serialization.Encoding.PEM).decode()

    def delete_key(self, alias: str) -> None:
        _check_alias(alias)
        with self._lock:
            self._keys.pop(alias, None)
            path = self._key_path(alias)
            if path is not None and path.exists():
                path.unlink()
        logger.info("Deleted keystore key", alias=alias)


def _algorithm_for_curve(curve_name: str) -> SigningAlgorithm:
    for algorithm in (SigningAlgorithm.ES256, SigningAlgorithm.ES384, SigningAlgorithm.ES512):
        if algorithm.curve.name == curve_name:
            return algorithm
    raise KeyStoreError(f"Unsupported curve {curve_name}")


# ── PKCS#11 Keystore ─────────────────────────────────────────────────────

_PKCS11_CURVES = {
    SigningAlgorithm.ES256: "secp256r1",
    SigningAlgorithm.ES384: "secp384r1",
    SigningAlgorithm.ES512: "secp521r1",
}


class Pkcs11KeyStore:
    """Non-exportable EC keys on a PKCS#11 token.

    Requires the ``hsm`` extra (python-pkcs11, asn1crypto). Each call opens
    its own session; the token's raw r||s output is re-encoded as DER to keep
    the keystore contract.
    """

    def __init__(self, module_path: Path, token_label: str, user_pin: str | None = None) -> None:
        try:
            import pkcs11
        except ImportError as e:
            raise ServiceUnavailable(
                "PKCS#11 keystore requires the 'hsm' extra (python-pkcs11)"
            ) from e

        self._pkcs11 = pkcs11
        try:
            lib = pkcs11.lib(str(module_path))
            self._token = lib.get_token(token_label=token_label)
        except pkcs11.PKCS11Error as e:
            raise ServiceUnavailable(f"PKCS#11 token {token_label!r} is not available") from e
        self._user_pin = user_pin
        self._algorithms: dict[str, SigningAlgorithm] = {}
        logger.info("Opened PKCS#11 token", module=str(module_path), token=token_label)

    def _session(self, rw: bool = False) -> Any:
        return self._token.open(user_pin=self._user_pin, rw=rw)

    def _private_key(self, session: Any, alias: str) -> Any:
        pkcs11 = self._pkcs11
        try:
            return session.get_key(object_class=pkcs11.ObjectClass.PRIVATE_KEY, label=alias)
        except (pkcs11.NoSuchKey, pkcs11.MultipleObjectsReturned) as e:
            raise KeyStoreError(f"No unique token key with alias {alias!r}") from e

    def _public_key_der(self, session: Any, alias: str) -> bytes:
        from pkcs11.util.ec import encode_ec_public_key

        pkcs11 = self._pkcs11
        try:
            public = session.get_key(object_class=pkcs11.ObjectClass.PUBLIC_KEY, label=alias)
        except (pkcs11.NoSuchKey, pkcs11.MultipleObjectsReturned) as e:
            raise KeyStoreError(f"No unique token public key with alias {alias!r}") from e
        return encode_ec_public_key(public)

    def _algorithm(self, session: Any, alias: str) -> SigningAlgorithm:
        algorithm = self._algorithms.get(alias)
        if algorithm is None:
            public = serialization.load_der_public_key(self._public_key_der(session, alias))
            if not isinstance(public, ec.EllipticCurvePublicKey):
                raise KeyStoreError(f"Token key {alias!r} is not an EC key")
            algorithm = _algorithm_for_curve(public.curve.name)
            self._algorithms[alias] = algorithm
        return algorithm

    def _mechanism(self, algorithm: SigningAlgorithm) -> Any:
        mechanisms = {
            SigningAlgorithm.ES256: self._pkcs11.Mechanism.ECDSA_SHA256,
            SigningAlgorithm.ES384: self._pkcs11.Mechanism.ECDSA_SHA384,
            SigningAlgorithm.ES512: self._pkcs11.Mechanism.ECDSA_SHA512,
        }
        return mechanisms[algorithm]

    def contains(self, alias: str) -> bool:
        _check_alias(alias)
        pkcs11 = self._pkcs11
        with self._session() as session:
            try:
                session.get_key(object_class=pkcs11.ObjectClass.PRIVATE_KEY, label=alias)
            except pkcs11.NoSuchKey:
                return False
            except pkcs11.MultipleObjectsReturned:
                return True
        return True

    def generate_key(
        self, alias: str, algorithm: SigningAlgorithm = SigningAlgorithm.ES256
    ) -> None:
        from pkcs11.util.ec import encode_named_curve_parameters

        _check_alias(alias)
        if algorithm not in _PKCS11_CURVES:
            raise KeyStoreError(f"PKCS#11 keystore does not support {algorithm.value}")
        pkcs11 = self._pkcs11
        with self._session(rw=True) as session:
            params = session.create_domain_parameters(
                pkcs11.KeyType.EC,
                {pkcs11.Attribute.EC_PARAMS: encode_named_curve_parameters(_PKCS11_CURVES[algorithm])},
                local=True,
            )
            params.generate_keypair(store=True, label=alias)
        self._algorithms[alias] = algorithm
        logger.info("Generated token key", alias=alias, algorithm=algorithm.value)

    def import_private_key(self, alias: str, private_key_pem: str | bytes) -> None:
        raise KeyStoreError("PKCS#11 keys are generated on the token and cannot be imported")

    def public_key_pem(self, alias: str) -> str:
        _check_alias(alias)
        with self._session() as session:
            der = self._public_key_der(session, alias)
        public = serialization.load_der_public_key(der)
        return public.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    def sign(self, alias: str, data: bytes) -> bytes:
        _check_alias(alias)
        with self._session() as session:
            algorithm = self._algorithm(session, alias)
            key = self._private_key(session, alias)
            raw = key.sign(data, mechanism=self._mechanism(algorithm))
        return raw_to_der(raw, algorithm.coordinate_size)

    def create_csr(self, alias: str, subject: SubjectInfo | None = None) -> str:
        from asn1crypto import algos, csr, keys, pem
        from asn1crypto import x509 as asn1_x509

        _check_alias(alias)
        subject = subject or SubjectInfo()
        name_fields = {
            "common_name": subject.common_name,
            "organization_name": subject.organization,
            "organizational_unit_name": subject.organizational_unit,
            "country_name": subject.country,
            "state_or_province_name": subject.state,
            "locality_name": subject.locality,
        }
        with self._session() as session:
            algorithm = self._algorithm(session, alias)
            info = csr.CertificationRequestInfo(
                {
                    "version": "v1",
                    "subject": asn1_x509.Name.build(
                        {k: v for k, v in name_fields.items() if v}
                    ),
                    "subject_pk_info": keys.PublicKeyInfo.load(
                        self._public_key_der(session, alias)
                    ),
                    "attributes": [],
                }
            )
            key = self._private_key(session, alias)
            raw = key.sign(info.dump(), mechanism=self._mechanism(algorithm))

        digest = {
            SigningAlgorithm.ES256: "sha256_ecdsa",
            SigningAlgorithm.ES384: "sha384_ecdsa",
            SigningAlgorithm.ES512: "sha512_ecdsa",
        }[algorithm]
        request = csr.CertificationRequest(
            {
                "certification_request_info": info,
                "signature_algorithm": algos.SignedDigestAlgorithm({"algorithm": digest}),
                "signature": raw_to_der(raw, algorithm.coordinate_size),
            }
        )
        return pem.armor("CERTIFICATE REQUEST", request.dump()).decode()

    def delete_key(self, alias: str) -> None:
        _check_alias(alias)
        pkcs11 = self._pkcs11
        with self._session(rw=True) as session:
            for object_class in (pkcs11.ObjectClass.PRIVATE_KEY, pkcs11.ObjectClass.PUBLIC_KEY):
                template = {pkcs11.Attribute.CLASS: object_class, pkcs11.Attribute.LABEL: alias}
                for obj in session.get_objects(template):
                    obj.destroy()
        self._algorithms.pop(alias, None)
        logger.info("Deleted token key", alias=alias)


def create_keystore(config: KeyStoreConfig) -> KeyStore:
    """Build the keystore backend selected in configuration."""
    if config.backend == "pkcs11":
        if config.pkcs11_module is None:
            raise SignerConfigurationError("The pkcs11 keystore backend needs pkcs11_module")
        return Pkcs11KeyStore(config.pkcs11_module, config.token_label, config.user_pin)
    return SoftwareKeyStore(config.data_dir)
