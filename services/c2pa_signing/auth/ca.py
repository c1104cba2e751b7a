"""Certificate Authority for C2PA signing credentials.

Maintains a two-level ECDSA P-256 hierarchy and issues end-entity signing
certificates from it:
- Root CA (10 years default), signs only the intermediate
- Intermediate CA (5 years default), signs every end-entity certificate
- End-entity certificates for CSRs (365 days default)
- Temporary certificates with a server-generated key (1 day default)

Issued certificates never outlive their issuer: notAfter is clamped to the
intermediate's notAfter.
"""

import datetime
import os
import threading
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from c2pa_signing.config import CertificateConfig, settings
from c2pa_signing.errors import (
    CertificateChainInvalid,
    CertificateRequestInvalid,
    ServiceUnavailable,
)
from c2pa_signing.logging_config import get_logger

logger = get_logger(__name__)

# id-kp-documentSigning (RFC 9336)
DOCUMENT_SIGNING_OID = x509.ObjectIdentifier("1.3.6.1.5.5.7.3.36")

ROOT_CERT_FILE = "root.crt"
ROOT_KEY_FILE = "root.key"
INTERMEDIATE_CERT_FILE = "intermediate.crt"
INTERMEDIATE_KEY_FILE = "intermediate.key"

_CSR_MARKER = "BEGIN CERTIFICATE REQUEST"


class CertificateRole(StrEnum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"
    END_ENTITY = "end-entity"
    TEMPORARY = "temporary"


@dataclass(frozen=True)
class CSRMetadata:
    """Caller-supplied context for a CSR.

    The subject fields, when set, override the corresponding CSR subject
    attributes. The device fields are recorded in the issuance log only.
    """

    device_id: str | None = None
    app_version: str | None = None
    purpose: str | None = None
    common_name: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None
    country: str | None = None
    state: str | None = None
    locality: str | None = None

    def subject_overrides(self) -> dict[x509.ObjectIdentifier, str]:
        fields = {
            NameOID.COMMON_NAME: self.common_name,
            NameOID.ORGANIZATION_NAME: self.organization,
            NameOID.ORGANIZATIONAL_UNIT_NAME: self.organizational_unit,
            NameOID.COUNTRY_NAME: self.country,
            NameOID.STATE_OR_PROVINCE_NAME: self.state,
            NameOID.LOCALITY_NAME: self.locality,
        }
        return {oid: value for oid, value in fields.items() if value}


@dataclass(frozen=True)
class IssuedCertificate:
    """Result of an issuance. ``private_key_pem`` is set only for server-generated keys."""

    certificate_id: str
    certificate_chain_pem: str
    serial_number: str
    not_before: datetime.datetime
    expires_at: datetime.datetime
    role: CertificateRole
    private_key_pem: str | None = field(default=None, repr=False)

    @property
    def certificate(self) -> x509.Certificate:
        """The leaf certificate."""
        return x509.load_pem_x509_certificates(self.certificate_chain_pem.encode())[0]


class SerialNumberAllocator:
    """Hands out unique positive serial numbers from a CSPRNG.

    Draws are serialized by a lock and checked against every serial this
    allocator has returned.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._issued: set[int] = set()

    def allocate(self) -> int:
        with self._lock:
            while True:
                serial = x509.random_serial_number()
                if serial not in self._issued:
                    self._issued.add(serial)
                    return serial

    def __len__(self) -> int:
        return len(self._issued)


class CertificateAuthorityService:
    """Root and intermediate CA plus the end-entity issuance policy."""

    def __init__(
        self,
        root_cert: x509.Certificate,
        root_key: ec.EllipticCurvePrivateKey,
        intermediate_cert: x509.Certificate,
        intermediate_key: ec.EllipticCurvePrivateKey,
        policy: CertificateConfig | None = None,
    ):
        self._root_cert = root_cert
        self._root_key = root_key
        self._intermediate_cert = intermediate_cert
        self._intermediate_key = intermediate_key
        self._policy = policy or settings.certificates
        self._serials = SerialNumberAllocator()

    @property
    def root_cert(self) -> x509.Certificate:
        return self._root_cert

    @property
    def intermediate_cert(self) -> x509.Certificate:
        return self._intermediate_cert

    @property
    def root_cert_pem(self) -> str:
        return self._root_cert.public_bytes(serialization.Encoding.PEM).decode()

    @property
    def intermediate_cert_pem(self) -> str:
        return self._intermediate_cert.public_bytes(serialization.Encoding.PEM).decode()

    @property
    def policy(self) -> CertificateConfig:
        return self._policy

    # ── CA Generation ────────────────────────────────────────────────────

    @classmethod
    def generate(cls, policy: CertificateConfig | None = None) -> "CertificateAuthorityService":
        """Generate a fresh root and intermediate CA, both ECDSA P-256."""
        policy = policy or settings.certificates
        now = datetime.datetime.now(datetime.UTC)

        root_key = ec.generate_private_key(ec.SECP256R1())
        root_name = _ca_name(f"{policy.organization} Root CA", policy)
        root_cert = (
            _ca_builder(
                subject=root_name,
                issuer=root_name,
                public_key=root_key.public_key(),
                issuer_public_key=root_key.public_key(),
                not_before=now,
                not_after=now + datetime.timedelta(days=policy.root_validity_days),
                path_length=1,
            )
            .sign(root_key, hashes.SHA256())
        )

        intermediate_key = ec.generate_private_key(ec.SECP256R1())
        intermediate_cert = (
            _ca_builder(
                subject=_ca_name(f"{policy.organization} Intermediate CA", policy),
                issuer=root_name,
                public_key=intermediate_key.public_key(),
                issuer_public_key=root_key.public_key(),
                not_before=now,
                not_after=min(
                    now + datetime.timedelta(days=policy.intermediate_validity_days),
                    root_cert.not_valid_after_utc,
                ),
                path_length=0,
            )
            .sign(root_key, hashes.SHA256())
        )

        logger.info(
            "Generated new CA hierarchy",
            root_fingerprint=get_certificate_fingerprint(root_cert)[:16],
            intermediate_fingerprint=get_certificate_fingerprint(intermediate_cert)[:16],
            root_expires=root_cert.not_valid_after_utc.isoformat(),
            intermediate_expires=intermediate_cert.not_valid_after_utc.isoformat(),
        )

        return cls(root_cert, root_key, intermediate_cert, intermediate_key, policy)

    @classmethod
    def load(
        cls,
        root_cert_pem: bytes,
        root_key_pem: bytes,
        intermediate_cert_pem: bytes,
        intermediate_key_pem: bytes,
        policy: CertificateConfig | None = None,
    ) -> "CertificateAuthorityService":
        """Load the hierarchy from PEM-encoded certificates and keys."""
        root_cert = load_certificate(root_cert_pem)
        intermediate_cert = load_certificate(intermediate_cert_pem)
        root_key = _load_ca_key(root_key_pem, "root")
        intermediate_key = _load_ca_key(intermediate_key_pem, "intermediate")

        if root_key.public_key() != root_cert.public_key():
            raise ServiceUnavailable("Root CA key does not match root certificate")
        if intermediate_key.public_key() != intermediate_cert.public_key():
            raise ServiceUnavailable("Intermediate CA key does not match intermediate certificate")
        try:
            intermediate_cert.verify_directly_issued_by(root_cert)
        except (ValueError, TypeError, InvalidSignature) as e:
            raise ServiceUnavailable("Intermediate CA is not issued by the root CA") from e

        return cls(root_cert, root_key, intermediate_cert, intermediate_key, policy)

    @classmethod
    def load_or_generate(
        cls,
        data_dir: Path | None = None,
        policy: CertificateConfig | None = None,
    ) -> "CertificateAuthorityService":
        """Load the hierarchy from ``data_dir`` if present, otherwise generate and persist.

        With no ``data_dir`` the hierarchy is generated in memory and lost on exit.
        """
        if data_dir is None:
            logger.warning("No CA data directory configured, CA hierarchy is ephemeral")
            return cls.generate(policy)

        paths = {
            name: data_dir / name
            for name in (ROOT_CERT_FILE, ROOT_KEY_FILE, INTERMEDIATE_CERT_FILE, INTERMEDIATE_KEY_FILE)
        }
        present = {name for name, path in paths.items() if path.exists()}

        if len(present) == len(paths):
            logger.info("Loading CA from disk", path=str(data_dir))
            return cls.load(
                paths[ROOT_CERT_FILE].read_bytes(),
                paths[ROOT_KEY_FILE].read_bytes(),
                paths[INTERMEDIATE_CERT_FILE].read_bytes(),
                paths[INTERMEDIATE_KEY_FILE].read_bytes(),
                policy,
            )
        if present:
            # Partial state: refuse to overwrite whatever is left
            raise ServiceUnavailable(
                f"Incomplete CA in {data_dir}: missing {sorted(set(paths) - present)}"
            )

        logger.info("No existing CA found, generating new CA", path=str(data_dir))
        ca = cls.generate(policy)
        ca.save(data_dir)
        return ca

    def save(self, data_dir: Path) -> None:
        """Persist certificates and keys. Key files are written with mode 0600."""
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / ROOT_CERT_FILE).write_bytes(serialize_certificate(self._root_cert))
        (data_dir / INTERMEDIATE_CERT_FILE).write_bytes(
            serialize_certificate(self._intermediate_cert)
        )
        _write_key(data_dir / ROOT_KEY_FILE, self._root_key)
        _write_key(data_dir / INTERMEDIATE_KEY_FILE, self._intermediate_key)

    # ── Certificate Issuance ─────────────────────────────────────────────

    def sign_csr(self, csr_pem: str, metadata: CSRMetadata | None = None) -> IssuedCertificate:
        """Issue an end-entity signing certificate for a CSR.

        The CSR is validated before any key is touched: a missing PEM marker,
        an unparseable request, an unsupported key type or a bad
        self-signature raise CertificateRequestInvalid.
        """
        if not csr_pem or _CSR_MARKER not in csr_pem:
            raise CertificateRequestInvalid("CSR must be a PEM certificate request")
        try:
            csr = x509.load_pem_x509_csr(csr_pem.encode())
        except ValueError as e:
            raise CertificateRequestInvalid("CSR could not be parsed") from e
        if not csr.is_signature_valid:
            raise CertificateRequestInvalid("CSR signature is invalid")

        public_key = csr.public_key()
        if not isinstance(public_key, ec.EllipticCurvePublicKey | ed25519.Ed25519PublicKey):
            raise CertificateRequestInvalid(
                f"Unsupported CSR key type {type(public_key).__name__}"
            )

        metadata = metadata or CSRMetadata()
        subject = _apply_overrides(csr.subject, metadata.subject_overrides())
        if not subject.get_attributes_for_oid(NameOID.COMMON_NAME):
            raise CertificateRequestInvalid("CSR subject must include a common name")

        issued = self._issue(
            public_key,
            subject,
            CertificateRole.END_ENTITY,
            self._policy.end_entity_validity_days,
        )

        logger.info(
            "Signed CSR",
            certificate_id=issued.certificate_id,
            serial_number=issued.serial_number,
            subject=subject.rfc4514_string(),
            device_id=metadata.device_id,
            app_version=metadata.app_version,
            purpose=metadata.purpose,
            expires=issued.expires_at.isoformat(),
        )
        return issued

    def issue_temporary_certificate(self) -> IssuedCertificate:
        """Issue a short-lived certificate together with a fresh private key."""
        return self.issue_signing_credentials(
            common_name=f"{self._policy.organization} Temporary Signer",
            role=CertificateRole.TEMPORARY,
        )

    def issue_signing_credentials(
        self,
        common_name: str,
        role: CertificateRole = CertificateRole.END_ENTITY,
    ) -> IssuedCertificate:
        """Generate a P-256 key server-side and issue a certificate for it.

        Used for temporary certificates and for this server's own default signer.
        """
        if role is CertificateRole.TEMPORARY:
            validity_days = self._policy.temporary_validity_days
        elif role is CertificateRole.END_ENTITY:
            validity_days = self._policy.end_entity_validity_days
        else:
            raise ValueError(f"Cannot issue signing credentials with role {role}")

        private_key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, self._policy.organization),
                x509.NameAttribute(NameOID.COUNTRY_NAME, self._policy.country),
            ]
        )
        issued = self._issue(private_key.public_key(), subject, role, validity_days)
        key_pem = serialize_private_key(private_key).decode()

        logger.info(
            "Issued signing credentials",
            certificate_id=issued.certificate_id,
            serial_number=issued.serial_number,
            common_name=common_name,
            role=role.value,
            expires=issued.expires_at.isoformat(),
        )
        return IssuedCertificate(
            certificate_id=issued.certificate_id,
            certificate_chain_pem=issued.certificate_chain_pem,
            serial_number=issued.serial_number,
            not_before=issued.not_before,
            expires_at=issued.expires_at,
            role=issued.role,
            private_key_pem=key_pem,
        )

    def _issue(
        self,
        public_key: ec.EllipticCurvePublicKey | ed25519.Ed25519PublicKey,
        subject: x509.Name,
        role: CertificateRole,
        validity_days: int,
    ) -> IssuedCertificate:
        if self._intermediate_key is None:
            raise ServiceUnavailable("Intermediate CA key is not loaded")

        now = datetime.datetime.now(datetime.UTC)
        issuer_not_after = self._intermediate_cert.not_valid_after_utc
        if issuer_not_after <= now:
            raise ServiceUnavailable("Intermediate CA certificate has expired")
        not_after = min(now + datetime.timedelta(days=validity_days), issuer_not_after)

        serial = self._serials.allocate()
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self._intermediate_cert.subject)
            .public_key(public_key)
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(not_after)
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.EMAIL_PROTECTION, DOCUMENT_SIGNING_OID]
                ),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(public_key),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    self._intermediate_key.public_key()
                ),
                critical=False,
            )
            .sign(self._intermediate_key, hashes.SHA256())
        )

        chain_pem = "".join(
            serialize_certificate(c).decode()
            for c in (cert, self._intermediate_cert, self._root_cert)
        )
        return IssuedCertificate(
            certificate_id=str(uuid.uuid4()),
            certificate_chain_pem=chain_pem,
            serial_number=format(serial, "x"),
            not_before=cert.not_valid_before_utc,
            expires_at=cert.not_valid_after_utc,
            role=role,
        )

    # ── Chain Validation ─────────────────────────────────────────────────

    def verify_chain(
        self,
        chain_pem: str,
        at: datetime.datetime | None = None,
    ) -> list[x509.Certificate]:
        """Validate a leaf-first chain against this CA.

        Every link must be directly issued by the next certificate, the chain
        must end at (or be issued by) this CA's root, and each certificate
        must be inside its validity window at ``at`` (default: now).
        """
        try:
            certs = x509.load_pem_x509_certificates(chain_pem.encode())
        except ValueError as e:
            raise CertificateChainInvalid("Certificate chain could not be parsed") from e

        if certs[-1] != self._root_cert:
            certs = [*certs, self._root_cert]

        for child, parent in zip(certs, certs[1:], strict=False):
            try:
                child.verify_directly_issued_by(parent)
            except (ValueError, TypeError, InvalidSignature) as e:
                raise CertificateChainInvalid(
                    f"{child.subject.rfc4514_string()} is not issued by "
                    f"{parent.subject.rfc4514_string()}"
                ) from e

        at = at or datetime.datetime.now(datetime.UTC)
        for cert in certs:
            if not cert.not_valid_before_utc <= at <= cert.not_valid_after_utc:
                raise CertificateChainInvalid(
                    f"{cert.subject.rfc4514_string()} is outside its validity window"
                )
        return certs


# ── Helpers ──────────────────────────────────────────────────────────────


def _ca_name(common_name: str, policy: CertificateConfig) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, policy.organization),
            x509.NameAttribute(NameOID.COUNTRY_NAME, policy.country),
        ]
    )


def _ca_builder(
    subject: x509.Name,
    issuer: x509.Name,
    public_key: ec.EllipticCurvePublicKey,
    issuer_public_key: ec.EllipticCurvePublicKey,
    not_before: datetime.datetime,
    not_after: datetime.datetime,
    path_length: int,
) -> x509.CertificateBuilder:
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=path_length),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_cert_sign=True,
                crl_sign=True,
                key_encipherment=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key),
            critical=False,
        )
    )


def _apply_overrides(
    subject: x509.Name, overrides: dict[x509.ObjectIdentifier, str]
) -> x509.Name:
    if not overrides:
        return subject
    attributes = [attr for attr in subject if attr.oid not in overrides]
    attributes.extend(x509.NameAttribute(oid, value) for oid, value in overrides.items())
    return x509.Name(attributes)


def _load_ca_key(pem_data: bytes, which: str) -> ec.EllipticCurvePrivateKey:
    try:
        key = load_private_key(pem_data)
    except ValueError as e:
        raise ServiceUnavailable(f"{which} CA key could not be loaded") from e
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ServiceUnavailable(f"Expected EC {which} CA key, got {type(key).__name__}")
    return key


def _write_key(path: Path, key: ec.EllipticCurvePrivateKey) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(serialize_private_key(key))
    # Restrict key file permissions even if the file already existed
    path.chmod(0o600)


# ── Serialization Helpers ────────────────────────────────────────────────


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def serialize_private_key(
    key: ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey,
    password: bytes | None = None,
) -> bytes:
    """Serialize private key to PEM format."""
    encryption: serialization.KeySerializationEncryption
    if password:
        encryption = serialization.BestAvailableEncryption(password)
    else:
        encryption = serialization.NoEncryption()

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def load_certificate(pem_data: bytes) -> x509.Certificate:
    """Load certificate from PEM data."""
    return x509.load_pem_x509_certificate(pem_data)


def load_private_key(pem_data: bytes, password: bytes | None = None):
    """Load private key from PEM data."""
    return serialization.load_pem_private_key(pem_data, password=password)


def get_certificate_fingerprint(cert: x509.Certificate) -> str:
    """Get SHA256 fingerprint of certificate."""
    return cert.fingerprint(hashes.SHA256()).hex()
