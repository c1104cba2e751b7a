"""Signer construction for each signing mode.

- default: configured chain/key files, else temporary credentials from the local CA
- keystore: the default credentials, with the key held by a keystore
- hardware: a keystore-generated key, certified by a remote or the local CA
- custom: caller-supplied chain and key
- remote: a remote signing server
"""

from dataclasses import dataclass
from enum import StrEnum

from c2pa_signing.auth.ca import CertificateAuthorityService, CertificateRole, CSRMetadata
from c2pa_signing.config import Settings, SigningConfig, settings
from c2pa_signing.errors import ServiceUnavailable, SignerConfigurationError
from c2pa_signing.logging_config import get_logger
from c2pa_signing.services.remote_client import RemoteConfigurationClient

from .algorithms import SigningAlgorithm
from .keystore import KeyStore, SubjectInfo, create_keystore
from .signers import CallbackSigner, KeyPairSigner, Signer

logger = get_logger(__name__)

DEFAULT_KEY_ALIAS = "c2pa-signing-key"
HARDWARE_KEY_ALIAS = "c2pa-hardware-key"


class SigningMode(StrEnum):
    DEFAULT = "default"
    KEYSTORE = "keystore"
    HARDWARE = "hardware"
    CUSTOM = "custom"
    REMOTE = "remote"


@dataclass
class SignerOptions:
    """Per-mode inputs. Fields a mode does not use are ignored."""

    algorithm: SigningAlgorithm = SigningAlgorithm.ES256
    certificate_chain_pem: str | None = None
    private_key_pem: str | None = None
    alias: str | None = None
    remote_url: str | None = None
    bearer_token: str | None = None
    subject: SubjectInfo | None = None
    metadata: CSRMetadata | None = None
    timestamp_url: str | None = None


@dataclass(frozen=True)
class _Credentials:
    algorithm: SigningAlgorithm
    certificate_chain_pem: str
    private_key_pem: str


class SignerFactory:
    """Builds signers from the CA, keystore and remote client available to the process."""

    def __init__(
        self,
        ca: CertificateAuthorityService | None = None,
        keystore: KeyStore | None = None,
        remote_client: RemoteConfigurationClient | None = None,
        signing_config: SigningConfig | None = None,
    ) -> None:
        self._ca = ca
        self._keystore = keystore
        self._remote_client = remote_client
        self._signing_config = signing_config or settings.signing

    @classmethod
    def from_settings(
        cls,
        app_settings: Settings,
        ca: CertificateAuthorityService | None = None,
    ) -> "SignerFactory":
        """Factory with the configured keystore backend and a remote client over it."""
        keystore = create_keystore(app_settings.keystore)
        remote_client = RemoteConfigurationClient(
            keystore=keystore,
            timeout_seconds=app_settings.remote.timeout_seconds,
        )
        return cls(
            ca=ca,
            keystore=keystore,
            remote_client=remote_client,
            signing_config=app_settings.signing,
        )

    def close(self) -> None:
        """Release the remote client's HTTP connections."""
        if self._remote_client is not None:
            self._remote_client.close()

    def __enter__(self) -> "SignerFactory":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create(self, mode: SigningMode | str, options: SignerOptions | None = None) -> Signer:
        mode = SigningMode(mode)
        options = options or SignerOptions()
        builders = {
            SigningMode.DEFAULT: self._default,
            SigningMode.KEYSTORE: self._keystore_signer,
            SigningMode.HARDWARE: self._hardware,
            SigningMode.CUSTOM: self._custom,
            SigningMode.REMOTE: self._remote,
        }
        signer = builders[mode](options)
        logger.info("Created signer", mode=mode.value, algorithm=signer.algorithm.value)
        return signer

    def server_signer(self) -> Signer:
        """The signer this server uses for asset signing and remote signing requests.

        Uses the configured chain/key files when set. Otherwise the local CA
        issues end-entity credentials for the server's own key.
        """
        credentials = self._configured_credentials()
        if credentials is None:
            ca = self._require_ca()
            issued = ca.issue_signing_credentials(
                common_name=f"{ca.policy.organization} Signer",
                role=CertificateRole.END_ENTITY,
            )
            credentials = _Credentials(
                algorithm=SigningAlgorithm.ES256,
                certificate_chain_pem=issued.certificate_chain_pem,
                private_key_pem=issued.private_key_pem or "",
            )
        return KeyPairSigner(
            private_key_pem=credentials.private_key_pem,
            certificate_chain_pem=credentials.certificate_chain_pem,
            algorithm=credentials.algorithm,
            timestamp_authority_url=self._signing_config.timestamp_url,
        )

    # ── Modes ────────────────────────────────────────────────────────────

    def _default(self, options: SignerOptions) -> Signer:
        credentials = self._default_credentials()
        return KeyPairSigner(
            private_key_pem=credentials.private_key_pem,
            certificate_chain_pem=credentials.certificate_chain_pem,
            algorithm=credentials.algorithm,
            timestamp_authority_url=self._timestamp_url(options),
        )

    def _keystore_signer(self, options: SignerOptions) -> Signer:
        keystore = self._require_keystore()
        alias = options.alias or DEFAULT_KEY_ALIAS
        credentials = self._default_credentials()
        keystore.import_private_key(alias, credentials.private_key_pem)
        return CallbackSigner(
            algorithm=credentials.algorithm,
            certificate_chain_pem=credentials.certificate_chain_pem,
            callback=lambda data: keystore.sign(alias, data),
            timestamp_authority_url=self._timestamp_url(options),
        )

    def _hardware(self, options: SignerOptions) -> Signer:
        keystore = self._require_keystore()
        alias = options.alias or HARDWARE_KEY_ALIAS
        if not keystore.contains(alias):
            keystore.generate_key(alias, options.algorithm)

        if options.remote_url:
            if self._remote_client is None:
                raise SignerConfigurationError("Hardware enrollment needs a remote client")
            chain_pem = self._remote_client.enroll_hardware_key(
                alias,
                options.remote_url,
                bearer_token=options.bearer_token,
                subject=options.subject,
                metadata=options.metadata,
            )
        else:
            csr_pem = keystore.create_csr(alias, options.subject)
            chain_pem = self._require_ca().sign_csr(csr_pem, options.metadata).certificate_chain_pem

        return CallbackSigner(
            algorithm=options.algorithm,
            certificate_chain_pem=chain_pem,
            callback=lambda data: keystore.sign(alias, data),
            timestamp_authority_url=self._timestamp_url(options),
        )

    def _custom(self, options: SignerOptions) -> Signer:
        if not options.certificate_chain_pem or not options.private_key_pem:
            raise SignerConfigurationError("Custom mode needs a certificate chain and private key")
        return KeyPairSigner(
            private_key_pem=options.private_key_pem,
            certificate_chain_pem=options.certificate_chain_pem,
            algorithm=options.algorithm,
            timestamp_authority_url=self._timestamp_url(options),
        )

    def _remote(self, options: SignerOptions) -> Signer:
        if not options.remote_url:
            raise SignerConfigurationError("Remote mode needs a remote URL")
        if self._remote_client is None:
            raise SignerConfigurationError("Remote mode needs a remote client")
        config = self._remote_client.fetch_configuration(options.remote_url, options.bearer_token)
        return self._remote_client.remote_signer(config, options.bearer_token)

    # ── Credentials ──────────────────────────────────────────────────────

    def _configured_credentials(self) -> _Credentials | None:
        chain_path = self._signing_config.certificate_chain_path
        key_path = self._signing_config.private_key_path
        if chain_path is None or key_path is None:
            return None
        try:
            chain_pem = chain_path.read_text()
            key_pem = key_path.read_text()
        except OSError as e:
            raise SignerConfigurationError(f"Could not read signing credentials: {e}") from e
        return _Credentials(
            algorithm=SigningAlgorithm.parse(self._signing_config.algorithm),
            certificate_chain_pem=chain_pem,
            private_key_pem=key_pem,
        )

    def _default_credentials(self) -> _Credentials:
        credentials = self._configured_credentials()
        if credentials is not None:
            return credentials
        issued = self._require_ca().issue_temporary_certificate()
        return _Credentials(
            algorithm=SigningAlgorithm.ES256,
            certificate_chain_pem=issued.certificate_chain_pem,
            private_key_pem=issued.private_key_pem or "",
        )

    def _timestamp_url(self, options: SignerOptions) -> str | None:
        return options.timestamp_url or self._signing_config.timestamp_url or None

    def _require_ca(self) -> CertificateAuthorityService:
        if self._ca is None:
            raise ServiceUnavailable("Certificate authority is not initialized")
        return self._ca

    def _require_keystore(self) -> KeyStore:
        if self._keystore is None:
            raise SignerConfigurationError("This signing mode needs a keystore")
        return self._keystore
