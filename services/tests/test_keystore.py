"""Tests for keystore backends."""

import stat
from collections.abc import Iterator
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.x509.oid import NameOID
from fixtures.fake_pkcs11 import TOKEN_LABEL, FakeToken

from c2pa_signing.errors import KeyStoreError, ServiceUnavailable
from c2pa_signing.signing import CallbackSigner, SigningAlgorithm, raw_to_der
from c2pa_signing.signing.keystore import (
    KeyStore,
    Pkcs11KeyStore,
    SoftwareKeyStore,
    SubjectInfo,
)


@pytest.fixture
def keystore(tmp_path) -> SoftwareKeyStore:
    return SoftwareKeyStore(tmp_path / "keys")


class TestSoftwareKeyStore:
    """Test the file-backed keystore."""

    def test_satisfies_protocol(self, keystore: SoftwareKeyStore):
        """Test the software keystore implements the KeyStore protocol."""
        assert isinstance(keystore, KeyStore)

    def test_generate_and_sign(self, keystore: SoftwareKeyStore):
        """Test a generated key signs with DER output verifiable by its public key."""
        keystore.generate_key("device")
        der = keystore.sign("device", b"data")
        public = serialization.load_pem_public_key(keystore.public_key_pem("device").encode())

        public.verify(der, b"data", ec.ECDSA(hashes.SHA256()))

    def test_key_file_mode(self, keystore: SoftwareKeyStore, tmp_path):
        """Test persisted keys are only readable by the owner."""
        keystore.generate_key("device")
        mode = stat.S_IMODE((tmp_path / "keys" / "device.key").stat().st_mode)

        assert mode == 0o600

    def test_reload_from_disk(self, keystore: SoftwareKeyStore, tmp_path):
        """Test a new keystore instance sees keys persisted by another."""
        keystore.generate_key("device")
        reopened = SoftwareKeyStore(tmp_path / "keys")

        assert reopened.contains("device")
        assert reopened.public_key_pem("device") == keystore.public_key_pem("device")

    def test_in_memory(self):
        """Test keys stay in memory without a data directory."""
        store = SoftwareKeyStore()
        store.generate_key("mem", SigningAlgorithm.ED25519)

        assert store.contains("mem")
        assert len(store.sign("mem", b"data")) == 64

    def test_import_private_key(self, keystore: SoftwareKeyStore):
        """Test an imported key signs like the original."""
        key = ec.generate_private_key(ec.SECP256R1())
        pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        keystore.import_private_key("imported", pem)

        der = keystore.sign("imported", b"data")
        key.public_key().verify(der, b"data", ec.ECDSA(hashes.SHA256()))

    def test_import_garbage(self, keystore: SoftwareKeyStore):
        """Test importing unreadable material fails."""
        with pytest.raises(KeyStoreError):
            keystore.import_private_key("bad", "not a key")

    def test_missing_alias(self, keystore: SoftwareKeyStore):
        """Test signing with an unknown alias fails."""
        assert not keystore.contains("nope")
        with pytest.raises(KeyStoreError):
            keystore.sign("nope", b"data")

    def test_invalid_alias(self, keystore: SoftwareKeyStore):
        """Test path-like aliases are rejected."""
        with pytest.raises(KeyStoreError):
            keystore.generate_key("../escape")

    def test_delete_key(self, keystore: SoftwareKeyStore, tmp_path):
        """Test deleting removes the key from memory and disk."""
        keystore.generate_key("device")
        keystore.delete_key("device")

        assert not keystore.contains("device")
        assert not (tmp_path / "keys" / "device.key").exists()

    def test_create_csr(self, keystore: SoftwareKeyStore):
        """Test CSRs carry the subject and a valid self-signature."""
        keystore.generate_key("device")
        csr_pem = keystore.create_csr("device", SubjectInfo(common_name="Camera 7"))
        csr = x509.load_pem_x509_csr(csr_pem.encode())

        assert csr.is_signature_valid
        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        ou = csr.subject.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME)[0].value
        assert cn == "Camera 7"
        assert ou == "Mobile"

    def test_csr_for_ed25519(self, keystore: SoftwareKeyStore):
        """Test Ed25519 keys produce CSRs too."""
        keystore.generate_key("ed", SigningAlgorithm.ED25519)
        csr = x509.load_pem_x509_csr(keystore.create_csr("ed").encode())

        assert csr.is_signature_valid
        assert isinstance(csr.public_key(), ed25519.Ed25519PublicKey)

    def test_callback_signer_over_keystore(self, keystore: SoftwareKeyStore, signing_credentials):
        """Test a keystore-backed CallbackSigner emits raw signatures."""
        keystore.generate_key("device")
        signer = CallbackSigner(
            SigningAlgorithm.ES256,
            signing_credentials.certificate_chain_pem,
            callback=lambda data: keystore.sign("device", data),
        )
        signature = signer.sign(b"claim")
        public = serialization.load_pem_public_key(keystore.public_key_pem("device").encode())

        assert len(signature) == 64
        public.verify(raw_to_der(signature, 32), b"claim", ec.ECDSA(hashes.SHA256()))


class TestSubjectInfo:
    """Test CSR subject defaults."""

    def test_defaults(self):
        """Test the default distinguished name."""
        name = SubjectInfo().to_x509_name()

        assert name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "C2PA Hardware Key"
        assert name.get_attributes_for_oid(NameOID.COUNTRY_NAME)[0].value == "US"
        assert name.get_attributes_for_oid(NameOID.LOCALITY_NAME)[0].value == "San Francisco"

    def test_empty_fields_are_omitted(self):
        """Test blank fields do not produce empty attributes."""
        name = SubjectInfo(organizational_unit="", locality="").to_x509_name()

        assert not name.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME)
        assert not name.get_attributes_for_oid(NameOID.LOCALITY_NAME)


@pytest.fixture
def token() -> Iterator[FakeToken]:
    token = FakeToken()
    with patch.dict("sys.modules", token.modules()):
        yield token


@pytest.fixture
def hsm(token: FakeToken, tmp_path) -> Pkcs11KeyStore:
    return Pkcs11KeyStore(tmp_path / "libsofthsm2.so", token_label=TOKEN_LABEL, user_pin="1234")


class TestPkcs11KeyStore:
    """Test the PKCS#11 backend against an in-memory token."""

    def test_missing_library(self, tmp_path):
        """Test a missing python-pkcs11 install reports the service unavailable."""
        with patch.dict("sys.modules", {"pkcs11": None}):
            with pytest.raises(ServiceUnavailable):
                Pkcs11KeyStore(tmp_path / "libsofthsm2.so", token_label="c2pa")

    def test_unknown_token(self, token: FakeToken, tmp_path):
        """Test a token label the module does not know is unavailable."""
        with pytest.raises(ServiceUnavailable):
            Pkcs11KeyStore(tmp_path / "libsofthsm2.so", token_label="other")

    def test_satisfies_protocol(self, hsm: Pkcs11KeyStore):
        """Test the PKCS#11 keystore implements the KeyStore protocol."""
        assert isinstance(hsm, KeyStore)

    def test_generate_and_sign(self, hsm: Pkcs11KeyStore, token: FakeToken):
        """Test the token's raw r||s output is returned as verifiable DER."""
        assert not hsm.contains("device")
        hsm.generate_key("device")
        assert hsm.contains("device")

        der = hsm.sign("device", b"data")
        public = serialization.load_pem_public_key(hsm.public_key_pem("device").encode())
        public.verify(der, b"data", ec.ECDSA(hashes.SHA256()))

        assert token.sign_calls == 1
        assert set(token.pins) == {"1234"}
        assert token.open_sessions == 0

    def test_curve_read_from_token(self, hsm: Pkcs11KeyStore, token: FakeToken, tmp_path):
        """Test a fresh keystore finds an existing key's curve on the token."""
        hsm.generate_key("device", SigningAlgorithm.ES384)
        reopened = Pkcs11KeyStore(tmp_path / "libsofthsm2.so", token_label=TOKEN_LABEL)

        der = reopened.sign("device", b"data")
        public = serialization.load_pem_public_key(reopened.public_key_pem("device").encode())
        public.verify(der, b"data", ec.ECDSA(hashes.SHA384()))

    def test_unsupported_algorithm(self, hsm: Pkcs11KeyStore):
        """Test Ed25519 keys cannot be generated on the token."""
        with pytest.raises(KeyStoreError):
            hsm.generate_key("device", SigningAlgorithm.ED25519)

    def test_sign_unknown_alias(self, hsm: Pkcs11KeyStore):
        """Test signing with a missing key is a keystore error."""
        with pytest.raises(KeyStoreError):
            hsm.sign("missing", b"data")

    def test_import_is_refused(self, hsm: Pkcs11KeyStore, signing_credentials):
        """Test keys cannot be imported onto the token."""
        with pytest.raises(KeyStoreError):
            hsm.import_private_key("device", signing_credentials.private_key_pem)

    def test_csr_is_certified_by_ca(self, hsm: Pkcs11KeyStore, ca):
        """Test the token-signed CSR parses, self-verifies and is accepted by the CA."""
        pytest.importorskip("asn1crypto")
        hsm.generate_key("device")

        csr_pem = hsm.create_csr("device", SubjectInfo(common_name="Camera 9"))
        csr = x509.load_pem_x509_csr(csr_pem.encode())
        assert csr.is_signature_valid
        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "Camera 9"

        issued = ca.sign_csr(csr_pem)
        leaf = x509.load_pem_x509_certificates(issued.certificate_chain_pem.encode())[0]
        public = serialization.load_pem_public_key(hsm.public_key_pem("device").encode())
        assert leaf.public_key() == public

    def test_callback_signer_over_token(self, hsm: Pkcs11KeyStore, signing_credentials):
        """Test a token-backed CallbackSigner emits 64-byte raw signatures."""
        hsm.generate_key("device")
        signer = CallbackSigner(
            SigningAlgorithm.ES256,
            signing_credentials.certificate_chain_pem,
            callback=lambda data: hsm.sign("device", data),
        )
        signature = signer.sign(b"claim")
        public = serialization.load_pem_public_key(hsm.public_key_pem("device").encode())

        assert len(signature) == 64
        public.verify(raw_to_der(signature, 32), b"claim", ec.ECDSA(hashes.SHA256()))

    def test_delete_key(self, hsm: Pkcs11KeyStore, token: FakeToken):
        """Test deletion removes both halves of the key pair."""
        hsm.generate_key("device")
        hsm.delete_key("device")

        assert not hsm.contains("device")
        assert token.objects == []
