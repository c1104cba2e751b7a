"""Pytest configuration and fixtures."""

import json
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi import FastAPI
from fastapi.testclient import TestClient
from fixtures.fake_engine import FakeEngine
from httpx import ASGITransport, AsyncClient

from c2pa_signing.api.app import create_application
from c2pa_signing.auth.ca import CertificateAuthorityService
from c2pa_signing.config import CertificateConfig, Settings
from c2pa_signing.signing import KeyPairSigner, SigningAlgorithm

TEST_SERVER_URL = "https://signer.example.com"


@pytest.fixture(scope="session")
def ca() -> CertificateAuthorityService:
    """A fresh in-memory CA hierarchy shared by the whole session."""
    return CertificateAuthorityService.generate(CertificateConfig())


@pytest.fixture(scope="session")
def signing_credentials(ca: CertificateAuthorityService):
    """End-entity credentials with a server-generated P-256 key."""
    return ca.issue_signing_credentials(common_name="Test Signer")


@pytest.fixture(scope="session")
def server_signer(signing_credentials) -> KeyPairSigner:
    return KeyPairSigner(
        private_key_pem=signing_credentials.private_key_pem,
        certificate_chain_pem=signing_credentials.certificate_chain_pem,
        algorithm=SigningAlgorithm.ES256,
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(server_url=TEST_SERVER_URL, bearer_token=None, max_request_size=1_000_000)


@pytest.fixture
def app(
    test_settings: Settings,
    ca: CertificateAuthorityService,
    fake_engine: FakeEngine,
    server_signer: KeyPairSigner,
) -> FastAPI:
    """Create FastAPI application for testing with preconstructed services."""
    return create_application(
        settings=test_settings,
        ca=ca,
        engine=fake_engine,
        signer=server_signer,
    )


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create sync test client."""
    return TestClient(app)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def manifest_definition() -> dict[str, Any]:
    return {
        "claim_generator": "c2pa-signing-tests/1.0",
        "title": "photo.jpg",
        "format": "image/jpeg",
        "assertions": [
            {
                "label": "c2pa.actions",
                "data": {"actions": [{"action": "c2pa.created"}]},
            }
        ],
    }


@pytest.fixture
def manifest_json(manifest_definition: dict[str, Any]) -> str:
    return json.dumps(manifest_definition)


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Stand-in asset bytes; the fake engine does not parse the container."""
    return b"\xff\xd8\xff\xe0" + b"\x00" * 128 + b"\xff\xd9"


def make_csr(
    common_name: str = "Device Key",
    key: ec.EllipticCurvePrivateKey | None = None,
) -> tuple[str, ec.EllipticCurvePrivateKey]:
    """Build a PEM CSR signed by a P-256 key."""
    key = key or ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(
            x509.Name(
                [
                    x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Devices"),
                ]
            )
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM).decode(), key


@pytest.fixture
def csr_pem() -> str:
    return make_csr()[0]
